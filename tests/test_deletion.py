"""Tests for dependency reports and cascading deletion."""

from collections import Counter

import pytest

from product_requirements.db.audit import AuditService
from product_requirements.errors import ConflictError, NotFoundError
from product_requirements.schemas.enums import DependencyType
from product_requirements.services.comments import CommentService
from product_requirements.services.deletion import DeletionService
from product_requirements.services.epics import EpicService
from product_requirements.services.relationships import RelationshipService
from product_requirements.services.requirements import RequirementService


@pytest.fixture
def hierarchy(db_session, make, users):
    """EP-001 with US-001 (AC-001, REQ-001) and US-002 (REQ-002), one edge and one comment."""
    epic = make.epic(title="Payments")
    first = make.story(epic, title="Card payments")
    second = make.story(epic, title="Refunds")
    make.criterion(first)
    make.requirement(first, title="Tokenize cards")
    make.requirement(second, title="Partial refunds")
    RelationshipService(db_session).create("REQ-001", "REQ-002", "depends_on", users["user"].id)
    CommentService(db_session).create_comment("epic", "EP-001", users["user"].id, "Scope?")
    return epic


class TestValidate:
    def test_epic_closure(self, db_session, hierarchy):
        report = DeletionService(db_session).validate("epic", "EP-001")

        assert report.can_delete is True
        assert report.reference_id == "EP-001"
        assert len(report.dependencies) == 7
        assert Counter(d.entity_type for d in report.dependencies) == {
            "user_story": 2,
            "acceptance_criteria": 1,
            "requirement": 2,
            "requirement_relationship": 1,
            "comment": 1,
        }
        edge = [d for d in report.dependencies if d.dependency_type == DependencyType.RELATIONSHIP_EDGE]
        assert edge[0].title == "REQ-001 depends_on REQ-002"

    def test_validate_changes_nothing(self, db_session, hierarchy):
        DeletionService(db_session).validate("epic", "EP-001")
        assert EpicService(db_session).get_by_id("EP-001").id == hierarchy.id

    def test_leaf_without_dependents(self, db_session, make):
        make.requirement(make.story(make.epic()))

        report = DeletionService(db_session).validate("requirement", "REQ-001")

        assert report.can_delete is True
        assert report.dependencies == []

    def test_missing_target(self, db_session):
        with pytest.raises(NotFoundError):
            DeletionService(db_session).validate("epic", "EP-404")


class TestDelete:
    def test_requires_cascade_when_dependents_exist(self, db_session, hierarchy):
        with pytest.raises(ConflictError) as exc_info:
            DeletionService(db_session).delete("epic", "EP-001", cascade=False)

        assert exc_info.value.code == "HAS_DEPENDENCIES"
        assert len(exc_info.value.details["dependencies"]) == 7
        assert EpicService(db_session).get_by_id("EP-001").id == hierarchy.id

    def test_dry_run_lists_everything_and_deletes_nothing(self, db_session, hierarchy):
        report = DeletionService(db_session).delete("epic", "EP-001", cascade=True, dry_run=True)

        assert report.dry_run is True
        assert report.deleted is False
        assert len(report.deleted_entities) == 8
        assert EpicService(db_session).get_by_id("EP-001").id == hierarchy.id

    def test_cascade_removes_the_closure(self, db_session, hierarchy, users):
        report = DeletionService(db_session).delete(
            "epic", "EP-001", cascade=True, actor_id=users["admin"].id
        )

        assert report.deleted is True
        assert report.transaction_id
        assert len(report.deleted_entities) == 8
        with pytest.raises(NotFoundError):
            EpicService(db_session).get_by_id("EP-001")
        for kind, reference in [
            ("user_story", "US-001"),
            ("user_story", "US-002"),
            ("acceptance_criteria", "AC-001"),
            ("requirement", "REQ-001"),
            ("requirement", "REQ-002"),
        ]:
            with pytest.raises(NotFoundError):
                DeletionService(db_session).validate(kind, reference)
        assert RelationshipService(db_session).list()[1] == 0

    def test_cascade_is_audited(self, db_session, hierarchy, users):
        epic_id = hierarchy.id
        report = DeletionService(db_session).delete(
            "epic", "EP-001", cascade=True, actor_id=users["admin"].id
        )

        entries = AuditService(db_session).query_by_entity("epic", epic_id)
        assert [e.action for e in entries if e.action == "deleted"] == ["deleted"]
        deleted = [e for e in entries if e.action == "deleted"][0]
        assert deleted.note == f"transaction {report.transaction_id}"
        assert deleted.actor_id == users["admin"].id

    def test_reference_numbers_are_not_reused(self, db_session, hierarchy, make):
        DeletionService(db_session).delete("epic", "EP-001", cascade=True)
        assert make.epic().reference_id == "EP-002"

    def test_deleting_criterion_unlinks_requirements(self, db_session, make):
        story = make.story(make.epic())
        criterion = make.criterion(story)
        make.requirement(story, criterion=criterion)

        report = DeletionService(db_session).validate("acceptance_criteria", "AC-001")
        assert report.can_delete is True
        assert report.warnings == ["REQ-001 will be unlinked from its acceptance criterion"]

        DeletionService(db_session).delete("acceptance_criteria", "AC-001")

        assert RequirementService(db_session).get_by_id("REQ-001").acceptance_criteria_id is None

    def test_requirement_with_edge(self, db_session, make, users):
        story = make.story(make.epic())
        make.requirement(story)
        make.requirement(story)
        RelationshipService(db_session).create("REQ-001", "REQ-002", "blocks", users["user"].id)
        service = DeletionService(db_session)

        with pytest.raises(ConflictError):
            service.delete("requirement", "REQ-002")
        service.delete("requirement", "REQ-002", cascade=True)

        assert RequirementService(db_session).get_by_id("REQ-001").reference_id == "REQ-001"
        assert RelationshipService(db_session).list_for_requirement("REQ-001")["source_edges"] == []

    def test_delete_invalidates_search_cache(self, db_session, hierarchy, search_cache):
        search_cache.set("search:epics", "{}", ["epic"])
        search_cache.set("search:comments", "{}", ["comment"])

        DeletionService(db_session).delete("epic", "EP-001", cascade=True)

        assert search_cache.get("search:epics") is None
        assert search_cache.get("search:comments") is None
