"""Tests for typed requirement relationships and cycle prevention."""

import pytest

from product_requirements.db.audit import AuditService
from product_requirements.errors import ConflictError, InputValidationError, NotFoundError
from product_requirements.services.relationships import RelationshipService


@pytest.fixture
def requirements(make):
    story = make.story(make.epic())
    return [make.requirement(story, title=title) for title in ("A", "B", "C")]


class TestCreateRelationship:
    def test_cycle_is_rejected_per_type(self, db_session, users, requirements):
        a, b, c = requirements
        service = RelationshipService(db_session)
        author = users["user"].id

        service.create("REQ-001", "REQ-002", "depends_on", author)
        service.create("REQ-002", "REQ-003", "depends_on", author)

        with pytest.raises(ConflictError) as exc_info:
            service.create("REQ-003", "REQ-001", "depends_on", author)
        assert exc_info.value.code == "CYCLE"
        assert exc_info.value.details["path"] == [a.id, b.id, c.id]

        edge = service.create("REQ-003", "REQ-001", "relates_to", author)
        assert edge.source_requirement_id == c.id
        assert edge.target_requirement_id == a.id

    def test_self_relationship_rejected(self, db_session, users, requirements):
        with pytest.raises(InputValidationError) as exc_info:
            RelationshipService(db_session).create(
                "REQ-001", "REQ-001", "blocks", users["user"].id
            )
        assert exc_info.value.code == "CIRCULAR_RELATIONSHIP"

    def test_duplicate_rejected(self, db_session, users, requirements):
        service = RelationshipService(db_session)
        service.create("REQ-001", "REQ-002", "blocks", users["user"].id)

        with pytest.raises(ConflictError) as exc_info:
            service.create("REQ-001", "REQ-002", "Blocks", users["user"].id)
        assert exc_info.value.code == "DUPLICATE_RELATIONSHIP"

    def test_reverse_edge_of_other_type_allowed(self, db_session, users, requirements):
        service = RelationshipService(db_session)
        service.create("REQ-001", "REQ-002", "blocks", users["user"].id)
        service.create("REQ-002", "REQ-001", "derives_from", users["user"].id)

        edges, total = service.list()
        assert total == 2

    @pytest.mark.parametrize(
        "source,target,kind",
        [
            ("REQ-404", "REQ-001", "blocks"),
            ("REQ-001", "REQ-404", "blocks"),
            ("REQ-001", "REQ-002", "mirrors"),
        ],
    )
    def test_missing_endpoint_or_type(self, db_session, users, requirements, source, target, kind):
        with pytest.raises(NotFoundError):
            RelationshipService(db_session).create(source, target, kind, users["user"].id)

    def test_creation_is_audited_as_link(self, db_session, users, requirements):
        a, b, _ = requirements
        RelationshipService(db_session).create("REQ-001", "REQ-002", "blocks", users["user"].id)

        links = [
            e
            for e in AuditService(db_session).query_by_entity("requirement", a.id)
            if e.action == "linked"
        ]
        assert len(links) == 1
        assert links[0].after == {"linked_kind": "requirement", "linked_id": b.id}


class TestQueryRelationships:
    def test_list_for_requirement(self, db_session, users, requirements):
        a, b, c = requirements
        service = RelationshipService(db_session)
        service.create("REQ-001", "REQ-002", "depends_on", users["user"].id)
        service.create("REQ-003", "REQ-002", "conflicts_with", users["user"].id)

        edges = service.list_for_requirement("REQ-002")

        assert edges["source_edges"] == []
        assert {e.source_requirement_id for e in edges["target_edges"]} == {a.id, c.id}

    def test_list_filtered_by_type(self, db_session, users, requirements):
        service = RelationshipService(db_session)
        service.create("REQ-001", "REQ-002", "depends_on", users["user"].id)
        service.create("REQ-002", "REQ-003", "relates_to", users["user"].id)

        edges, total = service.list(relationship_type="relates_to")
        assert total == 1
        with pytest.raises(NotFoundError):
            service.list(relationship_type="mirrors")

    def test_delete(self, db_session, users, requirements):
        service = RelationshipService(db_session)
        edge = service.create("REQ-001", "REQ-002", "depends_on", users["user"].id)

        service.delete(edge.id, actor_id=users["user"].id)

        with pytest.raises(NotFoundError):
            service.get(edge.id)
        # The reverse edge no longer closes a cycle
        service.create("REQ-002", "REQ-001", "depends_on", users["user"].id)
