"""Tests for the requirement service."""

import pytest

from product_requirements.errors import InputValidationError
from product_requirements.schemas.entities import EntityFilters, RequirementUpdate
from product_requirements.services.relationships import RelationshipService
from product_requirements.services.requirements import RequirementService


class TestRequirements:
    def test_create_with_type_name(self, make):
        story = make.story(make.epic())
        requirement = make.requirement(story, type_id="non-functional", priority=1)

        assert requirement.reference_id == "REQ-001"
        assert requirement.status == "Draft"
        assert requirement.requirement_type.name == "Non-Functional"

    def test_unknown_type_rejected(self, make):
        story = make.story(make.epic())
        with pytest.raises(InputValidationError):
            make.requirement(story, type_id="Aspirational")

    def test_criterion_must_belong_to_same_story(self, make):
        epic = make.epic()
        first = make.story(epic)
        second = make.story(epic)
        foreign = make.criterion(second)

        with pytest.raises(InputValidationError) as exc_info:
            make.requirement(first, criterion=foreign)
        assert "AC-001" in exc_info.value.message

    def test_workflow(self, db_session, make):
        make.requirement(make.story(make.epic()))
        service = RequirementService(db_session)

        assert service.change_status("REQ-001", "active").status == "Active"
        with pytest.raises(InputValidationError):
            service.change_status("REQ-001", "Shipped")
        assert {t["to_status"] for t in service.allowed_transitions("REQ-001")} == {
            "Draft",
            "Obsolete",
        }

    def test_update_links_and_unlinks_criterion(self, db_session, make):
        story = make.story(make.epic())
        criterion = make.criterion(story)
        make.requirement(story)
        service = RequirementService(db_session)

        linked = service.update("REQ-001", RequirementUpdate(acceptance_criteria_id="AC-001"))
        assert linked.acceptance_criteria_id == criterion.id
        unlinked = service.update("REQ-001", RequirementUpdate(acceptance_criteria_id=None))
        assert unlinked.acceptance_criteria_id is None

    def test_filter_by_type_and_story(self, db_session, make):
        epic = make.epic()
        first = make.story(epic)
        second = make.story(epic)
        functional = make.requirement(first)
        make.requirement(second, type_id="Data")
        service = RequirementService(db_session)

        items, total = service.list(EntityFilters(type_id=functional.type_id))
        assert total == 1
        assert items[0].reference_id == "REQ-001"
        _, total = service.list(EntityFilters(user_story_id="US-002"))
        assert total == 1

    def test_get_with_children_includes_relationships(self, db_session, make, users):
        story = make.story(make.epic())
        make.requirement(story)
        make.requirement(story)
        RelationshipService(db_session).create("REQ-001", "REQ-002", "depends_on", users["user"].id)

        source = RequirementService(db_session).get_with_children("REQ-001")
        target = RequirementService(db_session).get_with_children("REQ-002")

        assert source["type"]["name"] == "Functional"
        assert [r["target_reference_id"] for r in source["source_relationships"]] == ["REQ-002"]
        assert [r["source_reference_id"] for r in target["target_relationships"]] == ["REQ-001"]
        assert source["acceptance_criteria"] is None
