"""Tests for the acceptance criteria service."""

import pytest

from product_requirements.errors import InputValidationError
from product_requirements.schemas.entities import (
    AcceptanceCriteriaCreate,
    AcceptanceCriteriaUpdate,
    EntityFilters,
)
from product_requirements.services.acceptance_criteria import AcceptanceCriteriaService


class TestAcceptanceCriteria:
    def test_create(self, make, users):
        story = make.story(make.epic())
        criterion = make.criterion(story, description="  WHEN offline THE SYSTEM SHALL queue  ")

        assert criterion.reference_id == "AC-001"
        assert criterion.description == "WHEN offline THE SYSTEM SHALL queue"
        assert criterion.author_id == users["user"].id
        assert criterion.user_story_id == story.id

    def test_blank_description_rejected(self, db_session, make, users):
        make.story(make.epic())
        with pytest.raises(InputValidationError):
            AcceptanceCriteriaService(db_session).create(
                AcceptanceCriteriaCreate(user_story_id="US-001", description="   "),
                author_id=users["user"].id,
            )

    def test_unknown_story_rejected(self, db_session, users):
        with pytest.raises(InputValidationError):
            AcceptanceCriteriaService(db_session).create(
                AcceptanceCriteriaCreate(user_story_id="US-404", description="Anything"),
                author_id=users["user"].id,
            )

    def test_has_no_status_or_title(self, db_session, make):
        make.criterion(make.story(make.epic()))
        service = AcceptanceCriteriaService(db_session)

        with pytest.raises(InputValidationError):
            service.list(EntityFilters(status="Backlog"))
        with pytest.raises(InputValidationError):
            service.list(order_by="title")

    def test_filter_by_author(self, db_session, make, users):
        make.criterion(make.story(make.epic()))
        service = AcceptanceCriteriaService(db_session)

        _, total = service.list(EntityFilters(author_id=users["user"].id))
        assert total == 1
        _, total = service.list(EntityFilters(author_id=users["admin"].id))
        assert total == 0

    def test_update_description(self, db_session, make):
        make.criterion(make.story(make.epic()))
        service = AcceptanceCriteriaService(db_session)

        updated = service.update("AC-001", AcceptanceCriteriaUpdate(description="Revised"))
        assert updated.description == "Revised"
        with pytest.raises(InputValidationError):
            service.update("AC-001", AcceptanceCriteriaUpdate(description=""))

    def test_get_with_children_lists_linked_requirements(self, db_session, make):
        story = make.story(make.epic(), title="Checkout")
        criterion = make.criterion(story)
        make.requirement(story, title="Linked", criterion=criterion)
        make.requirement(story, title="Unlinked")

        result = AcceptanceCriteriaService(db_session).get_with_children("AC-001")

        assert result["user_story"]["reference_id"] == "US-001"
        assert [r["title"] for r in result["requirements"]] == ["Linked"]
