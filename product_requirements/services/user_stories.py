"""User story service."""

from typing import Any, Dict, List, Tuple

import structlog

from ..db.models import AcceptanceCriteriaModel, RequirementModel, UserStoryModel
from ..errors import InputValidationError
from ..schemas.entities import UserStoryCreate
from ..schemas.enums import EntityType
from ._base import validate_pagination
from ._lifecycle import TrackedEntityService
from .reference_ids import ReferenceIdAllocator, find_entity

logger = structlog.get_logger()


class UserStoryService(TrackedEntityService):
    """Service for managing user stories. Every story belongs to one epic."""

    entity_type = EntityType.USER_STORY
    filter_columns = {
        "creator_id": "creator_id",
        "assignee_id": "assignee_id",
        "epic_id": "epic_id",
    }

    def create(self, data: UserStoryCreate, creator_id: str) -> UserStoryModel:
        def work() -> UserStoryModel:
            epic = find_entity(self.db, EntityType.EPIC, data.epic_id)
            if epic is None:
                raise InputValidationError(f"epic_id '{data.epic_id}' does not reference an existing epic")
            fields = self._common_fields(data, creator_id)
            reference_id, number = ReferenceIdAllocator(self.db).allocate(self.entity_type)
            story = UserStoryModel(
                reference_id=reference_id,
                reference_number=number,
                epic_id=epic.id,
                **fields,
            )
            self.db.add(story)
            self.db.flush()
            self.audit.log_create("user_story", story.id, story.to_dict(), actor_id=creator_id)
            return story

        story = self._write("create user story", work)
        logger.info(
            "user_story_created",
            user_story_id=story.id,
            reference_id=story.reference_id,
            epic_id=story.epic_id,
        )
        return story

    def get_with_children(self, identifier: str) -> Dict[str, Any]:
        """User story with its acceptance criteria and requirements."""
        story = self.get_by_id(identifier)
        result = story.to_dict(include_children=True)
        result["epic"] = {
            "id": story.epic.id,
            "reference_id": story.epic.reference_id,
            "title": story.epic.title,
        }
        return result

    def list_acceptance_criteria(
        self, identifier: str, limit: int = 50, offset: int = 0
    ) -> Tuple[List[AcceptanceCriteriaModel], int]:
        limit, offset = validate_pagination(limit, offset)
        story = self.get_by_id(identifier)
        query = self.db.query(AcceptanceCriteriaModel).filter(
            AcceptanceCriteriaModel.user_story_id == story.id
        )
        total = query.count()
        items = (
            query.order_by(AcceptanceCriteriaModel.reference_number)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def list_requirements(
        self, identifier: str, limit: int = 50, offset: int = 0
    ) -> Tuple[List[RequirementModel], int]:
        limit, offset = validate_pagination(limit, offset)
        story = self.get_by_id(identifier)
        query = self.db.query(RequirementModel).filter(RequirementModel.user_story_id == story.id)
        total = query.count()
        items = query.order_by(RequirementModel.reference_number).offset(offset).limit(limit).all()
        return items, total
