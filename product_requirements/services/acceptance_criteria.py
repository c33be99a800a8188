"""Acceptance criteria service.

Acceptance criteria have no workflow status and no title: they are EARS-style
statements owned by a user story, optionally referenced by requirements.
"""

from typing import Any, Dict

import structlog

from ..db.models import AcceptanceCriteriaModel, utc_now
from ..errors import InputValidationError
from ..schemas.entities import AcceptanceCriteriaCreate
from ..schemas.enums import EntityType
from ._base import validate_text
from ._lifecycle import DescribedEntityService
from .reference_ids import ReferenceIdAllocator, find_entity

logger = structlog.get_logger()


class AcceptanceCriteriaService(DescribedEntityService):
    """Service for managing acceptance criteria."""

    entity_type = EntityType.ACCEPTANCE_CRITERIA
    orderable_fields = ("created_at", "updated_at", "reference_id")
    filter_columns = {
        "author_id": "author_id",
        "creator_id": "author_id",
        "user_story_id": "user_story_id",
    }

    def create(self, data: AcceptanceCriteriaCreate, author_id: str) -> AcceptanceCriteriaModel:
        description = validate_text(data.description, "description")

        def work() -> AcceptanceCriteriaModel:
            story = find_entity(self.db, EntityType.USER_STORY, data.user_story_id)
            if story is None:
                raise InputValidationError(
                    f"user_story_id '{data.user_story_id}' does not reference an existing user story"
                )
            self.users.require_existing(author_id, "author_id")
            reference_id, number = ReferenceIdAllocator(self.db).allocate(self.entity_type)
            now = utc_now()
            criterion = AcceptanceCriteriaModel(
                reference_id=reference_id,
                reference_number=number,
                user_story_id=story.id,
                author_id=author_id,
                description=description,
                created_at=now,
                updated_at=now,
            )
            self.db.add(criterion)
            self.db.flush()
            self.audit.log_create(
                "acceptance_criteria", criterion.id, criterion.to_dict(), actor_id=author_id
            )
            return criterion

        criterion = self._write("create acceptance criteria", work)
        logger.info(
            "acceptance_criteria_created",
            acceptance_criteria_id=criterion.id,
            reference_id=criterion.reference_id,
            user_story_id=criterion.user_story_id,
        )
        return criterion

    def _normalize_changes(self, entity, changes: Dict[str, Any]) -> Dict[str, Any]:
        if "description" in changes:
            return {"description": validate_text(changes["description"], "description")}
        return {}

    def get_with_children(self, identifier: str) -> Dict[str, Any]:
        """Acceptance criterion with the requirements that reference it."""
        criterion = self.get_by_id(identifier)
        result = criterion.to_dict(include_children=True)
        result["user_story"] = {
            "id": criterion.user_story.id,
            "reference_id": criterion.user_story.reference_id,
            "title": criterion.user_story.title,
        }
        return result
