"""Epic service."""

from typing import Any, Dict, List, Tuple

import structlog

from ..db.models import EpicModel, UserStoryModel
from ..schemas.entities import EpicCreate
from ..schemas.enums import EntityType
from ._base import validate_pagination
from ._lifecycle import TrackedEntityService
from .reference_ids import ReferenceIdAllocator

logger = structlog.get_logger()


class EpicService(TrackedEntityService):
    """Service for managing epics."""

    entity_type = EntityType.EPIC

    def create(self, data: EpicCreate, creator_id: str) -> EpicModel:
        """Create an epic with the next EP-NNN reference ID."""

        def work() -> EpicModel:
            fields = self._common_fields(data, creator_id)
            reference_id, number = ReferenceIdAllocator(self.db).allocate(self.entity_type)
            epic = EpicModel(reference_id=reference_id, reference_number=number, **fields)
            self.db.add(epic)
            self.db.flush()
            self.audit.log_create("epic", epic.id, epic.to_dict(), actor_id=creator_id)
            return epic

        epic = self._write("create epic", work)
        logger.info("epic_created", epic_id=epic.id, reference_id=epic.reference_id)
        return epic

    def get_with_children(self, identifier: str) -> Dict[str, Any]:
        """Epic with its user stories, their acceptance criteria and requirements."""
        return self.get_by_id(identifier).to_dict(include_children=True)

    def list_user_stories(
        self, identifier: str, limit: int = 50, offset: int = 0
    ) -> Tuple[List[UserStoryModel], int]:
        limit, offset = validate_pagination(limit, offset)
        epic = self.get_by_id(identifier)
        query = self.db.query(UserStoryModel).filter(UserStoryModel.epic_id == epic.id)
        total = query.count()
        stories = (
            query.order_by(UserStoryModel.reference_number).offset(offset).limit(limit).all()
        )
        return stories, total
