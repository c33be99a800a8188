"""Requirement service."""

from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ..db.models import (
    AcceptanceCriteriaModel,
    RequirementModel,
    RequirementRelationshipModel,
    RequirementTypeModel,
)
from ..errors import InputValidationError
from ..schemas.entities import RequirementCreate
from ..schemas.enums import EntityType
from ._lifecycle import TrackedEntityService
from .reference_ids import ReferenceIdAllocator, find_entity

logger = structlog.get_logger()


def find_requirement_type(db: Session, value: str) -> Optional[RequirementTypeModel]:
    """Requirement type by id, or by case-insensitive name."""
    if not value:
        return None
    found = db.get(RequirementTypeModel, value)
    if found is not None:
        return found
    return (
        db.query(RequirementTypeModel)
        .filter(RequirementTypeModel.name.ilike(value.strip()))
        .first()
    )


class RequirementService(TrackedEntityService):
    """Service for managing requirements."""

    entity_type = EntityType.REQUIREMENT
    filter_columns = {
        "creator_id": "creator_id",
        "assignee_id": "assignee_id",
        "user_story_id": "user_story_id",
        "acceptance_criteria_id": "acceptance_criteria_id",
        "type_id": "type_id",
    }

    def _require_type(self, value: str) -> RequirementTypeModel:
        requirement_type = find_requirement_type(self.db, value)
        if requirement_type is None:
            raise InputValidationError(f"type_id '{value}' does not reference an existing requirement type")
        return requirement_type

    def _require_criterion(self, value: str, user_story_id: str) -> AcceptanceCriteriaModel:
        criterion = find_entity(self.db, EntityType.ACCEPTANCE_CRITERIA, value)
        if criterion is None:
            raise InputValidationError(
                f"acceptance_criteria_id '{value}' does not reference existing acceptance criteria"
            )
        if criterion.user_story_id != user_story_id:
            raise InputValidationError(
                f"{criterion.reference_id} belongs to a different user story"
            )
        return criterion

    def create(self, data: RequirementCreate, creator_id: str) -> RequirementModel:
        def work() -> RequirementModel:
            story = find_entity(self.db, EntityType.USER_STORY, data.user_story_id)
            if story is None:
                raise InputValidationError(
                    f"user_story_id '{data.user_story_id}' does not reference an existing user story"
                )
            requirement_type = self._require_type(data.type_id)
            criterion_id = None
            if data.acceptance_criteria_id:
                criterion_id = self._require_criterion(data.acceptance_criteria_id, story.id).id
            fields = self._common_fields(data, creator_id)
            reference_id, number = ReferenceIdAllocator(self.db).allocate(self.entity_type)
            requirement = RequirementModel(
                reference_id=reference_id,
                reference_number=number,
                user_story_id=story.id,
                acceptance_criteria_id=criterion_id,
                type_id=requirement_type.id,
                **fields,
            )
            self.db.add(requirement)
            self.db.flush()
            self.audit.log_create(
                "requirement", requirement.id, requirement.to_dict(), actor_id=creator_id
            )
            return requirement

        requirement = self._write("create requirement", work)
        logger.info(
            "requirement_created",
            requirement_id=requirement.id,
            reference_id=requirement.reference_id,
            user_story_id=requirement.user_story_id,
        )
        return requirement

    def _normalize_changes(self, entity, changes: Dict[str, Any]) -> Dict[str, Any]:
        normalized = super()._normalize_changes(entity, changes)
        if "type_id" in changes:
            normalized["type_id"] = self._require_type(changes["type_id"]).id
        if "acceptance_criteria_id" in changes:
            value = changes["acceptance_criteria_id"]
            normalized["acceptance_criteria_id"] = (
                self._require_criterion(value, entity.user_story_id).id if value else None
            )
        return normalized

    def get_with_children(self, identifier: str) -> Dict[str, Any]:
        """Requirement with its type, parent story, criterion and relationships."""
        requirement = self.get_by_id(identifier)
        result = requirement.to_dict(include_children=True)
        result["user_story"] = {
            "id": requirement.user_story.id,
            "reference_id": requirement.user_story.reference_id,
            "title": requirement.user_story.title,
        }
        criterion = requirement.acceptance_criteria
        result["acceptance_criteria"] = (
            {"id": criterion.id, "reference_id": criterion.reference_id} if criterion else None
        )
        edges = self.db.query(RequirementRelationshipModel)
        result["source_relationships"] = [
            e.to_dict()
            for e in edges.filter(
                RequirementRelationshipModel.source_requirement_id == requirement.id
            ).all()
        ]
        result["target_relationships"] = [
            e.to_dict()
            for e in edges.filter(
                RequirementRelationshipModel.target_requirement_id == requirement.id
            ).all()
        ]
        return result
