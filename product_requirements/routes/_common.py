"""
Pieces shared by the entity routers.

Every entity kind exposes the same comment, transition and deletion
endpoints under its own prefix; ``register_entity_extras`` adds them to a
router so the kind stays a literal part of each path.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import require_any, require_editor
from ..db.base import get_db
from ..schemas.comments import CommentCreate
from ..schemas.common import Principal
from ..schemas.entities import EntityFilters
from ..schemas.enums import WORKFLOW_ENTITY_TYPES, CommentStatus, EntityType
from ..services.acceptance_criteria import AcceptanceCriteriaService
from ..services.comments import CommentService
from ..services.deletion import DeletionService
from ..services.epics import EpicService
from ..services.requirements import RequirementService
from ..services.user_stories import UserStoryService

ENTITY_SERVICES = {
    EntityType.EPIC: EpicService,
    EntityType.USER_STORY: UserStoryService,
    EntityType.ACCEPTANCE_CRITERIA: AcceptanceCriteriaService,
    EntityType.REQUIREMENT: RequirementService,
}


def entity_filters(
    creator_id: Optional[str] = None,
    assignee_id: Optional[str] = None,
    author_id: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[int] = None,
    epic_id: Optional[str] = None,
    user_story_id: Optional[str] = None,
    acceptance_criteria_id: Optional[str] = None,
    type_id: Optional[str] = None,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    updated_after: Optional[datetime] = None,
    updated_before: Optional[datetime] = None,
) -> EntityFilters:
    """Collect list filters from the query string."""
    return EntityFilters(
        creator_id=creator_id,
        assignee_id=assignee_id,
        author_id=author_id,
        status=status,
        priority=priority,
        epic_id=epic_id,
        user_story_id=user_story_id,
        acceptance_criteria_id=acceptance_criteria_id,
        type_id=type_id,
        created_after=created_after,
        created_before=created_before,
        updated_after=updated_after,
        updated_before=updated_before,
    )


def to_dicts(items) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in items]


def register_entity_extras(router: APIRouter, entity_type: EntityType) -> None:
    """Add comment, transition and deletion endpoints for one entity kind."""

    # =========================================================================
    # Comments on the entity
    # =========================================================================

    @router.get("/{entity_id}/comments")
    def list_entity_comments(
        entity_id: str,
        status: Optional[CommentStatus] = None,
        threaded: bool = True,
        db: Session = Depends(get_db),
        principal: Principal = Depends(require_any),
    ) -> Dict[str, Any]:
        """Comments on the entity, threaded by default."""
        service = CommentService(db)
        if status is not None:
            comments = to_dicts(service.list_by_status(entity_type, entity_id, status))
        elif threaded:
            comments = service.get_thread(entity_type, entity_id)
        else:
            comments = to_dicts(service.list_by_entity(entity_type, entity_id))
        return {"comments": comments, "count": len(comments)}

    @router.post("/{entity_id}/comments", status_code=201)
    def create_entity_comment(
        entity_id: str,
        comment: CommentCreate,
        db: Session = Depends(get_db),
        principal: Principal = Depends(require_any),
    ) -> Dict[str, Any]:
        """Create a plain, reply or inline comment on the entity."""
        created = CommentService(db).create(entity_type, entity_id, comment, principal.user_id)
        return {"status": "success", "comment": created.to_dict()}

    @router.get("/{entity_id}/comments/inline")
    def list_visible_inline_comments(
        entity_id: str,
        db: Session = Depends(get_db),
        principal: Principal = Depends(require_any),
    ) -> Dict[str, Any]:
        """Inline comments whose anchors still match the description."""
        comments = CommentService(db).get_visible_inline_comments(entity_type, entity_id)
        return {"comments": to_dicts(comments), "count": len(comments)}

    # =========================================================================
    # Workflow
    # =========================================================================

    if entity_type in WORKFLOW_ENTITY_TYPES:

        @router.get("/{entity_id}/transitions")
        def list_transitions(
            entity_id: str,
            db: Session = Depends(get_db),
            principal: Principal = Depends(require_any),
        ) -> Dict[str, Any]:
            """Statuses the entity may move to from its current status."""
            service = ENTITY_SERVICES[entity_type](db)
            entity = service.get_by_id(entity_id)
            return {
                "current_status": entity.status,
                "transitions": service.allowed_transitions(entity.id),
            }

    # =========================================================================
    # Deletion
    # =========================================================================

    @router.get("/{entity_id}/deletion-check")
    def validate_deletion(
        entity_id: str,
        db: Session = Depends(get_db),
        principal: Principal = Depends(require_editor),
    ) -> Dict[str, Any]:
        """Dependency report for deleting the entity."""
        return DeletionService(db).validate(entity_type, entity_id).model_dump(mode="json")

    @router.delete("/{entity_id}")
    def delete_entity(
        entity_id: str,
        cascade: bool = Query(False, description="Delete every dependent as well"),
        dry_run: bool = Query(False, description="Report without deleting"),
        db: Session = Depends(get_db),
        principal: Principal = Depends(require_editor),
    ) -> Dict[str, Any]:
        """Delete the entity through the deletion planner."""
        report = DeletionService(db).delete(
            entity_type,
            entity_id,
            cascade=cascade,
            dry_run=dry_run,
            actor_id=principal.user_id,
        )
        return report.model_dump(mode="json")
