"""
User story endpoints.

All endpoints are prefixed with /api/v1/user-stories.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_any, require_editor
from ..db.base import get_db
from ..schemas.common import DEFAULT_LIMIT, ERROR_RESPONSES, Principal, list_response
from ..schemas.entities import (
    Assignment,
    EntityFilters,
    StatusChange,
    UserStoryCreate,
    UserStoryUpdate,
)
from ..schemas.enums import EntityType
from ..services.user_stories import UserStoryService
from ._common import entity_filters, register_entity_extras, to_dicts

router = APIRouter(prefix="/api/v1/user-stories", tags=["user-stories"], responses=ERROR_RESPONSES)


# =============================================================================
# User Story Endpoints
# =============================================================================


@router.post("", status_code=201)
def create_user_story(
    story: UserStoryCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Create a User Story inside an Epic."""
    created = UserStoryService(db).create(story, creator_id=principal.user_id)
    return {"status": "success", "user_story": created.to_dict()}


@router.get("")
def list_user_stories(
    filters: EntityFilters = Depends(entity_filters),
    order_by: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    stories, total = UserStoryService(db).list(
        filters, limit=limit, offset=offset, order_by=order_by
    )
    return list_response(to_dicts(stories), total, limit, offset)


@router.get("/{story_id}")
def get_user_story(
    story_id: str,
    include_children: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    service = UserStoryService(db)
    if include_children:
        return service.get_with_children(story_id)
    return service.get_by_id(story_id).to_dict()


@router.put("/{story_id}")
def update_user_story(
    story_id: str,
    update: UserStoryUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    story = UserStoryService(db).update(story_id, update, actor_id=principal.user_id)
    return {"status": "success", "user_story": story.to_dict()}


@router.patch("/{story_id}/status")
def change_user_story_status(
    story_id: str,
    change: StatusChange,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    story = UserStoryService(db).change_status(
        story_id, change.status, actor_id=principal.user_id
    )
    return {"status": "success", "user_story": story.to_dict()}


@router.patch("/{story_id}/assignment")
def assign_user_story(
    story_id: str,
    assignment: Assignment,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    story = UserStoryService(db).assign(
        story_id, assignment.assignee_id, actor_id=principal.user_id
    )
    return {"status": "success", "user_story": story.to_dict()}


@router.get("/{story_id}/acceptance-criteria")
def list_story_acceptance_criteria(
    story_id: str,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    items, total = UserStoryService(db).list_acceptance_criteria(
        story_id, limit=limit, offset=offset
    )
    return list_response(to_dicts(items), total, limit, offset)


@router.get("/{story_id}/requirements")
def list_story_requirements(
    story_id: str,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    items, total = UserStoryService(db).list_requirements(story_id, limit=limit, offset=offset)
    return list_response(to_dicts(items), total, limit, offset)


register_entity_extras(router, EntityType.USER_STORY)
