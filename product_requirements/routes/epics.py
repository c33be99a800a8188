"""
Epic endpoints.

All endpoints are prefixed with /api/v1/epics. Identifiers accept either the
UUID or the reference ID (EP-001).
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_any, require_editor
from ..db.base import get_db
from ..schemas.common import DEFAULT_LIMIT, ERROR_RESPONSES, Principal, list_response
from ..schemas.entities import Assignment, EntityFilters, EpicCreate, EpicUpdate, StatusChange
from ..schemas.enums import EntityType
from ..services.epics import EpicService
from ._common import entity_filters, register_entity_extras, to_dicts

router = APIRouter(prefix="/api/v1/epics", tags=["epics"], responses=ERROR_RESPONSES)


# =============================================================================
# Epic Endpoints
# =============================================================================


@router.post("", status_code=201)
def create_epic(
    epic: EpicCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Create a new Epic."""
    created = EpicService(db).create(epic, creator_id=principal.user_id)
    return {"status": "success", "epic": created.to_dict()}


@router.get("")
def list_epics(
    filters: EntityFilters = Depends(entity_filters),
    order_by: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    """List Epics with optional filtering."""
    epics, total = EpicService(db).list(filters, limit=limit, offset=offset, order_by=order_by)
    return list_response(to_dicts(epics), total, limit, offset)


@router.get("/{epic_id}")
def get_epic(
    epic_id: str,
    include_children: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    """Get an Epic by UUID or reference ID."""
    service = EpicService(db)
    if include_children:
        return service.get_with_children(epic_id)
    return service.get_by_id(epic_id).to_dict()


@router.put("/{epic_id}")
def update_epic(
    epic_id: str,
    update: EpicUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Update title, description or priority."""
    epic = EpicService(db).update(epic_id, update, actor_id=principal.user_id)
    return {"status": "success", "epic": epic.to_dict()}


@router.patch("/{epic_id}/status")
def change_epic_status(
    epic_id: str,
    change: StatusChange,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Move the Epic along its workflow."""
    epic = EpicService(db).change_status(epic_id, change.status, actor_id=principal.user_id)
    return {"status": "success", "epic": epic.to_dict()}


@router.patch("/{epic_id}/assignment")
def assign_epic(
    epic_id: str,
    assignment: Assignment,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    epic = EpicService(db).assign(epic_id, assignment.assignee_id, actor_id=principal.user_id)
    return {"status": "success", "epic": epic.to_dict()}


@router.get("/{epic_id}/user-stories")
def list_epic_user_stories(
    epic_id: str,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    """User stories contained in the Epic."""
    stories, total = EpicService(db).list_user_stories(epic_id, limit=limit, offset=offset)
    return list_response(to_dicts(stories), total, limit, offset)


register_entity_extras(router, EntityType.EPIC)
