"""
Requirement endpoints.

All endpoints are prefixed with /api/v1/requirements. Relationship edges
between requirements live in routes/relationships.py.
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
    RequirementCreate,
    RequirementUpdate,
    StatusChange,
)
from ..schemas.enums import EntityType
from ..services.relationships import RelationshipService
from ..services.requirements import RequirementService
from ._common import entity_filters, register_entity_extras, to_dicts

router = APIRouter(prefix="/api/v1/requirements", tags=["requirements"], responses=ERROR_RESPONSES)


# =============================================================================
# Requirement Endpoints
# =============================================================================


@router.post("", status_code=201)
def create_requirement(
    requirement: RequirementCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Create a Requirement inside a User Story."""
    created = RequirementService(db).create(requirement, creator_id=principal.user_id)
    return {"status": "success", "requirement": created.to_dict()}


@router.get("")
def list_requirements(
    filters: EntityFilters = Depends(entity_filters),
    order_by: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    items, total = RequirementService(db).list(
        filters, limit=limit, offset=offset, order_by=order_by
    )
    return list_response(to_dicts(items), total, limit, offset)


@router.get("/{requirement_id}")
def get_requirement(
    requirement_id: str,
    include_children: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    service = RequirementService(db)
    if include_children:
        return service.get_with_children(requirement_id)
    return service.get_by_id(requirement_id).to_dict()


@router.put("/{requirement_id}")
def update_requirement(
    requirement_id: str,
    update: RequirementUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    requirement = RequirementService(db).update(
        requirement_id, update, actor_id=principal.user_id
    )
    return {"status": "success", "requirement": requirement.to_dict()}


@router.patch("/{requirement_id}/status")
def change_requirement_status(
    requirement_id: str,
    change: StatusChange,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    requirement = RequirementService(db).change_status(
        requirement_id, change.status, actor_id=principal.user_id
    )
    return {"status": "success", "requirement": requirement.to_dict()}


@router.patch("/{requirement_id}/assignment")
def assign_requirement(
    requirement_id: str,
    assignment: Assignment,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    requirement = RequirementService(db).assign(
        requirement_id, assignment.assignee_id, actor_id=principal.user_id
    )
    return {"status": "success", "requirement": requirement.to_dict()}


@router.get("/{requirement_id}/relationships")
def list_requirement_relationships(
    requirement_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    """Edges leaving and entering the Requirement."""
    edges = RelationshipService(db).list_for_requirement(requirement_id)
    return {kind: to_dicts(items) for kind, items in edges.items()}


register_entity_extras(router, EntityType.REQUIREMENT)
