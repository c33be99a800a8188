"""
Acceptance criteria endpoints.

All endpoints are prefixed with /api/v1/acceptance-criteria.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_any, require_editor
from ..db.base import get_db
from ..schemas.common import DEFAULT_LIMIT, ERROR_RESPONSES, Principal, list_response
from ..schemas.entities import (
    AcceptanceCriteriaCreate,
    AcceptanceCriteriaUpdate,
    EntityFilters,
)
from ..schemas.enums import EntityType
from ..services.acceptance_criteria import AcceptanceCriteriaService
from ._common import entity_filters, register_entity_extras, to_dicts

router = APIRouter(
    prefix="/api/v1/acceptance-criteria",
    tags=["acceptance-criteria"],
    responses=ERROR_RESPONSES,
)


# =============================================================================
# Acceptance Criteria Endpoints
# =============================================================================


@router.post("", status_code=201)
def create_acceptance_criteria(
    criterion: AcceptanceCriteriaCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Create an acceptance criterion under a User Story."""
    created = AcceptanceCriteriaService(db).create(criterion, author_id=principal.user_id)
    return {"status": "success", "acceptance_criteria": created.to_dict()}


@router.get("")
def list_acceptance_criteria(
    filters: EntityFilters = Depends(entity_filters),
    order_by: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    items, total = AcceptanceCriteriaService(db).list(
        filters, limit=limit, offset=offset, order_by=order_by
    )
    return list_response(to_dicts(items), total, limit, offset)


@router.get("/{criterion_id}")
def get_acceptance_criteria(
    criterion_id: str,
    include_children: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    service = AcceptanceCriteriaService(db)
    if include_children:
        return service.get_with_children(criterion_id)
    return service.get_by_id(criterion_id).to_dict()


@router.put("/{criterion_id}")
def update_acceptance_criteria(
    criterion_id: str,
    update: AcceptanceCriteriaUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Replace the criterion text; inline comment anchors are re-checked."""
    criterion = AcceptanceCriteriaService(db).update(
        criterion_id, update, actor_id=principal.user_id
    )
    return {"status": "success", "acceptance_criteria": criterion.to_dict()}


register_entity_extras(router, EntityType.ACCEPTANCE_CRITERIA)
