"""
Reference data and workflow configuration endpoints.

All endpoints are prefixed with /api/v1/config. Reads are open to every
role; writes require an Administrator.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_admin, require_any
from ..db.base import get_db
from ..schemas.common import ERROR_RESPONSES, Principal
from ..schemas.config import (
    RelationshipTypeCreate,
    RelationshipTypeUpdate,
    RequirementTypeCreate,
    RequirementTypeUpdate,
    StatusCreate,
    StatusModelCreate,
    StatusModelUpdate,
    StatusUpdate,
    TransitionCreate,
)
from ..services.config import ConfigService, ReferenceDataService
from ._common import to_dicts

router = APIRouter(prefix="/api/v1/config", tags=["config"], responses=ERROR_RESPONSES)


# =============================================================================
# Requirement Types
# =============================================================================


@router.get("/requirement-types")
def list_requirement_types(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    types = ReferenceDataService(db).list_requirement_types()
    return {"requirement_types": to_dicts(types), "count": len(types)}


@router.get("/requirement-types/{type_id}")
def get_requirement_type(
    type_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    return ReferenceDataService(db).get_requirement_type(type_id).to_dict()


@router.post("/requirement-types", status_code=201)
def create_requirement_type(
    data: RequirementTypeCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    created = ConfigService(db, principal).create_requirement_type(data)
    return {"status": "success", "requirement_type": created.to_dict()}


@router.put("/requirement-types/{type_id}")
def update_requirement_type(
    type_id: str,
    data: RequirementTypeUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    updated = ConfigService(db, principal).update_requirement_type(type_id, data)
    return {"status": "success", "requirement_type": updated.to_dict()}


@router.delete("/requirement-types/{type_id}")
def delete_requirement_type(
    type_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    ConfigService(db, principal).delete_requirement_type(type_id)
    return {"status": "success", "message": f"Requirement type {type_id} deleted"}


# =============================================================================
# Relationship Types
# =============================================================================


@router.get("/relationship-types")
def list_relationship_types(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    types = ReferenceDataService(db).list_relationship_types()
    return {"relationship_types": to_dicts(types), "count": len(types)}


@router.get("/relationship-types/{type_id}")
def get_relationship_type(
    type_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    return ReferenceDataService(db).get_relationship_type(type_id).to_dict()


@router.post("/relationship-types", status_code=201)
def create_relationship_type(
    data: RelationshipTypeCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    created = ConfigService(db, principal).create_relationship_type(data)
    return {"status": "success", "relationship_type": created.to_dict()}


@router.put("/relationship-types/{type_id}")
def update_relationship_type(
    type_id: str,
    data: RelationshipTypeUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    updated = ConfigService(db, principal).update_relationship_type(type_id, data)
    return {"status": "success", "relationship_type": updated.to_dict()}


@router.delete("/relationship-types/{type_id}")
def delete_relationship_type(
    type_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    ConfigService(db, principal).delete_relationship_type(type_id)
    return {"status": "success", "message": f"Relationship type {type_id} deleted"}


# =============================================================================
# Status Models
# =============================================================================


@router.get("/status-models")
def list_status_models(
    entity_type: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    models = ReferenceDataService(db).list_status_models(entity_type)
    return {"status_models": to_dicts(models), "count": len(models)}


@router.get("/status-models/default/{entity_type}")
def get_default_status_model(
    entity_type: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    """The workflow currently governing an entity type."""
    model = ReferenceDataService(db).get_default_status_model(entity_type)
    return model.to_dict(include_children=True)


@router.get("/status-models/{model_id}")
def get_status_model(
    model_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    return ReferenceDataService(db).get_status_model(model_id).to_dict(include_children=True)


@router.post("/status-models", status_code=201)
def create_status_model(
    data: StatusModelCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    model = ConfigService(db, principal).create_status_model(data)
    return {"status": "success", "status_model": model.to_dict(include_children=True)}


@router.put("/status-models/{model_id}")
def update_status_model(
    model_id: str,
    data: StatusModelUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    model = ConfigService(db, principal).update_status_model(model_id, data)
    return {"status": "success", "status_model": model.to_dict()}


@router.delete("/status-models/{model_id}")
def delete_status_model(
    model_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    ConfigService(db, principal).delete_status_model(model_id)
    return {"status": "success", "message": f"Status model {model_id} deleted"}


@router.post("/status-models/{model_id}/default")
def set_default_status_model(
    model_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    """Activate a workflow; entities holding statuses it lacks are listed."""
    model, orphaned = ConfigService(db, principal).set_default(model_id)
    return {
        "status": "success",
        "status_model": model.to_dict(include_children=True),
        "entities_outside_workflow": orphaned,
    }


# =============================================================================
# Statuses and Transitions
# =============================================================================


@router.post("/status-models/{model_id}/statuses", status_code=201)
def add_status(
    model_id: str,
    data: StatusCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    created = ConfigService(db, principal).add_status(model_id, data)
    return {"status": "success", "status_entry": created.to_dict()}


@router.put("/statuses/{status_id}")
def update_status(
    status_id: str,
    data: StatusUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    updated = ConfigService(db, principal).update_status(status_id, data)
    return {"status": "success", "status_entry": updated.to_dict()}


@router.delete("/statuses/{status_id}")
def delete_status(
    status_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    ConfigService(db, principal).delete_status(status_id)
    return {"status": "success", "message": f"Status {status_id} deleted"}


@router.post("/status-models/{model_id}/transitions", status_code=201)
def add_transition(
    model_id: str,
    data: TransitionCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    created = ConfigService(db, principal).add_transition(model_id, data)
    return {"status": "success", "transition": created.to_dict()}


@router.delete("/transitions/{transition_id}")
def delete_transition(
    transition_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    ConfigService(db, principal).delete_transition(transition_id)
    return {"status": "success", "message": f"Transition {transition_id} deleted"}
