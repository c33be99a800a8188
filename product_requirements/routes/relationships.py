"""
Requirement relationship endpoints.

All endpoints are prefixed with /api/v1/relationships.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_any, require_editor
from ..db.base import get_db
from ..schemas.common import DEFAULT_LIMIT, ERROR_RESPONSES, Principal, list_response
from ..schemas.relationships import RelationshipCreate
from ..services.relationships import RelationshipService
from ._common import to_dicts

router = APIRouter(prefix="/api/v1/relationships", tags=["relationships"], responses=ERROR_RESPONSES)


@router.post("", status_code=201)
def create_relationship(
    relationship: RelationshipCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Add a typed edge; rejected if it would close a cycle of that type."""
    edge = RelationshipService(db).create(
        relationship.source_requirement_id,
        relationship.target_requirement_id,
        relationship.relationship_type,
        created_by=principal.user_id,
    )
    return {"status": "success", "relationship": edge.to_dict()}


@router.get("")
def list_relationships(
    relationship_type: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    edges, total = RelationshipService(db).list(relationship_type, limit=limit, offset=offset)
    return list_response(to_dicts(edges), total, limit, offset)


@router.get("/{relationship_id}")
def get_relationship(
    relationship_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    return RelationshipService(db).get(relationship_id).to_dict()


@router.delete("/{relationship_id}")
def delete_relationship(
    relationship_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    RelationshipService(db).delete(relationship_id, actor_id=principal.user_id)
    return {"status": "success", "message": f"Relationship {relationship_id} deleted"}
