"""
Steering document endpoints.

Documents live under /api/v1/steering-documents; their links to epics under
/api/v1/epics/{epic_id}/steering-documents. Identifiers accept the UUID or
the reference ID (STD-001, EP-001).
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_any, require_editor
from ..db.base import get_db
from ..schemas.common import DEFAULT_LIMIT, ERROR_RESPONSES, Principal, list_response
from ..schemas.entities import EntityFilters
from ..schemas.steering_documents import SteeringDocumentCreate, SteeringDocumentUpdate
from ..services.steering_documents import SteeringDocumentService
from ._common import to_dicts

router = APIRouter(
    prefix="/api/v1/steering-documents", tags=["steering-documents"], responses=ERROR_RESPONSES
)
epic_router = APIRouter(
    prefix="/api/v1/epics", tags=["steering-documents"], responses=ERROR_RESPONSES
)


# =============================================================================
# Documents
# =============================================================================


@router.post("", status_code=201)
def create_steering_document(
    document: SteeringDocumentCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    created = SteeringDocumentService(db).create(document, creator_id=principal.user_id)
    return {"status": "success", "steering_document": created.to_dict()}


@router.get("")
def list_steering_documents(
    creator_id: Optional[str] = None,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    order_by: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    filters = EntityFilters(
        creator_id=creator_id, created_after=created_after, created_before=created_before
    )
    documents, total = SteeringDocumentService(db).list(
        filters, limit=limit, offset=offset, order_by=order_by
    )
    return list_response(to_dicts(documents), total, limit, offset)


@router.get("/search")
def search_steering_documents(
    query: str,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    """Ranked search over titles and descriptions."""
    return SteeringDocumentService(db).search(query, limit=limit, offset=offset)


@router.get("/{document_id}")
def get_steering_document(
    document_id: str,
    include_epics: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    service = SteeringDocumentService(db)
    if include_epics:
        return service.get_with_epics(document_id)
    return service.get_by_id(document_id).to_dict()


@router.put("/{document_id}")
def update_steering_document(
    document_id: str,
    update: SteeringDocumentUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Update title or description; creator or administrator only."""
    document = SteeringDocumentService(db).update(document_id, update, principal)
    return {"status": "success", "steering_document": document.to_dict()}


@router.delete("/{document_id}")
def delete_steering_document(
    document_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    """Delete the document and its epic links; creator or administrator only."""
    SteeringDocumentService(db).delete(document_id, principal)
    return {"status": "success", "message": f"Steering document {document_id} deleted"}


# =============================================================================
# Links to epics
# =============================================================================


@epic_router.get("/{epic_id}/steering-documents")
def list_epic_steering_documents(
    epic_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    documents = SteeringDocumentService(db).list_for_epic(epic_id)
    return {"steering_documents": to_dicts(documents), "count": len(documents)}


@epic_router.post("/{epic_id}/steering-documents/{document_id}", status_code=201)
def link_steering_document(
    epic_id: str,
    document_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    link = SteeringDocumentService(db).link_to_epic(document_id, epic_id, principal)
    return {
        "status": "success",
        "epic_id": link.epic_id,
        "steering_document_id": link.steering_document_id,
    }


@epic_router.delete("/{epic_id}/steering-documents/{document_id}")
def unlink_steering_document(
    epic_id: str,
    document_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_editor),
) -> Dict[str, Any]:
    SteeringDocumentService(db).unlink_from_epic(document_id, epic_id, principal)
    return {"status": "success", "message": f"Unlinked {document_id} from {epic_id}"}
