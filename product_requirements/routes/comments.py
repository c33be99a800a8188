"""
Comment endpoints that address a comment directly.

Creating and listing comments on an entity lives under the entity's own
prefix (see routes/_common.py).
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import require_any
from ..db.base import get_db
from ..schemas.comments import CommentUpdate, ReplyCreate
from ..schemas.common import ERROR_RESPONSES, Principal
from ..services.comments import CommentService
from ._common import to_dicts

router = APIRouter(prefix="/api/v1/comments", tags=["comments"], responses=ERROR_RESPONSES)


# =============================================================================
# Comment Endpoints
# =============================================================================


@router.get("/{comment_id}")
def get_comment(
    comment_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    return CommentService(db).get(comment_id).to_dict()


@router.put("/{comment_id}")
def update_comment(
    comment_id: str,
    update: CommentUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    """Edit comment text; only the author or an Administrator may."""
    comment = CommentService(db).update_content(comment_id, update.content, principal)
    return {"status": "success", "comment": comment.to_dict()}


@router.delete("/{comment_id}")
def delete_comment(
    comment_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    CommentService(db).delete_comment(comment_id, principal)
    return {"status": "success", "message": f"Comment {comment_id} deleted"}


@router.get("/{comment_id}/replies")
def list_replies(
    comment_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    replies = CommentService(db).list_replies(comment_id)
    return {"comments": to_dicts(replies), "count": len(replies)}


@router.post("/{comment_id}/replies", status_code=201)
def create_reply(
    comment_id: str,
    reply: ReplyCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    created = CommentService(db).create_reply(comment_id, principal.user_id, reply.content)
    return {"status": "success", "comment": created.to_dict()}


@router.post("/{comment_id}/resolve")
def resolve_comment(
    comment_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    comment = CommentService(db).resolve(comment_id, principal.user_id)
    return {"status": "success", "comment": comment.to_dict()}


@router.post("/{comment_id}/unresolve")
def unresolve_comment(
    comment_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    comment = CommentService(db).unresolve(comment_id, principal.user_id)
    return {"status": "success", "comment": comment.to_dict()}
