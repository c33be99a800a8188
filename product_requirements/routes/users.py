"""
Authentication, user administration and audit journal endpoints.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import issue_token, require_admin, require_any
from ..config import get_settings
from ..db.audit import AuditService
from ..db.base import get_db
from ..errors import AuthenticationError, InputValidationError
from ..schemas.common import DEFAULT_LIMIT, ERROR_RESPONSES, Principal, list_response
from ..schemas.enums import Role
from ..schemas.users import TokenRequest, UserCreate, UserUpdate
from ..services._base import validate_pagination
from ..services.users import UserService
from ._common import to_dicts

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", responses=ERROR_RESPONSES)


# =============================================================================
# Authentication
# =============================================================================


@router.post("/auth/token", tags=["auth"])
def create_token(request: TokenRequest, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Issue a bearer token for an existing user (development login)."""
    user = UserService(db).get_by_username(request.username)
    if user is None:
        raise AuthenticationError(f"Unknown user '{request.username}'", code="INVALID_TOKEN")
    expires_minutes = get_settings().access_token_expire_minutes
    logger.info("token_issued", user_id=user.id)
    return {
        "access_token": issue_token(user.id, Role(user.role), expires_minutes),
        "token_type": "bearer",
        "expires_in": expires_minutes * 60,
        "user": user.to_dict(),
    }


@router.get("/auth/me", tags=["auth"])
def whoami(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    return UserService(db).get(principal.user_id).to_dict()


# =============================================================================
# User Administration
# =============================================================================


@router.post("/users", status_code=201, tags=["users"])
def create_user(
    data: UserCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    user = UserService(db).create(data, actor_id=principal.user_id)
    return {"status": "success", "user": user.to_dict()}


@router.get("/users", tags=["users"])
def list_users(
    role: Optional[Role] = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    users, total = UserService(db).list(role=role, limit=limit, offset=offset)
    return list_response(to_dicts(users), total, limit, offset)


@router.get("/users/{user_id}", tags=["users"])
def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    return UserService(db).get(user_id).to_dict()


@router.put("/users/{user_id}", tags=["users"])
def update_user(
    user_id: str,
    data: UserUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    user = UserService(db).update(user_id, data, actor_id=principal.user_id)
    return {"status": "success", "user": user.to_dict()}


@router.delete("/users/{user_id}", tags=["users"])
def delete_user(
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    UserService(db).delete(user_id, principal)
    return {"status": "success", "message": f"User {user_id} deleted"}


# =============================================================================
# Audit Journal
# =============================================================================


@router.get("/audit", tags=["audit"])
def list_audit_entries(
    entity_kind: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> Dict[str, Any]:
    """Audit entries, newest first."""
    limit, offset = validate_pagination(limit, offset)
    audit = AuditService(db)
    if entity_id is not None:
        if entity_kind is None:
            raise InputValidationError("entity_kind is required when entity_id is given")
        entries = audit.query_by_entity(entity_kind, entity_id, limit=limit, offset=offset)
    else:
        entries = audit.query_recent(limit=limit, entity_kind=entity_kind, offset=offset)
    return {"entries": to_dicts(entries), "count": len(entries), "limit": limit, "offset": offset}
