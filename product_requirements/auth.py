"""
Bearer tokens and role checks.

Identity is owned by an external provider; this module only verifies the
signed tokens it hands out. A token is ``<payload>.<signature>`` where the
payload is base64url JSON ``{"sub", "role", "exp"}`` and the signature is an
HMAC-SHA256 of the encoded payload under ``settings.secret_key``.
"""

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, Optional

import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import get_settings
from .db.base import get_db
from .db.models import UserModel
from .errors import AuthenticationError, PermissionDeniedError
from .schemas.common import Principal
from .schemas.enums import Role

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _sign(payload: str) -> str:
    key = get_settings().secret_key.encode("utf-8")
    return _b64encode(hmac.new(key, payload.encode("ascii"), hashlib.sha256).digest())


def issue_token(user_id: str, role: Role, expires_minutes: Optional[int] = None) -> str:
    """Signed access token for a user."""
    if expires_minutes is None:
        expires_minutes = get_settings().access_token_expire_minutes
    claims = {
        "sub": user_id,
        "role": Role(role).value,
        "exp": int(time.time()) + expires_minutes * 60,
    }
    payload = _b64encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    return f"{payload}.{_sign(payload)}"


def decode_token(token: str) -> Dict[str, Any]:
    """Verify a token and return its claims.

    Raises:
        AuthenticationError: INVALID_TOKEN or TOKEN_EXPIRED.
    """
    try:
        payload, signature = token.split(".")
    except ValueError:
        raise AuthenticationError("Malformed token", code="INVALID_TOKEN") from None

    if not hmac.compare_digest(signature, _sign(payload)):
        raise AuthenticationError("Token signature is invalid", code="INVALID_TOKEN")

    try:
        claims = json.loads(_b64decode(payload))
    except (ValueError, UnicodeDecodeError):
        raise AuthenticationError("Token payload is unreadable", code="INVALID_TOKEN") from None
    if (
        not isinstance(claims, dict)
        or not {"sub", "role", "exp"} <= claims.keys()
        or not isinstance(claims["exp"], (int, float))
    ):
        raise AuthenticationError("Token is missing claims", code="INVALID_TOKEN")

    if claims["exp"] < time.time():
        raise AuthenticationError("Token has expired", code="TOKEN_EXPIRED")
    return claims


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the caller from the Authorization header.

    The role is read from the user record so that role changes take effect
    before old tokens expire.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("A bearer token is required")

    claims = decode_token(credentials.credentials)
    user = db.get(UserModel, claims["sub"])
    if user is None:
        raise AuthenticationError("Token subject no longer exists", code="INVALID_TOKEN")

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return Principal(user_id=user.id, role=Role(user.role))


def require_roles(*roles: Role) -> Callable[..., Principal]:
    """Dependency factory that admits only the given roles."""
    allowed = {Role(role) for role in roles}

    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in allowed:
            logger.info(
                "permission_denied",
                user_id=principal.user_id,
                role=principal.role.value,
                required=sorted(role.value for role in allowed),
            )
            raise PermissionDeniedError(
                f"Role {principal.role.value} may not perform this operation"
            )
        return principal

    return dependency


# Role sets used by the routers
require_admin = require_roles(Role.ADMINISTRATOR)
require_editor = require_roles(Role.ADMINISTRATOR, Role.USER)
require_any = require_roles(Role.ADMINISTRATOR, Role.USER, Role.COMMENTER)
