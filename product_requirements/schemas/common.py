"""Shared API shapes: list envelopes, error bodies and the request principal."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import Role

DEFAULT_LIMIT = 50
MAX_LIMIT = 100


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as seen by the service layer."""

    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMINISTRATOR


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    correlation_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope returned for every failed request."""

    error: ErrorBody


class ListResponse(BaseModel):
    """Paginated list envelope."""

    model_config = ConfigDict(extra="forbid")

    data: List[Dict[str, Any]]
    total_count: int = Field(..., ge=0)
    limit: int
    offset: int


def list_response(
    items: List[Dict[str, Any]], total: int, limit: int, offset: int
) -> Dict[str, Any]:
    return ListResponse(
        data=items, total_count=total, limit=limit, offset=offset
    ).model_dump()


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation error"},
    401: {"model": ErrorResponse, "description": "Authentication required"},
    403: {"model": ErrorResponse, "description": "Insufficient permissions"},
    404: {"model": ErrorResponse, "description": "Not found"},
    409: {"model": ErrorResponse, "description": "Conflict"},
}
