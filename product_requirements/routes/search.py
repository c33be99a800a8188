"""
Search endpoints.

Responses are served as the exact JSON string stored in the search cache so
that repeated queries are byte-for-byte identical. ``X-Cache`` reports
whether the cache answered.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..auth import require_any
from ..db.base import get_db
from ..schemas.common import DEFAULT_LIMIT, ERROR_RESPONSES, Principal
from ..schemas.enums import SearchKind, SortBy, SortOrder
from ..schemas.search import SearchParams
from ..services.search import SearchService

router = APIRouter(prefix="/api/v1/search", tags=["search"], responses=ERROR_RESPONSES)


def _cached_response(service: SearchService, params: SearchParams) -> Response:
    payload, hit = service.search_json(params)
    return Response(
        content=payload,
        media_type="application/json",
        headers={"X-Cache": "HIT" if hit else "MISS"},
    )


@router.get("")
def search(
    query: str = "",
    entity_types: Optional[List[SearchKind]] = Query(None),
    status: Optional[str] = None,
    priority: Optional[int] = None,
    creator_id: Optional[str] = None,
    assignee_id: Optional[str] = None,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    updated_after: Optional[datetime] = None,
    updated_before: Optional[datetime] = None,
    sort_by: SortBy = SortBy.RELEVANCE,
    sort_order: SortOrder = SortOrder.DESC,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Response:
    """Ranked full-text search across entities and comments."""
    params = SearchParams(
        query=query,
        entity_types=entity_types,
        status=status,
        priority=priority,
        creator_id=creator_id,
        assignee_id=assignee_id,
        created_after=created_after,
        created_before=created_before,
        updated_after=updated_after,
        updated_before=updated_before,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    return _cached_response(SearchService(db), params)


@router.post("")
def search_with_body(
    params: SearchParams,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Response:
    """Same as GET /search with the parameters in the body."""
    return _cached_response(SearchService(db), params)


@router.get("/suggestions")
def suggest(
    prefix: str,
    limit: int = 10,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
) -> Dict[str, Any]:
    """Prefix completions: titles, reference IDs and status names."""
    return SearchService(db).suggest(prefix, limit=limit)
