"""Search request parameters."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from .enums import SearchKind, SortBy, SortOrder


class SearchParams(BaseModel):
    """Parameters of one search call.

    ``limit`` and ``offset`` are range-checked by the search service so that
    out-of-range values report VALIDATION_ERROR like every other input.
    """

    model_config = ConfigDict(extra="forbid")

    query: str = ""
    entity_types: Optional[List[SearchKind]] = None
    status: Optional[str] = None
    priority: Optional[int] = None
    creator_id: Optional[str] = None
    assignee_id: Optional[str] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    updated_after: Optional[datetime] = None
    updated_before: Optional[datetime] = None
    sort_by: SortBy = SortBy.RELEVANCE
    sort_order: SortOrder = SortOrder.DESC
    limit: int = 50
    offset: int = 0

    def kinds(self) -> List[SearchKind]:
        """Requested kinds in canonical order, all kinds when unset."""
        requested = set(self.entity_types or SearchKind)
        return [kind for kind in SearchKind if kind in requested]

    def cache_payload(self) -> Dict[str, Any]:
        """Canonical, JSON-ready form used to derive the cache key."""
        payload = self.model_dump(mode="json")
        payload["query"] = self.query.strip()
        payload["entity_types"] = [kind.value for kind in self.kinds()]
        return payload
