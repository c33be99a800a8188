"""
Shared plumbing for the entity services.

``EntityService`` implements the operations every hierarchy entity has in
common: lookup by id or reference ID, filtered and ordered listing, and the
write path (deadline check, transaction with retry, audit entry, cache
invalidation after commit).
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

import structlog
from sqlalchemy import asc, desc, func
from sqlalchemy.orm import Session

from ..db.audit import AuditService
from ..db.transactions import run_in_transaction
from ..errors import InputValidationError
from ..schemas.common import DEFAULT_LIMIT, MAX_LIMIT
from ..schemas.entities import EntityFilters
from ..schemas.enums import EntityType, Priority
from .cache import SearchCache, get_search_cache
from .reference_ids import ENTITY_MODELS, find_entity, get_entity

logger = structlog.get_logger()

T = TypeVar("T")

ORDERABLE_FIELDS = ("created_at", "updated_at", "title", "priority", "reference_id")
DEFAULT_ORDER = "created_at DESC"


def validate_pagination(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    """Return (limit, offset) or raise when either is out of range."""
    limit = DEFAULT_LIMIT if limit is None else limit
    offset = 0 if offset is None else offset
    if not 1 <= limit <= MAX_LIMIT:
        raise InputValidationError(f"limit must be between 1 and {MAX_LIMIT}, got {limit}")
    if offset < 0:
        raise InputValidationError(f"offset must be >= 0, got {offset}")
    return limit, offset


def validate_priority(priority: Any) -> int:
    try:
        return Priority(int(priority)).value
    except (TypeError, ValueError):
        raise InputValidationError(
            f"priority must be 1 (Critical), 2 (High), 3 (Medium) or 4 (Low), got {priority!r}"
        ) from None


def validate_text(value: Optional[str], field: str) -> str:
    """Strip ``value`` and reject it when blank."""
    if value is None or not value.strip():
        raise InputValidationError(f"{field} must not be empty")
    return value.strip()


def parse_order_by(
    order_by: Optional[str], allowed: Iterable[str] = ORDERABLE_FIELDS
) -> Tuple[str, str]:
    """Parse ``"<field> [ASC|DESC]"`` against a whitelist of fields."""
    allowed = tuple(allowed)
    parts = (order_by or DEFAULT_ORDER).split()
    if not parts or len(parts) > 2:
        raise InputValidationError(f"Invalid order_by '{order_by}'")
    field = parts[0].lower()
    direction = parts[1].upper() if len(parts) == 2 else "ASC"
    if field not in allowed:
        raise InputValidationError(
            f"Cannot order by '{field}'; allowed fields: {', '.join(allowed)}"
        )
    if direction not in ("ASC", "DESC"):
        raise InputValidationError(f"Order direction must be ASC or DESC, got '{parts[1]}'")
    return field, direction


class EntityService:
    """Base class for the four hierarchy entity services."""

    entity_type: EntityType
    orderable_fields: Tuple[str, ...] = ORDERABLE_FIELDS
    # EntityFilters field -> model attribute
    filter_columns: Dict[str, str] = {}

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        cache: Optional[SearchCache] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.cache = cache or get_search_cache()

    @property
    def model(self):
        return ENTITY_MODELS[self.entity_type]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find(self, identifier: str):
        return find_entity(self.db, self.entity_type, identifier)

    def get_by_id(self, identifier: str):
        """Fetch by UUID or reference ID; raises NotFoundError."""
        return get_entity(self.db, self.entity_type, identifier)

    def list(
        self,
        filters: Optional[EntityFilters] = None,
        limit: Optional[int] = DEFAULT_LIMIT,
        offset: Optional[int] = 0,
        order_by: Optional[str] = None,
    ) -> Tuple[List[Any], int]:
        """Return one page of entities and the total matching count."""
        limit, offset = validate_pagination(limit, offset)
        field, direction = parse_order_by(order_by, self.orderable_fields)

        query = self._apply_filters(self.db.query(self.model), filters)
        total = query.count()

        column = getattr(self.model, "reference_number" if field == "reference_id" else field)
        ordering = desc(column) if direction == "DESC" else asc(column)
        items = (
            query.order_by(ordering, asc(self.model.id)).offset(offset).limit(limit).all()
        )
        return items, total

    def _apply_filters(self, query, filters: Optional[EntityFilters]):
        if filters is None:
            return query
        model = self.model
        values = filters.model_dump(exclude_none=True)

        for name, value in values.items():
            if name in ("created_after", "created_before", "updated_after", "updated_before"):
                column = getattr(model, name.rsplit("_", 1)[0] + "_at")
                query = query.filter(column >= value if name.endswith("after") else column <= value)
            elif name == "status":
                if not hasattr(model, "status"):
                    raise InputValidationError(
                        f"{self.entity_type.value} cannot be filtered by status"
                    )
                query = query.filter(func.lower(model.status) == value.strip().lower())
            elif name == "priority":
                if not hasattr(model, "priority"):
                    raise InputValidationError(
                        f"{self.entity_type.value} cannot be filtered by priority"
                    )
                query = query.filter(model.priority == validate_priority(value))
            else:
                attribute = self.filter_columns.get(name)
                if attribute is None:
                    raise InputValidationError(
                        f"{self.entity_type.value} cannot be filtered by {name}"
                    )
                query = query.filter(getattr(model, attribute) == self._filter_value(name, value))
        return query

    def _filter_value(self, name: str, value: str) -> str:
        """Translate reference IDs in parent filters into internal ids."""
        parents = {
            "epic_id": EntityType.EPIC,
            "user_story_id": EntityType.USER_STORY,
            "acceptance_criteria_id": EntityType.ACCEPTANCE_CRITERIA,
        }
        if name in parents:
            parent = find_entity(self.db, parents[name], value)
            return parent.id if parent is not None else value
        return value

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _write(
        self,
        operation: str,
        work: Callable[[], T],
        invalidate: Iterable[str] = (),
        serializable: bool = False,
    ) -> T:
        """Run ``work`` transactionally, then drop affected search results."""
        result = run_in_transaction(
            self.db, work, operation=operation, serializable=serializable
        )
        kinds = tuple(invalidate) or (self.entity_type.value,)
        self.cache.invalidate(*kinds)
        return result
