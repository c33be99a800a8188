"""
Human-readable reference IDs.

Each entity type, and steering documents, owns a counter row in
``reference_counters``. Allocation increments that row with a single UPDATE
inside the creating transaction: the UPDATE takes the row (PostgreSQL) or
database (SQLite) write lock, so concurrent creators of the same type
serialize on it and never observe the same value. A rolled-back creation
rolls the increment back with it.
"""

import re
from typing import Optional, Tuple, Type

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..db.models import (
    AcceptanceCriteriaModel,
    EpicModel,
    ReferenceCounterModel,
    RequirementModel,
    SteeringDocumentModel,
    UserStoryModel,
)
from ..errors import NotFoundError, StorageError
from ..schemas.enums import (
    COUNTER_PREFIXES,
    REFERENCE_PREFIXES,
    STEERING_DOCUMENT,
    EntityType,
)

REFERENCE_ID_PATTERN = re.compile(r"^(EP|US|AC|REQ)-(\d{3,})$", re.IGNORECASE)
STEERING_DOCUMENT_ID_PATTERN = re.compile(r"^STD-(\d{3,})$", re.IGNORECASE)
# Any identifier search can boost on
SEARCHABLE_REFERENCE_PATTERN = re.compile(r"^(EP|US|AC|REQ|STD)-(\d{3,})$", re.IGNORECASE)

ENTITY_MODELS = {
    EntityType.EPIC: EpicModel,
    EntityType.USER_STORY: UserStoryModel,
    EntityType.ACCEPTANCE_CRITERIA: AcceptanceCriteriaModel,
    EntityType.REQUIREMENT: RequirementModel,
}

# Reference counter key -> numbered model
COUNTER_MODELS = {
    **{entity_type.value: model for entity_type, model in ENTITY_MODELS.items()},
    STEERING_DOCUMENT: SteeringDocumentModel,
}

ENTITY_LABELS = {
    EntityType.EPIC: "Epic",
    EntityType.USER_STORY: "User story",
    EntityType.ACCEPTANCE_CRITERIA: "Acceptance criteria",
    EntityType.REQUIREMENT: "Requirement",
}

PREFIX_TO_TYPE = {prefix: entity_type for entity_type, prefix in REFERENCE_PREFIXES.items()}


def format_reference_id(prefix: str, number: int) -> str:
    return f"{prefix}-{number:03d}"


def parse_reference_id(value: str) -> Optional[Tuple[EntityType, int]]:
    """Split ``EP-007`` into (EntityType.EPIC, 7); None if not a reference ID."""
    match = REFERENCE_ID_PATTERN.match(value.strip())
    if not match:
        return None
    return PREFIX_TO_TYPE[match.group(1).upper()], int(match.group(2))


def is_reference_id(value: str) -> bool:
    return parse_reference_id(value) is not None


class ReferenceIdAllocator:
    """Allocates ``TAG-NNN`` identifiers within the caller's transaction."""

    def __init__(self, db: Session):
        self.db = db

    def allocate(self, kind) -> Tuple[str, int]:
        """Return the next (reference_id, number) for an entity type or steering documents."""
        key = kind.value if isinstance(kind, EntityType) else str(kind)
        if key not in COUNTER_PREFIXES:
            raise StorageError(f"No reference prefix configured for {key}")
        counter = ReferenceCounterModel

        result = self.db.execute(
            update(counter)
            .where(counter.entity_type == key)
            .values(last_value=counter.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self._create_counter(key)

        row = self.db.execute(
            select(counter.prefix, counter.last_value).where(counter.entity_type == key)
        ).one()
        return format_reference_id(row.prefix, row.last_value), row.last_value

    def _create_counter(self, key: str) -> None:
        """Start a missing counter after the highest number already in use."""
        model = COUNTER_MODELS[key]
        current = self.db.execute(select(func.max(model.reference_number))).scalar()
        self.db.add(
            ReferenceCounterModel(
                entity_type=key,
                prefix=COUNTER_PREFIXES[key],
                last_value=(current or 0) + 1,
            )
        )
        self.db.flush()


def find_entity(db: Session, entity_type: EntityType, identifier: str):
    """Look an entity up by internal id or reference ID; None when absent."""
    model: Type = ENTITY_MODELS[EntityType(entity_type)]
    identifier = (identifier or "").strip()
    if not identifier:
        return None
    if REFERENCE_ID_PATTERN.match(identifier):
        return (
            db.query(model).filter(model.reference_id == identifier.upper()).one_or_none()
        )
    return db.get(model, identifier)


def get_entity(db: Session, entity_type: EntityType, identifier: str):
    """Like ``find_entity`` but raises NotFoundError."""
    entity = find_entity(db, entity_type, identifier)
    if entity is None:
        raise NotFoundError(ENTITY_LABELS[EntityType(entity_type)], identifier)
    return entity
