"""
Install-time reference data.

Seeding is idempotent: rows that already exist (matched by name) are left
untouched, so the seed can run on every start-up.
"""

from typing import Dict, List, Tuple

import structlog
from sqlalchemy.orm import Session

from ..schemas.enums import COUNTER_PREFIXES, EntityType
from .models import (
    ReferenceCounterModel,
    RelationshipTypeModel,
    RequirementTypeModel,
    StatusModel,
    StatusTransitionModel,
    StatusWorkflowModel,
    utc_now,
)

logger = structlog.get_logger()

REQUIREMENT_TYPES = [
    ("Functional", "Functional requirements that define what the system should do"),
    ("Non-Functional", "Quality attributes such as performance, security and usability"),
    ("Business Rule", "Business rules and constraints that govern operations"),
    ("Interface", "Requirements for interfaces with external systems"),
    ("Data", "Requirements for data storage, processing and management"),
]

RELATIONSHIP_TYPES = [
    ("depends_on", "This requirement depends on another requirement"),
    ("blocks", "This requirement blocks another requirement"),
    ("relates_to", "This requirement is related to another requirement"),
    ("conflicts_with", "This requirement conflicts with another requirement"),
    ("derives_from", "This requirement is derived from another requirement"),
]

# (name, color, is_initial, is_final)
PLANNING_STATUSES = [
    ("Backlog", "#6c757d", True, False),
    ("Draft", "#ffc107", False, False),
    ("In Progress", "#007bff", False, False),
    ("Done", "#28a745", False, True),
    ("Cancelled", "#dc3545", False, True),
]

PLANNING_TRANSITIONS = [
    ("Backlog", "Draft", "Start drafting"),
    ("Backlog", "In Progress", "Start work"),
    ("Backlog", "Cancelled", "Cancel"),
    ("Draft", "In Progress", "Start work"),
    ("Draft", "Backlog", "Return to backlog"),
    ("Draft", "Cancelled", "Cancel"),
    ("In Progress", "Done", "Complete"),
    ("In Progress", "Draft", "Back to draft"),
    ("In Progress", "Backlog", "Return to backlog"),
    ("In Progress", "Cancelled", "Cancel"),
]

REQUIREMENT_STATUSES = [
    ("Draft", "#ffc107", True, False),
    ("Active", "#28a745", False, False),
    ("Obsolete", "#6c757d", False, True),
]

REQUIREMENT_TRANSITIONS = [
    ("Draft", "Active", "Activate"),
    ("Draft", "Obsolete", "Retire"),
    ("Active", "Obsolete", "Retire"),
    ("Active", "Draft", "Reopen"),
]

DEFAULT_WORKFLOWS: Dict[EntityType, Tuple[str, str, List, List]] = {
    EntityType.EPIC: (
        "Default Epic Workflow",
        "Default status workflow for epics",
        PLANNING_STATUSES,
        PLANNING_TRANSITIONS,
    ),
    EntityType.USER_STORY: (
        "Default User Story Workflow",
        "Default status workflow for user stories",
        PLANNING_STATUSES,
        PLANNING_TRANSITIONS,
    ),
    EntityType.REQUIREMENT: (
        "Default Requirement Workflow",
        "Default status workflow for requirements",
        REQUIREMENT_STATUSES,
        REQUIREMENT_TRANSITIONS,
    ),
}


def build_status_model(
    db: Session,
    entity_type: str,
    name: str,
    statuses: List[Tuple[str, str, bool, bool]],
    transitions: List[Tuple[str, str, str]],
    description: str = None,
    is_default: bool = False,
) -> StatusWorkflowModel:
    """Add a status model with its statuses and transitions to the session."""
    now = utc_now()
    model = StatusWorkflowModel(
        entity_type=entity_type,
        name=name,
        description=description,
        is_default=is_default,
        created_at=now,
        updated_at=now,
    )
    db.add(model)
    db.flush()

    by_name = {}
    for order, (status_name, color, is_initial, is_final) in enumerate(statuses, 1):
        status = StatusModel(
            status_model_id=model.id,
            name=status_name,
            color=color,
            is_initial=is_initial,
            is_final=is_final,
            order=order,
            created_at=now,
            updated_at=now,
        )
        db.add(status)
        by_name[status_name] = status
    db.flush()

    for from_name, to_name, label in transitions:
        db.add(
            StatusTransitionModel(
                status_model_id=model.id,
                from_status_id=by_name[from_name].id,
                to_status_id=by_name[to_name].id,
                name=label,
                created_at=now,
            )
        )
    db.flush()
    return model


def seed_reference_data(db: Session) -> Dict[str, int]:
    """Insert counters, types and default workflows that are missing.

    Returns:
        Number of rows created per group.
    """
    created = {"counters": 0, "requirement_types": 0, "relationship_types": 0, "status_models": 0}
    now = utc_now()

    for counter_key, prefix in COUNTER_PREFIXES.items():
        if db.get(ReferenceCounterModel, counter_key) is None:
            db.add(ReferenceCounterModel(entity_type=counter_key, prefix=prefix, last_value=0))
            created["counters"] += 1

    existing = {name for (name,) in db.query(RequirementTypeModel.name).all()}
    for name, description in REQUIREMENT_TYPES:
        if name not in existing:
            db.add(
                RequirementTypeModel(
                    name=name, description=description, created_at=now, updated_at=now
                )
            )
            created["requirement_types"] += 1

    existing = {name for (name,) in db.query(RelationshipTypeModel.name).all()}
    for name, description in RELATIONSHIP_TYPES:
        if name not in existing:
            db.add(
                RelationshipTypeModel(
                    name=name, description=description, created_at=now, updated_at=now
                )
            )
            created["relationship_types"] += 1

    for entity_type, (name, description, statuses, transitions) in DEFAULT_WORKFLOWS.items():
        has_models = (
            db.query(StatusWorkflowModel.id)
            .filter(StatusWorkflowModel.entity_type == entity_type.value)
            .first()
        )
        if has_models is None:
            build_status_model(
                db,
                entity_type.value,
                name,
                statuses,
                transitions,
                description=description,
                is_default=True,
            )
            created["status_models"] += 1

    db.commit()
    logger.info("reference_data_seeded", **created)
    return created
