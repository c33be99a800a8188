"""
Status workflow engine.

Every entity type with a lifecycle (epic, user story, requirement) is
governed by exactly one default status model. A status change from ``a`` to
``b`` is accepted when ``a == b`` (a no-op that writes nothing) or when the
default model holds a transition record ``a -> b``. Status names are matched
case-insensitively and stored in their canonical spelling.
"""

from collections import deque
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db.models import StatusModel, StatusTransitionModel, StatusWorkflowModel
from ..errors import ConflictError, InputValidationError, NotFoundError
from ..schemas.enums import WORKFLOW_ENTITY_TYPES, EntityType

logger = structlog.get_logger()


def _workflow_type(entity_type) -> EntityType:
    entity_type = EntityType(entity_type)
    if entity_type not in WORKFLOW_ENTITY_TYPES:
        raise InputValidationError(f"{entity_type.value} has no status workflow")
    return entity_type


def status_model_problems(model: StatusWorkflowModel) -> List[str]:
    """Structural problems that keep ``model`` from being activated.

    A usable model has at least one initial status and every status is
    reachable from some initial status through its transitions.
    """
    statuses = list(model.statuses)
    if not statuses:
        return [f"Status model '{model.name}' has no statuses"]

    initial = [s.id for s in statuses if s.is_initial]
    if not initial:
        return [f"Status model '{model.name}' has no initial status"]

    adjacency: Dict[str, List[str]] = {}
    for transition in model.transitions:
        adjacency.setdefault(transition.from_status_id, []).append(transition.to_status_id)

    reached = set(initial)
    queue = deque(initial)
    while queue:
        for nxt in adjacency.get(queue.popleft(), []):
            if nxt not in reached:
                reached.add(nxt)
                queue.append(nxt)

    return [
        f"Status '{s.name}' is not reachable from an initial status"
        for s in statuses
        if s.id not in reached
    ]


class WorkflowEngine:
    """Validates and applies status changes against the default model."""

    def __init__(self, db: Session):
        self.db = db

    def get_default_model(self, entity_type) -> StatusWorkflowModel:
        entity_type = _workflow_type(entity_type)
        model = (
            self.db.query(StatusWorkflowModel)
            .filter(
                StatusWorkflowModel.entity_type == entity_type.value,
                StatusWorkflowModel.is_default.is_(True),
            )
            .first()
        )
        if model is None:
            raise NotFoundError("Default status model", entity_type.value)
        return model

    def find_status(self, model: StatusWorkflowModel, name: str) -> Optional[StatusModel]:
        if name is None:
            return None
        return (
            self.db.query(StatusModel)
            .filter(
                StatusModel.status_model_id == model.id,
                func.lower(StatusModel.name) == name.strip().lower(),
            )
            .first()
        )

    def normalize_status(self, entity_type, name: str) -> str:
        """Canonical spelling of ``name`` in the default model."""
        model = self.get_default_model(entity_type)
        status = self.find_status(model, name)
        if status is None:
            allowed = ", ".join(s.name for s in model.statuses)
            raise InputValidationError(
                f"Unknown status '{name}' for {EntityType(entity_type).value}; "
                f"allowed: {allowed}"
            )
        return status.name

    def initial_status(self, entity_type, requested: Optional[str] = None) -> str:
        """Status for a new entity: ``requested`` if valid, else the first initial one."""
        if requested is not None:
            return self.normalize_status(entity_type, requested)
        model = self.get_default_model(entity_type)
        for status in model.statuses:
            if status.is_initial:
                return status.name
        raise ConflictError(f"Status model '{model.name}' has no initial status")

    def list_allowed_transitions(self, entity_type, current_status: str) -> List[Dict]:
        """Transitions leaving ``current_status`` under the default model."""
        model = self.get_default_model(entity_type)
        current = self.find_status(model, current_status)
        if current is None:
            return []
        transitions = (
            self.db.query(StatusTransitionModel)
            .filter(
                StatusTransitionModel.status_model_id == model.id,
                StatusTransitionModel.from_status_id == current.id,
            )
            .all()
        )
        result = [
            {
                "id": t.id,
                "name": t.name,
                "from_status": current.name,
                "to_status": t.to_status.name,
                "to_status_id": t.to_status_id,
                "is_final": t.to_status.is_final,
                "order": t.to_status.order,
            }
            for t in transitions
        ]
        return sorted(result, key=lambda t: (t["order"], t["to_status"]))

    def validate_transition(
        self, entity_type, from_status: str, to_status: str
    ) -> Tuple[str, bool]:
        """Check ``from_status -> to_status``.

        Returns:
            (canonical target status, whether a write is needed)
        """
        if from_status and to_status and from_status.strip().lower() == to_status.strip().lower():
            return from_status, False

        model = self.get_default_model(entity_type)
        target = self.find_status(model, to_status)
        if target is None:
            raise InputValidationError(
                f"Unknown status '{to_status}' for {EntityType(entity_type).value}"
            )
        source = self.find_status(model, from_status)
        if source is None:
            raise ConflictError(
                f"Current status '{from_status}' is not part of the active workflow "
                f"'{model.name}'; reconcile the status before changing it"
            )

        allowed = (
            self.db.query(StatusTransitionModel.id)
            .filter(
                StatusTransitionModel.status_model_id == model.id,
                StatusTransitionModel.from_status_id == source.id,
                StatusTransitionModel.to_status_id == target.id,
            )
            .first()
        )
        if allowed is None:
            raise InputValidationError(
                f"Invalid status transition {source.name}→{target.name}"
            )
        return target.name, True

    def change_status(self, entity, entity_type, to_status: str) -> Tuple[str, bool]:
        """Apply a validated status change to ``entity`` (not committed).

        Returns:
            (previous status, whether the entity changed)
        """
        previous = entity.status
        new_status, changed = self.validate_transition(entity_type, previous, to_status)
        if changed:
            entity.status = new_status
            logger.info(
                "status_changed",
                entity_type=EntityType(entity_type).value,
                entity_id=entity.id,
                from_status=previous,
                to_status=new_status,
            )
        return previous, changed
