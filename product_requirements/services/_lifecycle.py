"""
Lifecycle operations shared by epics, user stories and requirements.

These three entity types carry a title, description, priority, workflow
status and an assignee. Acceptance criteria only have a description and
reuse the description path through ``DescribedEntityService``.
"""

from typing import Any, Dict, List, Optional

import structlog

from ..db.models import utc_now
from ..errors import InputValidationError
from ..schemas.enums import EntityType
from ._base import EntityService, validate_priority, validate_text
from .comments import CommentService
from .reference_ids import ENTITY_LABELS
from .users import UserService
from .workflow import WorkflowEngine

logger = structlog.get_logger()


class DescribedEntityService(EntityService):
    """Entity service whose description may carry inline comment anchors."""

    def __init__(self, db, audit=None, cache=None):
        super().__init__(db, audit, cache)
        self.users = UserService(db, self.audit)
        self.comments = CommentService(db, self.audit, self.cache)

    @property
    def label(self) -> str:
        return ENTITY_LABELS[self.entity_type]

    def _normalize_changes(self, entity, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Validate requested field changes; subclasses add their own fields."""
        normalized: Dict[str, Any] = {}
        if "description" in changes:
            description = changes["description"]
            normalized["description"] = description.strip() if description else None
        return normalized

    def update(self, identifier: str, data, actor_id: Optional[str] = None):
        """Apply a partial update. Unchanged values cause no write at all."""
        changes = data.model_dump(exclude_unset=True)

        def work():
            entity = self.get_by_id(identifier)
            normalized = self._normalize_changes(entity, changes)
            updates = {
                field: value
                for field, value in normalized.items()
                if getattr(entity, field) != value
            }
            if not updates:
                return entity

            before = entity.to_dict()
            if "description" in updates:
                # Anchors are checked against the new text before it is stored
                self.comments.refresh_anchors(
                    self.entity_type, entity.id, updates["description"]
                )
            for field, value in updates.items():
                setattr(entity, field, value)
            entity.updated_at = utc_now()
            self.audit.log_update(
                self.entity_type.value, entity.id, before, entity.to_dict(), actor_id=actor_id
            )
            logger.info(
                f"{self.entity_type.value}_updated",
                entity_id=entity.id,
                reference_id=entity.reference_id,
                fields=sorted(updates),
            )
            return entity

        return self._write(f"update {self.entity_type.value}", work)

    def stale_inline_comments(self, identifier: str, new_description: Optional[str]) -> List:
        """Preview which inline comments a description change would strand."""
        entity = self.get_by_id(identifier)
        return self.comments.validate_inline_anchors(self.entity_type, entity.id, new_description)


class TrackedEntityService(DescribedEntityService):
    """Epics, user stories and requirements: workflow status plus assignment."""

    filter_columns = {"creator_id": "creator_id", "assignee_id": "assignee_id"}

    def __init__(self, db, audit=None, cache=None):
        super().__init__(db, audit, cache)
        self.workflow = WorkflowEngine(db)

    def _normalize_changes(self, entity, changes: Dict[str, Any]) -> Dict[str, Any]:
        normalized = super()._normalize_changes(entity, changes)
        if "title" in changes:
            normalized["title"] = validate_text(changes["title"], "title")
        if "priority" in changes:
            normalized["priority"] = validate_priority(changes["priority"])
        return normalized

    def _common_fields(self, data, creator_id: str) -> Dict[str, Any]:
        """Validated title/description/priority/status/assignee for a create."""
        if creator_id is None:
            raise InputValidationError("creator_id is required")
        self.users.require_existing(creator_id, "creator_id")
        assignee_id = data.assignee_id or creator_id
        self.users.require_existing(assignee_id, "assignee_id")
        now = utc_now()
        return {
            "title": validate_text(data.title, "title"),
            "description": data.description.strip() if data.description else None,
            "priority": validate_priority(data.priority),
            "status": self.workflow.initial_status(self.entity_type, data.status),
            "creator_id": creator_id,
            "assignee_id": assignee_id,
            "created_at": now,
            "updated_at": now,
        }

    def change_status(self, identifier: str, new_status: str, actor_id: Optional[str] = None):
        """Move the entity along its workflow; a same-status change is a no-op."""

        def work():
            entity = self.get_by_id(identifier)
            previous, changed = self.workflow.change_status(
                entity, self.entity_type, new_status
            )
            if changed:
                entity.updated_at = utc_now()
                self.audit.log_status_change(
                    self.entity_type.value, entity.id, previous, entity.status, actor_id=actor_id
                )
            return entity

        return self._write(f"change {self.entity_type.value} status", work)

    def allowed_transitions(self, identifier: str) -> List[Dict[str, Any]]:
        entity = self.get_by_id(identifier)
        return self.workflow.list_allowed_transitions(self.entity_type, entity.status)

    def assign(self, identifier: str, assignee_id: Optional[str], actor_id: Optional[str] = None):
        """Set or clear the assignee."""

        def work():
            entity = self.get_by_id(identifier)
            self.users.require_existing(assignee_id, "assignee_id")
            if entity.assignee_id == assignee_id:
                return entity
            before = entity.to_dict()
            entity.assignee_id = assignee_id
            entity.updated_at = utc_now()
            self.audit.log_update(
                self.entity_type.value,
                entity.id,
                before,
                entity.to_dict(),
                actor_id=actor_id,
                note=f"Assigned to {assignee_id}" if assignee_id else "Unassigned",
            )
            return entity

        return self._write(f"assign {self.entity_type.value}", work)
