"""
Audit journal.

Append-only record of every state change: entity writes, comment and
relationship changes, reference-data administration and cascading deletes.
Entries are added to the caller's session and commit or roll back with the
change they describe.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import JSON, Column, Enum, Index, String, Text, desc
from sqlalchemy.orm import Session
from ulid import ULID

from .base import Base
from .models import UTCDateTime

audit_actor_kind_enum = Enum("human", "system", name="audit_actor_kind")

audit_action_enum = Enum(
    "created",
    "updated",
    "status_changed",
    "deleted",
    "linked",
    "unlinked",
    name="audit_action",
)


class AuditLogModel(Base):
    """Audit log entry with before/after snapshots and request correlation."""

    __tablename__ = "audit_log"

    # ULID keeps entries sortable by creation
    id = Column(String(36), primary_key=True)
    ts = Column(UTCDateTime, nullable=False, index=True)
    actor_kind = Column(audit_actor_kind_enum, nullable=False)
    actor_id = Column(String(128), nullable=False, index=True)
    action = Column(audit_action_enum, nullable=False, index=True)
    entity_kind = Column(String(50), nullable=False)
    entity_id = Column(String(128), nullable=False)
    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    note = Column(Text, nullable=True)
    trace_id = Column(String(36), nullable=True, index=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_kind", "entity_id"),
        Index("ix_audit_log_entity_ts", "entity_kind", "entity_id", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.ts.isoformat() if self.ts else None,
            "actor_kind": self.actor_kind,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
            "trace_id": self.trace_id,
        }


class AuditService:
    """Records audit entries inside the caller's transaction.

    Usage:
        audit = AuditService(db)
        audit.log_create("epic", epic.id, epic.to_dict(), actor_id=user_id)
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> AuditLogModel:
        trace_id = structlog.contextvars.get_contextvars().get("request_id")
        entry = AuditLogModel(
            id=str(ULID()),
            ts=datetime.now(timezone.utc),
            actor_kind="human" if actor_id else "system",
            actor_id=actor_id or "system",
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
            trace_id=trace_id,
        )
        self.db.add(entry)
        return entry

    def log_create(self, entity_kind, entity_id, after, actor_id=None, note=None):
        return self.record("created", entity_kind, entity_id, None, after, actor_id, note)

    def log_update(
        self, entity_kind, entity_id, before, after, actor_id=None, note=None
    ):
        return self.record(
            "updated", entity_kind, entity_id, before, after, actor_id, note
        )

    def log_status_change(
        self, entity_kind, entity_id, old_status, new_status, actor_id=None
    ):
        return self.record(
            "status_changed",
            entity_kind,
            entity_id,
            {"status": old_status},
            {"status": new_status},
            actor_id,
            f"Status changed: {old_status} -> {new_status}",
        )

    def log_delete(self, entity_kind, entity_id, before, actor_id=None, note=None):
        return self.record("deleted", entity_kind, entity_id, before, None, actor_id, note)

    def log_link(self, entity_kind, entity_id, linked_kind, linked_id, actor_id=None):
        return self.record(
            "linked",
            entity_kind,
            entity_id,
            None,
            {"linked_kind": linked_kind, "linked_id": linked_id},
            actor_id,
            f"Linked to {linked_kind}:{linked_id}",
        )

    def log_unlink(
        self, entity_kind, entity_id, unlinked_kind, unlinked_id, actor_id=None
    ):
        return self.record(
            "unlinked",
            entity_kind,
            entity_id,
            {"linked_kind": unlinked_kind, "linked_id": unlinked_id},
            None,
            actor_id,
            f"Unlinked from {unlinked_kind}:{unlinked_id}",
        )

    # Query methods

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Audit history for one entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(desc(AuditLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_recent(
        self,
        limit: int = 50,
        entity_kind: Optional[str] = None,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        query = self.db.query(AuditLogModel)

        if entity_kind:
            query = query.filter(AuditLogModel.entity_kind == entity_kind)

        return query.order_by(desc(AuditLogModel.id)).offset(offset).limit(limit).all()
