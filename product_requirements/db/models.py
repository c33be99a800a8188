"""
SQLAlchemy models for the requirements service.

Tables fall into five groups: users, reference data (requirement types,
relationship types, status models with their statuses and transitions), the
entity hierarchy (epics, user stories, acceptance criteria, requirements),
the collaboration layer (requirement relationships, comments) and steering
documents linked to epics.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    SQLite drops tzinfo on storage; values read back are re-tagged as UTC so
    comparisons and serialization behave the same as on PostgreSQL.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# Users
# =============================================================================


class UserModel(Base):
    """Service user. Roles: Administrator, User, Commenter."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    username = Column(String(64), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(32), nullable=False, default="User")
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# =============================================================================
# Reference data
# =============================================================================


class ReferenceCounterModel(Base):
    """Last reference number handed out per entity type."""

    __tablename__ = "reference_counters"

    entity_type = Column(String(32), primary_key=True)
    prefix = Column(String(8), nullable=False, unique=True)
    last_value = Column(Integer, nullable=False, default=0)


class RequirementTypeModel(Base):
    __tablename__ = "requirement_types"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class RelationshipTypeModel(Base):
    __tablename__ = "relationship_types"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class StatusWorkflowModel(Base):
    """A named workflow for one entity type. One per type is the default."""

    __tablename__ = "status_models"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entity_type = Column(String(32), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now)

    statuses = relationship(
        "StatusModel",
        back_populates="status_model",
        order_by="StatusModel.order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    transitions = relationship(
        "StatusTransitionModel",
        back_populates="status_model",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("entity_type", "name", name="uq_status_models_type_name"),
        Index("ix_status_models_type_default", "entity_type", "is_default"),
    )

    def to_dict(self, include_children: bool = False) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "entity_type": self.entity_type,
            "name": self.name,
            "description": self.description,
            "is_default": self.is_default,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["statuses"] = [s.to_dict() for s in self.statuses]
            result["transitions"] = [t.to_dict() for t in self.transitions]
        return result


class StatusModel(Base):
    """One status inside a status model."""

    __tablename__ = "statuses"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    status_model_id = Column(
        String(36),
        ForeignKey("status_models.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(64), nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(7), nullable=True)
    is_initial = Column(Boolean, nullable=False, default=False)
    is_final = Column(Boolean, nullable=False, default=False)
    order = Column("sort_order", Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now)

    status_model = relationship("StatusWorkflowModel", back_populates="statuses")

    __table_args__ = (
        UniqueConstraint("status_model_id", "name", name="uq_statuses_model_name"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status_model_id": self.status_model_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "is_initial": self.is_initial,
            "is_final": self.is_final,
            "order": self.order,
        }


class StatusTransitionModel(Base):
    __tablename__ = "status_transitions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    status_model_id = Column(
        String(36),
        ForeignKey("status_models.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status_id = Column(
        String(36), ForeignKey("statuses.id", ondelete="CASCADE"), nullable=False
    )
    to_status_id = Column(
        String(36), ForeignKey("statuses.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)

    status_model = relationship("StatusWorkflowModel", back_populates="transitions")
    from_status = relationship("StatusModel", foreign_keys=[from_status_id])
    to_status = relationship("StatusModel", foreign_keys=[to_status_id])

    __table_args__ = (
        UniqueConstraint(
            "status_model_id",
            "from_status_id",
            "to_status_id",
            name="uq_status_transitions_edge",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status_model_id": self.status_model_id,
            "from_status_id": self.from_status_id,
            "to_status_id": self.to_status_id,
            "from_status": self.from_status.name if self.from_status else None,
            "to_status": self.to_status.name if self.to_status else None,
            "name": self.name,
            "description": self.description,
        }


# =============================================================================
# Entity hierarchy
# =============================================================================


class EpicModel(Base):
    __tablename__ = "epics"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    reference_id = Column(String(16), nullable=False, unique=True)
    reference_number = Column(Integer, nullable=False, unique=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(Integer, nullable=False)
    status = Column(String(64), nullable=False, index=True)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    assignee_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)

    user_stories = relationship(
        "UserStoryModel",
        back_populates="epic",
        order_by="UserStoryModel.reference_number",
        passive_deletes=True,
    )

    __table_args__ = (Index("ix_epics_title", "title"),)

    def to_dict(self, include_children: bool = False) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "reference_id": self.reference_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "creator_id": self.creator_id,
            "assignee_id": self.assignee_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["user_stories"] = [
                us.to_dict(include_children=True) for us in self.user_stories
            ]
        return result


class UserStoryModel(Base):
    __tablename__ = "user_stories"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    reference_id = Column(String(16), nullable=False, unique=True)
    reference_number = Column(Integer, nullable=False, unique=True)
    epic_id = Column(
        String(36),
        ForeignKey("epics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(Integer, nullable=False)
    status = Column(String(64), nullable=False, index=True)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    assignee_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)

    epic = relationship("EpicModel", back_populates="user_stories")
    acceptance_criteria = relationship(
        "AcceptanceCriteriaModel",
        back_populates="user_story",
        order_by="AcceptanceCriteriaModel.reference_number",
        passive_deletes=True,
    )
    requirements = relationship(
        "RequirementModel",
        back_populates="user_story",
        order_by="RequirementModel.reference_number",
        passive_deletes=True,
    )

    __table_args__ = (Index("ix_user_stories_title", "title"),)

    def to_dict(self, include_children: bool = False) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "reference_id": self.reference_id,
            "epic_id": self.epic_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "creator_id": self.creator_id,
            "assignee_id": self.assignee_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["acceptance_criteria"] = [
                ac.to_dict() for ac in self.acceptance_criteria
            ]
            result["requirements"] = [r.to_dict() for r in self.requirements]
        return result


class AcceptanceCriteriaModel(Base):
    __tablename__ = "acceptance_criteria"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    reference_id = Column(String(16), nullable=False, unique=True)
    reference_number = Column(Integer, nullable=False, unique=True)
    user_story_id = Column(
        String(36),
        ForeignKey("user_stories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    author_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)

    user_story = relationship("UserStoryModel", back_populates="acceptance_criteria")
    requirements = relationship(
        "RequirementModel",
        back_populates="acceptance_criteria",
        order_by="RequirementModel.reference_number",
        passive_deletes=True,
    )

    @property
    def title(self) -> str:
        """Acceptance criteria have no title; reports show the first line."""
        first_line = (self.description or "").strip().splitlines()
        return first_line[0][:120] if first_line else ""

    def to_dict(self, include_children: bool = False) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "reference_id": self.reference_id,
            "user_story_id": self.user_story_id,
            "author_id": self.author_id,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["requirements"] = [r.to_dict() for r in self.requirements]
        return result


class RequirementModel(Base):
    __tablename__ = "requirements"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    reference_id = Column(String(16), nullable=False, unique=True)
    reference_number = Column(Integer, nullable=False, unique=True)
    user_story_id = Column(
        String(36),
        ForeignKey("user_stories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    acceptance_criteria_id = Column(
        String(36),
        ForeignKey("acceptance_criteria.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    type_id = Column(
        String(36), ForeignKey("requirement_types.id"), nullable=False, index=True
    )
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(Integer, nullable=False)
    status = Column(String(64), nullable=False, index=True)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    assignee_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)

    user_story = relationship("UserStoryModel", back_populates="requirements")
    acceptance_criteria = relationship(
        "AcceptanceCriteriaModel", back_populates="requirements"
    )
    requirement_type = relationship("RequirementTypeModel")

    __table_args__ = (Index("ix_requirements_title", "title"),)

    def to_dict(self, include_children: bool = False) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "reference_id": self.reference_id,
            "user_story_id": self.user_story_id,
            "acceptance_criteria_id": self.acceptance_criteria_id,
            "type_id": self.type_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "creator_id": self.creator_id,
            "assignee_id": self.assignee_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["type"] = (
                self.requirement_type.to_dict() if self.requirement_type else None
            )
        return result


# =============================================================================
# Collaboration
# =============================================================================


class RequirementRelationshipModel(Base):
    """Typed directed edge between two requirements."""

    __tablename__ = "requirement_relationships"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    source_requirement_id = Column(
        String(36),
        ForeignKey("requirements.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_requirement_id = Column(
        String(36),
        ForeignKey("requirements.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    relationship_type_id = Column(
        String(36), ForeignKey("relationship_types.id"), nullable=False, index=True
    )
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)

    relationship_type = relationship("RelationshipTypeModel")
    source_requirement = relationship(
        "RequirementModel", foreign_keys=[source_requirement_id]
    )
    target_requirement = relationship(
        "RequirementModel", foreign_keys=[target_requirement_id]
    )

    __table_args__ = (
        UniqueConstraint(
            "source_requirement_id",
            "target_requirement_id",
            "relationship_type_id",
            name="uq_requirement_relationships_edge",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_requirement_id": self.source_requirement_id,
            "target_requirement_id": self.target_requirement_id,
            "relationship_type_id": self.relationship_type_id,
            "relationship_type": (
                self.relationship_type.name if self.relationship_type else None
            ),
            "source_reference_id": (
                self.source_requirement.reference_id
                if self.source_requirement
                else None
            ),
            "target_reference_id": (
                self.target_requirement.reference_id
                if self.target_requirement
                else None
            ),
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }


# Anchor columns are all null or describe a non-empty [start, end) range
INLINE_ANCHOR_CHECK = (
    "(linked_text IS NULL AND text_position_start IS NULL AND text_position_end IS NULL)"
    " OR (linked_text IS NOT NULL AND text_position_start IS NOT NULL"
    " AND text_position_end IS NOT NULL AND text_position_start >= 0"
    " AND text_position_end > text_position_start)"
)


class CommentModel(Base):
    """Comment attached to any entity, optionally threaded or anchored inline."""

    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(36), nullable=False)
    parent_comment_id = Column(
        String(36),
        ForeignKey("comments.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    author_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    is_resolved = Column(Boolean, nullable=False, default=False)
    resolved_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    resolved_at = Column(UTCDateTime, nullable=True)

    # Inline anchor: all three set or none
    linked_text = Column(Text, nullable=True)
    text_position_start = Column(Integer, nullable=True)
    text_position_end = Column(Integer, nullable=True)
    is_stale = Column(Boolean, nullable=False, default=False)

    created_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)

    __table_args__ = (
        Index("ix_comments_entity", "entity_type", "entity_id"),
        Index("ix_comments_entity_resolved", "entity_type", "entity_id", "is_resolved"),
        CheckConstraint(INLINE_ANCHOR_CHECK, name="ck_comments_inline_anchor"),
    )

    @property
    def is_inline(self) -> bool:
        return self.linked_text is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "parent_comment_id": self.parent_comment_id,
            "author_id": self.author_id,
            "content": self.content,
            "is_resolved": self.is_resolved,
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
            "linked_text": self.linked_text,
            "text_position_start": self.text_position_start,
            "text_position_end": self.text_position_end,
            "is_inline": self.is_inline,
            "is_stale": self.is_stale,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# =============================================================================
# Steering documents
# =============================================================================


class SteeringDocumentModel(Base):
    """Team standards or instructions that give epics additional context."""

    __tablename__ = "steering_documents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    reference_id = Column(String(16), nullable=False, unique=True)
    reference_number = Column(Integer, nullable=False, unique=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)

    epics = relationship(
        "EpicModel",
        secondary="epic_steering_documents",
        order_by="EpicModel.reference_number",
        viewonly=True,
    )

    __table_args__ = (Index("ix_steering_documents_title", "title"),)

    def to_dict(self, include_epics: bool = False) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "reference_id": self.reference_id,
            "title": self.title,
            "description": self.description,
            "creator_id": self.creator_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_epics:
            result["epics"] = [
                {"id": epic.id, "reference_id": epic.reference_id, "title": epic.title}
                for epic in self.epics
            ]
        return result


class EpicSteeringDocumentModel(Base):
    """Link between an epic and a steering document."""

    __tablename__ = "epic_steering_documents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    epic_id = Column(
        String(36),
        ForeignKey("epics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    steering_document_id = Column(
        String(36),
        ForeignKey("steering_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint(
            "epic_id", "steering_document_id", name="uq_epic_steering_documents_link"
        ),
    )
