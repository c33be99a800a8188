"""Create initial schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

ID = sa.String(36)

# Full-text indexes backing search on PostgreSQL
FULL_TEXT_INDEXES = {
    "epics": "coalesce(title, '') || ' ' || coalesce(description, '')",
    "user_stories": "coalesce(title, '') || ' ' || coalesce(description, '')",
    "requirements": "coalesce(title, '') || ' ' || coalesce(description, '')",
    "acceptance_criteria": "description",
    "comments": "content",
    "steering_documents": "coalesce(title, '') || ' ' || coalesce(description, '')",
}


def _timestamps(indexed: bool = False):
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, index=indexed),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, index=indexed),
    ]


def _tracked_columns():
    """Columns shared by epics, user stories and requirements."""
    return [
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("priority", sa.Integer, nullable=False),
        sa.Column("status", sa.String(64), nullable=False, index=True),
        sa.Column("creator_id", ID, sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("assignee_id", ID, sa.ForeignKey("users.id"), nullable=True, index=True),
    ]


def _reference_columns():
    return [
        sa.Column("id", ID, primary_key=True),
        sa.Column("reference_id", sa.String(16), nullable=False, unique=True),
        sa.Column("reference_number", sa.Integer, nullable=False, unique=True),
    ]


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", ID, primary_key=True),
        sa.Column("username", sa.String(64), nullable=False, unique=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("role", sa.String(32), nullable=False),
        *_timestamps(),
    )

    # Reference data
    op.create_table(
        "reference_counters",
        sa.Column("entity_type", sa.String(32), primary_key=True),
        sa.Column("prefix", sa.String(8), nullable=False, unique=True),
        sa.Column("last_value", sa.Integer, nullable=False, server_default="0"),
    )
    for table in ("requirement_types", "relationship_types"):
        op.create_table(
            table,
            sa.Column("id", ID, primary_key=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("description", sa.Text, nullable=True),
            *_timestamps(),
        )

    op.create_table(
        "status_models",
        sa.Column("id", ID, primary_key=True),
        sa.Column("entity_type", sa.String(32), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("entity_type", "name", name="uq_status_models_type_name"),
    )
    op.create_index(
        "ix_status_models_type_default", "status_models", ["entity_type", "is_default"]
    )

    op.create_table(
        "statuses",
        sa.Column("id", ID, primary_key=True),
        sa.Column(
            "status_model_id",
            ID,
            sa.ForeignKey("status_models.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("color", sa.String(7), nullable=True),
        sa.Column("is_initial", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_final", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("status_model_id", "name", name="uq_statuses_model_name"),
    )

    op.create_table(
        "status_transitions",
        sa.Column("id", ID, primary_key=True),
        sa.Column(
            "status_model_id",
            ID,
            sa.ForeignKey("status_models.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "from_status_id", ID, sa.ForeignKey("statuses.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "to_status_id", ID, sa.ForeignKey("statuses.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "status_model_id",
            "from_status_id",
            "to_status_id",
            name="uq_status_transitions_edge",
        ),
    )

    # Entity hierarchy
    op.create_table(
        "epics",
        *_reference_columns(),
        *_tracked_columns(),
        *_timestamps(indexed=True),
    )
    op.create_index("ix_epics_title", "epics", ["title"])

    op.create_table(
        "user_stories",
        *_reference_columns(),
        sa.Column(
            "epic_id",
            ID,
            sa.ForeignKey("epics.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        *_tracked_columns(),
        *_timestamps(indexed=True),
    )
    op.create_index("ix_user_stories_title", "user_stories", ["title"])

    op.create_table(
        "acceptance_criteria",
        *_reference_columns(),
        sa.Column(
            "user_story_id",
            ID,
            sa.ForeignKey("user_stories.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("author_id", ID, sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("description", sa.Text, nullable=False),
        *_timestamps(indexed=True),
    )

    op.create_table(
        "requirements",
        *_reference_columns(),
        sa.Column(
            "user_story_id",
            ID,
            sa.ForeignKey("user_stories.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "acceptance_criteria_id",
            ID,
            sa.ForeignKey("acceptance_criteria.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column(
            "type_id", ID, sa.ForeignKey("requirement_types.id"), nullable=False, index=True
        ),
        *_tracked_columns(),
        *_timestamps(indexed=True),
    )
    op.create_index("ix_requirements_title", "requirements", ["title"])

    # Collaboration
    op.create_table(
        "requirement_relationships",
        sa.Column("id", ID, primary_key=True),
        sa.Column(
            "source_requirement_id",
            ID,
            sa.ForeignKey("requirements.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "target_requirement_id",
            ID,
            sa.ForeignKey("requirements.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "relationship_type_id",
            ID,
            sa.ForeignKey("relationship_types.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("created_by", ID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "source_requirement_id",
            "target_requirement_id",
            "relationship_type_id",
            name="uq_requirement_relationships_edge",
        ),
    )

    op.create_table(
        "comments",
        sa.Column("id", ID, primary_key=True),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", ID, nullable=False),
        sa.Column(
            "parent_comment_id",
            ID,
            sa.ForeignKey("comments.id", ondelete="CASCADE"),
            nullable=True,
            index=True,
        ),
        sa.Column("author_id", ID, sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("is_resolved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("resolved_by", ID, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linked_text", sa.Text, nullable=True),
        sa.Column("text_position_start", sa.Integer, nullable=True),
        sa.Column("text_position_end", sa.Integer, nullable=True),
        sa.Column("is_stale", sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(indexed=True),
        sa.CheckConstraint(
            "(linked_text IS NULL AND text_position_start IS NULL AND text_position_end IS NULL)"
            " OR (linked_text IS NOT NULL AND text_position_start IS NOT NULL"
            " AND text_position_end IS NOT NULL AND text_position_start >= 0"
            " AND text_position_end > text_position_start)",
            name="ck_comments_inline_anchor",
        ),
    )
    op.create_index("ix_comments_entity", "comments", ["entity_type", "entity_id"])
    op.create_index(
        "ix_comments_entity_resolved", "comments", ["entity_type", "entity_id", "is_resolved"]
    )

    # Steering documents
    op.create_table(
        "steering_documents",
        *_reference_columns(),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("creator_id", ID, sa.ForeignKey("users.id"), nullable=False, index=True),
        *_timestamps(indexed=True),
    )
    op.create_index("ix_steering_documents_title", "steering_documents", ["title"])

    op.create_table(
        "epic_steering_documents",
        sa.Column("id", ID, primary_key=True),
        sa.Column(
            "epic_id",
            ID,
            sa.ForeignKey("epics.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "steering_document_id",
            ID,
            sa.ForeignKey("steering_documents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("created_by", ID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "epic_id", "steering_document_id", name="uq_epic_steering_documents_link"
        ),
    )

    # Audit journal
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column(
            "actor_kind",
            sa.Enum("human", "system", name="audit_actor_kind"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(128), nullable=False, index=True),
        sa.Column(
            "action",
            sa.Enum(
                "created",
                "updated",
                "status_changed",
                "deleted",
                "linked",
                "unlinked",
                name="audit_action",
            ),
            nullable=False,
            index=True,
        ),
        sa.Column("entity_kind", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(128), nullable=False),
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("trace_id", sa.String(36), nullable=True, index=True),
    )
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index(
        "ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"]
    )

    if op.get_bind().dialect.name == "postgresql":
        for table, document in FULL_TEXT_INDEXES.items():
            op.execute(
                f"CREATE INDEX ix_{table}_fts ON {table} "
                f"USING GIN (to_tsvector('english', {document}))"
            )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        for table in FULL_TEXT_INDEXES:
            op.execute(f"DROP INDEX IF EXISTS ix_{table}_fts")

    op.drop_table("audit_log")
    op.drop_table("epic_steering_documents")
    op.drop_table("steering_documents")
    op.drop_table("comments")
    op.drop_table("requirement_relationships")
    op.drop_table("requirements")
    op.drop_table("acceptance_criteria")
    op.drop_table("user_stories")
    op.drop_table("epics")
    op.drop_table("status_transitions")
    op.drop_table("statuses")
    op.drop_table("status_models")
    op.drop_table("relationship_types")
    op.drop_table("requirement_types")
    op.drop_table("reference_counters")
    op.drop_table("users")

    sa.Enum(name="audit_action").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="audit_actor_kind").drop(op.get_bind(), checkfirst=True)
