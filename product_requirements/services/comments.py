"""
Comment service.

Comments attach to any hierarchy entity through (entity_type, entity_id).
Replies live on the same target as their parent and nest at most two levels
below a root comment. Inline comments anchor to a ``[start, end)`` slice of
the target's description (code-point offsets); when the description changes
the anchors are re-checked and flagged stale instead of being moved.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import asc
from sqlalchemy.orm import Session

from ..db.audit import AuditService
from ..db.models import CommentModel, utc_now
from ..db.transactions import run_in_transaction
from ..errors import ConflictError, InputValidationError, NotFoundError, PermissionDeniedError
from ..schemas.comments import CommentCreate
from ..schemas.common import Principal
from ..schemas.enums import CommentStatus, EntityType
from .cache import SearchCache, get_search_cache
from .reference_ids import get_entity
from .users import UserService

logger = structlog.get_logger()

# Root comments sit at depth 0; replies may reach depth 2
MAX_THREAD_DEPTH = 2

COMMENT_KIND = "comment"


def anchor_matches(description: Optional[str], comment: CommentModel) -> bool:
    if description is None:
        return False
    start, end = comment.text_position_start, comment.text_position_end
    if start is None or end is None or end > len(description):
        return False
    return description[start:end] == comment.linked_text


class CommentService:
    """Service for threaded and inline comments."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        cache: Optional[SearchCache] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.cache = cache or get_search_cache()
        self.users = UserService(db, self.audit)

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create(
        self, entity_type, entity_id: str, data: CommentCreate, author_id: str
    ) -> CommentModel:
        """Dispatch to plain/reply or inline creation based on the payload."""
        inline_fields = (data.linked_text, data.text_position_start, data.text_position_end)
        if any(value is not None for value in inline_fields):
            if data.parent_comment_id is not None:
                raise InputValidationError("Inline comments cannot be replies")
            return self.create_inline_comment(
                entity_type,
                entity_id,
                author_id,
                data.content,
                data.linked_text,
                data.text_position_start,
                data.text_position_end,
            )
        return self.create_comment(
            entity_type, entity_id, author_id, data.content, data.parent_comment_id
        )

    def create_comment(
        self,
        entity_type,
        entity_id: str,
        author_id: str,
        content: str,
        parent_comment_id: Optional[str] = None,
    ) -> CommentModel:
        entity_type = EntityType(entity_type)
        content = self._clean_content(content)

        def work() -> CommentModel:
            self.users.require_existing(author_id, "author_id")
            target = get_entity(self.db, entity_type, entity_id)
            if parent_comment_id is not None:
                parent = self.get(parent_comment_id)
                if parent.entity_type != entity_type.value or parent.entity_id != target.id:
                    raise InputValidationError(
                        "A reply must target the same entity as its parent comment"
                    )
                if self.depth(parent) + 1 > MAX_THREAD_DEPTH:
                    raise InputValidationError(
                        f"Comment threads are limited to {MAX_THREAD_DEPTH + 1} levels"
                    )
            return self._insert(entity_type, target.id, author_id, content, parent_comment_id)

        return self._write("create comment", work)

    def create_reply(self, parent_comment_id: str, author_id: str, content: str) -> CommentModel:
        """Reply to a comment on the parent's own target."""
        parent = self.get(parent_comment_id)
        return self.create_comment(
            parent.entity_type, parent.entity_id, author_id, content, parent.id
        )

    def create_inline_comment(
        self,
        entity_type,
        entity_id: str,
        author_id: str,
        content: str,
        linked_text: Optional[str],
        start: Optional[int],
        end: Optional[int],
    ) -> CommentModel:
        entity_type = EntityType(entity_type)
        content = self._clean_content(content)
        if linked_text is None or start is None or end is None:
            raise InputValidationError(
                "Inline comments require linked_text, text_position_start and text_position_end"
            )
        if start < 0:
            raise InputValidationError("text_position_start must be >= 0")
        if end <= start:
            raise InputValidationError("text_position_end must be greater than text_position_start")

        def work() -> CommentModel:
            self.users.require_existing(author_id, "author_id")
            target = get_entity(self.db, entity_type, entity_id)
            description = target.description
            if not description:
                raise InputValidationError(
                    f"{target.reference_id} has no description to anchor a comment to"
                )
            if end > len(description):
                raise InputValidationError(
                    f"text_position_end {end} is beyond the description length {len(description)}"
                )
            if description[start:end] != linked_text:
                raise InputValidationError(
                    f"linked_text does not match the description at [{start}, {end})"
                )
            return self._insert(
                entity_type,
                target.id,
                author_id,
                content,
                None,
                linked_text=linked_text,
                text_position_start=start,
                text_position_end=end,
            )

        return self._write("create inline comment", work)

    def _insert(
        self,
        entity_type: EntityType,
        target_id: str,
        author_id: str,
        content: str,
        parent_comment_id: Optional[str],
        **anchor: Any,
    ) -> CommentModel:
        now = utc_now()
        comment = CommentModel(
            entity_type=entity_type.value,
            entity_id=target_id,
            parent_comment_id=parent_comment_id,
            author_id=author_id,
            content=content,
            is_resolved=False,
            is_stale=False,
            created_at=now,
            updated_at=now,
            **anchor,
        )
        self.db.add(comment)
        self.db.flush()
        self.audit.log_create(COMMENT_KIND, comment.id, comment.to_dict(), actor_id=author_id)
        logger.info(
            "comment_created",
            comment_id=comment.id,
            entity_type=entity_type.value,
            entity_id=target_id,
            inline=comment.is_inline,
        )
        return comment

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, comment_id: str) -> CommentModel:
        comment = self.db.get(CommentModel, comment_id) if comment_id else None
        if comment is None:
            raise NotFoundError("Comment", comment_id)
        return comment

    def depth(self, comment: CommentModel) -> int:
        depth = 0
        current = comment
        while current.parent_comment_id is not None:
            depth += 1
            current = self.get(current.parent_comment_id)
        return depth

    def _query_for(self, entity_type, entity_id: str):
        entity_type = EntityType(entity_type)
        target = get_entity(self.db, entity_type, entity_id)
        return self.db.query(CommentModel).filter(
            CommentModel.entity_type == entity_type.value,
            CommentModel.entity_id == target.id,
        )

    def list_by_entity(self, entity_type, entity_id: str) -> List[CommentModel]:
        """All comments on an entity, oldest first."""
        return (
            self._query_for(entity_type, entity_id)
            .order_by(asc(CommentModel.created_at), asc(CommentModel.id))
            .all()
        )

    def get_thread(self, entity_type, entity_id: str) -> List[Dict[str, Any]]:
        """Comments on an entity as a tree of root comments with ``replies``."""
        comments = self.list_by_entity(entity_type, entity_id)
        nodes = {c.id: {**c.to_dict(), "replies": []} for c in comments}
        roots = []
        for comment in comments:
            node = nodes[comment.id]
            parent = nodes.get(comment.parent_comment_id)
            if parent is None:
                roots.append(node)
            else:
                parent["replies"].append(node)
        return roots

    def list_replies(self, comment_id: str) -> List[CommentModel]:
        parent = self.get(comment_id)
        return (
            self.db.query(CommentModel)
            .filter(CommentModel.parent_comment_id == parent.id)
            .order_by(asc(CommentModel.created_at), asc(CommentModel.id))
            .all()
        )

    def list_by_status(self, entity_type, entity_id: str, status) -> List[CommentModel]:
        resolved = CommentStatus(status) == CommentStatus.RESOLVED
        return (
            self._query_for(entity_type, entity_id)
            .filter(CommentModel.is_resolved.is_(resolved))
            .order_by(asc(CommentModel.created_at), asc(CommentModel.id))
            .all()
        )

    def get_visible_inline_comments(self, entity_type, entity_id: str) -> List[CommentModel]:
        """Inline comments whose anchors still match; stale ones are omitted."""
        return (
            self._query_for(entity_type, entity_id)
            .filter(
                CommentModel.linked_text.isnot(None),
                CommentModel.is_stale.is_(False),
            )
            .order_by(asc(CommentModel.text_position_start), asc(CommentModel.id))
            .all()
        )

    # -------------------------------------------------------------------------
    # Inline anchor maintenance
    # -------------------------------------------------------------------------

    def _inline_comments(self, entity_type, target_id: str) -> List[CommentModel]:
        return (
            self.db.query(CommentModel)
            .filter(
                CommentModel.entity_type == EntityType(entity_type).value,
                CommentModel.entity_id == target_id,
                CommentModel.linked_text.isnot(None),
            )
            .all()
        )

    def validate_inline_anchors(
        self, entity_type, target_id: str, new_description: Optional[str]
    ) -> List[CommentModel]:
        """Inline comments whose anchors would not match ``new_description``."""
        return [
            comment
            for comment in self._inline_comments(entity_type, target_id)
            if not anchor_matches(new_description, comment)
        ]

    def refresh_anchors(
        self, entity_type, target_id: str, new_description: Optional[str]
    ) -> List[CommentModel]:
        """Re-flag staleness of every inline comment for a new description.

        Runs inside the caller's transaction. Returns the comments that are
        stale under the new description.
        """
        stale = self.validate_inline_anchors(entity_type, target_id, new_description)
        stale_ids = {c.id for c in stale}
        now = utc_now()
        for comment in self._inline_comments(entity_type, target_id):
            is_stale = comment.id in stale_ids
            if comment.is_stale != is_stale:
                comment.is_stale = is_stale
                comment.updated_at = now
        if stale:
            logger.info(
                "inline_comments_stale",
                entity_type=EntityType(entity_type).value,
                entity_id=target_id,
                comment_ids=sorted(stale_ids),
            )
        return stale

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def update_content(self, comment_id: str, content: str, actor: Principal) -> CommentModel:
        content = self._clean_content(content)

        def work() -> CommentModel:
            comment = self.get(comment_id)
            self._require_owner(comment, actor, "edit")
            if comment.content == content:
                return comment
            before = comment.to_dict()
            comment.content = content
            comment.updated_at = utc_now()
            self.audit.log_update(
                COMMENT_KIND, comment.id, before, comment.to_dict(), actor_id=actor.user_id
            )
            return comment

        return self._write("update comment", work)

    def resolve(self, comment_id: str, resolver_id: str) -> CommentModel:
        """Mark resolved. Resolving an already resolved comment changes nothing."""

        def work() -> CommentModel:
            comment = self.get(comment_id)
            if comment.is_resolved:
                return comment
            self.users.require_existing(resolver_id, "resolved_by")
            before = comment.to_dict()
            now = utc_now()
            comment.is_resolved = True
            comment.resolved_by = resolver_id
            comment.resolved_at = now
            comment.updated_at = now
            self.audit.log_update(
                COMMENT_KIND, comment.id, before, comment.to_dict(),
                actor_id=resolver_id, note="resolved",
            )
            return comment

        return self._write("resolve comment", work)

    def unresolve(self, comment_id: str, actor_id: str) -> CommentModel:
        def work() -> CommentModel:
            comment = self.get(comment_id)
            if not comment.is_resolved:
                return comment
            before = comment.to_dict()
            comment.is_resolved = False
            comment.resolved_by = None
            comment.resolved_at = None
            comment.updated_at = utc_now()
            self.audit.log_update(
                COMMENT_KIND, comment.id, before, comment.to_dict(),
                actor_id=actor_id, note="unresolved",
            )
            return comment

        return self._write("unresolve comment", work)

    def delete_comment(self, comment_id: str, actor: Principal) -> None:
        def work() -> None:
            comment = self.get(comment_id)
            self._require_owner(comment, actor, "delete")
            has_replies = (
                self.db.query(CommentModel.id)
                .filter(CommentModel.parent_comment_id == comment.id)
                .first()
            )
            if has_replies is not None:
                raise ConflictError("Cannot delete a comment that has replies")
            self.audit.log_delete(
                COMMENT_KIND, comment.id, comment.to_dict(), actor_id=actor.user_id
            )
            self.db.delete(comment)

        self._write("delete comment", work)
        logger.info("comment_deleted", comment_id=comment_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _clean_content(content: Optional[str]) -> str:
        if content is None or not content.strip():
            raise InputValidationError("Comment content must not be empty")
        return content.strip()

    @staticmethod
    def _require_owner(comment: CommentModel, actor: Principal, action: str) -> None:
        if actor.is_admin or comment.author_id == actor.user_id:
            return
        raise PermissionDeniedError(f"Only the author or an administrator can {action} this comment")

    def _write(self, operation: str, work):
        result = run_in_transaction(self.db, work, operation=operation)
        self.cache.invalidate(COMMENT_KIND)
        return result
