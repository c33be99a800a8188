"""Tests for threaded and inline comments."""

import pytest
from sqlalchemy.exc import IntegrityError

from product_requirements.db.models import CommentModel
from product_requirements.errors import (
    ConflictError,
    InputValidationError,
    NotFoundError,
    PermissionDeniedError,
)
from product_requirements.schemas.comments import CommentCreate
from product_requirements.schemas.entities import EpicUpdate
from product_requirements.schemas.enums import CommentStatus
from product_requirements.services.comments import CommentService
from product_requirements.services.epics import EpicService

OAUTH_DESCRIPTION = "The system implements OAuth 2.0 authentication flow for login."
SAML_DESCRIPTION = "The system implements SAML authentication flow for login."
LINKED_TEXT = "OAuth 2.0 authentication flow"


def inline_on_epic(db, author_id, linked_text=LINKED_TEXT, description=OAUTH_DESCRIPTION):
    start = description.index(linked_text)
    return CommentService(db).create_inline_comment(
        "epic", "EP-001", author_id, "Which grant types?",
        linked_text, start, start + len(linked_text),
    )


class TestThreads:
    def test_plain_comment_on_entity(self, db_session, make, users):
        epic = make.epic()
        comment = CommentService(db_session).create_comment(
            "epic", "EP-001", users["commenter"].id, "  Looks good  "
        )

        assert comment.entity_id == epic.id
        assert comment.content == "Looks good"
        assert comment.is_resolved is False
        assert comment.is_inline is False

    def test_empty_content_rejected(self, db_session, make, users):
        make.epic()
        with pytest.raises(InputValidationError):
            CommentService(db_session).create_comment("epic", "EP-001", users["user"].id, "  ")

    def test_missing_target(self, db_session, users):
        with pytest.raises(NotFoundError):
            CommentService(db_session).create_comment("epic", "EP-404", users["user"].id, "Hi")

    def test_replies_nest_two_levels(self, db_session, make, users):
        make.epic()
        service = CommentService(db_session)
        author = users["user"].id

        root = service.create_comment("epic", "EP-001", author, "Root")
        reply = service.create_reply(root.id, author, "Reply")
        nested = service.create_reply(reply.id, author, "Nested reply")

        assert service.depth(nested) == 2
        with pytest.raises(InputValidationError) as exc_info:
            service.create_reply(nested.id, author, "Too deep")
        assert "3 levels" in exc_info.value.message

        thread = service.get_thread("epic", "EP-001")
        assert [node["content"] for node in thread] == ["Root"]
        assert thread[0]["replies"][0]["content"] == "Reply"
        assert thread[0]["replies"][0]["replies"][0]["content"] == "Nested reply"

    def test_reply_must_share_target(self, db_session, make, users):
        make.epic()
        make.epic()
        service = CommentService(db_session)
        root = service.create_comment("epic", "EP-001", users["user"].id, "Root")

        with pytest.raises(InputValidationError):
            service.create_comment("epic", "EP-002", users["user"].id, "Elsewhere", root.id)

    def test_inline_reply_rejected(self, db_session, make, users):
        make.epic(description=OAUTH_DESCRIPTION)
        service = CommentService(db_session)
        root = service.create_comment("epic", "EP-001", users["user"].id, "Root")

        with pytest.raises(InputValidationError):
            service.create(
                "epic",
                "EP-001",
                CommentCreate(
                    content="Anchored reply",
                    parent_comment_id=root.id,
                    linked_text="OAuth",
                    text_position_start=22,
                    text_position_end=27,
                ),
                users["user"].id,
            )

    def test_list_replies(self, db_session, make, users):
        make.epic()
        service = CommentService(db_session)
        root = service.create_comment("epic", "EP-001", users["user"].id, "Root")
        service.create_reply(root.id, users["commenter"].id, "First")
        service.create_reply(root.id, users["admin"].id, "Second")

        assert {c.content for c in service.list_replies(root.id)} == {"First", "Second"}


class TestResolution:
    def test_resolve_is_idempotent(self, db_session, make, users):
        make.epic()
        service = CommentService(db_session)
        comment = service.create_comment("epic", "EP-001", users["user"].id, "Fix typo")

        resolved = service.resolve(comment.id, users["admin"].id)
        resolved_at = resolved.resolved_at
        again = service.resolve(comment.id, users["user"].id)

        assert again.is_resolved is True
        assert again.resolved_by == users["admin"].id
        assert again.resolved_at == resolved_at

    def test_resolving_reply_leaves_parent_open(self, db_session, make, users):
        make.epic()
        service = CommentService(db_session)
        root = service.create_comment("epic", "EP-001", users["user"].id, "Root")
        reply = service.create_reply(root.id, users["user"].id, "Reply")

        service.resolve(reply.id, users["user"].id)

        assert service.get(root.id).is_resolved is False

    def test_unresolve_clears_resolver(self, db_session, make, users):
        make.epic()
        service = CommentService(db_session)
        comment = service.create_comment("epic", "EP-001", users["user"].id, "Fix typo")
        service.resolve(comment.id, users["user"].id)

        reopened = service.unresolve(comment.id, users["user"].id)

        assert reopened.is_resolved is False
        assert reopened.resolved_by is None
        assert reopened.resolved_at is None

    def test_list_by_status(self, db_session, make, users):
        make.epic()
        service = CommentService(db_session)
        open_comment = service.create_comment("epic", "EP-001", users["user"].id, "Open")
        done = service.create_comment("epic", "EP-001", users["user"].id, "Done")
        service.resolve(done.id, users["user"].id)

        assert [c.id for c in service.list_by_status("epic", "EP-001", CommentStatus.OPEN)] == [
            open_comment.id
        ]
        assert [c.id for c in service.list_by_status("epic", "EP-001", "resolved")] == [done.id]


class TestOwnership:
    def test_only_author_or_admin_can_edit(self, db_session, make, users, principals):
        make.epic()
        service = CommentService(db_session)
        comment = service.create_comment("epic", "EP-001", users["commenter"].id, "Draft")

        with pytest.raises(PermissionDeniedError):
            service.update_content(comment.id, "Hijacked", principals["user"])
        assert service.update_content(comment.id, "Edited", principals["commenter"]).content == (
            "Edited"
        )
        assert service.update_content(comment.id, "Moderated", principals["admin"]).content == (
            "Moderated"
        )

    def test_delete_blocked_by_replies(self, db_session, make, users, principals):
        make.epic()
        service = CommentService(db_session)
        root = service.create_comment("epic", "EP-001", users["user"].id, "Root")
        reply = service.create_reply(root.id, users["user"].id, "Reply")

        with pytest.raises(ConflictError):
            service.delete_comment(root.id, principals["user"])

        service.delete_comment(reply.id, principals["user"])
        service.delete_comment(root.id, principals["admin"])
        assert service.list_by_entity("epic", "EP-001") == []

    def test_delete_by_other_user_denied(self, db_session, make, users, principals):
        make.epic()
        service = CommentService(db_session)
        comment = service.create_comment("epic", "EP-001", users["user"].id, "Mine")

        with pytest.raises(PermissionDeniedError):
            service.delete_comment(comment.id, principals["commenter"])


class TestInlineComments:
    def test_staling_when_linked_text_disappears(self, db_session, make, users):
        make.epic(description=OAUTH_DESCRIPTION)
        comment = inline_on_epic(db_session, users["commenter"].id)
        service = CommentService(db_session)
        assert [c.id for c in service.get_visible_inline_comments("epic", "EP-001")] == [
            comment.id
        ]

        EpicService(db_session).update("EP-001", EpicUpdate(description=SAML_DESCRIPTION))

        stored = service.get(comment.id)
        assert stored.is_stale is True
        assert stored.linked_text == LINKED_TEXT
        assert service.get_visible_inline_comments("epic", "EP-001") == []

    def test_restored_description_clears_staleness(self, db_session, make, users):
        make.epic(description=OAUTH_DESCRIPTION)
        comment = inline_on_epic(db_session, users["user"].id)
        epics = EpicService(db_session)

        epics.update("EP-001", EpicUpdate(description=SAML_DESCRIPTION))
        epics.update("EP-001", EpicUpdate(description=OAUTH_DESCRIPTION))

        assert CommentService(db_session).get(comment.id).is_stale is False

    def test_preview_of_stranded_comments(self, db_session, make, users):
        make.epic(description=OAUTH_DESCRIPTION)
        comment = inline_on_epic(db_session, users["user"].id)

        stranded = EpicService(db_session).stale_inline_comments("EP-001", SAML_DESCRIPTION)

        assert [c.id for c in stranded] == [comment.id]
        assert CommentService(db_session).get(comment.id).is_stale is False

    def test_anchor_must_match_description(self, db_session, make, users):
        make.epic(description=OAUTH_DESCRIPTION)
        service = CommentService(db_session)

        with pytest.raises(InputValidationError):
            service.create_inline_comment(
                "epic", "EP-001", users["user"].id, "Off by a few", LINKED_TEXT, 19, 47
            )

    @pytest.mark.parametrize("start,end", [(10, 10), (12, 5), (-1, 4)])
    def test_invalid_range_rejected(self, db_session, make, users, start, end):
        make.epic(description=OAUTH_DESCRIPTION)
        with pytest.raises(InputValidationError):
            CommentService(db_session).create_inline_comment(
                "epic", "EP-001", users["user"].id, "Range", "x", start, end
            )

    def test_range_beyond_description_rejected(self, db_session, make, users):
        make.epic(description="Short")
        with pytest.raises(InputValidationError):
            CommentService(db_session).create_inline_comment(
                "epic", "EP-001", users["user"].id, "Range", "Short text", 0, 10
            )

    def test_offsets_are_code_points(self, db_session, make, users):
        description = "Café ☕ menu supports naïve search"
        make.epic(description=description)
        start = description.index("naïve")

        comment = CommentService(db_session).create_inline_comment(
            "epic", "EP-001", users["user"].id, "Spelling", "naïve", start, start + 5
        )

        assert comment.text_position_start == start

    def test_target_without_description_rejected(self, db_session, make, users):
        make.epic()
        with pytest.raises(InputValidationError):
            CommentService(db_session).create_inline_comment(
                "epic", "EP-001", users["user"].id, "Nothing here", "x", 0, 1
            )

    @pytest.mark.parametrize(
        "anchor",
        [
            {"linked_text": "OAuth", "text_position_start": 4},
            {"text_position_start": 0, "text_position_end": 5},
            {"linked_text": "OAuth", "text_position_start": 5, "text_position_end": 5},
            {"linked_text": "OAuth", "text_position_start": -1, "text_position_end": 4},
        ],
    )
    def test_database_rejects_partial_or_empty_anchor(self, db_session, make, users, anchor):
        epic = make.epic(description=OAUTH_DESCRIPTION)
        db_session.add(
            CommentModel(
                entity_type="epic",
                entity_id=epic.id,
                author_id=users["user"].id,
                content="Written around the service",
                **anchor,
            )
        )

        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()
