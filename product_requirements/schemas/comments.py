"""Comment request schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CommentCreate(BaseModel):
    """Plain, reply or inline comment.

    Inline comments set all three of ``linked_text``, ``text_position_start``
    and ``text_position_end``; positions are code-point offsets into the
    target's description, end exclusive.
    """

    model_config = ConfigDict(extra="forbid")

    content: str
    parent_comment_id: Optional[str] = None
    linked_text: Optional[str] = None
    text_position_start: Optional[int] = None
    text_position_end: Optional[int] = None


class ReplyCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str


class CommentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str = Field(..., description="New comment text")
