"""User and token request schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import Role


class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., min_length=3, max_length=64)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    role: Role = Role.USER


class UserUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = Field(
        None, min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$"
    )
    role: Optional[Role] = None


class TokenRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str
