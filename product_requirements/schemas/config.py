"""Schemas for administrative reference-data management."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import EntityType

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class RequirementTypeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class RequirementTypeUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class RelationshipTypeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class RelationshipTypeUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class StatusModelCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_type: EntityType
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class StatusModelUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class StatusCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    is_initial: bool = False
    is_final: bool = False
    order: int = Field(0, ge=0)


class StatusUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=64)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    is_initial: Optional[bool] = None
    is_final: Optional[bool] = None
    order: Optional[int] = Field(None, ge=0)


class TransitionCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    from_status_id: str
    to_status_id: str
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
