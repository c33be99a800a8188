"""Requirement relationship request schemas."""

from pydantic import BaseModel, ConfigDict, Field


class RelationshipCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_requirement_id: str = Field(..., description="UUID or REQ-NNN")
    target_requirement_id: str = Field(..., description="UUID or REQ-NNN")
    relationship_type: str = Field(
        ..., description="Relationship type id or name, e.g. depends_on"
    )
