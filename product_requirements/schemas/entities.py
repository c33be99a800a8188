"""
Request schemas for the entity hierarchy.

Schemas check shape only. Business rules (non-blank titles, priority range,
existing references) are enforced by the services so that API callers and
direct callers see the same error codes.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EntityFilters(BaseModel):
    """Filters accepted by entity list operations."""

    model_config = ConfigDict(extra="forbid")

    creator_id: Optional[str] = None
    assignee_id: Optional[str] = None
    author_id: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[int] = None
    epic_id: Optional[str] = None
    user_story_id: Optional[str] = None
    acceptance_criteria_id: Optional[str] = None
    type_id: Optional[str] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    updated_after: Optional[datetime] = None
    updated_before: Optional[datetime] = None


class EpicCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., max_length=500)
    description: Optional[str] = None
    priority: int = Field(..., description="1=Critical, 2=High, 3=Medium, 4=Low")
    assignee_id: Optional[str] = Field(
        None, description="Defaults to the creator when omitted"
    )
    status: Optional[str] = Field(
        None, description="Defaults to the initial status of the active workflow"
    )


class EpicUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    priority: Optional[int] = None


class UserStoryCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    epic_id: str = Field(..., description="Epic UUID or reference ID (EP-001)")
    title: str = Field(..., max_length=500)
    description: Optional[str] = None
    priority: int
    assignee_id: Optional[str] = None
    status: Optional[str] = None


class UserStoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    priority: Optional[int] = None


class AcceptanceCriteriaCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_story_id: str = Field(..., description="User story UUID or reference ID")
    description: str = Field(..., description="EARS-style acceptance criterion")


class AcceptanceCriteriaUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = None


class RequirementCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_story_id: str
    type_id: str = Field(..., description="Requirement type id or name")
    title: str = Field(..., max_length=500)
    description: Optional[str] = None
    priority: int
    acceptance_criteria_id: Optional[str] = None
    assignee_id: Optional[str] = None
    status: Optional[str] = None


class RequirementUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    priority: Optional[int] = None
    type_id: Optional[str] = None
    acceptance_criteria_id: Optional[str] = None


class StatusChange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str = Field(..., min_length=1, max_length=64)


class Assignment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assignee_id: Optional[str] = Field(None, description="None unassigns")
