"""Steering document request schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

MAX_DESCRIPTION_LENGTH = 50000


class SteeringDocumentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., max_length=500)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)


class SteeringDocumentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)
