"""Reports produced by the deletion planner."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .enums import DependencyType


class Dependency(BaseModel):
    """One node of a dependency closure."""

    entity_type: str
    entity_id: str
    reference_id: Optional[str] = None
    title: Optional[str] = None
    dependency_type: DependencyType


class DeletedEntity(BaseModel):
    entity_type: str
    entity_id: str
    reference_id: Optional[str] = None


class DependencyReport(BaseModel):
    entity_type: str
    entity_id: str
    reference_id: Optional[str] = None
    can_delete: bool
    dependencies: List[Dependency] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class DeletionReport(BaseModel):
    entity_type: str
    entity_id: str
    reference_id: Optional[str] = None
    deleted: bool
    dry_run: bool
    cascade: bool
    deleted_entities: List[DeletedEntity] = Field(default_factory=list)
    dependencies: List[Dependency] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    transaction_id: Optional[str] = None
    deleted_at: Optional[str] = None
