"""
Pydantic schemas for the requirements API.
"""

from .comments import CommentCreate, CommentUpdate, ReplyCreate
from .common import ErrorResponse, ListResponse, Principal, list_response
from .config import (
    RelationshipTypeCreate,
    RelationshipTypeUpdate,
    RequirementTypeCreate,
    RequirementTypeUpdate,
    StatusCreate,
    StatusModelCreate,
    StatusModelUpdate,
    StatusUpdate,
    TransitionCreate,
)
from .deletion import DeletionReport, Dependency, DependencyReport
from .entities import (
    AcceptanceCriteriaCreate,
    AcceptanceCriteriaUpdate,
    Assignment,
    EntityFilters,
    EpicCreate,
    EpicUpdate,
    RequirementCreate,
    RequirementUpdate,
    StatusChange,
    UserStoryCreate,
    UserStoryUpdate,
)
from .enums import (
    CommentStatus,
    DependencyType,
    EntityType,
    Priority,
    Role,
    SearchKind,
    SortBy,
    SortOrder,
)
from .relationships import RelationshipCreate
from .search import SearchParams
from .steering_documents import SteeringDocumentCreate, SteeringDocumentUpdate
from .users import TokenRequest, UserCreate, UserUpdate

__all__ = [
    "AcceptanceCriteriaCreate",
    "AcceptanceCriteriaUpdate",
    "Assignment",
    "CommentCreate",
    "CommentStatus",
    "CommentUpdate",
    "DeletionReport",
    "Dependency",
    "DependencyReport",
    "DependencyType",
    "EntityFilters",
    "EntityType",
    "EpicCreate",
    "EpicUpdate",
    "ErrorResponse",
    "ListResponse",
    "Principal",
    "Priority",
    "RelationshipCreate",
    "RelationshipTypeCreate",
    "RelationshipTypeUpdate",
    "ReplyCreate",
    "RequirementCreate",
    "RequirementTypeCreate",
    "RequirementTypeUpdate",
    "RequirementUpdate",
    "Role",
    "SearchKind",
    "SearchParams",
    "SortBy",
    "SortOrder",
    "StatusChange",
    "StatusCreate",
    "StatusModelCreate",
    "StatusModelUpdate",
    "StatusUpdate",
    "SteeringDocumentCreate",
    "SteeringDocumentUpdate",
    "TokenRequest",
    "TransitionCreate",
    "UserCreate",
    "UserStoryCreate",
    "UserStoryUpdate",
    "UserUpdate",
    "list_response",
]
