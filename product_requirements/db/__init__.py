"""
Database package for the requirements service.
"""

from .audit import AuditLogModel, AuditService
from .base import Base, create_schema, get_db, get_engine, get_session_local
from .models import (
    AcceptanceCriteriaModel,
    CommentModel,
    EpicModel,
    ReferenceCounterModel,
    RelationshipTypeModel,
    RequirementModel,
    RequirementRelationshipModel,
    RequirementTypeModel,
    StatusModel,
    StatusTransitionModel,
    StatusWorkflowModel,
    UserModel,
    UserStoryModel,
)

__all__ = [
    "AcceptanceCriteriaModel",
    "AuditLogModel",
    "AuditService",
    "Base",
    "CommentModel",
    "EpicModel",
    "ReferenceCounterModel",
    "RelationshipTypeModel",
    "RequirementModel",
    "RequirementRelationshipModel",
    "RequirementTypeModel",
    "StatusModel",
    "StatusTransitionModel",
    "StatusWorkflowModel",
    "UserModel",
    "UserStoryModel",
    "create_schema",
    "get_db",
    "get_engine",
    "get_session_local",
]
