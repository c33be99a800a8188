"""Domain services: one class per aggregate, each bound to a database session."""

from .acceptance_criteria import AcceptanceCriteriaService
from .cache import (
    InMemorySearchCache,
    RedisSearchCache,
    SearchCache,
    get_search_cache,
    set_search_cache,
)
from .comments import CommentService
from .config import ConfigService, ReferenceDataService
from .deletion import DeletionService
from .epics import EpicService
from .reference_ids import ReferenceIdAllocator
from .relationships import RelationshipService
from .requirements import RequirementService
from .search import SearchService
from .user_stories import UserStoryService
from .users import UserService
from .workflow import WorkflowEngine

__all__ = [
    "AcceptanceCriteriaService",
    "CommentService",
    "ConfigService",
    "DeletionService",
    "EpicService",
    "InMemorySearchCache",
    "RedisSearchCache",
    "ReferenceDataService",
    "ReferenceIdAllocator",
    "RelationshipService",
    "RequirementService",
    "SearchCache",
    "SearchService",
    "UserService",
    "UserStoryService",
    "WorkflowEngine",
    "get_search_cache",
    "set_search_cache",
]
