"""Enumerations shared by schemas, services and routes."""

from enum import Enum, IntEnum


class EntityType(str, Enum):
    """Kinds of planning artifacts."""

    EPIC = "epic"
    USER_STORY = "user_story"
    ACCEPTANCE_CRITERIA = "acceptance_criteria"
    REQUIREMENT = "requirement"


class SearchKind(str, Enum):
    """Kinds covered by full-text search: entities, comments and steering documents."""

    EPIC = "epic"
    USER_STORY = "user_story"
    ACCEPTANCE_CRITERIA = "acceptance_criteria"
    REQUIREMENT = "requirement"
    COMMENT = "comment"
    STEERING_DOCUMENT = "steering_document"


# Entity types governed by a status workflow
WORKFLOW_ENTITY_TYPES = (EntityType.EPIC, EntityType.USER_STORY, EntityType.REQUIREMENT)

REFERENCE_PREFIXES = {
    EntityType.EPIC: "EP",
    EntityType.USER_STORY: "US",
    EntityType.ACCEPTANCE_CRITERIA: "AC",
    EntityType.REQUIREMENT: "REQ",
}

# Steering documents are numbered like entities but sit outside the hierarchy
STEERING_DOCUMENT = "steering_document"
STEERING_DOCUMENT_PREFIX = "STD"

# Reference counter key -> prefix
COUNTER_PREFIXES = {
    **{entity_type.value: prefix for entity_type, prefix in REFERENCE_PREFIXES.items()},
    STEERING_DOCUMENT: STEERING_DOCUMENT_PREFIX,
}


class Priority(IntEnum):
    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


class Role(str, Enum):
    ADMINISTRATOR = "Administrator"
    USER = "User"
    COMMENTER = "Commenter"


class DependencyType(str, Enum):
    CHILD = "child"
    COMMENT = "comment"
    RELATIONSHIP_EDGE = "relationship-edge"


class CommentStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class SortBy(str, Enum):
    RELEVANCE = "relevance"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    TITLE = "title"
    PRIORITY = "priority"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"
