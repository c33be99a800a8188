"""FastAPI routers, one module per resource group."""

from . import (
    acceptance_criteria,
    comments,
    config,
    epics,
    relationships,
    requirements,
    search,
    steering_documents,
    user_stories,
    users,
)

routers = [
    epics.router,
    user_stories.router,
    acceptance_criteria.router,
    requirements.router,
    comments.router,
    relationships.router,
    steering_documents.router,
    steering_documents.epic_router,
    search.router,
    config.router,
    users.router,
]

__all__ = ["routers"]
