"""Test configuration and fixtures."""

from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from product_requirements.api import app
from product_requirements.auth import issue_token
from product_requirements.db.base import create_db_engine, create_schema, get_db
from product_requirements.db.models import UserModel
from product_requirements.db.seed import seed_reference_data
from product_requirements.schemas.common import Principal
from product_requirements.schemas.entities import (
    AcceptanceCriteriaCreate,
    EpicCreate,
    RequirementCreate,
    UserStoryCreate,
)
from product_requirements.schemas.enums import Role
from product_requirements.schemas.steering_documents import SteeringDocumentCreate
from product_requirements.schemas.users import UserCreate
from product_requirements.services.acceptance_criteria import AcceptanceCriteriaService
from product_requirements.services.cache import InMemorySearchCache, set_search_cache
from product_requirements.services.epics import EpicService
from product_requirements.services.requirements import RequirementService
from product_requirements.services.steering_documents import SteeringDocumentService
from product_requirements.services.user_stories import UserStoryService
from product_requirements.services.users import UserService

TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture
def engine():
    """Fresh in-memory database with every table created."""
    engine = create_db_engine(TEST_DATABASE_URL)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Session on a seeded database (types, counters, default workflows)."""
    session = session_factory()
    seed_reference_data(session)
    yield session
    session.close()


@pytest.fixture(autouse=True)
def search_cache():
    """Isolated search cache per test."""
    cache = InMemorySearchCache()
    set_search_cache(cache)
    yield cache
    set_search_cache(None)


@pytest.fixture
def users(db_session) -> Dict[str, UserModel]:
    """One user per role, keyed by role name."""
    service = UserService(db_session)
    return {
        "admin": service.create(
            UserCreate(username="alice", email="alice@example.com", role=Role.ADMINISTRATOR)
        ),
        "user": service.create(
            UserCreate(username="bob", email="bob@example.com", role=Role.USER)
        ),
        "commenter": service.create(
            UserCreate(username="carol", email="carol@example.com", role=Role.COMMENTER)
        ),
    }


@pytest.fixture
def principals(users) -> Dict[str, Principal]:
    return {name: Principal(user_id=user.id, role=Role(user.role)) for name, user in users.items()}


class Factory:
    """Creates entities and steering documents through the services as one user."""

    def __init__(self, db, user_id: str):
        self.db = db
        self.user_id = user_id

    def epic(self, title: str = "Epic", description: Optional[str] = None, priority: int = 3, **kwargs):
        data = EpicCreate(title=title, description=description, priority=priority, **kwargs)
        return EpicService(self.db).create(data, creator_id=self.user_id)

    def story(
        self,
        epic,
        title: str = "Story",
        description: Optional[str] = None,
        priority: int = 3,
        **kwargs,
    ):
        data = UserStoryCreate(
            epic_id=epic.id, title=title, description=description, priority=priority, **kwargs
        )
        return UserStoryService(self.db).create(data, creator_id=self.user_id)

    def criterion(self, story, description: str = "WHEN a user signs in THE SYSTEM SHALL greet them"):
        data = AcceptanceCriteriaCreate(user_story_id=story.id, description=description)
        return AcceptanceCriteriaService(self.db).create(data, author_id=self.user_id)

    def requirement(
        self,
        story,
        title: str = "Requirement",
        description: Optional[str] = None,
        priority: int = 3,
        type_id: str = "Functional",
        criterion=None,
        **kwargs,
    ):
        data = RequirementCreate(
            user_story_id=story.id,
            type_id=type_id,
            title=title,
            description=description,
            priority=priority,
            acceptance_criteria_id=criterion.id if criterion is not None else None,
            **kwargs,
        )
        return RequirementService(self.db).create(data, creator_id=self.user_id)

    def steering_document(self, title: str = "Coding standards", description: Optional[str] = None):
        data = SteeringDocumentCreate(title=title, description=description)
        return SteeringDocumentService(self.db).create(data, creator_id=self.user_id)


@pytest.fixture
def make(db_session, users) -> Factory:
    return Factory(db_session, users["user"].id)


@pytest.fixture
def client(session_factory, db_session, users):
    """API client whose requests use the test database."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(users):
    """Build an Authorization header for one of the ``users`` fixtures."""

    def build(role: str = "user") -> Dict[str, str]:
        user = users[role]
        return {"Authorization": f"Bearer {issue_token(user.id, Role(user.role))}"}

    return build
