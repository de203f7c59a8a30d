"""Shared fixtures: in-memory database, users, projects and an API client."""
import os

# Settings are cached on first import; configure the test environment first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from taskhub_core import crud, models, schemas
from taskhub_core.ai import DEFAULT_SYSTEM_MESSAGE
from taskhub_core.database import get_db
from taskhub_core.errors import ExternalServiceError
from taskhub_core.events import NotificationGateway, RecordingDispatcher
from taskhub_core.security import create_access_token, hash_password

PASSWORD = "secret123"


class FakeCompletionService:
    """Completion service returning canned answers and recording prompts."""

    def __init__(self, responses=None, fail=False):
        self.responses = list(responses or [])
        self.fail = fail
        self.calls = []

    async def complete(self, prompt, system_message=DEFAULT_SYSTEM_MESSAGE):
        self.calls.append((prompt, system_message))
        if self.fail:
            raise ExternalServiceError("AI service request failed")
        if self.responses:
            return self.responses.pop(0)
        return "Looks good."


def due_in(days: float):
    return models.utcnow() + timedelta(days=days)


def auth_headers(user: models.User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(engine)
    yield engine
    models.Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def make_user(db):
    """Factory creating persisted users with the shared test password."""

    def _make(name, role=models.UserRole.TEAM_MEMBER, email=None, is_active=True):
        user = models.User(
            name=name,
            email=email or f"{name.lower()}@example.com",
            password_hash=hash_password(PASSWORD),
            role=role.value if isinstance(role, models.UserRole) else role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def manager(make_user):
    return make_user("Manager", models.UserRole.PROJECT_MANAGER)


@pytest.fixture
def member(make_user):
    return make_user("Member")


@pytest.fixture
def outsider(make_user):
    return make_user("Outsider")


@pytest.fixture
def project(db, manager, member):
    """Project created by `manager` with `member` as a Team Member."""
    return crud.create_project(
        db,
        manager,
        name="Apollo",
        members=[schemas.ProjectMemberInput(user_id=member.id)],
    )


@pytest.fixture
def make_task(db, manager):
    def _make(project, title="Task", principal=None, dispatcher=None, **fields):
        data = {"title": title, "due_date": due_in(7)}
        data.update(fields)
        return crud.create_task(db, principal or manager, project.id, data, dispatcher=dispatcher)

    return _make


@pytest.fixture
def completion_service():
    return FakeCompletionService()


@pytest.fixture
def client(session_factory, completion_service):
    """TestClient bound to the in-memory database."""
    from taskhub_core.api.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    saved_state = {
        name: getattr(app.state, name)
        for name in ("session_factory", "dispatcher", "completion_service")
    }
    app.dependency_overrides[get_db] = override_get_db
    app.state.session_factory = session_factory
    app.state.dispatcher = NotificationGateway(session_factory, app.state.broker)
    app.state.completion_service = completion_service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    for name, value in saved_state.items():
        setattr(app.state, name, value)
