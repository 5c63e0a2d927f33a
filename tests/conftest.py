"""Pytest fixtures and configuration for taskpool tests."""

import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from taskpool.database.database import Base
from taskpool.database import models  # noqa: F401  (registers tables)
from taskpool.engine import TaskPoolManager, StageCatalog, DeadlineSweeper, LeaderboardAggregator


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


class FakeClock:
    """Controllable replacement for datetime.utcnow."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def db_engine():
    """In-memory SQLite engine with a fresh schema for each test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a database session for testing."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now():
    """Fixed starting point for engine clocks."""
    return datetime(2024, 3, 1, 9, 0, 0)


@pytest.fixture
def clock(now):
    return FakeClock(now)


@pytest.fixture
def catalog(db_session: Session, clock):
    return StageCatalog(db_session, clock=clock)


@pytest.fixture
def task_pool(db_session: Session, clock):
    return TaskPoolManager(db_session, clock=clock)


@pytest.fixture
def sweeper(db_session: Session, clock):
    return DeadlineSweeper(db_session, clock=clock)


@pytest.fixture
def leaderboard(db_session: Session):
    return LeaderboardAggregator(db_session)


@pytest.fixture
def project(catalog):
    """An empty project."""
    return catalog.create_project("Test Project")


@pytest.fixture
def stage(catalog, project):
    """First stage of the test project."""
    return catalog.create_stage(project.id, "Stage 1")


@pytest.fixture
def make_task(catalog, project, stage, now):
    """Factory for tasks in the test stage.

    Defaults: 1 point, soft deadline two days after `now`, hard deadline five days after.
    """
    def _make(stage_id=None, **overrides):
        kwargs = {
            "title": "Test Task",
            "description": "Test description",
            "soft_deadline": now + timedelta(days=2),
            "hard_deadline": now + timedelta(days=5),
            "points": 1,
        }
        kwargs.update(overrides)
        return catalog.create_task(project.id, stage_id or stage.id, **kwargs)
    return _make


@pytest.fixture
def task(make_task):
    """An available 2-point task."""
    return make_task(points=2)


@pytest.fixture
def current_user():
    """Mutable identity used by the API test client."""
    return {"id": "user-1"}


@pytest.fixture
def test_client(db_session: Session, current_user):
    """Create a FastAPI test client with overridden database dependency and authentication."""
    from taskpool.api.app import app
    from taskpool.database.database import get_db
    from taskpool.auth.dependencies import get_current_user_id

    # Override the get_db dependency to use our test database session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close the session here, let the fixture handle it

    # Override authentication to return whoever the test says is calling
    def override_get_current_user_id():
        return current_user["id"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = override_get_current_user_id

    with TestClient(app) as client:
        yield client

    # Clean up dependency overrides
    app.dependency_overrides.clear()
