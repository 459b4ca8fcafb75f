import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from app.database import get_session  # noqa: E402
from app.main import app  # noqa: E402
from app.services.event_dispatcher import reset_event_dispatcher  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# CRITICAL: Test Database Setup with StaticPool
# ============================================================================
# 1. Use sqlite:///:memory: with StaticPool so ALL sessions share same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models MUST be imported before create_all() (see session_fixture)
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables created explicitly, not relying on app startup
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(autouse=True)
def fresh_dispatcher(monkeypatch):
    """Each test starts with a live (non dry-run) dispatcher and no subscribers."""
    monkeypatch.setenv("EVENT_DISPATCH_DRY_RUN", "false")
    reset_event_dispatcher()
    yield
    reset_event_dispatcher()


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session

    With StaticPool + :memory:, all sessions share the same database.
    Tables persist across tests within a session but are isolated per test run.
    """
    # Import all models to ensure they're registered BEFORE create_all
    from app.models.bracket import Bracket  # noqa: F401
    from app.models.category import Category  # noqa: F401
    from app.models.match import Match  # noqa: F401
    from app.models.match_event import MatchEvent  # noqa: F401
    from app.models.tournament import Tournament  # noqa: F401

    # Create all tables on test engine (explicit, don't rely on app startup)
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    CRITICAL: Override MUST be set BEFORE TestClient() and stay in place
    for the entire duration. This ensures the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(name="file_engine")
def file_engine_fixture(tmp_path):
    """File-backed SQLite engine so two sessions hold independent connections."""
    from app import models  # noqa: F401

    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()
