"""Shared fixtures: in-memory database, engine policy and API client"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.formflow_analytics.config import AnalyticsConfig
from src.formflow_analytics.database import get_db
from src.formflow_analytics.main import app
from src.formflow_analytics.models import Base
from src.formflow_analytics.services import completion_import


@pytest.fixture
def engine():
    """In-memory SQLite shared across connections."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """Database session bound to the in-memory engine."""
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def config():
    """Default engine policy in UTC."""
    return AnalyticsConfig()


@pytest.fixture(autouse=True)
def clear_import_sessions():
    completion_import.IMPORT_SESSIONS.clear()
    yield
    completion_import.IMPORT_SESSIONS.clear()


@pytest.fixture
def client(db):
    """API client whose requests share the test session."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
