"""Pytest configuration and fixtures."""

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_rates.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vesrates.database.db import get_db
from vesrates.database.models import Base
from vesrates.database.rate_store import RateStore


@pytest.fixture(scope="function")
def test_db():
    """Create a file-based test database."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    engine.dispose()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def session_factory(test_db):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db)


@pytest.fixture
def test_session(session_factory):
    """Create a test database session."""
    session = session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def rate_store(test_session):
    return RateStore(test_session)


@pytest.fixture
def test_client(test_session):
    """Create a test client bound to the test database."""
    from fastapi.testclient import TestClient

    from main import app

    def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()

