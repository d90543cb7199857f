"""Shared pytest fixtures: in-memory database, a seeded open week, API client."""

import os
from datetime import datetime
from types import SimpleNamespace
from typing import Generator

# Must be set before betpool.models / betpool.auth are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "development"
os.environ["API_KEY_ADMIN"] = "test-admin-key"
os.environ["API_KEY_MEMBER1"] = "test-member-key"
os.environ["API_KEY_MEMBER2"] = "test-member2-key"
os.environ["DEFAULT_REBATE_PERCENT"] = "30"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from betpool.core.pool_config import PoolConfig
from betpool.models import Base
from betpool.services import pool_admin

WEEK_START = datetime(2025, 1, 5, 0, 0, 0)
WEEK_END = datetime(2025, 1, 12, 0, 0, 0)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Fresh in-memory database per test; StaticPool keeps one shared connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def config() -> PoolConfig:
    return PoolConfig(default_rebate_percent=30, default_credit_limit_units=1000)


@pytest.fixture
def pool(db_session, config):
    """An OPEN week with Alice and Bob enrolled at 1000 units of credit."""
    alice = pool_admin.create_member(db_session, "Alice")
    bob = pool_admin.create_member(db_session, "Bob")
    week = pool_admin.create_week(db_session, "Week 1", WEEK_START, WEEK_END)
    pool_admin.add_member_to_week(db_session, week.id, alice.id, 1000)
    pool_admin.add_member_to_week(db_session, week.id, bob.id, 1000)
    return SimpleNamespace(
        week_id=week.id,
        alice_id=alice.id,
        bob_id=bob.id,
        config=config,
    )


@pytest.fixture
def client(db_session):
    """FastAPI TestClient bound to the test session."""
    from fastapi.testclient import TestClient

    from betpool.main import app
    from betpool.models import get_db

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-API-Key": "test-admin-key"}


@pytest.fixture
def member_headers():
    """Key for member 1 (Alice in every fixture here)."""
    return {"X-API-Key": "test-member-key"}


@pytest.fixture
def member2_headers():
    return {"X-API-Key": "test-member2-key"}
