"""
Shared fixtures: in-memory SQLite engine, sessions, settings and fake
collaborators. No test touches the network or a real PostgreSQL server.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from contextgrade.config import Settings
from contextgrade.database import Base
from contextgrade.models import db_models  # noqa: F401
from contextgrade.models.db_models import (
    ClientDB, MembershipDB, MembershipRole, MembershipStatus, UserDB,
)
from contextgrade.services.context import EntityProfile, empty_signal_bundle
from contextgrade.services.recommendation import (
    Confidence, Recommendation, RecommendedAction,
)


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def engine():
    """Single shared in-memory connection with working SAVEPOINTs."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite emits its own BEGIN lazily, which breaks SAVEPOINT; take it over
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        database_url="sqlite://",
        master_api_key="master-key-for-tests",
        jwt_secret_key="test-secret",
        openai_api_key=None,
    )


# =============================================================================
# TENANCY FACTORIES
# =============================================================================

@pytest.fixture
def make_client(db_session):
    """Create and commit a client with a known API key."""
    def _make(name: str = "Acme Corp", active: bool = True, api_key: str = None) -> ClientDB:
        client = ClientDB(
            id=str(uuid4()),
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{uuid4().hex[:6]}",
            active=active,
            api_key=api_key or f"key-{uuid4().hex}",
        )
        db_session.add(client)
        db_session.commit()
        return client
    return _make


@pytest.fixture
def make_user(db_session):
    def _make(email: str = None, password_hash: str = "not-a-real-hash") -> UserDB:
        user = UserDB(
            id=str(uuid4()),
            email=email or f"user-{uuid4().hex[:8]}@example.com",
            name="Test User",
            password_hash=password_hash,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def make_membership(db_session):
    def _make(
        user: UserDB,
        client: ClientDB,
        role: MembershipRole = MembershipRole.APPROVER,
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> MembershipDB:
        membership = MembershipDB(
            id=str(uuid4()),
            user_id=user.id,
            client_id=client.id,
            role=role,
            status=status,
        )
        db_session.add(membership)
        db_session.commit()
        return membership
    return _make


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeGatherer:
    """Returns a canned signal bundle, or raises when told to."""

    def __init__(self, signals=None, error: Exception = None):
        self.signals = signals if signals is not None else {
            "website": {"exists": True, "description": "Industrial sensors for logistics"},
            "search": {"sentiment": "neutral"},
        }
        self.error = error
        self.calls = []

    def gather(self, entity: EntityProfile):
        self.calls.append(entity)
        if self.error is not None:
            raise self.error
        return self.signals


class FakeRecommender:
    """Returns a canned recommendation, or raises when told to."""

    def __init__(self, recommendation: Recommendation = None, error: Exception = None):
        self.recommendation = recommendation or Recommendation(
            action=RecommendedAction.APPROVE_WITH_CONDITIONS,
            confidence=Confidence.HIGH,
            rationale=["Established website", "No negative sentiment"],
            suggested_conditions=["Net 30 payment terms"],
            model="fake-model",
        )
        self.error = error
        self.calls = []

    def recommend(self, entity, signals, decision_type, deal_amount=None):
        self.calls.append((entity, signals, decision_type, deal_amount))
        if self.error is not None:
            raise self.error
        return self.recommendation


@pytest.fixture
def fake_gatherer():
    return FakeGatherer()


@pytest.fixture
def fake_recommender():
    return FakeRecommender()


@pytest.fixture
def empty_signals():
    return empty_signal_bundle()
