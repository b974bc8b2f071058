"""Pytest configuration and shared fixtures."""

from typing import List, Tuple

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scopeguard.core.events import EventPayload, EventPublisher, EventType
from scopeguard.db.session import init_db
from scopeguard.services.authorization import AuthorizationService, create_authorization_service
from scopeguard.stores.memory import InMemoryAssignmentStore, InMemoryPolicyStore, InMemoryRoleStore


class RecordingEventPublisher(EventPublisher):
    """Keeps published events in memory for assertions."""

    def __init__(self):
        self.events: List[Tuple[EventType, EventPayload]] = []

    def publish(self, event_type: EventType, payload: EventPayload) -> None:
        self.events.append((event_type, payload))

    def of_type(self, event_type: EventType) -> List[EventPayload]:
        return [payload for kind, payload in self.events if kind == event_type]


class FailingEventPublisher(EventPublisher):
    """Raises on every publish."""

    def publish(self, event_type: EventType, payload: EventPayload) -> None:
        raise RuntimeError("event bus unavailable")


@pytest.fixture
def tenant_id():
    return "tenant-1"


@pytest.fixture
def events():
    return RecordingEventPublisher()


@pytest.fixture
def role_store():
    return InMemoryRoleStore()


@pytest.fixture
def policy_store():
    return InMemoryPolicyStore()


@pytest.fixture
def assignment_store():
    return InMemoryAssignmentStore()


@pytest.fixture
def service(role_store, policy_store, assignment_store, events):
    """Authorization service over in-memory stores."""
    return AuthorizationService(role_store, policy_store, assignment_store, events=events)


@pytest.fixture
def db_engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest inside the test transaction
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sql_service(db_session, events):
    """Authorization service over the SQLAlchemy stores."""
    return create_authorization_service(db_session, publisher=events)


@pytest.fixture
def failing_events():
    return FailingEventPublisher()
