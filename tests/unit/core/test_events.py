"""Tests for event envelopes and publishers."""

import json
import logging
import threading
from datetime import datetime

import httpx
import pytest

from scopeguard.core.config import Settings
from scopeguard.core.events import (
    ActorType,
    EventActor,
    EventPayload,
    EventType,
    HttpEventPublisher,
    LoggingEventPublisher,
    build_envelope,
    create_publisher,
)


@pytest.fixture
def settings():
    return Settings(event_bus_url="http://bus.test/events", event_max_workers=1)


@pytest.fixture
def payload():
    return EventPayload(
        tenant_id="t1",
        entity_type="role",
        entity_id="r-1",
        action="created",
        data={"key": "viewer"},
        actor=EventActor.user("admin-1"),
    )


class TestEnvelope:

    def test_envelope_shape(self, settings, payload):
        timestamp = datetime(2024, 1, 1, 9, 0, 0)
        envelope = build_envelope(EventType.ROLE_CREATED, payload, settings, timestamp=timestamp)

        assert envelope["event_bus_name"] == settings.event_bus_name
        assert envelope["source"] == settings.event_source
        assert envelope["detail_type"] == "ROLE_CREATED"

        detail = envelope["detail"]
        assert detail["tenant_id"] == "t1"
        assert detail["entity_id"] == "r-1"
        assert detail["data"] == {"key": "viewer"}
        assert detail["actor"] == {"user_id": "admin-1", "type": "user"}
        assert detail["timestamp"] == "2024-01-01T09:00:00"
        assert detail["event_description"] == "Role created"

    def test_default_actor_is_system(self):
        payload = EventPayload(tenant_id="t1", entity_type="permission", entity_id="u1", action="evaluated")
        assert payload.actor.type == ActorType.SYSTEM
        assert payload.actor.user_id == "system"

    def test_every_event_type_has_description(self):
        for event_type in EventType:
            assert event_type.description


class TestHttpEventPublisher:

    def test_posts_envelope(self, settings, payload):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(202)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        publisher = HttpEventPublisher(settings.event_bus_url, settings, client=client)

        future = publisher.publish(EventType.ROLE_CREATED, payload)
        assert future.result(timeout=5) is True
        publisher.close()

        assert len(received) == 1
        assert received[0]["detail_type"] == "ROLE_CREATED"
        assert received[0]["detail"]["entity_id"] == "r-1"

    def test_delivery_failure_is_logged_not_raised(self, settings, payload, caplog):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        publisher = HttpEventPublisher(settings.event_bus_url, settings, client=client)

        with caplog.at_level(logging.ERROR, logger="scopeguard.core.events"):
            future = publisher.publish(EventType.ROLE_DELETED, payload)
            assert future.result(timeout=5) is False
        publisher.close()

        assert "Failed to publish event ROLE_DELETED" in caplog.text

    def test_connection_error_is_swallowed(self, settings, payload):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        publisher = HttpEventPublisher(settings.event_bus_url, settings, client=client)

        assert publisher.publish(EventType.ROLE_UPDATED, payload).result(timeout=5) is False
        publisher.close()

    def test_drops_events_past_pending_limit(self, payload, caplog):
        settings = Settings(event_bus_url="http://bus.test/events", event_max_workers=1, event_max_pending=2)
        release = threading.Event()
        received = []

        def handler(request):
            release.wait(timeout=5)
            received.append(json.loads(request.content))
            return httpx.Response(202)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        publisher = HttpEventPublisher(settings.event_bus_url, settings, client=client)

        with caplog.at_level(logging.WARNING, logger="scopeguard.core.events"):
            first = publisher.publish(EventType.ROLE_CREATED, payload)
            second = publisher.publish(EventType.ROLE_UPDATED, payload)
            dropped = publisher.publish(EventType.ROLE_DELETED, payload)

        assert dropped is None
        assert "Dropped event ROLE_DELETED for role r-1: 2 deliveries pending" in caplog.text

        release.set()
        assert first.result(timeout=5) is True
        assert second.result(timeout=5) is True

        # slots are freed once deliveries finish
        assert publisher.publish(EventType.ROLE_DELETED, payload).result(timeout=5) is True
        publisher.close()

        assert [e["detail_type"] for e in received] == ["ROLE_CREATED", "ROLE_UPDATED", "ROLE_DELETED"]


class TestLoggingEventPublisher:

    def test_logs_event(self, payload, caplog):
        with caplog.at_level(logging.INFO, logger="scopeguard.core.events"):
            LoggingEventPublisher().publish(EventType.ROLE_CREATED, payload)

        assert "ROLE_CREATED" in caplog.text
        assert "r-1" in caplog.text


def test_create_publisher_uses_bus_url(settings):
    publisher = create_publisher(settings)
    try:
        assert isinstance(publisher, HttpEventPublisher)
        assert publisher.url == "http://bus.test/events"
    finally:
        publisher.close()


def test_create_publisher_without_bus():
    assert isinstance(create_publisher(Settings(event_bus_url=None)), LoggingEventPublisher)
