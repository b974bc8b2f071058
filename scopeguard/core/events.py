"""Domain event publishing.

Every mutation and every evaluation produces one event for the external
bus. Publishing is best effort: publishers never block the caller on
delivery, never retry synchronously, and a failure is logged and dropped.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from scopeguard.core.config import Settings, get_settings
from scopeguard.core.timeutil import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event types emitted by the authorization service."""

    ROLE_CREATED = "ROLE_CREATED"
    ROLE_UPDATED = "ROLE_UPDATED"
    ROLE_DELETED = "ROLE_DELETED"
    POLICY_CREATED = "POLICY_CREATED"
    POLICY_UPDATED = "POLICY_UPDATED"
    POLICY_DELETED = "POLICY_DELETED"
    ROLE_ASSIGNED = "ROLE_ASSIGNED"
    ROLE_REVOKED = "ROLE_REVOKED"
    ROLE_EXPIRED = "ROLE_EXPIRED"
    PERMISSION_EVALUATED = "PERMISSION_EVALUATED"

    @property
    def description(self) -> str:
        return EVENT_DESCRIPTIONS[self]


EVENT_DESCRIPTIONS: Dict[EventType, str] = {
    EventType.ROLE_CREATED: "Role created",
    EventType.ROLE_UPDATED: "Role updated",
    EventType.ROLE_DELETED: "Role deleted",
    EventType.POLICY_CREATED: "Policy created",
    EventType.POLICY_UPDATED: "Policy updated",
    EventType.POLICY_DELETED: "Policy deleted",
    EventType.ROLE_ASSIGNED: "Role assigned to user",
    EventType.ROLE_REVOKED: "Role revoked from user",
    EventType.ROLE_EXPIRED: "Role assignment expired",
    EventType.PERMISSION_EVALUATED: "Permission check performed",
}


class ActorType(str, Enum):
    USER = "user"
    SYSTEM = "system"


class EventActor(BaseModel):
    user_id: Optional[str] = None
    type: ActorType = ActorType.USER

    @classmethod
    def user(cls, user_id: str) -> "EventActor":
        return cls(user_id=user_id, type=ActorType.USER)

    @classmethod
    def system(cls) -> "EventActor":
        return cls(user_id="system", type=ActorType.SYSTEM)


class EventPayload(BaseModel):
    tenant_id: str
    entity_type: str
    entity_id: str
    action: str
    data: Dict[str, Any] = Field(default_factory=dict)
    actor: EventActor = Field(default_factory=EventActor.system)
    correlation_id: Optional[str] = None


def build_envelope(
    event_type: EventType,
    payload: EventPayload,
    settings: Settings,
    timestamp: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Wrap a payload in the bus envelope."""
    detail = payload.model_dump(mode="json")
    detail["timestamp"] = (timestamp or utcnow()).isoformat()
    detail["event_description"] = event_type.description
    return {
        "event_bus_name": settings.event_bus_name,
        "source": settings.event_source,
        "detail_type": event_type.value,
        "detail": detail,
    }


class EventPublisher(ABC):
    """Receives domain events. Implementations must not raise on delivery failure."""

    @abstractmethod
    def publish(self, event_type: EventType, payload: EventPayload) -> None:
        """Hand an event off for delivery and return immediately."""

    def close(self) -> None:
        """Release resources held by the publisher."""


class LoggingEventPublisher(EventPublisher):
    """Writes events to the log only. Used when no bus is configured."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def publish(self, event_type: EventType, payload: EventPayload) -> None:
        logger.log(
            self.level,
            "event %s tenant=%s %s/%s action=%s",
            event_type.value,
            payload.tenant_id,
            payload.entity_type,
            payload.entity_id,
            payload.action,
        )


class HttpEventPublisher(EventPublisher):
    """POSTs event envelopes to an HTTP event bus from a background pool.

    ``publish`` only schedules the delivery; the returned future is kept
    so tests and shutdown code can wait for in-flight events. At most
    ``event_max_pending`` deliveries are queued or running. Past that,
    ``publish`` drops the event with a warning and returns None.
    """

    def __init__(
        self,
        url: str,
        settings: Optional[Settings] = None,
        *,
        client: Optional[httpx.Client] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.url = url
        self.settings = settings or get_settings()
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._client = client or httpx.Client(timeout=self.settings.event_timeout)
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.event_max_workers,
            thread_name_prefix="scopeguard-events",
        )
        self._pending = threading.BoundedSemaphore(self.settings.event_max_pending)

    def publish(self, event_type: EventType, payload: EventPayload):
        envelope = build_envelope(event_type, payload, self.settings)
        if not self._pending.acquire(blocking=False):
            logger.warning(
                "Dropped event %s for %s %s: %d deliveries pending",
                event_type.value, payload.entity_type, payload.entity_id, self.settings.event_max_pending,
            )
            return None

        try:
            return self._executor.submit(self._deliver, event_type, envelope)
        except RuntimeError:
            self._pending.release()
            raise

    def _deliver(self, event_type: EventType, envelope: Dict[str, Any]) -> bool:
        try:
            response = self._client.post(self.url, json=envelope, headers=self.headers)
            response.raise_for_status()
            return True
        except Exception:
            # Log but dont fail the operation
            logger.exception("Failed to publish event %s to %s", event_type.value, self.url)
            return False
        finally:
            self._pending.release()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._client.close()


def create_publisher(settings: Optional[Settings] = None) -> EventPublisher:
    """Build the publisher configured in settings."""
    settings = settings or get_settings()
    if settings.event_bus_url:
        return HttpEventPublisher(settings.event_bus_url, settings)
    return LoggingEventPublisher()
