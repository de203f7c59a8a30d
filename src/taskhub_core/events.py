"""Lifecycle events and the dispatch gateway that turns them into notifications.

Mutations in crud build an Event after their commit and hand it to an
EventDispatcher. The production dispatcher (NotificationGateway) persists a
Notification for each recipient in its own session and fans the event out to
the real-time broker. Dispatch never raises into the caller.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("taskhub-core.events")


class EventType(str, enum.Enum):
    """Lifecycle event types."""

    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    PROJECT_UPDATED = "project_updated"
    PROJECT_DELETED = "project_deleted"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"
    COMMENT_ADDED = "comment_added"


@dataclass
class Event:
    """A committed lifecycle change.

    `recipients` are the users that receive a persisted notification; the
    acting principal is always excluded.
    """

    type: EventType
    project_id: UUID
    actor_id: UUID
    message: str
    severity: models.NotificationSeverity = models.NotificationSeverity.INFO
    recipients: list[UUID] = field(default_factory=list)
    task_id: Optional[UUID] = None
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.recipients = recipients_excluding(self.actor_id, *self.recipients)

    def to_message(self) -> dict[str, Any]:
        """JSON-ready form sent over real-time channels."""
        return {
            "type": self.type.value,
            "project_id": str(self.project_id),
            "task_id": str(self.task_id) if self.task_id else None,
            "actor_id": str(self.actor_id),
            "message": self.message,
            "severity": self.severity.value,
            "data": self.payload,
        }


def recipients_excluding(actor_id, *user_ids) -> list:
    """Deduplicate user ids, dropping None and the actor, keeping order."""
    seen = []
    for user_id in user_ids:
        if user_id is None or user_id == actor_id or user_id in seen:
            continue
        seen.append(user_id)
    return seen


def project_channel(project_id) -> str:
    return f"project:{project_id}"


def user_channel(user_id) -> str:
    return f"user:{user_id}"


class EventDispatcher(Protocol):
    """Receives events after the originating mutation committed."""

    def publish(self, channel: str, event: Event) -> None:
        ...


class MessageBroker(Protocol):
    def publish(self, channel: str, message: dict[str, Any]) -> None:
        ...

    def unsubscribe_user(self, channel: str, user_id) -> int:
        ...

    def close_channel(self, channel: str) -> int:
        ...


class NullDispatcher:
    """Dispatcher that discards every event."""

    def publish(self, channel: str, event: Event) -> None:
        logger.debug(f"Discarded {event.type.value} on {channel}")


class RecordingDispatcher:
    """Dispatcher that keeps published events in memory."""

    def __init__(self):
        self.published: list[tuple[str, Event]] = []

    def publish(self, channel: str, event: Event) -> None:
        self.published.append((channel, event))

    @property
    def events(self) -> list[Event]:
        return [event for _, event in self.published]

    def of_type(self, event_type: EventType) -> list[Event]:
        return [event for event in self.events if event.type == event_type]


class NotificationGateway:
    """
    Persist notifications and broadcast events.

    Args:
        session_factory: Callable returning a new Session (not the request session)
        broker: Optional real-time broker for channel fan-out
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        broker: Optional[MessageBroker] = None,
    ):
        self.session_factory = session_factory
        self.broker = broker

    def publish(self, channel: str, event: Event) -> None:
        try:
            self._persist(event)
        except Exception as e:
            logger.error(f"Failed to persist notifications for {event.type.value}: {e}", exc_info=True)

        if self.broker is None:
            return

        try:
            if event.type == EventType.MEMBER_REMOVED:
                # Removed members leave the project channel before the broadcast
                self.broker.unsubscribe_user(channel, event.payload["user_id"])
            try:
                message = event.to_message()
                self.broker.publish(channel, message)
                for user_id in event.recipients:
                    self.broker.publish(user_channel(user_id), message)
            finally:
                if event.type == EventType.PROJECT_DELETED:
                    self.broker.close_channel(channel)
        except Exception as e:
            logger.error(f"Failed to broadcast {event.type.value} on {channel}: {e}", exc_info=True)

    def _persist(self, event: Event) -> None:
        if not event.recipients:
            return

        db = self.session_factory()
        try:
            for user_id in event.recipients:
                db.add(models.Notification(
                    user_id=user_id,
                    severity=event.severity,
                    message=event.message,
                    related_project_id=event.project_id,
                    related_task_id=event.task_id,
                ))
            db.commit()
            logger.debug(f"Stored {len(event.recipients)} notifications for {event.type.value}")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
