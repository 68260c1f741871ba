"""Thread-safe event bus used to broadcast activity snapshots."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "agent_activity"


@dataclass(frozen=True)
class Event:
    """
    Immutable event delivered to bus subscribers.

    Attributes:
        event_type: Topic the event was published on (e.g., "agent_activity")
        source: Origin of the event (e.g., "activity_monitor")
        data: Event-specific payload
        timestamp: When the event was created
        correlation_id: Optional ID for correlating related events
    """

    event_type: str
    source: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    correlation_id: str | None = None


class EventHandler(Protocol):
    """Callable that receives published events."""

    def __call__(self, event: Event) -> None: ...


class EventBus:
    """
    Thread-safe event bus with pub/sub pattern.

    Subscribers register interest in a topic and receive every event
    published on it. Delivery is best effort: a handler that raises is
    logged and skipped, and nothing is queued for late subscribers.

    Thread Safety:
        - All public methods are thread-safe
        - Subscribers can be added/removed during event publishing
        - Events are delivered in subscription order (per topic)

    Example:
        bus = EventBus()
        sub_id = bus.subscribe("agent_activity", lambda e: print(e.data))
        bus.publish(Event("agent_activity", "test", {"activities": []}))
        bus.unsubscribe(sub_id)
    """

    def __init__(self) -> None:
        # Map of topic -> list of (subscription_id, handler) tuples
        self._subscribers: dict[str, list[tuple[str, EventHandler]]] = {}
        self._lock = threading.Lock()
        logger.debug("EventBus initialized")

    def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """
        Subscribe to events on a topic.

        Args:
            event_type: Topic to receive
            handler: Callable that processes events

        Returns:
            Subscription ID for unsubscribing
        """
        subscription_id = str(uuid.uuid4())

        with self._lock:
            subscribers = self._subscribers.setdefault(event_type, [])
            subscribers.append((subscription_id, handler))
            total = len(subscribers)

        logger.debug(
            "Subscribed to event type",
            extra={
                "event_type": event_type,
                "subscription_id": subscription_id,
                "total_subscribers": total,
            },
        )
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Remove a subscription.

        Returns:
            True if unsubscribed, False if ID not found
        """
        with self._lock:
            for event_type, subscribers in self._subscribers.items():
                for i, (sub_id, _) in enumerate(subscribers):
                    if sub_id == subscription_id:
                        subscribers.pop(i)
                        logger.debug(
                            "Unsubscribed from event type",
                            extra={"event_type": event_type, "subscription_id": subscription_id},
                        )
                        return True

        logger.warning("Subscription ID not found", extra={"subscription_id": subscription_id})
        return False

    def publish(self, event: Event) -> None:
        """
        Publish an event to all subscribers synchronously.

        Handlers are called in subscription order. A handler that raises is
        logged and does not prevent the others from running.
        """
        with self._lock:
            subscribers = list(self._subscribers.get(event.event_type, []))

        if not subscribers:
            logger.debug("No subscribers for event type", extra={"event_type": event.event_type})
            return

        logger.debug(
            "Publishing event",
            extra={
                "event_type": event.event_type,
                "source": event.source,
                "subscriber_count": len(subscribers),
            },
        )

        for subscription_id, handler in subscribers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Handler raised exception",
                    extra={
                        "event_type": event.event_type,
                        "subscription_id": subscription_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )

    def publish_async(self, event: Event) -> threading.Thread:
        """
        Publish an event from a background thread without waiting for handlers.

        Returns:
            The started daemon thread, so callers can join() it if needed.
        """
        logger.debug(
            "Publishing event asynchronously",
            extra={"event_type": event.event_type, "source": event.source},
        )
        thread = threading.Thread(
            target=self.publish,
            args=(event,),
            daemon=True,
            name=f"EventBus-{event.event_type}",
        )
        thread.start()
        return thread

    def get_subscriber_count(self, event_type: str | None = None) -> int:
        """
        Get the number of subscribers for a topic, or across all topics.
        """
        with self._lock:
            if event_type is not None:
                return len(self._subscribers.get(event_type, []))
            return sum(len(subs) for subs in self._subscribers.values())
