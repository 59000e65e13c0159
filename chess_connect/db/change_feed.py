"""
Publish/subscribe change feed for row mutations.

Subscribers register for a single row of a table and receive the new snapshot of that row after every write.
Delivery is best-effort and in-process: there is no replay of events that happened before subscribing,
so a client must always fetch the row before relying on notifications.
"""

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Protocol
from uuid import UUID, uuid4

from chess_connect.core.models import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


@dataclass
class Subscription:
    """Handle returned by ChangeFeed.subscribe. Unsubscribing twice is harmless."""

    id: UUID
    table: str
    row_id: UUID
    feed: "ChangeFeed"
    active: bool = True

    def unsubscribe(self) -> None:
        if self.active:
            self.feed.unsubscribe(self)


class ChangeFeed(Protocol):
    def subscribe(self, table: str, row_id: UUID, callback: ChangeCallback) -> Subscription:
        """Start receiving change events for one row."""
        ...

    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop receiving change events."""
        ...

    def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every current subscriber of its row."""
        ...


class InMemoryChangeFeed:
    """Change feed living in this process. Safe to use from several threads."""

    def __init__(self) -> None:
        self._subs: dict[tuple[str, UUID], dict[UUID, ChangeCallback]] = {}
        self._lock = Lock()

    def subscribe(self, table: str, row_id: UUID, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(id=uuid4(), table=table, row_id=row_id, feed=self)
        with self._lock:
            self._subs.setdefault((table, row_id), {})[subscription.id] = callback
        logger.debug("Subscribed %s to %s/%s", subscription.id, table, row_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        key = (subscription.table, subscription.row_id)
        with self._lock:
            subscription.active = False
            callbacks = self._subs.get(key)
            if not callbacks:
                return
            callbacks.pop(subscription.id, None)
            if not callbacks:
                self._subs.pop(key, None)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            callbacks = list(self._subs.get((event.table, event.row_id), {}).values())
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                # one broken subscriber must not starve the others
                logger.exception(
                    "Subscriber failed on %s event for %s/%s",
                    event.change_type,
                    event.table,
                    event.row_id,
                )

    def subscriber_count(self, table: str, row_id: UUID) -> int:
        with self._lock:
            return len(self._subs.get((table, row_id), {}))
