"""
Live fan-out of group snapshots to subscribers.

Each subscription owns a one-slot mailbox. Publishing into a full mailbox
replaces the undelivered snapshot with the newer one, so a slow consumer
skips intermediate states but always ends up with the latest full document.
Terminal events ("deleted", "closed") end the subscription's iteration.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional, Set

from groupchat.core import metrics
from groupchat.core.logging_config import get_logger
from groupchat.db.store import GroupStore
from groupchat.models.group import Group

logger = get_logger(__name__)

SNAPSHOT = "snapshot"
DELETED = "deleted"
CLOSED = "closed"
TERMINAL_EVENTS = frozenset({DELETED, CLOSED})


@dataclass
class FeedEvent:
    type: str
    group_id: str
    group: Optional[Group] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS


class Subscription:
    """Async iterator of FeedEvents for one subscriber of one group."""

    def __init__(self, group_id: str, subscriber_id: str):
        self.group_id = group_id
        self.subscriber_id = subscriber_id
        self._mailbox: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._sealed = False    # terminal event queued, ignore further offers
        self._finished = False  # terminal event consumed

    def offer(self, event: FeedEvent) -> bool:
        """Queue ``event``. Returns True if an undelivered event was superseded."""
        if self._sealed:
            return False

        superseded = False
        if self._mailbox.full():
            self._mailbox.get_nowait()
            superseded = True
        self._mailbox.put_nowait(event)

        if event.is_terminal:
            self._sealed = True
        return superseded

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> FeedEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._mailbox.get()
        if event.is_terminal:
            self._finished = True
        return event


class GroupFeed:
    """Registry of live subscriptions, keyed by group id."""

    def __init__(self):
        self.subscriptions: Dict[str, Set[Subscription]] = {}
        self._publish_locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def subscribe(self, group_id: str, subscriber_id: str) -> AsyncIterator[Subscription]:
        """
        Register a subscription for the duration of the ``async with`` block.

        The subscription is released on normal exit, cancellation, or error.
        """
        subscription = Subscription(group_id, subscriber_id)
        self.subscriptions.setdefault(group_id, set()).add(subscription)

        metrics.feed_subscriptions_total.inc()
        metrics.feed_subscriptions_active.labels(group_id=group_id).set(
            len(self.subscriptions[group_id])
        )
        logger.info(
            "feed_subscribed",
            group_id=group_id,
            subscriber_id=subscriber_id,
            subscriber_count=len(self.subscriptions[group_id]),
        )

        reason = "normal"
        try:
            yield subscription
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        except Exception:
            reason = "error"
            raise
        finally:
            self._unsubscribe(subscription, reason)

    def _unsubscribe(self, subscription: Subscription, reason: str) -> None:
        group_id = subscription.group_id
        subscribers = self.subscriptions.get(group_id)
        if subscribers is None:
            return

        subscribers.discard(subscription)
        metrics.feed_unsubscriptions_total.labels(reason=reason).inc()

        if subscribers:
            metrics.feed_subscriptions_active.labels(group_id=group_id).set(len(subscribers))
        else:
            # Drop the per-group series with the group's last subscriber
            metrics.feed_subscriptions_active.remove(group_id)
            del self.subscriptions[group_id]
            lock = self._publish_locks.get(group_id)
            if lock is not None and not lock.locked():
                del self._publish_locks[group_id]

        logger.info(
            "feed_unsubscribed",
            group_id=group_id,
            subscriber_id=subscription.subscriber_id,
            reason=reason,
        )

    def subscriber_count(self, group_id: str) -> int:
        return len(self.subscriptions.get(group_id, set()))

    def _broadcast(self, event: FeedEvent) -> None:
        subscribers = list(self.subscriptions.get(event.group_id, set()))
        superseded = sum(1 for subscription in subscribers if subscription.offer(event))
        if superseded:
            metrics.feed_snapshots_superseded_total.inc(superseded)

    def publish(self, group: Group) -> None:
        """Offer a snapshot of ``group`` to every subscriber of that group."""
        if group.id not in self.subscriptions:
            return
        self._broadcast(FeedEvent(type=SNAPSHOT, group_id=group.id, group=group))
        metrics.feed_snapshots_published_total.inc()

    def publish_deleted(self, group_id: str) -> None:
        if group_id not in self.subscriptions:
            return
        self._broadcast(FeedEvent(type=DELETED, group_id=group_id))
        logger.info("feed_group_deleted", group_id=group_id)

    async def publish_latest(self, group_id: str, store: GroupStore) -> None:
        """
        Re-read the group and publish it.

        Reads are serialized per group, so the last publish to run always carries
        every write committed before it started.
        """
        if group_id not in self.subscriptions:
            return

        async with self._lock(group_id):
            group = await store.get_group(group_id)
            if group is None:
                self.publish_deleted(group_id)
            else:
                self.publish(group)

    async def prime(self, subscription: Subscription, store: GroupStore) -> None:
        """Deliver the current document to a freshly registered subscription."""
        async with self._lock(subscription.group_id):
            group = await store.get_group(subscription.group_id)
            if group is None:
                subscription.offer(FeedEvent(type=DELETED, group_id=subscription.group_id))
            else:
                subscription.offer(FeedEvent(type=SNAPSHOT, group_id=group.id, group=group))

    def _lock(self, group_id: str) -> asyncio.Lock:
        return self._publish_locks.setdefault(group_id, asyncio.Lock())

    def shutdown_all(self) -> None:
        """End every open subscription with a "closed" event."""
        total = sum(len(subscribers) for subscribers in self.subscriptions.values())
        if total == 0:
            logger.info("feed_shutdown", message="No active subscriptions to close")
            return

        for group_id in list(self.subscriptions):
            self._broadcast(FeedEvent(type=CLOSED, group_id=group_id))

        logger.info("feed_shutdown_completed", subscriptions_closed=total)


# Global feed instance
feed = GroupFeed()
