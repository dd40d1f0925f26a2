"""In-process change feed for referral rows.

Each owner has a channel. Services publish INSERT/UPDATE/DELETE after their
transaction commits; listeners keep a local copy of the owner's referrals in
a ReferralFeed. Subscriptions must be closed, otherwise the channel is kept
alive.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from redamigos.logging_config import get_logger
from redamigos.storage.schemas import ReferralRecord

logger = get_logger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ReferralChange:
    """One committed mutation of a referral row."""

    type: ChangeType
    owner_id: str
    referral_id: str
    record: ReferralRecord | None = None  # None for DELETE


Listener = Callable[[ReferralChange], None]


class Subscription:
    """Handle returned by ChangeBroker.subscribe."""

    def __init__(self, broker: "ChangeBroker", owner_id: str, listener: Listener):
        self._broker = broker
        self.owner_id = owner_id
        self.listener = listener
        self.closed = False

    def close(self) -> None:
        """Stop receiving changes. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self._broker._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ChangeBroker:
    """Per-owner publish/subscribe channel for referral changes."""

    def __init__(self):
        self._lock = threading.Lock()
        self._channels: dict[str, list[Subscription]] = {}

    def subscribe(self, owner_id: str, listener: Listener) -> Subscription:
        subscription = Subscription(self, owner_id, listener)
        with self._lock:
            self._channels.setdefault(owner_id, []).append(subscription)
        logger.debug("referral_channel_subscribed", owner_id=owner_id)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._channels.get(subscription.owner_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._channels.pop(subscription.owner_id, None)
        logger.debug("referral_channel_closed", owner_id=subscription.owner_id)

    def active_channels(self) -> int:
        with self._lock:
            return len(self._channels)

    def publish(self, change: ReferralChange) -> None:
        """Deliver ``change`` to the owner's subscribers.

        A failing listener is logged and skipped; the others still run.
        """
        with self._lock:
            subscribers = list(self._channels.get(change.owner_id, []))

        for subscription in subscribers:
            try:
                subscription.listener(change)
            except Exception as e:
                logger.warning(
                    "referral_listener_failed",
                    owner_id=change.owner_id,
                    change=change.type.value,
                    error=str(e),
                )


class ReferralFeed:
    """Local, incrementally updated list of one owner's referrals.

    Changes may arrive out of order: an UPDATE or DELETE for an id that is
    not held is ignored, and a repeated INSERT replaces instead of
    duplicating.
    """

    def __init__(self, owner_id: str, items: list[ReferralRecord] | None = None, total: int | None = None):
        self.owner_id = owner_id
        self.items: list[ReferralRecord] = list(items or [])
        self.total = total if total is not None else len(self.items)
        self._subscription: Subscription | None = None

    def _index(self, referral_id: str) -> int | None:
        for i, item in enumerate(self.items):
            if item.id == referral_id:
                return i
        return None

    def apply(self, change: ReferralChange) -> None:
        if change.owner_id != self.owner_id:
            return

        position = self._index(change.referral_id)

        if change.type is ChangeType.INSERT:
            if change.record is None:
                return
            if position is not None:
                self.items[position] = change.record
            else:
                self.items.insert(0, change.record)
                self.total += 1
        elif change.type is ChangeType.UPDATE:
            if position is not None and change.record is not None:
                self.items[position] = change.record
        elif change.type is ChangeType.DELETE:
            if position is not None:
                del self.items[position]
                self.total = max(self.total - 1, 0)

    def attach(self, broker: ChangeBroker) -> Subscription:
        """Start following the owner's channel."""
        if self._subscription is None or self._subscription.closed:
            self._subscription = broker.subscribe(self.owner_id, self.apply)
        return self._subscription

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None


# Process-wide broker
change_broker = ChangeBroker()
