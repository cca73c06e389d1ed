"""
Live order book reconciled from a multi-relay record stream.

HOT PATH: apply() is called for every record every relay delivers, including
the redundant copies several relays send for the same order.

Strategy:
1. dict[order_id, Order] keyed by the logical "d" identifier, so redundant
   deliveries collapse onto one entry
2. Tombstones per (identifier, publisher), so a closing record that overtakes
   the pending one (different relays, different latency) still wins, and a
   close from another key cannot unseat the owner's
3. Newest-first ordering rebuilt lazily, only when a reader asks
4. Expired orders pruned lazily on snapshot reads

Delivery order across relays does not change the final state: pending
records only replace strictly older pending records, and a closing record
evicts regardless of arrival order.
"""

from __future__ import annotations

import time

from loguru import logger

from ..config import FeedConfig
from ..engine.admission import AdmissionPolicy
from ..types import Order, RawRecord
from .normalizer import is_pending, normalize, order_identifier, parse_expiration

# Upper bound on remembered closes; the oldest are forgotten first
MAX_TOMBSTONES = 50_000


class OrderReconciler:
    """
    Single-writer owner of the live order collection.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use;
    every mutation happens on the event loop that delivers relay messages.
    """

    __slots__ = (
        'order_kind', 'admission',
        '_orders', '_closed', '_sorted', '_dirty',
        '_accepted_count', '_rejected_count', '_evicted_count',
    )

    def __init__(self, config: FeedConfig | None = None) -> None:
        config = config or FeedConfig()
        self.order_kind: int = config.order_kind
        self.admission: AdmissionPolicy = config.admission

        # Core data: logical order id -> Order
        self._orders: dict[str, Order] = {}

        # Closes seen: (order id, publisher) -> expiration carried by the close
        self._closed: dict[tuple[str, str], int | None] = {}

        # Cached newest-first ordering, rebuilt lazily
        self._sorted: tuple[Order, ...] = ()
        self._dirty: bool = False

        self._accepted_count: int = 0
        self._rejected_count: int = 0
        self._evicted_count: int = 0

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._orders

    def apply(self, record: RawRecord, now: float | None = None) -> bool:
        """
        Apply one record to the book.

        Returns True if the live collection changed. Never raises: a record
        that fails to process is logged and dropped.
        """
        try:
            return self._apply(record, time.time() if now is None else now)
        except Exception as exc:
            logger.warning("Dropping record {}: {!r}", getattr(record, "id", "?"), exc)
            self._rejected_count += 1
            return False

    def _apply(self, record: RawRecord, now: float) -> bool:
        if record.kind != self.order_kind:
            return False

        order_id = order_identifier(record)

        if not is_pending(record):
            return self._close(order_id, record)

        if (order_id, record.pubkey) in self._closed:
            logger.debug("Ignoring pending record for closed order {}", order_id)
            return False

        if not self.admission.admits(record):
            self._rejected_count += 1
            return False

        current = self._orders.get(order_id)
        if current is not None:
            if current.pubkey != record.pubkey:
                logger.debug("Ignoring order {} republished by another key", order_id)
                return False
            if record.created_at <= current.created_at:
                return False

        order = normalize(record, now)
        if order is None:
            self._rejected_count += 1
            return False

        self._orders[order_id] = order
        self._dirty = True
        self._accepted_count += 1
        return True

    def _close(self, order_id: str, record: RawRecord) -> bool:
        current = self._orders.get(order_id)
        if current is not None and current.pubkey != record.pubkey:
            logger.warning(
                "Ignoring close of order {} from non-owner {}", order_id, record.pubkey[:8]
            )
            return False

        self._remember_close(order_id, record)

        if current is None:
            return False

        del self._orders[order_id]
        self._dirty = True
        self._evicted_count += 1
        logger.debug("Order {} closed ({})", order_id, record.tag_value("s"))
        return True

    def _remember_close(self, order_id: str, record: RawRecord) -> None:
        key = (order_id, record.pubkey)
        self._closed.pop(key, None)
        self._closed[key] = parse_expiration(record.tag_value("expiration"))
        while len(self._closed) > MAX_TOMBSTONES:
            del self._closed[next(iter(self._closed))]

    def remove(self, order_id: str) -> bool:
        """Drop an order locally, e.g. right after the viewer closed it."""
        if self._orders.pop(order_id, None) is None:
            return False
        self._dirty = True
        self._evicted_count += 1
        return True

    def prune_expired(self, now: float | None = None) -> int:
        """Evict orders whose expiration has passed. Returns number evicted."""
        now = time.time() if now is None else now
        expired = [oid for oid, order in self._orders.items() if order.is_expired(now)]
        for oid in expired:
            del self._orders[oid]
        if expired:
            self._dirty = True
            self._evicted_count += len(expired)

        # Pending copies of an order past its expiration are rejected by
        # normalize anyway, so the tombstone is no longer needed
        stale = [key for key, expiration in self._closed.items()
                 if expiration is not None and expiration < now]
        for key in stale:
            del self._closed[key]
        return len(expired)

    def has_expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return any(order.is_expired(now) for order in self._orders.values())

    def _ensure_sorted(self) -> None:
        """Rebuild newest-first ordering if dirty. Called lazily before reads."""
        if not self._dirty:
            return
        self._sorted = tuple(
            sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)
        )
        self._dirty = False

    def snapshot(self, now: float | None = None) -> tuple[Order, ...]:
        """
        Immutable newest-first view of live orders.

        Expired orders are pruned first, so they never appear in a snapshot
        taken after their expiration.
        """
        self.prune_expired(now)
        self._ensure_sorted()
        return self._sorted

    def get(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    def clear(self) -> None:
        self._orders.clear()
        self._closed.clear()
        self._sorted = ()
        self._dirty = False

    @property
    def stats(self) -> dict[str, int]:
        return {
            "live": len(self._orders),
            "accepted": self._accepted_count,
            "rejected": self._rejected_count,
            "evicted": self._evicted_count,
            "closed": len(self._closed),
        }
