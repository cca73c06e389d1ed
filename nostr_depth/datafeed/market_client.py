"""
Market session: relay subscription + rate refresh + snapshot publication.

Runs concurrently on one event loop:
1. Long-lived order subscription on every configured relay
2. Rate refresh at startup and every rate_refresh_sec
3. Optional one-shot web-of-trust / outbox lookup for the viewer
4. Snapshot loop pushing BookSnapshot to snapshot_queue when anything changed

All state mutation happens in callbacks on the loop, so no locks are needed.
Results that arrive after stop() are discarded.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import aiohttp
from loguru import logger

from ..config import FeedConfig
from ..engine.depth import build_depth
from ..engine.filters import OrderFilter, apply_filter, sort_orders
from ..engine.pricing import price_rows
from ..types import BookSnapshot, RateTable, RawRecord
from .orderbook import OrderReconciler
from .rates import RateAggregator, RateRefresh
from .relay_pool import RelayPool
from .trust import TrustResolver

NO_EVENTS_MESSAGE = "No events found. Try again later."


class MarketClient:
    """
    Async Nostr order book session.

    Usage:
        client = MarketClient(FeedConfig())
        task = asyncio.create_task(client.run())
        snapshot = await client.snapshot_queue.get()
        ...
        client.stop()
        await task
    """

    def __init__(
        self,
        config: FeedConfig | None = None,
        aggregator: RateAggregator | None = None,
        order_filter: OrderFilter | None = None,
        sort_key: str = "created_at",
        descending: bool = True,
    ) -> None:
        self.config = config or FeedConfig()

        # Core components
        self.book = OrderReconciler(self.config)
        self.aggregator = aggregator or RateAggregator(
            self.config.feeds, timeout_sec=self.config.rate_timeout_sec
        )
        self.pool: RelayPool | None = None

        # Rate state: replaced wholesale, never patched
        self.rates: RateTable = {}
        self.rate_sources: tuple[str, ...] = ()
        self.rates_error: str | None = None

        # Viewer overlay
        self.trusted: frozenset[str] | None = None
        self.outbox_relays: list[str] = []
        self.trust_only: bool = False

        # Presentation
        self.order_filter = order_filter or OrderFilter()
        self.sort_key = sort_key
        self.descending = descending

        # State
        self._stopped = False
        self._stop_event = asyncio.Event()
        self._eose_relays: set[str] = set()
        self._dirty = True
        self._tasks: list[asyncio.Task] = []

        # Output queue for UI
        self.snapshot_queue: asyncio.Queue[BookSnapshot] = asyncio.Queue(maxsize=5)

    # ------------------------------------------------------------------
    # Callbacks (single writer: everything below runs on the event loop)
    # ------------------------------------------------------------------

    def on_record(self, record: RawRecord, relay: str = "") -> None:
        if self._stopped:
            return
        if self.book.apply(record):
            self._dirty = True

    def on_eose(self, relay: str) -> None:
        if self._stopped:
            return
        logger.debug("{} finished backlog", relay)
        self._eose_relays.add(relay)
        self._dirty = True

    def apply_rates(self, refresh: RateRefresh) -> bool:
        """
        Install a refreshed rate table.

        A total failure keeps the previous table and only records the error.
        Returns False when the refresh was discarded.
        """
        if self._stopped:
            logger.debug("Discarding rate refresh after stop")
            return False
        if refresh.rates:
            self.rates = dict(refresh.rates)
            self.rate_sources = refresh.sources
            self.rates_error = None
        else:
            self.rates_error = refresh.error
        self._dirty = True
        return True

    # ------------------------------------------------------------------
    # Viewer controls
    # ------------------------------------------------------------------

    def set_filter(self, order_filter: OrderFilter) -> None:
        self.order_filter = order_filter
        self._dirty = True

    def set_sort(self, key: str, descending: bool = True) -> None:
        self.sort_key = key
        self.descending = descending
        self._dirty = True

    def set_trust_only(self, enabled: bool) -> None:
        self.trust_only = enabled
        self._dirty = True

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def build_snapshot(self, now: float | None = None) -> BookSnapshot:
        orders = self.book.snapshot(now)

        flt = self.order_filter
        if self.trust_only and self.trusted is not None:
            flt = flt._replace(authors=self.trusted)
        visible = apply_filter(orders, flt)
        ordered = sort_orders(visible, self.sort_key, self.descending)

        connected = set(self.pool.connected) if self.pool is not None else set()
        loading = not self._eose_relays
        error = None
        if not orders and self._eose_relays and self._eose_relays >= connected:
            error = NO_EVENTS_MESSAGE

        return BookSnapshot(
            rows=price_rows(ordered, self.rates),
            depth=build_depth(visible, self.rates),
            rates=dict(self.rates),
            rate_sources=self.rate_sources,
            rates_error=self.rates_error,
            total_orders=len(orders),
            loading=loading,
            error=error,
            relays_connected=len(connected),
            relays_total=len(self.config.relays),
            timestamp_ms=int(time.time() * 1000),
        )

    def _push_snapshot(self) -> None:
        """Push a snapshot, dropping the oldest if the UI fell behind."""
        snapshot = self.build_snapshot()
        self._dirty = False
        try:
            self.snapshot_queue.put_nowait(snapshot)
        except asyncio.QueueFull:
            self.snapshot_queue.get_nowait()
            self.snapshot_queue.put_nowait(snapshot)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _rate_loop(self, session: aiohttp.ClientSession) -> None:
        while not self._stopped:
            refresh = await self.aggregator.refresh(session)
            self.apply_rates(refresh)
            await asyncio.sleep(self.config.rate_refresh_sec)

    async def _snapshot_loop(self) -> None:
        interval = self.config.snapshot_interval_ms / 1000
        while not self._stopped:
            if self._dirty or self.book.has_expired():
                self._push_snapshot()
            await asyncio.sleep(interval)

    async def _resolve_viewer(self, viewer: str) -> None:
        resolver = TrustResolver(self.pool, timeout_sec=self.config.query_timeout_sec)
        outbox = await resolver.discover_outbox_relays(viewer)
        trusted = await resolver.build_trust(viewer, outbox)
        if self._stopped:
            return
        self.outbox_relays = outbox
        self.trusted = trusted
        self._dirty = True

    async def run(self) -> None:
        """Main run loop. Returns after stop() once everything is torn down."""
        async with aiohttp.ClientSession() as session:
            self.pool = RelayPool(
                self.config.relays, session, reconnect_sec=self.config.relay_reconnect_sec
            )
            self._tasks = [
                asyncio.create_task(self._rate_loop(session), name="rates"),
                asyncio.create_task(self._snapshot_loop(), name="snapshots"),
            ]
            if self.config.viewer_pubkey:
                self._tasks.append(asyncio.create_task(
                    self._resolve_viewer(self.config.viewer_pubkey), name="trust"
                ))
            try:
                await self.pool.subscribe(
                    [self.config.subscription_filter()], self.on_record, self.on_eose
                )
                logger.info("Subscribed to {} relays", len(self.config.relays))
                await self._stop_event.wait()
            finally:
                self._stopped = True
                await self._shutdown()

    async def _shutdown(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self.pool is not None:
            await self.pool.close()
        logger.info("Session closed ({})", self.book.stats)

    async def publish(self, signed_record: dict[str, Any]) -> int:
        """
        Apply a signed record locally, then send it to the viewer's outbox
        relays (or the configured relays when none are known).

        Returns how many relays accepted it.
        """
        if self.pool is None or self._stopped:
            raise RuntimeError("session is not running")
        self.on_record(RawRecord.from_dict(signed_record))
        relays = self.outbox_relays or list(self.config.relays)
        accepted = await self.pool.publish(signed_record, relays, self.config.query_timeout_sec)
        if not accepted:
            logger.error("Failed to publish record {} to any relay", signed_record.get("id"))
        return accepted

    def stop(self) -> None:
        """Signal the session to stop."""
        self._stopped = True
        self._stop_event.set()
