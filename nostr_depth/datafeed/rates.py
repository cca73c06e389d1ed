"""
BTC/fiat rate aggregation across independent HTTP feeds.

Every refresh queries all feeds concurrently and rebuilds the rate table
from scratch: per currency, the unweighted mean of every feed that reported
it. A failing feed is dropped from that pass only.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, NamedTuple

import aiohttp
import orjson
from loguru import logger

from ..config import DEFAULT_FEEDS, RateFeed
from ..types import RateTable


class RateFeedError(Exception):
    """One feed failed or returned something unusable."""


class RateRefresh(NamedTuple):
    rates: RateTable
    sources: tuple[str, ...]       # Feeds that contributed
    error: str | None              # Set only when every feed failed


def parse_feed(payload: Any, asset_key: str) -> dict[str, float]:
    """
    Extract {CURRENCY: rate} from a feed payload of shape
    {asset: {currency: rate, ...}, ...}.

    Keys are uppercased; non-numeric and non-positive rates are dropped.
    """
    if not isinstance(payload, Mapping):
        raise RateFeedError(f"expected an object, got {type(payload).__name__}")
    nested = payload.get(asset_key)
    if not isinstance(nested, Mapping):
        raise RateFeedError(f"missing {asset_key!r} object")

    rates: dict[str, float] = {}
    for currency, rate in nested.items():
        if isinstance(rate, bool) or not isinstance(rate, (int, float)):
            continue
        if rate > 0:
            rates[str(currency).upper()] = float(rate)
    if not rates:
        raise RateFeedError(f"no usable rates under {asset_key!r}")
    return rates


def average_rates(sources: Mapping[str, Mapping[str, float]]) -> RateTable:
    """Unweighted per-currency mean over every source reporting that currency."""
    collected: dict[str, list[float]] = {}
    for source_rates in sources.values():
        for currency, rate in source_rates.items():
            if rate and rate > 0:
                collected.setdefault(currency, []).append(rate)
    return {currency: sum(values) / len(values) for currency, values in collected.items()}


class RateAggregator:
    """
    Fetches and merges rate feeds.

    Usage:
        aggregator = RateAggregator()
        async with aiohttp.ClientSession() as session:
            refresh = await aggregator.refresh(session)
    """

    def __init__(
        self,
        feeds: tuple[RateFeed, ...] = DEFAULT_FEEDS,
        timeout_sec: float = 10.0,
    ) -> None:
        self.feeds = feeds
        self.timeout_sec = timeout_sec

    async def fetch_feed(self, session: aiohttp.ClientSession, feed: RateFeed) -> dict[str, float]:
        """Fetch and parse one feed. Raises RateFeedError on any failure."""
        timeout = aiohttp.ClientTimeout(total=self.timeout_sec)
        try:
            async with session.get(feed.url, timeout=timeout) as resp:
                if resp.status != 200:
                    raise RateFeedError(f"{feed.name} returned HTTP {resp.status}")
                data = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RateFeedError(f"{feed.name} request failed: {exc!r}") from exc

        try:
            payload = orjson.loads(data)
        except orjson.JSONDecodeError as exc:
            raise RateFeedError(f"{feed.name} returned invalid JSON") from exc
        return parse_feed(payload, feed.asset_key)

    async def refresh(self, session: aiohttp.ClientSession) -> RateRefresh:
        """
        Query every feed concurrently and merge.

        Always returns; when all feeds fail the table is empty and `error`
        is set. Keeping the previous table is the caller's decision.
        """
        results = await asyncio.gather(
            *(self.fetch_feed(session, feed) for feed in self.feeds),
            return_exceptions=True,
        )

        sources: dict[str, dict[str, float]] = {}
        for feed, result in zip(self.feeds, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("Rate feed {} failed: {}", feed.name, result)
                continue
            sources[feed.name] = result

        if not sources:
            logger.error("All {} rate feeds failed", len(self.feeds))
            return RateRefresh({}, (), "Failed to fetch exchange rates from any source.")

        rates = average_rates(sources)
        logger.info("Rates refreshed from {} ({} currencies)", ", ".join(sources), len(rates))
        return RateRefresh(rates, tuple(sources), None)
