from __future__ import annotations

import pytest

from nostr_depth.config import DEFAULT_FEEDS, RateFeed
from nostr_depth.datafeed.rates import (
    RateAggregator,
    RateFeedError,
    average_rates,
    parse_feed,
)

FEED_A = RateFeed("feed_a", "https://a.example/rates", "bitcoin")
FEED_B = RateFeed("feed_b", "https://b.example/rates", "BTC")


class FakeResponse:
    def __init__(self, status: int, body: bytes) -> None:
        self.status = status
        self._body = body

    async def read(self) -> bytes:
        return self._body

    async def __aenter__(self) -> FakeResponse:
        return self

    async def __aexit__(self, *exc) -> bool:
        return False


class FakeSession:
    def __init__(self, responses: dict[str, FakeResponse]) -> None:
        self.responses = responses
        self.requested: list[str] = []

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.requested.append(url)
        return self.responses[url]


class ScriptedAggregator(RateAggregator):
    """Aggregator whose feeds return canned tables or raise."""

    def __init__(self, results: dict[str, object]) -> None:
        super().__init__(feeds=(FEED_A, FEED_B))
        self.results = results

    async def fetch_feed(self, session, feed):
        result = self.results[feed.name]
        if isinstance(result, Exception):
            raise result
        return result


def test_average_of_two_sources():
    rates = average_rates({"a": {"USD": 100_000.0, "EUR": 90_000.0}, "b": {"USD": 102_000.0}})

    assert rates["USD"] == pytest.approx(101_000.0)
    assert rates["EUR"] == 90_000.0


def test_average_never_stores_zero():
    rates = average_rates({"a": {"USD": 0.0, "ARS": 0}, "b": {"USD": 50.0}})

    assert rates == {"USD": 50.0}


def test_average_of_nothing_is_empty():
    assert average_rates({}) == {}


def test_parse_lowercase_feed():
    payload = {"bitcoin": {"usd": 100_000, "eur": 91_000.5}}

    assert parse_feed(payload, "bitcoin") == {"USD": 100_000.0, "EUR": 91_000.5}


def test_parse_uppercase_feed_ignores_other_keys():
    payload = {"BTC": {"USD": 101_000, "VES": 3.6e6, "bad": "x", "ZERO": 0}, "base": "BTC", "timestamp": 1}

    assert parse_feed(payload, "BTC") == {"USD": 101_000.0, "VES": 3.6e6}


@pytest.mark.parametrize("payload", [None, [], {"other": {}}, {"bitcoin": "x"}, {"bitcoin": {"usd": 0}}])
def test_parse_rejects_unusable_payloads(payload):
    with pytest.raises(RateFeedError):
        parse_feed(payload, "bitcoin")


@pytest.mark.asyncio
async def test_refresh_merges_both_feeds():
    aggregator = ScriptedAggregator({
        "feed_a": {"USD": 100_000.0, "EUR": 92_000.0},
        "feed_b": {"USD": 102_000.0},
    })

    refresh = await aggregator.refresh(session=None)

    assert refresh.rates == {"USD": pytest.approx(101_000.0), "EUR": 92_000.0}
    assert refresh.sources == ("feed_a", "feed_b")
    assert refresh.error is None


@pytest.mark.asyncio
async def test_one_failing_feed_does_not_block_the_other():
    aggregator = ScriptedAggregator({
        "feed_a": RuntimeError("boom"),
        "feed_b": {"USD": 102_000.0},
    })

    refresh = await aggregator.refresh(session=None)

    assert refresh.rates == {"USD": 102_000.0}
    assert refresh.sources == ("feed_b",)
    assert refresh.error is None


@pytest.mark.asyncio
async def test_all_feeds_failing_reports_error():
    aggregator = ScriptedAggregator({
        "feed_a": RateFeedError("down"),
        "feed_b": RateFeedError("down"),
    })

    refresh = await aggregator.refresh(session=None)

    assert refresh.rates == {}
    assert refresh.sources == ()
    assert refresh.error


@pytest.mark.asyncio
async def test_fetch_feed_over_http():
    session = FakeSession({
        FEED_A.url: FakeResponse(200, b'{"bitcoin": {"usd": 100000}}'),
        FEED_B.url: FakeResponse(200, b'{"BTC": {"USD": 102000, "EUR": 93000}}'),
    })

    refresh = await RateAggregator(feeds=(FEED_A, FEED_B)).refresh(session)

    assert session.requested == [FEED_A.url, FEED_B.url]
    assert refresh.rates == {"USD": pytest.approx(101_000.0), "EUR": 93_000.0}


@pytest.mark.asyncio
async def test_http_error_and_bad_json_are_feed_faults():
    session = FakeSession({
        FEED_A.url: FakeResponse(503, b""),
        FEED_B.url: FakeResponse(200, b"<html>"),
    })
    aggregator = RateAggregator(feeds=(FEED_A, FEED_B))

    with pytest.raises(RateFeedError):
        await aggregator.fetch_feed(session, FEED_A)
    with pytest.raises(RateFeedError):
        await aggregator.fetch_feed(session, FEED_B)

    refresh = await aggregator.refresh(session)
    assert refresh.rates == {}
    assert refresh.error


def test_default_feeds_cover_both_shapes():
    assert {feed.asset_key for feed in DEFAULT_FEEDS} == {"bitcoin", "BTC"}
