"""
Session configuration.

Everything that used to be an inline literal (relays, allow-lists,
thresholds, intervals) lives here and is passed to constructors, so tests
can substitute fixtures.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import NamedTuple

from .engine.admission import AdmissionPolicy, AllowList, PremiumBound

# Parameterized replaceable event kind used for P2P order advertisements
ORDER_KIND = 38383
CONTACT_LIST_KIND = 3
RELAY_LIST_KIND = 10002

DEFAULT_RELAYS: tuple[str, ...] = (
    "wss://nostr.satstralia.com",
    "wss://relay.mostro.network",
    "wss://relay.damus.io",
    "wss://relay.snort.social",
    "wss://nos.lol",
    "wss://relay.current.fyi",
)

# Publishers that were historically allow-listed by default
KNOWN_PUBLISHERS: frozenset[str] = frozenset({
    "7af6f7cfc3bfdf8aa65df2465aa7841096fa8ee6b2d4d14fc43d974e5db9ab96",
    "c8dc40a80bbb41fe7430fca9d0451b37a2341486ab65f890955528e4732da34a",
    "f2d4855df39a7db6196666e8469a07a131cddc08dcaa744a344343ffcf54a10c",
    "74001620297035daa61475c069f90b6950087fea0d0134b795fac758c34e7191",
    "fcc2a0bd8f5803f6dd8b201a1ddb67a4b6e268371fe7353d41d2b6684af7a61e",
    "a47457722e10ba3a271fbe7040259a3c4da2cf53bfd1e198138214d235064fc2",
    "82fa8cb978b43c79b2156585bac2c011176a21d2aead6d9f7c575c005be88390",
})


class RateFeed(NamedTuple):
    """One external BTC/fiat rate source."""
    name: str
    url: str
    asset_key: str      # Top-level key holding the {currency: rate} object


DEFAULT_FEEDS: tuple[RateFeed, ...] = (
    RateFeed(
        name="coingecko",
        url=(
            "https://api.coingecko.com/api/v3/simple/price?ids=bitcoin"
            "&vs_currencies=usd,eur,gbp,jpy,cad,aud,chf,cny,krw,inr,brl,rub,mxn,zar"
        ),
        asset_key="bitcoin",
    ),
    RateFeed(name="yadio", url="https://api.yadio.io/exrates/BTC", asset_key="BTC"),
)


@dataclass(frozen=True)
class FeedConfig:
    relays: tuple[str, ...] = DEFAULT_RELAYS
    order_kind: int = ORDER_KIND
    backlog_limit: int | None = None
    admission: AdmissionPolicy = field(default_factory=PremiumBound)
    feeds: tuple[RateFeed, ...] = DEFAULT_FEEDS

    rate_refresh_sec: float = 300.0
    rate_timeout_sec: float = 10.0
    relay_reconnect_sec: float | None = 30.0   # None disables reconnects
    query_timeout_sec: float = 8.0
    snapshot_interval_ms: int = 250

    # Enables the web-of-trust overlay and "my orders"
    viewer_pubkey: str | None = None

    def subscription_filter(self) -> dict:
        flt: dict = {"kinds": [self.order_kind], "#s": ["pending"]}
        if self.backlog_limit is not None:
            flt["limit"] = self.backlog_limit
        return flt

    def with_allow_list(
        self,
        pubkeys: frozenset[str] = KNOWN_PUBLISHERS,
        trusted_sources: frozenset[str] = frozenset({"mostro"}),
    ) -> FeedConfig:
        return replace(self, admission=AllowList(pubkeys, trusted_sources))
