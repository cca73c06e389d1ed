"""
Data types for the Nostr order book.

Notes:
- NamedTuples keep every record immutable, so snapshots handed to readers
  can never be mutated behind the reconciler's back
- Tags are stored as tuples of tuples for the same reason
"""

from __future__ import annotations

import math
import re
from typing import Any, NamedTuple

# Rate table: uppercase currency code -> currency units per 1 BTC
RateTable = dict[str, float]


class RawRecord(NamedTuple):
    """A signed broadcast record as delivered by a relay. Never mutated."""
    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: tuple[tuple[str, ...], ...]
    content: str = ""
    sig: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawRecord:
        """
        Build a record from a relay JSON object.

        Raises KeyError/TypeError/ValueError on a malformed payload; callers
        decide whether that is fatal.
        """
        tags = tuple(
            tuple(str(v) for v in tag)
            for tag in data.get("tags") or ()
            if isinstance(tag, (list, tuple)) and tag
        )
        return cls(
            id=str(data["id"]),
            pubkey=str(data["pubkey"]),
            created_at=int(data.get("created_at") or 0),
            kind=int(data.get("kind") or 0),
            tags=tags,
            content=str(data.get("content") or ""),
            sig=str(data.get("sig") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def tag(self, label: str) -> tuple[str, ...] | None:
        """First tag with this label, or None."""
        for tag in self.tags:
            if tag[0] == label:
                return tag
        return None

    def tag_value(self, label: str) -> str | None:
        """First value of the first tag with this label, or None."""
        tag = self.tag(label)
        if tag is None or len(tag) < 2:
            return None
        return tag[1]


class Order(NamedTuple):
    """
    Normalized, display-ready projection of a pending order record.

    `amount` is the display string ("1,500" or "100 - 500"); `amount_max` is
    the value used for pricing and depth (the maximum of a range).
    """
    id: str
    order_id: str            # Logical identifier ("d" tag)
    pubkey: str
    created_at: int
    side: str                # "buy" | "sell" | "-"
    currency: str            # ISO code, defaults to USD
    amount: str
    amount_min: float | None
    amount_max: float | None
    premium: str | None      # Raw self-declared premium percentage
    bond: str | None
    payment_methods: str
    link: str
    source: str
    expiration: int | None

    @property
    def premium_value(self) -> float | None:
        """Premium as a float, None when absent or unparseable."""
        return parse_float(self.premium)

    @property
    def bond_value(self) -> float | None:
        return parse_float(self.bond)

    def is_expired(self, now: float) -> bool:
        return self.expiration is not None and self.expiration < now


class OrderRow(NamedTuple):
    """Order plus the price implied by its premium, for table rendering."""
    order: Order
    price: str | None


class DepthPoint(NamedTuple):
    """One sample of a cumulative depth curve."""
    premium: float
    volume_btc: float      # Cumulative BTC up to and including this premium


class DepthCurves(NamedTuple):
    """Buy curve reads by descending premium, sell curve by ascending premium."""
    buy: list[DepthPoint]
    sell: list[DepthPoint]


class BookSnapshot(NamedTuple):
    """
    Complete point-in-time view for rendering.

    Pushed to the UI queue whenever the book or the rate table changes.
    """
    rows: list[OrderRow]          # Filtered and sorted
    depth: DepthCurves
    rates: RateTable
    rate_sources: tuple[str, ...]
    rates_error: str | None
    total_orders: int             # Live orders before viewer filters
    loading: bool
    error: str | None
    relays_connected: int
    relays_total: int
    timestamp_ms: int


_LEADING_NUMBER = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_float(value: str | None) -> float | None:
    """
    Lenient float parsing of self-reported tag values.

    Reads the leading numeric prefix ("10%" -> 10.0); garbage, NaN and
    infinities become None.
    """
    if value is None:
        return None
    match = _LEADING_NUMBER.match(str(value))
    if match is None:
        return None
    number = float(match.group(1))
    if math.isinf(number):
        return None
    return number
