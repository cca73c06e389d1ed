from __future__ import annotations

import itertools

import pytest

from nostr_depth.types import RawRecord

NOW = 1_760_000_000
SELLER = "a" * 64
BUYER = "b" * 64

_record_ids = itertools.count()


def build_record(
    order_id: str | None = "order-1",
    *,
    side: str = "sell",
    currency: str | None = "USD",
    amount: tuple[str, ...] = ("1000",),
    premium: str | None = "2",
    status: str | None = "pending",
    pubkey: str = SELLER,
    created_at: int = NOW - 60,
    expiration: int | None = None,
    source: str | None = "robosats",
    kind: int = 38383,
    extra: tuple[tuple[str, ...], ...] = (),
) -> RawRecord:
    tags: list[tuple[str, ...]] = []
    if order_id is not None:
        tags.append(("d", order_id))
    tags.append(("k", side))
    if currency is not None:
        tags.append(("f", currency))
    if status is not None:
        tags.append(("s", status))
    tags.append(("fa", *amount))
    if premium is not None:
        tags.append(("premium", premium))
    if source is not None:
        tags.append(("y", source))
    if expiration is not None:
        tags.append(("expiration", str(expiration)))
    tags.extend(extra)
    return RawRecord(
        id=f"{next(_record_ids):064x}",
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=tuple(tags),
    )


@pytest.fixture
def make_record():
    return build_record


@pytest.fixture
def now() -> int:
    return NOW
