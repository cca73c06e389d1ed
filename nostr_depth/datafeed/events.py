"""
Unsigned record templates for publishing orders and closing them.

Signing happens outside this package (wallet/extension); the templates are
shaped so that, once signed, the reconciler accepts them like any relay
record.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Iterable

from ..config import ORDER_KIND
from ..types import RawRecord

DEFAULT_ORDER_LIFETIME_SEC = 24 * 3600


def new_order_id() -> str:
    return secrets.token_hex(16)


def _number(value: float) -> str:
    return f"{value:g}" if isinstance(value, float) else str(value)


def order_template(
    side: str,
    currency: str,
    amount: float,
    amount_max: float | None = None,
    *,
    premium: float = 0,
    payment_methods: Iterable[str] = (),
    bond: float | None = None,
    sats_amount: int = 0,
    link: str | None = None,
    network: str = "mainnet",
    layer: str = "onchain",
    expiration: int | None = None,
    order_id: str | None = None,
    now: int | None = None,
    kind: int = ORDER_KIND,
) -> dict[str, Any]:
    """
    Build an unsigned pending order.

    `amount_max` turns the fiat amount into a range. Expiration defaults to
    one day after creation.
    """
    side = side.lower()
    if side not in ("buy", "sell"):
        raise ValueError(f"side must be 'buy' or 'sell', got {side!r}")
    if amount <= 0 or (amount_max is not None and amount_max < amount):
        raise ValueError("amount must be positive and amount_max >= amount")

    created_at = int(time.time()) if now is None else now
    if expiration is None:
        expiration = created_at + DEFAULT_ORDER_LIFETIME_SEC

    fa = ["fa", _number(amount)]
    if amount_max is not None:
        fa.append(_number(amount_max))

    tags: list[list[str]] = [
        ["d", order_id or new_order_id()],
        ["k", side],
        ["f", currency.upper()],
        ["s", "pending"],
        ["amt", str(sats_amount)],
        fa,
        ["pm", *payment_methods],
        ["premium", _number(premium)],
    ]
    if link:
        tags.append(["source", link])
    tags += [["network", network], ["layer", layer]]
    if bond is not None:
        tags.append(["bond", _number(bond)])
    tags += [
        ["expiration", str(expiration)],
        ["y", "nostr"],
        ["z", "order"],
    ]
    return {"kind": kind, "created_at": created_at, "tags": tags, "content": ""}


def closing_template(record: RawRecord, status: str = "success", now: int | None = None) -> dict[str, Any]:
    """
    Copy of an order record with its status replaced, id and signature dropped.

    created_at moves forward so relays treat it as the replacement.
    """
    if status == "pending":
        raise ValueError("a closing record needs a non-pending status")
    created_at = int(time.time()) if now is None else now
    tags = [list(tag) for tag in record.tags if tag[0] != "s"]
    tags.append(["s", status])
    return {
        "pubkey": record.pubkey,
        "kind": record.kind,
        "created_at": max(created_at, record.created_at + 1),
        "tags": tags,
        "content": record.content,
    }
