"""
Record normalizer: one RawRecord in, one Order (or None) out.

Pure function over a single record plus the evaluation time. Malformed
fields degrade to placeholders; anything unexpected is logged and the record
is rejected, never raised past this boundary.
"""

from __future__ import annotations

import math
import time

from loguru import logger

from ..types import Order, RawRecord, parse_float

DEFAULT_CURRENCY = "USD"
PLACEHOLDER = "-"

# Informal tokens and symbols -> ISO code (keys already uppercased)
CURRENCY_ALIASES: dict[str, str] = {
    "USDT": "USD",
    "USDC": "USD",
    "US$": "USD",
    "BUSD": "USD",
    "DOLLAR": "USD",
    "DOLLARS": "USD",
    "€": "EUR",
    "EURO": "EUR",
    "EUROS": "EUR",
    "£": "GBP",
    "POUND": "GBP",
    "POUNDS": "GBP",
    "STERLING": "GBP",
    "¥": "JPY",
    "YEN": "JPY",
}

# Coordinator names inside RoboSats onion links -> short display alias
LINK_SOURCE = "robosats"
COORDINATOR_ALIASES: dict[str, str] = {
    "over the moon": "moon",
    "bitcoinveneto": "veneto",
    "thebiglake": "lake",
    "templeofsats": "temple",
}


def normalize_currency(token: str | None) -> str:
    if not token or not token.strip():
        return DEFAULT_CURRENCY
    code = token.strip().upper()
    return CURRENCY_ALIASES.get(code, code)


def format_amount(value: str) -> str:
    """Integer part with thousands separators; non-numeric input is returned as-is."""
    number = parse_float(value)
    if number is None:
        return value
    return f"{math.floor(number):,}"


def parse_amount(tag: tuple[str, ...] | None) -> tuple[str, float | None, float | None]:
    """
    Parse an "fa" tag into (display, min, max).

    Two elements is a single amount, three or more is a range made of the
    last two values.
    """
    if tag is None or len(tag) < 2:
        return PLACEHOLDER, None, None
    if len(tag) == 2:
        value = parse_float(tag[1])
        return format_amount(tag[1]), value, value
    low, high = tag[-2], tag[-1]
    return f"{format_amount(low)} - {format_amount(high)}", parse_float(low), parse_float(high)


def rewrite_link(link: str, source: str | None) -> str:
    """Shorten known coordinator names in RoboSats links; scheme and path are untouched."""
    if source != LINK_SOURCE:
        return link
    for name, alias in COORDINATOR_ALIASES.items():
        link = link.replace(name, alias)
    return link


def parse_expiration(value: str | None) -> int | None:
    """Leading number of the tag as whole seconds ("1700000000.5" -> 1700000000)."""
    seconds = parse_float(value)
    if seconds is None:
        return None
    return math.trunc(seconds)


def is_pending(record: RawRecord) -> bool:
    """An absent status tag counts as pending; any other status closes the order."""
    status = record.tag_value("s")
    return status is None or status == "pending"


def order_identifier(record: RawRecord) -> str:
    """Logical order id: the "d" tag, or the record id when it is missing."""
    return record.tag_value("d") or record.id


def normalize(record: RawRecord, now: float | None = None) -> Order | None:
    """
    Convert one record into an Order.

    Returns None for closed records, expired records and records that fail
    to process.
    """
    try:
        return _normalize(record, time.time() if now is None else now)
    except Exception as exc:
        logger.warning("Skipping record {}: {!r}", getattr(record, "id", "?"), exc)
        return None


def _normalize(record: RawRecord, now: float) -> Order | None:
    if not is_pending(record):
        return None

    expiration = parse_expiration(record.tag_value("expiration"))
    if expiration is not None and expiration < now:
        logger.debug("Skipping expired record {} (expired at {})", record.id, expiration)
        return None

    source = record.tag_value("y")
    link = record.tag_value("source")
    if link:
        link = rewrite_link(link, source)

    amount, amount_min, amount_max = parse_amount(record.tag("fa"))

    pm_tag = record.tag("pm")
    payment_methods = " ".join(pm_tag[1:]) if pm_tag and len(pm_tag) > 1 else PLACEHOLDER

    return Order(
        id=record.id,
        order_id=order_identifier(record),
        pubkey=record.pubkey,
        created_at=record.created_at,
        side=(record.tag_value("k") or PLACEHOLDER).lower(),
        currency=normalize_currency(record.tag_value("f")),
        amount=amount,
        amount_min=amount_min,
        amount_max=amount_max,
        premium=record.tag_value("premium"),
        bond=record.tag_value("bond"),
        payment_methods=payment_methods,
        link=link or PLACEHOLDER,
        source=source or PLACEHOLDER,
        expiration=expiration,
    )
