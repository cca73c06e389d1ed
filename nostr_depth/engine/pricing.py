"""
Implied BTC price of an order.

The price is the fiat-per-BTC rate the order's premium implies, not a
converted amount.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from ..types import Order, OrderRow, parse_float


def derive_price(
    amount: float | None,
    currency: str | None,
    premium: str | None,
    rates: Mapping[str, float],
) -> str | None:
    """
    Format "<rate * (1 + premium/100)> <CODE>/BTC", e.g. "110,000 USD/BTC".

    Returns None without an amount, a currency or a positive rate for it.
    A missing or unparseable premium counts as 0.
    """
    if not amount or not currency:
        return None
    code = currency.upper()
    rate = rates.get(code)
    if not rate or rate <= 0:
        return None

    premium_pct = parse_float(premium) or 0.0
    final_rate = rate * (1 + premium_pct / 100)
    return f"{final_rate:,.0f} {code}/BTC"


def price_rows(orders: Iterable[Order], rates: Mapping[str, float]) -> list[OrderRow]:
    return [
        OrderRow(order, derive_price(order.amount_max, order.currency, order.premium, rates))
        for order in orders
    ]
