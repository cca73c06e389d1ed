"""
Cumulative depth curves per side, in BTC, indexed by premium level.

Each order's fiat amount is converted at the rate its own premium implies.
Both curves read outward from the best premium: buys by descending premium,
sells by ascending premium.
"""

from __future__ import annotations

from typing import Iterable, Mapping

import numpy as np

from ..types import DepthCurves, DepthPoint, Order

# Orders implying more BTC than this are treated as corrupt or trolling
MAX_ORDER_BTC = 0.5
MAX_PREMIUM_ABS = 40.0


def order_btc_amount(order: Order, rates: Mapping[str, float]) -> float | None:
    """BTC size of one order at its implied rate, None if it cannot be priced."""
    premium = order.premium_value
    amount = order.amount_max
    if premium is None or not amount:
        return None
    rate = rates.get(order.currency.upper())
    if not rate or rate <= 0:
        return None
    implied_rate = rate * (1 + premium / 100)
    if implied_rate <= 0:
        return None
    return amount / implied_rate


def _cumulative(levels: dict[float, float], descending: bool) -> list[DepthPoint]:
    if not levels:
        return []
    premiums = sorted(levels, reverse=descending)
    volumes = np.cumsum(np.array([levels[p] for p in premiums], dtype=np.float64))
    return [DepthPoint(p, float(v)) for p, v in zip(premiums, volumes)]


def build_depth(
    orders: Iterable[Order],
    rates: Mapping[str, float],
    max_order_btc: float = MAX_ORDER_BTC,
    max_premium_abs: float = MAX_PREMIUM_ABS,
) -> DepthCurves:
    """
    Fold orders into buy/sell cumulative curves.

    Orders without premium, amount or rate are skipped, as are orders sized
    at <= 0 or > max_order_btc BTC, or with |premium| > max_premium_abs.
    """
    buy_levels: dict[float, float] = {}
    sell_levels: dict[float, float] = {}

    for order in orders:
        premium = order.premium_value
        if premium is None or abs(premium) > max_premium_abs:
            continue

        btc = order_btc_amount(order, rates)
        if btc is None or btc <= 0 or btc > max_order_btc:
            continue

        side = order.side.lower()
        if side == "buy":
            buy_levels[premium] = buy_levels.get(premium, 0.0) + btc
        elif side == "sell":
            sell_levels[premium] = sell_levels.get(premium, 0.0) + btc

    return DepthCurves(
        buy=_cumulative(buy_levels, descending=True),
        sell=_cumulative(sell_levels, descending=False),
    )
