from __future__ import annotations

import random

import pytest

from nostr_depth.datafeed.normalizer import normalize
from nostr_depth.engine.depth import build_depth, order_btc_amount

RATES = {"USD": 100_000.0, "EUR": 50_000.0}


@pytest.fixture
def order(make_record, now):
    def factory(order_id, side, amount, premium, currency="USD"):
        return normalize(
            make_record(order_id, side=side, amount=(amount,), premium=premium, currency=currency),
            now,
        )
    return factory


def test_amount_converted_at_implied_rate(order):
    assert order_btc_amount(order("o", "buy", "1100", "10"), RATES) == pytest.approx(0.01)
    assert order_btc_amount(order("o", "buy", "900", "-10"), RATES) == pytest.approx(0.01)


def test_levels_grouped_and_accumulated(order):
    orders = [
        order("b1", "buy", "1000", "0"),
        order("b2", "buy", "1000", "0"),
        order("b3", "buy", "2000", "-100", "EUR"),  # out of premium bound
        order("b4", "buy", "500", "-5"),
        order("s1", "sell", "1030", "3"),
        order("s2", "sell", "1010", "1"),
    ]

    depth = build_depth(orders, RATES)

    assert [p.premium for p in depth.buy] == [0.0, -5.0]
    assert depth.buy[0].volume_btc == pytest.approx(0.02)
    assert depth.buy[1].volume_btc == pytest.approx(0.02 + 500 / 95_000)
    assert [p.premium for p in depth.sell] == [1.0, 3.0]
    assert depth.sell[0].volume_btc == pytest.approx(0.01)
    assert depth.sell[1].volume_btc == pytest.approx(0.02)


def test_outliers_excluded(order):
    orders = [
        order("big", "sell", "60000", "0"),       # 0.6 BTC
        order("wild", "sell", "100", "45"),       # premium beyond 40%
        order("wild2", "buy", "100", "-41"),
        order("ok", "sell", "50000", "0"),        # exactly 0.5 BTC
    ]

    depth = build_depth(orders, RATES)

    assert depth.buy == []
    assert [(p.premium, p.volume_btc) for p in depth.sell] == [(0.0, pytest.approx(0.5))]


def test_unpriceable_orders_skipped(order, make_record, now):
    orders = [
        order("nocur", "buy", "100", "1", "ARS"),
        normalize(make_record("noprem", side="buy", premium=None), now),
        normalize(make_record("noamt", side="buy", amount=("lots",)), now),
        order("other", "neither", "100", "1"),
    ]

    depth = build_depth(orders, RATES)

    assert depth.buy == [] and depth.sell == []


def test_empty_book():
    depth = build_depth([], RATES)

    assert depth.buy == []
    assert depth.sell == []


def test_curves_are_monotonic(order):
    rng = random.Random(11)
    orders = [
        order(f"o{i}", rng.choice(["buy", "sell"]), str(rng.randint(10, 5000)), str(rng.randint(-15, 15)))
        for i in range(300)
    ]

    depth = build_depth(orders, RATES)

    buy_premiums = [p.premium for p in depth.buy]
    sell_premiums = [p.premium for p in depth.sell]
    assert buy_premiums == sorted(buy_premiums, reverse=True)
    assert sell_premiums == sorted(sell_premiums)
    for curve in (depth.buy, depth.sell):
        volumes = [p.volume_btc for p in curve]
        assert all(b >= a for a, b in zip(volumes, volumes[1:]))
        assert all(0 < p.volume_btc for p in curve)
