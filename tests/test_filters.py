from __future__ import annotations

import pytest

from nostr_depth.datafeed.normalizer import normalize
from nostr_depth.engine.filters import OrderFilter, apply_filter, mine, sort_orders

from conftest import BUYER, NOW, SELLER, build_record


@pytest.fixture
def orders():
    return [
        normalize(build_record("o1", side="buy", currency="EUR", premium="1", created_at=NOW - 30,
                               extra=(("pm", "SEPA", "Revolut"), ("bond", "3")))),
        normalize(build_record("o2", side="sell", currency="USD", premium="-2", created_at=NOW - 10,
                               source="mostro", pubkey=BUYER, extra=(("pm", "Zelle"),))),
        normalize(build_record("o3", side="sell", currency="USD", premium="junk", created_at=NOW - 20,
                               extra=(("bond", "1"),))),
    ]


def ids(orders):
    return [o.order_id for o in orders]


def test_empty_filter_matches_everything(orders):
    assert apply_filter(orders, OrderFilter()) == orders


def test_side_and_currency(orders):
    assert ids(apply_filter(orders, OrderFilter(side="sell"))) == ["o2", "o3"]
    assert ids(apply_filter(orders, OrderFilter(currencies=frozenset({"EUR"})))) == ["o1"]


def test_source_is_case_insensitive(orders):
    flt = OrderFilter(sources=frozenset({"mostro"}))
    assert ids(apply_filter(orders, flt)) == ["o2"]


def test_payment_method_substring(orders):
    assert ids(apply_filter(orders, OrderFilter(payment_method="revol"))) == ["o1"]
    assert apply_filter(orders, OrderFilter(payment_method="paypal")) == []


def test_authors(orders):
    assert ids(apply_filter(orders, OrderFilter(authors=frozenset({BUYER})))) == ["o2"]
    assert apply_filter(orders, OrderFilter(authors=frozenset())) == []


def test_mine(orders):
    assert ids(mine(orders, SELLER)) == ["o1", "o3"]


def test_sort_orders(orders):
    assert ids(sort_orders(orders)) == ["o2", "o3", "o1"]
    assert ids(sort_orders(orders, "created_at", descending=False)) == ["o1", "o3", "o2"]
    # Unparseable premium sorts as 0
    assert ids(sort_orders(orders, "premium")) == ["o1", "o3", "o2"]
    assert ids(sort_orders(orders, "bond")) == ["o1", "o3", "o2"]


def test_unknown_sort_key(orders):
    with pytest.raises(ValueError, match="unknown sort key"):
        sort_orders(orders, "amount")
