from __future__ import annotations

import pytest

from nostr_depth.datafeed.events import closing_template, order_template
from nostr_depth.datafeed.normalizer import normalize
from nostr_depth.datafeed.orderbook import OrderReconciler
from nostr_depth.types import RawRecord

from conftest import SELLER


def sign(template: dict, record_id: str, pubkey: str = SELLER) -> dict:
    """Stand-in for wallet signing: fills in id, pubkey and sig."""
    return {"pubkey": pubkey, **template, "id": record_id, "sig": "00" * 64}


def test_order_template_tags(now):
    template = order_template(
        "Sell",
        "eur",
        100,
        500,
        premium=2.5,
        payment_methods=("SEPA", "Revolut"),
        bond=3,
        link="https://example.org/order/1",
        order_id="abc",
        now=now,
    )
    tags = {tag[0]: tag[1:] for tag in template["tags"]}

    assert template["kind"] == 38383
    assert template["created_at"] == now
    assert tags["d"] == ["abc"]
    assert tags["k"] == ["sell"]
    assert tags["f"] == ["EUR"]
    assert tags["s"] == ["pending"]
    assert tags["fa"] == ["100", "500"]
    assert tags["pm"] == ["SEPA", "Revolut"]
    assert tags["premium"] == ["2.5"]
    assert tags["bond"] == ["3"]
    assert tags["source"] == ["https://example.org/order/1"]
    assert tags["expiration"] == [str(now + 86400)]
    assert tags["y"] == ["nostr"]
    assert tags["z"] == ["order"]
    assert {"amt", "network", "layer"} <= tags.keys()


def test_order_template_generates_unique_ids(now):
    first = order_template("buy", "USD", 10, now=now)
    second = order_template("buy", "USD", 10, now=now)

    assert first["tags"][0][1] != second["tags"][0][1]


@pytest.mark.parametrize("kwargs", [{"side": "hold"}, {"amount": 0}, {"amount_max": 5}])
def test_order_template_validates(kwargs, now):
    args = {"side": "buy", "currency": "USD", "amount": 10, **kwargs}

    with pytest.raises(ValueError):
        order_template(now=now, **args)


def test_published_order_is_accepted_by_the_book(now):
    record = RawRecord.from_dict(sign(order_template("buy", "usd", 50, premium=-1, now=now), "r1"))

    order = normalize(record, now)

    assert order.side == "buy"
    assert order.currency == "USD"
    assert order.amount_max == 50.0
    assert order.premium_value == -1.0
    assert order.source == "nostr"


def test_closing_template_evicts_order(make_record, now):
    book = OrderReconciler()
    original = make_record(created_at=now)
    book.apply(original, now)

    template = closing_template(original, now=now)
    closing = RawRecord.from_dict(sign(template, "r2"))

    assert closing.tag_value("s") == "success"
    assert closing.tag_value("d") == original.tag_value("d")
    assert closing.created_at > original.created_at
    assert sum(1 for tag in closing.tags if tag[0] == "s") == 1
    assert book.apply(closing, now)
    assert len(book) == 0


def test_closing_template_requires_non_pending_status(make_record):
    with pytest.raises(ValueError):
        closing_template(make_record(), status="pending")
