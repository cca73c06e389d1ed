"""
Viewer-side filtering and sorting of the order table.

These are presentation concerns: they run on every snapshot read and never
touch the reconciler's collection.
"""

from __future__ import annotations

from typing import Iterable, NamedTuple

from ..types import Order

SORT_KEYS = ("created_at", "premium", "bond")


class OrderFilter(NamedTuple):
    side: str | None = None                     # "buy" | "sell"
    currencies: frozenset[str] | None = None
    sources: frozenset[str] | None = None
    payment_method: str | None = None           # Case-insensitive substring
    authors: frozenset[str] | None = None       # e.g. web-of-trust set

    def matches(self, order: Order) -> bool:
        if self.side and order.side != self.side:
            return False
        if self.currencies is not None and order.currency not in self.currencies:
            return False
        if self.sources is not None and order.source.lower() not in self.sources:
            return False
        if self.payment_method and self.payment_method.lower() not in order.payment_methods.lower():
            return False
        if self.authors is not None and order.pubkey not in self.authors:
            return False
        return True


def apply_filter(orders: Iterable[Order], flt: OrderFilter) -> list[Order]:
    return [o for o in orders if flt.matches(o)]


def mine(orders: Iterable[Order], viewer_pubkey: str) -> list[Order]:
    """Orders published by the viewer."""
    return [o for o in orders if o.pubkey == viewer_pubkey]


def sort_orders(orders: Iterable[Order], key: str = "created_at", descending: bool = True) -> list[Order]:
    """Sort by created_at, premium or bond. Unparseable values sort as 0."""
    if key == "created_at":
        sort_key = lambda o: o.created_at
    elif key == "premium":
        sort_key = lambda o: o.premium_value or 0.0
    elif key == "bond":
        sort_key = lambda o: o.bond_value or 0.0
    else:
        raise ValueError(f"unknown sort key {key!r}; expected one of {SORT_KEYS}")
    return sorted(orders, key=sort_key, reverse=descending)
