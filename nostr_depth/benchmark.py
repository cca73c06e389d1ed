#!/usr/bin/env python3
"""
Micro-benchmark for the order book core.

Tests:
1. Record normalization throughput
2. Reconciler throughput with redundant multi-relay delivery
3. Depth curve generation speed
4. Full snapshot generation speed (filter + sort + price + depth)

Usage:
    python -m nostr_depth.benchmark
"""

from __future__ import annotations

import random
import secrets
import time
from statistics import mean, stdev

from .datafeed.market_client import MarketClient
from .datafeed.normalizer import normalize
from .datafeed.orderbook import OrderReconciler
from .engine.depth import build_depth
from .types import RawRecord

RATES = {"USD": 100_000.0, "EUR": 92_000.0, "GBP": 79_000.0, "VES": 3_600_000.0}
CURRENCIES = ("USD", "usdt", "€", "EUR", "GBP", "VES")
PUBKEYS = tuple(secrets.token_hex(32) for _ in range(50))


def generate_mock_record(order_id: str, created_at: int, status: str = "pending") -> RawRecord:
    """Generate a mock order record."""
    low = random.randint(10, 500)
    amount = ("fa", str(low)) if random.random() > 0.3 else ("fa", str(low), str(low * 5))
    return RawRecord(
        id=secrets.token_hex(32),
        pubkey=PUBKEYS[hash(order_id) % len(PUBKEYS)],
        created_at=created_at,
        kind=38383,
        tags=(
            ("d", order_id),
            ("k", random.choice(("buy", "sell"))),
            ("f", random.choice(CURRENCIES)),
            ("s", status),
            amount,
            ("pm", "SEPA", "Revolut"),
            ("premium", f"{random.uniform(-10, 15):.1f}"),
            ("bond", "3"),
            ("y", random.choice(("robosats", "mostro", "lnp2pbot"))),
            ("expiration", str(created_at + 86400)),
        ),
    )


def generate_stream(orders: int = 2000, relays: int = 4, close_ratio: float = 0.2) -> list[RawRecord]:
    """Records as several relays would deliver them: duplicated and shuffled."""
    now = int(time.time())
    records = []
    for i in range(orders):
        order_id = f"order-{i}"
        pending = generate_mock_record(order_id, now - random.randint(0, 3600))
        records.extend([pending] * relays)
        if random.random() < close_ratio:
            records.append(generate_mock_record(order_id, pending.created_at + 60, "success"))
    random.shuffle(records)
    return records


def benchmark_normalize(iterations: int = 20000) -> None:
    """Benchmark record normalization."""
    print("\n=== Normalization Benchmark ===")

    now = int(time.time())
    records = [generate_mock_record(f"o{i}", now) for i in range(iterations)]

    start = time.perf_counter()
    for r in records:
        normalize(r, now)
    elapsed = time.perf_counter() - start

    print(f"  Records normalized: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {iterations / elapsed:,.0f} records/sec")
    print(f"  Per record: {elapsed/iterations*1_000_000:.1f}µs")


def benchmark_reconciler(orders: int = 5000) -> None:
    """Benchmark reconciliation of a redundant, out-of-order stream."""
    print("\n=== Reconciler Benchmark ===")

    stream = generate_stream(orders)
    book = OrderReconciler()

    start = time.perf_counter()
    for r in stream:
        book.apply(r)
    elapsed = time.perf_counter() - start

    print(f"  Records applied: {len(stream):,}")
    print(f"  Live orders: {len(book):,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {len(stream) / elapsed:,.0f} records/sec")


def benchmark_depth(iterations: int = 500) -> None:
    """Benchmark depth curve generation."""
    print("\n=== Depth Curve Benchmark ===")

    book = OrderReconciler()
    for r in generate_stream(2000):
        book.apply(r)
    orders = book.snapshot()

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        build_depth(orders, RATES)
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    print(f"  Orders: {len(orders):,}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {stdev(times) * 1000:.3f}ms")


def benchmark_full_snapshot(iterations: int = 200) -> None:
    """Benchmark full snapshot generation (what the UI needs)."""
    print("\n=== Full Snapshot Generation Benchmark ===")

    client = MarketClient()
    client.rates = dict(RATES)
    for r in generate_stream(2000):
        client.on_record(r)

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        client.build_snapshot()
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {stdev(times) * 1000:.3f}ms")
    print(f"  Max snapshots/sec: {1000/avg_time:,.0f}")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("Nostr Depth Performance Benchmark")
    print("=" * 60)

    benchmark_normalize()
    benchmark_reconciler()
    benchmark_depth()
    benchmark_full_snapshot()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
