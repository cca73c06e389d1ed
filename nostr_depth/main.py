#!/usr/bin/env python3
"""
Nostr P2P order book - live BTC order advertisements from Nostr relays.

Usage:
    python -m nostr_depth.main
    python -m nostr_depth.main --relay wss://relay.damus.io --max-premium 20

    Or via the installed script:
    nostr-depth --viewer <hex pubkey>

Controls:
    q - Quit
    s - Cycle side filter (all / buy / sell)
    o - Cycle sort column (created_at / premium / bond)
    d - Flip sort direction
    t - Toggle web-of-trust filter
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from loguru import logger

from .config import DEFAULT_RELAYS, FeedConfig
from .engine.admission import AllowList, PremiumBound, describe
from .engine.filters import OrderFilter


def configure_logging(level: str, log_file: str | None) -> None:
    """Single loguru sink; a file keeps log lines out of the TUI."""
    logger.remove()
    if log_file:
        logger.add(log_file, level=level, rotation="10 MB", enqueue=False)
    else:
        logger.add(sys.stderr, level=level)


def build_config(args: argparse.Namespace) -> FeedConfig:
    if args.allow_pubkey or args.trusted_source:
        admission = AllowList(frozenset(args.allow_pubkey), frozenset(args.trusted_source))
    else:
        admission = PremiumBound(args.max_premium)

    return FeedConfig(
        relays=tuple(args.relay) if args.relay else DEFAULT_RELAYS,
        backlog_limit=args.limit,
        admission=admission,
        viewer_pubkey=args.viewer,
    )


def build_filter(args: argparse.Namespace) -> OrderFilter:
    return OrderFilter(
        side=args.side,
        currencies=frozenset(c.upper() for c in args.currency) if args.currency else None,
        sources=frozenset(s.lower() for s in args.source) if args.source else None,
        payment_method=args.payment_method,
    )


async def run_headless(client) -> None:
    """Log a one-line summary of each snapshot instead of drawing the TUI."""
    while True:
        snap = await client.snapshot_queue.get()
        best_buy = snap.depth.buy[0].premium if snap.depth.buy else None
        best_sell = snap.depth.sell[0].premium if snap.depth.sell else None
        logger.info(
            "{} orders ({} shown), relays {}/{}, rates from {}, best buy {}%, best sell {}%{}",
            snap.total_orders,
            len(snap.rows),
            snap.relays_connected,
            snap.relays_total,
            ",".join(snap.rate_sources) or "-",
            best_buy,
            best_sell,
            f" [{snap.error or snap.rates_error}]" if snap.error or snap.rates_error else "",
        )


async def main(config: FeedConfig, order_filter: OrderFilter, headless: bool) -> None:
    """Main entry point - runs the market session and the UI concurrently."""

    # Import here to avoid slow startup for --help
    from .datafeed.market_client import MarketClient

    logger.info("Starting order book with {} relays", len(config.relays))
    logger.info("Admission: {}", describe(config.admission))

    client = MarketClient(config, order_filter=order_filter)

    async def run_feed() -> None:
        try:
            await client.run()
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Feed error")

    feed_task = asyncio.create_task(run_feed())

    try:
        if headless:
            await run_headless(client)
        else:
            from .ui.book_view import run_ui
            await run_ui(client)
    finally:
        client.stop()
        try:
            await asyncio.wait_for(feed_task, timeout=5.0)
        except asyncio.TimeoutError:
            feed_task.cancel()


def cli() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Live P2P bitcoin order book aggregated from Nostr relays",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    nostr-depth
    nostr-depth --side sell --currency EUR --currency USD
    nostr-depth --allow-pubkey <hex> --trusted-source mostro
    nostr-depth --no-ui --log-level INFO
        """
    )

    parser.add_argument(
        "--relay",
        action="append",
        default=[],
        help="Relay URL, repeatable (default: built-in relay list)"
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Upper bound on backlog records requested per relay"
    )
    parser.add_argument(
        "--max-premium",
        type=float,
        default=40.0,
        help="Reject orders whose premium magnitude exceeds this percent (default: 40)"
    )
    parser.add_argument(
        "--allow-pubkey",
        action="append",
        default=[],
        help="Only admit orders from this publisher key, repeatable"
    )
    parser.add_argument(
        "--trusted-source",
        action="append",
        default=[],
        help="Also admit orders whose 'y' source tag matches, repeatable"
    )
    parser.add_argument("--viewer", default=None, help="Viewer public key (hex) for web of trust")
    parser.add_argument("--side", choices=("buy", "sell"), default=None, help="Show one side only")
    parser.add_argument("--currency", action="append", default=[], help="Currency filter, repeatable")
    parser.add_argument("--source", action="append", default=[], help="Source platform filter, repeatable")
    parser.add_argument("--payment-method", default=None, help="Payment method substring filter")
    parser.add_argument("--no-ui", action="store_true", help="Log snapshots instead of drawing the TUI")
    parser.add_argument("--log-level", default=None, help="Log level (default: WARNING, INFO with --no-ui)")
    parser.add_argument("--log-file", default=None, help="Write logs to this file")

    args = parser.parse_args()

    level = (args.log_level or ("INFO" if args.no_ui else "WARNING")).upper()
    configure_logging(level, args.log_file)

    try:
        asyncio.run(main(build_config(args), build_filter(args), args.no_ui))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
