"""
Order book TUI using Textual.

Displays:
- Top: status bar with order count, relays, rate sources and errors
- Left: order table (side, amount, price implied by premium, premium, bond, ...)
- Right: cumulative depth ladder per premium level

Keys cycle the side filter, the sort column and the web-of-trust overlay;
each change is pushed back to the MarketClient and shows up in the next
snapshot.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from rich.console import RenderableType
from rich.style import Style
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Static

from ..engine.filters import SORT_KEYS

if TYPE_CHECKING:
    from ..datafeed.market_client import MarketClient
    from ..types import BookSnapshot, DepthPoint

# Color scheme (dark theme)
BUY_COLOR = "#22c55e"
SELL_COLOR = "#ef4444"
PREMIUM_POS_COLOR = "#ef4444"
PREMIUM_NEG_COLOR = "#22c55e"
HEADER_COLOR = "#94a3b8"
BAR_BG = "#1e293b"

MAX_ROWS = 40
SIDE_CYCLE = (None, "buy", "sell")


def format_btc(qty: float) -> str:
    return f"₿{qty:.4f}" if qty < 1 else f"₿{qty:.2f}"


def format_age(created_at: int, now: float) -> str:
    seconds = max(0, int(now - created_at))
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def format_premium(premium: float | None) -> Text:
    if premium is None:
        return Text("-", style="dim")
    color = PREMIUM_POS_COLOR if premium > 0 else PREMIUM_NEG_COLOR if premium < 0 else HEADER_COLOR
    return Text(f"{premium:+.2f}%", style=color)


def make_bar(value: float, max_value: float, width: int, color: str) -> Text:
    """Create a horizontal bar using block characters."""
    if max_value <= 0:
        return Text(" " * width)

    fill_ratio = min(1.0, value / max_value)
    fill_width = int(fill_ratio * width)

    bar = "█" * fill_width + " " * (width - fill_width)
    return Text(bar, style=Style(color=color, bgcolor=BAR_BG))


class OrderTable(Static):
    """Live order table."""

    DEFAULT_CSS = """
    OrderTable {
        width: 3fr;
        height: 100%;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._snapshot: BookSnapshot | None = None

    def update_snapshot(self, snapshot: BookSnapshot) -> None:
        self._snapshot = snapshot
        self.refresh()

    def render(self) -> RenderableType:
        if self._snapshot is None:
            return Text("Connecting to relays...", style="dim")

        snap = self._snapshot
        if not snap.rows:
            if snap.error:
                return Text(snap.error, style="yellow")
            return Text("Waiting for orders..." if snap.loading else "No orders match filters", style="dim")

        now = time.time()
        table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1))
        table.add_column("Side", width=4)
        table.add_column("Amount", justify="right", width=16)
        table.add_column("Cur", width=5)
        table.add_column("Price", justify="right", width=20)
        table.add_column("Prem", justify="right", width=8)
        table.add_column("Bond", justify="right", width=5)
        table.add_column("Payment", width=22, no_wrap=True)
        table.add_column("Source", width=10)
        table.add_column("Age", justify="right", width=4)

        for row in snap.rows[:MAX_ROWS]:
            order = row.order
            side_color = BUY_COLOR if order.side == "buy" else SELL_COLOR if order.side == "sell" else HEADER_COLOR
            table.add_row(
                Text(order.side.upper(), style=side_color),
                order.amount,
                order.currency,
                row.price or "-",
                format_premium(order.premium_value),
                order.bond or "-",
                order.payment_methods,
                order.source,
                format_age(order.created_at, now),
            )
        return table


class DepthLadder(Static):
    """Cumulative depth per premium level, both sides."""

    DEFAULT_CSS = """
    DepthLadder {
        width: 1fr;
        height: 100%;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._snapshot: BookSnapshot | None = None

    def update_snapshot(self, snapshot: BookSnapshot) -> None:
        self._snapshot = snapshot
        self.refresh()

    def _side_rows(self, table: Table, points: list[DepthPoint], max_volume: float, color: str) -> None:
        for point in points:
            table.add_row(
                format_premium(point.premium),
                make_bar(point.volume_btc, max_volume, 12, color),
                Text(format_btc(point.volume_btc), style=color),
            )

    def render(self) -> RenderableType:
        if self._snapshot is None:
            return Text("")

        depth = self._snapshot.depth
        if not depth.buy and not depth.sell:
            return Text("Not enough data for depth", style="dim")

        max_volume = max(
            (p.volume_btc for p in (*depth.buy, *depth.sell)),
            default=0.0,
        )

        table = Table(show_header=True, header_style=HEADER_COLOR, box=None, padding=(0, 1))
        table.add_column("Prem", justify="right", width=8)
        table.add_column("Depth", width=12, no_wrap=True)
        table.add_column("Cum", justify="right", width=9)

        # Sells on top, worst premium first, so both sides meet in the middle
        self._side_rows(table, list(reversed(depth.sell)), max_volume, SELL_COLOR)
        table.add_row(Text("─" * 8, style="dim"), Text(""), Text(""))
        self._side_rows(table, depth.buy, max_volume, BUY_COLOR)
        return table


class StatusBar(Static):
    """Status bar showing book size, relays and rate sources."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self, client: MarketClient) -> None:
        super().__init__()
        self._client = client
        self._snapshot: BookSnapshot | None = None

    def update_snapshot(self, snapshot: BookSnapshot) -> None:
        self._snapshot = snapshot
        self.refresh()

    def render(self) -> RenderableType:
        if self._snapshot is None:
            return Text("Connecting...", style="dim")

        snap = self._snapshot
        client = self._client
        sources = ", ".join(s.capitalize() for s in snap.rate_sources) or "none"

        result = Text()
        result.append(" P2P ORDERS ", style="bold white on #1e40af")
        result.append(f"  {len(snap.rows)}/{snap.total_orders} shown", style="cyan")
        result.append("  │  Relays: ", style="dim")
        result.append(f"{snap.relays_connected}/{snap.relays_total}")
        result.append("  │  Rates: ", style="dim")
        result.append(sources)
        result.append("  │  Sort: ", style="dim")
        result.append(f"{client.sort_key} {'↓' if client.descending else '↑'}")
        if client.order_filter.side:
            result.append(f"  │  {client.order_filter.side} only", style="yellow")
        if client.trust_only:
            result.append("  │  web of trust", style="magenta")
        if snap.rates_error:
            result.append(f"\n {snap.rates_error}", style="red")
        return result


class BookApp(App):
    """Main order book application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #main-container {
        width: 100%;
        height: 100%;
        padding: 1 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("s", "cycle_side", "Side"),
        ("o", "cycle_sort", "Sort"),
        ("d", "flip_direction", "Direction"),
        ("t", "toggle_trust", "Web of trust"),
    ]

    def __init__(self, client: MarketClient) -> None:
        super().__init__()
        self.client = client
        self._status_bar: StatusBar | None = None
        self._order_table: OrderTable | None = None
        self._depth: DepthLadder | None = None

    def compose(self) -> ComposeResult:
        self._status_bar = StatusBar(self.client)
        self._order_table = OrderTable()
        self._depth = DepthLadder()

        yield self._status_bar
        yield Horizontal(self._order_table, self._depth, id="main-container")
        yield Footer()

    async def on_mount(self) -> None:
        """Start the snapshot consumer task."""
        self.run_worker(self._consume_snapshots(), exclusive=True)

    async def _consume_snapshots(self) -> None:
        """Consume snapshots from the queue and update widgets."""
        while True:
            try:
                snapshot = await asyncio.wait_for(self.client.snapshot_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            for widget in (self._status_bar, self._order_table, self._depth):
                if widget is not None:
                    widget.update_snapshot(snapshot)

    def action_cycle_side(self) -> None:
        flt = self.client.order_filter
        side = SIDE_CYCLE[(SIDE_CYCLE.index(flt.side) + 1) % len(SIDE_CYCLE)]
        self.client.set_filter(flt._replace(side=side))

    def action_cycle_sort(self) -> None:
        key = SORT_KEYS[(SORT_KEYS.index(self.client.sort_key) + 1) % len(SORT_KEYS)]
        self.client.set_sort(key, self.client.descending)

    def action_flip_direction(self) -> None:
        self.client.set_sort(self.client.sort_key, not self.client.descending)

    def action_toggle_trust(self) -> None:
        if self.client.trusted is None:
            self.notify("No web of trust loaded (start with --viewer)")
            return
        self.client.set_trust_only(not self.client.trust_only)


async def run_ui(client: MarketClient) -> None:
    """Run the TUI application."""
    app = BookApp(client)
    await app.run_async()
