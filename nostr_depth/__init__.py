"""
Nostr Depth - live peer-to-peer bitcoin order book aggregated from Nostr relays.

Architecture:
- datafeed/: relay subscriptions, record normalization, order book reconciliation, rate feeds
- engine/: pure recomputation (admission, pricing, depth curves, filters)
- ui/: order table + depth ladder (Textual TUI)
"""

__version__ = "0.1.0"
