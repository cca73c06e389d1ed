"""
One-hop web of trust and outbox relay discovery for a viewer key.

Both are single-shot lookups run once per session; they are not kept live.
"""

from __future__ import annotations

from typing import Iterable

from loguru import logger

from ..config import CONTACT_LIST_KIND, RELAY_LIST_KIND
from ..types import RawRecord
from .relay_pool import RelayPool


def latest(records: Iterable[RawRecord]) -> RawRecord | None:
    return max(records, key=lambda r: r.created_at, default=None)


def contacts_from_record(record: RawRecord) -> set[str]:
    """Every identity referenced by "p" tags of a contact list."""
    return {tag[1] for tag in record.tags if tag[0] == "p" and len(tag) > 1 and tag[1]}


def write_relays_from_record(record: RawRecord) -> list[str]:
    """Relays from a relay list that the author writes to (no marker, or "write")."""
    relays: list[str] = []
    for tag in record.tags:
        if tag[0] != "r" or len(tag) < 2 or not tag[1]:
            continue
        marker = tag[2] if len(tag) > 2 else None
        if marker in (None, "", "write") and tag[1] not in relays:
            relays.append(tag[1])
    return relays


class TrustResolver:
    def __init__(self, pool: RelayPool, timeout_sec: float = 8.0) -> None:
        self.pool = pool
        self.timeout_sec = timeout_sec

    async def discover_outbox_relays(self, pubkey: str) -> list[str]:
        records = await self.pool.query(
            [{"kinds": [RELAY_LIST_KIND], "authors": [pubkey], "limit": 1}],
            timeout_sec=self.timeout_sec,
        )
        record = latest(r for r in records if r.pubkey == pubkey)
        if record is None:
            logger.info("No relay list found for {}", pubkey[:8])
            return []
        return write_relays_from_record(record)

    async def build_trust(self, viewer_key: str, outbox_relays: Iterable[str] = ()) -> frozenset[str]:
        """
        Viewer key plus everyone in the viewer's most recent contact list.

        Queries the pool's relays plus the viewer's write relays. With no
        contact list found, the set holds only the viewer.
        """
        trusted = {viewer_key}
        relays = [*self.pool.relays, *outbox_relays]
        records = await self.pool.query(
            [{"kinds": [CONTACT_LIST_KIND], "authors": [viewer_key], "limit": 1}],
            timeout_sec=self.timeout_sec,
            relays=relays,
        )
        record = latest(r for r in records if r.pubkey == viewer_key)
        if record is None:
            logger.info("No contact list found for {}", viewer_key[:8])
        else:
            trusted |= contacts_from_record(record)
        logger.info("Web of trust for {}: {} keys", viewer_key[:8], len(trusted))
        return frozenset(trusted)
