"""
Nostr relay transport over aiohttp websockets.

Handles:
1. Long-lived subscriptions on every relay (backlog replay + live tail)
2. One-shot queries that finish on end-of-stored-events or timeout
3. Publishing a signed record and counting relay acknowledgements

Each relay runs in its own task; a relay that fails is logged and retried
after a fixed delay without disturbing the others.

Wire frames (JSON arrays):
    client -> relay: ["REQ", sub_id, filter...], ["CLOSE", sub_id], ["EVENT", event]
    relay -> client: ["EVENT", sub_id, event], ["EOSE", sub_id],
                     ["NOTICE", msg], ["CLOSED", sub_id, msg], ["OK", event_id, bool, msg]
"""

from __future__ import annotations

import asyncio
import secrets
from typing import Any, Callable, Iterable, NamedTuple

import aiohttp
import orjson
from loguru import logger

from ..types import RawRecord

RecordCallback = Callable[[RawRecord, str], None]
EoseCallback = Callable[[str], None]


class RelayError(Exception):
    """A relay sent something we cannot use, or refused us."""


class RelayMessage(NamedTuple):
    type: str
    sub_id: str | None = None
    record: RawRecord | None = None
    message: str | None = None
    ok: bool | None = None


def encode(frame: list[Any]) -> str:
    return orjson.dumps(frame).decode()


def parse_relay_message(raw: str | bytes) -> RelayMessage:
    """
    Decode one relay frame.

    Raises RelayError for anything that is not a well-formed frame.
    """
    try:
        frame = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise RelayError("frame is not JSON") from exc
    if not isinstance(frame, list) or not frame or not isinstance(frame[0], str):
        raise RelayError(f"unexpected frame: {str(raw)[:80]}")

    kind = frame[0]
    try:
        if kind == "EVENT":
            return RelayMessage(kind, sub_id=frame[1], record=RawRecord.from_dict(frame[2]))
        if kind == "EOSE":
            return RelayMessage(kind, sub_id=frame[1])
        if kind == "NOTICE":
            return RelayMessage(kind, message=str(frame[1]) if len(frame) > 1 else "")
        if kind == "CLOSED":
            return RelayMessage(kind, sub_id=frame[1], message=str(frame[2]) if len(frame) > 2 else "")
        if kind == "OK":
            return RelayMessage(
                kind,
                sub_id=frame[1],
                ok=bool(frame[2]),
                message=str(frame[3]) if len(frame) > 3 else "",
            )
    except (IndexError, KeyError, TypeError, ValueError) as exc:
        raise RelayError(f"malformed {kind} frame") from exc
    # AUTH, COUNT and future frame types are not used here
    return RelayMessage(kind)


def new_subscription_id() -> str:
    return secrets.token_hex(8)


class RelayPool:
    """
    A set of relay connections sharing one aiohttp session.

    Usage:
        async with aiohttp.ClientSession() as session:
            pool = RelayPool(relays, session)
            await pool.subscribe([flt], on_record, on_eose)
            ...
            await pool.close()
    """

    def __init__(
        self,
        relays: Iterable[str],
        session: aiohttp.ClientSession,
        reconnect_sec: float | None = 30.0,
    ) -> None:
        self.relays = tuple(dict.fromkeys(relays))
        self.session = session
        self.reconnect_sec = reconnect_sec

        self.connected: set[str] = set()
        self._sockets: dict[str, aiohttp.ClientWebSocketResponse] = {}
        self._subscriptions: dict[str, list[dict]] = {}
        self._tasks: list[asyncio.Task] = []
        self._closing = False

    def _ws_connect(self, url: str):
        return self.session.ws_connect(url, heartbeat=30.0)

    async def subscribe(
        self,
        filters: list[dict],
        on_record: RecordCallback,
        on_eose: EoseCallback | None = None,
    ) -> str:
        """Start a long-lived subscription on every relay. Returns the subscription id."""
        sub_id = new_subscription_id()
        self._subscriptions[sub_id] = filters
        for url in self.relays:
            task = asyncio.create_task(
                self._run_subscription(url, sub_id, filters, on_record, on_eose),
                name=f"relay:{url}",
            )
            self._tasks.append(task)
        return sub_id

    async def _run_subscription(
        self,
        url: str,
        sub_id: str,
        filters: list[dict],
        on_record: RecordCallback,
        on_eose: EoseCallback | None,
    ) -> None:
        while not self._closing:
            try:
                async with self._ws_connect(url) as ws:
                    self._sockets[url] = ws
                    self.connected.add(url)
                    logger.info("Connected to {}", url)
                    await ws.send_str(encode(["REQ", sub_id, *filters]))

                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            if not self._dispatch(url, sub_id, msg.data, on_record, on_eose):
                                break
                        elif msg.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSED):
                            break
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                logger.warning("Relay {} failed: {!r}", url, exc)
            finally:
                self.connected.discard(url)
                self._sockets.pop(url, None)

            if self._closing or self.reconnect_sec is None:
                return
            logger.debug("Reconnecting to {} in {}s", url, self.reconnect_sec)
            await asyncio.sleep(self.reconnect_sec)

    def _dispatch(
        self,
        url: str,
        sub_id: str,
        raw: str,
        on_record: RecordCallback,
        on_eose: EoseCallback | None,
    ) -> bool:
        """Handle one frame. Returns False when the relay closed our subscription."""
        try:
            msg = parse_relay_message(raw)
        except RelayError as exc:
            logger.debug("Bad frame from {}: {}", url, exc)
            return True

        if msg.type == "EVENT" and msg.sub_id == sub_id:
            on_record(msg.record, url)
        elif msg.type == "EOSE" and msg.sub_id == sub_id:
            if on_eose is not None:
                on_eose(url)
        elif msg.type == "CLOSED" and msg.sub_id == sub_id:
            logger.warning("Relay {} closed subscription: {}", url, msg.message)
            return False
        elif msg.type == "NOTICE":
            logger.info("Notice from {}: {}", url, msg.message)
        return True

    async def query(
        self,
        filters: list[dict],
        timeout_sec: float = 8.0,
        relays: Iterable[str] | None = None,
    ) -> list[RawRecord]:
        """
        One-shot fetch across relays.

        Each relay contributes until its end-of-stored-events or the timeout.
        Results are deduplicated by record id.
        """
        targets = tuple(dict.fromkeys(relays)) if relays is not None else self.relays
        results = await asyncio.gather(
            *(self._query_relay(url, filters, timeout_sec) for url in targets),
            return_exceptions=True,
        )

        seen: dict[str, RawRecord] = {}
        for url, result in zip(targets, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("Query on {} failed: {!r}", url, result)
                continue
            for record in result:
                seen.setdefault(record.id, record)
        return list(seen.values())

    async def _query_relay(self, url: str, filters: list[dict], timeout_sec: float) -> list[RawRecord]:
        records: list[RawRecord] = []
        try:
            await asyncio.wait_for(self._collect(url, filters, records), timeout_sec)
        except asyncio.TimeoutError:
            logger.debug("Query on {} timed out with {} records", url, len(records))
        except (aiohttp.ClientError, OSError) as exc:
            logger.warning("Query on {} failed after {} records: {!r}", url, len(records), exc)
        return records

    async def _collect(self, url: str, filters: list[dict], records: list[RawRecord]) -> None:
        sub_id = new_subscription_id()
        async with self._ws_connect(url) as ws:
            await ws.send_str(encode(["REQ", sub_id, *filters]))
            async for frame in ws:
                if frame.type != aiohttp.WSMsgType.TEXT:
                    break
                try:
                    msg = parse_relay_message(frame.data)
                except RelayError as exc:
                    logger.debug("Bad frame from {}: {}", url, exc)
                    continue
                if msg.sub_id != sub_id:
                    continue
                if msg.type == "EVENT":
                    records.append(msg.record)
                elif msg.type in ("EOSE", "CLOSED"):
                    break
            await ws.send_str(encode(["CLOSE", sub_id]))

    async def publish(
        self,
        event: dict[str, Any],
        relays: Iterable[str] | None = None,
        timeout_sec: float = 8.0,
    ) -> int:
        """Send a signed record; returns how many relays acknowledged it."""
        targets = tuple(dict.fromkeys(relays)) if relays is not None else self.relays
        results = await asyncio.gather(
            *(asyncio.wait_for(self._publish_one(url, event), timeout_sec) for url in targets),
            return_exceptions=True,
        )
        accepted = 0
        for url, result in zip(targets, results):
            if result is True:
                accepted += 1
            elif isinstance(result, asyncio.CancelledError):
                raise result
            elif isinstance(result, BaseException):
                logger.warning("Publish to {} failed: {!r}", url, result)
        return accepted

    async def _publish_one(self, url: str, event: dict[str, Any]) -> bool:
        async with self._ws_connect(url) as ws:
            await ws.send_str(encode(["EVENT", event]))
            async for frame in ws:
                if frame.type != aiohttp.WSMsgType.TEXT:
                    break
                try:
                    msg = parse_relay_message(frame.data)
                except RelayError:
                    continue
                if msg.type == "OK" and msg.sub_id == event.get("id"):
                    if not msg.ok:
                        logger.warning("Relay {} rejected record: {}", url, msg.message)
                    return bool(msg.ok)
        return False

    async def close(self) -> None:
        """Close every subscription and socket and stop reconnecting."""
        self._closing = True
        for url, ws in list(self._sockets.items()):
            for sub_id in self._subscriptions:
                try:
                    await ws.send_str(encode(["CLOSE", sub_id]))
                except (aiohttp.ClientError, ConnectionError, RuntimeError):
                    break
            await ws.close()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        self._sockets.clear()
        self._subscriptions.clear()
        self.connected.clear()
