"""Chain event source for the relay.

Defines the `RawEvent` container and the `ChainEventSource` protocol the
ingestion and reconciliation services consume, plus a JSON-RPC backed
implementation that:

- reads the chain head with `eth_blockNumber`
- runs bounded historical queries with `eth_getLogs`
- decodes the streamer contract's event payload with `eth_abi`
- emulates a live subscription by polling new blocks
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from chain_relay.core.settings import settings
from chain_relay.services.errors import ChainSourceError, MalformedEventError

logger = logging.getLogger(__name__)

EVENT_FIELD_COUNT = 4
_SIGNATURE_PATTERN = re.compile(r"^\s*(\w+)\s*\((.*)\)\s*$")


@dataclass(frozen=True)
class RawEvent:
    """Event as reported by the chain, before it becomes a queue row."""

    topic_id: str
    fingerprint: str
    event_type: str
    payload: bytes
    block_number: int
    transaction_hash: str


EventCallback = Callable[[RawEvent], Awaitable[None]]


class Subscription(Protocol):
    async def cancel(self) -> None: ...


class ChainEventSource(Protocol):
    """What the relay needs from a chain client."""

    async def subscribe(self, callback: EventCallback) -> Subscription: ...

    async def query_range(self, from_block: int, to_block: int) -> list[RawEvent]: ...

    async def current_block_height(self) -> int: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class EventSignature:
    """Parsed Solidity event signature, e.g. `HCSEventQueued(uint64,bytes32,string,bytes)`."""

    name: str
    types: tuple[str, ...]

    @classmethod
    def parse(cls, text: str) -> EventSignature:
        match = _SIGNATURE_PATTERN.match(text)
        if match is None:
            raise ValueError(f"Invalid event signature: {text!r}")
        types = tuple(part.strip() for part in match.group(2).split(",") if part.strip())
        if len(types) != EVENT_FIELD_COUNT:
            raise ValueError(
                f"Event signature must declare {EVENT_FIELD_COUNT} fields "
                f"(topicId, eventHash, eventType, eventData), got {len(types)}"
            )
        return cls(name=match.group(1), types=types)

    @property
    def canonical(self) -> str:
        return f"{self.name}({','.join(self.types)})"

    @property
    def topic(self) -> str:
        """Return the keccak-256 topic0 used to filter logs."""
        return "0x" + keccak(text=self.canonical).hex()


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16)
    raise ValueError(f"Expected hex quantity, got {value!r}")


def _to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def decode_log(log: Mapping[str, Any], signature: EventSignature) -> RawEvent:
    """Normalize one `eth_getLogs` entry into a `RawEvent`.

    Raises:
        MalformedEventError: when the log does not carry a decodable payload
    """
    try:
        data_hex = str(log["data"])
        data = bytes.fromhex(data_hex[2:] if data_hex.startswith("0x") else data_hex)
        topic_id, event_hash, event_type, event_data = abi_decode(list(signature.types), data)
        block_number = _hex_to_int(log["blockNumber"])
        transaction_hash = str(log["transactionHash"])
    except (KeyError, ValueError, TypeError, DecodingError) as exc:
        raise MalformedEventError(f"Cannot decode {signature.name} log: {exc}") from exc

    if isinstance(event_hash, bytes):
        event_hash = _to_hex(event_hash)
    if isinstance(event_data, str):
        event_data = event_data.encode("utf-8")

    return RawEvent(
        topic_id=str(topic_id),
        fingerprint=str(event_hash),
        event_type=str(event_type),
        payload=bytes(event_data),
        block_number=block_number,
        transaction_hash=transaction_hash,
    )


class PollingSubscription:
    """Live subscription emulated by polling for new blocks."""

    def __init__(
        self,
        source: JsonRpcChainEventSource,
        callback: EventCallback,
        start_block: int | None,
        interval: float,
    ) -> None:
        self._source = source
        self._callback = callback
        self.next_block = start_block
        self._interval = max(0.05, float(interval))
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def cancel(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.poll_once()
            except ChainSourceError as e:
                logger.warning("Chain subscription poll failed: %s", e)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    async def poll_once(self) -> None:
        head = await self._source.current_block_height()
        if self.next_block is None:
            self.next_block = head + 1
            return

        while self.next_block <= head and not self._stopping.is_set():
            to_block = min(head, self.next_block + self._source.max_block_range - 1)
            for event in await self._source.query_range(self.next_block, to_block):
                await self._callback(event)
            self.next_block = to_block + 1


class JsonRpcChainEventSource:
    """Ethereum JSON-RPC client for the event streamer contract."""

    def __init__(
        self,
        rpc_url: str | None = None,
        contract_address: str | None = None,
        event_signature: str | None = None,
        *,
        poll_interval: float | None = None,
        max_block_range: int | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url or settings.rpc_url
        self.contract_address = contract_address or settings.event_streamer_address
        self.signature = EventSignature.parse(event_signature or settings.event_signature)
        self.poll_interval = (
            settings.chain_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.max_block_range = max_block_range or settings.chain_max_block_range
        self._timeout = timeout_seconds or settings.chain_http_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._ids = itertools.count(1)

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout),
                    transport=self._transport,
                )
        return self._client

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        client = await self._ensure_client()
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await client.post(self.rpc_url, json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise ChainSourceError(f"{method} request failed: {exc}") from exc
        except ValueError as exc:
            raise ChainSourceError(f"{method} returned invalid JSON") from exc

        if payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, Mapping) else error
            raise ChainSourceError(f"{method} failed: {message}")
        if "result" not in payload:
            raise ChainSourceError(f"{method} returned no result")
        return payload["result"]

    async def current_block_height(self) -> int:
        result = await self._rpc("eth_blockNumber", [])
        try:
            return _hex_to_int(result)
        except ValueError as exc:
            raise ChainSourceError(f"eth_blockNumber returned {result!r}") from exc

    async def query_range(self, from_block: int, to_block: int) -> list[RawEvent]:
        """Return decoded events emitted in `[from_block, to_block]`.

        Logs that cannot be decoded and logs removed by a reorg are skipped.
        """
        if to_block < from_block:
            return []

        log_filter: dict[str, Any] = {
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": [self.signature.topic],
        }
        if self.contract_address:
            log_filter["address"] = self.contract_address

        logs = await self._rpc("eth_getLogs", [log_filter])
        events: list[RawEvent] = []
        for log in logs or []:
            if log.get("removed"):
                continue
            try:
                events.append(decode_log(log, self.signature))
            except MalformedEventError as e:
                logger.warning(
                    "Skipping malformed log in tx %s: %s", log.get("transactionHash"), e
                )
        return events

    async def subscribe(self, callback: EventCallback) -> PollingSubscription:
        """Start delivering events from blocks after the current head to `callback`."""
        try:
            start_block: int | None = await self.current_block_height() + 1
        except ChainSourceError as e:
            logger.warning("Could not read chain head for subscription, will retry: %s", e)
            start_block = None

        subscription = PollingSubscription(self, callback, start_block, self.poll_interval)
        subscription.start()
        logger.info(
            "Subscribed to %s from block %s", self.signature.name, start_block or "<next head>"
        )
        return subscription

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
