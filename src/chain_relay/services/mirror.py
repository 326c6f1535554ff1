"""Mirror node client used to verify relayed messages.

The mirror node exposes the consensus log's accepted messages over a public
REST API. The relay uses it for the optional post-submission confirmation,
which is advisory only and never changes a queued event's status.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from typing import Any

import httpx

from chain_relay.core.settings import settings
from chain_relay.models import QueuedEvent
from chain_relay.services.consensus_log import normalize_topic_id
from chain_relay.services.errors import MirrorNodeError

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_NOT_FOUND = 404


def _event_timestamp(event: dict[str, Any]) -> float:
    timestamp = event.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        return 0.0
    return float(timestamp)


class MirrorNodeClient:
    """Read-only client for the mirror node REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.mirror_node_url
        self._timeout = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=httpx.Timeout(self._timeout),
                    transport=self._transport,
                )
        return self._client

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        client = await self._ensure_client()
        try:
            response = await client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise MirrorNodeError(f"Mirror node request {path} failed: {exc}") from exc

        if response.status_code == HTTP_NOT_FOUND:
            return None
        if response.status_code != HTTP_OK:
            raise MirrorNodeError(f"Mirror node responded with {response.status_code} for {path}")
        return response.json()

    async def get_message(self, topic_id: str, sequence_number: int) -> dict[str, Any] | None:
        """Fetch one topic message by sequence number."""
        topic = normalize_topic_id(topic_id)
        return await self._get(f"/api/v1/topics/{topic}/messages/{sequence_number}")

    async def get_topic_messages(
        self, topic_id: str, *, limit: int = 10, order: str = "desc"
    ) -> list[dict[str, Any]]:
        topic = normalize_topic_id(topic_id)
        data = await self._get(
            f"/api/v1/topics/{topic}/messages", params={"limit": limit, "order": order}
        )
        return list((data or {}).get("messages", []))

    async def get_topic_info(self, topic_id: str) -> dict[str, Any] | None:
        return await self._get(f"/api/v1/topics/{normalize_topic_id(topic_id)}")

    async def get_recent_events(self, topic_ids: list[str], limit: int = 100) -> list[dict[str, Any]]:
        """Return the newest relayed events across `topic_ids`, most recent first.

        Each entry is the decoded relay message plus the topic id, sequence
        number and consensus timestamp it was accepted with. Messages that are
        not relay messages are skipped.
        """
        events: list[dict[str, Any]] = []
        for topic_id in topic_ids:
            for message in await self.get_topic_messages(topic_id, limit=limit):
                try:
                    data = json.loads(base64.b64decode(message["message"]).decode("utf-8"))
                except (KeyError, ValueError, binascii.Error) as e:
                    logger.debug("Skipping undecodable message on topic %s: %s", topic_id, e)
                    continue
                if not isinstance(data, dict):
                    continue
                events.append({
                    "topicId": topic_id,
                    "sequenceNumber": message.get("sequence_number"),
                    "consensusTimestamp": message.get("consensus_timestamp"),
                    **data,
                })

        events.sort(key=_event_timestamp, reverse=True)
        return events[:limit]

    async def get_topic_stats(self, topic_id: str) -> dict[str, Any] | None:
        """Summarize a topic, or None when the mirror node does not know it."""
        info = await self.get_topic_info(topic_id)
        if info is None:
            return None
        return {
            "topicId": info.get("topic_id"),
            "memo": info.get("memo"),
            "submitKey": info.get("submit_key"),
            "createdTimestamp": info.get("created_timestamp"),
            "totalMessages": info.get("sequence_number") or 0,
        }

    async def verify_submission(
        self, topic_id: str, sequence_number: int, expected_fingerprint: str
    ) -> bool:
        """Return True when the message at `sequence_number` carries `expected_fingerprint`."""
        message = await self.get_message(topic_id, sequence_number)
        if not message:
            return False

        try:
            content = base64.b64decode(message["message"]).decode("utf-8")
            data = json.loads(content)
        except (KeyError, ValueError, binascii.Error) as e:
            logger.debug("Undecodable mirror node message %s/%s: %s", topic_id, sequence_number, e)
            return False

        return isinstance(data, dict) and data.get("eventHash") == expected_fingerprint

    async def confirm(self, event: QueuedEvent, sequence_number: int) -> bool:
        """Submission confirmation hook for the submission engine."""
        return await self.verify_submission(event.topic_id, sequence_number, event.fingerprint)

    async def close(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
