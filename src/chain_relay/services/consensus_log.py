"""Consensus log client for relay submissions.

The consensus log is an append-only, topic-addressed log. Each accepted
message gets a per-topic sequence number. This module defines the
`ConsensusLogSink` protocol used by the submission engine and an HTTP client
for a topic message gateway that:

- authenticates with a short-lived HS256 JWT when a shared secret is set
- tags every submission with an `Idempotency-Key` (the event fingerprint)
- treats anything but an explicit `SUCCESS` acknowledgment as a failure
"""

from __future__ import annotations

import asyncio
import base64
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from jose import jwt

from chain_relay.core.settings import settings
from chain_relay.services.errors import ConsensusLogError

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "SUCCESS"
HTTP_OK = 200
HTTP_MULTIPLE_CHOICES = 300


def normalize_topic_id(topic_id: str) -> str:
    """Return a `shard.realm.num` topic id; bare numbers map to `0.0.<num>`."""
    topic_id = str(topic_id).strip()
    if not topic_id:
        raise ValueError("topic id is empty")
    if "." in topic_id:
        return topic_id
    return f"0.0.{int(topic_id)}"


@dataclass(frozen=True)
class SubmissionReceipt:
    """Acknowledgment returned by the consensus log."""

    status: str
    sequence_number: int | None
    topic_id: str

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS and self.sequence_number is not None


class ConsensusLogSink(Protocol):
    """What the submission engine needs from a consensus log."""

    async def submit(
        self,
        topic_id: str,
        payload: bytes,
        timeout: float,
        *,
        idempotency_key: str | None = None,
    ) -> SubmissionReceipt: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class ConsensusLogConfig:
    """Immutable configuration for consensus log operations."""

    base_url: str | None
    instance_id: str
    shared_secret: str | None
    audience: str
    token_ttl_seconds: int
    timeout_seconds: float


def load_consensus_log_config() -> ConsensusLogConfig:
    """Build configuration object from global settings."""

    return ConsensusLogConfig(
        base_url=settings.consensus_log_base_url,
        instance_id=settings.relay_instance_id,
        shared_secret=settings.consensus_log_shared_secret,
        audience=settings.consensus_log_audience,
        token_ttl_seconds=settings.consensus_log_token_ttl_seconds,
        timeout_seconds=float(settings.consensus_log_timeout_seconds),
    )


class ConsensusLogClient:
    """HTTP client wrapper for the consensus log gateway."""

    def __init__(
        self,
        config: ConsensusLogConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_consensus_log_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.config.base_url)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if not self.enabled:
            raise ConsensusLogError("Consensus log base URL is not configured")

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url or "",
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_auth_headers(self, *, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {
            "X-Relay-Instance-Id": self.config.instance_id,
        }

        if self.config.shared_secret:
            now = int(time.time())
            payload = {
                "iss": self.config.instance_id,
                "aud": self.config.audience,
                "iat": now,
                "exp": now + max(1, self.config.token_ttl_seconds),
                "jti": secrets.token_hex(8),
            }
            token = jwt.encode(payload, self.config.shared_secret, algorithm="HS256")
            headers["Authorization"] = f"Bearer {token}"

        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        return headers

    async def submit(
        self,
        topic_id: str,
        payload: bytes,
        timeout: float,
        *,
        idempotency_key: str | None = None,
    ) -> SubmissionReceipt:
        """Append `payload` to `topic_id`.

        Returns:
            The receipt; `succeeded` is True only for an explicit SUCCESS with a sequence number

        Raises:
            ConsensusLogError: on transport failures and non-2xx responses
        """
        client = await self._ensure_client()
        hcs_topic_id = normalize_topic_id(topic_id)
        body = {"message": base64.b64encode(payload).decode("ascii")}

        try:
            response = await client.post(
                f"/api/v1/topics/{hcs_topic_id}/messages",
                json=body,
                headers=self._build_auth_headers(idempotency_key=idempotency_key),
                timeout=httpx.Timeout(timeout),
            )
        except httpx.TimeoutException as exc:
            raise ConsensusLogError(f"Submission to {hcs_topic_id} timed out") from exc
        except httpx.HTTPError as exc:
            raise ConsensusLogError(f"Submission to {hcs_topic_id} failed: {exc}") from exc

        if not HTTP_OK <= response.status_code < HTTP_MULTIPLE_CHOICES:
            raise ConsensusLogError(
                f"Consensus log responded with {response.status_code} for topic {hcs_topic_id}"
            )

        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            raise ConsensusLogError("Consensus log returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ConsensusLogError(
                f"Consensus log returned {type(data).__name__} instead of a receipt object"
            )

        raw_sequence = data.get("sequence_number", data.get("topicSequenceNumber"))
        return SubmissionReceipt(
            status=str(data.get("status", "")).upper(),
            sequence_number=int(raw_sequence) if raw_sequence is not None else None,
            topic_id=hcs_topic_id,
        )

    async def health_check(self) -> dict[str, Any]:
        """Perform a health check against the consensus log gateway."""
        if not self.enabled:
            return {"status": "disabled", "enabled": False}

        try:
            client = await self._ensure_client()
            response = await client.get("/health", headers=self._build_auth_headers())
        except (ConsensusLogError, httpx.HTTPError) as e:
            return {"status": "error", "enabled": True, "error": str(e)}

        if response.status_code == HTTP_OK:
            return {
                "status": "healthy",
                "enabled": True,
                "response_time_ms": response.elapsed.total_seconds() * 1000,
            }
        return {
            "status": "unhealthy",
            "enabled": True,
            "error": f"Consensus log returned status {response.status_code}",
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
