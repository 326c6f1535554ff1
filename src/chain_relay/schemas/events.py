# src/chain_relay/schemas/events.py
"""Queued event schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class QueuedEventResponse(BaseModel):
    """Schema for a queued event returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    topic_id: str
    fingerprint: str
    event_type: str
    payload: str = Field(..., description="Event data as 0x-prefixed hex")
    block_number: int
    transaction_hash: str
    observed_at: int
    status: str
    retry_count: int
    log_sequence_number: int | None = None
    last_error: str | None = None
    created_at: int
    updated_at: int

    @model_validator(mode="before")
    @classmethod
    def _encode_payload(cls, data: object) -> object:
        if not isinstance(data, dict):
            extracted: dict[str, object | None] = {}
            for field_name in cls.model_fields:
                extracted[field_name] = getattr(data, field_name, None)
            data = extracted
        payload = data.get("payload")
        if isinstance(payload, (bytes, bytearray, memoryview)):
            data["payload"] = "0x" + bytes(payload).hex()
        return data


class StatusStats(BaseModel):
    """Count and average retries for one status."""

    status: str
    count: int
    avg_retries: float


class QueueStatsResponse(BaseModel):
    """Queue and pipeline statistics for dashboards."""

    counts: dict[str, int]
    by_status: list[StatusStats]
    watermark: int
    metrics: dict[str, Any] | None = None
