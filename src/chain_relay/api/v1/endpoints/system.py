"""System and transparency endpoints for the relay."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from chain_relay.core.settings import settings
from chain_relay.models import EVENT_STATUSES
from chain_relay.schemas import QueuedEventResponse, QueueStatsResponse
from chain_relay.services.queue_store import EventQueueStore
from chain_relay.services.relay import RelayService
from chain_relay.services.retry_policy import RetryPolicy

MAX_EVENTS_LIMIT = 500

router = APIRouter(prefix="/system", tags=["system", "transparency"])


def get_relay(request: Request) -> RelayService | None:
    """Return the relay attached to the application, if any."""
    return getattr(request.app.state, "relay", None)


def get_queue_store(request: Request) -> EventQueueStore:
    """Return the queue store for dependency injection."""
    relay = get_relay(request)
    if relay is not None:
        return relay.store
    return EventQueueStore(
        retry_policy=RetryPolicy(settings.max_retries),
        genesis_block=settings.genesis_block,
    )


StoreDep = Annotated[EventQueueStore, Depends(get_queue_store)]
RelayDep = Annotated[RelayService | None, Depends(get_relay)]


@router.get("/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of runtime configuration.

    Excludes secrets and connection strings.
    """
    return settings.public_config


@router.get("/stats", response_model=QueueStatsResponse)
def get_stats(store: StoreDep, relay: RelayDep) -> dict[str, Any]:
    """Return delivery counts per status, the reconciliation watermark and live metrics."""
    return {
        "counts": store.count_by_status(),
        "by_status": store.stats(),
        "watermark": store.highest_observed_block(),
        "metrics": relay.get_metrics() if relay is not None else None,
    }


@router.get("/events", response_model=list[QueuedEventResponse])
def list_events(
    store: StoreDep,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    topic_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=MAX_EVENTS_LIMIT)] = 20,
) -> list[Any]:
    """List the most recently observed events, optionally filtered."""
    if status_filter is not None and status_filter not in EVENT_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"status must be one of {', '.join(EVENT_STATUSES)}",
        )
    return store.list_events(status=status_filter, topic_id=topic_id, limit=limit)


@router.get("/events/{event_id}", response_model=QueuedEventResponse)
def get_event(event_id: int, store: StoreDep) -> Any:
    """Return a single queued event."""
    event = store.get(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return event
