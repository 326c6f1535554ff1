# src/chain_relay/main.py
"""HTTP entry point exposing the relay's operational surface."""

from __future__ import annotations

from fastapi import FastAPI

from chain_relay.api.v1 import system_router
from chain_relay.core.settings import settings
from chain_relay.services.relay import RelayService

# Initialize FastAPI app
app = FastAPI(
    title="Chain Relay API",
    description="Relays contract events into an append-only consensus log",
    version=settings.app_version,
)

app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.relay_enabled:
        relay = RelayService.from_settings(settings)
        relay.initialize()
        await relay.start()
        app.state.relay = relay
    else:
        app.state.relay = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    relay: RelayService | None = getattr(app.state, "relay", None)
    if relay:
        await relay.shutdown()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, object]:
    """Root endpoint with basic information about the relay."""
    relay: RelayService | None = getattr(app.state, "relay", None)
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "relay_running": bool(relay and relay.running),
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chain_relay.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
