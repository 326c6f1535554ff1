# src/chain_relay/api/v1/endpoints/__init__.py
"""API endpoint routers."""

from .system import router as system_router

__all__ = ["system_router"]
