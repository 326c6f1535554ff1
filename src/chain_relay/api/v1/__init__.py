# src/chain_relay/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import system_router

__all__ = ["system_router"]
