# src/chain_relay/db/__init__.py
"""Database configuration and utilities."""

from .session import SessionLocal, build_engine, create_tables

__all__ = ["SessionLocal", "build_engine", "create_tables"]
