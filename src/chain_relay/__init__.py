"""Chain relay: durable delivery of contract events into a consensus log."""

__version__ = "0.1.0"
