"""Core configuration for the chain relay."""
