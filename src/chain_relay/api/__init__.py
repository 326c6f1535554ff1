"""HTTP API for the chain relay."""
