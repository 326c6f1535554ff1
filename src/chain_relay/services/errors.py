"""Exception hierarchy shared by the relay services."""


class RelayError(RuntimeError):
    """Base exception raised for relay failures."""


class RelayStartupError(RelayError):
    """Raised when the relay cannot be initialized (for example the store is unavailable)."""


class ChainSourceError(RelayError):
    """Raised when the chain event source cannot answer a request."""


class MalformedEventError(ChainSourceError):
    """Raised when a raw chain event cannot be decoded or normalized."""


class ConsensusLogError(RelayError):
    """Raised when the consensus log rejects or cannot receive a submission."""


class MirrorNodeError(RelayError):
    """Raised when the mirror node cannot be queried."""
