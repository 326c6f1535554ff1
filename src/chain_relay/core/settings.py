"""Application settings and configuration.

This module defines all configuration options for the chain relay.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Relay settings loaded from environment variables.

    Settings can be overridden via environment variables, a `.env` file, or
    the operator CLI flags (which build a re-validated copy).
    """

    # Application metadata
    app_name: str = Field(default="Chain Relay", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    relay_enabled: bool = Field(default=True, alias="RELAY_ENABLED")
    relay_instance_id: str = Field(default="relay-local", alias="RELAY_INSTANCE_ID")

    # Queue store
    database_url: str = Field(default="sqlite:///./data/events.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    genesis_block: int = Field(default=0, ge=0, alias="GENESIS_BLOCK")

    # Chain event source (Ethereum JSON-RPC)
    rpc_url: str = Field(default="https://testnet.hashio.io/api", alias="RPC_URL")
    event_streamer_address: str | None = Field(default=None, alias="EVENT_STREAMER_ADDRESS")
    event_signature: str = Field(
        default="HCSEventQueued(uint64,bytes32,string,bytes)",
        alias="EVENT_SIGNATURE",
    )
    chain_poll_interval_seconds: float = Field(default=2.0, alias="CHAIN_POLL_INTERVAL_SECONDS")
    chain_max_block_range: int = Field(default=1000, ge=1, alias="CHAIN_MAX_BLOCK_RANGE")
    chain_http_timeout_seconds: float = Field(default=10.0, alias="CHAIN_HTTP_TIMEOUT_SECONDS")
    listener_queue_size: int = Field(default=1000, ge=1, alias="LISTENER_QUEUE_SIZE")
    reconciliation_timeout_seconds: float = Field(
        default=120.0,
        alias="RECONCILIATION_TIMEOUT_SECONDS",
    )

    # Submission engine and retry policy
    batch_size: int = Field(default=10, ge=1, alias="BATCH_SIZE")
    process_interval_seconds: float = Field(default=5.0, gt=0, alias="PROCESS_INTERVAL_SECONDS")
    max_retries: int = Field(default=10, ge=1, alias="MAX_RETRIES")

    # Retention sweep of submitted rows
    retention_days: int = Field(default=30, ge=1, alias="RETENTION_DAYS")
    cleanup_interval_seconds: float = Field(
        default=24 * 60 * 60,
        alias="CLEANUP_INTERVAL_SECONDS",
    )
    cleanup_batch_size: int = Field(default=500, ge=1, alias="CLEANUP_BATCH_SIZE")

    # Consensus log sink
    consensus_log_base_url: str | None = Field(default=None, alias="CONSENSUS_LOG_BASE_URL")
    consensus_log_timeout_seconds: float = Field(
        default=15.0,
        alias="CONSENSUS_LOG_TIMEOUT_SECONDS",
    )
    consensus_log_shared_secret: str | None = Field(
        default=None,
        alias="CONSENSUS_LOG_SHARED_SECRET",
    )
    consensus_log_audience: str = Field(default="consensus-log", alias="CONSENSUS_LOG_AUDIENCE")
    consensus_log_token_ttl_seconds: int = Field(
        default=300,
        alias="CONSENSUS_LOG_TOKEN_TTL_SECONDS",
    )

    # Optional post-submission confirmation through the mirror node
    mirror_node_url: str = Field(
        default="https://testnet.mirrornode.hedera.com",
        alias="MIRROR_NODE_URL",
    )
    confirm_submissions: bool = Field(default=False, alias="CONFIRM_SUBMISSIONS")

    # Metrics
    metrics_log_interval_seconds: float = Field(default=60.0, alias="METRICS_LOG_INTERVAL_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def retention_seconds(self) -> int:
        """Return the retention window for submitted rows in seconds."""
        return self.retention_days * 24 * 60 * 60

    @property
    def public_config(self) -> dict[str, object]:
        """Return a sanitized snapshot of runtime configuration.

        Excludes secrets and connection strings.
        """
        return {
            "app": {
                "name": self.app_name,
                "version": self.app_version,
                "instance_id": self.relay_instance_id,
                "relay_enabled": self.relay_enabled,
            },
            "chain": {
                "event_signature": self.event_signature,
                "event_streamer_address": self.event_streamer_address,
                "genesis_block": self.genesis_block,
                "poll_interval_seconds": self.chain_poll_interval_seconds,
                "max_block_range": self.chain_max_block_range,
            },
            "submission": {
                "batch_size": self.batch_size,
                "process_interval_seconds": self.process_interval_seconds,
                "max_retries": self.max_retries,
                "timeout_seconds": self.consensus_log_timeout_seconds,
                "confirm_submissions": self.confirm_submissions,
            },
            "retention": {
                "retention_days": self.retention_days,
                "cleanup_interval_seconds": self.cleanup_interval_seconds,
            },
        }


settings = Settings()
