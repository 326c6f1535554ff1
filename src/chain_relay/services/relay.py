"""Relay service: wires the pipeline together and owns its lifecycle.

FLOW:
Contract event -> EventListener / HistoricalReconciler -> EventQueueStore
-> SubmissionEngine -> consensus log -> EventQueueStore (status update)
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from chain_relay.core.settings import Settings, settings
from chain_relay.db.session import build_engine
from chain_relay.services.chain import ChainEventSource, JsonRpcChainEventSource
from chain_relay.services.consensus_log import (
    ConsensusLogClient,
    ConsensusLogConfig,
    ConsensusLogSink,
)
from chain_relay.services.errors import RelayStartupError
from chain_relay.services.ingestion import EventListener
from chain_relay.services.metrics import MetricsReporter, RelayMetrics
from chain_relay.services.mirror import MirrorNodeClient
from chain_relay.services.queue_store import EventQueueStore
from chain_relay.services.reconciliation import HistoricalReconciler, ReconciliationReport
from chain_relay.services.retention import RetentionSweeper
from chain_relay.services.retry_policy import RetryPolicy
from chain_relay.services.submission import SubmissionEngine

logger = logging.getLogger(__name__)


class RelayService:
    """Single relay instance: one listener, one submission engine, one store."""

    def __init__(
        self,
        store: EventQueueStore,
        source: ChainEventSource,
        sink: ConsensusLogSink,
        *,
        config: Settings | None = None,
        metrics: RelayMetrics | None = None,
        mirror: MirrorNodeClient | None = None,
    ) -> None:
        self.config = config or settings
        self.store = store
        self.source = source
        self.sink = sink
        self.mirror = mirror
        self.metrics = metrics or RelayMetrics()
        self.running = False
        self.last_reconciliation: ReconciliationReport | None = None

        self.listener = EventListener(
            source, store, self.metrics, queue_size=self.config.listener_queue_size
        )
        self.reconciler = HistoricalReconciler(
            source, store, self.metrics, max_block_range=self.config.chain_max_block_range
        )
        self.engine = SubmissionEngine(
            store,
            sink,
            self.metrics,
            batch_size=self.config.batch_size,
            interval=self.config.process_interval_seconds,
            submit_timeout=self.config.consensus_log_timeout_seconds,
            retry_policy=store.retry_policy,
            confirmer=mirror.confirm if mirror is not None and self.config.confirm_submissions else None,
        )
        self.sweeper = RetentionSweeper(
            store,
            self.metrics,
            retention_seconds=self.config.retention_seconds,
            interval=self.config.cleanup_interval_seconds,
            batch_size=self.config.cleanup_batch_size,
        )
        self.reporter = MetricsReporter(self.metrics, self.config.metrics_log_interval_seconds)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> RelayService:
        """Build a relay with the production collaborators described by `config`."""
        config = config or settings
        engine = build_engine(config.database_url, echo=config.sql_debug)
        session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
        )
        store = EventQueueStore(
            session_factory,
            retry_policy=RetryPolicy(config.max_retries),
            genesis_block=config.genesis_block,
        )
        source = JsonRpcChainEventSource(
            config.rpc_url,
            config.event_streamer_address,
            config.event_signature,
            poll_interval=config.chain_poll_interval_seconds,
            max_block_range=config.chain_max_block_range,
            timeout_seconds=config.chain_http_timeout_seconds,
        )
        sink = ConsensusLogClient(
            ConsensusLogConfig(
                base_url=config.consensus_log_base_url,
                instance_id=config.relay_instance_id,
                shared_secret=config.consensus_log_shared_secret,
                audience=config.consensus_log_audience,
                token_ttl_seconds=config.consensus_log_token_ttl_seconds,
                timeout_seconds=config.consensus_log_timeout_seconds,
            )
        )
        mirror = MirrorNodeClient(config.mirror_node_url) if config.confirm_submissions else None
        return cls(store, source, sink, config=config, mirror=mirror)

    def initialize(self) -> None:
        """Prepare the queue store.

        Raises:
            RelayStartupError: if the store is unavailable
        """
        logger.info("Initializing relay...")
        try:
            self.store.initialize()
            self.metrics.set_pending(self.store.pending_count())
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Failed to initialize queue store: %s", exc)
            raise RelayStartupError(f"Queue store unavailable: {exc}") from exc
        logger.info("Pending events in queue: %d", self.metrics.pending_in_queue)

    async def start(self) -> None:
        """Start ingestion, run one reconciliation pass, then start the periodic tasks."""
        if self.running:
            logger.warning("Relay is already running")
            return

        self.running = True
        logger.info("Starting relay...")
        await self.listener.start()
        self.last_reconciliation = await self.reconciler.run_bounded(
            self.config.reconciliation_timeout_seconds
        )
        await self.engine.start()
        await self.sweeper.start()
        await self.reporter.start()
        logger.info("Relay started")

    async def reconcile(self) -> ReconciliationReport | None:
        """Run an extra reconciliation pass; safe at any time."""
        self.last_reconciliation = await self.reconciler.run_bounded(
            self.config.reconciliation_timeout_seconds
        )
        return self.last_reconciliation

    async def stop(self) -> None:
        """Quiesce the periodic tasks and the listener, then release resources."""
        if not self.running:
            return

        logger.info("Stopping relay...")
        self.running = False
        await self.engine.stop()
        await self.sweeper.stop()
        await self.reporter.stop()
        await self.listener.stop()

        await self.source.close()
        await self.sink.close()
        if self.mirror is not None:
            await self.mirror.close()
        self.store.close()
        logger.info("Relay stopped")

    async def shutdown(self) -> None:
        """Stop gracefully and log the final metrics."""
        logger.info("Shutting down relay...")
        await self.stop()
        logger.info("Final metrics: %s", self.get_metrics())

    def get_metrics(self) -> dict[str, Any]:
        data = self.metrics.snapshot()
        data["running"] = self.running
        data["listener_backlog"] = self.listener.backlog
        return data
