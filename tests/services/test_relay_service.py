import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from chain_relay.core.settings import Settings
from chain_relay.services.errors import RelayStartupError
from chain_relay.services.relay import RelayService


@pytest.fixture()
def relay_config() -> Settings:
    return Settings(
        process_interval_seconds=0.02,
        batch_size=5,
        consensus_log_timeout_seconds=0.5,
        reconciliation_timeout_seconds=1.0,
        metrics_log_interval_seconds=60.0,
        cleanup_interval_seconds=60.0,
    )


async def wait_until(condition, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_relay_delivers_missed_and_live_events(
    file_store, chain_source, sink, metrics, make_event, relay_config
) -> None:
    chain_source.head = 20
    chain_source.events = [make_event("0xmissed1", block_number=5), make_event("0xmissed2", block_number=9)]
    relay = RelayService(file_store, chain_source, sink, config=relay_config, metrics=metrics)
    relay.initialize()

    await relay.start()
    assert relay.last_reconciliation.inserted == 2

    await chain_source.emit(make_event("0xlive", block_number=21))
    await chain_source.emit(make_event("0xmissed1", block_number=5))
    await wait_until(
        lambda: metrics.events_received == 4 and file_store.count_by_status()["submitted"] == 3
    )

    snapshot = relay.get_metrics()
    await relay.shutdown()

    assert sorted(sink.submitted_fingerprints) == ["0xlive", "0xmissed1", "0xmissed2"]
    assert snapshot["running"] is True
    assert snapshot["duplicates_ignored"] == 1
    assert not relay.running
    assert chain_source.closed
    assert sink.closed


@pytest.mark.asyncio
async def test_relay_keeps_running_when_reconciliation_fails(
    file_store, chain_source, sink, metrics, make_event, relay_config
) -> None:
    chain_source.fail_head = True
    relay = RelayService(file_store, chain_source, sink, config=relay_config, metrics=metrics)
    relay.initialize()

    await relay.start()
    assert relay.last_reconciliation is None

    await chain_source.emit(make_event("0xlive"))
    await wait_until(lambda: sink.submitted_fingerprints == ["0xlive"])
    await relay.stop()


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent(file_store, chain_source, sink, relay_config) -> None:
    relay = RelayService(file_store, chain_source, sink, config=relay_config)
    relay.initialize()

    await relay.stop()
    await relay.start()
    await relay.start()
    assert relay.engine.running
    await relay.stop()
    await relay.stop()

    assert not relay.engine.running
    assert not relay.listener.running


def test_initialize_failure_raises_startup_error(store, chain_source, sink, relay_config, mocker) -> None:
    mocker.patch.object(
        store, "initialize", side_effect=OperationalError("CREATE", {}, Exception("unable to open database"))
    )
    relay = RelayService(store, chain_source, sink, config=relay_config)

    with pytest.raises(RelayStartupError):
        relay.initialize()


def test_initialize_reports_pending_backlog(store, chain_source, sink, metrics, make_event, relay_config) -> None:
    store.insert(make_event())
    store.insert(make_event())
    relay = RelayService(store, chain_source, sink, config=relay_config, metrics=metrics)

    relay.initialize()

    assert metrics.pending_in_queue == 2


def test_from_settings_builds_file_backed_store(tmp_path) -> None:
    config = Settings(database_url=f"sqlite:///{tmp_path / 'nested' / 'events.db'}", max_retries=3)

    relay = RelayService.from_settings(config)
    relay.initialize()
    relay.store.close()

    assert (tmp_path / "nested" / "events.db").exists()
    assert relay.store.max_retries == 3
    assert relay.engine.confirmer is None
