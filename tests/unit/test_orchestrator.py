"""
Unit tests for HATester orchestration.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from pymongo.errors import ConfigurationError

from ha_tester.errors import StoreConnectionError
from ha_tester.orchestrator import HATester


@pytest.fixture
def tester(fake_store, settings):
    return HATester(settings, store=fake_store)


@pytest.mark.asyncio
async def test_initialize_all_components(tester):
    report = await tester.initialize()
    assert report.components == {"monitor": True, "writer": True, "validator": True}
    assert report.succeeded == 3
    assert report.any_ready is True


@pytest.mark.asyncio
async def test_initialize_tolerates_partial_failure(tester, monkeypatch):
    async def broken():
        return False

    monkeypatch.setattr(tester.monitor, "initialize", broken)
    report = await tester.initialize()

    assert report.components["monitor"] is False
    assert report.succeeded == 2
    assert report.any_ready is True


@pytest.mark.asyncio
async def test_initialize_with_unreachable_store(tester, fake_store):
    fake_store.fail_ops["connect"] = StoreConnectionError("server selection timeout")
    fake_store.fail_ops["ping"] = StoreConnectionError("server selection timeout")

    report = await tester.initialize()

    assert report.succeeded == 0
    assert report.any_ready is False


@pytest.mark.asyncio
async def test_start_order_is_monitor_writer_validator(tester, monkeypatch):
    await tester.initialize()
    order = []
    monkeypatch.setattr(tester.monitor, "start", lambda: order.append("monitor"))
    monkeypatch.setattr(tester.writer, "start", lambda: order.append("writer"))
    monkeypatch.setattr(tester.validator, "start", lambda *a: order.append("validator"))

    await tester.start()

    assert order == ["monitor", "writer", "validator"]
    assert tester.running is True


@pytest.mark.asyncio
async def test_start_skips_failed_components(tester, monkeypatch):
    await tester.initialize()
    tester.components["writer"] = False
    started = []
    monkeypatch.setattr(tester.monitor, "start", lambda: started.append("monitor"))
    monkeypatch.setattr(tester.writer, "start", lambda: started.append("writer"))
    monkeypatch.setattr(tester.validator, "start", lambda *a: started.append("validator"))

    await tester.start()

    assert started == ["monitor", "validator"]


@pytest.mark.asyncio
async def test_full_run_then_stop(tester, fake_store):
    await tester.initialize()
    await tester.start()
    await asyncio.sleep(0.08)
    stats = await tester.stop()

    assert stats.writes_succeeded >= 1
    assert stats.write_errors == 0
    assert stats.success_rate == 100.0
    assert stats.monitor_polls >= 1
    assert stats.validation_count >= 1
    assert stats.last_validation_valid is True
    assert tester.monitor.last_snapshot.performance.throughput is not None
    assert fake_store.closed is True
    assert tester.running is False
    assert not tester.writer.running
    assert not tester.monitor.running
    assert not tester.validator.running


@pytest.mark.asyncio
async def test_second_start_is_ignored(tester, monkeypatch):
    await tester.initialize()
    calls = []
    monkeypatch.setattr(tester.monitor, "start", lambda: calls.append(1))
    monkeypatch.setattr(tester.writer, "start", lambda: None)
    monkeypatch.setattr(tester.validator, "start", lambda *a: None)

    await tester.start()
    await tester.start()

    assert calls == [1]


@pytest.mark.asyncio
async def test_stop_during_settle_aborts_startup(fake_store, settings):
    slow = settings.model_copy(update={"STARTUP_SETTLE_MONITOR_MS": 5000})
    tester = HATester(slow, store=fake_store)
    await tester.initialize()

    starting = asyncio.create_task(tester.start())
    await asyncio.sleep(0.02)
    await tester.stop()
    await asyncio.wait_for(starting, timeout=1.0)

    assert not tester.writer.running
    assert tester.writer.success_count == 0
    assert not tester.validator.running


@pytest.mark.asyncio
async def test_run_single_passes_on_clean_writes(tester, fake_store):
    await tester.initialize()

    report = await tester.run_single(writes=6)

    assert report.passed is True
    assert report.batch.success_count == 6
    assert report.validation.batch_id == tester.writer.batch_id
    assert report.validation.sequence_validation.total_records == 6


@pytest.mark.asyncio
async def test_run_single_reports_lost_write(tester, fake_store):
    await tester.initialize()
    fake_store.fail_sequences = {3}

    report = await tester.run_single(writes=5)

    assert report.passed is False
    assert report.batch.error_count == 1
    assert report.validation.sequence_validation.missing_sequences == [3]


@pytest.mark.asyncio
async def test_status_reflects_components(tester):
    await tester.initialize()
    await tester.run_single(writes=2)

    status = tester.status()

    assert status.running is False
    assert status.connection_state == "connected"
    assert status.writer.success_count == 2
    assert status.validation_count == 1
    assert status.last_validation.overall_valid is True


@pytest.mark.asyncio
async def test_initialize_survives_invalid_client_options(settings, monkeypatch):
    monkeypatch.setattr(
        "ha_tester.store.AsyncMongoClient",
        MagicMock(side_effect=ConfigurationError("Cannot set w to 0 and j to True")),
    )
    tester = HATester(settings)

    report = await tester.initialize()

    assert report.succeeded == 0
    assert report.any_ready is False


@pytest.mark.asyncio
async def test_stop_requested_before_start(tester, monkeypatch):
    await tester.initialize()
    started = []
    monkeypatch.setattr(tester.monitor, "start", lambda: started.append("monitor"))

    tester.request_stop()
    await tester.start()

    assert started == []
    assert tester.running is False


@pytest.mark.asyncio
async def test_snapshots_carry_writer_throughput(tester):
    await tester.initialize()
    await tester.writer.batch_write(3)

    snap = await tester.monitor.record_status()

    assert snap.performance.throughput > 0
