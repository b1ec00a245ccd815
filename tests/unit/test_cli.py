"""
CLI tests with the store swapped for the in-memory fake.
"""

import asyncio
import json
import os
import signal

import pytest
from typer.testing import CliRunner

from ha_tester import cli
from ha_tester.errors import StoreConnectionError
from ha_tester.orchestrator import HATester

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)


@pytest.fixture
def use_fake(monkeypatch, fake_store, settings):
    monkeypatch.setattr(cli, "_settings", lambda: settings)
    monkeypatch.setattr(cli, "ReplicaStore", lambda s: fake_store)
    monkeypatch.setattr(cli, "HATester", lambda s: HATester(settings, store=fake_store))
    return fake_store


def test_ping_ok(use_fake):
    result = runner.invoke(cli.app, ["ping"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"ok": True, "set": "rs0"}


def test_ping_unreachable(use_fake):
    use_fake.fail_ops["connect"] = StoreConnectionError("server selection timeout")
    result = runner.invoke(cli.app, ["ping"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["ok"] is False


def test_single_run_passes(use_fake):
    result = runner.invoke(cli.app, ["single", "--writes", "4"])
    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report["validation"]["overall_valid"] is True
    assert report["batch"]["success_count"] == 4


def test_single_run_exit_code_on_lost_write(use_fake):
    use_fake.fail_sequences = {2}
    result = runner.invoke(cli.app, ["single", "--writes", "4"])
    assert result.exit_code == 2


def test_single_run_no_components(use_fake):
    use_fake.fail_ops["ping"] = StoreConnectionError("down")
    result = runner.invoke(cli.app, ["single"])
    assert result.exit_code == 1


def test_write_batch(use_fake):
    result = runner.invoke(cli.app, ["write", "--batch", "3"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["success_count"] == 3
    assert len(use_fake.records) == 3


def test_validate_once(use_fake, record_factory):
    for seq in (1, 2, 4):
        use_fake.records.append(dict(record_factory(seq), _id=seq))
    result = runner.invoke(cli.app, ["validate"])
    assert result.exit_code == 2
    assert json.loads(result.stdout)["sequence_validation"]["missing_sequences"] == [3]


def test_cleanup_deletes_batch(use_fake, record_factory):
    use_fake.records = [dict(record_factory(1, batch_id="old"), _id=1)]
    result = runner.invoke(cli.app, ["cleanup", "--batch-id", "old"])
    assert result.exit_code == 0
    assert use_fake.records == []


@pytest.mark.asyncio
async def test_stop_handlers_installed_before_run():
    """A signal that arrives early still sets the stop event and notifies."""
    notified = []
    loop = asyncio.get_running_loop()
    try:
        stop = cli._install_stop_handlers(lambda: notified.append(True))
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(stop.wait(), timeout=1.0)
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)

    assert stop.is_set()
    assert notified == [True]


def test_full_signal_during_startup_still_stops(use_fake, settings, monkeypatch):
    """A stop requested while starting aborts startup and still prints statistics."""
    slow = settings.model_copy(update={"STARTUP_SETTLE_MONITOR_MS": 60000})
    tester = HATester(slow, store=use_fake)
    monkeypatch.setattr(cli, "HATester", lambda s: tester)

    original = cli._install_stop_handlers

    def install_and_fire(on_stop=None):
        stop = original(on_stop)
        asyncio.get_running_loop().call_later(0.05, os.kill, os.getpid(), signal.SIGINT)
        return stop

    monkeypatch.setattr(cli, "_install_stop_handlers", install_and_fire)

    result = runner.invoke(cli.app, ["full"])

    assert result.exit_code == 0
    assert "writes_succeeded" in json.loads(result.stdout)
    assert use_fake.closed is True
    assert not tester.writer.running
