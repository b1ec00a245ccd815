from __future__ import annotations

import asyncio
import json
import signal
import sys
from typing import Callable, Optional

import typer
from loguru import logger

from .config import Settings, get_settings
from .errors import HATesterError
from .orchestrator import HATester
from .store import ReplicaStore

app = typer.Typer(help="MongoDB replica set HA tester")


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | {message}",
    )


def _settings() -> Settings:
    s = get_settings()
    configure_logging(s.LOG_LEVEL)
    return s


def _echo(model) -> None:
    typer.echo(json.dumps(model.model_dump(mode="json"), indent=2))


def _install_stop_handlers(on_stop: Optional[Callable[[], None]] = None) -> asyncio.Event:
    """Route SIGINT/SIGTERM to an event (and ``on_stop``) for the rest of the run."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle() -> None:
        stop.set()
        if on_stop is not None:
            on_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle)
        except NotImplementedError:  # Windows
            pass
    return stop


async def _wait_for_signal(stop: asyncio.Event) -> None:
    try:
        await stop.wait()
    finally:
        logger.info("🛑 Stop signal received, shutting down...")


async def _init_or_exit(tester: HATester) -> None:
    report = await tester.initialize()
    if not report.any_ready:
        logger.error("No component initialized; cannot run the test")
        await tester.stop()
        raise typer.Exit(code=1)


# ---------------------------
# Runs
# ---------------------------


@app.command("full")
def full():
    """Run monitor, writer and validator until interrupted."""

    async def _run():
        tester = HATester(_settings())
        stop = _install_stop_handlers(tester.request_stop)
        await _init_or_exit(tester)
        try:
            await tester.start()
            await _wait_for_signal(stop)
        finally:
            _echo(await tester.stop())

    asyncio.run(_run())


@app.command("single")
def single(writes: int = typer.Option(20, "--writes", help="Number of sequenced writes")):
    """One batch of writes followed by a full validation."""

    async def _run() -> bool:
        tester = HATester(_settings())
        await _init_or_exit(tester)
        try:
            report = await tester.run_single(writes)
            _echo(report)
            return report.passed
        finally:
            await tester.stop()

    if not asyncio.run(_run()):
        raise typer.Exit(code=2)


@app.command("monitor")
def monitor():
    """Poll replica set health until interrupted."""

    async def _run():
        tester = HATester(_settings())
        stop = _install_stop_handlers()
        await _init_or_exit(tester)
        tester.monitor.start()
        try:
            await _wait_for_signal(stop)
        finally:
            await tester.stop()

    asyncio.run(_run())


@app.command("write")
def write(
    batch: Optional[int] = typer.Option(
        None, "--batch", help="Write a single batch of N records instead of writing continuously"
    ),
):
    """Write sequenced records (continuously, or one batch)."""

    async def _run():
        tester = HATester(_settings())
        stop = _install_stop_handlers() if batch is None else None
        await _init_or_exit(tester)
        try:
            if stop is None:
                _echo(await tester.writer.batch_write(batch))
                return
            tester.writer.start()
            await _wait_for_signal(stop)
        finally:
            await tester.stop()

    asyncio.run(_run())


@app.command("validate")
def validate(
    batch_id: Optional[str] = typer.Option(None, "--batch-id", help="Limit checks to one batch"),
    continuous: bool = typer.Option(False, "--continuous", help="Validate on VERIFY_INTERVAL"),
):
    """Run the integrity checks once (default) or continuously."""

    async def _run() -> bool:
        tester = HATester(_settings())
        stop = _install_stop_handlers() if continuous else None
        await _init_or_exit(tester)
        try:
            if stop is not None:
                tester.validator.start(batch_id)
                await _wait_for_signal(stop)
                return True
            report = await tester.validator.full_validation(batch_id)
            _echo(report)
            return report.overall_valid
        finally:
            await tester.stop()

    if not asyncio.run(_run()):
        raise typer.Exit(code=2)


# ---------------------------
# Store utilities
# ---------------------------


@app.command("ping")
def ping():
    """Check store connectivity and print the replica set name."""

    async def _run():
        store = ReplicaStore(_settings())
        try:
            await store.connect()
            status = await store.replica_set_status()
            typer.echo(json.dumps({"ok": True, "set": status.get("set")}, indent=2))
        except HATesterError as exc:
            typer.echo(json.dumps({"ok": False, "error": str(exc)}, indent=2))
            raise typer.Exit(code=1)
        finally:
            await store.close()

    asyncio.run(_run())


@app.command("cleanup")
def cleanup(batch_id: str = typer.Option(..., "--batch-id", help="Batch to delete")):
    """Delete the test records of one batch."""

    async def _run():
        store = ReplicaStore(_settings())
        try:
            await store.connect()
            n = await store.delete_records(batch_id)
            logger.success(f"Deleted {n} records from {batch_id}")
        finally:
            await store.close()

    asyncio.run(_run())


if __name__ == "__main__":
    app()
