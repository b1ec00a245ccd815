"""
HA tester orchestration.

Owns the shared store handle and the fixed component set (monitor, writer,
validator): initialization with partial-failure tolerance, staggered
startup, cooperative shutdown and aggregated status for external consumers.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from loguru import logger

from .config import Settings, get_settings
from .errors import HATesterError
from .models import InitReport, RunStatistics, SingleRunReport, TesterStatus
from .monitor import ClusterMonitor
from .store import ReplicaStore
from .utils import utc_now
from .validator import IntegrityValidator
from .writer import SequentialWriter


class HATester:
    """Composes monitor, writer and validator over one store connection.

    Example:
        tester = HATester(get_settings())
        report = await tester.initialize()
        if report.any_ready:
            await tester.start()
            ...
            stats = await tester.stop()
    """

    def __init__(self, settings: Optional[Settings] = None, *, store=None):
        self.settings = settings or get_settings()
        self.store = store if store is not None else ReplicaStore(self.settings)
        self.writer = SequentialWriter(self.store, self.settings)
        self.monitor = ClusterMonitor(self.store, self.settings, throughput=self.writer.throughput)
        self.validator = IntegrityValidator(self.store, self.settings)

        self.components: dict[str, bool] = {"monitor": False, "writer": False, "validator": False}
        self.running = False
        self.started_at = None
        self._t0: Optional[float] = None
        self._stopping = asyncio.Event()

    # --------------- lifecycle

    async def initialize(self) -> InitReport:
        """Connect the shared store, then initialize each component independently."""
        logger.info("🔧 Initializing components...")
        try:
            await self.store.connect()
        except HATesterError as exc:
            # Components still initialize one by one and report their own failure.
            logger.error(f"Store connection failed: {exc}")

        self.components["monitor"] = await self.monitor.initialize()
        self.components["writer"] = await self.writer.initialize()
        self.components["validator"] = await self.validator.initialize()

        report = InitReport(components=dict(self.components))
        log = logger.success if report.succeeded == report.total else logger.warning
        log(f"🎯 Components ready: {report.succeeded}/{report.total}")
        return report

    async def _settle(self, ms: int) -> bool:
        """Wait ``ms`` unless a stop is requested. Returns False when stopping."""
        if ms <= 0:
            return not self._stopping.is_set()
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=ms / 1000.0)
        except asyncio.TimeoutError:
            pass
        return not self._stopping.is_set()

    async def start(self) -> None:
        """Start monitor, writer, validator in that order with settle delays."""
        if self.running:
            logger.warning("⚠️ Test already running")
            return
        if self._stopping.is_set():
            logger.warning("⚠️ Stop requested before start; not starting")
            return
        self.running = True
        self.started_at = utc_now()
        self._t0 = time.monotonic()
        logger.info("🚀 Starting full HA test...")

        if self.components["monitor"]:
            self.monitor.start()
        if not await self._settle(self.settings.STARTUP_SETTLE_MONITOR_MS):
            return

        if self.components["writer"]:
            self.writer.start()
        if not await self._settle(self.settings.STARTUP_SETTLE_WRITER_MS):
            return

        if self.components["validator"]:
            self.validator.start()
        logger.success("All components started")

    def request_stop(self) -> None:
        """Abort a pending startup settle; safe to call from a signal handler."""
        self._stopping.set()

    async def run_single(self, writes: int = 20) -> SingleRunReport:
        """One batch of writes followed by one full validation of that batch."""
        logger.info("🧪 Single test run...")
        report = SingleRunReport()
        if self.components["writer"]:
            report.batch = await self.writer.batch_write(writes)
        await self._settle(self.settings.STARTUP_SETTLE_MONITOR_MS)
        if self.components["validator"]:
            report.validation = await self.validator.full_validation(self.writer.batch_id)

        if report.passed:
            logger.success("✅ Single test complete: data integrity OK")
        else:
            logger.error("❌ Single test complete: data integrity issues found")
        return report

    async def stop(self) -> RunStatistics:
        """Stop the loops cooperatively, then release the store."""
        logger.info("🛑 Stopping all components...")
        self._stopping.set()

        await self.writer.stop()
        await self.validator.stop()
        await self.monitor.stop()

        stats = self.statistics()
        await self.store.close()
        self.running = False
        self._log_statistics(stats)
        return stats

    # --------------- status

    @property
    def runtime_s(self) -> float:
        return time.monotonic() - self._t0 if self._t0 is not None else self.writer.runtime_s

    def status(self) -> TesterStatus:
        return TesterStatus(
            running=self.running,
            started_at=self.started_at,
            connection_state=self.store.tracker.state.value,
            components=dict(self.components),
            writer=self.writer.stats() if self.components["writer"] else None,
            last_snapshot=self.monitor.last_snapshot,
            last_validation=self.validator.last_report,
            validation_count=self.validator.validation_count,
        )

    def statistics(self) -> RunStatistics:
        w = self.writer.stats()
        runtime = self.runtime_s
        attempts = w.success_count + w.error_count
        last = self.validator.last_report
        return RunStatistics(
            batch_id=w.batch_id,
            runtime_s=round(runtime, 3),
            writes_succeeded=w.success_count,
            write_errors=w.error_count,
            success_rate=round(w.success_count / attempts * 100, 2) if attempts else 0.0,
            throughput=round(w.success_count / runtime, 3) if runtime > 0 else 0.0,
            avg_latency_ms=w.avg_latency_ms,
            min_latency_ms=w.min_latency_ms,
            max_latency_ms=w.max_latency_ms,
            validation_count=self.validator.validation_count,
            last_validation_valid=last.overall_valid if last else None,
            monitor_polls=self.monitor.poll_count,
        )

    @staticmethod
    def _log_statistics(s: RunStatistics) -> None:
        logger.info(
            f"📋 Final summary: batch={s.batch_id} runtime={s.runtime_s:.0f}s "
            f"ok={s.writes_succeeded} errors={s.write_errors} success_rate={s.success_rate}% "
            f"throughput={s.throughput}/s validations={s.validation_count} "
            f"last_valid={s.last_validation_valid}"
        )
