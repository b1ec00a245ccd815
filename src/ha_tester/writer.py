"""
Sequential writer.

Allocates a sequence id, tags a TestRecord with the current primary and the
run's batch id, and persists it. Allocation and persistence are separate
store operations; a failed persist keeps its id consumed so the validator
sees the gap.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from loguru import logger

from .config import Settings
from .errors import AllocationError, ErrorKind, HATesterError, RecordWriteError
from .errorsink import ErrorSink
from .loop import PeriodicTask
from .metrics import metrics_registry
from .models import BatchWriteResult, TestRecord, WriteResult, WriterStats
from .sequence import SequenceAllocator
from .utils import LatencyStats, elapsed_ms, generate_batch_id, utc_now

UNKNOWN_NODE = "unknown"
PROGRESS_EVERY = 100


class SequentialWriter:
    def __init__(
        self,
        store,
        settings: Settings,
        *,
        allocator: Optional[SequenceAllocator] = None,
        batch_id: Optional[str] = None,
    ):
        self._store = store
        self._settings = settings
        self._allocator = allocator or SequenceAllocator(store)
        self._errors = ErrorSink(store, "writer")
        self.sequence_name = settings.SEQUENCE_NAME
        self.batch_id = batch_id

        self.success_count = 0
        self.error_count = 0
        self.latency = LatencyStats()
        self.start_time: Optional[float] = None
        self.last_write_time = None

        self._loop = PeriodicTask(
            "writer",
            settings.WRITE_INTERVAL / 1000.0,
            self.write,
            on_error=self._on_loop_error,
        )

    # --------------- lifecycle

    async def initialize(self) -> bool:
        try:
            logger.info("✏️ Initializing sequential writer...")
            await self._store.ping()
            if self.batch_id is None:
                self.batch_id = generate_batch_id()
            logger.success(f"Sequential writer ready (batch: {self.batch_id})")
            return True
        except HATesterError as exc:
            await self._errors.record(exc.kind, "writer initialization failed", exc)
            return False

    @property
    def running(self) -> bool:
        return self._loop.running

    def start(self) -> None:
        """Start continuous writing on the configured interval."""
        if self.batch_id is None:
            self.batch_id = generate_batch_id()
        if self.start_time is None:
            self.start_time = time.monotonic()
        logger.info(f"🚀 Continuous write (interval: {self._settings.WRITE_INTERVAL}ms)")
        self._loop.start()

    async def stop(self) -> None:
        if not self.running:
            return
        await self._loop.stop()
        self._log_stats("Writer final report")

    async def _on_loop_error(self, exc: Exception) -> None:
        await self._errors.record(ErrorKind.WRITE, "write loop error", exc)

    # --------------- writes

    async def current_primary(self) -> str:
        """Label of the member currently reporting PRIMARY, or ``"unknown"``."""
        try:
            status = await self._store.replica_set_status()
        except HATesterError as exc:
            logger.warning(f"Could not resolve primary: {exc}")
            return UNKNOWN_NODE
        for member in status.get("members", []):
            if member.get("stateStr") == "PRIMARY":
                return member.get("name", UNKNOWN_NODE)
        return UNKNOWN_NODE

    async def write(self) -> WriteResult:
        """One sequenced write. Never raises for store failures."""
        if self.batch_id is None:
            self.batch_id = generate_batch_id()
        t0 = time.perf_counter()

        try:
            sequence_id = await self._allocator.next_id(self.sequence_name)
        except AllocationError as exc:
            self.error_count += 1
            metrics_registry.writes_total.labels(outcome="allocation_error").inc()
            await self._errors.record(
                ErrorKind.WRITE, "sequence allocation failed", exc, batch_id=self.batch_id
            )
            return WriteResult(success=False, error=str(exc), error_kind="allocation")

        primary = await self.current_primary()
        now = utc_now()
        record = TestRecord(
            sequence_id=sequence_id,
            timestamp=now,
            payload=f"Test data #{sequence_id} - {now.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]}",
            written_to=primary,
            batch_id=self.batch_id,
        )

        try:
            await self._store.insert_record(record.to_document())
        except HATesterError as exc:
            # The allocated id is not reclaimed.
            err = RecordWriteError(f"write failed (sequence {sequence_id}): {exc}", sequence_id)
            self.error_count += 1
            metrics_registry.writes_total.labels(outcome="write_error").inc()
            await self._errors.record(
                ErrorKind.WRITE,
                f"write failed (sequence {sequence_id})",
                exc,
                batch_id=self.batch_id,
                sequence_id=sequence_id,
                write_count=self.success_count,
            )
            return WriteResult(
                success=False,
                sequence_id=sequence_id,
                primary_node=primary,
                error=str(err),
                error_kind="write",
            )

        latency = elapsed_ms(t0)
        self.latency.add(latency)
        self.success_count += 1
        self.last_write_time = utc_now()
        metrics_registry.writes_total.labels(outcome="success").inc()
        metrics_registry.write_latency_ms.observe(latency)

        if self.success_count % PROGRESS_EVERY == 0:
            self._log_stats("Write progress")

        return WriteResult(
            success=True, sequence_id=sequence_id, latency_ms=latency, primary_node=primary
        )

    async def batch_write(
        self, n: Optional[int] = None, *, delay_ms: Optional[int] = None
    ) -> BatchWriteResult:
        """Perform ``n`` writes with a fixed delay between them."""
        n = self._settings.BATCH_SIZE if n is None else n
        delay = (self._settings.BATCH_WRITE_DELAY if delay_ms is None else delay_ms) / 1000.0
        if self.start_time is None:
            self.start_time = time.monotonic()
        logger.info(f"📝 Batch write (size: {n})")

        t0 = time.perf_counter()
        results: list[WriteResult] = []
        for i in range(n):
            results.append(await self.write())
            if i < n - 1 and delay > 0:
                await asyncio.sleep(delay)

        duration = elapsed_ms(t0)
        ok = sum(1 for r in results if r.success)
        throughput = round(ok * 1000.0 / duration, 3) if duration > 0 else 0.0
        logger.info(
            f"📊 Batch done: ok={ok} failed={len(results) - ok} "
            f"duration={duration:.0f}ms avg={duration / max(n, 1):.1f}ms/write"
        )
        return BatchWriteResult(
            results=results,
            success_count=ok,
            error_count=len(results) - ok,
            duration_ms=duration,
            throughput=throughput,
        )

    # --------------- stats

    @property
    def runtime_s(self) -> float:
        return time.monotonic() - self.start_time if self.start_time is not None else 0.0

    def throughput(self) -> float:
        """Successful writes per second since the writer started."""
        runtime = self.runtime_s
        return round(self.success_count / runtime, 3) if runtime > 0 else 0.0

    def stats(self) -> WriterStats:
        runtime = self.runtime_s
        return WriterStats(
            batch_id=self.batch_id,
            running=self.running,
            success_count=self.success_count,
            error_count=self.error_count,
            min_latency_ms=self.latency.min_ms,
            avg_latency_ms=self.latency.avg_ms,
            max_latency_ms=self.latency.max_ms,
            throughput=self.throughput(),
            runtime_s=round(runtime, 3),
            last_write_time=self.last_write_time,
        )

    def _log_stats(self, title: str) -> None:
        s = self.stats()
        logger.info(
            f"📈 {title}: batch={s.batch_id} ok={s.success_count} errors={s.error_count} "
            f"runtime={s.runtime_s:.0f}s throughput={s.throughput}/s "
            f"latency(min/avg/max)={s.min_latency_ms}/{s.avg_latency_ms}/{s.max_latency_ms}ms"
        )
