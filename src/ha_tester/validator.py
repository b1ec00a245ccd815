"""
Data integrity validator.

Reads written records back and checks them three ways:

- sequence integrity: every id in the dense range ``[min, max]`` must be
  present exactly once.
- timestamp ordering: walking records in sequence order, a later id must not
  carry an earlier timestamp (a "reversal").
- cross-read consistency: the same count/latest-id query must agree under
  primary, secondary and secondaryPreferred reads.

``full_validation`` runs the three concurrently and ANDs the available
results. A sub-check that cannot complete is reported as unavailable and
left out of the verdict instead of failing the run.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from typing import Any, Iterable, Optional, Sequence

from loguru import logger

from .config import Settings
from .errors import CheckUnavailableError, ErrorKind, HATesterError
from .errorsink import ErrorSink
from .loop import PeriodicTask
from .metrics import metrics_registry
from .models import (
    ConnectionStatus,
    CrossReadValidation,
    DataIntegrity,
    DuplicateEntry,
    Gap,
    ReadPreferenceResult,
    SequenceValidation,
    SystemStatusSnapshot,
    TimeReversal,
    TimestampValidation,
    ValidationReport,
)
from .utils import as_utc, elapsed_ms

CROSS_READ_PREFERENCES = ("primary", "secondary", "secondaryPreferred")

SEQUENCE = "sequence"
TIMESTAMP = "timestamp"
CROSS_READ = "cross_read"


# ---------- pure analysis ----------


def find_gaps(missing: Sequence[int]) -> list[Gap]:
    """Coalesce sorted missing ids into contiguous ranges."""
    gaps: list[Gap] = []
    start = prev = None
    for seq in missing:
        if start is None:
            start = prev = seq
        elif seq == prev + 1:
            prev = seq
        else:
            gaps.append(Gap(start=start, end=prev, size=prev - start + 1))
            start = prev = seq
    if start is not None:
        gaps.append(Gap(start=start, end=prev, size=prev - start + 1))
    return gaps


def _sequence_summary(total: int, missing: int, duplicates: int, gaps: int) -> str:
    if total == 0:
        return "no records"
    if missing == 0 and duplicates == 0:
        return "sequence integrity OK"
    issues = []
    if missing:
        issues.append(f"{missing} missing")
    if duplicates:
        issues.append(f"{duplicates} duplicated")
    if gaps:
        issues.append(f"{gaps} gaps")
    return "issues found: " + ", ".join(issues)


def analyze_sequence(records: Iterable[dict]) -> SequenceValidation:
    counts = Counter(int(r["sequence_id"]) for r in records)
    total = sum(counts.values())
    if total == 0:
        return SequenceValidation(
            total_records=0, expected_records=0, is_valid=True, summary="no records"
        )

    lo, hi = min(counts), max(counts)
    missing: list[int] = []
    duplicates: list[DuplicateEntry] = []
    for seq in range(lo, hi + 1):
        n = counts.get(seq, 0)
        if n == 0:
            missing.append(seq)
        elif n > 1:
            duplicates.append(DuplicateEntry(sequence_id=seq, count=n))

    expected = hi - lo + 1
    gaps = find_gaps(missing)
    return SequenceValidation(
        total_records=total,
        expected_records=expected,
        min_sequence_id=lo,
        max_sequence_id=hi,
        missing_sequences=missing,
        duplicate_sequences=[d.sequence_id for d in duplicates],
        duplicates=duplicates,
        gaps=gaps,
        completeness=round(total / expected * 100, 4),
        is_valid=not missing and not duplicates,
        summary=_sequence_summary(total, len(missing), len(duplicates), len(gaps)),
    )


def analyze_timestamps(records: Sequence[dict]) -> TimestampValidation:
    # stable: ties keep store order (sequence_id, _id)
    records = sorted(records, key=lambda r: r["sequence_id"])
    if len(records) < 2:
        return TimestampValidation(
            total_records=len(records),
            is_valid=True,
            summary="not enough records to check ordering",
        )

    reversals: list[TimeReversal] = []
    for prev, cur in zip(records, records[1:]):
        prev_ts, cur_ts = as_utc(prev["timestamp"]), as_utc(cur["timestamp"])
        if cur_ts < prev_ts:
            reversals.append(
                TimeReversal(
                    sequence_id=cur["sequence_id"],
                    previous_sequence_id=prev["sequence_id"],
                    current_time=cur_ts,
                    previous_time=prev_ts,
                    time_diff_ms=(prev_ts - cur_ts).total_seconds() * 1000.0,
                )
            )

    return TimestampValidation(
        total_records=len(records),
        out_of_order_count=len(reversals),
        time_reversals=reversals,
        is_valid=not reversals,
        summary=f"{len(reversals)} timestamp reversals",
    )


def compare_read_results(results: dict[str, ReadPreferenceResult]) -> CrossReadValidation:
    ok = [r for r in results.values() if r.error is None]
    failed = [r.read_preference for r in results.values() if r.error is not None]

    counts = {r.count for r in ok}
    latest = {r.latest_sequence_id for r in ok}
    count_consistent = bool(ok) and len(counts) == 1
    seq_consistent = bool(ok) and len(latest) == 1
    valid = count_consistent and seq_consistent

    if failed:
        summary = f"unavailable: read failed under {', '.join(failed)}"
    else:
        summary = "cross-read consistent" if valid else "cross-read divergence"
    return CrossReadValidation(
        available=not failed and bool(results),
        results=results,
        is_count_consistent=count_consistent,
        is_sequence_consistent=seq_consistent,
        is_valid=valid and not failed,
        summary=summary,
    )


# ---------- validator ----------


class IntegrityValidator:
    def __init__(self, store, settings: Settings, *, batch_id: Optional[str] = None):
        self._store = store
        self._settings = settings
        self._errors = ErrorSink(store, "validator")
        self.batch_id = batch_id
        self.validation_count = 0
        self.last_report: Optional[ValidationReport] = None

        self._loop = PeriodicTask(
            "validator",
            settings.VERIFY_INTERVAL / 1000.0,
            self._tick,
            on_error=self._on_loop_error,
        )

    @property
    def error_count(self) -> int:
        return self._errors.recorded

    # --------------- lifecycle

    async def initialize(self) -> bool:
        try:
            logger.info("🔍 Initializing integrity validator...")
            await self._store.ping()
            logger.success("Integrity validator ready")
            return True
        except HATesterError as exc:
            await self._errors.record(exc.kind, "validator initialization failed", exc)
            return False

    @property
    def running(self) -> bool:
        return self._loop.running

    def start(self, batch_id: Optional[str] = None) -> None:
        if batch_id is not None:
            self.batch_id = batch_id
        logger.info(f"🔍 Continuous validation (interval: {self._settings.VERIFY_INTERVAL}ms)")
        self._loop.start()

    async def stop(self) -> None:
        await self._loop.stop()

    async def _tick(self) -> None:
        await self.full_validation(self.batch_id)

    async def _on_loop_error(self, exc: Exception) -> None:
        await self._errors.record(ErrorKind.VALIDATION, "validation loop error", exc)

    # --------------- sub-checks

    async def _load(self, batch_id: Optional[str], check: str) -> list[dict]:
        try:
            return await self._store.find_records(batch_id)
        except HATesterError as exc:
            raise CheckUnavailableError(f"{check}: could not read records: {exc}") from exc

    async def sequence_integrity(self, batch_id: Optional[str] = None) -> SequenceValidation:
        records = await self._load(batch_id, SEQUENCE)
        return analyze_sequence(records)

    async def timestamp_ordering(self, batch_id: Optional[str] = None) -> TimestampValidation:
        records = await self._load(batch_id, TIMESTAMP)
        return analyze_timestamps(records)

    async def cross_read_consistency(self) -> CrossReadValidation:
        results: dict[str, ReadPreferenceResult] = {}
        for pref in CROSS_READ_PREFERENCES:
            try:
                summary: dict[str, Any] = await self._store.read_summary(pref)
            except HATesterError as exc:
                logger.warning(f"Read under {pref} failed: {exc}")
                results[pref] = ReadPreferenceResult(read_preference=pref, error=str(exc))
                continue
            results[pref] = ReadPreferenceResult(read_preference=pref, **summary)
        return compare_read_results(results)

    # --------------- full run

    async def full_validation(self, batch_id: Optional[str] = None) -> ValidationReport:
        t0 = time.perf_counter()
        seq_res, ts_res, cross_res = await asyncio.gather(
            self.sequence_integrity(batch_id),
            self.timestamp_ordering(batch_id),
            self.cross_read_consistency(),
            return_exceptions=True,
        )

        unavailable: list[str] = []
        seq = await self._accept(SEQUENCE, seq_res, unavailable)
        ts = await self._accept(TIMESTAMP, ts_res, unavailable)
        cross = await self._accept(CROSS_READ, cross_res, unavailable)
        if cross is not None and not cross.available:
            unavailable.append(CROSS_READ)
            await self._errors.record(ErrorKind.VALIDATION, f"{CROSS_READ} check unavailable")

        verdicts = [seq.is_valid if seq else None, ts.is_valid if ts else None]
        verdicts.append(cross.is_valid if cross is not None and cross.available else None)
        available = [v for v in verdicts if v is not None]
        overall = bool(available) and all(available)

        report = ValidationReport(
            batch_id=batch_id,
            duration_ms=elapsed_ms(t0),
            overall_valid=overall,
            sequence_validation=seq,
            timestamp_validation=ts,
            cross_read_validation=cross,
            unavailable_checks=unavailable,
            summary=self._overall_summary(seq, ts, cross, unavailable),
        )

        await self._save(report)
        self.validation_count += 1
        self.last_report = report
        self._record_metrics(report)
        self._log_report(report)
        return report

    async def _accept(self, name: str, result: object, unavailable: list[str]):
        if not isinstance(result, BaseException):
            return result
        if not isinstance(result, Exception):
            raise result
        unavailable.append(name)
        kind = ErrorKind.VALIDATION if isinstance(result, HATesterError) else ErrorKind.SYSTEM
        await self._errors.record(kind, f"{name} check unavailable", result)
        return None

    async def _save(self, report: ValidationReport) -> None:
        seq = report.sequence_validation
        snapshot = SystemStatusSnapshot(
            check_time=report.timestamp,
            source="validator",
            connection=ConnectionStatus(state=self._store.tracker.state.value),
            data_integrity=DataIntegrity(
                total_records=seq.total_records if seq else 0,
                missing_sequences=seq.missing_sequences if seq else [],
                duplicate_sequences=seq.duplicate_sequences if seq else [],
                is_valid=report.overall_valid,
            ),
        )
        try:
            await self._store.insert_status(snapshot.to_document())
        except HATesterError as exc:
            await self._errors.record(exc.kind, "failed to persist validation snapshot", exc)

    @staticmethod
    def _overall_summary(seq, ts, cross, unavailable: list[str]) -> str:
        issues = []
        if seq is not None and not seq.is_valid:
            issues.append("sequence integrity")
        if ts is not None and not ts.is_valid:
            issues.append("timestamp ordering")
        if cross is not None and cross.available and not cross.is_valid:
            issues.append("cross-read consistency")
        text = "all checks passed" if not issues else "issues found: " + ", ".join(issues)
        if unavailable:
            text += f" (unavailable: {', '.join(unavailable)})"
        return text

    @staticmethod
    def _record_metrics(report: ValidationReport) -> None:
        if len(report.unavailable_checks) == 3:
            outcome = "error"
        else:
            outcome = "valid" if report.overall_valid else "invalid"
        metrics_registry.validations_total.labels(outcome=outcome).inc()
        seq = report.sequence_validation
        if seq is not None:
            metrics_registry.missing_sequences.set(len(seq.missing_sequences))
            metrics_registry.duplicate_sequences.set(len(seq.duplicate_sequences))

    def _log_report(self, report: ValidationReport) -> None:
        log = logger.info if report.overall_valid else logger.warning
        mark = "✅" if report.overall_valid else "❌"
        log(
            f"{mark} Validation ({report.batch_id or 'all data'}, {report.duration_ms:.0f}ms): "
            f"{report.summary}"
        )
        seq = report.sequence_validation
        if seq is not None and seq.gaps:
            for gap in seq.gaps[:5]:
                logger.warning(f"  gap {gap.start}-{gap.end} (size {gap.size})")
        ts = report.timestamp_validation
        if ts is not None:
            for rev in ts.time_reversals[:3]:
                logger.warning(
                    f"  sequence {rev.sequence_id} is {rev.time_diff_ms:.0f}ms earlier "
                    f"than sequence {rev.previous_sequence_id}"
                )
