"""
Replica set monitor.

Polls ``replSetGetStatus`` on a fixed interval, classifies each member,
derives the aggregate connection state (primary, secondaries, healthy
member count) and probes write/read latency. Every poll is persisted as a
SystemStatusSnapshot. Probe failures are logged and reported as ``None``.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger

from .config import Settings
from .errors import ErrorKind, HATesterError
from .errorsink import ErrorSink
from .loop import PeriodicTask
from .metrics import metrics_registry
from .models import (
    ConnectionStatus,
    MemberClass,
    MemberStatus,
    PerformanceMetrics,
    ReplicaSetState,
    SystemStatusSnapshot,
)
from .utils import as_utc, elapsed_ms, utc_now


def _seconds_between(later: Optional[datetime], earlier: Optional[datetime]) -> Optional[float]:
    if later is None or earlier is None:
        return None
    return round((as_utc(later) - as_utc(earlier)).total_seconds(), 3)


def classify_members(
    status: dict[str, Any], max_lag_s: float
) -> tuple[ReplicaSetState, Optional[str], list[str]]:
    """Map raw ``replSetGetStatus`` output onto member health records.

    Returns the replica set state plus the primary label (or None) and the
    secondary labels.
    """
    members = status.get("members", [])
    now = status.get("date") or utc_now()
    primary = next((m for m in members if m.get("stateStr") == "PRIMARY"), None)
    primary_optime = primary.get("optimeDate") if primary else None

    out: list[MemberStatus] = []
    for m in members:
        healthy = m.get("health") == 1
        if m.get("self"):
            recency: Optional[float] = 0.0
        else:
            recency = _seconds_between(now, m.get("lastHeartbeat"))

        lag = _seconds_between(primary_optime, m.get("optimeDate"))
        if lag is not None:
            lag = max(0.0, lag)

        if not healthy:
            cls = MemberClass.DOWN
        elif lag is not None and lag > max_lag_s:
            cls = MemberClass.LAGGING
        else:
            cls = MemberClass.HEALTHY

        out.append(
            MemberStatus(
                member_id=int(m.get("_id", len(out))),
                identity=m.get("name", "unknown"),
                health_flag=healthy,
                role=m.get("stateStr", "UNKNOWN"),
                heartbeat_recency_s=recency,
                replication_lag_s=lag,
                ping_ms=m.get("pingMs"),
                classification=cls,
            )
        )

    secondaries = [m.identity for m in out if m.role == "SECONDARY"]
    state = ReplicaSetState(set_name=status.get("set"), members=out)
    return state, (primary.get("name") if primary else None), secondaries


class ClusterMonitor:
    def __init__(
        self,
        store,
        settings: Settings,
        *,
        throughput: Optional[Callable[[], float]] = None,
    ):
        self._store = store
        self._settings = settings
        self._throughput = throughput
        self._errors = ErrorSink(store, "monitor")
        self.connection_status: Optional[ConnectionStatus] = None
        self.last_snapshot: Optional[SystemStatusSnapshot] = None
        self.last_check: Optional[datetime] = None
        self.poll_count = 0
        self._last_primary: Optional[str] = None

        self._loop = PeriodicTask(
            "monitor",
            settings.MONITOR_INTERVAL / 1000.0,
            self.record_status,
            on_error=self._on_loop_error,
        )

    @property
    def is_connected(self) -> bool:
        return self._store.is_connected

    @property
    def error_count(self) -> int:
        return self._errors.recorded

    # --------------- lifecycle

    async def initialize(self) -> bool:
        try:
            logger.info("🔧 Initializing replica set monitor...")
            await self._store.ping()
            logger.success("Replica set monitor ready")
            return True
        except HATesterError as exc:
            await self._errors.record(exc.kind, "monitor initialization failed", exc)
            return False

    @property
    def running(self) -> bool:
        return self._loop.running

    def start(self) -> None:
        logger.info(f"🔍 Monitoring (interval: {self._settings.MONITOR_INTERVAL}ms)")
        self._loop.start()

    async def stop(self) -> None:
        await self._loop.stop()

    async def _on_loop_error(self, exc: Exception) -> None:
        await self._errors.record(ErrorKind.SYSTEM, "monitor loop error", exc)

    # --------------- topology

    async def check_replica_set(self) -> Optional[ReplicaSetState]:
        try:
            raw = await self._store.replica_set_status()
        except HATesterError as exc:
            await self._errors.record(exc.kind, "replica set status check failed", exc)
            return None

        state, primary, secondaries = classify_members(raw, self._settings.MAX_REPLICATION_LAG_S)
        healthy = sum(1 for m in state.members if m.health_flag)
        self.connection_status = ConnectionStatus(
            state=self._store.tracker.state.value,
            primary=primary,
            secondaries=secondaries,
            healthy_members=healthy,
            total_members=len(state.members),
        )
        metrics_registry.healthy_members.set(healthy)
        self._track_primary(primary)
        return state

    def _track_primary(self, primary: Optional[str]) -> None:
        previous = self._last_primary
        if primary is None:
            if previous is not None:
                logger.warning(f"⚠️ No primary (last seen: {previous})")
            return
        if previous is not None and primary != previous:
            metrics_registry.primary_changes_total.inc()
            logger.warning(f"🔀 Primary changed: {previous} -> {primary}")
        self._last_primary = primary

    # --------------- probes

    async def measure_write_latency(self) -> Optional[float]:
        try:
            latency = await self._store.probe_write(
                {"timestamp": utc_now(), "test_data": f"latency-test-{int(time.time() * 1000)}"}
            )
        except HATesterError as exc:
            await self._errors.record(ErrorKind.SYSTEM, "write latency probe failed", exc)
            return None
        metrics_registry.probe_latency_ms.labels(op="write").observe(latency)
        return latency

    async def measure_read_latency(self) -> Optional[float]:
        t0 = time.perf_counter()
        try:
            await self._store.probe_read()
        except HATesterError as exc:
            await self._errors.record(ErrorKind.READ, "read latency probe failed", exc)
            return None
        latency = elapsed_ms(t0)
        metrics_registry.probe_latency_ms.labels(op="read").observe(latency)
        return latency

    async def _version(self) -> Optional[str]:
        try:
            info = await self._store.build_info()
        except HATesterError as exc:
            logger.warning(f"Could not read store version: {exc}")
            return None
        return info.get("version")

    # --------------- poll

    async def record_status(self) -> Optional[SystemStatusSnapshot]:
        """One poll: topology, probes, version; persisted as a snapshot."""
        self.poll_count += 1
        replica_set = await self.check_replica_set()
        if replica_set is None:
            return None

        snapshot = SystemStatusSnapshot(
            source="monitor",
            version=await self._version(),
            replica_set=replica_set,
            connection=self.connection_status,
            performance=PerformanceMetrics(
                write_latency_ms=await self.measure_write_latency(),
                read_latency_ms=await self.measure_read_latency(),
                throughput=self._throughput() if self._throughput is not None else None,
            ),
        )
        try:
            await self._store.insert_status(snapshot.to_document())
        except HATesterError as exc:
            await self._errors.record(exc.kind, "failed to persist status snapshot", exc)

        self.last_snapshot = snapshot
        self.last_check = snapshot.check_time
        self._log_snapshot(snapshot)
        return snapshot

    def _log_snapshot(self, snap: SystemStatusSnapshot) -> None:
        conn = snap.connection
        perf = snap.performance
        logger.info(
            f"📊 {snap.replica_set.set_name}: primary={conn.primary} "
            f"healthy={conn.healthy_members}/{conn.total_members} "
            f"write={perf.write_latency_ms}ms read={perf.read_latency_ms}ms "
            f"throughput={perf.throughput}/s"
        )
        for m in snap.replica_set.members:
            if m.classification is not MemberClass.HEALTHY:
                logger.warning(
                    f"  {m.identity} {m.role} {m.classification.value} "
                    f"(lag={m.replication_lag_s}s heartbeat={m.heartbeat_recency_s}s)"
                )
