"""
Pytest configuration and fixtures for the HA tester.

Provides an in-memory fake of ReplicaStore (duck-typed, same coroutine
surface) and fast settings for loop-driven tests.
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from ha_tester.config import Settings
from ha_tester.connection import ConnectionState, ConnectionTracker
from ha_tester.errors import HATesterError

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

T0 = datetime(2025, 1, 1, 9, 30, tzinfo=timezone.utc)


def make_record(seq: int, ts: Optional[datetime] = None, batch_id: str = "batch-a") -> dict:
    return {
        "sequence_id": seq,
        "timestamp": ts or T0 + timedelta(milliseconds=seq * 100),
        "payload": f"Test data #{seq}",
        "written_to": "node1:27017",
        "batch_id": batch_id,
        "status": "pending",
    }


def replset_status(
    primary: Optional[str] = "node1:27017",
    secondaries: tuple = ("node2:27017", "node3:27017"),
    lag_s: dict | None = None,
    down: tuple = (),
) -> dict:
    """Shape of ``replSetGetStatus`` output, trimmed to the fields we read."""
    lag_s = lag_s or {}
    now = T0 + timedelta(minutes=5)
    members = []
    names = ([primary] if primary else []) + list(secondaries) + list(down)
    for i, name in enumerate(names):
        if name == primary:
            state = "PRIMARY"
        elif name in down:
            state = "(not reachable/healthy)"
        else:
            state = "SECONDARY"
        m = {
            "_id": i,
            "name": name,
            "health": 0.0 if name in down else 1.0,
            "stateStr": state,
            "optimeDate": now - timedelta(seconds=lag_s.get(name, 0)),
            "pingMs": 1,
        }
        if i == 0:
            m["self"] = True
        else:
            m["lastHeartbeat"] = now - timedelta(seconds=2)
        members.append(m)
    return {"set": "rs0", "date": now, "members": members}


class FakeReplicaStore:
    """In-memory stand-in for ReplicaStore."""

    def __init__(self):
        self.tracker = ConnectionTracker()
        self.tracker.transition(ConnectionState.CONNECTED)
        self.counters: dict[str, int] = {}
        self.records: list[dict] = []
        self.statuses: list[dict] = []
        self.errors: list[dict] = []
        self.rs_status = replset_status()
        self.fail_ops: dict[str, Exception] = {}
        self.fail_sequences: set[int] = set()
        self.read_overrides: dict[str, object] = {}
        self.closed = False
        self._oid = 0

    @property
    def is_connected(self) -> bool:
        return self.tracker.is_connected

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_ops:
            raise self.fail_ops[op]

    async def connect(self) -> None:
        self._maybe_fail("connect")
        self.tracker.transition(ConnectionState.CONNECTED)

    async def close(self) -> None:
        self.closed = True
        self.tracker.transition(ConnectionState.DISCONNECTED, "closed")

    async def ping(self) -> bool:
        self._maybe_fail("ping")
        return True

    async def increment_counter(self, name: str) -> int:
        await asyncio.sleep(0)  # let concurrent callers interleave
        self._maybe_fail("increment_counter")
        self.counters[name] = self.counters.get(name, 0) + 1
        value = self.counters[name]
        await asyncio.sleep(0)
        return value

    async def replica_set_status(self) -> dict:
        self._maybe_fail("replica_set_status")
        return self.rs_status

    async def build_info(self) -> dict:
        self._maybe_fail("build_info")
        return {"version": "7.0.12"}

    async def insert_record(self, doc: dict) -> None:
        self._maybe_fail("insert_record")
        if doc["sequence_id"] in self.fail_sequences:
            raise HATesterError("write concern timed out")
        self._oid += 1
        self.records.append(dict(doc, _id=self._oid))

    async def find_records(self, batch_id: Optional[str] = None) -> list[dict]:
        self._maybe_fail("find_records")
        rows = [r for r in self.records if batch_id is None or r["batch_id"] == batch_id]
        return sorted((dict(r) for r in rows), key=lambda r: (r["sequence_id"], r.get("_id", 0)))

    async def read_summary(self, read_preference: str) -> dict:
        override = self.read_overrides.get(read_preference)
        if isinstance(override, Exception):
            raise override
        if override is not None:
            return dict(override)
        latest = max(self.records, key=lambda r: r["sequence_id"], default=None)
        return {
            "count": len(self.records),
            "latest_sequence_id": latest["sequence_id"] if latest else 0,
            "latest_timestamp": latest["timestamp"] if latest else None,
        }

    async def delete_records(self, batch_id: str) -> int:
        before = len(self.records)
        self.records = [r for r in self.records if r["batch_id"] != batch_id]
        return before - len(self.records)

    async def probe_write(self, doc: dict) -> float:
        self._maybe_fail("probe_write")
        return 1.5

    async def probe_read(self) -> None:
        self._maybe_fail("probe_read")

    async def insert_status(self, doc: dict) -> None:
        self._maybe_fail("insert_status")
        self.statuses.append(doc)

    async def insert_error(self, doc: dict) -> None:
        self._maybe_fail("insert_error")
        self.errors.append(doc)


@pytest.fixture
def settings():
    """Settings with millisecond-scale intervals and no startup delays."""
    return Settings(
        _env_file=None,
        MONGODB_URI="mongodb://localhost:27017/?replicaSet=rs0",
        WRITE_INTERVAL=10,
        MONITOR_INTERVAL=10,
        VERIFY_INTERVAL=10,
        BATCH_SIZE=5,
        BATCH_WRITE_DELAY=0,
        MAX_RETRIES=1,
        RETRY_DELAY=1,
        STARTUP_SETTLE_MONITOR_MS=0,
        STARTUP_SETTLE_WRITER_MS=0,
    )


@pytest.fixture
def fake_store():
    return FakeReplicaStore()


@pytest.fixture
def record_factory():
    """Build raw record documents: ``record_factory(seq, ts=None, batch_id=...)``."""
    return make_record


@pytest.fixture
def replset_factory():
    """Build ``replSetGetStatus``-shaped dicts."""
    return replset_status
