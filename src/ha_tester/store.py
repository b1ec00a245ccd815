from __future__ import annotations

import asyncio
import functools
import time
from typing import Any, Optional

from loguru import logger
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient, ReadPreference, ReturnDocument
from pymongo import errors as E

from .config import Settings
from .connection import ConnectionState, ConnectionTracker, TopologyStateListener
from .errors import HATesterError, StoreConnectionError, map_store_error
from .utils import calculate_retry_delay, elapsed_ms

RECORDS = "test_records"
COUNTERS = "counters"
SYSTEM_STATUS = "system_status"
ERROR_LOGS = "error_logs"
LATENCY_PROBE = "latency_test"

READ_PREFERENCES = {
    "primary": ReadPreference.PRIMARY,
    "primaryPreferred": ReadPreference.PRIMARY_PREFERRED,
    "secondary": ReadPreference.SECONDARY,
    "secondaryPreferred": ReadPreference.SECONDARY_PREFERRED,
    "nearest": ReadPreference.NEAREST,
}

# Admin commands must still reach a secondary while no primary is elected.
ADMIN_READ_PREFERENCE = ReadPreference.PRIMARY_PREFERRED

RECORD_PROJECTION = {"sequence_id": 1, "timestamp": 1, "batch_id": 1, "written_to": 1}


def _mapped(fn):
    """Translate driver errors into the tester's error taxonomy."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except E.PyMongoError as exc:
            raise map_store_error(exc) from exc

    return wrapper


class ReplicaStore:
    """
    The single store-client handle shared by every component.

    Built once by the orchestrator and passed by reference. Owns the async
    client, its connection pool and the connection state tracker.

    Usage:

        store = ReplicaStore(get_settings())
        await store.connect()
        n = await store.increment_counter("test_sequence")
        await store.close()
    """

    def __init__(
        self,
        settings: Settings,
        *,
        tracker: Optional[ConnectionTracker] = None,
        client: Optional[AsyncMongoClient] = None,
    ):
        self.settings = settings
        self.tracker = tracker or ConnectionTracker()
        self._client: Optional[AsyncMongoClient] = client

    @property
    def is_connected(self) -> bool:
        return self.tracker.is_connected

    @property
    def client(self) -> AsyncMongoClient:
        if self._client is None:
            raise StoreConnectionError("store client is not connected")
        return self._client

    @property
    def db(self):
        return self.client[self.settings.DATABASE_NAME]

    # ---------- lifecycle ----------

    def _build_client(self) -> AsyncMongoClient:
        return AsyncMongoClient(
            self.settings.MONGODB_URI,
            event_listeners=[TopologyStateListener(self.tracker)],
            **self.settings.client_options(),
        )

    async def connect(self) -> None:
        """Connect and verify with ``ping``, retrying with backoff.

        Raises:
            StoreConnectionError: every attempt failed
            HATesterError: the client could not be built (invalid options)
        """
        if self.tracker.is_connected and self._client is not None:
            return
        if self._client is None:
            try:
                self._client = self._build_client()
            except E.PyMongoError as exc:
                logger.error(f"Invalid store client configuration: {exc}")
                raise map_store_error(exc) from exc
        self.tracker.transition(ConnectionState.CONNECTING, "connect")

        retries = self.settings.MAX_RETRIES
        last_exc: Exception | None = None
        for attempt in range(retries + 1):
            try:
                await self._client.admin.command("ping", read_preference=ADMIN_READ_PREFERENCE)
                self.tracker.transition(ConnectionState.CONNECTED, "ping ok")
                try:
                    await self.ensure_indexes()
                except HATesterError as exc:
                    logger.warning(f"Index creation failed: {exc}")
                logger.success(f"Connected to {self.settings.DATABASE_NAME}")
                return
            except E.PyMongoError as exc:
                last_exc = exc
                if attempt < retries:
                    delay = calculate_retry_delay(attempt, self.settings.RETRY_DELAY)
                    logger.warning(
                        f"Connect attempt {attempt + 1}/{retries + 1} failed: {exc}; "
                        f"retrying in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

        self.tracker.transition(ConnectionState.DISCONNECTED, str(last_exc))
        raise StoreConnectionError(f"store unreachable: {last_exc}") from last_exc

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.close()
            finally:
                self._client = None
                self.tracker.transition(ConnectionState.DISCONNECTED, "closed")
                logger.info("🔌 Store connection closed")

    @_mapped
    async def ping(self) -> bool:
        await self.client.admin.command("ping", read_preference=ADMIN_READ_PREFERENCE)
        return True

    @_mapped
    async def ensure_indexes(self) -> None:
        # Non-unique: duplicate sequence ids must remain observable.
        records = self.db[RECORDS]
        await records.create_index([("sequence_id", ASCENDING)])
        await records.create_index([("batch_id", ASCENDING), ("sequence_id", ASCENDING)])
        await records.create_index([("timestamp", ASCENDING)])
        await self.db[SYSTEM_STATUS].create_index([("check_time", DESCENDING)])
        await self.db[ERROR_LOGS].create_index([("timestamp", DESCENDING), ("kind", ASCENDING)])

    # ---------- counters ----------

    @_mapped
    async def increment_counter(self, name: str) -> int:
        doc = await self.db[COUNTERS].find_one_and_update(
            {"_id": name},
            {"$inc": {"sequence_value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["sequence_value"])

    # ---------- admin ----------

    @_mapped
    async def replica_set_status(self) -> dict[str, Any]:
        return await self.client.admin.command(
            "replSetGetStatus", read_preference=ADMIN_READ_PREFERENCE
        )

    @_mapped
    async def build_info(self) -> dict[str, Any]:
        return await self.client.admin.command("buildInfo", read_preference=ADMIN_READ_PREFERENCE)

    # ---------- records ----------

    @_mapped
    async def insert_record(self, doc: dict) -> None:
        await self.db[RECORDS].insert_one(dict(doc))

    @_mapped
    async def find_records(self, batch_id: Optional[str] = None) -> list[dict]:
        query = {"batch_id": batch_id} if batch_id else {}
        cursor = (
            self.db[RECORDS]
            .find(query, RECORD_PROJECTION)
            .sort([("sequence_id", ASCENDING), ("_id", ASCENDING)])
        )
        return await cursor.to_list(None)

    @_mapped
    async def read_summary(self, read_preference: str) -> dict[str, Any]:
        """Count and latest record under one read preference, in a snapshot session."""
        coll = self.db.get_collection(RECORDS, read_preference=READ_PREFERENCES[read_preference])
        async with self.client.start_session(snapshot=True) as session:
            count = await coll.count_documents({}, session=session)
            latest = await coll.find_one(
                {},
                {"sequence_id": 1, "timestamp": 1},
                sort=[("sequence_id", DESCENDING)],
                session=session,
            )
        return {
            "count": count,
            "latest_sequence_id": latest["sequence_id"] if latest else 0,
            "latest_timestamp": latest.get("timestamp") if latest else None,
        }

    @_mapped
    async def delete_records(self, batch_id: str) -> int:
        res = await self.db[RECORDS].delete_many({"batch_id": batch_id})
        return res.deleted_count

    # ---------- probes ----------

    @_mapped
    async def probe_write(self, doc: dict) -> float:
        """Insert then delete a throwaway document; returns the insert latency (ms)."""
        coll = self.db[LATENCY_PROBE]
        t0 = time.perf_counter()
        res = await coll.insert_one(dict(doc))
        latency = elapsed_ms(t0)
        await coll.delete_one({"_id": res.inserted_id})
        return latency

    @_mapped
    async def probe_read(self) -> None:
        await self.db[RECORDS].find_one({})

    # ---------- status / error sink ----------

    @_mapped
    async def insert_status(self, doc: dict) -> None:
        await self.db[SYSTEM_STATUS].insert_one(dict(doc))

    @_mapped
    async def insert_error(self, doc: dict) -> None:
        await self.db[ERROR_LOGS].insert_one(dict(doc))
