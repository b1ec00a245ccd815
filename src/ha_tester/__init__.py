"""
Replica Set HA Tester

Continuously exercises a MongoDB replica set to surface lost writes,
duplicate writes, out-of-order commits and read-path divergence across
failover.

Usage:
    from ha_tester import HATester, get_settings

    tester = HATester(get_settings())
    await tester.initialize()
    report = await tester.run_single(writes=20)
    await tester.stop()
"""

from .config import Settings, get_settings
from .connection import ConnectionState, ConnectionTracker
from .errors import (
    AllocationError,
    CheckUnavailableError,
    ErrorKind,
    HATesterError,
    InternalError,
    RecordWriteError,
    StoreConnectionError,
)
from .models import (
    SystemStatusSnapshot,
    TestRecord,
    ValidationReport,
    WriteResult,
)
from .monitor import ClusterMonitor
from .orchestrator import HATester
from .sequence import SequenceAllocator
from .store import ReplicaStore
from .validator import IntegrityValidator
from .writer import SequentialWriter

__version__ = "1.0.0"
__all__ = [
    # config
    "Settings",
    "get_settings",
    # runtime
    "HATester",
    "ReplicaStore",
    "SequenceAllocator",
    "SequentialWriter",
    "ClusterMonitor",
    "IntegrityValidator",
    "ConnectionState",
    "ConnectionTracker",
    # models
    "TestRecord",
    "WriteResult",
    "SystemStatusSnapshot",
    "ValidationReport",
    # errors
    "ErrorKind",
    "HATesterError",
    "StoreConnectionError",
    "AllocationError",
    "RecordWriteError",
    "CheckUnavailableError",
    "InternalError",
]
