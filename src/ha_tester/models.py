"""
Pydantic data models for the HA tester.

Persisted documents (TestRecord, SystemStatusSnapshot, ErrorRecord) and the
plain serializable results handed to external consumers (WriteResult,
ValidationReport, TesterStatus, ...).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator

from .errors import ErrorKind
from .utils import utc_now


class RecordStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    VERIFIED = "verified"


class TestRecord(BaseModel):
    """One sequenced write, tagged with the node that accepted it."""

    __test__ = False  # keep pytest from collecting this as a test class

    sequence_id: int
    timestamp: datetime = Field(default_factory=utc_now)
    payload: str
    written_to: str
    batch_id: str
    status: RecordStatus = RecordStatus.PENDING

    @validator("sequence_id")
    def _positive(cls, v):
        if v <= 0:
            raise ValueError("sequence_id must be positive")
        return v

    def to_document(self) -> dict:
        return self.model_dump(mode="python") | {"status": self.status.value}


class ErrorRecord(BaseModel):
    timestamp: datetime = Field(default_factory=utc_now)
    kind: ErrorKind
    message: str
    component: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    resolved: bool = False

    def to_document(self) -> dict:
        return self.model_dump(mode="python") | {"kind": self.kind.value}


# ---------- monitor snapshots ----------


class MemberClass(str, Enum):
    HEALTHY = "healthy"
    LAGGING = "lagging"
    DOWN = "down"


class MemberStatus(BaseModel):
    member_id: int
    identity: str
    health_flag: bool
    role: str
    heartbeat_recency_s: Optional[float] = None
    replication_lag_s: Optional[float] = None
    ping_ms: Optional[float] = None
    classification: MemberClass


class ReplicaSetState(BaseModel):
    set_name: Optional[str] = None
    members: List[MemberStatus] = Field(default_factory=list)


class ConnectionStatus(BaseModel):
    state: str
    primary: Optional[str] = None
    secondaries: List[str] = Field(default_factory=list)
    healthy_members: int = 0
    total_members: int = 0

    @property
    def is_connected(self) -> bool:
        return self.state == "connected"


class PerformanceMetrics(BaseModel):
    write_latency_ms: Optional[float] = None
    read_latency_ms: Optional[float] = None
    throughput: Optional[float] = None


class DataIntegrity(BaseModel):
    total_records: int = 0
    missing_sequences: List[int] = Field(default_factory=list)
    duplicate_sequences: List[int] = Field(default_factory=list)
    is_valid: bool = True


class SystemStatusSnapshot(BaseModel):
    check_time: datetime = Field(default_factory=utc_now)
    source: str = "monitor"  # "monitor" | "validator"
    version: Optional[str] = None
    replica_set: Optional[ReplicaSetState] = None
    connection: Optional[ConnectionStatus] = None
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    data_integrity: Optional[DataIntegrity] = None

    model_config = {"frozen": True}

    def to_document(self) -> dict:
        return self.model_dump(mode="json") | {"check_time": self.check_time}


# ---------- writer results ----------


class WriteResult(BaseModel):
    success: bool
    sequence_id: Optional[int] = None
    latency_ms: Optional[float] = None
    primary_node: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


class BatchWriteResult(BaseModel):
    results: List[WriteResult] = Field(default_factory=list)
    success_count: int = 0
    error_count: int = 0
    duration_ms: float = 0.0
    throughput: float = 0.0  # successful writes per second


class WriterStats(BaseModel):
    batch_id: Optional[str] = None
    running: bool = False
    success_count: int = 0
    error_count: int = 0
    min_latency_ms: Optional[float] = None
    avg_latency_ms: Optional[float] = None
    max_latency_ms: Optional[float] = None
    throughput: float = 0.0
    runtime_s: float = 0.0
    last_write_time: Optional[datetime] = None


# ---------- validator reports ----------


class Gap(BaseModel):
    start: int
    end: int
    size: int


class DuplicateEntry(BaseModel):
    sequence_id: int
    count: int


class SequenceValidation(BaseModel):
    total_records: int
    expected_records: int
    min_sequence_id: Optional[int] = None
    max_sequence_id: Optional[int] = None
    missing_sequences: List[int] = Field(default_factory=list)
    duplicate_sequences: List[int] = Field(default_factory=list)
    duplicates: List[DuplicateEntry] = Field(default_factory=list)
    gaps: List[Gap] = Field(default_factory=list)
    completeness: float = 100.0
    is_valid: bool
    summary: str


class TimeReversal(BaseModel):
    sequence_id: int
    previous_sequence_id: int
    current_time: datetime
    previous_time: datetime
    time_diff_ms: float


class TimestampValidation(BaseModel):
    total_records: int
    out_of_order_count: int = 0
    time_reversals: List[TimeReversal] = Field(default_factory=list)
    is_valid: bool
    summary: str


class ReadPreferenceResult(BaseModel):
    read_preference: str
    count: Optional[int] = None
    latest_sequence_id: Optional[int] = None
    latest_timestamp: Optional[datetime] = None
    error: Optional[str] = None


class CrossReadValidation(BaseModel):
    available: bool = True
    results: Dict[str, ReadPreferenceResult] = Field(default_factory=dict)
    is_count_consistent: bool = False
    is_sequence_consistent: bool = False
    is_valid: bool = False
    summary: str = ""


class ValidationReport(BaseModel):
    timestamp: datetime = Field(default_factory=utc_now)
    batch_id: Optional[str] = None
    duration_ms: float = 0.0
    overall_valid: bool
    sequence_validation: Optional[SequenceValidation] = None
    timestamp_validation: Optional[TimestampValidation] = None
    cross_read_validation: Optional[CrossReadValidation] = None
    unavailable_checks: List[str] = Field(default_factory=list)
    summary: str


# ---------- orchestrator ----------


class InitReport(BaseModel):
    components: Dict[str, bool]

    @property
    def succeeded(self) -> int:
        return sum(1 for ok in self.components.values() if ok)

    @property
    def total(self) -> int:
        return len(self.components)

    @property
    def any_ready(self) -> bool:
        return self.succeeded > 0


class TesterStatus(BaseModel):
    running: bool
    started_at: Optional[datetime] = None
    connection_state: str
    components: Dict[str, bool]
    writer: Optional[WriterStats] = None
    last_snapshot: Optional[SystemStatusSnapshot] = None
    last_validation: Optional[ValidationReport] = None
    validation_count: int = 0


class SingleRunReport(BaseModel):
    batch: Optional[BatchWriteResult] = None
    validation: Optional[ValidationReport] = None

    @property
    def passed(self) -> bool:
        return self.validation is not None and self.validation.overall_valid


class RunStatistics(BaseModel):
    batch_id: Optional[str] = None
    runtime_s: float = 0.0
    writes_succeeded: int = 0
    write_errors: int = 0
    success_rate: float = 0.0
    throughput: float = 0.0
    avg_latency_ms: Optional[float] = None
    min_latency_ms: Optional[float] = None
    max_latency_ms: Optional[float] = None
    validation_count: int = 0
    last_validation_valid: Optional[bool] = None
    monitor_polls: int = 0
