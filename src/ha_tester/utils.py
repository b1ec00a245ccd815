"""
Utility functions for the HA tester.

Includes time helpers, batch id generation, retry backoff and a running
latency accumulator.
"""

import random
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

_BASE36 = string.digits + string.ascii_lowercase


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (the driver returns naive UTC by default)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def generate_batch_id() -> str:
    """Generate a batch label: ``batch_<epoch-ms>_<9 base36 chars>``."""
    suffix = "".join(random.choice(_BASE36) for _ in range(9))
    return f"batch_{int(time.time() * 1000)}_{suffix}"


def elapsed_ms(start: float) -> float:
    """Milliseconds elapsed since a ``time.perf_counter()`` reading."""
    return round((time.perf_counter() - start) * 1000.0, 3)


def calculate_retry_delay(
    attempt: int, base_delay_ms: int = 1000, max_delay_ms: int = 30000, jitter: bool = True
) -> float:
    """
    Calculate retry delay with exponential backoff and optional jitter.

    Args:
        attempt: Current attempt number (0-based)
        base_delay_ms: Base delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        jitter: Add random jitter to prevent thundering herd

    Returns:
        Delay in seconds
    """
    delay_ms = min(base_delay_ms * (2**attempt), max_delay_ms)

    if jitter:
        # ±25%
        jitter_range = delay_ms * 0.25
        delay_ms += random.uniform(-jitter_range, jitter_range)

    return max(0, delay_ms / 1000.0)


@dataclass
class LatencyStats:
    """Running min/avg/max over observed latencies (ms)."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: Optional[float] = None

    def add(self, latency_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        self.min_ms = latency_ms if self.min_ms is None else min(self.min_ms, latency_ms)
        self.max_ms = latency_ms if self.max_ms is None else max(self.max_ms, latency_ms)

    @property
    def avg_ms(self) -> Optional[float]:
        if not self.count:
            return None
        return round(self.total_ms / self.count, 3)
