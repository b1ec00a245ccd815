"""
Append-only structured error sink.

Errors are always logged locally. They are persisted to the ``error_logs``
collection only while the store connection is up.
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger

from .errors import ErrorKind, HATesterError
from .metrics import metrics_registry
from .models import ErrorRecord


class ErrorSink:
    def __init__(self, store, component: str):
        self._store = store
        self.component = component
        self.recorded = 0
        self.persisted = 0

    async def record(
        self,
        kind: ErrorKind,
        message: str,
        exc: Optional[BaseException] = None,
        **details: Any,
    ) -> ErrorRecord:
        if exc is not None:
            details.setdefault("error", str(exc))
            details.setdefault("name", type(exc).__name__)
            code = getattr(exc, "code", None)
            if code is not None:
                details.setdefault("code", code)

        rec = ErrorRecord(kind=kind, message=message, component=self.component, details=details)
        self.recorded += 1
        metrics_registry.errors_total.labels(kind=kind.value, component=self.component).inc()
        logger.error(f"❌ [{kind.value}] {self.component}: {message}" + (f": {exc}" if exc else ""))

        if not self._store.is_connected:
            return rec

        try:
            await self._store.insert_error(rec.to_document())
            self.persisted += 1
        except HATesterError as log_exc:
            logger.error(f"Failed to persist error record: {log_exc}")
        return rec
