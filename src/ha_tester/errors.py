"""
Error taxonomy for the HA tester.

Every error carries an ``ErrorKind`` so loop boundaries can log it to the
error sink under the right category without inspecting the exception type.
"""

from enum import Enum


class ErrorKind(str, Enum):
    CONNECTION = "connection"
    WRITE = "write"
    READ = "read"
    VALIDATION = "validation"
    SYSTEM = "system"


class HATesterError(Exception):
    """Base operational error."""

    kind: ErrorKind = ErrorKind.SYSTEM


class StoreConnectionError(HATesterError):
    """Store unreachable (server selection, network, closed pool)."""

    kind = ErrorKind.CONNECTION


class AllocationError(HATesterError):
    """Sequence counter increment failed; no record was created."""

    kind = ErrorKind.WRITE


class RecordWriteError(HATesterError):
    """Persisting a record failed after its sequence id was allocated."""

    kind = ErrorKind.WRITE

    def __init__(self, message: str, sequence_id: int | None = None):
        super().__init__(message)
        self.sequence_id = sequence_id


class CheckUnavailableError(HATesterError):
    """A validation sub-check could not complete."""

    kind = ErrorKind.VALIDATION


class InternalError(HATesterError):
    """Unexpected internal failure."""

    kind = ErrorKind.SYSTEM


def map_store_error(e: Exception) -> HATesterError:
    from pymongo import errors as E

    if isinstance(e, HATesterError):
        return e
    if isinstance(e, (E.ConnectionFailure, E.InvalidOperation)):
        return StoreConnectionError(str(e))
    if isinstance(e, E.PyMongoError):
        return HATesterError(str(e))
    return InternalError(f"{type(e).__name__}: {e}")
