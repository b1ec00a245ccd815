from __future__ import annotations

from .errors import AllocationError, HATesterError


class SequenceAllocator:
    """Issues strictly increasing ids per named counter.

    Each call is one atomic increment-and-return on the persisted counter,
    so concurrent callers sharing the store never see the same id. Ids are
    never handed back: an allocation followed by a failed write leaves a gap
    on purpose, which the validator reports.
    """

    def __init__(self, store):
        self._store = store
        self.allocated = 0

    async def next_id(self, name: str) -> int:
        try:
            value = await self._store.increment_counter(name)
        except HATesterError as exc:
            raise AllocationError(f"counter {name!r} increment failed: {exc}") from exc
        self.allocated += 1
        return value
