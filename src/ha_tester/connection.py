"""
Connection state tracking for the shared store client.

Models the client lifecycle as an explicit state machine instead of ambient
driver callbacks. Transitions are driven by ``ReplicaStore.connect/close``
and by driver topology events (``TopologyStateListener``); components read
``tracker.state`` or subscribe for change notifications.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from loguru import logger
from pymongo import monitoring

from .utils import utc_now


class ConnectionState(str, Enum):
    """Client connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# Allowed transitions; anything else is ignored and logged.
_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING, ConnectionState.CONNECTED},
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED},
    ConnectionState.CONNECTED: {ConnectionState.DISCONNECTED},
}


@dataclass(frozen=True)
class ConnectionEvent:
    """Immutable state-change notification.

    Attributes:
        previous: State before the transition
        current: State after the transition
        reason: Optional context (e.g., "no writable server", "closed")
        at: Transition time (UTC)
    """

    previous: ConnectionState
    current: ConnectionState
    reason: str | None = None
    at: datetime = field(default_factory=utc_now)


ConnectionSubscriber = Callable[[ConnectionEvent], None]


class ConnectionTracker:
    """Connection state machine with an explicit notification channel.

    Subscribers are plain callables invoked synchronously on every accepted
    transition. One subscriber's failure does not affect others.

    Example:
        tracker = ConnectionTracker()
        tracker.subscribe(lambda ev: print(ev.current))
        tracker.transition(ConnectionState.CONNECTING)
    """

    def __init__(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._subs: list[ConnectionSubscriber] = []
        self._last_change: datetime = utc_now()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def last_change(self) -> datetime:
        return self._last_change

    def subscribe(self, callback: ConnectionSubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)

    def unsubscribe(self, callback: ConnectionSubscriber) -> None:
        try:
            self._subs.remove(callback)
        except ValueError:
            pass

    def transition(self, new: ConnectionState, reason: str | None = None) -> bool:
        """Move to ``new`` if allowed. Returns True when the state changed."""
        old = self._state
        if new is old:
            return False
        if new not in _TRANSITIONS[old]:
            logger.debug(f"Ignoring connection transition {old.value} -> {new.value}")
            return False

        self._state = new
        self._last_change = utc_now()
        event = ConnectionEvent(previous=old, current=new, reason=reason, at=self._last_change)

        if new is ConnectionState.CONNECTED:
            logger.info("🟢 Store connection established")
        elif new is ConnectionState.DISCONNECTED:
            logger.warning(f"🟡 Store connection lost ({reason or 'unknown'})")

        for callback in list(self._subs):
            try:
                callback(event)
            except Exception as exc:
                logger.debug(f"Connection subscriber error (ignored): {type(exc).__name__}: {exc}")
        return True


class TopologyStateListener(monitoring.TopologyListener):
    """Feeds driver topology events into a ConnectionTracker.

    The client counts as connected while the topology has a writable server.
    """

    def __init__(self, tracker: ConnectionTracker) -> None:
        self._tracker = tracker

    def opened(self, event: monitoring.TopologyOpenedEvent) -> None:
        if self._tracker.state is ConnectionState.DISCONNECTED:
            self._tracker.transition(ConnectionState.CONNECTING, "topology opened")

    def description_changed(self, event: monitoring.TopologyDescriptionChangedEvent) -> None:
        writable = event.new_description.has_writable_server()
        if writable:
            self._tracker.transition(ConnectionState.CONNECTED, "writable server available")
        elif self._tracker.state is ConnectionState.CONNECTED:
            self._tracker.transition(ConnectionState.DISCONNECTED, "no writable server")

    def closed(self, event: monitoring.TopologyClosedEvent) -> None:
        self._tracker.transition(ConnectionState.DISCONNECTED, "topology closed")
