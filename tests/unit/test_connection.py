"""
Unit tests for ConnectionTracker and the topology listener.
"""

from types import SimpleNamespace

import pytest

from ha_tester.connection import (
    ConnectionEvent,
    ConnectionState,
    ConnectionTracker,
    TopologyStateListener,
)


@pytest.fixture
def tracker():
    return ConnectionTracker()


def _topology_event(writable: bool):
    return SimpleNamespace(new_description=SimpleNamespace(has_writable_server=lambda: writable))


def test_starts_disconnected(tracker):
    assert tracker.state is ConnectionState.DISCONNECTED
    assert tracker.is_connected is False


def test_connect_sequence(tracker):
    assert tracker.transition(ConnectionState.CONNECTING) is True
    assert tracker.transition(ConnectionState.CONNECTED) is True
    assert tracker.is_connected is True


def test_same_state_is_noop(tracker):
    assert tracker.transition(ConnectionState.DISCONNECTED) is False


def test_disallowed_transition_ignored(tracker):
    tracker.transition(ConnectionState.CONNECTED)
    assert tracker.transition(ConnectionState.CONNECTING) is False
    assert tracker.state is ConnectionState.CONNECTED


def test_subscribers_receive_events(tracker):
    seen: list[ConnectionEvent] = []
    tracker.subscribe(seen.append)

    tracker.transition(ConnectionState.CONNECTING, "connect")
    tracker.transition(ConnectionState.CONNECTED, "ping ok")

    assert [(e.previous, e.current) for e in seen] == [
        (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
        (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
    ]
    assert seen[1].reason == "ping ok"


def test_subscribe_is_idempotent_and_unsubscribe_works(tracker):
    seen = []
    tracker.subscribe(seen.append)
    tracker.subscribe(seen.append)
    tracker.transition(ConnectionState.CONNECTED)
    assert len(seen) == 1

    tracker.unsubscribe(seen.append)
    tracker.unsubscribe(seen.append)  # unknown callback is fine
    tracker.transition(ConnectionState.DISCONNECTED)
    assert len(seen) == 1


def test_failing_subscriber_does_not_block_others(tracker):
    seen = []

    def boom(event):
        raise RuntimeError("subscriber failed")

    tracker.subscribe(boom)
    tracker.subscribe(seen.append)
    tracker.transition(ConnectionState.CONNECTED)

    assert tracker.is_connected
    assert len(seen) == 1


def test_event_is_immutable(tracker):
    seen = []
    tracker.subscribe(seen.append)
    tracker.transition(ConnectionState.CONNECTED)
    with pytest.raises(Exception):
        seen[0].reason = "changed"  # type: ignore


def test_listener_follows_writable_server(tracker):
    listener = TopologyStateListener(tracker)

    listener.opened(SimpleNamespace())
    assert tracker.state is ConnectionState.CONNECTING

    listener.description_changed(_topology_event(writable=True))
    assert tracker.state is ConnectionState.CONNECTED

    listener.description_changed(_topology_event(writable=False))
    assert tracker.state is ConnectionState.DISCONNECTED

    listener.description_changed(_topology_event(writable=True))
    assert tracker.state is ConnectionState.CONNECTED

    listener.closed(SimpleNamespace())
    assert tracker.state is ConnectionState.DISCONNECTED


def test_listener_ignores_unwritable_while_connecting(tracker):
    listener = TopologyStateListener(tracker)
    listener.opened(SimpleNamespace())
    listener.description_changed(_topology_event(writable=False))
    assert tracker.state is ConnectionState.CONNECTING
