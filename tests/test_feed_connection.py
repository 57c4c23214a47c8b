"""Unit tests for infra.feed_connection module.

The websockets transport (``infra.feed_connection.connect``) is replaced
by an in-memory fake connection so the I/O thread runs for real without
network access. Notification ticks are driven by calling the tick
handler directly, with the real timer interval set far in the future.
"""

import queue
import threading
import time
from typing import Callable, Iterator
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from core.errors import FeedConnectionError
from core.quotes import LatestQuote
from infra.feed_connection import (
    ConnectionState,
    FeedConfig,
    FeedConnectionManager,
    FeedHandle,
)

ENDPOINT: str = "ws://quotes.test/ws"

_CLOSE: object = object()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeWebSocket:
    """In-memory stand-in for ``websockets.sync.client.ClientConnection``."""

    def __init__(self) -> None:
        self._inbox: queue.Queue[object] = queue.Queue()
        self.closed: threading.Event = threading.Event()
        self.close_calls: int = 0

    def feed(self, *messages: str | bytes) -> None:
        for message in messages:
            self._inbox.put(message)

    def fail(self, exc: BaseException) -> None:
        self._inbox.put(exc)

    def remote_close(self) -> None:
        self._inbox.put(_CLOSE)

    def close(self) -> None:
        self.close_calls += 1
        self.closed.set()
        self._inbox.put(_CLOSE)

    def __iter__(self) -> Iterator[str | bytes]:
        while True:
            item: object = self._inbox.get()
            if item is _CLOSE:
                return
            if isinstance(item, BaseException):
                raise item
            yield item  # type: ignore[misc]


class Recorder:
    """Collects consumer callbacks from any thread."""

    def __init__(self) -> None:
        self.updates: list[LatestQuote] = []
        self.states: list[ConnectionState] = []

    def on_update(self, quote: LatestQuote) -> None:
        self.updates.append(quote)

    def on_state_change(self, state: ConnectionState) -> None:
        self.states.append(state)


def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline: float = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def config() -> FeedConfig:
    """Config whose timer never fires on its own during a test."""
    return FeedConfig(notification_interval_ms=600_000, join_timeout=1.0)


@pytest.fixture()
def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture()
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture()
def manager(config: FeedConfig) -> FeedConnectionManager:
    return FeedConnectionManager(config=config)


@pytest.fixture()
def connected_handle(
    manager: FeedConnectionManager,
    fake_ws: FakeWebSocket,
    recorder: Recorder,
) -> Iterator[FeedHandle]:
    """Return a handle in CONNECTED state backed by ``fake_ws``."""
    with patch("infra.feed_connection.connect", return_value=fake_ws):
        handle: FeedHandle = manager.start(
            ENDPOINT,
            on_update=recorder.on_update,
            on_state_change=recorder.on_state_change,
        )
        assert _wait_for(lambda: ConnectionState.CONNECTED in recorder.states)
    yield handle
    handle.stop()


# ---------------------------------------------------------------------------
# Configuration Tests
# ---------------------------------------------------------------------------


class TestFeedConfig:
    """Tests for FeedConfig Pydantic model."""

    def test_defaults(self) -> None:
        """Default values are applied correctly."""
        cfg: FeedConfig = FeedConfig()
        assert cfg.notification_interval_ms == 5000
        assert cfg.open_timeout == 10.0
        assert cfg.close_timeout == 5.0
        assert cfg.join_timeout == 5.0
        assert cfg.skip_unchanged is False
        assert cfg.stale_after_seconds == 5.0

    def test_interval_must_be_positive(self) -> None:
        """notification_interval_ms must be >= 1."""
        with pytest.raises(ValidationError):
            FeedConfig(notification_interval_ms=0)

    def test_open_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            FeedConfig(open_timeout=0.0)

    def test_frozen(self) -> None:
        """Config rejects mutation after construction."""
        cfg: FeedConfig = FeedConfig()
        with pytest.raises(ValidationError):
            cfg.notification_interval_ms = 10  # type: ignore[misc]

    def test_extra_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            FeedConfig(endpoint="ws://x")  # type: ignore[call-arg]


# ---------------------------------------------------------------------------
# State Machine Tests
# ---------------------------------------------------------------------------


class TestStateMachine:
    """Tests for ConnectionState transitions."""

    def test_state_values(self) -> None:
        assert ConnectionState.CONNECTED.value == "CONNECTED"
        assert ConnectionState("ERRORED") is ConnectionState.ERRORED

    def test_manager_initially_disconnected(
        self,
        manager: FeedConnectionManager,
    ) -> None:
        assert manager.state == ConnectionState.DISCONNECTED
        assert manager.handle is None
        assert manager.connected is False

    def test_start_reports_connecting_then_connected(
        self,
        connected_handle: FeedHandle,
        recorder: Recorder,
    ) -> None:
        """start() goes through CONNECTING before CONNECTED."""
        assert recorder.states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        ]
        assert connected_handle.connected is True

    def test_start_returns_before_handshake(
        self,
        manager: FeedConnectionManager,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """start() returns in CONNECTING while the handshake is pending."""
        gate: threading.Event = threading.Event()

        def slow_connect(*args: object, **kwargs: object) -> FakeWebSocket:
            gate.wait(timeout=2.0)
            return fake_ws

        with patch("infra.feed_connection.connect", side_effect=slow_connect):
            handle: FeedHandle = manager.start(
                ENDPOINT,
                on_update=recorder.on_update,
                on_state_change=recorder.on_state_change,
            )
            assert handle.state == ConnectionState.CONNECTING
            gate.set()
            assert _wait_for(lambda: handle.state == ConnectionState.CONNECTED)
        handle.stop()

    def test_connect_failure_transitions_to_errored(
        self,
        manager: FeedConnectionManager,
        recorder: Recorder,
    ) -> None:
        """A failed handshake goes CONNECTING -> ERRORED without raising."""
        with patch(
            "infra.feed_connection.connect",
            side_effect=OSError("connection refused"),
        ):
            handle: FeedHandle = manager.start(
                ENDPOINT,
                on_update=recorder.on_update,
                on_state_change=recorder.on_state_change,
            )
            assert _wait_for(lambda: ConnectionState.ERRORED in recorder.states)

        assert recorder.states == [
            ConnectionState.CONNECTING,
            ConnectionState.ERRORED,
        ]
        error: FeedConnectionError | None = handle.last_error
        assert isinstance(error, FeedConnectionError)
        assert error.endpoint == ENDPOINT
        assert "connection refused" in str(error)
        assert isinstance(error.__cause__, OSError)

    def test_transport_error_transitions_to_errored(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """A read failure while connected goes CONNECTED -> ERRORED."""
        fake_ws.fail(OSError("connection reset"))
        assert _wait_for(lambda: ConnectionState.ERRORED in recorder.states)
        assert _wait_for(fake_ws.closed.is_set)
        assert recorder.states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.ERRORED,
        ]
        assert connected_handle._timer.armed is False
        assert fake_ws.closed.is_set()

    def test_remote_close_transitions_to_disconnected(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """A clean remote close goes CONNECTED -> DISCONNECTED."""
        fake_ws.remote_close()
        assert _wait_for(lambda: ConnectionState.DISCONNECTED in recorder.states)
        assert recorder.states[-1] == ConnectionState.DISCONNECTED
        assert connected_handle.last_error is None
        assert connected_handle._timer.armed is False

    def test_terminal_state_is_final(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """After ERRORED, a later close or stop reports nothing more."""
        fake_ws.fail(OSError("boom"))
        assert _wait_for(lambda: ConnectionState.ERRORED in recorder.states)
        connected_handle._handle_close()
        connected_handle.stop()
        assert recorder.states.count(ConnectionState.ERRORED) == 1
        assert ConnectionState.DISCONNECTED not in recorder.states
        assert connected_handle.state == ConnectionState.ERRORED


# ---------------------------------------------------------------------------
# Ingestion and Notification Tests
# ---------------------------------------------------------------------------


class TestThrottledNotification:
    """Tests for latest-value caching and tick delivery."""

    def test_burst_between_ticks_yields_one_update(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """N messages between two ticks produce one update with the N-th."""
        fake_ws.feed("Price: 101", "Price: 102", "Price: 103")
        assert _wait_for(
            lambda: connected_handle.stats()["messages_received"] == 3,
        )

        connected_handle._on_tick()

        assert len(recorder.updates) == 1
        assert recorder.updates[0].payload == "Price: 103"
        assert recorder.updates[0].sequence == 3
        assert connected_handle.stats()["coalesced"] == 2

    def test_second_burst_delivers_its_own_latest(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        fake_ws.feed("Price: 1", "Price: 2")
        assert _wait_for(
            lambda: connected_handle.stats()["messages_received"] == 2,
        )
        connected_handle._on_tick()
        fake_ws.feed("Price: 3", "Price: 4", "Price: 5")
        assert _wait_for(
            lambda: connected_handle.stats()["messages_received"] == 5,
        )
        connected_handle._on_tick()

        assert [q.payload for q in recorder.updates] == ["Price: 2", "Price: 5"]

    def test_no_messages_no_update(
        self,
        connected_handle: FeedHandle,
        recorder: Recorder,
    ) -> None:
        """Ticks without any received quote deliver nothing."""
        connected_handle._on_tick()
        connected_handle._on_tick()
        assert recorder.updates == []
        assert connected_handle.stats()["ticks"] == 2

    def test_messages_never_call_consumer_directly(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        fake_ws.feed("Price: 7")
        assert _wait_for(lambda: connected_handle.latest_quote() is not None)
        assert recorder.updates == []

    def test_tick_redelivers_latest_by_default(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """Without new messages, each tick re-delivers the current quote."""
        fake_ws.feed("Price: 50")
        assert _wait_for(lambda: connected_handle.latest_quote() is not None)
        connected_handle._on_tick()
        connected_handle._on_tick()
        assert [q.payload for q in recorder.updates] == ["Price: 50", "Price: 50"]

    def test_skip_unchanged(
        self,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """skip_unchanged suppresses re-delivery of the same quote."""
        manager: FeedConnectionManager = FeedConnectionManager(
            FeedConfig(
                notification_interval_ms=600_000,
                join_timeout=1.0,
                skip_unchanged=True,
            ),
        )
        with patch("infra.feed_connection.connect", return_value=fake_ws):
            handle: FeedHandle = manager.start(ENDPOINT, recorder.on_update)
            assert _wait_for(lambda: handle.connected)

        fake_ws.feed("Price: 50")
        assert _wait_for(lambda: handle.latest_quote() is not None)
        handle._on_tick()
        handle._on_tick()
        fake_ws.feed("Price: 51")
        assert _wait_for(lambda: handle.stats()["messages_received"] == 2)
        handle._on_tick()
        handle.stop()

        assert [q.payload for q in recorder.updates] == ["Price: 50", "Price: 51"]

    def test_binary_frame_decoded(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
    ) -> None:
        fake_ws.feed(b"Price: 12.5")
        assert _wait_for(lambda: connected_handle.latest_quote() is not None)
        quote: LatestQuote | None = connected_handle.latest_quote()
        assert quote is not None
        assert quote.payload == "Price: 12.5"

    def test_quote_carries_epoch_and_timestamps(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
    ) -> None:
        before_ns: int = time.perf_counter_ns()
        fake_ws.feed("Price: 1")
        assert _wait_for(lambda: connected_handle.latest_quote() is not None)
        quote: LatestQuote | None = connected_handle.latest_quote()
        assert quote is not None
        assert quote.connection_epoch == connected_handle.generation
        assert quote.recv_mono_ns >= before_ns
        assert quote.recv_ts > 0

    def test_tick_ignored_when_not_connected(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        fake_ws.feed("Price: 1")
        assert _wait_for(lambda: connected_handle.latest_quote() is not None)
        fake_ws.fail(OSError("reset"))
        assert _wait_for(
            lambda: connected_handle.state == ConnectionState.ERRORED,
        )
        connected_handle._on_tick()
        assert recorder.updates == []

    def test_real_timer_delivers(
        self,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """With a short interval the armed timer delivers on its own."""
        manager: FeedConnectionManager = FeedConnectionManager(
            FeedConfig(notification_interval_ms=20, join_timeout=1.0),
        )
        with patch("infra.feed_connection.connect", return_value=fake_ws):
            handle: FeedHandle = manager.start(ENDPOINT, recorder.on_update)
            assert _wait_for(lambda: handle.connected)
        fake_ws.feed("Price: 99")
        assert _wait_for(lambda: len(recorder.updates) > 0)
        handle.stop()
        assert recorder.updates[-1].payload == "Price: 99"

    def test_per_start_interval_override(
        self,
        manager: FeedConnectionManager,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        with patch("infra.feed_connection.connect", return_value=fake_ws):
            handle: FeedHandle = manager.start(
                ENDPOINT,
                recorder.on_update,
                notification_interval_ms=250,
            )
        assert handle.notification_interval_ms == 250
        handle.stop()


# ---------------------------------------------------------------------------
# Callback Isolation Tests
# ---------------------------------------------------------------------------


class TestCallbackIsolation:
    """Consumer exceptions never escape the manager."""

    def test_update_callback_error_counted(
        self,
        manager: FeedConnectionManager,
        fake_ws: FakeWebSocket,
    ) -> None:
        on_update: MagicMock = MagicMock(side_effect=[ValueError("bad"), None])
        with patch("infra.feed_connection.connect", return_value=fake_ws):
            handle: FeedHandle = manager.start(ENDPOINT, on_update)
            assert _wait_for(lambda: handle.connected)

        fake_ws.feed("Price: 1")
        assert _wait_for(lambda: handle.latest_quote() is not None)
        handle._on_tick()
        handle._on_tick()

        stats = handle.stats()
        assert stats["callback_errors"] == 1
        assert stats["updates_delivered"] == 1
        assert handle.connected is True
        handle.stop()

    def test_state_callback_error_does_not_block_connect(
        self,
        manager: FeedConnectionManager,
        fake_ws: FakeWebSocket,
    ) -> None:
        on_state_change: MagicMock = MagicMock(side_effect=RuntimeError("ui gone"))
        with patch("infra.feed_connection.connect", return_value=fake_ws):
            handle: FeedHandle = manager.start(
                ENDPOINT,
                MagicMock(),
                on_state_change=on_state_change,
            )
            assert _wait_for(lambda: handle.stats()["callback_errors"] == 2)
        assert handle.connected is True
        handle.stop()


# ---------------------------------------------------------------------------
# Stop / Teardown Tests
# ---------------------------------------------------------------------------


class TestStop:
    """Tests for the scoped teardown contract."""

    def test_stop_when_connected(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        connected_handle.stop()
        assert connected_handle.state == ConnectionState.DISCONNECTED
        assert recorder.states[-1] == ConnectionState.DISCONNECTED
        assert connected_handle._timer.armed is False
        assert fake_ws.closed.is_set()
        assert connected_handle.stopped is True

    def test_stop_is_idempotent(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """A second stop() does not fault or repeat release effects."""
        connected_handle.stop()
        connected_handle.stop()
        assert recorder.states.count(ConnectionState.DISCONNECTED) == 1
        assert fake_ws.close_calls == 1

    def test_no_callbacks_after_stop(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        fake_ws.feed("Price: 1")
        assert _wait_for(lambda: connected_handle.latest_quote() is not None)
        connected_handle.stop()
        states_before: int = len(recorder.states)

        connected_handle._on_tick()
        connected_handle._handle_error(OSError("late"))
        connected_handle._handle_close()

        assert recorder.updates == []
        assert len(recorder.states) == states_before

    def test_stop_before_open_completes(
        self,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """stop() during the handshake: no CONNECTED and no updates, ever."""
        gate: threading.Event = threading.Event()

        def slow_connect(*args: object, **kwargs: object) -> FakeWebSocket:
            gate.wait(timeout=2.0)
            return fake_ws

        manager: FeedConnectionManager = FeedConnectionManager(
            FeedConfig(notification_interval_ms=10, join_timeout=0.05),
        )
        with patch("infra.feed_connection.connect", side_effect=slow_connect):
            handle: FeedHandle = manager.start(
                ENDPOINT,
                on_update=recorder.on_update,
                on_state_change=recorder.on_state_change,
            )
            handle.stop()
            fake_ws.feed("Price: 1")
            gate.set()
            assert handle._reader is not None
            handle._reader.join(timeout=2.0)

        time.sleep(0.05)
        assert ConnectionState.CONNECTED not in recorder.states
        assert recorder.states == [
            ConnectionState.CONNECTING,
            ConnectionState.DISCONNECTED,
        ]
        assert recorder.updates == []
        assert fake_ws.closed.is_set()

    def test_stop_from_inside_connecting_callback(
        self,
        manager: FeedConnectionManager,
        recorder: Recorder,
    ) -> None:
        """Stopping on CONNECTING means the socket is never opened."""

        def stop_on_connecting(state: ConnectionState) -> None:
            recorder.on_state_change(state)
            if state == ConnectionState.CONNECTING:
                manager.stop()

        connect: MagicMock = MagicMock(return_value=FakeWebSocket())
        with patch("infra.feed_connection.connect", connect):
            handle: FeedHandle = manager.start(
                ENDPOINT,
                recorder.on_update,
                stop_on_connecting,
            )
            time.sleep(0.05)

        connect.assert_not_called()
        assert handle._reader is None
        assert handle.stopped is True
        assert recorder.states == [
            ConnectionState.CONNECTING,
            ConnectionState.DISCONNECTED,
        ]

    def test_stop_after_error_does_not_fault(
        self,
        manager: FeedConnectionManager,
        recorder: Recorder,
    ) -> None:
        with patch(
            "infra.feed_connection.connect",
            side_effect=OSError("refused"),
        ):
            handle: FeedHandle = manager.start(
                ENDPOINT,
                recorder.on_update,
                recorder.on_state_change,
            )
            assert _wait_for(lambda: handle.state == ConnectionState.ERRORED)
        handle.stop()
        handle.stop()
        assert handle.state == ConnectionState.ERRORED

    def test_stop_from_inside_update_callback(
        self,
        manager: FeedConnectionManager,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        """A consumer may stop its own handle from within on_update."""
        holder: dict[str, FeedHandle] = {}

        def stop_on_first(quote: LatestQuote) -> None:
            recorder.on_update(quote)
            holder["handle"].stop()

        with patch("infra.feed_connection.connect", return_value=fake_ws):
            holder["handle"] = manager.start(
                ENDPOINT,
                stop_on_first,
                recorder.on_state_change,
            )
            assert _wait_for(lambda: holder["handle"].connected)

        fake_ws.feed("Price: 1")
        assert _wait_for(lambda: holder["handle"].latest_quote() is not None)
        holder["handle"]._on_tick()

        assert len(recorder.updates) == 1
        assert holder["handle"].state == ConnectionState.DISCONNECTED
        assert fake_ws.closed.is_set()

    def test_manager_stop_without_start(
        self,
        manager: FeedConnectionManager,
    ) -> None:
        manager.stop()
        assert manager.state == ConnectionState.DISCONNECTED

    def test_manager_stop_defaults_to_current_handle(
        self,
        manager: FeedConnectionManager,
        connected_handle: FeedHandle,
    ) -> None:
        manager.stop()
        assert connected_handle.state == ConnectionState.DISCONNECTED


# ---------------------------------------------------------------------------
# Restart Tests
# ---------------------------------------------------------------------------


class TestRestart:
    """Tests for starting new attempts on the same manager."""

    def test_start_rejected_while_connected(
        self,
        manager: FeedConnectionManager,
        connected_handle: FeedHandle,
    ) -> None:
        with pytest.raises(RuntimeError, match="CONNECTED"):
            manager.start(ENDPOINT, MagicMock())

    def test_restart_after_error_gets_fresh_handle(
        self,
        manager: FeedConnectionManager,
        fake_ws: FakeWebSocket,
        recorder: Recorder,
    ) -> None:
        with patch(
            "infra.feed_connection.connect",
            side_effect=[OSError("refused"), fake_ws],
        ):
            first: FeedHandle = manager.start(
                ENDPOINT,
                recorder.on_update,
                recorder.on_state_change,
            )
            assert _wait_for(lambda: ConnectionState.ERRORED in recorder.states)
            second: FeedHandle = manager.start(
                ENDPOINT,
                recorder.on_update,
                recorder.on_state_change,
            )
            assert _wait_for(
                lambda: ConnectionState.CONNECTED in recorder.states,
            )

        assert second is not first
        assert second.generation == first.generation + 1
        assert second.latest_quote() is None
        assert manager.handle is second
        assert recorder.states == [
            ConnectionState.CONNECTING,
            ConnectionState.ERRORED,
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        ]
        second.stop()

    def test_restart_after_stop(
        self,
        manager: FeedConnectionManager,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
    ) -> None:
        connected_handle.stop()
        replacement: FakeWebSocket = FakeWebSocket()
        with patch("infra.feed_connection.connect", return_value=replacement):
            handle: FeedHandle = manager.start(ENDPOINT, MagicMock())
            assert _wait_for(lambda: handle.connected)
        assert handle.generation == 2
        handle.stop()

    def test_empty_endpoint_rejected(
        self,
        manager: FeedConnectionManager,
    ) -> None:
        with pytest.raises(ValueError):
            manager.start("", MagicMock())

    def test_non_positive_interval_rejected(
        self,
        manager: FeedConnectionManager,
    ) -> None:
        with pytest.raises(ValueError):
            manager.start(ENDPOINT, MagicMock(), notification_interval_ms=0)


# ---------------------------------------------------------------------------
# Stats Tests
# ---------------------------------------------------------------------------


class TestStats:
    """Tests for FeedHandle.stats()."""

    def test_stats_returns_expected_keys(
        self,
        connected_handle: FeedHandle,
    ) -> None:
        stats = connected_handle.stats()
        assert set(stats) == {
            "state",
            "connected",
            "generation",
            "endpoint",
            "messages_received",
            "updates_delivered",
            "ticks",
            "coalesced",
            "callback_errors",
            "feed_stale",
            "last_quote_age_ms",
            "has_received",
            "pending_update",
        }

    def test_stats_before_first_message(
        self,
        connected_handle: FeedHandle,
    ) -> None:
        stats = connected_handle.stats()
        assert stats["state"] == "CONNECTED"
        assert stats["connected"] is True
        assert stats["messages_received"] == 0
        assert stats["feed_stale"] is False
        assert stats["last_quote_age_ms"] is None
        assert stats["has_received"] is False
        assert stats["pending_update"] is False

    def test_stats_after_messages(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
    ) -> None:
        fake_ws.feed("Price: 1", "Price: 2")
        assert _wait_for(
            lambda: connected_handle.stats()["messages_received"] == 2,
        )
        connected_handle._on_tick()
        stats = connected_handle.stats()
        assert stats["updates_delivered"] == 1
        assert stats["endpoint"] == ENDPOINT
        assert isinstance(stats["last_quote_age_ms"], float)
        assert stats["has_received"] is True
        assert stats["pending_update"] is False

    def test_pending_update_until_tick(
        self,
        connected_handle: FeedHandle,
        fake_ws: FakeWebSocket,
    ) -> None:
        """A received quote stays pending until a tick delivers it."""
        fake_ws.feed("Price: 1")
        assert _wait_for(lambda: connected_handle.stats()["has_received"])
        assert connected_handle.stats()["pending_update"] is True
        connected_handle._on_tick()
        assert connected_handle.stats()["pending_update"] is False
