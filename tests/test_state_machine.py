from __future__ import annotations

from fakes import CHAR_UUID, PROFILE, SERVICE_UUID, SERVICES, FakeConnector

from sensorctl.core.errors import ConnectError
from sensorctl.core.events import (
    CapabilityRevoked,
    Connected,
    ConnectFailed,
    Disconnected,
    Notification,
    NotifyEnabled,
    NotifyFailed,
    ScanTimedOut,
    ServiceDiscoveryFailed,
    ServicesDiscovered,
    StartScan,
    StopRequested,
    TargetFound,
)
from sensorctl.core.model import Capability, FailureReason, PeripheralRef, SessionState
from sensorctl.core.state_machine import SessionStateMachine
from sensorctl.transports.capability import StaticCapabilityGate

TARGET = PeripheralRef(name="DSD TECH", address="11:22:33:44:55:66")


class Harness:
    def __init__(self) -> None:
        self.connector = FakeConnector()
        self.gate = StaticCapabilityGate()
        self.posted: list[object] = []
        self.statuses = []
        self.data: list[bytes] = []
        self.machine = SessionStateMachine(
            PROFILE,
            connector=self.connector,
            gate=self.gate,
            post=self.posted.append,
            on_status=self.statuses.append,
            on_data=self.data.append,
        )

    def advance_to(self, state: SessionState) -> None:
        steps = [
            (SessionState.SCANNING, StartScan()),
            (SessionState.CONNECTING, TargetFound(TARGET)),
            (SessionState.DISCOVERING_SERVICES, Connected()),
            (SessionState.SUBSCRIBING, ServicesDiscovered(SERVICES)),
            (SessionState.RECEIVING, NotifyEnabled()),
        ]
        for reached, event in steps:
            if self.machine.state is state:
                return
            assert self.machine.dispatch(event)
            assert self.machine.state is reached


def test_happy_path_reaches_receiving() -> None:
    h = Harness()
    h.advance_to(SessionState.RECEIVING)

    connection = h.connector.last
    assert connection.peripheral == TARGET
    assert connection.on_event == h.posted.append
    assert connection.discover_calls == 1
    assert connection.notify_calls == [(SERVICE_UUID, CHAR_UUID, True)]
    assert [s.state for s in h.statuses] == [
        SessionState.SCANNING,
        SessionState.CONNECTING,
        SessionState.DISCOVERING_SERVICES,
        SessionState.SUBSCRIBING,
        SessionState.RECEIVING,
    ]
    assert h.machine.peripheral == TARGET

    assert h.machine.dispatch(Notification(b"E1\n"))
    assert h.machine.dispatch(Notification(b"P2\n"))
    assert h.data == [b"E1\n", b"P2\n"]
    assert h.machine.state is SessionState.RECEIVING


def test_target_found_requires_prior_scan() -> None:
    h = Harness()
    assert not h.machine.dispatch(TargetFound(TARGET))
    assert h.machine.state is SessionState.IDLE
    assert h.connector.connections == []


def test_second_target_found_while_connecting_is_ignored() -> None:
    h = Harness()
    h.advance_to(SessionState.CONNECTING)
    other = PeripheralRef(name="DSD TECH", address="66:55:44:33:22:11")
    assert not h.machine.dispatch(TargetFound(other))
    assert len(h.connector.connections) == 1
    assert h.machine.peripheral == TARGET


def test_terminal_states_accept_nothing() -> None:
    h = Harness()
    h.advance_to(SessionState.RECEIVING)
    assert h.machine.dispatch(Disconnected())
    assert h.machine.state is SessionState.DISCONNECTED

    for event in (StartScan(), Notification(b"E1\n"), Disconnected(), StopRequested()):
        assert not h.machine.dispatch(event)
    assert h.data == []
    assert h.connector.last.close_calls == 1


def test_failed_is_terminal() -> None:
    h = Harness()
    h.advance_to(SessionState.SCANNING)
    assert h.machine.dispatch(ScanTimedOut("DSD TECH"))
    assert h.machine.state is SessionState.FAILED
    assert h.machine.status.reason is FailureReason.SCAN_TIMED_OUT
    assert not h.machine.dispatch(StartScan())
    assert not h.machine.dispatch(TargetFound(TARGET))


def test_connect_error_releases_handle() -> None:
    h = Harness()
    h.advance_to(SessionState.CONNECTING)
    assert h.machine.dispatch(ConnectFailed("GATT error", code=133))
    assert h.machine.status.reason is FailureReason.CONNECT_ERROR
    assert h.machine.status.code == 133
    assert h.connector.last.close_calls == 1


def test_missing_service_and_characteristic() -> None:
    h = Harness()
    h.advance_to(SessionState.DISCOVERING_SERVICES)
    h.machine.dispatch(ServicesDiscovered({"0000180f-0000-1000-8000-00805f9b34fb": frozenset()}))
    assert h.machine.status.reason is FailureReason.SERVICE_NOT_FOUND

    h = Harness()
    h.advance_to(SessionState.DISCOVERING_SERVICES)
    h.machine.dispatch(ServicesDiscovered({SERVICE_UUID: frozenset({"0000ffe2-0000-1000-8000-00805f9b34fb"})}))
    assert h.machine.status.reason is FailureReason.CHARACTERISTIC_NOT_FOUND
    assert h.connector.last.notify_calls == []
    assert h.connector.last.close_calls == 1


def test_discovery_error() -> None:
    h = Harness()
    h.advance_to(SessionState.DISCOVERING_SERVICES)
    h.machine.dispatch(ServiceDiscoveryFailed("status 129", code=129))
    assert h.machine.state is SessionState.FAILED
    assert h.machine.status.reason is FailureReason.DISCOVERY_ERROR


def test_subscribe_error() -> None:
    h = Harness()
    h.advance_to(SessionState.SUBSCRIBING)
    h.machine.dispatch(NotifyFailed("write failed", code=3))
    assert h.machine.status.reason is FailureReason.SUBSCRIBE_ERROR
    assert h.connector.last.close_calls == 1


def test_notification_before_subscribe_confirmation_is_kept() -> None:
    h = Harness()
    h.advance_to(SessionState.SUBSCRIBING)
    assert h.machine.dispatch(Notification(b"E1"))
    assert h.data == [b"E1"]
    assert h.machine.state is SessionState.SUBSCRIBING


def test_permission_revoked_before_discovery() -> None:
    h = Harness()
    h.advance_to(SessionState.CONNECTING)
    h.gate.revoke(Capability.CONNECT)

    h.machine.dispatch(Connected())

    assert h.machine.state is SessionState.FAILED
    assert h.machine.status.reason is FailureReason.PERMISSION_DENIED
    assert h.connector.last.discover_calls == 0
    assert h.connector.last.close_calls == 1

    h.machine.dispatch(Disconnected())
    assert h.connector.last.close_calls == 1


def test_permission_missing_before_connect() -> None:
    h = Harness()
    h.advance_to(SessionState.SCANNING)
    h.gate.revoke(Capability.CONNECT)
    h.machine.dispatch(TargetFound(TARGET))
    assert h.machine.status.reason is FailureReason.PERMISSION_DENIED
    assert h.connector.connections == []


def test_permission_revoked_before_subscribe() -> None:
    h = Harness()
    h.advance_to(SessionState.DISCOVERING_SERVICES)
    h.gate.revoke(Capability.CONNECT)
    h.machine.dispatch(ServicesDiscovered(SERVICES))
    assert h.machine.status.reason is FailureReason.PERMISSION_DENIED
    assert h.connector.last.notify_calls == []


def test_capability_revoked_event_fails_session() -> None:
    h = Harness()
    h.advance_to(SessionState.SCANNING)
    assert h.machine.dispatch(CapabilityRevoked(Capability.SCAN))
    assert h.machine.status.reason is FailureReason.PERMISSION_DENIED


def test_stop_from_any_live_state_releases_once() -> None:
    for state in (
        SessionState.DISCOVERING_SERVICES,
        SessionState.SUBSCRIBING,
        SessionState.RECEIVING,
    ):
        h = Harness()
        h.advance_to(state)
        assert h.machine.dispatch(StopRequested())
        assert h.machine.state is SessionState.DISCONNECTED
        h.machine.dispatch(StopRequested())
        h.machine.dispatch(Disconnected())
        assert h.connector.last.close_calls == 1


def test_stop_before_connect_has_nothing_to_release() -> None:
    h = Harness()
    h.advance_to(SessionState.SCANNING)
    assert h.machine.dispatch(StopRequested())
    assert h.machine.state is SessionState.DISCONNECTED
    assert h.connector.connections == []


def test_connector_that_cannot_start_fails_the_session() -> None:
    class BrokenConnector(FakeConnector):
        def connect(self, peripheral, on_event):
            raise ConnectError("Could not create a GATT client", code=19)

    h = Harness()
    h.connector = BrokenConnector()
    h.machine = SessionStateMachine(
        PROFILE,
        connector=h.connector,
        gate=h.gate,
        post=h.posted.append,
        on_status=h.statuses.append,
        on_data=h.data.append,
    )
    h.advance_to(SessionState.CONNECTING)

    assert h.posted == [ConnectFailed("Could not create a GATT client", code=19)]
    assert h.machine.dispatch(h.posted.pop())
    assert h.machine.state is SessionState.FAILED
    assert h.machine.status.reason is FailureReason.CONNECT_ERROR
    assert h.machine.status.code == 19
    assert h.machine.released_connection is None


def test_denied_capability_is_named_in_status() -> None:
    h = Harness()
    h.advance_to(SessionState.SCANNING)
    h.machine.dispatch(CapabilityRevoked(Capability.SCAN))
    assert h.machine.status.capability is Capability.SCAN

    h = Harness()
    h.advance_to(SessionState.CONNECTING)
    h.gate.revoke(Capability.CONNECT)
    h.machine.dispatch(Connected())
    assert h.machine.status.capability is Capability.CONNECT
    assert h.machine.released_connection is h.connector.last


def test_connected_without_a_handle_fails_instead_of_crashing() -> None:
    class BrokenConnector(FakeConnector):
        def connect(self, peripheral, on_event):
            raise ConnectError("adapter went away")

    h = Harness()
    h.machine = SessionStateMachine(
        PROFILE,
        connector=BrokenConnector(),
        gate=h.gate,
        post=h.posted.append,
        on_status=h.statuses.append,
        on_data=h.data.append,
    )
    h.advance_to(SessionState.CONNECTING)

    assert h.machine.dispatch(Connected())
    assert h.machine.state is SessionState.FAILED
    assert h.machine.status.reason is FailureReason.CONNECT_ERROR
    assert not h.machine.dispatch(h.posted.pop())
