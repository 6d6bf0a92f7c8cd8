"""Connection lifecycle state machine for a single sensor session."""

from __future__ import annotations

import logging
from collections.abc import Callable

from sensorctl.core.errors import TransportError
from sensorctl.core.events import (
    CapabilityRevoked,
    Connected,
    ConnectFailed,
    Disconnected,
    Event,
    Notification,
    NotifyEnabled,
    NotifyFailed,
    RadioUnavailable,
    ScanFailed,
    ScanTimedOut,
    ServiceDiscoveryFailed,
    ServicesDiscovered,
    StartScan,
    StopRequested,
    TargetFound,
)
from sensorctl.core.model import (
    Capability,
    DeviceProfile,
    FailureReason,
    PeripheralRef,
    SessionState,
    SessionStatus,
)
from sensorctl.transports.base import CapabilityGate, Connection, ConnectionProvider

LOGGER = logging.getLogger(__name__)


class SessionStateMachine:
    """Scan -> connect -> discover -> subscribe -> receive, one event at a time.

    `dispatch` is the only entry point. Each capability-guarded call re-checks
    the gate right before it is made; a denial ends the session with
    PERMISSION_DENIED. Reaching DISCONNECTED or FAILED releases the connection
    handle, after which every event is ignored.
    """

    def __init__(
        self,
        profile: DeviceProfile,
        *,
        connector: ConnectionProvider,
        gate: CapabilityGate,
        post: Callable[[Event], None],
        on_status: Callable[[SessionStatus], None],
        on_data: Callable[[bytes], None],
    ) -> None:
        self.profile = profile
        self._connector = connector
        self._gate = gate
        self._post = post
        self._on_status = on_status
        self._on_data = on_data
        self._state = SessionState.IDLE
        self._status = SessionStatus(state=SessionState.IDLE)
        self._peripheral: PeripheralRef | None = None
        self._connection: Connection | None = None
        self._released: Connection | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def peripheral(self) -> PeripheralRef | None:
        return self._peripheral

    @property
    def released_connection(self) -> Connection | None:
        """The connection handed back by the terminal transition, if any."""
        return self._released

    def dispatch(self, event: Event) -> bool:
        """Apply `event`; return False when the current state does not accept it."""
        state = self._state
        if state.is_terminal:
            LOGGER.debug("Ignoring %s in terminal state %s", type(event).__name__, state.value)
            return False

        if isinstance(event, Disconnected):
            self._finish(SessionState.DISCONNECTED, detail=event.detail)
            return True
        if isinstance(event, StopRequested):
            self._finish(SessionState.DISCONNECTED, detail="Stopped")
            return True
        if isinstance(event, CapabilityRevoked):
            self._deny(event.capability)
            return True

        if state is SessionState.IDLE:
            if isinstance(event, StartScan):
                self._enter(SessionState.SCANNING)
                return True
            if isinstance(event, RadioUnavailable):
                self._fail(FailureReason.RADIO_DISABLED, event.detail)
                return True

        elif state is SessionState.SCANNING:
            if isinstance(event, TargetFound):
                self._connect(event.peripheral)
                return True
            if isinstance(event, ScanTimedOut):
                self._fail(
                    FailureReason.SCAN_TIMED_OUT,
                    f"No {self.profile.target_name} found",
                )
                return True
            if isinstance(event, ScanFailed):
                self._fail(FailureReason.RADIO_DISABLED, event.detail)
                return True

        elif state is SessionState.CONNECTING:
            if isinstance(event, Connected):
                self._discover()
                return True
            if isinstance(event, ConnectFailed):
                self._fail(FailureReason.CONNECT_ERROR, event.detail, code=event.code)
                return True

        elif state is SessionState.DISCOVERING_SERVICES:
            if isinstance(event, ServicesDiscovered):
                self._subscribe(event)
                return True
            if isinstance(event, ServiceDiscoveryFailed):
                self._fail(FailureReason.DISCOVERY_ERROR, event.detail, code=event.code)
                return True

        elif state is SessionState.SUBSCRIBING:
            if isinstance(event, NotifyEnabled):
                self._enter(SessionState.RECEIVING)
                return True
            if isinstance(event, NotifyFailed):
                self._fail(FailureReason.SUBSCRIBE_ERROR, event.detail, code=event.code)
                return True
            # Notifications can overtake the CCCD write confirmation.
            if isinstance(event, Notification):
                self._on_data(event.data)
                return True

        elif state is SessionState.RECEIVING:
            if isinstance(event, Notification):
                self._on_data(event.data)
                return True

        LOGGER.debug("Ignoring %s in state %s", type(event).__name__, state.value)
        return False

    def _connect(self, peripheral: PeripheralRef) -> None:
        if not self._gate.has_capability(Capability.CONNECT):
            self._deny(Capability.CONNECT)
            return
        self._peripheral = peripheral
        self._enter(SessionState.CONNECTING)
        try:
            self._connection = self._connector.connect(peripheral, self._post)
        except TransportError as exc:
            LOGGER.error("Could not start connecting to %s: %s", peripheral.address, exc)
            self._post(ConnectFailed(str(exc), code=getattr(exc, "code", None)))

    def _discover(self) -> None:
        if not self._gate.has_capability(Capability.CONNECT):
            self._deny(Capability.CONNECT)
            return
        connection = self._connection
        if connection is None:
            self._fail(FailureReason.CONNECT_ERROR, "Connected without a connection handle")
            return
        self._enter(SessionState.DISCOVERING_SERVICES)
        connection.discover_services()

    def _subscribe(self, event: ServicesDiscovered) -> None:
        service_uuid = self.profile.service_uuid
        characteristic_uuid = self.profile.characteristic_uuid

        characteristics = event.services.get(service_uuid)
        if characteristics is None:
            self._fail(FailureReason.SERVICE_NOT_FOUND, f"Service {service_uuid} not found")
            return
        if characteristic_uuid not in characteristics:
            self._fail(
                FailureReason.CHARACTERISTIC_NOT_FOUND,
                f"Characteristic {characteristic_uuid} not found",
            )
            return
        if not self._gate.has_capability(Capability.CONNECT):
            self._deny(Capability.CONNECT)
            return

        connection = self._connection
        if connection is None:
            self._fail(FailureReason.CONNECT_ERROR, "Connection handle lost before subscribing")
            return
        self._enter(SessionState.SUBSCRIBING)
        connection.set_notify(service_uuid, characteristic_uuid, True)

    def _deny(self, capability: Capability) -> None:
        self._finish(
            SessionState.FAILED,
            reason=FailureReason.PERMISSION_DENIED,
            detail=f"Missing '{capability.value}' capability",
            capability=capability,
        )

    def _fail(self, reason: FailureReason, detail: str | None = None, *, code: int | None = None) -> None:
        self._finish(SessionState.FAILED, reason=reason, detail=detail, code=code)

    def _finish(
        self,
        state: SessionState,
        *,
        reason: FailureReason | None = None,
        detail: str | None = None,
        code: int | None = None,
        capability: Capability | None = None,
    ) -> None:
        self._release()
        self._enter(state, reason=reason, detail=detail, code=code, capability=capability)

    def _release(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        self._released = connection
        LOGGER.debug("Releasing connection to %s", self._peripheral.address if self._peripheral else "?")
        connection.close()

    def _enter(
        self,
        state: SessionState,
        *,
        reason: FailureReason | None = None,
        detail: str | None = None,
        code: int | None = None,
        capability: Capability | None = None,
    ) -> None:
        previous = self._state
        self._state = state
        self._status = SessionStatus(
            state=state,
            reason=reason,
            detail=detail,
            peripheral=self._peripheral,
            code=code,
            capability=capability,
        )
        if reason is not None:
            LOGGER.warning("Session %s -> %s (%s: %s)", previous.value, state.value, reason.value, detail)
        else:
            LOGGER.info("Session %s -> %s", previous.value, state.value)
        self._on_status(self._status)
