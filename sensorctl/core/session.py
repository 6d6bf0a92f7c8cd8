"""Session composition root: scanner + state machine + frame decoder."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

from sensorctl.core.errors import DecodeError, PermissionDeniedError, SessionStateError
from sensorctl.core.events import CapabilityRevoked, Event, RadioUnavailable, StartScan, StopRequested
from sensorctl.core.framing import FrameDecoder
from sensorctl.core.model import (
    Capability,
    DeviceProfile,
    PeripheralRef,
    ScanResultEvent,
    SessionState,
    SessionStatus,
)
from sensorctl.core.parser import parse_reading
from sensorctl.core.scan import ScanController
from sensorctl.core.state_machine import SessionStateMachine
from sensorctl.transports.base import Adapter, CapabilityGate, ConnectionProvider, Scheduler, Sink

LOGGER = logging.getLogger(__name__)


class Session:
    """One connection attempt to the profile's target peripheral.

    Events are queued and handled run-to-completion: an event posted while
    another one is being handled (for example `stop()` called from a sink
    callback) waits until the current handler returns.
    """

    def __init__(
        self,
        profile: DeviceProfile,
        *,
        adapter: Adapter,
        connector: ConnectionProvider,
        gate: CapabilityGate,
        scheduler: Scheduler,
        sink: Sink,
        on_device: Callable[[ScanResultEvent], None] | None = None,
    ) -> None:
        self.profile = profile
        self._adapter = adapter
        self._sink = sink
        self._queue: deque[Event] = deque()
        self._draining = False
        self.decoder = FrameDecoder(max_pending_bytes=profile.max_pending_bytes)
        self.scanner = ScanController(
            adapter,
            gate,
            scheduler,
            self.post,
            deduplicate=profile.deduplicate,
            on_device=on_device,
        )
        self.machine = SessionStateMachine(
            profile,
            connector=connector,
            gate=gate,
            post=self.post,
            on_status=self._handle_status,
            on_data=self._handle_data,
        )

    @property
    def state(self) -> SessionState:
        return self.machine.state

    @property
    def status(self) -> SessionStatus:
        return self.machine.status

    @property
    def peripheral(self) -> PeripheralRef | None:
        return self.machine.peripheral

    @property
    def active(self) -> bool:
        return not self.machine.state.is_terminal

    def start(self) -> None:
        if self.machine.state is not SessionState.IDLE:
            raise SessionStateError(f"Session already started (state: {self.machine.state.value})")
        if not self._adapter.is_radio_enabled():
            self.post(RadioUnavailable())
            return
        self.post(StartScan())

    def stop(self) -> None:
        self.post(StopRequested())

    async def wait_closed(self) -> None:
        """Wait until the connection released on termination has shut down."""
        connection = self.machine.released_connection
        if connection is not None:
            await connection.wait_closed()

    def post(self, event: Event) -> None:
        self._queue.append(event)
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue:
                self.machine.dispatch(self._queue.popleft())
        finally:
            self._draining = False

    def _handle_status(self, status: SessionStatus) -> None:
        if status.state is SessionState.SCANNING:
            try:
                self.scanner.start(self.profile.target_name, self.profile.scan_timeout_s)
            except PermissionDeniedError:
                self.post(CapabilityRevoked(Capability.SCAN))
        else:
            self.scanner.stop()

        if status.state.is_terminal:
            self.decoder.reset()
        self._sink.on_status(status)

    def _handle_data(self, data: bytes) -> None:
        try:
            for line in self.decoder.feed(data):
                reading = parse_reading(line)
                if reading is not None:
                    self._sink.on_reading(reading)
        except DecodeError as exc:
            LOGGER.warning("Discarding undecodable data: %s", exc)
            self._sink.on_decode_error(exc)
