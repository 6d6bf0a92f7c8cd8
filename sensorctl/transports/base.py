"""Collaborator interfaces consumed by the session core."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from sensorctl.core.errors import DecodeError
from sensorctl.core.events import Event
from sensorctl.core.model import Capability, PeripheralRef, Reading, ScanResultEvent, SessionStatus


class Adapter(Protocol):
    def is_radio_enabled(self) -> bool:
        """Return whether the Bluetooth radio is powered."""

    def start_scan(
        self,
        on_result: Callable[[ScanResultEvent], None],
        on_error: Callable[[str], None],
    ) -> None:
        """Begin scanning; sightings and start failures are reported via callbacks."""

    def stop_scan(self) -> None:
        """Stop an active scan."""


class Connection(Protocol):
    def discover_services(self) -> None:
        """Request service discovery; answers with ServicesDiscovered or ServiceDiscoveryFailed."""

    def set_notify(self, service_uuid: str, characteristic_uuid: str, enabled: bool) -> None:
        """Write the CCCD; answers with NotifyEnabled or NotifyFailed."""

    def close(self) -> None:
        """Release the underlying connection handle; teardown may finish later."""

    async def wait_closed(self) -> None:
        """Return once the teardown started by `close()` has completed."""


class ConnectionProvider(Protocol):
    def connect(self, peripheral: PeripheralRef, on_event: Callable[[Event], None]) -> Connection:
        """Start connecting; Connected, ConnectFailed and Disconnected arrive via `on_event`."""


class CapabilityGate(Protocol):
    def has_capability(self, capability: Capability) -> bool:
        """Return whether `capability` is granted right now."""


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], object]) -> TimerHandle: ...


class Sink(Protocol):
    def on_reading(self, reading: Reading) -> None: ...

    def on_status(self, status: SessionStatus) -> None: ...

    def on_decode_error(self, error: DecodeError) -> None: ...
