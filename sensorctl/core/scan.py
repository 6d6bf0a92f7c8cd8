"""Time-boxed discovery of a named peripheral."""

from __future__ import annotations

import logging
from collections.abc import Callable

from sensorctl.core.errors import PermissionDeniedError, ScanInProgressError, TransportError
from sensorctl.core.events import CapabilityRevoked, Event, ScanFailed, ScanTimedOut, TargetFound
from sensorctl.core.model import Capability, ScanResultEvent
from sensorctl.transports.base import Adapter, CapabilityGate, Scheduler, TimerHandle

LOGGER = logging.getLogger(__name__)


class ScanController:
    """Drives one adapter scan at a time with a one-shot time budget.

    Each `start` opens a new scan generation. The expiry timer carries the
    generation it was armed for, so a timer that fires after its scan was
    stopped (or replaced) is ignored.
    """

    def __init__(
        self,
        adapter: Adapter,
        gate: CapabilityGate,
        scheduler: Scheduler,
        on_event: Callable[[Event], None],
        *,
        deduplicate: bool = True,
        on_device: Callable[[ScanResultEvent], None] | None = None,
    ) -> None:
        self._adapter = adapter
        self._gate = gate
        self._scheduler = scheduler
        self._on_event = on_event
        self._on_device = on_device
        self.deduplicate = deduplicate
        self._scanning = False
        self._generation = 0
        self._timer: TimerHandle | None = None
        self._target_name: str | None = None
        self._seen: set[str] = set()
        self._devices: list[ScanResultEvent] = []

    @property
    def scanning(self) -> bool:
        return self._scanning

    @property
    def devices(self) -> tuple[ScanResultEvent, ...]:
        return tuple(self._devices)

    def start(self, target_name: str | None, time_budget_s: float) -> None:
        if self._scanning:
            raise ScanInProgressError("A scan is already running; stop it before starting another.")
        if not self._gate.has_capability(Capability.SCAN):
            raise PermissionDeniedError(Capability.SCAN.value, "Missing permission to scan")

        self._generation += 1
        generation = self._generation
        self._target_name = target_name
        self._seen.clear()
        self._devices.clear()
        self._scanning = True

        LOGGER.info("Scanning for %s (budget %.1fs)", target_name or "all devices", time_budget_s)
        self._timer = self._scheduler.call_later(time_budget_s, lambda: self._on_timer(generation))
        try:
            self._adapter.start_scan(self._on_result, self._on_error)
        except TransportError as exc:
            self._timer.cancel()
            self._timer = None
            self._scanning = False
            LOGGER.error("Scan could not start: %s", exc)
            self._on_event(ScanFailed(str(exc)))

    def stop(self) -> None:
        if not self._scanning:
            return
        self._scanning = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._adapter.stop_scan()
        LOGGER.debug("Scan stopped (generation %d)", self._generation)

    def _on_result(self, result: ScanResultEvent) -> None:
        if not self._scanning:
            return

        address = result.peripheral.address
        if self.deduplicate and address in self._seen:
            return
        if address not in self._seen:
            self._seen.add(address)
            self._devices.append(result)

        # Reading the advertised name needs the connect capability.
        if not self._gate.has_capability(Capability.CONNECT):
            LOGGER.warning("Connect capability revoked while scanning")
            self.stop()
            self._on_event(CapabilityRevoked(Capability.CONNECT))
            return

        LOGGER.debug(
            "Device discovered: addr=%s name=%s rssi=%s",
            address,
            result.peripheral.name,
            result.rssi,
        )
        if self._on_device is not None:
            self._on_device(result)

        if self._target_name is not None and result.peripheral.name == self._target_name:
            LOGGER.info("Found target %s (%s)", result.peripheral.name, address)
            self.stop()
            self._on_event(TargetFound(result.peripheral))

    def _on_timer(self, generation: int) -> None:
        if generation != self._generation or not self._scanning:
            return
        self._timer = None
        self.stop()
        if self._target_name is not None:
            LOGGER.info("Scan budget expired without finding %s", self._target_name)
        self._on_event(ScanTimedOut(self._target_name, self.devices))

    def _on_error(self, detail: str) -> None:
        if not self._scanning:
            return
        LOGGER.error("Scan failed: %s", detail)
        self.stop()
        self._on_event(ScanFailed(detail))
