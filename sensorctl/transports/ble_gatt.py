"""BLE GATT adapter and connection built on bleak.

bleak is coroutine based while the session core is callback driven. Every
bleak callback or finished coroutine is handed back to the event loop with
`call_soon_threadsafe`, so the core only ever sees events on the loop thread
and never from inside a bleak callback.
"""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from collections.abc import Callable, Coroutine, Sequence
from typing import Any

from sensorctl.core.errors import ConnectError, TransportError
from sensorctl.core.events import (
    Connected,
    ConnectFailed,
    Disconnected,
    Event,
    Notification,
    NotifyEnabled,
    NotifyFailed,
    ServiceDiscoveryFailed,
    ServicesDiscovered,
)
from sensorctl.core.model import CCCD_UUID, PeripheralRef, ScanResultEvent

_POWERED_RE = re.compile(r"^Powered:\s*(yes|no)$", re.IGNORECASE)
LOGGER = logging.getLogger(__name__)


def _bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportError("BLE transport requires 'bleak'. Install dependency and retry.") from exc
    return bleak


def _ble_errors() -> tuple[type[BaseException], ...]:
    from bleak.exc import BleakError  # type: ignore

    return (BleakError, OSError, asyncio.TimeoutError)


def _error_code(exc: BaseException) -> int | None:
    code = getattr(exc, "errno", None)
    return code if isinstance(code, int) else None


def radio_powered() -> bool | None:
    """Ask BlueZ whether the default controller is powered.

    Returns None when the answer is unknown (no bluetoothctl, no controller
    listed, or the command failed), in which case scanning reports the problem.
    """
    result = _run_command(["bluetoothctl", "show"])
    if result is None or result.returncode != 0:
        return None
    for line in result.stdout.splitlines():
        match = _POWERED_RE.match(line.strip())
        if match:
            return match.group(1).lower() == "yes"
    return None


def _run_command(cmd: Sequence[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return None


class BleakAdapter:
    def __init__(self, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    def is_radio_enabled(self) -> bool:
        powered = radio_powered()
        return True if powered is None else powered

    def start_scan(
        self,
        on_result: Callable[[ScanResultEvent], None],
        on_error: Callable[[str], None],
    ) -> None:
        bleak = _bleak()
        loop = self._loop or asyncio.get_running_loop()

        def _detected(device: Any, adv: Any) -> None:
            name = adv.local_name or device.name or ""
            result = ScanResultEvent(
                peripheral=PeripheralRef(name=name, address=device.address.upper()),
                rssi=int(adv.rssi),
            )
            loop.call_soon_threadsafe(on_result, result)

        stop_event = asyncio.Event()
        self._stop_event = stop_event
        try:
            scanner = bleak.BleakScanner(detection_callback=_detected)
        except _ble_errors() as exc:
            raise TransportError(f"BLE scanner could not be created: {exc}") from exc
        self._task = loop.create_task(self._run_scan(scanner, stop_event, on_error))

    def stop_scan(self) -> None:
        if self._stop_event is None:
            return
        self._stop_event.set()
        self._stop_event = None

    async def _run_scan(self, scanner: Any, stop_event: asyncio.Event, on_error: Callable[[str], None]) -> None:
        errors = _ble_errors()
        try:
            await scanner.start()
        except errors as exc:
            asyncio.get_running_loop().call_soon(on_error, f"BLE scanner could not start: {exc}")
            return
        try:
            await stop_event.wait()
        finally:
            try:
                await scanner.stop()
            except errors as exc:
                LOGGER.debug("Ignoring scanner stop failure: %s", exc)


class BleakConnection:
    """One BleakClient connection; results are reported as session events."""

    def __init__(
        self,
        peripheral: PeripheralRef,
        on_event: Callable[[Event], None],
        *,
        loop: asyncio.AbstractEventLoop,
        timeout_s: float = 10.0,
        cccd_uuid: str = CCCD_UUID,
    ) -> None:
        self.peripheral = peripheral
        self._on_event = on_event
        self._loop = loop
        self._timeout_s = timeout_s
        self._cccd_uuid = cccd_uuid
        self._client: Any = None
        self._notify_uuid: str | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._closing: asyncio.Task[None] | None = None
        self._closed = False

    def open(self) -> None:
        bleak = _bleak()
        try:
            self._client = bleak.BleakClient(
                self.peripheral.address,
                disconnected_callback=self._handle_disconnect,
                timeout=self._timeout_s,
            )
        except _ble_errors() as exc:
            raise ConnectError(
                f"Could not create a GATT client for {self.peripheral.address}: {exc}",
                code=_error_code(exc),
            ) from exc
        self._spawn(self._connect())

    def discover_services(self) -> None:
        self._spawn(self._discover())

    def set_notify(self, service_uuid: str, characteristic_uuid: str, enabled: bool) -> None:
        self._spawn(self._set_notify(service_uuid, characteristic_uuid, enabled))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        if self._client is not None:
            self._closing = self._loop.create_task(self._disconnect(self._client))

    async def wait_closed(self) -> None:
        """Wait for the disconnect started by `close()` to finish."""
        if self._closing is not None:
            await self._closing

    def _emit(self, event: Event) -> None:
        if self._closed:
            return
        self._loop.call_soon_threadsafe(self._on_event, event)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        if self._closed:
            coro.close()
            return
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_disconnect(self, _client: Any) -> None:
        self._emit(Disconnected(f"{self.peripheral.address} disconnected"))

    def _handle_notification(self, _characteristic: Any, data: bytearray) -> None:
        self._emit(Notification(bytes(data)))

    async def _connect(self) -> None:
        errors = _ble_errors()
        try:
            await self._client.connect()
        except asyncio.TimeoutError:
            self._emit(ConnectFailed(f"GATT connect timed out for {self.peripheral.address}"))
        except errors as exc:
            self._emit(ConnectFailed(f"GATT connect failed for {self.peripheral.address}: {exc}", code=_error_code(exc)))
        else:
            self._emit(Connected())

    async def _discover(self) -> None:
        errors = _ble_errors()
        try:
            services = {
                service.uuid.lower(): frozenset(char.uuid.lower() for char in service.characteristics)
                for service in self._client.services
            }
        except errors as exc:
            self._emit(ServiceDiscoveryFailed(f"Service discovery failed: {exc}", code=_error_code(exc)))
            return
        LOGGER.debug("Discovered %d services on %s", len(services), self.peripheral.address)
        self._emit(ServicesDiscovered(services))

    async def _set_notify(self, service_uuid: str, characteristic_uuid: str, enabled: bool) -> None:
        errors = _ble_errors()
        try:
            service = self._client.services.get_service(service_uuid)
            characteristic = service.get_characteristic(characteristic_uuid) if service else None
            if characteristic is None:
                self._emit(NotifyFailed(f"Characteristic {characteristic_uuid} not found"))
                return
            if enabled and characteristic.get_descriptor(self._cccd_uuid) is None:
                self._emit(NotifyFailed(f"Characteristic {characteristic_uuid} has no CCCD {self._cccd_uuid}"))
                return
            if not enabled:
                await self._client.stop_notify(characteristic)
                self._notify_uuid = None
                return
            await self._client.start_notify(characteristic, self._handle_notification)
            self._notify_uuid = characteristic_uuid
        except errors as exc:
            self._emit(NotifyFailed(f"Enabling notifications failed: {exc}", code=_error_code(exc)))
            return
        self._emit(NotifyEnabled())

    async def _disconnect(self, client: Any) -> None:
        errors = _ble_errors()
        try:
            if self._notify_uuid is not None and client.is_connected:
                await client.stop_notify(self._notify_uuid)
            await client.disconnect()
        except errors as exc:
            LOGGER.debug("Ignoring disconnect failure for %s: %s", self.peripheral.address, exc)


class BleakConnector:
    def __init__(self, *, timeout_s: float = 10.0, cccd_uuid: str = CCCD_UUID) -> None:
        self.timeout_s = timeout_s
        self.cccd_uuid = cccd_uuid

    def connect(self, peripheral: PeripheralRef, on_event: Callable[[Event], None]) -> BleakConnection:
        connection = BleakConnection(
            peripheral,
            on_event,
            loop=asyncio.get_running_loop(),
            timeout_s=self.timeout_s,
            cccd_uuid=self.cccd_uuid,
        )
        connection.open()
        return connection
