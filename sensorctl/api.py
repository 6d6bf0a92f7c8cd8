"""Stable public API for building tooling on top of sensorctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Callable, Iterable, Iterator

from sensorctl.core.errors import (
    CharacteristicNotFoundError,
    ConnectError,
    DecodeError,
    ParseError,
    PermissionDeniedError,
    ProfileLoadError,
    ProfileSelectionError,
    ProfileValidationError,
    RadioDisabledError,
    ScanError,
    ScanInProgressError,
    ScanTimedOutError,
    SensorctlError,
    ServiceDiscoveryError,
    ServiceNotFoundError,
    SessionBusyError,
    SessionError,
    SessionStateError,
    SubscribeError,
    TransportError,
)
from sensorctl.core.events import CapabilityRevoked, Event, ScanFailed, ScanTimedOut
from sensorctl.core.framing import DEFAULT_MAX_PENDING_BYTES, FrameDecoder
from sensorctl.core.model import (
    Capability,
    DeviceProfile,
    FailureReason,
    PeripheralRef,
    Reading,
    ReadingKind,
    ScanResultEvent,
    SessionState,
    SessionStatus,
)
from sensorctl.core.parser import parse_reading
from sensorctl.core.profile_loader import load_profiles
from sensorctl.core.scan import ScanController
from sensorctl.core.session import Session
from sensorctl.transports.base import Adapter, CapabilityGate, ConnectionProvider, Scheduler, Sink
from sensorctl.transports.ble_gatt import BleakAdapter, BleakConnector
from sensorctl.transports.capability import CallableCapabilityGate, StaticCapabilityGate

__all__ = [
    "SensorctlError",
    "ProfileLoadError",
    "ProfileSelectionError",
    "ProfileValidationError",
    "SessionError",
    "SessionBusyError",
    "SessionStateError",
    "ScanError",
    "ScanInProgressError",
    "PermissionDeniedError",
    "TransportError",
    "RadioDisabledError",
    "ScanTimedOutError",
    "ConnectError",
    "ServiceDiscoveryError",
    "ServiceNotFoundError",
    "CharacteristicNotFoundError",
    "SubscribeError",
    "DecodeError",
    "ParseError",
    "Capability",
    "DeviceProfile",
    "FailureReason",
    "PeripheralRef",
    "Reading",
    "ReadingKind",
    "ScanResultEvent",
    "SessionState",
    "SessionStatus",
    "Session",
    "BleakAdapter",
    "BleakConnector",
    "StaticCapabilityGate",
    "CallableCapabilityGate",
    "Client",
    "decode_stream",
    "error_for_status",
]


def error_for_status(status: SessionStatus) -> SensorctlError | None:
    """Map a FAILED session status to the matching exception; None otherwise."""
    if status.state is not SessionState.FAILED:
        return None
    detail = status.detail or (status.reason.value if status.reason else "Session failed")
    reason = status.reason
    if reason is FailureReason.PERMISSION_DENIED:
        capability = status.capability.value if status.capability else "unknown"
        return PermissionDeniedError(capability, detail)
    if reason is FailureReason.RADIO_DISABLED:
        return RadioDisabledError(detail)
    if reason is FailureReason.SCAN_TIMED_OUT:
        return ScanTimedOutError(detail)
    if reason is FailureReason.CONNECT_ERROR:
        return ConnectError(detail, code=status.code)
    if reason is FailureReason.SERVICE_NOT_FOUND:
        return ServiceNotFoundError(detail)
    if reason is FailureReason.CHARACTERISTIC_NOT_FOUND:
        return CharacteristicNotFoundError(detail)
    if reason is FailureReason.DISCOVERY_ERROR:
        return ServiceDiscoveryError(detail)
    if reason is FailureReason.SUBSCRIBE_ERROR:
        return SubscribeError(detail, code=status.code)
    return SessionError(detail)


def decode_stream(
    chunks: Iterable[bytes],
    *,
    max_pending_bytes: int = DEFAULT_MAX_PENDING_BYTES,
    on_error: Callable[[DecodeError], None] | None = None,
) -> Iterator[Reading]:
    """Decode captured notification chunks into readings, offline.

    Decode errors go to `on_error` and decoding continues; without a handler
    they propagate.
    """
    decoder = FrameDecoder(max_pending_bytes=max_pending_bytes)
    for chunk in chunks:
        try:
            for line in decoder.feed(chunk):
                reading = parse_reading(line)
                if reading is not None:
                    yield reading
        except DecodeError as exc:
            if on_error is None:
                raise
            on_error(exc)


class _TerminalWatcher:
    """Sink wrapper that resolves a future once the session ends."""

    def __init__(self, sink: Sink, done: asyncio.Future[SessionStatus]) -> None:
        self._sink = sink
        self._done = done

    def on_reading(self, reading: Reading) -> None:
        self._sink.on_reading(reading)

    def on_decode_error(self, error: DecodeError) -> None:
        self._sink.on_decode_error(error)

    def on_status(self, status: SessionStatus) -> None:
        self._sink.on_status(status)
        if status.state.is_terminal and not self._done.done():
            self._done.set_result(status)


class Client:
    """Public client for interacting with sensorctl core capabilities.

    A `Client` wraps profile loading, device discovery and the streaming
    session behind a stable API intended for third-party tools. At most one
    session is active per client.
    """

    def __init__(
        self,
        *,
        adapter: Adapter | None = None,
        connector: ConnectionProvider | None = None,
        gate: CapabilityGate | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self._adapter = adapter or BleakAdapter()
        self._connector = connector
        self._gate = gate or StaticCapabilityGate()
        self._session: Session | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    def list_profiles(self) -> list[DeviceProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def get_profile(
        self,
        *,
        profile_id: str | None = None,
        target_name: str | None = None,
        scan_timeout_s: float | None = None,
    ) -> DeviceProfile:
        if profile_id:
            profile = self.profiles.get(profile_id)
            if profile is None:
                raise ProfileSelectionError(
                    f"Unknown profile '{profile_id}'. Use 'sensorctl profiles' to inspect available profiles."
                )
        elif len(self.profiles) == 1:
            profile = next(iter(self.profiles.values()))
        elif not self.profiles:
            raise ProfileSelectionError("No profiles loaded")
        else:
            available = ", ".join(sorted(self.profiles))
            raise ProfileSelectionError(
                f"Multiple profiles available: {available}. Use --profile to choose one."
            )

        if target_name:
            profile = dataclasses.replace(profile, target_name=target_name)
        if scan_timeout_s is not None:
            profile = dataclasses.replace(profile, scan_timeout_s=scan_timeout_s)
        return profile

    def open_session(
        self,
        sink: Sink,
        *,
        profile_id: str | None = None,
        target_name: str | None = None,
        scan_timeout_s: float | None = None,
        scheduler: Scheduler | None = None,
    ) -> Session:
        """Create the client's session; the previous one must have ended."""
        if self._session is not None and self._session.active:
            raise SessionBusyError(
                f"A session is already active (state: {self._session.state.value}). Stop it first."
            )
        profile = self.get_profile(
            profile_id=profile_id, target_name=target_name, scan_timeout_s=scan_timeout_s
        )
        connector = self._connector or BleakConnector(
            timeout_s=profile.connect_timeout_s, cccd_uuid=profile.cccd_uuid
        )
        session = Session(
            profile,
            adapter=self._adapter,
            connector=connector,
            gate=self._gate,
            scheduler=scheduler or asyncio.get_running_loop(),
            sink=sink,
        )
        self._session = session
        return session

    async def stream(
        self,
        sink: Sink,
        *,
        profile_id: str | None = None,
        target_name: str | None = None,
        scan_timeout_s: float | None = None,
    ) -> SessionStatus:
        """Run one session on the running loop and return its terminal status."""
        loop = asyncio.get_running_loop()
        done: asyncio.Future[SessionStatus] = loop.create_future()
        session = self.open_session(
            _TerminalWatcher(sink, done),
            profile_id=profile_id,
            target_name=target_name,
            scan_timeout_s=scan_timeout_s,
            scheduler=loop,
        )
        session.start()
        try:
            return await done
        finally:
            if session.active:
                session.stop()
            await session.wait_closed()

    async def discover(
        self,
        timeout_s: float | None = None,
        *,
        deduplicate: bool = True,
    ) -> list[ScanResultEvent]:
        """Scan for `timeout_s` seconds and return every sighting.

        With `deduplicate=False` repeated advertisements of the same address
        are all returned, in arrival order.
        """
        if not self._adapter.is_radio_enabled():
            raise RadioDisabledError("Bluetooth radio is disabled")
        if timeout_s is None:
            timeout_s = self.get_profile().scan_timeout_s if len(self.profiles) == 1 else 10.0

        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()
        found: list[ScanResultEvent] = []

        def _on_event(event: Event) -> None:
            if done.done():
                return
            if isinstance(event, ScanTimedOut):
                done.set_result(None)
            elif isinstance(event, ScanFailed):
                done.set_exception(RadioDisabledError(event.detail))
            elif isinstance(event, CapabilityRevoked):
                done.set_exception(PermissionDeniedError(event.capability.value))

        scanner = ScanController(
            self._adapter,
            self._gate,
            loop,
            _on_event,
            deduplicate=deduplicate,
            on_device=found.append,
        )
        scanner.start(None, timeout_s)
        try:
            await done
        finally:
            scanner.stop()
        return found
