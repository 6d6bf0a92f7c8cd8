"""Core data models used across loader, session, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

CCCD_UUID = "00002902-0000-1000-8000-00805f9b34fb"


@dataclass(frozen=True)
class PeripheralRef:
    name: str
    address: str


@dataclass(frozen=True)
class ScanResultEvent:
    peripheral: PeripheralRef
    rssi: int


class ReadingKind(str, Enum):
    ECG = "ECG"
    PPG = "PPG"
    INVALID = "Invalid"


@dataclass(frozen=True)
class Reading:
    kind: ReadingKind
    value: float | None = None
    raw_text: str | None = None
    reason: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.kind is not ReadingKind.INVALID


class SessionState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    DISCOVERING_SERVICES = "discovering_services"
    SUBSCRIBING = "subscribing"
    RECEIVING = "receiving"
    DISCONNECTED = "disconnected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.DISCONNECTED, SessionState.FAILED)


class FailureReason(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    RADIO_DISABLED = "radio_disabled"
    SCAN_TIMED_OUT = "scan_timed_out"
    CONNECT_ERROR = "connect_error"
    SERVICE_NOT_FOUND = "service_not_found"
    CHARACTERISTIC_NOT_FOUND = "characteristic_not_found"
    DISCOVERY_ERROR = "discovery_error"
    SUBSCRIBE_ERROR = "subscribe_error"


class Capability(str, Enum):
    SCAN = "scan"
    CONNECT = "connect"


@dataclass(frozen=True)
class SessionStatus:
    state: SessionState
    reason: FailureReason | None = None
    detail: str | None = None
    peripheral: PeripheralRef | None = None
    code: int | None = None
    capability: Capability | None = None


@dataclass(frozen=True)
class DeviceProfile:
    id: str
    target_name: str
    service_uuid: str
    characteristic_uuid: str
    cccd_uuid: str = CCCD_UUID
    scan_timeout_s: float = 10.0
    connect_timeout_s: float = 10.0
    max_pending_bytes: int = 4096
    deduplicate: bool = True
