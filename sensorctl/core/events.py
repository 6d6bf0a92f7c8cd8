"""Events fed into the session state machine.

Every adapter or connection callback is turned into one of these values before
it touches session state, so the state machine has a single entry point.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from sensorctl.core.model import Capability, PeripheralRef, ScanResultEvent


@dataclass(frozen=True)
class StartScan:
    pass


@dataclass(frozen=True)
class RadioUnavailable:
    detail: str = "Bluetooth radio is disabled"


@dataclass(frozen=True)
class TargetFound:
    peripheral: PeripheralRef


@dataclass(frozen=True)
class ScanTimedOut:
    target_name: str | None
    seen: tuple[ScanResultEvent, ...] = ()


@dataclass(frozen=True)
class ScanFailed:
    detail: str


@dataclass(frozen=True)
class CapabilityRevoked:
    capability: Capability


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class ConnectFailed:
    detail: str
    code: int | None = None


@dataclass(frozen=True)
class ServicesDiscovered:
    services: Mapping[str, frozenset[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class ServiceDiscoveryFailed:
    detail: str
    code: int | None = None


@dataclass(frozen=True)
class NotifyEnabled:
    pass


@dataclass(frozen=True)
class NotifyFailed:
    detail: str
    code: int | None = None


@dataclass(frozen=True)
class Notification:
    data: bytes


@dataclass(frozen=True)
class Disconnected:
    detail: str | None = None


@dataclass(frozen=True)
class StopRequested:
    pass


Event = (
    StartScan
    | RadioUnavailable
    | TargetFound
    | ScanTimedOut
    | ScanFailed
    | CapabilityRevoked
    | Connected
    | ConnectFailed
    | ServicesDiscovered
    | ServiceDiscoveryFailed
    | NotifyEnabled
    | NotifyFailed
    | Notification
    | Disconnected
    | StopRequested
)
