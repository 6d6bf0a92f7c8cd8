"""Domain-specific errors for sensorctl."""

from __future__ import annotations


class SensorctlError(Exception):
    """Base error for sensorctl."""


class ProfileValidationError(SensorctlError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(SensorctlError):
    """Raised when loading profile sources fails."""


class ProfileSelectionError(SensorctlError):
    """Raised when no single device profile can be resolved."""


class SessionError(SensorctlError):
    """Base session lifecycle error."""


class SessionStateError(SessionError):
    """Raised when an operation is not valid in the session's current state."""


class SessionBusyError(SessionError):
    """Raised when a new session is requested while another one is active."""


class ScanError(SensorctlError):
    """Base scan error."""


class ScanInProgressError(ScanError):
    """Raised when a scan is started while one is already running."""


class PermissionDeniedError(SensorctlError):
    """Raised when a required capability is not granted."""

    def __init__(self, capability: str, message: str | None = None) -> None:
        self.capability = capability
        super().__init__(message or f"Missing '{capability}' capability")


class TransportError(SensorctlError):
    """Base transport error."""


class RadioDisabledError(TransportError):
    """Raised when the Bluetooth radio is off or unavailable."""


class ScanTimedOutError(TransportError):
    """Raised when the target was not seen within the scan budget."""


class ConnectError(TransportError):
    """Raised on GATT connect failures."""

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class ServiceDiscoveryError(TransportError):
    """Raised when GATT service discovery itself fails."""


class ServiceNotFoundError(TransportError):
    """Raised when the peripheral does not expose the expected service."""


class CharacteristicNotFoundError(TransportError):
    """Raised when the expected service lacks the notify characteristic."""


class SubscribeError(TransportError):
    """Raised when enabling notifications fails."""

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class DecodeError(SensorctlError):
    """Raised on invalid UTF-8 or an oversized unterminated frame buffer."""


class ParseError(SensorctlError):
    """Raised when a tagged line carries a malformed numeric literal."""
