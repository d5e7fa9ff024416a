"""Error taxonomy for the analysis core.

Every fault carries one ``ErrorKind``. Capture loss is absorbed locally by a
silent tick; configuration faults are raised by the component that first
needs the missing value; numerical degeneracy never raises.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(Enum):
    CAPTURE_UNAVAILABLE = "capture_unavailable"
    CONFIGURATION = "configuration"
    NUMERICAL = "numerical"


# kind -> (recoverable, category)
ERROR_METADATA: dict[ErrorKind, dict] = {
    ErrorKind.CAPTURE_UNAVAILABLE: {"recoverable": True, "category": "Audio"},
    ErrorKind.CONFIGURATION: {"recoverable": True, "category": "Config"},
    ErrorKind.NUMERICAL: {"recoverable": True, "category": "Analysis"},
}


class SonicStateError(Exception):
    """Base class for faults reported by the analysis core."""

    kind: ErrorKind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.message = message

    @property
    def recoverable(self) -> bool:
        return ERROR_METADATA[self.kind]["recoverable"]


class ConfigurationError(SonicStateError):
    """A supplied threshold set, transition table or mapping cannot drive a rule."""

    kind = ErrorKind.CONFIGURATION


@dataclass(frozen=True)
class EngineFault:
    """Fault record published upward while the engine keeps running on stale data."""
    kind: ErrorKind
    message: str
    recoverable: bool
    timestamp: float

    @classmethod
    def from_exception(cls, exc: SonicStateError, timestamp: float) -> "EngineFault":
        return cls(
            kind=exc.kind,
            message=exc.message,
            recoverable=exc.recoverable,
            timestamp=timestamp,
        )
