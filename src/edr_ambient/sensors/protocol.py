"""Sensor backend protocol and data types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Protocol, runtime_checkable


class SensorCapability(Enum):
    """Capabilities a sensor backend may provide."""

    AMBIENT_REGISTER = auto()  # Fixed-point ambient brightness register
    REBIND = auto()  # Handle can be re-acquired after going stale


class SampleKind(Enum):
    """Outcome of decoding one sensor register read."""

    VALUE = "value"
    SATURATED = "saturated"
    INVALID = "invalid"


@dataclass(frozen=True)
class SensorSample:
    """One decoded ALS reading. `x` is only set for VALUE samples."""

    kind: SampleKind
    x: float | None = None

    @classmethod
    def value(cls, x: float) -> SensorSample:
        return cls(SampleKind.VALUE, x)

    @classmethod
    def saturated(cls) -> SensorSample:
        return cls(SampleKind.SATURATED)

    @classmethod
    def invalid(cls) -> SensorSample:
        return cls(SampleKind.INVALID)


@runtime_checkable
class SensorBackend(Protocol):
    """Protocol for ambient light sensor backends."""

    @property
    def name(self) -> str:
        """Human-readable name for this backend."""
        ...

    @property
    def platform(self) -> str:
        """Platform this backend runs on (darwin, linux)."""
        ...

    @property
    def capabilities(self) -> set[SensorCapability]:
        """Set of capabilities this backend provides."""
        ...

    def is_available(self) -> bool:
        """Check if this backend can be used on the current system."""
        ...

    def read_register(self) -> Any:
        """Read the raw register (int or little-endian bytes). None on failure."""
        ...

    def rebind(self) -> bool:
        """Re-acquire the sensor handle. Returns success."""
        ...
