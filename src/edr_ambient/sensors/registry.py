"""Registry of ambient light sensor backends and per-platform selection."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from .decoder import decode_register
from .protocol import SampleKind, SensorCapability

if TYPE_CHECKING:
    from .protocol import SensorBackend


def read_kind(backend: SensorBackend) -> SampleKind:
    """Read the register once and classify it. A raising read counts as INVALID."""
    try:
        raw = backend.read_register()
    except Exception:
        return SampleKind.INVALID
    return decode_register(raw).kind


def _selection_rank(backend: SensorBackend) -> tuple[bool, bool]:
    return (
        SensorCapability.REBIND in backend.capabilities,
        read_kind(backend) is not SampleKind.INVALID,
    )


class SensorRegistry:
    """
    Sensor backend classes, keyed by class name.

    Built-ins register through the `@SensorRegistry.register` decorator and
    plugins through the `edr_ambient.sensors` entry point. Each class is
    instantiated once, on first lookup. A backend whose constructor raises
    is left out of every lookup.
    """

    _backends: dict[str, type[SensorBackend]] = {}
    _instances: dict[str, SensorBackend] = {}

    @classmethod
    def register(cls, backend_class: type[SensorBackend]) -> type[SensorBackend]:
        cls._backends[backend_class.__name__] = backend_class
        return backend_class

    @classmethod
    def get_for_platform(cls, platform: str | None = None) -> SensorBackend | None:
        """
        Pick the sensor to sample on `platform` (default: this one).

        Only available backends qualify. A backend that can rebind a stale
        handle beats one that cannot. Next comes a backend whose trial read
        decodes to a value or saturation, then registration order.
        """
        platform = platform or sys.platform
        candidates = [b for b in cls._usable() if b.platform == platform]
        if not candidates:
            return None
        return max(candidates, key=_selection_rank)

    @classmethod
    def get_by_name(cls, name: str) -> SensorBackend | None:
        """Get a backend by class name, e.g. for `--sensor LinuxSysfsBackend`."""
        if name not in cls._instances and name in cls._backends:
            try:
                cls._instances[name] = cls._backends[name]()
            except Exception:
                return None
        return cls._instances.get(name)

    @classmethod
    def _usable(cls) -> list[SensorBackend]:
        usable = []
        for name in cls._backends:
            backend = cls.get_by_name(name)
            if backend is None:
                continue
            try:
                if backend.is_available():
                    usable.append(backend)
            except Exception:
                continue
        return usable

    @classmethod
    def list_backends(cls) -> list[dict]:
        """Describe every constructible backend, with a trial reading for available ones."""
        usable = cls._usable()
        result = []
        for name in cls._backends:
            backend = cls.get_by_name(name)
            if backend is None:
                continue
            available = backend in usable
            result.append(
                {
                    "name": name,
                    "display_name": backend.name,
                    "platform": backend.platform,
                    "available": available,
                    "capabilities": sorted(c.name for c in backend.capabilities),
                    "reading": read_kind(backend).value if available else None,
                }
            )
        return result

    @classmethod
    def clear(cls) -> None:
        cls._backends.clear()
        cls._instances.clear()
