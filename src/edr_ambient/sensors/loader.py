"""Plugin loading for sensor and display backends."""

from __future__ import annotations

import importlib.metadata
from typing import TYPE_CHECKING, Any

from .registry import SensorRegistry

if TYPE_CHECKING:
    from .protocol import SensorBackend

SENSOR_ENTRY_POINT_GROUP = "edr_ambient.sensors"
DISPLAY_ENTRY_POINT_GROUP = "edr_ambient.displays"


def _iter_entry_points(group: str) -> list[Any]:
    """Load every object advertised under an entry point group, skipping broken ones."""
    loaded = []
    try:
        eps = importlib.metadata.entry_points(group=group)
    except Exception:
        return loaded  # No plugins or metadata API issues
    for ep in eps:
        try:
            loaded.append(ep.load())
        except Exception:
            pass  # Skip broken plugins
    return loaded


def load_plugins() -> None:
    """
    Load sensor plugins from entry points.

    Plugins can register via pyproject.toml:

    [project.entry-points."edr_ambient.sensors"]
    my_sensor = "my_package.sensors:MySensorBackend"
    """
    for backend_class in _iter_entry_points(SENSOR_ENTRY_POINT_GROUP):
        if (
            isinstance(backend_class, type)
            and hasattr(backend_class, "name")
            and hasattr(backend_class, "read_register")
            and hasattr(backend_class, "rebind")
        ):
            SensorRegistry.register(backend_class)


def load_display_plugins() -> list[type]:
    """
    Return display backend classes advertised by plugins.

    [project.entry-points."edr_ambient.displays"]
    my_display = "my_package.displays:MyDisplayBackend"
    """
    return [
        cls
        for cls in _iter_entry_points(DISPLAY_ENTRY_POINT_GROUP)
        if isinstance(cls, type) and hasattr(cls, "headrooms") and hasattr(cls, "write_transfer_table")
    ]


def load_builtin_backends() -> None:
    """Load the built-in sensor backends."""
    # Import backends to trigger registration
    from . import backends  # noqa: F401


def discover_backends() -> list[dict]:
    """Discover and list all available backends."""
    load_builtin_backends()
    load_plugins()
    return SensorRegistry.list_backends()


def get_best_backend() -> SensorBackend | None:
    """Get the best available backend for the current platform."""
    load_builtin_backends()
    load_plugins()
    return SensorRegistry.get_for_platform()
