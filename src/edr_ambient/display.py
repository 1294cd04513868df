"""
Display seam: EDR headroom reads and gamma transfer tables.

Brightness gain is applied by scaling each target display's captured
transfer table by a single factor. With EDR engaged the compositor lets
values above 1.0 through, so a factor of 1.4 really is 40% brighter white.
Restoring the OS colour settings undoes everything at once.

Real display backends (CoreGraphics, DRM, ...) are plugins advertised under
the ``edr_ambient.displays`` entry point group. StaticDisplayBackend is an
in-memory stand-in for dry runs and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np

from .sensors.loader import load_display_plugins

TABLE_SIZE = 256
NUDGE_FPS = 60


class GainApplyError(RuntimeError):
    """Writing a transfer table failed, typically because the display went away."""

    def __init__(self, display_id: int, reason: str = ""):
        self.display_id = display_id
        super().__init__(f"display {display_id}: {reason or 'transfer table write failed'}")


@dataclass(frozen=True)
class DisplayHeadroom:
    """EDR capability of one display as reported right now."""

    display_id: int
    potential: float = 1.0  # maximum EDR component value
    reference: float = 1.0  # maximum reference EDR component value
    is_target: bool = True  # built-in panels get the gain


class GammaTable:
    """Captured RGB transfer table, shape (3, TABLE_SIZE), float32."""

    def __init__(self, values: np.ndarray):
        values = np.asarray(values, dtype=np.float32)
        if values.shape != (3, TABLE_SIZE):
            raise ValueError(f"Expected table of shape (3, {TABLE_SIZE}), got {values.shape}")
        self.values = values

    @classmethod
    def identity(cls) -> GammaTable:
        ramp = np.linspace(0.0, 1.0, TABLE_SIZE, dtype=np.float32)
        return cls(np.tile(ramp, (3, 1)))

    def scaled(self, factor: float) -> np.ndarray:
        if factor == 1.0:
            return self.values.copy()
        return (self.values * np.float32(factor)).astype(np.float32)


@runtime_checkable
class DisplayBackend(Protocol):
    """Protocol for display backends."""

    @property
    def name(self) -> str:
        """Human-readable backend name."""
        ...

    def headrooms(self, target_only: bool = True) -> list[DisplayHeadroom]:
        """Current EDR headroom of the attached displays."""
        ...

    def any_display_supports_edr(self) -> bool:
        """Global capability flag, independent of the current headroom."""
        ...

    def read_transfer_table(self, display_id: int) -> np.ndarray | None:
        """Current transfer table, or None if it cannot be read."""
        ...

    def write_transfer_table(self, display_id: int, table: np.ndarray) -> None:
        """Install a transfer table. Raises GainApplyError on failure."""
        ...

    def restore_color_settings(self) -> None:
        """Return every display to its OS-managed colour settings."""
        ...

    def set_overlay(self, fullsize: bool, fps: int) -> None:
        """Configure the overlay that keeps the EDR path engaged."""
        ...

    def pulse_overlay(self) -> None:
        """Request one redraw of the overlay."""
        ...

    def nudge(self) -> None:
        """Briefly unpause the overlay so the compositor re-engages EDR."""
        ...


class GammaApplier:
    """Captures transfer tables per target display and writes scaled copies."""

    def __init__(self, backend: DisplayBackend):
        self.backend = backend
        self.enabled = False
        self.tables: dict[int, GammaTable] = {}
        self.overlay_fullsize = True
        self.overlay_fps = 30
        self.forced_overlay: tuple[bool, int] | None = None

    def target_ids(self) -> list[int]:
        return [h.display_id for h in self.backend.headrooms(target_only=True)]

    def _capture(self, display_id: int) -> GammaTable | None:
        if display_id not in self.tables:
            raw = self.backend.read_transfer_table(display_id)
            if raw is None:
                return None
            try:
                self.tables[display_id] = GammaTable(raw)
            except ValueError:
                return None
        return self.tables[display_id]

    def enable(self) -> None:
        for display_id in self.target_ids():
            self._capture(display_id)
        self.backend.set_overlay(self.overlay_fullsize, self.overlay_fps)
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False
        self.tables.clear()
        self.backend.restore_color_settings()

    def apply(self, factor: float) -> list[int]:
        """
        Write the scaled table to every target display.

        Returns the ids that failed; they are skipped this round and retried
        on the next call.
        """
        if not self.enabled:
            return []
        failed = []
        for display_id in self.target_ids():
            table = self._capture(display_id)
            if table is None:
                failed.append(display_id)
                continue
            try:
                self.backend.write_transfer_table(display_id, table.scaled(factor))
            except GainApplyError:
                failed.append(display_id)
        return failed

    def screen_update(self) -> None:
        """Forget tables of displays that went away; capture newly attached ones."""
        current = set(self.target_ids())
        for display_id in set(self.tables) - current:
            del self.tables[display_id]
        if self.enabled:
            for display_id in current:
                self._capture(display_id)

    def set_overlay_config(self, fullsize: bool, fps: int) -> None:
        self.overlay_fullsize = fullsize
        self.overlay_fps = fps
        if self.forced_overlay is None:
            self.backend.set_overlay(fullsize, fps)

    def force_overlay(self, fullsize: bool, fps: int) -> None:
        """Override the overlay until restore_overlay(); configured values are kept."""
        self.forced_overlay = (fullsize, fps)
        self.backend.set_overlay(fullsize, fps)

    def restore_overlay(self) -> None:
        self.forced_overlay = None
        self.backend.set_overlay(self.overlay_fullsize, self.overlay_fps)

    def nudge(self) -> None:
        """Bump the overlay refresh rate and unpause it once."""
        fullsize, fps = self.forced_overlay or (self.overlay_fullsize, self.overlay_fps)
        self.backend.set_overlay(fullsize, max(fps, NUDGE_FPS))
        self.backend.nudge()

    def pulse(self) -> None:
        self.backend.pulse_overlay()


class StaticDisplayBackend:
    """
    In-memory display backend with fixed, settable headroom.

    Used for --dry-run style operation and in tests. Every write is recorded
    in `writes` so callers can inspect what would have reached the panel.
    """

    name = "static"

    def __init__(self, displays: list[DisplayHeadroom] | None = None, supports_edr: bool | None = None):
        self.displays: dict[int, DisplayHeadroom] = {}
        for head in displays if displays is not None else [DisplayHeadroom(1, potential=1.6, reference=1.0)]:
            self.displays[head.display_id] = head
        self._supports_edr = supports_edr
        self.tables: dict[int, np.ndarray] = {}
        self.writes: list[tuple[int, np.ndarray]] = []
        self.failing: set[int] = set()
        self.overlay: tuple[bool, int] | None = None
        self.pulses = 0
        self.nudges = 0
        self.restores = 0

    def set_headroom(self, display_id: int, potential: float, reference: float = 1.0, is_target: bool = True) -> None:
        self.displays[display_id] = DisplayHeadroom(display_id, potential, reference, is_target)

    def remove_display(self, display_id: int) -> None:
        self.displays.pop(display_id, None)
        self.tables.pop(display_id, None)

    def headrooms(self, target_only: bool = True) -> list[DisplayHeadroom]:
        return [h for h in self.displays.values() if h.is_target or not target_only]

    def any_display_supports_edr(self) -> bool:
        if self._supports_edr is not None:
            return self._supports_edr
        return any(h.potential > 1.0 for h in self.displays.values())

    def read_transfer_table(self, display_id: int) -> np.ndarray | None:
        if display_id not in self.displays:
            return None
        if display_id not in self.tables:
            self.tables[display_id] = GammaTable.identity().values
        return self.tables[display_id].copy()

    def write_transfer_table(self, display_id: int, table: np.ndarray) -> None:
        if display_id in self.failing or display_id not in self.displays:
            raise GainApplyError(display_id, "display unavailable")
        self.writes.append((display_id, np.asarray(table, dtype=np.float32)))

    def last_gain(self, display_id: int) -> float | None:
        """Gain implied by the most recent write (top of the table)."""
        for written_id, table in reversed(self.writes):
            if written_id == display_id:
                return float(table[0, -1])
        return None

    def restore_color_settings(self) -> None:
        self.restores += 1

    def set_overlay(self, fullsize: bool, fps: int) -> None:
        self.overlay = (fullsize, fps)

    def pulse_overlay(self) -> None:
        self.pulses += 1

    def nudge(self) -> None:
        self.nudges += 1


BUILTIN_DISPLAY_BACKENDS: dict[str, type] = {"static": StaticDisplayBackend}


def available_display_backends() -> dict[str, type]:
    """Built-in display backends plus those advertised by plugins."""
    backends = dict(BUILTIN_DISPLAY_BACKENDS)
    for cls in load_display_plugins():
        backends[getattr(cls, "name", cls.__name__)] = cls
    return backends


def get_display_backend(name: str | None = None) -> DisplayBackend:
    """
    Instantiate a display backend by name.

    Without a name, the first plugin backend wins; the static backend is
    the fallback.
    """
    backends = available_display_backends()
    if name:
        if name not in backends:
            raise KeyError(f"Unknown display backend: {name}")
        return backends[name]()
    for key, cls in backends.items():
        if key != "static":
            try:
                return cls()
            except Exception:
                continue
    return StaticDisplayBackend()
