"""macOS Ambient Light Sensor backend."""

from __future__ import annotations

import plistlib
import subprocess
import sys
from typing import Any

from ..protocol import SensorBackend, SensorCapability
from ..registry import SensorRegistry

FRAMEBUFFER_CLASS = "IOMobileFramebufferShim"
REGISTER_KEY = "AmbientBrightness"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "true", "1")
    return bool(value)


def _query_ioreg(args: list[str]) -> list[dict]:
    """Run ioreg in archive mode and return the matched entries."""
    result = subprocess.run(
        ["ioreg", "-a", *args],
        capture_output=True,
        timeout=5,
    )
    if result.returncode != 0 or not result.stdout.strip():
        return []
    data = plistlib.loads(result.stdout)
    if isinstance(data, dict):
        data = [data]
    return [entry for entry in data if isinstance(entry, dict)]


def _entry_id(entry: dict) -> str:
    return str(entry.get("IORegistryEntryID") or entry.get("IONameMatched") or entry.get("IOName") or "unknown")


def _rank(entry: dict) -> int | None:
    """
    Rank a framebuffer entry as an ALS source.

    internal+active with ALS channels, else internal+active, else any active
    with ALS channels. Lower is better; None means unusable.
    """
    if REGISTER_KEY not in entry:
        return None
    internal = not _as_bool(entry.get("external", False))
    power = entry.get("IOPowerManagement") or {}
    active = _as_bool(entry.get("NormalModeActive", False)) and int(power.get("CurrentPowerState", 0)) >= 1
    has_als = int(entry.get("ALSSChannelCount", 0) or 0) > 0

    if internal and active and has_als:
        return 0
    if internal and active:
        return 1
    if active and has_als:
        return 2
    return 3


@SensorRegistry.register
class MacOSALSBackend(SensorBackend):
    """
    macOS Ambient Light Sensor backend.

    Reads the undocumented AmbientBrightness property from the display
    framebuffer in the IORegistry via `ioreg`. Binds to the best framebuffer
    entry and re-scans on rebind.
    """

    def __init__(self):
        self._bound_id: str | None = None
        self._probe_error: str | None = None

    def _probe(self) -> list[dict]:
        try:
            entries = _query_ioreg(["-r", "-c", FRAMEBUFFER_CLASS])
            if not any(REGISTER_KEY in e for e in entries):
                # Model/OS resilient fallback: any entry exposing the key
                entries = _query_ioreg(["-r", "-k", REGISTER_KEY])
            self._probe_error = None
            return entries
        except (subprocess.TimeoutExpired, FileNotFoundError, plistlib.InvalidFileException, ValueError) as e:
            self._probe_error = str(e)
            return []

    def _bind(self) -> bool:
        ranked = [(r, e) for e in self._probe() if (r := _rank(e)) is not None]
        if not ranked:
            self._bound_id = None
            return False
        ranked.sort(key=lambda pair: pair[0])
        self._bound_id = _entry_id(ranked[0][1])
        return True

    @property
    def name(self) -> str:
        return "macOS ALS"

    @property
    def platform(self) -> str:
        return "darwin"

    @property
    def capabilities(self) -> set[SensorCapability]:
        return {SensorCapability.AMBIENT_REGISTER, SensorCapability.REBIND}

    def is_available(self) -> bool:
        if sys.platform != "darwin":
            return False
        return self._bound_id is not None or self._bind()

    def read_register(self) -> Any:
        if self._bound_id is None and not self._bind():
            return None
        for entry in self._probe():
            if _entry_id(entry) == self._bound_id:
                return entry.get(REGISTER_KEY)
        return None

    def rebind(self) -> bool:
        return self._bind()
