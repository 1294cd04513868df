"""Foreground controller loop for edr-ambient.

Builds the single Controller from the persisted settings and runs its
scheduler until interrupted. Output is pretty on a terminal and JSON lines
when piped (launchd/systemd capture the latter).
"""

from __future__ import annotations

import subprocess
from collections.abc import Callable

from .controller import Controller
from .display import DisplayBackend, get_display_backend
from .logs import log
from .sensors.loader import load_builtin_backends, load_plugins
from .sensors.protocol import SensorBackend
from .sensors.registry import SensorRegistry
from .settings import CONFIG_FILE, Settings


def resolve_sensor(name: str | None = None) -> SensorBackend | None:
    """Pick a sensor backend by registry name, or the best one for this platform."""
    load_builtin_backends()
    load_plugins()
    if name:
        return SensorRegistry.get_by_name(name)
    return SensorRegistry.get_for_platform()


def command_probe(command: str, timeout: float = 2.0) -> Callable[[], bool]:
    """
    HDR-content probe backed by a shell command.

    The command exiting 0 means HDR content is likely on screen; anything
    else (including a timeout) means it is not.
    """

    def probe() -> bool:
        try:
            result = subprocess.run(command, shell=True, capture_output=True, timeout=timeout)
        except (subprocess.TimeoutExpired, OSError):
            return False
        return result.returncode == 0

    return probe


def build_controller(
    sensor: SensorBackend,
    display: DisplayBackend,
    hz: float | None = None,
    hdr_command: str | None = None,
    verbose: bool = False,
) -> Controller:
    settings = Settings.load()
    if hz is not None:
        settings.update(sample_hz=hz)
    return Controller(
        sensor,
        display,
        settings=settings,
        hdr_probe=command_probe(hdr_command) if hdr_command else None,
        settings_path=CONFIG_FILE,
        verbose=verbose,
    )


def run_daemon(
    hz: float | None = None,
    sensor_name: str | None = None,
    display_name: str | None = None,
    hdr_command: str | None = None,
    verbose: bool = False,
) -> int:
    """Run the controller until interrupted.

    Auto-detects output format:
    - TTY: Pretty human-readable output with colors
    - Piped/redirected: Loki-style JSON lines

    Returns a process exit code.
    """
    sensor = resolve_sensor(sensor_name)
    if sensor is None:
        log("error", "sensor_unavailable", error=f"no ambient light sensor backend ({sensor_name or 'auto'})")
        return 1

    try:
        display = get_display_backend(display_name)
    except KeyError as e:
        log("error", "display_unavailable", error=str(e))
        return 1

    controller = build_controller(sensor, display, hz=hz, hdr_command=hdr_command, verbose=verbose)
    log(
        "info",
        "daemon_started",
        sensor=sensor.name,
        display=display.name,
        hz=controller.sampler.sample_hz,
        profile=controller.settings.profile,
        auto=controller.settings.auto_enabled,
    )

    controller.start()
    try:
        controller.scheduler.run_forever()
    except KeyboardInterrupt:
        pass
    finally:
        controller.stop()
        log("info", "daemon_stopped")
    return 0
