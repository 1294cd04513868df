"""
edr-ambient - Ambient light-driven EDR brightness controller.

Reads the display's ambient light sensor and lifts brightness past SDR white
through the EDR path when it gets bright enough outside to need it.

Usage:
    edr-ambient --daemon            # Run the controller loop in the foreground
    edr-ambient --status            # Show settings, cap and current reading
    edr-ambient --read              # Stream sensor samples
    edr-ambient --sensors           # Show available sensor backends
    edr-ambient --auto on           # Let ambient light toggle EDR
    edr-ambient --percent 80        # Set brightness intent
    edr-ambient --profile aggressive
    edr-ambient --capture-dark      # Cover the sensor, then run this
    edr-ambient --anchor a 500      # Pair current reading with a lux meter value
    edr-ambient --fit               # Fit calibration through anchors a and b
"""

from __future__ import annotations

import argparse
import json
import sys
import time

from rich import box
from rich.console import Console
from rich.table import Table

from .controller import Controller
from .display import get_display_backend
from .profiles import PROFILES, get_profile
from .sampler import ALSSampler
from .sensors import discover_backends
from .settings import CONFIG_FILE, Settings

CALIBRATION_SAMPLES = 8


def parse_switch(value: str) -> bool:
    value = value.strip().lower()
    if value in ("on", "true", "yes", "1"):
        return True
    if value in ("off", "false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected on/off, got {value!r}")


def _resolve_sensor(name: str | None):
    from .daemon import resolve_sensor

    sensor = resolve_sensor(name)
    if sensor is None:
        print("Error: no ambient light sensor available", file=sys.stderr)
        print("Run: edr-ambient --sensors", file=sys.stderr)
        sys.exit(1)
    return sensor


def _controller(args, settings: Settings) -> Controller:
    sensor = _resolve_sensor(args.sensor)
    try:
        display = get_display_backend(args.display)
    except KeyError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    controller = Controller(sensor, display, settings=settings, settings_path=CONFIG_FILE)
    controller.refresh_cap()
    return controller


def _warm_up(controller: Controller, samples: int = CALIBRATION_SAMPLES) -> None:
    """Take a few samples so the smoothed reading settles."""
    period = 1.0 / controller.sampler.sample_hz
    for _ in range(samples):
        controller.sampler.tick(time.monotonic())
        time.sleep(period)


def show_sensors():
    """Display available sensor backends."""
    console = Console()
    backends = discover_backends()

    if not backends:
        console.print("[yellow]No sensor backends found for this platform.[/]")
        return

    table = Table(title="Sensor backends", box=box.SIMPLE, header_style="bold cyan")
    table.add_column("name", style="bold")
    table.add_column("description")
    table.add_column("platform")
    table.add_column("status")
    table.add_column("reading")
    table.add_column("capabilities", style="dim")
    for backend in backends:
        status = "[green]available[/]" if backend["available"] else "[red]not available[/]"
        table.add_row(
            backend["name"],
            backend["display_name"],
            backend["platform"],
            status,
            backend["reading"] or "-",
            ", ".join(backend["capabilities"]),
        )
    console.print(table)


def stream_readings(args, settings: Settings) -> None:
    """Print filtered readings until interrupted (or --count samples)."""
    console = Console()
    sensor = _resolve_sensor(args.sensor)
    sampler = ALSSampler(
        sensor,
        calibrator=settings.calibrator,
        profile=get_profile(settings.profile),
        blend=settings.blend_config(),
        sample_hz=settings.sample_hz,
        lux_scale=settings.lux_scale,
        lux_gamma=settings.lux_gamma,
        now=time.monotonic(),
    )
    period = 1.0 / sampler.sample_hz
    taken = 0
    try:
        while args.count is None or taken < args.count:
            estimate = sampler.tick(time.monotonic())
            taken += 1
            if args.json:
                print(json.dumps(sampler.diagnostics(), default=str), flush=True)
            elif estimate is None:
                kind = sampler.last_sample.kind.value if sampler.last_sample else "?"
                console.print(f"[yellow]{kind}[/] [dim]rebinds={sampler.rebind_count}[/]")
            else:
                synth = " [magenta]synth[/]" if estimate.synthesized else ""
                console.print(
                    f"[bold]{estimate.lux:8.0f} lx[/] [dim]x={estimate.decoded_x:8.3f} dx={estimate.dx:8.3f} "
                    f"fit={estimate.lfit:8.0f} rel={estimate.lrel:8.0f} w={estimate.blend_weight:.2f}[/]{synth}"
                )
            time.sleep(period)
    except KeyboardInterrupt:
        pass


def show_status(args, settings: Settings) -> None:
    controller = _controller(args, settings)
    _warm_up(controller, samples=2)
    snap = controller.snapshot()

    if args.json:
        data = {
            "settings": settings.to_dict(),
            "enabled": snap.enabled,
            "auto_enabled": snap.auto_enabled,
            "profile": snap.profile,
            "user_percent": snap.user_percent,
            "factor": snap.factor,
            "lux": controller.sampler.last_estimate.lux if controller.sampler.last_estimate else None,
            "diagnostics": snap.diagnostics,
        }
        print(json.dumps(data, indent=2, default=str))
        return

    console = Console()
    cap = snap.cap
    estimate = controller.sampler.last_estimate

    table = Table(title="edr-ambient", box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_column("key", style="cyan", no_wrap=True)
    table.add_column("value")
    table.add_row("EDR", "[green]on[/]" if settings.enabled else "[dim]off[/]")
    table.add_row("Auto", f"{'on' if settings.auto_enabled else 'off'} ({PROFILES[settings.profile].display_name})")
    table.add_row("Brightness", f"{snap.user_percent:.0f}% → factor {snap.factor:.3f}")
    clamped = " [yellow](clamped)[/]" if cap.raw_cap > cap.cap + 0.0005 else ""
    table.add_row("Cap", f"{cap.cap:.3f} raw={cap.raw_cap:.3f} ratio={cap.best_ratio:.2f}{clamped}")
    table.add_row("Guard", f"{'on' if settings.guard_enabled else 'off'} ({settings.guard_factor:.2f})")
    table.add_row("EDR support", snap.edr_support)
    if estimate is not None:
        table.add_row("Ambient", f"{estimate.lux:.0f} lux (x={estimate.decoded_x:.3f})")
    else:
        table.add_row("Ambient", "[red]unavailable[/]")
    cal = settings.calibrator
    table.add_row("Calibration", f"a={cal.a:.4f} p={cal.p:.4f} x_dark={cal.x_dark:.4f}")
    for key in ("a", "b"):
        anchor = getattr(settings, f"anchor_{key}")
        if anchor:
            table.add_row(f"Anchor {key}", f"{anchor.lux:.0f} lux @ dx={anchor.dx:.3f}")
    table.add_row("Settings", f"[dim]{CONFIG_FILE}[/]")
    console.print(table)


def run_calibration(args, settings: Settings) -> None:
    if args.reset_calibration:
        settings.calibrator.reset()
        settings.anchor_a = None
        settings.anchor_b = None
        settings.save()
        print("Calibration reset to defaults")
        return

    controller = _controller(args, settings)
    _warm_up(controller)

    if args.capture_dark:
        if controller.capture_dark():
            print(f"Dark baseline: x={settings.calibrator.x_dark:.4f}")
        else:
            print("Error: no valid sensor reading", file=sys.stderr)
            sys.exit(1)

    if args.anchor:
        which, lux = args.anchor
        try:
            lux_value = float(lux)
        except ValueError:
            print(f"Error: invalid lux value {lux!r}", file=sys.stderr)
            sys.exit(1)
        anchor = controller.set_anchor(which, lux_value)
        if anchor is None:
            print("Error: no valid sensor reading", file=sys.stderr)
            sys.exit(1)
        print(f"Anchor {which}: {anchor.lux:.0f} lux @ dx={anchor.dx:.4f}")

    if args.fit:
        if controller.fit_calibration():
            cal = settings.calibrator
            print(f"Fitted: a={cal.a:.4f} p={cal.p:.4f}")
        else:
            print("Error: need two distinct anchors (--anchor a LUX, --anchor b LUX)", file=sys.stderr)
            sys.exit(1)


def main():
    parser = argparse.ArgumentParser(description="Ambient light-driven EDR brightness controller")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--daemon", action="store_true", help="Run the controller loop")
    parser.add_argument("--hz", type=float, help="Sensor sample rate (0.5-60)")
    parser.add_argument("--sensor", type=str, metavar="NAME", help="Sensor backend to use")
    parser.add_argument("--display", type=str, metavar="NAME", help="Display backend to use")
    parser.add_argument("--hdr-command", type=str, metavar="CMD", help="Command that exits 0 while HDR content is on screen")
    parser.add_argument("--verbose", action="store_true", help="Log every sample in daemon mode")
    parser.add_argument("--sensors", action="store_true", help="Show available sensor backends")
    parser.add_argument("--read", action="store_true", help="Stream sensor readings")
    parser.add_argument("--count", type=int, help="Number of samples for --read")
    parser.add_argument("--status", action="store_true", help="Show settings, cap and current reading")
    # Settings
    parser.add_argument("--profile", choices=sorted(PROFILES), help="Auto-control sensitivity")
    parser.add_argument("--auto", type=parse_switch, metavar="on|off", help="Automatic EDR toggling")
    parser.add_argument("--edr", type=parse_switch, metavar="on|off", help="EDR on/off at next start")
    parser.add_argument("--percent", type=float, help="Brightness intent, 0-100")
    parser.add_argument("--guard", type=parse_switch, metavar="on|off", help="Scale the cap down by the guard factor")
    parser.add_argument("--guard-factor", type=float, help="Guard factor (0.70-0.98)")
    # Calibration
    parser.add_argument("--capture-dark", action="store_true", help="Use the current reading as the dark baseline")
    parser.add_argument("--anchor", nargs=2, metavar=("{a,b}", "LUX"), help="Pair current reading with a lux value")
    parser.add_argument("--fit", action="store_true", help="Fit calibration through anchors a and b")
    parser.add_argument("--reset-calibration", action="store_true", help="Restore default calibration")
    # Service management
    parser.add_argument("--service-status", action="store_true", help="Show login service status")
    parser.add_argument("--start", action="store_true", help="Install and start the login service")
    parser.add_argument("--stop", action="store_true", help="Stop the login service")
    parser.add_argument("--restart", action="store_true", help="Restart the login service")
    parser.add_argument("--logs", action="store_true", help="Tail service logs")
    args = parser.parse_args()

    if args.anchor and args.anchor[0] not in ("a", "b"):
        parser.error("--anchor expects 'a' or 'b' as its first value")

    # Service management commands
    if args.service_status:
        from .daemon_manager import daemon_status
        daemon_status()
        return
    if args.start:
        from .daemon_manager import daemon_start
        daemon_start(hz=args.hz)
        return
    if args.stop:
        from .daemon_manager import daemon_stop
        daemon_stop()
        return
    if args.restart:
        from .daemon_manager import daemon_restart
        daemon_restart()
        return
    if args.logs:
        from .daemon_manager import daemon_logs
        daemon_logs()
        return

    if args.daemon:
        from .daemon import run_daemon
        sys.exit(
            run_daemon(
                hz=args.hz,
                sensor_name=args.sensor,
                display_name=args.display,
                hdr_command=args.hdr_command,
                verbose=args.verbose,
            )
        )

    if args.sensors:
        show_sensors()
        return

    settings = Settings.load()

    # Settings changes
    changes = {}
    if args.profile:
        changes["profile"] = args.profile
    if args.auto is not None:
        changes["auto_enabled"] = args.auto
    if args.edr is not None:
        changes["enabled"] = args.edr
    if args.percent is not None:
        changes["user_percent"] = args.percent
    if args.hz is not None:
        changes["sample_hz"] = args.hz
    guard_changed = args.guard is not None or args.guard_factor is not None
    if changes or guard_changed:
        settings.update(**changes)
        if guard_changed:
            enabled = settings.guard_enabled if args.guard is None else args.guard
            settings.set_guard(enabled, args.guard_factor)
            changes["guard"] = enabled
        settings.save()
        print(f"Saved {', '.join(sorted(changes))} to {CONFIG_FILE}")
        print("Restart the daemon to apply: edr-ambient --restart")

    if args.capture_dark or args.anchor or args.fit or args.reset_calibration:
        run_calibration(args, settings)
        return

    if args.read:
        stream_readings(args, settings)
        return

    if args.status or not changes:
        show_status(args, settings)


if __name__ == "__main__":
    main()
