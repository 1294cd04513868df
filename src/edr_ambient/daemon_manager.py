"""
Login-service management for the edr-ambient controller loop.

- status: Check if the service is running
- start: Install the launchd agent / systemd user unit and start it
- stop: Stop the service
- restart: Restart the service
- logs: Tail the service logs
"""

from __future__ import annotations

import platform
import shutil
import subprocess
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path

from .settings import CONFIG_FILE

MACOS_PLIST = Path.home() / "Library/LaunchAgents/com.edr-ambient.daemon.plist"
LINUX_SERVICE = Path.home() / ".config/systemd/user/edr-ambient.service"
LOG_FILE = Path.home() / ".local/share/edr-ambient/daemon.log"
LABEL = "com.edr-ambient.daemon"
UNIT = "edr-ambient"


def get_platform() -> str:
    """Return 'Darwin' for macOS, 'Linux' for Linux."""
    return platform.system()


def _version() -> str:
    try:
        return get_version("edr-ambient")
    except PackageNotFoundError:
        return "unknown"


def _find_binary() -> str | None:
    """Find the edr-ambient binary path."""
    binary = shutil.which("edr-ambient")
    if binary:
        return binary

    candidates = [
        Path.home() / ".local/bin/edr-ambient",
        Path("/usr/local/bin/edr-ambient"),
    ]
    for path in candidates:
        if path.exists() and path.is_file():
            return str(path)

    return None


def _daemon_args(binary_path: str, hz: float | None) -> list[str]:
    args = [binary_path, "--daemon"]
    if hz is not None:
        args += ["--hz", f"{hz:g}"]
    return args


def generate_macos_plist(binary_path: str, hz: float | None = None) -> str:
    """Generate macOS launchd plist content."""
    program = "\n".join(f"        <string>{arg}</string>" for arg in _daemon_args(binary_path, hz))
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
    <key>Label</key>
    <string>{LABEL}</string>
    <key>ProgramArguments</key>
    <array>
{program}
    </array>
    <key>RunAtLoad</key>
    <true/>
    <key>KeepAlive</key>
    <true/>
    <key>ProcessType</key>
    <string>Interactive</string>
    <key>StandardOutPath</key>
    <string>{LOG_FILE}</string>
    <key>StandardErrorPath</key>
    <string>{LOG_FILE}</string>
</dict>
</plist>
"""


def generate_linux_service(binary_path: str, hz: float | None = None) -> str:
    """Generate Linux systemd user unit content."""
    return f"""[Unit]
Description=EDR ambient brightness controller
After=graphical-session.target

[Service]
Type=simple
ExecStart={" ".join(_daemon_args(binary_path, hz))}
Restart=always
RestartSec=5

[Install]
WantedBy=default.target
"""


def _run(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(args, capture_output=True, text=True)


def _fail(message: str) -> None:
    print(message, file=sys.stderr)
    sys.exit(1)


def daemon_status() -> None:
    """Show service status."""
    print(f"Version: {_version()}")
    print(f"Settings: {CONFIG_FILE}")
    if get_platform() == "Darwin":
        _macos_status()
    else:
        _linux_status()


def _macos_status() -> None:
    result = _run(["launchctl", "list"])
    for line in result.stdout.splitlines():
        if LABEL in line:
            parts = line.split()
            if len(parts) >= 3:
                pid, status_code = parts[0], parts[1]
                if pid == "-":
                    print(f"Daemon: stopped (exit code: {status_code})")
                else:
                    print(f"Daemon: running (PID: {pid})")
                return

    state = "not installed" if not MACOS_PLIST.exists() else "not loaded"
    print(f"Daemon: {state}")
    print("Run: edr-ambient --start")


def _linux_status() -> None:
    if not LINUX_SERVICE.exists():
        print("Daemon: not installed")
        print("Run: edr-ambient --start")
        return

    status = _run(["systemctl", "--user", "is-active", UNIT]).stdout.strip()
    if status == "active":
        pid = _run(["systemctl", "--user", "show", UNIT, "--property=MainPID"]).stdout.strip()
        print(f"Daemon: running (PID: {pid.replace('MainPID=', '')})")
    else:
        print(f"Daemon: {status}")


def daemon_start(hz: float | None = None) -> None:
    """Install the service definition and start it."""
    binary = _find_binary()
    if not binary:
        _fail("Error: edr-ambient binary not found\nMake sure edr-ambient is installed and in your PATH")

    if get_platform() == "Darwin":
        MACOS_PLIST.parent.mkdir(parents=True, exist_ok=True)
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        MACOS_PLIST.write_text(generate_macos_plist(binary, hz))
        _run(["launchctl", "unload", str(MACOS_PLIST)])  # ignore errors if not loaded
        result = _run(["launchctl", "load", str(MACOS_PLIST)])
        logs = str(LOG_FILE)
    else:
        LINUX_SERVICE.parent.mkdir(parents=True, exist_ok=True)
        LINUX_SERVICE.write_text(generate_linux_service(binary, hz))
        subprocess.run(["systemctl", "--user", "daemon-reload"], check=True)
        subprocess.run(["systemctl", "--user", "enable", UNIT], check=True)
        result = _run(["systemctl", "--user", "start", UNIT])
        logs = f"journalctl --user -u {UNIT} -f"

    if result.returncode != 0:
        _fail(f"Error starting daemon: {result.stderr}")

    print("Daemon started" + (f" (hz: {hz:g})" if hz is not None else ""))
    print(f"Logs: {logs}")


def daemon_stop() -> None:
    """Stop the service."""
    if get_platform() == "Darwin":
        if not MACOS_PLIST.exists():
            print("Daemon not installed")
            return
        result = _run(["launchctl", "unload", str(MACOS_PLIST)])
        if result.returncode != 0 and "Could not find" not in result.stderr:
            _fail(f"Error stopping daemon: {result.stderr}")
    else:
        result = _run(["systemctl", "--user", "stop", UNIT])
        if result.returncode != 0:
            if "not loaded" in result.stderr.lower():
                print("Daemon not running")
                return
            _fail(f"Error stopping daemon: {result.stderr}")

    print("Daemon stopped")


def daemon_restart() -> None:
    """Restart the service."""
    if get_platform() == "Darwin":
        if not MACOS_PLIST.exists():
            _fail("Daemon not installed. Use --start to install and start.")
        _run(["launchctl", "unload", str(MACOS_PLIST)])
        result = _run(["launchctl", "load", str(MACOS_PLIST)])
    else:
        result = _run(["systemctl", "--user", "restart", UNIT])

    if result.returncode != 0:
        _fail(f"Error restarting daemon: {result.stderr}")
    print("Daemon restarted")


def daemon_logs() -> None:
    """Tail service logs (Ctrl+C to exit)."""
    if get_platform() == "Darwin":
        if not LOG_FILE.exists():
            print(f"No log file found at {LOG_FILE}")
            print("The daemon may not have run yet.")
            return
        args = ["tail", "-f", str(LOG_FILE)]
    else:
        args = ["journalctl", "--user", "-u", UNIT, "-f"]

    print("Tailing logs (Ctrl+C to exit)...")
    print()
    try:
        subprocess.run(args)
    except KeyboardInterrupt:
        print()  # Clean exit
