"""Structured log lines: pretty on a terminal, Loki-style JSON otherwise."""

from __future__ import annotations

import json
import sys
from datetime import datetime

from rich.console import Console

# Auto-detect if running in interactive terminal
IS_TTY = sys.stdout.isatty()

_console: Console | None = None


def _get_console() -> Console:
    global _console
    if _console is None:
        _console = Console()
    return _console


def _log_json(level: str, msg: str, **kwargs) -> None:
    """Output a JSON log line (Loki-style)."""
    entry = {"ts": datetime.now().isoformat(), "level": level, "msg": msg, **kwargs}
    print(json.dumps(entry, default=str), flush=True)


def _fmt(value) -> str:
    if isinstance(value, float):
        return f"{value:.3f}"
    return str(value)


def _log_pretty(level: str, msg: str, **kwargs) -> None:
    """Output a human-readable log line with rich formatting."""
    console = _get_console()

    ts = datetime.now().strftime("%H:%M:%S")
    level_colors = {"info": "green", "error": "red", "warn": "yellow", "debug": "blue"}
    color = level_colors.get(level, "white")

    if msg == "daemon_started":
        console.print(
            f"[dim]{ts}[/] [bold {color}]daemon started[/] sensor={kwargs.get('sensor', '?')} "
            f"display={kwargs.get('display', '?')} hz={kwargs.get('hz', '?')}"
        )
    elif msg == "sample":
        lux = kwargs.get("lux")
        lux_str = f"{lux:.0f}" if lux is not None else "?"
        console.print(
            f"[dim]{ts}[/] [bold]{lux_str} lx[/] [dim]x={_fmt(kwargs.get('x', '?'))} "
            f"w={_fmt(kwargs.get('w', 0.0))}[/] [cyan]{kwargs.get('percent', 0):.0f}%[/]"
        )
    elif msg in ("edr_enabled", "edr_disabled"):
        state = "on" if msg == "edr_enabled" else "off"
        console.print(f"[dim]{ts}[/] [bold {color}]EDR {state}[/] lux={_fmt(kwargs.get('lux', '?'))}")
    elif level == "error":
        console.print(f"[dim]{ts}[/] [red]{msg}[/] {kwargs.get('error', '')}")
    else:
        extra = " ".join(f"{k}={_fmt(v)}" for k, v in kwargs.items())
        console.print(f"[dim]{ts}[/] [{color}]{msg}[/] {extra}")


def log(level: str, msg: str, **kwargs) -> None:
    """Log a message - pretty for TTY, JSON for pipes."""
    if IS_TTY:
        _log_pretty(level, msg, **kwargs)
    else:
        _log_json(level, msg, **kwargs)
