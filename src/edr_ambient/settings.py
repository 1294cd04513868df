"""Persisted controller settings with clamped ranges."""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from .calibration import CalibrationAnchor, LuxCalibrator
from .profiles import DEFAULT_PROFILE, PROFILES
from .rolling_max import BlendConfig

CONFIG_FILE = Path.home() / ".config/edr-ambient/settings.json"

# (min, max) per numeric setting
RANGES: dict[str, tuple[float, float]] = {
    "user_percent": (0.0, 100.0),
    "sample_hz": (0.5, 60.0),
    "guard_factor": (0.70, 0.98),
    "safety_margin": (0.5, 1.0),
    "entry_min_percent": (0.0, 10.0),
    "entry_envelope_seconds": (0.1, 5.0),
    "max_percent_per_second": (5.0, 200.0),
    "min_on_seconds": (0.0, 10.0),
    "min_off_seconds": (0.0, 10.0),
    "sun_dx_trigger": (100.0, 2047.0),
    "relative_blend_max": (0.0, 0.5),
    "relative_exponent": (0.5, 3.0),
    "lux_scale": (0.1, 10.0),
    "lux_gamma": (0.5, 2.0),
    "hdr_duck_percent": (0.0, 100.0),
    "hdr_fade_seconds": (0.05, 2.0),
    "overlay_fps": (5, 120),
}


def _clamp(name: str, value: Any, default: Any) -> Any:
    lo, hi = RANGES[name]
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    number = max(lo, min(hi, number))
    return int(round(number)) if isinstance(default, int) else number


@dataclass
class Settings:
    """
    Scalar settings for the controller.

    Numeric fields are clamped to RANGES on construction and on every
    update(); unknown profile names fall back to the default profile.
    """

    enabled: bool = False
    auto_enabled: bool = False
    user_percent: float = 100.0
    profile: str = DEFAULT_PROFILE
    sample_hz: float = 2.0

    # Cap model
    guard_enabled: bool = False
    guard_factor: float = 0.90
    safety_margin: float = 0.98

    # Auto-control tuning
    entry_min_percent: float = 1.0
    entry_envelope_seconds: float = 1.5
    max_percent_per_second: float = 50.0
    min_on_seconds: float = 1.5
    min_off_seconds: float = 1.5

    # ALS modeling
    sun_dx_trigger: float = 1200.0
    relative_blend_max: float = 0.25
    relative_exponent: float = 1.45
    lux_scale: float = 1.0
    lux_gamma: float = 1.0

    # HDR-aware duck
    hdr_duck_enabled: bool = True
    hdr_duck_percent: float = 0.0
    hdr_fade_seconds: float = 0.25

    # Overlay that keeps EDR engaged
    overlay_fullsize: bool = True
    overlay_fps: int = 30

    calibrator: LuxCalibrator = field(default_factory=LuxCalibrator)
    anchor_a: CalibrationAnchor | None = None
    anchor_b: CalibrationAnchor | None = None

    def __post_init__(self) -> None:
        defaults = Settings.__dataclass_fields__
        for name in RANGES:
            setattr(self, name, _clamp(name, getattr(self, name), defaults[name].default))
        if self.profile not in PROFILES:
            self.profile = DEFAULT_PROFILE

    def update(self, **changes: Any) -> Settings:
        """Apply changes in place, clamping each value. Unknown keys raise."""
        known = {f.name for f in fields(self)}
        for name, value in changes.items():
            if name not in known:
                raise KeyError(f"Unknown setting: {name}")
            if name in RANGES:
                value = _clamp(name, value, getattr(self, name))
            elif name == "profile":
                value = value if value in PROFILES else self.profile
            setattr(self, name, value)
        return self

    def set_guard(self, enabled: bool, factor: float | None = None) -> None:
        self.guard_enabled = bool(enabled)
        if factor is not None:
            self.update(guard_factor=factor)

    @property
    def effective_guard(self) -> float:
        return self.guard_factor if self.guard_enabled else 1.0

    def blend_config(self) -> BlendConfig:
        return BlendConfig(
            sun_dx_trigger=self.sun_dx_trigger,
            relative_blend_max=self.relative_blend_max,
            relative_exponent=self.relative_exponent,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["calibrator"] = self.calibrator.to_dict()
        data["anchor_a"] = self.anchor_a.to_dict() if self.anchor_a else None
        data["anchor_b"] = self.anchor_b.to_dict() if self.anchor_b else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        known = {f.name for f in fields(cls)} - {"calibrator", "anchor_a", "anchor_b"}
        kwargs = {k: v for k, v in data.items() if k in known}
        settings = cls(**kwargs)
        settings.calibrator = LuxCalibrator.from_dict(data.get("calibrator"))
        for key in ("anchor_a", "anchor_b"):
            raw = data.get(key)
            if isinstance(raw, dict):
                try:
                    setattr(settings, key, CalibrationAnchor.from_dict(raw))
                except (KeyError, TypeError, ValueError):
                    pass
        return settings

    @classmethod
    def load(cls, path: Path | None = None) -> Settings:
        """Load from disk; a missing or corrupt file yields defaults."""
        path = path or CONFIG_FILE
        if not path.exists():
            return cls()
        try:
            with open(path) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                return cls()
            return cls.from_dict(data)
        except Exception:
            return cls()

    def save(self, path: Path | None = None) -> None:
        path = path or CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
