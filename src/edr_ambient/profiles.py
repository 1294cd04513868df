"""Auto-control sensitivity presets."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AutoProfile:
    """Thresholds, dwell and smoothing for one sensitivity preset."""

    name: str
    on_lux: float  # enable EDR at or above
    off_lux: float  # disable EDR at or below
    on_seconds: float  # dwell before turning on
    off_seconds: float  # dwell before turning off (longer, passing clouds)
    ramp_step: float  # fraction toward target per sample
    filter_tau: float  # EMA time constant, seconds
    filter_mult: float  # EMA alpha multiplier

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


PROFILES: dict[str, AutoProfile] = {
    # Trips at a bright window / light shade
    "aggressive": AutoProfile(
        name="aggressive",
        on_lux=15_000.0,
        off_lux=10_000.0,
        on_seconds=1.0,
        off_seconds=2.0,
        ramp_step=0.40,
        filter_tau=1.8,
        filter_mult=1.5,
    ),
    # Shade → outdoor
    "normal": AutoProfile(
        name="normal",
        on_lux=25_000.0,
        off_lux=18_000.0,
        on_seconds=2.0,
        off_seconds=4.0,
        ramp_step=0.25,
        filter_tau=3.5,
        filter_mult=1.0,
    ),
    # Strong daylight only, extra calm indoors
    "conservative": AutoProfile(
        name="conservative",
        on_lux=35_000.0,
        off_lux=25_000.0,
        on_seconds=3.0,
        off_seconds=6.0,
        ramp_step=0.15,
        filter_tau=6.0,
        filter_mult=0.8,
    ),
}

DEFAULT_PROFILE = "normal"


def get_profile(name: str | None) -> AutoProfile:
    """Look up a preset by name, falling back to the default."""
    if name is None:
        return PROFILES[DEFAULT_PROFILE]
    return PROFILES.get(name.strip().lower(), PROFILES[DEFAULT_PROFILE])
