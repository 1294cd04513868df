"""
Hysteretic auto-control of the EDR path.

Two states, DISABLED and ENABLED. Each sample updates two saturating dwell
counters:

- above_count climbs while lux ≥ on_lux, otherwise decays toward 0
- below_count climbs while lux ≤ off_lux, otherwise decays toward 0

A transition fires only when its counter reaches the dwell requirement
(sample_hz · seconds), no manual-override grace window is active, and the
minimum time in the current state has elapsed. The gap between on_lux and
off_lux keeps passing clouds from flapping the overlay.

While ENABLED the brightness percent follows a smoothstep curve of lux,
bounded by an entry envelope that rises from the entry minimum to 100% over
a few seconds after enabling, and slope-limited so no single sample jumps.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .profiles import AutoProfile

MANUAL_GRACE_SECONDS = 15.0
CURVE_SPAN = 10.0  # percent reaches 100 at on_lux · CURVE_SPAN


class ControlState(Enum):
    DISABLED = "disabled"
    ENABLED = "enabled"


class Transition(Enum):
    ENABLE = "enable"
    DISABLE = "disable"


@dataclass
class ControllerState:
    """Runtime state of the auto controller."""

    above_count: int = 0
    below_count: int = 0
    grace_until: float | None = None
    edr_enabled_at: float | None = None
    edr_disabled_at: float | None = None


@dataclass
class RampConfig:
    """Entry envelope, slope limit and minimum dwell per state."""

    entry_min_percent: float = 1.0
    entry_envelope_seconds: float = 1.5
    max_percent_per_second: float = 50.0
    min_on_seconds: float = 1.5
    min_off_seconds: float = 1.5


@dataclass(frozen=True)
class AutoDecision:
    """Result of one evaluation: an optional transition and the percent to apply."""

    state: ControlState
    transition: Transition | None = None
    percent: float | None = None  # None: leave the current percent alone
    target_percent: float = 0.0


def smoothstep(t: float) -> float:
    t = max(0.0, min(1.0, t))
    return t * t * (3.0 - 2.0 * t)


def percent_for_lux(lux: float, on_lux: float, floor_percent: float) -> float:
    """
    Target percent for a lux reading.

    floor_percent at on_lux, easing up to 100% at CURVE_SPAN · on_lux.
    """
    span = on_lux * (CURVE_SPAN - 1.0)
    t = (lux - on_lux) / span if span > 0 else 1.0
    return floor_percent + (100.0 - floor_percent) * smoothstep(t)


class AutoController:
    """Hysteresis + ramp state machine driven by illuminance samples."""

    def __init__(
        self,
        profile: AutoProfile,
        ramp: RampConfig | None = None,
        sample_hz: float = 2.0,
    ):
        self.profile = profile
        self.ramp = ramp or RampConfig()
        self.sample_hz = sample_hz
        self.mode = ControlState.DISABLED
        self.state = ControllerState()
        self.staged_percent: float | None = None
        self._last_eval_at: float | None = None

    @property
    def on_count_required(self) -> int:
        return max(1, int(self.sample_hz * self.profile.on_seconds))

    @property
    def off_count_required(self) -> int:
        return max(1, int(self.sample_hz * self.profile.off_seconds))

    def set_profile(self, profile: AutoProfile) -> None:
        self.profile = profile
        self.reset_counters()

    def set_sample_hz(self, hz: float) -> None:
        self.sample_hz = hz
        self.state.above_count = min(self.state.above_count, self.on_count_required)
        self.state.below_count = min(self.state.below_count, self.off_count_required)

    def reset_counters(self) -> None:
        self.state.above_count = 0
        self.state.below_count = 0

    def in_grace(self, now: float) -> bool:
        return self.state.grace_until is not None and now < self.state.grace_until

    def note_manual_override(self, enabled: bool, now: float) -> None:
        """
        The user toggled EDR by hand: follow their choice and hold off
        automatic transitions for the grace window.
        """
        self.state.grace_until = now + MANUAL_GRACE_SECONDS
        if enabled and self.mode is ControlState.DISABLED:
            self.mode = ControlState.ENABLED
            self.state.edr_enabled_at = now
        elif not enabled and self.mode is ControlState.ENABLED:
            self.mode = ControlState.DISABLED
            self.state.edr_disabled_at = now
        self.reset_counters()

    def sync(self, enabled: bool, now: float) -> None:
        """Adopt the actual EDR state without starting a grace window."""
        mode = ControlState.ENABLED if enabled else ControlState.DISABLED
        if mode is not self.mode:
            self.mode = mode
            if enabled:
                self.state.edr_enabled_at = now
            else:
                self.state.edr_disabled_at = now
        self.reset_counters()

    def envelope_ceiling(self, now: float) -> float:
        """Highest percent allowed this soon after enabling."""
        floor = self.ramp.entry_min_percent
        if self.state.edr_enabled_at is None:
            return 100.0
        elapsed = max(0.0, now - self.state.edr_enabled_at)
        progress = min(1.0, elapsed / max(1e-6, self.ramp.entry_envelope_seconds))
        return floor + (100.0 - floor) * progress

    def _dt(self, now: float) -> float:
        nominal = 1.0 / max(1e-3, self.sample_hz)
        if self._last_eval_at is None:
            return nominal
        return max(0.0, now - self._last_eval_at)

    def _ramp_percent(self, target: float, current: float, now: float, dt: float) -> float:
        floor = self.ramp.entry_min_percent
        ceiling = self.envelope_ceiling(now)
        desired = max(min(target, ceiling), floor)

        step = (desired - current) * self.profile.ramp_step
        max_step = self.ramp.max_percent_per_second * dt
        step = max(-max_step, min(max_step, step))

        return max(0.0, min(current + step, ceiling, 100.0))

    def _update_counters(self, lux: float) -> None:
        s = self.state
        if lux >= self.profile.on_lux:
            s.above_count = min(s.above_count + 1, self.on_count_required)
        else:
            s.above_count = max(0, s.above_count - 1)

        if lux <= self.profile.off_lux:
            s.below_count = min(s.below_count + 1, self.off_count_required)
        else:
            s.below_count = max(0, s.below_count - 1)

    def evaluate(self, lux: float, now: float, current_percent: float) -> AutoDecision:
        """
        Feed one illuminance sample.

        Returns the decision for the caller to apply; the caller owns the
        actual gain and EDR toggle.
        """
        dt = self._dt(now)
        self._last_eval_at = now

        target = percent_for_lux(lux, self.profile.on_lux, self.ramp.entry_min_percent)

        percent: float | None = None
        if self.mode is ControlState.ENABLED:
            percent = self._ramp_percent(target, current_percent, now, dt)
            self.staged_percent = None
        else:
            # Do not move the slider before EDR is on
            self.staged_percent = target

        if self.in_grace(now):
            return AutoDecision(self.mode, None, percent, target)

        self._update_counters(lux)
        s = self.state

        if self.mode is ControlState.DISABLED and s.above_count >= self.on_count_required:
            off_for = None if s.edr_disabled_at is None else now - s.edr_disabled_at
            if off_for is None or off_for >= self.ramp.min_off_seconds:
                self.mode = ControlState.ENABLED
                s.edr_enabled_at = now
                self.reset_counters()
                self.staged_percent = None
                return AutoDecision(self.mode, Transition.ENABLE, self.ramp.entry_min_percent, target)

        elif self.mode is ControlState.ENABLED and s.below_count >= self.off_count_required:
            on_for = None if s.edr_enabled_at is None else now - s.edr_enabled_at
            if on_for is None or on_for >= self.ramp.min_on_seconds:
                self.mode = ControlState.DISABLED
                s.edr_disabled_at = now
                self.reset_counters()
                return AutoDecision(self.mode, Transition.DISABLE, 0.0, target)

        return AutoDecision(self.mode, None, percent, target)
