"""
Gain state, HDR duck animation and the EDR watchdog.

User intent is stored as a percent of the available headroom, never as a
raw factor, so a shrinking cap (sleep/wake, auto-brightness) lowers the
factor without silently rewriting what the user asked for.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .cap_model import CapDetails
from .display import GammaApplier

DUCK_FPS = 30
DEFAULT_DUCK_SECONDS = 0.25
MIN_DUCK_SECONDS = 0.05
MAX_DUCK_SECONDS = 2.0

HDR_ACTIVE_POLLS = 2
HDR_INACTIVE_POLLS = 3

EDR_LOW_HEADROOM = 1.05
EDR_LOW_POLLS = 2
EDR_RECOVERY_SECONDS = 2.0
EDR_RECOVERY_FPS = 60

WRITE_EPSILON = 1e-4


def factor_for_percent(percent: float, cap: float) -> float:
    p = max(0.0, min(100.0, percent))
    return max(1.0, min(cap, 1.0 + (cap - 1.0) * p / 100.0))


def percent_for_factor(factor: float, cap: float) -> float:
    denom = max(1e-4, cap - 1.0)
    return max(0.0, min(100.0, (factor - 1.0) / denom * 100.0))


def smoothstep(t: float) -> float:
    t = max(0.0, min(1.0, t))
    return t * t * (3.0 - 2.0 * t)


@dataclass
class DuckAnimation:
    """Idle / Animating tween of the duck level, advanced by tick(now)."""

    level: float = 0.0
    start_level: float = 0.0
    target_level: float = 0.0
    start_time: float = 0.0
    duration: float = DEFAULT_DUCK_SECONDS
    active: bool = False

    def start(self, target: float, now: float, duration: float | None = None) -> bool:
        """Begin animating toward target from the current level. Returns False if already there."""
        target = max(0.0, min(1.0, target))
        if not self.active and abs(self.level - target) < 1e-9:
            return False
        if duration is not None:
            self.duration = max(MIN_DUCK_SECONDS, min(MAX_DUCK_SECONDS, duration))
        self.start_level = self.level
        self.target_level = target
        self.start_time = now
        self.active = True
        return True

    def tick(self, now: float) -> float:
        if not self.active:
            return self.level
        t = (now - self.start_time) / max(1e-6, self.duration)
        if t >= 1.0:
            self.level = self.target_level
            self.active = False
        else:
            eased = smoothstep(t)
            self.level = self.start_level + (self.target_level - self.start_level) * eased
        return self.level


@dataclass
class HdrDuckMonitor:
    """Asymmetric debounce of the HDR-content signal: quick to duck, slow to undo."""

    active_streak: int = 0
    inactive_streak: int = 0
    ducked: bool = False

    def observe(self, hdr_active: bool) -> float | None:
        """Feed one poll. Returns a new duck target (1.0 or 0.0) when one is due."""
        if hdr_active:
            self.active_streak += 1
            self.inactive_streak = 0
            if not self.ducked and self.active_streak >= HDR_ACTIVE_POLLS:
                self.ducked = True
                return 1.0
        else:
            self.inactive_streak += 1
            self.active_streak = 0
            if self.ducked and self.inactive_streak >= HDR_INACTIVE_POLLS:
                self.ducked = False
                return 0.0
        return None

    def reset(self) -> None:
        self.active_streak = 0
        self.inactive_streak = 0
        self.ducked = False


@dataclass
class EdrWatchdog:
    """Detects the compositor dropping out of EDR while we expect it engaged."""

    low_streak: int = 0
    pending_revert: bool = False
    recoveries: int = 0

    def observe(self, user_percent: float, best_potential: float) -> bool:
        """Feed one poll. Returns True when a recovery burst should start."""
        if user_percent > 0.0 and best_potential <= EDR_LOW_HEADROOM:
            self.low_streak += 1
        else:
            self.low_streak = 0

        if self.low_streak >= EDR_LOW_POLLS and not self.pending_revert:
            self.pending_revert = True
            self.recoveries += 1
            return True
        return False

    def reverted(self) -> None:
        self.pending_revert = False

    def reset(self) -> None:
        self.low_streak = 0
        self.pending_revert = False


@dataclass
class GainController:
    """
    user_percent + live cap → factor, written through a GammaApplier.

    factor is derived, never stored independently, so it stays within
    [1, cap] whenever the cap moves.
    """

    applier: GammaApplier
    user_percent: float = 100.0
    cap: CapDetails = field(default_factory=CapDetails)
    enabled: bool = False
    duck: DuckAnimation = field(default_factory=DuckAnimation)
    duck_percent: float = 0.0
    last_written: float | None = None
    failed_writes: int = 0
    last_failed: list[int] = field(default_factory=list)

    @property
    def factor(self) -> float:
        return factor_for_percent(self.user_percent, self.cap.cap)

    @property
    def duck_target(self) -> float:
        return factor_for_percent(self.duck_percent, self.cap.cap)

    def effective_factor(self) -> float:
        """Factor actually written, blending toward the duck target by the duck level."""
        level = self.duck.level
        base = self.factor
        if level <= 0.0:
            return base
        return (1.0 - level) * base + level * self.duck_target

    def set_user_percent(self, percent: float) -> None:
        self.user_percent = max(0.0, min(100.0, percent))
        self.apply()

    def set_factor(self, factor: float) -> None:
        clamped = max(1.0, min(self.cap.cap, factor))
        self.user_percent = percent_for_factor(clamped, self.cap.cap)
        self.apply()

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        self.last_written = None
        if enabled:
            self.applier.enable()
            self.apply(force=True)
        else:
            self.applier.disable()

    def update_cap(self, cap: CapDetails) -> bool:
        """Adopt a new cap; the factor follows from the unchanged user_percent."""
        changed = abs(cap.cap - self.cap.cap) > WRITE_EPSILON
        self.cap = cap
        return changed

    def apply(self, force: bool = False) -> bool:
        """Write the effective factor if enabled and it moved. Returns True if written."""
        if not self.enabled:
            return False
        value = self.effective_factor()
        if not force and self.last_written is not None and abs(value - self.last_written) <= WRITE_EPSILON:
            return False
        self.last_failed = self.applier.apply(value)
        if self.last_failed:
            self.failed_writes += len(self.last_failed)
            # Retry the failed displays next round
            self.last_written = None
        else:
            self.last_written = value
        return True
