"""
Day-peak tracking and the relative illuminance model.

The power-law calibrator is accurate near its anchors but drifts at the
extremes. The relative model maps the current excursion against the largest
excursion seen today:

    Lrel = floor + (ceiling − floor) · (Δx / maxΔx)^exponent

and is blended into the calibrated estimate only once a real daylight peak
has been established (warm-up elapsed, and either a saturation event or
maxΔx beyond the sun trigger).
"""

from __future__ import annotations

from dataclasses import dataclass

from .sensors.decoder import MAX_DECODED_X

MAX_PLAUSIBLE_LUX = 120_000.0

DECAY_FACTOR = 0.995
DECAY_INTERVAL = 30.0  # seconds


@dataclass
class BlendConfig:
    """Empirically fitted constants for the relative model and its blend gate."""

    sun_dx_trigger: float = 1200.0
    relative_blend_max: float = 0.25
    relative_exponent: float = 1.45
    relative_floor_lux: float = 50.0
    relative_ceiling_lux: float = 100_000.0
    warmup_seconds: float = 2.0


class RollingMaxTracker:
    """Largest observed Δx with slow periodic decay."""

    def __init__(self, now: float = 0.0):
        self.max_dx = 0.0
        self.last_decay = now
        self.saw_saturation = False

    def update(self, dx: float, now: float) -> float:
        self.max_dx = max(self.max_dx, dx)
        if now - self.last_decay > DECAY_INTERVAL:
            self.max_dx *= DECAY_FACTOR
            self.last_decay = now
        return self.max_dx

    def mark_saturated(self) -> None:
        self.saw_saturation = True

    def confidence(self, sun_dx_trigger: float) -> float:
        """How far the day's peak has climbed past the sun trigger, in [0, 1]."""
        span = max(1.0, MAX_DECODED_X - sun_dx_trigger)
        return min(1.0, max(0.0, (self.max_dx - sun_dx_trigger) / span))

    def reset(self, now: float) -> None:
        self.max_dx = 0.0
        self.last_decay = now
        self.saw_saturation = False


def relative_lux(dx: float, max_dx: float, config: BlendConfig) -> float:
    xhat = min(1.0, max(0.0, dx) / max(max_dx, 1e-6))
    span = config.relative_ceiling_lux - config.relative_floor_lux
    return config.relative_floor_lux + span * xhat**config.relative_exponent


def blend_weight(tracker: RollingMaxTracker, now: float, warmup_until: float, config: BlendConfig) -> float:
    """Weight given to the relative model; zero until a daylight peak is established."""
    if now < warmup_until:
        return 0.0
    if not (tracker.saw_saturation or tracker.max_dx >= config.sun_dx_trigger):
        return 0.0
    return config.relative_blend_max * tracker.confidence(config.sun_dx_trigger)


def blend_lux(lfit: float, lrel: float, weight: float) -> float:
    lux = (1.0 - weight) * lfit + weight * lrel
    return min(max(lux, 0.0), MAX_PLAUSIBLE_LUX)
