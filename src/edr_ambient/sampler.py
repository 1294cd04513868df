"""
Ambient light sampling pipeline.

Each tick reads one register sample and runs it through:

    decode → EMA filter (sensor counts) → power-law calibration
           → relative day-peak model → confidence-gated blend

Saturated samples are replaced by a synthesized "very bright" surrogate once
saturation has lasted long enough, so the estimate keeps rising in full sun
instead of freezing. Sustained invalid or saturated reads trigger a rebind of
the sensor handle.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from .calibration import CalibrationAnchor, LuxCalibrator
from .profiles import AutoProfile, get_profile
from .rolling_max import (
    MAX_PLAUSIBLE_LUX,
    BlendConfig,
    RollingMaxTracker,
    blend_lux,
    blend_weight,
    relative_lux,
)
from .sensors.decoder import MAX_DECODED_X, decode_register
from .sensors.protocol import SampleKind, SensorBackend, SensorSample

MIN_SAMPLE_HZ = 0.5
MAX_SAMPLE_HZ = 60.0

SATURATION_APPLY_AFTER = 0.5  # seconds since last good sample
SATURATION_BOOST = 1.15
SATURATION_FLOOR_DX = 1200.0
SATURATION_TAU_SCALE = 0.7
SATURATION_MIN_MULT = 1.2

REBIND_AFTER_SECONDS = 5.0


def ema_alpha(dt: float, tau: float, mult: float) -> float:
    """Elapsed-time aware smoothing factor: (1 − e^(−dt/τ))·mult, clamped to [0, 1]."""
    if tau <= 0:
        return 1.0
    return max(0.0, min(1.0, (1.0 - math.exp(-dt / tau)) * mult))


@dataclass(frozen=True)
class IlluminanceEstimate:
    """One filtered illuminance reading plus the intermediate values behind it."""

    lux: float
    decoded_x: float
    dx: float
    lfit: float
    lrel: float
    blend_weight: float
    rolling_max_dx: float
    synthesized: bool
    timestamp: float


class ALSSampler:
    """Owns the sensor handle, filter state and calibration for periodic sampling."""

    def __init__(
        self,
        backend: SensorBackend,
        calibrator: LuxCalibrator | None = None,
        profile: AutoProfile | None = None,
        blend: BlendConfig | None = None,
        sample_hz: float = 2.0,
        lux_scale: float = 1.0,
        lux_gamma: float = 1.0,
        now: float = 0.0,
    ):
        self.backend = backend
        self.calibrator = calibrator or LuxCalibrator()
        self.profile = profile or get_profile(None)
        self.blend = blend or BlendConfig()
        self.sample_hz = max(MIN_SAMPLE_HZ, min(MAX_SAMPLE_HZ, sample_hz))
        self.lux_scale = lux_scale
        self.lux_gamma = lux_gamma

        self.available = True
        self.tracker = RollingMaxTracker(now)
        self.warmup_until = now + self.blend.warmup_seconds

        self._filtered_x: float | None = None
        self._last_filter_at: float | None = None
        self._last_good_x = 0.0
        self._last_good_at: float | None = None
        self._invalid_streak = 0
        self._saturated_streak = 0

        self.last_estimate: IlluminanceEstimate | None = None
        self.last_sample: SensorSample | None = None
        self.rebind_count = 0
        self.saturated_ticks = 0
        self.invalid_ticks = 0

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_sample_hz(self, hz: float) -> None:
        self.sample_hz = max(MIN_SAMPLE_HZ, min(MAX_SAMPLE_HZ, hz))

    def set_profile(self, profile: AutoProfile) -> None:
        """Switch smoothing parameters; the filter restarts from the next sample."""
        self.profile = profile
        self.reset_filter()

    def reset_filter(self) -> None:
        self._filtered_x = None
        self._last_filter_at = None

    def recalibrate(self, now: float) -> None:
        """Forget the day's peak and restart warm-up."""
        self.tracker.reset(now)
        self.warmup_until = now + self.blend.warmup_seconds
        self.reset_filter()

    @property
    def rebind_streak_limit(self) -> int:
        return max(1, int(self.sample_hz * REBIND_AFTER_SECONDS))

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def read_sample(self) -> SensorSample:
        try:
            raw = self.backend.read_register()
        except Exception:
            return SensorSample.invalid()
        return decode_register(raw)

    def tick(self, now: float) -> IlluminanceEstimate | None:
        """
        Take one sample. Returns a new estimate, or None when this tick
        produced nothing (invalid read, saturation not yet long enough).
        """
        sample = self.read_sample()
        self.last_sample = sample

        if sample.kind is SampleKind.VALUE:
            return self._on_value(sample.x, now)
        if sample.kind is SampleKind.SATURATED:
            return self._on_saturated(now)
        if sample.kind is SampleKind.INVALID:
            return self._on_invalid()
        raise ValueError(f"Unhandled sample kind: {sample.kind}")

    def _on_value(self, decoded_x: float, now: float) -> IlluminanceEstimate:
        self._invalid_streak = 0
        self._saturated_streak = 0
        self.available = True

        self._last_good_x = decoded_x
        self._last_good_at = now

        dx = max(0.0, decoded_x - self.calibrator.x_dark)
        self.tracker.update(dx, now)

        x_smoothed = self._filter(decoded_x, now, self.profile.filter_tau, self.profile.filter_mult)
        return self._publish(x_smoothed, dx, now, synthesized=False)

    def _on_saturated(self, now: float) -> IlluminanceEstimate | None:
        self._saturated_streak += 1
        self.saturated_ticks += 1

        estimate = None
        if self._last_good_at is None or now - self._last_good_at >= SATURATION_APPLY_AFTER:
            self.tracker.mark_saturated()
            surrogate = max(
                self._last_good_x * SATURATION_BOOST,
                self.calibrator.x_dark + max(self.tracker.max_dx * 1.05, SATURATION_FLOOR_DX),
            )
            surrogate = min(surrogate, MAX_DECODED_X)

            # Track rising brightness faster while pegged
            tau = max(1.0, self.profile.filter_tau * SATURATION_TAU_SCALE)
            mult = max(SATURATION_MIN_MULT, self.profile.filter_mult)
            x_smoothed = self._filter(surrogate, now, tau, mult)

            dx_smoothed = max(0.0, x_smoothed - self.calibrator.x_dark)
            self.tracker.update(dx_smoothed, now)
            estimate = self._publish(x_smoothed, dx_smoothed, now, synthesized=True)

        if self._saturated_streak >= self.rebind_streak_limit:
            self.rebind()
        return estimate

    def _on_invalid(self) -> None:
        self._invalid_streak += 1
        self.invalid_ticks += 1
        if self._invalid_streak >= self.rebind_streak_limit:
            self.rebind()
        return None

    def _filter(self, x: float, now: float, tau: float, mult: float) -> float:
        if self._last_filter_at is None:
            dt = 1.0 / self.sample_hz
        else:
            dt = max(0.0, now - self._last_filter_at)
        self._last_filter_at = now

        y0 = x if self._filtered_x is None else self._filtered_x
        y = y0 + ema_alpha(dt, tau, mult) * (x - y0)
        self._filtered_x = y
        return y

    def _publish(self, x_smoothed: float, dx: float, now: float, synthesized: bool) -> IlluminanceEstimate:
        lfit = self.calibrator.estimate_lux(x_smoothed)
        lrel = relative_lux(dx, self.tracker.max_dx, self.blend)
        weight = blend_weight(self.tracker, now, self.warmup_until, self.blend)

        lux = blend_lux(lfit, lrel, weight)
        if self.lux_scale != 1.0 or self.lux_gamma != 1.0:
            lux = min(MAX_PLAUSIBLE_LUX, (lux * self.lux_scale) ** self.lux_gamma)

        estimate = IlluminanceEstimate(
            lux=lux,
            decoded_x=x_smoothed,
            dx=dx,
            lfit=lfit,
            lrel=lrel,
            blend_weight=weight,
            rolling_max_dx=self.tracker.max_dx,
            synthesized=synthesized,
            timestamp=now,
        )
        self.last_estimate = estimate
        return estimate

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def rebind(self) -> bool:
        """Re-acquire the sensor handle; failure marks the sensor unavailable."""
        try:
            ok = bool(self.backend.rebind())
        except Exception:
            ok = False
        self.available = ok
        self.rebind_count += 1
        self._invalid_streak = 0
        self._saturated_streak = 0
        return ok

    # ------------------------------------------------------------------
    # Calibration helpers
    # ------------------------------------------------------------------

    @property
    def smoothed_x(self) -> float | None:
        return self._filtered_x

    def capture_dark(self) -> bool:
        """Set the dark baseline from the current smoothed reading."""
        if self._filtered_x is None:
            return False
        self.calibrator.set_dark(self._filtered_x)
        return True

    def anchor_from_current(self, lux: float) -> CalibrationAnchor | None:
        """Pair the current smoothed excursion with a known lux value."""
        if self._filtered_x is None or lux <= 0:
            return None
        dx = max(0.0, self._filtered_x - self.calibrator.x_dark)
        return CalibrationAnchor(dx=dx, lux=lux)

    def diagnostics(self) -> dict[str, Any]:
        """Copy-out snapshot for debug views."""
        est = self.last_estimate
        return {
            "available": self.available,
            "sample_hz": self.sample_hz,
            "profile": self.profile.name,
            "last_sample": self.last_sample.kind.value if self.last_sample else None,
            "lux": est.lux if est else None,
            "decoded_x": est.decoded_x if est else None,
            "dx": est.dx if est else None,
            "lfit": est.lfit if est else None,
            "lrel": est.lrel if est else None,
            "blend_weight": est.blend_weight if est else None,
            "synthesized": est.synthesized if est else False,
            "rolling_max_dx": self.tracker.max_dx,
            "saw_saturation": self.tracker.saw_saturation,
            "rebind_count": self.rebind_count,
            "saturated_ticks": self.saturated_ticks,
            "invalid_ticks": self.invalid_ticks,
            "calibrator": self.calibrator.to_dict(),
        }
