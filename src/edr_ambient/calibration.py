"""
Power-law lux calibration for decoded ALS counts.

Maps decoded sensor counts to an illuminance estimate:

    lux = a · max(0, x − x_dark)^p

The defaults were fitted from a direct-sun anchor plus LED steps at 20cm.
Users can refit from two (Δx, lux) anchors or re-capture the dark baseline.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

DEFAULT_A = 9.163050293295044
DEFAULT_P = 1.2194541017683016
DEFAULT_X_DARK = 118_000 / 2**20  # covered/baseline register value

MIN_EXPONENT = 0.8
MAX_EXPONENT = 1.8


@dataclass(frozen=True)
class CalibrationAnchor:
    """A reference point: counts above dark (dx) measured at a known lux."""

    dx: float
    lux: float

    def to_dict(self) -> dict[str, float]:
        return {"dx": self.dx, "lux": self.lux}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationAnchor:
        return cls(dx=float(data["dx"]), lux=float(data["lux"]))


@dataclass
class LuxCalibrator:
    """Decoded counts → estimated lux."""

    a: float = DEFAULT_A
    p: float = DEFAULT_P
    x_dark: float = DEFAULT_X_DARK

    def estimate_lux(self, decoded_x: float) -> float:
        dx = max(0.0, decoded_x - self.x_dark)
        return self.a * dx**self.p

    def counts_for_lux(self, lux: float) -> float:
        """Inverse of `estimate_lux`: the decoded count that reads as `lux`."""
        if lux <= 0:
            return self.x_dark
        return self.x_dark + (lux / self.a) ** (1.0 / self.p)

    def set_dark(self, decoded_x: float) -> None:
        """Use the current smoothed reading as the occluded baseline."""
        self.x_dark = max(0.0, float(decoded_x))

    def fit(self, anchor_a: CalibrationAnchor, anchor_b: CalibrationAnchor) -> bool:
        """
        Solve a and p from two anchors.

        Leaves the calibrator untouched and returns False when either anchor
        has a non-positive dx or lux, or the pair cannot determine an exponent.
        """
        if anchor_a.dx <= 0 or anchor_b.dx <= 0 or anchor_a.lux <= 0 or anchor_b.lux <= 0:
            return False
        if anchor_a.dx == anchor_b.dx:
            return False

        denom = math.log(anchor_b.dx / anchor_a.dx)
        if abs(denom) < 1e-9:
            return False

        p = math.log(anchor_b.lux / anchor_a.lux) / denom
        if not math.isfinite(p):
            return False
        p = max(MIN_EXPONENT, min(MAX_EXPONENT, p))

        a = anchor_a.lux / anchor_a.dx**p
        if not math.isfinite(a) or a <= 0:
            return False

        self.a = a
        self.p = p
        return True

    def reset(self) -> None:
        self.a = DEFAULT_A
        self.p = DEFAULT_P
        self.x_dark = DEFAULT_X_DARK

    def to_dict(self) -> dict[str, float]:
        return {"a": self.a, "p": self.p, "x_dark": self.x_dark}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LuxCalibrator:
        """Restore from storage, falling back to defaults for bad values."""
        calibrator = cls()
        if not data:
            return calibrator
        try:
            a = float(data.get("a", DEFAULT_A))
            p = float(data.get("p", DEFAULT_P))
            x_dark = float(data.get("x_dark", DEFAULT_X_DARK))
        except (TypeError, ValueError):
            return calibrator
        if math.isfinite(a) and a > 0:
            calibrator.a = a
        if math.isfinite(p):
            calibrator.p = max(MIN_EXPONENT, min(MAX_EXPONENT, p))
        if math.isfinite(x_dark) and x_dark >= 0:
            calibrator.x_dark = x_dark
        return calibrator
