"""Decoding of the fixed-point ambient brightness register."""

from __future__ import annotations

import math
from typing import Any

from .protocol import SensorSample

# 12.20 fixed point
FIXED_POINT_SHIFT = 20
FIXED_POINT_DIV = float(1 << FIXED_POINT_SHIFT)  # 1,048,576.0

SENTINEL = 0x7FFFFFFF  # INT32_MAX, driver overflow marker
SENTINEL_GUARD = 0x7FFFFF00  # near-top values are treated as saturated too
SENTINEL_SLACK = 16

# ≈ INT32_MAX / 2^20, ceiling in sensor-space counts (not lux)
MAX_DECODED_X = 2047.0


def _is_saturated(raw: int) -> bool:
    return raw >= SENTINEL - SENTINEL_SLACK or raw >= SENTINEL_GUARD or raw == SENTINEL


def decode_register(raw: Any) -> SensorSample:
    """
    Decode a raw AmbientBrightness register value.

    Accepts either an integer or a little-endian payload of at least 4 bytes.
    Returns a VALUE sample in decoded counts, SATURATED when the sensor is
    pegged at the sentinel, or INVALID for anything unusable.
    """
    if raw is None or isinstance(raw, bool):
        return SensorSample.invalid()

    if isinstance(raw, (bytes, bytearray, memoryview)):
        payload = bytes(raw)
        if len(payload) < 4:
            return SensorSample.invalid()
        raw = int.from_bytes(payload[:4], "little", signed=False)
    elif not isinstance(raw, int):
        return SensorSample.invalid()

    if _is_saturated(raw):
        return SensorSample.saturated()
    if raw < 0:
        return SensorSample.invalid()

    decoded = raw / FIXED_POINT_DIV
    if not math.isfinite(decoded):
        return SensorSample.invalid()

    return SensorSample.value(min(decoded, MAX_DECODED_X))


def encode_counts(x: float) -> int:
    """Encode decoded counts back into the 12.20 register format."""
    x = max(0.0, min(float(x), MAX_DECODED_X))
    return int(round(x * FIXED_POINT_DIV))
