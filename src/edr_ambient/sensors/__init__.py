"""Sensor abstraction layer with plugin support."""

from __future__ import annotations

from .decoder import MAX_DECODED_X, decode_register, encode_counts
from .loader import discover_backends, get_best_backend, load_display_plugins, load_plugins
from .protocol import SampleKind, SensorBackend, SensorCapability, SensorSample
from .registry import SensorRegistry

__all__ = [
    "MAX_DECODED_X",
    "SampleKind",
    "SensorBackend",
    "SensorCapability",
    "SensorRegistry",
    "SensorSample",
    "decode_register",
    "discover_backends",
    "encode_counts",
    "get_best_backend",
    "load_display_plugins",
    "load_plugins",
]
