"""Linux sysfs-based ambient light sensor backend."""

from __future__ import annotations

import glob
from pathlib import Path

from ...calibration import LuxCalibrator
from ..decoder import encode_counts
from ..protocol import SensorBackend, SensorCapability
from ..registry import SensorRegistry


@SensorRegistry.register
class LinuxSysfsBackend(SensorBackend):
    """
    Linux sysfs-based ambient light sensor backend.

    Reads from /sys/bus/iio/devices/*/in_illuminance_raw or similar paths.
    IIO reports lux, so the scaled reading is mapped back into sensor counts
    through the default calibration curve and re-encoded into the 12.20
    register format. The sampler then decodes and calibrates it like the
    macOS register.
    """

    SYSFS_PATHS = [
        "/sys/bus/iio/devices/iio:device*/in_illuminance_raw",
        "/sys/bus/iio/devices/iio:device*/in_illuminance_input",
        "/sys/bus/acpi/devices/ACPI0008:00/iio:device*/in_illuminance_raw",
    ]

    def __init__(self):
        self._device_path: Path | None = None
        self._scale = 1.0
        self._curve = LuxCalibrator()
        self._find_device()

    def _find_device(self) -> bool:
        """Find an available ALS device in sysfs."""
        self._device_path = None
        self._scale = 1.0
        for pattern in self.SYSFS_PATHS:
            for path in sorted(glob.glob(pattern)):
                if Path(path).exists():
                    self._device_path = Path(path)
                    scale_path = self._device_path.parent / "in_illuminance_scale"
                    if scale_path.exists():
                        try:
                            self._scale = float(scale_path.read_text().strip())
                        except (ValueError, OSError):
                            pass
                    return True
        return False

    @property
    def name(self) -> str:
        return "Linux sysfs"

    @property
    def platform(self) -> str:
        return "linux"

    @property
    def capabilities(self) -> set[SensorCapability]:
        return {SensorCapability.AMBIENT_REGISTER, SensorCapability.REBIND}

    def is_available(self) -> bool:
        return self._device_path is not None and self._device_path.exists()

    def read_register(self) -> int | None:
        if not self._device_path:
            return None
        try:
            raw = float(self._device_path.read_text().strip())
        except (ValueError, OSError):
            return None
        if raw < 0:
            return -1
        return encode_counts(self._curve.counts_for_lux(raw * self._scale))

    def rebind(self) -> bool:
        return self._find_device()
