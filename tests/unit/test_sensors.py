"""Tests for the sensor registry, plugin loader and built-in backends."""

from __future__ import annotations

import plistlib
import subprocess
from types import SimpleNamespace

import pytest

from edr_ambient.calibration import DEFAULT_X_DARK, LuxCalibrator
from edr_ambient.sampler import ALSSampler
from edr_ambient.sensors import loader
from edr_ambient.sensors.backends import macos
from edr_ambient.sensors.backends.linux import LinuxSysfsBackend
from edr_ambient.sensors.decoder import encode_counts
from edr_ambient.sensors.protocol import SampleKind, SensorBackend, SensorCapability
from edr_ambient.sensors.registry import SensorRegistry, read_kind


class GoodBackend:
    name = "good"
    platform = "testos"
    capabilities = {SensorCapability.AMBIENT_REGISTER, SensorCapability.REBIND}

    def is_available(self) -> bool:
        return True

    def read_register(self):
        return encode_counts(1.0)

    def rebind(self) -> bool:
        return True


class BasicBackend(GoodBackend):
    name = "basic"
    capabilities = {SensorCapability.AMBIENT_REGISTER}


class SilentBackend(GoodBackend):
    name = "silent"

    def read_register(self):
        return None


class FailingReadBackend(GoodBackend):
    name = "failing"

    def read_register(self):
        raise OSError("ioreg exited 1")


class BrokenBackend(GoodBackend):
    def __init__(self):
        raise OSError("device busy")


@pytest.fixture
def registry():
    saved = dict(SensorRegistry._backends), dict(SensorRegistry._instances)
    SensorRegistry.clear()
    yield SensorRegistry
    SensorRegistry.clear()
    SensorRegistry._backends.update(saved[0])
    SensorRegistry._instances.update(saved[1])


class TestSensorRegistry:
    def test_protocol(self):
        assert isinstance(GoodBackend(), SensorBackend)

    def test_prefers_rebind_capable_backend(self, registry):
        registry.register(BasicBackend)
        registry.register(GoodBackend)
        assert registry.get_for_platform("testos").name == "good"

    def test_rebind_outranks_a_good_reading(self, registry):
        registry.register(BasicBackend)
        registry.register(SilentBackend)
        assert registry.get_for_platform("testos").name == "silent"

    @pytest.mark.parametrize("dead", [SilentBackend, FailingReadBackend])
    def test_equal_capabilities_prefer_a_valid_reading(self, registry, dead):
        registry.register(dead)
        registry.register(GoodBackend)
        assert registry.get_for_platform("testos").name == "good"

    def test_ties_keep_registration_order(self, registry):
        registry.register(SilentBackend)
        registry.register(FailingReadBackend)
        assert registry.get_for_platform("testos").name == "silent"

    def test_read_kind(self):
        assert read_kind(GoodBackend()) is SampleKind.VALUE
        assert read_kind(SilentBackend()) is SampleKind.INVALID
        assert read_kind(FailingReadBackend()) is SampleKind.INVALID

    def test_wrong_platform(self, registry):
        registry.register(GoodBackend)
        assert registry.get_for_platform("plan9") is None

    def test_instances_cached(self, registry):
        registry.register(GoodBackend)
        assert registry.get_by_name("GoodBackend") is registry.get_by_name("GoodBackend")

    def test_broken_backend_skipped(self, registry):
        registry.register(BrokenBackend)
        registry.register(BasicBackend)
        assert registry.get_by_name("BrokenBackend") is None
        assert registry.get_for_platform("testos").name == "basic"
        assert [b["name"] for b in registry.list_backends()] == ["BasicBackend"]

    def test_list_backends(self, registry):
        registry.register(GoodBackend)
        (entry,) = registry.list_backends()
        assert entry["display_name"] == "good"
        assert entry["available"] is True
        assert entry["capabilities"] == ["AMBIENT_REGISTER", "REBIND"]
        assert entry["reading"] == "value"

    def test_list_backends_skips_reading_when_unavailable(self, registry, monkeypatch):
        registry.register(GoodBackend)
        monkeypatch.setattr(GoodBackend, "is_available", lambda self: False)
        (entry,) = registry.list_backends()
        assert entry["available"] is False
        assert entry["reading"] is None


class TestPluginLoader:
    def _entry_points(self, monkeypatch, objects):
        def load_failure():
            raise ImportError("missing dependency")

        eps = [SimpleNamespace(load=(lambda obj=obj: obj)) for obj in objects]
        eps.append(SimpleNamespace(load=load_failure))
        monkeypatch.setattr(loader.importlib.metadata, "entry_points", lambda group: eps)

    def test_sensor_plugins_registered(self, registry, monkeypatch):
        self._entry_points(monkeypatch, [GoodBackend, "not a class", object])
        loader.load_plugins()
        assert list(registry._backends) == ["GoodBackend"]

    def test_display_plugins_filtered(self, monkeypatch):
        class Panel:
            name = "panel"

            def headrooms(self, target_only=True):
                return []

            def write_transfer_table(self, display_id, table):
                pass

        self._entry_points(monkeypatch, [Panel, GoodBackend])
        assert loader.load_display_plugins() == [Panel]

    def test_metadata_failure(self, monkeypatch):
        def explode(group):
            raise RuntimeError("bad metadata")

        monkeypatch.setattr(loader.importlib.metadata, "entry_points", explode)
        assert loader.load_display_plugins() == []


def _framebuffer(entry_id: int, value: int, external: bool = False, active: bool = True, als: int = 1) -> dict:
    return {
        "IORegistryEntryID": entry_id,
        "AmbientBrightness": value,
        "external": external,
        "NormalModeActive": active,
        "ALSSChannelCount": als,
        "IOPowerManagement": {"CurrentPowerState": 2 if active else 0},
    }


class TestMacOSBackend:
    @pytest.mark.parametrize(
        "kwargs,expected",
        [
            ({}, 0),
            ({"als": 0}, 1),
            ({"external": True}, 2),
            ({"active": False}, 3),
        ],
    )
    def test_rank(self, kwargs, expected):
        assert macos._rank(_framebuffer(1, 0, **kwargs)) == expected

    def test_rank_requires_register(self):
        assert macos._rank({"IORegistryEntryID": 1}) is None

    def test_string_flags(self):
        entry = _framebuffer(1, 0)
        entry["external"] = "No"
        entry["NormalModeActive"] = "Yes"
        assert macos._rank(entry) == 0

    def _ioreg(self, monkeypatch, entries, returncode: int = 0):
        calls = []

        def fake_run(args, capture_output=True, timeout=5):
            calls.append(args)
            return SimpleNamespace(returncode=returncode, stdout=plistlib.dumps(entries))

        monkeypatch.setattr(macos.subprocess, "run", fake_run)
        return calls

    def test_binds_best_framebuffer(self, monkeypatch):
        entries = [_framebuffer(5, 111, external=True), _framebuffer(7, 222)]
        calls = self._ioreg(monkeypatch, entries)
        backend = macos.MacOSALSBackend()
        assert backend.rebind()
        assert backend.read_register() == 222
        assert calls[0] == ["ioreg", "-a", "-r", "-c", macos.FRAMEBUFFER_CLASS]

    def test_falls_back_to_key_search(self, monkeypatch):
        calls = self._ioreg(monkeypatch, [{"IORegistryEntryID": 3}])
        assert not macos.MacOSALSBackend().rebind()
        assert calls[1] == ["ioreg", "-a", "-r", "-k", macos.REGISTER_KEY]

    def test_ioreg_failure(self, monkeypatch):
        self._ioreg(monkeypatch, [], returncode=1)
        backend = macos.MacOSALSBackend()
        assert not backend.rebind()
        assert backend.read_register() is None

    def test_ioreg_timeout(self, monkeypatch):
        def fake_run(args, capture_output=True, timeout=5):
            raise subprocess.TimeoutExpired(args, timeout)

        monkeypatch.setattr(macos.subprocess, "run", fake_run)
        assert not macos.MacOSALSBackend().rebind()

    def test_bound_display_disappears(self, monkeypatch):
        self._ioreg(monkeypatch, [_framebuffer(7, 222)])
        backend = macos.MacOSALSBackend()
        backend.rebind()
        self._ioreg(monkeypatch, [_framebuffer(9, 333)])
        assert backend.read_register() is None
        assert backend.rebind()
        assert backend.read_register() == 333


class TestLinuxBackend:
    @pytest.fixture
    def device(self, tmp_path, monkeypatch):
        device_dir = tmp_path / "iio-device0"
        device_dir.mkdir()
        raw = device_dir / "in_illuminance_raw"
        raw.write_text("120\n")
        monkeypatch.setattr(LinuxSysfsBackend, "SYSFS_PATHS", [str(tmp_path / "iio-device*" / "in_illuminance_raw")])
        return device_dir

    def test_reads_and_encodes(self, device):
        backend = LinuxSysfsBackend()
        assert backend.is_available()
        assert backend.read_register() == encode_counts(LuxCalibrator().counts_for_lux(120.0))

    def test_scale_applied(self, device):
        (device / "in_illuminance_scale").write_text("0.5")
        assert LinuxSysfsBackend().read_register() == encode_counts(LuxCalibrator().counts_for_lux(60.0))

    def test_zero_lux_reads_as_dark(self, device):
        (device / "in_illuminance_raw").write_text("0")
        assert LinuxSysfsBackend().read_register() == encode_counts(DEFAULT_X_DARK)

    @pytest.mark.parametrize("lux", [40.0, 1000.0, 30_000.0])
    def test_sampler_estimate_matches_sysfs_lux(self, tmp_path, monkeypatch, lux):
        device_dir = tmp_path / "iio-device1"
        device_dir.mkdir()
        (device_dir / "in_illuminance_input").write_text(f"{lux}\n")
        monkeypatch.setattr(LinuxSysfsBackend, "SYSFS_PATHS", [str(tmp_path / "iio-device*" / "in_illuminance_input")])
        estimate = ALSSampler(LinuxSysfsBackend(), now=0.0).tick(0.5)
        assert estimate.lux == pytest.approx(lux, rel=1e-3)

    def test_negative_reading(self, device):
        (device / "in_illuminance_raw").write_text("-4")
        assert LinuxSysfsBackend().read_register() == -1

    def test_garbage_reading(self, device):
        (device / "in_illuminance_raw").write_text("n/a")
        assert LinuxSysfsBackend().read_register() is None

    def test_rebind_after_removal(self, device):
        backend = LinuxSysfsBackend()
        (device / "in_illuminance_raw").unlink()
        assert not backend.is_available()
        assert not backend.rebind()
        assert backend.read_register() is None
