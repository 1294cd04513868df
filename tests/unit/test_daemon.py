"""Tests for daemon.py and daemon_manager.py."""

from __future__ import annotations

import subprocess
from types import SimpleNamespace

import pytest
from fakes import FakeSensor

from edr_ambient import daemon, daemon_manager
from edr_ambient.display import StaticDisplayBackend
from edr_ambient.scheduler import Scheduler


class TestCommandProbe:
    @pytest.mark.parametrize("returncode,expected", [(0, True), (1, False)])
    def test_exit_status(self, monkeypatch, returncode, expected):
        monkeypatch.setattr(daemon.subprocess, "run", lambda *a, **kw: SimpleNamespace(returncode=returncode))
        assert daemon.command_probe("hdr-check")() is expected

    def test_timeout_means_inactive(self, monkeypatch):
        def slow(*args, **kwargs):
            raise subprocess.TimeoutExpired("hdr-check", 2.0)

        monkeypatch.setattr(daemon.subprocess, "run", slow)
        assert daemon.command_probe("hdr-check")() is False


class TestRunDaemon:
    @pytest.fixture
    def isolated(self, monkeypatch, tmp_path):
        path = tmp_path / "settings.json"
        monkeypatch.setattr("edr_ambient.settings.CONFIG_FILE", path)
        monkeypatch.setattr(daemon, "CONFIG_FILE", path)
        return path

    def test_no_sensor(self, monkeypatch, log_records, isolated):
        monkeypatch.setattr(daemon, "resolve_sensor", lambda name: None)
        assert daemon.run_daemon(sensor_name="missing") == 1
        level, msg, fields = log_records[-1]
        assert (level, msg) == ("error", "sensor_unavailable")
        assert "missing" in fields["error"]

    def test_unknown_display(self, monkeypatch, log_records, isolated):
        monkeypatch.setattr(daemon, "resolve_sensor", lambda name: FakeSensor())
        monkeypatch.setattr("edr_ambient.display.load_display_plugins", lambda: [])
        assert daemon.run_daemon(display_name="hologram") == 1
        assert log_records[-1][1] == "display_unavailable"

    def test_runs_until_interrupted(self, monkeypatch, log_records, isolated):
        def interrupted(self):
            raise KeyboardInterrupt

        monkeypatch.setattr(daemon, "resolve_sensor", lambda name: FakeSensor())
        monkeypatch.setattr(daemon, "get_display_backend", lambda name: StaticDisplayBackend())
        monkeypatch.setattr(Scheduler, "run_forever", interrupted)
        assert daemon.run_daemon(hz=4.0) == 0
        messages = [msg for _, msg, _ in log_records]
        assert messages[0] == "daemon_started"
        assert messages[-1] == "daemon_stopped"
        assert log_records[0][2]["hz"] == 4.0

    def test_build_controller_uses_saved_settings(self, isolated):
        isolated.write_text('{"profile": "aggressive", "sample_hz": 3}')
        controller = daemon.build_controller(FakeSensor(), StaticDisplayBackend(), hdr_command="true")
        assert controller.settings.profile == "aggressive"
        assert controller.sampler.sample_hz == 3.0
        assert controller.hdr_probe is not None
        assert controller.settings_path == isolated


class TestServiceFiles:
    def test_plist(self):
        plist = daemon_manager.generate_macos_plist("/usr/local/bin/edr-ambient", hz=4.0)
        assert "<string>com.edr-ambient.daemon</string>" in plist
        assert "<string>--daemon</string>" in plist
        assert "<string>--hz</string>\n        <string>4</string>" in plist
        assert "<key>KeepAlive</key>" in plist

    def test_plist_without_rate(self):
        plist = daemon_manager.generate_macos_plist("/usr/local/bin/edr-ambient")
        assert "--hz" not in plist

    def test_systemd_unit(self):
        unit = daemon_manager.generate_linux_service("/home/me/.local/bin/edr-ambient", hz=2.5)
        assert "ExecStart=/home/me/.local/bin/edr-ambient --daemon --hz 2.5" in unit
        assert "Restart=always" in unit


class TestServiceControl:
    def test_status_not_installed(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setattr(daemon_manager, "get_platform", lambda: "Linux")
        monkeypatch.setattr(daemon_manager, "LINUX_SERVICE", tmp_path / "edr-ambient.service")
        daemon_manager.daemon_status()
        out = capsys.readouterr().out
        assert "Daemon: not installed" in out
        assert "edr-ambient --start" in out

    def test_start_without_binary(self, monkeypatch):
        monkeypatch.setattr(daemon_manager, "_find_binary", lambda: None)
        with pytest.raises(SystemExit):
            daemon_manager.daemon_start()

    def test_start_writes_unit(self, monkeypatch, tmp_path, capsys):
        service = tmp_path / "systemd" / "edr-ambient.service"
        calls = []

        def fake_run(args, **kwargs):
            calls.append(args)
            return SimpleNamespace(returncode=0, stdout="", stderr="")

        monkeypatch.setattr(daemon_manager, "get_platform", lambda: "Linux")
        monkeypatch.setattr(daemon_manager, "LINUX_SERVICE", service)
        monkeypatch.setattr(daemon_manager, "_find_binary", lambda: "/opt/bin/edr-ambient")
        monkeypatch.setattr(daemon_manager.subprocess, "run", fake_run)
        daemon_manager.daemon_start(hz=3.0)
        assert "--hz 3" in service.read_text()
        assert ["systemctl", "--user", "start", "edr-ambient"] in calls
        assert "Daemon started (hz: 3)" in capsys.readouterr().out

    def test_stop_when_not_loaded(self, monkeypatch, capsys):
        monkeypatch.setattr(daemon_manager, "get_platform", lambda: "Linux")
        monkeypatch.setattr(
            daemon_manager,
            "_run",
            lambda args: SimpleNamespace(returncode=5, stdout="", stderr="Unit edr-ambient.service not loaded."),
        )
        daemon_manager.daemon_stop()
        assert "Daemon not running" in capsys.readouterr().out
