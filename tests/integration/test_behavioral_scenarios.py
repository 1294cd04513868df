"""Long-horizon behavioral scenarios driven through the controller's scheduler."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fakes import FakeClock, FakeSensor, counts_for_lux

from edr_ambient.auto_control import ControlState
from edr_ambient.calibration import DEFAULT_X_DARK
from edr_ambient.controller import Controller
from edr_ambient.display import DisplayHeadroom, StaticDisplayBackend
from edr_ambient.scheduler import Scheduler
from edr_ambient.settings import Settings

FIXTURE_DIR = Path(__file__).parent.parent / "fixtures"
STEP = 0.5


def _build(settings: Settings, potential: float = 1.6, hdr_probe=None):
    clock = FakeClock()
    sensor = FakeSensor()
    sensor.set_counts(counts_for_lux(0.0))
    display = StaticDisplayBackend([DisplayHeadroom(1, potential=potential)])
    controller = Controller(
        sensor,
        display,
        settings=settings,
        scheduler=Scheduler(clock=clock, sleep=clock.sleep),
        hdr_probe=hdr_probe,
    )
    controller.start()
    controller.scheduler.run_pending()
    return controller, sensor, display, clock


def _hold(controller: Controller, clock: FakeClock, seconds: float, on_tick=None) -> None:
    end = clock.now + seconds
    while clock.now < end - 1e-9:
        clock.advance(STEP)
        controller.scheduler.run_pending()
        if on_tick is not None:
            on_tick(clock.now)


def _auto_events(log_records, msg: str) -> list[dict]:
    return [fields for _, m, fields in log_records if m == msg and fields.get("source") == "auto"]


def test_dark_room_stays_disabled(log_records) -> None:
    """Counts held at the dark baseline read as zero lux and never touch the display."""
    controller, sensor, display, clock = _build(Settings(auto_enabled=True, sample_hz=2.0))
    sensor.set_counts(DEFAULT_X_DARK)
    _hold(controller, clock, 180.0)

    estimate = controller.sampler.last_estimate
    assert estimate.dx == 0.0
    assert estimate.lfit == 0.0
    assert controller.last_lux == 0.0
    assert controller.auto.mode is ControlState.DISABLED
    assert not controller.gain.enabled
    assert display.writes == []
    assert _auto_events(log_records, "edr_enabled") == []


def test_steady_office_light(log_records) -> None:
    """Constant 5000 lux converges and never engages EDR."""
    controller, sensor, display, clock = _build(Settings(auto_enabled=True, sample_hz=2.0))
    sensor.set_counts(counts_for_lux(5000.0))
    _hold(controller, clock, 60.0)

    assert controller.last_lux == pytest.approx(5000.0, rel=1e-3)
    assert not controller.gain.enabled
    assert display.writes == []
    assert _auto_events(log_records, "edr_enabled") == []


def test_step_into_sunlight(log_records) -> None:
    """A step to bright light enables after on_seconds and ramps inside the envelope."""
    controller, sensor, display, clock = _build(Settings(auto_enabled=True, sample_hz=2.0))
    _hold(controller, clock, 5.0)
    stepped_at = clock.now
    sensor.set_counts(counts_for_lux(30_000.0))

    trace: list[tuple[float, float]] = []

    def record(now: float) -> None:
        if controller.gain.enabled:
            trace.append((now, controller.current_user_percent()))

    _hold(controller, clock, 20.0, on_tick=record)

    (event,) = _auto_events(log_records, "edr_enabled")
    assert event["percent"] == pytest.approx(controller.settings.entry_min_percent)
    enabled_at = controller.auto.state.edr_enabled_at
    assert enabled_at - stepped_at >= 2.0 - 1e-9

    for now, percent in trace:
        assert percent <= controller.auto.envelope_ceiling(now) + 1e-9
    cap = controller.current_cap_details().cap
    assert all(1.0 <= float(table.max()) <= cap + 1e-6 for _, table in display.writes)


def test_headroom_shrinks_under_load() -> None:
    """The factor follows a shrinking cap while the stored percent is untouched."""
    controller, _, display, clock = _build(Settings(enabled=True, user_percent=80.0), potential=1.5)
    cap = 1.0 + 0.5 * 0.98
    assert display.last_gain(1) == pytest.approx(1.0 + (cap - 1.0) * 0.8, rel=1e-5)

    display.set_headroom(1, 1.2)
    _hold(controller, clock, 1.0)
    cap = 1.0 + 0.2 * 0.98
    assert controller.current_user_percent() == 80.0
    assert display.last_gain(1) == pytest.approx(1.0 + (cap - 1.0) * 0.8, rel=1e-5)

    display.set_headroom(1, 1.5)
    _hold(controller, clock, 1.0)
    assert controller.current_factor() == pytest.approx(1.392)


def test_hysteresis_under_passing_cloud(log_records) -> None:
    """Light flickering between the thresholds neither re-enables nor disables."""
    controller, sensor, _, clock = _build(Settings(auto_enabled=True, sample_hz=2.0))
    sensor.set_counts(counts_for_lux(30_000.0))
    _hold(controller, clock, 15.0)
    assert controller.gain.enabled

    for _ in range(30):
        sensor.set_counts(counts_for_lux(20_000.0))
        _hold(controller, clock, 1.0)
        sensor.set_counts(counts_for_lux(30_000.0))
        _hold(controller, clock, 1.0)

    assert controller.gain.enabled
    assert len(_auto_events(log_records, "edr_enabled")) == 1
    assert _auto_events(log_records, "edr_disabled") == []


def test_day_trace_replay(log_records) -> None:
    """Indoors, outdoors through cloud, indoors again: one enable, one disable."""
    trace = json.loads((FIXTURE_DIR / "day_trace.json").read_text())
    controller, sensor, display, clock = _build(Settings(auto_enabled=True, sample_hz=2.0))

    for segment in trace["segments"]:
        sensor.set_counts(counts_for_lux(float(segment["lux"])))
        _hold(controller, clock, float(segment["seconds"]))

    assert len(_auto_events(log_records, "edr_enabled")) == 1
    assert len(_auto_events(log_records, "edr_disabled")) == 1
    assert not controller.gain.enabled
    assert controller.current_user_percent() == 0.0
    assert display.restores == 1


def test_hdr_content_ducks_and_recovers() -> None:
    """HDR video on screen fades the boost out, then back once it stops."""
    hdr = {"active": False}
    controller, _, display, clock = _build(Settings(enabled=True), hdr_probe=lambda: hdr["active"])
    boosted = display.last_gain(1)

    hdr["active"] = True
    _hold(controller, clock, 3.0)
    assert display.last_gain(1) == pytest.approx(1.0, rel=1e-5)

    hdr["active"] = False
    _hold(controller, clock, 4.0)
    assert display.last_gain(1) == pytest.approx(boosted, rel=1e-5)
    assert not controller.scheduler.is_running("duck")
