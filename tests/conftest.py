"""Shared pytest fixtures for edr-ambient tests."""

from __future__ import annotations

import pytest
from fakes import FakeClock, FakeSensor

from edr_ambient.calibration import DEFAULT_X_DARK
from edr_ambient.controller import Controller
from edr_ambient.display import DisplayHeadroom, StaticDisplayBackend
from edr_ambient.scheduler import Scheduler
from edr_ambient.sensors.decoder import encode_counts
from edr_ambient.settings import Settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock) -> Scheduler:
    return Scheduler(clock=clock, sleep=clock.sleep)


@pytest.fixture
def fake_sensor() -> FakeSensor:
    return FakeSensor(raw=encode_counts(DEFAULT_X_DARK))


@pytest.fixture
def static_display() -> StaticDisplayBackend:
    return StaticDisplayBackend([DisplayHeadroom(1, potential=1.6, reference=1.0)])


@pytest.fixture
def settings() -> Settings:
    return Settings(sample_hz=2.0)


@pytest.fixture
def controller(fake_sensor, static_display, settings, scheduler) -> Controller:
    return Controller(fake_sensor, static_display, settings=settings, scheduler=scheduler)


@pytest.fixture(autouse=True)
def log_records(monkeypatch):
    """Capture log lines in a list instead of printing them."""
    records: list[tuple[str, str, dict]] = []

    def fake_log(level, msg, **kwargs):
        records.append((level, msg, kwargs))

    monkeypatch.setattr("edr_ambient.controller.log", fake_log)
    monkeypatch.setattr("edr_ambient.scheduler.log", fake_log)
    monkeypatch.setattr("edr_ambient.daemon.log", fake_log)
    return records
