"""
The single owner of brightness state.

One Controller is built at startup and handed to whoever needs it (daemon,
CLI). It wires the ALS sampler, auto-control state machine, cap model and
gain path together and drives them from three scheduler tasks:

- ``sample``: sensor tick at sample_hz; decode, filter, auto-evaluate
- ``poll``: 1 Hz; recompute the cap, re-derive the factor, HDR duck
  debounce, EDR watchdog, overlay pulse
- ``duck``: 30 Hz while a duck animation is in flight, then cancels itself

All mutation happens inside those callbacks or the public setters, which
are expected to be called from the same thread. Other threads should only
read snapshot().
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .auto_control import AutoController, RampConfig, Transition
from .calibration import CalibrationAnchor
from .cap_model import CapDetails, compute_cap
from .display import DisplayBackend, GammaApplier
from .gain import (
    DUCK_FPS,
    EDR_RECOVERY_FPS,
    EDR_RECOVERY_SECONDS,
    DuckAnimation,
    EdrWatchdog,
    GainController,
    HdrDuckMonitor,
)
from .logs import log
from .profiles import AutoProfile, get_profile
from .sampler import ALSSampler, IlluminanceEstimate
from .scheduler import Scheduler
from .sensors.protocol import SensorBackend
from .settings import Settings

POLL_INTERVAL = 1.0
EDR_RETRY_SECONDS = 0.8
NUDGE_SECONDS = 1.0


class EdrSupport(Enum):
    UNKNOWN = "unknown"
    PENDING_RETRY = "pending_retry"
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class ControllerSnapshot:
    """Immutable copy of controller state for readers outside the scheduler thread."""

    enabled: bool
    auto_enabled: bool
    auto_state: str
    profile: str
    user_percent: float
    factor: float
    effective_factor: float
    cap: CapDetails
    lux: float | None
    sensor_available: bool
    edr_support: str
    duck_level: float
    diagnostics: dict[str, Any] = field(default_factory=dict)


class Controller:
    """Closed-loop EDR brightness controller."""

    def __init__(
        self,
        sensor: SensorBackend,
        display: DisplayBackend,
        settings: Settings | None = None,
        scheduler: Scheduler | None = None,
        hdr_probe: Callable[[], bool] | None = None,
        settings_path: Path | None = None,
        verbose: bool = False,
    ):
        self.settings = settings or Settings()
        self.scheduler = scheduler or Scheduler()
        self.sensor = sensor
        self.display = display
        self.hdr_probe = hdr_probe
        self.settings_path = settings_path
        self.verbose = verbose

        s = self.settings
        now = self.scheduler.clock()
        profile = get_profile(s.profile)

        self.sampler = ALSSampler(
            sensor,
            calibrator=s.calibrator,
            profile=profile,
            blend=s.blend_config(),
            sample_hz=s.sample_hz,
            lux_scale=s.lux_scale,
            lux_gamma=s.lux_gamma,
            now=now,
        )
        self.auto = AutoController(profile, self._ramp_config(), s.sample_hz)

        self.applier = GammaApplier(display)
        self.applier.overlay_fullsize = s.overlay_fullsize
        self.applier.overlay_fps = s.overlay_fps
        self.gain = GainController(
            self.applier,
            user_percent=s.user_percent,
            duck=DuckAnimation(duration=s.hdr_fade_seconds),
            duck_percent=s.hdr_duck_percent,
        )
        self.hdr = HdrDuckMonitor()
        self.watchdog = EdrWatchdog()

        self.edr_support = EdrSupport.UNKNOWN
        self.last_lux: float | None = None
        self._was_available = True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _ramp_config(self) -> RampConfig:
        s = self.settings
        return RampConfig(
            entry_min_percent=s.entry_min_percent,
            entry_envelope_seconds=s.entry_envelope_seconds,
            max_percent_per_second=s.max_percent_per_second,
            min_on_seconds=s.min_on_seconds,
            min_off_seconds=s.min_off_seconds,
        )

    def _now(self) -> float:
        return self.scheduler.clock()

    def start(self) -> None:
        """Probe the displays, restore the persisted state and schedule the loops."""
        now = self._now()
        self.refresh_cap()
        self._probe_support()
        if self.settings.enabled:
            self.gain.set_enabled(True)
            self.auto.sync(True, now)
        self.scheduler.every("sample", 1.0 / self.sampler.sample_hz, self._sample_tick, fire_now=True)
        self.scheduler.every("poll", POLL_INTERVAL, self._poll_tick, fire_now=True)

    def stop(self) -> None:
        for name in ("sample", "poll", "duck", "edr-retry", "edr-revert", "nudge-revert"):
            self.scheduler.cancel(name)
        if self.gain.enabled:
            self.gain.set_enabled(False)

    def _persist(self) -> None:
        if self.settings_path is None:
            return
        try:
            self.settings.save(self.settings_path)
        except OSError as e:
            log("warn", "settings_save_failed", error=str(e))

    # ------------------------------------------------------------------
    # Cap and EDR support
    # ------------------------------------------------------------------

    def refresh_cap(self) -> CapDetails:
        s = self.settings
        details = compute_cap(
            self.display.headrooms(target_only=True),
            self.display.headrooms(target_only=False),
            any_supports_edr=self.display.any_display_supports_edr(),
            guard_enabled=s.guard_enabled,
            guard_factor=s.guard_factor,
            safety_margin=s.safety_margin,
        )
        self.gain.update_cap(details)
        if details.saw_edr and self.edr_support is not EdrSupport.SUPPORTED:
            self.edr_support = EdrSupport.SUPPORTED
            self.scheduler.cancel("edr-retry")
        return details

    def _probe_support(self) -> None:
        if self.gain.cap.saw_edr:
            self.edr_support = EdrSupport.SUPPORTED
        elif self.edr_support is EdrSupport.UNKNOWN:
            # Headroom often reads 1.0 right after launch or wake
            self.edr_support = EdrSupport.PENDING_RETRY
            self.scheduler.once("edr-retry", EDR_RETRY_SECONDS, self._retry_support)

    def _retry_support(self, now: float) -> None:
        details = self.refresh_cap()
        if not details.saw_edr:
            self.edr_support = EdrSupport.UNSUPPORTED
            log("warn", "edr_unsupported", display=self.display.name)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def _sample_tick(self, now: float) -> None:
        rebinds = self.sampler.rebind_count
        estimate = self.sampler.tick(now)

        if self.sampler.rebind_count != rebinds:
            log("warn", "sensor_rebind", ok=self.sampler.available, count=self.sampler.rebind_count)
        if self._was_available and not self.sampler.available:
            log("error", "sensor_unavailable", sensor=self.sensor.name)
        self._was_available = self.sampler.available

        if estimate is None:
            # Stall at the last known illuminance
            return
        self.last_lux = estimate.lux
        if self.verbose:
            log("debug", "sample", lux=estimate.lux, x=estimate.decoded_x, w=estimate.blend_weight, percent=self.gain.user_percent)

        if self.settings.auto_enabled and self.edr_support is not EdrSupport.UNSUPPORTED:
            self._auto_step(estimate, now)

    def _auto_step(self, estimate: IlluminanceEstimate, now: float) -> None:
        decision = self.auto.evaluate(estimate.lux, now, self.gain.user_percent)

        if decision.transition is Transition.ENABLE:
            self._set_auto_percent(decision.percent)
            self._set_edr(True)
            log("info", "edr_enabled", lux=estimate.lux, source="auto", percent=decision.percent)
        elif decision.transition is Transition.DISABLE:
            self._set_auto_percent(0.0)
            self._set_edr(False)
            log("info", "edr_disabled", lux=estimate.lux, source="auto")
        elif decision.percent is not None:
            self._set_auto_percent(decision.percent)
            self.gain.apply()

    def _set_auto_percent(self, percent: float) -> None:
        # Settings track the live percent
        self.gain.user_percent = percent
        self.settings.user_percent = percent

    def _set_edr(self, enabled: bool) -> None:
        self.settings.enabled = enabled
        self.watchdog.reset()
        self.gain.set_enabled(enabled)

    def _poll_tick(self, now: float) -> None:
        details = self.refresh_cap()
        if not self.gain.enabled:
            return

        # Factor always follows user_percent against the live cap
        self.gain.apply()
        if self.gain.last_failed:
            log("warn", "gain_apply_failed", displays=self.gain.last_failed)
        self.applier.pulse()

        if self.watchdog.observe(self.gain.user_percent, details.max_potential):
            self._start_recovery(details)

        if self.settings.hdr_duck_enabled and self.hdr_probe is not None:
            target = self.hdr.observe(bool(self.hdr_probe()))
            if target is not None:
                self._start_duck(target, now)

    def _start_recovery(self, details: CapDetails) -> None:
        log("warn", "edr_recovery", headroom=details.max_potential, percent=self.gain.user_percent)
        self.applier.force_overlay(True, EDR_RECOVERY_FPS)
        self.applier.screen_update()
        self.applier.nudge()
        self.scheduler.once("edr-revert", EDR_RECOVERY_SECONDS, self._end_recovery)

    def _end_recovery(self, now: float) -> None:
        self.applier.restore_overlay()
        self.watchdog.reverted()

    def _start_duck(self, target: float, now: float) -> None:
        if self.gain.duck.start(target, now, self.settings.hdr_fade_seconds):
            self.scheduler.every("duck", 1.0 / DUCK_FPS, self._duck_tick)

    def _duck_tick(self, now: float) -> None:
        self.gain.duck.tick(now)
        self.gain.apply()
        if not self.gain.duck.active:
            self.scheduler.cancel("duck")

    # ------------------------------------------------------------------
    # External events
    # ------------------------------------------------------------------

    def notify_topology_changed(self) -> None:
        self.applier.screen_update()
        self.refresh_cap()
        self.gain.apply(force=True)

    def notify_wake(self) -> None:
        self.refresh_cap()
        self.gain.apply(force=True)

    def notify_space_changed(self) -> None:
        if not self.gain.enabled:
            return
        self.applier.screen_update()
        self.applier.set_overlay_config(self.settings.overlay_fullsize, self.settings.overlay_fps)
        self.applier.nudge()
        self.scheduler.once("nudge-revert", NUDGE_SECONDS, self._end_nudge)

    def _end_nudge(self, now: float) -> None:
        if self.applier.forced_overlay is None:
            self.applier.restore_overlay()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_user_percent(self) -> float:
        return self.gain.user_percent

    def current_factor(self) -> float:
        return self.gain.factor

    def current_cap_details(self) -> CapDetails:
        return self.gain.cap

    @property
    def supports_edr(self) -> bool:
        return self.edr_support is not EdrSupport.UNSUPPORTED

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def set_user_percent(self, percent: float) -> None:
        self.gain.set_user_percent(percent)
        self.settings.update(user_percent=self.gain.user_percent)
        self._persist()

    def set_factor(self, factor: float) -> None:
        self.gain.set_factor(factor)
        self.settings.update(user_percent=self.gain.user_percent)
        self._persist()

    def set_enabled(self, enabled: bool) -> None:
        """Manual toggle; auto-control backs off for its grace window."""
        self.auto.note_manual_override(enabled, self._now())
        self._set_edr(enabled)
        self._persist()
        log("info", "edr_enabled" if enabled else "edr_disabled", source="manual", lux=self.last_lux)

    def set_auto_enabled(self, enabled: bool) -> None:
        self.settings.auto_enabled = enabled
        self.auto.sync(self.gain.enabled, self._now())
        self._persist()

    def set_profile(self, profile: AutoProfile | str) -> None:
        name = profile.name if isinstance(profile, AutoProfile) else profile
        self.settings.update(profile=name)
        resolved = get_profile(self.settings.profile)
        self.auto.set_profile(resolved)
        self.sampler.set_profile(resolved)
        self._persist()

    def set_guard(self, enabled: bool, factor: float | None = None) -> None:
        self.settings.set_guard(enabled, factor)
        self.refresh_cap()
        self.gain.apply()
        self._persist()

    def set_sample_hz(self, hz: float) -> None:
        self.settings.update(sample_hz=hz)
        self.sampler.set_sample_hz(self.settings.sample_hz)
        self.auto.set_sample_hz(self.sampler.sample_hz)
        if self.scheduler.is_running("sample"):
            self.scheduler.every("sample", 1.0 / self.sampler.sample_hz, self._sample_tick)
        self._persist()

    def set_overlay(self, fullsize: bool, fps: int) -> None:
        self.settings.update(overlay_fullsize=bool(fullsize), overlay_fps=fps)
        self.applier.set_overlay_config(self.settings.overlay_fullsize, self.settings.overlay_fps)
        self._persist()

    def set_hdr_duck(self, enabled: bool, percent: float | None = None, fade_seconds: float | None = None) -> None:
        changes: dict[str, Any] = {"hdr_duck_enabled": bool(enabled)}
        if percent is not None:
            changes["hdr_duck_percent"] = percent
        if fade_seconds is not None:
            changes["hdr_fade_seconds"] = fade_seconds
        self.settings.update(**changes)
        self.gain.duck_percent = self.settings.hdr_duck_percent
        if not enabled:
            self.hdr.reset()
            self._start_duck(0.0, self._now())
        self._persist()

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def capture_dark(self) -> bool:
        """Use the current smoothed reading as the covered-sensor baseline."""
        if not self.sampler.capture_dark():
            return False
        self.sampler.recalibrate(self._now())
        self._persist()
        return True

    def set_anchor(self, which: str, lux: float) -> CalibrationAnchor | None:
        """Pair the current reading with a reference lux value as anchor "a" or "b"."""
        if which not in ("a", "b"):
            raise ValueError(f"Anchor must be 'a' or 'b', got {which!r}")
        anchor = self.sampler.anchor_from_current(lux)
        if anchor is None:
            return None
        setattr(self.settings, f"anchor_{which}", anchor)
        self._persist()
        return anchor

    def clear_anchors(self) -> None:
        self.settings.anchor_a = None
        self.settings.anchor_b = None
        self._persist()

    def fit_calibration(self) -> bool:
        """Fit a and p through both anchors. No-op unless both are set and usable."""
        s = self.settings
        if s.anchor_a is None or s.anchor_b is None:
            return False
        if not s.calibrator.fit(s.anchor_a, s.anchor_b):
            return False
        self._persist()
        return True

    def reset_calibration(self) -> None:
        self.settings.calibrator.reset()
        self.clear_anchors()
        self.sampler.recalibrate(self._now())

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def diagnostics(self) -> dict[str, Any]:
        cap = self.gain.cap
        state = self.auto.state
        diag = self.sampler.diagnostics()
        diag.update(
            {
                "sensor": self.sensor.name,
                "sensor_status": "ok" if self.sampler.available else "unavailable",
                "display": self.display.name,
                "edr_support": self.edr_support.value,
                "cap": cap.cap,
                "raw_cap": cap.raw_cap,
                "best_ratio": cap.best_ratio,
                "guard_factor": cap.guard_factor,
                "max_potential": cap.max_potential,
                "cap_clamped": cap.raw_cap > cap.cap + 0.0005,
                "auto_state": self.auto.mode.value,
                "above_count": state.above_count,
                "below_count": state.below_count,
                "grace_active": self.auto.in_grace(self._now()),
                "staged_percent": self.auto.staged_percent,
                "duck_level": self.gain.duck.level,
                "duck_active": self.gain.duck.active,
                "edr_recoveries": self.watchdog.recoveries,
                "failed_writes": self.gain.failed_writes,
            }
        )
        return diag

    def snapshot(self) -> ControllerSnapshot:
        return ControllerSnapshot(
            enabled=self.gain.enabled,
            auto_enabled=self.settings.auto_enabled,
            auto_state=self.auto.mode.value,
            profile=self.settings.profile,
            user_percent=self.gain.user_percent,
            factor=self.gain.factor,
            effective_factor=self.gain.effective_factor(),
            cap=self.gain.cap,
            lux=self.last_lux,
            sensor_available=self.sampler.available,
            edr_support=self.edr_support.value,
            duck_level=self.gain.duck.level,
            diagnostics=self.diagnostics(),
        )
