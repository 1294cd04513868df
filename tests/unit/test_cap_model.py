"""Tests for cap_model.py - headroom to safe gain ceiling."""

from __future__ import annotations

import pytest

from edr_ambient.cap_model import (
    MAX_CAP,
    MAX_GUARD_FACTOR,
    MIN_GUARD_FACTOR,
    CapDetails,
    clamp_guard_factor,
    compute_cap,
)
from edr_ambient.display import DisplayHeadroom


def _head(display_id: int, potential: float, reference: float = 1.0, is_target: bool = True) -> DisplayHeadroom:
    return DisplayHeadroom(display_id, potential=potential, reference=reference, is_target=is_target)


class TestComputeCap:
    def test_safety_margin_applied(self):
        details = compute_cap([_head(1, 1.6)])
        assert details.raw_cap == pytest.approx(1.0 + 0.6 * 0.98)
        assert details.cap == pytest.approx(1.588)
        assert details.saw_edr
        assert details.display_id == 1

    def test_hard_ceiling(self):
        details = compute_cap([_head(1, 4.0)])
        assert details.raw_cap > MAX_CAP
        assert details.cap == pytest.approx(MAX_CAP)

    def test_guard_scales_cap(self):
        details = compute_cap([_head(1, 1.6)], guard_enabled=True, guard_factor=0.9)
        assert details.cap == pytest.approx(1.588 * 0.9)
        assert details.guard_factor == 0.9

    def test_guard_ignored_when_disabled(self):
        details = compute_cap([_head(1, 1.6)], guard_enabled=False, guard_factor=0.7)
        assert details.guard_factor == 1.0
        assert details.cap == pytest.approx(1.588)

    def test_guard_never_pushes_below_sdr(self):
        details = compute_cap([_head(1, 1.05)], guard_enabled=True, guard_factor=0.7)
        assert details.cap == 1.0
        assert not details.has_headroom

    def test_best_display_wins(self):
        details = compute_cap([_head(1, 1.2), _head(2, 1.6), _head(3, 1.4)])
        assert details.display_id == 2
        assert details.max_potential == 1.6

    def test_best_ratio_uses_reference(self):
        assert compute_cap([_head(1, 1.6, reference=1.0)]).best_ratio == pytest.approx(1.6)
        assert compute_cap([_head(1, 1.6, reference=2.0)]).best_ratio == pytest.approx(0.8)

    def test_custom_safety_margin(self):
        details = compute_cap([_head(1, 1.5)], safety_margin=0.5)
        assert details.cap == pytest.approx(1.25)
        assert details.safety_margin == 0.5

    @pytest.mark.parametrize("potential", [0.5, 1.0, 1.01, 1.3, 1.7, 2.0, 16.0])
    @pytest.mark.parametrize("guard", [False, True])
    def test_cap_always_within_bounds(self, potential: float, guard: bool):
        details = compute_cap([_head(1, potential)], guard_enabled=guard, guard_factor=0.7)
        assert 1.0 <= details.cap <= MAX_CAP


class TestSdrFallback:
    def test_no_headroom(self):
        details = compute_cap([_head(1, 1.0)])
        assert details.cap == 1.0
        assert details.raw_cap == 1.0
        assert not details.saw_edr

    def test_no_displays(self):
        details = compute_cap([])
        assert details == CapDetails(cap=1.0, raw_cap=1.0, best_ratio=1.0, guard_factor=1.0)
        assert details.display_id is None

    def test_global_support_flag(self):
        details = compute_cap([_head(1, 1.0)], any_supports_edr=True)
        assert details.saw_edr
        assert details.cap == 1.0

    def test_non_target_display_counts_for_support(self):
        external = _head(2, 2.0, is_target=False)
        details = compute_cap([_head(1, 1.0)], all_displays=[_head(1, 1.0), external])
        assert details.saw_edr
        assert details.cap == 1.0
        assert details.display_id == 1


class TestGuardFactor:
    @pytest.mark.parametrize(
        "value,expected",
        [(0.5, MIN_GUARD_FACTOR), (0.8, 0.8), (1.0, MAX_GUARD_FACTOR)],
    )
    def test_clamp(self, value: float, expected: float):
        assert clamp_guard_factor(value) == pytest.approx(expected)

    def test_clamped_inside_compute(self):
        details = compute_cap([_head(1, 1.6)], guard_enabled=True, guard_factor=0.1)
        assert details.guard_factor == MIN_GUARD_FACTOR
