"""
Maximum safe gain ("cap") from reported EDR headroom.

The display with the largest potential headroom decides. A safety margin
keeps a little headroom in reserve, a hard ceiling bounds how far we push
past SDR white, and the optional guard scales the result down further.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .display import DisplayHeadroom

MAX_CAP = 1.70
DEFAULT_SAFETY_MARGIN = 0.98
DEFAULT_GUARD_FACTOR = 0.90
MIN_GUARD_FACTOR = 0.70
MAX_GUARD_FACTOR = 0.98


@dataclass(frozen=True)
class CapDetails:
    cap: float = 1.0
    raw_cap: float = 1.0
    best_ratio: float = 1.0
    guard_factor: float = 1.0
    saw_edr: bool = False
    safety_margin: float = DEFAULT_SAFETY_MARGIN
    max_potential: float = 1.0
    display_id: int | None = None

    @property
    def has_headroom(self) -> bool:
        return self.cap > 1.0


def clamp_guard_factor(factor: float) -> float:
    return max(MIN_GUARD_FACTOR, min(MAX_GUARD_FACTOR, factor))


def compute_cap(
    targets: Iterable[DisplayHeadroom],
    all_displays: Iterable[DisplayHeadroom] = (),
    any_supports_edr: bool = False,
    guard_enabled: bool = False,
    guard_factor: float = DEFAULT_GUARD_FACTOR,
    safety_margin: float = DEFAULT_SAFETY_MARGIN,
) -> CapDetails:
    """
    Derive the cap from the target displays' headroom.

    all_displays only feeds saw_edr, which also covers displays we do not
    drive (an external EDR panel still means EDR exists on this machine).
    """
    targets = list(targets)
    guard = clamp_guard_factor(guard_factor) if guard_enabled else 1.0

    best: DisplayHeadroom | None = None
    for head in targets:
        if best is None or head.potential > best.potential:
            best = head

    saw_edr = any_supports_edr or any(h.potential > 1.0 for h in targets) or any(
        h.potential > 1.0 for h in all_displays
    )

    if best is None or best.potential <= 1.0:
        # SDR-only fallback
        return CapDetails(
            cap=max(1.0, 1.0 * guard),
            raw_cap=1.0,
            best_ratio=1.0,
            guard_factor=guard,
            saw_edr=saw_edr,
            safety_margin=safety_margin,
            max_potential=best.potential if best else 1.0,
            display_id=best.display_id if best else None,
        )

    raw_cap = 1.0 + (best.potential - 1.0) * safety_margin
    pre_clamped = min(raw_cap, MAX_CAP)
    cap = max(1.0, pre_clamped * guard)

    return CapDetails(
        cap=cap,
        raw_cap=raw_cap,
        best_ratio=best.potential / max(best.reference, 1.0),
        guard_factor=guard,
        saw_edr=saw_edr,
        safety_margin=safety_margin,
        max_potential=best.potential,
        display_id=best.display_id,
    )
