"""Closed-loop alignment of a measured edge onto a reference edge.

The controller sees one fresh measurement per render call (a remote round trip)
and answers with the motion to emit. Motion is time-budgeted, eased out as the
gap closes and clamped so the gap never drops below the tolerance band: the
measured `remaining` is non-increasing and never overshoots past zero.
"""

from __future__ import annotations

from dataclasses import dataclass

STOP_EPS = 2.0
EASE_K = 120.0
MIN_EASE = 0.35
MIN_STEP = 0.25


@dataclass(frozen=True, slots=True)
class AlignmentStep:
    delta: float
    converged: bool


class AlignmentController:
    def __init__(
        self,
        speed: float,
        *,
        eps: float = STOP_EPS,
        ease_k: float = EASE_K,
        min_ease: float = MIN_EASE,
        min_step: float = MIN_STEP,
    ) -> None:
        if speed <= 0:
            raise ValueError("speed must be positive")
        self.speed = float(speed)
        self.eps = float(eps)
        self.ease_k = float(ease_k)
        self.min_ease = float(min_ease)
        self.min_step = float(min_step)

    def ease(self, remaining: float) -> float:
        return min(max(remaining / (remaining + self.ease_k), self.min_ease), 1.0)

    def step(self, remaining: float, elapsed_ms: float) -> AlignmentStep:
        if remaining <= self.eps:
            # Inside the band: one final correction unless already within half of it.
            delta = remaining if remaining > self.eps / 2.0 else 0.0
            return AlignmentStep(delta=delta, converged=True)

        cap = remaining - self.eps
        desired = self.speed * max(0.0, elapsed_ms) / 1000.0 * self.ease(remaining)
        floor = min(self.min_step, cap)
        return AlignmentStep(delta=min(max(desired, floor), cap), converged=False)


def frame_elapsed_ms(dt_per_tick_ms: float, frame_alpha: float) -> float:
    """Time a motion job may cover in one render: one tick plus the sub-tick remainder."""
    return max(0.0, dt_per_tick_ms * (1.0 + frame_alpha))
