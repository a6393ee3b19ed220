"""Scroll the next post's cell top under the timeline tab bar.

payload: {"speed": px/s}  (default 1600)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from ..errors import NOT_FOUND, JobError
from ..work_unit import WorkUnit
from .alignment import STOP_EPS, AlignmentController, frame_elapsed_ms
from .base import Job, JobImpl, JobKind, RenderContext

logger = logging.getLogger("timeline.pilot.jobs.scroll")

DEFAULT_SPEED = 1600.0
# The next post must start at least this far below the anchor so 1-2px rounding
# jitter cannot re-select the post we just aligned.
MIN_GAP = 12.0


def _speed(raw: object, default: float) -> float:
    try:
        value = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) and value > 0 else default


@dataclass
class ScrollState:
    speed: float
    inited: bool = False
    anchor_bottom: float = 0.0
    status_id: str | None = None
    controller: AlignmentController | None = None
    last_remaining: float | None = None
    sent_px: float = 0.0
    renders: int = 0
    ticks: int = 0


class ScrollToNextPost(JobImpl):
    kind = JobKind.SCROLL_TO_NEXT_POST

    def __init__(self, *, eps: float = STOP_EPS, min_gap: float = MIN_GAP) -> None:
        self.eps = eps
        self.min_gap = min_gap

    def begin(self, job: Job, unit: WorkUnit) -> bool:
        speed = _speed(job.payload.get("speed"), DEFAULT_SPEED)
        job.rt = ScrollState(speed=speed, controller=AlignmentController(speed, eps=self.eps))
        return True

    def tick(self, job: Job, dt_ms: float) -> None:
        job.rt.ticks += 1

    async def _init(self, rt: ScrollState, ctx: RenderContext) -> None:
        anchor = await ctx.anchors.ensure_anchor(ctx.unit)
        if anchor is None:
            raise JobError("anchor_not_found", kind=NOT_FOUND)
        candidate = await ctx.page.find_next_post_below(
            anchor.rect.bottom + self.min_gap, skip_id=ctx.unit.last_aligned_id
        )
        if candidate is None:
            raise JobError("no_post_below_anchor", kind=NOT_FOUND)
        rt.anchor_bottom = anchor.rect.bottom
        rt.status_id = candidate.status_id
        rt.inited = True
        logger.info(
            "scroll_to_next_post init: id=%s anchor_bottom=%d speed=%s px/s",
            candidate.status_id,
            round(anchor.rect.bottom),
            rt.speed,
        )

    async def render(self, job: Job, ctx: RenderContext) -> bool:
        rt: ScrollState = job.rt
        if not rt.inited:
            await self._init(rt, ctx)
        rt.renders += 1

        # Re-measure by status id: cached node handles die with virtualization.
        top = await ctx.page.measure_cell_top(rt.status_id or "")
        if top is None:
            raise JobError("target_lost", kind=NOT_FOUND, details={"status_id": rt.status_id})
        remaining = max(0.0, top - rt.anchor_bottom)

        step = rt.controller.step(remaining, frame_elapsed_ms(ctx.dt_per_tick_ms, ctx.frame_alpha))
        if step.delta > 0:
            await ctx.session.mouse_wheel(delta_y=step.delta)
            rt.sent_px += step.delta
        rt.last_remaining = remaining

        if not step.converged:
            return False

        ctx.unit.last_aligned_id = rt.status_id
        job.result = {
            "status_id": rt.status_id,
            "remaining": round(remaining - step.delta, 2),
            "sent_px": round(rt.sent_px, 2),
            "renders": rt.renders,
            "ticks": rt.ticks,
        }
        return True
