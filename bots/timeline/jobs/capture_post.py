"""Capture the post nearest the timeline anchor.

Expands truncated text ("Show more"), scrolls the post's cell bottom up to the
viewport bottom when it sits below the fold, then extracts its fields. The
result is cached on the work unit for the reply-generation job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import NOT_FOUND, JobError
from ..notifications import CAPTURED_POST, CAPTURED_POST_SKIPPED
from ..timeline_page import SHOW_MORE_SELECTOR
from ..work_unit import WorkUnit
from .alignment import STOP_EPS, AlignmentController, frame_elapsed_ms
from .base import Job, JobImpl, JobKind, RenderContext

logger = logging.getLogger("timeline.pilot.jobs.capture")

DEFAULT_ALIGN_SPEED = 200.0
SHOW_MORE_SETTLE_MS = 160.0

LOCATE = "locate"
SETTLE = "settle"
ALIGN = "align"
EXTRACT = "extract"


@dataclass
class CaptureState:
    phase: str = LOCATE
    status_id: str | None = None
    settle_ms: float = 0.0
    expanded: bool = False
    controller: AlignmentController | None = None


class CapturePost(JobImpl):
    kind = JobKind.CAPTURE_POST_CONTENT

    def begin(self, job: Job, unit: WorkUnit) -> bool:
        job.rt = CaptureState()
        return True

    def tick(self, job: Job, dt_ms: float) -> None:
        rt: CaptureState = job.rt
        if rt.phase == SETTLE:
            rt.settle_ms -= dt_ms

    async def render(self, job: Job, ctx: RenderContext) -> bool:
        rt: CaptureState = job.rt
        if rt.phase == LOCATE:
            return await self._locate(job, rt, ctx)
        if rt.phase == SETTLE:
            if rt.settle_ms > 0:
                return False
            await self._plan_alignment(rt, ctx)
            return False
        if rt.phase == ALIGN:
            await self._align(rt, ctx)
            return False
        return await self._extract(job, rt, ctx)

    async def _locate(self, job: Job, rt: CaptureState, ctx: RenderContext) -> bool:
        anchor = await ctx.anchors.ensure_anchor(ctx.unit)
        if anchor is None:
            raise JobError("anchor_not_found", kind=NOT_FOUND)
        status_id = await ctx.page.nearest_post_id(anchor.rect.bottom)
        if status_id is None:
            ctx.notify(CAPTURED_POST_SKIPPED, ok=False, reason="no_article_near_anchor")
            job.result = {"skipped_reason": "no_article_near_anchor"}
            return True
        rt.status_id = status_id

        button = await ctx.page.element_center(status_id, SHOW_MORE_SELECTOR)
        if button is not None:
            await ctx.session.click(*button)
            rt.expanded = True
            # Let the expanded text reflow before measuring.
            rt.settle_ms = SHOW_MORE_SETTLE_MS
            rt.phase = SETTLE
            return False
        await self._plan_alignment(rt, ctx)
        return False

    async def _plan_alignment(self, rt: CaptureState, ctx: RenderContext) -> None:
        cell = await ctx.page.measure_cell_bottom(rt.status_id or "")
        if cell is not None and cell.below_fold > STOP_EPS:
            speed = await ctx.page.read_scroll_speed(DEFAULT_ALIGN_SPEED)
            rt.controller = AlignmentController(speed)
            rt.phase = ALIGN
            return
        rt.phase = EXTRACT

    async def _align(self, rt: CaptureState, ctx: RenderContext) -> None:
        cell = await ctx.page.measure_cell_bottom(rt.status_id or "")
        if cell is None or rt.controller is None:
            # Lost the cell mid-scroll; extract whatever is on screen.
            rt.phase = EXTRACT
            return
        step = rt.controller.step(max(0.0, cell.below_fold), frame_elapsed_ms(ctx.dt_per_tick_ms, ctx.frame_alpha))
        if step.delta > 0:
            await ctx.session.mouse_wheel(delta_y=step.delta)
            ctx.set_idle_hint(12)
        if step.converged:
            rt.phase = EXTRACT

    async def _extract(self, job: Job, rt: CaptureState, ctx: RenderContext) -> bool:
        found = await ctx.page.extract_post(rt.status_id or "")
        post = found.get("post") if found.get("ok") else None
        if isinstance(post, dict):
            ctx.unit.last_captured_post = post
            ctx.notify(CAPTURED_POST, payload=post)
            job.result = {"post_id": post.get("post_id"), "expanded": rt.expanded}
            logger.info("captured post id=%s", post.get("post_id"))
            return True
        reason = str(found.get("skipped_reason") or "unknown")
        ctx.notify(CAPTURED_POST_SKIPPED, ok=False, reason=reason)
        job.result = {"skipped_reason": reason}
        return True
