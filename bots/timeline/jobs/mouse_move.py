"""Straight-line pointer motion at a constant speed.

payload: {"xi", "yi", "xf", "yf", "speed" (px/s, default 800)}
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from ..work_unit import WorkUnit
from .base import Job, JobImpl, JobKind, RenderContext

DEFAULT_SPEED = 800.0


def _num(raw: object) -> float | None:
    try:
        value = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


@dataclass
class MouseMoveState:
    xi: float
    yi: float
    xf: float
    yf: float
    dir_x: float
    dir_y: float
    dist: float
    speed: float
    progress: float = 0.0
    placed: bool = False
    last_x: int | None = None
    last_y: int | None = None


class MouseMove(JobImpl):
    kind = JobKind.MOUSE_MOVE

    def begin(self, job: Job, unit: WorkUnit) -> bool:
        p = job.payload
        coords = [_num(p.get(k)) for k in ("xi", "yi", "xf", "yf")]
        if any(c is None for c in coords):
            job.drop_reason = "invalid_coordinates"
            return False
        xi, yi, xf, yf = coords  # type: ignore[misc]
        speed = _num(p.get("speed"))
        if speed is None or speed <= 0:
            speed = DEFAULT_SPEED
        dx, dy = xf - xi, yf - yi
        dist = math.hypot(dx, dy)
        job.rt = MouseMoveState(
            xi=xi,
            yi=yi,
            xf=xf,
            yf=yf,
            dir_x=dx / dist if dist else 0.0,
            dir_y=dy / dist if dist else 0.0,
            dist=dist,
            speed=speed,
        )
        return True

    def tick(self, job: Job, dt_ms: float) -> None:
        rt: MouseMoveState = job.rt
        rt.progress = min(rt.progress + rt.speed * (dt_ms / 1000.0), rt.dist)

    async def render(self, job: Job, ctx: RenderContext) -> bool:
        rt: MouseMoveState = job.rt
        if not rt.placed:
            await ctx.session.mouse_move(rt.xi, rt.yi)
            rt.last_x, rt.last_y = round(rt.xi), round(rt.yi)
            rt.placed = True
            if rt.dist == 0:
                job.result = {"x": rt.last_x, "y": rt.last_y}
                return True

        # Interpolate inside the current tick; never past the end of the path.
        extra = rt.speed * (ctx.frame_alpha * ctx.dt_per_tick_ms / 1000.0)
        travelled = min(rt.progress + extra, rt.dist)
        x = round(rt.xi + rt.dir_x * travelled)
        y = round(rt.yi + rt.dir_y * travelled)
        if x != rt.last_x or y != rt.last_y:
            await ctx.session.mouse_move(x, y)
            rt.last_x, rt.last_y = x, y

        if rt.progress < rt.dist:
            return False
        if (x, y) != (round(rt.xf), round(rt.yf)):
            await ctx.session.mouse_move(rt.xf, rt.yf)
            rt.last_x, rt.last_y = round(rt.xf), round(rt.yf)
        job.result = {"x": rt.last_x, "y": rt.last_y}
        return True
