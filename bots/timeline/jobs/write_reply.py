"""Open the reply composer on the nearest post, type the reply and post it.

payload: {"text"?: str, "max_cps"?: number (default 12), "reply_id"?: any}

Runs in a single render: every step is an awaited remote call, and paced typing
checks for cancellation between characters. Confirmation (mark_posted and the
reply_posted event) is skipped when the unit was cancelled mid-flight.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any

from ..errors import CANCELLED, NOT_FOUND, TIMEOUT, JobError
from ..notifications import REPLY_POST_FAILED, REPLY_POSTED
from ..timeline_page import DIALOG_POST_BUTTON_SELECTOR, REPLY_BUTTON_SELECTOR
from ..work_unit import WorkUnit
from ..writer import slice_to_limit, type_paced
from .base import Job, JobImpl, JobKind, RenderContext

logger = logging.getLogger("timeline.pilot.jobs.write")

DEFAULT_MAX_CPS = 12
MODAL_WAIT_S = 2.0
MODAL_POLL_S = 0.12
AFTER_CLICK_S = 0.15


@dataclass
class WriteState:
    text: str
    max_cps: float
    reply_id: Any = None


def _reply_text(payload: dict[str, Any], cached: dict[str, Any] | None) -> tuple[str, Any]:
    text = payload.get("text")
    reply_id = payload.get("reply_id")
    if isinstance(cached, dict):
        if not (isinstance(text, str) and text.strip()):
            text = cached.get("reply") or cached.get("x_reply")
        if reply_id is None:
            reply_id = cached.get("id")
    return (text if isinstance(text, str) else ""), reply_id


class WritePostReply(JobImpl):
    kind = JobKind.WRITE_POST_REPLY

    def begin(self, job: Job, unit: WorkUnit) -> bool:
        text, reply_id = _reply_text(dict(job.payload), unit.last_generated_reply)
        text = slice_to_limit(text.strip())
        if not text:
            job.drop_reason = "no_reply_text"
            return False
        try:
            max_cps = float(job.payload.get("max_cps") or DEFAULT_MAX_CPS)
        except (TypeError, ValueError):
            max_cps = DEFAULT_MAX_CPS
        if not math.isfinite(max_cps) or max_cps <= 0:
            max_cps = DEFAULT_MAX_CPS
        job.rt = WriteState(text=text, max_cps=max_cps, reply_id=reply_id)
        return True

    async def render(self, job: Job, ctx: RenderContext) -> bool:
        rt: WriteState = job.rt
        try:
            await self._write(job, rt, ctx)
        except JobError as exc:
            if exc.kind != CANCELLED and not ctx.is_cancelled(job):
                ctx.notify(REPLY_POST_FAILED, ok=False, reason=exc.reason)
            raise

        if ctx.is_cancelled(job):
            logger.info("reply written but unit was cancelled; skipping confirmation")
            job.result = {"posted": False, "cancelled": True}
            return True

        if rt.reply_id is not None:
            try:
                await asyncio.to_thread(ctx.backend.mark_posted, rt.reply_id)
            except Exception:  # noqa: BLE001
                logger.warning("mark_posted failed reply_id=%s", rt.reply_id, exc_info=True)
        ctx.notify(REPLY_POSTED, payload={"reply_id": rt.reply_id, "chars": len(rt.text)})
        job.result = {"posted": True, "reply_id": rt.reply_id, "chars": len(rt.text)}
        return True

    async def _write(self, job: Job, rt: WriteState, ctx: RenderContext) -> None:
        anchor = await ctx.anchors.ensure_anchor(ctx.unit)
        if anchor is None:
            raise JobError("anchor_not_found", kind=NOT_FOUND)
        status_id = await ctx.page.nearest_post_id(anchor.rect.bottom)
        if status_id is None:
            raise JobError("no_article_near_anchor", kind=NOT_FOUND)

        button = await ctx.page.element_center(status_id, REPLY_BUTTON_SELECTOR)
        if button is None:
            raise JobError("reply_button_not_found", kind=NOT_FOUND, details={"status_id": status_id})
        await ctx.session.click(*button)
        await asyncio.sleep(AFTER_CLICK_S)

        dialog = await self._wait_for_dialog(job, ctx)
        composer = await ctx.page.find_composer(dialog)
        if composer is None:
            raise JobError("composer_not_found", kind=NOT_FOUND)
        await ctx.session.focus_node(composer)

        typed = await type_paced(ctx.session, rt.text, rt.max_cps, should_stop=lambda: ctx.is_cancelled(job))
        if typed < len(rt.text):
            raise JobError("cancelled_while_typing", kind=CANCELLED, details={"typed": typed})

        post = await ctx.session.query_element(dialog, DIALOG_POST_BUTTON_SELECTOR)
        if post is None:
            raise JobError("post_button_not_found", kind=NOT_FOUND)
        await ctx.session.center_click(post)

    async def _wait_for_dialog(self, job: Job, ctx: RenderContext) -> int:
        waited = 0.0
        while True:
            if ctx.is_cancelled(job):
                raise JobError("cancelled_waiting_for_composer", kind=CANCELLED)
            dialog = await ctx.page.find_dialog()
            if dialog is not None:
                return dialog
            if waited >= MODAL_WAIT_S:
                raise JobError("composer_dialog_not_found", kind=TIMEOUT, details={"waited_ms": round(waited * 1000)})
            await asyncio.sleep(MODAL_POLL_S)
            waited += MODAL_POLL_S
