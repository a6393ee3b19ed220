"""Request a reply for the last captured post from the generation backend.

The HTTP call runs in the background; render() polls it and completes only once
the result (or error) has landed. The result is cached on the work unit for the
write job.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..errors import PRECONDITION, REMOTE, JobError
from ..notifications import REPLY_ERROR, REPLY_READY
from ..work_unit import WorkUnit
from .base import Job, JobImpl, JobKind, RenderContext

logger = logging.getLogger("timeline.pilot.jobs.generate")

IDLE_WHILE_WAITING_MS = 80.0


def has_content(post: Any) -> bool:
    if not isinstance(post, dict):
        return False
    return bool(post.get("text")) or bool(post.get("image_urls"))


@dataclass
class GenerateState:
    post: dict[str, Any]
    task: asyncio.Task | None = None


class GeneratePostReply(JobImpl):
    kind = JobKind.GENERATE_POST_REPLY

    def begin(self, job: Job, unit: WorkUnit) -> bool:
        post = unit.last_captured_post
        if not has_content(post):
            job.drop_reason = "no_captured_post"
            return False
        job.rt = GenerateState(post=dict(post))  # type: ignore[arg-type]
        return True

    def discard(self, job: Job) -> None:
        rt: GenerateState | None = job.rt
        if rt is not None and rt.task is not None and not rt.task.done():
            rt.task.cancel()

    async def render(self, job: Job, ctx: RenderContext) -> bool:
        rt: GenerateState = job.rt
        if rt.task is None:
            rt.task = asyncio.create_task(asyncio.to_thread(ctx.backend.generate_reply, rt.post))
        if not rt.task.done():
            ctx.set_idle_hint(IDLE_WHILE_WAITING_MS)
            return False

        exc = rt.task.exception()
        if exc is not None:
            ctx.notify(REPLY_ERROR, ok=False, reason=str(exc))
            raise JobError("generation_failed", kind=REMOTE, details={"error": str(exc)})

        result = rt.task.result()
        reply = result.get("reply") or result.get("x_reply")
        if not isinstance(reply, str) or not reply.strip():
            ctx.notify(REPLY_ERROR, ok=False, reason="empty_reply")
            raise JobError("empty_reply", kind=PRECONDITION)

        ctx.unit.last_generated_reply = result
        ctx.notify(REPLY_READY, payload=result)
        job.result = {"reply_id": result.get("id"), "post_id": rt.post.get("post_id")}
        logger.info("reply ready post=%s id=%s", rt.post.get("post_id"), result.get("id"))
        return True
