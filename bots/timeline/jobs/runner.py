"""Per-unit job runner.

Owns the single active-job slot for one work unit. The engine loop calls
tick_phase() and then render_phase() once per outer iteration; every failure a
job raises is converted into an event here and never reaches the loop.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..errors import DriverError, JobError
from ..notifications import JOB_CANCELLED, JOB_DONE, JOB_DROPPED, JOB_FAILED, Notifier
from ..ticker import FrameStep
from ..work_queue import WorkQueue
from ..work_unit import WorkUnit
from .base import Job, JobImpl, JobKind, RenderContext

logger = logging.getLogger("timeline.pilot.runner")


class JobRunner:
    def __init__(self, queue: WorkQueue, notifier: Notifier, registry: Mapping[JobKind, JobImpl] | None = None):
        if registry is None:
            from . import JOB_REGISTRY

            registry = JOB_REGISTRY
        self.queue = queue
        self.notifier = notifier
        self.registry = registry
        self.active: Job | None = None

    def active_meta(self) -> dict[str, Any] | None:
        return self.active.meta() if self.active is not None else None

    # ─────────────────────────────────────────────────────────────────────────
    # Phases
    # ─────────────────────────────────────────────────────────────────────────

    def tick_phase(self, unit: WorkUnit, frame: FrameStep) -> None:
        if self.active is None:
            self._begin_next(unit)
        job = self.active
        if job is None:
            return
        impl = self.registry[job.kind]
        for _ in range(frame.ticks):
            try:
                impl.tick(job, frame.tick_ms)
            except Exception as exc:  # noqa: BLE001
                logger.exception("job tick failed id=%s type=%s", job.id, job.kind.value)
                self._retire(unit, job, JOB_FAILED, ok=False, reason=_reason(exc))
                return

    async def render_phase(self, unit: WorkUnit, ctx: RenderContext) -> None:
        job = self.active
        if job is None:
            return
        impl = self.registry[job.kind]
        try:
            done = await impl.render(job, ctx)
        except JobError as exc:
            if self._interrupted(unit, job):
                return
            logger.warning("job failed id=%s type=%s: %s", job.id, job.kind.value, exc)
            self._retire(unit, job, JOB_FAILED, ok=False, reason=exc.reason, payload=exc.to_dict())
            return
        except DriverError as exc:
            if self._interrupted(unit, job):
                return
            logger.warning("job remote call failed id=%s type=%s: %s", job.id, job.kind.value, exc)
            self._retire(unit, job, JOB_FAILED, ok=False, reason="remote_call_failed", payload={"error": str(exc)})
            return
        except Exception as exc:  # noqa: BLE001
            if self._interrupted(unit, job):
                return
            logger.exception("job render crashed id=%s type=%s", job.id, job.kind.value)
            self._retire(unit, job, JOB_FAILED, ok=False, reason="unexpected_error", payload={"error": str(exc)})
            return

        if self._interrupted(unit, job):
            return
        if done:
            logger.info("job done id=%s type=%s", job.id, job.kind.value)
            self._retire(unit, job, JOB_DONE, payload=job.result)

    def cancel_active(self, unit: WorkUnit) -> Job | None:
        """Drop the active job without completion; emits job_cancelled."""
        job = self.active
        if job is None:
            return None
        self.active = None
        impl = self.registry.get(job.kind)
        if impl is not None:
            try:
                impl.discard(job)
            except Exception:  # noqa: BLE001
                logger.warning("job discard failed id=%s", job.id, exc_info=True)
        logger.info("job cancelled id=%s type=%s", job.id, job.kind.value)
        self.notifier.emit(unit.unit_id, JOB_CANCELLED, job_id=job.id, job_type=job.kind.value, ok=False, reason="cancelled")
        return job

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _begin_next(self, unit: WorkUnit) -> None:
        item = self.queue.dequeue()
        if item is None:
            return
        kind = JobKind.parse(item.type)
        if kind is None or kind not in self.registry:
            logger.warning("dropping job id=%s: unknown type %r", item.id, item.type)
            self.notifier.emit(
                unit.unit_id, JOB_DROPPED, job_id=item.id, job_type=item.type, ok=False, reason="unknown_job_type"
            )
            return

        job = Job(id=item.id, kind=kind, payload=item.payload, enqueued_at=item.enqueued_at, epoch=unit.epoch)
        impl = self.registry[kind]
        try:
            started = impl.begin(job, unit)
        except Exception as exc:  # noqa: BLE001
            logger.exception("job begin failed id=%s type=%s", job.id, kind.value)
            self.notifier.emit(
                unit.unit_id, JOB_FAILED, job_id=job.id, job_type=kind.value, ok=False, reason=_reason(exc)
            )
            return
        if not started:
            reason = job.drop_reason or "precondition_missing"
            logger.info("job dropped id=%s type=%s reason=%s", job.id, kind.value, reason)
            self.notifier.emit(unit.unit_id, JOB_DROPPED, job_id=job.id, job_type=kind.value, ok=False, reason=reason)
            return
        logger.info("job begin id=%s type=%s", job.id, kind.value)
        self.active = job

    def _interrupted(self, unit: WorkUnit, job: Job) -> bool:
        # cancel_active() already cleared the slot or the unit epoch moved on.
        return self.active is not job or job.epoch != unit.epoch

    def _retire(
        self,
        unit: WorkUnit,
        job: Job,
        kind: str,
        *,
        ok: bool = True,
        reason: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        if self.active is job:
            self.active = None
        self.notifier.emit(
            unit.unit_id, kind, job_id=job.id, job_type=job.kind.value, ok=ok, reason=reason, payload=dict(payload or {})
        )


def _reason(exc: BaseException) -> str:
    if isinstance(exc, JobError):
        return exc.reason
    if isinstance(exc, DriverError):
        return "remote_call_failed"
    return "unexpected_error"
