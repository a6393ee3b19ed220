from __future__ import annotations

import asyncio

from bots.timeline.jobs.base import JobImpl, JobKind


class CountingJob(JobImpl):
    kind = JobKind.MOUSE_MOVE

    def __init__(self, ticks_needed: int = 3) -> None:
        self.ticks_needed = ticks_needed
        self.renders = 0

    def begin(self, job, unit) -> bool:  # noqa: ARG002
        job.rt = {"ticks": 0}
        return True

    def tick(self, job, dt_ms: float) -> None:  # noqa: ARG002
        job.rt["ticks"] += 1

    async def render(self, job, ctx) -> bool:  # noqa: ARG002
        self.renders += 1
        if job.rt["ticks"] >= self.ticks_needed:
            job.result = {"ticks": job.rt["ticks"]}
            return True
        return False


class RejectingJob(JobImpl):
    kind = JobKind.GENERATE_POST_REPLY

    def begin(self, job, unit) -> bool:  # noqa: ARG002
        if job.payload.get("reason"):
            job.drop_reason = job.payload["reason"]
        return False

    async def render(self, job, ctx) -> bool:  # noqa: ARG002
        raise AssertionError("render must not run for a dropped job")


class FailingJob(JobImpl):
    kind = JobKind.SCROLL_TO_NEXT_POST

    def begin(self, job, unit) -> bool:  # noqa: ARG002
        if job.payload.get("explode_in_begin"):
            raise RuntimeError("bad payload")
        return True

    async def render(self, job, ctx) -> bool:  # noqa: ARG002
        from bots.timeline.errors import NOT_FOUND, DriverError, JobError

        error = job.payload.get("error")
        if error == "job":
            raise JobError("anchor_not_found", kind=NOT_FOUND)
        if error == "driver":
            raise DriverError("socket closed")
        raise ValueError("boom")


class BlockingJob(JobImpl):
    kind = JobKind.WRITE_POST_REPLY

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    def begin(self, job, unit) -> bool:  # noqa: ARG002
        return True

    async def render(self, job, ctx) -> bool:  # noqa: ARG002
        self.entered.set()
        await self.release.wait()
        job.result = {"posted": True}
        return True


def _runner(*impls):
    from bots.timeline.jobs.runner import JobRunner
    from bots.timeline.notifications import Notifier
    from bots.timeline.work_queue import WorkQueue

    queue = WorkQueue(clock=lambda: 0.0)
    notifier = Notifier(clock=lambda: 1.0)
    return JobRunner(queue, notifier, {impl.kind: impl for impl in impls}), queue, notifier


def _frame(ticks: int):
    from bots.timeline.ticker import FrameStep

    return FrameStep(ticks=ticks, alpha=0.0, tick_ms=1000.0 / 120)


def _kinds(notifier) -> list[tuple[str, int | None, str | None]]:
    return [(e.kind, e.job_id, e.reason) for e in notifier.recent(50)]


def test_runs_one_job_at_a_time_to_completion() -> None:
    from bots.timeline.notifications import JOB_DONE
    from bots.timeline.work_unit import WorkUnit

    impl = CountingJob(ticks_needed=3)
    runner, queue, notifier = _runner(impl)
    unit = WorkUnit("t1")
    queue.enqueue("mouse_move")
    queue.enqueue("mouse_move")

    async def _main() -> None:
        runner.tick_phase(unit, _frame(2))
        assert runner.active_meta() == {"id": 1, "type": "mouse_move"}
        assert queue.size() == 1
        await runner.render_phase(unit, None)
        assert runner.active is not None

        runner.tick_phase(unit, _frame(1))
        await runner.render_phase(unit, None)
        assert runner.active is None

        runner.tick_phase(unit, _frame(0))
        assert runner.active_meta() == {"id": 2, "type": "mouse_move"}

    asyncio.run(_main())
    assert impl.renders == 2
    done = notifier.recent(10, kind=JOB_DONE)
    assert [(e.job_id, e.payload) for e in done] == [(1, {"ticks": 3})]


def test_unknown_type_is_dropped() -> None:
    from bots.timeline.notifications import JOB_DROPPED
    from bots.timeline.work_unit import WorkUnit

    runner, queue, notifier = _runner(CountingJob())
    unit = WorkUnit("t1")
    queue.enqueue("teleport")
    queue.enqueue("capture_post_content")

    runner.tick_phase(unit, _frame(1))
    runner.tick_phase(unit, _frame(1))
    assert runner.active is None
    assert _kinds(notifier) == [(JOB_DROPPED, 1, "unknown_job_type"), (JOB_DROPPED, 2, "unknown_job_type")]


def test_begin_rejection_drops_without_render() -> None:
    from bots.timeline.notifications import JOB_DROPPED
    from bots.timeline.work_unit import WorkUnit

    runner, queue, notifier = _runner(RejectingJob())
    unit = WorkUnit("t1")
    queue.enqueue("generate_post_reply")
    queue.enqueue("generate_post_reply", {"reason": "no_captured_post"})

    async def _main() -> None:
        for _ in range(2):
            runner.tick_phase(unit, _frame(1))
            assert runner.active is None
            await runner.render_phase(unit, None)

    asyncio.run(_main())
    assert _kinds(notifier) == [
        (JOB_DROPPED, 1, "precondition_missing"),
        (JOB_DROPPED, 2, "no_captured_post"),
    ]


def test_render_failures_become_events_and_retire_job() -> None:
    from bots.timeline.notifications import JOB_FAILED
    from bots.timeline.work_unit import WorkUnit

    runner, queue, notifier = _runner(FailingJob())
    unit = WorkUnit("t1")
    queue.enqueue("scroll_to_next_post", {"error": "job"})
    queue.enqueue("scroll_to_next_post", {"error": "driver"})
    queue.enqueue("scroll_to_next_post", {"error": "other"})
    queue.enqueue("scroll_to_next_post", {"explode_in_begin": True})

    async def _main() -> None:
        for _ in range(4):
            runner.tick_phase(unit, _frame(1))
            await runner.render_phase(unit, None)
            assert runner.active is None

    asyncio.run(_main())
    assert _kinds(notifier) == [
        (JOB_FAILED, 1, "anchor_not_found"),
        (JOB_FAILED, 2, "remote_call_failed"),
        (JOB_FAILED, 3, "unexpected_error"),
        (JOB_FAILED, 4, "unexpected_error"),
    ]
    first = notifier.recent(10)[0]
    assert first.payload == {"reason": "anchor_not_found", "kind": "not_found"}


def test_cancel_during_render_suppresses_completion() -> None:
    from bots.timeline.notifications import JOB_CANCELLED, JOB_DONE
    from bots.timeline.work_unit import WorkUnit

    async def _main():
        impl = BlockingJob()
        runner, queue, notifier = _runner(impl)
        unit = WorkUnit("t1")
        queue.enqueue("write_post_reply")
        runner.tick_phase(unit, _frame(1))

        render = asyncio.create_task(runner.render_phase(unit, None))
        await impl.entered.wait()
        unit.reset_transient()
        cancelled = runner.cancel_active(unit)
        impl.release.set()
        await render
        return runner, notifier, cancelled

    runner, notifier, cancelled = asyncio.run(_main())
    assert cancelled is not None
    assert cancelled.id == 1
    assert runner.active is None
    assert notifier.recent(10, kind=JOB_DONE) == []
    assert [e.job_id for e in notifier.recent(10, kind=JOB_CANCELLED)] == [1]


def test_cancel_with_no_active_job_is_a_noop() -> None:
    from bots.timeline.work_unit import WorkUnit

    runner, _, notifier = _runner(CountingJob())
    assert runner.cancel_active(WorkUnit("t1")) is None
    assert notifier.recent(10) == []


def test_default_registry_covers_every_kind() -> None:
    from bots.timeline.jobs import JOB_REGISTRY

    assert set(JOB_REGISTRY) == set(JobKind)
    for kind, impl in JOB_REGISTRY.items():
        assert impl.kind is kind
