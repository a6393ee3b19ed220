from __future__ import annotations

import asyncio

import pytest


class FakeTimeline:
    """Virtualized list stand-in: post tops in document space, wheel scrolls them."""

    def __init__(self, posts: dict[str, float]) -> None:
        self.posts = dict(posts)
        self.scrolled = 0.0
        self.wheels: list[float] = []

    async def find_next_post_below(self, min_top: float, *, skip_id: str | None = None):
        from bots.timeline.timeline_page import PostCandidate

        best = None
        for status_id, top in self.posts.items():
            vtop = top - self.scrolled
            if status_id == skip_id or vtop < min_top:
                continue
            if best is None or vtop < best.top:
                best = PostCandidate(status_id=status_id, top=vtop)
        return best

    async def measure_cell_top(self, status_id: str):
        top = self.posts.get(status_id)
        return None if top is None else top - self.scrolled

    async def mouse_wheel(self, delta_y: float = 0, delta_x: float = 0, x: float = 0, y: float = 0) -> None:  # noqa: ARG002
        self.wheels.append(delta_y)
        self.scrolled += delta_y


class FakeAnchors:
    def __init__(self, bottom: float | None = 100.0) -> None:
        self.bottom = bottom

    async def ensure_anchor(self, unit):  # noqa: ARG002
        from bots.timeline.driver import Rect
        from bots.timeline.layout import LayoutAnchor

        if self.bottom is None:
            return None
        return LayoutAnchor(node_id=1, rect=Rect(0, self.bottom - 53, 600, self.bottom), measured_at=0.0)


def _ctx(unit, timeline, anchors, alpha: float = 0.0):
    from bots.timeline.config import PilotConfig
    from bots.timeline.jobs.base import RenderContext
    from bots.timeline.notifications import Notifier

    return RenderContext(
        unit=unit,
        session=timeline,
        page=timeline,
        anchors=anchors,
        notifier=Notifier(),
        backend=None,
        config=PilotConfig(),
        frame_alpha=alpha,
        dt_per_tick_ms=1000.0 / 120,
    )


def _begin(payload: dict | None = None):
    from bots.timeline.jobs.base import Job, JobKind
    from bots.timeline.jobs.scroll_to_next_post import ScrollToNextPost
    from bots.timeline.work_unit import WorkUnit

    impl = ScrollToNextPost()
    unit = WorkUnit("t1")
    job = Job(id=1, kind=JobKind.SCROLL_TO_NEXT_POST, payload=payload or {})
    assert impl.begin(job, unit) is True
    return impl, unit, job


def test_aligns_next_post_under_anchor() -> None:
    impl, unit, job = _begin()
    timeline = FakeTimeline({"p1": 100.0, "p2": 600.0})
    anchors = FakeAnchors(100.0)
    remaining: list[float] = []

    async def _main() -> int:
        for renders in range(1, 1000):
            impl.tick(job, 1000.0 / 120)
            done = await impl.render(job, _ctx(unit, timeline, anchors, alpha=0.25))
            remaining.append(timeline.posts["p2"] - timeline.scrolled - 100.0)
            if done:
                return renders
        raise AssertionError("scroll did not converge")

    renders = asyncio.run(_main())
    assert renders < 200
    assert all(b <= a for a, b in zip(remaining, remaining[1:]))
    assert min(remaining) >= 0.0
    assert remaining[-1] <= 2.0
    assert 498.0 <= timeline.scrolled <= 500.0
    assert unit.last_aligned_id == "p2"
    assert job.result["status_id"] == "p2"
    assert job.result["sent_px"] == pytest.approx(timeline.scrolled, abs=0.01)


def test_skips_the_post_it_just_aligned() -> None:
    impl, unit, job = _begin({"speed": 5000})
    unit.last_aligned_id = "p2"
    timeline = FakeTimeline({"p2": 120.0, "p3": 400.0})

    async def _main() -> None:
        await impl.render(job, _ctx(unit, timeline, FakeAnchors(100.0)))

    asyncio.run(_main())
    assert job.rt.status_id == "p3"
    assert job.rt.speed == 5000


def test_ignores_posts_inside_min_gap() -> None:
    impl, unit, job = _begin()
    timeline = FakeTimeline({"p1": 108.0, "p2": 700.0})

    asyncio.run(impl.render(job, _ctx(unit, timeline, FakeAnchors(100.0))))
    assert job.rt.status_id == "p2"


def test_missing_anchor_fails() -> None:
    from bots.timeline.errors import NOT_FOUND, JobError

    impl, unit, job = _begin()
    with pytest.raises(JobError) as excinfo:
        asyncio.run(impl.render(job, _ctx(unit, FakeTimeline({}), FakeAnchors(None))))
    assert excinfo.value.reason == "anchor_not_found"
    assert excinfo.value.kind == NOT_FOUND


def test_no_post_below_anchor_fails() -> None:
    from bots.timeline.errors import JobError

    impl, unit, job = _begin()
    with pytest.raises(JobError) as excinfo:
        asyncio.run(impl.render(job, _ctx(unit, FakeTimeline({"p1": 50.0}), FakeAnchors(100.0))))
    assert excinfo.value.reason == "no_post_below_anchor"


def test_target_lost_mid_scroll_fails() -> None:
    from bots.timeline.errors import JobError

    impl, unit, job = _begin()
    timeline = FakeTimeline({"p2": 900.0})
    anchors = FakeAnchors(100.0)

    async def _main() -> None:
        assert await impl.render(job, _ctx(unit, timeline, anchors)) is False
        del timeline.posts["p2"]
        await impl.render(job, _ctx(unit, timeline, anchors))

    with pytest.raises(JobError) as excinfo:
        asyncio.run(_main())
    assert excinfo.value.reason == "target_lost"
    assert unit.last_aligned_id is None


def test_invalid_speed_falls_back_to_default() -> None:
    from bots.timeline.jobs.scroll_to_next_post import DEFAULT_SPEED

    for raw in ("fast", -5, 0, float("nan")):
        _, _, job = _begin({"speed": raw})
        assert job.rt.speed == DEFAULT_SPEED
