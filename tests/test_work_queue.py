from __future__ import annotations


def test_queue_is_fifo_with_monotonic_ids() -> None:
    from bots.timeline.work_queue import WorkQueue

    q = WorkQueue(clock=lambda: 0.0)
    a = q.enqueue("mouse_move", {"xi": 1})
    b = q.enqueue("scroll_to_next_post")
    c = q.enqueue("capture_post_content")
    assert (a.id, b.id, c.id) == (1, 2, 3)
    assert len(q) == 3

    assert [q.dequeue().id for _ in range(3)] == [1, 2, 3]
    assert q.dequeue() is None
    assert q.size() == 0


def test_ids_are_not_reused_after_drain() -> None:
    from bots.timeline.work_queue import WorkQueue

    q = WorkQueue(clock=lambda: 0.0)
    q.enqueue("mouse_move")
    q.enqueue("mouse_move")
    q.dequeue()
    q.dequeue()
    assert q.size() == 0
    assert q.enqueue("mouse_move").id == 3


def test_peek_reports_age_and_does_not_consume() -> None:
    from bots.timeline.work_queue import WorkQueue

    now = [1000.0]
    q = WorkQueue(clock=lambda: now[0])
    q.enqueue("scroll_to_next_post")
    now[0] = 1250.0
    q.enqueue("capture_post_content")
    now[0] = 1400.0

    items = q.peek(10)
    assert items == [
        {"id": 1, "type": "scroll_to_next_post", "age_ms": 400},
        {"id": 2, "type": "capture_post_content", "age_ms": 150},
    ]
    assert q.peek(1) == items[:1]
    assert q.size() == 2


def test_enqueue_accepts_job_kind_and_unknown_tags() -> None:
    from bots.timeline.jobs.base import JobKind
    from bots.timeline.work_queue import WorkQueue

    q = WorkQueue(clock=lambda: 0.0)
    assert q.enqueue(JobKind.MOUSE_MOVE).type == "mouse_move"
    assert q.enqueue("teleport").type == "teleport"
    assert q.enqueue(None).type == "unknown"
