from __future__ import annotations

import asyncio


class DummyDriver:
    def __init__(self) -> None:
        self.sink = None

    def set_event_sink(self, sink) -> None:
        self.sink = sink

    async def attach(self, unit_id: str) -> None:
        return None

    async def detach(self, unit_id: str) -> None:
        return None

    async def send(self, unit_id: str, method: str, params=None):  # noqa: ARG002
        return {}

    async def list_targets(self):
        return [{"id": "T1", "title": "Home / X", "url": "https://x.com/home", "type": "page"}]


def _server():
    from bots.timeline.engine import Engine
    from bots.timeline.main import ControlServer

    written: list[dict] = []
    engine = Engine(DummyDriver())
    return ControlServer(engine, write=written.append), engine, written


def test_enqueue_peek_and_status() -> None:
    server, _, written = _server()

    async def _main() -> None:
        await server.dispatch({"id": 1, "method": "enqueue", "unit": "T1", "work_type": "scroll_to_next_post"})
        await server.dispatch(
            {"id": 2, "method": "enqueue", "params": {"unit": "T1", "workType": "mouse_move", "payload": {"xi": 1}}}
        )
        await server.dispatch({"id": 3, "method": "peek", "unit": "T1"})
        await server.dispatch({"id": 4, "method": "status", "unit": "T1"})

    asyncio.run(_main())
    assert written[0] == {"id": 1, "ok": True, "result": {"id": 1, "queue_len": 1}}
    assert written[1]["result"] == {"id": 2, "queue_len": 2}
    assert [i["type"] for i in written[2]["result"]["items"]] == ["scroll_to_next_post", "mouse_move"]
    status = written[3]["result"]
    assert status["running"] is False
    assert status["queue_len"] == 2
    assert status["active_job"] is None


def test_errors_are_reported_per_request() -> None:
    server, _, written = _server()

    async def _main() -> None:
        await server.dispatch({"id": 1, "method": "explode", "unit": "T1"})
        await server.dispatch({"id": 2, "method": "status"})
        await server.dispatch({})

    asyncio.run(_main())
    assert len(written) == 2
    assert written[0]["ok"] is False
    assert "explode" in written[0]["error"]["reason"]
    assert written[1]["ok"] is False
    assert written[1]["error"]["kind"] == "precondition"


def test_events_are_forwarded_and_listed() -> None:
    from bots.timeline.notifications import JOB_DONE

    server, engine, written = _server()
    engine.notifier.emit("T1", JOB_DONE, job_id=9, job_type="mouse_move")
    assert written[0]["type"] == "event"
    assert written[0]["kind"] == "job_done"
    assert written[0]["jobId"] == 9

    asyncio.run(server.dispatch({"id": 5, "method": "events", "n": 5}))
    assert [e["jobId"] for e in written[1]["result"]["events"]] == [9]

    server.close()
    engine.notifier.emit("T1", JOB_DONE, job_id=10)
    assert len(written) == 2


def test_targets_lists_page_targets() -> None:
    server, _, written = _server()
    asyncio.run(server.dispatch({"id": 1, "method": "targets"}))
    assert written[0]["result"] == {"targets": [{"id": "T1", "title": "Home / X", "url": "https://x.com/home"}]}
