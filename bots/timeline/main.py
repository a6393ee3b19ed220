"""
Control server for the timeline pilot.

Reads JSON-lines requests from stdin ({"id", "method", "unit", ...}), dispatches
them to the Engine and writes one response line per request to stdout. Engine
notifications are written on the same stream as {"type": "event", ...} lines.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any

from .config import PilotConfig
from .engine import Engine
from .errors import DriverError, JobError
from .http_client import HttpClientError
from .notifications import JobEvent
from .session_cdp import CdpDriver

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("timeline.pilot")

__all__ = ["ControlServer", "main"]


def _write_message(payload: dict[str, Any]) -> None:
    """Write one JSON line to stdout."""
    line = (json.dumps(payload, ensure_ascii=False) + "\n").encode()
    sys.stdout.buffer.write(line)
    sys.stdout.buffer.flush()


def _read_message() -> dict[str, Any] | None:
    """Read one JSON line from stdin; None at EOF, {} for a blank or bad line."""
    line = sys.stdin.buffer.readline()
    if not line:
        return None
    line = line.strip()
    if not line:
        return {}
    try:
        msg = json.loads(line.decode())
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("ignoring malformed request line")
        return {}
    if os.environ.get("PILOT_TRACE"):
        logger.info("recv %s", msg)
    return msg if isinstance(msg, dict) else {}


class ControlServer:
    """Maps control requests onto the Engine surface."""

    def __init__(self, engine: Engine, write=_write_message) -> None:
        self.engine = engine
        self._write = write
        self._unsubscribe = engine.notifier.subscribe(self._on_event)

    def _on_event(self, event: JobEvent) -> None:
        self._write({"type": "event", **event.to_dict()})

    async def handle(self, method: str, params: dict[str, Any]) -> Any:
        engine = self.engine
        unit = str(params.get("unit") or "")

        if method == "play":
            return engine.play(unit)
        if method == "pause":
            return engine.pause(unit)
        if method == "cancel":
            return await engine.cancel(unit)
        if method == "status":
            return engine.status(unit)
        if method == "enqueue":
            work_type = params.get("work_type") or params.get("workType")
            job_id = engine.enqueue(unit, work_type, params.get("payload") or {})
            return {"id": job_id, "queue_len": engine.runtime(unit).queue.size()}
        if method == "peek":
            n = int(params.get("n") or 10)
            rt = engine.runtime(unit)
            return {"items": engine.peek_queue(unit, n), "queue_len": rt.queue.size()}
        if method == "focus_and_type":
            await engine.focus_and_type(unit, str(params.get("text") or ""))
            return {}
        if method == "submit":
            await engine.submit(unit, is_mac=bool(params.get("is_mac") or params.get("isMac")))
            return {}
        if method == "events":
            n = int(params.get("n") or 20)
            return {"events": [e.to_dict() for e in engine.notifier.recent(n)]}
        if method == "targets":
            driver = engine.driver
            if not hasattr(driver, "list_targets"):
                return {"targets": []}
            targets = await driver.list_targets()
            return {"targets": [{"id": t.get("id"), "title": t.get("title"), "url": t.get("url")} for t in targets]}
        if method == "ping":
            return {"pong": True}
        raise LookupError(f"Method {method} not found")

    async def dispatch(self, message: dict[str, Any]) -> None:
        """Handle one request and write its response."""
        if not message:
            return
        request_id = message.get("id")
        method = str(message.get("method") or "")
        params = message.get("params") if isinstance(message.get("params"), dict) else message

        try:
            result = await self.handle(method, params)
        except JobError as e:
            logger.info("request_failed method=%s reason=%s", method, e.reason)
            self._write({"id": request_id, "ok": False, "error": e.to_dict()})
            return
        except (DriverError, HttpClientError) as e:
            logger.info("request_failed method=%s error=%s", method, e)
            self._write({"id": request_id, "ok": False, "error": {"reason": str(e), "kind": "remote"}})
            return
        except (LookupError, ValueError) as e:
            self._write({"id": request_id, "ok": False, "error": {"reason": str(e), "kind": "precondition"}})
            return
        except Exception as exc:
            logger.exception("request_failed method=%s", method)
            self._write({"id": request_id, "ok": False, "error": {"reason": str(exc), "kind": "remote"}})
            return

        self._write({"id": request_id, "ok": True, "result": result})

    def close(self) -> None:
        self._unsubscribe()


async def serve(config: PilotConfig | None = None) -> None:
    config = config or PilotConfig.from_env()
    if config.debug_steps:
        logging.getLogger("timeline.pilot").setLevel(logging.DEBUG)
    driver = CdpDriver(config)
    engine = Engine(driver, config)
    server = ControlServer(engine)
    logger.info("timeline pilot ready cdp=%s:%s server=%s", config.cdp_host, config.cdp_port, engine.backend.base_url)
    # Requests run concurrently so a long focus_and_type cannot block a cancel.
    inflight: set[asyncio.Task] = set()
    try:
        while True:
            message = await asyncio.to_thread(_read_message)
            if message is None:
                break
            task = asyncio.create_task(server.dispatch(message))
            inflight.add(task)
            task.add_done_callback(inflight.discard)
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)
    finally:
        server.close()
        await engine.shutdown()
        await driver.close()


def main() -> None:
    """Main entry point for the control server."""
    asyncio.run(serve())


if __name__ == "__main__":
    main()
