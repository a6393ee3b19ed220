"""CDP transport for the remote session driver.

- CdpConnection: one asyncio WebSocket to a single page target
- CdpDriver: RemoteDriver implementation keyed by target id (= work unit id)
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any
from urllib.error import URLError
from urllib.request import urlopen

from .config import PilotConfig
from .driver import EventSink
from .errors import DriverError

logger = logging.getLogger("timeline.pilot.cdp")

ENABLED_DOMAINS = ("Page.enable", "DOM.enable", "Runtime.enable")


def _import_websockets():
    try:
        import websockets  # type: ignore[import-not-found]

        return websockets
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(
            "The CDP driver requires the 'websockets' Python package (pip install websockets)."
        ) from exc


def _http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from the remote-debugging HTTP endpoint."""
    try:
        with urlopen(url, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (URLError, TimeoutError, json.JSONDecodeError) as e:
        raise DriverError(str(e)) from e


def resolve_target_ws_url(targets: Any, unit_id: str) -> str:
    """Pick the page target's debugger URL for a unit id."""
    if not isinstance(targets, list):
        raise DriverError("Unexpected /json/list response")
    for target in targets:
        if not isinstance(target, dict):
            continue
        if str(target.get("id") or "") != unit_id:
            continue
        ws_url = target.get("webSocketDebuggerUrl")
        if isinstance(ws_url, str) and ws_url:
            return ws_url
        raise DriverError(f"Target {unit_id} is already attached by another client")
    raise DriverError(f"Target not found: {unit_id}")


class CdpConnection:
    """Low-level asyncio CDP WebSocket connection for one target."""

    def __init__(self, ws: Any, *, unit_id: str, timeout: float, on_event: EventSink | None = None):
        self.ws = ws
        self.unit_id = unit_id
        self.timeout = timeout
        self._on_event = on_event
        self._next_id = 1
        self._pending: dict[int, asyncio.Future] = {}
        self._reader: asyncio.Task | None = None
        self._closed = False

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    async def _read_loop(self) -> None:
        try:
            async for raw in self.ws:
                try:
                    data = json.loads(raw)
                except (TypeError, json.JSONDecodeError):
                    continue
                if not isinstance(data, dict):
                    continue
                self._dispatch(data)
        except Exception as exc:  # noqa: BLE001
            logger.info("cdp reader stopped unit=%s: %s", self.unit_id, exc)
        finally:
            self._closed = True
            self._fail_pending(DriverError("CDP connection closed"))

    def _dispatch(self, data: dict[str, Any]) -> None:
        if isinstance(data.get("method"), str) and "id" not in data:
            sink = self._on_event
            if sink is not None:
                params = data.get("params")
                try:
                    sink(self.unit_id, data["method"], params if isinstance(params, dict) else {})
                except Exception:  # noqa: BLE001
                    logger.exception("cdp event sink failed")
            return
        msg_id = data.get("id")
        fut = self._pending.pop(msg_id, None) if isinstance(msg_id, int) else None
        if fut is None or fut.done():
            return
        if "error" in data:
            fut.set_exception(DriverError(str(data["error"])))
        else:
            result = data.get("result")
            fut.set_result(result if isinstance(result, dict) else {})

    def _fail_pending(self, exc: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for fut in pending:
            if not fut.done():
                fut.set_exception(exc)

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a CDP command and wait for its response."""
        if self._closed:
            raise DriverError("CDP connection closed")
        msg_id = self._next_id
        self._next_id += 1
        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params

        fut = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        try:
            await self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            self._pending.pop(msg_id, None)
            raise DriverError(f"CDP send failed: {exc}") from exc

        try:
            return await asyncio.wait_for(fut, timeout=max(0.1, float(self.timeout)))
        except asyncio.TimeoutError as exc:
            raise DriverError(f"CDP response timed out: method={method}") from exc
        finally:
            self._pending.pop(msg_id, None)

    async def close(self) -> None:
        self._closed = True
        with contextlib.suppress(Exception):
            await self.ws.close()
        reader = self._reader
        self._reader = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await reader
        self._fail_pending(DriverError("CDP connection closed"))


class CdpDriver:
    """RemoteDriver over the browser's remote-debugging port.

    attach() opens a dedicated WebSocket to the unit's page target and enables
    the domains the engine listens to; detach() closes it.
    """

    def __init__(self, config: PilotConfig) -> None:
        self.config = config
        self._conns: dict[str, CdpConnection] = {}
        self._sink: EventSink | None = None

    def set_event_sink(self, sink: EventSink | None) -> None:
        self._sink = sink

    def _emit(self, unit_id: str, method: str, params: dict[str, Any]) -> None:
        sink = self._sink
        if sink is not None:
            sink(unit_id, method, params)

    @property
    def http_base(self) -> str:
        return f"http://{self.config.cdp_host}:{self.config.cdp_port}"

    async def list_targets(self) -> list[dict[str, Any]]:
        data = await asyncio.to_thread(_http_get_json, f"{self.http_base}/json/list", 2.0)
        return [t for t in data if isinstance(t, dict) and t.get("type") == "page"] if isinstance(data, list) else []

    async def attach(self, unit_id: str) -> None:
        conn = self._conns.get(unit_id)
        if conn is not None and not conn.closed:
            return
        ws_url = resolve_target_ws_url(await self.list_targets(), unit_id)

        websockets = _import_websockets()
        try:
            ws = await websockets.connect(ws_url, max_size=None)
        except Exception as exc:  # noqa: BLE001
            raise DriverError(f"CDP connect failed: {exc}") from exc

        conn = CdpConnection(ws, unit_id=unit_id, timeout=self.config.rpc_timeout, on_event=self._emit)
        conn.start()
        self._conns[unit_id] = conn
        try:
            for method in ENABLED_DOMAINS:
                await conn.send(method)
        except DriverError:
            self._conns.pop(unit_id, None)
            await conn.close()
            raise
        logger.info("attached unit=%s", unit_id)

    async def detach(self, unit_id: str) -> None:
        conn = self._conns.pop(unit_id, None)
        if conn is None:
            return
        await conn.close()
        logger.info("detached unit=%s", unit_id)

    async def send(self, unit_id: str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        conn = self._conns.get(unit_id)
        if conn is None or conn.closed:
            raise DriverError(f"Unit {unit_id} is not attached")
        return await conn.send(method, params)

    async def close(self) -> None:
        for unit_id in list(self._conns):
            await self.detach(unit_id)
