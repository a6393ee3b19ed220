"""Job engine: per-unit scheduler, loop and control surface.

One asyncio task per running work unit drives the loop:

    ticker.step -> runner.tick_phase -> runner.render_phase -> sleep

Each iteration runs under the unit's exclusive session, and the sleep between
iterations bounds the remote round-trip rate (outer FPS cap, or a longer idle
hint requested by the active job).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .config import PilotConfig
from .driver import RemoteDriver, Rect, TabSession
from .http_client import GenerationClient
from .jobs.base import JobImpl, JobKind, RenderContext
from .jobs.runner import JobRunner
from .layout import AnchorCache
from .notifications import Notifier
from .session_lock import SessionLock
from .ticker import FixedTicker, FpsMeter
from .timeline_page import TimelinePage
from .work_queue import WorkQueue
from .work_unit import WorkUnit
from .writer import Writer

logger = logging.getLogger("timeline.pilot.engine")


def _perf_ms() -> float:
    return time.perf_counter() * 1000.0


@dataclass
class UnitRuntime:
    unit: WorkUnit
    queue: WorkQueue
    runner: JobRunner
    session: TabSession
    page: TimelinePage
    fps: FpsMeter = field(default_factory=FpsMeter)
    task: asyncio.Task | None = None
    last_heartbeat: float = 0.0


class Engine:
    def __init__(
        self,
        driver: RemoteDriver,
        config: PilotConfig | None = None,
        *,
        notifier: Notifier | None = None,
        backend: GenerationClient | None = None,
        registry: Mapping[JobKind, JobImpl] | None = None,
        clock: Callable[[], float] = _perf_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.driver = driver
        self.config = config or PilotConfig()
        self.notifier = notifier or Notifier()
        self.backend = backend or GenerationClient(self.config)
        self.registry = registry
        self.lock = SessionLock(driver)
        self.anchors = AnchorCache(self._probe_anchor)
        self.writer = Writer(self.lock, lambda unit: self.runtime(unit.unit_id).session)
        self._clock = clock
        self._sleep = sleep
        self._units: dict[str, UnitRuntime] = {}
        driver.set_event_sink(self._on_remote_event)

    # ─────────────────────────────────────────────────────────────────────────
    # Units
    # ─────────────────────────────────────────────────────────────────────────

    def runtime(self, unit_id: str) -> UnitRuntime:
        """Per-unit state, created on first reference and kept for the process."""
        unit_id = str(unit_id or "").strip()
        if not unit_id:
            raise ValueError("unit id is required")
        rt = self._units.get(unit_id)
        if rt is None:
            queue = WorkQueue()
            session = TabSession(self.driver, unit_id)
            rt = UnitRuntime(
                unit=WorkUnit(unit_id=unit_id),
                queue=queue,
                runner=JobRunner(queue, self.notifier, self.registry),
                session=session,
                page=TimelinePage(session),
            )
            self._units[unit_id] = rt
        return rt

    def unit(self, unit_id: str) -> WorkUnit:
        return self.runtime(unit_id).unit

    async def _probe_anchor(self, unit: WorkUnit) -> tuple[int, Rect] | None:
        return await self.runtime(unit.unit_id).page.measure_anchor()

    def _on_remote_event(self, unit_id: str, method: str, params: dict[str, Any]) -> None:  # noqa: ARG002
        self.anchors.on_remote_event(unit_id, method)

    # ─────────────────────────────────────────────────────────────────────────
    # Control surface
    # ─────────────────────────────────────────────────────────────────────────

    def play(self, unit_id: str) -> dict[str, Any]:
        rt = self.runtime(unit_id)
        unit = rt.unit
        unit.running = True
        if unit.engine_ticking:
            logger.debug("play ignored: loop already running unit=%s", unit.unit_id)
            return {"running": True}
        unit.engine_ticking = True
        previous = rt.task if rt.task is not None and not rt.task.done() else None
        rt.task = asyncio.get_running_loop().create_task(self._engine_loop(rt, unit.epoch, previous))
        logger.info("engine play unit=%s", unit.unit_id)
        return {"running": True}

    def pause(self, unit_id: str) -> dict[str, Any]:
        unit = self.unit(unit_id)
        unit.running = False
        logger.info("engine pause unit=%s", unit.unit_id)
        return {"running": False}

    async def cancel(self, unit_id: str) -> dict[str, Any]:
        """Stop the loop, drop the active job and release the session now."""
        rt = self.runtime(unit_id)
        unit = rt.unit
        unit.reset_transient()
        rt.runner.cancel_active(unit)
        await self.lock.force_release(unit)
        logger.info("engine cancel unit=%s epoch=%s", unit.unit_id, unit.epoch)
        return {"running": False, "attached": False}

    def status(self, unit_id: str) -> dict[str, Any]:
        rt = self.runtime(unit_id)
        active = rt.runner.active_meta()
        return {
            "running": rt.unit.running,
            "attached": rt.unit.attached,
            "locks": rt.unit.lock_count,
            "fps": rt.fps.fps,
            "frames": rt.fps.frame_count,
            "queue_len": rt.queue.size() + (1 if active else 0),
            "active_job": active,
        }

    def enqueue(self, unit_id: str, work_type: Any, payload: Mapping[str, Any] | None = None) -> int:
        rt = self.runtime(unit_id)
        item = rt.queue.enqueue(work_type, payload)
        logger.info("enqueued id=%s type=%s unit=%s", item.id, item.type, unit_id)
        return item.id

    def peek_queue(self, unit_id: str, n: int = 10) -> list[dict[str, Any]]:
        return self.runtime(unit_id).queue.peek(n)

    async def focus_and_type(self, unit_id: str, text: str) -> None:
        await self.writer.focus_and_type(self.unit(unit_id), text)

    async def submit(self, unit_id: str, *, is_mac: bool = False) -> None:
        await self.writer.submit(self.unit(unit_id), is_mac=is_mac)

    async def shutdown(self) -> None:
        for rt in list(self._units.values()):
            rt.unit.running = False
            task = rt.task
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
            rt.runner.cancel_active(rt.unit)
            await self.lock.force_release(rt.unit)

    # ─────────────────────────────────────────────────────────────────────────
    # Loop
    # ─────────────────────────────────────────────────────────────────────────

    def _live(self, unit: WorkUnit, epoch: int) -> bool:
        return unit.running and unit.epoch == epoch

    async def _engine_loop(self, rt: UnitRuntime, epoch: int, previous: asyncio.Task | None = None) -> None:
        unit = rt.unit
        ticker = FixedTicker(self.config.tick_hz, self.config.max_ticks_per_frame, self.config.max_frame_ms)
        try:
            if previous is not None:
                # A cancelled loop may still be inside its last render.
                await asyncio.wait({previous})
                if not self._live(unit, epoch):
                    return
            await self.lock.attach_if_needed(unit)
            await self.anchors.ensure_anchor(unit)
            rt.last_heartbeat = self._clock()

            while self._live(unit, epoch):
                async with self.lock.exclusive(unit):
                    frame = ticker.step(self._clock())
                    rt.runner.tick_phase(unit, frame)
                    ctx = RenderContext(
                        unit=unit,
                        session=rt.session,
                        page=rt.page,
                        anchors=self.anchors,
                        notifier=self.notifier,
                        backend=self.backend,
                        config=self.config,
                        frame_alpha=frame.alpha,
                        dt_per_tick_ms=frame.tick_ms,
                    )
                    await rt.runner.render_phase(unit, ctx)
                    rt.fps.frame(self._clock())

                self._heartbeat(rt)
                if not self._live(unit, epoch):
                    break
                wait_ms = max(float(self.config.outer_frame_ms), unit.idle_hint_ms)
                unit.idle_hint_ms = 0.0
                await self._sleep(wait_ms / 1000.0)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("engine loop stopped unit=%s", unit.unit_id)
            if unit.epoch == epoch:
                unit.running = False
        finally:
            if unit.epoch == epoch:
                unit.engine_ticking = False
                await self.lock.maybe_detach(unit)
            logger.info("engine loop exit unit=%s", unit.unit_id)

    def _heartbeat(self, rt: UnitRuntime) -> None:
        now = self._clock()
        if now - rt.last_heartbeat < self.config.heartbeat_ms:
            return
        rt.last_heartbeat = now
        logger.info(
            "heartbeat unit=%s fps=%s frames=%s queue=%s active=%s",
            rt.unit.unit_id,
            rt.fps.fps,
            rt.fps.frame_count,
            rt.queue.size(),
            rt.runner.active_meta(),
        )
