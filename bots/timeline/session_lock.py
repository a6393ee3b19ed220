"""Reference-counted attach/detach around the exclusive remote session.

Attaching a debugger is expensive and visible on the target (the "is being
debugged" banner), so logically related operations share one attach and the
session is released as soon as nothing needs it.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

from .driver import RemoteDriver
from .work_unit import WorkUnit

logger = logging.getLogger("timeline.pilot.lock")

T = TypeVar("T")


class SessionLock:
    def __init__(self, driver: RemoteDriver) -> None:
        self.driver = driver

    async def attach_if_needed(self, unit: WorkUnit) -> None:
        if not unit.attached:
            await self.driver.attach(unit.unit_id)
            unit.attached = True

    async def maybe_detach(self, unit: WorkUnit) -> None:
        """Detach only when attached, idle and not driven by a running engine loop."""
        if not unit.attached or unit.running or unit.lock_count > 0:
            return
        try:
            await self.driver.detach(unit.unit_id)
        except Exception:  # noqa: BLE001
            logger.warning("detach failed unit=%s", unit.unit_id, exc_info=True)
        unit.attached = False

    @contextlib.asynccontextmanager
    async def exclusive(self, unit: WorkUnit) -> AsyncIterator[WorkUnit]:
        await self.attach_if_needed(unit)
        unit.lock_count += 1
        generation = unit.lock_generation
        try:
            yield unit
        finally:
            if unit.lock_generation == generation:
                unit.lock_count = max(0, unit.lock_count - 1)
                await self.maybe_detach(unit)

    async def with_exclusive_session(self, unit: WorkUnit, fn: Callable[[], Awaitable[T]]) -> T:
        async with self.exclusive(unit):
            return await fn()

    async def force_release(self, unit: WorkUnit) -> None:
        """Detach regardless of outstanding holders (cancellation path)."""
        unit.lock_count = 0
        unit.lock_generation += 1
        try:
            await self.driver.detach(unit.unit_id)
        except Exception:  # noqa: BLE001
            logger.warning("forced detach failed unit=%s", unit.unit_id, exc_info=True)
        unit.attached = False
