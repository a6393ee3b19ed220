"""Layout anchor cache.

One measured reference rectangle (the timeline tab bar) per work unit. Measuring
is a remote round trip, so the rectangle is cached until a mutation notification
says the document was replaced or navigated.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .driver import MUTATION_EVENTS, Rect
from .work_unit import WorkUnit

logger = logging.getLogger("timeline.pilot.layout")

# Measures the reference element for a unit: (node_id, rect) or None.
AnchorProbe = Callable[[WorkUnit], Awaitable["tuple[int, Rect] | None"]]


@dataclass(frozen=True, slots=True)
class LayoutAnchor:
    node_id: int
    rect: Rect
    measured_at: float


class AnchorCache:
    def __init__(self, probe: AnchorProbe, *, clock: Callable[[], float] = time.time) -> None:
        self._probe = probe
        self._clock = clock
        self._by_unit: dict[str, LayoutAnchor] = {}

    def get(self, unit: WorkUnit) -> LayoutAnchor | None:
        return self._by_unit.get(unit.unit_id)

    async def ensure_anchor(self, unit: WorkUnit) -> LayoutAnchor | None:
        cached = self._by_unit.get(unit.unit_id)
        if cached is not None:
            return cached
        measured = await self._probe(unit)
        if measured is None:
            # Wrong page or not hydrated yet; try again on the next access.
            return None
        node_id, rect = measured
        anchor = LayoutAnchor(node_id=node_id, rect=rect, measured_at=self._clock())
        self._by_unit[unit.unit_id] = anchor
        return anchor

    def invalidate(self, unit: WorkUnit | str) -> None:
        unit_id = unit if isinstance(unit, str) else unit.unit_id
        self._by_unit.pop(unit_id, None)

    def on_remote_event(self, unit_id: str, method: str) -> bool:
        """Mutation hook: drop the unit's anchor when the document changes."""
        if method not in MUTATION_EVENTS:
            return False
        self.invalidate(unit_id)
        logger.debug("layout invalidated due to %s (unit=%s)", method, unit_id)
        return True
