from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any


def _now_ms() -> float:
    return time.time() * 1000.0


@dataclass(frozen=True, slots=True)
class QueueItem:
    id: int
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    enqueued_at: float = 0.0


class WorkQueue:
    """In-memory FIFO of pending job requests with monotonic ids.

    No priority and no de-duplication: items run in arrival order. Used only from
    the engine's event loop, so no locking.
    """

    def __init__(self, clock: Callable[[], float] = _now_ms) -> None:
        self._items: deque[QueueItem] = deque()
        self._next_id = 1
        self._clock = clock

    def enqueue(self, type: str, payload: Mapping[str, Any] | None = None) -> QueueItem:  # noqa: A002
        tag = str(getattr(type, "value", type) or "unknown")
        item = QueueItem(id=self._next_id, type=tag, payload=dict(payload or {}), enqueued_at=self._clock())
        self._next_id += 1
        self._items.append(item)
        return item

    def dequeue(self) -> QueueItem | None:
        return self._items.popleft() if self._items else None

    def peek(self, n: int = 10) -> list[dict[str, Any]]:
        now = self._clock()
        out: list[dict[str, Any]] = []
        for item in list(self._items)[: max(0, int(n))]:
            out.append({"id": item.id, "type": item.type, "age_ms": round(now - item.enqueued_at)})
        return out

    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)
