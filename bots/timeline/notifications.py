"""Downstream notification channel.

Job outcomes and page-level results (captured post, generated reply, ...) are
published here for a presentation layer. Buffers are bounded and subscriber
failures never reach the engine.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("timeline.pilot.notifications")

# Runner lifecycle events.
JOB_DONE = "job_done"
JOB_FAILED = "job_failed"
JOB_DROPPED = "job_dropped"
JOB_CANCELLED = "job_cancelled"

# Job-level results.
CAPTURED_POST = "captured_post"
CAPTURED_POST_SKIPPED = "captured_post_skipped"
REPLY_READY = "reply_ready"
REPLY_ERROR = "reply_error"
REPLY_POSTED = "reply_posted"
REPLY_POST_FAILED = "reply_post_failed"


@dataclass(slots=True)
class JobEvent:
    unit_id: str
    kind: str
    job_id: int | None = None
    job_type: str | None = None
    ok: bool = True
    payload: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None
    ts: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"unit": self.unit_id, "kind": self.kind, "ok": self.ok, "ts": self.ts}
        if self.job_id is not None:
            out["jobId"] = self.job_id
        if self.job_type:
            out["jobType"] = self.job_type
        if self.payload:
            out["payload"] = self.payload
        if self.reason:
            out["reason"] = self.reason
        return out


Subscriber = Callable[[JobEvent], None]


class Notifier:
    def __init__(self, *, max_events: int = 200, clock: Callable[[], float] = time.time) -> None:
        self._events: deque[JobEvent] = deque(maxlen=max(1, int(max_events)))
        self._subscribers: list[Subscriber] = []
        self._clock = clock

    def subscribe(self, cb: Subscriber) -> Callable[[], None]:
        self._subscribers.append(cb)

        def _unsubscribe() -> None:
            if cb in self._subscribers:
                self._subscribers.remove(cb)

        return _unsubscribe

    def publish(self, event: JobEvent) -> JobEvent:
        if not event.ts:
            event.ts = self._clock()
        self._events.append(event)
        for cb in list(self._subscribers):
            try:
                cb(event)
            except Exception:  # noqa: BLE001
                logger.exception("notification subscriber failed kind=%s", event.kind)
        return event

    def emit(self, unit_id: str, kind: str, **fields: Any) -> JobEvent:
        return self.publish(JobEvent(unit_id=unit_id, kind=kind, **fields))

    def recent(self, n: int = 20, *, kind: str | None = None) -> list[JobEvent]:
        items = [e for e in self._events if kind is None or e.kind == kind]
        return items[-max(0, int(n)) :] if n else []
