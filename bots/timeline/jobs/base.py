"""Job lifecycle contract.

Every job kind is a small state machine driven by the Runner:
- begin(job, unit) -> bool   set up private runtime state; False abandons the job
- tick(job, dt_ms)           fixed-step simulation, never awaits or touches the remote
- render(job, ctx) -> bool   once per outer iteration, may do remote I/O; True = done
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from ..config import PilotConfig
    from ..driver import TabSession
    from ..http_client import GenerationClient
    from ..layout import AnchorCache
    from ..notifications import Notifier
    from ..timeline_page import TimelinePage
    from ..work_unit import WorkUnit


class JobKind(str, enum.Enum):
    MOUSE_MOVE = "mouse_move"
    SCROLL_TO_NEXT_POST = "scroll_to_next_post"
    CAPTURE_POST_CONTENT = "capture_post_content"
    GENERATE_POST_REPLY = "generate_post_reply"
    WRITE_POST_REPLY = "write_post_reply"

    @classmethod
    def parse(cls, raw: Any) -> JobKind | None:
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw or "").strip())
        except ValueError:
            return None


@dataclass
class Job:
    id: int
    kind: JobKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    enqueued_at: float = 0.0
    # Private to the implementation; set in begin().
    rt: Any = None
    # WorkUnit epoch when the job began (a cancel bumps the unit's epoch).
    epoch: int = 0
    result: dict[str, Any] | None = None
    drop_reason: str | None = None

    def meta(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.kind.value}


@dataclass
class RenderContext:
    unit: WorkUnit
    session: TabSession
    page: TimelinePage
    anchors: AnchorCache
    notifier: Notifier
    backend: GenerationClient
    config: PilotConfig
    frame_alpha: float = 0.0
    dt_per_tick_ms: float = 1000.0 / 120

    def notify(self, kind: str, *, ok: bool = True, payload: dict[str, Any] | None = None, reason: str | None = None) -> None:
        self.notifier.emit(self.unit.unit_id, kind, ok=ok, payload=dict(payload or {}), reason=reason)

    def set_idle_hint(self, ms: float) -> None:
        """Ask the engine loop to rest up to `ms` before the next iteration."""
        self.unit.idle_hint_ms = max(self.unit.idle_hint_ms, float(ms))

    def is_cancelled(self, job: Job) -> bool:
        return job.epoch != self.unit.epoch


class JobImpl(ABC):
    kind: ClassVar[JobKind]

    @abstractmethod
    def begin(self, job: Job, unit: WorkUnit) -> bool: ...

    def tick(self, job: Job, dt_ms: float) -> None:  # noqa: ARG002
        return None

    @abstractmethod
    async def render(self, job: Job, ctx: RenderContext) -> bool: ...

    def discard(self, job: Job) -> None:  # noqa: ARG002
        """Release background work held by a job that will never render again."""
        return None
