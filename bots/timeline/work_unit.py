from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class WorkUnit:
    """Per-target engine state (one exclusive remote session)."""

    unit_id: str
    running: bool = False
    attached: bool = False
    lock_count: int = 0
    # Bumped by force_release; holds taken before it no longer count.
    lock_generation: int = 0
    engine_ticking: bool = False
    # Bumped on cancel so in-flight jobs can tell they were interrupted.
    epoch: int = 0
    idle_hint_ms: float = 0.0
    last_captured_post: dict[str, Any] | None = None
    last_generated_reply: dict[str, Any] | None = None
    last_aligned_id: str | None = None

    def reset_transient(self) -> None:
        self.running = False
        self.attached = False
        self.lock_count = 0
        self.engine_ticking = False
        self.idle_hint_ms = 0.0
        self.epoch += 1
