"""
Timeline jobs organized by kind.

Each module provides one resumable state machine:
- base: Job contract, kinds, render context
- alignment: Closed-loop edge alignment (shared by scroll and capture)
- scroll_to_next_post: Align the next post under the timeline tab bar
- mouse_move: Constant-speed pointer motion
- capture_post: Expand, align and extract the nearest post
- generate_reply: Ask the backend for a reply to the captured post
- write_reply: Type and post the reply through the composer modal
- runner: Per-unit active-job slot driving the lifecycle
"""

from __future__ import annotations

from .base import Job, JobImpl, JobKind, RenderContext
from .capture_post import CapturePost
from .generate_reply import GeneratePostReply
from .mouse_move import MouseMove
from .scroll_to_next_post import ScrollToNextPost
from .write_reply import WritePostReply

JOB_REGISTRY: dict[JobKind, JobImpl] = {
    impl.kind: impl
    for impl in (
        MouseMove(),
        ScrollToNextPost(),
        CapturePost(),
        GeneratePostReply(),
        WritePostReply(),
    )
}

_missing = [k.value for k in JobKind if k not in JOB_REGISTRY]
if _missing:
    raise RuntimeError(f"No job implementation for: {', '.join(_missing)}")

__all__ = [
    "JOB_REGISTRY",
    # Contract
    "Job",
    "JobImpl",
    "JobKind",
    "RenderContext",
    # Kinds
    "CapturePost",
    "GeneratePostReply",
    "MouseMove",
    "ScrollToNextPost",
    "WritePostReply",
]
