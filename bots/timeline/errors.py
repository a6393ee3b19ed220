"""
Error taxonomy for the job engine.

- JobError: a single job failed; the Runner turns it into a failure event
- DriverError: the remote debugging channel returned an unexpected error
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

NOT_FOUND = "not_found"
TIMEOUT = "timeout"
REMOTE = "remote"
CANCELLED = "cancelled"
PRECONDITION = "precondition"

ERROR_KINDS = frozenset({NOT_FOUND, TIMEOUT, REMOTE, CANCELLED, PRECONDITION})


class PilotError(Exception):
    """Base class for engine errors."""


@dataclass
class JobError(PilotError):
    """Structured job failure with a short machine-readable reason."""

    reason: str
    kind: str = REMOTE
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in ERROR_KINDS:
            self.kind = REMOTE
        super().__init__(self.reason)

    def __str__(self) -> str:
        return f"{self.kind}: {self.reason}"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"reason": self.reason, "kind": self.kind}
        if self.details:
            out["details"] = self.details
        return out


class DriverError(PilotError):
    """Remote-call failure reported by the session driver."""
