"""Fixed-timestep clock.

Converts variable wall-clock frame deltas into a whole number of fixed-size
simulation ticks plus a fractional interpolation factor for rendering.
"""

from __future__ import annotations

from dataclasses import dataclass

TICK_HZ = 120
MAX_TICKS_PER_FRAME = 8
MAX_FRAME_MS = 250.0


@dataclass(frozen=True, slots=True)
class FrameStep:
    ticks: int
    alpha: float
    tick_ms: float


class FixedTicker:
    def __init__(self, hz: int = TICK_HZ, max_ticks: int = MAX_TICKS_PER_FRAME, max_frame_ms: float = MAX_FRAME_MS):
        self.tick_ms = 1000.0 / max(1, int(hz))
        self.max_ticks = max(1, int(max_ticks))
        self.max_frame_ms = float(max_frame_ms)
        self.last: float | None = None
        self.acc = 0.0

    def reset(self, now: float) -> None:
        self.last = now
        self.acc = 0.0

    def step(self, now: float) -> FrameStep:
        if self.last is None:
            self.reset(now)
            return FrameStep(ticks=0, alpha=0.0, tick_ms=self.tick_ms)

        dt = now - self.last
        if dt < 0:
            dt = 0.0
        if dt > self.max_frame_ms:
            # Long stall (suspended process, backgrounded tab): don't replay it.
            dt = self.max_frame_ms
        self.last = now
        self.acc += dt

        ticks = 0
        while self.acc >= self.tick_ms and ticks < self.max_ticks:
            self.acc -= self.tick_ms
            ticks += 1
        if self.acc >= self.tick_ms:
            # Tick cap hit: drop whole ticks we refused to simulate.
            self.acc %= self.tick_ms

        alpha = min(max(self.acc / self.tick_ms, 0.0), 1.0)
        return FrameStep(ticks=ticks, alpha=alpha, tick_ms=self.tick_ms)


class FpsMeter:
    """Frames-per-second estimate refreshed about once per second."""

    def __init__(self) -> None:
        self.frame_count = 0
        self.fps = 0
        self._last_time: float | None = None
        self._last_count = 0

    def frame(self, now: float) -> None:
        self.frame_count += 1
        if self._last_time is None:
            self._last_time = now
            self._last_count = self.frame_count
            return
        dt = now - self._last_time
        if dt >= 1000.0:
            frames = self.frame_count - self._last_count
            self.fps = round(frames / dt * 1000.0)
            self._last_time = now
            self._last_count = self.frame_count
