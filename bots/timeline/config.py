from __future__ import annotations

import math
import os
from dataclasses import dataclass

DEFAULT_SERVER_URL = "http://localhost:11000"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass
class PilotConfig:
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    tick_hz: int = 120
    max_ticks_per_frame: int = 8
    max_frame_ms: float = 250.0
    outer_fps_cap: int = 240
    rpc_timeout: float = 8.0
    server_url: str = DEFAULT_SERVER_URL
    http_timeout: float = 10.0
    http_max_bytes: int = 1_000_000
    heartbeat_ms: float = 5000.0
    debug_steps: bool = False

    @property
    def tick_ms(self) -> float:
        return 1000.0 / max(1, int(self.tick_hz))

    @property
    def outer_frame_ms(self) -> int:
        cap = max(1, int(self.outer_fps_cap))
        return math.ceil(1000 / cap)

    @staticmethod
    def clamp_rpc_timeout(raw: float) -> float:
        return max(2.0, min(float(raw), 30.0))

    @classmethod
    def from_env(cls) -> PilotConfig:
        return cls(
            cdp_host=(os.environ.get("PILOT_CDP_HOST") or "127.0.0.1").strip(),
            cdp_port=_env_int("PILOT_CDP_PORT", 9222),
            tick_hz=max(1, _env_int("PILOT_TICK_HZ", 120)),
            max_ticks_per_frame=max(1, _env_int("PILOT_MAX_TICKS", 8)),
            max_frame_ms=max(1.0, _env_float("PILOT_MAX_FRAME_MS", 250.0)),
            outer_fps_cap=max(1, _env_int("PILOT_OUTER_FPS", 240)),
            rpc_timeout=cls.clamp_rpc_timeout(_env_float("PILOT_RPC_TIMEOUT", 8.0)),
            server_url=(os.environ.get("PILOT_SERVER_URL") or DEFAULT_SERVER_URL).strip(),
            http_timeout=_env_float("PILOT_HTTP_TIMEOUT", 10.0),
            http_max_bytes=_env_int("PILOT_HTTP_MAX_BYTES", 1_000_000),
            heartbeat_ms=_env_float("PILOT_HEARTBEAT_MS", 5000.0),
            debug_steps=_env_flag("PILOT_DEBUG_STEPS"),
        )
