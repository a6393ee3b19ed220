"""Editor focus/type/submit helpers.

Used directly by the control surface (outside the job queue) and by the reply
job for paced typing. Keystroke pacing is a timing contract only: every delay
lies in [0.6 * base, 1.6 * base + 340] ms where base = 1000 / cps.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from collections.abc import Callable, Iterator

from .driver import MODIFIER_CTRL, MODIFIER_META, TabSession
from .errors import NOT_FOUND, JobError
from .session_lock import SessionLock
from .timeline_page import TimelinePage
from .work_unit import WorkUnit

logger = logging.getLogger("timeline.pilot.writer")

MAX_REPLY_CHARS = 280
MIN_CPS = 3
MAX_CPS = 30
PUNCTUATION = frozenset(".,?!:)")


def slice_to_limit(text: object, limit: int = MAX_REPLY_CHARS) -> str:
    """Cut to `limit` UTF-16 code units without splitting a surrogate pair."""
    s = str(text if text is not None else "")
    encoded = s.encode("utf-16-le")
    if len(encoded) <= limit * 2:
        return s
    cut = encoded[: limit * 2]
    last = int.from_bytes(cut[-2:], "little")
    if 0xD800 <= last <= 0xDBFF:
        cut = cut[:-2]
    return cut.decode("utf-16-le")


def keystroke_delays(text: str, max_cps: float, rng: random.Random | None = None) -> Iterator[float]:
    """Per-character delays (ms) for human-paced typing."""
    rng = rng or random.Random()
    if not max_cps or not math.isfinite(max_cps):
        max_cps = 12
    cps = max(MIN_CPS, min(MAX_CPS, int(max_cps)))
    base = 1000.0 / cps
    for ch in text:
        d = base * rng.uniform(0.6, 1.6)
        if ch in PUNCTUATION:
            d += rng.uniform(40, 120)
        if rng.random() < 0.05:
            d += rng.uniform(100, 220)
        yield d


async def type_paced(
    session: TabSession,
    text: str,
    max_cps: float,
    *,
    rng: random.Random | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> int:
    """Insert `text` one character at a time; returns characters typed."""
    typed = 0
    for ch, delay in zip(text, keystroke_delays(text, max_cps, rng)):
        if should_stop is not None and should_stop():
            break
        await session.insert_text(ch)
        typed += 1
        await asyncio.sleep(delay / 1000.0)
    return typed


class Writer:
    """Focus the composer, type and submit, each under one exclusive session."""

    def __init__(self, lock: SessionLock, session_for: Callable[[WorkUnit], TabSession]) -> None:
        self.lock = lock
        self._session_for = session_for

    async def _clear_editor(self, session: TabSession) -> None:
        for modifiers in (MODIFIER_META, MODIFIER_CTRL):
            await session.press_key("a", modifiers, code="KeyA")
            await asyncio.sleep(0.03)
        await session.press_key("Backspace")

    async def _type_chunks(self, session: TabSession, text: str, rng: random.Random) -> None:
        i = 0
        while i < len(text):
            size = min(len(text) - i, rng.randint(3, 6))
            await session.insert_text(text[i : i + size])
            i += size
            await asyncio.sleep(rng.randint(60, 180) / 1000.0)

    async def focus_and_type(self, unit: WorkUnit, text: str, *, rng: random.Random | None = None) -> None:
        session = self._session_for(unit)
        page = TimelinePage(session)

        async def _run() -> None:
            editor = await page.find_editor()
            if editor is None:
                raise JobError("editor_not_found", kind=NOT_FOUND)
            await session.center_click(editor)
            await asyncio.sleep(0.12)
            await self._clear_editor(session)
            await asyncio.sleep(0.08)
            await self._type_chunks(session, text or "", rng or random.Random())
            await asyncio.sleep(0.2)

        await self.lock.with_exclusive_session(unit, _run)

    async def submit(self, unit: WorkUnit, *, is_mac: bool = False) -> None:
        session = self._session_for(unit)
        page = TimelinePage(session)

        async def _run() -> None:
            await session.press_key("Enter")
            await asyncio.sleep(0.18)
            await session.press_key("Enter", MODIFIER_META if is_mac else MODIFIER_CTRL)
            await asyncio.sleep(0.22)
            button = await page.find_enabled_post_button()
            if button is None:
                raise JobError("post_button_not_found", kind=NOT_FOUND)
            await session.center_click(button)
            await asyncio.sleep(0.3)

        await self.lock.with_exclusive_session(unit, _run)
        logger.info("submitted composer unit=%s", unit.unit_id)
