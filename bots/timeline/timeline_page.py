"""
Timeline page adaptor.

Selectors and in-page probes for the home timeline. Posts live in a virtualized
list, so node handles go stale while scrolling; every probe here re-finds its
post by the stable status id from the permalink instead of by node id.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from .driver import Rect, TabSession

ANCHOR_SELECTOR = 'div[role="tablist"][data-testid="ScrollSnap-List"]'
ARTICLE_SELECTOR = 'article[role="article"][data-testid="tweet"]'
CELL_TESTID = "cellInnerDiv"
SHOW_MORE_SELECTOR = 'button[data-testid="tweet-text-show-more-link"]'
REPLY_BUTTON_SELECTOR = 'button[data-testid="reply"]'
DIALOG_SELECTOR = 'div[role="dialog"][aria-labelledby="modal-header"]'
DIALOG_POST_BUTTON_SELECTOR = 'button[data-testid="tweetButton"]'
SPEED_KNOB_ID = "xbot-scroll-speed"

COMPOSER_SELECTORS = (
    'div[role="textbox"][contenteditable="true"]:not([aria-hidden="true"])',
    '[data-testid^="tweetTextarea"] div[role="textbox"][contenteditable="true"]',
    '[data-testid^="tweetTextarea"] [contenteditable="true"]',
    '[contenteditable="true"][role="textbox"]',
)

EDITOR_SELECTORS = (
    '[data-testid="tweetTextarea_0"][contenteditable="true"]',
    '[contenteditable="true"][data-testid^="tweetTextarea"]',
    'div[role="textbox"][contenteditable="true"]',
)

POST_BUTTON_SELECTORS = (
    '[data-testid="tweetButtonInline"]',
    '[data-testid="tweetButton"]',
    'div[role="button"][data-testid="tweetButton"]',
    'div[role="button"][data-testid*="tweetButton"]',
    'div[role="button"][aria-label*="Post"]',
    'div[role="button"][aria-label*="Tweet"]',
)

# Shared in-page helpers: walk to the virtualized cell, find an article by status id.
_PAGE_HELPERS_JS = f"""
const __articleSel = {json.dumps(ARTICLE_SELECTOR)};
const __cellOf = (el) => {{
    while (el && el !== document.documentElement) {{
        if (el.dataset && el.dataset.testid === {json.dumps(CELL_TESTID)}) return el;
        el = el.parentElement;
    }}
    return null;
}};
const __statusIdOf = (art) => {{
    const a = art.querySelector('a[role="link"][href*="/status/"]');
    const href = a ? (a.getAttribute('href') || '') : '';
    const m = href.match(/\\/status\\/(\\d+)/);
    return m ? m[1] : null;
}};
const __articleById = (id) => {{
    const a = document.querySelector(__articleSel + ' a[role="link"][href*="/status/' + id + '"]');
    return a ? a.closest(__articleSel) : null;
}};
"""


@dataclass(frozen=True, slots=True)
class PostCandidate:
    status_id: str
    top: float


@dataclass(frozen=True, slots=True)
class CellBottom:
    bottom: float
    viewport_height: float

    @property
    def below_fold(self) -> float:
        return self.bottom - self.viewport_height


def _finite(value: Any) -> float | None:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


class TimelinePage:
    def __init__(self, session: TabSession):
        self.session = session

    async def measure_anchor(self) -> tuple[int, Rect] | None:
        """Locate and measure the timeline tab bar; None when it is not on the page."""
        node_id = await self.session.query_element(None, ANCHOR_SELECTOR)
        if node_id is None:
            return None
        rect = await self.session.measure_box(node_id)
        if rect is None:
            return None
        return node_id, rect

    async def find_next_post_below(self, min_top: float, *, skip_id: str | None = None) -> PostCandidate | None:
        """Closest post whose cell top is at or below `min_top`, skipping `skip_id`."""
        js = f"""
        (() => {{
            {_PAGE_HELPERS_JS}
            const minTop = {float(min_top)};
            const skip = {json.dumps(skip_id)};
            let best = null;
            for (const art of document.querySelectorAll(__articleSel)) {{
                const cell = __cellOf(art);
                if (!cell) continue;
                const top = cell.getBoundingClientRect().top;
                if (!(top >= minTop)) continue;
                const id = __statusIdOf(art);
                if (!id || id === skip) continue;
                if (!best || top < best.top) best = {{ id, top }};
            }}
            return best;
        }})()
        """
        found = await self.session.evaluate(js)
        if not isinstance(found, dict):
            return None
        top = _finite(found.get("top"))
        status_id = found.get("id")
        if top is None or not isinstance(status_id, str) or not status_id:
            return None
        return PostCandidate(status_id=status_id, top=top)

    async def nearest_post_id(self, anchor_bottom: float) -> str | None:
        """Post whose cell top is nearest the anchor (ties prefer the one below)."""
        js = f"""
        (() => {{
            {_PAGE_HELPERS_JS}
            const ref = {float(anchor_bottom)};
            let best = null;
            for (const art of document.querySelectorAll(__articleSel)) {{
                const cell = __cellOf(art);
                if (!cell) continue;
                const id = __statusIdOf(art);
                if (!id) continue;
                const dy = cell.getBoundingClientRect().top - ref;
                const cand = {{ id, dy, abs: Math.abs(dy) }};
                if (!best || cand.abs < best.abs || (cand.abs === best.abs && cand.dy >= 0 && best.dy < 0)) best = cand;
            }}
            return best ? best.id : null;
        }})()
        """
        found = await self.session.evaluate(js)
        return found if isinstance(found, str) and found else None

    async def measure_cell_top(self, status_id: str) -> float | None:
        js = f"""
        (() => {{
            {_PAGE_HELPERS_JS}
            const art = __articleById({json.dumps(str(status_id))});
            const cell = art ? __cellOf(art) : null;
            return cell ? cell.getBoundingClientRect().top : null;
        }})()
        """
        return _finite(await self.session.evaluate(js))

    async def measure_cell_bottom(self, status_id: str) -> CellBottom | None:
        js = f"""
        (() => {{
            {_PAGE_HELPERS_JS}
            const art = __articleById({json.dumps(str(status_id))});
            const cell = art ? __cellOf(art) : null;
            if (!cell) return null;
            return {{ bottom: cell.getBoundingClientRect().bottom, vh: window.innerHeight }};
        }})()
        """
        found = await self.session.evaluate(js)
        if not isinstance(found, dict):
            return None
        bottom = _finite(found.get("bottom"))
        vh = _finite(found.get("vh"))
        if bottom is None or vh is None:
            return None
        return CellBottom(bottom=bottom, viewport_height=vh)

    async def element_center(self, status_id: str, selector: str) -> tuple[float, float] | None:
        """Viewport center of `selector` inside the post, or None when absent."""
        js = f"""
        (() => {{
            {_PAGE_HELPERS_JS}
            const art = __articleById({json.dumps(str(status_id))});
            const el = art ? art.querySelector({json.dumps(selector)}) : null;
            if (!el) return null;
            const r = el.getBoundingClientRect();
            return {{ x: r.left + r.width / 2, y: r.top + r.height / 2 }};
        }})()
        """
        found = await self.session.evaluate(js)
        if not isinstance(found, dict):
            return None
        x, y = _finite(found.get("x")), _finite(found.get("y"))
        if x is None or y is None:
            return None
        return x, y

    async def read_scroll_speed(self, default: float = 200.0) -> float:
        js = f"""
        (() => {{
            const el = document.getElementById({json.dumps(SPEED_KNOB_ID)});
            const v = el ? Number(el.value) : NaN;
            return (Number.isFinite(v) && v > 0) ? v : null;
        }})()
        """
        value = _finite(await self.session.evaluate(js))
        return value if value is not None and value > 0 else float(default)

    async def extract_post(self, status_id: str) -> dict[str, Any]:
        """Extract post fields; returns {ok, post} or {ok: False, skipped_reason}."""
        js = f"""
        (() => {{
            {_PAGE_HELPERS_JS}
            const art = __articleById({json.dumps(str(status_id))});
            if (!art) return {{ ok: false, skipped_reason: 'article_not_found' }};
            const isAd = Array.from(art.querySelectorAll('span')).some(s => (s.textContent || '').trim() === 'Ad');
            if (isAd) return {{ ok: false, skipped_reason: 'ad' }};
            if (art.querySelector('video, [data-testid="videoComponent"]')) return {{ ok: false, skipped_reason: 'video' }};
            const userBox = art.querySelector('[data-testid="User-Name"]');
            if (!userBox) return {{ ok: false, skipped_reason: 'user_box_missing' }};

            const links = Array.from(userBox.querySelectorAll('a[role="link"][href^="/"]'));
            const handle = links.find(a => (a.textContent || '').trim().startsWith('@'));
            const username = handle ? handle.textContent.trim().replace(/^@/, '') : '';
            const nameLink = links.find(a => !(a.textContent || '').trim().startsWith('@'));
            const author_name = nameLink ? (nameLink.innerText || '').trim() : '';

            const timeEl = userBox.querySelector('time');
            const timestamp_iso = timeEl ? (timeEl.getAttribute('datetime') || '') : '';
            const timeAnchor = timeEl ? timeEl.closest('a[href*="/status/"]') : null;
            let post_href = timeAnchor ? (timeAnchor.getAttribute('href') || '') : '';
            if (!post_href) {{
                const any = art.querySelector('a[href*="/status/"]');
                post_href = any ? (any.getAttribute('href') || '') : '';
            }}
            const m = post_href.match(/\\/status\\/(\\d+)/);
            const post_id = m ? m[1] : '';

            const text = Array.from(art.querySelectorAll('div[data-testid="tweetText"]'))
                .map(b => (b.innerText || '').trim()).filter(Boolean).join('\\n');
            const image_urls = Array.from(new Set(
                Array.from(art.querySelectorAll('div[data-testid="tweetPhoto"] img'))
                    .map(img => img.getAttribute('src') || '').filter(Boolean)));
            return {{ ok: true, post: {{ post_id, post_href, timestamp_iso, author_name, username, text, image_urls }} }};
        }})()
        """
        found = await self.session.evaluate(js)
        if not isinstance(found, dict):
            return {"ok": False, "skipped_reason": "no_result"}
        return found

    async def find_dialog(self) -> int | None:
        return await self.session.query_element(None, DIALOG_SELECTOR)

    async def find_composer(self, dialog_node_id: int) -> int | None:
        for selector in COMPOSER_SELECTORS:
            node_id = await self.session.query_element(dialog_node_id, selector)
            if node_id is not None:
                return node_id
        return None

    async def find_editor(self) -> int | None:
        root = await self.session.root_node_id()
        for selector in EDITOR_SELECTORS:
            node_id = await self.session.query_element(root, selector)
            if node_id is not None:
                return node_id
        return None

    async def find_enabled_post_button(self) -> int | None:
        root = await self.session.root_node_id()
        for selector in POST_BUTTON_SELECTORS:
            node_id = await self.session.query_element(root, selector)
            if node_id is None:
                continue
            attrs = await self.session.get_attributes(node_id)
            if attrs.get("aria-disabled", "").lower() == "true" or "disabled" in attrs:
                continue
            return node_id
        return None
