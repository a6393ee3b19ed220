"""Remote session driver surface.

The engine never talks to a transport directly. It consumes:
- RemoteDriver: attach/detach/send against one exclusive session per work unit
- TabSession: typed helpers (query, measure, evaluate, input) bound to one unit
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .errors import DriverError

EventSink = Callable[[str, str, dict[str, Any]], None]

# Mutation notifications that replace or re-render the remote document.
DOCUMENT_REPLACED = "DOM.documentUpdated"
NAVIGATED = "Page.frameNavigated"
MUTATION_EVENTS = frozenset({DOCUMENT_REPLACED, NAVIGATED})

INPUT_METHODS = {
    "mouse": "Input.dispatchMouseEvent",
    "key": "Input.dispatchKeyEvent",
    "text": "Input.insertText",
}

KEY_CODES = {
    "Enter": 13,
    "Tab": 9,
    "Escape": 27,
    "Backspace": 8,
    "Delete": 46,
}

# CDP modifier bit mask: Alt=1, Ctrl=2, Meta/Command=4, Shift=8.
MODIFIER_CTRL = 2
MODIFIER_META = 4


@dataclass(frozen=True, slots=True)
class Rect:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center(self) -> tuple[float, float]:
        return ((self.left + self.right) / 2.0, (self.top + self.bottom) / 2.0)


def rect_from_box_model(model: Any) -> Rect | None:
    """Convert a CDP box model (`content` is [x0,y0, x1,y1, x2,y2, x3,y3]) to a Rect."""
    if not isinstance(model, dict):
        return None
    quad = model.get("content")
    if not isinstance(quad, list) or len(quad) < 8:
        return None
    try:
        xs = [float(quad[i]) for i in (0, 2, 4, 6)]
        ys = [float(quad[i]) for i in (1, 3, 5, 7)]
    except (TypeError, ValueError):
        return None
    return Rect(left=min(xs), top=min(ys), right=max(xs), bottom=max(ys))


class RemoteDriver(Protocol):
    async def attach(self, unit_id: str) -> None: ...

    async def detach(self, unit_id: str) -> None: ...

    async def send(self, unit_id: str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]: ...

    def set_event_sink(self, sink: EventSink | None) -> None: ...


class TabSession:
    """
    High-level remote operations for a single work unit.

    Wraps a RemoteDriver with the primitives jobs need. Every method is a
    suspension point (one or more remote round trips).
    """

    def __init__(self, driver: RemoteDriver, unit_id: str):
        self.driver = driver
        self.unit_id = unit_id

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        res = await self.driver.send(self.unit_id, method, params)
        return res if isinstance(res, dict) else {}

    # ─────────────────────────────────────────────────────────────────────────
    # DOM
    # ─────────────────────────────────────────────────────────────────────────

    async def root_node_id(self) -> int:
        res = await self.send("DOM.getDocument", {"depth": -1})
        root = res.get("root") if isinstance(res.get("root"), dict) else {}
        node_id = root.get("nodeId")
        if not isinstance(node_id, int):
            raise DriverError("DOM.getDocument returned no root node")
        return node_id

    async def query_element(self, root: int | None, selector: str) -> int | None:
        """Return the first matching node id, or None when nothing matches."""
        if root is None:
            root = await self.root_node_id()
        res = await self.send("DOM.querySelector", {"nodeId": root, "selector": selector})
        node_id = res.get("nodeId")
        return node_id if isinstance(node_id, int) and node_id > 0 else None

    async def get_attributes(self, node_id: int) -> dict[str, str]:
        res = await self.send("DOM.getAttributes", {"nodeId": node_id})
        flat = res.get("attributes")
        out: dict[str, str] = {}
        if isinstance(flat, list):
            for i in range(0, len(flat) - 1, 2):
                out[str(flat[i])] = str(flat[i + 1] or "")
        return out

    async def measure_box(self, node_id: int) -> Rect | None:
        res = await self.send("DOM.getBoxModel", {"nodeId": node_id})
        return rect_from_box_model(res.get("model"))

    async def focus_node(self, node_id: int) -> None:
        await self.send("DOM.focus", {"nodeId": node_id})
        await self.send("Page.bringToFront")

    # ─────────────────────────────────────────────────────────────────────────
    # JavaScript
    # ─────────────────────────────────────────────────────────────────────────

    async def evaluate(self, expression: str) -> Any:
        """Evaluate an expression by value; undefined and null map to None."""
        res = await self.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True, "silent": True},
        )
        if res.get("exceptionDetails"):
            details = res["exceptionDetails"]
            text = details.get("text") if isinstance(details, dict) else None
            raise DriverError(f"Runtime.evaluate threw: {text or 'exception'}")
        value = res.get("result")
        if not isinstance(value, dict):
            return None
        if value.get("type") == "undefined":
            return None
        if value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value")

    # ─────────────────────────────────────────────────────────────────────────
    # Input
    # ─────────────────────────────────────────────────────────────────────────

    async def dispatch_input(self, kind: str, params: dict[str, Any]) -> None:
        method = INPUT_METHODS.get(kind)
        if method is None:
            raise ValueError(f"Unknown input kind: {kind}")
        await self.send(method, params)

    async def mouse_move(self, x: float, y: float) -> None:
        await self.dispatch_input("mouse", {"type": "mouseMoved", "x": round(x), "y": round(y)})

    async def mouse_wheel(self, delta_y: float = 0, delta_x: float = 0, x: float = 0, y: float = 0) -> None:
        await self.dispatch_input(
            "mouse",
            {
                "type": "mouseWheel",
                "x": round(x),
                "y": round(y),
                "deltaX": float(delta_x),
                "deltaY": float(delta_y),
            },
        )

    async def click(self, x: float, y: float, button: str = "left") -> None:
        cx, cy = round(x), round(y)
        await self.dispatch_input("mouse", {"type": "mouseMoved", "x": cx, "y": cy})
        for event_type in ("mousePressed", "mouseReleased"):
            await self.dispatch_input(
                "mouse",
                {"type": event_type, "x": cx, "y": cy, "button": button, "clickCount": 1},
            )

    async def center_click(self, node_id: int) -> None:
        rect = await self.measure_box(node_id)
        if rect is None:
            raise DriverError(f"Node {node_id} has no box model")
        cx, cy = rect.center
        await self.click(cx, cy)

    async def insert_text(self, text: str) -> None:
        if text:
            await self.dispatch_input("text", {"text": text})

    async def press_key(self, key: str, modifiers: int = 0, *, code: str | None = None) -> None:
        key_code = KEY_CODES.get(key, ord(key[0].upper()) if len(key) == 1 else 0)
        base = {
            "key": key,
            "code": code or (f"Key{key.upper()}" if len(key) == 1 else key),
            "windowsVirtualKeyCode": key_code,
            "nativeVirtualKeyCode": key_code,
            "modifiers": modifiers,
        }
        await self.dispatch_input("key", {**base, "type": "keyDown"})
        await self.dispatch_input("key", {**base, "type": "keyUp"})
