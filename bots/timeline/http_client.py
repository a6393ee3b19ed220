from __future__ import annotations

import json
import urllib.parse
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .config import DEFAULT_SERVER_URL, PilotConfig


class HttpClientError(Exception):
    pass


def normalize_server_base(server_url: str | None) -> str:
    """Reduce a stored server URL to its base (older settings stored `/generate`)."""
    raw = (server_url or "").strip()
    if not raw:
        return DEFAULT_SERVER_URL
    parsed = urllib.parse.urlparse(raw)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return DEFAULT_SERVER_URL
    path = parsed.path or ""
    if path.endswith("/generate"):
        path = path[: -len("/generate")]
    path = path.rstrip("/")
    return f"{parsed.scheme}://{parsed.netloc}{path}"


def http_post_json(url: str, payload: dict[str, Any], config: PilotConfig) -> Any:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HttpClientError("Only http/https are supported")
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    req = Request(
        url,
        data=body,
        method="POST",
        headers={"Content-Type": "application/json", "User-Agent": "timeline-pilot/1.0"},
    )
    try:
        with urlopen(req, timeout=config.http_timeout) as resp:
            raw = resp.read(config.http_max_bytes + 1)
    except HTTPError as exc:
        raise HttpClientError(f"HTTP {exc.code}") from exc
    except (TimeoutError, URLError) as exc:
        raise HttpClientError(str(exc)) from exc
    if len(raw) > config.http_max_bytes:
        raise HttpClientError("Response too large")
    if not raw.strip():
        return None
    try:
        return json.loads(raw.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as exc:
        raise HttpClientError("Response is not valid JSON") from exc


class GenerationClient:
    """Client for the reply-generation backend."""

    def __init__(self, config: PilotConfig) -> None:
        self.config = config

    @property
    def base_url(self) -> str:
        return normalize_server_base(self.config.server_url)

    def generate_reply(self, post: dict[str, Any]) -> dict[str, Any]:
        body = {
            "platform": "x",
            "post": {
                "post_id": post.get("post_id"),
                "post_href": post.get("post_href"),
                "timestamp_iso": post.get("timestamp_iso"),
                "author_name": post.get("author_name"),
                "username": post.get("username"),
                "text": post.get("text"),
                "image_urls": list(post.get("image_urls") or []),
            },
        }
        data = http_post_json(f"{self.base_url}/generate_reply", body, self.config)
        if not isinstance(data, dict):
            raise HttpClientError("Unexpected generate_reply response")
        return data

    def mark_posted(self, reply_id: Any) -> None:
        http_post_json(f"{self.base_url}/mark_posted", {"reply_id": reply_id}, self.config)
