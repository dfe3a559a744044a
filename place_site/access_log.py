# access_log.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
One line per request on the `place_site.access` logger.

    💞 ↓ GET    200    3.2 ms    1.4 kb    🎨 /styles.css

Slow or large responses get a `!` (over 500 ms / 500 kb) or `!!` (over
1000 ms / 1000 kb).
"""

import logging
import time
from typing import Callable, Optional

from starlette.requests import Request

access_logger = logging.getLogger("place_site.access")

METHOD_LABELS = {"GET": "↓ GET", "POST": "↑ POST"}
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".svg", ".gif")


def warning_marker(value: float) -> str:
    if value > 1000:
        return " !!"
    if value > 500:
        return " !"
    return ""


def resource_icon(url: str) -> str:
    if url.endswith(IMAGE_SUFFIXES):
        return "🌌"
    if url.endswith(".ico"):
        return "💠"
    if url.endswith(".css"):
        return "🎨"
    if url.endswith("js"):
        return "⚡"
    return "📄"


def format_entry(method: str, status: int, duration_ms: float, size_bytes: Optional[int], url: str) -> str:
    duration = f"{duration_ms:.1f} ms{warning_marker(duration_ms)}"
    if size_bytes is None:
        size = "   -   "
    else:
        size_kb = size_bytes / 1024
        size = f"{size_kb:.1f} kb{warning_marker(size_kb)}"
    return "\t".join([f"💞 {METHOD_LABELS.get(method, method)}", str(status), duration, size, f"{resource_icon(url)} {url}"])


def should_log(status: int, errors_only: bool) -> bool:
    return not errors_only or status >= 400


def access_log(errors_only: bool = False) -> Callable:
    async def log_access(request: Request, call_next):
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            # Logged as the 500 the client is about to see.
            access_logger.error(format_entry(request.method, 500, (time.perf_counter() - started) * 1000, None, request.url.path))
            raise
        duration_ms = (time.perf_counter() - started) * 1000
        if should_log(response.status_code, errors_only):
            content_length = response.headers.get("content-length")
            size = int(content_length) if content_length and content_length.isdigit() else None
            entry = format_entry(request.method, response.status_code, duration_ms, size, request.url.path)
            if response.status_code >= 400:
                access_logger.warning(entry)
            else:
                access_logger.info(entry)
        return response

    return log_access
