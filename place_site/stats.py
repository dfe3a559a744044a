# stats.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Anonymous, ephemeral statistics.

Counts requests per path in memory only; nothing about the visitor is kept.
The counters are shown at a secret route whose path is generated once and
kept in <settings>/statistics-route.
"""

import html
import logging
import secrets
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse

from .errors import ConfigurationError

STATISTICS_ROUTE_FILE_NAME = "statistics-route"


def load_or_create_route(route_file: Path) -> str:
    try:
        if route_file.is_file():
            route = route_file.read_text(encoding="utf-8").strip()
            if route.startswith("/"):
                return route
            logging.warning("⚠️ Ignoring malformed statistics route in %s.", route_file)
        route = f"/stats/{secrets.token_hex(16)}"
        route_file.parent.mkdir(parents=True, exist_ok=True)
        route_file.write_text(route, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise ConfigurationError(f"Could not read or create statistics route at {route_file} ({error}).") from error
    return route


class Stats:
    def __init__(self, settings: Path):
        self.route = load_or_create_route(settings / STATISTICS_ROUTE_FILE_NAME)
        self.started_at = datetime.now(timezone.utc)
        self.requests = 0
        self.hits: Counter = Counter()
        self.misses: Counter = Counter()

    def record(self, path: str, status_code: int) -> None:
        self.requests += 1
        if 200 <= status_code < 400:
            self.hits[path] += 1
        elif status_code == 404:
            self.misses[path] += 1

    def snapshot(self) -> dict:
        return {
            "since": self.started_at.isoformat(),
            "requests": self.requests,
            "hits": dict(self.hits.most_common()),
            "misses": dict(self.misses.most_common()),
        }

    async def middleware(self, request: Request, call_next):
        try:
            response = await call_next(request)
        except Exception:
            self.record(request.url.path, 500)
            raise
        if request.url.path != self.route:
            self.record(request.url.path, response.status_code)
        return response

    async def view(self, request: Request):
        if "application/json" in request.headers.get("accept", ""):
            return JSONResponse(self.snapshot())

        def rows(counter: Counter) -> str:
            return "".join(
                f"<tr><td>{html.escape(path)}</td><td>{count}</td></tr>" for path, count in counter.most_common()
            )

        return HTMLResponse(
            "<!doctype html><html lang=\"en\"><head><meta charset=\"utf-8\"><title>Statistics</title></head><body>"
            f"<h1>Statistics</h1><p>{self.requests} requests since {self.started_at:%Y-%m-%d %H:%M} UTC.</p>"
            f"<h2>Hits</h2><table>{rows(self.hits)}</table>"
            f"<h2>Missing</h2><table>{rows(self.misses)}</table>"
            "</body></html>"
        )
