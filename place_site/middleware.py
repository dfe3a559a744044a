# middleware.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Small HTTP middleware used by every configured application.
"""

import logging
from typing import Any, Callable, Dict, Optional

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response

from .config import DEFAULT_PORT

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Cross-Origin-Resource-Policy": "same-origin",
}

CORS_ALLOWED_HEADERS = ["Origin", "X-Requested-With", "Content-Type", "Accept"]


async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response


def strip_port(host: str) -> str:
    if host.startswith("["):
        # [::1]:443
        return host.split("]", 1)[0] + "]"
    return host.rsplit(":", 1)[0] if ":" in host else host


def alias_redirect(main_domain: str, port: int = DEFAULT_PORT) -> Callable:
    """Redirect (302) any request for an alias to the same path on the main domain."""
    port_suffix = "" if port == DEFAULT_PORT else f":{port}"

    async def redirect_aliases(request: Request, call_next):
        requested_host = strip_port(request.headers.get("host", ""))
        if requested_host == main_domain:
            return await call_next(request)
        logging.info("👉 Redirecting alias %s to main hostname %s.", requested_host, main_domain)
        return RedirectResponse(f"https://{main_domain}{port_suffix}{request.url.path}", status_code=302)

    return redirect_aliases


def response_helpers(database: Any) -> Callable:
    """Expose html()/text()/json() response builders and the database on request.state."""

    def html(content: str, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> Response:
        return HTMLResponse(content, status_code=status_code, headers=headers)

    def text(content: str, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> Response:
        return PlainTextResponse(content, status_code=status_code, headers=headers)

    def json(content: Any, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> Response:
        return JSONResponse(content, status_code=status_code, headers=headers)

    async def add_response_helpers(request: Request, call_next):
        request.state.html = html
        request.state.text = text
        request.state.json = json
        request.state.db = database
        return await call_next(request)

    return add_response_helpers
