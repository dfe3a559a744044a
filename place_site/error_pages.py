# error_pages.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
404 and 500 pages.

A place can supply its own pages as 404/index.html and 500/index.html. The
first THE_PATH (404) or THE_ERROR (500) in the template is replaced with the
missing path or the error description, and a <base> element is added so the
page's relative links resolve against its own folder. Without a custom page,
a built-in one is used. Templates are read once per configuration pass.
"""

import html
import logging
from pathlib import Path
from typing import Optional

from starlette.requests import Request
from starlette.responses import HTMLResponse

from .errors import ConfigurationError

DEFAULT_404 = (
    '<!doctype html><html lang="en" style="font-family: sans-serif; background-color: #eae7e1"><head>'
    '<meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0">'
    '<title>Error 404: Not found</title></head>'
    '<body style="display: grid; align-items: center; justify-content: center; height: 100vh; vertical-align: top; margin: 0;">'
    '<main><h1 style="font-size: 16vw; color: black; text-align:center; line-height: 0.25">4🤭4</h1>'
    '<p style="font-size: 4vw; text-align: center; padding-left: 2vw; padding-right: 2vw;">'
    '<span>Could not find</span> <span style="color: grey;">{detail}</span></p></main></body></html>'
)

DEFAULT_500 = (
    '<!doctype html><html lang="en" style="font-family: sans-serif; background-color: #eae7e1"><head>'
    '<meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0">'
    '<title>Error 500: Internal Server Error</title></head>'
    '<body style="display: grid; align-items: center; justify-content: center; height: 100vh; vertical-align: top; margin: 0;">'
    '<main><h1 style="font-size: 16vw; color: black; text-align:center; line-height: 0.25">5🔥😱</h1>'
    '<p style="font-size: 4vw; text-align: center; padding-left: 2vw; padding-right: 2vw;">'
    '<span>Internal Server Error</span><br><br><span style="color: grey;">{detail}</span></p></main></body></html>'
)


class ErrorPage:
    def __init__(self, status_code: int, placeholder: str, default_template: str, custom_template: Optional[str]):
        self.status_code = status_code
        self.placeholder = placeholder
        self.default_template = default_template
        self.custom_template = custom_template

    @classmethod
    def load(cls, place_path: Path, status_code: int, placeholder: str, default_template: str) -> "ErrorPage":
        template_path = place_path / str(status_code) / "index.html"
        custom_template = None
        if template_path.is_file():
            try:
                custom_template = template_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as error:
                raise ConfigurationError(f"Could not read custom {status_code} page at {template_path} ({error}).") from error
            logging.info("📄 Using custom %d page at %s", status_code, template_path)
        return cls(status_code, placeholder, default_template, custom_template)

    @property
    def is_custom(self) -> bool:
        return self.custom_template is not None

    def render(self, detail: str) -> str:
        detail = html.escape(detail, quote=False)
        if self.custom_template is None:
            return self.default_template.format(detail=detail)
        page = self.custom_template.replace(self.placeholder, detail, 1)
        return page.replace("<head>", f'<head>\n\t<base href="/{self.status_code}/">', 1)

    def response(self, detail: str) -> HTMLResponse:
        return HTMLResponse(self.render(detail), status_code=self.status_code)


def error_description(error: BaseException) -> str:
    """What the 500 page shows: the error's message, or its type when it has none."""
    return str(error) or type(error).__name__


class ErrorPages:
    """The place's 404 and 500 pages, as Starlette exception handlers."""

    def __init__(self, place_path: Path):
        self.not_found = ErrorPage.load(place_path, 404, "THE_PATH", DEFAULT_404)
        self.server_error = ErrorPage.load(place_path, 500, "THE_ERROR", DEFAULT_500)

    async def not_found_handler(self, request: Request, exc: Exception) -> HTMLResponse:
        return self.not_found.response(request.url.path)

    async def server_error_handler(self, request: Request, exc: Exception) -> HTMLResponse:
        logging.error("❌ Error while serving %s: %r", request.url.path, exc)
        return self.server_error.response(error_description(exc))

    async def render_server_errors(self, request: Request, call_next):
        """Innermost middleware: turns a handler's exception into the 500 page inside the middleware chain."""
        try:
            return await call_next(request)
        except Exception as exc:
            return await self.server_error_handler(request, exc)
