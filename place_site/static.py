# static.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Static content: files, wildcard routes and the catch-all that ties them together.

SiteTail is mounted last, after every dynamic route. It tries, in order:
the .generated folder, the place itself, wildcard routes, the git server
under /source/, and finally raises a 404 for the error page handler.
"""

import logging
import mimetypes
import os
from pathlib import Path, PurePath
from typing import Dict, Iterable, List, Optional

from starlette.exceptions import HTTPException
from starlette.responses import HTMLResponse
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocketClose

from .errors import ConfigurationError

# Served with Content-Encoding set, under the type of the uncompressed file.
COMPRESSED_ENCODINGS = {".gz": "gzip", ".br": "br"}
TYPE_OVERRIDES = {".js": "application/javascript", ".css": "text/css"}

WILDCARD_SCRIPT = """<body>
<script>
  // Place: add window.route and window.arguments to wildcard routes.
  __place__pathFragments = document.location.pathname.split('/')
  window.route = __place__pathFragments[1]
  window.arguments = __place__pathFragments.slice(2).filter(value => value !== '')
  delete __place__pathFragments
</script>"""


def secure_filepath(directory: str, filepath: str) -> str:
    """Checks if a filepath is within `directory`."""
    normalized_root = os.path.abspath(os.path.normpath(directory))
    normalized_filepath = os.path.abspath(os.path.normpath(filepath))
    if os.path.commonpath([normalized_root, normalized_filepath]) != normalized_root:
        raise HTTPException(status_code=403, detail="Forbidden")
    return normalized_filepath


class SecureStaticFiles(StaticFiles):
    """StaticFiles that hides dot-paths (and any `hidden` top-level names) and
    serves pre-compressed .gz/.br files with the right headers."""

    def __init__(self, directory: Path, hidden: Iterable[str] = ()):
        super().__init__(directory=directory, html=True, check_dir=False)
        self.hidden = frozenset(hidden)

    def is_hidden(self, path: str) -> bool:
        parts = [part for part in PurePath(path).parts if part not in (".", "")]
        if parts and parts[0] in self.hidden:
            return True
        return any(part.startswith(".") for part in parts)

    async def get_response(self, path: str, scope: Scope):
        if self.is_hidden(path):
            raise HTTPException(status_code=404)
        secure_filepath(str(self.directory), os.path.join(str(self.directory), path))
        response = await super().get_response(path, scope)
        if response.status_code == 404:
            # html mode serves a top-level 404.html; the place's own 404 page wins.
            raise HTTPException(status_code=404)

        suffix = os.path.splitext(path)[1]
        if suffix in COMPRESSED_ENCODINGS:
            response.headers["Content-Encoding"] = COMPRESSED_ENCODINGS[suffix]
            base_path = path[: -len(suffix)]
            base_suffix = os.path.splitext(base_path)[1]
            mime_type = TYPE_OVERRIDES.get(base_suffix) or mimetypes.guess_type(base_path)[0]
            if mime_type:
                response.headers["Content-Type"] = mime_type
        return response


class WildcardRoutes:
    """Static HTML pages served for any sub-path of /<name>/."""

    def __init__(self, pages: Optional[Dict[str, str]] = None):
        self.pages = pages or {}

    @classmethod
    def load(cls, directory: Path, location: str = "localhost") -> "WildcardRoutes":
        pages: Dict[str, str] = {}
        if not directory.is_dir():
            return cls(pages)
        for entry in sorted(directory.iterdir()):
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                name = entry.name
                page_path = entry / "index.html"
                if not page_path.is_file():
                    logging.warning("❗ Wildcard directory found at /%s/%s but there is no index.html inside it. Ignoring…", directory.name, name)
                    continue
            elif entry.suffix == ".html":
                name = entry.stem
                page_path = entry
            else:
                logging.warning("❗ Non-HTML file (%s) found in wildcards directory, ignoring.", entry.name)
                continue
            logging.info("🃏 Serving wildcard route: https://%s/%s/**/* → %s", location, name, page_path.relative_to(directory.parent))
            try:
                page = page_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as error:
                raise ConfigurationError(f"Could not read wildcard page at {page_path} ({error}).") from error
            pages[name] = page.replace("<body>", WILDCARD_SCRIPT, 1)
        return cls(pages)

    def match(self, path: str) -> Optional[str]:
        fragments = path.split("/")
        if len(fragments) >= 3 and fragments[2] != "":
            return self.pages.get(fragments[1])
        return None


class SiteTail:
    """The catch-all ASGI app mounted at / after every dynamic route."""

    def __init__(self, static_roots: List[SecureStaticFiles], wildcards: WildcardRoutes,
                 git_app: Optional[ASGIApp] = None, git_prefix: str = "/source/"):
        self.static_roots = static_roots
        self.wildcards = wildcards
        self.git_app = git_app
        self.git_prefix = git_prefix

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "websocket":
            await WebSocketClose()(scope, receive, send)
            return

        path = scope["path"]
        if scope["method"] in ("GET", "HEAD"):
            for root in self.static_roots:
                try:
                    response = await root.get_response(root.get_path(scope), scope)
                except HTTPException as e:
                    if e.status_code != 404:
                        raise
                    continue
                await response(scope, receive, send)
                return

            page = self.wildcards.match(path)
            if page is not None:
                await HTMLResponse(page)(scope, receive, send)
                return

        if self.git_app is not None and path.startswith(self.git_prefix):
            await self.git_app(scope, receive, send)
            return

        raise HTTPException(status_code=404)


def build_site_tail(place_path: Path, generated_path: Path, wildcard_path: Path, hidden: Iterable[str],
                    git_app: Optional[ASGIApp] = None, location: str = "localhost") -> SiteTail:
    static_roots = []
    if generated_path.is_dir():
        logging.info("⛺ Serving generated content from %s", generated_path)
        static_roots.append(SecureStaticFiles(generated_path))
    static_roots.append(SecureStaticFiles(place_path, hidden=hidden))
    return SiteTail(static_roots, WildcardRoutes.load(wildcard_path, location), git_app)
