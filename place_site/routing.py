# routing.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Route discovery.

Maps a routes directory onto URL routes without importing anything. Exactly
one convention applies per routes directory, checked in this order (the first
match wins and later rules are never consulted):

1. Explicit route table   routes.py
2. Protocol folders       https/ and/or wss/   (https/ then applies rules 3 and 4)
3. Method folders         get/ and/or post/
4. Flat GET-only          everything else in the directory

Inside a scanned folder a file's relative path minus `.py` is its URL path,
and index.py stands for its parent folder. Scans are sorted so that colliding
paths always bind in the same order.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple

HANDLER_SUFFIX = ".py"
INDEX_NAME = "index"


class RoutingConvention(Enum):
    EXPLICIT_ROUTE_TABLE = "explicit route table"
    SEPARATE_PROTOCOL_FOLDERS = "separate protocol folders"
    SEPARATE_METHOD_FOLDERS = "separate method folders"
    FLAT_GET_ONLY = "flat GET-only"


class RouteKind(Enum):
    GET = "GET"
    POST = "POST"
    WEBSOCKET = "WEBSOCKET"


@dataclass(frozen=True)
class RouteSpec:
    kind: RouteKind
    path: str
    module_path: Path


@dataclass(frozen=True)
class RoutesLayout:
    """Folder and file names for one generation of the routes convention."""
    route_table: str
    https: str
    wss: str
    get: str
    post: str


CURRENT_LAYOUT = RoutesLayout(route_table="routes.py", https="https", wss="wss", get="get", post="post")
LEGACY_LAYOUT = RoutesLayout(route_table="routes.py", https=".https", wss=".wss", get=".get", post=".post")


@dataclass(frozen=True)
class DiscoveredRoutes:
    convention: RoutingConvention
    routes: Tuple[RouteSpec, ...] = ()
    route_table: Optional[Path] = None
    # POST routes may exist, so request bodies must be parsed.
    needs_body_parsing: bool = False


def url_path_for(relative_path: PurePosixPath) -> str:
    """`a/b.py` -> `/a/b`, `a/index.py` -> `/a`, `index.py` -> `/`."""
    parts = list(relative_path.with_suffix("").parts)
    if parts and parts[-1] == INDEX_NAME:
        parts = parts[:-1]
    return "/" + "/".join(parts)


def _is_ignored(relative_path: PurePosixPath) -> bool:
    # Hidden entries, private helpers (_*.py, __init__.py) and bytecode caches.
    for part in relative_path.parts:
        if part.startswith(".") or part == "__pycache__":
            return True
    return relative_path.name.startswith("_")


def scan_routes(directory: Path, kind: RouteKind) -> List[RouteSpec]:
    """Flat scan of one folder: every handler file becomes a route of `kind`."""
    routes = []
    for file_path in sorted(directory.rglob("*"), key=lambda p: p.relative_to(directory).as_posix()):
        if not file_path.is_file():
            continue
        relative_path = PurePosixPath(file_path.relative_to(directory).as_posix())
        if _is_ignored(relative_path):
            continue
        if file_path.suffix != HANDLER_SUFFIX:
            logging.warning("⚠️ Non-Python file (%s) found in routes directory %s, ignoring.", relative_path, directory)
            continue
        routes.append(RouteSpec(kind=kind, path=url_path_for(relative_path), module_path=file_path))
    return routes


def _discover_https_routes(directory: Path, layout: RoutesLayout) -> Tuple[RoutingConvention, List[RouteSpec], bool]:
    # Rules 3 and 4, applied to either the routes root or its https/ folder.
    get_directory = directory / layout.get
    post_directory = directory / layout.post
    has_get = get_directory.is_dir()
    has_post = post_directory.is_dir()

    if has_get or has_post:
        routes = []
        if has_get:
            routes.extend(scan_routes(get_directory, RouteKind.GET))
        if has_post:
            routes.extend(scan_routes(post_directory, RouteKind.POST))
        return RoutingConvention.SEPARATE_METHOD_FOLDERS, routes, has_post

    return RoutingConvention.FLAT_GET_ONLY, scan_routes(directory, RouteKind.GET), False


def discover_routes(routes_directory: Path, layout: RoutesLayout = CURRENT_LAYOUT) -> DiscoveredRoutes:
    """Work out the routing convention in `routes_directory` and list its routes.

    Returns an empty FLAT_GET_ONLY result when the directory does not exist.
    A route table is only located here, not imported; the loader reads it.
    """
    if not routes_directory.is_dir():
        return DiscoveredRoutes(convention=RoutingConvention.FLAT_GET_ONLY)

    # Rule 1.
    route_table = routes_directory / layout.route_table
    if route_table.is_file():
        return DiscoveredRoutes(
            convention=RoutingConvention.EXPLICIT_ROUTE_TABLE,
            route_table=route_table,
            needs_body_parsing=True,
        )

    # Rule 2.
    https_directory = routes_directory / layout.https
    wss_directory = routes_directory / layout.wss
    has_https = https_directory.is_dir()
    has_wss = wss_directory.is_dir()
    if has_https or has_wss:
        routes: List[RouteSpec] = []
        needs_body_parsing = False
        if has_https:
            _, https_routes, needs_body_parsing = _discover_https_routes(https_directory, layout)
            routes.extend(https_routes)
        if has_wss:
            routes.extend(scan_routes(wss_directory, RouteKind.WEBSOCKET))
        return DiscoveredRoutes(
            convention=RoutingConvention.SEPARATE_PROTOCOL_FOLDERS,
            routes=tuple(routes),
            needs_body_parsing=needs_body_parsing,
        )

    # Rules 3 and 4.
    convention, routes, needs_body_parsing = _discover_https_routes(routes_directory, layout)
    return DiscoveredRoutes(convention=convention, routes=tuple(routes), needs_body_parsing=needs_body_parsing)
