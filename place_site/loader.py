# loader.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Route loading.

Imports route handler modules (always a fresh copy, so edits show up on the
next configuration pass) and turns discovered routes into Starlette routes.
Any route that cannot be imported or does not define a usable `handler` is a
RouteBindingError for the whole configuration pass.
"""

import importlib.machinery
import importlib.util
import inspect
import itertools
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from starlette.concurrency import run_in_threadpool
from starlette.requests import HTTPConnection, Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import BaseRoute, Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from .errors import RouteBindingError
from .routing import DiscoveredRoutes, RouteKind, RouteSpec

HTTP_HINT = "Make sure your route defines `def handler(request): ...` (sync or async)."
WEBSOCKET_HINT = "Make sure your WebSocket route defines `async def handler(client, request): ...`."
ROUTE_TABLE_HINT = "Make sure routes.py defines an `https_routes` and/or `wss_routes` dictionary."

_module_counter = itertools.count()
# Names of handler modules registered by the previous configuration pass.
_loaded_module_names: List[str] = []


def forget_loaded_modules() -> None:
    """Drop the previous pass's handler modules from sys.modules."""
    while _loaded_module_names:
        sys.modules.pop(_loaded_module_names.pop(), None)


class FreshSourceLoader(importlib.machinery.SourceFileLoader):
    """Always compiles from source: never reads or writes __pycache__."""

    def get_code(self, fullname):
        return self.source_to_code(self.get_data(self.path), self.path)


def import_fresh(module_path: Path) -> ModuleType:
    """Execute `module_path` as a brand-new module.

    The module gets a unique name, so two imports of the same file never share
    state, and is compiled from its current source every time.
    """
    module_name = f"place_site_routes.{module_path.stem}_{next(_module_counter)}"
    loader = FreshSourceLoader(module_name, str(module_path))
    spec = importlib.util.spec_from_file_location(module_name, module_path, loader=loader)
    if spec is None:
        raise ImportError(f"Cannot import {module_path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    _loaded_module_names.append(module_name)
    spec.loader.exec_module(module)
    return module


def convert_express_path(path: str) -> str:
    """`/hello/:thing` -> `/hello/{thing}`; Starlette paths pass through."""
    segments = [f"{{{segment[1:]}}}" if segment.startswith(":") else segment for segment in path.split("/")]
    return "/".join(segments) or "/"


def check_handler_shape(handler: Any, route_path: str, kind: RouteKind) -> Callable:
    websocket = kind is RouteKind.WEBSOCKET
    hint = WEBSOCKET_HINT if websocket else HTTP_HINT
    if not callable(handler):
        raise RouteBindingError(route_path, f"handler is not callable (got {type(handler).__name__})", hint)
    try:
        inspect.signature(handler).bind(*([None] * (2 if websocket else 1)))
    except TypeError as error:
        raise RouteBindingError(route_path, f"handler has the wrong signature ({error})", hint) from error
    except ValueError:
        # Builtins without an introspectable signature.
        pass
    if websocket and not inspect.iscoroutinefunction(handler):
        raise RouteBindingError(route_path, "WebSocket handler must be a coroutine function", hint)
    return handler


def load_handler(route: RouteSpec) -> Callable:
    """Import a route module and return its `handler`."""
    hint = WEBSOCKET_HINT if route.kind is RouteKind.WEBSOCKET else HTTP_HINT
    try:
        module = import_fresh(route.module_path)
    except Exception as error:
        raise RouteBindingError(route.path, f"error while importing {route.module_path} ({error!r})") from error
    if not hasattr(module, "handler"):
        raise RouteBindingError(route.path, f"no handler found in {route.module_path}", hint)
    return check_handler_shape(module.handler, route.path, route.kind)


def load_route_table(route_table: Path) -> List[Tuple[RouteKind, str, Callable]]:
    """Read https_routes / wss_routes from an explicit route table."""
    try:
        module = import_fresh(route_table)
    except Exception as error:
        raise RouteBindingError(str(route_table), f"error while importing the route table ({error!r})") from error

    https_routes = getattr(module, "https_routes", None)
    wss_routes = getattr(module, "wss_routes", None)
    if https_routes is None and wss_routes is None:
        raise RouteBindingError(str(route_table), "route table defines no routes", ROUTE_TABLE_HINT)

    bindings = []
    for path, target in (https_routes or {}).items():
        path = convert_express_path(path)
        if isinstance(target, dict):
            for method, handler in target.items():
                try:
                    kind = RouteKind[method.upper()]
                except KeyError:
                    raise RouteBindingError(path, f"unsupported method {method!r}", "Use 'get' or 'post'.")
                if kind is RouteKind.WEBSOCKET:
                    raise RouteBindingError(path, "WebSocket routes belong in wss_routes", ROUTE_TABLE_HINT)
                bindings.append((kind, path, check_handler_shape(handler, path, kind)))
        else:
            bindings.append((RouteKind.GET, path, check_handler_shape(target, path, RouteKind.GET)))
    for path, handler in (wss_routes or {}).items():
        path = convert_express_path(path)
        bindings.append((RouteKind.WEBSOCKET, path, check_handler_shape(handler, path, RouteKind.WEBSOCKET)))
    return bindings


def as_response(result: Any, route_path: str) -> Response:
    if isinstance(result, Response):
        return result
    if isinstance(result, str):
        return PlainTextResponse(result)
    if isinstance(result, (bytes, bytearray)):
        return Response(bytes(result), media_type="application/octet-stream")
    if isinstance(result, (dict, list)):
        return JSONResponse(result)
    raise TypeError(
        f"Route handler for {route_path} returned {type(result).__name__}; "
        "return a Response, str, bytes, dict or list."
    )


async def parse_body(request: Request) -> Any:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        body = await request.body()
        return await request.json() if body else None
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        return await request.form()
    return await request.body()


def http_endpoint(handler: Callable, route_path: str, parses_body: bool) -> Callable:
    is_async = inspect.iscoroutinefunction(handler)

    async def endpoint(request: Request) -> Response:
        if parses_body and request.method == "POST":
            request.state.body = await parse_body(request)
        if is_async:
            result = await handler(request)
        else:
            result = await run_in_threadpool(handler, request)
            if inspect.isawaitable(result):
                result = await result
        return as_response(result, route_path)

    endpoint.__name__ = getattr(handler, "__name__", "handler")
    return endpoint


class WebSocketRooms:
    """Connected WebSocket clients, grouped by route path."""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    def join(self, room: str, client: WebSocket) -> None:
        self.rooms.setdefault(room, set()).add(client)

    def leave(self, room: str, client: WebSocket) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(client)
        if not members:
            del self.rooms[room]

    async def broadcast(self, room: str, sender: WebSocket, message: str) -> int:
        """Send `message` to every other client in `room`; returns the recipient count."""
        recipients = [client for client in self.rooms.get(room, ()) if client is not sender]
        for client in recipients:
            await client.send_text(message)
        return len(recipients)


def websocket_endpoint(handler: Callable, rooms: WebSocketRooms) -> Callable:
    async def endpoint(client: WebSocket) -> None:
        await client.accept()
        room = client.url.path
        request = HTTPConnection(client.scope)
        request.state.room = room

        async def broadcast(sender: WebSocket, message: str) -> int:
            return await rooms.broadcast(room, sender, message)

        request.state.broadcast = broadcast
        rooms.join(room, client)
        try:
            await handler(client, request)
        except WebSocketDisconnect:
            pass
        finally:
            rooms.leave(room, client)
            if client.application_state == WebSocketState.CONNECTED and client.client_state == WebSocketState.CONNECTED:
                await client.close()

    endpoint.__name__ = getattr(handler, "__name__", "handler")
    return endpoint


class RouteLoader:
    """Loads one configuration pass's dynamic routes.

    HTTP routes are returned by http_routes() and bound during configuration.
    WebSocket routes are held back until the listener exists and are then
    inserted ahead of the catch-all by bind_websocket_routes().
    """

    def __init__(self, discovered: DiscoveredRoutes):
        self.discovered = discovered
        self.bindings: List[Tuple[RouteKind, str, Callable]] = []
        self.rooms = WebSocketRooms()

    def load(self) -> "RouteLoader":
        forget_loaded_modules()
        if self.discovered.route_table is not None:
            logging.info("⛺ Found %s, loading dynamic routes from there.", self.discovered.route_table.name)
            self.bindings = load_route_table(self.discovered.route_table)
            return self
        for route in self.discovered.routes:
            self.bindings.append((route.kind, route.path, load_handler(route)))
        return self

    def http_routes(self) -> List[BaseRoute]:
        routes: List[BaseRoute] = []
        for kind, path, handler in self.bindings:
            if kind is RouteKind.WEBSOCKET:
                continue
            logging.info("⛺ Adding HTTPS %s route: %s", kind.value, path)
            endpoint = http_endpoint(handler, path, self.discovered.needs_body_parsing)
            routes.append(Route(path, endpoint, methods=[kind.value]))
        return routes

    def websocket_routes(self) -> List[BaseRoute]:
        routes: List[BaseRoute] = []
        for kind, path, handler in self.bindings:
            if kind is not RouteKind.WEBSOCKET:
                continue
            logging.info("⛺ Adding WebSocket (WSS) route: %s", path)
            routes.append(WebSocketRoute(path, websocket_endpoint(handler, self.rooms)))
        return routes

    def bind_websocket_routes(self, router_routes: List[BaseRoute], before: Optional[BaseRoute] = None) -> int:
        """Insert the WebSocket routes into `router_routes` ahead of `before` (or at the end)."""
        index = router_routes.index(before) if before is not None and before in router_routes else len(router_routes)
        websocket_routes = self.websocket_routes()
        router_routes[index:index] = websocket_routes
        return len(websocket_routes)
