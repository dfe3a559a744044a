import os
import sys
from unittest.mock import AsyncMock

import pytest
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse

from place_site import loader
from place_site.errors import RouteBindingError
from place_site.loader import (
    RouteLoader,
    WebSocketRooms,
    as_response,
    convert_express_path,
    import_fresh,
    load_handler,
    load_route_table,
)
from place_site.routing import RouteKind, RouteSpec, discover_routes


def test_import_fresh_picks_up_edits(tmp_path, write_file):
    module_path = write_file(tmp_path, "hello.py", "VALUE = 1\n")
    first = import_fresh(module_path)

    write_file(tmp_path, "hello.py", "VALUE = 2\n")
    second = import_fresh(module_path)

    assert first.VALUE == 1
    assert second.VALUE == 2
    assert first.__name__ != second.__name__


def test_import_fresh_never_uses_a_bytecode_cache(tmp_path, write_file):
    module_path = write_file(tmp_path, "same.py", "VALUE = 1\n")
    original = module_path.stat()
    assert import_fresh(module_path).VALUE == 1

    # Same size and timestamp: a bytecode cache would consider the old code current.
    write_file(tmp_path, "same.py", "VALUE = 2\n")
    os.utime(module_path, ns=(original.st_atime_ns, original.st_mtime_ns))

    assert import_fresh(module_path).VALUE == 2
    assert not (tmp_path / "__pycache__").exists()


def test_forget_loaded_modules_drops_previous_pass(tmp_path, write_file):
    module = import_fresh(write_file(tmp_path, "thing.py", "X = 1\n"))
    assert module.__name__ in sys.modules

    loader.forget_loaded_modules()

    assert module.__name__ not in sys.modules


def test_convert_express_path():
    assert convert_express_path("/hello/:name") == "/hello/{name}"
    assert convert_express_path("/a/:b/c/:d") == "/a/{b}/c/{d}"
    assert convert_express_path("/plain/{already}") == "/plain/{already}"
    assert convert_express_path("/") == "/"


def test_load_handler_returns_handler(tmp_path, write_file):
    module_path = write_file(tmp_path, "hello.py", """
        def handler(request):
            return "hi"
    """)
    handler = load_handler(RouteSpec(RouteKind.GET, "/hello", module_path))
    assert handler(None) == "hi"


def test_missing_handler_is_a_binding_error_with_hint(tmp_path, write_file):
    module_path = write_file(tmp_path, "nothing.py", "x = 1\n")

    with pytest.raises(RouteBindingError) as info:
        load_handler(RouteSpec(RouteKind.GET, "/nothing", module_path))

    assert info.value.route_path == "/nothing"
    assert "Could not bind route /nothing" in info.value.message
    assert "def handler(request)" in info.value.hint


def test_non_callable_handler_is_rejected(tmp_path, write_file):
    module_path = write_file(tmp_path, "bad.py", "handler = 42\n")
    with pytest.raises(RouteBindingError, match="not callable"):
        load_handler(RouteSpec(RouteKind.GET, "/bad", module_path))


def test_handler_with_wrong_signature_is_rejected(tmp_path, write_file):
    module_path = write_file(tmp_path, "bad.py", "def handler():\n    return 'x'\n")
    with pytest.raises(RouteBindingError, match="wrong signature"):
        load_handler(RouteSpec(RouteKind.GET, "/bad", module_path))


def test_websocket_handler_must_be_async_with_two_arguments(tmp_path, write_file):
    sync_path = write_file(tmp_path, "sync.py", "def handler(client, request):\n    pass\n")
    one_arg_path = write_file(tmp_path, "one.py", "async def handler(client):\n    pass\n")

    with pytest.raises(RouteBindingError, match="coroutine"):
        load_handler(RouteSpec(RouteKind.WEBSOCKET, "/sync", sync_path))
    with pytest.raises(RouteBindingError) as info:
        load_handler(RouteSpec(RouteKind.WEBSOCKET, "/one", one_arg_path))
    assert "async def handler(client, request)" in info.value.hint


def test_import_errors_become_binding_errors(tmp_path, write_file):
    module_path = write_file(tmp_path, "broken.py", "def handler(request)\n    return 1\n")
    with pytest.raises(RouteBindingError, match="error while importing"):
        load_handler(RouteSpec(RouteKind.GET, "/broken", module_path))


def test_route_table(tmp_path, write_file):
    table = write_file(tmp_path, "routes.py", """
        def hello(request):
            return "hello"

        def save(request):
            return "saved"

        async def chat(client, request):
            pass

        https_routes = {
            "/hello/:name": hello,
            "/save": {"get": hello, "post": save},
        }
        wss_routes = {"/chat": chat}
    """)

    bindings = [(kind, path) for kind, path, _ in load_route_table(table)]

    assert bindings == [
        (RouteKind.GET, "/hello/{name}"),
        (RouteKind.GET, "/save"),
        (RouteKind.POST, "/save"),
        (RouteKind.WEBSOCKET, "/chat"),
    ]


def test_route_table_without_routes_is_rejected(tmp_path, write_file):
    table = write_file(tmp_path, "routes.py", "x = 1\n")
    with pytest.raises(RouteBindingError, match="defines no routes"):
        load_route_table(table)


def test_as_response_coercion():
    assert isinstance(as_response("hi", "/"), PlainTextResponse)
    assert isinstance(as_response({"a": 1}, "/"), JSONResponse)
    assert isinstance(as_response([1, 2], "/"), JSONResponse)
    assert as_response(b"\x00", "/").media_type == "application/octet-stream"
    html = HTMLResponse("<p>x</p>")
    assert as_response(html, "/") is html
    with pytest.raises(TypeError, match="returned NoneType"):
        as_response(None, "/nothing")


def test_route_loader_splits_http_and_websocket_routes(tmp_path, write_file):
    routes = tmp_path / "routes"
    write_file(routes, "https/get/hello.py", "def handler(request):\n    return 'hi'\n")
    write_file(routes, "wss/chat.py", "async def handler(client, request):\n    pass\n")

    route_loader = RouteLoader(discover_routes(routes)).load()

    assert [route.path for route in route_loader.http_routes()] == ["/hello"]
    target = ["first", "tail"]
    assert route_loader.bind_websocket_routes(target, before="tail") == 1
    assert target[0] == "first"
    assert target[1].path == "/chat"
    assert target[2] == "tail"


async def test_websocket_rooms_broadcast_to_everyone_else():
    rooms = WebSocketRooms()
    sender, first, second, elsewhere = AsyncMock(), AsyncMock(), AsyncMock(), AsyncMock()
    for client in (sender, first, second):
        rooms.join("/chat", client)
    rooms.join("/other", elsewhere)

    count = await rooms.broadcast("/chat", sender, "hello")

    assert count == 2
    first.send_text.assert_awaited_once_with("hello")
    second.send_text.assert_awaited_once_with("hello")
    sender.send_text.assert_not_awaited()
    elsewhere.send_text.assert_not_awaited()

    rooms.leave("/other", elsewhere)
    assert "/other" not in rooms.rooms
