"""Shared fixtures for the Place tests."""
import asyncio
import inspect
import textwrap
from pathlib import Path

import pytest

from place_site.config import ServerOptions


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    # Never touch the real ~/.place, and never behave like the systemd daemon.
    monkeypatch.setenv("PLACE_SETTINGS_DIR", str(tmp_path / "settings"))
    monkeypatch.delenv("PLACE_DAEMON", raising=False)
    monkeypatch.delenv("PLACE_QUIET", raising=False)


@pytest.fixture
def settings_dir(tmp_path):
    return tmp_path / "settings"


@pytest.fixture
def place_dir(tmp_path):
    path = tmp_path / "site"
    path.mkdir()
    (path / "index.html").write_text("<html><head></head><body>Home</body></html>", encoding="utf-8")
    return path


@pytest.fixture
def write_file():
    """write_file(root, "routes/get/hello.py", source) -> Path (source is dedented)."""

    def write(root: Path, relative_path: str, content: str = "") -> Path:
        path = root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content), encoding="utf-8")
        return path

    return write


@pytest.fixture
def make_options(place_dir, settings_dir):
    def make(**overrides) -> ServerOptions:
        values = dict(path=str(place_dir), domain="example.test", port=0, settings_path=settings_dir,
                      restart_debounce=0.05)
        values.update(overrides)
        return ServerOptions.create(**values)

    return make


class FakeListener:
    """Stands in for the uvicorn listener: no sockets, same lifecycle."""

    def __init__(self, app, options):
        self.app = app
        self.options = options
        self.close_callbacks = []
        self.listening = False
        self.destroy_calls = 0
        self._closed = asyncio.Event()
        self._closing = False

    @property
    def routes(self):
        return self.app.router.routes

    def on_close(self, callback):
        self.close_callbacks.append(callback)

    async def listen(self):
        self.listening = True

    def destroy(self):
        self.destroy_calls += 1
        if self._closing:
            return
        self._closing = True
        self.listening = False
        asyncio.ensure_future(self._close())

    async def _close(self):
        try:
            for callback in self.close_callbacks:
                result = callback()
                if inspect.isawaitable(result):
                    await result
        finally:
            self._closed.set()

    async def wait_closed(self):
        await self._closed.wait()


class FakeListenerFactory:
    def __init__(self):
        self.listeners = []

    def __call__(self, app, options):
        listener = FakeListener(app, options)
        self.listeners.append(listener)
        return listener


@pytest.fixture
def listener_factory():
    return FakeListenerFactory()
