# listener.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
The network listener.

A Listener owns one uvicorn server for one ASGI application. It is started
with listen(), stopped with destroy(), and runs its close callbacks
(housekeeping) once the server has fully stopped. wait_closed() resolves after
the last callback, whether or not the callbacks succeeded.

Signals are left to the caller: the server is driven through uvicorn's
_serve() so uvicorn never installs its own SIGINT/SIGTERM handlers.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional

import uvicorn

from .config import ServerOptions
from .errors import ListenerError
from .tls import generate_local_certificate, global_certificate_paths

# Seconds to wait for uvicorn to bind before giving up.
STARTUP_TIMEOUT = 10.0


class Listener:
    def __init__(self, app, host: str = "0.0.0.0", port: int = 0,
                 ssl_certfile: Optional[str] = None, ssl_keyfile: Optional[str] = None,
                 shutdown_grace: float = 0.0):
        self.app = app
        self.host = host
        self.requested_port = port
        self.shutdown_grace = shutdown_grace
        ssl_params = {"ssl_certfile": ssl_certfile, "ssl_keyfile": ssl_keyfile} if ssl_certfile else {}
        self.config = uvicorn.Config(
            app,
            host=host,
            port=port,
            lifespan="off",
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=shutdown_grace if shutdown_grace > 0 else None,
            **ssl_params,
        )
        self.server = uvicorn.Server(self.config)
        self._server_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._close_callbacks: List[Callable[[], Any]] = []
        self._closed = asyncio.Event()
        self._closing = False

    @property
    def routes(self) -> list:
        """The application's route list (mutable, first match wins)."""
        return self.app.router.routes

    @property
    def port(self) -> int:
        """The bound port (useful when listening on port 0)."""
        for server in getattr(self.server, "servers", []):
            for sock in server.sockets:
                return sock.getsockname()[1]
        return self.requested_port

    @property
    def is_listening(self) -> bool:
        return bool(self.server.started) and not self._closing

    def on_close(self, callback: Callable[[], Any]) -> None:
        """Register a (sync or async) callback to run after the server stops."""
        self._close_callbacks.append(callback)

    async def listen(self) -> None:
        serve_coro = self.server._serve() if hasattr(self.server, "_serve") else self.server.serve()
        self._server_task = asyncio.create_task(serve_coro)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + STARTUP_TIMEOUT
        while not self.server.started:
            if self._server_task.done():
                exc = self._server_task.exception()
                raise ListenerError(f"Listener on {self.host}:{self.requested_port} exited during startup ({exc}).") from exc
            if loop.time() > deadline:
                self._server_task.cancel()
                raise ListenerError(f"Listener on {self.host}:{self.requested_port} failed to start within {STARTUP_TIMEOUT}s.")
            await asyncio.sleep(0.05)
        self._watch_task = asyncio.create_task(self._wait_for_exit())

    def destroy(self) -> None:
        """Stop accepting connections and close the server. Safe to call more than once."""
        if self._closing:
            return
        self._closing = True
        if self._server_task is None:
            # Never listened: housekeeping still runs.
            self._watch_task = asyncio.ensure_future(self._run_close_callbacks())
            return
        self.server.should_exit = True
        if self.shutdown_grace <= 0:
            self.server.force_exit = True

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def _wait_for_exit(self) -> None:
        try:
            await self._server_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logging.error("Listener stopped with an error: %s", e)
        self._closing = True
        await self._run_close_callbacks()

    async def _run_close_callbacks(self) -> None:
        try:
            for callback in self._close_callbacks:
                try:
                    result = callback()
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logging.warning("⚠️ Close callback %s failed: %s", getattr(callback, "__name__", callback), e)
        finally:
            self._closed.set()


def create_server(app, options: ServerOptions) -> Listener:
    """Create the HTTPS listener for `options` (certificates resolved here)."""
    if options.is_global:
        cert_path, key_path = global_certificate_paths(options.settings, options.domain)
    else:
        cert_path, key_path = generate_local_certificate(options.settings / "tls" / "local")
    return Listener(
        app,
        host=options.bind,
        port=options.port,
        ssl_certfile=str(cert_path),
        ssl_keyfile=str(key_path),
        shutdown_grace=options.shutdown_grace,
    )
