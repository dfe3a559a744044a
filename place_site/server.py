# server.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Serves a place (a folder) as a website.

A Place owns one configured application and one listener at a time:

    CONSTRUCTED -> CONFIGURING -> LISTENING -> RESTARTING -> DESTROYED
                                   LISTENING -> DESTROYED (goodbye)

When a dynamic or wildcard route changes, the Place closes its listener, waits
for housekeeping (file watcher, database) to finish so the port is free, and
hands over to a brand-new Place built from the same options. run() follows
that chain of successors until the last one closes.
"""

import asyncio
import inspect
import logging
import signal
import sys
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.routing import Mount

from .access_log import access_log
from .config import ServerOptions, running_as_daemon
from .database import LazyDatabase, bootstrap_database
from .error_pages import ErrorPages
from .errors import PlaceError
from .git_server import Authenticator, create_git_server, default_authenticate
from .listener import Listener, create_server
from .loader import RouteLoader
from .middleware import CORS_ALLOWED_HEADERS, add_security_headers, alias_redirect, response_helpers
from .reachability import ensure_domains_are_reachable
from .routing import CURRENT_LAYOUT, LEGACY_LAYOUT, DiscoveredRoutes, discover_routes
from .static import build_site_tail
from .stats import Stats
from .watcher import RouteWatcher

ListenerFactory = Callable[[FastAPI, ServerOptions], Listener]
DomainChecker = Callable[..., Awaitable[None]]
ReadyCallback = Callable[["Place"], Any]

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class LifecycleState(Enum):
    CONSTRUCTED = "constructed"
    CONFIGURING = "configuring"
    LISTENING = "listening"
    RESTARTING = "restarting"
    DESTROYED = "destroyed"


async def raise_test_error(request: Request):
    """Lets a person check what their 500 page looks like."""
    raise RuntimeError("Bad things have happened.")


def discover_place_routes(options: ServerOptions) -> DiscoveredRoutes:
    """Current `routes/` layout, falling back to a legacy `.dynamic/` folder."""
    if not options.routes_directory.is_dir() and options.legacy_dynamic_directory.is_dir():
        logging.info("⛺ Using legacy dynamic routes in %s", options.legacy_dynamic_directory)
        return discover_routes(options.legacy_dynamic_directory, LEGACY_LAYOUT)
    return discover_routes(options.routes_directory, CURRENT_LAYOUT)


class Place:
    def __init__(self, options: ServerOptions, listener_factory: ListenerFactory = create_server,
                 domain_checker: DomainChecker = ensure_domains_are_reachable,
                 authenticate: Authenticator = default_authenticate, handle_signals: bool = True):
        options.validate()
        self.options = options
        self.listener_factory = listener_factory
        self.domain_checker = domain_checker
        self.authenticate = authenticate
        self.handle_signals = handle_signals

        self.state = LifecycleState.CONSTRUCTED
        self.app: Optional[FastAPI] = None
        self.listener: Optional[Listener] = None
        self.loader: Optional[RouteLoader] = None
        self.tail: Optional[Mount] = None
        self.stats: Optional[Stats] = None
        self.watcher: Optional[RouteWatcher] = None
        self.database: Optional[LazyDatabase] = None
        self.successor: Optional["Place"] = None
        self._callback: Optional[ReadyCallback] = None
        self._signals_installed = False
        # Set once this instance has either closed for good or handed over to its successor.
        self._done = asyncio.Event()

    # --- configuration ---------------------------------------------------------------------

    def configure(self) -> FastAPI:
        """Build a fresh application with the full middleware and route chain."""
        self.state = LifecycleState.CONFIGURING
        options = self.options
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
        error_pages = ErrorPages(options.path)
        if self.database is None:
            self.database = LazyDatabase(options.database_path)
        self.stats = Stats(options.settings)

        # The last middleware added runs first.
        app.middleware("http")(response_helpers(self.database))
        app.middleware("http")(error_pages.render_server_errors)
        if options.is_global:
            app.middleware("http")(alias_redirect(options.domain, options.port))
        if not options.access_log_disable:
            app.middleware("http")(access_log(errors_only=options.access_log_errors_only))
        app.middleware("http")(self.stats.middleware)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=CORS_ALLOWED_HEADERS,
        )
        app.middleware("http")(add_security_headers)

        app.add_route(self.stats.route, self.stats.view, methods=["GET"])
        app.add_route("/test-500-error", raise_test_error, methods=["GET"])

        discovered = discover_place_routes(options)
        logging.info("⛺ Routing convention: %s", discovered.convention.value)
        self.loader = RouteLoader(discovered).load()
        app.router.routes.extend(self.loader.http_routes())

        git_app = create_git_server(options.data_directory, self.authenticate)
        site_tail = build_site_tail(
            options.path,
            options.generated_directory,
            options.wildcard_directory,
            hidden=(options.routes_directory.name,),
            git_app=git_app,
            location=options.pretty_location(),
        )
        self.tail = Mount("/", app=site_tail, name="site")
        app.router.routes.append(self.tail)

        app.add_exception_handler(404, error_pages.not_found_handler)
        # Last resort for errors raised by the middleware themselves.
        app.add_exception_handler(Exception, error_pages.server_error_handler)

        self.app = app
        return app

    # --- lifecycle -------------------------------------------------------------------------

    async def serve(self, callback: Optional[ReadyCallback] = None, check_domains: bool = True) -> None:
        """Configure, bind and start listening. Fatal problems exit the process with status 1."""
        self._callback = callback
        options = self.options
        try:
            if options.is_global and check_domains and not options.skip_domain_reachability_check:
                await self.domain_checker(options.domains)
            self.database = bootstrap_database(options.database_path)
            self.configure()
            self.listener = self.listener_factory(self.app, options)
            websocket_count = self.loader.bind_websocket_routes(self.app.router.routes, before=self.tail)
            if websocket_count:
                logging.info("⛺ Bound %d WebSocket route(s).", websocket_count)
            self.listener.on_close(self.housekeeping)
            self.add_signal_handlers()
            await self.listener.listen()
        except PlaceError as error:
            self.fail(error.message)
        except Exception as error:
            self.fail(f"Could not start server: {error!r}")

        self.state = LifecycleState.LISTENING
        self.watcher = RouteWatcher(options.path, self.restart, delay=options.restart_debounce)
        self.watcher.start()
        logging.info("🎉 Serving %s on https://%s", options.path, options.pretty_location())
        logging.info("📊 For statistics, see https://%s%s", options.pretty_location(), self.stats.route)

        if callback is not None:
            result = callback(self)
            if inspect.isawaitable(result):
                await result

    async def restart(self) -> None:
        if running_as_daemon():
            # systemd brings the process back up.
            logging.info("⛺ Restarting daemon…")
            sys.exit(0)

        if self.state is LifecycleState.RESTARTING:
            logging.info("🙈 Server restart requested while one is already in process. Ignoring…")
            return
        if self.state is not LifecycleState.LISTENING:
            return

        self.state = LifecycleState.RESTARTING
        logging.info("⛺ Restarting server…")
        self.remove_signal_handlers()
        # Wait for housekeeping so the port is free before the successor binds.
        self.listener.destroy()
        await self.listener.wait_closed()

        if self.state is LifecycleState.DESTROYED:
            # goodbye() arrived while we were closing.
            self._done.set()
            return

        try:
            successor = Place(
                self.options,
                listener_factory=self.listener_factory,
                domain_checker=self.domain_checker,
                authenticate=self.authenticate,
                handle_signals=self.handle_signals,
            )
        except PlaceError as error:
            self.fail(f"Could not restart: {error.message}")
        except Exception as error:
            self.fail(f"Could not restart: {error!r}")

        self.successor = successor
        self.state = LifecycleState.DESTROYED
        self._done.set()
        # Exits with status 1 if the new configuration is unusable.
        await successor.serve(self._callback, check_domains=False)
        logging.info("⛺ Server restarted.")

    def fail(self, message: str) -> None:
        """Log a fatal error and exit with status 1, releasing anyone waiting on this instance."""
        logging.error("❌ %s", message)
        self.state = LifecycleState.DESTROYED
        self._done.set()
        sys.exit(1)

    def goodbye(self) -> None:
        """Shut down. Calling it again (or after a restart handover) does nothing."""
        if self.state is LifecycleState.DESTROYED:
            return
        restarting = self.state is LifecycleState.RESTARTING
        self.state = LifecycleState.DESTROYED
        logging.info("💃 Preparing to exit gracefully, please wait…")
        self.remove_signal_handlers()
        if self.listener is not None:
            self.listener.destroy()
        elif not restarting:
            self._done.set()

    async def housekeeping(self) -> None:
        """Runs when the listener has closed. Every step is best-effort."""
        if self.watcher is not None:
            try:
                await self.watcher.close()
            except Exception as e:
                logging.warning("⚠️ Could not remove file watcher: %s", e)
        if self.database is not None and self.database.is_open:
            try:
                self.database.close()
            except Exception as e:
                logging.warning("⚠️ Could not close database: %s", e)
        if self.state is not LifecycleState.RESTARTING:
            self.state = LifecycleState.DESTROYED
            self._done.set()
        logging.info("🚮 Housekeeping complete.")

    async def wait_done(self) -> None:
        await self._done.wait()

    async def run(self, callback: Optional[ReadyCallback] = None, exit_after_launch: bool = False) -> "Place":
        """Serve, then follow restarts until the last instance closes. Returns that instance."""

        async def ready(place: "Place"):
            if callback is not None:
                result = callback(place)
                if inspect.isawaitable(result):
                    await result
            if exit_after_launch:
                logging.info("💃 Pre-flight check complete, exiting.")
                place.goodbye()

        await self.serve(ready)
        place = self
        while True:
            await place.wait_done()
            if place.successor is None:
                return place
            place = place.successor

    # --- signals ---------------------------------------------------------------------------

    def add_signal_handlers(self) -> None:
        if not self.handle_signals or self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        try:
            for sig in HANDLED_SIGNALS:
                loop.add_signal_handler(sig, self.goodbye)
        except (NotImplementedError, RuntimeError):
            # Windows, or not the main thread.
            return
        self._signals_installed = True

    def remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            loop.remove_signal_handler(sig)
        self._signals_installed = False
