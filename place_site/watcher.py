# watcher.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Restarts the server when dynamic or wildcard routes change.

Changes to static files never restart the server. Bursts of changes (an
editor saving several files, a git checkout) collapse into a single restart
request once the tree has been quiet for the debounce delay.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from watchfiles import Change, awatch

from .config import LEGACY_DYNAMIC_DIRECTORY_NAME, ROUTES_DIRECTORY_NAME, WILDCARD_DIRECTORY_NAME

WATCHED_DIRECTORY_NAMES = (ROUTES_DIRECTORY_NAME, LEGACY_DYNAMIC_DIRECTORY_NAME, WILDCARD_DIRECTORY_NAME)


class ChangeKind(Enum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


_CHANGE_KINDS = {
    Change.added: ChangeKind.ADDED,
    Change.modified: ChangeKind.CHANGED,
    Change.deleted: ChangeKind.REMOVED,
}


@dataclass(frozen=True)
class WatchedChangeEvent:
    kind: ChangeKind
    path: Path

    def pretty(self) -> str:
        return f"{self.kind.value} {self.path}"


class Debouncer:
    """Runs `callback` once, `delay` seconds after the last trigger()."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self.delay = delay
        self.callback = callback
        self._timer: Optional[asyncio.TimerHandle] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        self.task = asyncio.ensure_future(self.callback())


class RouteWatcher:
    """Watches a place's routes, .dynamic and .wildcard folders."""

    def __init__(self, place_path: Path, on_change: Callable[[], Awaitable[None]], delay: float = 0.5,
                 watched_names: Iterable[str] = WATCHED_DIRECTORY_NAMES):
        self.place_path = place_path
        self.watched_names = tuple(watched_names)
        self.debouncer = Debouncer(delay, on_change)
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def is_watched(self, change: Change, path: str) -> bool:
        try:
            relative = Path(path).relative_to(self.place_path)
        except ValueError:
            return False
        parts = relative.parts
        if not parts or parts[0] not in self.watched_names:
            return False
        return "__pycache__" not in parts

    def start(self) -> None:
        self._task = asyncio.ensure_future(self._watch())

    async def _watch(self) -> None:
        try:
            async for changes in awatch(self.place_path, watch_filter=self.is_watched, stop_event=self._stop_event):
                for change, path in sorted(changes, key=lambda c: c[1]):
                    self.notify(WatchedChangeEvent(_CHANGE_KINDS[change], Path(path).relative_to(self.place_path)))
        except OSError as e:
            logging.warning("⚠️ File watcher stopped: %s", e)

    def notify(self, event: WatchedChangeEvent) -> None:
        logging.info("🔭 Dynamic route change: %s.", event.pretty())
        if not self.debouncer.pending:
            logging.info("🔭 Requesting restart…")
        self.debouncer.trigger()

    async def close(self) -> None:
        """Stop watching. A restart that has already begun is left alone."""
        self._stop_event.set()
        self.debouncer.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logging.info("🚮 Removed file watcher.")
