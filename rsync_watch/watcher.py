"""File system watcher for Rsync Watch.

Uses the watchdog library to monitor each project's source tree and
hands every relevant change to the asyncio event loop, where a
per-project debouncer collapses bursts of changes into one sync.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
from collections.abc import Callable, Iterable
from pathlib import PurePosixPath

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from rsync_watch.config import Project
from rsync_watch.registry import Registry, WatcherHandle

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.5

# opened/closed events are produced by rsync itself reading the tree
WATCHED_EVENT_TYPES = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}
)

# (project name, event type, path)
ChangeCallback = Callable[[str, str, str], None]


class WatchError(OSError):
    """The watch on a project's source tree could not be established."""


def _candidates(rel_path: str) -> Iterable[str]:
    """Yield every ancestor prefix and every component name of *rel_path*."""
    parts = PurePosixPath(rel_path).parts
    for i in range(1, len(parts) + 1):
        yield "/".join(parts[:i])
        yield parts[i - 1]


def is_excluded(rel_path: str, patterns: Iterable[str]) -> bool:
    """
    Return True if *rel_path* (relative to the source root, ``/``-separated)
    falls under one of the rsync-style exclude *patterns*.

    A pattern matches a path when it matches the path itself, one of its
    parent directories, or a single path component; a leading ``**/`` also
    matches at the root.
    """
    if not rel_path or rel_path == ".":
        return False
    for raw in patterns:
        pattern = raw.strip("/")
        if not pattern:
            continue
        rootless = pattern[3:] if pattern.startswith("**/") else None
        for candidate in _candidates(rel_path):
            if fnmatch.fnmatchcase(candidate, pattern):
                return True
            if rootless and fnmatch.fnmatchcase(candidate, rootless):
                return True
    return False


class ChangeHandler(FileSystemEventHandler):
    """Watchdog handler that forwards relevant changes to the event loop.

    watchdog calls this from its observer thread; the callback is only
    ever run on *loop* via ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        project: Project,
        loop: asyncio.AbstractEventLoop,
        on_change: ChangeCallback,
    ):
        super().__init__()
        self._project = project
        self._loop = loop
        self._on_change = on_change
        self._root = os.path.abspath(project.source)

    def _relative(self, path: str) -> str:
        try:
            rel = os.path.relpath(path, self._root)
        except ValueError:
            return path
        return rel.replace(os.sep, "/")

    def _should_forward(self, event: FileSystemEvent) -> bool:
        if event.event_type not in WATCHED_EVENT_TYPES:
            return False
        paths = [os.fsdecode(event.src_path)]
        if event.event_type == EVENT_TYPE_MOVED:
            paths.append(os.fsdecode(event.dest_path))
        # A move is relevant if either end is inside the mirrored set
        return not all(
            is_excluded(self._relative(p), self._project.exclude) for p in paths
        )

    def on_any_event(self, event: FileSystemEvent) -> None:
        if not self._should_forward(event):
            return
        path = os.fsdecode(event.src_path)
        try:
            self._loop.call_soon_threadsafe(
                self._on_change, self._project.name, event.event_type, path
            )
        except RuntimeError:
            # Event loop is closing during shutdown
            logger.debug("Event loop closed, dropping %s event for %s", event.event_type, path)


def start_watch(
    project: Project,
    registry: Registry,
    on_change: ChangeCallback,
    loop: asyncio.AbstractEventLoop | None = None,
) -> WatcherHandle:
    """
    Watch *project*'s source tree recursively.

    The handle is registered before the observer starts so shutdown can
    always find it.  Raises ``WatchError`` if the observer cannot start.
    """
    loop = loop or asyncio.get_running_loop()
    observer = Observer()
    handle = registry.add_watcher(project.name, observer)
    try:
        observer.schedule(ChangeHandler(project, loop, on_change), project.source, recursive=True)
        observer.start()
    except OSError as exc:
        raise WatchError(f"Cannot watch {project.source}: {exc}") from exc
    logger.info("[watch start] %s | %s", project.name, project.source)
    return handle


class Debouncer:
    """
    One resettable timer per key.

    ``trigger(key)`` (re)starts the key's timer; *callback(key)* runs once
    the timer expires without another trigger for that key.  Must be used
    from the event-loop thread.
    """

    def __init__(
        self,
        callback: Callable[[str], None],
        delay: float = DEBOUNCE_SECONDS,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.delay = delay
        self._callback = callback
        self._loop = loop
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def trigger(self, key: str) -> None:
        self.cancel(key)
        loop = self._loop or asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self.delay, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        try:
            self._callback(key)
        except Exception:
            logger.exception("Error in debounced callback for %s", key)

    def cancel(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.cancel(key)

    def is_pending(self, key: str) -> bool:
        return key in self._timers

    @property
    def pending(self) -> list[str]:
        return list(self._timers)
