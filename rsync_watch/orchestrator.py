"""
Main controller for Rsync Watch.

Runs the initial sync of every project, starts a watcher for each
project whose first sync succeeded, re-syncs projects after their
changes settle, and tears everything down on SIGINT/SIGTERM or when
any initial sync fails.
"""

import asyncio
import logging
import signal

from rsync_watch.config import Project
from rsync_watch.notify import DesktopNotifier
from rsync_watch.registry import Registry
from rsync_watch.rsync import DEFAULT_EXECUTABLE, Synchronizer
from rsync_watch.watcher import DEBOUNCE_SECONDS, Debouncer, WatchError, start_watch

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Orchestrator:
    """
    Central orchestrator.

    Owns the registry of running rsync processes and watchers, the
    per-project debouncer, and the stop event that ``run`` waits on.
    Overlapping syncs of the same project are not prevented.
    """

    def __init__(
        self,
        projects: dict[str, Project],
        notifier: DesktopNotifier | None = None,
        executable: str = DEFAULT_EXECUTABLE,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        synchronizer: Synchronizer | None = None,
    ) -> None:
        self.projects = projects
        self.registry = synchronizer.registry if synchronizer else Registry()
        self.synchronizer = synchronizer or Synchronizer(
            self.registry, notifier=notifier, executable=executable
        )
        self.debouncer = Debouncer(self._resync, delay=debounce_seconds)
        self._stopped: asyncio.Event | None = None
        self._stopping = False
        self._tasks: set[asyncio.Task] = set()
        # Handlers replaced by the plain-signal fallback, restored on exit
        self._previous_handlers: dict[int, object] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def stopping(self) -> bool:
        return self._stopping

    async def run(self) -> int:
        """Sync and watch every project until shutdown; return the exit code."""
        self._stopped = asyncio.Event()
        self._install_signal_handlers()

        for name in self.projects:
            self._spawn(self.start_project(name))

        await self._stopped.wait()

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._remove_signal_handlers()
        return 0

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.quit)
            except NotImplementedError:
                # Windows event loops: fall back to a plain handler
                self._previous_handlers[sig] = signal.signal(
                    sig, lambda *_: loop.call_soon_threadsafe(self.quit)
                )

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                previous = self._previous_handlers.pop(sig, signal.SIG_DFL)
                signal.signal(sig, signal.SIG_DFL if previous is None else previous)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Per-project flow
    # ------------------------------------------------------------------

    async def start_project(self, name: str) -> bool:
        """Initial sync, then watch.  A failed initial sync shuts everything down."""
        result = await self.synchronizer.sync(self.projects[name])
        if not result.ok:
            logger.error("[%s | sync error] %s", name, result.error)
            self.quit()
            return False
        if self._stopping:
            return False
        self.watch(name)
        return True

    def watch(self, name: str) -> None:
        """Start watching *name*; watch errors are logged, never raised."""
        try:
            start_watch(self.projects[name], self.registry, self.on_change)
        except WatchError as exc:
            logger.error("[%s | watch error] %s", name, exc)

    def on_change(self, name: str, event_type: str, path: str) -> None:
        """Called on the loop thread for every relevant file-system event."""
        if self._stopping:
            return
        logger.info("[watch | %s] %s", event_type, path)
        self.debouncer.trigger(name)

    def _resync(self, name: str) -> None:
        if self._stopping:
            return
        self._spawn(self._run_resync(name))

    async def _run_resync(self, name: str) -> None:
        result = await self.synchronizer.sync(self.projects[name])
        if not result.ok:
            logger.error("[%s | sync error] %s", name, result.error)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def quit(self) -> None:
        """
        Kill every running rsync, close every watcher, release ``run``.

        Every observer is told to stop before any is joined, so the
        observer threads wind down together.  The joins run on the loop
        thread and each may block it for up to ``WatcherHandle.join``'s
        timeout.
        """
        if self._stopping:
            return
        self._stopping = True
        logger.info("[stopping]")

        self.debouncer.cancel_all()

        for entry in list(self.registry.processes.values()):
            logger.info("[sync stop] %s", entry.project)
            entry.kill()

        for handle in self.registry.watchers:
            logger.info("[watch stop] %s", handle.project)
            try:
                handle.stop()
            except Exception:
                logger.exception("Error stopping watcher for %s", handle.project)

        for handle in self.registry.watchers:
            try:
                handle.join()
            except Exception:
                logger.exception("Error joining watcher for %s", handle.project)

        if self._stopped is not None:
            self._stopped.set()
