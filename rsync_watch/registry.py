"""
Process-lifetime bookkeeping for Rsync Watch.

The orchestrator owns a single ``Registry`` and hands it to the sync
executor and the watchers.  It records every rsync process still
running and every active file-system watch, so that shutdown can stop
each of them.  All mutation happens on the event-loop thread.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class SyncProcess:
    """One running rsync invocation."""

    project: str
    process: Any  # asyncio.subprocess.Process

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_running(self) -> bool:
        return self.process.returncode is None

    def kill(self) -> None:
        """Force-terminate the process if it is still running."""
        if not self.is_running:
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            # Exited between the check and the signal
            logger.debug("rsync %d already gone", self.pid)


@dataclass
class WatcherHandle:
    """One active watchdog observer."""

    project: str
    observer: Any  # watchdog.observers.Observer

    def stop(self) -> None:
        """Ask the observer thread to exit; returns immediately."""
        self.observer.stop()

    def join(self, timeout: float = 5) -> None:
        """Block until the observer thread exits or *timeout* passes."""
        if self.observer.is_alive():
            self.observer.join(timeout=timeout)

    def close(self, timeout: float = 5) -> None:
        """Stop the observer and wait for its thread to finish."""
        self.stop()
        self.join(timeout)


@dataclass
class Registry:
    """Running sync processes keyed by pid, plus active watchers."""

    processes: dict[int, SyncProcess] = field(default_factory=dict)
    watchers: list[WatcherHandle] = field(default_factory=list)

    def add_process(self, project: str, process: Any) -> SyncProcess:
        entry = SyncProcess(project, process)
        if entry.pid in self.processes:
            raise RuntimeError(f"pid {entry.pid} is already registered")
        self.processes[entry.pid] = entry
        return entry

    def remove_process(self, pid: int) -> None:
        self.processes.pop(pid, None)

    def add_watcher(self, project: str, observer: Any) -> WatcherHandle:
        handle = WatcherHandle(project, observer)
        self.watchers.append(handle)
        return handle
