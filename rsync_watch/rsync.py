"""
rsync executor for Rsync Watch.

Builds the rsync command line for a project, runs it as an asyncio
subprocess tracked in the shared registry, streams its per-file output
to subscribers and reports the outcome as a ``SyncResult``.
"""

import asyncio
import logging
import shlex
import sys
from collections.abc import Callable
from dataclasses import dataclass

from rsync_watch.config import Project
from rsync_watch.notify import DesktopNotifier
from rsync_watch.registry import Registry

logger = logging.getLogger(__name__)

DEFAULT_EXECUTABLE = "rsync"
OUTPUT_PREFIX = "[sync] "
# Longest single output line accepted from rsync
OUTPUT_LINE_LIMIT = 1024 * 1024

# (project name, output line without trailing newline)
OutputSubscriber = Callable[[str, str], None]


class SyncError(RuntimeError):
    """rsync could not be started or exited with a nonzero status."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one rsync run: success with a pid, or failure with an error."""

    project: str
    command: str
    pid: int | None = None
    returncode: int | None = None
    error: SyncError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _format_option(name: str, value: object) -> list[str]:
    """
    Render one rsync option.

    Falsy values and ``True`` give a bare flag; anything else is passed
    as the option's argument (``--name=value`` or ``-n value``).
    """
    bare = not value or value is True
    if len(name) == 1:
        return [f"-{name}"] if bare else [f"-{name}", str(value)]
    return [f"--{name}"] if bare else [f"--{name}={value}"]


def build_command(project: Project, executable: str = DEFAULT_EXECUTABLE) -> list[str]:
    """Return the rsync argv for *project*: options, excludes, source, destination."""
    cmd = [executable]
    for name, value in project.rsync_options.items():
        cmd.extend(_format_option(name, value))
    cmd.extend(f"--exclude={pattern}" for pattern in project.exclude)
    cmd.append(project.source)
    cmd.append(project.destination)
    return cmd


def echo_output(project: str, line: str) -> None:
    """Default subscriber: copy rsync's output to stdout with a marker."""
    sys.stdout.write(f"{OUTPUT_PREFIX}{line}\n")
    sys.stdout.flush()


class Synchronizer:
    """
    Runs rsync for projects and keeps the registry up to date.

    Parameters
    ----------
    registry : Registry
        Shared registry; each process is added as soon as it is spawned
        and removed once it has exited.
    notifier : DesktopNotifier, optional
        Used for projects with desktop notifications enabled.
    executable : str
        rsync binary to run.
    """

    def __init__(
        self,
        registry: Registry,
        notifier: DesktopNotifier | None = None,
        executable: str = DEFAULT_EXECUTABLE,
    ):
        self.registry = registry
        self.notifier = notifier
        self.executable = executable
        self._subscribers: list[OutputSubscriber] = [echo_output]

    # ---- output channel ----

    def subscribe(self, callback: OutputSubscriber) -> None:
        """Receive every rsync output line as ``callback(project, line)``."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: OutputSubscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _publish(self, project: str, line: str) -> None:
        for callback in list(self._subscribers):
            try:
                callback(project, line)
            except Exception:
                logger.exception("Error in rsync output subscriber")

    async def _pump_stdout(self, project: str, stream: asyncio.StreamReader) -> None:
        while raw := await stream.readline():
            self._publish(project, raw.decode("utf-8", errors="replace").rstrip("\r\n"))

    async def _pump_stderr(
        self, project: str, stream: asyncio.StreamReader, tail: list[str]
    ) -> None:
        while raw := await stream.readline():
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line:
                logger.warning("[%s | rsync] %s", project, line)
                tail[:] = [line]

    # ---- running ----

    async def sync(self, project: Project) -> SyncResult:
        """Run rsync once for *project* and wait for it to exit."""
        cmd = build_command(project, self.executable)
        command = shlex.join(cmd)

        logger.info("[sync start] %s", project.name)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=OUTPUT_LINE_LIMIT,
            )
        except (OSError, ValueError) as exc:
            error = SyncError(f"Could not start {cmd[0]}: {exc}")
            error.__cause__ = exc
            return self._failed(project, command, None, error)

        entry = self.registry.add_process(project.name, process)
        stderr_tail: list[str] = []
        try:
            await asyncio.gather(
                self._pump_stdout(project.name, process.stdout),
                self._pump_stderr(project.name, process.stderr, stderr_tail),
            )
            returncode = await process.wait()
        except asyncio.CancelledError:
            entry.kill()
            raise
        except Exception as exc:
            # rsync must not outlive its registry entry
            logger.exception("Reading rsync output for %s failed", project.name)
            entry.kill()
            await process.wait()
            error = SyncError(f"Reading rsync output failed: {exc}", process.returncode)
            error.__cause__ = exc
            return self._failed(project, command, entry.pid, error)
        finally:
            self.registry.remove_process(entry.pid)

        if returncode != 0:
            detail = f": {stderr_tail[0]}" if stderr_tail else ""
            error = SyncError(f"rsync exited with code {returncode}{detail}", returncode)
            return self._failed(project, command, entry.pid, error)

        if project.desktop_notification and self.notifier:
            self.notifier.sync_succeeded()
        logger.info("[sync finish] %s | %s", project.name, command)
        return SyncResult(project.name, command, pid=entry.pid, returncode=returncode)

    def _failed(
        self, project: Project, command: str, pid: int | None, error: SyncError
    ) -> SyncResult:
        if project.desktop_notification and self.notifier:
            self.notifier.sync_failed()
        return SyncResult(
            project.name,
            command,
            pid=pid,
            returncode=error.returncode,
            error=error,
        )
