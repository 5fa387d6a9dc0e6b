"""Tests for the rsync executor."""

import asyncio
import logging
from unittest.mock import AsyncMock, Mock, patch

import pytest

from rsync_watch.config import DEFAULT_RSYNC_OPTIONS
from rsync_watch.notify import DesktopNotifier
from rsync_watch.registry import Registry
from rsync_watch.rsync import SyncError, Synchronizer, build_command, echo_output

from .fakes import FakeProcess


def spawn_returning(proc):
    return patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=proc))


class TestBuildCommand:
    def test_order_options_excludes_paths(self, make_project):
        project = make_project(
            exclude=("*.log", "**/.git"),
            rsync_options={"out-format": "%n", "recursive": None, "delete": None},
        )
        assert build_command(project) == [
            "rsync",
            "--out-format=%n",
            "--recursive",
            "--delete",
            "--exclude=*.log",
            "--exclude=**/.git",
            "/src",
            "/dst",
        ]

    def test_short_options(self, make_project):
        project = make_project(rsync_options={"a": None, "e": "ssh -p 2222"})
        assert build_command(project)[1:4] == ["-a", "-e", "ssh -p 2222"]

    @pytest.mark.parametrize("value", [None, False, "", 0, True])
    def test_falsy_and_true_values_are_bare_flags(self, make_project, value):
        project = make_project(rsync_options={"times": value})
        assert build_command(project) == ["rsync", "--times", "/src", "/dst"]

    def test_numeric_value(self, make_project):
        project = make_project(rsync_options={"timeout": 30})
        assert "--timeout=30" in build_command(project)

    def test_no_options(self, make_project):
        assert build_command(make_project(), "/opt/bin/rsync") == ["/opt/bin/rsync", "/src", "/dst"]

    def test_default_options_render(self, make_project):
        cmd = build_command(make_project(rsync_options=dict(DEFAULT_RSYNC_OPTIONS)))
        assert cmd[1] == "--out-format=%n"
        assert "--delete-during" in cmd
        assert "--no-owner" in cmd


class TestSynchronizer:
    @pytest.fixture
    def registry(self):
        return Registry()

    @pytest.fixture
    def notifier(self):
        return Mock(spec=DesktopNotifier)

    @pytest.fixture
    def synchronizer(self, registry, notifier):
        sync = Synchronizer(registry, notifier=notifier)
        sync.unsubscribe(echo_output)
        return sync

    @pytest.mark.asyncio
    async def test_success(self, synchronizer, registry, notifier, make_project, caplog):
        caplog.set_level(logging.INFO)
        proc = FakeProcess(stdout=b"a.txt\nsub/b.txt\n")
        lines = []
        synchronizer.subscribe(lambda project, line: lines.append((project, line)))

        with spawn_returning(proc) as spawn:
            result = await synchronizer.sync(make_project(desktop_notification=True))

        assert result.ok
        assert result.pid == proc.pid
        assert result.returncode == 0
        assert result.command == "rsync /src /dst"
        assert lines == [("web", "a.txt"), ("web", "sub/b.txt")]
        assert spawn.call_args.args == ("rsync", "/src", "/dst")
        assert registry.processes == {}
        notifier.sync_succeeded.assert_called_once()
        notifier.sync_failed.assert_not_called()
        assert "[sync start] web" in caplog.text
        assert "[sync finish] web | rsync /src /dst" in caplog.text

    @pytest.mark.asyncio
    async def test_registered_only_while_running(self, synchronizer, registry, make_project):
        proc = FakeProcess(hold=True)
        with spawn_returning(proc):
            task = asyncio.create_task(synchronizer.sync(make_project()))
            for _ in range(5):
                await asyncio.sleep(0)
            assert list(registry.processes) == [proc.pid]
            assert registry.processes[proc.pid].project == "web"

            proc.finish()
            result = await task

        assert result.ok
        assert proc.pid not in registry.processes

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, synchronizer, registry, notifier, make_project, caplog):
        caplog.set_level(logging.INFO)
        proc = FakeProcess(returncode=23, stderr=b"rsync error: some files could not be transferred\n")

        with spawn_returning(proc):
            result = await synchronizer.sync(make_project(desktop_notification=True))

        assert not result.ok
        assert isinstance(result.error, SyncError)
        assert result.returncode == 23
        assert result.error.returncode == 23
        assert "some files could not be transferred" in str(result.error)
        assert registry.processes == {}
        notifier.sync_failed.assert_called_once()
        notifier.sync_succeeded.assert_not_called()
        assert "[sync finish]" not in caplog.text

    @pytest.mark.asyncio
    async def test_spawn_error(self, synchronizer, registry, notifier, make_project):
        with patch(
            "asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError("rsync")),
        ):
            result = await synchronizer.sync(make_project(desktop_notification=True))

        assert not result.ok
        assert result.pid is None
        assert "Could not start rsync" in str(result.error)
        assert registry.processes == {}
        notifier.sync_failed.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalid_argument_at_spawn(self, synchronizer, registry, notifier, make_project):
        with patch(
            "asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=ValueError("embedded null byte")),
        ):
            result = await synchronizer.sync(make_project(source="/sr\x00c", desktop_notification=True))

        assert not result.ok
        assert "embedded null byte" in str(result.error)
        assert registry.processes == {}
        notifier.sync_failed.assert_called_once()

    @pytest.mark.asyncio
    async def test_overlong_output_line_kills_rsync(
        self, synchronizer, registry, notifier, make_project
    ):
        # Longer than the reader's 64 KiB default limit
        proc = FakeProcess(stdout=b"x" * 70_000 + b"\n", hold=True)

        with spawn_returning(proc) as spawn:
            result = await asyncio.wait_for(
                synchronizer.sync(make_project(desktop_notification=True)), timeout=2
            )

        assert not result.ok
        assert isinstance(result.error, SyncError)
        assert "Reading rsync output failed" in str(result.error)
        assert result.pid == proc.pid
        assert result.returncode == -9
        assert proc.killed == 1
        assert registry.processes == {}
        notifier.sync_failed.assert_called_once()
        assert spawn.call_args.kwargs["limit"] > 70_000

    @pytest.mark.asyncio
    async def test_notifications_disabled(self, synchronizer, notifier, make_project):
        with spawn_returning(FakeProcess()):
            await synchronizer.sync(make_project())
        with spawn_returning(FakeProcess(returncode=1)):
            await synchronizer.sync(make_project())
        notifier.sync_succeeded.assert_not_called()
        notifier.sync_failed.assert_not_called()

    @pytest.mark.asyncio
    async def test_killed_process_fails(self, synchronizer, registry, make_project):
        proc = FakeProcess(hold=True)
        with spawn_returning(proc):
            task = asyncio.create_task(synchronizer.sync(make_project()))
            for _ in range(5):
                await asyncio.sleep(0)
            registry.processes[proc.pid].kill()
            result = await task

        assert not result.ok
        assert result.returncode == -9
        assert registry.processes == {}

    @pytest.mark.asyncio
    async def test_cancel_kills_process(self, synchronizer, registry, make_project):
        proc = FakeProcess(hold=True)
        with spawn_returning(proc):
            task = asyncio.create_task(synchronizer.sync(make_project()))
            for _ in range(5):
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert proc.killed == 1
        assert registry.processes == {}

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_sync(self, synchronizer, make_project):
        synchronizer.subscribe(Mock(side_effect=ValueError("bad subscriber")))
        with spawn_returning(FakeProcess(stdout=b"a.txt\n")):
            result = await synchronizer.sync(make_project())
        assert result.ok


def test_echo_output(capsys):
    echo_output("web", "a.txt")
    assert capsys.readouterr().out == "[sync] a.txt\n"
