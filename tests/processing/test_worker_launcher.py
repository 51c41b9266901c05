# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the subprocess worker launcher.
"""

import asyncio
import signal
import sys
import textwrap
import time

import pytest

from rtcstats.processing import worker_launcher
from rtcstats.processing.worker_launcher import (
    SubprocessLauncher,
    WorkerExit,
    WorkerMessage,
    WorkerSpawnError,
)

SCRIPT = textwrap.dedent("""
    import json, os, sys
    print(json.dumps({"session_id": sys.argv[1], "work_dir": os.environ["RTCSTATS_WORK_DIR"]}))
    print("not json")
    print("[1, 2]")
    print()
    print(json.dumps({"n": 2}))
    sys.exit(3)
""")


async def collect(handle):
    return [event async for event in handle.events()]


class TestSubprocessLauncher:
    """Test spawning real child processes."""

    def test_messages_then_exit(self, tmp_path):
        """Object lines become messages; other lines are skipped; exit comes last."""
        launcher = SubprocessLauncher(tmp_path, command=[sys.executable, "-c", SCRIPT])

        async def scenario():
            handle = await launcher.spawn("abc")
            return await collect(handle)

        events = asyncio.run(scenario())

        assert events == [
            WorkerMessage({"session_id": "abc", "work_dir": str(tmp_path.resolve())}),
            WorkerMessage({"n": 2}),
            WorkerExit(3),
        ]

    def test_string_command_is_split(self, tmp_path):
        launcher = SubprocessLauncher(tmp_path, command="python3 -m some.module --flag")
        assert launcher.command == ["python3", "-m", "some.module", "--flag"]

    def test_default_command(self, tmp_path):
        launcher = SubprocessLauncher(tmp_path)
        assert launcher.command == [sys.executable, "-m", "rtcstats.worker.extract"]

    def test_missing_binary_raises_spawn_error(self, tmp_path):
        launcher = SubprocessLauncher(tmp_path, command=[str(tmp_path / "no-such-worker")])

        async def scenario():
            await launcher.spawn("abc")

        with pytest.raises(WorkerSpawnError):
            asyncio.run(scenario())

    def test_bundled_worker_end_to_end(self, tmp_path):
        """The default worker extracts a real session log."""
        (tmp_path / "s1").write_text(
            '{"path":"/r","origin":"https://meet.example.com","url":"https://meet.example.com/r",'
            '"userAgent":"UA","time":1000,"fileFormat":2}\n'
            '["create","PC_0",{"iceServers":[]},1001]\n'
            '["oniceconnectionstatechange","PC_0","connected",1002]\n'
            '["close",null,null,2000]\n'
        )
        launcher = SubprocessLauncher(tmp_path)

        async def scenario():
            handle = await launcher.spawn("s1")
            return await collect(handle)

        events = asyncio.run(scenario())

        assert events[-1] == WorkerExit(0)
        messages = [e.payload for e in events if isinstance(e, WorkerMessage)]
        assert len(messages) == 1
        assert messages[0]["session_id"] == "s1"
        assert messages[0]["connection_id"] == "PC_0"
        assert messages[0]["origin"] == "https://meet.example.com/r"
        assert messages[0]["connection_features"]["connected"] is True

    def test_bundled_worker_missing_log(self, tmp_path):
        """A missing session log makes the worker exit non-zero."""
        launcher = SubprocessLauncher(tmp_path)

        async def scenario():
            handle = await launcher.spawn("missing")
            return await collect(handle)

        assert asyncio.run(scenario()) == [WorkerExit(1)]


class TestUnreadableOutput:
    """Test workers whose stdout cannot be consumed."""

    def test_oversized_line_kills_worker(self, tmp_path, monkeypatch):
        """A line above the read limit ends with the process killed, not abandoned."""
        monkeypatch.setattr(worker_launcher, "STDOUT_LIMIT", 1024)
        script = "import sys, time; print('x' * 5000, flush=True); time.sleep(30)"
        launcher = SubprocessLauncher(tmp_path, command=[sys.executable, "-c", script])

        async def scenario():
            handle = await launcher.spawn("big")
            started = time.monotonic()
            events = await collect(handle)
            return handle, events, time.monotonic() - started

        handle, events, elapsed = asyncio.run(scenario())

        assert events == [WorkerExit(-signal.SIGKILL)]
        assert handle.process.returncode == -signal.SIGKILL
        assert elapsed < 10
