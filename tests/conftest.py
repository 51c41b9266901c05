# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Shared test fixtures: a controllable in-process worker launcher.
"""

import asyncio
import time
from typing import Callable, Dict, List

import pytest

from rtcstats.processing.worker_launcher import (
    WorkerExit,
    WorkerHandle,
    WorkerLauncher,
    WorkerMessage,
    WorkerSpawnError,
)


class FakeWorker(WorkerHandle):
    """Worker whose messages and exit are pushed by the test."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.channel: asyncio.Queue = asyncio.Queue()

    async def events(self):
        while True:
            event = await self.channel.get()
            yield event
            if isinstance(event, WorkerExit):
                return

    def emit(self, payload: dict) -> None:
        self.channel.put_nowait(WorkerMessage(payload))

    def exit(self, returncode: int = 0) -> None:
        self.channel.put_nowait(WorkerExit(returncode))


class FakeLauncher(WorkerLauncher):
    """
    Launcher recording every spawn attempt.

    Args:
        fail_attempts: session_id -> number of spawn attempts that should fail
        auto_exit: If set, workers emit ``auto_messages`` and exit with this code
    """

    def __init__(self, fail_attempts: Dict[str, int] = None, auto_exit=None, auto_messages=None):
        self.fail_attempts = dict(fail_attempts or {})
        self.auto_exit = auto_exit
        self.auto_messages = auto_messages
        self.spawned: List[str] = []
        self.workers: Dict[str, FakeWorker] = {}

    async def spawn(self, session_id: str) -> WorkerHandle:
        self.spawned.append(session_id)
        if self.fail_attempts.get(session_id, 0) > 0:
            self.fail_attempts[session_id] -= 1
            raise WorkerSpawnError("Resource temporarily unavailable")

        worker = FakeWorker(session_id)
        self.workers[session_id] = worker
        if self.auto_exit is not None:
            for message in (self.auto_messages(session_id) if self.auto_messages else []):
                worker.emit(message)
            worker.exit(self.auto_exit)
        return worker


async def settle(rounds: int = 20) -> None:
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll ``predicate`` until true; fail the test on timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def launcher_factory():
    """Factory for FakeLauncher instances."""
    return FakeLauncher


@pytest.fixture
def loop_helpers():
    """(settle, wait_until) coroutines for driving the event loop."""
    return settle, wait_until
