# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Out-of-process extraction workers.

A launcher starts one worker process per session. The running worker is
observed through ``WorkerHandle.events()``, a channel that yields every
structured message the worker prints followed by exactly one exit event.
Failing to create the process is reported immediately by ``spawn()``
raising WorkerSpawnError.
"""

import asyncio
import json
import logging
import os
import shlex
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

# Worker stdout lines can carry large feature maps
STDOUT_LIMIT = 16 * 1024 * 1024

DEFAULT_WORKER_COMMAND = (sys.executable, "-m", "rtcstats.worker.extract")


class WorkerSpawnError(Exception):
    """The worker process could not be created."""


@dataclass
class WorkerMessage:
    """A structured message emitted by a running worker."""

    payload: Dict[str, Any]


@dataclass
class WorkerExit:
    """The worker terminated. ``returncode`` is None if it is unknown."""

    returncode: Optional[int]


WorkerEvent = Union[WorkerMessage, WorkerExit]


class WorkerHandle(ABC):
    """A spawned worker."""

    def __init__(self, session_id: str):
        self.session_id = session_id

    @abstractmethod
    def events(self) -> AsyncIterator[WorkerEvent]:
        """Yield worker messages as they arrive, then one WorkerExit."""
        raise NotImplementedError

    async def kill(self) -> Optional[int]:
        """Stop the worker and wait for it to exit. Returns the exit status if known."""
        return None


class WorkerLauncher(ABC):
    """Creates one worker per session."""

    @abstractmethod
    async def spawn(self, session_id: str) -> WorkerHandle:
        """
        Start a worker for ``session_id``.

        Raises:
            WorkerSpawnError: If the worker could not be started
        """
        raise NotImplementedError


class SubprocessWorker(WorkerHandle):
    """Worker running as a child process; messages are JSON lines on stdout."""

    def __init__(self, session_id: str, process: asyncio.subprocess.Process):
        super().__init__(session_id)
        self.process = process

    async def events(self) -> AsyncIterator[WorkerEvent]:
        try:
            async for raw_line in self.process.stdout:
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except ValueError:
                    logger.warning(f"Worker {self.session_id} printed a non-JSON line: {line[:200]!r}")
                    continue
                if not isinstance(payload, dict):
                    logger.warning(f"Worker {self.session_id} printed a non-object message, skipping")
                    continue
                yield WorkerMessage(payload)
        except ValueError as e:
            # Line longer than STDOUT_LIMIT; nobody reads the pipe after this
            logger.error(f"Worker {self.session_id} output is unreadable, killing it: {e}")
            yield WorkerExit(await self.kill())
            return

        returncode = await self.process.wait()
        yield WorkerExit(returncode)

    async def kill(self) -> Optional[int]:
        if self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
        return await self.process.wait()


class SubprocessLauncher(WorkerLauncher):
    """
    Launch ``<command> <session_id>`` as a child process.

    The worker locates the session log through RTCSTATS_WORK_DIR.
    """

    def __init__(self, work_dir: Path, command: Union[str, Sequence[str], None] = None):
        """
        Initialize launcher.

        Args:
            work_dir: Directory holding completed session logs
            command: Worker command line without the session id
                     (defaults to the bundled extraction worker)
        """
        self.work_dir = Path(work_dir)
        if isinstance(command, str):
            command = shlex.split(command)
        self.command: List[str] = list(command or DEFAULT_WORKER_COMMAND)

    async def spawn(self, session_id: str) -> WorkerHandle:
        env = dict(os.environ)
        env["RTCSTATS_WORK_DIR"] = str(self.work_dir.resolve())
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                session_id,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                env=env,
                limit=STDOUT_LIMIT,
            )
        except OSError as e:
            raise WorkerSpawnError(f"failed to spawn worker for {session_id}: {e}") from e

        logger.debug(f"Spawned worker pid={process.pid} for {session_id}")
        return SubprocessWorker(session_id, process)
