# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Bounded-concurrency extraction queue.

Completed session logs are queued here and handed to at most ``capacity``
concurrently running extraction workers. All bookkeeping (pending queue,
in-flight count) happens on the event loop thread, so no locking is needed.

Per worker:
- messages are forwarded to the metadata index as they arrive
- on exit the slot is freed, the next session dispatched, and the raw log
  forwarded to the blob store and deleted, whatever the exit status
- on spawn failure the slot is freed and the session re-queued at the tail

Known limitations:
- a hung worker holds its slot forever (no execution timeout)
- a session that can never be spawned cycles through the queue forever
"""

import asyncio
import logging
import os
from collections import deque
from pathlib import Path
from typing import Any, Coroutine, Deque, Dict, Optional, Set

from .worker_launcher import WorkerExit, WorkerLauncher, WorkerMessage, WorkerSpawnError
from ..shared.results import ExtractionResult

logger = logging.getLogger(__name__)


class ExtractionQueue:
    """
    FIFO of session ids awaiting extraction, capped at ``capacity`` workers.

    Invariants:
    - ``0 <= in_flight <= capacity``
    - a session id is either pending or dispatched, never both
    """

    def __init__(
        self,
        launcher: WorkerLauncher,
        work_dir: Path,
        metadata_index=None,
        blob_store=None,
        metrics=None,
        capacity: Optional[int] = None,
        queue_warning_depth: int = 10,
    ):
        """
        Initialize extraction queue.

        Args:
            launcher: Spawns one worker per session
            work_dir: Directory holding completed session logs
            metadata_index: Receives per-connection results (``put(...)``)
            blob_store: Receives raw logs after the worker exits (``put(id, data)``)
            metrics: Optional RedisMetricsStorage
            capacity: Max concurrent workers (defaults to the CPU count)
            queue_warning_depth: In-flight count above which dispatches are logged
        """
        self.launcher = launcher
        self.work_dir = Path(work_dir)
        self.metadata_index = metadata_index
        self.blob_store = blob_store
        self.metrics = metrics
        self.capacity = capacity or os.cpu_count() or 1
        self.queue_warning_depth = queue_warning_depth

        self.pending: Deque[str] = deque()
        self.in_flight = 0

        self.stats = {
            'processed': 0,
            'errored': 0,
            'spawn_failures': 0,
            'results': 0,
            'stored': 0,
        }
        self._tasks: Set[asyncio.Task] = set()

        logger.info(f"Initialized extraction queue with capacity {self.capacity}")

    def enqueue(self, session_id: str) -> None:
        """
        Queue a completed session. Never blocks.

        Args:
            session_id: Session whose log is ready for extraction
        """
        self.pending.append(session_id)
        if self.in_flight < self.capacity:
            asyncio.get_running_loop().call_soon(self._dispatch)
        else:
            logger.warning(
                f"Extraction queue full: {self.in_flight} in flight, {len(self.pending)} pending"
            )

    def _dispatch(self) -> None:
        """Start a worker for the head of the queue if a slot is free."""
        if not self.pending or self.in_flight >= self.capacity:
            return

        session_id = self.pending.popleft()
        # Count the slot before the spawn completes so bursts cannot overshoot
        self.in_flight += 1
        if self.in_flight > self.queue_warning_depth:
            logger.info(f"Extraction queue: {self.in_flight} workers in flight")

        self._spawn_background(self._run_worker(session_id))

    async def _run_worker(self, session_id: str) -> None:
        try:
            handle = await self.launcher.spawn(session_id)
        except WorkerSpawnError as e:
            self._on_spawn_failure(session_id, e)
            return

        returncode = None
        try:
            async for event in handle.events():
                if isinstance(event, WorkerMessage):
                    self._on_message(session_id, event.payload)
                elif isinstance(event, WorkerExit):
                    returncode = event.returncode
        except Exception as e:
            logger.error(f"Lost track of worker for {session_id}, stopping it: {e}")
            # The slot stays taken until the process is gone
            try:
                returncode = await handle.kill()
            except Exception as kill_error:
                logger.error(f"Could not stop worker for {session_id}: {kill_error}")

        self._on_exit(session_id, returncode)

    def _release_slot(self) -> None:
        self.in_flight -= 1
        if self.in_flight < 0:
            self.in_flight = 0

    def _on_spawn_failure(self, session_id: str, error: Exception) -> None:
        self._release_slot()
        self.stats['spawn_failures'] += 1
        logger.error(f"failed to spawn, rescheduling {session_id} ({self.in_flight} in flight): {error}")
        # Tail, not head, and no immediate retry
        self.pending.append(session_id)

    def _on_message(self, session_id: str, message: Dict[str, Any]) -> None:
        try:
            result = ExtractionResult.from_message(message)
        except ValueError as e:
            logger.warning(f"Invalid result from worker {session_id}: {e}")
            return

        self.stats['results'] += 1
        if self.metadata_index is not None:
            self._spawn_background(asyncio.to_thread(self._put_result, result))

    def _put_result(self, result: ExtractionResult) -> None:
        try:
            self.metadata_index.put(
                result.origin,
                result.session_id,
                result.connection_id,
                result.client_features,
                result.connection_features,
                result.stream_features,
            )
        except Exception as e:
            logger.error(f"Failed to index result for {result.session_id}: {e}")

    def _on_exit(self, session_id: str, returncode: Optional[int]) -> None:
        self._release_slot()
        if returncode == 0:
            self.stats['processed'] += 1
            self._record_metric("files_processed", self.stats['processed'])
        else:
            self.stats['errored'] += 1
            self._record_metric("files_errored", self.stats['errored'])

        logger.info(f"done {session_id} in_flight={self.in_flight} code={returncode}")

        if self.in_flight < self.capacity:
            asyncio.get_running_loop().call_soon(self._dispatch)

        self._spawn_background(self._forward_log(session_id))

    async def _forward_log(self, session_id: str) -> None:
        """Send the raw log to the blob store, then delete it."""
        path = self.work_dir / session_id
        try:
            data = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            logger.error(f"Could not open file for store upload {session_id}: {e}")
            return

        if self.blob_store is not None:
            try:
                await asyncio.to_thread(self.blob_store.put, session_id, data)
            except Exception as e:
                # Left in place; the work directory is purged on next start
                logger.error(f"Failed to store raw log {session_id}: {e}")
                return
            self.stats['stored'] += 1

        try:
            await asyncio.to_thread(path.unlink)
        except OSError as e:
            logger.error(f"Could not remove session log {session_id}: {e}")

    def _record_metric(self, name: str, value: float) -> None:
        if self.metrics is not None:
            self._spawn_background(self.metrics.record_metric_async("rtcstats", name, value))

    def _spawn_background(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for outstanding workers and uploads.

        Args:
            timeout: Seconds to wait (None = forever)

        Returns:
            True if everything finished within the timeout
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        # Exits start uploads and dispatches, so keep waiting until the set is empty
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)

        if self._tasks:
            logger.warning(f"{len(self._tasks)} extraction tasks still running")
            return False
        return True

    def get_stats(self) -> Dict[str, Any]:
        """
        Get queue statistics.

        Returns:
            Dictionary with queue and worker stats
        """
        return {
            'capacity': self.capacity,
            'in_flight': self.in_flight,
            'pending': len(self.pending),
            **self.stats,
        }
