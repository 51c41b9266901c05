# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Session ingestion for streaming telemetry connections.

One SessionIngestor owns one client connection from handshake to teardown:

    OPEN       session id allocated, log created, metadata record written
    STREAMING  every inbound event parsed, redacted and appended in order
    CLOSED     close record written and the log handed to the extraction
               queue, or discarded when no event was ever received

Location enrichment is resolved off the event loop and appended whenever it
arrives. If the connection has already closed by then the record is dropped.
"""

import asyncio
import json
import logging
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterable, Callable, Dict, Mapping, Optional, Set, Union

from .geolocation import LocationResolver, NullLocationResolver, get_request_address
from .redaction import redact
from .session_log import FILE_FORMAT_VERSION, SessionLog

logger = logging.getLogger(__name__)

# Media acquisition events are stored unredacted; permission analysis needs them verbatim
SENSITIVE_MEDIA_EVENTS = frozenset({
    "getUserMedia",
    "getUserMediaOnSuccess",
    "getUserMediaOnFailure",
    "navigator.mediaDevices.getUserMedia",
    "navigator.mediaDevices.getUserMediaOnSuccess",
    "navigator.mediaDevices.getUserMediaOnFailure",
})


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class SessionState(Enum):
    OPEN = "open"
    STREAMING = "streaming"
    CLOSED = "closed"


class SessionIngestor:
    """
    Records a single client connection to its session log.

    Lifecycle: ``open()``, any number of ``on_message()``, then ``close()``.
    ``run()`` drives all three from an async iterable of raw messages.
    """

    def __init__(
        self,
        work_dir: Path,
        queue,
        path: str,
        headers: Mapping[str, str],
        remote_address: Any = None,
        resolver: Optional[LocationResolver] = None,
        redactor: Callable[[list], Any] = redact,
    ):
        """
        Initialize ingestor.

        Args:
            work_dir: Directory holding in-progress session logs
            queue: Extraction queue receiving completed sessions (``enqueue(id)``)
            path: Client-declared request path
            headers: Handshake request headers
            remote_address: Transport peer address
            resolver: Location resolver for the enrichment record
            redactor: Payload redaction applied to non-media events
        """
        self.work_dir = Path(work_dir)
        self.queue = queue
        self.path = path
        self.headers = headers
        self.remote_address = remote_address
        self.resolver = resolver or NullLocationResolver()
        self.redactor = redactor

        self.session_id = str(uuid.uuid4())
        self.state: Optional[SessionState] = None
        self.event_count = 0
        self.dropped_count = 0
        self.enqueued = False
        self.log: Optional[SessionLog] = None
        self.location_task: Optional[asyncio.Task] = None

    def build_metadata(self) -> Dict[str, Any]:
        """Metadata record derived from the handshake."""
        origin = self.headers.get("Origin")
        return {
            "path": self.path,
            "origin": origin,
            "url": f"{origin or ''}{self.path}",
            "userAgent": self.headers.get("User-Agent"),
            "time": now_ms(),
            "fileFormat": FILE_FORMAT_VERSION,
        }

    def open(self) -> None:
        """Create the session log and write the metadata record."""
        self.log = SessionLog.open(self.work_dir, self.session_id)
        self.state = SessionState.OPEN

        metadata = self.build_metadata()
        self.log.append(metadata)

        address = get_request_address(self.headers, self.remote_address)
        if address:
            self.location_task = asyncio.get_running_loop().create_task(
                self._append_location(address)
            )

        logger.info(f"connected {metadata['userAgent']} {metadata['url']} {self.session_id}")
        self.state = SessionState.STREAMING

    async def _append_location(self, address: str) -> None:
        """Resolve ``address`` and append the location record if still open."""
        try:
            location = await asyncio.to_thread(self.resolver.lookup, address)
        except Exception as e:
            logger.warning(f"Location lookup failed for session {self.session_id}: {e}")
            location = None

        if self.state is not SessionState.STREAMING or not self.log.append(
            ["location", None, location, now_ms()]
        ):
            logger.debug(f"Session {self.session_id} closed before location arrived, dropping it")

    def on_message(self, message: Union[str, bytes]) -> bool:
        """
        Record one inbound event.

        Malformed messages are logged and dropped; they never end the session.

        Args:
            message: Raw application message (a JSON array)

        Returns:
            True if the event was appended to the log
        """
        if self.state is not SessionState.STREAMING:
            logger.warning(f"Event for session {self.session_id} after close, dropping it")
            return False

        try:
            data = json.loads(message)
        except (TypeError, ValueError) as e:
            logger.error(f"error while processing message for {self.session_id}: {e}")
            self.dropped_count += 1
            return False

        # Anything that parses counts towards keeping the session
        self.event_count += 1
        if not isinstance(data, list) or len(data) < 2 or not isinstance(data[0], str):
            logger.error(f"Malformed event for session {self.session_id}: {str(message)[:200]}")
            self.dropped_count += 1
            return False

        try:
            if data[0] not in SENSITIVE_MEDIA_EVENTS:
                self.redactor(data)
            return self.log.append(data)
        except Exception as e:
            logger.error(f"error while processing {data[0]} for {self.session_id}: {e}")
            self.dropped_count += 1
            return False

    def close(self) -> bool:
        """
        Finalize the session.

        Returns:
            True if the session was enqueued for extraction, False if discarded
        """
        if self.state is SessionState.CLOSED or self.log is None:
            return False
        self.state = SessionState.CLOSED

        if self.event_count == 0:
            self.log.discard()
            logger.info(f"Discarded empty session {self.session_id}")
            return False

        self.log.append(["close", None, None, now_ms()])
        self.log.close()
        logger.info(
            f"closed {self.session_id} events={self.event_count} dropped={self.dropped_count}"
        )
        self.queue.enqueue(self.session_id)
        self.enqueued = True
        return True

    async def run(self, messages: AsyncIterable[Union[str, bytes]]) -> bool:
        """
        Ingest a whole connection.

        Args:
            messages: Async iterable of raw inbound messages; iteration ends
                      (or raises) when the peer disconnects

        Returns:
            True if the session was enqueued for extraction
        """
        self.open()
        try:
            async for message in messages:
                self.on_message(message)
        finally:
            enqueued = self.close()
        return enqueued


class IngestionService:
    """
    Process-wide bookkeeping for open connections.

    Creates one SessionIngestor per connection and tracks how many are open.
    """

    def __init__(
        self,
        work_dir: Path,
        queue,
        resolver: Optional[LocationResolver] = None,
        metrics=None,
    ):
        self.work_dir = Path(work_dir)
        self.queue = queue
        self.resolver = resolver or NullLocationResolver()
        self.metrics = metrics
        self.connected = 0
        self.stats = {
            'sessions_enqueued': 0,
            'sessions_discarded': 0,
        }
        self._tasks: Set[asyncio.Task] = set()

    def create_ingestor(
        self,
        path: str,
        headers: Mapping[str, str],
        remote_address: Any = None,
    ) -> SessionIngestor:
        """Build an ingestor wired to this service's queue and resolver."""
        return SessionIngestor(
            work_dir=self.work_dir,
            queue=self.queue,
            path=path,
            headers=headers,
            remote_address=remote_address,
            resolver=self.resolver,
        )

    async def handle(
        self,
        messages: AsyncIterable[Union[str, bytes]],
        path: str,
        headers: Mapping[str, str],
        remote_address: Any = None,
    ) -> SessionIngestor:
        """Ingest one connection end to end."""
        ingestor = self.create_ingestor(path, headers, remote_address)
        self._set_connected(self.connected + 1)
        try:
            await ingestor.run(messages)
        finally:
            self._set_connected(self.connected - 1)
            if ingestor.enqueued:
                self.stats['sessions_enqueued'] += 1
            elif ingestor.state is SessionState.CLOSED:
                self.stats['sessions_discarded'] += 1
            if ingestor.location_task is not None and not ingestor.location_task.done():
                # Keep a reference so the late lookup is not garbage collected
                self._track(ingestor.location_task)

        return ingestor

    def _set_connected(self, value: int) -> None:
        self.connected = max(value, 0)
        if self.metrics is not None:
            self._track(asyncio.get_running_loop().create_task(
                self.metrics.record_metric_async("rtcstats", "websocket_connections", self.connected)
            ))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for pending location lookups and metric writes."""
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending

    def get_stats(self) -> Dict[str, Any]:
        return {
            'connected': self.connected,
            **self.stats,
        }
