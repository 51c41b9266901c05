# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Main server for the rtcstats ingestion pipeline.

Accepts websocket telemetry connections, records each to a session log,
and feeds completed logs to the bounded extraction queue. Plain HTTP
requests are answered on /healthcheck and /metrics.
"""

import asyncio
import json
import logging
import signal
import ssl
from http import HTTPStatus
from pathlib import Path
from typing import Any, Dict, Optional

import redis
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosedError
from websockets.http11 import Request, Response

from .database import MetadataIndex, SQLiteClient
from .extraction_queue import ExtractionQueue
from .metrics import RedisMetricsStorage
from .store import BlobStore
from .worker_launcher import SubprocessLauncher, WorkerLauncher
from ..capture.geolocation import create_resolver
from ..capture.session_ingestor import IngestionService
from ..capture.session_log import setup_work_directory
from ..shared.config import Config

logger = logging.getLogger(__name__)

HEALTHCHECK_PATH = "/healthcheck"
METRICS_PATH = "/metrics"


class RTCStatsServer:
    """
    Main server for session ingestion.

    Manages:
    - Work directory setup (purged on start)
    - Metadata index (SQLite) and blob store
    - Optional Redis metrics
    - Extraction queue and worker launcher
    - Websocket server and graceful shutdown
    """

    def __init__(self, config: Optional[Config] = None, launcher: Optional[WorkerLauncher] = None):
        """
        Initialize server.

        Args:
            config: Configuration instance (creates default if not provided)
            launcher: Worker launcher (defaults to the bundled subprocess worker)
        """
        self.config = config or Config()
        self.work_dir: Path = self.config.get_path("paths.work_dir")
        self.launcher = launcher

        self.sqlite_client: Optional[SQLiteClient] = None
        self.metadata_index: Optional[MetadataIndex] = None
        self.blob_store: Optional[BlobStore] = None
        self.redis_client: Optional[redis.Redis] = None
        self.metrics_storage: Optional[RedisMetricsStorage] = None
        self.queue: Optional[ExtractionQueue] = None
        self.ingestion: Optional[IngestionService] = None
        self.ws_server: Optional[Server] = None
        self.metrics_server: Optional[Server] = None
        self.running = False
        self._stop_task: Optional[asyncio.Task] = None

    def _initialize_work_directory(self) -> None:
        """Recreate the work directory empty."""
        logger.info(f"Initializing work directory: {self.work_dir}")
        setup_work_directory(self.work_dir)

    def _initialize_database(self) -> None:
        """Initialize the SQLite metadata index."""
        db_path = self.config.get_path("paths.database.metadata_db")
        logger.info(f"Initializing metadata index: {db_path}")

        self.sqlite_client = SQLiteClient(str(db_path))
        self.sqlite_client.initialize_database()
        self.metadata_index = MetadataIndex(self.sqlite_client)
        self.metadata_index.create_schema()

    def _initialize_store(self) -> None:
        """Initialize the raw log blob store."""
        self.blob_store = BlobStore(self.config.get_path("paths.store_dir"))
        self.blob_store.initialize()

    def _initialize_metrics(self) -> None:
        """Initialize Redis metrics (optional)."""
        if not self.config.get("metrics.enabled", False):
            logger.info("Redis metrics are disabled")
            return

        logger.info("Initializing Redis connection")
        redis_config = self.config.redis
        self.redis_client = redis.Redis(
            host=redis_config.host,
            port=redis_config.port,
            db=redis_config.db,
            socket_timeout=redis_config.socket_timeout,
            socket_connect_timeout=redis_config.socket_connect_timeout,
        )

        try:
            self.redis_client.ping()
            logger.info("Redis connection established")
        except redis.ConnectionError as e:
            # Metrics are optional; keep ingesting without them
            logger.warning(f"Redis unavailable, metrics will be dropped: {e}")

        self.metrics_storage = RedisMetricsStorage(self.redis_client)

    def _initialize_queue(self) -> None:
        """Initialize extraction queue and ingestion service."""
        if self.launcher is None:
            self.launcher = SubprocessLauncher(
                self.work_dir,
                command=self.config.get("extraction.worker_command"),
            )

        self.queue = ExtractionQueue(
            launcher=self.launcher,
            work_dir=self.work_dir,
            metadata_index=self.metadata_index,
            blob_store=self.blob_store,
            metrics=self.metrics_storage,
            capacity=self.config.get("extraction.capacity"),
            queue_warning_depth=self.config.get("extraction.queue_warning_depth", 10),
        )

        self.ingestion = IngestionService(
            work_dir=self.work_dir,
            queue=self.queue,
            resolver=create_resolver(self.config.get("geolocation.networks")),
            metrics=self.metrics_storage,
        )

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Ingest one websocket connection."""
        request = websocket.request
        try:
            await self.ingestion.handle(
                websocket,
                path=request.path,
                headers=request.headers,
                remote_address=websocket.remote_address,
            )
        except ConnectionClosedError as e:
            logger.info(f"Connection closed abnormally: {e}")
        except Exception as e:
            logger.error(f"Error handling connection: {e}", exc_info=True)

    def _process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        """Answer plain HTTP requests; let websocket upgrades through."""
        if request.path == HEALTHCHECK_PATH:
            return connection.respond(HTTPStatus.OK, "")

        if request.path == METRICS_PATH and not self.config.get("server.metrics_port"):
            return self._metrics_response(connection)

        if request.headers.get("Upgrade", "").lower() != "websocket":
            return connection.respond(HTTPStatus.NOT_FOUND, "")

        return None

    def _process_metrics_request(self, connection: ServerConnection, request: Request) -> Response:
        """Routes of the separate metrics listener; nothing is upgraded there."""
        if request.path == METRICS_PATH:
            return self._metrics_response(connection)
        return connection.respond(HTTPStatus.NOT_FOUND, "")

    def _metrics_response(self, connection: ServerConnection) -> Response:
        response = connection.respond(HTTPStatus.OK, json.dumps(self.get_stats()) + "\n")
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json"
        return response

    def get_stats(self) -> Dict[str, Any]:
        """In-process stats, plus the latest Redis metrics when enabled."""
        stats: Dict[str, Any] = {
            'queue': self.queue.get_stats() if self.queue else {},
            'ingestion': self.ingestion.get_stats() if self.ingestion else {},
        }
        if self.metrics_storage is not None:
            stats['metrics'] = self.metrics_storage.get_latest_metrics("rtcstats")
        return stats

    async def start(self) -> None:
        """Initialize components and start accepting connections."""
        if self.running:
            logger.warning("Server already running")
            return

        logger.info("Starting rtcstats server...")

        ssl_context = create_ssl_context(self.config)
        self._initialize_work_directory()
        self._initialize_database()
        self._initialize_store()
        self._initialize_metrics()
        self._initialize_queue()

        host = self.config.get("server.host", "0.0.0.0")
        port = int(self.config.get("server.port", 3000))
        self.ws_server = await serve(
            self._handle_connection,
            host,
            port,
            process_request=self._process_request,
            max_size=self.config.get("server.max_message_size"),
            ssl=ssl_context,
        )
        scheme = "wss" if ssl_context else "ws"
        logger.info(f"Listening on {scheme}://{host}:{port}")

        metrics_port = self.config.get("server.metrics_port")
        if metrics_port:
            # Every request is answered by process_request, so the handler never runs
            self.metrics_server = await serve(
                self._handle_connection,
                host,
                int(metrics_port),
                process_request=self._process_metrics_request,
            )
            logger.info(f"Serving {METRICS_PATH} on {host}:{metrics_port}")

        self.running = True

    async def stop(self) -> None:
        """
        Stop the server gracefully. Running workers are not cancelled.

        Every caller (signal handler, ``main``) waits on the same shutdown,
        which returns once outstanding workers and uploads have finished or
        the drain timeout has passed.
        """
        if self._stop_task is None:
            if not self.running:
                return
            self._stop_task = asyncio.get_running_loop().create_task(self._shutdown())
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        logger.info("Stopping server...")
        self.running = False

        for server in (self.ws_server, self.metrics_server):
            if server:
                server.close()
                await server.wait_closed()

        if self.queue:
            await self.queue.drain(timeout=5.0)

        if self.ingestion:
            await self.ingestion.drain(timeout=1.0)

        if self.metrics_storage:
            self.metrics_storage.close()

        if self.redis_client:
            self.redis_client.close()

        logger.info("Server stopped")

    async def run(self) -> None:
        """Start and serve until stopped."""
        await self.start()
        await self.ws_server.wait_closed()


def create_ssl_context(config: Config) -> Optional[ssl.SSLContext]:
    """
    Build the TLS context for wss:// from ``server.ssl``.

    Args:
        config: Configuration instance

    Returns:
        SSLContext, or None when no certificate is configured

    Raises:
        ValueError: If only one of certificate and key is set
        OSError: If the certificate or key cannot be loaded
    """
    certificate = config.get_path("server.ssl.certificate")
    key = config.get_path("server.ssl.key")
    if certificate is None and key is None:
        return None
    if certificate is None or key is None:
        raise ValueError("server.ssl needs both certificate and key")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certfile=str(certificate), keyfile=str(key))
    return context


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


async def main(config: Optional[Config] = None) -> None:
    """Main entry point."""
    config = config or Config()
    setup_logging(config.get("logging.level", "INFO"))

    server = RTCStatsServer(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.ensure_future(server.stop()))

    try:
        await server.run()
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
