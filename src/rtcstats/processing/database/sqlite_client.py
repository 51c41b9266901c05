# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
SQLite connection management.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


class SQLiteClient:
    """
    Thin wrapper around sqlite3 connections.

    Connections are opened per operation so that the client can be used
    from worker threads (``asyncio.to_thread``).
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = Path(db_path).expanduser()
        self.timeout = timeout

    def initialize_database(self) -> None:
        """Create the database file and apply connection-independent settings."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.get_connection() as conn:
            # WAL lets readers proceed while a write is in progress
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        logger.info(f"SQLite database ready: {self.db_path}")

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection with dict-like rows; closed on exit."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()
