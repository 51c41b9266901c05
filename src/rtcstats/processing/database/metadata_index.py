# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Metadata index for extraction results.

Stores one row per (session, connection) result emitted by a worker. Feature
maps are stored as JSON text.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .sqlite_client import SQLiteClient

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS extraction_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    origin TEXT,
    session_id TEXT NOT NULL,
    connection_id TEXT,
    client_features TEXT NOT NULL,
    connection_features TEXT NOT NULL,
    stream_features TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_extraction_results_session
    ON extraction_results(session_id);
"""

JSON_COLUMNS = ("client_features", "connection_features", "stream_features")


class MetadataIndex:
    """SQLite-backed metadata index."""

    def __init__(self, client: SQLiteClient):
        self.client = client

    def create_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self.client.get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    def put(
        self,
        origin: Optional[str],
        session_id: str,
        connection_id: Optional[str],
        client_features: Dict[str, Any],
        connection_features: Dict[str, Any],
        stream_features: Dict[str, Any],
    ) -> None:
        """Insert one extraction result."""
        with self.client.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO extraction_results (
                    origin, session_id, connection_id,
                    client_features, connection_features, stream_features
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    origin,
                    session_id,
                    connection_id,
                    json.dumps(client_features, separators=(',', ':')),
                    json.dumps(connection_features, separators=(',', ':')),
                    json.dumps(stream_features, separators=(',', ':')),
                ),
            )
            conn.commit()
        logger.debug(f"Indexed result {session_id}/{connection_id}")

    def get_for_session(self, session_id: str) -> List[Dict[str, Any]]:
        """Return all results for a session, feature maps decoded."""
        with self.client.get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT origin, session_id, connection_id,
                       client_features, connection_features, stream_features
                FROM extraction_results
                WHERE session_id = ?
                ORDER BY id
                """,
                (session_id,),
            )
            rows = [dict(row) for row in cursor.fetchall()]

        for row in rows:
            for column in JSON_COLUMNS:
                row[column] = json.loads(row[column])
        return rows
