# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Durable storage for raw session logs.

Logs are zlib-compressed and written atomically (temp file + rename), one
object per session id.
"""

import logging
import os
import zlib
from pathlib import Path

logger = logging.getLogger(__name__)

# Compression level (6 provides good balance: 7-10x compression ratio)
COMPRESSION_LEVEL = 6

OBJECT_SUFFIX = ".log.z"


class BlobStore:
    """Filesystem-backed object store keyed by session id."""

    def __init__(self, store_dir: Path):
        self.store_dir = Path(store_dir).expanduser()

    def initialize(self) -> None:
        """Create the store directory."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Blob store ready: {self.store_dir}")

    def object_path(self, session_id: str) -> Path:
        return self.store_dir / f"{session_id}{OBJECT_SUFFIX}"

    def put(self, session_id: str, data: str) -> Path:
        """
        Store a raw session log.

        Args:
            session_id: Session id (object key)
            data: Full log text

        Returns:
            Path of the stored object
        """
        path = self.object_path(session_id)
        tmp_path = path.with_name(path.name + ".tmp")
        compressed = zlib.compress(data.encode('utf-8'), COMPRESSION_LEVEL)

        with open(tmp_path, "wb") as f:
            f.write(compressed)
        os.replace(tmp_path, path)

        logger.debug(f"Stored {session_id}: {len(data)} bytes -> {len(compressed)} compressed")
        return path

    def get(self, session_id: str) -> str:
        """
        Read back a stored log.

        Raises:
            FileNotFoundError: If no object exists for the session
        """
        with open(self.object_path(session_id), "rb") as f:
            return zlib.decompress(f.read()).decode('utf-8')
