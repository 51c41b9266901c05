# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Append-only, line-delimited session logs.

Each client connection gets one file in the work directory, named by its
session id. Lines are compact JSON values in arrival order:

    {"path": ..., "origin": ..., "fileFormat": 2, ...}   metadata
    ["getstats", "PC_0", {...}, 1700000000000]            events
    ["location", null, {...}, 1700000000000]              optional enrichment
    ["close", null, null, 1700000000000]                  terminal record

The file is written only while the connection is open and is read-only once
``close()`` returns. Appends go to a buffered file handle on the caller's thread
and reach disk when the buffer fills or on ``close()``.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Optional, TextIO

logger = logging.getLogger(__name__)

FILE_FORMAT_VERSION = 2


def setup_work_directory(work_dir: Path) -> Path:
    """
    Recreate the work directory empty.

    Logs left over from a previous run are purged rather than resumed.

    Args:
        work_dir: Directory that will hold in-progress session logs

    Returns:
        The (now empty) work directory
    """
    work_dir = Path(work_dir)
    if work_dir.exists():
        stale = sum(1 for _ in work_dir.iterdir())
        if stale:
            logger.warning(f"Purging {stale} stale session logs from {work_dir}")
        shutil.rmtree(work_dir)
    else:
        logger.info(f"Work directory {work_dir} does not exist, creating it")

    work_dir.mkdir(parents=True)
    return work_dir


def serialize_record(record: Any) -> str:
    """Serialize one record to a single log line (without newline)."""
    return json.dumps(record, separators=(',', ':'))


class SessionLog:
    """
    Write handle for a single session's log file.

    A log is either open (accepting appends), closed (finalized, immutable)
    or discarded (deleted). Appends on a log that is no longer open are
    dropped and reported through the return value.
    """

    def __init__(self, work_dir: Path, session_id: str):
        self.work_dir = Path(work_dir)
        self.session_id = session_id
        self.path = self.work_dir / session_id
        self.records_written = 0
        self._handle: Optional[TextIO] = None

    @classmethod
    def open(cls, work_dir: Path, session_id: str) -> "SessionLog":
        """Create the log file for ``session_id`` and return its handle."""
        log = cls(work_dir, session_id)
        log._handle = open(log.path, "x", encoding="utf-8")
        return log

    @property
    def is_open(self) -> bool:
        """Whether appends are still accepted."""
        return self._handle is not None

    def append(self, record: Any) -> bool:
        """
        Append one record as a single line.

        Args:
            record: JSON-serializable record

        Returns:
            True if written, False if the log was already released

        Raises:
            TypeError/ValueError: If the record is not JSON-serializable
        """
        if self._handle is None:
            return False

        line = serialize_record(record) + "\n"
        try:
            self._handle.write(line)
        except OSError as e:
            # A failed write ends the log, the same as a disconnect would
            logger.error(f"Write failed for session log {self.session_id}: {e}")
            self._release()
            return False

        self.records_written += 1
        return True

    def close(self) -> None:
        """Flush and release the handle. The file becomes read-only input."""
        if self._handle is None:
            return
        try:
            self._handle.flush()
        except OSError as e:
            logger.error(f"Flush failed for session log {self.session_id}: {e}")
        self._release()

    def discard(self) -> None:
        """Release the handle (if any) and delete the file without a close record."""
        self._release()
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not delete session log {self.session_id}: {e}")

    def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except OSError as e:
            logger.error(f"Close failed for session log {self.session_id}: {e}")
