# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Extraction worker process.

Usage:
    python -m rtcstats.worker.extract <session_id>

Reads ``$RTCSTATS_WORK_DIR/<session_id>`` and prints one JSON result per line
on stdout. Logging goes to stderr. Exits 0 on success, 1 on failure.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from .features import extract

logger = logging.getLogger(__name__)


def run(session_id: str, work_dir: Path, out: TextIO) -> int:
    """
    Extract one session and write results to ``out``.

    Returns:
        Process exit status
    """
    path = Path(work_dir) / session_id
    try:
        with open(path, encoding="utf-8") as f:
            results = extract(session_id, f)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Extraction failed for {session_id}: {e}")
        return 1

    for result in results:
        out.write(json.dumps(result.to_message(), separators=(',', ':')) + "\n")
        out.flush()

    logger.info(f"Extracted {len(results)} results from {session_id}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(
        level=os.environ.get("RTCSTATS_LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
    )

    if len(argv) != 1:
        logger.error("usage: python -m rtcstats.worker.extract <session_id>")
        return 1

    work_dir = Path(os.environ.get("RTCSTATS_WORK_DIR", "temp"))
    return run(argv[0], work_dir, sys.stdout)


if __name__ == "__main__":
    sys.exit(main())
