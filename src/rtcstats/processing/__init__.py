# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Processing layer for the rtcstats server.

Dispatches completed session logs to a bounded pool of extraction workers and
forwards their output to the metadata index and the blob store.
"""

from .extraction_queue import ExtractionQueue
from .worker_launcher import (
    SubprocessLauncher,
    WorkerExit,
    WorkerHandle,
    WorkerLauncher,
    WorkerMessage,
    WorkerSpawnError,
)

__all__ = [
    'ExtractionQueue',
    'SubprocessLauncher',
    'WorkerExit',
    'WorkerHandle',
    'WorkerLauncher',
    'WorkerMessage',
    'WorkerSpawnError',
]
