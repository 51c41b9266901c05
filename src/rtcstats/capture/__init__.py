# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Capture layer: records streaming client connections to session logs.
"""

from .session_ingestor import IngestionService, SessionIngestor, SessionState
from .session_log import SessionLog, setup_work_directory

__all__ = [
    'IngestionService',
    'SessionIngestor',
    'SessionState',
    'SessionLog',
    'setup_work_directory',
]
