# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Metadata index storage (SQLite).
"""

from .sqlite_client import SQLiteClient
from .metadata_index import MetadataIndex

__all__ = [
    'SQLiteClient',
    'MetadataIndex',
]
