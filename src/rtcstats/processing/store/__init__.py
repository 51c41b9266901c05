# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Durable storage for raw session logs.
"""

from .blob_store import BlobStore

__all__ = ['BlobStore']
