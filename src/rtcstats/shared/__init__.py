# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Shared utilities used by both the capture and processing layers."""

from .config import Config, RedisConfig

__all__ = ["Config", "RedisConfig"]
