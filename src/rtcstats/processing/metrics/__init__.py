# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Pipeline metrics.
"""

from .redis_metrics import RedisMetricsStorage

__all__ = ['RedisMetricsStorage']
