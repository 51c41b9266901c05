# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Redis storage for pipeline metrics.

Uses basic Redis data structures so it works against a stock Redis server:
- a hash per category holding the latest value of each metric
- a sorted set per metric holding recent samples (score = timestamp)

Metric writes are best effort. A Redis outage is logged and never reaches the
ingestion or extraction path. Callers on the event loop use
``record_metric_async``, which runs writes in order on a single thread.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

import redis

logger = logging.getLogger(__name__)


class RedisMetricsStorage:
    """
    Redis storage for pipeline metrics.

    Metric names used by the server (category ``rtcstats``):
    - websocket_connections: open connections (gauge)
    - files_processed: workers that exited with status 0 (counter)
    - files_errored: workers that exited abnormally (counter)
    """

    def __init__(self, redis_client: redis.Redis, retention_seconds: int = 86400):
        """
        Initialize Redis metrics storage.

        Args:
            redis_client: Redis client instance
            retention_seconds: How long samples are kept
        """
        self.redis_client = redis_client
        self.retention_seconds = retention_seconds
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="redis-metrics")

    def record_metric(
        self,
        category: str,
        name: str,
        value: float,
        timestamp: Optional[float] = None,
    ) -> None:
        """
        Record a single metric value.

        Args:
            category: Metric category (e.g. 'rtcstats')
            name: Metric name
            value: Metric value
            timestamp: Unix timestamp (uses current time if not provided)
        """
        if timestamp is None:
            timestamp = time.time()

        try:
            latest_key = f"metric:latest:{category}"
            self.redis_client.hset(latest_key, name, str(value))
            self.redis_client.expire(latest_key, self.retention_seconds)

            # Member carries the timestamp so equal values do not collapse
            ts_key = f"metric:{category}:{name}:ts"
            self.redis_client.zadd(ts_key, {f"{timestamp}:{value}": timestamp})
            self.redis_client.expire(ts_key, self.retention_seconds)
            self.redis_client.zremrangebyscore(ts_key, '-inf', timestamp - self.retention_seconds)

            logger.debug(f"Recorded metric: {category}/{name} = {value}")

        except redis.RedisError as e:
            logger.warning(f"Failed to record metric {category}/{name}: {e}")

    async def record_metric_async(self, category: str, name: str, value: float) -> None:
        """Record a metric without blocking the event loop."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            self._executor, self.record_metric, category, name, value, time.time()
        )

    def close(self) -> None:
        """Wait for queued writes to finish."""
        self._executor.shutdown(wait=True)

    def get_latest_metrics(self, category: str) -> Dict[str, float]:
        """
        Get latest values for all metrics in a category.

        Returns:
            Dictionary of metric_name -> latest_value
        """
        try:
            data = self.redis_client.hgetall(f"metric:latest:{category}")
        except redis.RedisError as e:
            logger.error(f"Failed to get latest metrics: {e}")
            return {}

        return {
            _decode(k): float(_decode(v))
            for k, v in data.items()
        }

    def get_metric_range(
        self,
        category: str,
        name: str,
        start_time: float,
        end_time: float,
    ) -> List[Tuple[float, float]]:
        """
        Get metric samples for a time range.

        Returns:
            List of (timestamp, value) tuples, oldest first
        """
        try:
            data = self.redis_client.zrangebyscore(
                f"metric:{category}:{name}:ts",
                start_time,
                end_time,
                withscores=True,
            )
        except redis.RedisError as e:
            logger.error(f"Failed to get metric range for {category}/{name}: {e}")
            return []

        result = []
        for member, timestamp in data:
            try:
                value = float(_decode(member).rsplit(':', 1)[1])
            except (IndexError, ValueError):
                continue
            result.append((timestamp, value))
        return sorted(result, key=lambda x: x[0])


def _decode(value) -> str:
    return value.decode('utf-8') if isinstance(value, bytes) else str(value)
