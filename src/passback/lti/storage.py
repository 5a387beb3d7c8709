"""
Redis-backed launch data storage for PyLTI1p3.

PyLTI1p3 keeps OIDC state, nonces and validated launch claims here.  The
grading client restores a launch from this cache by its launch id, so it
must outlive the session TTL.  Using Redis rather than cookies avoids
third-party cookie problems inside the LMS iframe.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pylti1p3.launch_data_storage.base import LaunchDataStorage

logger = logging.getLogger(__name__)


class RedisLaunchDataStorage(LaunchDataStorage):
    """Stores PyLTI1p3 launch data in Redis with automatic expiry."""

    def __init__(self, redis_client, ttl_seconds: int = 7200, prefix: str = "passback:lti:"):
        super().__init__()
        self._redis = redis_client
        self._ttl = ttl_seconds
        self._prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, ttl_seconds: int = 7200) -> RedisLaunchDataStorage:
        """Create storage with a sync client (PyLTI1p3 is sync)."""
        import redis

        client = redis.Redis.from_url(redis_url, decode_responses=True)
        return cls(client, ttl_seconds=ttl_seconds)

    def can_set_keys_expiration(self) -> bool:
        return True

    def _prepare_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get_value(self, key: str) -> Optional[Any]:
        raw = self._redis.get(self._prepare_key(key))
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding undecodable launch cache entry %s", key)
            return None

    def set_value(self, key: str, value: Any, exp: Optional[int] = None) -> None:
        self._redis.setex(self._prepare_key(key), exp or self._ttl, json.dumps(value))

    def check_value(self, key: str) -> bool:
        return bool(self._redis.exists(self._prepare_key(key)))

    def ping(self) -> bool:
        return bool(self._redis.ping())

    def close(self) -> None:
        self._redis.close()
