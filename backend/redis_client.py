"""
Redis cache for the table board.

The board is polled by every staff screen, so the list of tables is cached
briefly and dropped whenever a table changes status. Losing Redis only
disables the cache.
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional

import redis

logger = logging.getLogger(__name__)

TABLES_KEY = "tables:all"


class RedisClient:
    """Thin wrapper around redis.Redis that never raises on cache failures"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client
        if client is not None:
            return

        if os.getenv("REDIS_ENABLED", "true").lower() in ("0", "false", "no"):
            logger.info("Redis cache disabled by configuration")
            return

        self.redis_host = os.getenv("REDIS_HOST", "redis")
        redis_port_env = os.getenv("REDIS_SERVICE_PORT") or os.getenv("REDIS_PORT") or "6379"
        self.redis_port = int(str(redis_port_env).split(":")[-1])

        try:
            self.client = redis.Redis(
                host=self.redis_host,
                port=self.redis_port,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            self.client.ping()
        except redis.RedisError as e:
            logger.warning("Could not connect to Redis: %s", e)
            self.client = None

    def is_available(self) -> bool:
        if not self.client:
            return False
        try:
            self.client.ping()
            return True
        except redis.RedisError:
            return False

    # ========== Table board ==========

    def cache_tables(self, tables: List[Dict], ttl: int = 30) -> bool:
        """
        Cache the serialized table board
        ttl: seconds before the entry expires on its own
        """
        if not self.is_available():
            return False
        try:
            self.client.setex(TABLES_KEY, ttl, json.dumps(tables, default=str))
            return True
        except redis.RedisError as e:
            logger.warning("Failed to cache tables: %s", e)
            return False

    def get_cached_tables(self) -> Optional[List[Dict]]:
        if not self.is_available():
            return None
        try:
            cached = self.client.get(TABLES_KEY)
            if cached:
                return json.loads(cached)
        except redis.RedisError as e:
            logger.warning("Failed to read cached tables: %s", e)
        return None

    def invalidate_tables_cache(self) -> bool:
        """Called after any write that changes a table's status"""
        if not self.is_available():
            return False
        try:
            self.client.delete(TABLES_KEY)
            return True
        except redis.RedisError as e:
            logger.warning("Failed to invalidate tables cache: %s", e)
            return False

    def get_cache_info(self) -> Dict[str, Any]:
        if not self.is_available():
            return {"status": "unavailable"}
        try:
            return {
                "status": "available",
                "tables_cached": bool(self.client.exists(TABLES_KEY)),
            }
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}


redis_client = RedisClient()
