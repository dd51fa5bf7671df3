"""Redis client for journaling ledger receipts."""

import json
import logging
from typing import List, Optional

import redis

from .config import settings
from .models import Receipt

logger = logging.getLogger(__name__)


class RedisClient:
    """Persists committed receipts and the last observed activity timestamp."""

    def __init__(self):
        self.client: Optional[redis.Redis] = None

    def connect(self):
        """Establish Redis connection."""
        try:
            self.client = redis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                db=settings.redis_db,
                decode_responses=True,
            )
            # Test connection
            self.client.ping()
            logger.info("Connected to Redis")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    def close(self):
        """Close Redis connection."""
        if self.client:
            self.client.close()
            self.client = None

    def record_receipt(self, receipt: Receipt) -> bool:
        """Append a receipt to the journal, keeping the newest ``redis_receipts_max``.

        Returns False if Redis is unavailable.
        """
        if self.client is None:
            return False
        try:
            self.client.rpush(settings.redis_receipts_key, json.dumps(receipt.to_dict()))
            self.client.ltrim(settings.redis_receipts_key, -settings.redis_receipts_max, -1)
            return True
        except Exception as e:
            logger.warning(f"Failed to journal {receipt.operation} receipt: {e}")
            return False

    def get_receipts(self, limit: int = 100) -> List[Receipt]:
        """Most recent ``limit`` receipts, oldest first."""
        if self.client is None:
            return []
        try:
            raw = self.client.lrange(settings.redis_receipts_key, -limit, -1)
        except Exception as e:
            logger.error(f"Failed to read receipts from Redis: {e}")
            return []

        receipts = []
        for data_str in raw:
            try:
                receipts.append(Receipt.from_dict(json.loads(data_str)))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning(f"Skipping unparseable receipt: {e}")
        return receipts

    def set_last_active(self, timestamp: int) -> None:
        if self.client is None:
            return
        try:
            self.client.set(settings.redis_activity_key, str(timestamp))
        except Exception as e:
            logger.warning(f"Failed to persist last activity timestamp: {e}")

    def get_last_active(self) -> Optional[int]:
        if self.client is None:
            return None
        try:
            value = self.client.get(settings.redis_activity_key)
        except Exception as e:
            logger.warning(f"Failed to read last activity timestamp: {e}")
            return None
        if not value:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring unparseable activity timestamp: {value!r}")
            return None
