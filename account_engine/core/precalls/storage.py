"""Storage backends for pending pre-calls."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import redis.asyncio as redis

from ...config import settings

logger = logging.getLogger(__name__)


class Storage(ABC):
    """Minimal async key/value store for JSON-serializable values."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class MemoryStorage(Storage):
    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    async def get(self, key: str) -> Any:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class RedisStorage(Storage):
    """Values are stored as JSON strings without expiry."""

    def __init__(self, redis_url: Optional[str] = None, client: Any = None) -> None:
        if client is not None:
            self._client = client
        else:
            url = redis_url or settings.redis_url
            if not url:
                raise ValueError("redis_url is required for RedisStorage")
            self._client = redis.from_url(url, encoding="utf-8", decode_responses=True)

    async def get(self, key: str) -> Any:
        payload = await self._client.get(key)
        if not payload:
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any) -> None:
        await self._client.set(key, json.dumps(value))

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


def default_storage() -> Storage:
    if settings.has_redis:
        logger.info("Persisting pre-calls in Redis")
        return RedisStorage()
    return MemoryStorage()
