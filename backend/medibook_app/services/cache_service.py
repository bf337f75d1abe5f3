import json
from typing import Any, Awaitable, Callable, List, Optional

import redis.asyncio as redis

from backend.medibook_app.utils.handle_errors import handle_cache_errors
from backend.medibook_app.utils.logger import cache_logger

DEFAULT_TTL = 3600  # 1 hour


class CacheService:
    """JSON key-value cache on top of Redis.

    Every operation swallows backend failures (see ``handle_cache_errors``) so
    that higher layers only ever observe ``None``/``False``/``0``/``[]``.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    async def connect(self):
        """Check the backend is reachable. Startup must fail if it is not."""
        try:
            await self.client.ping()
            cache_logger.log_info("Connected to Redis")
        except Exception as e:
            cache_logger.log_error(e, {"context": "connect"})
            raise

    async def disconnect(self):
        try:
            await self.client.aclose()
            cache_logger.log_info("Disconnected from Redis")
        except Exception as e:
            cache_logger.log_error(e, {"context": "disconnect"})

    @handle_cache_errors(default=False)
    async def set(self, key: str, value: Any, ttl: Optional[int] = DEFAULT_TTL) -> bool:
        """Store ``value`` as JSON. A falsy ``ttl`` stores the key without expiry."""
        serialized = json.dumps(value)
        if ttl:
            await self.client.setex(key, ttl, serialized)
        else:
            await self.client.set(key, serialized)
        return True

    @handle_cache_errors(default=None)
    async def get(self, key: str) -> Any:
        value = await self.client.get(key)
        return json.loads(value) if value else None

    @handle_cache_errors(default=False)
    async def delete(self, key: str) -> bool:
        await self.client.delete(key)
        return True

    @handle_cache_errors(default=False)
    async def exists(self, key: str) -> bool:
        return await self.client.exists(key) == 1

    @handle_cache_errors(default=False)
    async def expire(self, key: str, ttl: int) -> bool:
        await self.client.expire(key, ttl)
        return True

    @handle_cache_errors(default=None)
    async def incr(self, key: str, increment: int = 1) -> Optional[int]:
        """Atomically increment an integer key, creating it at 0 if missing."""
        return await self.client.incrby(key, increment)

    @handle_cache_errors(default=list)
    async def keys(self, pattern: str) -> List[str]:
        return await self.client.keys(pattern)

    @handle_cache_errors(default=0)
    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern`` (e.g. ``"user:*"``)."""
        keys = await self.client.keys(pattern)
        if keys:
            await self.client.delete(*keys)
        return len(keys)

    async def invalidate_doctor(self, doctor_id: str) -> int:
        deleted = 0
        for pattern in (f"doctor:{doctor_id}:*",
                        f"appointments:doctor:{doctor_id}:*",
                        f"availabilities:doctor:{doctor_id}:*",
                        f"reviews:doctor:{doctor_id}:*"):
            deleted += await self.invalidate_pattern(pattern)
        return deleted

    async def invalidate_patient(self, patient_id: str) -> int:
        deleted = 0
        for pattern in (f"patient:{patient_id}:*",
                        f"appointments:patient:{patient_id}:*",
                        f"documents:patient:{patient_id}:*",
                        f"reviews:patient:{patient_id}:*"):
            deleted += await self.invalidate_pattern(pattern)
        return deleted

    async def invalidate_appointments(self, doctor_id: Optional[str] = None,
                                      patient_id: Optional[str] = None) -> int:
        if not doctor_id and not patient_id:
            return await self.invalidate_pattern("appointments:*")

        deleted = 0
        if doctor_id:
            deleted += await self.invalidate_pattern(f"appointments:doctor:{doctor_id}:*")
        if patient_id:
            deleted += await self.invalidate_pattern(f"appointments:patient:{patient_id}:*")
        return deleted

    async def invalidate_messages(self, conversation_id: Optional[str] = None) -> int:
        if conversation_id:
            return await self.invalidate_pattern(f"messages:conversation:{conversation_id}:*")
        return await self.invalidate_pattern("messages:*")

    async def invalidate_notifications(self, user_id: Optional[str] = None) -> int:
        if user_id:
            return await self.invalidate_pattern(f"notifications:user:{user_id}:*")
        return await self.invalidate_pattern("notifications:*")

    async def get_or_set(self, key: str, fetch: Callable[[], Awaitable[Any]],
                         ttl: int = DEFAULT_TTL) -> Any:
        """Cache-aside read: on a miss, fetch the value and write it back."""
        value = await self.get(key)

        if value is None:
            value = await fetch()
            if value is not None:
                await self.set(key, value, ttl)

        return value
