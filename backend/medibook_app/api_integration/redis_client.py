import redis.asyncio as redis

from backend.medibook_app import config


def create_redis_client() -> redis.Redis:
    """Build the shared async Redis client from the environment.

    ``REDIS_URL`` wins when set, otherwise host/port/db/password are used.
    Responses are decoded so the cache layer always deals with ``str``.
    """
    if config.REDIS_URL:
        return redis.Redis.from_url(config.REDIS_URL, decode_responses=True)

    return redis.Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_DB,
        password=config.REDIS_PASSWORD,
        decode_responses=True,
        # Verify connections before use
        health_check_interval=30,
    )
