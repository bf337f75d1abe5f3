from typing import Optional

from fastapi import Request
import redis.asyncio as redis

from backend.medibook_app import config
from backend.medibook_app.api_integration.redis_client import create_redis_client
from backend.medibook_app.services.cache_service import CacheService
from backend.medibook_app.services.notification_service import NotificationService
from backend.medibook_app.services.scheduler import ScheduledTasks
from backend.medibook_app.services.session_service import SessionService
from backend.medibook_app.services.websocket_service import ConnectionHub


class ServiceContainer:
    """Owns one instance of every service and wires them together."""

    def __init__(self, redis_client: Optional[redis.Redis] = None,
                 jwt_secret: str = config.JWT_SECRET):
        self.cache = CacheService(redis_client or create_redis_client())
        self.session_service = SessionService(self.cache, secret=jwt_secret)
        self.notification_service = NotificationService(self.cache)
        self.hub = ConnectionHub(self.session_service, self.notification_service)
        self.scheduler = ScheduledTasks(self.session_service, self.hub)

    async def startup(self):
        await self.cache.connect()
        self.scheduler.start()

    async def shutdown(self):
        await self.scheduler.stop()
        await self.hub.close_all()
        await self.cache.disconnect()


# Dependencies
def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_cache(request: Request) -> CacheService:
    return get_container(request).cache


def get_session_service(request: Request) -> SessionService:
    return get_container(request).session_service


def get_notification_service(request: Request) -> NotificationService:
    return get_container(request).notification_service


def get_hub(request: Request) -> ConnectionHub:
    return get_container(request).hub
