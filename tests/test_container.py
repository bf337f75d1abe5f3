import pytest

from backend.medibook_app.models.user import UserIdentity
from backend.medibook_app.services.container import ServiceContainer


class TestServiceContainer:
    """Wiring and lifecycle of the service container."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self, fake_redis):
        container = ServiceContainer(fake_redis, jwt_secret="test-secret")

        await container.startup()
        assert len(container.scheduler._tasks) == 4

        await container.shutdown()
        assert container.scheduler._tasks == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_services_share_one_cache(self, fake_redis):
        container = ServiceContainer(fake_redis, jwt_secret="test-secret")
        user = UserIdentity(id="u1", role="PATIENT")

        token = await container.session_service.create_session(user)
        auth_data = await container.session_service.verify_token_and_get_session(token)
        await container.notification_service.create_notification("u1", "Titre", "Corps", "NEW_MESSAGE")

        assert container.session_service.cache is container.notification_service.cache
        assert auth_data["user"]["user_id"] == "u1"
        assert await container.cache.get("unread_count:u1") == 1
