from unittest.mock import AsyncMock, Mock

import fakeredis
import pytest

from backend.medibook_app.models.user import UserIdentity
from backend.medibook_app.services.cache_service import CacheService
from backend.medibook_app.services.notification_service import NotificationService
from backend.medibook_app.services.session_service import SessionService
from backend.medibook_app.services.websocket_service import ConnectionHub

TEST_SECRET = "test-secret"


@pytest.fixture
def fake_redis():
    """In-memory Redis with its own server per test."""
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def cache_service(fake_redis):
    return CacheService(fake_redis)


@pytest.fixture
def session_service(cache_service):
    return SessionService(cache_service, secret=TEST_SECRET)


@pytest.fixture
def notification_service(cache_service):
    return NotificationService(cache_service)


@pytest.fixture
def sample_user():
    """Sample patient account."""
    return UserIdentity(id="u1", role="PATIENT", email="patient@example.com",
                        first_name="Marie", last_name="Curie")


@pytest.fixture
def admin_user():
    return UserIdentity(id="admin1", role="ADMIN", email="admin@example.com",
                        first_name="Ada", last_name="Lovelace")


@pytest.fixture
def sample_appointment():
    return {
        "id": "appt_1",
        "doctor": {"first_name": "Jean", "last_name": "Dupont"},
        "appointment_date": "2026-03-15T00:00:00Z",
        "start_time": "14:30",
        "consultation_fee": 25,
    }


@pytest.fixture
def mock_session_service():
    """SessionService double whose coroutines are AsyncMocks."""
    service = Mock(spec=SessionService)
    service.verify_token_and_get_session = AsyncMock(return_value=None)
    service.refresh_session = AsyncMock(return_value=True)
    service.delete_session = AsyncMock(return_value=True)
    service.delete_user_sessions = AsyncMock(return_value=0)
    service.get_user_sessions = AsyncMock(return_value=[])
    return service


@pytest.fixture
def mock_notification_service():
    service = Mock(spec=NotificationService)
    service.get_unread_count = AsyncMock(return_value=0)
    service.mark_as_read = AsyncMock(return_value=True)
    service.mark_all_as_read = AsyncMock(return_value=0)
    service.delete_notification = AsyncMock(return_value=True)
    service.get_user_notifications = AsyncMock(return_value=[])
    return service


@pytest.fixture
def mock_cache():
    cache = Mock(spec=CacheService)
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock(return_value=True)
    cache.incr = AsyncMock(return_value=1)
    cache.expire = AsyncMock(return_value=True)
    return cache


@pytest.fixture
def mock_container(mock_cache, mock_session_service, mock_notification_service):
    """Container with mocked storage and a real hub, so no Redis is needed."""
    container = Mock()
    container.cache = mock_cache
    container.session_service = mock_session_service
    container.notification_service = mock_notification_service
    container.hub = ConnectionHub(mock_session_service, mock_notification_service)
    container.startup = AsyncMock()
    container.shutdown = AsyncMock()
    return container


@pytest.fixture
def make_auth_data():
    """Build the shape returned by SessionService.verify_token_and_get_session."""
    def _make(user_id="u1", role="PATIENT", session_id="sess_1"):
        return {
            "user": {"id": session_id, "user_id": user_id, "role": role,
                     "email": f"{user_id}@example.com"},
            "session_id": session_id,
        }
    return _make
