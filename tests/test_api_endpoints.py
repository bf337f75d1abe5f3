import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from backend.medibook_app.main import create_app

AUTH_HEADERS = {"Authorization": "Bearer valid-token"}


class TestAPIEndpoints:
    """Test cases for API endpoints."""

    @pytest.fixture
    def client(self, mock_container):
        """Test client over mocked services. Lifespan is not entered, so no Redis is touched."""
        return TestClient(create_app(mock_container))

    @pytest.fixture
    def logged_in(self, mock_session_service, make_auth_data):
        mock_session_service.verify_token_and_get_session.return_value = make_auth_data()
        return mock_session_service

    @pytest.mark.api
    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.api
    @pytest.mark.auth
    def test_get_session_slides_expiry(self, client, logged_in):
        response = client.get("/auth/session", headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json()["session_id"] == "sess_1"
        assert response.json()["user"]["user_id"] == "u1"
        logged_in.refresh_session.assert_awaited_once_with("sess_1")

    @pytest.mark.api
    @pytest.mark.auth
    def test_refresh_session(self, client, logged_in):
        response = client.post("/auth/refresh", json={"ttl": 7200}, headers=AUTH_HEADERS)

        assert response.status_code == 200
        logged_in.refresh_session.assert_awaited_once_with("sess_1", 7200)

    @pytest.mark.api
    @pytest.mark.auth
    def test_refresh_missing_session(self, client, logged_in):
        logged_in.refresh_session.return_value = False

        response = client.post("/auth/refresh", json={}, headers=AUTH_HEADERS)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    @pytest.mark.api
    @pytest.mark.auth
    def test_logout(self, client, logged_in):
        response = client.post("/auth/logout", headers=AUTH_HEADERS)

        assert response.status_code == 200
        logged_in.delete_session.assert_awaited_once_with("sess_1")

    @pytest.mark.api
    @pytest.mark.auth
    def test_logout_requires_token(self, client):
        response = client.post("/auth/logout")

        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_TOKEN_MISSING"

    @pytest.mark.api
    @pytest.mark.auth
    def test_logout_all(self, client, logged_in):
        logged_in.delete_user_sessions.return_value = 3

        response = client.post("/auth/logout-all", headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json()["deleted_count"] == 3
        logged_in.delete_user_sessions.assert_awaited_once_with("u1")

    @pytest.mark.api
    @pytest.mark.auth
    def test_list_own_sessions(self, client, logged_in):
        logged_in.get_user_sessions.return_value = ["sess_1"]

        response = client.get("/auth/users/u1/sessions", headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"user_id": "u1", "sessions": ["sess_1"]}

    @pytest.mark.api
    @pytest.mark.auth
    def test_list_foreign_sessions_is_denied(self, client, logged_in):
        response = client.get("/auth/users/u2/sessions", headers=AUTH_HEADERS)

        assert response.status_code == 403
        assert response.json()["code"] == "AUTH_RESOURCE_ACCESS_DENIED"
        logged_in.get_user_sessions.assert_not_awaited()

    @pytest.mark.api
    @pytest.mark.auth
    def test_admin_bypasses_ownership(self, client, mock_session_service, make_auth_data):
        mock_session_service.verify_token_and_get_session.return_value = make_auth_data(
            user_id="admin1", role="ADMIN"
        )

        response = client.get("/auth/users/u2/sessions", headers=AUTH_HEADERS)

        assert response.status_code == 200

    @pytest.mark.api
    def test_list_notifications(self, client, logged_in, mock_notification_service):
        mock_notification_service.get_user_notifications.return_value = [{"id": "n1"}]

        response = client.get("/notifications?limit=5&offset=10", headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json() == [{"id": "n1"}]
        assert response.headers["X-RateLimit-Limit"] == "120"
        mock_notification_service.get_user_notifications.assert_awaited_once_with("u1", limit=5, offset=10)

    @pytest.mark.api
    def test_unread_count(self, client, logged_in, mock_notification_service):
        mock_notification_service.get_unread_count.return_value = 2

        response = client.get("/notifications/unread-count", headers=AUTH_HEADERS)

        assert response.json() == {"count": 2}

    @pytest.mark.api
    def test_mark_read(self, client, logged_in, mock_notification_service):
        assert client.post("/notifications/n1/read", headers=AUTH_HEADERS).status_code == 200
        mock_notification_service.mark_as_read.assert_awaited_once_with("n1", "u1")

        mock_notification_service.mark_as_read.return_value = False
        response = client.post("/notifications/n2/read", headers=AUTH_HEADERS)
        assert response.status_code == 404

    @pytest.mark.api
    def test_mark_all_read(self, client, logged_in, mock_notification_service):
        mock_notification_service.mark_all_as_read.return_value = 4

        response = client.post("/notifications/read-all", headers=AUTH_HEADERS)

        assert response.json() == {"marked_count": 4}

    @pytest.mark.api
    def test_delete_notification(self, client, logged_in, mock_notification_service):
        mock_notification_service.delete_notification.return_value = False

        response = client.delete("/notifications/n1", headers=AUTH_HEADERS)

        assert response.status_code == 404
        mock_notification_service.delete_notification.assert_awaited_once_with("n1", "u1")

    @pytest.mark.api
    def test_websocket_stats_are_admin_only(self, client, logged_in, mock_session_service, make_auth_data):
        assert client.get("/ws/stats", headers=AUTH_HEADERS).status_code == 403

        mock_session_service.verify_token_and_get_session.return_value = make_auth_data(
            user_id="admin1", role="ADMIN"
        )
        response = client.get("/ws/stats", headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"total_connections": 0, "connections_by_role": {}, "total_rooms": 0}

    @pytest.mark.api
    def test_push_without_listeners(self, client, mock_session_service, make_auth_data):
        mock_session_service.verify_token_and_get_session.return_value = make_auth_data(
            user_id="admin1", role="ADMIN"
        )

        response = client.post("/ws/push", json={"type": "announcement", "data": {"text": "Maintenance"}},
                               headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"sent_count": 0}


class TestWebSocketEndpoint:
    """Test cases for the /ws endpoint."""

    @pytest.fixture
    def client(self, mock_container):
        return TestClient(create_app(mock_container))

    @pytest.mark.websocket
    def test_rejects_missing_token(self, client):
        with client.websocket_connect("/ws") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()

        assert exc_info.value.code == 1008

    @pytest.mark.websocket
    def test_rejects_invalid_token(self, client, mock_session_service):
        mock_session_service.verify_token_and_get_session.return_value = None

        with client.websocket_connect("/ws?token=forged") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()

        assert exc_info.value.code == 1008

    @pytest.mark.websocket
    def test_session(self, client, mock_container, mock_session_service,
                     mock_notification_service, make_auth_data):
        """Greeting, unread count, then ping/pong over an authenticated socket."""
        mock_session_service.verify_token_and_get_session.return_value = make_auth_data()
        mock_notification_service.get_unread_count.return_value = 3

        with client.websocket_connect("/ws?token=valid-token") as websocket:
            greeting = websocket.receive_json()
            unread = websocket.receive_json()

            websocket.send_json({"type": "ping"})
            pong = websocket.receive_json()

            websocket.send_json({"type": "join_room", "data": {"room_name": "doctor:7"}})
            joined = websocket.receive_json()

            assert "u1" in mock_container.hub.clients
            assert mock_container.hub.rooms == {"doctor:7": {"u1"}}

        assert greeting["type"] == "connection"
        assert greeting["data"]["status"] == "connected"
        assert unread == {"type": "unread_count", "data": {"count": 3}}
        assert pong["type"] == "pong"
        assert joined["type"] == "room_joined"
        mock_session_service.verify_token_and_get_session.assert_awaited_once_with("valid-token")

    @pytest.mark.websocket
    def test_bad_frame_keeps_connection_open(self, client, mock_container, mock_session_service,
                                             make_auth_data):
        mock_session_service.verify_token_and_get_session.return_value = make_auth_data()

        with client.websocket_connect("/ws?token=valid-token") as websocket:
            websocket.receive_json()
            websocket.receive_json()

            websocket.send_json({"type": "join_room", "data": {"room_name": ["a"]}})
            websocket.send_json({"type": "ping"})
            pong = websocket.receive_json()

            assert mock_container.hub.rooms == {}

        assert pong["type"] == "pong"

    @pytest.mark.websocket
    def test_bearer_header_is_accepted(self, client, mock_session_service, make_auth_data):
        mock_session_service.verify_token_and_get_session.return_value = make_auth_data()

        with client.websocket_connect("/ws", headers=AUTH_HEADERS) as websocket:
            assert websocket.receive_json()["type"] == "connection"

        mock_session_service.verify_token_and_get_session.assert_awaited_once_with("valid-token")
