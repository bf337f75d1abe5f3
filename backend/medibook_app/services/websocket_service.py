import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, status
from fastapi.websockets import WebSocketState

from backend.medibook_app import config
from backend.medibook_app.services.notification_service import NotificationService
from backend.medibook_app.services.session_service import SessionService
from backend.medibook_app.utils.handle_errors import parse_json_message
from backend.medibook_app.utils.logger import websocket_logger, error_logger


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _string_field(data: Dict[str, Any], name: str) -> Optional[str]:
    value = data.get(name)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


@dataclass
class ClientConnection:
    """A user's live socket, as tracked by the hub."""
    websocket: WebSocket
    user: Dict[str, Any]
    session_id: str
    last_activity: float = field(default_factory=time.time)

    @property
    def is_open(self) -> bool:
        return (self.websocket.client_state == WebSocketState.CONNECTED
                and self.websocket.application_state == WebSocketState.CONNECTED)

    def touch(self):
        self.last_activity = time.time()


class ConnectionHub:
    """Tracks authenticated sockets (one per user) and named rooms.

    Delivery is best-effort and at-most-once: a user who is not connected
    simply misses the push, the notification stays in the store for polling.
    The hub only sees sockets accepted by this process.
    """

    def __init__(self, session_service: SessionService, notification_service: NotificationService):
        self.session_service = session_service
        self.notification_service = notification_service
        self.clients: Dict[str, ClientConnection] = {}
        self.rooms: Dict[str, Set[str]] = {}
        notification_service.subscribe(self)

    def extract_token(self, websocket: WebSocket) -> Optional[str]:
        """Bearer token from the Authorization header, else the ``token`` query param."""
        auth_header = websocket.headers.get("authorization")
        if auth_header and auth_header.startswith("Bearer "):
            return auth_header[len("Bearer "):]
        return websocket.query_params.get("token")

    async def handle_connection(self, websocket: WebSocket):
        """Authenticate, register and serve one socket until it goes away."""
        await websocket.accept()

        token = self.extract_token(websocket)
        if not token:
            websocket_logger.log_warning("Connection rejected - token missing")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION,
                                  reason="Authentication token missing")
            return

        auth_data = await self.session_service.verify_token_and_get_session(token)
        if not auth_data:
            websocket_logger.log_warning("Connection rejected - invalid token")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION,
                                  reason="Invalid authentication token")
            return

        user = auth_data["user"]
        user_id = user["user_id"]
        # Replaces any previous connection for this user
        self.clients[user_id] = ClientConnection(websocket, user, auth_data["session_id"])
        close_code = None

        try:
            await self.send_to_user(user_id, {
                "type": "connection",
                "data": {"status": "connected", "timestamp": timestamp()}
            })
            await self.send_unread_count(user_id)
            websocket_logger.log_auth_event("websocket_connected", user_id, True)

            close_code = await self._receive_loop(user_id, websocket)
        except Exception as e:
            error_logger.log_error(e, {"context": "websocket_connection", "user_id": user_id})
            close_code = status.WS_1011_INTERNAL_ERROR
            await self._safe_close(websocket, status.WS_1011_INTERNAL_ERROR, "Internal server error")
        finally:
            self.handle_disconnection(user_id, websocket, close_code)

    async def _receive_loop(self, user_id: str, websocket: WebSocket) -> int:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return message.get("code", status.WS_1000_NORMAL_CLOSURE)

            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            if raw is not None:
                await self.handle_message(user_id, raw)

    async def handle_message(self, user_id: str, raw: str):
        """Dispatch one inbound frame. Bad input is logged, never fatal."""
        client = self.clients.get(user_id)
        if client:
            client.touch()

        try:
            message = parse_json_message(raw)
            message_type = message.get("type")
            data = message.get("data") or {}

            if message_type == "ping":
                await self.send_to_user(user_id, {"type": "pong", "data": {"timestamp": timestamp()}})

            elif message_type == "pong":
                pass

            elif message_type == "join_room":
                room_name = _string_field(data, "room_name")
                if room_name:
                    await self.join_room(user_id, room_name)

            elif message_type == "leave_room":
                room_name = _string_field(data, "room_name")
                if room_name:
                    await self.leave_room(user_id, room_name)

            elif message_type == "mark_notification_read":
                notification_id = _string_field(data, "notification_id")
                if notification_id:
                    await self.notification_service.mark_as_read(notification_id, user_id)
                    await self.send_unread_count(user_id)

            else:
                websocket_logger.log_warning("Unrecognized message type", {
                    "user_id": user_id,
                    "type": message_type
                })
        except Exception as e:
            # One bad frame never takes the connection down
            websocket_logger.log_error(e, {"context": "handle_message", "user_id": user_id})

    def handle_disconnection(self, user_id: str, websocket: Optional[WebSocket] = None,
                             code: Optional[int] = None):
        client = self.clients.get(user_id)
        # A replaced socket closing must not drop its successor
        if websocket is not None and client is not None and client.websocket is not websocket:
            return

        websocket_logger.log_info("User disconnected", {"user_id": user_id, "code": code})
        self.leave_all_rooms(user_id)
        self.clients.pop(user_id, None)

    async def _send(self, user_id: str, client: ClientConnection, message: Dict[str, Any]) -> bool:
        if not client.is_open:
            return False
        try:
            await client.websocket.send_text(json.dumps(message, default=str))
            return True
        except Exception as e:
            websocket_logger.log_error(e, {"context": "send", "user_id": user_id})
            return False

    async def _safe_close(self, websocket: WebSocket, code: int, reason: str = ""):
        try:
            await websocket.close(code=code, reason=reason)
        except Exception as e:
            websocket_logger.log_debug("Close on a finished socket", {"error": str(e)})

    async def send_to_user(self, user_id: str, message: Dict[str, Any]) -> bool:
        client = self.clients.get(user_id)
        if not client:
            return False
        return await self._send(user_id, client, message)

    async def send_unread_count(self, user_id: str) -> bool:
        unread_count = await self.notification_service.get_unread_count(user_id)
        return await self.send_to_user(user_id, {"type": "unread_count", "data": {"count": unread_count}})

    async def broadcast(self, message: Dict[str, Any]) -> int:
        sent_count = 0
        for user_id, client in list(self.clients.items()):
            if await self._send(user_id, client, message):
                sent_count += 1
        return sent_count

    async def send_to_role(self, role: str, message: Dict[str, Any]) -> int:
        sent_count = 0
        for user_id, client in list(self.clients.items()):
            if client.user.get("role") == role and await self._send(user_id, client, message):
                sent_count += 1
        return sent_count

    async def send_to_room(self, room_name: str, message: Dict[str, Any]) -> int:
        sent_count = 0
        for user_id in list(self.rooms.get(room_name, ())):
            if await self.send_to_user(user_id, message):
                sent_count += 1
        return sent_count

    async def join_room(self, user_id: str, room_name: str):
        self.rooms.setdefault(room_name, set()).add(user_id)
        await self.send_to_user(user_id, {
            "type": "room_joined",
            "data": {"room_name": room_name, "timestamp": timestamp()}
        })

    async def leave_room(self, user_id: str, room_name: str):
        if room_name not in self.rooms:
            return

        self._discard_member(room_name, user_id)
        await self.send_to_user(user_id, {
            "type": "room_left",
            "data": {"room_name": room_name, "timestamp": timestamp()}
        })

    def leave_all_rooms(self, user_id: str):
        for room_name in list(self.rooms):
            self._discard_member(room_name, user_id)

    def _discard_member(self, room_name: str, user_id: str):
        members = self.rooms[room_name]
        members.discard(user_id)
        if not members:
            del self.rooms[room_name]

    async def ping_all_clients(self) -> int:
        """Application-level heartbeat.

        A delivered ping counts as activity, so listen-only clients are not
        swept as idle. Sockets whose sends fail keep aging out.
        """
        message = {"type": "ping", "data": {"timestamp": timestamp()}}
        sent_count = 0
        for user_id, client in list(self.clients.items()):
            if await self._send(user_id, client, message):
                client.touch()
                sent_count += 1
        return sent_count

    async def cleanup_inactive_connections(self, max_inactivity: int = config.WS_MAX_INACTIVITY) -> int:
        """Close and forget every socket idle for longer than ``max_inactivity`` seconds."""
        now = time.time()
        closed_count = 0

        for user_id, client in list(self.clients.items()):
            if now - client.last_activity > max_inactivity:
                websocket_logger.log_info("Closing inactive connection", {"user_id": user_id})
                self.handle_disconnection(user_id, client.websocket)
                await self._safe_close(client.websocket, status.WS_1001_GOING_AWAY, "Inactive connection")
                closed_count += 1

        return closed_count

    async def close_all(self):
        for user_id, client in list(self.clients.items()):
            await self._safe_close(client.websocket, status.WS_1001_GOING_AWAY, "Server shutting down")
            self.handle_disconnection(user_id, client.websocket)

    def get_stats(self) -> Dict[str, Any]:
        connections_by_role: Dict[str, int] = {}
        for client in self.clients.values():
            role = client.user.get("role")
            connections_by_role[role] = connections_by_role.get(role, 0) + 1

        return {
            "total_connections": len(self.clients),
            "connections_by_role": connections_by_role,
            "total_rooms": len(self.rooms)
        }

    async def on_created(self, notification: Dict[str, Any]):
        """Push a new notification to its owner, followed by the fresh unread count."""
        user_id = notification["user_id"]
        await self.send_to_user(user_id, {"type": "notification", "data": notification})
        await self.send_unread_count(user_id)
