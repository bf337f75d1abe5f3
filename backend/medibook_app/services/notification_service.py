import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from backend.medibook_app import config
from backend.medibook_app.models.notification import NotificationType
from backend.medibook_app.services.cache_service import CacheService
from backend.medibook_app.utils.logger import notification_logger

NOTIFICATION_PREFIX = "notification:"
USER_NOTIFICATION_PREFIX = "user_notifications:"
UNREAD_COUNT_PREFIX = "unread_count:"


class NotificationSink(Protocol):
    """Anything that wants to hear about freshly created notifications."""

    async def on_created(self, notification: Dict[str, Any]) -> None:
        ...


def format_date(value: Any) -> str:
    """Render an appointment date the way the French UI expects (dd/mm/yyyy)."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value.strftime("%d/%m/%Y")


def full_name(person: Dict[str, Any]) -> str:
    return f"{person.get('first_name', '')} {person.get('last_name', '')}".strip()


class NotificationService:
    """Per-user notifications with an incrementally maintained unread counter."""

    def __init__(self, cache: CacheService, default_ttl: int = config.NOTIFICATION_TTL):
        self.cache = cache
        self.default_ttl = default_ttl
        self._sinks: List[NotificationSink] = []

    def subscribe(self, sink: NotificationSink):
        if sink not in self._sinks:
            self._sinks.append(sink)

    def unsubscribe(self, sink: NotificationSink):
        if sink in self._sinks:
            self._sinks.remove(sink)

    def generate_notification_id(self) -> str:
        return secrets.token_hex(16)

    def _notification_key(self, notification_id: str) -> str:
        return f"{NOTIFICATION_PREFIX}{notification_id}"

    def _user_notifications_key(self, user_id: str) -> str:
        return f"{USER_NOTIFICATION_PREFIX}{user_id}"

    def _unread_key(self, user_id: str) -> str:
        return f"{UNREAD_COUNT_PREFIX}{user_id}"

    async def _get_notification_ids(self, user_id: str) -> List[str]:
        return await self.cache.get(self._user_notifications_key(user_id)) or []

    async def _decrement_unread(self, user_id: str):
        unread_count = await self.get_unread_count(user_id)
        if unread_count > 0:
            await self.cache.set(self._unread_key(user_id), unread_count - 1, self.default_ttl)

    async def create_notification(self, user_id: str, title: str, message: str,
                                  type: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        notification = {
            "id": self.generate_notification_id(),
            "user_id": user_id,
            "title": title,
            "message": message,
            "type": type.value if isinstance(type, NotificationType) else type,
            "data": data or {},
            "is_read": False,
            "created_at": datetime.now(timezone.utc).isoformat()
        }

        await self.cache.set(self._notification_key(notification["id"]), notification, self.default_ttl)

        # Newest first
        notification_ids = await self._get_notification_ids(user_id)
        notification_ids.insert(0, notification["id"])
        await self.cache.set(self._user_notifications_key(user_id), notification_ids, self.default_ttl)

        await self.cache.incr(self._unread_key(user_id))

        notification_logger.log_user_action(user_id, "notification_created",
                                            resource=notification["id"],
                                            details={"type": notification["type"]})

        for sink in list(self._sinks):
            try:
                await sink.on_created(notification)
            except Exception as e:
                notification_logger.log_error(e, {
                    "context": "notify_sink",
                    "user_id": user_id,
                    "notification_id": notification["id"]
                })

        return notification

    async def mark_as_read(self, notification_id: str, user_id: str) -> bool:
        """Mark one notification read. False when missing or owned by another user."""
        notification = await self.cache.get(self._notification_key(notification_id))
        if not notification or notification["user_id"] != user_id:
            return False

        if notification["is_read"]:
            return True

        notification["is_read"] = True
        await self.cache.set(self._notification_key(notification_id), notification, self.default_ttl)
        await self._decrement_unread(user_id)
        return True

    async def mark_all_as_read(self, user_id: str) -> int:
        marked_count = 0

        for notification_id in await self._get_notification_ids(user_id):
            notification = await self.cache.get(self._notification_key(notification_id))
            if notification and not notification["is_read"]:
                notification["is_read"] = True
                await self.cache.set(self._notification_key(notification_id), notification,
                                     self.default_ttl)
                marked_count += 1

        await self.cache.set(self._unread_key(user_id), 0, self.default_ttl)
        return marked_count

    async def delete_notification(self, notification_id: str, user_id: str) -> bool:
        notification = await self.cache.get(self._notification_key(notification_id))
        if not notification or notification["user_id"] != user_id:
            return False

        await self.cache.delete(self._notification_key(notification_id))

        notification_ids = await self._get_notification_ids(user_id)
        remaining = [nid for nid in notification_ids if nid != notification_id]
        await self.cache.set(self._user_notifications_key(user_id), remaining, self.default_ttl)

        if not notification["is_read"]:
            await self._decrement_unread(user_id)

        return True

    async def get_user_notifications(self, user_id: str, limit: int = 20,
                                     offset: int = 0) -> List[Dict[str, Any]]:
        """Page through the user's notifications, newest first.

        Ids whose record already expired are skipped but left in the list.
        """
        notification_ids = await self._get_notification_ids(user_id)
        notifications = []

        for notification_id in notification_ids[offset:offset + limit]:
            notification = await self.cache.get(self._notification_key(notification_id))
            if notification:
                notifications.append(notification)

        return notifications

    async def get_unread_count(self, user_id: str) -> int:
        return await self.cache.get(self._unread_key(user_id)) or 0

    async def create_appointment_reminder(self, user_id: str, appointment: Dict[str, Any]):
        doctor = appointment["doctor"]
        message = (f"Vous avez un rendez-vous avec Dr. {full_name(doctor)} le "
                   f"{format_date(appointment['appointment_date'])} à {appointment['start_time']}")
        return await self.create_notification(
            user_id, "Rappel de rendez-vous", message,
            NotificationType.APPOINTMENT_REMINDER,
            {"appointment_id": appointment.get("id")}
        )

    async def create_appointment_confirmation(self, user_id: str, appointment: Dict[str, Any]):
        doctor = appointment["doctor"]
        message = (f"Votre rendez-vous avec Dr. {full_name(doctor)} le "
                   f"{format_date(appointment['appointment_date'])} à {appointment['start_time']} "
                   f"a été confirmé")
        return await self.create_notification(
            user_id, "Rendez-vous confirmé", message,
            NotificationType.APPOINTMENT_CONFIRMED,
            {"appointment_id": appointment.get("id")}
        )

    async def create_appointment_cancellation(self, user_id: str, appointment: Dict[str, Any]):
        doctor = appointment["doctor"]
        message = (f"Votre rendez-vous avec Dr. {full_name(doctor)} prévu le "
                   f"{format_date(appointment['appointment_date'])} à {appointment['start_time']} "
                   f"a été annulé")
        return await self.create_notification(
            user_id, "Rendez-vous annulé", message,
            NotificationType.APPOINTMENT_CANCELLED,
            {"appointment_id": appointment.get("id")}
        )

    async def create_new_message_notification(self, user_id: str, sender: Dict[str, Any],
                                              message: str, conversation_id: str):
        """Notify ``user_id`` of a new message. The message body itself is not copied."""
        sender_name = full_name(sender)
        return await self.create_notification(
            user_id, "Nouveau message",
            f"Vous avez reçu un nouveau message de {sender_name}",
            NotificationType.NEW_MESSAGE,
            {
                "conversation_id": conversation_id,
                "sender_id": sender.get("id"),
                "sender_name": sender_name
            }
        )

    async def create_payment_success_notification(self, user_id: str, appointment: Dict[str, Any]):
        doctor = appointment["doctor"]
        fee = appointment.get("consultation_fee")
        message = (f"Votre paiement de {fee}€ pour le rendez-vous avec Dr. {full_name(doctor)} le "
                   f"{format_date(appointment['appointment_date'])} à {appointment['start_time']} "
                   f"a été effectué avec succès")
        return await self.create_notification(
            user_id, "Paiement réussi", message,
            NotificationType.PAYMENT_SUCCESS,
            {"appointment_id": appointment.get("id"), "amount": fee}
        )
