from enum import Enum


class NotificationType(str, Enum):
    APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"
    APPOINTMENT_CONFIRMED = "APPOINTMENT_CONFIRMED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    NEW_MESSAGE = "NEW_MESSAGE"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
