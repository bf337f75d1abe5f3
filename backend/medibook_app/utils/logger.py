import logging
import json
from typing import Dict, Any, Optional
import os

from backend.medibook_app import config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StructuredLogger:
    """Structured logging utility for the medibook backend.

    Every record is a label followed by a JSON payload so log shippers can
    parse the context without a custom grammar.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"medibook.{name}")
        self.logger.setLevel(logging.INFO)

        # Loggers are process-wide, only attach handlers once
        if not self.logger.handlers:
            formatter = logging.Formatter(LOG_FORMAT)

            console_handler = logging.StreamHandler()
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

            # File handler for production
            if config.ENVIRONMENT == "production":
                file_handler = logging.FileHandler(os.getenv("LOG_FILE", "app.log"))
                file_handler.setFormatter(formatter)
                self.logger.addHandler(file_handler)

    def _emit(self, level: int, label: str, payload: Dict[str, Any]):
        self.logger.log(level, f"{label}: {json.dumps(payload, default=str)}")

    def log_auth_event(self, event_type: str, user_id: Optional[str], success: bool,
                       ip_address: str = None, details: Dict[str, Any] = None):
        """Log authentication events (session creation, token checks, logouts)."""
        self._emit(logging.INFO, "Auth event", {
            "event_type": event_type,
            "user_id": user_id,
            "success": success,
            "ip_address": ip_address,
            "details": details or {}
        })

    def log_user_action(self, user_id: str, action: str,
                        resource: str = None, details: Dict[str, Any] = None):
        """Log user actions for audit trail."""
        self._emit(logging.INFO, "User action", {
            "user_id": user_id,
            "action": action,
            "resource": resource,
            "details": details or {}
        })

    def log_error(self, error: Exception, context: Dict[str, Any] = None):
        """Log errors with context."""
        self._emit(logging.ERROR, "Error", {
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context or {}
        })

    def log_info(self, message: str, context: Dict[str, Any] = None):
        self._emit(logging.INFO, "Info", {"message": message, "context": context or {}})

    def log_debug(self, message: str, context: Dict[str, Any] = None):
        self._emit(logging.DEBUG, "Debug", {"message": message, "context": context or {}})

    def log_warning(self, message: str, context: Dict[str, Any] = None):
        self._emit(logging.WARNING, "Warning", {"message": message, "context": context or {}})


# Global logger instances
auth_logger = StructuredLogger("auth")
cache_logger = StructuredLogger("cache")
session_logger = StructuredLogger("session")
notification_logger = StructuredLogger("notification")
websocket_logger = StructuredLogger("websocket")
scheduler_logger = StructuredLogger("scheduler")
error_logger = StructuredLogger("error")
