import functools
import json
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from backend.medibook_app.utils.logger import cache_logger

# Errors the cache layer turns into a benign result instead of raising
CACHE_ERRORS = (RedisError, ConnectionError, TimeoutError, OSError, ValueError, TypeError)


def handle_cache_errors(default: Any = None):
    """Decorator for async cache operations.

    Any backend or serialization failure is logged with the operation name and
    its first argument (the key or pattern), then replaced with ``default``.
    Callers therefore see "not found" or "did not take effect", never a
    transport exception.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs) -> Any:
            try:
                return await func(self, *args, **kwargs)
            except CACHE_ERRORS as e:
                cache_logger.log_error(e, {
                    "operation": func.__name__,
                    "key": args[0] if args else kwargs.get("key"),
                })
                return default() if callable(default) else default
        return wrapper
    return decorator


class ApiError(Exception):
    """Error rendered as a structured ``{error, code}`` JSON body."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}
        self.headers = headers

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.extra}


class TokenMissingError(ApiError):
    status_code = 401
    code = "AUTH_TOKEN_MISSING"

    def __init__(self, message: str = "Authentication token missing"):
        super().__init__(message)


class TokenInvalidError(ApiError):
    status_code = 401
    code = "AUTH_TOKEN_INVALID"

    def __init__(self, message: str = "Invalid or expired authentication token"):
        super().__init__(message)


class InsufficientPermissionsError(ApiError):
    status_code = 403
    code = "AUTH_INSUFFICIENT_PERMISSIONS"

    def __init__(self, required_roles, user_role):
        super().__init__("Insufficient permissions", extra={
            "required_roles": list(required_roles),
            "user_role": user_role,
        })


class AuthRequiredError(ApiError):
    status_code = 401
    code = "AUTH_REQUIRED"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ResourceAccessDeniedError(ApiError):
    status_code = 403
    code = "AUTH_RESOURCE_ACCESS_DENIED"

    def __init__(self, message: str = "Access to this resource is not allowed"):
        super().__init__(message)


class RateLimitExceededError(ApiError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, retry_after: int, headers: Dict[str, str]):
        super().__init__("Too many requests", extra={"retry_after": retry_after}, headers=headers)


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"


async def api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
    """Render ApiError subclasses with their status code and headers."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


def parse_json_message(raw: str) -> Dict[str, Any]:
    """Decode an inbound socket frame, rejecting anything that is not a JSON object."""
    message = json.loads(raw)
    if not isinstance(message, dict):
        raise ValueError("Message must be a JSON object")
    return message
