import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from fastapi import Depends, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from backend.medibook_app.models.user import ADMIN_ROLE
from backend.medibook_app.services.cache_service import CacheService
from backend.medibook_app.services.container import get_cache, get_session_service
from backend.medibook_app.services.session_service import SessionService
from backend.medibook_app.utils.handle_errors import (
    AuthRequiredError,
    InsufficientPermissionsError,
    RateLimitExceededError,
    ResourceAccessDeniedError,
    TokenInvalidError,
    TokenMissingError,
)
from backend.medibook_app.utils.logger import auth_logger


@dataclass
class AuthContext:
    """Identity resolved from a bearer token for the current request."""
    user: Dict[str, Any]
    session_id: str
    token: str = field(repr=False)

    @property
    def user_id(self) -> str:
        return self.user.get("user_id")

    @property
    def role(self) -> Optional[str]:
        return self.user.get("role")

    def has_role(self, role: str) -> bool:
        return self.role == role

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return self.role in roles

    def has_all_roles(self, roles: Iterable[str]) -> bool:
        # A session carries a single role
        return all(self.role == role for role in roles)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):] or None
    return None


def auth_required(required: bool = True, roles: Optional[Iterable[str]] = None,
                  refresh_token: bool = False):
    """Build a dependency resolving the request's bearer token to an AuthContext.

    Args:
        required: reject anonymous requests with 401 when True, otherwise
            let them through with a ``None`` context
        roles: any-of role restriction, empty means every role is accepted
        refresh_token: extend the session TTL on every authenticated request
    """
    allowed_roles = list(roles or [])

    async def dependency(request: Request,
                         session_service: SessionService = Depends(get_session_service)
                         ) -> Optional[AuthContext]:
        request.state.auth = None
        token = extract_bearer_token(request.headers.get("authorization"))

        if not token:
            if required:
                raise TokenMissingError()
            return None

        auth_data = await session_service.verify_token_and_get_session(token)
        if not auth_data:
            auth_logger.log_auth_event("token_check", None, False,
                                       ip_address=request.client.host if request.client else None,
                                       details={"path": request.url.path})
            raise TokenInvalidError()

        if refresh_token:
            await session_service.refresh_session(auth_data["session_id"])

        user = auth_data["user"]
        if allowed_roles and user.get("role") not in allowed_roles:
            auth_logger.log_auth_event("role_check", user.get("user_id"), False, details={
                "required_roles": allowed_roles,
                "user_role": user.get("role")
            })
            raise InsufficientPermissionsError(allowed_roles, user.get("role"))

        context = AuthContext(user=user, session_id=auth_data["session_id"], token=token)
        request.state.auth = context
        return context

    return dependency


def ownership_required(param_name: str = "id", user_id_field: str = "user_id"):
    """Only let the owner of the ``param_name`` path parameter through (admins always pass).

    Must be declared after an ``auth_required`` dependency on the same route.
    """
    async def dependency(request: Request):
        auth: Optional[AuthContext] = getattr(request.state, "auth", None)
        if auth is None:
            raise AuthRequiredError()

        if auth.role == ADMIN_ROLE:
            return

        if auth.user.get(user_id_field) != request.path_params.get(param_name):
            raise ResourceAccessDeniedError()

    return dependency


def rate_limit(max_requests: int = 100, window_ms: int = 60 * 1000):
    """Fixed-window limiter keyed by user id, or client IP for anonymous requests.

    Declare after ``auth_required`` to key by user. The counter key carries a
    TTL equal to the window, so it resets itself.
    """
    window_seconds = max(1, math.ceil(window_ms / 1000))

    async def dependency(request: Request, response: Response,
                         cache: CacheService = Depends(get_cache)):
        auth: Optional[AuthContext] = getattr(request.state, "auth", None)
        if auth is not None:
            key = f"rate_limit:user:{auth.user_id}"
        else:
            key = f"rate_limit:ip:{request.client.host if request.client else 'unknown'}"

        current_count = await cache.incr(key)
        if current_count is None:
            # Cache unavailable, fail open
            return
        if current_count == 1:
            await cache.expire(key, window_seconds)

        reset_at = datetime.now(timezone.utc) + timedelta(milliseconds=window_ms)
        headers = {
            "X-RateLimit-Limit": str(max_requests),
            "X-RateLimit-Remaining": str(max(0, max_requests - current_count)),
            "X-RateLimit-Reset": str(int(reset_at.timestamp())),
        }

        if current_count > max_requests:
            auth_logger.log_warning("Rate limit exceeded", {"key": key, "count": current_count})
            raise RateLimitExceededError(window_seconds, {**headers, "Retry-After": str(window_seconds)})

        response.headers.update(headers)

    return dependency


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
