import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt

from backend.medibook_app import config
from backend.medibook_app.models.user import UserIdentity
from backend.medibook_app.services.cache_service import CacheService
from backend.medibook_app.utils.logger import session_logger

SESSION_PREFIX = "session:"
USER_SESSION_PREFIX = "user_sessions:"

MAX_INACTIVITY_HOURS = 24
REMEMBER_ME_MAX_INACTIVITY_HOURS = 7 * 24


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionService:
    """Cache-backed user sessions fronted by signed tokens.

    A session's presence in the cache is the only thing that makes it valid:
    a token naming a deleted or evicted session resolves to nothing.
    """

    def __init__(self, cache: CacheService, secret: str = config.JWT_SECRET,
                 algorithm: str = config.JWT_ALGORITHM,
                 default_ttl: int = config.SESSION_TTL):
        self.cache = cache
        self.secret = secret
        self.algorithm = algorithm
        self.default_ttl = default_ttl

    def generate_session_id(self) -> str:
        """Generate a high-entropy opaque session id."""
        return secrets.token_hex(32)

    def _session_key(self, session_id: str) -> str:
        return f"{SESSION_PREFIX}{session_id}"

    def _user_sessions_key(self, user_id: str) -> str:
        return f"{USER_SESSION_PREFIX}{user_id}"

    async def create_session(self, user: UserIdentity, ttl: Optional[int] = None,
                             remember_me: bool = False,
                             additional_data: Optional[Dict[str, Any]] = None) -> str:
        """Create a session for ``user`` and return the signed token naming it."""
        ttl = ttl or self.default_ttl
        session_id = self.generate_session_id()
        now = utcnow().isoformat()
        session_data = {
            "id": session_id,
            "user_id": user.id,
            "role": user.role,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "created_at": now,
            "last_activity": now,
            "remember_me": remember_me,
            **(additional_data or {})
        }

        if not await self.cache.set(self._session_key(session_id), session_data, ttl):
            session_logger.log_warning("Session could not be stored", {"user_id": user.id})

        # The index is rewritten with this session's TTL
        user_sessions = await self.get_user_sessions(user.id)
        user_sessions.append(session_id)
        await self.cache.set(self._user_sessions_key(user.id), user_sessions, ttl)

        token = jwt.encode(
            {
                "session_id": session_id,
                "user_id": user.id,
                "exp": utcnow() + timedelta(seconds=ttl),
            },
            self.secret,
            algorithm=self.algorithm
        )

        session_logger.log_auth_event("session_created", user.id, True, details={
            "session_id": session_id[:10] + "...",
            "ttl": ttl,
            "remember_me": remember_me
        })
        return token

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return await self.cache.get(self._session_key(session_id))

    async def update_session(self, session_id: str, updates: Dict[str, Any]) -> bool:
        """Shallow-merge ``updates`` into the session.

        The entry is written back with the cache's default TTL, not the
        session's original one.
        """
        session = await self.get_session(session_id)
        if not session:
            return False

        updated_session = {**session, **updates, "last_activity": utcnow().isoformat()}
        return await self.cache.set(self._session_key(session_id), updated_session)

    async def delete_session(self, session_id: str) -> bool:
        session = await self.get_session(session_id)
        if not session:
            return False

        await self.cache.delete(self._session_key(session_id))
        await self._remove_from_user_index(session["user_id"], session_id)

        session_logger.log_auth_event("session_deleted", session["user_id"], True, details={
            "session_id": session_id[:10] + "..."
        })
        return True

    async def _remove_from_user_index(self, user_id: str, session_id: str):
        user_sessions = await self.get_user_sessions(user_id)
        remaining = [sid for sid in user_sessions if sid != session_id]
        await self.cache.set(self._user_sessions_key(user_id), remaining)

    async def get_user_sessions(self, user_id: str) -> List[str]:
        """Session ids indexed for ``user_id``, oldest first. May hold evicted ids."""
        return await self.cache.get(self._user_sessions_key(user_id)) or []

    async def delete_user_sessions(self, user_id: str) -> int:
        """Log the user out everywhere. Returns the number of sessions deleted."""
        deleted_count = 0
        for session_id in await self.get_user_sessions(user_id):
            if await self.cache.delete(self._session_key(session_id)):
                deleted_count += 1

        await self.cache.delete(self._user_sessions_key(user_id))
        session_logger.log_auth_event("user_sessions_deleted", user_id, True, details={
            "deleted_count": deleted_count
        })
        return deleted_count

    async def is_session_valid(self, session_id: str) -> bool:
        return await self.get_session(session_id) is not None

    async def refresh_session(self, session_id: str, ttl: Optional[int] = None) -> bool:
        """Sliding expiration: stamp activity and restart the TTL."""
        session = await self.get_session(session_id)
        if not session:
            return False

        refreshed_session = {**session, "last_activity": utcnow().isoformat()}
        return await self.cache.set(self._session_key(session_id), refreshed_session,
                                    ttl or self.default_ttl)

    async def cleanup_expired_sessions(self) -> int:
        """Delete sessions idle past their allowed inactivity window.

        This runs independently of the cache TTL: 24h of inactivity, or 7 days
        for "remember me" sessions. Returns the number of sessions removed.
        """
        now = utcnow()
        cleaned_count = 0

        for key in await self.cache.keys(f"{SESSION_PREFIX}*"):
            session = await self.cache.get(key)
            if not session:
                continue

            try:
                last_activity = datetime.fromisoformat(session["last_activity"])
            except (KeyError, TypeError, ValueError) as e:
                session_logger.log_error(e, {"context": "cleanup_expired_sessions", "key": key})
                continue
            if last_activity.tzinfo is None:
                last_activity = last_activity.replace(tzinfo=timezone.utc)

            hours_since_activity = (now - last_activity).total_seconds() / 3600
            max_inactivity = (REMEMBER_ME_MAX_INACTIVITY_HOURS if session.get("remember_me")
                              else MAX_INACTIVITY_HOURS)

            if hours_since_activity > max_inactivity:
                await self.cache.delete(key)
                if session.get("user_id") is not None:
                    await self._remove_from_user_index(session["user_id"], key[len(SESSION_PREFIX):])
                cleaned_count += 1

        return cleaned_count

    async def verify_token_and_get_session(self, token: str) -> Optional[Dict[str, Any]]:
        """Resolve a token to ``{"user": session, "session_id": id}``.

        Returns None for a bad signature, an expired token, or a token whose
        session no longer exists.
        """
        try:
            decoded = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            session_logger.log_debug("Token rejected", {"reason": str(e)})
            return None

        session_id = decoded.get("session_id")
        if not session_id:
            return None

        session = await self.get_session(session_id)
        if not session:
            return None

        return {"user": session, "session_id": session_id}
