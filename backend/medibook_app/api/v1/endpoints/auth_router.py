from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.medibook_app.middleware.auth_middleware import (
    AuthContext,
    auth_required,
    ownership_required,
)
from backend.medibook_app.services.container import get_session_service
from backend.medibook_app.services.session_service import SessionService
from backend.medibook_app.utils.handle_errors import NotFoundError
from backend.medibook_app.utils.logger import auth_logger

router = APIRouter(prefix="/auth", tags=["authentication"])

class RefreshRequest(BaseModel):
    ttl: Optional[int] = None

@router.get("/session")
async def get_current_session(auth: AuthContext = Depends(auth_required(refresh_token=True))):
    """Return the session behind the bearer token, sliding its expiry."""
    return {"session_id": auth.session_id, "user": auth.user}

@router.post("/refresh")
async def refresh_session(
    request: RefreshRequest,
    auth: AuthContext = Depends(auth_required()),
    session_service: SessionService = Depends(get_session_service)
):
    if not await session_service.refresh_session(auth.session_id, request.ttl):
        raise NotFoundError("Session not found")
    return {"message": "Session refreshed"}

@router.post("/logout")
async def logout(
    auth: AuthContext = Depends(auth_required()),
    session_service: SessionService = Depends(get_session_service)
):
    """Delete the current session. The token becomes inert immediately."""
    success = await session_service.delete_session(auth.session_id)
    auth_logger.log_auth_event("logout", auth.user_id, success)
    if not success:
        raise NotFoundError("Session not found")
    return {"message": "Logged out successfully"}

@router.post("/logout-all")
async def logout_everywhere(
    auth: AuthContext = Depends(auth_required()),
    session_service: SessionService = Depends(get_session_service)
):
    deleted_count = await session_service.delete_user_sessions(auth.user_id)
    auth_logger.log_auth_event("logout_all", auth.user_id, True, details={"deleted_count": deleted_count})
    return {"message": "Logged out from all sessions", "deleted_count": deleted_count}

@router.get(
    "/users/{user_id}/sessions",
    dependencies=[Depends(auth_required()), Depends(ownership_required("user_id"))]
)
async def list_user_sessions(
    user_id: str,
    session_service: SessionService = Depends(get_session_service)
):
    return {"user_id": user_id, "sessions": await session_service.get_user_sessions(user_id)}
