from fastapi import APIRouter, Depends, Query

from backend.medibook_app.middleware.auth_middleware import AuthContext, auth_required, rate_limit
from backend.medibook_app.services.container import get_notification_service
from backend.medibook_app.services.notification_service import NotificationService
from backend.medibook_app.utils.handle_errors import NotFoundError

router = APIRouter(prefix="/notifications", tags=["notifications"])

current_user = auth_required()

@router.get("", dependencies=[Depends(current_user), Depends(rate_limit(max_requests=120))])
async def list_notifications(
    auth: AuthContext = Depends(current_user),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    notification_service: NotificationService = Depends(get_notification_service)
):
    return await notification_service.get_user_notifications(auth.user_id, limit=limit, offset=offset)

@router.get("/unread-count")
async def unread_count(
    auth: AuthContext = Depends(current_user),
    notification_service: NotificationService = Depends(get_notification_service)
):
    return {"count": await notification_service.get_unread_count(auth.user_id)}

@router.post("/read-all")
async def mark_all_read(
    auth: AuthContext = Depends(current_user),
    notification_service: NotificationService = Depends(get_notification_service)
):
    return {"marked_count": await notification_service.mark_all_as_read(auth.user_id)}

@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    auth: AuthContext = Depends(current_user),
    notification_service: NotificationService = Depends(get_notification_service)
):
    if not await notification_service.mark_as_read(notification_id, auth.user_id):
        raise NotFoundError("Notification not found")
    return {"status": "success"}

@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    auth: AuthContext = Depends(current_user),
    notification_service: NotificationService = Depends(get_notification_service)
):
    if not await notification_service.delete_notification(notification_id, auth.user_id):
        raise NotFoundError("Notification not found")
    return {"status": "success"}
