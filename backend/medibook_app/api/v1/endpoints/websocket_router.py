from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, WebSocket
from pydantic import BaseModel

from backend.medibook_app.middleware.auth_middleware import auth_required
from backend.medibook_app.models.user import ADMIN_ROLE
from backend.medibook_app.services.container import get_hub
from backend.medibook_app.services.websocket_service import ConnectionHub

router = APIRouter(tags=["websocket"])

admin_only = auth_required(roles=[ADMIN_ROLE])

class PushRequest(BaseModel):
    type: str
    data: Dict[str, Any] = {}
    role: Optional[str] = None
    room: Optional[str] = None

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    hub: ConnectionHub = websocket.app.state.container.hub
    await hub.handle_connection(websocket)

@router.get("/ws/stats", dependencies=[Depends(admin_only)])
async def websocket_stats(hub: ConnectionHub = Depends(get_hub)):
    return hub.get_stats()

@router.post("/ws/push", dependencies=[Depends(admin_only)])
async def push_message(request: PushRequest, hub: ConnectionHub = Depends(get_hub)):
    """Push a message to every live socket, or only to one role or one room."""
    message = {"type": request.type, "data": request.data}
    if request.room:
        sent_count = await hub.send_to_room(request.room, message)
    elif request.role:
        sent_count = await hub.send_to_role(request.role, message)
    else:
        sent_count = await hub.broadcast(message)
    return {"sent_count": sent_count}
