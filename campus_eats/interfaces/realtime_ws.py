import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from campus_eats.core.error_classifier import user_message
from campus_eats.domain.errors import MarketplaceError
from campus_eats.domain.views import RoleView
from campus_eats.interfaces.dependencies import parse_role, serialize_order

router = APIRouter()
logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


@router.websocket("/ws/view")
async def view_stream(websocket: WebSocket, token: str = Query(...), role: Optional[str] = Query(None)):
    """
    Streams the caller's role view. A fresh snapshot is sent on connect and
    after every relevant order change; the subscription is torn down when the
    socket closes.
    """
    marketplace = websocket.app.state.marketplace
    try:
        session = await marketplace.sessions.resolve(token, parse_role(role))
    except MarketplaceError as e:
        await websocket.close(code=POLICY_VIOLATION, reason=user_message(e))
        return

    await websocket.accept()
    sync = marketplace.view_synchronizer(session)

    async def push(view: RoleView) -> None:
        body = view.to_dict()
        body["orders"] = [serialize_order(o) for o in view.orders]
        body["mode"] = sync.mode.value
        await websocket.send_json(body)

    sync.on_change(push)
    try:
        async with sync:
            while True:
                # Client messages are only keep-alives
                await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"🔌 View stream closed for {session.user_id} ({session.active_role.value})")
