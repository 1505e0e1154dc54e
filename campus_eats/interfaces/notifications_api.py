from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder

from campus_eats.application.marketplace import Marketplace
from campus_eats.application.session import SessionContext
from campus_eats.domain.errors import ErrorKind, MarketplaceError
from campus_eats.interfaces.dependencies import current_session, get_marketplace

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    session: SessionContext = Depends(current_session),
    marketplace: Marketplace = Depends(get_marketplace),
):
    items = await marketplace.notifications.list_for(session.user_id, unread_only, limit)
    return {"notifications": [jsonable_encoder(n.to_dict()) for n in items]}


@router.get("/unread-count")
async def unread_count(
    session: SessionContext = Depends(current_session),
    marketplace: Marketplace = Depends(get_marketplace),
):
    return {"unread": await marketplace.notifications.unread_count(session.user_id)}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    session: SessionContext = Depends(current_session),
    marketplace: Marketplace = Depends(get_marketplace),
):
    if not await marketplace.notifications.mark_read(notification_id, session.user_id):
        raise MarketplaceError("Notification not found", ErrorKind.NOT_FOUND)
    return {"id": notification_id, "read": True}
