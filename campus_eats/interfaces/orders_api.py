import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from campus_eats.application.checkout import CartLine, DeliveryTarget
from campus_eats.application.marketplace import Marketplace
from campus_eats.application.order_state_machine import TransitionResult
from campus_eats.application.session import SessionContext
from campus_eats.domain.errors import InvalidTransition
from campus_eats.domain.order_status import Role
from campus_eats.interfaces.IGeolocationSource import PositionSample
from campus_eats.interfaces.dependencies import (
    current_session,
    get_marketplace,
    require_role,
    serialize_order,
)

router = APIRouter(tags=["orders"])
logger = logging.getLogger(__name__)


class VendorPayload(BaseModel):
    name: str


class CartLinePayload(BaseModel):
    vendor_id: str
    menu_item_id: str
    name: str = ""
    unit_price: Decimal
    quantity: int = Field(ge=1)


class DeliveryPayload(BaseModel):
    address: str
    notes: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class CheckoutPayload(BaseModel):
    lines: List[CartLinePayload]
    delivery: DeliveryPayload
    payment_method: str = "cash"


class StatusPayload(BaseModel):
    status: str


class LocationPayload(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = None


def _transition_body(result: TransitionResult) -> dict:
    return {
        "order": serialize_order(result.order),
        "previous": result.previous.value,
        "changed": result.changed,
    }


# ---------------------------------------------------------
# VENDORS
# ---------------------------------------------------------
@router.post("/vendors")
async def register_vendor(
    payload: VendorPayload,
    session: SessionContext = Depends(require_role(Role.VENDOR)),
    marketplace: Marketplace = Depends(get_marketplace),
):
    vendor = await marketplace.register_vendor(session, payload.name)
    return {"id": vendor.id, "name": vendor.name, "is_active": vendor.is_active}


@router.get("/vendors/me")
async def my_vendor(
    session: SessionContext = Depends(require_role(Role.VENDOR)),
    marketplace: Marketplace = Depends(get_marketplace),
):
    vendor = await marketplace.vendor_for(session)
    if vendor is None:
        return {"vendor": None}
    return {"vendor": {"id": vendor.id, "name": vendor.name, "is_active": vendor.is_active}}


# ---------------------------------------------------------
# ORDERS
# ---------------------------------------------------------
@router.post("/orders/checkout")
async def checkout(
    payload: CheckoutPayload,
    session: SessionContext = Depends(require_role(Role.BUYER)),
    marketplace: Marketplace = Depends(get_marketplace),
):
    lines = [
        CartLine(
            vendor_id=line.vendor_id,
            menu_item_id=line.menu_item_id,
            name=line.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
        )
        for line in payload.lines
    ]
    delivery = DeliveryTarget(
        address=payload.delivery.address,
        notes=payload.delivery.notes,
        latitude=payload.delivery.latitude,
        longitude=payload.delivery.longitude,
    )
    orders = await marketplace.checkout.place_orders(session.user_id, lines, delivery, payload.payment_method)
    return {"orders": [serialize_order(o) for o in orders]}


@router.get("/orders/view")
async def role_view(
    session: SessionContext = Depends(current_session),
    marketplace: Marketplace = Depends(get_marketplace),
):
    view = await marketplace.role_view(session)
    body = view.to_dict()
    body["orders"] = [serialize_order(o) for o in view.orders]
    return body


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    session: SessionContext = Depends(current_session),
    marketplace: Marketplace = Depends(get_marketplace),
):
    return serialize_order(await marketplace.get_order(order_id, session))


@router.post("/orders/{order_id}/claim")
async def claim_order(
    order_id: str,
    session: SessionContext = Depends(require_role(Role.RUNNER)),
    marketplace: Marketplace = Depends(get_marketplace),
):
    result = await marketplace.state_machine.claim(order_id, session.user_id)
    return _transition_body(result)


@router.post("/orders/{order_id}/status")
async def advance_order(
    order_id: str,
    payload: StatusPayload,
    session: SessionContext = Depends(current_session),
    marketplace: Marketplace = Depends(get_marketplace),
):
    result = await marketplace.state_machine.advance(
        order_id, session.active_role, payload.status, actor_id=session.user_id
    )
    return _transition_body(result)


@router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    session: SessionContext = Depends(require_role(Role.BUYER)),
    marketplace: Marketplace = Depends(get_marketplace),
):
    result = await marketplace.state_machine.cancel(order_id, session.user_id)
    return _transition_body(result)


# ---------------------------------------------------------
# TRACKING
# ---------------------------------------------------------
@router.post("/orders/{order_id}/location")
async def push_location(
    order_id: str,
    payload: LocationPayload,
    session: SessionContext = Depends(require_role(Role.RUNNER)),
    marketplace: Marketplace = Depends(get_marketplace),
):
    sample = PositionSample(latitude=payload.latitude, longitude=payload.longitude, accuracy=payload.accuracy)
    accepted = await marketplace.location.record_position(order_id, session.user_id, sample)
    if not accepted:
        # The device should stop watching
        raise InvalidTransition("This order is not being delivered by you", target="delivering")
    return {"accepted": True}


@router.get("/orders/{order_id}/eta")
async def order_eta(
    order_id: str,
    session: SessionContext = Depends(current_session),
    marketplace: Marketplace = Depends(get_marketplace),
):
    # Visibility check first; the ETA itself is read fresh
    await marketplace.get_order(order_id, session)
    eta = await marketplace.location.eta_for(order_id)
    return eta.to_dict()
