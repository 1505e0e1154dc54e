from decimal import Decimal
from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.encoders import jsonable_encoder

from campus_eats.application.marketplace import Marketplace
from campus_eats.application.session import SessionContext
from campus_eats.domain.errors import InvalidCredentials, InvalidRequest
from campus_eats.domain.order_status import Role

MONEY_FIELDS = ("subtotal", "tax", "delivery_fee", "total")


def get_marketplace(request: Request) -> Marketplace:
    return request.app.state.marketplace


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise InvalidCredentials("Missing bearer token")
    return authorization.split(" ", 1)[1].strip()


def parse_role(value: Optional[str]) -> Optional[Role]:
    if not value:
        return None
    try:
        return Role(value)
    except ValueError:
        raise InvalidRequest("Invalid role specified")


async def current_session(
    authorization: Optional[str] = Header(None),
    x_active_role: Optional[str] = Header(None),
    marketplace: Marketplace = Depends(get_marketplace),
) -> SessionContext:
    """Resolve the caller per request; the role header picks one of the account's roles."""
    return await marketplace.sessions.resolve(bearer_token(authorization), parse_role(x_active_role))


def require_role(role: Role):
    async def dependency(session: SessionContext = Depends(current_session)) -> SessionContext:
        if session.active_role != role:
            raise InvalidRequest(f"This action needs the {role.value} role")
        return session

    return dependency


def serialize_order(order) -> dict:
    data = order.to_dict()
    for name in MONEY_FIELDS:
        if isinstance(data.get(name), Decimal):
            data[name] = str(data[name])
    return jsonable_encoder(data)
