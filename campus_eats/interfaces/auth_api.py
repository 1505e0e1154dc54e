import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel

from campus_eats.application.marketplace import Marketplace
from campus_eats.application.session import SessionContext
from campus_eats.interfaces.dependencies import bearer_token, get_marketplace, parse_role

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class SignUpPayload(BaseModel):
    email: str
    password: str
    name: str
    role: str
    phone: Optional[str] = None
    campus_name: Optional[str] = None


class SignInPayload(BaseModel):
    email: str
    password: str
    role: Optional[str] = None


def _session_body(context: SessionContext) -> dict:
    return {
        "access_token": context.access_token,
        "user_id": context.user_id,
        "email": context.email,
        "name": context.name,
        "roles": [r.value for r in context.roles],
        "active_role": context.active_role.value,
    }


@router.post("/signup")
async def sign_up(payload: SignUpPayload, marketplace: Marketplace = Depends(get_marketplace)):
    with marketplace.new_session_manager() as manager:
        context = await manager.sign_up(
            payload.email,
            payload.password,
            payload.name,
            payload.role,
            phone=payload.phone,
            campus_name=payload.campus_name,
        )
    return _session_body(context)


@router.post("/signin")
async def sign_in(payload: SignInPayload, marketplace: Marketplace = Depends(get_marketplace)):
    with marketplace.new_session_manager() as manager:
        context = await manager.sign_in(payload.email, payload.password, parse_role(payload.role))
    return _session_body(context)


@router.post("/signout")
async def sign_out(
    authorization: Optional[str] = Header(None),
    marketplace: Marketplace = Depends(get_marketplace),
):
    with marketplace.new_session_manager() as manager:
        await manager.sign_out(bearer_token(authorization))
    return {"status": "signed_out"}
