import hashlib
import hmac
import logging
import secrets
import uuid
from typing import Callable, Dict, List, Optional

from campus_eats.domain.errors import InvalidCredentials, InvalidRequest
from campus_eats.interfaces.IIdentityProvider import (
    AuthSession,
    IIdentityProvider,
    Principal,
    SessionListener,
)

logger = logging.getLogger(__name__)

PBKDF2_ROUNDS = 120_000


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ROUNDS)


class InMemoryIdentityProvider(IIdentityProvider):
    """
    Local stand-in for the hosted identity provider.
    Accounts and tokens live in RAM; suitable for development and tests.
    """

    def __init__(self):
        self._accounts: Dict[str, dict] = {}  # email -> {principal, salt, hash}
        self._tokens: Dict[str, Principal] = {}
        self._listeners: List[SessionListener] = []

    async def sign_up(self, email: str, password: str, profile: Dict[str, str]) -> AuthSession:
        if email in self._accounts:
            raise InvalidRequest("An account with this email already exists")
        role = profile.get("role")
        principal = Principal(
            user_id=str(uuid.uuid4()),
            email=email,
            name=profile.get("name", ""),
            roles=(role,) if role else (),
            profile=dict(profile),
        )
        salt = secrets.token_bytes(16)
        self._accounts[email] = {"principal": principal, "salt": salt, "hash": _hash_password(password, salt)}
        logger.info(f"✅ Identity: account created for {email}")
        return self._open_session(principal)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        account = self._accounts.get(email)
        if account is None or not hmac.compare_digest(account["hash"], _hash_password(password, account["salt"])):
            raise InvalidCredentials("Invalid login credentials")
        return self._open_session(account["principal"])

    async def sign_out(self, access_token: str) -> None:
        principal = self._tokens.pop(access_token, None)
        if principal is not None:
            self._emit("SIGNED_OUT", AuthSession(principal=principal, access_token=access_token))

    async def get_session(self, access_token: str) -> Optional[AuthSession]:
        principal = self._tokens.get(access_token)
        if principal is None:
            return None
        return AuthSession(principal=principal, access_token=access_token)

    def on_change(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _open_session(self, principal: Principal) -> AuthSession:
        token = secrets.token_urlsafe(32)
        self._tokens[token] = principal
        session = AuthSession(principal=principal, access_token=token)
        self._emit("SIGNED_IN", session)
        return session

    def _emit(self, event: str, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception as e:
                logger.error(f"❌ Session listener failed on {event}: {e}", exc_info=True)
