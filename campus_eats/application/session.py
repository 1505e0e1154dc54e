"""
Session/identity accessor.

Replaces a process-wide "current user" with an explicit ``SessionContext``
that is handed to each component. Lifecycle: created on sign-in/sign-up,
invalidated on sign-out; ``SessionManager`` is its only writer.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from campus_eats.core.retry import RetryPolicy, with_retry
from campus_eats.domain.errors import InvalidCredentials, InvalidRequest
from campus_eats.domain.order_status import Role
from campus_eats.interfaces.IIdentityProvider import AuthSession, IIdentityProvider

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6

SessionChangeListener = Callable[[Optional["SessionContext"]], None]


@dataclass(frozen=True)
class SessionContext:
    user_id: str
    email: str
    roles: Tuple[Role, ...]
    active_role: Role
    name: str = ""
    access_token: str = ""

    def has_role(self, role: Role) -> bool:
        return Role(role) in self.roles

    @classmethod
    def from_auth(cls, auth: AuthSession, role: Optional[Role] = None) -> "SessionContext":
        roles = tuple(Role(r) for r in auth.principal.roles if r in Role._value2member_map_)
        if not roles:
            raise InvalidCredentials("This account has no marketplace role assigned")
        if role is None:
            active = roles[0]
        elif Role(role) in roles:
            active = Role(role)
        else:
            raise InvalidCredentials(f"This account is not registered as a {Role(role).value}")
        return cls(
            user_id=auth.principal.user_id,
            email=auth.principal.email,
            roles=roles,
            active_role=active,
            name=auth.principal.name,
            access_token=auth.access_token,
        )


def validate_sign_up(email: str, password: str, role: str) -> str:
    normalized = email.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise InvalidRequest("Invalid email format")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in Role._value2member_map_:
        raise InvalidRequest("Invalid role specified")
    return normalized


class SessionManager:

    def __init__(self, provider: IIdentityProvider, policy: Optional[RetryPolicy] = None):
        self.provider = provider
        self.policy = policy
        self._current: Optional[SessionContext] = None
        self._listeners: List[SessionChangeListener] = []
        # Sign-outs can also originate at the provider (expiry, another device)
        self._detach_provider = provider.on_change(self._on_provider_change)

    @property
    def current(self) -> Optional[SessionContext]:
        return self._current

    async def sign_up(
        self,
        email: str,
        password: str,
        name: str,
        role: str,
        phone: Optional[str] = None,
        campus_name: Optional[str] = None,
    ) -> SessionContext:
        normalized = validate_sign_up(email, password, role)
        profile = {"name": name, "role": role}
        if phone:
            profile["phone"] = phone
        if campus_name:
            profile["campus_name"] = campus_name
        logger.info(f"🔐 Signup started for {normalized}")
        auth = await with_retry(lambda: self.provider.sign_up(normalized, password, profile), self.policy)
        logger.info(f"✅ Signup complete for {auth.principal.user_id}")
        return self._establish(SessionContext.from_auth(auth))

    async def sign_in(self, email: str, password: str, role: Optional[Role] = None) -> SessionContext:
        normalized = email.strip().lower()
        auth = await with_retry(lambda: self.provider.sign_in(normalized, password), self.policy)
        logger.info(f"✅ Sign in success for {auth.principal.user_id}")
        return self._establish(SessionContext.from_auth(auth, role))

    async def sign_out(self, access_token: Optional[str] = None) -> None:
        token = access_token or (self._current.access_token if self._current else None)
        if not token:
            return
        await with_retry(lambda: self.provider.sign_out(token), self.policy)
        logger.info("👋 Signed out")
        if self._current is not None and self._current.access_token == token:
            self._set(None)

    async def resolve(self, access_token: str, role: Optional[Role] = None) -> SessionContext:
        """Per-request identification; does not touch ``current``."""
        auth = await with_retry(lambda: self.provider.get_session(access_token), self.policy)
        if auth is None:
            raise InvalidCredentials("Session expired or invalid")
        return SessionContext.from_auth(auth, role)

    def on_change(self, listener: SessionChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Stop following the provider. The manager keeps its last context."""
        if self._detach_provider is not None:
            self._detach_provider()
            self._detach_provider = None

    def __enter__(self) -> "SessionManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _on_provider_change(self, event: str, auth: Optional[AuthSession]) -> None:
        if event != "SIGNED_OUT" or self._current is None:
            return
        if auth is None or auth.access_token == self._current.access_token:
            logger.info(f"👋 Session for {self._current.user_id} ended at the identity provider")
            self._set(None)

    def _establish(self, context: SessionContext) -> SessionContext:
        self._set(context)
        return context

    def _set(self, context: Optional[SessionContext]) -> None:
        self._current = context
        for listener in list(self._listeners):
            try:
                listener(context)
            except Exception as e:
                logger.error(f"❌ Session change listener failed: {e}", exc_info=True)
