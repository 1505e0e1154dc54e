from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: str
    name: str = ""
    roles: Tuple[str, ...] = ()
    profile: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class AuthSession:
    principal: Principal
    access_token: str


# callback(event, session); event is "SIGNED_IN" or "SIGNED_OUT", session is the one opened or ended
SessionListener = Callable[[str, Optional[AuthSession]], None]


class IIdentityProvider(ABC):
    """External identity boundary: authenticate, identify, deauthenticate, on-change."""

    @abstractmethod
    async def sign_up(self, email: str, password: str, profile: Dict[str, str]) -> AuthSession:
        pass

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        pass

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        pass

    @abstractmethod
    async def get_session(self, access_token: str) -> Optional[AuthSession]:
        pass

    @abstractmethod
    def on_change(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe callable."""
        pass
