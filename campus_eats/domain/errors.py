"""
Error taxonomy shared by every layer.

Raw backend/network errors are normalized into ``MarketplaceError`` at the
repository boundary (see ``campus_eats.core.error_classifier``). Code above
that boundary only ever inspects ``error.kind``.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    # Transport (transient, retried)
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"

    # Fatal
    CONFIGURATION = "configuration"
    INVALID_CREDENTIALS = "invalid_credentials"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"

    # Business rules (fatal, deterministic)
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"


TRANSIENT_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR})


class MarketplaceError(Exception):
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS


class StoreError(MarketplaceError):
    """A backend error that has been classified but keeps its original cause."""

    def __init__(self, message: str, kind: ErrorKind, cause: Optional[BaseException] = None):
        super().__init__(message, kind)
        self.cause = cause


class ConfigurationError(MarketplaceError):
    kind = ErrorKind.CONFIGURATION


class InvalidCredentials(MarketplaceError):
    kind = ErrorKind.INVALID_CREDENTIALS


class ClaimConflict(MarketplaceError):
    kind = ErrorKind.CONFLICT

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} was already claimed by another runner")
        self.order_id = order_id


class InvalidTransition(MarketplaceError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message)
        self.current = current
        self.target = target


class OrderNotFound(MarketplaceError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class InvalidRequest(MarketplaceError):
    kind = ErrorKind.INVALID_REQUEST
