"""
Error classifier: the single place that decides what a raw error means.

``classify`` maps any error shape (exception, status-carrying object, dict or
bare string) to an ``ErrorKind``. ``is_transient`` is the only question the
retry loop asks. New backend shapes are supported by ``register_rule`` without
touching ``with_retry``.
"""
import asyncio
import logging
import re
from typing import Any, Callable, List, Optional, Tuple

from redis import exceptions as redis_exc
from sqlalchemy import exc as sa_exc

from campus_eats.domain.errors import (
    ErrorKind,
    MarketplaceError,
    StoreError,
    TRANSIENT_KINDS,
)

logger = logging.getLogger(__name__)

Rule = Tuple[Callable[[Any], bool], ErrorKind]

RATE_LIMIT_STATUSES = {429}
SERVER_ERROR_STATUSES = {500, 502, 503, 504}
AUTH_STATUSES = {401, 403}

_NETWORK_PATTERN = re.compile(r"failed to fetch|networkerror|connection reset|connection refused|timed? ?out", re.IGNORECASE)
_CONFIG_PATTERN = re.compile(r"not configured|missing .*(url|key|credential)|configuration missing", re.IGNORECASE)
_CREDENTIALS_PATTERN = re.compile(r"invalid (login )?credentials|invalid email or password", re.IGNORECASE)

USER_MESSAGES = {
    ErrorKind.NETWORK: "Network error. Please check your connection and try again.",
    ErrorKind.RATE_LIMITED: "Too many requests right now. Please wait a moment and try again.",
    ErrorKind.SERVER_ERROR: "The server is having trouble. Please try again shortly.",
    ErrorKind.CONFIGURATION: (
        "Service configuration missing. Set DATABASE_URL (and REDIS_URL if used) "
        "in your .env file and restart."
    ),
    ErrorKind.INVALID_CREDENTIALS: "Invalid email or password.",
    ErrorKind.CONFLICT: "Someone else already took this order.",
}


def _status_of(error: Any) -> Optional[int]:
    if isinstance(error, dict):
        status = error.get("status", error.get("status_code"))
    else:
        status = getattr(error, "status", None) or getattr(error, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _message_of(error: Any) -> str:
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        return str(error.get("message") or error.get("error") or error)
    return str(getattr(error, "message", None) or error)


def _is_type(*types):
    return lambda error: isinstance(error, types)


def _has_status(statuses):
    return lambda error: _status_of(error) in statuses


def _message_matches(pattern):
    return lambda error: bool(pattern.search(_message_of(error)))


# Ordered: first match wins
_RULES: List[Rule] = [
    (_is_type(sa_exc.OperationalError, sa_exc.DisconnectionError, sa_exc.TimeoutError), ErrorKind.NETWORK),
    (_is_type(redis_exc.ConnectionError, redis_exc.TimeoutError), ErrorKind.NETWORK),
    (_is_type(ConnectionError, TimeoutError, asyncio.TimeoutError), ErrorKind.NETWORK),
    (_is_type(sa_exc.ArgumentError, sa_exc.NoSuchModuleError), ErrorKind.CONFIGURATION),
    (_has_status(RATE_LIMIT_STATUSES), ErrorKind.RATE_LIMITED),
    (_has_status(SERVER_ERROR_STATUSES), ErrorKind.SERVER_ERROR),
    (_has_status(AUTH_STATUSES), ErrorKind.INVALID_CREDENTIALS),
    (_message_matches(_NETWORK_PATTERN), ErrorKind.NETWORK),
    (_message_matches(_CONFIG_PATTERN), ErrorKind.CONFIGURATION),
    (_message_matches(_CREDENTIALS_PATTERN), ErrorKind.INVALID_CREDENTIALS),
]


def register_rule(predicate: Callable[[Any], bool], kind: ErrorKind, first: bool = True) -> None:
    """Teach the classifier a new backend error shape."""
    if first:
        _RULES.insert(0, (predicate, kind))
    else:
        _RULES.append((predicate, kind))


def classify(error: Any) -> ErrorKind:
    if isinstance(error, MarketplaceError):
        return error.kind
    for predicate, kind in _RULES:
        try:
            if predicate(error):
                return kind
        except Exception as e:
            logger.warning(f"⚠️ Classifier rule failed on {type(error).__name__}: {e}")
    return ErrorKind.UNKNOWN


def is_transient(error: Any) -> bool:
    return classify(error) in TRANSIENT_KINDS


def user_message(error: Any) -> str:
    """Short human-readable sentence for any error; never a raw backend code."""
    kind = classify(error)
    if isinstance(error, MarketplaceError) and kind not in USER_MESSAGES:
        return error.message
    return USER_MESSAGES.get(kind) or _message_of(error)


def normalize(error: BaseException) -> MarketplaceError:
    """Wrap a raw error into the fixed taxonomy (applied at the repository boundary)."""
    if isinstance(error, MarketplaceError):
        return error
    kind = classify(error)
    return StoreError(_message_of(error), kind, cause=error)
