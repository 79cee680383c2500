"""Failure taxonomy shared by both store adapters.

Native driver errors are converted at the adapter boundary into a small
closed set of kinds so callers never inspect SQLAlchemy or redis-py
exceptions (or their message text):

- connectivity: store unreachable, timed out, connection dropped. Retryable.
- authorization: bad credentials, missing grant, read-only replica.
- conflict: a constraint rejected the write (duplicate, self-follow, ...).
- unknown: anything else.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from redis import exceptions as redis_exc
from sqlalchemy import exc as sa_exc


class ErrorKind(str, Enum):
    CONNECTIVITY = "connectivity"
    AUTHORIZATION = "authorization"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


class StoreError(RuntimeError):
    """Base class for classified backing-store failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, store: str = "", operation: str = "") -> None:
        super().__init__(message)
        self.store = store
        self.operation = operation

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.store}.{self.operation}: {self}>"


class ConnectivityError(StoreError):
    kind = ErrorKind.CONNECTIVITY


class AuthorizationError(StoreError):
    kind = ErrorKind.AUTHORIZATION


class ConflictError(StoreError):
    """A write was rejected by a store constraint or policy.

    `reason` is one of: duplicate, self_follow, private_account,
    missing_user, constraint.
    """

    kind = ErrorKind.CONFLICT

    def __init__(
        self,
        message: str,
        *,
        reason: str = "constraint",
        store: str = "",
        operation: str = "",
    ) -> None:
        super().__init__(message, store=store, operation=operation)
        self.reason = reason


class UnknownStoreError(StoreError):
    kind = ErrorKind.UNKNOWN


# Errors raised below the driver layer (socket refused, asyncio timeouts).
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (OSError, asyncio.TimeoutError)

# SQLSTATE classes / codes (PostgreSQL).
_SQLSTATE_AUTH_PREFIXES = ("28",)  # bad credentials (class 28)
_SQLSTATE_AUTH_CODES = {"42501"}  # insufficient_privilege
_SQLSTATE_CONNECTION_PREFIXES = ("08", "57P")  # connection exception, operator intervention
_SQLSTATE_CONFLICT_PREFIXES = ("23",)  # integrity constraint violation


def _sqlstate(exc: BaseException) -> str | None:
    orig = getattr(exc, "orig", None)
    for source in (orig, exc):
        if source is None:
            continue
        code = getattr(source, "sqlstate", None) or getattr(source, "pgcode", None)
        if isinstance(code, str) and code:
            return code
    return None


def classify_sqlalchemy_error(exc: BaseException, *, operation: str) -> StoreError:
    """Map a SQLAlchemy/driver exception onto the taxonomy."""
    store = "relational"
    message = f"{type(exc).__name__}: {exc}"

    code = _sqlstate(exc)
    if code:
        if code.startswith(_SQLSTATE_AUTH_PREFIXES) or code in _SQLSTATE_AUTH_CODES:
            return AuthorizationError(message, store=store, operation=operation)
        if code.startswith(_SQLSTATE_CONNECTION_PREFIXES):
            return ConnectivityError(message, store=store, operation=operation)
        if code.startswith(_SQLSTATE_CONFLICT_PREFIXES):
            return ConflictError(message, reason=_conflict_reason(code), store=store, operation=operation)

    if isinstance(exc, sa_exc.IntegrityError):
        return ConflictError(message, store=store, operation=operation)
    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return ConnectivityError(message, store=store, operation=operation)
    if isinstance(exc, (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError)):
        return ConnectivityError(message, store=store, operation=operation)
    if isinstance(exc, TRANSPORT_ERRORS):
        return ConnectivityError(message, store=store, operation=operation)
    return UnknownStoreError(message, store=store, operation=operation)


def _conflict_reason(sqlstate: str) -> str:
    if sqlstate == "23505":  # unique_violation
        return "duplicate"
    if sqlstate == "23503":  # foreign_key_violation
        return "missing_user"
    return "constraint"


def classify_redis_error(exc: BaseException, *, operation: str) -> StoreError:
    """Map a redis-py exception onto the taxonomy.

    Authentication/authorization errors subclass ConnectionError in redis-py,
    so they must be checked first.
    """
    store = "document"
    message = f"{type(exc).__name__}: {exc}"

    if isinstance(
        exc,
        (
            redis_exc.AuthenticationError,
            redis_exc.AuthorizationError,
            redis_exc.AuthenticationWrongNumberOfArgsError,
            redis_exc.NoPermissionError,
            redis_exc.ReadOnlyError,
        ),
    ):
        return AuthorizationError(message, store=store, operation=operation)
    if isinstance(exc, (redis_exc.ConnectionError, redis_exc.TimeoutError)):
        return ConnectivityError(message, store=store, operation=operation)
    if isinstance(exc, TRANSPORT_ERRORS):
        return ConnectivityError(message, store=store, operation=operation)
    return UnknownStoreError(message, store=store, operation=operation)
