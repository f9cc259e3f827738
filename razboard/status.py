"""RPC status codes and the mapping from storage failures to them."""

from __future__ import annotations

import enum

from .storage import (
    InvalidLimitError,
    MessageNotFoundError,
    TopicNotFoundError,
    UserAlreadyLikedError,
    UserNotAuthorError,
    UserNotFoundError,
)


class StatusCode(enum.IntEnum):
    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class RpcError(Exception):
    """An error carrying a status code, as returned to RPC callers."""

    def __init__(self, code: StatusCode, message: str) -> None:
        super().__init__(f"code = {code.name} desc = {message}")
        self.code = code
        self.message = message


_RETRYABLE = frozenset(
    {
        StatusCode.UNAVAILABLE,
        StatusCode.FAILED_PRECONDITION,
        StatusCode.UNKNOWN,
        StatusCode.DEADLINE_EXCEEDED,
    }
)


def handle_storage_error(error: BaseException) -> RpcError:
    """Translate a storage failure into an RPC error with a fitting code."""
    if isinstance(error, (TopicNotFoundError, UserNotFoundError, MessageNotFoundError)):
        code = StatusCode.NOT_FOUND
    elif isinstance(error, UserNotAuthorError):
        code = StatusCode.PERMISSION_DENIED
    elif isinstance(error, UserAlreadyLikedError):
        code = StatusCode.ALREADY_EXISTS
    elif isinstance(error, InvalidLimitError):
        code = StatusCode.INVALID_ARGUMENT
    else:
        code = StatusCode.INTERNAL
    return RpcError(code, str(error))


def is_retryable(error: BaseException | None) -> bool:
    """Whether a control-plane failure warrants trying another server."""
    if error is None:
        return False
    if not isinstance(error, RpcError):
        return True
    return error.code in _RETRYABLE