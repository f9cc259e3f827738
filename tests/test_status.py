import pytest

from razboard.status import RpcError, StatusCode, handle_storage_error, is_retryable
from razboard.storage import (
    InvalidLimitError,
    MessageNotFoundError,
    TopicNotFoundError,
    UserAlreadyLikedError,
    UserNotAuthorError,
    UserNotFoundError,
)


@pytest.mark.parametrize("error", [TopicNotFoundError(), UserNotFoundError(), MessageNotFoundError()])
def test_not_found_errors(error):
    assert handle_storage_error(error).code is StatusCode.NOT_FOUND


def test_permission_denied():
    assert handle_storage_error(UserNotAuthorError()).code is StatusCode.PERMISSION_DENIED


def test_already_exists():
    assert handle_storage_error(UserAlreadyLikedError()).code is StatusCode.ALREADY_EXISTS


def test_invalid_argument():
    assert handle_storage_error(InvalidLimitError()).code is StatusCode.INVALID_ARGUMENT


def test_unknown_error_is_internal():
    err = handle_storage_error(ValueError("unknown error"))
    assert err.code is StatusCode.INTERNAL
    assert err.message == "unknown error"


def test_message_is_preserved():
    assert handle_storage_error(TopicNotFoundError()).message == "topic not found"


@pytest.mark.parametrize(
    "code, expected",
    [
        (StatusCode.UNAVAILABLE, True),
        (StatusCode.FAILED_PRECONDITION, True),
        (StatusCode.UNKNOWN, True),
        (StatusCode.DEADLINE_EXCEEDED, True),
        (StatusCode.NOT_FOUND, False),
        (StatusCode.INTERNAL, False),
    ],
)
def test_is_retryable_codes(code, expected):
    assert is_retryable(RpcError(code, "x")) is expected


def test_non_rpc_error_is_retryable():
    assert is_retryable(ConnectionError("refused")) is True


def test_none_is_not_retryable():
    assert is_retryable(None) is False