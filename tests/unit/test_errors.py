from __future__ import annotations

import pytest
from redis import exceptions as redis_exceptions

from redsumer.errors import (
    CommandError,
    ErrorKind,
    RedsumerError,
    StreamConnectionError,
    translate_redis_errors,
)


@pytest.mark.parametrize(
    ("raised", "expected"),
    [
        (redis_exceptions.ConnectionError("refused"), StreamConnectionError),
        (redis_exceptions.TimeoutError("timed out"), StreamConnectionError),
        (redis_exceptions.AuthenticationError("bad password"), StreamConnectionError),
        (redis_exceptions.ResponseError("NOGROUP no such group"), CommandError),
        (redis_exceptions.DataError("invalid input"), CommandError),
    ],
)
def test_redis_errors_are_translated(raised, expected):
    with pytest.raises(expected) as exc_info:
        with translate_redis_errors("XREADGROUP"):
            raise raised

    assert exc_info.value.__cause__ is raised
    assert "XREADGROUP" in str(exc_info.value)
    assert isinstance(exc_info.value, RedsumerError)


def test_error_kinds():
    assert StreamConnectionError("x").kind is ErrorKind.CONNECTION
    assert CommandError("x").kind is ErrorKind.COMMAND
    assert CommandError("x").batch is None


def test_non_redis_errors_pass_through():
    with pytest.raises(KeyError):
        with translate_redis_errors("XACK"):
            raise KeyError("unrelated")
