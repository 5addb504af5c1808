# test/test_exceptions.py
import pytest

from bdfstore.core import (
    ErrorCode,
    BdfError,
    ResourceError,
    ArgumentError,
    InvalidFileError,
    InvalidTimeSeries,
    InvalidHandleError,
    InternalError,
    AttributesSealedError,
)


def test_every_error_derives_from_base():
    for exc in (
        ResourceError,
        ArgumentError,
        InvalidFileError,
        InvalidTimeSeries,
        InvalidHandleError,
        InternalError,
        AttributesSealedError,
    ):
        assert issubclass(exc, BdfError)


def test_error_codes():
    assert ResourceError.code is ErrorCode.RESOURCE
    assert ArgumentError.code is ErrorCode.ARGUMENT
    assert InvalidFileError.code is ErrorCode.ARGUMENT
    assert InvalidHandleError.code is ErrorCode.INVALID_HANDLE
    assert InternalError.code is ErrorCode.INTERNAL
    assert AttributesSealedError.code is ErrorCode.INTERNAL
    assert int(ErrorCode.NO_ERROR) == 0


def test_builtin_bases_allow_plain_except():
    assert issubclass(ResourceError, OSError)
    assert issubclass(ArgumentError, ValueError)
    assert issubclass(InvalidHandleError, LookupError)

    with pytest.raises(ValueError):
        raise InvalidFileError("not a container")


def test_sealed_attributes_error_is_not_fatal():
    assert InternalError.fatal is True
    assert AttributesSealedError.fatal is False
