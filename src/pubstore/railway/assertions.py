"""
Test assertions for Result values.

    result = service.fresh_license(user, publication)
    ResultAssertions.assert_failure(result, ErrorCode.NOT_ENTITLED)
"""

from __future__ import annotations

from typing import TypeVar

from pubstore.railway.failure import ErrorCode, FailureDescription
from pubstore.railway.result import Result

T = TypeVar("T")


class ResultAssertions:
    """Expressive test assertions for Result values."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        """Assert the Result is a Success and return its value."""
        context = f" — {message}" if message else ""
        assert result.is_success(), (
            f"Expected Success but got Failure("
            f"{result.error().code.value}: {result.error().message!r}){context}"
        )
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Assert the Result is a Failure, optionally with the given code."""
        context = f" — {message}" if message else ""
        assert result.is_failure(), f"Expected Failure but got Success({result.value()!r}){context}"
        error = result.error()
        if expected_code is not None:
            assert error.code == expected_code, (
                f"Expected error code {expected_code.value} "
                f"but got {error.code.value}: {error.message!r}{context}"
            )
        return error

    @staticmethod
    def assert_failure_message_contains(result: Result[T], substring: str) -> None:
        error = ResultAssertions.assert_failure(result)
        assert substring.lower() in error.message.lower(), (
            f"Expected failure message to contain {substring!r} "
            f"but message was: {error.message!r}"
        )
