"""
Railway-Oriented Programming kit used across pubstore.

Every port returns a Result; failures travel on the failure track with a
structured FailureDescription instead of raising.

    from pubstore.railway import Result, ErrorCode

    def require_hint(hint: str) -> Result[str]:
        if not hint:
            return Result.failure(ErrorCode.BUILD_ERROR, "Text hint is required")
        return Result.success(hint)
"""

from pubstore.railway.assertions import ResultAssertions
from pubstore.railway.failure import ErrorCode, FailureDescription
from pubstore.railway.result import Failure, Result, Success

__all__ = [
    "ErrorCode",
    "Failure",
    "FailureDescription",
    "Result",
    "ResultAssertions",
    "Success",
]
