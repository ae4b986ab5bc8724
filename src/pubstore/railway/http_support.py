"""
HTTP integration — ErrorCode → HTTP status mapping and FastAPI error bodies.

    return build_error_response(result.error())
"""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse

from pubstore.railway.failure import ErrorCode, FailureDescription


class HttpStatusMapper:
    """Maps ErrorCode members to the status returned by the pubstore API."""

    _CODE_TO_STATUS: dict[ErrorCode, int] = {
        ErrorCode.VALIDATION_ERROR: 400,
        ErrorCode.NOT_FOUND: 404,
        ErrorCode.NOT_ENTITLED: 404,
        ErrorCode.CANCELLED: 499,
        ErrorCode.BUILD_ERROR: 500,
        ErrorCode.DATABASE_ERROR: 500,
        ErrorCode.CONFIGURATION_ERROR: 500,
        ErrorCode.REMOTE_CLIENT_ERROR: 502,
        ErrorCode.REMOTE_SERVER_ERROR: 502,
        ErrorCode.PARSE_ERROR: 502,
        ErrorCode.TRANSPORT_ERROR: 503,
    }

    @classmethod
    def map_error_code(cls, code: ErrorCode) -> int:
        return cls._CODE_TO_STATUS.get(code, 500)


def error_body(failure: FailureDescription) -> dict[str, Any]:
    """
    Standard JSON error body.

        {
            "error_code": "REMOTE_CLIENT_ERROR",
            "message": "License Server rejected the request",
            "details": {"publication_id": "...", "status_code": 422},
            "timestamp": "2026-10-19T10:30:00+00:00"
        }
    """
    return {
        "error_code": failure.code.value,
        "message": failure.message,
        "details": {key: str(value) for key, value in failure.details.items()},
        "timestamp": failure.timestamp.isoformat(),
    }


def build_error_response(failure: FailureDescription) -> JSONResponse:
    return JSONResponse(
        status_code=HttpStatusMapper.map_error_code(failure.code),
        content=error_body(failure),
    )
