"""
Failure description — structured error information for the failure track.

ErrorCode enumerates the license acquisition error taxonomy. Each failure
carries the code, a human-readable message, the optional causing exception
and a `details` mapping with the context a caller needs to render a
user-facing message (publication id, remote status code, ...).
"""

from __future__ import annotations

import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any


@unique
class ErrorCode(Enum):
    """
    Error codes for the failure track.

    Local errors first, then the errors raised while talking to the remote
    License Server and License Status Document (LSD) server.
    """

    # --- Local errors ---
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Caller input rejected (unparsable rights, bad dates)."""

    NOT_FOUND = "NOT_FOUND"
    """Unknown user, publication or transaction."""

    NOT_ENTITLED = "NOT_ENTITLED"
    """No transaction exists for the (user, publication) pair."""

    BUILD_ERROR = "BUILD_ERROR"
    """License request could not be built or serialized."""

    DATABASE_ERROR = "DATABASE_ERROR"
    """Storage failure, including foreign-key violations."""

    CANCELLED = "CANCELLED"
    """Request scope cancelled or its deadline expired."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """System misconfiguration."""

    # --- Remote errors ---
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    """DNS, connection, timeout, or an unexpected HTTP status."""

    REMOTE_CLIENT_ERROR = "REMOTE_CLIENT_ERROR"
    """The remote server rejected the request (HTTP 4xx)."""

    REMOTE_SERVER_ERROR = "REMOTE_SERVER_ERROR"
    """The remote server failed (HTTP 5xx)."""

    PARSE_ERROR = "PARSE_ERROR"
    """Malformed JSON received from a remote server."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor.

    >>> desc = FailureDescription(ErrorCode.NOT_ENTITLED, "No license for this publication")
    >>> desc.code
    <ErrorCode.NOT_ENTITLED: 'NOT_ENTITLED'>
    """

    code: ErrorCode
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    details: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def with_details(self, **details: Any) -> FailureDescription:
        """Return a copy carrying additional context entries."""
        return FailureDescription(
            code=self.code,
            message=self.message,
            exception=self.exception,
            details={**self.details, **details},
            timestamp=self.timestamp,
        )

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            )
        )
        return f"{self.message}\n{tb}"
