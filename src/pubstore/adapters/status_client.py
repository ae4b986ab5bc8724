"""
HTTP adapter — License Status Document client via httpx.

Adapter layer — implements the StatusDocumentFetcher port.

The status URL comes from the license itself and acts as the capability,
so the GET is unauthenticated and the URL is used exactly as received.
The GET is an idempotent read: transient network errors are retried with
tenacity, until the attempts run out or the caller's scope ends. Every
other failure (non-2xx, malformed JSON) becomes a Result failure; the
entitlement service degrades those to the zero status.
"""

from __future__ import annotations

from datetime import datetime

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pubstore.domain.models import StatusDocument
from pubstore.domain.scope import RequestScope, ScopeCancelled
from pubstore.railway import ErrorCode, Result

log = structlog.get_logger()


class _PotentialRights(BaseModel):
    model_config = ConfigDict(extra="ignore")

    end: datetime | None = None


class _StatusDoc(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    status: str = ""
    message: str = ""
    potential_rights: _PotentialRights = Field(default_factory=_PotentialRights)


class HttpStatusDocumentClient:
    """
    Fetch License Status Documents.

    Implements the StatusDocumentFetcher port.
    """

    def __init__(self, timeout: float = 5.0, attempts: int = 2) -> None:
        self._timeout = timeout
        self._attempts = max(1, attempts)

    def fetch(self, status_url: str, scope: RequestScope | None = None) -> Result[StatusDocument]:
        if not status_url:
            return Result.failure(ErrorCode.NOT_FOUND, "License has no status document link")
        scope = scope or RequestScope()
        if scope.is_cancelled():
            return Result.failure(ErrorCode.CANCELLED, "Request cancelled before fetching status")
        return self._get(status_url, scope).flat_map(
            lambda response: _classify(status_url, response)
        )

    def _get(self, status_url: str, scope: RequestScope) -> Result[httpx.Response]:
        retrying = retry(
            stop=stop_after_attempt(self._attempts) | (lambda _: scope.is_cancelled()),
            wait=wait_exponential(multiplier=0.2, min=0.1, max=2),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            reraise=True,
        )

        def do_get() -> httpx.Response:
            # each attempt only gets the time still left in the scope
            timeout = scope.timeout_for(self._timeout)
            with httpx.Client(timeout=timeout, follow_redirects=True) as client:
                unregister = scope.on_cancel(client.close)
                try:
                    return client.get(status_url)
                finally:
                    unregister()

        try:
            return Result.success(scope.run(retrying(do_get)))
        except ScopeCancelled:
            log.warning("status.cancelled", url=status_url)
            return Result.failure(
                ErrorCode.CANCELLED,
                "Request cancelled while fetching the license status document",
                url=status_url,
            )
        except httpx.HTTPError as e:
            log.warning("status.unreachable", url=status_url, error=str(e))
            return Result.failure(
                ErrorCode.TRANSPORT_ERROR,
                "Failed to fetch the license status document",
                e,
                url=status_url,
            )


def _classify(status_url: str, response: httpx.Response) -> Result[StatusDocument]:
    if not response.is_success:
        code = ErrorCode.TRANSPORT_ERROR
        if response.is_client_error:
            code = ErrorCode.REMOTE_CLIENT_ERROR
        elif response.is_server_error:
            code = ErrorCode.REMOTE_SERVER_ERROR
        log.warning("status.bad_response", url=status_url, status_code=response.status_code)
        return Result.failure(
            code,
            f"Status server answered {response.status_code}",
            status_code=response.status_code,
        )
    try:
        lsd = _StatusDoc.model_validate_json(response.content)
    except ValidationError as e:
        log.warning("status.parse_failed", url=status_url, size_bytes=len(response.content))
        return Result.failure(ErrorCode.PARSE_ERROR, "Status document is not valid JSON", e)

    log.debug("status.fetched", url=status_url, status=lsd.status)
    return Result.success(
        StatusDocument(
            status=lsd.status,
            message=lsd.message,
            potential_rights_end=lsd.potential_rights.end,
        )
    )
