"""
HTTP adapter — License Server client via httpx.

Adapter layer — implements the LicenseServer port.

Issuing and refreshing a license share one transport primitive: the request
variant supplies its endpoint, JSON body and expected success status; this
adapter adds HTTP Basic Auth with the configured admin credentials and
classifies the outcome:

  expected status (201 issue / 200 fresh) → Success(raw license bytes)
  400-499                                  → REMOTE_CLIENT_ERROR
  500-599                                  → REMOTE_SERVER_ERROR
  anything else, DNS/connect/timeout       → TRANSPORT_ERROR
  caller's scope ended                     → CANCELLED (client closed)

License requests are POSTs that create state on the remote server, so they
are never retried here; the caller decides.
"""

from __future__ import annotations

import httpx
import structlog

from pubstore.domain.license_request import LicenseRequest
from pubstore.domain.scope import RequestScope, ScopeCancelled
from pubstore.railway import ErrorCode, Result

log = structlog.get_logger()

JSON_CONTENT_TYPE = "application/json"


class HttpLicenseServer:
    """
    Talk to a Readium LCP License Server (v1 or v2).

    Implements the LicenseServer port. Stateless apart from its settings.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = 5.0,
    ) -> None:
        self._base_url = base_url
        self._auth = httpx.BasicAuth(username, password)
        self._timeout = timeout

    def send(self, request: LicenseRequest, scope: RequestScope | None = None) -> Result[bytes]:
        """
        POST a license request and return the raw license document.

        The request timeout is the configured ceiling capped by the time
        left in the caller's scope. Cancelling the scope abandons the call
        and closes its client.
        """
        scope = scope or RequestScope()
        if scope.is_cancelled():
            return Result.failure(
                ErrorCode.CANCELLED, "Request cancelled before contacting the License Server"
            )
        url = request.endpoint(self._base_url)
        return request.build().flat_map(
            lambda body: self._post(url, body, request.expected_status, scope)
        )

    def _post(
        self, url: str, body: bytes, expected_status: int, scope: RequestScope
    ) -> Result[bytes]:
        timeout = scope.timeout_for(self._timeout)

        def do_post() -> httpx.Response:
            with httpx.Client(timeout=timeout, auth=self._auth) as client:
                unregister = scope.on_cancel(client.close)
                try:
                    return client.post(
                        url,
                        content=body,
                        headers={"Content-Type": JSON_CONTENT_TYPE},
                    )
                finally:
                    unregister()

        try:
            response = scope.run(do_post)
        except ScopeCancelled:
            log.warning("license_server.cancelled", url=url)
            return Result.failure(
                ErrorCode.CANCELLED,
                "Request cancelled while waiting for the License Server",
                url=url,
            )
        except httpx.TimeoutException as e:
            log.warning("license_server.timeout", url=url, timeout_seconds=timeout)
            return Result.failure(
                ErrorCode.TRANSPORT_ERROR, "License Server did not answer in time", e, url=url
            )
        except httpx.HTTPError as e:
            log.warning("license_server.unreachable", url=url, error=str(e))
            return Result.failure(
                ErrorCode.TRANSPORT_ERROR,
                "Failed to send a license request to the License Server",
                e,
                url=url,
            )
        return _classify(response, expected_status)


def _classify(response: httpx.Response, expected_status: int) -> Result[bytes]:
    status = response.status_code
    url = str(response.request.url)
    if status == expected_status:
        log.info(
            "license_server.license_received",
            url=url,
            status_code=status,
            size_bytes=len(response.content),
        )
        return Result.success(response.content)
    if 400 <= status < 500:
        log.warning("license_server.client_error", url=url, status_code=status)
        return Result.failure(
            ErrorCode.REMOTE_CLIENT_ERROR,
            f"License Server rejected the request: {_reason(response)}",
            status_code=status,
        )
    if 500 <= status < 600:
        log.error("license_server.server_error", url=url, status_code=status)
        return Result.failure(
            ErrorCode.REMOTE_SERVER_ERROR,
            "License Server failed, try again later",
            status_code=status,
        )
    log.warning("license_server.unexpected_status", url=url, status_code=status)
    return Result.failure(
        ErrorCode.TRANSPORT_ERROR,
        f"Unexpected status code from the License Server: {status}",
        status_code=status,
    )


def _reason(response: httpx.Response) -> str:
    """
    Best-effort detail from a 4xx body.

    LCP servers answer with RFC 7807 problem documents ({"title", "detail"});
    anything else falls back to the status code.
    """
    try:
        problem = response.json()
    except ValueError:
        return f"status code {response.status_code}"
    if isinstance(problem, dict):
        detail = problem.get("detail") or problem.get("title")
        if isinstance(detail, str) and detail:
            return detail
    return f"status code {response.status_code}"
