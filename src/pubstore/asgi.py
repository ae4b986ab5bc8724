"""
FastAPI + Uvicorn ASGI application — the license acquisition HTTP surface.

Exposes the EntitlementService to REST and OPDS clients:

  POST /users/{user}/publications/{pub}/license   acquire (buy), streams the license
  POST /users/{user}/publications/{pub}/loan      acquire for the loan period
  GET  /users/{user}/publications/{pub}/license   fresh license of the current entitlement
  GET  /users/{user}/publications/{pub}/status    current license status
  GET  /users/{user}/bookshelf                    entitlements with statuses
  GET  /opds/publications/{pub}/acquisition       OPDS acquisition link (?user=...)
  GET  /health                                    liveness

The service is synchronous; each call runs in a worker thread under a
RequestScope whose deadline is request_timeout_seconds. If the awaiting
request task is cancelled, the scope is cancelled too: in-flight remote
calls are abandoned and their HTTP clients closed, and nothing is
persisted afterwards.

Entry point for production: uvicorn pubstore.asgi:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar
from urllib.parse import quote

import structlog
from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse

from pubstore.config import AppSettings
from pubstore.domain.models import (
    AcquiredLicense,
    BookshelfEntry,
    LicenseStatus,
    Publication,
    User,
)
from pubstore.domain.rights import rights_from_params
from pubstore.domain.scope import RequestScope
from pubstore.main import Components, configure_structlog, create_components
from pubstore.railway import ErrorCode, Result
from pubstore.railway.http_support import build_error_response

LCP_LICENSE_TYPE = "application/vnd.readium.lcp.license.v1.0+json"

T = TypeVar("T")

# ─────────────────────── Global State ───────────────────────
# Set during app startup.

_components: Components | None = None
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: load settings and build the components. Shutdown: close the pool."""
    global _components

    settings = AppSettings()
    configure_structlog(settings.log_level)
    log.info("asgi.startup", lcp_version=settings.lcp_server.version)
    _components = create_components(settings)
    log.info("asgi.startup_complete")

    yield

    log.info("asgi.shutdown")
    if _components is not None:
        _components.pool.close()
        _components = None
    log.info("asgi.shutdown_complete")


app = FastAPI(
    title="pubstore",
    description="Publication store — LCP license acquisition and entitlement tracking",
    version="0.1.0",
    lifespan=lifespan,
)


# ─────────────────────── Helpers ───────────────────────


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"status": "unavailable", "reason": "Service not initialized"},
    )


async def _in_scope(components: Components, call: Callable[[RequestScope], T]) -> T:
    """Run a blocking service call in a worker thread under a fresh RequestScope."""
    scope = RequestScope(timeout=components.settings.request_timeout_seconds)
    try:
        return await asyncio.to_thread(call, scope)
    except asyncio.CancelledError:
        scope.cancel()
        log.info("asgi.request_cancelled")
        raise


def _user_and_publication(
    components: Components, user_uuid: str, publication_uuid: str
) -> Result[tuple[User, Publication]]:
    return components.catalog.get_user(user_uuid).flat_map(
        lambda user: components.catalog.get_publication(publication_uuid).map(
            lambda publication: (user, publication)
        )
    )


def _content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "")
    if ascii_name == filename:
        return f"attachment; filename={filename}"
    fallback = ascii_name or "license.lcpl"
    return f"attachment; filename={fallback}; filename*=UTF-8''{quote(filename)}"


def _license_response(content: bytes, filename: str | None = None) -> Response:
    headers = {"Content-Disposition": _content_disposition(filename)} if filename else None
    return Response(content=content, media_type=LCP_LICENSE_TYPE, headers=headers)


def _status_json(status: LicenseStatus) -> dict[str, Any]:
    return {
        "status_code": status.status_code,
        "status_message": status.status_message,
        "end_potential_rights": _iso(status.end_potential_rights),
        "print_limit": status.print_limit,
        "copy_limit": status.copy_limit,
        "start": _iso(status.start),
        "end": _iso(status.end),
    }


def _entry_json(entry: BookshelfEntry) -> dict[str, Any]:
    transaction = entry.transaction
    publication = transaction.publication
    return {
        "transaction_id": transaction.id,
        "licence_id": transaction.licence_id,
        "created_at": _iso(transaction.created_at),
        "publication_id": publication.uuid if publication else None,
        "publication_title": publication.title if publication else None,
        "status": _status_json(entry.status),
    }


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


# ─────────────────────── Acquisition ───────────────────────


async def _acquire(
    user_uuid: str,
    publication_uuid: str,
    loan: bool,
    print_rights: str | None,
    copy_rights: str | None,
    start: str | None,
    end: str | None,
) -> Response:
    components = _components
    if components is None:
        return _unavailable()
    settings = components.settings

    def call(scope: RequestScope) -> Result[AcquiredLicense]:
        acquire = components.service.loan if loan else components.service.acquire
        return rights_from_params(
            print_rights,
            copy_rights,
            start,
            end,
            default_print=settings.rights.print_limit,
            default_copy=settings.rights.copy_limit,
        ).flat_map(
            lambda rights: _user_and_publication(
                components, user_uuid, publication_uuid
            ).flat_map(lambda pair: acquire(pair[0], pair[1], rights, scope))
        )

    result = await _in_scope(components, call)
    return result.either(
        on_success=lambda acquired: _license_response(acquired.content, acquired.filename),
        on_failure=build_error_response,
    )


@app.post("/users/{user_uuid}/publications/{publication_uuid}/license")
async def acquire_license(
    user_uuid: str,
    publication_uuid: str,
    print: str | None = None,  # noqa: A002
    copy: str | None = None,
    start: str | None = None,
    end: str | None = None,
) -> Response:
    """Buy: issue a new license and record the entitlement."""
    return await _acquire(user_uuid, publication_uuid, False, print, copy, start, end)


@app.post("/users/{user_uuid}/publications/{publication_uuid}/loan")
async def loan_license(
    user_uuid: str,
    publication_uuid: str,
    print: str | None = None,  # noqa: A002
    copy: str | None = None,
    start: str | None = None,
    end: str | None = None,
) -> Response:
    """Loan: like a purchase, bounded by the configured loan period."""
    return await _acquire(user_uuid, publication_uuid, True, print, copy, start, end)


# ─────────────────────── Entitlements ───────────────────────


@app.get("/users/{user_uuid}/publications/{publication_uuid}/license")
async def fresh_license(user_uuid: str, publication_uuid: str) -> Response:
    """
    Fresh license of the current entitlement.

    Returns 404 with error_code NOT_ENTITLED when nothing was acquired, so
    clients can send the user to the acquisition flow.
    """
    components = _components
    if components is None:
        return _unavailable()

    def call(scope: RequestScope) -> Result[AcquiredLicense]:
        return _user_and_publication(components, user_uuid, publication_uuid).flat_map(
            lambda pair: components.service.download_license(pair[0], pair[1], scope)
        )

    result = await _in_scope(components, call)
    return result.either(
        on_success=lambda download: _license_response(download.content, download.filename),
        on_failure=build_error_response,
    )


@app.get("/users/{user_uuid}/publications/{publication_uuid}/status")
async def license_status(user_uuid: str, publication_uuid: str) -> Response:
    """Current status; the zero status when it cannot be determined."""
    components = _components
    if components is None:
        return _unavailable()

    def call(scope: RequestScope) -> Result[LicenseStatus]:
        return _user_and_publication(components, user_uuid, publication_uuid).flat_map(
            lambda pair: components.service.status_for(pair[0], pair[1], scope)
        )

    result = await _in_scope(components, call)
    return result.either(
        on_success=lambda status: JSONResponse(content=_status_json(status)),
        on_failure=build_error_response,
    )


@app.get("/users/{user_uuid}/bookshelf")
async def bookshelf(user_uuid: str) -> Response:
    components = _components
    if components is None:
        return _unavailable()

    def call(scope: RequestScope) -> Result[list[BookshelfEntry]]:
        return components.catalog.get_user(user_uuid).flat_map(
            lambda user: components.service.bookshelf(user, scope)
        )

    result = await _in_scope(components, call)
    return result.either(
        on_success=lambda entries: JSONResponse(
            content={"user_id": user_uuid, "entries": [_entry_json(e) for e in entries]}
        ),
        on_failure=build_error_response,
    )


# ─────────────────────── OPDS ───────────────────────


@app.get("/opds/publications/{publication_uuid}/acquisition")
async def opds_acquisition(publication_uuid: str, user: str | None = None) -> Response:
    """
    OPDS acquisition link for a publication.

    Anonymous callers get a borrow link to the publication; authenticated
    callers get a loan link, or the license link carrying the current
    availability and their hashed passphrase once they are entitled.
    """
    components = _components
    if components is None:
        return _unavailable()
    links = components.links
    service = components.service

    def for_user(pair: tuple[User, Publication], scope: RequestScope) -> Result[dict[str, Any]]:
        user_obj, publication = pair
        entitled = service.current_transaction(user_obj, publication)
        if entitled.is_failure() and entitled.error().code is ErrorCode.NOT_ENTITLED:
            return Result.success(links.borrow_link(user_obj, publication).to_json())
        return entitled.map(
            lambda transaction: links.license_link(
                user_obj, publication, service.current_status(transaction, scope)
            ).to_json()
        )

    def call(scope: RequestScope) -> Result[dict[str, Any]]:
        if user is None:
            return components.catalog.get_publication(publication_uuid).map(
                lambda publication: links.anonymous_link(publication).to_json()
            )
        return _user_and_publication(components, user, publication_uuid).flat_map(
            lambda pair: for_user(pair, scope)
        )

    result = await _in_scope(components, call)
    return result.either(
        on_success=lambda link: JSONResponse(content=link),
        on_failure=build_error_response,
    )


# ─────────────────────── Probes ───────────────────────


@app.get("/health")
async def health() -> JSONResponse:
    if _components is None:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return JSONResponse(status_code=200, content={"status": "healthy"})
