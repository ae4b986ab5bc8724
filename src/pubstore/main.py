"""
Application entry point — wires dependencies and starts the HTTP server.

Composition root: creates the concrete adapters and injects them into the
EntitlementService. This is the only place where concrete adapter classes
are instantiated; everything else depends on the Protocol ports.

Responsibilities:
  1. Configure structlog
  2. Load and validate configuration from the environment
  3. Create the connection pool and the adapters
  4. Build the EntitlementService and the OPDS link builder
  5. Serve the ASGI application with uvicorn
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass

import structlog
from psycopg_pool import ConnectionPool

from pubstore.adapters.license_parser import JsonLicenseParser
from pubstore.adapters.license_server import HttpLicenseServer
from pubstore.adapters.repository import (
    PsycopgCatalogReader,
    PsycopgEntitlementStore,
    create_pool,
)
from pubstore.adapters.status_client import HttpStatusDocumentClient
from pubstore.config import AppSettings
from pubstore.entitlements import EntitlementService
from pubstore.opds import OpdsLinkBuilder


def configure_structlog(log_level: str = "INFO") -> None:
    """Console-rendered structured logging, filtered at `log_level`."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass(frozen=True, slots=True)
class Components:
    """Everything the HTTP layer needs, built once per process."""

    service: EntitlementService
    catalog: PsycopgCatalogReader
    links: OpdsLinkBuilder
    settings: AppSettings
    pool: ConnectionPool


def create_components(settings: AppSettings) -> Components:
    """Instantiate all concrete adapters from application settings."""
    pool = create_pool(
        settings.database.get_dsn(),
        max_size=settings.database.pool_size,
        timeout=settings.http_timeout_seconds,
    )
    store = PsycopgEntitlementStore(pool)
    store.ensure_schema().peek_failure(
        lambda err: structlog.get_logger().warning("app.schema_not_ensured", reason=err.message)
    )
    service = EntitlementService(
        license_server=HttpLicenseServer(
            base_url=settings.lcp_server.url,
            username=settings.lcp_server.username,
            password=settings.lcp_server.password.get_secret_value(),
            timeout=settings.http_timeout_seconds,
        ),
        parser=JsonLicenseParser(),
        status_fetcher=HttpStatusDocumentClient(
            timeout=settings.http_timeout_seconds,
            attempts=settings.status_retry_attempts,
        ),
        store=store,
        version=settings.lcp_server.version,
        profile=settings.lcp_server.profile,
        loan_days=settings.rights.loan_days,
        bookshelf_workers=settings.bookshelf_workers,
    )
    return Components(
        service=service,
        catalog=PsycopgCatalogReader(pool),
        links=OpdsLinkBuilder(settings.public_base_url),
        settings=settings,
        pool=pool,
    )


def main() -> None:
    """Validate configuration and serve the API."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.info(
        "app.starting",
        version="0.1.0",
        port=settings.port,
        lcp_server=settings.lcp_server.url,
        lcp_version=settings.lcp_server.version,
    )

    import uvicorn

    uvicorn.run("pubstore.asgi:app", host="0.0.0.0", port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
