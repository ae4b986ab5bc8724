"""
Ports — Protocol-based interfaces for infrastructure adapters.

The entitlement service depends only on these contracts:

  LicenseServer          → issue / reissue licenses on the remote License Server
  LicenseParser          → raw license bytes → LicenseDocument
  StatusDocumentFetcher  → status URL → StatusDocument
  EntitlementStore       → Transaction persistence
  CatalogReader          → read-only User / Publication lookups

Adapters satisfy a port structurally; no inheritance is required.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pubstore.domain.license_request import LicenseRequest
from pubstore.domain.models import LicenseDocument, Publication, StatusDocument, Transaction, User
from pubstore.domain.scope import RequestScope
from pubstore.railway import Result


@runtime_checkable
class LicenseServer(Protocol):
    """
    Port: authenticated exchange with the remote License Server.

    `send` POSTs the request to its endpoint and returns the raw license
    document when the server answers with the request's expected status
    (201 for an issue, 200 for a fresh license).
    """

    def send(self, request: LicenseRequest, scope: RequestScope | None = None) -> Result[bytes]: ...


@runtime_checkable
class LicenseParser(Protocol):
    """Port: parse an LCP license document (v1 or v2 server response)."""

    def parse(self, raw_license: bytes) -> Result[LicenseDocument]: ...


@runtime_checkable
class StatusDocumentFetcher(Protocol):
    """Port: GET and parse a License Status Document from its opaque URL."""

    def fetch(
        self, status_url: str, scope: RequestScope | None = None
    ) -> Result[StatusDocument]: ...


@runtime_checkable
class EntitlementStore(Protocol):
    """
    Port: Transaction persistence.

    Lookups return the transaction with its user and publication preloaded,
    or fail with NOT_FOUND. "Current" means most recently created.
    """

    def create(self, transaction: Transaction) -> Result[Transaction]: ...

    def update(self, transaction: Transaction) -> Result[Transaction]: ...

    def get_by_licence_id(self, licence_id: str) -> Result[Transaction]: ...

    def get_by_user_and_publication(
        self, user_id: int, publication_id: int
    ) -> Result[Transaction]: ...

    def list_by_user(self, user_id: int) -> Result[list[Transaction]]: ...

    def delete(self, transaction: Transaction) -> Result[int]: ...


@runtime_checkable
class CatalogReader(Protocol):
    """Port: read-only access to catalog users and publications."""

    def get_user(self, user_uuid: str) -> Result[User]: ...

    def get_publication(self, publication_uuid: str) -> Result[Publication]: ...
