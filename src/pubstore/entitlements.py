"""
Entitlement service — the single entry point for license acquisition.

Domain layer — orchestrates the ports; all I/O is injected.

Acquire (buy or loan):

  issue_request(version, user, publication, rights)
    → license_server.send(request)          # 201 + raw license
      → parser.parse(raw)                    # LicenseDocument
        → scope still live?                  # no write after cancellation
          → store.create(transaction)        # persisted entitlement

Any failure before store.create leaves the pair without an entitlement.

Fresh license:

  store.get_by_user_and_publication  (NOT_ENTITLED when absent, no network)
    → fresh_request(version, credentials)
      → license_server.send(request)         # 200 + raw license
        → parser.parse(raw)                  # download_license: filename

Current status:

  fresh license → parse → status link → status fetcher
  Every failure, a missing status link included, degrades to the zero
  LicenseStatus(): status display never blocks license delivery.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import structlog

from pubstore.domain.license_request import (
    BASIC_PROFILE,
    ProtocolVersion,
    fresh_request,
    issue_request,
)
from pubstore.domain.models import (
    AcquiredLicense,
    BookshelfEntry,
    LicenceCredentials,
    LicenseDocument,
    LicenseStatus,
    Publication,
    Rights,
    Transaction,
    User,
)
from pubstore.domain.ports import (
    EntitlementStore,
    LicenseParser,
    LicenseServer,
    StatusDocumentFetcher,
)
from pubstore.domain.rights import loan_rights
from pubstore.domain.scope import RequestScope
from pubstore.railway import ErrorCode, FailureDescription, Result

log = structlog.get_logger()


def _not_entitled(user: User, publication: Publication) -> FailureDescription:
    return FailureDescription(
        ErrorCode.NOT_ENTITLED,
        "No license has been acquired for this publication",
        details={"user_id": user.uuid, "publication_id": publication.uuid},
    )


class EntitlementService:
    """
    Acquire licenses and track entitlements.

    Holds the ports and the License Server protocol version; one instance
    is shared by every request handler.
    """

    def __init__(
        self,
        license_server: LicenseServer,
        parser: LicenseParser,
        status_fetcher: StatusDocumentFetcher,
        store: EntitlementStore,
        version: ProtocolVersion = "v2",
        profile: str = BASIC_PROFILE,
        loan_days: int = 7,
        bookshelf_workers: int = 4,
    ) -> None:
        self._license_server = license_server
        self._parser = parser
        self._status_fetcher = status_fetcher
        self._store = store
        self._version = version
        self._profile = profile
        self._loan_days = loan_days
        self._bookshelf_workers = max(1, bookshelf_workers)

    # ─────────────────────── Acquisition ───────────────────────

    def acquire(
        self,
        user: User,
        publication: Publication,
        rights: Rights,
        scope: RequestScope | None = None,
    ) -> Result[AcquiredLicense]:
        """
        Obtain a new license and record the entitlement.

        On success exactly one transaction is created, carrying the id of
        the issued license. On failure nothing is written and the failure
        details name the publication.
        """
        scope = scope or RequestScope()
        log.info(
            "entitlement.acquire_started",
            user_id=user.uuid,
            publication_id=publication.uuid,
            version=self._version,
        )
        return (
            issue_request(self._version, user, publication, rights, self._profile)
            .flat_map(lambda request: self._license_server.send(request, scope))
            .flat_map(lambda raw: self._parser.parse(raw).map(lambda document: (document, raw)))
            .flat_map(lambda issued: self._persist(user, publication, issued[0], issued[1], scope))
            .map_failure(lambda err: err.with_details(publication_id=publication.uuid))
            .peek_failure(
                lambda err: log.warning(
                    "entitlement.acquire_failed",
                    user_id=user.uuid,
                    publication_id=publication.uuid,
                    error_code=err.code.value,
                    reason=err.message,
                )
            )
        )

    def loan(
        self,
        user: User,
        publication: Publication,
        rights: Rights,
        scope: RequestScope | None = None,
    ) -> Result[AcquiredLicense]:
        """Acquire with a validity window closing after the configured loan period."""
        return self.acquire(user, publication, loan_rights(rights, self._loan_days), scope)

    def _persist(
        self,
        user: User,
        publication: Publication,
        document: LicenseDocument,
        raw: bytes,
        scope: RequestScope,
    ) -> Result[AcquiredLicense]:
        if scope.is_cancelled():
            log.warning(
                "entitlement.cancelled_before_persist",
                publication_id=publication.uuid,
                licence_id=document.id,
            )
            return Result.failure(
                ErrorCode.CANCELLED,
                "Request cancelled, the issued license was not recorded",
                licence_id=document.id,
            )
        transaction = Transaction(
            user_id=user.id,
            publication_id=publication.id,
            licence_id=document.id,
            user=user,
            publication=publication,
        )
        return (
            self._store.create(transaction)
            .peek(
                lambda saved: log.info(
                    "entitlement.persisted",
                    transaction_id=saved.id,
                    publication_id=publication.uuid,
                    licence_id=saved.licence_id,
                )
            )
            .map(lambda saved: AcquiredLicense(transaction=saved, document=document, content=raw))
        )

    # ─────────────────────── Fresh license ───────────────────────

    def current_transaction(self, user: User, publication: Publication) -> Result[Transaction]:
        """Most recent entitlement for the pair; NOT_ENTITLED when there is none."""
        return self._store.get_by_user_and_publication(user.id, publication.id).map_failure(
            lambda err: _not_entitled(user, publication) if err.code is ErrorCode.NOT_FOUND else err
        )

    def fresh_license(
        self,
        user: User,
        publication: Publication,
        scope: RequestScope | None = None,
    ) -> Result[bytes]:
        """
        Reissue the license of the current entitlement, for download.

        Fails with NOT_ENTITLED (and performs no network call) when the
        pair has no transaction. The transaction is not modified.
        """
        return self.current_transaction(user, publication).flat_map(
            lambda transaction: self.fresh_license_for(transaction, scope)
        )

    def download_license(
        self,
        user: User,
        publication: Publication,
        scope: RequestScope | None = None,
    ) -> Result[AcquiredLicense]:
        """
        Fresh license of the current entitlement, parsed for delivery.

        Same contract as fresh_license; the parsed document gives the
        download its filename.
        """
        return self.current_transaction(user, publication).flat_map(
            lambda transaction: self.fresh_license_for(transaction, scope).flat_map(
                lambda raw: self._parser.parse(raw).map(
                    lambda document: AcquiredLicense(
                        transaction=transaction, document=document, content=raw
                    )
                )
            )
        )

    def fresh_license_for(
        self,
        transaction: Transaction,
        scope: RequestScope | None = None,
    ) -> Result[bytes]:
        credentials = LicenceCredentials.from_transaction(transaction)
        if credentials is None:
            return Result.failure(
                ErrorCode.NOT_FOUND,
                "Transaction was loaded without its user and publication",
                transaction_id=transaction.id,
            )
        return fresh_request(self._version, credentials, self._profile).flat_map(
            lambda request: self._license_server.send(request, scope)
        )

    # ─────────────────────── Status ───────────────────────

    def current_status(
        self,
        transaction: Transaction,
        scope: RequestScope | None = None,
    ) -> LicenseStatus:
        """
        Status of an entitlement, best effort.

        Never fails. Whatever goes wrong (no fresh license, a license without
        a status link, an unreachable or malformed status document) the
        result is the zero LicenseStatus(), rights included.
        """
        licensed = self.fresh_license_for(transaction, scope).flat_map(self._parser.parse)
        if licensed.is_failure():
            _log_unknown_status(transaction, licensed.error())
            return LicenseStatus()

        document = licensed.value()
        if not document.status_url:
            log.info("status.no_status_link", licence_id=transaction.licence_id)
            return LicenseStatus()

        return (
            self._status_fetcher.fetch(document.status_url, scope)
            .map(lambda status_doc: LicenseStatus.from_documents(document, status_doc))
            .peek_failure(lambda err: _log_unknown_status(transaction, err))
            .get_or_else(LicenseStatus())
        )

    def status_for(
        self,
        user: User,
        publication: Publication,
        scope: RequestScope | None = None,
    ) -> Result[LicenseStatus]:
        """Status of the pair's current entitlement; NOT_ENTITLED when there is none."""
        return self.current_transaction(user, publication).map(
            lambda transaction: self.current_status(transaction, scope)
        )

    def bookshelf(
        self, user: User, scope: RequestScope | None = None
    ) -> Result[list[BookshelfEntry]]:
        """
        The user's entitlements, newest first, each with its current status.

        Status fetches are independent reads and run on a bounded pool.
        """
        return self._store.list_by_user(user.id).map(
            lambda transactions: self._with_statuses(transactions, scope)
        )

    def _with_statuses(
        self, transactions: list[Transaction], scope: RequestScope | None
    ) -> list[BookshelfEntry]:
        if not transactions:
            return []
        workers = min(self._bookshelf_workers, len(transactions))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bookshelf") as pool:
            statuses = list(pool.map(lambda t: self.current_status(t, scope), transactions))
        return [
            BookshelfEntry(transaction=transaction, status=status)
            for transaction, status in zip(transactions, statuses, strict=True)
        ]

    # ─────────────────────── Lookups ───────────────────────

    def transaction_by_licence(self, licence_id: str) -> Result[Transaction]:
        return self._store.get_by_licence_id(licence_id)

    def transactions_of(self, user: User) -> Result[list[Transaction]]:
        return self._store.list_by_user(user.id)

    def relink(self, transaction: Transaction, licence_id: str) -> Result[Transaction]:
        """Point a transaction at the id under which the License Server reissued it."""
        return self._store.update(replace(transaction, licence_id=licence_id))

    def delete_transaction(self, transaction: Transaction) -> Result[int]:
        """Hard delete of the local record; the remote license is not revoked."""
        return self._store.delete(transaction)


def _log_unknown_status(transaction: Transaction, err: FailureDescription) -> None:
    log.warning(
        "status.unavailable",
        transaction_id=transaction.id,
        licence_id=transaction.licence_id,
        error_code=err.code.value,
        reason=err.message,
    )
