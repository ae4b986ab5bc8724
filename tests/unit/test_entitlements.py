"""
Unit tests for the entitlement service — acquisition, fresh licenses, status.

Uses mock ports (fake adapters) to test the orchestration in isolation.

Test categories:
  - Success track: license issued, parsed and persisted
  - Failure at each stage: nothing is persisted, failure names the publication
  - Cancellation: an issued license is not recorded once the scope is cancelled
  - Not entitled: no network call at all
  - Download: the fresh license is parsed for its filename
  - Status: every failure degrades to the zero LicenseStatus()
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import UTC, datetime
from unittest.mock import MagicMock

import httpx
import pytest
import respx

from pubstore.adapters.license_parser import JsonLicenseParser
from pubstore.adapters.status_client import HttpStatusDocumentClient
from pubstore.domain.models import LicenseStatus, Rights, StatusDocument, Transaction
from pubstore.domain.scope import RequestScope
from pubstore.entitlements import EntitlementService
from pubstore.railway import ErrorCode, Result, ResultAssertions
from tests.conftest import (
    STATUS_URL,
    license_json,
    make_publication,
    make_transaction,
    make_user,
)

# ─────────────────────── Mock Port Factories ───────────────────────


def _make_license_server(*results: Result[bytes]) -> MagicMock:
    mock = MagicMock()
    mock.send.side_effect = list(results)
    return mock


def _make_status_fetcher(result: Result[StatusDocument]) -> MagicMock:
    mock = MagicMock()
    mock.fetch.return_value = result
    return mock


def _saving_store() -> MagicMock:
    """A store whose create() echoes the transaction with an id."""
    mock = MagicMock()
    mock.create.side_effect = lambda t: Result.success(
        replace(t, id=100, created_at=datetime(2026, 10, 19, tzinfo=UTC))
    )
    return mock


def _service(
    license_server: MagicMock,
    store: MagicMock | None = None,
    status_fetcher: MagicMock | None = None,
    version: str = "v2",
) -> EntitlementService:
    return EntitlementService(
        license_server=license_server,
        parser=JsonLicenseParser(),
        status_fetcher=status_fetcher or _make_status_fetcher(Result.success(StatusDocument())),
        store=store or _saving_store(),
        version=version,
        loan_days=7,
        bookshelf_workers=2,
    )


ACTIVE = StatusDocument(
    status="active",
    message="The license is active",
    potential_rights_end=datetime(2026, 12, 31, tzinfo=UTC),
)


# ─────────────────────── Acquisition ───────────────────────


class TestAcquireSuccess:
    """
    GIVEN the License Server issues license L1 and the store accepts the row
    WHEN acquire is called
    THEN exactly one transaction is created with licence_id L1.
    """

    def test_persists_transaction_with_licence_id(self) -> None:
        raw = license_json("L1")
        store = _saving_store()
        service = _service(_make_license_server(Result.success(raw)), store)

        acquired = ResultAssertions.assert_success(
            service.acquire(make_user(), make_publication(), Rights(print=10, copy=2000))
        )

        store.create.assert_called_once()
        created: Transaction = store.create.call_args.args[0]
        assert created.licence_id == "L1"
        assert created.user_id == 1
        assert created.publication_id == 10
        assert acquired.transaction.id == 100
        assert acquired.content == raw
        assert acquired.filename == "Moby Dick.lcpl"

    def test_sends_the_configured_version(self) -> None:
        server = _make_license_server(Result.success(license_json()))
        service = _service(server, version="v1")

        service.acquire(make_user(), make_publication(), Rights())

        request = server.send.call_args.args[0]
        assert request.endpoint("https://lcp") == "https://lcp/contents/p-1/license"

    def test_loan_bounds_the_validity_window(self) -> None:
        server = _make_license_server(Result.success(license_json()))
        service = _service(server)

        ResultAssertions.assert_success(service.loan(make_user(), make_publication(), Rights()))

        request = server.send.call_args.args[0]
        assert request.rights.start is not None
        assert (request.rights.end - request.rights.start).days == 7


class TestAcquireFailures:
    """
    GIVEN a failure at any stage of acquisition
    WHEN acquire is called
    THEN the failure is returned with the publication id and nothing is persisted.
    """

    @pytest.mark.parametrize(
        ("send_result", "code"),
        [
            (Result.failure(ErrorCode.REMOTE_CLIENT_ERROR, "no"), ErrorCode.REMOTE_CLIENT_ERROR),
            (Result.failure(ErrorCode.REMOTE_SERVER_ERROR, "down"), ErrorCode.REMOTE_SERVER_ERROR),
            (Result.failure(ErrorCode.TRANSPORT_ERROR, "timeout"), ErrorCode.TRANSPORT_ERROR),
            (Result.success(b"{broken"), ErrorCode.PARSE_ERROR),
        ],
    )
    def test_remote_failure_writes_nothing(
        self, send_result: Result[bytes], code: ErrorCode
    ) -> None:
        store = _saving_store()
        service = _service(_make_license_server(send_result), store)

        error = ResultAssertions.assert_failure(
            service.acquire(make_user(), make_publication(), Rights()), code
        )

        assert error.details["publication_id"] == "p-1"
        store.create.assert_not_called()

    def test_build_failure_never_calls_the_server(self) -> None:
        server = _make_license_server()
        store = _saving_store()
        service = _service(server, store)

        result = service.acquire(make_user(text_hint=""), make_publication(), Rights())

        ResultAssertions.assert_failure(result, ErrorCode.BUILD_ERROR)
        server.send.assert_not_called()
        store.create.assert_not_called()

    def test_database_failure_is_returned(self) -> None:
        store = MagicMock()
        store.create.return_value = Result.failure(ErrorCode.DATABASE_ERROR, "fk violation")
        service = _service(_make_license_server(Result.success(license_json())), store)

        error = ResultAssertions.assert_failure(
            service.acquire(make_user(), make_publication(), Rights()), ErrorCode.DATABASE_ERROR
        )
        assert error.details["publication_id"] == "p-1"


class TestAcquireCancellation:
    def test_cancellation_after_issue_records_nothing(self) -> None:
        """
        GIVEN the caller goes away while the License Server is issuing the license
        WHEN the license comes back
        THEN acquire fails with CANCELLED and no transaction is written.
        """
        scope = RequestScope()
        server = MagicMock()

        def issue_then_cancel(request, request_scope):
            request_scope.cancel()
            return Result.success(license_json("L1"))

        server.send.side_effect = issue_then_cancel
        store = _saving_store()
        service = _service(server, store)

        error = ResultAssertions.assert_failure(
            service.acquire(make_user(), make_publication(), Rights(), scope), ErrorCode.CANCELLED
        )

        assert error.details["licence_id"] == "L1"
        store.create.assert_not_called()

    def test_expired_deadline_counts_as_cancelled(self) -> None:
        store = _saving_store()
        service = _service(_make_license_server(Result.success(license_json())), store)

        result = service.acquire(make_user(), make_publication(), Rights(), RequestScope(timeout=0))

        ResultAssertions.assert_failure(result, ErrorCode.CANCELLED)
        store.create.assert_not_called()


# ─────────────────────── Fresh license ───────────────────────


class TestFreshLicense:
    def test_not_entitled_makes_no_network_call(self) -> None:
        """
        GIVEN no transaction for (user, publication)
        WHEN fresh_license is called
        THEN it fails with NOT_ENTITLED and the License Server is never contacted.
        """
        server = _make_license_server()
        store = MagicMock()
        store.get_by_user_and_publication.return_value = Result.failure(
            ErrorCode.NOT_FOUND, "none"
        )
        service = _service(server, store)

        error = ResultAssertions.assert_failure(
            service.fresh_license(make_user(), make_publication()), ErrorCode.NOT_ENTITLED
        )

        assert error.details == {"user_id": "u-1", "publication_id": "p-1"}
        server.send.assert_not_called()

    def test_database_error_is_not_masked(self) -> None:
        store = MagicMock()
        store.get_by_user_and_publication.return_value = Result.failure(
            ErrorCode.DATABASE_ERROR, "down"
        )
        service = _service(_make_license_server(), store)

        ResultAssertions.assert_failure(
            service.fresh_license(make_user(), make_publication()), ErrorCode.DATABASE_ERROR
        )

    def test_returns_fresh_bytes_for_the_current_transaction(self) -> None:
        raw = license_json("L1")
        server = _make_license_server(Result.success(raw))
        store = MagicMock()
        store.get_by_user_and_publication.return_value = Result.success(make_transaction("L1"))
        service = _service(server, store)

        content = ResultAssertions.assert_success(
            service.fresh_license(make_user(), make_publication())
        )

        assert content == raw
        request = server.send.call_args.args[0]
        assert request.endpoint("https://lcp") == "https://lcp/licenses/L1"
        store.update.assert_not_called()

    def test_transaction_without_references_is_not_found(self) -> None:
        service = _service(_make_license_server())
        bare = make_transaction("L1", user=None)

        ResultAssertions.assert_failure(service.fresh_license_for(bare), ErrorCode.NOT_FOUND)


class TestDownloadLicense:
    def test_fresh_license_is_parsed_for_its_filename(self) -> None:
        """
        GIVEN an entitlement whose fresh license names "Moby Dick"
        WHEN download_license is called
        THEN the raw bytes come back with the parsed document and a .lcpl filename.
        """
        raw = license_json("L1")
        store = MagicMock()
        store.get_by_user_and_publication.return_value = Result.success(make_transaction("L1"))
        service = _service(_make_license_server(Result.success(raw)), store)

        download = ResultAssertions.assert_success(
            service.download_license(make_user(), make_publication())
        )

        assert download.content == raw
        assert download.document.id == "L1"
        assert download.transaction.licence_id == "L1"
        assert download.filename == "Moby Dick.lcpl"
        store.create.assert_not_called()
        store.update.assert_not_called()

    def test_unparsable_fresh_license_is_a_parse_error(self) -> None:
        store = MagicMock()
        store.get_by_user_and_publication.return_value = Result.success(make_transaction("L1"))
        service = _service(_make_license_server(Result.success(b"{broken")), store)

        ResultAssertions.assert_failure(
            service.download_license(make_user(), make_publication()), ErrorCode.PARSE_ERROR
        )

    def test_not_entitled_makes_no_network_call(self) -> None:
        server = _make_license_server()
        store = MagicMock()
        store.get_by_user_and_publication.return_value = Result.failure(
            ErrorCode.NOT_FOUND, "none"
        )
        service = _service(server, store)

        ResultAssertions.assert_failure(
            service.download_license(make_user(), make_publication()), ErrorCode.NOT_ENTITLED
        )
        server.send.assert_not_called()


# ─────────────────────── Status ───────────────────────


class TestCurrentStatus:
    def test_combines_status_document_and_rights(self) -> None:
        """
        GIVEN transaction L1 whose fresh license links to http://lsd/L1/status
        WHEN current_status is called
        THEN the status fetcher receives exactly that URL and rights come from the license.
        """
        fetcher = _make_status_fetcher(Result.success(ACTIVE))
        service = _service(
            _make_license_server(Result.success(license_json("L1", print=20, copy=500))),
            status_fetcher=fetcher,
        )

        status = service.current_status(make_transaction("L1"))

        assert fetcher.fetch.call_args.args[0] == STATUS_URL
        assert status.status_code == "active"
        assert status.status_message == "The license is active"
        assert status.end_potential_rights == datetime(2026, 12, 31, tzinfo=UTC)
        assert status.print_limit == 20
        assert status.copy_limit == 500
        assert status.is_known

    def test_fresh_license_failure_is_unknown_status(self) -> None:
        fetcher = _make_status_fetcher(Result.success(ACTIVE))
        service = _service(
            _make_license_server(Result.failure(ErrorCode.REMOTE_SERVER_ERROR, "down")),
            status_fetcher=fetcher,
        )

        status = service.current_status(make_transaction("L1"))

        assert status == LicenseStatus()
        fetcher.fetch.assert_not_called()

    def test_status_fetch_failure_is_the_zero_status(self) -> None:
        """
        GIVEN a fresh license granting print 10 whose status document cannot be fetched
        WHEN current_status is called
        THEN the zero status is returned, without the rights of the license.
        """
        fetcher = _make_status_fetcher(Result.failure(ErrorCode.TRANSPORT_ERROR, "timeout"))
        service = _service(
            _make_license_server(Result.success(license_json("L1"))), status_fetcher=fetcher
        )

        status = service.current_status(make_transaction("L1"))

        assert status == LicenseStatus()
        assert not status.is_known

    @respx.mock
    def test_status_server_timeout_is_the_zero_status(self) -> None:
        route = respx.get(STATUS_URL).mock(side_effect=httpx.ReadTimeout("timed out"))
        service = EntitlementService(
            license_server=_make_license_server(Result.success(license_json("L1"))),
            parser=JsonLicenseParser(),
            status_fetcher=HttpStatusDocumentClient(timeout=5, attempts=1),
            store=_saving_store(),
        )

        status = service.current_status(make_transaction("L1"))

        assert status == LicenseStatus()
        assert route.call_count == 1

    def test_missing_status_link_is_the_zero_status(self) -> None:
        fetcher = _make_status_fetcher(Result.success(ACTIVE))
        service = _service(
            _make_license_server(Result.success(license_json("L1", status_url=None))),
            status_fetcher=fetcher,
        )

        status = service.current_status(make_transaction("L1"))

        assert status == LicenseStatus()
        fetcher.fetch.assert_not_called()

    def test_status_for_unentitled_pair(self) -> None:
        store = MagicMock()
        store.get_by_user_and_publication.return_value = Result.failure(ErrorCode.NOT_FOUND, "")
        service = _service(_make_license_server(), store)

        ResultAssertions.assert_failure(
            service.status_for(make_user(), make_publication()), ErrorCode.NOT_ENTITLED
        )


class TestBookshelf:
    def test_every_entry_gets_a_status_in_order(self) -> None:
        """
        GIVEN a user with three transactions, newest first
        WHEN bookshelf is called
        THEN entries keep the store order and each has its own status.
        """
        transactions = [make_transaction(f"L{n}", id=n) for n in (3, 2, 1)]
        store = MagicMock()
        store.list_by_user.return_value = Result.success(transactions)
        server = MagicMock()
        server.send.side_effect = lambda request, scope: Result.success(
            license_json(request.licence_id, print=int(request.licence_id[1:]))
        )
        service = _service(server, store, _make_status_fetcher(Result.success(ACTIVE)))

        entries = ResultAssertions.assert_success(service.bookshelf(make_user()))

        assert [e.transaction.licence_id for e in entries] == ["L3", "L2", "L1"]
        assert [e.status.print_limit for e in entries] == [3, 2, 1]
        assert all(e.status.status_code == "active" for e in entries)

    def test_status_fetches_run_concurrently(self) -> None:
        barrier = threading.Barrier(2, timeout=5)
        transactions = [make_transaction(f"L{n}", id=n) for n in (1, 2)]
        store = MagicMock()
        store.list_by_user.return_value = Result.success(transactions)
        server = MagicMock()

        def wait_for_peer(request, scope):
            barrier.wait()
            return Result.success(license_json(request.licence_id))

        server.send.side_effect = wait_for_peer
        service = _service(server, store)

        entries = ResultAssertions.assert_success(service.bookshelf(make_user()))

        assert len(entries) == 2

    def test_empty_bookshelf(self) -> None:
        store = MagicMock()
        store.list_by_user.return_value = Result.success([])
        service = _service(_make_license_server(), store)

        assert ResultAssertions.assert_success(service.bookshelf(make_user())) == []


class TestLookups:
    def test_relink_updates_the_licence_id(self) -> None:
        store = MagicMock()
        store.update.side_effect = lambda t: Result.success(t)
        service = _service(_make_license_server(), store)

        updated = ResultAssertions.assert_success(service.relink(make_transaction("L1"), "L1b"))

        assert updated.licence_id == "L1b"
        assert store.update.call_args.args[0].id == 100

    def test_delete_and_lookup_delegate_to_the_store(self) -> None:
        store = MagicMock()
        store.delete.return_value = Result.success(1)
        store.get_by_licence_id.return_value = Result.success(make_transaction("L7"))
        service = _service(_make_license_server(), store)

        assert ResultAssertions.assert_success(service.delete_transaction(make_transaction())) == 1
        found = ResultAssertions.assert_success(service.transaction_by_licence("L7"))
        assert found.licence_id == "L7"
