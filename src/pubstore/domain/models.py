"""
Domain models — immutable value objects for entitlements and LCP documents.

Transaction is the only persisted record owned by this subsystem; User and
Publication are read-only references to catalog rows. LicenseDocument and
StatusDocument are parsed from the remote License Server and LSD server.

All models are frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class User:
    """
    Catalog user, as far as license acquisition needs it.

    `hashed_passphrase` is the SHA-256 hex digest of the user's LCP
    passphrase, computed once when the user was created or updated.
    """

    id: int
    uuid: str
    email: str
    name: str = ""
    text_hint: str = ""
    hashed_passphrase: str = field(default="", repr=False)


@dataclass(frozen=True, slots=True)
class Publication:
    """Catalog publication reference."""

    id: int
    uuid: str
    title: str = ""


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    Persistent entitlement binding a user, a publication and a remote license id.

    `user` and `publication` are populated when the store preloads them.
    """

    user_id: int
    publication_id: int
    licence_id: str
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    user: User | None = None
    publication: Publication | None = None


@dataclass(frozen=True, slots=True)
class Rights:
    """
    Rights constraints for a license request.

    None means unconstrained: the field is left out of the request.
    """

    print: int | None = None
    copy: int | None = None
    start: datetime | None = None
    end: datetime | None = None


@dataclass(frozen=True, slots=True)
class LicenceCredentials:
    """
    The minimal tuple needed to ask the License Server for a fresh license.

    Built from a transaction whose user and publication were preloaded.
    """

    licence_id: str
    publication_uuid: str
    user_uuid: str
    user_email: str
    text_hint: str
    pass_hash: str = field(repr=False)

    @staticmethod
    def from_transaction(transaction: Transaction) -> LicenceCredentials | None:
        """None when the transaction was loaded without its user and publication."""
        if transaction.user is None or transaction.publication is None:
            return None
        return LicenceCredentials(
            licence_id=transaction.licence_id,
            publication_uuid=transaction.publication.uuid,
            user_uuid=transaction.user.uuid,
            user_email=transaction.user.email,
            text_hint=transaction.user.text_hint,
            pass_hash=transaction.user.hashed_passphrase,
        )


@dataclass(frozen=True, slots=True)
class LicenseDocument:
    """
    Semantic fields of an LCP license document.

    `status_url` is the href of the `links` entry with rel "status", used
    as-is; empty when the license carries no such link.
    """

    id: str
    publication_title: str = ""
    status_url: str = ""
    print: int = 0
    copy: int = 0
    start: datetime | None = None
    end: datetime | None = None


@dataclass(frozen=True, slots=True)
class StatusDocument:
    """Fields of a License Status Document. The zero value means "unknown"."""

    status: str = ""
    message: str = ""
    potential_rights_end: datetime | None = None


@dataclass(frozen=True, slots=True)
class LicenseStatus:
    """
    Status of an entitlement as shown on a bookshelf or OPDS feed.

    Combines the status document with the rights carried by the fresh
    license. LicenseStatus() is the "status unknown" value.
    """

    status_code: str = ""
    status_message: str = ""
    end_potential_rights: datetime | None = None
    print_limit: int = 0
    copy_limit: int = 0
    start: datetime | None = None
    end: datetime | None = None

    @staticmethod
    def from_documents(license_doc: LicenseDocument, status_doc: StatusDocument) -> LicenseStatus:
        return LicenseStatus(
            status_code=status_doc.status,
            status_message=status_doc.message,
            end_potential_rights=status_doc.potential_rights_end,
            print_limit=license_doc.print,
            copy_limit=license_doc.copy,
            start=license_doc.start,
            end=license_doc.end,
        )

    @property
    def is_known(self) -> bool:
        return bool(self.status_code)


@dataclass(frozen=True, slots=True)
class AcquiredLicense:
    """Outcome of a successful acquisition: the persisted entitlement and the license."""

    transaction: Transaction
    document: LicenseDocument
    content: bytes = field(repr=False)

    @property
    def filename(self) -> str:
        title = self.document.publication_title or self.document.id
        return f"{title}.lcpl"


@dataclass(frozen=True, slots=True)
class BookshelfEntry:
    transaction: Transaction
    status: LicenseStatus
