"""
License request builder — version-correct payloads for the License Server.

Two wire formats exist:

  LegacyRequest  (v1)  POST {base}/contents/{publication_id}/license
                       nested `user`, `encryption.user_key` and `rights`
  CurrentRequest (v2)  POST {base}/licenses
                       flat object with `publication_id`, `user_id`, ...

Both variants expose build() → JSON bytes and endpoint(base_url), so the
License Server client never compares version strings itself. Fresh-license
requests (POST {base}/licenses/{licence_id}) are built by the same variants
from LicenceCredentials.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol, TypeAlias

from pubstore.domain.models import LicenceCredentials, Publication, Rights, User
from pubstore.railway import ErrorCode, FailureDescription, Result

ProtocolVersion: TypeAlias = Literal["v1", "v2"]

PROVIDER_URL = "https://edrlab.org"
BASIC_PROFILE = "http://readium.org/lcp/basic-profile"
ENCRYPTED_FIELDS = ("email",)


def hash_passphrase(passphrase: str) -> str:
    """SHA-256 hex digest of an LCP passphrase, stored once on the user record."""
    return hashlib.sha256(passphrase.encode("utf-8")).hexdigest()


class LicenseRequest(Protocol):
    """A request that knows its own wire shape and target URL."""

    expected_status: int

    def build(self) -> Result[bytes]: ...

    def endpoint(self, base_url: str) -> str: ...


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def _serialize(payload: dict[str, Any]) -> Result[bytes]:
    return Result.from_computation(
        lambda: json.dumps(payload).encode("utf-8"),
        ErrorCode.BUILD_ERROR,
        "License request could not be serialized",
    )


@dataclass(frozen=True, slots=True)
class LegacyRequest:
    """License Server v1 request (issue or fresh license)."""

    publication_id: str
    user_id: str
    user_email: str
    text_hint: str
    pass_hash: str = field(repr=False)
    rights: Rights | None = None
    licence_id: str | None = None

    @property
    def expected_status(self) -> int:
        return 201 if self.licence_id is None else 200

    def endpoint(self, base_url: str) -> str:
        base = base_url.rstrip("/")
        if self.licence_id is not None:
            return f"{base}/licenses/{self.licence_id}"
        return f"{base}/contents/{self.publication_id}/license"

    def build(self) -> Result[bytes]:
        user: dict[str, Any] = {"email": self.user_email, "encrypted": list(ENCRYPTED_FIELDS)}
        payload: dict[str, Any] = {
            "user": user,
            "encryption": {
                "user_key": {"text_hint": self.text_hint, "hex_value": self.pass_hash},
            },
        }
        # a fresh license is keyed by the licence id alone
        if self.licence_id is None:
            payload = {"provider": PROVIDER_URL, **payload, "user": {"id": self.user_id, **user}}
        if self.rights is not None:
            payload["rights"] = _drop_none(
                {
                    "print": self.rights.print,
                    "copy": self.rights.copy,
                    "start": _timestamp(self.rights.start),
                    "end": _timestamp(self.rights.end),
                }
            )
        return _serialize(payload)


@dataclass(frozen=True, slots=True)
class CurrentRequest:
    """License Server v2 request (issue or fresh license)."""

    publication_id: str
    user_id: str
    user_email: str
    text_hint: str
    pass_hash: str = field(repr=False)
    profile: str = BASIC_PROFILE
    user_name: str = ""
    rights: Rights | None = None
    licence_id: str | None = None

    @property
    def expected_status(self) -> int:
        return 201 if self.licence_id is None else 200

    def endpoint(self, base_url: str) -> str:
        base = base_url.rstrip("/")
        if self.licence_id is not None:
            return f"{base}/licenses/{self.licence_id}"
        return f"{base}/licenses"

    def build(self) -> Result[bytes]:
        rights = self.rights or Rights()
        payload = _drop_none(
            {
                "publication_id": self.publication_id,
                "user_id": self.user_id or None,
                "user_name": self.user_name or None,
                "user_email": self.user_email or None,
                "user_encrypted": list(ENCRYPTED_FIELDS),
                "start": _timestamp(rights.start),
                "end": _timestamp(rights.end),
                "copy": rights.copy,
                "print": rights.print,
                "profile": self.profile,
                "text_hint": self.text_hint,
                "pass_hash": self.pass_hash,
            }
        )
        return _serialize(payload)


def _check_key_material(text_hint: str, pass_hash: str, profile: str) -> FailureDescription | None:
    missing = [
        name
        for name, value in (
            ("text_hint", text_hint),
            ("pass_hash", pass_hash),
            ("profile", profile),
        )
        if not value
    ]
    if missing:
        return FailureDescription(
            ErrorCode.BUILD_ERROR,
            "License request is missing user key material: " + ", ".join(missing),
        )
    return None


def _check_rights(rights: Rights) -> FailureDescription | None:
    for name, value in (("print", rights.print), ("copy", rights.copy)):
        if value is not None and value < 0:
            return FailureDescription(
                ErrorCode.BUILD_ERROR, f"Rights {name} must be non-negative or omitted, got {value}"
            )
    return None


def issue_request(
    version: ProtocolVersion,
    user: User,
    publication: Publication,
    rights: Rights,
    profile: str = BASIC_PROFILE,
) -> Result[LicenseRequest]:
    """
    Select the wire variant for `version` and build an issue request.

    Fails with BUILD_ERROR when the user has no text hint or passphrase hash,
    or when print/copy are negative (callers normalize void values to None).
    """
    invalid = _check_key_material(user.text_hint, user.hashed_passphrase, profile) or _check_rights(
        rights
    )
    if invalid is not None:
        return Result.failure_from(invalid.with_details(publication_id=publication.uuid))

    request: LicenseRequest
    if version == "v1":
        request = LegacyRequest(
            publication_id=publication.uuid,
            user_id=user.uuid,
            user_email=user.email,
            text_hint=user.text_hint,
            pass_hash=user.hashed_passphrase,
            rights=rights,
        )
    else:
        request = CurrentRequest(
            publication_id=publication.uuid,
            user_id=user.uuid,
            user_email=user.email,
            user_name=user.name,
            text_hint=user.text_hint,
            pass_hash=user.hashed_passphrase,
            profile=profile,
            rights=rights,
        )
    return Result.success(request)


def fresh_request(
    version: ProtocolVersion,
    credentials: LicenceCredentials,
    profile: str = BASIC_PROFILE,
) -> Result[LicenseRequest]:
    """Build a fresh-license request for an already issued licence id."""
    invalid = _check_key_material(credentials.text_hint, credentials.pass_hash, profile)
    if invalid is not None:
        return Result.failure_from(invalid.with_details(licence_id=credentials.licence_id))

    request: LicenseRequest
    if version == "v1":
        request = LegacyRequest(
            publication_id=credentials.publication_uuid,
            user_id=credentials.user_uuid,
            user_email=credentials.user_email,
            text_hint=credentials.text_hint,
            pass_hash=credentials.pass_hash,
            licence_id=credentials.licence_id,
        )
    else:
        request = CurrentRequest(
            publication_id=credentials.publication_uuid,
            user_id=credentials.user_uuid,
            user_email=credentials.user_email,
            text_hint=credentials.text_hint,
            pass_hash=credentials.pass_hash,
            profile=profile,
            licence_id=credentials.licence_id,
        )
    return Result.success(request)
