"""
Shared test fixtures and helpers for the pubstore test suite.

Provides catalog values (users, publications) and LCP license documents
shaped like the ones returned by License Server v1 and v2.
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from pubstore.domain.license_request import hash_passphrase
from pubstore.domain.models import Publication, Transaction, User

LCP_SERVER_URL = "https://lcp.example.com"
STATUS_URL = "http://lsd/L1/status"
PASSPHRASE = "correct horse battery staple"


def make_user(**overrides: Any) -> User:
    fields: dict[str, Any] = {
        "id": 1,
        "uuid": "u-1",
        "email": "reader@example.com",
        "name": "Reader",
        "text_hint": "the usual one",
        "hashed_passphrase": hash_passphrase(PASSPHRASE),
    }
    fields.update(overrides)
    return User(**fields)


def make_publication(**overrides: Any) -> Publication:
    fields: dict[str, Any] = {"id": 10, "uuid": "p-1", "title": "Moby Dick"}
    fields.update(overrides)
    return Publication(**fields)


def make_transaction(licence_id: str = "L1", **overrides: Any) -> Transaction:
    user = overrides.pop("user", make_user())
    publication = overrides.pop("publication", make_publication())
    fields: dict[str, Any] = {
        "id": 100,
        "user_id": user.id if user else 1,
        "publication_id": publication.id if publication else 10,
        "licence_id": licence_id,
        "user": user,
        "publication": publication,
    }
    fields.update(overrides)
    return Transaction(**fields)


def license_json(
    licence_id: str = "L1",
    status_url: str | None = STATUS_URL,
    title: str = "Moby Dick",
    **rights: Any,
) -> bytes:
    """A minimal LCP license document, as the License Server returns it."""
    links: list[dict[str, Any]] = [
        {
            "rel": "publication",
            "href": "https://cdn.example.com/p-1.epub",
            "type": "application/epub+zip",
            "title": title,
        },
        {"rel": "hint", "href": "https://store.example.com/hint"},
    ]
    if status_url is not None:
        links.append(
            {
                "rel": "status",
                "href": status_url,
                "type": "application/vnd.readium.license.status.v1.0+json",
            }
        )
    document = {
        "id": licence_id,
        "provider": "https://edrlab.org",
        "issued": "2026-10-01T09:00:00Z",
        "encryption": {"profile": "http://readium.org/lcp/basic-profile"},
        "links": links,
        "rights": {"print": 10, "copy": 2000, **rights},
    }
    return json.dumps(document).encode("utf-8")


@pytest.fixture()
def user() -> User:
    return make_user()


@pytest.fixture()
def publication() -> Publication:
    return make_publication()
