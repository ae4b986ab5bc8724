"""
OPDS acquisition links for LCP-protected publications.

Three link shapes, depending on who asks:

  anonymous              → borrow link to the OPDS publication (authentication first)
  authenticated, no loan → borrow link to the loan endpoint, state "available"
  authenticated, entitled → acquisition link to the fresh license, with
                            availability = current status + validity window
                            and the user's lcp_hashed_passphrase

The public base URL is injected once at construction.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from pubstore.domain.models import LicenseStatus, Publication, User

LCP_LICENSE_TYPE = "application/vnd.readium.lcp.license.v1.0+json"
EPUB_TYPE = "application/epub+zip"
OPDS_PUBLICATION_TYPE = "application/opds-publication+json"
REL_ACQUISITION = "http://opds-spec.org/acquisition"
REL_BORROW = "http://opds-spec.org/acquisition/borrow"


class Availability(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state: str
    since: datetime | None = None
    until: datetime | None = None


class Properties(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    availability: Availability | None = None
    indirect_acquisition: list[Link] = Field(default_factory=list, alias="indirectAcquisition")
    lcp_hashed_passphrase: str | None = None


class Link(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    href: str | None = None
    type: str
    rel: str | None = None
    properties: Properties | None = None
    children: list[Link] = Field(default_factory=list, alias="child")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude_defaults=True)


Properties.model_rebuild()
Link.model_rebuild()


def _lcp_epub() -> list[Link]:
    return [Link(type=LCP_LICENSE_TYPE, children=[Link(type=EPUB_TYPE)])]


class OpdsLinkBuilder:
    """Build acquisition links rooted at the store's public base URL."""

    def __init__(self, public_base_url: str) -> None:
        self._base = public_base_url.rstrip("/")

    def anonymous_link(self, publication: Publication) -> Link:
        return Link(
            type=OPDS_PUBLICATION_TYPE,
            rel=REL_BORROW,
            href=f"{self._base}/opds/publications/{publication.uuid}",
            properties=Properties(
                availability=Availability(state="available"),
                indirect_acquisition=_lcp_epub(),
            ),
        )

    def borrow_link(self, user: User, publication: Publication) -> Link:
        return Link(
            type=LCP_LICENSE_TYPE,
            rel=REL_BORROW,
            href=f"{self._base}/users/{user.uuid}/publications/{publication.uuid}/loan",
            properties=Properties(
                availability=Availability(state="available"),
                indirect_acquisition=_lcp_epub(),
            ),
        )

    def license_link(self, user: User, publication: Publication, status: LicenseStatus) -> Link:
        return Link(
            type=LCP_LICENSE_TYPE,
            rel=REL_ACQUISITION,
            href=f"{self._base}/users/{user.uuid}/publications/{publication.uuid}/license",
            properties=Properties(
                availability=Availability(
                    state=status.status_code or "unknown",
                    since=status.start,
                    until=status.end,
                ),
                lcp_hashed_passphrase=user.hashed_passphrase or None,
                indirect_acquisition=_lcp_epub(),
            ),
        )
