"""
License document parser — LCP license JSON → LicenseDocument.

Adapter layer — implements the LicenseParser port using pydantic models.

The schema below is a superset of what License Server v1 and v2 return:
every field is optional and may be null, unknown fields are ignored, and
fields a version does not send come out empty or zero. Only the fields the
store needs are modelled (id, links, rights); encryption and signature
blocks are skipped.

Link extraction:
  rel == "publication" → title used for the download filename
  rel == "status"      → href of the License Status Document (opaque URL)
"""

from __future__ import annotations

from datetime import datetime

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pubstore.domain.models import LicenseDocument
from pubstore.railway import ErrorCode, Result

log = structlog.get_logger()


class _Link(BaseModel):
    model_config = ConfigDict(extra="ignore")

    rel: str | None = None
    href: str | None = None
    type: str | None = None
    title: str | None = None


class _Rights(BaseModel):
    model_config = ConfigDict(extra="ignore")

    print: int | None = None
    copy_: int | None = Field(default=None, alias="copy")
    start: datetime | None = None
    end: datetime | None = None


class _License(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    provider: str | None = None
    issued: datetime | None = None
    links: list[_Link | None] | None = None
    rights: _Rights | None = None

    def link(self, rel: str) -> _Link | None:
        return next((link for link in self.links or [] if link and link.rel == rel), None)


class JsonLicenseParser:
    """
    Parse License Server responses into LicenseDocument values.

    Implements the LicenseParser port. Malformed JSON and documents without
    an `id` fail with PARSE_ERROR; the raw body is never logged.
    """

    def parse(self, raw_license: bytes) -> Result[LicenseDocument]:
        try:
            lcpl = _License.model_validate_json(raw_license)
        except ValidationError as e:
            log.error("license.parse_failed", size_bytes=len(raw_license), errors=e.error_count())
            return Result.failure(ErrorCode.PARSE_ERROR, "License document is malformed", e)

        if not lcpl.id:
            log.error("license.parse_failed", size_bytes=len(raw_license), reason="missing id")
            return Result.failure(ErrorCode.PARSE_ERROR, "License document has no id")

        publication = lcpl.link("publication")
        status = lcpl.link("status")
        rights = lcpl.rights or _Rights()
        document = LicenseDocument(
            id=lcpl.id,
            publication_title=(publication and publication.title) or "",
            status_url=(status and status.href) or "",
            print=rights.print or 0,
            copy=rights.copy_ or 0,
            start=rights.start,
            end=rights.end,
        )
        log.debug(
            "license.parsed",
            licence_id=document.id,
            has_status_link=bool(document.status_url),
        )
        return Result.success(document)
