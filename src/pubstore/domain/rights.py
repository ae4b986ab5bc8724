"""
Rights normalization — caller parameters to a Rights value.

Acquisition endpoints receive print/copy counts and a validity window as
optional query parameters:

  - missing or unparsable print/copy → the configured default limit
  - negative print/copy              → void, left out of the request
  - empty start/end                  → left out of the request
  - malformed start/end              → VALIDATION_ERROR
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pubstore.domain.models import Rights
from pubstore.railway import ErrorCode, Result


def _count(raw: str | None, default: int) -> int | None:
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return value if value >= 0 else None


def _parse_date(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def rights_from_params(
    print_param: str | None,
    copy_param: str | None,
    start_param: str | None,
    end_param: str | None,
    default_print: int,
    default_copy: int,
) -> Result[Rights]:
    dates: dict[str, datetime | None] = {}
    for name, raw in (("start", start_param), ("end", end_param)):
        if not raw:
            dates[name] = None
            continue
        try:
            dates[name] = _parse_date(raw)
        except ValueError as e:
            return Result.failure(
                ErrorCode.VALIDATION_ERROR, f"Invalid {name} date {raw!r}, expected RFC 3339", e
            )

    rights = Rights(
        print=_count(print_param, default_print),
        copy=_count(copy_param, default_copy),
        start=dates["start"],
        end=dates["end"],
    )
    if rights.start is not None and rights.end is not None and rights.end <= rights.start:
        return Result.failure(
            ErrorCode.VALIDATION_ERROR, "Rights end date must be after the start date"
        )
    return Result.success(rights)


def loan_rights(rights: Rights, loan_days: int, now: datetime | None = None) -> Rights:
    """Rights for a loan: starts now and ends after `loan_days` unless already bounded."""
    start = rights.start or now or datetime.now(UTC)
    end = rights.end or start + timedelta(days=loan_days)
    return Rights(print=rights.print, copy=rights.copy, start=start, end=end)
