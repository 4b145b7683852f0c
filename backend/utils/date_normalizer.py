"""
Date Normalizer

Canonicalises free-form expense dates to YYYY-MM-DD before they reach the
downstream backend.

Supported formats:
- "2026-02-03" (ISO, passthrough)
- "today" / "yesterday"
- Anything dateutil understands, read day-first when ambiguous:
  "Feb 3rd, 2026", "Tuesday, 3 February 2026", "03/02/2026", "3-2-2026"
- Year-first numeric dates: "2026/02/03", "2026.02.03", "2026-2-3"
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

from dateutil.parser import parse as parse_date

from utils.exceptions import DateNormalizationError

ISO_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
YEAR_FIRST_PATTERN = re.compile(r'^\d{4}[/\-.]\d{1,2}')

SUPPORTED_FORMATS = "YYYY-MM-DD, Feb 3 2026, 3 Feb 2026, YYYY/MM/DD, DD/MM/YYYY, today, yesterday"


@dataclass(frozen=True)
class DateValidation:
    """Result of validate_and_normalize_date()."""
    valid: bool
    normalized: Optional[str] = None
    error: Optional[str] = None


def _unsupported(value: str) -> DateNormalizationError:
    return DateNormalizationError(
        f'Cannot normalize date "{value}" to YYYY-MM-DD format. '
        f'Supported formats: {SUPPORTED_FORMATS}'
    )


def normalize_date_to_iso(value: Union[str, date, datetime, None], today: Optional[date] = None) -> str:
    """
    Normalize a date to YYYY-MM-DD.

    Args:
        value: Date string in a supported format, or a date/datetime
        today: Reference date for relative dates and for components
            missing from the string (defaults to date.today())

    Returns:
        Date string in YYYY-MM-DD format

    Raises:
        DateNormalizationError: if the date cannot be normalized
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    if not value or not isinstance(value, str):
        raise DateNormalizationError("Date is required and must be a string")

    trimmed = value.strip()
    lowered = trimmed.lower()
    reference = today or date.today()

    if lowered == 'today':
        return reference.isoformat()
    if lowered == 'yesterday':
        return (reference - timedelta(days=1)).isoformat()

    if ISO_PATTERN.match(trimmed):
        try:
            return date.fromisoformat(trimmed).isoformat()
        except ValueError:
            raise _unsupported(value) from None

    # dateutil swaps month and day on year-first input when dayfirst is set
    year_first = bool(YEAR_FIRST_PATTERN.match(trimmed))
    try:
        parsed = parse_date(
            trimmed,
            dayfirst=not year_first,
            yearfirst=year_first,
            default=datetime.combine(reference, time.min)
        )
    except (ValueError, OverflowError):
        raise _unsupported(value) from None

    return parsed.date().isoformat()


def validate_and_normalize_date(value: Union[str, date, None], today: Optional[date] = None) -> DateValidation:
    """Non-raising variant of normalize_date_to_iso()."""
    try:
        return DateValidation(valid=True, normalized=normalize_date_to_iso(value, today))
    except DateNormalizationError as e:
        return DateValidation(valid=False, error=str(e))


def try_normalize_date(value: Union[str, date, None]) -> Optional[str]:
    """Canonical date, or None when absent or unparseable."""
    if value is None or value == "":
        return None
    result = validate_and_normalize_date(value)
    return result.normalized if result.valid else None
