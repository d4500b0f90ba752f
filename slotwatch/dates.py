"""Free-text slot dates -> canonical datetimes.

Appointment pages print dates however they like ("03/15/2025", "2025-03-15",
"Mar 15, 2025", "Available"). The canonical value is half of the dedup key,
so the mapping must be deterministic for the same input and the same `now`.
The original text is kept in the appointment's details blob; this module is
allowed to be lossy.
"""

import logging
import re
from datetime import datetime

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

YEAR_GROUP = r"(\d{4})"
SHORT_GROUP = r"(\d{1,2})"

# Sıra önemli: ilk eşleşen desen kazanır.
DATE_PATTERNS = [
    re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})"),
    re.compile(r"(\d{1,2})-(\d{1,2})-(\d{4})"),
    re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})"),
    re.compile(r"(\d{1,2})/(\d{1,2})"),
]

_STRIP_RE = re.compile(r"[^\d/\-\s:]")


def _field_order(pattern: re.Pattern) -> str:
    """'ymd' when the 4-digit year group precedes the short groups in the pattern source."""
    source = pattern.pattern
    if YEAR_GROUP not in source:
        return "md"
    if source.index(YEAR_GROUP) < source.index(SHORT_GROUP):
        return "ymd"
    return "mdy"


def _from_match(match: re.Match, order: str, now: datetime) -> datetime:
    groups = [int(g) for g in match.groups()]
    if order == "ymd":
        year, month, day = groups
    elif order == "mdy":
        month, day, year = groups
    else:
        month, day = groups
        year = now.year
    return datetime(year, month, day)


def _generic_parse(text: str, now: datetime) -> datetime | None:
    # Eksik alanlar (yıl, saat) bugünün gece yarısından doldurulur
    default = now.replace(hour=0, minute=0, second=0, microsecond=0)
    try:
        parsed = date_parser.parse(text, fuzzy=True, default=default)
    except (ValueError, OverflowError):
        return None
    return parsed.replace(tzinfo=None)


def normalize_appointment_date(text: str | None, now: datetime | None = None) -> datetime:
    now = now or datetime.now()
    if not text or text.strip().lower() == "available":
        return now

    cleaned = _STRIP_RE.sub("", text)
    for pattern in DATE_PATTERNS:
        match = pattern.search(cleaned)
        if not match:
            continue
        try:
            return _from_match(match, _field_order(pattern), now)
        except ValueError:
            # 13/45 gibi takvimde olmayan değerler: sıradaki desene geç
            continue

    parsed = _generic_parse(text, now)
    if parsed is not None:
        return parsed

    logger.warning("[DATE] Could not parse date %r, using current time", text)
    return now
