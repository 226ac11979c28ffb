import datetime
import re
from typing import Optional, Tuple

from bs4 import BeautifulSoup


_ISO_DAY_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:$|[T ]\d{2}:\d{2})")


def parse_date_with_precision(raw: str) -> Tuple[str, str]:
    """
    Parse many human-readable date formats.
    Returns (yyyy-mm-dd or "", precision: day|month|year|unknown)
    """
    if not raw:
        return "", "unknown"

    s = raw.replace("\xa0", " ").strip()

    # Day-level formats
    fmts_day = [
        "%B %d, %Y",   # April 17, 2025
        "%b %d, %Y",   # Apr 17, 2025
        "%d %B %Y",    # 10 December 2021
        "%d %b %Y",    # 10 Dec 2021
        "%Y-%m-%d",    # 2025-08-11
    ]
    for fmt in fmts_day:
        try:
            dt = datetime.datetime.strptime(s, fmt).date()
            return dt.isoformat(), "day"
        except ValueError:
            pass

    # Month-year
    for fmt in ("%B %Y", "%b %Y"):
        try:
            dt = datetime.datetime.strptime(s, fmt)
            dt = dt.replace(day=1)
            return dt.date().isoformat(), "month"
        except ValueError:
            pass

    # Year only
    if s.isdigit() and len(s) == 4:
        try:
            dt = datetime.datetime.strptime(s, "%Y").replace(month=1, day=1)
            return dt.date().isoformat(), "year"
        except ValueError:
            pass

    return "", "unknown"


def parse_discovered_date(raw: Optional[str]) -> Optional[datetime.date]:
    """
    Reduce a source date string to the calendar day it names.

    ISO dates and datetimes ("2024-03-01", "2024-03-01T23:10:00Z",
    "2024-03-01 21:44:10.064656") keep the day as written, with no timezone
    shift. Human formats are accepted only at day precision. Returns None
    when no calendar day can be recovered.
    """
    if not raw:
        return None
    s = str(raw).strip()

    match = _ISO_DAY_PREFIX.match(s)
    if match:
        try:
            return datetime.date.fromisoformat(match.group(1))
        except ValueError:
            return None

    parsed, precision = parse_date_with_precision(s)
    if parsed and precision == "day":
        return datetime.date.fromisoformat(parsed)
    return None


def now_utc_iso() -> str:
    """Return current UTC time as ISO8601 string with 'Z'."""
    return (
        datetime.datetime.now(datetime.timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def strip_html(text: Optional[str]) -> Optional[str]:
    """Reduce an HTML fragment to whitespace-normalized plain text."""
    if not text:
        return None
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ", strip=True)
    cleaned = " ".join(text.split())
    return cleaned or None
