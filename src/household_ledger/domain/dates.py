import re
from datetime import date, datetime

_SLASH_DATE_RE = re.compile(r"\d{1,2}/\d{1,2}/\d{4}")


def parse_statement_date(raw: str | None) -> date | None:
    """Accept MM/DD/YYYY or YYYY-MM-DD; anything else is rejected.

    Two-digit years are refused.
    """
    if not raw:
        return None
    text = raw.strip()
    if "/" in text:
        if not _SLASH_DATE_RE.fullmatch(text):
            return None
        try:
            return datetime.strptime(text, "%m/%d/%Y").date()
        except ValueError:
            return None
    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def parse_ofx_date(raw: str | None) -> date | None:
    """OFX dates: YYYYMMDD, YYYYMMDDHHMMSS or YYYYMMDDHHMMSS.XXX[-5:EST].

    Only the calendar date is kept.
    """
    if not raw:
        return None
    digits = raw.strip()[:8]
    if len(digits) < 8 or not digits.isdigit():
        return None
    try:
        return date(int(digits[0:4]), int(digits[4:6]), int(digits[6:8]))
    except ValueError:
        return None


def parse_iso_date(raw: str | date | None) -> date | None:
    if isinstance(raw, date):
        return raw
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None
