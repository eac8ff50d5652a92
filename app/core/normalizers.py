# app/core/normalizers.py

"""
Normalization utilities for matching.

Turns noisy identifying fields (addresses, job codes, money, dates,
relation ids) into comparable canonical forms. Every function is pure;
empty input always normalizes to an empty value, which callers treat
as "no signal".
"""

from datetime import date, datetime, time, timezone
from typing import Any, NamedTuple
import re


STREET_TYPES = (
    "street", "st", "avenue", "ave", "road", "rd", "drive", "dr",
    "lane", "ln", "court", "ct", "boulevard", "blvd", "way",
    "circle", "cir", "place", "pl",
)

STATE_CODES = (
    "al", "ak", "az", "ar", "ca", "co", "ct", "de", "fl", "ga", "hi", "id",
    "il", "in", "ia", "ks", "ky", "la", "me", "md", "ma", "mi", "mn", "ms",
    "mo", "mt", "ne", "nv", "nh", "nj", "nm", "ny", "nc", "nd", "oh", "ok",
    "or", "pa", "ri", "sc", "sd", "tn", "tx", "ut", "vt", "va", "wa", "wv",
    "wi", "wy", "dc",
)

STATE_NAMES = (
    "alabama", "alaska", "arizona", "arkansas", "california", "colorado",
    "connecticut", "delaware", "florida", "georgia", "hawaii", "idaho",
    "illinois", "indiana", "iowa", "kansas", "kentucky", "louisiana",
    "maine", "maryland", "massachusetts", "michigan", "minnesota",
    "mississippi", "missouri", "montana", "nebraska", "nevada",
    "new hampshire", "new jersey", "new mexico", "new york",
    "north carolina", "north dakota", "ohio", "oklahoma", "oregon",
    "pennsylvania", "rhode island", "south carolina", "south dakota",
    "tennessee", "texas", "utah", "vermont", "virginia", "washington",
    "west virginia", "wisconsin", "wyoming",
)

# State codes that are also ordinary words or name fragments are kept.
_AMBIGUOUS_STATE_CODES = {"in", "or", "me", "oh", "ok", "hi", "de", "la", "pa", "co", "id"}

REGION_WORDS = (
    tuple(c for c in STATE_CODES if c not in _AMBIGUOUS_STATE_CODES)
    + STATE_NAMES
    + ("county", "usa", "united states", "us")
)

JOB_CODE_PREFIXES = ("jobid", "ap-", "ap")

_PUNCTUATION_RE = re.compile(r"[,.\-#]")
_WHITESPACE_RE = re.compile(r"\s+")
_STREET_TYPE_RE = re.compile(r"\b(?:" + "|".join(STREET_TYPES) + r")\b")
# Longest names first so "west virginia" wins over "virginia".
_REGION_RE = re.compile(
    r"\b(?:" + "|".join(sorted(REGION_WORDS, key=len, reverse=True)) + r")\b"
)
_JOB_CODE_PREFIX_RE = re.compile(
    r"^(?:" + "|".join(re.escape(p) for p in JOB_CODE_PREFIXES) + r")"
)


class StreetParts(NamedTuple):
    """Leading house number and the two tokens after it."""

    number: str
    street: str


def normalize_address(address: str | None) -> str:
    """
    Normalize a street address for comparison.

    - Lowercase
    - ``, . - #`` become spaces
    - Street-type words and region tokens removed (whole words only)
    - Whitespace collapsed and trimmed

    ``normalize_address("123 Main St.") == normalize_address("123 main street")``
    """
    if not address:
        return ""

    s = address.lower()
    s = _PUNCTUATION_RE.sub(" ", s)
    s = _WHITESPACE_RE.sub(" ", s)
    s = _STREET_TYPE_RE.sub("", s)
    s = _REGION_RE.sub("", s)
    return _WHITESPACE_RE.sub(" ", s).strip()


def normalize_job_code(code: str | None) -> str:
    """
    Normalize a job code or invoice number.

    Lowercases and strips one known prefix token (``jobid``, ``ap-``, ``ap``),
    so ``"AP-00123"`` and ``"00123"`` compare equal.
    """
    if not code:
        return ""

    s = str(code).strip().lower()
    s = _JOB_CODE_PREFIX_RE.sub("", s, count=1)
    return s.strip()


def street_parts(normalized_address: str) -> StreetParts:
    """Split a normalized address into house number and street fragment."""
    tokens = normalized_address.split()
    if not tokens:
        return StreetParts("", "")

    number = re.sub(r"\D", "", tokens[0])
    street = " ".join(tokens[1:3])
    return StreetParts(number, street)


def normalize_amount(amount: Any) -> float:
    """
    Normalize amount to float.

    Handles:
    - Integers and floats
    - Strings with currency symbols and thousands separators
    """
    if amount is None or isinstance(amount, bool):
        return 0.0

    if isinstance(amount, (int, float)):
        return float(amount)

    if isinstance(amount, str):
        cleaned = re.sub(r"[^\d.-]", "", amount)
        try:
            return float(cleaned)
        except ValueError:
            return 0.0

    return 0.0


_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M %p",
)


def normalize_datetime(d: Any) -> datetime | None:
    """
    Normalize a timestamp to a timezone-aware datetime.

    Handles:
    - date and datetime objects (dates become midnight)
    - ISO strings (with or without a trailing ``Z``)
    - US and ISO slash formats
    - Unix timestamps

    Values without an offset are taken as UTC.
    """
    if d is None or d == "" or isinstance(d, bool):
        return None

    if isinstance(d, datetime):
        parsed = d
    elif isinstance(d, date):
        parsed = datetime.combine(d, time())
    elif isinstance(d, (int, float)):
        return datetime.fromtimestamp(d, tz=timezone.utc)
    elif isinstance(d, str):
        parsed = _parse_datetime(d.strip())
        if parsed is None:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_datetime(text: str) -> datetime | None:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def normalize_date(d: Any) -> date | None:
    """Calendar date of ``d``, parsed as in ``normalize_datetime``."""
    if isinstance(d, date) and not isinstance(d, datetime):
        return d
    parsed = normalize_datetime(d)
    return parsed.date() if parsed else None


def normalize_relation_id(value: Any) -> str | None:
    """
    Return a relation's id as a string.

    Relations come back either as a raw id or as an expanded object
    (``{"id": 7, ...}``) depending on fetch depth.
    """
    if isinstance(value, dict):
        value = value.get("id")
    if value is None or value == "":
        return None
    return str(value)
