"""
Cell value normalisation.

Spreadsheet cells arrive as floats, numpy scalars, datetimes or free text such
as "70(EUR)", "$1,234.56" or "MT5 Standard". Everything is converted here into a
small closed set of kinds (float, int code, epoch-millis timestamp or None,
stripped string or None) before any business logic sees it.

None of these functions raise: unparseable input degrades to 0 / None.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any, Optional

import numpy as np
import pandas as pd

# Days between the spreadsheet epoch (1899-12-30) and the Unix epoch.
EXCEL_EPOCH_OFFSET_DAYS = 25569
MS_PER_DAY = 86_400_000

# ---------------------------------------------------------------------------
# Emptiness / text
# ---------------------------------------------------------------------------


def is_blank(value: Any) -> bool:
    """True for None, NaN/NaT and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def cell_text(value: Any) -> Optional[str]:
    """Render a cell as stripped text, or None when blank.

    Integral floats lose their ".0" so numeric ids and owner codes read the way
    they were typed.
    """
    if is_blank(value):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

# Leading numeric token before any annotation, e.g. "70(EUR)" -> "70"
_LEADING_NUMBER_RE = re.compile(r"^([\d.,]+)")
# Currency symbols and formatting noise stripped in the fallback path
_NOISE_RE = re.compile(r"[$€£¥,\s()]")
# Longest float prefix, the same way a lenient float reader would accept "12.5abc"
_FLOAT_PREFIX_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _is_native_number(value: Any) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, (bool, np.bool_))


def _float_prefix(text: str) -> Optional[float]:
    m = _FLOAT_PREFIX_RE.match(text)
    if not m:
        return None
    try:
        result = float(m.group(0))
    except ValueError:
        return None
    return result if math.isfinite(result) else None


def parse_number(value: Any) -> float:
    """Parse a cell into a finite float, 0.0 when it cannot be read.

    "70(EUR)" -> 70.0, "1,234.56" -> 1234.56, "$1,234.56" -> 1234.56,
    "not a number" -> 0.0.
    """
    if _is_native_number(value):
        result = float(value)
        return result if math.isfinite(result) else 0.0
    if not isinstance(value, str):
        return 0.0

    text = value.strip()
    m = _LEADING_NUMBER_RE.match(text)
    if m:
        parsed = _float_prefix(m.group(1).replace(",", ""))
        return parsed if parsed is not None else 0.0

    parsed = _float_prefix(_NOISE_RE.sub("", text))
    return parsed if parsed is not None else 0.0


def parse_optional_number(value: Any) -> Optional[float]:
    """Like parse_number, but a blank cell stays None."""
    if is_blank(value):
        return None
    return parse_number(value)


def parse_int(value: Any) -> int:
    return int(parse_number(value))


# ---------------------------------------------------------------------------
# Currency
# ---------------------------------------------------------------------------

_CURRENCY_RE = re.compile(r"\(([A-Z]{3})\)")


def extract_currency(value: Any) -> Optional[str]:
    """Pull a 3-letter code out of an annotated amount: "70(EUR)" -> "EUR"."""
    if not isinstance(value, str):
        return None
    m = _CURRENCY_RE.search(value)
    return m.group(1) if m else None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _datetime_to_millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return round(dt.timestamp() * 1000)


def parse_date(value: Any) -> Optional[int]:
    """Convert a cell to epoch milliseconds (UTC), or None.

    Numbers above 25569 are spreadsheet date serials; smaller numbers are taken
    as epoch millis already. Strings go through pandas' general date parser;
    naive results are read as UTC.
    """
    if is_blank(value):
        return None

    if _is_native_number(value):
        number = float(value)
        if not math.isfinite(number) or number == 0:
            return None
        if number > EXCEL_EPOCH_OFFSET_DAYS:
            return round((number - EXCEL_EPOCH_OFFSET_DAYS) * MS_PER_DAY)
        return int(number)

    if isinstance(value, datetime):  # includes pd.Timestamp
        return _datetime_to_millis(value)
    if isinstance(value, date):
        return _datetime_to_millis(datetime(value.year, value.month, value.day))
    if isinstance(value, np.datetime64):
        return _datetime_to_millis(pd.Timestamp(value).to_pydatetime())

    if isinstance(value, str):
        try:
            ts = pd.to_datetime(value.strip(), errors="coerce", utc=True)
        except (ValueError, TypeError, OverflowError):
            return None
        if ts is None or pd.isna(ts):
            return None
        return _datetime_to_millis(ts.to_pydatetime())

    return None


def parse_epoch_millis(value: Any) -> Optional[int]:
    """Timestamp from an API record: numbers are already epoch millis, text is parsed."""
    if _is_native_number(value):
        number = float(value)
        if not math.isfinite(number) or number == 0:
            return None
        return int(number)
    return parse_date(value)


def millis_to_datetime(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def now_millis() -> int:
    return _datetime_to_millis(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Enumerated codes
# ---------------------------------------------------------------------------

_PLATFORM_PATTERNS: list[tuple[re.Pattern, int]] = [
    (re.compile(r"mt4", re.IGNORECASE), 0),
    (re.compile(r"mt5", re.IGNORECASE), 1),
]

_ACCOUNT_TYPE_PATTERNS: list[tuple[re.Pattern, int]] = [
    (re.compile(r"raw|ecn", re.IGNORECASE), 0),
    (re.compile(r"standard", re.IGNORECASE), 1),
    (re.compile(r"cent", re.IGNORECASE), 2),
]


def _map_code(value: Any, patterns: list[tuple[re.Pattern, int]]) -> int:
    if _is_native_number(value):
        return int(parse_number(value))
    if isinstance(value, str):
        for pattern, code in patterns:
            if pattern.search(value):
                return code
        return int(parse_number(value))
    return 0


def map_platform(value: Any) -> int:
    """Platform code: MT4 -> 0, MT5 -> 1, numeric text -> its value, else 0."""
    return _map_code(value, _PLATFORM_PATTERNS)


def map_account_type(value: Any) -> int:
    """Account type code: raw/ECN -> 0, standard -> 1, cent -> 2, numeric text -> its value, else 0."""
    return _map_code(value, _ACCOUNT_TYPE_PATTERNS)
