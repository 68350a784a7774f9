import math
from datetime import datetime, timezone # For timestamps stored as naive UTC.


def utcnow():
    """
    Returns the current UTC time as a naive datetime.

    The ledger tables store naive UTC timestamps (SQLite has no timezone support), so every
    timestamp written by the optimizer goes through this helper.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_utc(value):
    """Formats a naive-UTC datetime as ISO-8601 with a trailing 'Z'. Returns None for None."""
    if value is None:
        return None
    return value.isoformat(timespec='milliseconds') + 'Z'


def safe_number(value):
    """
    Coerces a loosely-typed metric value into a finite float.

    Reporting payloads carry numbers as ints, floats, numeric strings or nulls. Anything that
    is not a finite number becomes 0.0 so aggregate maths never sees NaN or infinity.

    Args:
        value: The raw value from a JSON payload.

    Returns:
        float: The numeric value, or 0.0 if it cannot be interpreted.
    """
    if isinstance(value, bool):
        return float(value)
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(num) or math.isinf(num):
        return 0.0
    return num


def truncate(text, limit=200):
    """Trims a response body or message for diagnostics."""
    if text is None:
        return None
    text = str(text)
    return text[:limit] if len(text) > limit else text


def parse_bool(value, default=False):
    """Interprets query-string and JSON flag values ('1', 'true', 'yes', True) as booleans."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def dedupe_preserving_order(values):
    """Drops duplicates and empty values while keeping first-seen order."""
    seen = set()
    result = []
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if not text or text in seen:
            continue
        seen.add(text)
        result.append(text)
    return result
