import math
import re
import unicodedata
from datetime import datetime, timezone


def round_half_up(value):
    """Round a numeric value to the nearest integer, halves going up (2.5 -> 3, -2.5 -> -2).

    Python's round() uses banker's rounding which would store 2500.5 as 2500.
    Areas are always persisted as whole numbers using this rule.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise TypeError("boolean is not a valid numeric value")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("value must be a finite number")
    return int(math.floor(number + 0.5))


def to_float(value):
    return float(value) if value is not None else None


def isoformat(value):
    return value.isoformat() if value else None


def slugify(text, max_length=200):
    text = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^\w\s-]", "", text.lower())
    text = re.sub(r"[\s_-]+", "-", text).strip("-")
    return text[:max_length].rstrip("-") or "post"


def parse_datetime(value):
    """Accept ISO strings (with or without a trailing Z) and datetimes; returns naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
