"""
Field normalization helpers.

Pure functions that turn loosely-typed raw values from review payloads into
canonical Python values. None of them raise on bad input: anything that
cannot be interpreted resolves to ``None``.
"""
import math
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, Optional, Tuple

# Epoch values below this magnitude are seconds, above it milliseconds
MILLISECONDS_THRESHOLD = 1e12

_NON_NUMERIC = re.compile(r"[^\d.,-]")
_DIGITS_ONLY = re.compile(r"^\d+$")

_TRUE_TOKENS = {"true", "yes", "y", "1"}
_FALSE_TOKENS = {"false", "no", "n", "0"}


def is_blank(value: Any) -> bool:
    """True for None and for strings that are empty after trimming."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def pick_first(*values: Any) -> Any:
    """Return the first value that is neither None nor a blank string."""
    for value in values:
        if is_blank(value):
            continue
        return value
    return None


def dig(data: Any, path: str) -> Any:
    """Follow a dotted key path through nested dicts, e.g. ``variant.size``."""
    current = data
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def pick_alias(data: Dict[str, Any], aliases: Iterable[str]) -> Any:
    """Probe an ordered alias list and return the first usable value."""
    return pick_first(*(dig(data, alias) for alias in aliases))


def get_number(value: Any) -> Optional[float]:
    """
    Parse a number that may use locale-specific separators.

    When both ``,`` and ``.`` appear, whichever comes last is the decimal
    separator. A lone ``,`` is treated as the decimal separator.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None

    raw = str(value).strip()
    if not raw:
        return None
    cleaned = _NON_NUMERIC.sub("", raw)
    if not cleaned:
        return None

    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")
    normalized = cleaned
    if last_comma > -1 and last_dot > -1:
        if last_comma > last_dot:
            normalized = cleaned.replace(".", "").replace(",", ".", 1)
        else:
            normalized = cleaned.replace(",", "")
    elif last_comma > -1:
        normalized = cleaned.replace(",", ".", 1)

    try:
        number = float(normalized)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def get_int(value: Any) -> Optional[int]:
    """Like :func:`get_number`, truncated to an int."""
    number = get_number(value)
    return int(number) if number is not None else None


def to_iso(dt: datetime) -> str:
    """Render a datetime as UTC ISO-8601 with millisecond precision."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_date(value: Any) -> Optional[Tuple[str, int]]:
    """
    Parse an epoch number, digit string or date string.

    Returns ``(iso_string, epoch_ms)`` or None when the value is not a date.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        ms = value * 1000 if abs(value) < MILLISECONDS_THRESHOLD else value
        try:
            dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
        return to_iso(dt), int(round(ms))

    raw = str(value).strip()
    if not raw:
        return None
    if _DIGITS_ONLY.match(raw):
        return parse_date(int(raw))

    dt = _parse_date_string(raw)
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return to_iso(dt), int(round(dt.timestamp() * 1000))
    except (OverflowError, OSError, ValueError):
        return None


def _parse_date_string(raw: str) -> Optional[datetime]:
    """ISO-8601 first, then RFC 2822 (e-mail / HTTP style dates)."""
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None


def parse_bool(value: Any) -> Optional[bool]:
    """
    Interpret a boolean-like value.

    Returns None (unknown) rather than False for anything unrecognized.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if isinstance(value, str):
        token = value.strip().lower()
        if token in _TRUE_TOKENS:
            return True
        if token in _FALSE_TOKENS:
            return False
    return None


def is_empty_value(value: Any) -> bool:
    """True for values a sparse record should not carry."""
    if is_blank(value):
        return True
    if isinstance(value, float) and not math.isfinite(value):
        return True
    if isinstance(value, (list, tuple)) and not value:
        return True
    return False


def sanitize_item(item: Any) -> Dict[str, Any]:
    """
    Drop empty fields from a flat record.

    Strings inside lists are trimmed and blank members removed; a list that
    ends up empty is dropped entirely.
    """
    if not isinstance(item, dict):
        return {}
    cleaned: Dict[str, Any] = {}
    for key, value in item.items():
        if isinstance(value, (list, tuple)):
            members = [v.strip() if isinstance(v, str) else v for v in value]
            members = [v for v in members if not is_blank(v)]
            if members:
                cleaned[key] = members
            continue
        if is_empty_value(value):
            continue
        cleaned[key] = value
    return cleaned


def as_text(value: Any) -> Optional[str]:
    """Scalar to trimmed string; containers and booleans are not text."""
    if value is None or isinstance(value, (dict, list, tuple, bool)):
        return None
    text = str(value).strip()
    return text or None
