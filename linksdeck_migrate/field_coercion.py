# =========================================
# File: linksdeck_migrate/field_coercion.py
# Purpose: Tolerant readers for schema-less Firestore fields
# - Every helper is total: wrong type or absence degrades to a default
# - Timestamps are always returned in UTC
# - Tag name normalization + deterministic tag ids live here too
# =========================================

import hashlib
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

# RFC3339: offset (or Z) is mandatory, fractional seconds are optional and may
# carry more digits than Python keeps (Go exports nanoseconds).
_RFC3339 = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(?:([Zz])|([+-])(\d{2}):(\d{2}))$"
)

TAG_ID_PREFIX = "tag_"
TAG_ID_HEX_LENGTH = 20


def parse_string(value: Any) -> str:
    """Return value if it is a string, otherwise ''. No trimming."""
    return value if isinstance(value, str) else ""


def parse_optional_string(value: Any) -> Optional[str]:
    """Trimmed string, or None when absent, not a string, or blank."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def parse_bool(value: Any, default: bool) -> bool:
    """Only real booleans count; 'true' or 1 fall back to the default."""
    return value if isinstance(value, bool) else default


def _parse_rfc3339(text: str) -> Optional[datetime]:
    match = _RFC3339.match(text.strip())
    if not match:
        return None
    year, month, day, hour, minute, second, fraction, zulu, sign, off_h, off_m = match.groups()
    micros = int((fraction or "0")[:6].ljust(6, "0"))
    try:
        parsed = datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micros,
            tzinfo=timezone.utc,
        )
        if not zulu:
            offset = timedelta(hours=int(off_h), minutes=int(off_m))
            parsed = parsed - offset if sign == "+" else parsed + offset
    except (ValueError, OverflowError):
        return None  # e.g. month 13, second 60, or an offset past year 1/9999
    return parsed


def parse_time(value: Any, default: Optional[datetime]) -> Optional[datetime]:
    """
    Accept a native datetime (naive = UTC) or an RFC3339 string.
    Anything else returns `default`, normalized to UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str) and value:
        parsed = _parse_rfc3339(value)
        if parsed is not None:
            return parsed
    if default is None:
        return None
    return parse_time(default, None)


def parse_optional_time(value: Any) -> Optional[datetime]:
    """Like parse_time but absent/unparseable values stay absent."""
    if value is None:
        return None
    return parse_time(value, None)


def to_map(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def to_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def format_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize as RFC3339 UTC with a Z suffix (microseconds only when set)."""
    if value is None:
        return None
    return parse_time(value, None).isoformat().replace("+00:00", "Z")


def sanitize_tag_name(name: str) -> str:
    return name.strip()


def tag_key(user_id: str, name: str) -> str:
    """Dedup key for tags: (userId, lower(trim(name)))."""
    return f"{user_id}|{name.strip().lower()}"


def deterministic_tag_id(user_id: str, name: str) -> str:
    """
    Content-derived tag id shared by every run and every link that mentions the tag.

    Contract (existing destination rows are keyed by it, do not change):
        "tag_" + sha1("{userId}:{lower(trim(name))}").hexdigest()[:20]
    """
    digest = hashlib.sha1(f"{user_id}:{name.strip().lower()}".encode("utf-8")).hexdigest()
    return TAG_ID_PREFIX + digest[:TAG_ID_HEX_LENGTH]
