"""
Parsing for engine timestamps, durations and log "since" values.
"""
import re
import time
from datetime import datetime, timezone
from typing import Optional, Union

# Go's RFC3339Nano trims trailing zeros, so the fraction has 0-9 digits.
_ENGINE_TS = re.compile(
    r'^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})'
    r'(?:\.(?P<fraction>\d+))?'
    r'(?P<tz>Z|[+-]\d{2}:\d{2})?$'
)

_DURATION = re.compile(r'(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)')

_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_engine_timestamp(value: Optional[str]) -> datetime:
    """
    Parses an engine timestamp such as ``2024-05-01T10:00:00.123456789Z``.

    Sub-microsecond digits are truncated. Missing or unparseable values sort
    first (the Unix epoch is returned).
    """
    if not value:
        return EPOCH
    match = _ENGINE_TS.match(value.strip())
    if not match:
        return EPOCH
    fraction = (match.group("fraction") or "")[:6].ljust(6, "0")
    tz = match.group("tz") or "Z"
    if tz == "Z":
        tz = "+00:00"
    try:
        return datetime.fromisoformat(f"{match.group('base')}.{fraction}{tz}")
    except ValueError:
        return EPOCH


def parse_duration_ns(value: Union[str, int, float, None]) -> Optional[int]:
    """
    Converts a duration to nanoseconds.

    Integers are taken as nanoseconds already; strings use Go duration syntax
    (``"10s"``, ``"1m30s"``, ``"500ms"``).

    :raises ValueError: If the string is not a valid duration.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    text = value.strip()
    if text.isdigit():
        return int(text)
    pos = 0
    total = 0.0
    for match in _DURATION.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_NS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return int(total)


def to_unix_seconds(value: Union[str, int, float, datetime, None], now: Optional[float] = None) -> Optional[int]:
    """
    Normalizes a log "since" value to Unix seconds.

    Accepts Unix seconds (number or numeric string), an ISO-8601 timestamp,
    a datetime, or a relative duration such as ``"10m"`` meaning that long ago.

    :raises ValueError: If the value cannot be interpreted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid since value: {value!r}")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, (int, float)):
        return int(value)
    text = value.strip()
    try:
        return int(float(text))
    except ValueError:
        pass
    if _ENGINE_TS.match(text):
        return int(parse_engine_timestamp(text).timestamp())
    reference = time.time() if now is None else now
    return int(reference - parse_duration_ns(text) / 1_000_000_000)
