"""vaultsim.core.time

The only time helper surface in the codebase.

The simulation clock runs on integer epoch milliseconds. Wire timestamps are
ISO-8601 UTC strings.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

MS_PER_DAY = 24 * 60 * 60 * 1000

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def parse_dt(value: str) -> datetime:
    """Parse an ISO-8601 datetime string into an aware UTC datetime.

    Accepts:
    - `Z` suffix
    - explicit offsets
    - naive timestamps (assumed UTC)

    Raises:
        ValueError: if parsing fails.
    """

    v = value.strip()
    if v.endswith("Z"):
        v = v[:-1] + "+00:00"

    dt = datetime.fromisoformat(v)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_ms(value: str | datetime) -> int:
    dt = parse_dt(value) if isinstance(value, str) else value
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def iso_from_ms(ms: int) -> str:
    """Format epoch milliseconds as `YYYY-MM-DDTHH:MM:SS.mmmZ`."""

    dt = _EPOCH + timedelta(milliseconds=int(ms))
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp_ms(value: str | int | float) -> int:
    """Epoch ms from either a number (ms) or an ISO-8601 string."""

    if isinstance(value, (int, float)):
        return int(value)
    v = value.strip()
    try:
        return int(float(v))
    except ValueError:
        return to_ms(v)
