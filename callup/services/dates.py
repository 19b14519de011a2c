from __future__ import annotations

from datetime import date, datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from callup.settings import get_settings


@lru_cache
def _local_timezone() -> ZoneInfo:
    raw_name = (get_settings().local_timezone or "").strip() or "Asia/Seoul"
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo("Asia/Seoul")


def parse_date(value: str) -> datetime:
    """Read a form date or ISO timestamp as an aware UTC datetime.

    A bare ``YYYY-MM-DD`` always lands on UTC midnight of that calendar day so
    that stored dates never drift by the local offset. Timestamps without an
    explicit offset are taken as UTC.
    """
    raw = value.strip()
    if "T" not in raw:
        day = date.fromisoformat(raw)
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)

    if raw.endswith("Z"):
        raw = f"{raw[:-1]}+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_day(value: str) -> date:
    return parse_date(value).date()


def hhmm_to_hours(value: str) -> float:
    hour_str, minute_str = value.strip().split(":")
    return int(hour_str) + int(minute_str) / 60


def is_weekend_day(day: date | datetime) -> bool:
    # Saturday=5, Sunday=6 in Python's Monday-first numbering.
    return day.weekday() >= 5


def local_today(now_utc: datetime | None = None) -> date:
    reference = now_utc or datetime.now(timezone.utc)
    return reference.astimezone(_local_timezone()).date()
