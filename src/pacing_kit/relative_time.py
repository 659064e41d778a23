"""Relative "Last Modified" labels for pace contexts."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

from .config import get_settings

logger = logging.getLogger(__name__)

JUST_NOW_LIMIT = timedelta(minutes=5)
HOUR = timedelta(hours=1)
DAY = timedelta(days=1)
WEEK = timedelta(weeks=1)
ABSOLUTE_DATE_AFTER = timedelta(days=28)

Timestamp = Union[datetime, str]


class Tier(Enum):
    JUST_NOW = "just_now"
    MINUTES_AGO = "minutes_ago"
    HOURS_AGO = "hours_ago"
    DAYS_AGO = "days_ago"
    WEEKS_AGO = "weeks_ago"
    ABSOLUTE_DATE = "absolute_date"


@dataclass(frozen=True)
class TierLabel:
    tier: Tier
    count: Optional[int] = None
    date: Optional[date] = None


def _whole(delta: timedelta, unit: timedelta) -> int:
    return int(delta // unit)


def classify_delta(delta: timedelta, moment: Optional[datetime] = None) -> TierLabel:
    """Pick the display tier for ``delta``; ``moment`` is only needed for the date tier."""
    if delta <= JUST_NOW_LIMIT:
        return TierLabel(Tier.JUST_NOW)
    if delta < HOUR:
        return TierLabel(Tier.MINUTES_AGO, _whole(delta, timedelta(minutes=1)))
    if delta < DAY:
        return TierLabel(Tier.HOURS_AGO, _whole(delta, HOUR))
    if delta < WEEK:
        return TierLabel(Tier.DAYS_AGO, _whole(delta, DAY))
    if delta < ABSOLUTE_DATE_AFTER:
        return TierLabel(Tier.WEEKS_AGO, _whole(delta, WEEK))
    if moment is None:
        raise ValueError("an absolute date label needs the original moment")
    return TierLabel(Tier.ABSOLUTE_DATE, date=moment.date())


MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def format_long_date(value: date) -> str:
    # strftime("%B") follows the process locale; labels are English only.
    return f"{MONTH_NAMES[value.month - 1]} {value.day}, {value.year}"


def render_label(label: TierLabel) -> str:
    if label.tier is Tier.JUST_NOW:
        return "Just Now"
    if label.tier is Tier.MINUTES_AGO:
        return f"{label.count} minutes ago"
    if label.tier is Tier.HOURS_AGO:
        return f"{label.count} hours ago"
    if label.tier is Tier.DAYS_AGO:
        return f"{label.count} days ago"
    if label.tier is Tier.WEEKS_AGO:
        return "1 week ago" if label.count == 1 else f"{label.count} weeks ago"
    if label.date is None:
        raise ValueError("an absolute date label needs a date")
    return format_long_date(label.date)


def resolve_timezone(tz: Union[tzinfo, str, None] = None) -> tzinfo:
    if tz is None:
        tz = get_settings().timezone
    if isinstance(tz, str):
        return timezone.utc if tz.upper() == "UTC" else ZoneInfo(tz)
    return tz


# Browsers serialize Date#toLocaleString() in en-US as "1/5/2024, 10:00:00 AM".
LOCALE_STRING_FORMAT = "%m/%d/%Y, %I:%M:%S %p"


def parse_timestamp(raw: str) -> datetime:
    raw = raw.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.strptime(raw, LOCALE_STRING_FORMAT)
    except ValueError:
        raise ValueError(f"unrecognized timestamp: {raw!r}") from None


def _to_aware(value: Timestamp, tz: tzinfo) -> datetime:
    if isinstance(value, str):
        value = parse_timestamp(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def format_relative_time(
    timestamp: Timestamp,
    now: Optional[Timestamp] = None,
    tz: Union[tzinfo, str, None] = None,
) -> str:
    """Render how long ago ``timestamp`` was, relative to ``now``.

    Naive datetimes and ISO strings without an offset are read in ``tz``
    (the configured PACING_TIMEZONE by default). Timestamps in the future
    render as "Just Now". Older than four weeks renders the long date, e.g.
    "January 5, 2024", in ``tz``.
    """
    zone = resolve_timezone(tz)
    moment = _to_aware(timestamp, zone)
    reference = _to_aware(now, zone) if now is not None else datetime.now(zone)
    # Subtract in UTC: same-ZoneInfo arithmetic is wall-clock and skips DST shifts.
    delta = reference.astimezone(timezone.utc) - moment.astimezone(timezone.utc)
    if delta < timedelta(0):
        logger.debug("timestamp %s is after now %s; rendering as just now", moment, reference)
        delta = timedelta(0)
    return render_label(classify_delta(delta, moment))
