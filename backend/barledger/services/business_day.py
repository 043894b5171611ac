"""Business date helpers.

POS providers bucket transactions by operating day rather than calendar day:
a sale rung up at 1:30 AM belongs to the previous evening's business date
when the venue closes out at 3 AM.
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

BUSINESS_DATE_FORMAT = "%Y%m%d"


def ensure_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC (SQLite hands them back without tzinfo)."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def business_day(moment: datetime, tz_name: str, closeout_hour: int = 3) -> date:
    local = ensure_utc(moment).astimezone(ZoneInfo(tz_name))
    day = local.date()
    if local.hour < closeout_hour:
        day -= timedelta(days=1)
    return day


def calculate_business_date(moment: datetime, tz_name: str, closeout_hour: int = 3) -> str:
    """Business date of ``moment`` at a venue in ``tz_name``, as ``yyyymmdd``."""
    return business_day(moment, tz_name, closeout_hour).strftime(BUSINESS_DATE_FORMAT)


def parse_business_date(value: str) -> date:
    return datetime.strptime(value, BUSINESS_DATE_FORMAT).date()


def business_dates_between(start: str, end: str) -> List[str]:
    """Every business date from ``start`` to ``end`` inclusive."""
    current = parse_business_date(start)
    last = parse_business_date(end)
    dates = []
    while current <= last:
        dates.append(current.strftime(BUSINESS_DATE_FORMAT))
        current += timedelta(days=1)
    return dates
