from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True)
class MonthPeriod:
    year: int
    month: int
    start: datetime
    end: datetime

    @property
    def name(self) -> str:
        return MONTH_NAMES[self.month - 1]

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_period(year: int, month: int) -> MonthPeriod:
    """Return the closed range from the first to the last instant of a month."""
    first = date(year, month, 1)
    last = first.replace(day=days_in_month(year, month))
    return MonthPeriod(
        year=year,
        month=month,
        start=datetime.combine(first, time.min),
        end=datetime.combine(last, time.max),
    )


def _parse_int(value: Optional[object]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def resolve_month(
    year: Optional[object],
    month: Optional[object],
    *,
    today: Optional[date] = None,
) -> MonthPeriod:
    today = today or date.today()
    year_value = _parse_int(year)
    month_value = _parse_int(month)
    if year_value is None or not 1 <= year_value <= 9998:
        year_value = today.year
    if month_value is None or not 1 <= month_value <= 12:
        month_value = today.month
    return month_period(year_value, month_value)


def recent_months(today: date, count: int) -> list[MonthPeriod]:
    """The `count` calendar months ending with today's, oldest first."""
    periods: list[MonthPeriod] = []
    month_index = today.year * 12 + (today.month - 1)
    for offset in range(count - 1, -1, -1):
        index = month_index - offset
        periods.append(month_period(index // 12, index % 12 + 1))
    return periods


def as_local_naive(value: datetime, timezone: str) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(timezone)).replace(tzinfo=None)
