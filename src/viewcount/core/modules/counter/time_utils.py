"""Local-time period boundaries, in milliseconds since the epoch."""

from datetime import datetime, timedelta

from viewcount.core.modules.settings.models import TimePeriod

# Trailing windows in days; calendar periods (week, month) never reach further back than 30 days
TRAILING_PERIOD_DAYS: dict[TimePeriod, int] = {
    TimePeriod.TODAY: 0,
    TimePeriod.DAYS_3: 3,
    TimePeriod.DAYS_7: 7,
    TimePeriod.DAYS_14: 14,
    TimePeriod.DAYS_30: 30,
}

# One day past the widest window so the open log always covers every period
LOG_RETENTION_DAYS = max(TRAILING_PERIOD_DAYS.values()) + 1

DATE_FORMAT = "%Y-%m-%d"


def _local_midnight(now: int) -> datetime:
    return datetime.fromtimestamp(now / 1000).replace(hour=0, minute=0, second=0, microsecond=0)


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def start_of_day(now: int) -> int:
    return _to_millis(_local_midnight(now))


def start_of_week(now: int, iso: bool) -> int:
    """Start of the current week: Monday when `iso`, otherwise Sunday."""
    midnight = _local_midnight(now)
    offset = midnight.weekday() if iso else (midnight.weekday() + 1) % 7
    return _to_millis(midnight - timedelta(days=offset))


def start_of_month(now: int) -> int:
    return _to_millis(_local_midnight(now).replace(day=1))


def start_of_n_days_ago(now: int, days: int) -> int:
    return _to_millis(_local_midnight(now) - timedelta(days=days))


def start_of_period(now: int, period: TimePeriod | str) -> int:
    """Boundary of a trending period. Raises ValueError for an unknown period."""
    period = TimePeriod(period)
    match period:
        case TimePeriod.MONTH:
            return start_of_month(now)
        case TimePeriod.WEEK:
            return start_of_week(now, iso=False)
        case TimePeriod.WEEK_ISO:
            return start_of_week(now, iso=True)
        case _:
            return start_of_n_days_ago(now, TRAILING_PERIOD_DAYS[period])


def date_string_to_millis(value: str) -> int:
    """Local midnight of a YYYY-MM-DD date."""
    return _to_millis(datetime.strptime(value, DATE_FORMAT))  # noqa: DTZ007


def millis_to_date_string(value: int) -> str:
    return datetime.fromtimestamp(value / 1000).strftime(DATE_FORMAT)
