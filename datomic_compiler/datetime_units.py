# Copyright 2020-present Kensho Technologies, LLC.
"""Datetime bucketing units of the structured query language, and their semantics.

Truncation units map an instant to the start of the period containing it, and are applied to
result values during post-processing. Filters on truncated fields are compiled to half-open
ranges of raw instants, which is why every truncation unit also knows its next boundary.
Extraction units map an instant to an integer, such as the day of the week.

All computations happen in UTC, the timezone the store records instants in. Weeks start on
Sunday, and day-of-week numbering starts at 1 for Sunday.
"""
import datetime
from enum import Enum, unique
from types import MappingProxyType
from typing import Callable, FrozenSet, Mapping, Tuple, Union

from .global_utils import assert_set_equality


@unique
class DatetimeUnit(Enum):
    """The bucketing units a datetime field may be broken out or filtered by."""

    DEFAULT = "default"

    # Truncation units.
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"

    # Extraction units.
    MINUTE_OF_HOUR = "minute-of-hour"
    HOUR_OF_DAY = "hour-of-day"
    DAY_OF_WEEK = "day-of-week"
    DAY_OF_MONTH = "day-of-month"
    DAY_OF_YEAR = "day-of-year"
    WEEK_OF_YEAR = "week-of-year"
    MONTH_OF_YEAR = "month-of-year"
    QUARTER_OF_YEAR = "quarter-of-year"

    @property
    def is_extraction(self) -> bool:
        """Return True if the unit maps instants to integers rather than to instants."""
        return self in EXTRACTION_UNITS


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    """Interpret naive datetimes as UTC, and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _start_of_day(value: datetime.datetime) -> datetime.datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _days_since_sunday(value: datetime.datetime) -> int:
    # Python numbers weekdays from Monday = 0.
    return (value.weekday() + 1) % 7


def _truncate_to_week(value: datetime.datetime) -> datetime.datetime:
    return _start_of_day(value) - datetime.timedelta(days=_days_since_sunday(value))


def _truncate_to_quarter(value: datetime.datetime) -> datetime.datetime:
    first_month_of_quarter = 3 * ((value.month - 1) // 3) + 1
    return _start_of_day(value).replace(month=first_month_of_quarter, day=1)


def _add_months(value: datetime.datetime, months: int) -> datetime.datetime:
    """Add months to a datetime that falls on the first day of its month."""
    month_index = value.month - 1 + months
    return value.replace(year=value.year + month_index // 12, month=month_index % 12 + 1, day=1)


_TRUNCATION_FUNCTIONS: Mapping[DatetimeUnit, Callable[[datetime.datetime], datetime.datetime]] = (
    MappingProxyType(
        {
            DatetimeUnit.DEFAULT: lambda value: value,
            DatetimeUnit.MINUTE: lambda value: value.replace(second=0, microsecond=0),
            DatetimeUnit.HOUR: lambda value: value.replace(minute=0, second=0, microsecond=0),
            DatetimeUnit.DAY: _start_of_day,
            DatetimeUnit.WEEK: _truncate_to_week,
            DatetimeUnit.MONTH: lambda value: _start_of_day(value).replace(day=1),
            DatetimeUnit.QUARTER: _truncate_to_quarter,
            DatetimeUnit.YEAR: lambda value: _start_of_day(value).replace(month=1, day=1),
        }
    )
)

# Length of one period of each truncation unit, applied to the start of a period.
_PERIOD_ADVANCE_FUNCTIONS: Mapping[
    DatetimeUnit, Callable[[datetime.datetime], datetime.datetime]
] = MappingProxyType(
    {
        DatetimeUnit.DEFAULT: lambda value: value + datetime.timedelta(milliseconds=1),
        DatetimeUnit.MINUTE: lambda value: value + datetime.timedelta(minutes=1),
        DatetimeUnit.HOUR: lambda value: value + datetime.timedelta(hours=1),
        DatetimeUnit.DAY: lambda value: value + datetime.timedelta(days=1),
        DatetimeUnit.WEEK: lambda value: value + datetime.timedelta(weeks=1),
        DatetimeUnit.MONTH: lambda value: _add_months(value, 1),
        DatetimeUnit.QUARTER: lambda value: _add_months(value, 3),
        DatetimeUnit.YEAR: lambda value: _add_months(value, 12),
    }
)
assert_set_equality(set(_TRUNCATION_FUNCTIONS.keys()), set(_PERIOD_ADVANCE_FUNCTIONS.keys()))


def _week_of_year(value: datetime.datetime) -> int:
    """Return the week of the year, counting Sunday-started weeks, week 1 containing January 1."""
    january_first = value.replace(month=1, day=1)
    day_of_year = value.timetuple().tm_yday
    return (day_of_year - 1 + _days_since_sunday(january_first)) // 7 + 1


_EXTRACTION_FUNCTIONS: Mapping[DatetimeUnit, Callable[[datetime.datetime], int]] = (
    MappingProxyType(
        {
            DatetimeUnit.MINUTE_OF_HOUR: lambda value: value.minute,
            DatetimeUnit.HOUR_OF_DAY: lambda value: value.hour,
            DatetimeUnit.DAY_OF_WEEK: lambda value: _days_since_sunday(value) + 1,
            DatetimeUnit.DAY_OF_MONTH: lambda value: value.day,
            DatetimeUnit.DAY_OF_YEAR: lambda value: value.timetuple().tm_yday,
            DatetimeUnit.WEEK_OF_YEAR: _week_of_year,
            DatetimeUnit.MONTH_OF_YEAR: lambda value: value.month,
            DatetimeUnit.QUARTER_OF_YEAR: lambda value: (value.month - 1) // 3 + 1,
        }
    )
)

EXTRACTION_UNITS: FrozenSet[DatetimeUnit] = frozenset(_EXTRACTION_FUNCTIONS.keys())
assert_set_equality(
    set(_TRUNCATION_FUNCTIONS.keys()) | set(EXTRACTION_UNITS),
    set(DatetimeUnit),
)


def truncate(value: datetime.datetime, unit: DatetimeUnit) -> datetime.datetime:
    """Return the start of the period of the given unit that contains the given instant."""
    truncation_function = _TRUNCATION_FUNCTIONS.get(unit)
    if truncation_function is None:
        raise AssertionError(f"Cannot truncate to unit {unit}, which is an extraction unit.")
    return truncation_function(_as_utc(value))


def extract(value: datetime.datetime, unit: DatetimeUnit) -> int:
    """Return the integer component of the given instant that the extraction unit stands for."""
    extraction_function = _EXTRACTION_FUNCTIONS.get(unit)
    if extraction_function is None:
        raise AssertionError(f"Cannot extract unit {unit}, which is a truncation unit.")
    return extraction_function(_as_utc(value))


def apply_unit(value: datetime.datetime, unit: DatetimeUnit) -> Union[datetime.datetime, int]:
    """Truncate or extract, depending on the kind of the given unit."""
    if unit.is_extraction:
        return extract(value, unit)
    return truncate(value, unit)


def period_bounds(
    value: datetime.datetime, unit: DatetimeUnit
) -> Tuple[datetime.datetime, datetime.datetime]:
    """Return the half-open [start, end) range of instants that truncate to the same value.

    Args:
        value: any instant within the period.
        unit: a truncation unit.

    Returns:
        tuple (start, end): start is the truncated value, and end the start of the next period
    """
    start = truncate(value, unit)
    return start, _PERIOD_ADVANCE_FUNCTIONS[unit](start)
