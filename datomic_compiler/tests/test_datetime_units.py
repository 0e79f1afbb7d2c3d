# Copyright 2020-present Kensho Technologies, LLC.
import datetime
import unittest

from ..datetime_units import (
    EXTRACTION_UNITS,
    DatetimeUnit,
    apply_unit,
    extract,
    period_bounds,
    truncate,
)


UTC = datetime.timezone.utc

# A Wednesday.
SAMPLE_INSTANT = datetime.datetime(2020, 5, 13, 14, 35, 27, 123000, tzinfo=UTC)


class TruncationTests(unittest.TestCase):
    def test_truncation_units(self) -> None:
        expected_values = {
            DatetimeUnit.DEFAULT: SAMPLE_INSTANT,
            DatetimeUnit.MINUTE: datetime.datetime(2020, 5, 13, 14, 35, tzinfo=UTC),
            DatetimeUnit.HOUR: datetime.datetime(2020, 5, 13, 14, tzinfo=UTC),
            DatetimeUnit.DAY: datetime.datetime(2020, 5, 13, tzinfo=UTC),
            # Weeks start on Sunday.
            DatetimeUnit.WEEK: datetime.datetime(2020, 5, 10, tzinfo=UTC),
            DatetimeUnit.MONTH: datetime.datetime(2020, 5, 1, tzinfo=UTC),
            DatetimeUnit.QUARTER: datetime.datetime(2020, 4, 1, tzinfo=UTC),
            DatetimeUnit.YEAR: datetime.datetime(2020, 1, 1, tzinfo=UTC),
        }
        for unit, expected_value in expected_values.items():
            self.assertEqual(expected_value, truncate(SAMPLE_INSTANT, unit), msg=unit)
            self.assertEqual(expected_value, apply_unit(SAMPLE_INSTANT, unit), msg=unit)

    def test_truncation_is_idempotent(self) -> None:
        for unit in DatetimeUnit:
            if unit.is_extraction:
                continue
            truncated_value = truncate(SAMPLE_INSTANT, unit)
            self.assertEqual(truncated_value, truncate(truncated_value, unit), msg=unit)

    def test_week_of_a_sunday(self) -> None:
        sunday = datetime.datetime(2020, 5, 10, 23, 59, tzinfo=UTC)
        self.assertEqual(
            datetime.datetime(2020, 5, 10, tzinfo=UTC), truncate(sunday, DatetimeUnit.WEEK)
        )

    def test_truncation_happens_in_utc(self) -> None:
        # Already the next day in UTC.
        value = datetime.datetime(
            2020, 5, 13, 22, 30, tzinfo=datetime.timezone(datetime.timedelta(hours=-4))
        )
        self.assertEqual(
            datetime.datetime(2020, 5, 14, tzinfo=UTC), truncate(value, DatetimeUnit.DAY)
        )

        # Timezone-naive values are in UTC.
        naive_value = datetime.datetime(2020, 5, 13, 22, 30)
        self.assertEqual(
            datetime.datetime(2020, 5, 13, tzinfo=UTC), truncate(naive_value, DatetimeUnit.DAY)
        )

    def test_truncate_to_extraction_unit(self) -> None:
        with self.assertRaises(AssertionError):
            truncate(SAMPLE_INSTANT, DatetimeUnit.DAY_OF_WEEK)


class ExtractionTests(unittest.TestCase):
    def test_extraction_units(self) -> None:
        expected_values = {
            DatetimeUnit.MINUTE_OF_HOUR: 35,
            DatetimeUnit.HOUR_OF_DAY: 14,
            # Sunday is day 1.
            DatetimeUnit.DAY_OF_WEEK: 4,
            DatetimeUnit.DAY_OF_MONTH: 13,
            DatetimeUnit.DAY_OF_YEAR: 134,
            DatetimeUnit.WEEK_OF_YEAR: 20,
            DatetimeUnit.MONTH_OF_YEAR: 5,
            DatetimeUnit.QUARTER_OF_YEAR: 2,
        }
        self.assertEqual(EXTRACTION_UNITS, frozenset(expected_values.keys()))
        for unit, expected_value in expected_values.items():
            self.assertTrue(unit.is_extraction)
            self.assertEqual(expected_value, extract(SAMPLE_INSTANT, unit), msg=unit)
            self.assertEqual(expected_value, apply_unit(SAMPLE_INSTANT, unit), msg=unit)

    def test_day_of_week_boundaries(self) -> None:
        sunday = datetime.datetime(2020, 5, 10, tzinfo=UTC)
        saturday = datetime.datetime(2020, 5, 16, tzinfo=UTC)
        self.assertEqual(1, extract(sunday, DatetimeUnit.DAY_OF_WEEK))
        self.assertEqual(7, extract(saturday, DatetimeUnit.DAY_OF_WEEK))

    def test_week_of_year_boundaries(self) -> None:
        # January 1st 2020 is a Wednesday, so the second week starts on Sunday January 5th.
        self.assertEqual(1, extract(datetime.datetime(2020, 1, 1), DatetimeUnit.WEEK_OF_YEAR))
        self.assertEqual(1, extract(datetime.datetime(2020, 1, 4), DatetimeUnit.WEEK_OF_YEAR))
        self.assertEqual(2, extract(datetime.datetime(2020, 1, 5), DatetimeUnit.WEEK_OF_YEAR))

    def test_extract_truncation_unit(self) -> None:
        with self.assertRaises(AssertionError):
            extract(SAMPLE_INSTANT, DatetimeUnit.MONTH)


class PeriodBoundsTests(unittest.TestCase):
    def test_period_bounds(self) -> None:
        expected_bounds = {
            DatetimeUnit.DAY: (
                datetime.datetime(2020, 5, 13, tzinfo=UTC),
                datetime.datetime(2020, 5, 14, tzinfo=UTC),
            ),
            DatetimeUnit.WEEK: (
                datetime.datetime(2020, 5, 10, tzinfo=UTC),
                datetime.datetime(2020, 5, 17, tzinfo=UTC),
            ),
            DatetimeUnit.QUARTER: (
                datetime.datetime(2020, 4, 1, tzinfo=UTC),
                datetime.datetime(2020, 7, 1, tzinfo=UTC),
            ),
            DatetimeUnit.DEFAULT: (
                SAMPLE_INSTANT,
                SAMPLE_INSTANT + datetime.timedelta(milliseconds=1),
            ),
        }
        for unit, bounds in expected_bounds.items():
            self.assertEqual(bounds, period_bounds(SAMPLE_INSTANT, unit), msg=unit)

    def test_period_bounds_across_years(self) -> None:
        december = datetime.datetime(2019, 12, 24, tzinfo=UTC)
        self.assertEqual(
            (datetime.datetime(2019, 12, 1, tzinfo=UTC), datetime.datetime(2020, 1, 1, tzinfo=UTC)),
            period_bounds(december, DatetimeUnit.MONTH),
        )
        self.assertEqual(
            (datetime.datetime(2019, 10, 1, tzinfo=UTC), datetime.datetime(2020, 1, 1, tzinfo=UTC)),
            period_bounds(december, DatetimeUnit.QUARTER),
        )
        self.assertEqual(
            (datetime.datetime(2019, 1, 1, tzinfo=UTC), datetime.datetime(2020, 1, 1, tzinfo=UTC)),
            period_bounds(december, DatetimeUnit.YEAR),
        )
