# Copyright 2020-present Kensho Technologies, LLC.
import unittest

from ..compiler import CopyVariable, DatetimeValue, FieldValue, NativeQuery
from ..datetime_units import DatetimeUnit
from ..edn import Keyword, PullExpression, Symbol
from ..schema.value_types import Cardinality, ValueType
from .test_helpers import compare_edn


RELEASE = Symbol("?release")
RELEASE_DATE = Symbol("?release|release|date")


class SelectSpecTests(unittest.TestCase):
    def test_spec_validation(self) -> None:
        with self.assertRaises(AssertionError):
            FieldValue(Symbol("release"), "release/name", ValueType.STRING, Cardinality.ONE, True)

        release_name = FieldValue(RELEASE, "release/name", ValueType.STRING, Cardinality.ONE, True)
        with self.assertRaises(AssertionError):
            DatetimeValue(release_name, DatetimeUnit.MONTH)

    def test_native_query_validation(self) -> None:
        with self.assertRaises(AssertionError):
            NativeQuery(find=(), where=(), select=())

        with self.assertRaises(AssertionError):
            NativeQuery(
                find=(RELEASE,),
                where=(),
                select=(CopyVariable(RELEASE),),
                column_names=("id", "name"),
            )


class NativeQueryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.date_value = FieldValue(
            RELEASE_DATE, "release/date", ValueType.INSTANT, Cardinality.ONE, False
        )
        self.name_value = FieldValue(
            RELEASE, "release/name", ValueType.STRING, Cardinality.ONE, True
        )
        self.native_query = NativeQuery(
            find=(RELEASE, RELEASE_DATE, PullExpression(RELEASE, (Keyword("release/name"),))),
            where=(),
            select=(DatetimeValue(self.date_value, DatetimeUnit.YEAR), self.name_value),
            column_names=("date:year", "name"),
        )

    def test_get_find_index(self) -> None:
        self.assertEqual(1, self.native_query.get_find_index(self.date_value))
        self.assertEqual(
            1, self.native_query.get_find_index(DatetimeValue(self.date_value, DatetimeUnit.DAY))
        )
        self.assertEqual(2, self.native_query.get_find_index(self.name_value))
        self.assertEqual(0, self.native_query.get_find_index(CopyVariable(RELEASE)))

    def test_to_edn(self) -> None:
        compare_edn(
            self,
            """{
                :find [?release ?release|release|date (pull ?release [:release/name])],
                :where []
            }""",
            self.native_query.to_edn(),
        )

        expected_edn = """{
            :find [?release ?release|release|date (pull ?release [:release/name])],
            :where [],
            :select [
                [:datetime
                 [:field ?release|release|date :release/date :db.type/instant
                  :db.cardinality/one false]
                 :year]
                [:field ?release :release/name :db.type/string :db.cardinality/one true]
            ],
            :order-by [],
            :limit nil
        }"""
        compare_edn(self, expected_edn, self.native_query.to_edn(include_extensions=True))
