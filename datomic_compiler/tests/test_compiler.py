# Copyright 2020-present Kensho Technologies, LLC.
import unittest

from ..compiler import CopyVariable, DatetimeValue, FieldValue, NativeQuery, compile_query
from ..compiler.native_query import OrderBySpec
from ..datetime_units import DatetimeUnit
from ..edn import Keyword, PullExpression, Symbol
from ..exceptions import UnsupportedQueryError
from ..request import (
    Aggregation,
    ComparisonFilter,
    ComparisonOperator,
    DatetimeFieldReference,
    FieldReference,
    ForeignKeyReference,
    IsNullFilter,
    OrderBy,
    OrderDirection,
    QueryRequest,
)
from ..schema.value_types import Cardinality, ValueType
from .test_helpers import (
    ARTIST_MEMBERSHIP_EDN,
    MALE_ENTITY_ID,
    NIL_INSTANT_EDN,
    NIL_NUMBER_EDN,
    NIL_STRING_EDN,
    USER_MEMBERSHIP_EDN,
    compare_edn,
    get_music_snapshot,
    get_user_snapshot,
)


USER = Symbol("?user")
ARTIST = Symbol("?artist")

ARTIST_COUNTRY_NAME = ForeignKeyReference(
    FieldReference("artist", "country"), FieldReference("country", "name")
)


class CompilerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.music_snapshot = get_music_snapshot()
        self.user_snapshot = get_user_snapshot()

    def compile_music_query(self, request: QueryRequest) -> NativeQuery:
        return compile_query(
            request, self.music_snapshot.catalog, self.music_snapshot.custom_relationships
        )

    def compile_user_query(self, request: QueryRequest) -> NativeQuery:
        return compile_query(request, self.user_snapshot.catalog)


class PlainFieldCompilationTests(CompilerTestCase):
    def test_plain_fields_with_filter(self) -> None:
        request = QueryRequest(
            source_table="user",
            fields=(FieldReference("user", "name"),),
            filter=ComparisonFilter(
                ComparisonOperator.GREATER_THAN, FieldReference("user", "age"), (18,)
            ),
        )
        native_query = self.compile_user_query(request)

        expected_edn = f"""{{
            :find [?user (pull ?user [:user/name])],
            :where [
                {USER_MEMBERSHIP_EDN}
                [(get-else $ ?user :user/age {NIL_NUMBER_EDN}) ?user|user|age]
                [(!= ?user|user|age {NIL_NUMBER_EDN})]
                [(> ?user|user|age 18)]
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())

        expected_select = (FieldValue(USER, "user/name", ValueType.STRING, Cardinality.ONE, True),)
        self.assertEqual(expected_select, native_query.select)
        self.assertEqual(("name",), native_query.column_names)
        self.assertFalse(native_query.deduplicate)
        self.assertEqual((), native_query.order_by)
        self.assertIsNone(native_query.limit)

    def test_default_fields(self) -> None:
        native_query = self.compile_music_query(QueryRequest(source_table="country"))

        expected_edn = """{
            :find [?country (pull ?country [:country/name])],
            :where [[?country :country/name]]
        }"""
        compare_edn(self, expected_edn, native_query.to_edn())
        self.assertEqual(
            (
                CopyVariable(Symbol("?country"), ValueType.REF),
                FieldValue(
                    Symbol("?country"), "country/name", ValueType.STRING, Cardinality.ONE, True
                ),
            ),
            native_query.select,
        )
        self.assertEqual(("id", "name"), native_query.column_names)

    def test_default_fields_exclude_relationships(self) -> None:
        native_query = self.compile_music_query(QueryRequest(source_table="artist"))
        self.assertEqual(
            ("id", "country", "name", "startYear", "tags", "group/name"),
            native_query.column_names,
        )
        expected_edn = f"""{{
            :find [?artist
                   (pull ?artist [:artist/country :artist/name :artist/startYear
                                  :artist/tags :group/name])],
            :where [{ARTIST_MEMBERSHIP_EDN}]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())

    def test_fields_of_referenced_entities(self) -> None:
        request = QueryRequest(
            source_table="artist",
            fields=(
                ForeignKeyReference(
                    FieldReference("artist", "releases"), FieldReference("release", "name")
                ),
            ),
        )
        native_query = self.compile_music_query(request)

        expected_edn = f"""{{
            :find [?artist ?artist|release|_artists
                   (pull ?artist|release|_artists [:release/name])],
            :where [
                {ARTIST_MEMBERSHIP_EDN}
                (or-join [?artist ?artist|release|_artists]
                    [?artist|release|_artists :release/artists ?artist]
                    (and (not-join [?artist] [_ :release/artists ?artist])
                         [(ground {NIL_NUMBER_EDN}) ?artist|release|_artists]))
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())
        self.assertEqual(("releases->name",), native_query.column_names)

    def test_attributes_without_sentinel_as_plain_fields(self) -> None:
        request = QueryRequest(source_table="user", fields=(FieldReference("user", "homepage"),))
        native_query = self.compile_user_query(request)
        self.assertEqual(
            (USER, PullExpression(USER, (Keyword("user/homepage"),))), native_query.find
        )


class BreakoutCompilationTests(CompilerTestCase):
    def test_cooccurring_attribute_breakout(self) -> None:
        request = QueryRequest(
            source_table="artist", breakouts=(FieldReference("artist", "group/name"),)
        )
        native_query = self.compile_music_query(request)

        expected_edn = f"""{{
            :find [?artist|group|name],
            :where [
                {ARTIST_MEMBERSHIP_EDN}
                [(get-else $ ?artist :group/name {NIL_STRING_EDN}) ?artist|group|name]
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())
        self.assertTrue(native_query.deduplicate)
        self.assertEqual(("group/name",), native_query.column_names)
        self.assertEqual(
            (
                FieldValue(
                    Symbol("?artist|group|name"),
                    "group/name",
                    ValueType.STRING,
                    Cardinality.ONE,
                    False,
                ),
            ),
            native_query.select,
        )

    def test_foreign_key_breakout_with_plain_field(self) -> None:
        request = QueryRequest(
            source_table="artist",
            breakouts=(ARTIST_COUNTRY_NAME,),
            fields=(FieldReference("artist", "name"),),
        )
        native_query = self.compile_music_query(request)

        expected_edn = f"""{{
            :find [?artist ?artist|artist|country|country|name (pull ?artist [:artist/name])],
            :where [
                {ARTIST_MEMBERSHIP_EDN}
                [(get-else $ ?artist :artist/country {NIL_NUMBER_EDN}) ?artist|artist|country]
                [(get-else $ ?artist|artist|country :country/name {NIL_STRING_EDN})
                 ?artist|artist|country|country|name]
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())

        # Breakouts come first, and a query with plain fields outputs one row per entity.
        self.assertEqual(("country->name", "name"), native_query.column_names)
        self.assertFalse(native_query.deduplicate)

    def test_relationship_breakout(self) -> None:
        request = QueryRequest(
            source_table="artist", breakouts=(FieldReference("artist", "releases"),)
        )
        native_query = self.compile_music_query(request)

        expected_edn = f"""{{
            :find [?artist|release|_artists],
            :where [
                {ARTIST_MEMBERSHIP_EDN}
                (or-join [?artist ?artist|release|_artists]
                    [?artist|release|_artists :release/artists ?artist]
                    (and (not-join [?artist] [_ :release/artists ?artist])
                         [(ground {NIL_NUMBER_EDN}) ?artist|release|_artists]))
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())
        self.assertEqual(
            (CopyVariable(Symbol("?artist|release|_artists"), ValueType.REF),),
            native_query.select,
        )

    def test_multi_hop_relationship_breakout(self) -> None:
        request = QueryRequest(
            source_table="release",
            breakouts=(
                ForeignKeyReference(
                    FieldReference("release", "countries"), FieldReference("country", "name")
                ),
            ),
        )
        native_query = self.compile_music_query(request)

        expected_edn = f"""{{
            :find [?release|release|artists|artist|country|country|name],
            :where [
                (or [?release :release/artists] [?release :release/date] [?release :release/name])
                (or-join [?release ?release|release|artists]
                    [?release :release/artists ?release|release|artists]
                    (and [(missing? $ ?release :release/artists)]
                         [(ground {NIL_NUMBER_EDN}) ?release|release|artists]))
                [(get-else $ ?release|release|artists :artist/country {NIL_NUMBER_EDN})
                 ?release|release|artists|artist|country]
                [(get-else $ ?release|release|artists|artist|country :country/name
                  {NIL_STRING_EDN})
                 ?release|release|artists|artist|country|country|name]
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())
        self.assertEqual(("countries->name",), native_query.column_names)

    def test_cardinality_many_breakout(self) -> None:
        request = QueryRequest(source_table="artist", breakouts=(FieldReference("artist", "tags"),))
        native_query = self.compile_music_query(request)

        expected_edn = f"""{{
            :find [?artist|artist|tags],
            :where [
                {ARTIST_MEMBERSHIP_EDN}
                (or-join [?artist ?artist|artist|tags]
                    [?artist :artist/tags ?artist|artist|tags]
                    (and [(missing? $ ?artist :artist/tags)]
                         [(ground {NIL_STRING_EDN}) ?artist|artist|tags]))
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())

    def test_datetime_breakout(self) -> None:
        release_date = FieldReference("release", "date")
        request = QueryRequest(
            source_table="release",
            breakouts=(
                DatetimeFieldReference(release_date, DatetimeUnit.MONTH),
                DatetimeFieldReference(release_date, DatetimeUnit.DAY_OF_WEEK),
            ),
        )
        native_query = self.compile_music_query(request)

        expected_edn = f"""{{
            :find [?release|release|date],
            :where [
                (or [?release :release/artists] [?release :release/date] [?release :release/name])
                [(get-else $ ?release :release/date {NIL_INSTANT_EDN}) ?release|release|date]
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())

        date_value = FieldValue(
            Symbol("?release|release|date"),
            "release/date",
            ValueType.INSTANT,
            Cardinality.ONE,
            False,
        )
        self.assertEqual(
            (
                DatetimeValue(date_value, DatetimeUnit.MONTH),
                DatetimeValue(date_value, DatetimeUnit.DAY_OF_WEEK),
            ),
            native_query.select,
        )
        self.assertEqual(("date:month", "date:day-of-week"), native_query.column_names)

    def test_default_datetime_unit_column_name(self) -> None:
        request = QueryRequest(
            source_table="release",
            breakouts=(
                DatetimeFieldReference(FieldReference("release", "date"), DatetimeUnit.DEFAULT),
            ),
        )
        self.assertEqual(("date",), self.compile_music_query(request).column_names)


class FilterAndOrderingCompilationTests(CompilerTestCase):
    def test_bindings_precede_predicates(self) -> None:
        request = QueryRequest(
            source_table="artist",
            fields=(FieldReference("artist", "name"),),
            filter=ComparisonFilter(ComparisonOperator.EQUAL, ARTIST_COUNTRY_NAME, ("UK",)),
        )
        native_query = self.compile_music_query(request)

        expected_edn = f"""{{
            :find [?artist (pull ?artist [:artist/name])],
            :where [
                {ARTIST_MEMBERSHIP_EDN}
                [(get-else $ ?artist :artist/country {NIL_NUMBER_EDN}) ?artist|artist|country]
                [(get-else $ ?artist|artist|country :country/name {NIL_STRING_EDN})
                 ?artist|artist|country|country|name]
                [(= ?artist|artist|country|country|name "UK")]
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())

    def test_filter_on_missing_relationship(self) -> None:
        request = QueryRequest(
            source_table="artist",
            fields=(FieldReference("artist", "name"),),
            filter=IsNullFilter(FieldReference("artist", "releases")),
        )
        native_query = self.compile_music_query(request)

        expected_edn = f"""{{
            :find [?artist (pull ?artist [:artist/name])],
            :where [
                {ARTIST_MEMBERSHIP_EDN}
                (or-join [?artist ?artist|release|_artists]
                    [?artist|release|_artists :release/artists ?artist]
                    (and (not-join [?artist] [_ :release/artists ?artist])
                         [(ground {NIL_NUMBER_EDN}) ?artist|release|_artists]))
                [(= ?artist|release|_artists {NIL_NUMBER_EDN})]
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())

    def test_filter_by_ident(self) -> None:
        request = QueryRequest(
            source_table="user",
            breakouts=(FieldReference("user", "name"),),
            filter=ComparisonFilter(
                ComparisonOperator.EQUAL, FieldReference("user", "gender"), ("gender/male",)
            ),
        )
        native_query = self.compile_user_query(request)

        expected_edn = f"""{{
            :find [?user|user|name],
            :where [
                {USER_MEMBERSHIP_EDN}
                [(get-else $ ?user :user/name {NIL_STRING_EDN}) ?user|user|name]
                [(get-else $ ?user :user/gender {NIL_NUMBER_EDN}) ?user|user|gender]
                [(= ?user|user|gender {MALE_ENTITY_ID})]
            ]
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn())

    def test_order_by_unselected_field(self) -> None:
        request = QueryRequest(
            source_table="user",
            fields=(FieldReference("user", "name"),),
            order_by=(OrderBy(FieldReference("user", "age"), OrderDirection.DESCENDING),),
            limit=10,
        )
        native_query = self.compile_user_query(request)

        self.assertEqual(
            (USER, PullExpression(USER, (Keyword("user/name"), Keyword("user/age")))),
            native_query.find,
        )
        self.assertEqual(
            (
                OrderBySpec(
                    FieldValue(USER, "user/age", ValueType.LONG, Cardinality.ONE, True),
                    OrderDirection.DESCENDING,
                ),
            ),
            native_query.order_by,
        )
        self.assertEqual(1, len(native_query.select))
        self.assertEqual(10, native_query.limit)

    def test_order_by_breakout(self) -> None:
        user_age = FieldReference("user", "age")
        request = QueryRequest(
            source_table="user",
            breakouts=(user_age,),
            order_by=(OrderBy(user_age, OrderDirection.ASCENDING),),
        )
        native_query = self.compile_user_query(request)
        self.assertEqual(
            (OrderBySpec(native_query.select[0], OrderDirection.ASCENDING),),
            native_query.order_by,
        )
        self.assertEqual((Symbol("?user|user|age"),), native_query.find)

    def test_breakout_query_must_order_by_breakouts(self) -> None:
        request = QueryRequest(
            source_table="user",
            breakouts=(FieldReference("user", "gender"),),
            order_by=(OrderBy(FieldReference("user", "age"), OrderDirection.ASCENDING),),
        )
        with self.assertRaises(UnsupportedQueryError):
            self.compile_user_query(request)

    def test_native_query_with_extensions(self) -> None:
        request = QueryRequest(
            source_table="user",
            fields=(FieldReference("user", "name"),),
            order_by=(OrderBy(FieldReference("user", "name"), OrderDirection.ASCENDING),),
            limit=5,
        )
        native_query = self.compile_user_query(request)

        expected_edn = f"""{{
            :find [?user (pull ?user [:user/name])],
            :where [{USER_MEMBERSHIP_EDN}],
            :select [[:field ?user :user/name :db.type/string :db.cardinality/one true]],
            :order-by [[[:field ?user :user/name :db.type/string :db.cardinality/one true] :asc]],
            :limit 5
        }}"""
        compare_edn(self, expected_edn, native_query.to_edn(include_extensions=True))

    def test_get_find_index(self) -> None:
        request = QueryRequest(
            source_table="artist",
            breakouts=(ARTIST_COUNTRY_NAME,),
            fields=(FieldReference("artist", "name"),),
        )
        native_query = self.compile_music_query(request)
        breakout_spec, field_spec = native_query.select
        self.assertEqual(1, native_query.get_find_index(breakout_spec))
        self.assertEqual(2, native_query.get_find_index(field_spec))
        self.assertEqual(0, native_query.get_find_index(CopyVariable(ARTIST)))
        self.assertIsNone(native_query.get_find_index(CopyVariable(Symbol("?release"))))


class CompilationErrorTests(CompilerTestCase):
    def test_aggregations_are_not_supported(self) -> None:
        request = QueryRequest(source_table="artist", aggregations=(Aggregation("count"),))
        with self.assertRaises(UnsupportedQueryError):
            self.compile_music_query(request)

    def test_unknown_tables_and_fields(self) -> None:
        invalid_requests = [
            QueryRequest(source_table="label"),
            QueryRequest(source_table="db"),
            QueryRequest(source_table="artist", fields=(FieldReference("artist", "birthday"),)),
            # Fields of other tables must be reached through a foreign key.
            QueryRequest(source_table="artist", fields=(FieldReference("country", "name"),)),
            # Only references can be followed.
            QueryRequest(
                source_table="artist",
                fields=(
                    ForeignKeyReference(
                        FieldReference("artist", "name"), FieldReference("country", "name")
                    ),
                ),
            ),
            # Relationships lead to a known table.
            QueryRequest(
                source_table="artist",
                fields=(
                    ForeignKeyReference(
                        FieldReference("artist", "releases"), FieldReference("country", "name")
                    ),
                ),
            ),
            QueryRequest(
                source_table="artist",
                fields=(
                    ForeignKeyReference(
                        FieldReference("artist", "country"), FieldReference("country", "code")
                    ),
                ),
            ),
        ]
        for request in invalid_requests:
            with self.assertRaises(UnsupportedQueryError, msg=request):
                self.compile_music_query(request)

    def test_datetime_units_apply_to_instants_only(self) -> None:
        request = QueryRequest(
            source_table="artist",
            breakouts=(
                DatetimeFieldReference(FieldReference("artist", "startYear"), DatetimeUnit.YEAR),
            ),
        )
        with self.assertRaises(UnsupportedQueryError):
            self.compile_music_query(request)

    def test_attributes_without_sentinel_cannot_be_broken_out(self) -> None:
        request = QueryRequest(source_table="user", breakouts=(FieldReference("user", "homepage"),))
        with self.assertRaises(UnsupportedQueryError):
            self.compile_user_query(request)


class CompilationPropertyTests(CompilerTestCase):
    def test_compilation_is_deterministic(self) -> None:
        request = QueryRequest(
            source_table="artist",
            breakouts=(ARTIST_COUNTRY_NAME, FieldReference("artist", "releases")),
            filter=ComparisonFilter(
                ComparisonOperator.GREATER_THAN, FieldReference("artist", "startYear"), (1960,)
            ),
        )
        first_query = self.compile_music_query(request)
        second_query = self.compile_music_query(request)
        self.assertEqual(first_query, second_query)
        self.assertEqual(
            first_query.to_edn(include_extensions=True),
            second_query.to_edn(include_extensions=True),
        )

    def test_compilation_is_logged(self) -> None:
        request = QueryRequest(source_table="country")
        with self.assertLogs("datomic_compiler.compiler.compiler_frontend", level="DEBUG") as logs:
            self.compile_music_query(request)
        self.assertEqual(1, len(logs.output))
        self.assertIn(":select", logs.output[0])
