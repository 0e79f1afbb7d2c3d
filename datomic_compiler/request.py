# Copyright 2020-present Kensho Technologies, LLC.
"""Structured query requests, as supplied by the host for each query.

A request reads from one source table. Breakout fields are grouped on, and come first in the
output. Plain fields are projected as they are, and follow the breakouts. Fields of other tables
are reached through foreign key references, which cross either a reference attribute or a
custom relationship, and may be nested to cross several of them.

parse_query_request() reads requests from the host's JSON-shaped query language, for example:
    {
        "source-table": "artist",
        "fields": [["field", "artist", "name"]],
        "breakout": [["fk->", ["field", "artist", "country"], ["field", "country", "name"]]],
        "filter": ["and", [">", ["field", "artist", "startYear"], 1960],
                          ["not-null", ["field", "artist", "name"]]],
        "order-by": [["desc", ["field", "artist", "name"]]],
        "limit": 10,
    }
"""
from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

from .datetime_units import DatetimeUnit
from .edn import Keyword, keyword_name
from .exceptions import UnsupportedQueryError


@dataclass(frozen=True)
class FieldReference:
    """A field of a table, by name."""

    table: str
    name: str


@dataclass(frozen=True)
class ForeignKeyReference:
    """A field of another table, reached by following a reference field of the current table."""

    source: Union[FieldReference, "ForeignKeyReference"]
    target: FieldReference


@dataclass(frozen=True)
class DatetimeFieldReference:
    """An instant-valued field, bucketed by a datetime unit."""

    field: Union[FieldReference, ForeignKeyReference]
    unit: DatetimeUnit


AnyFieldReference = Union[FieldReference, ForeignKeyReference, DatetimeFieldReference]


@unique
class ComparisonOperator(Enum):
    EQUAL = "="
    NOT_EQUAL = "!="
    LESS_THAN = "<"
    GREATER_THAN = ">"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN_OR_EQUAL = ">="


@unique
class StringOperator(Enum):
    CONTAINS = "contains"
    STARTS_WITH = "starts-with"
    ENDS_WITH = "ends-with"


@dataclass(frozen=True)
class ComparisonFilter:
    """Compare a field against values. Only equality operators accept more than one value."""

    operator: ComparisonOperator
    field: AnyFieldReference
    values: Tuple[Any, ...]

    def __post_init__(self) -> None:
        """Validate fields."""
        if not self.values:
            raise AssertionError(f"Expected at least one value to compare against: {self}")
        multiple_values_allowed = self.operator in (
            ComparisonOperator.EQUAL,
            ComparisonOperator.NOT_EQUAL,
        )
        if len(self.values) > 1 and not multiple_values_allowed:
            raise AssertionError(
                f"Operator {self.operator.value} compares against exactly one value: {self}"
            )


@dataclass(frozen=True)
class BetweenFilter:
    """Inclusive range filter."""

    field: AnyFieldReference
    lower_bound: Any
    upper_bound: Any


@dataclass(frozen=True)
class StringFilter:
    operator: StringOperator
    field: AnyFieldReference
    value: str


@dataclass(frozen=True)
class IsNullFilter:
    field: AnyFieldReference


@dataclass(frozen=True)
class NotNullFilter:
    field: AnyFieldReference


@dataclass(frozen=True)
class AndFilter:
    clauses: Tuple["Filter", ...]


@dataclass(frozen=True)
class OrFilter:
    clauses: Tuple["Filter", ...]


@dataclass(frozen=True)
class NotFilter:
    clause: "Filter"


Filter = Union[
    ComparisonFilter,
    BetweenFilter,
    StringFilter,
    IsNullFilter,
    NotNullFilter,
    AndFilter,
    OrFilter,
    NotFilter,
]


@dataclass(frozen=True)
class Aggregation:
    """An aggregation of the request, e.g. ["count"] or ["sum", ["field", "track", "length"]]."""

    operator: str
    field: Optional[AnyFieldReference] = None


@unique
class OrderDirection(Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"


@dataclass(frozen=True)
class OrderBy:
    field: AnyFieldReference
    direction: OrderDirection = OrderDirection.ASCENDING


@dataclass(frozen=True)
class QueryRequest:
    """A SQL-shaped query over one table of the inferred schema."""

    source_table: str
    breakouts: Tuple[AnyFieldReference, ...] = ()
    fields: Tuple[AnyFieldReference, ...] = ()
    filter: Optional[Filter] = None
    aggregations: Tuple[Aggregation, ...] = ()
    order_by: Tuple[OrderBy, ...] = ()
    limit: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate fields."""
        if self.limit is not None and (
            isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 0
        ):
            raise AssertionError(f"Expected limit to be a non-negative int, got: {self.limit}")

    @property
    def output_fields(self) -> Tuple[AnyFieldReference, ...]:
        """Return the fields of the output columns, in order: breakouts first, then plain fields."""
        return self.breakouts + self.fields


# Request parsing.


FIELD_CLAUSE = "field"
FOREIGN_KEY_CLAUSE = "fk->"
DATETIME_FIELD_CLAUSE = "datetime-field"

SOURCE_TABLE_KEY = "source-table"
FIELDS_KEY = "fields"
BREAKOUT_KEY = "breakout"
FILTER_KEY = "filter"
AGGREGATION_KEY = "aggregation"
ORDER_BY_KEY = "order-by"
LIMIT_KEY = "limit"

_KNOWN_KEYS = frozenset(
    {
        SOURCE_TABLE_KEY,
        FIELDS_KEY,
        BREAKOUT_KEY,
        FILTER_KEY,
        AGGREGATION_KEY,
        ORDER_BY_KEY,
        LIMIT_KEY,
    }
)


def _clause_name(clause: Any) -> str:
    """Return the name at the head of a clause like ["field", ...], or raise if there is none."""
    if isinstance(clause, (str, bytes)) or not isinstance(clause, Sequence) or not clause:
        raise UnsupportedQueryError(f"Expected a non-empty list as a query clause, got: {clause}")
    name = clause[0]
    if not isinstance(name, (str, Keyword)):
        raise UnsupportedQueryError(f"Expected a clause name at the head of clause: {clause}")
    return keyword_name(name).lower()


def _check_clause_length(clause: Sequence[Any], expected_length: int) -> None:
    if len(clause) != expected_length:
        raise UnsupportedQueryError(
            f"Expected clause {clause[0]} to have {expected_length - 1} arguments: {clause}"
        )


def _parse_plain_field_reference(clause: Any) -> FieldReference:
    if _clause_name(clause) != FIELD_CLAUSE:
        raise UnsupportedQueryError(f"Expected a plain field reference, got: {clause}")
    _check_clause_length(clause, 3)
    _, table, name = clause
    if not isinstance(table, (str, Keyword)) or not isinstance(name, (str, Keyword)):
        raise UnsupportedQueryError(f"Expected table and field names in clause {clause}")
    return FieldReference(table=keyword_name(table), name=keyword_name(name))


def _parse_non_datetime_field_reference(
    clause: Any,
) -> Union[FieldReference, ForeignKeyReference]:
    name = _clause_name(clause)
    if name == FIELD_CLAUSE:
        return _parse_plain_field_reference(clause)
    elif name == FOREIGN_KEY_CLAUSE:
        _check_clause_length(clause, 3)
        return ForeignKeyReference(
            source=_parse_non_datetime_field_reference(clause[1]),
            target=_parse_plain_field_reference(clause[2]),
        )
    else:
        raise UnsupportedQueryError(f"Unsupported field reference: {clause}")


def parse_field_reference(clause: Any) -> AnyFieldReference:
    """Parse a field reference like ["field", "artist", "name"]."""
    if _clause_name(clause) == DATETIME_FIELD_CLAUSE:
        _check_clause_length(clause, 3)
        unit_name = clause[2]
        try:
            unit = DatetimeUnit(keyword_name(unit_name))
        except (ValueError, AssertionError) as e:
            raise UnsupportedQueryError(f"Unsupported datetime unit in clause {clause}") from e
        return DatetimeFieldReference(
            field=_parse_non_datetime_field_reference(clause[1]), unit=unit
        )
    return _parse_non_datetime_field_reference(clause)


def parse_filter(clause: Any) -> Filter:
    """Parse a filter clause like ["=", ["field", "user", "name"], "alice", "bob"]."""
    name = _clause_name(clause)
    arguments = clause[1:]

    if name in ("and", "or"):
        if not arguments:
            raise UnsupportedQueryError(f"Expected at least one nested filter in clause {clause}")
        nested_filters = tuple(parse_filter(nested_clause) for nested_clause in arguments)
        return AndFilter(nested_filters) if name == "and" else OrFilter(nested_filters)
    elif name == "not":
        _check_clause_length(clause, 2)
        return NotFilter(parse_filter(arguments[0]))
    elif name in ("is-null", "not-null"):
        _check_clause_length(clause, 2)
        field = parse_field_reference(arguments[0])
        return IsNullFilter(field) if name == "is-null" else NotNullFilter(field)
    elif name == "between":
        _check_clause_length(clause, 4)
        return BetweenFilter(
            field=parse_field_reference(arguments[0]),
            lower_bound=arguments[1],
            upper_bound=arguments[2],
        )
    elif name in {operator.value for operator in StringOperator}:
        _check_clause_length(clause, 3)
        if not isinstance(arguments[1], str):
            raise UnsupportedQueryError(f"Expected a string argument in clause {clause}")
        return StringFilter(
            operator=StringOperator(name),
            field=parse_field_reference(arguments[0]),
            value=arguments[1],
        )
    elif name in {operator.value for operator in ComparisonOperator}:
        operator = ComparisonOperator(name)
        if len(arguments) < 2:
            raise UnsupportedQueryError(f"Expected a field and a value in clause {clause}")
        if operator not in (ComparisonOperator.EQUAL, ComparisonOperator.NOT_EQUAL):
            _check_clause_length(clause, 3)
        return ComparisonFilter(
            operator=operator,
            field=parse_field_reference(arguments[0]),
            values=tuple(arguments[1:]),
        )
    else:
        raise UnsupportedQueryError(f"Unsupported filter clause: {clause}")


def _parse_aggregation(clause: Any) -> Aggregation:
    name = _clause_name(clause)
    if len(clause) == 1:
        return Aggregation(operator=name)
    _check_clause_length(clause, 2)
    return Aggregation(operator=name, field=parse_field_reference(clause[1]))


def _parse_order_by(clause: Any) -> OrderBy:
    name = _clause_name(clause)
    try:
        direction = OrderDirection(name)
    except ValueError as e:
        raise UnsupportedQueryError(f"Unsupported order-by direction in clause {clause}") from e
    _check_clause_length(clause, 2)
    return OrderBy(field=parse_field_reference(clause[1]), direction=direction)


def _get_list(data: Mapping[str, Any], key: str) -> Sequence[Any]:
    value = data.get(key)
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise UnsupportedQueryError(f'Expected "{key}" to be a list of clauses, got: {value}')
    return value


def parse_query_request(data: Mapping[str, Any]) -> QueryRequest:
    """Parse a structured query request from its JSON-shaped representation.

    Args:
        data: mapping with the following keys, all but "source-table" optional:
                - source-table: name of the table to query
                - fields: list of field references, projected as they are
                - breakout: list of field references to group by
                - filter: a single filter clause; combine clauses with "and" / "or"
                - aggregation: list of aggregation clauses, e.g. ["count"]
                - order-by: list of ["asc", field reference] / ["desc", field reference]
                - limit: maximum number of rows to return
              Keys may be spelled as keywords, with a leading colon.

    Returns:
        QueryRequest representing the query

    Raises:
        UnsupportedQueryError: if the request contains clauses that are unknown or malformed.
    """
    if not isinstance(data, Mapping):
        raise UnsupportedQueryError(f"Expected the query request to be a mapping, got: {data}")

    non_string_keys = [key for key in data.keys() if not isinstance(key, (str, Keyword))]
    if non_string_keys:
        raise UnsupportedQueryError(
            f"Expected the clauses of the query request to be named by strings, got: "
            f"{non_string_keys}"
        )

    data = {keyword_name(key).replace("_", "-"): value for key, value in data.items()}
    unknown_keys = set(data.keys()) - _KNOWN_KEYS
    if unknown_keys:
        raise UnsupportedQueryError(
            f"Unsupported clauses in query request: {sorted(unknown_keys)}"
        )

    source_table = data.get(SOURCE_TABLE_KEY)
    if not isinstance(source_table, (str, Keyword)) or not keyword_name(source_table):
        raise UnsupportedQueryError(f"Expected the name of a source table, got: {source_table}")

    limit = data.get(LIMIT_KEY)
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
        raise UnsupportedQueryError(f"Expected limit to be a non-negative integer, got: {limit}")

    filter_clause = data.get(FILTER_KEY)
    return QueryRequest(
        source_table=keyword_name(source_table),
        breakouts=tuple(parse_field_reference(clause) for clause in _get_list(data, BREAKOUT_KEY)),
        fields=tuple(parse_field_reference(clause) for clause in _get_list(data, FIELDS_KEY)),
        filter=None if filter_clause is None else parse_filter(filter_clause),
        aggregations=tuple(
            _parse_aggregation(clause) for clause in _get_list(data, AGGREGATION_KEY)
        ),
        order_by=tuple(_parse_order_by(clause) for clause in _get_list(data, ORDER_BY_KEY)),
        limit=limit,
    )
