# Copyright 2020-present Kensho Technologies, LLC.
"""Translation of the filter tree of a request to predicate clauses of the where clause.

Filters only ever operate on variables that were already bound null-safely, so that an entity
missing the filtered attribute stays a candidate unless the filter requires the attribute to be
present. Operators that could never be satisfied by a missing value (ordering comparisons,
ranges and string matching) are guarded by a [(!= ?v SENTINEL)] clause, since the sentinel is
an ordinary value as far as the store is concerned.
"""
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, List, Optional, Sequence, Tuple

from ..datetime_units import DatetimeUnit, period_bounds
from ..deserialization import deserialize_argument
from ..edn import ListForm, Symbol
from ..exceptions import UnsupportedQueryError
from ..global_utils import get_only_element_from_collection
from ..request import (
    AndFilter,
    AnyFieldReference,
    BetweenFilter,
    ComparisonFilter,
    ComparisonOperator,
    Filter,
    IsNullFilter,
    NotFilter,
    NotNullFilter,
    OrFilter,
    StringFilter,
    StringOperator,
)
from ..schema.catalog import AttributeCatalog
from ..schema.value_types import ValueType, nullable_binding_default
from .bindings import NOT, NOT_JOIN, OR_JOIN, and_clause, predicate_clause


EQUAL = Symbol("=")
NOT_EQUAL = Symbol("!=")
LESS_THAN = Symbol("<")
GREATER_THAN = Symbol(">")
LESS_THAN_OR_EQUAL = Symbol("<=")
GREATER_THAN_OR_EQUAL = Symbol(">=")
CONTAINS = Symbol("contains?")

COMPARISON_FUNCTIONS = {
    ComparisonOperator.LESS_THAN: LESS_THAN,
    ComparisonOperator.GREATER_THAN: GREATER_THAN,
    ComparisonOperator.LESS_THAN_OR_EQUAL: LESS_THAN_OR_EQUAL,
    ComparisonOperator.GREATER_THAN_OR_EQUAL: GREATER_THAN_OR_EQUAL,
}

STRING_FUNCTIONS = {
    StringOperator.CONTAINS: Symbol("clojure.string/includes?"),
    StringOperator.STARTS_WITH: Symbol("clojure.string/starts-with?"),
    StringOperator.ENDS_WITH: Symbol("clojure.string/ends-with?"),
}


@dataclass(frozen=True)
class BoundValue:
    """A field of the request, bound to a logic variable of the query under compilation."""

    variable: Symbol
    value_type: ValueType
    description: str  # What the variable holds, for error messages, e.g. an attribute ident.
    unit: Optional[DatetimeUnit] = None


FieldBinder = Callable[[AnyFieldReference], BoundValue]

# Predicate clauses, and the variables they refer to.
CompiledFilter = Tuple[List[Any], FrozenSet[Symbol]]


def _sentinel_guard(bound_value: BoundValue) -> Tuple[ListForm]:
    """Return the clause excluding entities that lack the bound attribute."""
    sentinel = nullable_binding_default(bound_value.value_type)
    return predicate_clause(NOT_EQUAL, bound_value.variable, sentinel)


def _deserialize(bound_value: BoundValue, value: Any, catalog: AttributeCatalog) -> Any:
    return deserialize_argument(
        bound_value.value_type, value, catalog=catalog, attribute_ident=bound_value.description
    )


def _is_bucketed(bound_value: BoundValue) -> bool:
    """Return True if the value is compared by datetime bucket rather than by raw instant."""
    if bound_value.unit is None or bound_value.unit == DatetimeUnit.DEFAULT:
        return False
    if bound_value.unit.is_extraction:
        raise UnsupportedQueryError(
            f"Cannot filter on {bound_value.description} by datetime unit "
            f"{bound_value.unit.value}: only truncation units can be filtered on."
        )
    return True


def _bucket_clauses(bound_value: BoundValue, value: Any, catalog: AttributeCatalog) -> List[Any]:
    """Return the clauses matching instants of the same bucket as the given value."""
    start, end = period_bounds(_deserialize(bound_value, value, catalog), bound_value.unit)
    variable = bound_value.variable
    return [
        predicate_clause(GREATER_THAN_OR_EQUAL, variable, start),
        predicate_clause(LESS_THAN, variable, end),
    ]


def _equality_clauses(
    bound_value: BoundValue, values: Sequence[Any], catalog: AttributeCatalog
) -> List[Any]:
    """Return the clauses matching the bound value against any of the given values."""
    variable = bound_value.variable
    if _is_bucketed(bound_value):
        buckets = [_bucket_clauses(bound_value, value, catalog) for value in values]
        if len(buckets) == 1:
            matching_clauses = buckets[0]
        else:
            matching_clauses = [
                ListForm.of(OR_JOIN, (variable,), *(and_clause(bucket) for bucket in buckets))
            ]
        return [_sentinel_guard(bound_value)] + matching_clauses

    arguments = [_deserialize(bound_value, value, catalog) for value in values]
    if len(arguments) == 1:
        return [predicate_clause(EQUAL, variable, arguments[0])]
    return [predicate_clause(CONTAINS, frozenset(arguments), variable)]


def _compile_comparison(
    filter_: ComparisonFilter, bound_value: BoundValue, catalog: AttributeCatalog
) -> List[Any]:
    variable = bound_value.variable
    if filter_.operator == ComparisonOperator.EQUAL:
        return _equality_clauses(bound_value, filter_.values, catalog)
    elif filter_.operator == ComparisonOperator.NOT_EQUAL:
        if len(filter_.values) == 1 and not _is_bucketed(bound_value):
            argument = _deserialize(bound_value, filter_.values[0], catalog)
            return [predicate_clause(NOT_EQUAL, variable, argument)]
        # Missing values never match the negated clauses, so they remain candidates.
        return [ListForm.of(NOT, *_equality_clauses(bound_value, filter_.values, catalog))]

    value = get_only_element_from_collection(filter_.values)
    if not _is_bucketed(bound_value):
        argument = _deserialize(bound_value, value, catalog)
        function = COMPARISON_FUNCTIONS[filter_.operator]
        return [_sentinel_guard(bound_value), predicate_clause(function, variable, argument)]

    # Compare against the boundaries of the value's bucket, so that whole buckets match or not.
    start, end = period_bounds(_deserialize(bound_value, value, catalog), bound_value.unit)
    if filter_.operator == ComparisonOperator.LESS_THAN:
        bucket_clause = predicate_clause(LESS_THAN, variable, start)
    elif filter_.operator == ComparisonOperator.GREATER_THAN_OR_EQUAL:
        bucket_clause = predicate_clause(GREATER_THAN_OR_EQUAL, variable, start)
    elif filter_.operator == ComparisonOperator.GREATER_THAN:
        bucket_clause = predicate_clause(GREATER_THAN_OR_EQUAL, variable, end)
    elif filter_.operator == ComparisonOperator.LESS_THAN_OR_EQUAL:
        bucket_clause = predicate_clause(LESS_THAN, variable, end)
    else:
        raise AssertionError(f"Unreachable code reached: unknown operator {filter_.operator}")
    return [_sentinel_guard(bound_value), bucket_clause]


def _compile_between(
    filter_: BetweenFilter, bound_value: BoundValue, catalog: AttributeCatalog
) -> List[Any]:
    variable = bound_value.variable
    if _is_bucketed(bound_value):
        lower_bound, _ = period_bounds(
            _deserialize(bound_value, filter_.lower_bound, catalog), bound_value.unit
        )
        _, upper_bound = period_bounds(
            _deserialize(bound_value, filter_.upper_bound, catalog), bound_value.unit
        )
        upper_clause = predicate_clause(LESS_THAN, variable, upper_bound)
    else:
        lower_bound = _deserialize(bound_value, filter_.lower_bound, catalog)
        upper_clause = predicate_clause(
            LESS_THAN_OR_EQUAL, variable, _deserialize(bound_value, filter_.upper_bound, catalog)
        )
    return [
        _sentinel_guard(bound_value),
        predicate_clause(GREATER_THAN_OR_EQUAL, variable, lower_bound),
        upper_clause,
    ]


def _compile_string_filter(filter_: StringFilter, bound_value: BoundValue) -> List[Any]:
    if bound_value.value_type != ValueType.STRING:
        raise UnsupportedQueryError(
            f"Cannot apply the {filter_.operator.value} filter to {bound_value.description}, "
            f"which is of type {bound_value.value_type.value} rather than a string."
        )
    if not isinstance(filter_.value, str):
        raise UnsupportedQueryError(
            f"Expected a string argument for the {filter_.operator.value} filter, "
            f"got: {repr(filter_.value)}"
        )
    function = STRING_FUNCTIONS[filter_.operator]
    return [
        _sentinel_guard(bound_value),
        predicate_clause(function, bound_value.variable, filter_.value),
    ]


def _sorted_variables(variables: FrozenSet[Symbol]) -> Tuple[Symbol, ...]:
    return tuple(sorted(variables))


def _compile(filter_: Filter, bind: FieldBinder, catalog: AttributeCatalog) -> CompiledFilter:
    """Compile the filter, returning its clauses and the variables they refer to."""
    if isinstance(filter_, AndFilter):
        clauses: List[Any] = []
        variables: FrozenSet[Symbol] = frozenset()
        for nested_filter in filter_.clauses:
            nested_clauses, nested_variables = _compile(nested_filter, bind, catalog)
            clauses.extend(nested_clauses)
            variables = variables.union(nested_variables)
        return clauses, variables
    elif isinstance(filter_, OrFilter):
        if not filter_.clauses:
            raise UnsupportedQueryError("Cannot compile an empty disjunction of filters.")
        branches = []
        variables = frozenset()
        for nested_filter in filter_.clauses:
            nested_clauses, nested_variables = _compile(nested_filter, bind, catalog)
            if not nested_clauses:
                raise UnsupportedQueryError(
                    f"Cannot compile a disjunction with an empty branch: {filter_}"
                )
            branches.append(and_clause(nested_clauses))
            variables = variables.union(nested_variables)
        return [ListForm.of(OR_JOIN, _sorted_variables(variables), *branches)], variables
    elif isinstance(filter_, NotFilter):
        nested_clauses, variables = _compile(filter_.clause, bind, catalog)
        if not nested_clauses:
            raise UnsupportedQueryError(f"Cannot negate an empty filter: {filter_}")
        return [ListForm.of(NOT_JOIN, _sorted_variables(variables), *nested_clauses)], variables

    bound_value = bind(filter_.field)
    if isinstance(filter_, ComparisonFilter):
        clauses = _compile_comparison(filter_, bound_value, catalog)
    elif isinstance(filter_, BetweenFilter):
        clauses = _compile_between(filter_, bound_value, catalog)
    elif isinstance(filter_, StringFilter):
        clauses = _compile_string_filter(filter_, bound_value)
    elif isinstance(filter_, IsNullFilter):
        sentinel = nullable_binding_default(bound_value.value_type)
        clauses = [predicate_clause(EQUAL, bound_value.variable, sentinel)]
    elif isinstance(filter_, NotNullFilter):
        clauses = [_sentinel_guard(bound_value)]
    else:
        raise AssertionError(f"Unreachable code reached: unknown filter {filter_}")
    return clauses, frozenset({bound_value.variable})


def compile_filter(
    filter_: Optional[Filter], bind: FieldBinder, catalog: AttributeCatalog
) -> List[Any]:
    """Translate the filter tree of a request into predicate clauses.

    Args:
        filter_: the filter tree of the request, or None if the request is unfiltered.
        bind: function binding a field reference of the request null-safely, returning the
              BoundValue describing its variable. Binding clauses are emitted by the caller,
              separately from the predicate clauses returned here.
        catalog: catalog used to resolve reference arguments given as idents.

    Returns:
        list of where clauses implementing the filter

    Raises:
        UnsupportedQueryError: if the filter cannot be translated.
        InvalidQueryArgumentError: if a filter argument does not fit the filtered field's type.
    """
    if filter_ is None:
        return []
    clauses, _ = _compile(filter_, bind, catalog)
    return clauses
