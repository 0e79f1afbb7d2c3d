# Copyright 2020-present Kensho Technologies, LLC.
"""Turn the raw rows returned by the store into the output rows of the structured query.

The raw rows of a native query hold one binding per element of its find clause: a value bound to
a variable, or the map returned by a pull expression. The select and order-by specs of the query
say which raw value each output column is read from. Post-processing applies these steps, in
this order:
    1. Expansion of cardinality-many values: one row per element of the cartesian product of all
       looked up value sets of the row. An empty or absent value set yields a single null.
    2. Sentinel resolution: placeholder sentinels are replaced by null, except for booleans.
    3. Identifier resolution: references to entities with a symbolic identifier are replaced by
       that identifier, and keywords are rendered as "namespace/name" strings.
    4. Datetime bucketing of DatetimeValue columns.
    5. De-duplication, for queries consisting only of breakouts.
    6. Stable sorting by the order-by specs. Nulls are placed by a single NullOrdering policy,
       regardless of the direction of each ordering.
    7. Projection onto the select specs, and truncation to the limit.

Every step leaves already resolved values unchanged, so that resolution is idempotent.
"""
import datetime
from decimal import Decimal
from enum import Enum, unique
import itertools
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

from funcy import ldistinct, lsplit

from ..compiler.native_query import (
    CopyVariable,
    DatetimeValue,
    FieldValue,
    NativeQuery,
    SelectSpec,
)
from ..datetime_units import apply_unit
from ..edn import Keyword, keyword_name
from ..exceptions import PostProcessingError
from ..request import OrderDirection
from ..schema.catalog import ENTITY_ID_KEY, IDENT_KEY, AttributeCatalog
from ..schema.value_types import Cardinality, ValueType, unwrap_or_null


@unique
class NullOrdering(Enum):
    """Where null values are placed when sorting, whatever the direction of the ordering."""

    NULLS_FIRST = "nulls-first"
    NULLS_LAST = "nulls-last"


# A raw value source: a variable or pulled attribute of the find clause, before bucketing.
ValueSource = Any  # CopyVariable or FieldValue

# The values of one expanded row, by source.
ResolvedRow = Dict[ValueSource, Any]


def _get_source(spec: SelectSpec) -> ValueSource:
    """Return the spec that reads the raw value the given spec is computed from."""
    if isinstance(spec, DatetimeValue):
        return spec.field
    elif isinstance(spec, (CopyVariable, FieldValue)):
        return spec
    else:
        raise AssertionError(f"Unreachable code reached: unknown select spec {spec}")


def _get_value_type(source: ValueSource) -> Optional[ValueType]:
    return source.value_type


def _is_many(source: ValueSource) -> bool:
    return isinstance(source, FieldValue) and source.cardinality == Cardinality.MANY


def _lookup_pulled_value(pulled: Any, attribute: str, row_index: int) -> Any:
    """Return the attribute's value from the map returned by a pull expression."""
    if pulled is None:
        # The entity has none of the pulled attributes.
        return None
    if not isinstance(pulled, Mapping):
        raise PostProcessingError(
            f"Row {row_index}: expected the result of a pull expression to be a map, "
            f"got: {repr(pulled)}"
        )
    for key in (attribute, ":" + attribute, Keyword(attribute)):
        if key in pulled:
            return pulled[key]
    return None


def _normalize_reference(value: Any) -> Any:
    """Return the entity id or ident of a reference, given as pulled, bound or resolved."""
    if isinstance(value, Mapping):
        for key in (IDENT_KEY, ":" + IDENT_KEY, Keyword(IDENT_KEY)):
            if key in value:
                return value[key]
        for key in (ENTITY_ID_KEY, ":" + ENTITY_ID_KEY, Keyword(ENTITY_ID_KEY)):
            if key in value:
                return value[key]
        raise ValueError(f"Reference {repr(value)} has neither an entity id nor an ident.")
    return value


def _as_value_list(source: ValueSource, value: Any, row_index: int) -> List[Any]:
    """Return the list of values to expand a raw value into."""
    is_collection = isinstance(value, (list, tuple, set, frozenset))
    if not _is_many(source):
        if is_collection:
            raise PostProcessingError(
                f"Row {row_index}: expected a single value for {source}, got: {repr(value)}"
            )
        return [value]

    if value is None:
        return [None]
    if not is_collection:
        # A bound value of a cardinality-many attribute: the store already expanded it.
        return [value]
    if not value:
        return [None]
    if isinstance(value, (set, frozenset)):
        # Sets have no inherent order; fix one so that expansion is deterministic.
        return sorted(value, key=_type_category_key)
    return list(value)


def _resolve_value(source: ValueSource, value: Any, catalog: AttributeCatalog) -> Any:
    """Apply sentinel resolution, then identifier resolution, to a single raw value."""
    value_type = _get_value_type(source)
    if value_type is None or value is None:
        return value

    if value_type == ValueType.REF:
        value = _normalize_reference(value)
    value = unwrap_or_null(value_type, value)
    if value is None:
        return None

    if value_type == ValueType.REF:
        if isinstance(value, (Keyword, str)):
            # Already an ident, e.g. pulled by ident or resolved before.
            return keyword_name(value)
        if isinstance(value, int) and not isinstance(value, bool):
            ident = catalog.get_ident(value)
            return value if ident is None else ident
        raise ValueError(f"Unexpected reference value {repr(value)}")
    elif value_type == ValueType.KEYWORD:
        if isinstance(value, (Keyword, str)):
            return keyword_name(value)
        raise ValueError(f"Unexpected keyword value {repr(value)}")
    return value


def _apply_datetime_unit(spec: DatetimeValue, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return apply_unit(value, spec.unit)
    if spec.unit.is_extraction and isinstance(value, int) and not isinstance(value, bool):
        # Already extracted.
        return value
    raise ValueError(f"Cannot apply datetime unit {spec.unit.value} to {repr(value)}")


def _compute_spec_value(spec: SelectSpec, resolved_row: ResolvedRow) -> Any:
    value = resolved_row[_get_source(spec)]
    if isinstance(spec, DatetimeValue):
        return _apply_datetime_unit(spec, value)
    return value


def _type_category_key(value: Any) -> Tuple[int, Any]:
    """Return a sort key that groups values by kind, so that mixed-type columns can be sorted."""
    if isinstance(value, bool):
        return (0, value)
    elif isinstance(value, (int, float, Decimal)):
        return (1, value)
    elif isinstance(value, str):
        return (2, value)
    elif isinstance(value, Keyword):
        return (2, value.name)
    elif isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return (3, value)
    elif isinstance(value, UUID):
        return (4, value)
    elif isinstance(value, bytes):
        return (5, value)
    else:
        return (6, repr(value))


def _sort_rows(
    rows: List[Tuple[Any, ...]],
    keys: Sequence[Tuple[int, OrderDirection]],
    null_ordering: NullOrdering,
) -> List[Tuple[Any, ...]]:
    """Stable multi-key sort, by successive stable sorts starting from the least significant key."""
    for position, direction in reversed(keys):
        null_rows, non_null_rows = lsplit(lambda row: row[position] is None, rows)
        non_null_rows = sorted(
            non_null_rows,
            key=lambda row: _type_category_key(row[position]),
            reverse=direction == OrderDirection.DESCENDING,
        )
        if null_ordering == NullOrdering.NULLS_FIRST:
            rows = null_rows + non_null_rows
        elif null_ordering == NullOrdering.NULLS_LAST:
            rows = non_null_rows + null_rows
        else:
            raise AssertionError(f"Unreachable code reached: unknown null ordering {null_ordering}")
    return rows


def _get_find_indices(
    native_query: NativeQuery, sources: Iterable[ValueSource]
) -> Dict[ValueSource, int]:
    find_indices = {}
    for source in sources:
        index = native_query.get_find_index(source)
        if index is None:
            raise PostProcessingError(
                f"Column metadata mismatch: {source} does not read from any element of the "
                f"find clause {native_query.find}."
            )
        find_indices[source] = index
    return find_indices


def _expand_row(
    row: Sequence[Any],
    row_index: int,
    find_indices: Mapping[ValueSource, int],
    catalog: AttributeCatalog,
) -> List[ResolvedRow]:
    """Read, expand and resolve the values of one raw row."""
    value_lists = []
    for source, index in find_indices.items():
        raw_value = row[index]
        if isinstance(source, FieldValue) and source.entity_lookup:
            raw_value = _lookup_pulled_value(raw_value, source.attribute, row_index)
        value_lists.append(_as_value_list(source, raw_value, row_index))

    sources = list(find_indices.keys())
    expanded_rows = []
    for combination in itertools.product(*value_lists):
        resolved_row = {}
        for source, value in zip(sources, combination):
            try:
                resolved_row[source] = _resolve_value(source, value, catalog)
            except ValueError as e:
                raise PostProcessingError(f"Row {row_index}: {e}") from e
        expanded_rows.append(resolved_row)
    return expanded_rows


def _unique_specs(native_query: NativeQuery) -> List[SelectSpec]:
    """Return the select specs, then the order-by specs that are not also select specs."""
    return ldistinct(
        itertools.chain(
            native_query.select, (order_by_spec.spec for order_by_spec in native_query.order_by)
        )
    )


def process_results(
    rows: Iterable[Sequence[Any]],
    native_query: NativeQuery,
    catalog: AttributeCatalog,
    null_ordering: NullOrdering = NullOrdering.NULLS_FIRST,
) -> List[Tuple[Any, ...]]:
    """Turn raw rows of a native query into output rows of the request it was compiled from.

    Args:
        rows: the rows returned by the store for the native query. Each row must have one
              value per element of the native query's find clause.
        native_query: the compiled query the rows are the result of.
        catalog: the catalog the query was compiled against, used to resolve identifiers.
        null_ordering: where null values are placed when sorting.

    Returns:
        list of output rows: tuples with one value per select spec of the native query

    Raises:
        PostProcessingError: if a row does not match the column metadata of the native query.
                             No partial results are ever returned.
    """
    specs = _unique_specs(native_query)
    find_indices = _get_find_indices(native_query, ldistinct(_get_source(spec) for spec in specs))

    computed_rows: List[Tuple[Any, ...]] = []
    for row_index, row in enumerate(rows):
        if isinstance(row, (str, bytes, Mapping)) or not isinstance(row, Sequence):
            raise PostProcessingError(f"Row {row_index}: expected a sequence, got: {repr(row)}")
        if len(row) != len(native_query.find):
            raise PostProcessingError(
                f"Row {row_index}: expected {len(native_query.find)} values, one per element "
                f"of the find clause, but got {len(row)}: {repr(row)}"
            )
        for resolved_row in _expand_row(row, row_index, find_indices, catalog):
            try:
                computed_rows.append(
                    tuple(_compute_spec_value(spec, resolved_row) for spec in specs)
                )
            except ValueError as e:
                raise PostProcessingError(f"Row {row_index}: {e}") from e

    if native_query.deduplicate:
        computed_rows = ldistinct(computed_rows)

    sort_keys = [
        (specs.index(order_by_spec.spec), order_by_spec.direction)
        for order_by_spec in native_query.order_by
    ]
    computed_rows = _sort_rows(computed_rows, sort_keys, null_ordering)

    select_positions = [specs.index(spec) for spec in native_query.select]
    output_rows = [
        tuple(computed_row[position] for position in select_positions)
        for computed_row in computed_rows
    ]
    if native_query.limit is not None:
        output_rows = output_rows[: native_query.limit]
    return output_rows
