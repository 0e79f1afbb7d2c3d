# Copyright 2020-present Kensho Technologies, LLC.
"""The native query document produced by the compiler, and its two extension clauses.

The store only understands the find and where clauses. The select clause says how to turn each
row of bindings into output columns, and the order-by clause how to sort the output rows, since
the store's query language has no ordering of its own. Both extension clauses are built from the
same closed set of select specs, which the post-processor matches exhaustively:
    - CopyVariable: output the value bound to a find variable, as it is;
    - FieldValue: output an attribute value, either bound to a find variable or looked up
                  on an entity by a pull expression of the find clause;
    - DatetimeValue: output an instant-valued FieldValue, truncated or extracted by a unit.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from ..datetime_units import DatetimeUnit
from ..edn import Keyword, PullExpression, Symbol, render_edn
from ..request import OrderDirection
from ..schema.value_types import Cardinality, ValueType


@dataclass(frozen=True)
class CopyVariable:
    """Output the value of a find variable verbatim."""

    variable: Symbol

    # Value type of the variable, if known. Entity ids are of type ref, and so are subject to
    # identifier resolution.
    value_type: Optional[ValueType] = None

    def to_edn_data(self) -> Tuple[Any, ...]:
        """Return a description of this spec as EDN data."""
        return (Keyword("copy"), self.variable)


@dataclass(frozen=True)
class FieldValue:
    """Output the value of an attribute, carrying its metadata for type-specific transforms."""

    # For bound values, the find variable the value is bound to. For looked up values,
    # the find variable of the entity the attribute is pulled from.
    variable: Symbol
    attribute: str  # ident of the attribute
    value_type: ValueType
    cardinality: Cardinality
    entity_lookup: bool

    def __post_init__(self) -> None:
        """Validate fields."""
        if not self.variable.is_logic_variable:
            raise AssertionError(f"Expected a logic variable, got: {self.variable}")

    def to_edn_data(self) -> Tuple[Any, ...]:
        """Return a description of this spec as EDN data."""
        return (
            Keyword("field"),
            self.variable,
            Keyword(self.attribute),
            Keyword(self.value_type.value),
            Keyword(self.cardinality.value),
            self.entity_lookup,
        )


@dataclass(frozen=True)
class DatetimeValue:
    """Output an instant-valued attribute, bucketed by a datetime unit."""

    field: FieldValue
    unit: DatetimeUnit

    def __post_init__(self) -> None:
        """Validate fields."""
        if self.field.value_type != ValueType.INSTANT:
            raise AssertionError(
                f"Datetime units only apply to instant attributes, but {self.field.attribute} "
                f"is of type {self.field.value_type}."
            )

    def to_edn_data(self) -> Tuple[Any, ...]:
        """Return a description of this spec as EDN data."""
        return (Keyword("datetime"), self.field.to_edn_data(), Keyword(self.unit.value))


SelectSpec = Union[CopyVariable, FieldValue, DatetimeValue]


@dataclass(frozen=True)
class OrderBySpec:
    spec: SelectSpec
    direction: OrderDirection

    def to_edn_data(self) -> Tuple[Any, ...]:
        """Return a description of this ordering as EDN data."""
        return (self.spec.to_edn_data(), Keyword(self.direction.value))


FindElement = Union[Symbol, PullExpression]


@dataclass(frozen=True)
class NativeQuery:
    """A compiled query: the store's find and where clauses, plus the extension clauses."""

    find: Tuple[FindElement, ...]
    where: Tuple[Any, ...]
    select: Tuple[SelectSpec, ...]
    order_by: Tuple[OrderBySpec, ...] = ()
    limit: Optional[int] = None

    # True if the query outputs breakouts only, in which case output rows are grouped
    # by de-duplicating them after datetime bucketing.
    deduplicate: bool = False

    column_names: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate fields."""
        if not self.find:
            raise AssertionError("Expected a non-empty find clause.")
        if self.column_names and len(self.column_names) != len(self.select):
            raise AssertionError(
                f"Expected one column name per select spec, got: {self.column_names} "
                f"for {self.select}"
            )

    def get_find_index(self, spec: SelectSpec) -> Optional[int]:
        """Return the position in the find clause that the spec reads its raw value from.

        Returns None if no element of the find clause matches the spec.
        """
        if isinstance(spec, DatetimeValue):
            return self.get_find_index(spec.field)

        for index, find_element in enumerate(self.find):
            if isinstance(spec, FieldValue) and spec.entity_lookup:
                if isinstance(find_element, PullExpression) and (
                    find_element.variable == spec.variable
                ):
                    return index
            elif isinstance(spec, (CopyVariable, FieldValue)):
                if find_element == spec.variable:
                    return index
            else:
                raise AssertionError(f"Unreachable code reached: unknown select spec {spec}")
        return None

    def to_edn(self, include_extensions: bool = False) -> str:
        """Render the query as EDN text.

        Args:
            include_extensions: if True, also render the select, order-by and limit clauses,
                                which the store does not understand. Useful for logging.

        Returns:
            the EDN text of the query
        """
        document: Dict[Keyword, Any] = {
            Keyword("find"): tuple(self.find),
            Keyword("where"): tuple(self.where),
        }
        if include_extensions:
            document[Keyword("select")] = tuple(spec.to_edn_data() for spec in self.select)
            document[Keyword("order-by")] = tuple(
                order_by_spec.to_edn_data() for order_by_spec in self.order_by
            )
            document[Keyword("limit")] = self.limit
        return render_edn(document)
