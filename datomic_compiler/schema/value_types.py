# Copyright 2020-present Kensho Technologies, LLC.
"""Mapping between the store's value types, host base types, and null-emulation sentinels.

The store has no notion of null: an entity either carries an attribute or it does not, and
the native grouping machinery fails when one logic variable is bound to incomparable values
across rows. Missing attributes are therefore bound to a placeholder sentinel of the same type
as real values of the attribute (the "nullable binding" step, at query-build time), and
the sentinel is mapped back to None when results are read (the "unwrap-or-null" step).

A genuine stored value equal to its type's sentinel is indistinguishable from a missing value,
and is reported as null. Booleans are the exception: their sentinel is `false`, which is also
the only possible non-true value, so boolean sentinels are never reverted.
"""
from dataclasses import dataclass
import datetime
import decimal
from enum import Enum, unique
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional, Union
import uuid

from graphql import GraphQLBoolean, GraphQLFloat, GraphQLInt, GraphQLScalarType, GraphQLString

from . import (
    GraphQLDateTime,
    GraphQLDecimal,
    GraphQLEntityReference,
    GraphQLKeyword,
    GraphQLUUID,
)
from ..edn import LONG_MIN_VALUE, Keyword, keyword_name
from ..exceptions import UnsupportedQueryError
from ..global_utils import assert_set_equality


@unique
class ValueType(Enum):
    """The value types an attribute of the store may have, named by their store tags."""

    KEYWORD = "db.type/keyword"
    STRING = "db.type/string"
    BOOLEAN = "db.type/boolean"
    LONG = "db.type/long"
    BIGINT = "db.type/bigint"
    FLOAT = "db.type/float"
    DOUBLE = "db.type/double"
    BIGDEC = "db.type/bigdec"
    REF = "db.type/ref"
    INSTANT = "db.type/instant"
    UUID = "db.type/uuid"
    URI = "db.type/uri"
    BYTES = "db.type/bytes"

    @classmethod
    def from_tag(cls, tag: Union[str, Keyword]) -> "ValueType":
        """Return the ValueType for a tag like ":db.type/string", "db.type/string" or "string".

        Raises:
            ValueError: if the tag does not name a known value type.
        """
        name = keyword_name(tag)
        if "/" not in name:
            name = "db.type/" + name
        return cls(name)


@unique
class Cardinality(Enum):
    """Whether an attribute holds a single value or a set of values per entity."""

    ONE = "db.cardinality/one"
    MANY = "db.cardinality/many"

    @classmethod
    def from_tag(cls, tag: Union[str, Keyword]) -> "Cardinality":
        """Return the Cardinality for a store tag like ":db.cardinality/many" or "many".

        Raises:
            ValueError: if the tag does not name a known cardinality.
        """
        name = keyword_name(tag)
        if "/" not in name:
            name = "db.cardinality/" + name
        return cls(name)


@unique
class BaseType(Enum):
    """The types the host's structured query abstraction uses to describe fields."""

    NAME = "type/Name"
    TEXT = "type/Text"
    BOOLEAN = "type/Boolean"
    INTEGER = "type/Integer"
    BIG_INTEGER = "type/BigInteger"
    FLOAT = "type/Float"
    DECIMAL = "type/Decimal"
    DATE_TIME = "type/DateTime"
    UUID = "type/UUID"
    URL = "type/URL"
    ARRAY = "type/Array"
    FOREIGN_KEY = "type/FK"


# Sentinel values. Keywords use a keyword in a namespace owned by this library, and strings
# use the same keyword stringified, so both stay type-compatible with real values.
NIL_KEYWORD = Keyword("datomic-compiler/nil")
NIL_STRING = str(NIL_KEYWORD)
NIL_NUMBER = LONG_MIN_VALUE
NIL_INSTANT = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
NIL_UUID = uuid.UUID(int=0)


@dataclass(frozen=True)
class ValueTypeInfo:
    """Everything the compiler and the post-processor need to know about one value type."""

    base_type: BaseType

    # Type used to coerce host-supplied filter arguments, or None if the type can't be filtered.
    argument_type: Optional[GraphQLScalarType]

    # Whether the type has a placeholder sentinel at all. Types without one cannot be bound
    # null-safely, and can only be projected by looking them up on their entity.
    has_sentinel: bool

    sentinel: Any

    # Whether sentinel values are mapped back to None in results.
    reverts_sentinel: bool


def _info(
    base_type: BaseType, argument_type: Optional[GraphQLScalarType], sentinel: Any
) -> ValueTypeInfo:
    return ValueTypeInfo(
        base_type=base_type,
        argument_type=argument_type,
        has_sentinel=True,
        sentinel=sentinel,
        reverts_sentinel=True,
    )


VALUE_TYPE_INFO: Mapping[ValueType, ValueTypeInfo] = MappingProxyType(
    {
        ValueType.KEYWORD: _info(BaseType.NAME, GraphQLKeyword, NIL_KEYWORD),
        ValueType.STRING: _info(BaseType.TEXT, GraphQLString, NIL_STRING),
        ValueType.BOOLEAN: ValueTypeInfo(
            base_type=BaseType.BOOLEAN,
            argument_type=GraphQLBoolean,
            has_sentinel=True,
            sentinel=False,
            reverts_sentinel=False,
        ),
        ValueType.LONG: _info(BaseType.INTEGER, GraphQLInt, NIL_NUMBER),
        ValueType.BIGINT: _info(BaseType.BIG_INTEGER, GraphQLInt, NIL_NUMBER),
        ValueType.FLOAT: _info(BaseType.FLOAT, GraphQLFloat, NIL_NUMBER),
        ValueType.DOUBLE: _info(BaseType.FLOAT, GraphQLFloat, NIL_NUMBER),
        ValueType.BIGDEC: _info(BaseType.DECIMAL, GraphQLDecimal, NIL_NUMBER),
        ValueType.REF: _info(BaseType.INTEGER, GraphQLEntityReference, NIL_NUMBER),
        ValueType.INSTANT: _info(BaseType.DATE_TIME, GraphQLDateTime, NIL_INSTANT),
        ValueType.UUID: _info(BaseType.UUID, GraphQLUUID, NIL_UUID),
        ValueType.URI: ValueTypeInfo(
            base_type=BaseType.URL,
            argument_type=None,
            has_sentinel=False,
            sentinel=None,
            reverts_sentinel=False,
        ),
        ValueType.BYTES: ValueTypeInfo(
            base_type=BaseType.ARRAY,
            argument_type=None,
            has_sentinel=False,
            sentinel=None,
            reverts_sentinel=False,
        ),
    }
)
assert_set_equality(set(VALUE_TYPE_INFO.keys()), set(ValueType))


NUMERIC_VALUE_TYPES: FrozenSet[ValueType] = frozenset(
    {
        ValueType.LONG,
        ValueType.BIGINT,
        ValueType.FLOAT,
        ValueType.DOUBLE,
        ValueType.BIGDEC,
        ValueType.REF,
    }
)


def get_base_type(value_type: ValueType) -> BaseType:
    """Return the host base type of the given value type."""
    return VALUE_TYPE_INFO[value_type].base_type


def nullable_binding_default(value_type: ValueType) -> Any:
    """Return the value to bind in place of an absent attribute of the given value type.

    Raises:
        UnsupportedQueryError: if the value type has no placeholder sentinel, meaning that
                               attributes of this type cannot be bound null-safely.
    """
    value_type_info = VALUE_TYPE_INFO[value_type]
    if not value_type_info.has_sentinel:
        raise UnsupportedQueryError(
            f"Attributes of value type {value_type.value} cannot be bound null-safely, since "
            f"the type has no placeholder value. They can only be selected as plain fields."
        )
    return value_type_info.sentinel


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    """Interpret timezone-naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def is_placeholder_sentinel(value_type: ValueType, value: Any) -> bool:
    """Return True if the value is the placeholder sentinel of the given value type."""
    if value is None:
        return False

    if value_type == ValueType.KEYWORD:
        return isinstance(value, (str, Keyword)) and keyword_name(value) == NIL_KEYWORD.name
    elif value_type == ValueType.STRING:
        return value == NIL_STRING
    elif value_type == ValueType.BOOLEAN:
        return value is False
    elif value_type in NUMERIC_VALUE_TYPES:
        return (
            not isinstance(value, bool)
            and isinstance(value, (int, float, decimal.Decimal))
            and value == NIL_NUMBER
        )
    elif value_type == ValueType.INSTANT:
        return isinstance(value, datetime.datetime) and _as_utc(value) == NIL_INSTANT
    elif value_type == ValueType.UUID:
        return value == NIL_UUID or value == str(NIL_UUID)
    elif value_type in (ValueType.URI, ValueType.BYTES):
        return False
    else:
        raise AssertionError(f"Unreachable code reached: unknown value type {value_type}")


def unwrap_or_null(value_type: ValueType, value: Any) -> Any:
    """Return None if the value stands for an absent attribute, and the value itself otherwise."""
    if VALUE_TYPE_INFO[value_type].reverts_sentinel and is_placeholder_sentinel(value_type, value):
        return None
    return value
