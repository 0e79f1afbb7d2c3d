# Copyright 2020-present Kensho Technologies, LLC.
"""Scalar types used to interpret host-supplied query arguments."""
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, FrozenSet, Union
from uuid import UUID

# C-based module confuses pylint, which is why we disable the check below.
from ciso8601 import parse_datetime  # pylint: disable=no-name-in-module
from graphql import GraphQLBoolean, GraphQLFloat, GraphQLInt, GraphQLScalarType, GraphQLString

from ..edn import Keyword


def _unused_function(*args: Any, **kwargs: Any) -> None:
    """Must not be called. Placeholder for functions that are required but aren't used."""
    raise NotImplementedError(
        "The function you tried to call is not implemented, args / kwargs: "
        "{} {}".format(args, kwargs)
    )


def _serialize_datetime(value: Any) -> str:
    """Serialize a DateTime object to its ISO-8601 representation, in UTC."""
    if isinstance(value, datetime):
        return _parse_datetime_value(value).isoformat()
    else:
        raise ValueError(f"Expected a datetime object. Got {value} of type {type(value)} instead.")


def _parse_datetime_value(value: Any) -> datetime:
    """Deserialize a DateTime object from a date/datetime or a ISO-8601 string representation.

    The store records instants in UTC. Timezone-naive values are interpreted as UTC, and
    timezone-aware values are converted to UTC, so that every parsed value is comparable
    with every other.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = parse_datetime(value)  # This will raise ValueError in case of bad ISO 8601 formatting.
    elif type(value) == date:
        # We check for exact type equality rather than using isinstance(), since datetime
        # objects are instances of date as well. This is a widening conversion.
        dt = datetime(value.year, value.month, value.day)
    else:
        raise ValueError(
            f"Expected a datetime or an ISO-8601 string representation parseable "
            f"by the ciso8601 library. Got {value} of type {type(value)} instead."
        )

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_decimal_value(value: Any) -> Decimal:
    """Deserialize a Decimal object from a number or its string representation."""
    if isinstance(value, float):
        # Go through the string representation, to avoid exposing binary rounding artifacts.
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Cannot interpret {repr(value)} as a Decimal.") from e


def _parse_keyword_value(value: Any) -> Keyword:
    """Deserialize a Keyword from its "namespace/name" string form, with or without a colon."""
    if isinstance(value, Keyword):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Expected a keyword string. Got {value} of type {type(value)} instead.")
    try:
        return Keyword.from_string(value)
    except AssertionError as e:
        raise ValueError(f"Invalid keyword: {repr(value)}") from e


def _parse_uuid_value(value: Any) -> UUID:
    """Deserialize a UUID from its canonical string form."""
    if isinstance(value, UUID):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Expected a UUID string. Got {value} of type {type(value)} instead.")
    return UUID(value)  # This will raise ValueError in case of a malformed UUID.


def _parse_entity_reference_value(value: Any) -> Union[int, Keyword]:
    """Deserialize an entity reference, given either as an entity id or as an ident keyword."""
    if isinstance(value, bool):
        raise ValueError(f"Cannot use the boolean {value} as an entity reference.")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.lstrip("-").isdigit():
        return int(value)
    return _parse_keyword_value(value)


GraphQLDateTime = GraphQLScalarType(
    name="DateTime",
    description=(
        "The `DateTime` scalar type represents instants in time with up to millisecond "
        "accuracy, as recorded by the store. Values are serialized following the ISO-8601 "
        'datetime format specification, for example "2017-03-21T12:34:56.012+00:00". '
        "Timezone-naive values are interpreted as being in UTC."
    ),
    serialize=_serialize_datetime,
    parse_value=_parse_datetime_value,
    parse_literal=_unused_function,  # We don't yet support parsing DateTime objects in literals.
)


GraphQLDecimal = GraphQLScalarType(
    name="Decimal",
    description=(
        "The `Decimal` scalar type is an arbitrary-precision decimal number object. "
        "Values are allowed to be transported as either a native Decimal type, if the "
        "underlying transport allows that, or serialized as strings in decimal format, "
        'without thousands separators and using a "." as the decimal separator: '
        'for example, "12345678.012345".'
    ),
    serialize=str,
    parse_value=_parse_decimal_value,
    parse_literal=_unused_function,  # We don't yet support parsing Decimal objects in literals.
)


GraphQLKeyword = GraphQLScalarType(
    name="Keyword",
    description=(
        "The `Keyword` scalar type represents a namespaced symbolic name, serialized as "
        'its "namespace/name" string, for example "gender/male".'
    ),
    serialize=str,
    parse_value=_parse_keyword_value,
    parse_literal=_unused_function,  # We don't yet support parsing Keyword objects in literals.
)


GraphQLUUID = GraphQLScalarType(
    name="UUID",
    description=(
        "The `UUID` scalar type represents a 128-bit universally unique identifier, serialized "
        'in its canonical form, for example "13d72846-1777-6c3a-5743-5d9ced3032ed".'
    ),
    serialize=str,
    parse_value=_parse_uuid_value,
    parse_literal=_unused_function,  # We don't yet support parsing UUID objects in literals.
)


GraphQLEntityReference = GraphQLScalarType(
    name="EntityReference",
    description=(
        "The `EntityReference` scalar type identifies an entity, either by its numeric entity id "
        'or by its symbolic ident, for example 17592186045418 or "gender/male".'
    ),
    serialize=str,
    parse_value=_parse_entity_reference_value,
    parse_literal=_unused_function,  # We don't yet support parsing references in literals.
)


CUSTOM_SCALAR_TYPES: FrozenSet[GraphQLScalarType] = frozenset(
    {
        GraphQLDateTime,
        GraphQLDecimal,
        GraphQLKeyword,
        GraphQLUUID,
        GraphQLEntityReference,
    }
)

SUPPORTED_SCALAR_TYPES: FrozenSet[GraphQLScalarType] = frozenset(
    {
        GraphQLInt,
        GraphQLString,
        GraphQLBoolean,
        GraphQLFloat,
    }
).union(CUSTOM_SCALAR_TYPES)
