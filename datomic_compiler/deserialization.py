# Copyright 2020-present Kensho Technologies, LLC.
"""Convert host-supplied filter arguments to values of the filtered attribute's value type."""
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Tuple, Type
from uuid import UUID

from graphql import GraphQLBoolean, GraphQLFloat, GraphQLInt, GraphQLScalarType, GraphQLString

from .edn import Keyword
from .exceptions import InvalidQueryArgumentError
from .global_utils import assert_set_equality
from .schema import (
    SUPPORTED_SCALAR_TYPES,
    GraphQLDateTime,
    GraphQLDecimal,
    GraphQLEntityReference,
    GraphQLKeyword,
    GraphQLUUID,
)
from .schema.catalog import AttributeCatalog
from .schema.value_types import VALUE_TYPE_INFO, ValueType


_ALLOWED_SCALAR_TYPES: Mapping[str, Tuple[Type, ...]] = MappingProxyType(
    {
        GraphQLDateTime.name: (str, date, datetime),
        GraphQLFloat.name: (str, float, int),
        GraphQLDecimal.name: (str, float, int, Decimal),
        GraphQLInt.name: (int, str),
        GraphQLString.name: (str,),
        GraphQLBoolean.name: (bool, int, str),
        GraphQLKeyword.name: (str, Keyword),
        GraphQLUUID.name: (str, UUID),
        GraphQLEntityReference.name: (int, str, Keyword),
    }
)
assert_set_equality(
    set(_ALLOWED_SCALAR_TYPES.keys()),
    {graphql_type.name for graphql_type in SUPPORTED_SCALAR_TYPES},
)


def _custom_boolean_deserialization(value: Any) -> bool:
    """Deserialize a boolean, allowing for common string or int representations."""
    true_values = [1, "1", "true", "True", True]
    false_values = [0, "0", "false", "False", False]
    if value in true_values:
        return True
    elif value in false_values:
        return False
    else:
        raise ValueError(
            f"Received unexpected GraphQLBoolean value {value} of type {type(value)}. Expected one "
            f"of: {true_values + false_values}."
        )


_CUSTOM_SCALAR_DESERIALIZATION_FUNCTIONS: Mapping[str, Callable[[Any], Any]] = MappingProxyType(
    {
        # Bypass the GraphQLFloat parser and allow strings as input. The JSON spec allows only
        # for 64-bit floating point numbers, so large floats might have to be represented as
        # strings.
        GraphQLFloat.name: float,
        # Bypass the GraphQLInt parser and allow long ints and strings as input. The store's
        # bigint attributes exceed the 32-bit range GraphQLInt is limited to.
        GraphQLInt.name: int,
        # Bypass the GraphQLBoolean parser and allow some strings and ints as input.
        GraphQLBoolean.name: _custom_boolean_deserialization,
    }
)

_ALLOWED_TYPES_AND_DESERIALIZATION_FUNCTIONS: Mapping[
    str, Tuple[Tuple[Type, ...], Callable[[Any], Any]]
] = MappingProxyType(
    {
        scalar_type.name: (
            _ALLOWED_SCALAR_TYPES[scalar_type.name],
            _CUSTOM_SCALAR_DESERIALIZATION_FUNCTIONS.get(scalar_type.name, scalar_type.parse_value),
        )
        for scalar_type in SUPPORTED_SCALAR_TYPES
    }
)


def deserialize_scalar_value(expected_type: GraphQLScalarType, value: Any) -> Any:
    """Convert a scalar value to the appropriate type for the given GraphQLScalarType.

    Below are examples of accepted encodings of all the types:
        GraphQLDateTime: "2018-02-01T05:11:54", "2018-02-01T05:11:54+02:00"
        GraphQLFloat: 4.3, "5.0", 5
        GraphQLDecimal: "5.00000000000000000000000000001"
        GraphQLInt: 4, "3803330000000000000000000000000000000000000000000"
        GraphQLString: "Hello"
        GraphQLBoolean: True, 1, "1", "True", "true"
        GraphQLKeyword: "gender/male", ":gender/male"
        GraphQLUUID: "13d72846-1777-6c3a-5743-5d9ced3032ed"
        GraphQLEntityReference: 17592186045418, "17592186045418", "gender/male"

    Args:
        expected_type: a GraphQLScalarType to which value should be converted.
        value: object that can be interpreted as being of expected_type.

    Returns:
        a value of the type produced by the parser of the expected type:
            GraphQLDateTime: datetime.datetime with tzinfo=timezone.utc
            GraphQLFloat: float
            GraphQLDecimal: decimal.Decimal
            GraphQLInt: int
            GraphQLString: str
            GraphQLBoolean: bool
            GraphQLKeyword: Keyword
            GraphQLUUID: uuid.UUID
            GraphQLEntityReference: int entity id, or Keyword ident

    Raises:
        ValueError: if the value is not appropriate for the type. ValueError is chosen because
                    it is already the base case of exceptions raised by the GraphQL parsers.
    """
    types_and_deserialization = _ALLOWED_TYPES_AND_DESERIALIZATION_FUNCTIONS.get(expected_type.name)
    if types_and_deserialization is None:
        raise AssertionError(
            f"Unexpected GraphQLType {expected_type}. No deserialization function known."
        )

    # Explicitly disallow passing boolean values for non-boolean types.
    if isinstance(value, bool) and expected_type.name != GraphQLBoolean.name:
        raise ValueError(
            f"Cannot deserialize boolean value {value} to non-GraphQLBoolean type {expected_type}."
        )

    # Ensure value has an appropriate type and deserialize the value.
    expected_python_types, deserialization_function = types_and_deserialization
    if not isinstance(value, expected_python_types):
        raise ValueError(
            f"{value} ({type(value)}) cannot be deserialized to GraphQL type {expected_type}."
        )
    return deserialization_function(value)


def _resolve_entity_reference(catalog: AttributeCatalog, reference: Any) -> int:
    """Return the entity id of a deserialized reference, looking up idents in the catalog."""
    if isinstance(reference, Keyword):
        entity_id = catalog.get_entity_id(reference)
        if entity_id is None:
            raise ValueError(f"No entity with ident {reference} exists.")
        return entity_id
    return reference


def deserialize_argument(
    value_type: ValueType,
    value: Any,
    catalog: Optional[AttributeCatalog] = None,
    attribute_ident: Optional[str] = None,
) -> Any:
    """Convert a filter argument to a value comparable with values of the given value type.

    Args:
        value_type: value type of the attribute the argument is compared against.
        value: the argument as supplied by the host.
        catalog: catalog used to resolve reference arguments given as idents. If None,
                 only numeric entity ids are accepted for reference attributes.
        attribute_ident: ident of the filtered attribute, used in error messages only.

    Returns:
        the deserialized value, ready to be embedded in a native query

    Raises:
        InvalidQueryArgumentError: if the value cannot be interpreted as the value type,
                                   or the value type cannot be filtered on.
    """
    description = attribute_ident if attribute_ident is not None else value_type.value
    argument_type = VALUE_TYPE_INFO[value_type].argument_type
    if argument_type is None:
        raise InvalidQueryArgumentError(
            f"Cannot filter on {description}: values of type {value_type.value} cannot be "
            f"supplied as query arguments."
        )

    try:
        deserialized_value = deserialize_scalar_value(argument_type, value)
        if value_type == ValueType.REF:
            if catalog is None and isinstance(deserialized_value, Keyword):
                raise ValueError("Idents can only be resolved with a catalog.")
            if catalog is not None:
                deserialized_value = _resolve_entity_reference(catalog, deserialized_value)
    except ValueError as e:
        raise InvalidQueryArgumentError(
            f"Invalid argument {repr(value)} for {description} of type {value_type.value}: {e}"
        ) from e

    return deserialized_value
