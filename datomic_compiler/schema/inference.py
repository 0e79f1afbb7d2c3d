# Copyright 2020-present Kensho Technologies, LLC.
"""Derive a tabular view of the store from the namespaces of its attributes.

Every non-reserved attribute namespace becomes a table. A table's fields are its implicit "id"
field, the attributes of its own namespace, every other attribute observed on the same entity as
one of those, and the custom relationships configured on it.

Co-occurrence can only be seen in live data: a catalog built without entity observations only
yields own-namespace fields, and should be re-synced once data exists. This difference between
schema-only and schema-plus-data snapshots is intended.
"""
from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from .catalog import RESERVED_NAMESPACES, Attribute, AttributeCatalog
from .relationships import CustomRelationship, get_relationships_by_source_table
from .value_types import BaseType, ValueType, get_base_type


PRIMARY_KEY_FIELD_NAME = "id"
PATH_REFERENCE_DATABASE_TYPE = "path-reference"


@unique
class FieldKind(Enum):
    """What a Field is backed by."""

    PRIMARY_KEY = "primary-key"  # The entity id itself.
    ATTRIBUTE = "attribute"
    PATH_REFERENCE = "path-reference"  # A custom relationship, exposed as a foreign key.


@dataclass(frozen=True)
class Field:
    """A column of an inferred table."""

    table: str
    name: str
    kind: FieldKind
    value_type: Optional[ValueType]  # None for path references, which are not attribute values.
    attribute: Optional[Attribute] = None
    relationship: Optional[CustomRelationship] = None

    @property
    def primary_key(self) -> bool:
        """Return True if this is the table's primary identifier field."""
        return self.kind == FieldKind.PRIMARY_KEY

    @property
    def display_name(self) -> str:
        """Return the human-readable name of the field."""
        return self.name.capitalize()

    @property
    def database_type(self) -> str:
        """Return the store's name for the type of the field."""
        if self.kind == FieldKind.PATH_REFERENCE:
            return PATH_REFERENCE_DATABASE_TYPE
        if self.value_type is None:
            raise AssertionError(f"Field {self.table}.{self.name} of kind {self.kind} has no type.")
        return self.value_type.value

    @property
    def base_type(self) -> BaseType:
        """Return the host's type for the field."""
        if self.kind == FieldKind.PATH_REFERENCE:
            return BaseType.FOREIGN_KEY
        if self.value_type is None:
            raise AssertionError(f"Field {self.table}.{self.name} of kind {self.kind} has no type.")
        return get_base_type(self.value_type)


@dataclass(frozen=True)
class Table:
    """A table inferred from an attribute namespace."""

    name: str
    fields: Tuple[Field, ...]

    def get_field(self, field_name: str) -> Optional[Field]:
        """Return the field with the given name, or None if the table has no such field."""
        for table_field in self.fields:
            if table_field.name == field_name:
                return table_field
        return None


def derive_table_names(catalog: AttributeCatalog) -> FrozenSet[str]:
    """Return the names of all tables: the namespaces of all non-reserved attributes."""
    return frozenset(
        namespace for namespace in catalog.namespaces if namespace not in RESERVED_NAMESPACES
    )


def table_columns(
    catalog: AttributeCatalog,
    table_name: str,
    custom_relationships: Iterable[CustomRelationship] = (),
) -> Tuple[Field, ...]:
    """Return the ordered fields of the given table.

    Fields are ordered as follows: the "id" field, then the table's own attributes by name
    (named by their bare local name), then co-occurring attributes of other namespaces by ident
    (named by their full ident), then the table's custom relationships by name.
    """
    fields = [
        Field(
            table=table_name,
            name=PRIMARY_KEY_FIELD_NAME,
            kind=FieldKind.PRIMARY_KEY,
            value_type=ValueType.REF,
        )
    ]

    for attribute in catalog.get_namespace_attributes(table_name):
        fields.append(
            Field(
                table=table_name,
                name=attribute.name,
                kind=FieldKind.ATTRIBUTE,
                value_type=attribute.value_type,
                attribute=attribute,
            )
        )

    for attribute in catalog.get_cooccurring_attributes(table_name):
        fields.append(
            Field(
                table=table_name,
                name=attribute.ident,
                kind=FieldKind.ATTRIBUTE,
                value_type=attribute.value_type,
                attribute=attribute,
            )
        )

    relationships_by_table = get_relationships_by_source_table(custom_relationships)
    table_relationships = relationships_by_table.get(table_name, {})
    for _, relationship in sorted(table_relationships.items()):
        fields.append(
            Field(
                table=table_name,
                name=relationship.name,
                kind=FieldKind.PATH_REFERENCE,
                value_type=None,
                relationship=relationship,
            )
        )

    return tuple(fields)


def derive_tables(
    catalog: AttributeCatalog, custom_relationships: Iterable[CustomRelationship] = ()
) -> FrozenSet[Table]:
    """Return every table of the catalog, with its fields."""
    custom_relationships = tuple(custom_relationships)
    return frozenset(
        Table(name=table_name, fields=table_columns(catalog, table_name, custom_relationships))
        for table_name in derive_table_names(catalog)
    )


def describe_database(catalog: AttributeCatalog) -> Dict[str, Any]:
    """Return the host's description of the database: the set of its tables."""
    return {
        "tables": [
            {"name": table_name, "schema": None}
            for table_name in sorted(derive_table_names(catalog))
        ]
    }


def describe_table(
    catalog: AttributeCatalog,
    table_name: str,
    custom_relationships: Iterable[CustomRelationship] = (),
) -> Dict[str, Any]:
    """Return the host's description of a table: its name and its fields."""
    fields = []
    for table_field in table_columns(catalog, table_name, custom_relationships):
        field_description = {
            "name": table_field.name,
            "database_type": table_field.database_type,
            "base_type": table_field.base_type.value,
            "display_name": table_field.display_name,
            "pk?": table_field.primary_key,
        }
        if table_field.relationship is not None:
            field_description["target_table"] = table_field.relationship.destination_table
        fields.append(field_description)

    return {"name": table_name, "schema": None, "fields": fields}
