# Copyright 2020-present Kensho Technologies, LLC.
"""Front-end for compiling structured query requests into native queries.

Compilation proceeds as follows:
    - The request is validated: aggregations have no translation yet, and all referenced tables
      and fields must exist in the schema inferred from the catalog.
    - The entities of the source table are bound by the table membership clause, a disjunction
      over the source table's own attributes, mirroring "SELECT * FROM table".
    - Each output column is turned into a select spec. Breakouts bind their value null-safely to
      a logic variable, and plain fields are looked up on their entity by a pull expression.
      Fields of other tables are reached by binding each reference hop null-safely in turn.
    - The filter tree is translated to predicate clauses over bound variables.
    - The find clause is assembled from the variables and pull expressions the specs read from.

All binding clauses precede all predicate clauses in the where clause. Compilation is a pure
function of its inputs: identical requests and schemas produce identical native queries.
"""
from dataclasses import dataclass, replace
import logging
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..datetime_units import DatetimeUnit
from ..edn import Keyword, PullExpression, Symbol
from ..exceptions import UnsupportedQueryError
from ..request import (
    AnyFieldReference,
    DatetimeFieldReference,
    FieldReference,
    ForeignKeyReference,
    QueryRequest,
)
from ..schema.catalog import Attribute, AttributeCatalog
from ..schema.inference import Field, FieldKind, derive_table_names, table_columns
from ..schema.relationships import CustomRelationship
from ..schema.value_types import ValueType
from .bindings import BindingBuilder, membership_clause
from .filters import BoundValue, compile_filter
from .native_query import (
    CopyVariable,
    DatetimeValue,
    FieldValue,
    FindElement,
    NativeQuery,
    OrderBySpec,
    SelectSpec,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ResolvedField:
    """A field of the schema, together with the variable of the entity it is read from."""

    entity: Symbol
    field: Field


def _column_name(field_reference: AnyFieldReference) -> str:
    """Return the name of the output column of the given field."""
    if isinstance(field_reference, FieldReference):
        return field_reference.name
    elif isinstance(field_reference, ForeignKeyReference):
        return f"{_column_name(field_reference.source)}->{field_reference.target.name}"
    elif isinstance(field_reference, DatetimeFieldReference):
        name = _column_name(field_reference.field)
        if field_reference.unit == DatetimeUnit.DEFAULT:
            return name
        return f"{name}:{field_reference.unit.value}"
    else:
        raise AssertionError(f"Unreachable code reached: unknown field reference {field_reference}")


class _QueryCompiler(object):
    """State of the compilation of a single request. Not reused across requests."""

    def __init__(
        self,
        request: QueryRequest,
        catalog: AttributeCatalog,
        custom_relationships: Tuple[CustomRelationship, ...],
    ) -> None:
        """Prepare the compilation of the given request."""
        self._request = request
        self._catalog = catalog
        self._custom_relationships = custom_relationships
        self._table_names = derive_table_names(catalog)
        self._table_fields: Dict[str, Dict[str, Field]] = {}

        if request.source_table not in self._table_names:
            raise UnsupportedQueryError(
                f"Source table {request.source_table} does not exist in the schema."
            )
        self._bindings = BindingBuilder(request.source_table)

    # Schema lookups.

    def _get_field(self, table_name: str, field_name: str) -> Field:
        if table_name not in self._table_names:
            raise UnsupportedQueryError(f"Table {table_name} does not exist in the schema.")
        fields = self._table_fields.get(table_name)
        if fields is None:
            fields = {
                table_field.name: table_field
                for table_field in table_columns(
                    self._catalog, table_name, self._custom_relationships
                )
            }
            self._table_fields[table_name] = fields

        table_field = fields.get(field_name)
        if table_field is None:
            raise UnsupportedQueryError(f"Table {table_name} has no field named {field_name}.")
        return table_field

    def _get_hop_attributes(self, relationship: CustomRelationship) -> List[Attribute]:
        attributes = []
        for hop in relationship.path:
            attribute = self._catalog.get_attribute(hop.attribute)
            if attribute is None:
                raise UnsupportedQueryError(
                    f"Relationship {relationship.source_table}.{relationship.name} follows "
                    f"attribute {hop.attribute}, which does not exist in the schema."
                )
            attributes.append(attribute)
        return attributes

    # Field resolution and binding.

    def _follow_reference(self, resolved: _ResolvedField) -> Tuple[Symbol, Optional[str]]:
        """Bind the entities a reference field points to.

        Returns:
            tuple (variable of the referenced entities, their table if it is known)
        """
        table_field = resolved.field
        if table_field.kind == FieldKind.PATH_REFERENCE and table_field.relationship is not None:
            relationship = table_field.relationship
            destination = self._bindings.bind_path(
                resolved.entity, relationship, self._get_hop_attributes(relationship)
            )
            return destination, relationship.destination_table
        elif (
            table_field.kind == FieldKind.ATTRIBUTE
            and table_field.attribute is not None
            and table_field.attribute.value_type == ValueType.REF
        ):
            return self._bindings.bind_attribute(resolved.entity, table_field.attribute), None
        else:
            raise UnsupportedQueryError(
                f"Field {table_field.table}.{table_field.name} of type "
                f"{table_field.database_type} is not a reference, and cannot be followed to "
                f"another table."
            )

    def _resolve(
        self, field_reference: Union[FieldReference, ForeignKeyReference]
    ) -> _ResolvedField:
        """Find the field a reference stands for, binding any reference hops on the way."""
        if isinstance(field_reference, FieldReference):
            if field_reference.table != self._request.source_table:
                raise UnsupportedQueryError(
                    f"Field {field_reference.table}.{field_reference.name} is not a field of "
                    f"the source table {self._request.source_table}. Fields of other tables "
                    f"must be reached through a foreign key reference."
                )
            return _ResolvedField(
                entity=self._bindings.source_entity,
                field=self._get_field(field_reference.table, field_reference.name),
            )
        elif isinstance(field_reference, ForeignKeyReference):
            source = self._resolve(field_reference.source)
            destination, destination_table = self._follow_reference(source)
            target = field_reference.target
            if destination_table is not None and target.table != destination_table:
                raise UnsupportedQueryError(
                    f"Field {source.field.table}.{source.field.name} leads to table "
                    f"{destination_table}, but the request reads field {target.name} of "
                    f"table {target.table} through it."
                )
            return _ResolvedField(
                entity=destination, field=self._get_field(target.table, target.name)
            )
        else:
            raise AssertionError(
                f"Unreachable code reached: unknown field reference {field_reference}"
            )

    def _bind_resolved(self, resolved: _ResolvedField) -> BoundValue:
        """Bind the value of a resolved field null-safely."""
        table_field = resolved.field
        description = f"{table_field.table}.{table_field.name}"
        if table_field.kind == FieldKind.PRIMARY_KEY:
            return BoundValue(resolved.entity, ValueType.REF, description)
        elif table_field.kind == FieldKind.PATH_REFERENCE:
            destination, _ = self._follow_reference(resolved)
            return BoundValue(destination, ValueType.REF, description)
        elif table_field.kind == FieldKind.ATTRIBUTE and table_field.attribute is not None:
            attribute = table_field.attribute
            variable = self._bindings.bind_attribute(resolved.entity, attribute)
            return BoundValue(variable, attribute.value_type, attribute.ident)
        else:
            raise AssertionError(f"Unreachable code reached: unknown field {table_field}")

    def _check_datetime_field(self, table_field: Field, unit: DatetimeUnit) -> None:
        if table_field.value_type != ValueType.INSTANT:
            raise UnsupportedQueryError(
                f"Datetime unit {unit.value} cannot be applied to field "
                f"{table_field.table}.{table_field.name} of type {table_field.database_type}."
            )

    def bind_field(self, field_reference: AnyFieldReference) -> BoundValue:
        """Bind the value of the referenced field null-safely, for filtering."""
        if isinstance(field_reference, DatetimeFieldReference):
            resolved = self._resolve(field_reference.field)
            self._check_datetime_field(resolved.field, field_reference.unit)
            return replace(self._bind_resolved(resolved), unit=field_reference.unit)
        return self._bind_resolved(self._resolve(field_reference))

    # Select specs.

    def binding_spec(self, field_reference: AnyFieldReference) -> SelectSpec:
        """Return the spec of a breakout column, whose value is bound to a find variable."""
        if isinstance(field_reference, DatetimeFieldReference):
            unit: Optional[DatetimeUnit] = field_reference.unit
            resolved = self._resolve(field_reference.field)
            self._check_datetime_field(resolved.field, field_reference.unit)
        else:
            unit = None
            resolved = self._resolve(field_reference)

        bound_value = self._bind_resolved(resolved)
        attribute = resolved.field.attribute
        if resolved.field.kind != FieldKind.ATTRIBUTE or attribute is None:
            return CopyVariable(bound_value.variable, ValueType.REF)

        spec = FieldValue(
            variable=bound_value.variable,
            attribute=attribute.ident,
            value_type=attribute.value_type,
            cardinality=attribute.cardinality,
            entity_lookup=False,
        )
        return spec if unit is None else DatetimeValue(spec, unit)

    def lookup_spec(self, field_reference: AnyFieldReference) -> SelectSpec:
        """Return the spec of a plain column, whose value is pulled from its entity."""
        if isinstance(field_reference, DatetimeFieldReference):
            unit: Optional[DatetimeUnit] = field_reference.unit
            resolved = self._resolve(field_reference.field)
            self._check_datetime_field(resolved.field, field_reference.unit)
        else:
            unit = None
            resolved = self._resolve(field_reference)

        attribute = resolved.field.attribute
        if resolved.field.kind != FieldKind.ATTRIBUTE or attribute is None:
            # Entity ids, and the entities at the end of relationship paths, have to be bound.
            return CopyVariable(self._bind_resolved(resolved).variable, ValueType.REF)

        spec = FieldValue(
            variable=resolved.entity,
            attribute=attribute.ident,
            value_type=attribute.value_type,
            cardinality=attribute.cardinality,
            entity_lookup=True,
        )
        return spec if unit is None else DatetimeValue(spec, unit)

    # Assembly.

    def _default_fields(self) -> Tuple[FieldReference, ...]:
        """Return the fields of "SELECT *" over the source table, without relationship fields."""
        source_table = self._request.source_table
        return tuple(
            FieldReference(source_table, table_field.name)
            for table_field in table_columns(self._catalog, source_table)
        )

    def _order_by_specs(
        self, output_fields: Tuple[AnyFieldReference, ...], select: Tuple[SelectSpec, ...]
    ) -> Tuple[OrderBySpec, ...]:
        is_breakout_query = bool(self._request.breakouts) and not self._request.fields
        specs = []
        for order_by in self._request.order_by:
            if order_by.field in output_fields:
                spec = select[output_fields.index(order_by.field)]
            elif is_breakout_query:
                raise UnsupportedQueryError(
                    f"Cannot order a breakout query by {_column_name(order_by.field)}, "
                    f"which is not one of its breakouts."
                )
            else:
                spec = self.lookup_spec(order_by.field)
            specs.append(OrderBySpec(spec, order_by.direction))
        return tuple(specs)

    def _find_clause(
        self, specs: Iterable[SelectSpec], deduplicate: bool
    ) -> Tuple[FindElement, ...]:
        """Return the find clause providing the raw values of the given specs."""
        # Ordered keys of the find clause: variables, and entity variables to pull from.
        find_keys: List[Tuple[Symbol, bool]] = []
        pull_attributes: Dict[Symbol, List[Keyword]] = {}

        def add_key(variable: Symbol, is_pull: bool) -> None:
            if (variable, is_pull) not in find_keys:
                find_keys.append((variable, is_pull))

        if not deduplicate:
            # Output rows are per entity, even where two entities' values coincide.
            add_key(self._bindings.source_entity, False)

        for spec in specs:
            if isinstance(spec, DatetimeValue):
                spec = spec.field
            if isinstance(spec, FieldValue) and spec.entity_lookup:
                add_key(spec.variable, False)
                add_key(spec.variable, True)
                attributes = pull_attributes.setdefault(spec.variable, [])
                if Keyword(spec.attribute) not in attributes:
                    attributes.append(Keyword(spec.attribute))
            elif isinstance(spec, (CopyVariable, FieldValue)):
                add_key(spec.variable, False)
            else:
                raise AssertionError(f"Unreachable code reached: unknown select spec {spec}")

        return tuple(
            PullExpression(variable, tuple(pull_attributes[variable])) if is_pull else variable
            for variable, is_pull in find_keys
        )

    def compile(self) -> NativeQuery:
        """Compile the request."""
        request = self._request
        if request.aggregations:
            raise UnsupportedQueryError(
                f"Aggregations are not supported, but the request contains: "
                f"{list(request.aggregations)}"
            )

        fields = request.fields
        output_fields = request.output_fields
        if not output_fields:
            fields = self._default_fields()
            output_fields = fields

        select = tuple(self.binding_spec(breakout) for breakout in request.breakouts) + tuple(
            self.lookup_spec(field_reference) for field_reference in fields
        )
        order_by = self._order_by_specs(output_fields, select)
        predicates = compile_filter(request.filter, self.bind_field, self._catalog)

        deduplicate = bool(request.breakouts) and not request.fields
        membership = membership_clause(
            self._bindings.source_entity,
            self._catalog.get_namespace_attributes(request.source_table),
        )
        return NativeQuery(
            find=self._find_clause(
                select + tuple(order_by_spec.spec for order_by_spec in order_by), deduplicate
            ),
            where=(membership,) + self._bindings.clauses + tuple(predicates),
            select=select,
            order_by=order_by,
            limit=request.limit,
            deduplicate=deduplicate,
            column_names=tuple(_column_name(field_reference) for field_reference in output_fields),
        )


def compile_query(
    request: QueryRequest,
    catalog: AttributeCatalog,
    custom_relationships: Iterable[CustomRelationship] = (),
) -> NativeQuery:
    """Compile a structured query request into a native query.

    Args:
        request: the structured query request to compile.
        catalog: catalog describing the schema of the store.
        custom_relationships: the configured custom relationships, exposed as fields of their
                              source tables.

    Returns:
        NativeQuery implementing the request, together with the metadata needed to
        post-process its results

    Raises:
        UnsupportedQueryError: if the request uses a feature that has no translation, or
                               refers to tables or fields that do not exist.
        InvalidQueryArgumentError: if a filter argument does not fit the filtered field's type.
        CompilationInvariantError: if the compiler reached an inconsistent state. This is a bug.
    """
    native_query = _QueryCompiler(request, catalog, tuple(custom_relationships)).compile()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Compiled request on table %s into native query: %s",
            request.source_table,
            native_query.to_edn(include_extensions=True),
        )
    return native_query
