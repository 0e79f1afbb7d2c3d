# Copyright 2020-present Kensho Technologies, LLC.
"""Builders for the binding clauses of the where clause.

Every attribute value the query needs is bound null-safely: when the entity lacks the attribute,
its variable is bound to the placeholder sentinel of the attribute's value type instead, so that
the entity remains a candidate row. Three forms are used:
    - cardinality one:
        [(get-else $ ?e :ns/name SENTINEL) ?v]
    - cardinality many, where get-else is not available:
        (or-join [?e ?v]
          [?e :ns/name ?v]
          (and [(missing? $ ?e :ns/name)] [(ground SENTINEL) ?v]))
    - reverse reference hops:
        (or-join [?e ?v]
          [?v :ns/name ?e]
          (and (not-join [?e] [_ :ns/name ?e]) [(ground SENTINEL) ?v]))
"""
from typing import Any, List, Sequence, Tuple

from ..edn import ListForm, Symbol
from ..exceptions import CompilationInvariantError
from ..schema.catalog import Attribute
from ..schema.relationships import CustomRelationship, PathHop
from ..schema.value_types import ValueType, nullable_binding_default
from .logic_variables import LogicVariableRegistry, attribute_variable, entity_variable


DATABASE = Symbol("$")
BLANK = Symbol("_")
AND = Symbol("and")
OR = Symbol("or")
OR_JOIN = Symbol("or-join")
NOT = Symbol("not")
NOT_JOIN = Symbol("not-join")
GET_ELSE = Symbol("get-else")
MISSING = Symbol("missing?")
GROUND = Symbol("ground")


def data_pattern(*items: Any) -> Tuple[Any, ...]:
    """Return a data pattern clause, such as [?e :ns/name ?v]."""
    return tuple(items)


def predicate_clause(function: Symbol, *arguments: Any) -> Tuple[ListForm]:
    """Return a predicate expression clause, such as [(< ?v 18)]."""
    return (ListForm.of(function, *arguments),)


def function_clause(function: Symbol, arguments: Sequence[Any], binding: Symbol) -> Tuple[Any, ...]:
    """Return a function expression clause binding its result, such as [(ground 1) ?v]."""
    return (ListForm.of(function, *arguments), binding)


def and_clause(clauses: Sequence[Any]) -> Any:
    """Combine clauses into a single clause: the clause itself if there is only one."""
    if not clauses:
        raise AssertionError("Expected at least one clause to combine.")
    if len(clauses) == 1:
        return clauses[0]
    return ListForm.of(AND, *clauses)


def membership_clause(entity: Symbol, attributes: Sequence[Attribute]) -> Any:
    """Return the clause binding the entity to every entity carrying any of the attributes.

    This mirrors selecting from a table: an entity belongs to a table if it has any of the
    table's own attributes.
    """
    if not attributes:
        raise AssertionError(f"Cannot bind {entity} to members of a table without attributes.")
    patterns = [data_pattern(entity, attribute.keyword) for attribute in attributes]
    if len(patterns) == 1:
        return patterns[0]
    return ListForm.of(OR, *patterns)


def nullable_binding_clause(entity: Symbol, attribute: Attribute, value: Symbol) -> Any:
    """Return the clause binding the attribute's value or, if absent, its sentinel, to value."""
    sentinel = nullable_binding_default(attribute.value_type)
    if not attribute.is_many:
        return function_clause(GET_ELSE, (DATABASE, entity, attribute.keyword, sentinel), value)

    return ListForm.of(
        OR_JOIN,
        (entity, value),
        data_pattern(entity, attribute.keyword, value),
        ListForm.of(
            AND,
            predicate_clause(MISSING, DATABASE, entity, attribute.keyword),
            function_clause(GROUND, (sentinel,), value),
        ),
    )


def reverse_binding_clause(entity: Symbol, attribute: Attribute, value: Symbol) -> Any:
    """Return the clause binding every entity referencing the given one through the attribute.

    If no entity references it, value is bound to the reference sentinel instead.
    """
    if attribute.value_type != ValueType.REF:
        raise AssertionError(f"Cannot follow non-reference attribute {attribute.ident} backwards.")
    sentinel = nullable_binding_default(ValueType.REF)
    return ListForm.of(
        OR_JOIN,
        (entity, value),
        data_pattern(value, attribute.keyword, entity),
        ListForm.of(
            AND,
            ListForm.of(NOT_JOIN, (entity,), data_pattern(BLANK, attribute.keyword, entity)),
            function_clause(GROUND, (sentinel,), value),
        ),
    )


class BindingBuilder(object):
    """Accumulates the binding clauses of one query, binding each attribute of an entity once."""

    def __init__(self, source_table: str) -> None:
        """Create a builder for a query whose source table is given."""
        self.registry = LogicVariableRegistry()
        self.source_entity = entity_variable(source_table)
        self.registry.register(self.source_entity, (None, source_table, False))
        self._clauses: List[Any] = []

    @property
    def clauses(self) -> Tuple[Any, ...]:
        """Return the binding clauses emitted so far, in emission order."""
        return tuple(self._clauses)

    def bind_attribute(self, entity: Symbol, attribute: Attribute) -> Symbol:
        """Bind the value of the attribute on the entity null-safely, and return its variable."""
        value = attribute_variable(entity, attribute.ident)
        if self.registry.register(value, (entity, attribute.ident, False)):
            self._clauses.append(nullable_binding_clause(entity, attribute, value))
        return value

    def bind_reverse_reference(self, entity: Symbol, attribute: Attribute) -> Symbol:
        """Bind the entities referencing the entity through the attribute, return their variable."""
        value = attribute_variable(entity, attribute.ident, reverse=True)
        if self.registry.register(value, (entity, attribute.ident, True)):
            self._clauses.append(reverse_binding_clause(entity, attribute, value))
        return value

    def bind_hop(self, entity: Symbol, hop: PathHop, attribute: Attribute) -> Symbol:
        """Follow one hop of a relationship path, returning the variable of the entity reached."""
        if attribute.ident != hop.attribute:
            raise CompilationInvariantError(
                f"Hop {hop} was resolved to the wrong attribute {attribute.ident}."
            )
        if hop.reverse:
            return self.bind_reverse_reference(entity, attribute)
        return self.bind_attribute(entity, attribute)

    def bind_path(
        self, entity: Symbol, relationship: CustomRelationship, attributes: Sequence[Attribute]
    ) -> Symbol:
        """Follow every hop of the relationship, reusing already bound intermediate entities.

        Args:
            entity: variable of the entity the relationship starts from.
            relationship: the relationship to follow.
            attributes: the attribute of each hop of the relationship's path, in order.

        Returns:
            the variable of the entities at the end of the path
        """
        if len(attributes) != len(relationship.path):
            raise AssertionError(
                f"Expected one attribute per hop of {relationship}, got: {attributes}"
            )
        current_entity = entity
        for hop, attribute in zip(relationship.path, attributes):
            current_entity = self.bind_hop(current_entity, hop, attribute)
        return current_entity
