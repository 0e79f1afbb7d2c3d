# Copyright 2020-present Kensho Technologies, LLC.
"""Naming of logic variables, which is how bindings are correlated back to the requested fields.

An entity of the source table is bound to "?table". The value of attribute "ns/name" on the
entity bound to "?X" is bound to "?X|ns|name", or "?X|ns|_name" when following the reference
attribute backwards. Entities reached by following a reference are therefore named after the
whole path that leads to them, for example "?artist|artist|country|country|name".

Names are only injective if no component contains the "|" separator, so such names are rejected.
The registry below additionally checks that every name is only ever used for a single binding.
"""
from typing import Dict, Optional, Tuple

from ..edn import Symbol
from ..exceptions import CompilationInvariantError
from ..schema.relationships import REVERSE_HOP_PREFIX


VARIABLE_PREFIX = "?"
VARIABLE_SEPARATOR = "|"

# (entity variable, attribute ident, reverse), or (None, table name, False) for source entities.
Provenance = Tuple[Optional[Symbol], str, bool]


def _check_name_component(component: str) -> None:
    if not component or VARIABLE_SEPARATOR in component or any(
        character.isspace() for character in component
    ):
        raise CompilationInvariantError(
            f"Cannot name a logic variable after {repr(component)}: names must be non-empty, "
            f'and must not contain whitespace or the "{VARIABLE_SEPARATOR}" separator.'
        )


def entity_variable(table_name: str) -> Symbol:
    """Return the variable the entities of the given source table are bound to."""
    _check_name_component(table_name)
    return Symbol(VARIABLE_PREFIX + table_name)


def attribute_variable(entity: Symbol, attribute_ident: str, reverse: bool = False) -> Symbol:
    """Return the variable the value of an attribute of the given entity is bound to."""
    if not entity.is_logic_variable:
        raise AssertionError(f"Expected a logic variable, got: {entity}")

    namespace, _, local_name = attribute_ident.rpartition("/")
    _check_name_component(namespace)
    _check_name_component(local_name)
    if reverse:
        local_name = REVERSE_HOP_PREFIX + local_name
    return Symbol(VARIABLE_SEPARATOR.join((entity.name, namespace, local_name)))


class LogicVariableRegistry(object):
    """Record of the variables of one query under compilation, and of what each is bound to."""

    def __init__(self) -> None:
        """Create an empty registry."""
        # dict, Symbol -> Provenance of the binding the variable was created for
        self._provenances: Dict[Symbol, Provenance] = {}

    def register(self, variable: Symbol, provenance: Provenance) -> bool:
        """Record the provenance of a variable.

        Returns:
            True if the variable is new, and False if it was already registered with the same
            provenance, meaning its binding clause has already been emitted.

        Raises:
            CompilationInvariantError: if the variable was registered with another provenance.
        """
        existing_provenance = self._provenances.get(variable)
        if existing_provenance is None:
            self._provenances[variable] = provenance
            return True
        if existing_provenance != provenance:
            raise CompilationInvariantError(
                f"Logic variable {variable} was assigned to two different bindings: "
                f"{existing_provenance} and {provenance}"
            )
        return False
