# Copyright 2020-present Kensho Technologies, LLC.
"""User-configured multi-hop paths through the entity graph, exposed as if they were foreign keys.

The configuration is a mapping from source table name to the relationships of that table:
    {
        "artist": {
            "releases": {"path": ["release/_artists"], "target": "release"},
            "tracks": {"path": ["track/_artists"], "target": "track"},
        },
    }
Each hop of a path names a reference attribute. A hop whose local name starts with an underscore
follows the reference backwards, using the store's own reverse-reference spelling: the hop
"release/_artists" goes from an artist to every release whose "release/artists" points to it.
"""
from dataclasses import dataclass
import json
from typing import Any, Dict, Iterable, Mapping, Tuple, Union

from ..edn import Keyword, keyword_name
from ..exceptions import InvalidRelationshipError
from .catalog import RESERVED_NAMESPACES, AttributeCatalog
from .value_types import ValueType


REVERSE_HOP_PREFIX = "_"
PATH_KEY = "path"
TARGET_KEY = "target"


@dataclass(frozen=True)
class PathHop:
    """One step of a relationship path: a reference attribute, followed forward or backward."""

    attribute: str  # Ident of the reference attribute, always in its forward spelling.
    reverse: bool

    @classmethod
    def from_string(cls, hop: Union[str, Keyword]) -> "PathHop":
        """Parse a hop like "country/_artists" or ":artist/country"."""
        if not isinstance(hop, (str, Keyword)):
            raise InvalidRelationshipError(f"Malformed relationship path hop: {repr(hop)}")
        name = keyword_name(hop)
        namespace, separator, local_name = name.rpartition("/")
        if not separator or not namespace or not local_name.lstrip(REVERSE_HOP_PREFIX):
            raise InvalidRelationshipError(f"Malformed relationship path hop: {repr(hop)}")

        if local_name.startswith(REVERSE_HOP_PREFIX):
            return cls(f"{namespace}/{local_name[len(REVERSE_HOP_PREFIX):]}", True)
        return cls(name, False)

    @property
    def keyword(self) -> Keyword:
        """Return the hop as the store spells it, e.g. :release/_artists for a reverse hop."""
        if not self.reverse:
            return Keyword(self.attribute)
        namespace, _, local_name = self.attribute.rpartition("/")
        return Keyword(f"{namespace}/{REVERSE_HOP_PREFIX}{local_name}")

    def __str__(self) -> str:
        """Return the hop as the store spells it."""
        return self.keyword.name


@dataclass(frozen=True)
class CustomRelationship:
    """A named path from the entities of one table to the entities of another."""

    source_table: str
    name: str
    destination_table: str
    path: Tuple[PathHop, ...]

    def __post_init__(self) -> None:
        """Validate fields."""
        if not self.path:
            raise AssertionError("The path field is expected to be non-empty.")


def _parse_relationship(source_table: str, name: str, definition: Any) -> CustomRelationship:
    """Build a CustomRelationship from its configuration entry."""
    if not isinstance(definition, Mapping):
        raise InvalidRelationshipError(
            f"Relationship {source_table}.{name} must be configured as a mapping, "
            f"got: {repr(definition)}"
        )

    target = definition.get(TARGET_KEY, definition.get(":" + TARGET_KEY))
    path = definition.get(PATH_KEY, definition.get(":" + PATH_KEY))
    if not isinstance(target, (str, Keyword)) or not keyword_name(target):
        raise InvalidRelationshipError(
            f"Relationship {source_table}.{name} has no destination table: {definition}"
        )
    if isinstance(path, (str, bytes)) or not isinstance(path, Iterable) or not path:
        raise InvalidRelationshipError(
            f"Relationship {source_table}.{name} must have a non-empty list of hops as its "
            f"path, got: {repr(path)}"
        )

    return CustomRelationship(
        source_table=source_table,
        name=name,
        destination_table=keyword_name(target),
        path=tuple(PathHop.from_string(hop) for hop in path),
    )


def load_custom_relationships(
    config: Union[str, bytes, Mapping[str, Any], None]
) -> Tuple[CustomRelationship, ...]:
    """Parse the custom relationship configuration.

    Args:
        config: mapping (or its JSON text) from source table name to a mapping of relationship
                name to relationship definition. Each definition is a dict with keys:
                    - path: list of strings, the hops of the path, e.g. ["release/_artists"]
                    - target: string, the name of the destination table
                None stands for an empty configuration.

    Returns:
        tuple of CustomRelationship objects, sorted by source table and relationship name

    Raises:
        InvalidRelationshipError: if the configuration is malformed
    """
    if config is None:
        return ()

    if isinstance(config, (str, bytes)):
        try:
            config = json.loads(config)
        except ValueError as e:
            raise InvalidRelationshipError(
                f"Relationship configuration is not valid JSON: {e}"
            ) from e

    if not isinstance(config, Mapping):
        raise InvalidRelationshipError(
            f"Expected the relationship configuration to be a mapping, got: {type(config)}"
        )

    relationships = []
    for source_table, table_relationships in config.items():
        if not isinstance(source_table, (str, Keyword)):
            raise InvalidRelationshipError(
                f"Expected the relationship configuration to be keyed by table name, "
                f"got: {repr(source_table)}"
            )
        if not isinstance(table_relationships, Mapping):
            raise InvalidRelationshipError(
                f"Expected the relationships of table {source_table} to be a mapping, "
                f"got: {repr(table_relationships)}"
            )
        for name, definition in table_relationships.items():
            if not isinstance(name, (str, Keyword)):
                raise InvalidRelationshipError(
                    f"Expected the relationships of table {source_table} to be keyed by name, "
                    f"got: {repr(name)}"
                )
            relationships.append(
                _parse_relationship(keyword_name(source_table), keyword_name(name), definition)
            )

    return tuple(sorted(relationships, key=lambda rel: (rel.source_table, rel.name)))


def load_custom_relationships_from_path(path: str) -> Tuple[CustomRelationship, ...]:
    """Read the custom relationship configuration from a JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            contents = f.read()
    except OSError as e:
        raise InvalidRelationshipError(
            f"Could not read relationship configuration {path}: {e}"
        ) from e
    return load_custom_relationships(contents)


def validate_custom_relationships(
    catalog: AttributeCatalog, relationships: Iterable[CustomRelationship]
) -> None:
    """Validate that the relationships do not reference non-existent tables or attributes."""
    table_names = {
        namespace for namespace in catalog.namespaces if namespace not in RESERVED_NAMESPACES
    }
    seen_names = set()

    for relationship in relationships:
        qualified_name = f"{relationship.source_table}.{relationship.name}"
        if qualified_name in seen_names:
            raise InvalidRelationshipError(f"Relationship {qualified_name} is defined twice.")
        seen_names.add(qualified_name)

        for table_name in (relationship.source_table, relationship.destination_table):
            if table_name not in table_names:
                raise InvalidRelationshipError(
                    f"Relationship {qualified_name} references a non-existent table {table_name}"
                )

        attribute_field_names = {"id"}
        attribute_field_names.update(
            attribute.name
            for attribute in catalog.get_namespace_attributes(relationship.source_table)
        )
        attribute_field_names.update(
            attribute.ident
            for attribute in catalog.get_cooccurring_attributes(relationship.source_table)
        )
        if relationship.name in attribute_field_names:
            raise InvalidRelationshipError(
                f"Relationship {qualified_name} has the same name as a field of its source table."
            )

        for hop in relationship.path:
            attribute = catalog.get_attribute(hop.attribute)
            if attribute is None:
                raise InvalidRelationshipError(
                    f"Relationship {qualified_name} references a non-existent attribute "
                    f"{hop.attribute} in hop {hop}"
                )
            if attribute.value_type != ValueType.REF:
                raise InvalidRelationshipError(
                    f"Relationship {qualified_name} hop {hop} uses attribute {hop.attribute} of "
                    f"value type {attribute.value_type.value}, but only reference attributes "
                    f"can be followed."
                )


def get_relationships_by_source_table(
    relationships: Iterable[CustomRelationship],
) -> Dict[str, Dict[str, CustomRelationship]]:
    """Return the relationships in a format suited to resolving fields: table -> name -> rel."""
    relationships_by_table: Dict[str, Dict[str, CustomRelationship]] = {}
    for relationship in relationships:
        relationships_by_table.setdefault(relationship.source_table, {})[
            relationship.name
        ] = relationship
    return relationships_by_table
