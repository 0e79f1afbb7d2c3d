# Copyright 2020-present Kensho Technologies, LLC.
from dataclasses import dataclass, field
import json
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union
import warnings

from ..edn import Keyword, keyword_name
from ..exceptions import SchemaLoadError
from .value_types import Cardinality, ValueType


# Namespaces of the store's own bookkeeping attributes. These never become tables.
RESERVED_NAMESPACES = frozenset(
    {
        "db",
        "db.alter",
        "db.excise",
        "db.install",
        "db.sys",
        "fressian",
    }
)

SNAPSHOT_ATTRIBUTES_KEY = "attributes"
SNAPSHOT_IDENTS_KEY = "idents"
SNAPSHOT_ENTITIES_KEY = "entities"

IDENT_KEY = "db/ident"
ENTITY_ID_KEY = "db/id"
VALUE_TYPE_KEY = "db/valueType"
CARDINALITY_KEY = "db/cardinality"
UNIQUE_KEY = "db/unique"


@dataclass(frozen=True)
class Attribute:
    """A namespaced, typed property that may be present on an entity."""

    namespace: str
    name: str
    value_type: ValueType
    cardinality: Cardinality
    unique: bool = False

    @property
    def ident(self) -> str:
        """Return the "namespace/name" identifier of the attribute."""
        return f"{self.namespace}/{self.name}"

    @property
    def keyword(self) -> Keyword:
        """Return the attribute's identifier as a keyword, for use in native queries."""
        return Keyword(self.ident)

    @property
    def is_many(self) -> bool:
        """Return True if the attribute holds a set of values per entity."""
        return self.cardinality == Cardinality.MANY


@dataclass(frozen=True)
class AttributeCatalog:
    """Read-only view of the store's attribute schema, and of the entity shapes observed in it.

    Instances are immutable once built, and are safe to share between concurrent compilations.
    """

    attributes: Mapping[str, Attribute]  # attribute ident -> Attribute
    namespaces: Mapping[str, Tuple[Attribute, ...]]  # namespace -> attributes, sorted by name

    # Entity id -> ident, for enumerated entities carrying a symbolic identifier.
    idents: Mapping[int, str] = field(default_factory=lambda: MappingProxyType({}))

    # Sets of attribute idents observed together on a single entity. None if no entity data was
    # available when the snapshot was taken, as opposed to a store with no entities at all.
    entity_attribute_sets: Optional[FrozenSet[FrozenSet[str]]] = None

    def get_attribute(self, ident: Union[str, Keyword]) -> Optional[Attribute]:
        """Return the attribute with the given ident, or None if there is no such attribute."""
        return self.attributes.get(keyword_name(ident))

    def get_namespace_attributes(self, namespace: str) -> Tuple[Attribute, ...]:
        """Return the attributes in the given namespace, sorted by name."""
        return self.namespaces.get(namespace, ())

    def get_ident(self, entity_id: int) -> Optional[str]:
        """Return the symbolic identifier of the given entity, or None if it has none."""
        return self.idents.get(entity_id)

    def get_entity_id(self, ident: Union[str, Keyword]) -> Optional[int]:
        """Return the id of the entity with the given symbolic identifier, if it exists."""
        name = keyword_name(ident)
        for entity_id, entity_ident in self.idents.items():
            if entity_ident == name:
                return entity_id
        return None

    @property
    def has_entity_data(self) -> bool:
        """Return True if the catalog was built with observations of live entities."""
        return self.entity_attribute_sets is not None

    def get_cooccurring_attributes(self, namespace: str) -> Tuple[Attribute, ...]:
        """Return the attributes of other namespaces observed on entities of the given namespace.

        Attributes of reserved namespaces are left out. The result is sorted by ident, and is
        empty if the catalog has no entity data.
        """
        if not self.has_entity_data:
            return ()

        cooccurring_idents = set()
        for attribute_set in self.entity_attribute_sets or ():
            if any(ident.rpartition("/")[0] == namespace for ident in attribute_set):
                cooccurring_idents.update(attribute_set)

        return tuple(
            self.attributes[ident]
            for ident in sorted(cooccurring_idents)
            if ident in self.attributes
            and self.attributes[ident].namespace != namespace
            and self.attributes[ident].namespace not in RESERVED_NAMESPACES
        )


def _parse_keyword(value: Any, context: str) -> Keyword:
    """Parse a keyword from the snapshot, raising SchemaLoadError if it is malformed."""
    if not isinstance(value, (str, Keyword)):
        raise SchemaLoadError(f"Expected a keyword for {context}, got: {repr(value)}")
    try:
        return Keyword.from_string(value) if isinstance(value, str) else value
    except AssertionError as e:
        raise SchemaLoadError(f"Malformed keyword for {context}: {repr(value)}") from e


def _get_key(definition: Mapping[str, Any], key: str) -> Any:
    """Look up a key of a snapshot entry, accepting keyword keys with or without a colon."""
    if key in definition:
        return definition[key]
    return definition.get(":" + key)


def _get_optional_list(snapshot: Mapping[str, Any], key: str) -> Optional[List[Any]]:
    """Return the list stored under an optional key of the snapshot, or None if it is absent."""
    value = snapshot.get(key)
    if value is not None and not isinstance(value, list):
        raise SchemaLoadError(
            f'Expected "{key}" of the schema snapshot to be a list, got: {repr(value)}'
        )
    return value


def _parse_attribute(definition: Any) -> Attribute:
    """Build an Attribute from its snapshot definition dict."""
    if not isinstance(definition, Mapping):
        raise SchemaLoadError(f"Expected attribute definitions to be mappings, got: {definition}")

    for required_key in (IDENT_KEY, VALUE_TYPE_KEY, CARDINALITY_KEY):
        if _get_key(definition, required_key) is None:
            raise SchemaLoadError(
                f"Attribute definition is missing required key {required_key}: {definition}"
            )

    ident = _parse_keyword(_get_key(definition, IDENT_KEY), "an attribute ident")
    if not ident.namespace:
        raise SchemaLoadError(f"Attribute ident {ident} has no namespace.")

    try:
        value_type = ValueType.from_tag(_get_key(definition, VALUE_TYPE_KEY))
        cardinality = Cardinality.from_tag(_get_key(definition, CARDINALITY_KEY))
    except (ValueError, AssertionError) as e:
        raise SchemaLoadError(f"Invalid attribute definition for {ident}: {e}") from e

    # The store spells uniqueness as ":db.unique/identity" or ":db.unique/value", and omits it
    # for non-unique attributes. Plain booleans are accepted as well.
    uniqueness = _get_key(definition, UNIQUE_KEY)
    unique = uniqueness if isinstance(uniqueness, bool) else uniqueness is not None

    return Attribute(
        namespace=ident.namespace,
        name=ident.local_name,
        value_type=value_type,
        cardinality=cardinality,
        unique=unique,
    )


def _parse_idents(ident_definitions: Iterable[Any]) -> Dict[int, str]:
    """Build the entity id -> ident mapping from the snapshot's enumerated entities."""
    idents: Dict[int, str] = {}
    for definition in ident_definitions:
        if not isinstance(definition, Mapping):
            raise SchemaLoadError(f"Expected ident definitions to be mappings, got: {definition}")
        entity_id = _get_key(definition, ENTITY_ID_KEY)
        if isinstance(entity_id, bool) or not isinstance(entity_id, int):
            raise SchemaLoadError(f"Ident definition has an invalid entity id: {definition}")
        ident = _parse_keyword(_get_key(definition, IDENT_KEY), f"the ident of entity {entity_id}")
        idents[entity_id] = ident.name
    return idents


def _parse_entity_attribute_sets(
    entities: Iterable[Any], attributes: Mapping[str, Attribute]
) -> FrozenSet[FrozenSet[str]]:
    """Build the set of attribute combinations observed on entities."""
    attribute_sets = set()
    unknown_idents = set()
    for entity_attributes in entities:
        if isinstance(entity_attributes, (str, bytes)) or not isinstance(
            entity_attributes, Iterable
        ):
            raise SchemaLoadError(
                f"Expected each entity observation to be a list of attribute idents, "
                f"got: {repr(entity_attributes)}"
            )
        idents = {
            _parse_keyword(ident, "an observed attribute").name for ident in entity_attributes
        }
        unknown_idents.update(idents.difference(attributes))
        attribute_sets.add(frozenset(idents.intersection(attributes)))

    if unknown_idents:
        warnings.warn(
            f"Ignoring observed attributes that are not part of the schema snapshot: "
            f"{sorted(unknown_idents)}"
        )
    return frozenset(attribute_sets)


def load_catalog(snapshot: Union[str, bytes, Mapping[str, Any]]) -> AttributeCatalog:
    """Build an AttributeCatalog from a schema snapshot.

    Args:
        snapshot: mapping (or its JSON text) with the following keys:
                    - attributes: list of dicts, one per attribute, with keys "db/ident",
                                  "db/valueType", "db/cardinality" and optionally "db/unique".
                                  Keyword values may be written with or without a leading colon,
                                  and value types may be abbreviated, e.g. "string".
                    - idents (optional): list of dicts with keys "db/id" and "db/ident",
                                         describing the enumerated entities of the store.
                    - entities (optional): list of lists of attribute idents, each describing
                                           which attributes were observed together on a single
                                           entity. Used to infer which attributes co-occur with
                                           which tables.

    Returns:
        AttributeCatalog describing the snapshot

    Raises:
        SchemaLoadError: if the snapshot cannot be read, or describes an invalid schema.
    """
    if isinstance(snapshot, (str, bytes)):
        try:
            snapshot = json.loads(snapshot)
        except ValueError as e:
            raise SchemaLoadError(f"Schema snapshot is not valid JSON: {e}") from e

    if not isinstance(snapshot, Mapping):
        raise SchemaLoadError(f"Expected the schema snapshot to be a mapping, got: {snapshot}")

    attribute_definitions = snapshot.get(SNAPSHOT_ATTRIBUTES_KEY)
    if not isinstance(attribute_definitions, list):
        raise SchemaLoadError(
            f'Expected the schema snapshot to contain a list of "{SNAPSHOT_ATTRIBUTES_KEY}", '
            f"got: {repr(attribute_definitions)}"
        )

    attributes: Dict[str, Attribute] = {}
    for definition in attribute_definitions:
        attribute = _parse_attribute(definition)
        if attribute.ident in attributes:
            raise SchemaLoadError(f"Duplicate definition of attribute {attribute.ident}")
        attributes[attribute.ident] = attribute

    namespace_lists: Dict[str, List[Attribute]] = {}
    for attribute in sorted(attributes.values(), key=lambda attr: (attr.namespace, attr.name)):
        namespace_lists.setdefault(attribute.namespace, []).append(attribute)

    entities = _get_optional_list(snapshot, SNAPSHOT_ENTITIES_KEY)
    entity_attribute_sets = None if entities is None else _parse_entity_attribute_sets(
        entities, attributes
    )
    ident_definitions = _get_optional_list(snapshot, SNAPSHOT_IDENTS_KEY)

    return AttributeCatalog(
        attributes=MappingProxyType(attributes),
        namespaces=MappingProxyType(
            {namespace: tuple(attrs) for namespace, attrs in namespace_lists.items()}
        ),
        idents=MappingProxyType(_parse_idents(ident_definitions or ())),
        entity_attribute_sets=entity_attribute_sets,
    )


def load_catalog_from_path(path: str) -> AttributeCatalog:
    """Read a JSON schema snapshot from the given file and build an AttributeCatalog from it."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            contents = f.read()
    except OSError as e:
        raise SchemaLoadError(f"Could not read schema snapshot file {path}: {e}") from e
    return load_catalog(contents)
