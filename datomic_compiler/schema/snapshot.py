# Copyright 2020-present Kensho Technologies, LLC.
"""Process-wide schema state: the catalog and custom relationships, swapped as a single value.

Compilation and post-processing of one request must observe a single consistent schema. Readers
therefore take one SchemaSnapshot from the holder, and use it for the whole request, while a
re-sync replaces the snapshot as a whole. Snapshots are never modified in place.
"""
from dataclasses import dataclass
import threading
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple, Union

from .catalog import AttributeCatalog, load_catalog
from .inference import Table, derive_tables, describe_database, describe_table
from .relationships import (
    CustomRelationship,
    load_custom_relationships,
    validate_custom_relationships,
)


@dataclass(frozen=True)
class SchemaSnapshot:
    """A catalog, together with the custom relationships configured over it."""

    catalog: AttributeCatalog
    custom_relationships: Tuple[CustomRelationship, ...] = ()

    def __post_init__(self) -> None:
        """Validate fields."""
        validate_custom_relationships(self.catalog, self.custom_relationships)

    @classmethod
    def load(
        cls,
        schema_snapshot: Union[str, bytes, Mapping[str, Any]],
        relationship_config: Union[str, bytes, Mapping[str, Any], None] = None,
    ) -> "SchemaSnapshot":
        """Load the catalog and the custom relationships, and validate them against each other.

        Raises:
            SchemaLoadError: if the schema snapshot cannot be read.
            InvalidRelationshipError: if the relationship configuration is invalid.
        """
        return cls(
            catalog=load_catalog(schema_snapshot),
            custom_relationships=load_custom_relationships(relationship_config),
        )

    @property
    def tables(self) -> FrozenSet[Table]:
        """Return every table of the inferred schema."""
        return derive_tables(self.catalog, self.custom_relationships)

    def describe_database(self) -> Mapping[str, Any]:
        """Return the host's description of the database."""
        return describe_database(self.catalog)

    def describe_table(self, table_name: str) -> Mapping[str, Any]:
        """Return the host's description of the given table."""
        return describe_table(self.catalog, table_name, self.custom_relationships)


class SchemaSnapshotHolder(object):
    """Holds the current SchemaSnapshot, replacing it atomically on re-sync."""

    def __init__(self, snapshot: Optional[SchemaSnapshot] = None) -> None:
        """Create a holder, optionally with an initial snapshot."""
        self._lock = threading.Lock()
        self._snapshot = snapshot

    def get(self) -> SchemaSnapshot:
        """Return the current snapshot.

        Raises:
            AssertionError: if no snapshot was ever set.
        """
        with self._lock:
            snapshot = self._snapshot
        if snapshot is None:
            raise AssertionError("No schema snapshot has been loaded yet.")
        return snapshot

    def swap(self, snapshot: SchemaSnapshot) -> Optional[SchemaSnapshot]:
        """Replace the current snapshot, returning the one it replaced."""
        with self._lock:
            previous_snapshot = self._snapshot
            self._snapshot = snapshot
        return previous_snapshot

    def resync(
        self,
        schema_snapshot: Union[str, bytes, Mapping[str, Any]],
        relationship_config: Union[str, bytes, Mapping[str, Any], None] = None,
    ) -> SchemaSnapshot:
        """Load a new snapshot and swap it in. On failure, the current snapshot stays in place."""
        snapshot = SchemaSnapshot.load(schema_snapshot, relationship_config)
        self.swap(snapshot)
        return snapshot

    def update_relationships(
        self, custom_relationships: Iterable[CustomRelationship]
    ) -> SchemaSnapshot:
        """Replace the custom relationships of the current snapshot, keeping its catalog."""
        custom_relationships = tuple(custom_relationships)
        with self._lock:
            if self._snapshot is None:
                raise AssertionError("No schema snapshot has been loaded yet.")
            snapshot = SchemaSnapshot(self._snapshot.catalog, custom_relationships)
            self._snapshot = snapshot
        return snapshot
