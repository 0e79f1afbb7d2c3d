# Copyright 2020-present Kensho Technologies, LLC.
import json
import unittest

from ..exceptions import InvalidRelationshipError, SchemaLoadError
from ..schema.relationships import CustomRelationship, PathHop
from ..schema.snapshot import SchemaSnapshot, SchemaSnapshotHolder
from .test_helpers import (
    MUSIC_RELATIONSHIP_CONFIG,
    MUSIC_SCHEMA_SNAPSHOT,
    get_music_snapshot,
    get_user_snapshot,
)


class SchemaSnapshotTests(unittest.TestCase):
    def test_load_from_json_text(self) -> None:
        snapshot = SchemaSnapshot.load(
            json.dumps(MUSIC_SCHEMA_SNAPSHOT), json.dumps(MUSIC_RELATIONSHIP_CONFIG)
        )
        self.assertEqual(get_music_snapshot(), snapshot)
        self.assertEqual(
            {("artist", "releases"), ("release", "countries")},
            {
                (relationship.source_table, relationship.name)
                for relationship in snapshot.custom_relationships
            },
        )

    def test_tables(self) -> None:
        snapshot = get_music_snapshot()
        tables = {table.name: table for table in snapshot.tables}
        self.assertEqual({"artist", "country", "group", "release"}, set(tables.keys()))
        self.assertIsNotNone(tables["artist"].get_field("releases"))
        self.assertIsNone(tables["country"].get_field("releases"))

    def test_descriptions(self) -> None:
        snapshot = get_music_snapshot()
        self.assertEqual(
            ["artist", "country", "group", "release"],
            [table["name"] for table in snapshot.describe_database()["tables"]],
        )

        description = snapshot.describe_table("release")
        self.assertEqual("release", description["name"])
        self.assertEqual(
            ["id", "artists", "date", "name", "countries"],
            [field["name"] for field in description["fields"]],
        )

    def test_relationships_are_validated_against_the_catalog(self) -> None:
        with self.assertRaises(InvalidRelationshipError):
            SchemaSnapshot.load(
                MUSIC_SCHEMA_SNAPSHOT,
                {"artist": {"labels": {"path": ["release/_artists"], "target": "label"}}},
            )


class SchemaSnapshotHolderTests(unittest.TestCase):
    def test_empty_holder(self) -> None:
        holder = SchemaSnapshotHolder()
        with self.assertRaises(AssertionError):
            holder.get()

        with self.assertRaises(AssertionError):
            holder.update_relationships(())

    def test_swap(self) -> None:
        music_snapshot = get_music_snapshot()
        user_snapshot = get_user_snapshot()
        holder = SchemaSnapshotHolder(music_snapshot)
        self.assertIs(music_snapshot, holder.get())

        self.assertIs(music_snapshot, holder.swap(user_snapshot))
        self.assertIs(user_snapshot, holder.get())

        # Snapshots taken before a swap are unaffected by it.
        self.assertEqual(get_music_snapshot(), music_snapshot)

    def test_resync(self) -> None:
        holder = SchemaSnapshotHolder()
        snapshot = holder.resync(MUSIC_SCHEMA_SNAPSHOT, MUSIC_RELATIONSHIP_CONFIG)
        self.assertIs(snapshot, holder.get())
        self.assertEqual(get_music_snapshot(), snapshot)

    def test_failed_resync_keeps_the_current_snapshot(self) -> None:
        snapshot = get_music_snapshot()
        holder = SchemaSnapshotHolder(snapshot)

        with self.assertRaises(SchemaLoadError):
            holder.resync("{not json")
        self.assertIs(snapshot, holder.get())

        with self.assertRaises(InvalidRelationshipError):
            holder.resync(
                MUSIC_SCHEMA_SNAPSHOT,
                {"artist": {"releases": {"path": ["release/_name"], "target": "release"}}},
            )
        self.assertIs(snapshot, holder.get())

    def test_update_relationships(self) -> None:
        snapshot = get_music_snapshot()
        holder = SchemaSnapshotHolder(snapshot)

        updated_snapshot = holder.update_relationships(())
        self.assertIs(snapshot.catalog, updated_snapshot.catalog)
        self.assertEqual((), updated_snapshot.custom_relationships)
        self.assertIs(updated_snapshot, holder.get())

        invalid_relationship = CustomRelationship(
            source_table="artist",
            name="labels",
            destination_table="label",
            path=(PathHop("release/artists", True),),
        )
        with self.assertRaises(InvalidRelationshipError):
            holder.update_relationships((invalid_relationship,))
        self.assertIs(updated_snapshot, holder.get())
