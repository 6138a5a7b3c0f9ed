from __future__ import annotations

import unittest

from studiosync.errors import CODE_INVALID_HIERARCHY, CODE_INVALID_SCRIPTS, CODE_MISSING_HIERARCHY, ValidationError
from studiosync.snapshot_store import SnapshotStore, count_objects, empty_snapshot, is_missing_hierarchy


class TestCountObjects(unittest.TestCase):
    def test_counts_root_children_and_grandchildren(self) -> None:
        hierarchy = [
            {
                "id": "Workspace",
                "children": [
                    {"id": "Part", "children": [{"id": "Decal"}]},
                    {"id": "Model", "children": []},
                ],
            }
        ]
        self.assertEqual(count_objects(hierarchy), 4)

    def test_missing_or_null_children_count_as_leaf(self) -> None:
        self.assertEqual(count_objects([{"id": "A"}, {"id": "B", "children": None}]), 2)
        self.assertEqual(count_objects([]), 0)

    def test_deep_chain_does_not_hit_recursion_limit(self) -> None:
        root = {"id": "n0"}
        node = root
        for index in range(1, 5000):
            child = {"id": f"n{index}"}
            node["children"] = [child]
            node = child
        self.assertEqual(count_objects([root]), 5000)

    def test_rejects_malformed_nodes(self) -> None:
        for hierarchy in ({"id": "A"}, ["A"], [{"id": "A", "children": {"id": "B"}}]):
            with self.assertRaises(ValidationError) as ctx:
                count_objects(hierarchy)
            self.assertEqual(ctx.exception.code, CODE_INVALID_HIERARCHY)


class TestSnapshotStore(unittest.TestCase):
    def test_initial_snapshot_is_empty(self) -> None:
        snapshot = SnapshotStore().get()
        self.assertEqual(snapshot.hierarchy, [])
        self.assertEqual(snapshot.scripts, {})
        self.assertIsNone(snapshot.last_update)
        self.assertEqual(snapshot.metadata["objectCount"], 0)
        self.assertEqual(snapshot.metadata["placeName"], "")
        self.assertEqual(snapshot.metadata["placeId"], 0)

    def test_replace_derives_metadata(self) -> None:
        store = SnapshotStore()
        snapshot = store.replace(
            [{"id": "A", "children": [{"id": "B"}]}],
            {"s1": "print(1)", "s2": "print(2)"},
            1700000000000,
            {"placeName": "Obby", "placeId": 42, "objectCount": 999, "extra": "ignored"},
            3,
        )
        self.assertIs(store.get(), snapshot)
        self.assertEqual(snapshot.last_update, 1700000000000)
        self.assertEqual(snapshot.metadata["objectCount"], 2)
        self.assertEqual(snapshot.metadata["scriptCount"], 2)
        self.assertEqual(snapshot.metadata["clientCount"], 3)
        self.assertEqual(snapshot.metadata["placeName"], "Obby")
        self.assertEqual(snapshot.metadata["placeId"], 42)
        self.assertNotIn("extra", snapshot.metadata)
        self.assertIsInstance(snapshot.metadata["lastSync"], str)

    def test_absent_scripts_default_to_empty(self) -> None:
        snapshot = SnapshotStore().replace([{"id": "A"}], None, 1, None, 0)
        self.assertEqual(snapshot.scripts, {})
        self.assertEqual(snapshot.metadata["scriptCount"], 0)

    def test_failed_replace_keeps_previous_snapshot(self) -> None:
        store = SnapshotStore()
        first = store.replace([{"id": "A"}], {}, 1, None, 0)

        with self.assertRaises(ValidationError) as missing:
            store.replace(None, {"s": "x"}, 2, None, 0)
        self.assertEqual(missing.exception.code, CODE_MISSING_HIERARCHY)

        with self.assertRaises(ValidationError) as bad_scripts:
            store.replace([{"id": "B"}], ["not", "a", "mapping"], 3, None, 0)
        self.assertEqual(bad_scripts.exception.code, CODE_INVALID_SCRIPTS)

        with self.assertRaises(ValidationError):
            store.replace([{"id": "B", "children": [7]}], {}, 4, None, 0)

        self.assertIs(store.get(), first)

    def test_falsy_scalars_are_missing_but_empty_containers_are_not(self) -> None:
        for value in (None, "", 0, False):
            self.assertTrue(is_missing_hierarchy(value))
        for value in ([], {}, [{"id": "A"}], "text"):
            self.assertFalse(is_missing_hierarchy(value))

        store = SnapshotStore()
        with self.assertRaises(ValidationError) as missing:
            store.replace("", {}, 1, None, 0)
        self.assertEqual(missing.exception.code, CODE_MISSING_HIERARCHY)
        with self.assertRaises(ValidationError) as invalid:
            store.replace({}, {}, 1, None, 0)
        self.assertEqual(invalid.exception.code, CODE_INVALID_HIERARCHY)
        self.assertEqual(store.replace([], {}, 1, None, 0).metadata["objectCount"], 0)

    def test_to_dict_uses_wire_names(self) -> None:
        payload = empty_snapshot().to_dict()
        self.assertEqual(sorted(payload.keys()), ["hierarchy", "lastUpdate", "metadata", "scripts"])


if __name__ == "__main__":
    unittest.main()
