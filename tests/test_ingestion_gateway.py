from __future__ import annotations

import unittest
from unittest import mock

from studiosync.context import SyncContext
from studiosync.errors import (
    CODE_INVALID_HIERARCHY,
    CODE_MISSING_HIERARCHY,
    CODE_SERVER_ERROR,
    GENERIC_ERROR_MESSAGE,
)
from studiosync.gateway import Accepted, Rejected, resolve_timestamp
from studiosync.models import EVENT_GAME_UPDATE


class TestIngestionGateway(unittest.IsolatedAsyncioTestCase):
    async def test_accepts_and_reports_counts(self) -> None:
        context = SyncContext()
        result = context.ingest(
            {
                "hierarchy": [{"id": "A", "children": [{"id": "B"}]}],
                "scripts": {"s1": "print(1)"},
                "timestamp": 1700000000123,
                "metadata": {"placeName": "Lobby", "placeId": 7},
            }
        )

        self.assertIsInstance(result, Accepted)
        self.assertEqual(result.to_dict()["stats"], {"objects": 2, "scripts": 1})
        self.assertEqual(result.timestamp, 1700000000123)
        snapshot = context.store.get()
        self.assertEqual(snapshot.metadata["objectCount"], 2)
        self.assertEqual(snapshot.metadata["scriptCount"], 1)
        self.assertEqual(snapshot.metadata["placeName"], "Lobby")
        self.assertEqual(context.stats.total_syncs, 1)
        self.assertIsNotNone(context.stats.last_sync)

    async def test_missing_hierarchy_has_no_side_effects(self) -> None:
        context = SyncContext()
        context.connect("127.0.0.1", "viewer")
        before = context.store.get()

        for payload in (
            {"scripts": {"s": "x"}},
            {"hierarchy": None},
            {"hierarchy": ""},
            {"hierarchy": 0},
            {"hierarchy": False},
            None,
            ["not", "a", "dict"],
        ):
            result = context.ingest(payload)
            self.assertIsInstance(result, Rejected)
            self.assertEqual(result.code, CODE_MISSING_HIERARCHY)
            self.assertEqual(result.status, 400)

        self.assertIs(context.store.get(), before)
        self.assertEqual(context.stats.total_syncs, 0)
        self.assertIsNone(context.stats.last_sync)
        self.assertEqual(context.registry.size(), 1)

    async def test_malformed_hierarchy_is_rejected_without_side_effects(self) -> None:
        context = SyncContext()
        before = context.store.get()
        result = context.ingest({"hierarchy": {"id": "A"}})
        self.assertEqual(result.code, CODE_INVALID_HIERARCHY)
        self.assertEqual(result.status, 400)
        self.assertIs(context.store.get(), before)
        self.assertEqual(context.stats.total_syncs, 0)

    async def test_internal_failure_becomes_server_error(self) -> None:
        context = SyncContext()
        before = context.store.get()
        with mock.patch.object(context.store, "replace", side_effect=RuntimeError("boom")):
            result = context.ingest({"hierarchy": []})
        self.assertIsInstance(result, Rejected)
        self.assertEqual(result.code, CODE_SERVER_ERROR)
        self.assertEqual(result.status, 500)
        self.assertEqual(result.message, "boom")
        self.assertIs(context.store.get(), before)
        self.assertEqual(context.stats.total_syncs, 0)

    async def test_server_error_message_hidden_when_not_exposed(self) -> None:
        context = SyncContext(expose_errors=False)
        with mock.patch.object(context.store, "replace", side_effect=RuntimeError("secret detail")):
            result = context.ingest({"hierarchy": []})
        self.assertEqual(result.message, GENERIC_ERROR_MESSAGE)

    async def test_broadcasts_to_connected_observers(self) -> None:
        context = SyncContext()
        _, first = context.connect("127.0.0.1", "a")
        _, second = context.connect("127.0.0.1", "b")
        first.get_nowait()
        second.get_nowait()

        result = context.ingest({"hierarchy": [{"id": "A"}]})

        self.assertEqual(result.clients_notified, 2)
        self.assertEqual(context.store.get().metadata["clientCount"], 2)
        for outbox in (first, second):
            frame = outbox.get_nowait()
            self.assertEqual(frame["event"], EVENT_GAME_UPDATE)
            self.assertEqual(frame["data"]["metadata"]["objectCount"], 1)

    async def test_notified_count_may_differ_from_client_count(self) -> None:
        context = SyncContext()
        context.connect("127.0.0.1", "a")
        context.registry.add("no-outbox", "127.0.0.1", None)

        result = context.ingest({"hierarchy": []})

        self.assertEqual(context.store.get().metadata["clientCount"], 2)
        self.assertEqual(result.clients_notified, 1)

    async def test_sequential_syncs_keep_only_latest(self) -> None:
        context = SyncContext()
        for index in range(5):
            context.ingest({"hierarchy": [{"id": f"N{index}"}], "scripts": {f"s{index}": "x"}})
        snapshot = context.store.get()
        self.assertEqual(context.stats.total_syncs, 5)
        self.assertEqual(snapshot.hierarchy, [{"id": "N4"}])
        self.assertEqual(snapshot.scripts, {"s4": "x"})

    def test_resolve_timestamp_falls_back_to_now(self) -> None:
        self.assertEqual(resolve_timestamp(1234), 1234)
        self.assertEqual(resolve_timestamp(99.7), 99)
        for raw in (None, 0, -5, True, "1234"):
            self.assertGreater(resolve_timestamp(raw), 1_600_000_000_000)


if __name__ == "__main__":
    unittest.main()
