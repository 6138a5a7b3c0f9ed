"""Relay server for Roblox Studio state: one producer, many live observers."""

from .context import SyncContext
from .dispatcher import BroadcastDispatcher
from .gateway import Accepted, IngestionGateway, Rejected
from .registry import Connection, ConnectionRegistry
from .snapshot_store import Snapshot, SnapshotStore, count_objects
from .stats import StatsAggregator

__all__ = [
    "Accepted",
    "BroadcastDispatcher",
    "Connection",
    "ConnectionRegistry",
    "IngestionGateway",
    "Rejected",
    "Snapshot",
    "SnapshotStore",
    "StatsAggregator",
    "SyncContext",
    "count_objects",
]
