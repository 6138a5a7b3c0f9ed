"""Process-scoped state shared by HTTP routes and observer sockets."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, Tuple

from .dispatcher import BroadcastDispatcher, Outbox
from .gateway import IngestionGateway, IngestResult
from .models import (
    EVENT_PONG,
    INITIAL_LOAD_MESSAGE,
    SERVICE_VERSION,
    DataCounts,
    HealthResponse,
    StatsResponse,
    epoch_millis,
    memory_usage,
)
from .registry import Connection, ConnectionRegistry
from .snapshot_store import SnapshotStore
from .stats import StatsAggregator

logger = logging.getLogger("studiosync.context")


class SyncContext:
    """Owns the snapshot, observer set and counters for one server lifetime.

    Every method here runs to completion without awaiting, so an inbound event
    can never observe a half-applied change made by another.
    """

    def __init__(
        self,
        *,
        expose_errors: bool = True,
        outbox_size: int = 64,
    ) -> None:
        self.store = SnapshotStore()
        self.registry = ConnectionRegistry()
        self.stats = StatsAggregator()
        self.dispatcher = BroadcastDispatcher(
            store=self.store,
            registry=self.registry,
            outbox_size=outbox_size,
        )
        self.gateway = IngestionGateway(
            store=self.store,
            registry=self.registry,
            stats=self.stats,
            dispatcher=self.dispatcher,
            expose_errors=expose_errors,
        )

    def ingest(self, raw_payload: Any) -> IngestResult:
        return self.gateway.ingest(raw_payload)

    def connect(
        self,
        address: str,
        user_agent: Optional[str] = None,
        *,
        connection_id: Optional[str] = None,
    ) -> Tuple[Connection, Outbox]:
        resolved_id = connection_id or uuid.uuid4().hex
        connection = self.registry.add(resolved_id, address, user_agent)
        self.stats.record_connect()
        outbox = self.dispatcher.attach(connection.id)
        self.dispatcher.send_to(connection.id, message=INITIAL_LOAD_MESSAGE, pinned=True)
        logger.info(
            "CLIENT_CONNECTED id=%s address=%s total=%s",
            connection.id,
            connection.address,
            self.registry.size(),
        )
        return connection, outbox

    def disconnect(self, connection_id: str, reason: Any = None) -> bool:
        self.dispatcher.detach(connection_id)
        removed = self.registry.remove(connection_id)
        if removed is None:
            return False
        logger.info(
            "CLIENT_DISCONNECTED id=%s reason=%s remaining=%s",
            connection_id,
            reason,
            self.registry.size(),
        )
        return True

    def request_update(self, connection_id: str) -> bool:
        logger.info("UPDATE_REQUESTED id=%s", connection_id)
        return self.dispatcher.send_to(connection_id)

    def ping(self, connection_id: str) -> bool:
        return self.dispatcher.send_event(connection_id, EVENT_PONG, {"timestamp": epoch_millis()})

    def shutdown(self) -> int:
        closed = self.dispatcher.close_all()
        logger.info("OBSERVERS_CLOSING count=%s", closed)
        return closed

    def health(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            uptime=self.stats.uptime_seconds(),
            clients=self.registry.size(),
            lastUpdate=self.store.get().last_update,
            totalSyncs=self.stats.total_syncs,
            memory=memory_usage(),
            version=SERVICE_VERSION,
        )

    def current(self) -> Dict[str, Any]:
        payload = self.store.get().to_dict()
        payload["serverTime"] = epoch_millis()
        payload["uptime"] = self.stats.uptime_seconds()
        return payload

    def stats_view(self) -> StatsResponse:
        snapshot = self.store.get()
        counters = self.stats.snapshot()
        return StatsResponse(
            uptime=counters.uptime_seconds,
            totalSyncs=counters.total_syncs,
            totalClientsEver=counters.total_clients_ever,
            connectedClients=self.registry.size(),
            lastSync=counters.last_sync,
            currentData=DataCounts(objects=snapshot.object_count, scripts=snapshot.script_count),
            memory=memory_usage(),
        )
