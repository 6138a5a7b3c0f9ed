from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from .dispatcher import BroadcastDispatcher
from .errors import (
    CODE_MISSING_HIERARCHY,
    CODE_SERVER_ERROR,
    GENERIC_ERROR_MESSAGE,
    ValidationError,
)
from .models import epoch_millis
from .registry import ConnectionRegistry
from .snapshot_store import SnapshotStore, is_missing_hierarchy
from .stats import StatsAggregator

logger = logging.getLogger("studiosync.gateway")


@dataclass(frozen=True, slots=True)
class Accepted:
    clients_notified: int
    timestamp: int
    objects: int
    scripts: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "clientsNotified": self.clients_notified,
            "timestamp": self.timestamp,
            "stats": {"objects": self.objects, "scripts": self.scripts},
        }


@dataclass(frozen=True, slots=True)
class Rejected:
    code: str
    error: str
    message: Optional[str] = None
    status: int = 400

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error, "code": self.code}
        if self.message is not None:
            body["message"] = self.message
        return body


IngestResult = Union[Accepted, Rejected]


def resolve_timestamp(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return epoch_millis()
    value = int(raw)
    return value if value > 0 else epoch_millis()


class IngestionGateway:
    """Sole write path into the snapshot store."""

    def __init__(
        self,
        *,
        store: SnapshotStore,
        registry: ConnectionRegistry,
        stats: StatsAggregator,
        dispatcher: BroadcastDispatcher,
        expose_errors: bool = True,
    ) -> None:
        self._store = store
        self._registry = registry
        self._stats = stats
        self._dispatcher = dispatcher
        self._expose_errors = expose_errors

    def ingest(self, raw_payload: Any) -> IngestResult:
        payload = raw_payload if isinstance(raw_payload, Mapping) else {}
        if is_missing_hierarchy(payload.get("hierarchy")):
            logger.warning("SYNC_REJECTED code=%s", CODE_MISSING_HIERARCHY)
            return Rejected(code=CODE_MISSING_HIERARCHY, error="Missing hierarchy data")

        try:
            snapshot = self._store.replace(
                payload.get("hierarchy"),
                payload.get("scripts"),
                resolve_timestamp(payload.get("timestamp")),
                payload.get("metadata"),
                self._registry.size(),
            )
            self._stats.record_ingestion()
            # May differ from metadata.clientCount if observers changed in between.
            notified = self._dispatcher.broadcast_all(snapshot)
        except ValidationError as exc:
            logger.warning("SYNC_REJECTED code=%s error=%s", exc.code, exc.message)
            return Rejected(code=exc.code, error=exc.message, status=exc.status)
        except Exception as exc:
            logger.exception("SYNC_FAILED error=%r", exc)
            return Rejected(
                code=CODE_SERVER_ERROR,
                error="Internal server error",
                message=str(exc) if self._expose_errors else GENERIC_ERROR_MESSAGE,
                status=500,
            )

        logger.info(
            "SYNC_ACCEPTED objects=%s scripts=%s notified=%s",
            snapshot.object_count,
            snapshot.script_count,
            notified,
        )
        return Accepted(
            clients_notified=notified,
            timestamp=snapshot.last_update if snapshot.last_update is not None else epoch_millis(),
            objects=snapshot.object_count,
            scripts=snapshot.script_count,
        )
