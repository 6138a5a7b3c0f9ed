from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .models import utc_now_iso


@dataclass(frozen=True, slots=True)
class StatsSnapshot:
    total_syncs: int
    total_clients_ever: int
    uptime_seconds: int
    last_sync: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSyncs": self.total_syncs,
            "totalClientsEver": self.total_clients_ever,
            "uptimeSeconds": self.uptime_seconds,
            "lastSync": self.last_sync,
        }


class StatsAggregator:
    """Process-lifetime ingestion and connection counters."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.start_time = clock()
        self.total_syncs = 0
        self.total_clients_ever = 0
        self.last_sync: Optional[str] = None

    def record_ingestion(self) -> None:
        self.total_syncs += 1
        self.last_sync = utc_now_iso()

    def record_connect(self) -> None:
        self.total_clients_ever += 1

    def uptime_seconds(self) -> int:
        return max(0, int(self._clock() - self.start_time))

    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            total_syncs=self.total_syncs,
            total_clients_ever=self.total_clients_ever,
            uptime_seconds=self.uptime_seconds(),
            last_sync=self.last_sync,
        )
