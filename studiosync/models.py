from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import psutil
from pydantic import BaseModel, Field

SERVICE_NAME = "Roblox Studio Sync Server"
SERVICE_VERSION = "2.0.0"

EVENT_GAME_UPDATE = "game-update"
EVENT_REQUEST_UPDATE = "request-update"
EVENT_PING = "ping"
EVENT_PONG = "pong"

INITIAL_LOAD_MESSAGE = "Initial data load"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def epoch_millis() -> int:
    return int(time.time() * 1000)


def coerce_payload_dict(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, Mapping):
        return {str(key): value for key, value in raw.items()}
    return {}


class ObserverMessage(BaseModel):
    """One frame on the observer socket: ``{"event": ..., "data": ...}``."""

    event: str
    data: Optional[Dict[str, Any]] = None

    class Config:
        extra = "ignore"

    @classmethod
    def parse_frame(cls, raw: Any) -> Optional["ObserverMessage"]:
        frame = coerce_payload_dict(raw)
        event = frame.get("event")
        if not isinstance(event, str) or not event.strip():
            return None
        data = frame.get("data")
        return cls(event=event.strip(), data=dict(data) if isinstance(data, Mapping) else None)


class MemoryUsage(BaseModel):
    rss: int = 0
    vms: int = 0


def memory_usage() -> MemoryUsage:
    info = psutil.Process().memory_info()
    return MemoryUsage(rss=int(info.rss), vms=int(info.vms))


class HealthResponse(BaseModel):
    status: str = "ok"
    uptime: int = 0
    clients: int = 0
    lastUpdate: Optional[int] = None
    totalSyncs: int = 0
    memory: MemoryUsage = Field(default_factory=MemoryUsage)
    version: str = SERVICE_VERSION


class DataCounts(BaseModel):
    objects: int = 0
    scripts: int = 0


class StatsResponse(BaseModel):
    uptime: int = 0
    totalSyncs: int = 0
    totalClientsEver: int = 0
    connectedClients: int = 0
    lastSync: Optional[str] = None
    currentData: DataCounts = Field(default_factory=DataCounts)
    memory: MemoryUsage = Field(default_factory=MemoryUsage)


class ErrorResponse(BaseModel):
    error: str
    code: str
    message: Optional[str] = None
    path: Optional[str] = None


def model_to_dict(model: object, *, exclude_none: bool = False) -> dict:
    dump = getattr(model, "model_dump", None)
    if callable(dump):
        return dict(dump(exclude_none=exclude_none))
    as_dict = getattr(model, "dict", None)
    if callable(as_dict):
        return dict(as_dict(exclude_none=exclude_none))
    return dict(model)  # type: ignore[arg-type]
