from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from .errors import TransportError
from .models import EVENT_GAME_UPDATE, epoch_millis
from .registry import ConnectionRegistry
from .snapshot_store import Snapshot, SnapshotStore

logger = logging.getLogger("studiosync.dispatcher")

Frame = Optional[Dict[str, Any]]
SendFrame = Callable[[Dict[str, Any]], Awaitable[Any]]


def build_update_payload(snapshot: Snapshot, *, message: Optional[str] = None) -> Dict[str, Any]:
    payload = snapshot.to_dict()
    payload["serverTime"] = epoch_millis()
    if message:
        payload["message"] = message
    return payload


class Outbox:
    """Bounded FIFO of frames for one observer with a single consumer.

    When full, the oldest frame is dropped, except pinned frames at the head
    (the initial push), which are only removed by being delivered.
    """

    def __init__(self, maxsize: int) -> None:
        self.maxsize = max(2, int(maxsize))
        self._frames: Deque[Frame] = deque()
        self._pinned = 0
        self._ready = asyncio.Event()

    def put(self, frame: Frame, *, pinned: bool = False) -> bool:
        dropped = False
        if len(self._frames) >= self.maxsize and len(self._frames) > self._pinned:
            del self._frames[self._pinned]
            dropped = True
        if pinned and len(self._frames) == self._pinned:
            self._frames.append(frame)
            self._pinned += 1
        else:
            self._frames.append(frame)
        self._ready.set()
        return dropped

    def get_nowait(self) -> Frame:
        if not self._frames:
            raise asyncio.QueueEmpty
        if self._pinned:
            self._pinned -= 1
        return self._frames.popleft()

    async def get(self) -> Frame:
        while not self._frames:
            self._ready.clear()
            await self._ready.wait()
        return self.get_nowait()

    def qsize(self) -> int:
        return len(self._frames)

    def empty(self) -> bool:
        return not self._frames

    def full(self) -> bool:
        return len(self._frames) >= self.maxsize


class BroadcastDispatcher:
    """Fire-and-forget fan-out of snapshots to registered observers.

    Every attached connection owns a bounded outbox. Enqueueing never awaits, so
    handlers finish their state changes before any bytes hit the wire; the
    per-connection ``drain`` task does the actual sending in FIFO order.
    """

    def __init__(
        self,
        *,
        store: SnapshotStore,
        registry: ConnectionRegistry,
        outbox_size: int = 64,
    ) -> None:
        self._store = store
        self._registry = registry
        self._outbox_size = max(2, int(outbox_size))
        self._outboxes: Dict[str, Outbox] = {}

    def attach(self, connection_id: str) -> Outbox:
        outbox = Outbox(self._outbox_size)
        self._outboxes[connection_id] = outbox
        return outbox

    def detach(self, connection_id: str) -> None:
        self._outboxes.pop(connection_id, None)

    def broadcast_all(self, snapshot: Optional[Snapshot] = None) -> int:
        resolved = snapshot if snapshot is not None else self._store.get()
        frame = self._frame(EVENT_GAME_UPDATE, build_update_payload(resolved))
        notified = 0
        for connection in self._registry.all():
            try:
                self._enqueue(connection.id, frame)
            except TransportError as exc:
                logger.warning("BROADCAST_SKIPPED connection=%s error=%s", exc.connection_id, exc.message)
                continue
            notified += 1
        return notified

    def send_to(
        self,
        connection_id: str,
        snapshot: Optional[Snapshot] = None,
        *,
        message: Optional[str] = None,
        pinned: bool = False,
    ) -> bool:
        resolved = snapshot if snapshot is not None else self._store.get()
        return self.send_event(
            connection_id,
            EVENT_GAME_UPDATE,
            build_update_payload(resolved, message=message),
            pinned=pinned,
        )

    def send_event(self, connection_id: str, event: str, data: Any = None, *, pinned: bool = False) -> bool:
        try:
            self._enqueue(connection_id, self._frame(event, data), pinned=pinned)
        except TransportError as exc:
            logger.warning("SEND_SKIPPED connection=%s event=%s error=%s", connection_id, event, exc.message)
            return False
        return True

    def close_all(self) -> int:
        closed = 0
        for outbox in list(self._outboxes.values()):
            outbox.put(None)
            closed += 1
        return closed

    async def drain(self, connection_id: str, send: SendFrame) -> None:
        """Send queued frames for one connection until closed or detached.

        Raises ``TransportError`` when ``send`` fails; the caller disconnects.
        """
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return
        while True:
            frame = await outbox.get()
            if frame is None:
                return
            try:
                await send(frame)
            except Exception as exc:
                raise TransportError(repr(exc), connection_id=connection_id) from exc

    def _enqueue(self, connection_id: str, frame: Dict[str, Any], *, pinned: bool = False) -> None:
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            raise TransportError("no outbox attached", connection_id=connection_id)
        if outbox.put(frame, pinned=pinned):
            logger.warning("OUTBOX_OVERFLOW connection=%s dropped=1", connection_id)

    @staticmethod
    def _frame(event: str, data: Any) -> Dict[str, Any]:
        return {"event": event, "data": data}
