from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import DuplicateConnectionError
from .models import epoch_millis

UNKNOWN_USER_AGENT = "Unknown"


@dataclass(frozen=True, slots=True)
class Connection:
    id: str
    address: str
    user_agent: str
    connected_at: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "address": self.address,
            "userAgent": self.user_agent,
            "connectedAt": self.connected_at,
        }


class ConnectionRegistry:
    """Observers currently attached, keyed by connection id."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}

    def add(self, connection_id: str, address: str, user_agent: Optional[str] = None) -> Connection:
        if connection_id in self._connections:
            raise DuplicateConnectionError(f"Connection '{connection_id}' is already registered")
        connection = Connection(
            id=connection_id,
            address=address or "",
            user_agent=user_agent or UNKNOWN_USER_AGENT,
            connected_at=epoch_millis(),
        )
        self._connections[connection_id] = connection
        return connection

    def remove(self, connection_id: str) -> Optional[Connection]:
        return self._connections.pop(connection_id, None)

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def size(self) -> int:
        return len(self._connections)

    def all(self) -> List[Connection]:
        return list(self._connections.values())

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
