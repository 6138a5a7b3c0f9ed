from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import (
    CODE_INVALID_HIERARCHY,
    CODE_INVALID_SCRIPTS,
    CODE_MISSING_HIERARCHY,
    ValidationError,
)
from .models import utc_now_iso

PASS_THROUGH_METADATA = ("placeName", "placeId")
_METADATA_DEFAULTS: Dict[str, Any] = {"placeName": "", "placeId": 0}


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Latest editor state. Instances are never mutated once installed."""

    hierarchy: List[Any] = field(default_factory=list)
    scripts: Dict[str, Any] = field(default_factory=dict)
    last_update: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def object_count(self) -> int:
        return int(self.metadata.get("objectCount", 0))

    @property
    def script_count(self) -> int:
        return int(self.metadata.get("scriptCount", 0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hierarchy": self.hierarchy,
            "scripts": self.scripts,
            "lastUpdate": self.last_update,
            "metadata": dict(self.metadata),
        }


def empty_snapshot() -> Snapshot:
    return Snapshot(
        hierarchy=[],
        scripts={},
        last_update=None,
        metadata={
            **_METADATA_DEFAULTS,
            "scriptCount": 0,
            "objectCount": 0,
            "clientCount": 0,
            "lastSync": None,
        },
    )


def count_objects(nodes: Sequence[Any]) -> int:
    """Count every node in ``nodes`` including all descendants.

    Walks the tree with an explicit stack so deeply nested hierarchies cannot
    exhaust the interpreter recursion limit. Nodes without ``children`` (absent,
    null or empty) count once.
    """
    if not isinstance(nodes, list):
        raise ValidationError("Hierarchy must be a list of nodes", code=CODE_INVALID_HIERARCHY)

    total = 0
    pending: List[List[Any]] = [nodes]
    while pending:
        level = pending.pop()
        for node in level:
            if not isinstance(node, Mapping):
                raise ValidationError("Hierarchy nodes must be objects", code=CODE_INVALID_HIERARCHY)
            total += 1
            children = node.get("children")
            if children is None:
                continue
            if not isinstance(children, list):
                raise ValidationError("Node children must be a list", code=CODE_INVALID_HIERARCHY)
            if children:
                pending.append(children)
    return total


def is_missing_hierarchy(value: Any) -> bool:
    """True for null and falsy scalars. Empty lists and objects count as present."""
    if value is None:
        return True
    return not value and not isinstance(value, (list, Mapping))


class SnapshotStore:
    """Single slot holding the current Snapshot; replaced whole, never patched."""

    def __init__(self, initial: Optional[Snapshot] = None) -> None:
        self._current = initial or empty_snapshot()

    def get(self) -> Snapshot:
        return self._current

    def replace(
        self,
        hierarchy: Any,
        scripts: Any = None,
        last_update: Optional[int] = None,
        partial_metadata: Optional[Mapping[str, Any]] = None,
        client_count: int = 0,
    ) -> Snapshot:
        if is_missing_hierarchy(hierarchy):
            raise ValidationError("Missing hierarchy data", code=CODE_MISSING_HIERARCHY)
        if scripts is None:
            scripts = {}
        if not isinstance(scripts, Mapping):
            raise ValidationError("Scripts must be an object keyed by script id", code=CODE_INVALID_SCRIPTS)

        object_count = count_objects(hierarchy)
        metadata: Dict[str, Any] = dict(_METADATA_DEFAULTS)
        if isinstance(partial_metadata, Mapping):
            for key in PASS_THROUGH_METADATA:
                if partial_metadata.get(key) is not None:
                    metadata[key] = partial_metadata[key]
        metadata.update(
            {
                "scriptCount": len(scripts),
                "objectCount": object_count,
                "clientCount": max(0, int(client_count)),
                "lastSync": utc_now_iso(),
            }
        )

        snapshot = Snapshot(
            hierarchy=hierarchy,
            scripts=dict(scripts),
            last_update=last_update,
            metadata=metadata,
        )
        self._current = snapshot
        return snapshot
