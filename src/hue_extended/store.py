from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol


@dataclass(frozen=True)
class NodeMeta:
    type: str
    role: str
    description: str
    writable: bool = False


CHANNEL_TYPE = "channel"


def channel_meta(description: str) -> NodeMeta:
    return NodeMeta(type=CHANNEL_TYPE, role="channel", description=description)


class ReadOnlyStateError(Exception):
    pass


class StateStore(Protocol):
    """Path-addressed key-value tree the engine writes into."""

    def get(self, path: str) -> Any: ...

    def set(self, path: str, meta: NodeMeta, value: Any = None) -> None: ...

    def set_value(self, path: str, value: Any) -> None: ...

    def subscribe(self, path: str) -> None: ...


ChangeListener = Callable[[str, Any], Awaitable[None]]


@dataclass
class StateNode:
    path: str
    meta: NodeMeta
    value: Any = None
    ack: bool = True
    updated_at: float = field(default_factory=time.time)


class MemoryStateStore:
    """In-memory host tree with change notification for subscribed paths."""

    def __init__(self) -> None:
        self._nodes: dict[str, StateNode] = {}
        self._subscriptions: set[str] = set()
        self._listeners: list[ChangeListener] = []

    def get(self, path: str) -> Any:
        node = self._nodes.get(path)
        return node.value if node else None

    def node(self, path: str) -> StateNode | None:
        return self._nodes.get(path)

    def set(self, path: str, meta: NodeMeta, value: Any = None) -> None:
        self._nodes[path] = StateNode(path=path, meta=meta, value=value)

    def set_value(self, path: str, value: Any) -> None:
        node = self._nodes.get(path)
        if node is None:
            return
        node.value = value
        node.ack = True
        node.updated_at = time.time()

    def subscribe(self, path: str) -> None:
        self._subscriptions.add(path)

    def is_subscribed(self, path: str) -> bool:
        return path in self._subscriptions

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def values(self) -> dict[str, Any]:
        return {path: node.value for path, node in self._nodes.items() if node.meta.type != CHANNEL_TYPE}

    def items(self, prefix: str = "") -> list[StateNode]:
        if not prefix:
            return [self._nodes[path] for path in sorted(self._nodes)]
        stem = prefix.rstrip(".")
        return [
            self._nodes[path]
            for path in sorted(self._nodes)
            if path == stem or path.startswith(stem + ".")
        ]

    async def write(self, path: str, value: Any) -> StateNode:
        """User-issued write. Notifies listeners when the path is subscribed."""
        node = self._nodes.get(path)
        if node is None:
            raise KeyError(path)
        if not node.meta.writable:
            raise ReadOnlyStateError(path)
        node.value = value
        node.ack = False
        node.updated_at = time.time()
        if path in self._subscriptions:
            for listener in list(self._listeners):
                await listener(path, value)
        return node
