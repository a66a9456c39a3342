"""Pub/sub used to announce new topology snapshots and failed placements."""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, DefaultDict, Dict, List, Optional

TOPOLOGY_UPDATED = "topology.updated"
PLACEMENT_FAILED = "placement.failed"


@dataclass
class MessageEnvelope:
    topic: str
    payload: Dict[str, Any]
    retries: int = 0


class InMemoryBus:
    """Process-local bus; the refresh thread publishes, request handlers read.

    Keeps the last envelope per topic so a late subscriber can catch up on the
    most recent snapshot announcement.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[Callable[[MessageEnvelope], None]]] = defaultdict(list)
        self._latest: Dict[str, MessageEnvelope] = {}
        self._lock = threading.Lock()

    def publish(self, envelope: MessageEnvelope) -> None:
        with self._lock:
            self._latest[envelope.topic] = envelope
            callbacks = list(self._subscribers[envelope.topic])
        for callback in callbacks:
            callback(envelope)

    def subscribe(self, topic: str, handler: Callable[[MessageEnvelope], None]) -> None:
        with self._lock:
            self._subscribers[topic].append(handler)

    def latest(self, topic: str) -> Optional[MessageEnvelope]:
        with self._lock:
            return self._latest.get(topic)


def build_bus(backend: str = "in-memory") -> InMemoryBus:
    if backend != "in-memory":
        raise NotImplementedError("Only the in-memory backend is available")
    return InMemoryBus()
