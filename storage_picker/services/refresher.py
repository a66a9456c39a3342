"""Refresh driver that owns the current topology snapshot."""

from __future__ import annotations

import logging
import threading
from concurrent import futures
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from ..errors import PickerError, RefreshError
from ..messaging import TOPOLOGY_UPDATED, InMemoryBus, MessageEnvelope
from ..models import TopologyView
from .base import BaseService
from .sources import TopologySource
from .topology import build_view

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TopologyRefresher(BaseService):
    """Sole writer of the installed :class:`TopologyView`.

    Each refresh builds a complete new snapshot and swaps it in under a lock.
    Readers hold on to whatever snapshot they got from :meth:`current`, so an
    in-flight choose call never observes a half-built view.
    """

    source: Optional[TopologySource] = None
    bus: Optional[InMemoryBus] = None
    clock: Callable[[], datetime] = _utcnow
    _view: Optional[TopologyView] = field(default=None, init=False, repr=False)
    _datacenters: Dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _refresh_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _ready: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)

    def current(self) -> TopologyView:
        with self._lock:
            view = self._view
        if view is None:
            raise RefreshError("no topology snapshot has been loaded yet")
        return view

    @property
    def generation(self) -> int:
        with self._lock:
            return self._view.generation if self._view else 0

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def refresh(self) -> TopologyView:
        if self.source is None:
            raise RefreshError("no topology source configured")
        with self._refresh_lock:
            raw = self._fetch()
            with self._lock:
                known = dict(self._datacenters)
                generation = (self._view.generation if self._view else 0) + 1
            view = build_view(
                raw,
                self.policy,
                now=self.clock(),
                lag_ms=self.config.refresh.lag_ms,
                generation=generation,
                known_datacenters=known,
            )
            with self._lock:
                self._view = view
                self._datacenters.update(view.observed)

        self._ready.set()
        self.emit_metric("topology.refresh.nodes", float(view.node_count(operator=True)))
        self.emit_metric("topology.refresh.rejected", float(len(view.errors)))
        self.emit_metric("topology.refresh.stale", float(view.stale))
        if view.errors:
            self.emit_event(
                f"rejected {len(view.errors)} node records",
                generation=str(view.generation),
                first=str(view.errors[0]),
            )
        logger.info(
            "installed topology generation %d: %d datacenters, %d general / %d operator nodes",
            view.generation,
            len(view.datacenters(operator=True)),
            view.node_count(),
            view.node_count(operator=True),
        )
        if self.bus is not None:
            self.bus.publish(
                MessageEnvelope(
                    topic=TOPOLOGY_UPDATED,
                    payload={
                        "generation": view.generation,
                        "datacenters": view.datacenters(operator=True),
                        "rejected": len(view.errors),
                    },
                )
            )
        return view

    def _fetch(self):
        timeout = self.config.refresh.timeout_seconds
        executor = futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="topology-fetch")
        try:
            future = executor.submit(self.source.fetch)
            try:
                return future.result(timeout=timeout)
            except futures.TimeoutError as exc:
                future.cancel()
                self.emit_metric("topology.refresh.failure", 1.0, reason="timeout")
                raise RefreshError(f"topology fetch timed out after {timeout}s") from exc
            except RefreshError:
                self.emit_metric("topology.refresh.failure", 1.0, reason="source")
                raise
            except Exception as exc:
                self.emit_metric("topology.refresh.failure", 1.0, reason="source")
                raise RefreshError(f"topology fetch failed: {exc}") from exc
        finally:
            executor.shutdown(wait=False)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="topology-refresher", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        interval = self.config.refresh.interval_seconds
        while not self._stop.is_set():
            try:
                self.refresh()
            except PickerError as exc:
                logger.warning("topology refresh failed, keeping generation %d: %s", self.generation, exc)
            self._stop.wait(interval)
