from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from storage_picker.config import PickerConfig
from storage_picker.errors import RefreshError
from storage_picker.messaging import TOPOLOGY_UPDATED, InMemoryBus
from storage_picker.services.refresher import TopologyRefresher
from storage_picker.services.sources import StaticTopologySource
from storage_picker.telemetry import TelemetryCollector

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

RAW = {
    "dc1": [{"id": "a", "availableBytes": 200, "utilizationPct": 10}],
    "dc2": [{"id": "c", "availableBytes": 300, "utilizationPct": 20}],
}


class _FailingSource:
    def fetch(self):
        raise RuntimeError("metadata store unreachable")


class _BlockingSource:
    def __init__(self) -> None:
        self.release = threading.Event()

    def fetch(self):
        self.release.wait(2)
        return RAW


def _refresher(source, config=None, bus=None):
    cfg = config or PickerConfig.default()
    return TopologyRefresher(
        config=cfg,
        telemetry=TelemetryCollector(cfg.observability),
        source=source,
        bus=bus,
        clock=lambda: NOW,
    )


def test_current_before_first_refresh_raises():
    refresher = _refresher(StaticTopologySource(RAW))
    with pytest.raises(RefreshError):
        refresher.current()
    assert refresher.wait_until_ready(0) is False


def test_refresh_installs_and_announces_snapshot():
    bus = InMemoryBus()
    updates = []
    bus.subscribe(TOPOLOGY_UPDATED, updates.append)
    refresher = _refresher(StaticTopologySource(RAW), bus=bus)

    view = refresher.refresh()
    assert view.generation == 1
    assert refresher.current() is view
    assert refresher.wait_until_ready(0) is True
    assert updates[0].payload["generation"] == 1
    assert updates[0].payload["datacenters"] == ["dc1", "dc2"]
    assert bus.latest(TOPOLOGY_UPDATED) is updates[-1]
    assert refresher.telemetry.metric_values("topology.refresh.nodes") == [2.0]

    assert refresher.refresh().generation == 2


def test_old_snapshot_stays_usable_after_swap():
    source = StaticTopologySource(RAW)
    refresher = _refresher(source)
    old = refresher.refresh()
    source.update({"dc1": [{"id": "a", "availableBytes": 5, "utilizationPct": 10}]})
    new = refresher.refresh()
    assert refresher.current() is new
    assert old.general["dc1"][0].available_bytes == 200
    assert "dc2" in old.general
    assert "dc2" not in new.general


def test_source_failure_keeps_previous_snapshot():
    source = StaticTopologySource(RAW)
    refresher = _refresher(source)
    refresher.refresh()
    refresher.source = _FailingSource()
    with pytest.raises(RefreshError, match="unreachable"):
        refresher.refresh()
    assert refresher.current().generation == 1
    assert refresher.telemetry.metric_values("topology.refresh.failure") == [1.0]


def test_slow_source_times_out():
    config = PickerConfig.default()
    config.refresh.timeout_seconds = 0.05
    source = _BlockingSource()
    refresher = _refresher(source, config=config)
    try:
        with pytest.raises(RefreshError, match="timed out"):
            refresher.refresh()
    finally:
        source.release.set()
    assert refresher.generation == 0


def test_node_cannot_move_between_datacenters():
    source = StaticTopologySource(RAW)
    refresher = _refresher(source)
    refresher.refresh()
    source.update({"dc2": [{"id": "a", "availableBytes": 200}, {"id": "c", "availableBytes": 300}]})
    view = refresher.refresh()
    assert [node.id for node in view.general["dc2"]] == ["c"]
    assert len(view.errors) == 1
    assert "immutable" in view.errors[0].reason
    event = refresher.telemetry.events[0]
    assert event.message == "rejected 1 node records"
    assert event.attributes["generation"] == "2"
    assert "immutable" in event.attributes["first"]


def test_lag_is_measured_against_the_refresh_clock():
    old = int((NOW - timedelta(hours=2)).timestamp() * 1000)
    raw = {"dc1": [{"id": "a", "availableBytes": 10, "reportTimestamp": old}]}
    refresher = _refresher(StaticTopologySource(raw))
    view = refresher.refresh()
    assert view.node_count() == 0
    assert view.stale == 1


def test_background_refresh_loop():
    config = PickerConfig.default()
    config.refresh.interval_seconds = 0.01
    refresher = _refresher(StaticTopologySource(RAW), config=config)
    refresher.start()
    try:
        assert refresher.wait_until_ready(2) is True
    finally:
        refresher.stop(timeout=2)
    assert refresher.generation >= 1


def test_refresh_without_source():
    refresher = _refresher(None)
    with pytest.raises(RefreshError):
        refresher.refresh()
