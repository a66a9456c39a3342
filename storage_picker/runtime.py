"""Runtime wiring for the placement picker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import PickerConfig
from .messaging import InMemoryBus, build_bus
from .models import PlacementResult, TopologyView
from .services.picker import Picker
from .services.refresher import TopologyRefresher
from .services.sources import StaticTopologySource, TopologySource
from .services.stats import TopologySummary, describe_view, summarize
from .telemetry import TelemetryCollector


@dataclass
class PickerRuntime:
    config: PickerConfig
    bus: InMemoryBus
    telemetry: TelemetryCollector
    refresher: TopologyRefresher
    picker: Picker

    @classmethod
    def bootstrap(
        cls,
        config: Optional[PickerConfig] = None,
        source: Optional[TopologySource] = None,
    ) -> "PickerRuntime":
        cfg = (config or PickerConfig.default()).validate()
        bus = build_bus()
        telemetry = TelemetryCollector(cfg.observability)
        refresher = TopologyRefresher(
            config=cfg,
            telemetry=telemetry,
            source=source or StaticTopologySource({}),
            bus=bus,
        )
        picker = Picker(config=cfg, telemetry=telemetry, bus=bus)
        return cls(config=cfg, bus=bus, telemetry=telemetry, refresher=refresher, picker=picker)

    def snapshot(self) -> TopologyView:
        return self.refresher.current()

    def choose(self, replicas: int, size_bytes: int, *, operator: bool = False) -> PlacementResult:
        view = self.refresher.current()
        return self.picker.choose(replicas, size_bytes, view=view, operator=operator)

    def summarize(self, outcome=None, *, view: Optional[TopologyView] = None, operator: Optional[bool] = None) -> TopologySummary:
        return summarize(view or self.refresher.current(), outcome, operator=operator)

    def describe(self) -> dict:
        return describe_view(self.refresher.current())
