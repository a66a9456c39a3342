"""In-process metrics and event collection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .config import ObservabilityConfig


@dataclass
class ObservabilityEvent:
    event_type: str
    message: str
    attributes: Optional[dict] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TelemetryCollector:
    config: ObservabilityConfig
    metrics: List[Dict[str, object]] = field(default_factory=list)
    events: List[ObservabilityEvent] = field(default_factory=list)

    def emit_metric(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None:
        payload = {
            "name": name,
            "value": value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **(labels or {}),
        }
        self.metrics.append(payload)

    def emit_event(self, message: str, attributes: Dict[str, str] | None = None) -> None:
        self.events.append(ObservabilityEvent(event_type="custom", message=message, attributes=attributes))

    def metric_values(self, name: str) -> List[float]:
        return [float(metric["value"]) for metric in self.metrics if metric.get("name") == name]

    def flush(self) -> None:
        self.metrics.clear()
        self.events.clear()
