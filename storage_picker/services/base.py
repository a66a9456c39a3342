"""Base class for picker services."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import PickerConfig, UtilizationPolicyConfig
from ..telemetry import TelemetryCollector


@dataclass
class BaseService:
    config: PickerConfig
    telemetry: TelemetryCollector

    @property
    def policy(self) -> UtilizationPolicyConfig:
        return self.config.policy

    def emit_metric(self, name: str, value: float, **labels: str) -> None:
        self.telemetry.emit_metric(name, value, labels)

    def emit_event(self, message: str, **attrs: str) -> None:
        self.telemetry.emit_event(message, attrs)
