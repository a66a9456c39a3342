"""Configuration primitives for the storage picker."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
TIE_BREAK_POLICIES = ("id", "random")

# Historical option names accepted in JSON config files.
_LEGACY_KEYS = {
    "maxUtilizationPct": ("policy", "max_utilization_pct"),
    "maxOperatorUtilizationPct": ("policy", "max_operator_utilization_pct"),
    "defaultMaxStreamingSizeMB": ("policy", "max_streaming_size_mb"),
    "multiDC": ("policy", "multi_dc"),
    "lag": ("refresh", "lag_ms"),
    "interval": ("refresh", "interval_seconds"),
}


@dataclass
class UtilizationPolicyConfig:
    max_utilization_pct: float = 90.0
    max_operator_utilization_pct: float = 92.0
    max_streaming_size_mb: int = 5120
    multi_dc: bool = True
    tie_break: str = "id"
    random_seed: Optional[int] = None

    @property
    def max_object_size_bytes(self) -> int:
        return self.max_streaming_size_mb * MIB


@dataclass
class RefreshConfig:
    interval_seconds: float = 30.0
    timeout_seconds: float = 10.0
    lag_ms: Optional[int] = 60 * 60 * 1000


@dataclass
class ObservabilityConfig:
    log_level: str = "INFO"


@dataclass
class PickerConfig:
    policy: UtilizationPolicyConfig = field(default_factory=UtilizationPolicyConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @staticmethod
    def default() -> "PickerConfig":
        return PickerConfig()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PickerConfig":
        sections: Dict[str, Dict[str, Any]] = {"policy": {}, "refresh": {}, "observability": {}}
        for key, value in payload.items():
            if key in _LEGACY_KEYS:
                section, name = _LEGACY_KEYS[key]
                sections[section][name] = value
            elif key in sections:
                if not isinstance(value, Mapping):
                    raise ConfigurationError(f"config section {key!r} must be an object")
                sections[key].update(value)
            else:
                raise ConfigurationError(f"unknown config option {key!r}")
        config = cls(
            policy=_build(UtilizationPolicyConfig, sections["policy"]),
            refresh=_build(RefreshConfig, sections["refresh"]),
            observability=_build(ObservabilityConfig, sections["observability"]),
        )
        config.validate()
        return config

    @classmethod
    def load(cls, path: str | Path) -> "PickerConfig":
        try:
            with open(path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"unable to read config {path}: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise ConfigurationError(f"config {path} must contain a JSON object")
        return cls.from_dict(payload)

    def validate(self) -> "PickerConfig":
        policy = self.policy
        for name in ("max_utilization_pct", "max_operator_utilization_pct"):
            value = getattr(policy, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
                raise ConfigurationError(f"{name} must be a percentage in [0, 100], got {value!r}")
        if policy.max_operator_utilization_pct < policy.max_utilization_pct:
            logger.warning(
                "operator utilization cutoff %.1f is below the general cutoff %.1f",
                policy.max_operator_utilization_pct,
                policy.max_utilization_pct,
            )
        if not _is_int(policy.max_streaming_size_mb) or policy.max_streaming_size_mb <= 0:
            raise ConfigurationError("max_streaming_size_mb must be a positive integer")
        if not isinstance(policy.multi_dc, bool):
            raise ConfigurationError(f"multi_dc must be true or false, got {policy.multi_dc!r}")
        if policy.tie_break not in TIE_BREAK_POLICIES:
            raise ConfigurationError(f"tie_break must be one of {TIE_BREAK_POLICIES}, got {policy.tie_break!r}")
        if policy.random_seed is not None and not _is_int(policy.random_seed):
            raise ConfigurationError(f"random_seed must be an integer, got {policy.random_seed!r}")
        refresh = self.refresh
        if refresh.lag_ms is not None and (not _is_int(refresh.lag_ms) or refresh.lag_ms < 0):
            raise ConfigurationError(f"lag_ms must be a non-negative integer, got {refresh.lag_ms!r}")
        for name in ("interval_seconds", "timeout_seconds"):
            value = getattr(refresh, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not value > 0:
                raise ConfigurationError(f"{name} must be a positive number, got {value!r}")
        if not isinstance(self.observability.log_level, str):
            raise ConfigurationError("log_level must be a string")
        return self


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _build(cls, values: Mapping[str, Any]):
    known = {item.name for item in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f"unknown {cls.__name__} option(s): {', '.join(sorted(unknown))}")
    return cls(**values)
