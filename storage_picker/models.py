"""Data models shared by the topology view and the picker."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Tuple

from .config import UtilizationPolicyConfig
from .errors import ConfigurationError, ValidationError


@dataclass(frozen=True)
class StorageNode:
    id: str
    datacenter: str
    available_bytes: int
    utilization_pct: float = 0.0
    report_timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "datacenter": self.datacenter,
            "availableBytes": self.available_bytes,
            "utilizationPct": self.utilization_pct,
            "reportTimestamp": self.report_timestamp.isoformat() if self.report_timestamp else None,
        }


Bucket = Tuple[StorageNode, ...]


def bucket_order(node: StorageNode) -> Tuple[int, str]:
    """Largest available capacity first, ties by id."""
    return (-node.available_bytes, node.id)


@dataclass(frozen=True)
class TopologyView:
    """Immutable snapshot of eligible nodes for both utilization tiers."""

    general: Mapping[str, Bucket]
    operator: Mapping[str, Bucket]
    generation: int = 0
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    errors: Tuple[ValidationError, ...] = ()
    stale: int = 0
    observed: Mapping[str, str] = field(default_factory=dict)

    def buckets(self, operator: bool = False) -> Mapping[str, Bucket]:
        return self.operator if operator else self.general

    def datacenters(self, operator: bool = False) -> List[str]:
        return sorted(dc for dc, bucket in self.buckets(operator).items() if bucket)

    def node_count(self, operator: bool = False) -> int:
        return sum(len(bucket) for bucket in self.buckets(operator).values())

    def to_dict(self) -> Dict[str, object]:
        return {
            "generation": self.generation,
            "built_at": self.built_at.isoformat(),
            "general": {dc: [node.to_dict() for node in self.general[dc]] for dc in sorted(self.general)},
            "operator": {dc: [node.to_dict() for node in self.operator[dc]] for dc in sorted(self.operator)},
            "errors": [error.to_dict() for error in self.errors],
            "stale": self.stale,
        }


@dataclass(frozen=True)
class PlacementRequest:
    replicas: int
    size_bytes: int
    operator: bool = False

    def validate(self, policy: UtilizationPolicyConfig) -> "PlacementRequest":
        if isinstance(self.replicas, bool) or not isinstance(self.replicas, int) or self.replicas < 1:
            raise ConfigurationError(f"replicas must be a positive integer, got {self.replicas!r}")
        if isinstance(self.size_bytes, bool) or not isinstance(self.size_bytes, int) or self.size_bytes <= 0:
            raise ConfigurationError(f"size must be a positive number of bytes, got {self.size_bytes!r}")
        if self.size_bytes > policy.max_object_size_bytes:
            raise ConfigurationError(
                f"size {self.size_bytes} exceeds the {policy.max_streaming_size_mb} MB streaming limit"
            )
        return self


@dataclass
class ChooseStats:
    generation: int
    operator: bool
    multi_dc: bool
    dcs_in_use: List[str] = field(default_factory=list)
    offsets: Dict[str, int] = field(default_factory=dict)
    exhausted: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "generation": self.generation,
            "operator": self.operator,
            "multiDC": self.multi_dc,
            "dcsInUse": list(self.dcs_in_use),
            "offsets": dict(self.offsets),
            "exhausted": list(self.exhausted),
        }


@dataclass
class PlacementResult:
    nodes: Tuple[StorageNode, ...]
    stats: ChooseStats

    def groups(self) -> List[List[StorageNode]]:
        return [[node] for node in self.nodes]

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def to_dict(self) -> Dict[str, object]:
        return {
            "chosen": [[node.to_dict()] for node in self.nodes],
            "stats": self.stats.to_dict(),
        }
