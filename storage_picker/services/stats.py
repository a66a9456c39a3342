"""Diagnostic summaries of a topology view and a choose outcome."""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Union

from ..errors import PlacementError
from ..models import ChooseStats, PlacementResult, TopologyView

Outcome = Union[PlacementResult, PlacementError, None]


@dataclass
class DatacenterSummary:
    datacenter: str
    nodes: int
    in_use: int = 0
    chosen: int = 0
    available_bytes: int = 0
    max_available_bytes: int = 0
    exhausted: bool = False


@dataclass
class TopologySummary:
    generation: int
    operator: bool
    status: str
    datacenters: List[DatacenterSummary] = field(default_factory=list)
    dcs_in_use: List[str] = field(default_factory=list)
    multi_dc: bool = False
    message: Optional[str] = None

    @property
    def total_nodes(self) -> int:
        return sum(row.nodes for row in self.datacenters)

    @property
    def total_in_use(self) -> int:
        return sum(row.in_use for row in self.datacenters)

    @property
    def total_chosen(self) -> int:
        return sum(row.chosen for row in self.datacenters)

    @property
    def total_available_bytes(self) -> int:
        return sum(row.available_bytes for row in self.datacenters)

    def to_dict(self) -> Dict[str, object]:
        return {
            "generation": self.generation,
            "operator": self.operator,
            "status": self.status,
            "message": self.message,
            "multiDC": self.multi_dc,
            "dcsInUse": list(self.dcs_in_use),
            "datacenters": [asdict(row) for row in self.datacenters],
            "totals": {
                "nodes": self.total_nodes,
                "in_use": self.total_in_use,
                "chosen": self.total_chosen,
                "available_bytes": self.total_available_bytes,
            },
        }


def summarize(view: TopologyView, outcome: Outcome = None, *, operator: Optional[bool] = None) -> TopologySummary:
    """Summarize ``view`` as seen by a choose call that produced ``outcome``.

    ``operator`` defaults to the tier recorded in the outcome's stats, or the
    general tier when there is no outcome.
    """
    stats: Optional[ChooseStats] = None
    chosen: Counter = Counter()
    if isinstance(outcome, PlacementResult):
        stats = outcome.stats
        chosen.update(node.datacenter for node in outcome.nodes)
        status, message = "ok", None
    elif isinstance(outcome, PlacementError):
        stats = outcome.stats
        status, message = "error", str(outcome)
    else:
        status, message = "idle", None

    if operator is None:
        operator = stats.operator if stats else False
    buckets = view.buckets(operator)
    rows: List[DatacenterSummary] = []
    for dc in sorted(buckets):
        bucket = buckets[dc]
        rows.append(
            DatacenterSummary(
                datacenter=dc,
                nodes=len(bucket),
                in_use=stats.offsets.get(dc, 0) if stats else 0,
                chosen=chosen[dc],
                available_bytes=sum(node.available_bytes for node in bucket),
                max_available_bytes=bucket[0].available_bytes if bucket else 0,
                exhausted=bool(stats and dc in stats.exhausted),
            )
        )
    return TopologySummary(
        generation=view.generation,
        operator=operator,
        status=status,
        datacenters=rows,
        dcs_in_use=list(stats.dcs_in_use) if stats else view.datacenters(operator),
        multi_dc=stats.multi_dc if stats else False,
        message=message,
    )


def describe_view(view: TopologyView) -> Dict[str, object]:
    """Per-datacenter counts for both utilization tiers."""
    datacenters = sorted(set(view.general) | set(view.operator))
    rows = []
    for dc in datacenters:
        general = view.general.get(dc, ())
        operator = view.operator.get(dc, ())
        rows.append(
            {
                "datacenter": dc,
                "general_nodes": len(general),
                "operator_nodes": len(operator),
                "available_bytes": sum(node.available_bytes for node in operator),
                "max_available_bytes": operator[0].available_bytes if operator else 0,
            }
        )
    return {
        "generation": view.generation,
        "built_at": view.built_at.isoformat(),
        "datacenters": rows,
        "general_nodes": view.node_count(False),
        "operator_nodes": view.node_count(True),
        "rejected": len(view.errors),
        "stale": view.stale,
    }
