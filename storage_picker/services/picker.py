"""Replica placement across datacenters."""

from __future__ import annotations

import itertools
import logging
import random
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..config import UtilizationPolicyConfig
from ..errors import PlacementError
from ..messaging import PLACEMENT_FAILED, InMemoryBus, MessageEnvelope
from ..models import (
    Bucket,
    ChooseStats,
    PlacementRequest,
    PlacementResult,
    StorageNode,
    TopologyView,
    bucket_order,
)
from .base import BaseService

logger = logging.getLogger(__name__)


def choose(request: PlacementRequest, view: TopologyView, policy: UtilizationPolicyConfig) -> PlacementResult:
    """Select ``request.replicas`` distinct nodes from ``view``.

    Replicas are dealt round-robin over the datacenters that have eligible
    nodes (sorted by name), so no datacenter gets a second replica before each
    of the others got one. Within a datacenter nodes are consumed in bucket
    order, skipping those without room for the object. An exhausted
    datacenter drops out of the rotation and its slot moves on to the next.

    A datacenter counts as eligible only if one of its nodes has room for the
    object. With fewer than two eligible datacenters, or ``policy.multi_dc``
    disabled, every bucket is merged into one pool and drawn from front to
    back, and the stats report ``multi_dc=False``.

    Raises :class:`PlacementError` when fewer than ``request.replicas`` nodes
    can be found. The view is never modified.
    """
    request.validate(policy)
    buckets = view.buckets(request.operator)
    dcs_in_use = view.datacenters(request.operator)
    rng = random.Random(policy.random_seed) if policy.tie_break == "random" else None
    eligible = [dc for dc in dcs_in_use if any(node.available_bytes >= request.size_bytes for node in buckets[dc])]
    spread = policy.multi_dc and len(eligible) >= 2

    if spread:
        chosen, offsets, exhausted = _round_robin(request, buckets, dcs_in_use, rng)
    else:
        chosen, offsets, exhausted = _single_pool(request, buckets, dcs_in_use, rng)

    stats = ChooseStats(
        generation=view.generation,
        operator=request.operator,
        multi_dc=spread,
        dcs_in_use=dcs_in_use,
        offsets=offsets,
        exhausted=exhausted,
    )
    if len(chosen) < request.replicas:
        raise PlacementError(
            requested=request.replicas,
            satisfied=len(chosen),
            size_bytes=request.size_bytes,
            dcs_in_use=dcs_in_use,
            exhausted=exhausted,
            offsets=offsets,
            stats=stats,
        )
    return PlacementResult(nodes=tuple(chosen), stats=stats)


def _round_robin(request, buckets, dcs_in_use, rng):
    pools = {dc: _ordered(buckets[dc], rng) for dc in dcs_in_use}
    offsets = {dc: 0 for dc in dcs_in_use}
    exhausted: List[str] = []
    chosen: List[StorageNode] = []
    live = list(dcs_in_use)
    position = 0
    while len(chosen) < request.replicas and live:
        position %= len(live)
        dc = live[position]
        node = _take(pools[dc], offsets, dc, request.size_bytes)
        if node is None:
            exhausted.append(dc)
            del live[position]
            continue
        chosen.append(node)
        position += 1
    return chosen, offsets, exhausted


def _single_pool(request, buckets, dcs_in_use, rng):
    merged = [node for dc in dcs_in_use for node in buckets[dc]]
    pool = _ordered(sorted(merged, key=bucket_order), rng)
    cursor = {"*": 0}
    chosen: List[StorageNode] = []
    while len(chosen) < request.replicas:
        node = _take(pool, cursor, "*", request.size_bytes)
        if node is None:
            break
        chosen.append(node)

    consumed = pool[: cursor["*"]]
    offsets = {dc: sum(1 for node in consumed if node.datacenter == dc) for dc in dcs_in_use}
    # The pool only counts as exhausted when it ran dry before the request was met.
    exhausted = list(dcs_in_use) if len(chosen) < request.replicas else []
    return chosen, offsets, exhausted


def _take(pool: Sequence[StorageNode], offsets: Dict[str, int], key: str, size_bytes: int) -> Optional[StorageNode]:
    while offsets[key] < len(pool):
        node = pool[offsets[key]]
        offsets[key] += 1
        if node.available_bytes >= size_bytes:
            return node
    return None


def _ordered(bucket: Bucket | List[StorageNode], rng: Optional[random.Random]) -> List[StorageNode]:
    if rng is None:
        return list(bucket)
    # Shuffle runs of equal capacity; the descending order itself is kept.
    ordered: List[StorageNode] = []
    for _, group in itertools.groupby(bucket, key=lambda node: node.available_bytes):
        run = list(group)
        rng.shuffle(run)
        ordered.extend(run)
    return ordered


@dataclass
class Picker(BaseService):
    bus: Optional[InMemoryBus] = None

    def choose(
        self,
        replicas: int,
        size_bytes: int,
        *,
        view: TopologyView,
        operator: bool = False,
    ) -> PlacementResult:
        request = PlacementRequest(replicas=replicas, size_bytes=size_bytes, operator=operator)
        tier = "operator" if operator else "general"
        try:
            result = choose(request, view, self.policy)
        except PlacementError as exc:
            logger.info("placement failed (generation %s, %s view): %s", view.generation, tier, exc)
            self.emit_metric("picker.choose.failure", 1.0, tier=tier)
            if self.bus is not None:
                self.bus.publish(MessageEnvelope(topic=PLACEMENT_FAILED, payload=exc.to_dict()))
            raise
        self.emit_metric("picker.choose.success", float(len(result.nodes)), tier=tier)
        logger.debug(
            "placed %d replicas of %d bytes on %s",
            replicas,
            size_bytes,
            ", ".join(f"{node.id}@{node.datacenter}" for node in result.nodes),
        )
        return result
