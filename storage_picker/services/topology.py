"""Builds immutable topology views from raw node status reports.

The raw input is the document produced by the polling collaborator (or
loaded from disk for offline simulation)::

    {
        "dc1": [
            {"id": "1.stor.dc1", "availableBytes": 2147483648,
             "utilizationPct": 41.5, "reportTimestamp": 1700000000000}
        ],
        "dc2": [...]
    }

Records are validated one at a time. A malformed record is dropped and
reported as a :class:`ValidationError` without affecting its neighbours.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from ..config import MIB, UtilizationPolicyConfig
from ..errors import ValidationError, ValidationErrors
from ..models import StorageNode, TopologyView, bucket_order
from .sources import RawTopology

logger = logging.getLogger(__name__)

_ALIASES = {
    "manta_storage_id": "id",
    "percentUsed": "utilizationPct",
    "timestamp": "reportTimestamp",
}


class _Reject(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def parse_records(
    raw: RawTopology,
    *,
    known_datacenters: Optional[Mapping[str, str]] = None,
) -> Tuple[List[StorageNode], List[ValidationError]]:
    """Validate raw records and convert the good ones to :class:`StorageNode`."""
    if not isinstance(raw, Mapping):
        raise ValidationErrors([ValidationError("*", -1, "topology must be an object keyed by datacenter")])

    known = known_datacenters or {}
    nodes: List[StorageNode] = []
    errors: List[ValidationError] = []
    seen: Dict[str, str] = {}

    for datacenter in sorted(raw):
        records = raw[datacenter]
        if isinstance(records, (str, bytes)) or not isinstance(records, Sequence):
            errors.append(ValidationError(str(datacenter), -1, "datacenter entry must be a list of node records"))
            continue
        for index, record in enumerate(records):
            node_id = record.get("id", record.get("manta_storage_id")) if isinstance(record, Mapping) else None
            try:
                node = _parse_record(datacenter, record)
                if node.id in seen:
                    raise _Reject(f"duplicate node id, already reported in {seen[node.id]}")
                previous = known.get(node.id)
                if previous is not None and previous != datacenter:
                    raise _Reject(f"node moved from datacenter {previous}; datacenter is immutable")
            except _Reject as exc:
                errors.append(ValidationError(datacenter, index, exc.reason, node_id=_safe_id(node_id)))
                continue
            seen[node.id] = datacenter
            nodes.append(node)

    if errors:
        logger.warning("rejected %d of %d node records", len(errors), len(errors) + len(nodes))
    return nodes, errors


def build_view(
    raw: RawTopology,
    policy: UtilizationPolicyConfig,
    *,
    now: Optional[datetime] = None,
    lag_ms: Optional[int] = None,
    generation: int = 0,
    known_datacenters: Optional[Mapping[str, str]] = None,
    strict: bool = False,
) -> TopologyView:
    """Partition, filter and sort raw records into a :class:`TopologyView`."""
    now = now or datetime.now(timezone.utc)
    nodes, errors = parse_records(raw, known_datacenters=known_datacenters)
    if strict and errors:
        raise ValidationErrors(errors)

    oldest = now - timedelta(milliseconds=lag_ms) if lag_ms is not None else None
    general: MutableMapping[str, List[StorageNode]] = defaultdict(list)
    operator: MutableMapping[str, List[StorageNode]] = defaultdict(list)
    stale = 0
    for node in nodes:
        if oldest is not None and node.report_timestamp is not None and node.report_timestamp < oldest:
            stale += 1
            continue
        if node.utilization_pct < policy.max_utilization_pct:
            general[node.datacenter].append(node)
        if node.utilization_pct < policy.max_operator_utilization_pct:
            operator[node.datacenter].append(node)

    if stale:
        logger.info("skipped %d node records older than %s", stale, oldest.isoformat())
    return TopologyView(
        general={dc: tuple(sorted(general[dc], key=bucket_order)) for dc in sorted(general)},
        operator={dc: tuple(sorted(operator[dc], key=bucket_order)) for dc in sorted(operator)},
        generation=generation,
        built_at=now,
        errors=tuple(errors),
        stale=stale,
        observed={node.id: node.datacenter for node in nodes},
    )


def _parse_record(datacenter: str, record: Any) -> StorageNode:
    if not isinstance(record, Mapping):
        raise _Reject("record must be an object")
    fields = {_ALIASES.get(key, key): value for key, value in record.items()}

    node_id = fields.get("id")
    if node_id is None or node_id == "":
        raise _Reject("missing required field 'id'")
    if not isinstance(node_id, str):
        raise _Reject("'id' must be a string")

    declared = fields.get("datacenter")
    if declared is not None and declared != datacenter:
        raise _Reject(f"datacenter field {declared!r} does not match grouping key {datacenter!r}")

    if "availableBytes" in fields:
        available = _as_byte_count(fields["availableBytes"], "availableBytes")
    elif "availableMB" in fields:
        available = _as_byte_count(fields["availableMB"], "availableMB") * MIB
    else:
        raise _Reject("missing required field 'availableBytes'")

    utilization = fields.get("utilizationPct")
    if utilization is None:
        utilization = _derive_utilization(available, fields.get("totalBytes"))
    elif isinstance(utilization, bool) or not isinstance(utilization, (int, float)) or math.isnan(utilization):
        raise _Reject("'utilizationPct' must be a number")
    if not 0 <= utilization <= 100:
        raise _Reject(f"'utilizationPct' {utilization} outside [0, 100]")

    return StorageNode(
        id=node_id,
        datacenter=datacenter,
        available_bytes=available,
        utilization_pct=float(utilization),
        report_timestamp=_parse_timestamp(fields.get("reportTimestamp")),
    )


def _as_byte_count(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _Reject(f"'{name}' must be a number")
    if isinstance(value, float):
        if not value.is_integer():
            raise _Reject(f"'{name}' must be a whole number")
        value = int(value)
    if value < 0:
        raise _Reject(f"'{name}' must not be negative")
    return value


def _derive_utilization(available: int, total: Any) -> float:
    if total is None:
        return 0.0
    total = _as_byte_count(total, "totalBytes")
    if total == 0 or available > total:
        raise _Reject("'totalBytes' must be positive and at least 'availableBytes'")
    return 100.0 * (1 - available / total)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise _Reject(f"'reportTimestamp' out of range: {value}") from exc
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise _Reject(f"'reportTimestamp' is not ISO-8601: {value!r}") from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise _Reject("'reportTimestamp' must be epoch milliseconds or an ISO-8601 string")


def _safe_id(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None
