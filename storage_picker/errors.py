"""Error types raised by the placement picker."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .models import ChooseStats


class PickerError(Exception):
    """Base class for every error the picker raises."""


class ConfigurationError(PickerError, ValueError):
    """Invalid configuration or request parameters."""


class RefreshError(PickerError):
    """The topology source could not produce a new snapshot."""


class ValidationError(PickerError):
    """A single raw node record was rejected while building a view."""

    def __init__(self, datacenter: str, index: int, reason: str, node_id: Optional[str] = None) -> None:
        self.datacenter = datacenter
        self.index = index
        self.reason = reason
        self.node_id = node_id
        label = node_id if node_id else f"#{index}"
        super().__init__(f"{datacenter}[{label}]: {reason}")

    def to_dict(self) -> Dict[str, object]:
        return {
            "datacenter": self.datacenter,
            "index": self.index,
            "id": self.node_id,
            "reason": self.reason,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationError):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash((self.datacenter, self.index, self.node_id, self.reason))


class ValidationErrors(PickerError):
    """Aggregate of per-record validation failures."""

    def __init__(self, errors: Sequence[ValidationError]) -> None:
        self.errors: List[ValidationError] = list(errors)
        summary = "; ".join(str(error) for error in self.errors[:5])
        if len(self.errors) > 5:
            summary += f"; ... ({len(self.errors) - 5} more)"
        super().__init__(f"{len(self.errors)} invalid node record(s): {summary}")


class PlacementError(PickerError):
    """Not enough distinct nodes with room for the object.

    This is the expected "insufficient capacity" outcome of a selection and is
    never retried by the picker itself.
    """

    def __init__(
        self,
        *,
        requested: int,
        satisfied: int,
        size_bytes: int,
        dcs_in_use: Sequence[str],
        exhausted: Sequence[str],
        offsets: Dict[str, int],
        stats: Optional["ChooseStats"] = None,
    ) -> None:
        self.requested = requested
        self.satisfied = satisfied
        self.size_bytes = size_bytes
        self.dcs_in_use = list(dcs_in_use)
        self.exhausted = list(exhausted)
        self.offsets = dict(offsets)
        self.stats = stats
        if self.dcs_in_use:
            where = ", ".join(self.dcs_in_use)
            detail = f"only {satisfied} of {requested} replicas fit in datacenters [{where}]"
        else:
            detail = "no datacenter has eligible storage nodes"
        super().__init__(f"not enough free space for {size_bytes} bytes: {detail}")

    def to_dict(self) -> Dict[str, object]:
        return {
            "code": "NotEnoughSpace",
            "message": str(self),
            "requested": self.requested,
            "satisfied": self.satisfied,
            "size_bytes": self.size_bytes,
            "dcs_in_use": list(self.dcs_in_use),
            "exhausted": list(self.exhausted),
            "offsets": dict(self.offsets),
        }
