"""Topology sources feeding the refresh driver."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Mapping, Protocol, Sequence

from ..errors import RefreshError

RawTopology = Mapping[str, Sequence[Mapping[str, Any]]]


class TopologySource(Protocol):
    def fetch(self) -> RawTopology:
        ...


class StaticTopologySource:
    """Serves a fixed document; used for simulations and tests."""

    def __init__(self, raw: RawTopology) -> None:
        self.raw = raw

    def update(self, raw: RawTopology) -> None:
        self.raw = raw

    def fetch(self) -> RawTopology:
        return self.raw


class JsonFileTopologySource:
    """Reads the topology document from a JSON file, or stdin for ``-``."""

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)

    def fetch(self) -> Dict[str, Any]:
        try:
            if self.path == "-":
                payload = json.load(sys.stdin)
            else:
                with open(self.path, "r", encoding="utf-8") as handle:
                    payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise RefreshError(f"unable to read topology from {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise RefreshError(f"topology document in {self.path} must be a JSON object")
        return payload
