from __future__ import annotations

from datetime import datetime, timezone

import pytest

from storage_picker.config import UtilizationPolicyConfig
from storage_picker.errors import PlacementError
from storage_picker.models import PlacementRequest
from storage_picker.services.picker import choose
from storage_picker.services.stats import describe_view, summarize
from storage_picker.services.topology import build_view

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)
POLICY = UtilizationPolicyConfig()


@pytest.fixture
def view():
    raw = {
        "dc1": [
            {"id": "a", "availableBytes": 200, "utilizationPct": 10},
            {"id": "hot", "availableBytes": 900, "utilizationPct": 91},
        ],
        "dc2": [{"id": "c", "availableBytes": 300, "utilizationPct": 20}],
    }
    return build_view(raw, POLICY, now=NOW, generation=4)


def test_summary_of_successful_choice(view):
    result = choose(PlacementRequest(replicas=2, size_bytes=100), view, POLICY)
    summary = summarize(view, result)
    assert summary.status == "ok"
    assert summary.generation == 4
    assert summary.multi_dc is True
    assert [row.datacenter for row in summary.datacenters] == ["dc1", "dc2"]
    assert [row.chosen for row in summary.datacenters] == [1, 1]
    assert [row.in_use for row in summary.datacenters] == [1, 1]
    assert summary.total_nodes == 2
    assert summary.total_available_bytes == 500
    payload = summary.to_dict()
    assert payload["totals"] == {"nodes": 2, "in_use": 2, "chosen": 2, "available_bytes": 500}


def test_summary_of_failed_choice(view):
    with pytest.raises(PlacementError) as excinfo:
        choose(PlacementRequest(replicas=3, size_bytes=100), view, POLICY)
    summary = summarize(view, excinfo.value)
    assert summary.status == "error"
    assert "not enough free space" in summary.message
    assert summary.dcs_in_use == ["dc1", "dc2"]
    assert all(row.exhausted for row in summary.datacenters)
    assert summary.total_chosen == 0


def test_summary_follows_the_operator_tier_of_the_outcome(view):
    result = choose(PlacementRequest(replicas=2, size_bytes=100, operator=True), view, POLICY)
    summary = summarize(view, result)
    assert summary.operator is True
    dc1 = summary.datacenters[0]
    assert dc1.nodes == 2
    assert dc1.max_available_bytes == 900


def test_idle_summary_describes_the_view(view):
    summary = summarize(view)
    assert summary.status == "idle"
    assert summary.dcs_in_use == ["dc1", "dc2"]
    assert summary.total_in_use == 0
    assert summary.message is None


def test_describe_view_counts_both_tiers(view):
    description = describe_view(view)
    rows = {row["datacenter"]: row for row in description["datacenters"]}
    assert rows["dc1"]["general_nodes"] == 1
    assert rows["dc1"]["operator_nodes"] == 2
    assert description["general_nodes"] == 2
    assert description["operator_nodes"] == 3
    assert description["rejected"] == 0
