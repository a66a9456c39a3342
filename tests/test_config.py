from __future__ import annotations

import json
import logging

import pytest

from storage_picker.config import PickerConfig
from storage_picker.errors import ConfigurationError


def test_defaults():
    config = PickerConfig.default()
    assert config.policy.max_utilization_pct == 90
    assert config.policy.max_operator_utilization_pct == 92
    assert config.policy.max_streaming_size_mb == 5120
    assert config.policy.multi_dc is True
    assert config.refresh.lag_ms == 3_600_000


def test_historical_option_names():
    config = PickerConfig.from_dict(
        {
            "maxUtilizationPct": 80,
            "maxOperatorUtilizationPct": 85,
            "defaultMaxStreamingSizeMB": 100,
            "lag": 1000,
            "multiDC": False,
        }
    )
    assert config.policy.max_utilization_pct == 80
    assert config.policy.max_operator_utilization_pct == 85
    assert config.policy.max_object_size_bytes == 100 * 1024 * 1024
    assert config.policy.multi_dc is False
    assert config.refresh.lag_ms == 1000


def test_nested_sections():
    config = PickerConfig.from_dict(
        {
            "policy": {"tie_break": "random", "random_seed": 3},
            "refresh": {"timeout_seconds": 2},
            "observability": {"log_level": "DEBUG"},
        }
    )
    assert config.policy.tie_break == "random"
    assert config.refresh.timeout_seconds == 2
    assert config.observability.log_level == "DEBUG"


@pytest.mark.parametrize(
    "payload",
    [
        {"maxUtilizationPct": 120},
        {"maxOperatorUtilizationPct": -1},
        {"defaultMaxStreamingSizeMB": 0},
        {"lag": -5},
        {"policy": {"tie_break": "weird"}},
        {"refresh": {"interval_seconds": 0}},
        {"refresh": {"unknown": 1}},
        {"surprise": True},
        {"refresh": {"interval_seconds": "5"}},
        {"refresh": {"timeout_seconds": None}},
        {"refresh": {"timeout_seconds": True}},
        {"lag": "soon"},
        {"lag": 1.5},
        {"multiDC": "false"},
        {"policy": {"random_seed": "7"}},
        {"defaultMaxStreamingSizeMB": True},
        {"maxUtilizationPct": "90"},
        {"observability": {"log_level": 10}},
    ],
)
def test_invalid_configuration_is_rejected(payload):
    with pytest.raises(ConfigurationError):
        PickerConfig.from_dict(payload)


def test_operator_cutoff_below_general_only_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="storage_picker.config"):
        config = PickerConfig.from_dict({"maxUtilizationPct": 90, "maxOperatorUtilizationPct": 80})
    assert config.policy.max_operator_utilization_pct == 80
    assert "below the general cutoff" in caplog.text


def test_load_from_file(tmp_path):
    path = tmp_path / "picker.json"
    path.write_text(json.dumps({"maxUtilizationPct": 70}))
    assert PickerConfig.load(path).policy.max_utilization_pct == 70


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        PickerConfig.load(tmp_path / "absent.json")
