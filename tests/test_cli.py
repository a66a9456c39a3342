from __future__ import annotations

import argparse
import json

import pytest

from storage_picker.cli import EXIT_BAD_INPUT, EXIT_NO_PLACEMENT, EXIT_OK, main, parse_size

RAW = {
    "dc1": [
        {"id": "a", "availableBytes": 200, "utilizationPct": 10},
        {"id": "b", "availableBytes": 50, "utilizationPct": 95},
        {"availableBytes": 1},
    ],
    "dc2": [{"id": "c", "availableBytes": 300, "utilizationPct": 20}],
}


@pytest.fixture
def topology_file(tmp_path):
    path = tmp_path / "sharks.json"
    path.write_text(json.dumps(RAW))
    return path


def test_choose_json_output(topology_file, capsys):
    code = main(["--input", str(topology_file), "--json", "choose", "--replicas", "2", "--size", "100"])
    assert code == EXIT_OK
    captured = capsys.readouterr()
    payload = json.loads(captured.out)
    assert [group[0]["id"] for group in payload["chosen"]] == ["a", "c"]
    assert "skipped record" in captured.err


def test_choose_failure_exit_code(topology_file, capsys):
    code = main(["--input", str(topology_file), "choose", "-r", "3", "-s", "100b"])
    assert code == EXIT_NO_PLACEMENT
    out = capsys.readouterr().out
    assert "status: error" in out
    assert "(exhausted)" in out


def test_topology_table(topology_file, capsys):
    code = main(["--input", str(topology_file), "topology"])
    assert code == EXIT_OK
    out = capsys.readouterr().out
    assert "dc1" in out
    assert "rejected 1" in out


def test_unreadable_input(tmp_path, capsys):
    code = main(["--input", str(tmp_path / "missing.json"), "topology"])
    assert code == EXIT_BAD_INPUT
    assert "unable to read topology" in capsys.readouterr().err


def test_badly_typed_config_is_a_bad_input(topology_file, tmp_path, capsys):
    config = tmp_path / "picker.json"
    config.write_text(json.dumps({"lag": "soon"}))
    code = main(["--input", str(topology_file), "--config", str(config), "topology"])
    assert code == EXIT_BAD_INPUT
    assert "lag_ms" in capsys.readouterr().err


def test_oversized_object_is_a_bad_request(topology_file):
    code = main(["--input", str(topology_file), "choose", "--size", "6gb"])
    assert code == EXIT_BAD_INPUT


@pytest.mark.parametrize(
    "value, expected",
    [("100", 100), ("2kb", 2048), ("1.5mb", int(1.5 * 1024 * 1024)), ("1gb", 1024 ** 3), ("7b", 7)],
)
def test_parse_size(value, expected):
    assert parse_size(value) == expected


def test_parse_size_rejects_garbage():
    with pytest.raises(argparse.ArgumentTypeError):
        parse_size("lots")


@pytest.mark.parametrize("value", ["inf", "infgb", "nan"])
def test_parse_size_rejects_non_finite_values(value):
    with pytest.raises(argparse.ArgumentTypeError):
        parse_size(value)
