"""Offline placement simulator.

Reads a topology document (see :mod:`storage_picker.services.topology`) from
a file or stdin, builds a view and either describes it or runs one choose
call against it::

    storage-picker topology --input sharks.json
    storage-picker choose --input - --replicas 2 --size 100mb --json < sharks.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import PickerConfig
from .errors import ConfigurationError, PlacementError, RefreshError, ValidationErrors
from .runtime import PickerRuntime
from .services.sources import JsonFileTopologySource
from .services.stats import TopologySummary

EXIT_OK = 0
EXIT_NO_PLACEMENT = 1
EXIT_BAD_INPUT = 2


def parse_size(value: str) -> int:
    value = value.strip().lower()
    try:
        if value.endswith("gb"):
            return int(float(value[:-2]) * 1024 * 1024 * 1024)
        if value.endswith("mb"):
            return int(float(value[:-2]) * 1024 * 1024)
        if value.endswith("kb"):
            return int(float(value[:-2]) * 1024)
        if value.endswith("b"):
            return int(float(value[:-1]))
        return int(float(value))
    except (ValueError, OverflowError) as exc:
        raise argparse.ArgumentTypeError(f"invalid size: {value!r}") from exc


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="storage-picker", description="Storage node placement simulator")
    parser.add_argument("--input", default="-", help="Topology JSON file, or '-' for stdin")
    parser.add_argument("--config", help="Picker config JSON file")
    parser.add_argument("--lag-ms", type=int, help="Override the allowed report staleness in milliseconds")
    parser.add_argument("--no-lag", action="store_true", help="Accept reports of any age")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of a table")
    parser.add_argument("--log-level", help="Logging level (defaults to the config value)")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("topology", help="Summarize the eligible nodes per datacenter")

    choose = commands.add_parser("choose", help="Pick storage nodes for one object")
    choose.add_argument("-r", "--replicas", type=int, default=2, help="Number of copies")
    choose.add_argument("-s", "--size", type=parse_size, required=True, help="Object size, e.g. 512mb")
    choose.add_argument("--operator", action="store_true", help="Use the operator utilization tier")
    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> PickerConfig:
    config = PickerConfig.load(args.config) if args.config else PickerConfig.default()
    if args.no_lag:
        config.refresh.lag_ms = None
    elif args.lag_ms is not None:
        config.refresh.lag_ms = args.lag_ms
    return config.validate()


def _print_topology(description: dict) -> None:
    print(f"generation {description['generation']} built {description['built_at']}")
    print(f"{'DATACENTER':<16} {'GENERAL':>8} {'OPERATOR':>9} {'AVAILABLE':>16} {'LARGEST':>16}")
    for row in description["datacenters"]:
        print(
            f"{row['datacenter']:<16} {row['general_nodes']:>8} {row['operator_nodes']:>9} "
            f"{row['available_bytes']:>16} {row['max_available_bytes']:>16}"
        )
    print(
        f"{'total':<16} {description['general_nodes']:>8} {description['operator_nodes']:>9}"
        f"  (rejected {description['rejected']}, stale {description['stale']})"
    )


def _print_summary(summary: TopologySummary, chosen: List[str]) -> None:
    print(f"status: {summary.status}  multiDC: {summary.multi_dc}  dcsInUse: {', '.join(summary.dcs_in_use) or 'none'}")
    if summary.message:
        print(f"  {summary.message}")
    if chosen:
        print(f"  chosen: {', '.join(chosen)}")
    print(f"{'DATACENTER':<16} {'NODES':>6} {'IN USE':>7} {'CHOSEN':>7} {'AVAILABLE':>16}")
    for row in summary.datacenters:
        marker = " (exhausted)" if row.exhausted else ""
        print(f"{row.datacenter:<16} {row.nodes:>6} {row.in_use:>7} {row.chosen:>7} {row.available_bytes:>16}{marker}")
    print(
        f"{'total':<16} {summary.total_nodes:>6} {summary.total_in_use:>7} {summary.total_chosen:>7} "
        f"{summary.total_available_bytes:>16}"
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        config = _load_config(args)
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT
    logging.basicConfig(
        level=(args.log_level or config.observability.log_level).upper(),
        format="[%(asctime)s] %(levelname)s %(message)s",
    )

    runtime = PickerRuntime.bootstrap(config, JsonFileTopologySource(args.input))
    try:
        view = runtime.refresher.refresh()
    except (RefreshError, ValidationErrors) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT
    for error in view.errors:
        print(f"warning: skipped record {error}", file=sys.stderr)

    if args.command == "topology":
        description = runtime.describe()
        if args.json:
            print(json.dumps(description, indent=2))
        else:
            _print_topology(description)
        return EXIT_OK

    try:
        outcome = runtime.choose(args.replicas, args.size, operator=args.operator)
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT
    except PlacementError as exc:
        outcome = exc
    summary = runtime.summarize(outcome, view=view)

    if isinstance(outcome, PlacementError):
        payload = {"error": outcome.to_dict(), "summary": summary.to_dict()}
        chosen: List[str] = []
        code = EXIT_NO_PLACEMENT
    else:
        payload = {**outcome.to_dict(), "summary": summary.to_dict()}
        chosen = [f"{node.id} ({node.datacenter})" for node in outcome.nodes]
        code = EXIT_OK
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        _print_summary(summary, chosen)
    return code


if __name__ == "__main__":
    sys.exit(main())
