"""Command-line entry point: load a run config, simulate and print the summary."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from squadsim.config import SimulationConfig
from squadsim.context import SimulationContext
from squadsim.errors import ConfigError, RecordingError
from squadsim.event_recorder import (
    DEFAULT_RECORDED_EVENTS,
    RecordedEvent,
    analyze,
    load_recordings,
    replay,
    save_recordings,
)
from squadsim.events.bus import EVENT_UI_LOG, EventBus
from squadsim.simulation import BatchResult, BatchRunner, Simulation


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="squadsim", description="Squad combat DPS simulator")
    parser.add_argument("--config", help="Path to a JSON run configuration")
    parser.add_argument("--characters", help="Directory of character JSON files")
    parser.add_argument("--squad", nargs="+", metavar="ID", help="Squad member ids in slot order")
    parser.add_argument("--target", type=int, default=None, help="Slot index whose statistics are reported")
    parser.add_argument("--duration", type=float, default=None, help="Simulated seconds per run")
    parser.add_argument("--runs", type=int, default=None, help="Number of repetitions")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--pace", action="store_true", help="Pace runs against wall time using the speed setting")
    parser.add_argument("--show-log", action="store_true", help="Print the combat log of each run")
    parser.add_argument("--record", metavar="FILE", help="Save the combat events of every run to a JSON file")
    parser.add_argument("--replay", metavar="FILE", help="Replay and analyse a saved recording instead of simulating")
    parser.add_argument("--format", choices=("table", "json"), default="table")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity (-v, -vv)")
    return parser


def load_config(args: argparse.Namespace) -> SimulationConfig:
    raw = {}
    if args.config:
        try:
            raw = json.loads(Path(args.config).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"cannot read config {args.config}: {exc}") from exc
    config = SimulationConfig.from_mapping(raw)
    if args.squad:
        members = list(args.squad) + [None] * (len(config.squad.members) - len(args.squad))
        config.squad.members = members
    if args.target is not None:
        config.squad.target_index = args.target
    if args.duration is not None:
        config.duration = args.duration
    if args.runs is not None:
        config.run_count = args.runs
    if args.seed is not None:
        config.seed = args.seed
    return config.validate()


def _print_log(simulation: Simulation) -> None:
    def on_log(sender, **payload):
        entry = payload.get("entry")
        if entry is not None and entry.level != "debug":
            print(f"[{entry.time:7.3f}s] {entry.message}")

    simulation.event_bus.subscribe(EVENT_UI_LOG, on_log)


def _print_table(result: BatchResult) -> None:
    header = f"{'Run':<6}{'DPS':>14}{'Total':>18}{'Shots':>8}{'Core%':>8}{'Crit%':>8}{'Reloads':>9}"
    print(header)
    print("-" * len(header))
    for index, summary in enumerate(result.summaries, start=1):
        print(
            f"{index:<6}{summary.dps:>14,}{summary.total_damage:>18,}{summary.shots:>8}"
            f"{summary.core_hit_rate:>8.1f}{summary.crit_rate:>8.1f}{summary.reload_count:>9}"
        )
    dps = result.aggregate.get("dps")
    if dps and len(result.summaries) > 1:
        print()
        print(f"DPS mean {dps['mean']:,.0f}  min {dps['min']:,.0f}  max {dps['max']:,.0f}  std {dps['std']:,.1f}")


def _print_event(event: RecordedEvent) -> None:
    time = event.time if event.time is not None else 0.0
    details = ", ".join(f"{key}={value}" for key, value in event.payload.items() if key != "time")
    print(f"[{time:7.3f}s] {event.name} {details}")


def _print_analysis(analysis: dict) -> None:
    print(
        f"{analysis['name']}: {analysis['total_events']} events over {analysis['duration']:.1f}s"
        f" ({analysis['events_per_second']:.1f}/s, {analysis['dropped']} dropped)"
    )
    for name, stats in sorted(analysis["event_types"].items()):
        print(f"  {name:<24}{stats['count']:>8}{stats['average_interval']:>10.3f}s")


def replay_file(path: str, show_events: bool) -> None:
    for recording in load_recordings(path):
        replay(recording, EventBus(), after=_print_event if show_events else None)
        _print_analysis(analyze(recording))


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    if args.replay:
        try:
            replay_file(args.replay, args.show_log)
        except RecordingError as exc:
            print(f"Recording error: {exc}", file=sys.stderr)
            return 2
        return 0
    try:
        config = load_config(args)
        context = SimulationContext.create(config, character_dir=args.characters)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    hooks = [_print_log] if args.show_log else []
    record_events = DEFAULT_RECORDED_EVENTS if args.record else None
    result = BatchRunner(context, pacing=args.pace, on_setup=hooks, record_events=record_events).run()
    if args.record:
        try:
            save_recordings(args.record, result.recordings)
        except RecordingError as exc:
            print(f"Recording error: {exc}", file=sys.stderr)
            return 1
    if args.format == "json":
        payload = {
            "runs": [summary.to_dict() for summary in result.summaries],
            "aggregate": result.aggregate,
        }
        print(json.dumps(payload, indent=2))
    else:
        _print_table(result)
        for recording in result.recordings:
            _print_analysis(analyze(recording))
    return 0


if __name__ == "__main__":
    sys.exit(main())
