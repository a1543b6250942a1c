from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any

from . import __version__
from .app import ActivityTracker
from .errors import WhatDidIDoError
from .estimator import format_duration
from .logs import configure_logging, recent_logs
from .models import Category
from .rollups import day_window
from .scheduler import OutcomeStatus
from .paths import logs_directory
from .settings import GEMINI_API_KEY_SETTING_KEY, SETTING_KEYS, save_setting

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from exc


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than zero")
    return parsed


def _today() -> date:
    return datetime.now().astimezone().date()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="whatdidido", description="Sample what you are doing and see where the time went.")
    parser.add_argument("--version", action="store_true", help="Print app version and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to the console")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Start tracking and run until interrupted")
    sub.add_parser("capture-once", help="Capture and classify one screenshot, then exit")
    sub.add_parser("capture-now", help="Run one sampling cycle now, skipped when idle")
    sub.add_parser("status", help="Show scheduler and configuration status")

    stats = sub.add_parser("stats", help="Show time allocation rollups")
    stats_sub = stats.add_subparsers(dest="scope", required=True)
    for scope, help_text in (
        ("day", "Stats for one day"),
        ("month", "Averages for the month containing --date"),
        ("daily", "Per-day stats for the month containing --date"),
    ):
        scope_parser = stats_sub.add_parser(scope, help=help_text)
        scope_parser.add_argument("--date", type=_parse_date, default=None, help="YYYY-MM-DD, defaults to today")
        scope_parser.add_argument("--interval", type=_positive_float, default=None, help="Sampling interval in minutes")
        if scope == "day":
            scope_parser.add_argument("--text", action="store_true", help="Print a short summary instead of JSON")
    year = stats_sub.add_parser("year", help="Month-by-month stats for a year")
    year.add_argument("--year", type=int, default=None, help="Defaults to the current year")
    year.add_argument("--interval", type=_positive_float, default=None, help="Sampling interval in minutes")
    days = stats_sub.add_parser("days", help="Number of days with data in the month containing --date")
    days.add_argument("--date", type=_parse_date, default=None)
    months = stats_sub.add_parser("months", help="Number of months with data in a year")
    months.add_argument("--year", type=int, default=None)

    export = sub.add_parser("export", help="Export samples and stats for a date range")
    export.add_argument("--start", type=_parse_date, required=True)
    export.add_argument("--end", type=_parse_date, required=True)
    export.add_argument("--interval", type=_positive_float, default=5.0)
    export.add_argument("--output", type=Path, default=None, help="Write JSON to this file instead of stdout")

    note = sub.add_parser("note", help="Manage day notes")
    note_sub = note.add_subparsers(dest="action", required=True)
    note_add = note_sub.add_parser("add")
    note_add.add_argument("content")
    note_add.add_argument("--date", type=_parse_date, default=None)
    note_list = note_sub.add_parser("list")
    note_list.add_argument("--date", type=_parse_date, default=None)
    note_update = note_sub.add_parser("update")
    note_update.add_argument("id", type=int)
    note_update.add_argument("content")
    note_delete = note_sub.add_parser("delete")
    note_delete.add_argument("id", type=int)

    sample = sub.add_parser("sample", help="Inspect or delete stored samples")
    sample_sub = sample.add_subparsers(dest="action", required=True)
    sample_delete = sample_sub.add_parser("delete")
    sample_delete.add_argument("id", type=int)
    sample_count = sample_sub.add_parser("count", help="Count samples between two days, both included")
    sample_count.add_argument("--start", type=_parse_date, default=None)
    sample_count.add_argument("--end", type=_parse_date, default=None)

    analysis = sub.add_parser("analysis", help="Show, generate or edit the AI day analysis")
    analysis_sub = analysis.add_subparsers(dest="action", required=True)
    for action in ("show", "generate"):
        action_parser = analysis_sub.add_parser(action)
        action_parser.add_argument("--date", type=_parse_date, default=None)
    analysis_update = analysis_sub.add_parser("update")
    analysis_update.add_argument("id", type=int)
    analysis_update.add_argument("content")
    analysis_delete = analysis_sub.add_parser("delete")
    analysis_delete.add_argument("id", type=int)

    chat = sub.add_parser("chat", help="Ask the assistant about the last 30 days of activity")
    chat.add_argument("message")

    config = sub.add_parser("config", help="Read or change settings")
    config_sub = config.add_subparsers(dest="action", required=True)
    config_sub.add_parser("get")
    config_set = config_sub.add_parser("set")
    config_set.add_argument("key", choices=SETTING_KEYS)
    config_set.add_argument("value")

    logs = sub.add_parser("logs", help="Print the most recent log lines")
    logs.add_argument("--lines", type=int, default=100)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.version:
        print(__version__)
        return 0
    if not args.command:
        parser.print_help()
        return 0

    console_level = logging.DEBUG if args.verbose else logging.WARNING
    if args.command == "run":
        console_level = logging.DEBUG if args.verbose else logging.INFO
    configure_logging(logs_directory(), console_level=console_level)

    if args.command == "logs":
        for line in recent_logs(logs_directory(), args.lines):
            print(line)
        return 0

    try:
        tracker = ActivityTracker()
        return _dispatch(tracker, args)
    except (WhatDidIDoError, OSError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1


def _dispatch(tracker: ActivityTracker, args: argparse.Namespace) -> int:
    if args.command == "run":
        tracker.run_forever()
        return 0
    if args.command == "capture-once":
        sample_id = tracker.capture_once()
        _print_json({"captured": sample_id})
        return 0
    if args.command == "capture-now":
        return _capture_now(tracker)
    if args.command == "status":
        _print_json(tracker.status())
        return 0
    if args.command == "stats":
        return _stats(tracker, args)
    if args.command == "export":
        return _export(tracker, args)
    if args.command == "note":
        return _note(tracker, args)
    if args.command == "analysis":
        return _analysis(tracker, args)
    if args.command == "config":
        return _config(tracker, args)
    if args.command == "sample":
        return _sample(tracker, args)
    if args.command == "chat":
        print(tracker.chat(args.message, datetime.now().astimezone()))
        return 0
    return 2


def _stats(tracker: ActivityTracker, args: argparse.Namespace) -> int:
    aggregator = tracker.aggregator
    if args.scope == "days":
        day = args.date or _today()
        _print_json({"month": day.strftime("%Y-%m"), "days_with_data": aggregator.count_days_with_data(day)})
        return 0
    if args.scope == "months":
        year = args.year or _today().year
        _print_json({"year": year, "months_with_data": aggregator.count_months_with_data(year)})
        return 0

    interval = args.interval or tracker.settings.interval_minutes
    if args.scope == "year":
        _print_json(aggregator.yearly_monthly_stats(args.year or _today().year, interval).to_dict())
        return 0

    day = args.date or _today()
    if args.scope == "day":
        rollup = aggregator.day_rollup(day, interval)
        if args.text:
            print(f"{day.isoformat()}: {rollup.estimate.total_samples} samples")
            for category in Category.tracked():
                est = rollup.estimate.categories[category]
                if est.count:
                    print(f"  {category.value:<14}{format_duration(est.minutes):>8}  {est.percentage:5.1f}%")
        else:
            _print_json(rollup.to_dict())
    elif args.scope == "month":
        rollup = aggregator.monthly_averages(day, interval)
        _print_json(rollup.to_dict())
    else:
        daily = aggregator.daily_stats_for_month(day, interval)
        _print_json({key: estimate.to_dict() for key, estimate in daily.items()})
    return 0


def _export(tracker: ActivityTracker, args: argparse.Namespace) -> int:
    export = tracker.aggregator.export_data(args.start, args.end, datetime.now().astimezone(), args.interval)
    payload = json.dumps(export.to_dict(), indent=2, ensure_ascii=False)
    if args.output is None:
        print(payload)
    else:
        args.output.write_text(payload, encoding="utf-8")
        print(f"exported={args.output}")
    return 0


def _note(tracker: ActivityTracker, args: argparse.Namespace) -> int:
    if args.action == "add":
        note_id = tracker.db.save_note(args.date or _today(), args.content)
        _print_json({"id": note_id})
    elif args.action == "list":
        notes = tracker.db.list_notes_for_day(args.date or _today())
        _print_json([note.to_dict() for note in notes])
    elif args.action == "update":
        if not tracker.db.update_note(args.id, args.content):
            print(f"error: note {args.id} not found", file=sys.stderr)
            return 1
        _print_json({"updated": args.id})
    else:
        if not tracker.db.delete_note(args.id):
            print(f"error: note {args.id} not found", file=sys.stderr)
            return 1
        _print_json({"deleted": args.id})
    return 0


def _analysis(tracker: ActivityTracker, args: argparse.Namespace) -> int:
    if args.action == "update":
        if not tracker.db.update_analysis(args.id, args.content):
            print(f"error: analysis {args.id} not found", file=sys.stderr)
            return 1
        _print_json({"updated": args.id})
        return 0
    if args.action == "delete":
        if not tracker.db.delete_analysis(args.id):
            print(f"error: analysis {args.id} not found", file=sys.stderr)
            return 1
        _print_json({"deleted": args.id})
        return 0

    day = args.date or _today()
    if args.action == "generate":
        analysis_id = tracker.generate_day_analysis(day)
        _print_json({"id": analysis_id, "day": day.isoformat()})
        return 0
    analysis = tracker.db.get_day_analysis(day)
    if analysis is None:
        print(f"No analysis for {day.isoformat()}", file=sys.stderr)
        return 1
    print(analysis.content)
    return 0


def _sample(tracker: ActivityTracker, args: argparse.Namespace) -> int:
    if args.action == "delete":
        if not tracker.db.delete_sample(args.id):
            print(f"error: sample {args.id} not found", file=sys.stderr)
            return 1
        _print_json({"deleted": args.id})
        return 0

    end = args.end or _today()
    start = args.start or end
    if end < start:
        start, end = end, start
    total = tracker.db.count_samples_in_range(day_window(start)[0], day_window(end)[1])
    _print_json({"start": start.isoformat(), "end": end.isoformat(), "count": total})
    return 0


def _capture_now(tracker: ActivityTracker) -> int:
    outcome = tracker.capture_now()
    _print_json(
        {
            "status": outcome.status.value,
            "attempts": outcome.attempts,
            "error": str(outcome.error) if outcome.error else None,
        }
    )
    return 1 if outcome.status is OutcomeStatus.FAILED else 0


def _config(tracker: ActivityTracker, args: argparse.Namespace) -> int:
    if args.action == "set":
        if args.key == "interval_minutes":
            try:
                interval = float(args.value)
            except ValueError:
                print(f"error: invalid number {args.value!r}", file=sys.stderr)
                return 1
            tracker.update_interval(interval)
        else:
            save_setting(tracker.db, args.key, args.value)
        print(f"{args.key} updated")
        return 0

    values = {key: tracker.db.get_setting(key) for key in SETTING_KEYS}
    if values.get(GEMINI_API_KEY_SETTING_KEY):
        values[GEMINI_API_KEY_SETTING_KEY] = "***"
    _print_json(values)
    return 0
