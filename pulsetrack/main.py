"""PulseTrack application entry point.

Usage:
    pulsetrack report day [--date YYYY-MM-DD]
    pulsetrack report week | month [--year Y --month M] | app NAME
    pulsetrack report timeline | brands | unassigned [--date YYYY-MM-DD]
    pulsetrack ingest [--serve]      # JSON-lines heartbeats on stdin
    pulsetrack serve [--port N]      # dashboard + JSON API
    pulsetrack auto-assign [--date YYYY-MM-DD]
    pulsetrack suggest [--accept ROOT]
    pulsetrack export week|month|range [--start D --end D] [--output PATH]
"""

import argparse
import logging
import os
import signal
import sys
import time
from datetime import date
from typing import Optional

from pulsetrack.core.config import get_default_config_path, load_config
from pulsetrack.core.detector import PatternDetector
from pulsetrack.core.errors import PulseTrackError, StorageUnavailable
from pulsetrack.core.matcher import ProjectMatcher
from pulsetrack.core.suggestions import SuggestionService
from pulsetrack.core.tracker import Tracker
from pulsetrack.persistence.store import ActivityStore
from pulsetrack.platform.stream import read_stream
from pulsetrack.reporting.formatter import TextFormatter
from pulsetrack.reporting.summary import SummaryGenerator

logger = logging.getLogger("pulsetrack")


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r} (expected YYYY-MM-DD)")


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pulsetrack",
        description="PulseTrack: activity log, project classification and reports",
    )
    parser.add_argument("--config", help="Path to config.json (default: platform data dir)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    # --- report ---
    report = commands.add_parser("report", help="Print an activity report")
    kinds = report.add_subparsers(dest="report_kind", required=True)
    for name in ("day", "timeline", "brands"):
        sub = kinds.add_parser(name)
        sub.add_argument("--date", type=_iso_date, default=None)
    unassigned = kinds.add_parser("unassigned")
    unassigned.add_argument("--date", type=_iso_date, default=None)
    unassigned.add_argument("--min-seconds", type=int, default=None)
    kinds.add_parser("week")
    month = kinds.add_parser("month")
    month.add_argument("--year", type=int, default=None)
    month.add_argument("--month", type=int, choices=range(1, 13), default=None)
    app = kinds.add_parser("app")
    app.add_argument("name")

    # --- ingest / serve ---
    ingest = commands.add_parser("ingest", help="Read JSON-lines heartbeats from stdin")
    ingest.add_argument("--serve", action="store_true", help="Also run the dashboard")
    ingest.add_argument("--port", type=int, default=None)
    serve = commands.add_parser("serve", help="Run the dashboard and JSON API")
    serve.add_argument("--port", type=int, default=None)

    # --- classification ---
    assign = commands.add_parser("auto-assign", help="Apply rules to unassigned activity")
    assign.add_argument("--date", type=_iso_date, default=None)
    suggest = commands.add_parser("suggest", help="List detected brand/project suggestions")
    suggest.add_argument("--accept", metavar="ROOT", help="Accept the suggestion for ROOT")

    # --- export ---
    export = commands.add_parser("export", help="Export a report as .docx")
    export.add_argument("period", choices=["week", "month", "range"])
    export.add_argument("--start", type=_iso_date, default=None)
    export.add_argument("--end", type=_iso_date, default=None)
    export.add_argument("--output", default=None)
    return parser


def open_store(config: dict) -> ActivityStore:
    db_path = os.path.expanduser(config["database_path"])
    store = ActivityStore(db_path)
    store.init_db()
    return store


def _print_report(parsed, config: dict, store: ActivityStore) -> None:
    kind = parsed.report_kind
    today = date.today()
    if kind == "day":
        print(TextFormatter.format_day(store.query_day(parsed.date or today)))
    elif kind == "week":
        print(TextFormatter.format_range(SummaryGenerator(store).weekly_summary(), "Weekly Report"))
    elif kind == "month":
        report = SummaryGenerator(store).monthly_summary(
            parsed.year or today.year, parsed.month or today.month
        )
        print(TextFormatter.format_range(report, "Monthly Report"))
    elif kind == "app":
        print(TextFormatter.format_app(store.query_app(parsed.name)))
    elif kind == "timeline":
        print(TextFormatter.format_timeline(store.query_timeline(parsed.date or today)))
    elif kind == "brands":
        print(TextFormatter.format_brands(store.query_day_by_project(parsed.date or today)))
    elif kind == "unassigned":
        min_seconds = parsed.min_seconds
        if min_seconds is None:
            min_seconds = config.get("unassigned_min_seconds", 10)
        print(TextFormatter.format_unassigned(
            store.query_unassigned_activities(parsed.date or today, min_seconds)
        ))


def _build_matcher(config: dict, store: ActivityStore) -> ProjectMatcher:
    return ProjectMatcher(store, ttl_seconds=config.get("rule_cache_ttl_seconds", 60))


def _build_api(config: dict, store: ActivityStore, matcher: ProjectMatcher, tracker=None):
    from pulsetrack.ui.api import PulseApi

    detector = PatternDetector(store, config.get("pattern_min_count", 2))
    return PulseApi(
        store,
        matcher,
        suggestions=SuggestionService(store, matcher, detector),
        tracker=tracker,
        config=config,
    )


def _install_signal_handlers(tracker: Tracker) -> None:
    """Stop (and flush) the tracker on SIGINT/SIGTERM before exiting."""
    def _handle(signum, frame):
        logger.info("Received signal %d; flushing and exiting", signum)
        tracker.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _ingest(parsed, config: dict, store: ActivityStore) -> None:
    matcher = _build_matcher(config, store)
    tracker = Tracker(
        store,
        matcher,
        poll_interval=config.get("poll_interval_seconds", 2),
        flush_interval=config.get("flush_interval_seconds", 30),
        idle_threshold=config.get("idle_threshold_seconds", 600),
    )
    _install_signal_handlers(tracker)
    if parsed.serve:
        from pulsetrack.ui.web import start_dashboard

        start_dashboard(
            _build_api(config, store, matcher, tracker),
            parsed.port or config.get("dashboard_port", 18492),
        )
    try:
        applied = tracker.ingest(read_stream(sys.stdin))
    finally:
        tracker.stop()
    logger.info("Ingested %d heartbeats", applied)


def _serve(parsed, config: dict, store: ActivityStore) -> None:
    from pulsetrack.ui.web import start_dashboard

    matcher = _build_matcher(config, store)
    start_dashboard(
        _build_api(config, store, matcher),
        parsed.port or config.get("dashboard_port", 18492),
    )
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")


def _auto_assign(parsed, config: dict, store: ActivityStore) -> None:
    assigned = _build_matcher(config, store).auto_assign_unclassified(parsed.date)
    print(f"Assigned {assigned} activities.")


def _suggest(parsed, config: dict, store: ActivityStore) -> None:
    matcher = _build_matcher(config, store)
    service = SuggestionService(
        store, matcher, PatternDetector(store, config.get("pattern_min_count", 2))
    )
    if parsed.accept:
        result = service.accept_root(parsed.accept, config.get("default_color", "#6366f1"))
        print(
            f"Created {result.projects_created} projects and {result.rules_created} rules; "
            f"classified {result.reclassified} activities."
        )
        return

    brands = service.list()
    if not brands:
        print("No suggestions.")
        return
    for brand in brands:
        print(f"{brand.suggested_name}  ({brand.total_activities} activities)  [{brand.root_token}]")
        for project in brand.projects:
            print(f"  {project.suggested_name}  ({project.activity_count})")
            for rule in project.suggested_rules:
                flag = " (regex)" if rule.is_regex else ""
                print(f"    {rule.rule_type.value}: {rule.pattern}{flag}")


def _export(parsed, config: dict, store: ActivityStore) -> None:
    from pulsetrack.reporting.exporter import ReportExporter

    generator = SummaryGenerator(store)
    today = date.today()
    if parsed.period == "week":
        report = generator.weekly_summary(today)
    elif parsed.period == "month":
        report = generator.monthly_summary(today.year, today.month)
    else:
        if parsed.start is None or parsed.end is None:
            raise SystemExit("export range requires --start and --end")
        report = generator.range_summary(parsed.start, parsed.end)

    output = parsed.output or os.path.join(
        os.path.expanduser(config["report"]["output_directory"]),
        f"pulsetrack-{parsed.period}-{report.start_date}-{report.end_date}.docx",
    )
    path = ReportExporter().export_range(report, output)
    print(f"Report written to {path}")


def main(args: Optional[list[str]] = None) -> int:
    """Entry point for PulseTrack.

    When *args* is ``None`` the arguments are read from ``sys.argv``.
    Returns the process exit code.
    """
    parser = build_parser()
    parsed = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = load_config(parsed.config or str(get_default_config_path()))

    try:
        store = open_store(config)
    except StorageUnavailable as exc:
        logger.error("%s", exc.message)
        return 1

    handlers = {
        "report": _print_report,
        "ingest": _ingest,
        "serve": _serve,
        "auto-assign": _auto_assign,
        "suggest": _suggest,
        "export": _export,
    }
    try:
        handlers[parsed.command](parsed, config, store)
    except PulseTrackError as exc:
        logger.error("%s: %s", exc.kind, exc.message)
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
