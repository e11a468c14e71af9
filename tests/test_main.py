"""Tests for the PulseTrack main entry point."""

import io
import json
from datetime import date, datetime
from unittest.mock import patch

import pytest
from docx import Document

from pulsetrack.core.models import ActivityRecord, RuleType
from pulsetrack.core.tracker import Tracker
from pulsetrack.main import build_parser, main
from pulsetrack.persistence.store import ActivityStore


@pytest.fixture
def config(tmp_path):
    """Write a config.json pointing at a temp database and return its path."""
    cfg = {
        "database_path": str(tmp_path / "activity.db"),
        "unassigned_min_seconds": 10,
        "report": {"output_directory": str(tmp_path / "reports")},
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(cfg))
    return str(path), cfg


def _seed(db_path, titles, day=datetime(2025, 1, 15, 9)):
    store = ActivityStore(db_path)
    store.init_db()
    try:
        for title in titles:
            store.insert(
                ActivityRecord(
                    id=0,
                    timestamp=day,
                    app_name="Safari",
                    bundle_id="com.apple.Safari",
                    window_title=title,
                    duration_seconds=60,
                )
            )
    finally:
        store.close()


class TestBuildParser:
    """Tests for CLI argument parsing."""

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_report_day_with_date(self):
        parsed = build_parser().parse_args(["report", "day", "--date", "2025-01-15"])
        assert parsed.command == "report"
        assert parsed.report_kind == "day"
        assert parsed.date == date(2025, 1, 15)

    def test_invalid_date_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["report", "day", "--date", "15/01/2025"])

    def test_month_range_checked(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["report", "month", "--month", "13"])

    def test_export_period_choices(self):
        parsed = build_parser().parse_args(["export", "range", "--start", "2025-01-01", "--end", "2025-01-07"])
        assert parsed.period == "range"
        with pytest.raises(SystemExit):
            build_parser().parse_args(["export", "year"])

    def test_global_flags(self):
        parsed = build_parser().parse_args(["--config", "/tmp/c.json", "-v", "serve", "--port", "9000"])
        assert parsed.config == "/tmp/c.json"
        assert parsed.verbose is True
        assert parsed.port == 9000


class TestReports:

    def test_report_day(self, config, capsys):
        path, cfg = config
        _seed(cfg["database_path"], ["Acme — Pricing"])

        assert main(["--config", path, "report", "day", "--date", "2025-01-15"]) == 0

        out = capsys.readouterr().out
        assert "Activity Report: 2025-01-15" in out
        assert "Safari" in out

    def test_report_unassigned_uses_config_floor(self, config, capsys):
        path, cfg = config
        _seed(cfg["database_path"], ["Acme — Pricing"])

        main(["--config", path, "report", "unassigned", "--date", "2025-01-15", "--min-seconds", "120"])
        assert "Everything is classified." in capsys.readouterr().out

        main(["--config", path, "report", "unassigned", "--date", "2025-01-15"])
        assert "Acme — Pricing" in capsys.readouterr().out

    def test_report_app(self, config, capsys):
        path, cfg = config
        _seed(cfg["database_path"], ["Docs"])
        main(["--config", path, "report", "app", "safari"])
        assert "App Detail: safari" in capsys.readouterr().out


class TestClassificationCommands:

    def test_auto_assign(self, config, capsys):
        path, cfg = config
        _seed(cfg["database_path"], ["Acme — Pricing", "Other"])
        store = ActivityStore(cfg["database_path"])
        store.init_db()
        brand = store.insert_brand("Acme")
        project = store.insert_project(brand, "Site")
        store.insert_rule(project, RuleType.WINDOW_TITLE, "acme")
        store.close()

        assert main(["--config", path, "auto-assign"]) == 0
        assert "Assigned 1 activities." in capsys.readouterr().out

    def test_suggest_and_accept(self, config, capsys):
        path, cfg = config
        _seed(cfg["database_path"], ["Acme — a", "Acme — b"])

        main(["--config", path, "suggest"])
        out = capsys.readouterr().out
        assert "Acme  (2 activities)  [acme]" in out
        assert "windowTitle: ^acme (regex)" in out

        assert main(["--config", path, "suggest", "--accept", "acme"]) == 0
        assert "classified 2 activities" in capsys.readouterr().out

        main(["--config", path, "suggest"])
        assert "No suggestions." in capsys.readouterr().out

    def test_accept_unknown_root_exits_1(self, config):
        path, _ = config
        assert main(["--config", path, "suggest", "--accept", "nothing"]) == 1


class TestIngest:

    @patch("pulsetrack.main._install_signal_handlers")
    def test_ingest_from_stdin(self, mock_signals, config, monkeypatch):
        path, cfg = config
        lines = [
            {"appName": "Code", "bundleId": "com.microsoft.VSCode", "windowTitle": "main.py",
             "timestamp": "2025-01-15T10:00:00"},
            {"appName": "Code", "bundleId": "com.microsoft.VSCode", "windowTitle": "main.py",
             "timestamp": "2025-01-15T10:00:02"},
            {"appName": "Code", "bundleId": "com.microsoft.VSCode", "windowTitle": "main.py",
             "timestamp": "2025-01-15T10:00:04"},
        ]
        monkeypatch.setattr("sys.stdin", io.StringIO("\n".join(json.dumps(line) for line in lines)))

        assert main(["--config", path, "ingest"]) == 0

        mock_signals.assert_called_once()
        assert isinstance(mock_signals.call_args[0][0], Tracker)
        store = ActivityStore(cfg["database_path"])
        store.init_db()
        try:
            timeline = store.query_timeline("2025-01-15")
        finally:
            store.close()
        assert [(e.app_name, e.duration_seconds) for e in timeline] == [("Code", 6)]

    @patch("pulsetrack.main._install_signal_handlers")
    def test_ingest_applies_configured_idle_threshold(self, mock_signals, config, monkeypatch):
        path, cfg = config
        cfg["idle_threshold_seconds"] = 60
        with open(path, "w") as f:
            json.dump(cfg, f)
        lines = [
            {"appName": "Code", "windowTitle": "main.py", "timestamp": "2025-01-15T10:00:00", "idleSeconds": 0},
            {"appName": "Code", "windowTitle": "main.py", "timestamp": "2025-01-15T10:00:02", "idleSeconds": 0},
            {"appName": "Code", "windowTitle": "main.py", "timestamp": "2025-01-15T10:00:04", "idleSeconds": 90},
        ]
        monkeypatch.setattr("sys.stdin", io.StringIO("\n".join(json.dumps(line) for line in lines)))

        assert main(["--config", path, "ingest"]) == 0

        store = ActivityStore(cfg["database_path"])
        store.init_db()
        try:
            timeline = store.query_timeline("2025-01-15")
        finally:
            store.close()
        assert [e.duration_seconds for e in timeline] == [4]


class TestExport:

    def test_export_range(self, config, tmp_path, capsys):
        path, cfg = config
        _seed(cfg["database_path"], ["Acme — a"])
        output = str(tmp_path / "out.docx")

        code = main([
            "--config", path, "export", "range",
            "--start", "2025-01-13", "--end", "2025-01-19", "--output", output,
        ])

        assert code == 0
        assert f"Report written to {output}" in capsys.readouterr().out
        headings = [p.text for p in Document(output).paragraphs if p.style.name.startswith("Heading")]
        assert "2025-01-15" in headings

    def test_export_default_path(self, config, tmp_path):
        path, _ = config
        main(["--config", path, "export", "week"])
        written = list((tmp_path / "reports").glob("pulsetrack-week-*.docx"))
        assert len(written) == 1

    def test_export_range_requires_bounds(self, config):
        path, _ = config
        with pytest.raises(SystemExit):
            main(["--config", path, "export", "range", "--start", "2025-01-13"])


class TestStorageErrors:

    def test_unopenable_database_exits_1(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        cfg_path = tmp_path / "config.json"
        cfg_path.write_text(json.dumps({"database_path": str(blocker / "activity.db")}))

        assert main(["--config", str(cfg_path), "report", "day"]) == 1
