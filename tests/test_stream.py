"""Tests for the JSON-lines heartbeat reader."""

import io
from datetime import datetime, timezone

import pytest

from pulsetrack.platform.stream import StreamEvent, StreamSample, parse_line, read_stream


class TestParseLine:

    def test_full_sample(self):
        item = parse_line(
            '{"session": "terminal:3", "appName": "Terminal", "bundleId": "com.apple.Terminal",'
            ' "windowTitle": "zsh", "extraInfo": "~/code/acme", "interval": 5,'
            ' "timestamp": "2025-01-15T10:00:00"}'
        )
        assert isinstance(item, StreamSample)
        assert item.session == "terminal:3"
        assert item.heartbeat.bundle_id == "com.apple.Terminal"
        assert item.heartbeat.extra_info == "~/code/acme"
        assert item.heartbeat.url is None
        assert item.interval_seconds == 5
        assert item.timestamp == datetime(2025, 1, 15, 10, 0, 0)

    def test_defaults(self):
        item = parse_line('{"appName": "Safari"}')
        assert item.session == "foreground"
        assert item.heartbeat.bundle_id == "Safari"
        assert item.heartbeat.window_title == ""
        assert item.interval_seconds == 2
        assert item.timestamp is None

    def test_offset_timestamp_converted_to_local_time(self):
        item = parse_line('{"appName": "Safari", "timestamp": "2026-10-18T10:00:00+00:00"}')
        expected = datetime(2026, 10, 18, 10, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        assert item.timestamp.tzinfo is None
        assert item.timestamp == expected

    def test_idle_seconds(self):
        assert parse_line('{"appName": "Safari", "idleSeconds": 42}').idle_seconds == 42
        assert parse_line('{"appName": "Safari"}').idle_seconds is None

    def test_empty_url_normalized(self):
        assert parse_line('{"appName": "Safari", "url": ""}').heartbeat.url is None

    @pytest.mark.parametrize("name", ["sleep", "wake", "idle", "ACTIVE"])
    def test_control_events(self, name):
        assert parse_line(f'{{"event": "{name}"}}') == StreamEvent(name.lower())

    @pytest.mark.parametrize(
        "line",
        [
            "not json",
            "[1, 2]",
            '{"windowTitle": "no app"}',
            '{"appName": "Safari", "interval": -1}',
            '{"appName": "Safari", "interval": "two"}',
            '{"event": "reboot"}',
            '{"appName": "Safari", "timestamp": "yesterday"}',
            '{"appName": "Safari", "idleSeconds": -5}',
        ],
    )
    def test_invalid_lines(self, line):
        with pytest.raises(ValueError):
            parse_line(line)


class TestReadStream:

    def test_skips_blank_and_invalid_lines(self, caplog):
        stream = io.StringIO(
            '{"appName": "Safari"}\n'
            "\n"
            "garbage\n"
            '{"appName": "Code", "interval": [1]}\n'
            '{"event": "sleep"}\n'
        )
        items = list(read_stream(stream))

        assert len(items) == 2
        assert items[0].heartbeat.app_name == "Safari"
        assert items[1] == StreamEvent("sleep")
        assert "line 3" in caplog.text
        assert "line 4" in caplog.text
