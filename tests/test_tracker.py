"""Unit tests for the Tracker orchestrator."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from pulsetrack.core.models import Heartbeat
from pulsetrack.core.tracker import FOREGROUND, Tracker
from pulsetrack.persistence.store import ActivityStore
from pulsetrack.platform.base import BackgroundSource, HeartbeatProvider
from pulsetrack.platform.stream import StreamEvent, StreamSample, parse_line

T0 = datetime(2025, 1, 15, 10, 0, 0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def store():
    s = ActivityStore(":memory:")
    s.init_db()
    yield s
    s.close()


def _hb(app="Code", bundle="com.microsoft.VSCode", title="main.py", extra=None):
    return Heartbeat(app_name=app, bundle_id=bundle, window_title=title, extra_info=extra)


def _video():
    return _hb(app="YouTube", bundle="virtual.youtube", title="Talk")


def _make_provider(heartbeat=None, is_idle=False):
    provider = MagicMock(spec=HeartbeatProvider)
    provider.get_heartbeat.return_value = heartbeat
    provider.is_user_idle.return_value = is_idle
    return provider


def _durations(store):
    return [(e.app_name, e.duration_seconds) for e in store.query_timeline(T0.date())]


# ---------------------------------------------------------------------------
# Session registry
# ---------------------------------------------------------------------------

class TestSessions:

    def test_sessions_are_independent(self, store):
        tracker = Tracker(store)
        for i in range(3):
            now = T0 + timedelta(seconds=2 * i)
            tracker.record(FOREGROUND, _hb(), 2, now)
            tracker.record("terminal:1", _hb(app="Terminal", bundle="com.apple.Terminal", title="zsh"), 2, now)
        tracker.close_all()

        assert sorted(_durations(store)) == [("Code", 6), ("Terminal", 6)]
        assert tracker.sessions == []

    def test_end_session_flushes(self, store):
        tracker = Tracker(store)
        tracker.record("music:spotify", _hb(app="Spotify", bundle="com.spotify.client"), 2, T0)
        tracker.record("music:spotify", _hb(app="Spotify", bundle="com.spotify.client"), 2, T0 + timedelta(seconds=2))
        assert tracker.sessions == ["music:spotify"]

        tracker.end_session("music:spotify")

        assert _durations(store) == [("Spotify", 4)]
        assert tracker.sessions == []

    def test_end_unknown_session_is_noop(self, store):
        Tracker(store).end_session("nope")

    def test_flush_all_keeps_sessions_open(self, store):
        tracker = Tracker(store)
        tracker.record(FOREGROUND, _hb(), 2, T0)
        tracker.record(FOREGROUND, _hb(), 2, T0 + timedelta(seconds=2))
        tracker.flush_all()
        assert _durations(store) == [("Code", 4)]
        assert tracker.sessions == [FOREGROUND]


# ---------------------------------------------------------------------------
# Pause / resume
# ---------------------------------------------------------------------------

class TestPause:

    def test_idle_closes_records_and_ignores_heartbeats(self, store):
        tracker = Tracker(store)
        tracker.record(FOREGROUND, _hb(), 2, T0)
        tracker.set_idle(True)
        tracker.record(FOREGROUND, _hb(), 2, T0 + timedelta(seconds=2))

        assert tracker.paused
        assert tracker.sessions == []
        assert _durations(store) == [("Code", 2)]

    def test_resume_starts_new_record(self, store):
        tracker = Tracker(store)
        tracker.record(FOREGROUND, _hb(), 2, T0)
        tracker.set_idle(True)
        tracker.set_idle(False)
        tracker.record(FOREGROUND, _hb(), 2, T0 + timedelta(minutes=20))
        tracker.close_all()

        assert _durations(store) == [("Code", 2), ("Code", 2)]

    def test_passive_media_not_paused_by_idle(self, store):
        tracker = Tracker(store)
        tracker.record(FOREGROUND, _video(), 2, T0)
        tracker.set_idle(True)
        tracker.record(FOREGROUND, _video(), 2, T0 + timedelta(seconds=2))
        tracker.close_all()

        assert not tracker.paused
        assert _durations(store) == [("YouTube", 4)]

    def test_sleep_pauses_even_passive_media(self, store):
        tracker = Tracker(store)
        tracker.record(FOREGROUND, _video(), 2, T0)
        tracker.on_system_sleep()
        tracker.record(FOREGROUND, _video(), 2, T0 + timedelta(seconds=2))

        assert tracker.paused
        assert _durations(store) == [("YouTube", 2)]

        tracker.on_system_wake()
        assert not tracker.paused


# ---------------------------------------------------------------------------
# Polling mode
# ---------------------------------------------------------------------------

class TestPollOnce:

    def test_records_foreground_heartbeat(self, store):
        tracker = Tracker(store, provider=_make_provider(_hb()), poll_interval=2)
        tracker.poll_once(T0)
        tracker.poll_once(T0 + timedelta(seconds=2))
        tracker.close_all()
        assert _durations(store) == [("Code", 4)]

    def test_no_heartbeat_records_nothing(self, store):
        tracker = Tracker(store, provider=_make_provider(None))
        tracker.poll_once(T0)
        assert tracker.sessions == []

    def test_idle_provider_pauses(self, store):
        provider = _make_provider(_hb(), is_idle=True)
        tracker = Tracker(store, provider=provider)
        tracker.poll_once(T0)
        assert tracker.paused
        provider.get_heartbeat.assert_not_called()

    def test_provider_errors_are_logged(self, store, caplog):
        provider = _make_provider()
        provider.is_user_idle.side_effect = RuntimeError("boom")
        provider.get_heartbeat.side_effect = RuntimeError("boom")
        tracker = Tracker(store, provider=provider)

        tracker.poll_once(T0)

        assert not tracker.paused
        assert "Failed to sample" in caplog.text

    def test_background_sessions_dropped_when_missing(self, store):
        source = MagicMock(spec=BackgroundSource)
        terminal = _hb(app="Terminal", bundle="com.apple.Terminal", title="npm test")
        source.poll.side_effect = [{"terminal:2": terminal}, {"terminal:2": terminal}, {}]
        tracker = Tracker(store, background_sources=[source], poll_interval=2)

        tracker.poll_once(T0)
        tracker.poll_once(T0 + timedelta(seconds=2))
        assert tracker.sessions == ["terminal:2"]

        tracker.poll_once(T0 + timedelta(seconds=4))
        assert tracker.sessions == []
        assert _durations(store) == [("Terminal", 4)]

    def test_failing_background_source_skipped(self, store):
        broken = MagicMock(spec=BackgroundSource)
        broken.poll.side_effect = RuntimeError("boom")
        tracker = Tracker(store, provider=_make_provider(_hb()), background_sources=[broken])
        tracker.poll_once(T0)
        assert tracker.sessions == [FOREGROUND]


# ---------------------------------------------------------------------------
# Stream mode
# ---------------------------------------------------------------------------

class TestIngest:

    def test_applies_samples_and_events(self, store):
        tracker = Tracker(store)
        items = [
            StreamSample(FOREGROUND, _hb(), 2, T0),
            StreamSample(FOREGROUND, _hb(), 2, T0 + timedelta(seconds=2)),
            StreamEvent("sleep"),
            StreamSample(FOREGROUND, _hb(), 2, T0 + timedelta(seconds=4)),
            StreamEvent("wake"),
            StreamSample(FOREGROUND, _hb(), 2, T0 + timedelta(minutes=30)),
        ]

        applied = tracker.ingest(items)
        tracker.stop()

        assert applied == 3
        assert _durations(store) == [("Code", 4), ("Code", 2)]

    def test_idle_and_active_events(self, store):
        tracker = Tracker(store)
        tracker.ingest([StreamEvent("idle")])
        assert tracker.paused
        tracker.ingest([StreamEvent("active")])
        assert not tracker.paused

    def test_stop_flushes_open_records(self, store):
        tracker = Tracker(store)
        tracker.ingest([
            StreamSample(FOREGROUND, _hb(), 2, T0),
            StreamSample(FOREGROUND, _hb(), 2, T0 + timedelta(seconds=2)),
            StreamSample(FOREGROUND, _hb(), 2, T0 + timedelta(seconds=4)),
        ])
        tracker.stop()
        assert _durations(store) == [("Code", 6)]

    def test_mixed_offset_and_local_timestamps(self, store):
        base = '{"appName": "Code", "bundleId": "com.microsoft.VSCode", "windowTitle": "main.py"'
        lines = [
            base + f', "timestamp": "{T0.astimezone(timezone.utc).isoformat()}"}}',
            base + f', "timestamp": "{(T0 + timedelta(seconds=2)).isoformat()}"}}',
            base + "}",
        ]
        tracker = Tracker(store)

        applied = tracker.ingest(parse_line(line) for line in lines)
        tracker.stop()

        assert applied == 3
        assert _durations(store) == [("Code", 6)]
        day = store.query_day(T0.date())
        assert day.total_seconds == 6
        assert day.first_activity == "10:00"

    def test_idle_seconds_over_threshold_pause(self, store):
        tracker = Tracker(store, idle_threshold=300)
        applied = tracker.ingest([
            StreamSample(FOREGROUND, _hb(), 2, T0, idle_seconds=10),
            StreamSample(FOREGROUND, _hb(), 2, T0 + timedelta(seconds=2), idle_seconds=10),
            StreamSample(FOREGROUND, _hb(), 2, T0 + timedelta(seconds=4), idle_seconds=400),
            StreamSample(FOREGROUND, _hb(), 2, T0 + timedelta(minutes=6), idle_seconds=0),
        ])
        tracker.stop()

        assert applied == 3
        assert _durations(store) == [("Code", 4), ("Code", 2)]

    def test_idle_seconds_ignored_for_passive_media(self, store):
        tracker = Tracker(store, idle_threshold=300)
        tracker.ingest([
            StreamSample(FOREGROUND, _video(), 2, T0, idle_seconds=0),
            StreamSample(FOREGROUND, _video(), 2, T0 + timedelta(seconds=2), idle_seconds=900),
        ])
        tracker.stop()

        assert not tracker.paused
        assert _durations(store) == [("YouTube", 4)]
