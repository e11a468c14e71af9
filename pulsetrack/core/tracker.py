"""Tracker orchestrator for PulseTrack.

Keeps one :class:`HeartbeatMerger` per logical session:

- ``"foreground"`` for the active window
- ``"terminal:<tab>"`` / ``"music:<source>"`` for background sessions

Heartbeats come either from a polling loop over a
:class:`HeartbeatProvider` plus optional :class:`BackgroundSource`
objects, or from a pushed stream (see :mod:`pulsetrack.platform.stream`).
Every open record is flushed on idle, system sleep and shutdown.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Iterable, Optional

from pulsetrack.core.matcher import ProjectMatcher
from pulsetrack.core.merger import HeartbeatMerger
from pulsetrack.core.models import Heartbeat
from pulsetrack.persistence.store import ActivityStore
from pulsetrack.platform.base import BackgroundSource, HeartbeatProvider
from pulsetrack.platform.stream import StreamEvent, StreamItem

logger = logging.getLogger(__name__)

FOREGROUND = "foreground"


class Tracker:
    """Routes heartbeats to per-session mergers.

    Pausing (idle, sleep) closes every open record; the next heartbeat
    after resuming starts a fresh one.  Idle input does not pause while
    the foreground record is passive media such as a video or a PDF.
    """

    def __init__(
        self,
        store: ActivityStore,
        matcher: Optional[ProjectMatcher] = None,
        provider: Optional[HeartbeatProvider] = None,
        background_sources: Iterable[BackgroundSource] = (),
        poll_interval: int = 2,
        flush_interval: int = 30,
        idle_threshold: int = 600,
    ) -> None:
        self.store = store
        self.matcher = matcher
        self.provider = provider
        self.background_sources = list(background_sources)
        self.poll_interval = poll_interval
        self.flush_interval = flush_interval
        self.idle_threshold = idle_threshold
        self._mergers: dict[str, HeartbeatMerger] = {}
        self._lock = threading.RLock()
        self._running = False
        self._idle = False
        self._asleep = False

    # ------------------------------------------------------------------
    # Session registry
    # ------------------------------------------------------------------

    @property
    def sessions(self) -> list[str]:
        with self._lock:
            return sorted(self._mergers)

    @property
    def paused(self) -> bool:
        return self._idle or self._asleep

    def merger_for(self, session: str) -> HeartbeatMerger:
        with self._lock:
            merger = self._mergers.get(session)
            if merger is None:
                merger = HeartbeatMerger(self.store, self.matcher, self.flush_interval)
                self._mergers[session] = merger
                logger.debug("Opened session %s", session)
            return merger

    def record(
        self,
        session: str,
        heartbeat: Heartbeat,
        interval_seconds: int,
        now: Optional[datetime] = None,
    ) -> None:
        """Feed one heartbeat for *session*; ignored while paused."""
        with self._lock:
            if self.paused:
                return
            self.merger_for(session).process(heartbeat, interval_seconds, now)

    def end_session(self, session: str) -> None:
        with self._lock:
            merger = self._mergers.pop(session, None)
            if merger is not None:
                merger.close()
                logger.debug("Closed session %s", session)

    def flush_all(self) -> None:
        with self._lock:
            for merger in self._mergers.values():
                merger.flush()

    def close_all(self) -> None:
        with self._lock:
            for session in list(self._mergers):
                self.end_session(session)

    # ------------------------------------------------------------------
    # Pause / resume
    # ------------------------------------------------------------------

    def set_idle(self, idle: bool) -> None:
        with self._lock:
            if idle and not self._idle:
                foreground = self._mergers.get(FOREGROUND)
                if foreground is not None and foreground.is_current_passive_media:
                    return
                logger.info("User idle; pausing tracking")
                self._idle = True
                self.close_all()
            elif not idle and self._idle:
                logger.info("User active; resuming tracking")
                self._idle = False

    def on_system_sleep(self) -> None:
        with self._lock:
            logger.info("System sleep; flushing %d sessions", len(self._mergers))
            self._asleep = True
            self.close_all()

    def on_system_wake(self) -> None:
        with self._lock:
            logger.info("System wake; resuming tracking")
            self._asleep = False

    # ------------------------------------------------------------------
    # Polling mode
    # ------------------------------------------------------------------

    def poll_once(self, now: Optional[datetime] = None) -> None:
        """Execute a single poll cycle."""
        now = now or datetime.now()

        if self.provider is not None:
            try:
                idle = self.provider.is_user_idle()
            except Exception:
                logger.exception("Failed to check idle state; assuming not idle")
                idle = False
            self.set_idle(idle)
            if self.paused:
                logger.debug("Tracking paused; skipping poll")
                return

            try:
                heartbeat = self.provider.get_heartbeat()
            except Exception:
                logger.exception("Failed to sample foreground activity; skipping")
                heartbeat = None
            if heartbeat is not None:
                self.record(FOREGROUND, heartbeat, self.poll_interval, now)

        if self.paused:
            return

        seen: set[str] = {FOREGROUND}
        for source in self.background_sources:
            try:
                sessions = source.poll()
            except Exception:
                logger.exception("Background source %r failed; skipping", source)
                continue
            for session, heartbeat in sessions.items():
                seen.add(session)
                self.record(session, heartbeat, self.poll_interval, now)

        with self._lock:
            for session in set(self._mergers) - seen:
                self.end_session(session)

    def run(self) -> None:
        """Poll until :meth:`stop` is called."""
        self._running = True
        logger.info("Running in polling mode (interval=%ds)", self.poll_interval)
        while self._running:
            self.poll_once()
            time.sleep(self.poll_interval)
        self.close_all()

    # ------------------------------------------------------------------
    # Stream mode
    # ------------------------------------------------------------------

    def ingest(self, items: Iterable[StreamItem]) -> int:
        """Consume pushed samples and control events.  Returns samples applied."""
        applied = 0
        for item in items:
            if isinstance(item, StreamEvent):
                self._handle_event(item.name)
                continue
            if item.idle_seconds is not None:
                self.set_idle(item.idle_seconds >= self.idle_threshold)
            if self.paused:
                continue
            self.record(item.session, item.heartbeat, item.interval_seconds, item.timestamp)
            applied += 1
        return applied

    def _handle_event(self, name: str) -> None:
        if name == "sleep":
            self.on_system_sleep()
        elif name == "wake":
            self.on_system_wake()
        elif name == "idle":
            self.set_idle(True)
        elif name == "active":
            self.set_idle(False)

    def stop(self) -> None:
        """Stop the run loop and flush every open record."""
        self._running = False
        self.close_all()
        logger.info("Tracker stopped")
