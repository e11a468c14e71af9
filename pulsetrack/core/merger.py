"""Heartbeat merger: coalesces periodic samples into activity records.

One merger owns one logical session (the foreground window, a background
terminal tab, a background music source).  While consecutive heartbeats
describe the same activity, seconds accumulate in memory and are written
to the store at most once per flush interval.  When the activity changes
the open record is flushed and a new one is inserted.

Media bundles (virtual browser-embedded apps and the dedicated music
players) merge on app identity alone, so a long playlist or a run of
videos becomes one record whose title follows the latest item.
"""

import logging
from datetime import datetime
from typing import Optional

from pulsetrack.core.errors import ConstraintViolation, NotFound, TransientWriteFailure
from pulsetrack.core.models import ActivityRecord, Heartbeat, ProjectSource
from pulsetrack.persistence.store import ActivityStore

logger = logging.getLogger(__name__)

VIRTUAL_BUNDLE_PREFIX = "virtual."

MUSIC_BUNDLE_IDS = frozenset({"com.spotify.client", "com.apple.Music"})

PASSIVE_BUNDLE_IDS = frozenset({
    "virtual.youtube",
    "com.spotify.client",
    "com.apple.Music",
    "com.apple.TV",
    "com.apple.Preview",
    "com.apple.iBooksX",
    "com.apple.iBooks",
    "com.readdle.PDFExpert-Mac",
    "net.shinyfrog.bear",
    "com.adobe.Reader",
    "com.adobe.Acrobat.Pro",
})


def merges_by_app(bundle_id: str) -> bool:
    """True if records of *bundle_id* ignore title changes."""
    return bundle_id.startswith(VIRTUAL_BUNDLE_PREFIX) or bundle_id in MUSIC_BUNDLE_IDS


def is_passive_media(bundle_id: str, window_title: str) -> bool:
    """True for video, music, e-book and PDF content.

    Idle detection must not pause tracking of these purely because the
    user stopped typing.
    """
    if bundle_id in PASSIVE_BUNDLE_IDS:
        return True
    title = window_title.lower()
    return title.endswith(".pdf") or ".pdf —" in title or ".pdf –" in title


class HeartbeatMerger:
    """Per-session state machine turning heartbeats into records.

    Not thread-safe: each instance must be driven by a single caller.
    """

    def __init__(self, store: ActivityStore, matcher=None, flush_interval: int = 30) -> None:
        self.store = store
        self.matcher = matcher
        self.flush_interval = flush_interval
        self.current_record: Optional[ActivityRecord] = None
        self.current_record_id: Optional[int] = None
        self.accumulated_seconds = 0
        self.last_flush_time: Optional[datetime] = None
        self._project_id: Optional[int] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, heartbeat: Heartbeat, interval_seconds: int, now: Optional[datetime] = None) -> None:
        """Merge one heartbeat covering *interval_seconds* into the log."""
        now = now or datetime.now()
        interval_seconds = max(0, int(interval_seconds))

        if self.current_record is not None and self._is_same_activity(heartbeat):
            self.accumulated_seconds += interval_seconds
            if heartbeat.window_title != self.current_record.window_title:
                self._retitle(heartbeat)
            if self.last_flush_time is None or (now - self.last_flush_time).total_seconds() >= self.flush_interval:
                self._persist()
                self.last_flush_time = now
            return

        self.flush()
        self._start_new(heartbeat, interval_seconds, now)

    def flush(self) -> None:
        """Persist the accumulated seconds of the open record.

        A no-op when nothing is open or nothing has accumulated.  Write
        failures are logged and retried on the next flush.
        """
        if self.current_record is None or self.accumulated_seconds == 0:
            return
        self._persist()

    def close(self) -> None:
        """Flush and forget the open record; the next heartbeat starts a new one."""
        self.flush()
        self.current_record = None
        self.current_record_id = None
        self.accumulated_seconds = 0
        self.last_flush_time = None
        self._project_id = None

    @property
    def is_current_passive_media(self) -> bool:
        if self.current_record is None:
            return False
        return is_passive_media(self.current_record.bundle_id, self.current_record.window_title)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_same_activity(self, heartbeat: Heartbeat) -> bool:
        current = self.current_record
        if current.bundle_id != heartbeat.bundle_id or current.app_name != heartbeat.app_name:
            return False
        return merges_by_app(heartbeat.bundle_id) or current.window_title == heartbeat.window_title

    def _retitle(self, heartbeat: Heartbeat) -> None:
        record = self.current_record
        record.window_title = heartbeat.window_title
        record.url = heartbeat.url
        record.extra_info = heartbeat.extra_info
        if self.current_record_id is None:
            return
        try:
            self.store.update_window_title(
                self.current_record_id, heartbeat.window_title, heartbeat.url, heartbeat.extra_info
            )
        except (NotFound, TransientWriteFailure) as exc:
            logger.warning("Could not update title of activity %s: %s", self.current_record_id, exc)

    def _start_new(self, heartbeat: Heartbeat, interval_seconds: int, now: datetime) -> None:
        self._project_id = self.matcher.match(heartbeat) if self.matcher is not None else None
        self.current_record = ActivityRecord.from_heartbeat(heartbeat, now, interval_seconds)
        self.current_record_id = None
        self.accumulated_seconds = interval_seconds
        self.last_flush_time = now
        self._insert_pending()

    def _persist(self) -> None:
        if self.current_record_id is None:
            self._insert_pending()
            return
        try:
            self.store.update_duration(self.current_record_id, self.accumulated_seconds)
            self.current_record.duration_seconds = self.accumulated_seconds
        except NotFound:
            logger.warning(
                "Activity %s vanished before flush; re-inserting %ds",
                self.current_record_id, self.accumulated_seconds,
            )
            self.current_record_id = None
            self._insert_pending()
        except TransientWriteFailure:
            logger.warning(
                "Failed to flush %ds for activity %s; will retry",
                self.accumulated_seconds, self.current_record_id, exc_info=True,
            )

    def _insert_pending(self) -> None:
        record = self.current_record
        record.duration_seconds = self.accumulated_seconds
        source = ProjectSource.AUTO_RULE if self._project_id is not None else None
        try:
            try:
                record_id = self.store.insert(record, self._project_id, source)
            except ConstraintViolation:
                logger.warning("Project %s no longer exists; storing activity unassigned", self._project_id)
                self._project_id = None
                record_id = self.store.insert(record)
        except TransientWriteFailure:
            logger.warning("Failed to insert activity for %s; will retry", record.app_name, exc_info=True)
            return

        record.id = record_id
        record.project_id = self._project_id
        record.project_source = source if self._project_id is not None else None
        self.current_record_id = record_id
