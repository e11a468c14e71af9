"""SQLite-backed persistence for activity records and the project taxonomy."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Union

from pulsetrack.core.errors import (
    ConstraintViolation,
    NotFound,
    StorageUnavailable,
    TransientWriteFailure,
)
from pulsetrack.core.models import (
    DEFAULT_COLOR,
    ActivityRecord,
    ActivitySummary,
    AppBreakdownEntry,
    AppDetailReport,
    Brand,
    BrandSummary,
    DateTotal,
    DayBreakdown,
    DaySummary,
    Project,
    ProjectRule,
    ProjectSource,
    ProjectSummary,
    RawActivity,
    RecentApp,
    RuleType,
    SuggestedRule,
    TimelineEntry,
    UnassignedActivity,
    WindowDetail,
)

logger = logging.getLogger(__name__)

DayKey = Union[str, date]

PLACEHOLDER_BRAND_COLOR = "#999"
TOP_WINDOWS_LIMIT = 20

# SQLite's default limit on bound parameters is 999 on older builds.
_ID_CHUNK = 500


def _day_key(day: DayKey) -> str:
    if isinstance(day, date):
        return day.strftime("%Y-%m-%d")
    return day


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


class ActivityStore:
    """Read/write interface to the local SQLite activity log.

    Holds activity records plus the brand → project → rule taxonomy.
    Timestamps are persisted as ISO 8601 text (whole seconds) and the
    local calendar day of each record is kept in its own indexed column.

    All statements run on one connection guarded by a re-entrant lock, so
    concurrent mergers never interleave writes.  The database runs in WAL
    mode so other processes can read while a write is in progress.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._listeners: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Run a block of statements as one serialized transaction."""
        with self._lock:
            conn = self._get_conn()
            try:
                with conn:
                    yield conn
            except sqlite3.IntegrityError as exc:
                raise ConstraintViolation(str(exc)) from exc
            except sqlite3.OperationalError as exc:
                raise TransientWriteFailure(str(exc)) from exc

    def _fetchall(self, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._get_conn().execute(sql, tuple(params)).fetchall()

    def _fetchone(self, sql: str, params: Iterable = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._get_conn().execute(sql, tuple(params)).fetchone()

    # ------------------------------------------------------------------
    # Taxonomy change listeners
    # ------------------------------------------------------------------

    def add_taxonomy_listener(self, callback: Callable[[], None]) -> None:
        """Register *callback* to run after any brand/project/rule mutation."""
        self._listeners.append(callback)

    def _taxonomy_changed(self) -> None:
        for callback in list(self._listeners):
            callback()

    # ------------------------------------------------------------------
    # Schema initialisation
    # ------------------------------------------------------------------

    def init_db(self) -> None:
        """Create tables and indexes, migrating older databases in place.

        Raises :class:`StorageUnavailable` if the database cannot be opened
        or migrated.  Safe to call on every startup.
        """
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                conn = self._get_conn()
                conn.execute("PRAGMA journal_mode = WAL")
                conn.executescript(
                    """\
                    CREATE TABLE IF NOT EXISTS activities (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT NOT NULL,
                        app_name TEXT NOT NULL,
                        bundle_id TEXT NOT NULL,
                        window_title TEXT NOT NULL,
                        url TEXT,
                        extra_info TEXT,
                        duration_seconds INTEGER NOT NULL DEFAULT 0,
                        date TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS brands (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        color TEXT NOT NULL DEFAULT '#6366f1',
                        sort_order INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS projects (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        brand_id INTEGER NOT NULL REFERENCES brands(id),
                        name TEXT NOT NULL,
                        color TEXT NOT NULL DEFAULT '#6366f1',
                        sort_order INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        UNIQUE (brand_id, name)
                    );

                    CREATE TABLE IF NOT EXISTS project_rules (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        project_id INTEGER NOT NULL REFERENCES projects(id),
                        rule_type TEXT NOT NULL,
                        pattern TEXT NOT NULL,
                        is_regex INTEGER NOT NULL DEFAULT 0,
                        priority INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_activities_date
                        ON activities(date);

                    CREATE INDEX IF NOT EXISTS idx_activities_app_name
                        ON activities(app_name);

                    CREATE INDEX IF NOT EXISTS idx_activities_bundle_id
                        ON activities(bundle_id);

                    CREATE INDEX IF NOT EXISTS idx_project_rules_project
                        ON project_rules(project_id);
                    """
                )
                conn.commit()

                # Migrate: classification columns arrived after the first release
                self._migrate_add_column(
                    conn, "activities", "project_id", "INTEGER REFERENCES projects(id)"
                )
                self._migrate_add_column(conn, "activities", "project_source", "TEXT")
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_activities_project_id "
                    "ON activities(project_id)"
                )
                conn.commit()
        except (sqlite3.Error, OSError) as exc:
            raise StorageUnavailable(
                f"Cannot open activity log at {self.db_path}: {exc}"
            ) from exc

    @staticmethod
    def _migrate_add_column(conn, table: str, column: str, col_type: str) -> None:
        """Add a column to a table if it doesn't exist yet."""
        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
        if column in existing:
            return
        logger.info("Migrating %s: adding column %s", table, column)
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
        conn.commit()

    # ------------------------------------------------------------------
    # Activity writes
    # ------------------------------------------------------------------

    def insert(
        self,
        record: ActivityRecord,
        project_id: Optional[int] = None,
        project_source: Optional[ProjectSource] = None,
    ) -> int:
        """Persist a new activity record. Returns the row id.

        The project assignment is only stored when both *project_id* and
        *project_source* are given.
        """
        if project_id is None or project_source is None:
            project_id, project_source = None, None
        with self._write() as conn:
            cursor = conn.execute(
                """\
                INSERT INTO activities
                    (timestamp, app_name, bundle_id, window_title, url, extra_info,
                     duration_seconds, date, project_id, project_source)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _ts(record.timestamp),
                    record.app_name,
                    record.bundle_id,
                    record.window_title,
                    record.url,
                    record.extra_info,
                    max(0, int(record.duration_seconds)),
                    record.date,
                    project_id,
                    project_source.value if project_source else None,
                ),
            )
        return cursor.lastrowid  # type: ignore[return-value]

    def update_duration(self, record_id: int, seconds: int) -> None:
        with self._write() as conn:
            cur = conn.execute(
                "UPDATE activities SET duration_seconds = ? WHERE id = ?",
                (max(0, int(seconds)), record_id),
            )
            if cur.rowcount == 0:
                raise NotFound(f"No activity found for id={record_id}")

    def update_window_title(
        self,
        record_id: int,
        title: str,
        url: Optional[str] = None,
        extra_info: Optional[str] = None,
    ) -> None:
        with self._write() as conn:
            cur = conn.execute(
                "UPDATE activities SET window_title = ?, url = ?, extra_info = ? WHERE id = ?",
                (title, url, extra_info, record_id),
            )
            if cur.rowcount == 0:
                raise NotFound(f"No activity found for id={record_id}")

    def get_activity_by_id(self, record_id: int) -> Optional[ActivityRecord]:
        """Return a single activity record by primary key, or ``None``."""
        row = self._fetchone("SELECT * FROM activities WHERE id = ?", (record_id,))
        if row is None:
            return None
        return self._row_to_activity(row)

    # ------------------------------------------------------------------
    # Brands
    # ------------------------------------------------------------------

    def insert_brand(self, name: str, color: str = DEFAULT_COLOR) -> int:
        try:
            with self._write() as conn:
                (count,) = conn.execute("SELECT COUNT(*) FROM brands").fetchone()
                cursor = conn.execute(
                    "INSERT INTO brands (name, color, sort_order, created_at) VALUES (?, ?, ?, ?)",
                    (name, color, count, _ts(datetime.now())),
                )
        except ConstraintViolation as exc:
            raise ConstraintViolation(f"Brand {name!r} already exists") from exc
        self._taxonomy_changed()
        return cursor.lastrowid  # type: ignore[return-value]

    def get_brand(self, brand_id: int) -> Optional[Brand]:
        row = self._fetchone("SELECT * FROM brands WHERE id = ?", (brand_id,))
        return self._row_to_brand(row) if row is not None else None

    def find_brand_by_name(self, name: str) -> Optional[Brand]:
        row = self._fetchone("SELECT * FROM brands WHERE name = ?", (name,))
        return self._row_to_brand(row) if row is not None else None

    def all_brands(self) -> list[Brand]:
        rows = self._fetchall("SELECT * FROM brands ORDER BY sort_order, id")
        return [self._row_to_brand(r) for r in rows]

    def update_brand(
        self, brand_id: int, name: Optional[str] = None, color: Optional[str] = None
    ) -> None:
        fields: list[str] = []
        params: list[object] = []
        if name is not None:
            fields.append("name = ?")
            params.append(name)
        if color is not None:
            fields.append("color = ?")
            params.append(color)

        if not fields:
            if self.get_brand(brand_id) is None:
                raise NotFound(f"No brand found for id={brand_id}")
            return

        params.append(brand_id)
        try:
            with self._write() as conn:
                cur = conn.execute(
                    f"UPDATE brands SET {', '.join(fields)} WHERE id = ?", params
                )
                if cur.rowcount == 0:
                    raise NotFound(f"No brand found for id={brand_id}")
        except ConstraintViolation as exc:
            raise ConstraintViolation(f"Brand {name!r} already exists") from exc
        self._taxonomy_changed()

    def delete_brand(self, brand_id: int) -> None:
        """Delete a brand with its projects and rules, unassigning activities."""
        with self._write() as conn:
            if conn.execute("SELECT 1 FROM brands WHERE id = ?", (brand_id,)).fetchone() is None:
                raise NotFound(f"No brand found for id={brand_id}")
            brand_projects = "SELECT id FROM projects WHERE brand_id = ?"
            conn.execute(
                f"DELETE FROM project_rules WHERE project_id IN ({brand_projects})",
                (brand_id,),
            )
            conn.execute(
                f"""\
                UPDATE activities SET project_id = NULL, project_source = NULL
                WHERE project_id IN ({brand_projects})
                """,
                (brand_id,),
            )
            conn.execute("DELETE FROM projects WHERE brand_id = ?", (brand_id,))
            conn.execute("DELETE FROM brands WHERE id = ?", (brand_id,))
        logger.info("Deleted brand %d", brand_id)
        self._taxonomy_changed()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def _insert_project_row(
        self, conn: sqlite3.Connection, brand_id: int, name: str, color: str
    ) -> int:
        if conn.execute("SELECT 1 FROM brands WHERE id = ?", (brand_id,)).fetchone() is None:
            raise NotFound(f"No brand found for id={brand_id}")
        if conn.execute(
            "SELECT 1 FROM projects WHERE brand_id = ? AND name = ?", (brand_id, name)
        ).fetchone() is not None:
            raise ConstraintViolation(f"Project {name!r} already exists in brand {brand_id}")
        (count,) = conn.execute(
            "SELECT COUNT(*) FROM projects WHERE brand_id = ?", (brand_id,)
        ).fetchone()
        cursor = conn.execute(
            "INSERT INTO projects (brand_id, name, color, sort_order, created_at) VALUES (?, ?, ?, ?, ?)",
            (brand_id, name, color, count, _ts(datetime.now())),
        )
        return cursor.lastrowid  # type: ignore[return-value]

    def insert_project(self, brand_id: int, name: str, color: str = DEFAULT_COLOR) -> int:
        with self._write() as conn:
            project_id = self._insert_project_row(conn, brand_id, name, color)
        self._taxonomy_changed()
        return project_id

    def create_project_with_rules(
        self,
        brand_id: int,
        name: str,
        rules: Iterable[SuggestedRule],
        color: str = DEFAULT_COLOR,
    ) -> tuple[int, list[int]]:
        """Create a project and its rules in one transaction."""
        rule_ids: list[int] = []
        with self._write() as conn:
            project_id = self._insert_project_row(conn, brand_id, name, color)
            for rule in rules:
                rule_ids.append(
                    self._insert_rule_row(
                        conn, project_id, rule.rule_type, rule.pattern, rule.is_regex, 0
                    )
                )
        self._taxonomy_changed()
        return project_id, rule_ids

    def get_project(self, project_id: int) -> Optional[Project]:
        row = self._fetchone(
            """\
            SELECT p.*, COALESCE(b.name, '') AS brand_name
            FROM projects p LEFT JOIN brands b ON b.id = p.brand_id
            WHERE p.id = ?
            """,
            (project_id,),
        )
        return self._row_to_project(row) if row is not None else None

    def all_projects(self, brand_id: Optional[int] = None) -> list[Project]:
        """Return projects (joined with their brand name), in display order."""
        sql = """\
            SELECT p.*, COALESCE(b.name, '') AS brand_name
            FROM projects p LEFT JOIN brands b ON b.id = p.brand_id
        """
        params: tuple = ()
        if brand_id is not None:
            sql += " WHERE p.brand_id = ?"
            params = (brand_id,)
        sql += " ORDER BY p.sort_order, p.id"
        return [self._row_to_project(r) for r in self._fetchall(sql, params)]

    def update_project(
        self,
        project_id: int,
        name: Optional[str] = None,
        color: Optional[str] = None,
        brand_id: Optional[int] = None,
    ) -> None:
        fields: list[str] = []
        params: list[object] = []
        if name is not None:
            fields.append("name = ?")
            params.append(name)
        if color is not None:
            fields.append("color = ?")
            params.append(color)
        if brand_id is not None:
            if self.get_brand(brand_id) is None:
                raise NotFound(f"No brand found for id={brand_id}")
            fields.append("brand_id = ?")
            params.append(brand_id)

        if not fields:
            if self.get_project(project_id) is None:
                raise NotFound(f"No project found for id={project_id}")
            return

        params.append(project_id)
        with self._write() as conn:
            cur = conn.execute(
                f"UPDATE projects SET {', '.join(fields)} WHERE id = ?", params
            )
            if cur.rowcount == 0:
                raise NotFound(f"No project found for id={project_id}")
        self._taxonomy_changed()

    def delete_project(self, project_id: int) -> None:
        """Delete a project and its rules, unassigning its activities."""
        with self._write() as conn:
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                raise NotFound(f"No project found for id={project_id}")
            conn.execute("DELETE FROM project_rules WHERE project_id = ?", (project_id,))
            conn.execute(
                "UPDATE activities SET project_id = NULL, project_source = NULL WHERE project_id = ?",
                (project_id,),
            )
            conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        logger.info("Deleted project %d", project_id)
        self._taxonomy_changed()

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_rule_row(
        conn: sqlite3.Connection,
        project_id: int,
        rule_type: RuleType,
        pattern: str,
        is_regex: bool,
        priority: int,
    ) -> int:
        cursor = conn.execute(
            """\
            INSERT INTO project_rules
                (project_id, rule_type, pattern, is_regex, priority, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                project_id,
                RuleType(rule_type).value,
                pattern,
                1 if is_regex else 0,
                int(priority),
                _ts(datetime.now()),
            ),
        )
        return cursor.lastrowid  # type: ignore[return-value]

    def insert_rule(
        self,
        project_id: int,
        rule_type: RuleType,
        pattern: str,
        is_regex: bool = False,
        priority: int = 0,
    ) -> int:
        with self._write() as conn:
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                raise NotFound(f"No project found for id={project_id}")
            rule_id = self._insert_rule_row(conn, project_id, rule_type, pattern, is_regex, priority)
        self._taxonomy_changed()
        return rule_id

    def get_rule(self, rule_id: int) -> Optional[ProjectRule]:
        row = self._fetchone("SELECT * FROM project_rules WHERE id = ?", (rule_id,))
        return self._row_to_rule(row) if row is not None else None

    def load_all_project_rules(self) -> list[ProjectRule]:
        """Return every rule in match order: priority descending, then id."""
        rows = self._fetchall(
            "SELECT * FROM project_rules ORDER BY priority DESC, id ASC"
        )
        return [self._row_to_rule(r) for r in rows]

    def update_rule(
        self,
        rule_id: int,
        rule_type: Optional[RuleType] = None,
        pattern: Optional[str] = None,
        is_regex: Optional[bool] = None,
        priority: Optional[int] = None,
    ) -> None:
        fields: list[str] = []
        params: list[object] = []
        if rule_type is not None:
            fields.append("rule_type = ?")
            params.append(RuleType(rule_type).value)
        if pattern is not None:
            fields.append("pattern = ?")
            params.append(pattern)
        if is_regex is not None:
            fields.append("is_regex = ?")
            params.append(1 if is_regex else 0)
        if priority is not None:
            fields.append("priority = ?")
            params.append(int(priority))

        if not fields:
            if self.get_rule(rule_id) is None:
                raise NotFound(f"No rule found for id={rule_id}")
            return

        params.append(rule_id)
        with self._write() as conn:
            cur = conn.execute(
                f"UPDATE project_rules SET {', '.join(fields)} WHERE id = ?", params
            )
            if cur.rowcount == 0:
                raise NotFound(f"No rule found for id={rule_id}")
        self._taxonomy_changed()

    def delete_rule(self, rule_id: int) -> None:
        with self._write() as conn:
            cur = conn.execute("DELETE FROM project_rules WHERE id = ?", (rule_id,))
            if cur.rowcount == 0:
                raise NotFound(f"No rule found for id={rule_id}")
        self._taxonomy_changed()

    # ------------------------------------------------------------------
    # Project assignment
    # ------------------------------------------------------------------

    def update_project_assignment(
        self, activity_id: int, project_id: int, source: ProjectSource
    ) -> None:
        with self._write() as conn:
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                raise NotFound(f"No project found for id={project_id}")
            cur = conn.execute(
                "UPDATE activities SET project_id = ?, project_source = ? WHERE id = ?",
                (project_id, ProjectSource(source).value, activity_id),
            )
            if cur.rowcount == 0:
                raise NotFound(f"No activity found for id={activity_id}")

    def bulk_update_project_assignment(
        self, activity_ids: Iterable[int], project_id: int, source: ProjectSource
    ) -> int:
        """Assign every id in *activity_ids* to *project_id* atomically.

        Returns the number of records updated.
        """
        ids = list(dict.fromkeys(activity_ids))
        if not ids:
            return 0
        updated = 0
        with self._write() as conn:
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                raise NotFound(f"No project found for id={project_id}")
            for start in range(0, len(ids), _ID_CHUNK):
                chunk = ids[start:start + _ID_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                cur = conn.execute(
                    f"UPDATE activities SET project_id = ?, project_source = ? WHERE id IN ({placeholders})",
                    (project_id, ProjectSource(source).value, *chunk),
                )
                updated += cur.rowcount
        return updated

    def clear_project_assignment(self, activity_ids: Iterable[int]) -> int:
        ids = list(dict.fromkeys(activity_ids))
        if not ids:
            return 0
        updated = 0
        with self._write() as conn:
            for start in range(0, len(ids), _ID_CHUNK):
                chunk = ids[start:start + _ID_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                cur = conn.execute(
                    f"UPDATE activities SET project_id = NULL, project_source = NULL WHERE id IN ({placeholders})",
                    chunk,
                )
                updated += cur.rowcount
        return updated

    # ------------------------------------------------------------------
    # Day / range queries
    # ------------------------------------------------------------------

    def query_day(self, day: DayKey) -> DaySummary:
        """Group one day's records by app, then by (window title, extra info).

        Output ordering is always produced by an explicit sort: apps and
        windows by total seconds descending, ties by name.
        """
        key = _day_key(day)
        rows = self._fetchall(
            "SELECT * FROM activities WHERE date = ? ORDER BY timestamp, id", (key,)
        )

        apps: dict[str, _AppAccumulator] = {}
        first: Optional[datetime] = None
        last: Optional[datetime] = None

        for row in rows:
            duration = row["duration_seconds"]
            started = datetime.fromisoformat(row["timestamp"])
            ended = started + timedelta(seconds=duration)
            if first is None or started < first:
                first = started
            if last is None or ended > last:
                last = ended

            acc = apps.get(row["app_name"])
            if acc is None:
                acc = apps[row["app_name"]] = _AppAccumulator(row["bundle_id"])
            acc.add(row["window_title"], row["extra_info"], row["url"], duration, row["id"])

        summaries = sorted(
            (acc.to_summary(app_name) for app_name, acc in apps.items()),
            key=lambda a: (-a.total_seconds, a.app_name),
        )
        total = sum(a.total_seconds for a in summaries)

        summary = DaySummary(
            date=key,
            total_seconds=total,
            apps=summaries,
            active_tracking_seconds=total,
        )
        if first is not None and last is not None:
            summary.wall_clock_seconds = int((last - first).total_seconds())
            summary.first_activity = first.strftime("%H:%M")
            summary.last_activity = last.strftime("%H:%M")
        return summary

    def query_days(self, start: DayKey, end: DayKey) -> list[DaySummary]:
        """Return summaries for every non-empty day in [start, end]."""
        current = date.fromisoformat(_day_key(start))
        last = date.fromisoformat(_day_key(end))
        summaries: list[DaySummary] = []
        while current <= last:
            summary = self.query_day(current)
            if summary.total_seconds > 0:
                summaries.append(summary)
            current += timedelta(days=1)
        return summaries

    def query_week(self, today: Optional[date] = None) -> list[DaySummary]:
        """Return non-empty summaries for the last seven days, oldest first."""
        today = today or date.today()
        return self.query_days(today - timedelta(days=6), today)

    def query_month(self, year: int, month: int) -> list[DaySummary]:
        first = date(year, month, 1)
        next_month = date(year + month // 12, month % 12 + 1, 1)
        return self.query_days(first, next_month - timedelta(days=1))

    def query_timeline(self, day: DayKey) -> list[TimelineEntry]:
        rows = self._fetchall(
            "SELECT * FROM activities WHERE date = ? ORDER BY timestamp, id",
            (_day_key(day),),
        )
        return [
            TimelineEntry(
                id=r["id"],
                timestamp=datetime.fromisoformat(r["timestamp"]),
                app_name=r["app_name"],
                window_title=r["window_title"],
                url=r["url"],
                extra_info=r["extra_info"],
                duration_seconds=r["duration_seconds"],
                project_id=r["project_id"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # App queries
    # ------------------------------------------------------------------

    def query_app(self, app_name: str) -> AppDetailReport:
        """Aggregate every record whose app name contains *app_name*."""
        needle = app_name.casefold()
        names = [
            r["app_name"]
            for r in self._fetchall("SELECT DISTINCT app_name FROM activities")
            if needle in r["app_name"].casefold()
        ]
        report = AppDetailReport(app_name=app_name, total_seconds=0)
        if not names:
            return report

        placeholders = ",".join("?" * len(names))
        rows = self._fetchall(
            f"SELECT * FROM activities WHERE app_name IN ({placeholders}) ORDER BY timestamp, id",
            names,
        )

        day_totals: dict[str, int] = {}
        windows: dict[str, WindowDetail] = {}
        for row in rows:
            duration = row["duration_seconds"]
            report.total_seconds += duration
            day_totals[row["date"]] = day_totals.get(row["date"], 0) + duration

            window = windows.get(row["window_title"])
            if window is None:
                window = windows[row["window_title"]] = WindowDetail(
                    window_title=row["window_title"],
                    url=row["url"],
                    extra_info=row["extra_info"],
                    total_seconds=0,
                )
            window.total_seconds += duration
            if window.url is None:
                window.url = row["url"]
            if window.extra_info is None:
                window.extra_info = row["extra_info"]
            window.activity_ids.append(row["id"])

        report.days = sorted(
            (DayBreakdown(date=d, total_seconds=s) for d, s in day_totals.items()),
            key=lambda d: d.date,
            reverse=True,
        )
        report.top_windows = sorted(
            windows.values(), key=lambda w: (-w.total_seconds, w.window_title)
        )[:TOP_WINDOWS_LIMIT]
        return report

    def query_today_total_seconds(self, today: Optional[date] = None) -> int:
        return self.query_day(today or date.today()).total_seconds

    def query_today_top_apps(
        self, limit: int = 5, today: Optional[date] = None
    ) -> list[AppBreakdownEntry]:
        summary = self.query_day(today or date.today())
        return [
            AppBreakdownEntry(app_name=a.app_name, seconds=a.total_seconds)
            for a in summary.apps[:limit]
        ]

    def query_recent_apps(
        self,
        last_minutes: int = 60,
        min_seconds: int = 60,
        limit: int = 7,
        now: Optional[datetime] = None,
    ) -> list[RecentApp]:
        """Apps active in the trailing window, most recently seen first."""
        cutoff = (now or datetime.now()) - timedelta(minutes=last_minutes)
        rows = self._fetchall(
            """\
            SELECT app_name, SUM(duration_seconds) AS total, MAX(timestamp) AS last_seen
            FROM activities
            WHERE timestamp >= ?
            GROUP BY app_name
            ORDER BY last_seen DESC, app_name
            """,
            (_ts(cutoff),),
        )
        result = [
            RecentApp(
                app_name=r["app_name"],
                seconds=r["total"],
                last_seen=datetime.fromisoformat(r["last_seen"]),
            )
            for r in rows
            if r["total"] is not None and r["total"] >= min_seconds
        ]
        return result[:limit]

    def query_recent_dates(self, limit: int = 14) -> list[DateTotal]:
        rows = self._fetchall(
            """\
            SELECT date, SUM(duration_seconds) AS total
            FROM activities
            GROUP BY date
            ORDER BY date DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [
            DateTotal(date=r["date"], total_seconds=r["total"])
            for r in rows
            if r["total"]
        ]

    # ------------------------------------------------------------------
    # Project queries
    # ------------------------------------------------------------------

    def query_day_by_project(self, day: DayKey) -> list[BrandSummary]:
        """Roll up one day's assigned records into brand → project → app."""
        rows = self._fetchall(
            """\
            SELECT project_id, app_name, duration_seconds FROM activities
            WHERE date = ? AND project_id IS NOT NULL
            """,
            (_day_key(day),),
        )
        totals: dict[int, int] = {}
        per_app: dict[int, dict[str, int]] = {}
        for row in rows:
            pid = row["project_id"]
            totals[pid] = totals.get(pid, 0) + row["duration_seconds"]
            apps = per_app.setdefault(pid, {})
            apps[row["app_name"]] = apps.get(row["app_name"], 0) + row["duration_seconds"]

        brands = {b.id: b for b in self.all_brands()}
        grouped: dict[int, list[ProjectSummary]] = {}
        for project in self.all_projects():
            if project.id not in totals:
                continue
            if project.brand_id not in brands:
                brands[project.brand_id] = Brand(
                    id=project.brand_id,
                    name=project.brand_name or "Unknown",
                    color=PLACEHOLDER_BRAND_COLOR,
                    sort_order=999,
                )
            breakdown = sorted(
                (AppBreakdownEntry(app_name=a, seconds=s) for a, s in per_app[project.id].items()),
                key=lambda e: (-e.seconds, e.app_name),
            )
            grouped.setdefault(project.brand_id, []).append(
                ProjectSummary(
                    project_id=project.id,
                    project_name=project.name,
                    brand_id=project.brand_id,
                    brand_name=brands[project.brand_id].name,
                    color=project.color,
                    total_seconds=totals[project.id],
                    app_breakdown=breakdown,
                )
            )

        result = [
            BrandSummary(
                brand_id=brand_id,
                brand_name=brands[brand_id].name,
                color=brands[brand_id].color,
                total_seconds=sum(p.total_seconds for p in projects),
                projects=sorted(projects, key=lambda p: (-p.total_seconds, p.project_name)),
            )
            for brand_id, projects in grouped.items()
        ]
        result.sort(key=lambda b: (-b.total_seconds, b.brand_name))
        return result

    def query_unassigned_activities(
        self, day: DayKey, min_seconds: int = 10
    ) -> list[UnassignedActivity]:
        rows = self._fetchall(
            """\
            SELECT * FROM activities
            WHERE date = ? AND project_id IS NULL AND duration_seconds >= ?
            ORDER BY duration_seconds DESC, id
            """,
            (_day_key(day), min_seconds),
        )
        return [
            UnassignedActivity(
                id=r["id"],
                app_name=r["app_name"],
                window_title=r["window_title"],
                url=r["url"],
                extra_info=r["extra_info"],
                duration_seconds=r["duration_seconds"],
            )
            for r in rows
        ]

    def query_unassigned_raw(self, day: Optional[DayKey] = None) -> list[RawActivity]:
        """Raw fields of every unassigned record, optionally for one day."""
        sql = "SELECT * FROM activities WHERE project_id IS NULL"
        params: tuple = ()
        if day is not None:
            sql += " AND date = ?"
            params = (_day_key(day),)
        sql += " ORDER BY id"
        return [
            RawActivity(
                id=r["id"],
                app_name=r["app_name"],
                bundle_id=r["bundle_id"],
                window_title=r["window_title"],
                url=r["url"],
                extra_info=r["extra_info"],
            )
            for r in self._fetchall(sql, params)
        ]

    # ------------------------------------------------------------------
    # Row mapping helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_activity(row: sqlite3.Row) -> ActivityRecord:
        source = row["project_source"]
        return ActivityRecord(
            id=row["id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            app_name=row["app_name"],
            bundle_id=row["bundle_id"],
            window_title=row["window_title"],
            url=row["url"],
            extra_info=row["extra_info"],
            duration_seconds=row["duration_seconds"],
            date=row["date"],
            project_id=row["project_id"],
            project_source=ProjectSource(source) if source else None,
        )

    @staticmethod
    def _row_to_brand(row: sqlite3.Row) -> Brand:
        return Brand(
            id=row["id"],
            name=row["name"],
            color=row["color"],
            sort_order=row["sort_order"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        return Project(
            id=row["id"],
            brand_id=row["brand_id"],
            name=row["name"],
            color=row["color"],
            sort_order=row["sort_order"],
            created_at=datetime.fromisoformat(row["created_at"]),
            brand_name=row["brand_name"] if "brand_name" in row.keys() else "",
        )

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> ProjectRule:
        try:
            rule_type = RuleType(row["rule_type"])
        except ValueError:
            logger.warning(
                "Rule %d has unknown type %r; treating as windowTitle",
                row["id"], row["rule_type"],
            )
            rule_type = RuleType.WINDOW_TITLE
        return ProjectRule(
            id=row["id"],
            project_id=row["project_id"],
            rule_type=rule_type,
            pattern=row["pattern"],
            is_regex=bool(row["is_regex"]),
            priority=row["priority"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class _AppAccumulator:
    """Mutable helper for grouping one app's records by window."""

    __slots__ = ("bundle_id", "total_seconds", "windows")

    def __init__(self, bundle_id: str) -> None:
        self.bundle_id = bundle_id
        self.total_seconds = 0
        self.windows: dict[tuple[str, Optional[str]], WindowDetail] = {}

    def add(
        self,
        title: str,
        extra_info: Optional[str],
        url: Optional[str],
        seconds: int,
        activity_id: int,
    ) -> None:
        self.total_seconds += seconds
        key = (title, extra_info)
        window = self.windows.get(key)
        if window is None:
            window = self.windows[key] = WindowDetail(
                window_title=title, url=url, extra_info=extra_info, total_seconds=0
            )
        window.total_seconds += seconds
        if window.url is None:
            window.url = url
        window.activity_ids.append(activity_id)

    def to_summary(self, app_name: str) -> ActivitySummary:
        windows = sorted(
            self.windows.values(),
            key=lambda w: (-w.total_seconds, w.window_title, w.extra_info or ""),
        )
        return ActivitySummary(
            app_name=app_name,
            bundle_id=self.bundle_id,
            total_seconds=self.total_seconds,
            window_details=windows,
        )
