"""Core data models for PulseTrack.

Defines all dataclasses and enums used across the application:
- Sampling: Heartbeat
- Persistence: ActivityRecord, RawActivity, UnassignedActivity
- Classification: Brand, Project, ProjectRule, RuleType, ProjectSource
- Reporting: WindowDetail, ActivitySummary, DaySummary, DayBreakdown,
  AppDetailReport, AppBreakdownEntry, ProjectSummary, BrandSummary,
  TimelineEntry, RecentApp, DateTotal, RangeReport
- Suggestions: SuggestedRule, DetectedProject, DetectedBrand
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

DEFAULT_COLOR = "#6366f1"


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Heartbeat:
    """A single observation of one logical session at one polling tick."""
    app_name: str
    bundle_id: str
    window_title: str
    url: Optional[str] = None
    extra_info: Optional[str] = None  # e.g. a terminal's working directory


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class ProjectSource(Enum):
    """Provenance of a project assignment."""
    MANUAL = "manual"
    AUTO_RULE = "autoRule"


class RuleType(Enum):
    """What part of an activity a rule pattern is matched against."""
    WINDOW_TITLE = "windowTitle"
    URL_DOMAIN = "urlDomain"
    URL_PATH = "urlPath"
    PAGE_TITLE = "pageTitle"
    FIGMA_FILE = "figmaFile"
    BUNDLE_ID = "bundleId"
    TERMINAL_FOLDER = "terminalFolder"


@dataclass
class Brand:
    id: int
    name: str
    color: str = DEFAULT_COLOR
    sort_order: int = 0
    created_at: Optional[datetime] = None


@dataclass
class Project:
    id: int
    brand_id: int
    name: str
    color: str = DEFAULT_COLOR
    sort_order: int = 0
    created_at: Optional[datetime] = None
    brand_name: str = ""  # populated when loaded joined with its brand


@dataclass
class ProjectRule:
    id: int
    project_id: int
    rule_type: RuleType
    pattern: str
    is_regex: bool = False
    priority: int = 0
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

@dataclass
class ActivityRecord:
    """A persisted span of one logical activity.

    ``date`` is derived from ``timestamp`` (local time) when not supplied.
    """
    id: int
    timestamp: datetime
    app_name: str
    bundle_id: str
    window_title: str
    url: Optional[str] = None
    extra_info: Optional[str] = None
    duration_seconds: int = 0
    date: str = ""
    project_id: Optional[int] = None
    project_source: Optional[ProjectSource] = None

    def __post_init__(self) -> None:
        if not self.date:
            self.date = self.timestamp.strftime("%Y-%m-%d")

    @classmethod
    def from_heartbeat(
        cls, heartbeat: Heartbeat, timestamp: datetime, duration_seconds: int
    ) -> "ActivityRecord":
        return cls(
            id=0,
            timestamp=timestamp,
            app_name=heartbeat.app_name,
            bundle_id=heartbeat.bundle_id,
            window_title=heartbeat.window_title,
            url=heartbeat.url,
            extra_info=heartbeat.extra_info,
            duration_seconds=duration_seconds,
        )


@dataclass(frozen=True)
class RawActivity:
    """Raw fields of an unassigned record, fed to the matcher and detector."""
    id: int
    app_name: str
    bundle_id: str
    window_title: str
    url: Optional[str] = None
    extra_info: Optional[str] = None

    def as_heartbeat(self) -> Heartbeat:
        return Heartbeat(
            app_name=self.app_name,
            bundle_id=self.bundle_id,
            window_title=self.window_title,
            url=self.url,
            extra_info=self.extra_info,
        )


@dataclass
class UnassignedActivity:
    id: int
    app_name: str
    window_title: str
    url: Optional[str]
    extra_info: Optional[str]
    duration_seconds: int


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

@dataclass
class WindowDetail:
    window_title: str
    url: Optional[str]
    extra_info: Optional[str]
    total_seconds: int
    activity_ids: list[int] = field(default_factory=list)


@dataclass
class ActivitySummary:
    """Per-app rollup for one day; windows sorted by total descending."""
    app_name: str
    bundle_id: str
    total_seconds: int
    window_details: list[WindowDetail] = field(default_factory=list)


@dataclass
class DaySummary:
    date: str
    total_seconds: int = 0
    apps: list[ActivitySummary] = field(default_factory=list)
    wall_clock_seconds: int = 0
    active_tracking_seconds: int = 0
    first_activity: Optional[str] = None  # HH:MM
    last_activity: Optional[str] = None   # HH:MM


@dataclass
class DayBreakdown:
    date: str
    total_seconds: int


@dataclass
class AppDetailReport:
    app_name: str
    total_seconds: int
    days: list[DayBreakdown] = field(default_factory=list)
    top_windows: list[WindowDetail] = field(default_factory=list)


@dataclass
class AppBreakdownEntry:
    app_name: str
    seconds: int


@dataclass
class ProjectSummary:
    project_id: int
    project_name: str
    brand_id: int
    brand_name: str
    color: str
    total_seconds: int
    app_breakdown: list[AppBreakdownEntry] = field(default_factory=list)


@dataclass
class BrandSummary:
    brand_id: int
    brand_name: str
    color: str
    total_seconds: int
    projects: list[ProjectSummary] = field(default_factory=list)


@dataclass
class TimelineEntry:
    id: int
    timestamp: datetime
    app_name: str
    window_title: str
    url: Optional[str]
    extra_info: Optional[str]
    duration_seconds: int
    project_id: Optional[int] = None


@dataclass
class RecentApp:
    app_name: str
    seconds: int
    last_seen: datetime


@dataclass
class DateTotal:
    date: str
    total_seconds: int


@dataclass
class RangeReport:
    """Aggregated report over an inclusive date range (week, month, custom)."""
    start_date: date
    end_date: date
    days: list[DaySummary] = field(default_factory=list)  # non-empty days only
    total_seconds: int = 0
    daily_average_seconds: int = 0
    apps: list[AppBreakdownEntry] = field(default_factory=list)
    brands: list[BrandSummary] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SuggestedRule:
    rule_type: RuleType
    pattern: str
    is_regex: bool = False


@dataclass
class DetectedProject:
    suggested_name: str
    full_token: str
    activity_count: int
    apps: list[str] = field(default_factory=list)
    suggested_rules: list[SuggestedRule] = field(default_factory=list)


@dataclass
class DetectedBrand:
    suggested_name: str
    root_token: str
    projects: list[DetectedProject] = field(default_factory=list)
    total_activities: int = 0
    apps: list[str] = field(default_factory=list)


@dataclass
class AcceptResult:
    """Outcome of accepting a suggestion."""
    brand_id: int
    brands_created: int = 0
    projects_created: int = 0
    rules_created: int = 0
    reclassified: int = 0
    project_ids: list[int] = field(default_factory=list)
