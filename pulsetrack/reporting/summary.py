"""Summary generation for week, month and custom-range reports."""

from datetime import date, timedelta
from typing import Optional

from pulsetrack.core.models import (
    AppBreakdownEntry,
    BrandSummary,
    DaySummary,
    ProjectSummary,
    RangeReport,
)
from pulsetrack.persistence.store import ActivityStore


class SummaryGenerator:
    """Builds multi-day reports on top of the store's day queries.

    Totals come from tracked durations; days without activity are left
    out, and the daily average is taken over active days only.
    """

    def __init__(self, store: ActivityStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def daily_summary(self, target_date: date) -> DaySummary:
        return self.store.query_day(target_date)

    def weekly_summary(self, today: Optional[date] = None) -> RangeReport:
        """Report over the last seven days, *today* included."""
        today = today or date.today()
        return self.range_summary(today - timedelta(days=6), today)

    def monthly_summary(self, year: int, month: int) -> RangeReport:
        first = date(year, month, 1)
        next_month = date(year + month // 12, month % 12 + 1, 1)
        return self.range_summary(first, next_month - timedelta(days=1))

    def range_summary(self, start_date: date, end_date: date) -> RangeReport:
        """Build a report for the inclusive range *start_date*..*end_date*."""
        days = self.store.query_days(start_date, end_date)
        total = sum(d.total_seconds for d in days)

        app_totals: dict[str, int] = {}
        for day in days:
            for app in day.apps:
                app_totals[app.app_name] = app_totals.get(app.app_name, 0) + app.total_seconds

        brands: dict[int, _BrandAccumulator] = {}
        for day in days:
            for brand in self.store.query_day_by_project(day.date):
                acc = brands.setdefault(brand.brand_id, _BrandAccumulator(brand))
                acc.add(brand)

        return RangeReport(
            start_date=start_date,
            end_date=end_date,
            days=days,
            total_seconds=total,
            daily_average_seconds=total // max(len(days), 1),
            apps=sorted(
                (AppBreakdownEntry(app_name=a, seconds=s) for a, s in app_totals.items()),
                key=lambda e: (-e.seconds, e.app_name),
            ),
            brands=sorted(
                (acc.to_summary() for acc in brands.values()),
                key=lambda b: (-b.total_seconds, b.brand_name),
            ),
        )


class _BrandAccumulator:
    """Mutable helper for merging one brand's rollups across days."""

    __slots__ = ("brand_id", "brand_name", "color", "projects", "apps")

    def __init__(self, brand: BrandSummary) -> None:
        self.brand_id = brand.brand_id
        self.brand_name = brand.brand_name
        self.color = brand.color
        self.projects: dict[int, ProjectSummary] = {}
        self.apps: dict[int, dict[str, int]] = {}

    def add(self, brand: BrandSummary) -> None:
        for project in brand.projects:
            merged = self.projects.get(project.project_id)
            if merged is None:
                merged = self.projects[project.project_id] = ProjectSummary(
                    project_id=project.project_id,
                    project_name=project.project_name,
                    brand_id=project.brand_id,
                    brand_name=project.brand_name,
                    color=project.color,
                    total_seconds=0,
                )
            merged.total_seconds += project.total_seconds
            apps = self.apps.setdefault(project.project_id, {})
            for entry in project.app_breakdown:
                apps[entry.app_name] = apps.get(entry.app_name, 0) + entry.seconds

    def to_summary(self) -> BrandSummary:
        projects = []
        for project_id, project in self.projects.items():
            project.app_breakdown = sorted(
                (AppBreakdownEntry(app_name=a, seconds=s) for a, s in self.apps[project_id].items()),
                key=lambda e: (-e.seconds, e.app_name),
            )
            projects.append(project)
        projects.sort(key=lambda p: (-p.total_seconds, p.project_name))
        return BrandSummary(
            brand_id=self.brand_id,
            brand_name=self.brand_name,
            color=self.color,
            total_seconds=sum(p.total_seconds for p in projects),
            projects=projects,
        )
