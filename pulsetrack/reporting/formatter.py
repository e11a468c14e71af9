"""Text formatter for PulseTrack reports.

Renders day, range, app, timeline, brand and unassigned reports as
aligned plain text, and provides duration/bar-graph utilities.
"""

from datetime import date

from pulsetrack.core.models import (
    AppDetailReport,
    BrandSummary,
    DaySummary,
    RangeReport,
    TimelineEntry,
    UnassignedActivity,
)

RULE = "─" * 50


class TextFormatter:
    """Formats report data as human-readable plain text."""

    @staticmethod
    def format_duration(seconds: int) -> str:
        """Format seconds as '45s', '5m 3s', '5m', '2h 15m' or '2h'.

        Negative values render as '0s'.
        """
        seconds = max(0, int(seconds))
        if seconds < 60:
            return f"{seconds}s"
        if seconds < 3600:
            m, s = divmod(seconds, 60)
            return f"{m}m {s}s" if s else f"{m}m"
        h = seconds // 3600
        m = (seconds % 3600) // 60
        return f"{h}h {m}m" if m else f"{h}h"

    @staticmethod
    def bar(fraction: float, width: int = 30) -> str:
        """A fixed-width bar graph, e.g. '█████░░░░░'."""
        fraction = min(max(fraction, 0.0), 1.0)
        filled = int(fraction * width)
        return "█" * filled + "░" * (width - filled)

    @staticmethod
    def _truncate(text: str, limit: int) -> str:
        return text if len(text) <= limit else text[:limit - 1] + "…"

    # ------------------------------------------------------------------
    # Day / range
    # ------------------------------------------------------------------

    @staticmethod
    def format_day(summary: DaySummary) -> str:
        """Render a day summary: one bar per app with share of the day."""
        lines = [
            f"Activity Report: {summary.date}",
            RULE,
            f"Total tracked: {TextFormatter.format_duration(summary.total_seconds)}",
        ]
        if summary.first_activity and summary.last_activity:
            lines.append(
                f"Active {summary.first_activity}–{summary.last_activity} "
                f"({TextFormatter.format_duration(summary.wall_clock_seconds)} wall clock)"
            )
        lines.append("")

        if not summary.apps:
            lines.append("No activity recorded.")
            return "\n".join(lines) + "\n"

        name_width = max(len(a.app_name) for a in summary.apps)
        for app in summary.apps:
            fraction = app.total_seconds / summary.total_seconds if summary.total_seconds else 0.0
            lines.append(
                f"{app.app_name:<{name_width}}  {TextFormatter.bar(fraction)}  "
                f"{TextFormatter.format_duration(app.total_seconds):>7}  {fraction * 100:5.1f}%"
            )
        return "\n".join(lines) + "\n"

    @staticmethod
    def format_range(report: RangeReport, title: str = "Activity Report") -> str:
        """Render a multi-day report: per-day bars, totals and top apps."""
        start = report.start_date.strftime("%b %d, %Y")
        end = report.end_date.strftime("%b %d, %Y")
        lines = [f"{title}: {start} - {end}", RULE]

        if not report.days:
            lines.append("No activity recorded.")
            return "\n".join(lines) + "\n"

        max_seconds = max(d.total_seconds for d in report.days) or 1
        for day in report.days:
            label = date.fromisoformat(day.date).strftime("%a, %b %d")
            lines.append(
                f"{label:<12}  {TextFormatter.bar(day.total_seconds / max_seconds, 25)}  "
                f"{TextFormatter.format_duration(day.total_seconds):>7}  ({len(day.apps)} apps)"
            )

        lines.append("")
        lines.append(
            f"Total: {TextFormatter.format_duration(report.total_seconds)}  |  "
            f"Daily avg: {TextFormatter.format_duration(report.daily_average_seconds)}"
        )

        if report.apps:
            lines.append("")
            lines.append("Top apps:")
            for entry in report.apps[:10]:
                lines.append(f"  {entry.app_name:<30} {TextFormatter.format_duration(entry.seconds):>7}")

        if report.brands:
            lines.append("")
            lines.append(TextFormatter.format_brands(report.brands).rstrip("\n"))
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # App / timeline
    # ------------------------------------------------------------------

    @staticmethod
    def format_app(report: AppDetailReport) -> str:
        lines = [
            f"App Detail: {report.app_name}",
            RULE,
            f"Total time: {TextFormatter.format_duration(report.total_seconds)}",
            "",
        ]
        if report.days:
            lines.append("Daily Breakdown:")
            max_seconds = max(d.total_seconds for d in report.days) or 1
            for day in report.days[:14]:
                lines.append(
                    f"  {day.date}  {TextFormatter.bar(day.total_seconds / max_seconds, 20)}  "
                    f"{TextFormatter.format_duration(day.total_seconds)}"
                )
            lines.append("")

        if report.top_windows:
            lines.append("Top Windows/Pages:")
            for i, window in enumerate(report.top_windows[:15], start=1):
                lines.append(
                    f"  {i:2d}. {TextFormatter._truncate(window.window_title, 60)}  "
                    f"{TextFormatter.format_duration(window.total_seconds)}"
                )
                if window.url:
                    lines.append(f"      {TextFormatter._truncate(window.url, 70)}")
        elif not report.days:
            lines.append("No activity recorded.")
        return "\n".join(lines) + "\n"

    @staticmethod
    def format_timeline(entries: list[TimelineEntry]) -> str:
        lines = ["Timeline", RULE]
        if not entries:
            lines.append("No activity recorded.")
            return "\n".join(lines) + "\n"

        last_app = None
        for entry in entries:
            if entry.app_name != last_app:
                lines.append("")
                lines.append(f"  {entry.app_name}")
                last_app = entry.app_name
            lines.append(
                f"    {entry.timestamp.strftime('%H:%M:%S')}  "
                f"{TextFormatter._truncate(entry.window_title, 50)}  "
                f"{TextFormatter.format_duration(entry.duration_seconds)}"
            )
            if entry.url:
                lines.append(f"             {TextFormatter._truncate(entry.url, 60)}")
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    @staticmethod
    def format_brands(brands: list[BrandSummary]) -> str:
        """Render brand → project → app rollups as an indented tree."""
        lines = ["Brands & Projects:"]
        if not brands:
            lines.append("  No classified activity.")
            return "\n".join(lines) + "\n"

        for brand in brands:
            lines.append(f"  {brand.brand_name:<28} {TextFormatter.format_duration(brand.total_seconds):>7}")
            for project in brand.projects:
                lines.append(
                    f"    {project.project_name:<26} {TextFormatter.format_duration(project.total_seconds):>7}"
                )
                for entry in project.app_breakdown:
                    lines.append(
                        f"      {entry.app_name:<24} {TextFormatter.format_duration(entry.seconds):>7}"
                    )
        return "\n".join(lines) + "\n"

    @staticmethod
    def format_unassigned(activities: list[UnassignedActivity]) -> str:
        lines = ["Unassigned activity", RULE]
        if not activities:
            lines.append("Everything is classified.")
            return "\n".join(lines) + "\n"

        for activity in activities:
            lines.append(
                f"  #{activity.id:<6} {TextFormatter.format_duration(activity.duration_seconds):>7}  "
                f"{activity.app_name}: {TextFormatter._truncate(activity.window_title, 50)}"
            )
        return "\n".join(lines) + "\n"
