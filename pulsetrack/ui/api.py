"""Transport-independent JSON API for PulseTrack.

Every route is a plain function of an :class:`ApiRequest` returning a
JSON-serializable value.  :meth:`PulseApi.handle` maps errors to a
structured payload::

    {"error": {"kind": "NotFound", "message": "No brand found for id=7"}}

with status 400 (BadRequest), 404 (NotFound), 409 (ConstraintViolation),
422 (InvalidPattern) or 500.  The Flask adapter in :mod:`pulsetrack.ui.web`
only handles wire encoding.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional

from pulsetrack.core.errors import (
    BadRequest,
    ConstraintViolation,
    InvalidPattern,
    NotFound,
    PulseTrackError,
)
from pulsetrack.core.matcher import ProjectMatcher, validate_rule_pattern
from pulsetrack.core.models import (
    DEFAULT_COLOR,
    AcceptResult,
    ActivitySummary,
    AppBreakdownEntry,
    AppDetailReport,
    BrandSummary,
    DaySummary,
    DetectedBrand,
    DetectedProject,
    ProjectRule,
    ProjectSource,
    RangeReport,
    RuleType,
    SuggestedRule,
    TimelineEntry,
    UnassignedActivity,
    WindowDetail,
)
from pulsetrack.core.suggestions import SuggestionService
from pulsetrack.persistence.store import ActivityStore
from pulsetrack.reporting.summary import SummaryGenerator

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    BadRequest: 400,
    NotFound: 404,
    ConstraintViolation: 409,
    InvalidPattern: 422,
}


@dataclass
class ApiRequest:
    method: str
    path: str
    query: dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass
class ApiResponse:
    status: int
    body: Any


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------

def window_json(w: WindowDetail) -> dict:
    return {
        "windowTitle": w.window_title,
        "url": w.url,
        "extraInfo": w.extra_info,
        "totalSeconds": w.total_seconds,
        "activityIds": w.activity_ids,
    }


def app_summary_json(a: ActivitySummary) -> dict:
    return {
        "appName": a.app_name,
        "bundleId": a.bundle_id,
        "totalSeconds": a.total_seconds,
        "windowDetails": [window_json(w) for w in a.window_details],
    }


def day_json(s: DaySummary) -> dict:
    return {
        "date": s.date,
        "totalSeconds": s.total_seconds,
        "apps": [app_summary_json(a) for a in s.apps],
        "wallClockSeconds": s.wall_clock_seconds,
        "activeTrackingSeconds": s.active_tracking_seconds,
        "firstActivity": s.first_activity,
        "lastActivity": s.last_activity,
    }


def breakdown_json(e: AppBreakdownEntry) -> dict:
    return {"appName": e.app_name, "seconds": e.seconds}


def brand_summary_json(b: BrandSummary) -> dict:
    return {
        "brandId": b.brand_id,
        "brandName": b.brand_name,
        "color": b.color,
        "totalSeconds": b.total_seconds,
        "projects": [
            {
                "projectId": p.project_id,
                "projectName": p.project_name,
                "brandId": p.brand_id,
                "brandName": p.brand_name,
                "color": p.color,
                "totalSeconds": p.total_seconds,
                "appBreakdown": [breakdown_json(e) for e in p.app_breakdown],
            }
            for p in b.projects
        ],
    }


def range_json(r: RangeReport) -> dict:
    return {
        "startDate": r.start_date.isoformat(),
        "endDate": r.end_date.isoformat(),
        "days": [day_json(d) for d in r.days],
        "totalSeconds": r.total_seconds,
        "dailyAverageSeconds": r.daily_average_seconds,
        "apps": [breakdown_json(e) for e in r.apps],
        "brands": [brand_summary_json(b) for b in r.brands],
    }


def app_report_json(r: AppDetailReport) -> dict:
    return {
        "appName": r.app_name,
        "totalSeconds": r.total_seconds,
        "days": [{"date": d.date, "totalSeconds": d.total_seconds} for d in r.days],
        "topWindows": [window_json(w) for w in r.top_windows],
    }


def timeline_json(e: TimelineEntry) -> dict:
    return {
        "id": e.id,
        "timestamp": e.timestamp.isoformat(),
        "appName": e.app_name,
        "windowTitle": e.window_title,
        "url": e.url,
        "extraInfo": e.extra_info,
        "durationSeconds": e.duration_seconds,
        "projectId": e.project_id,
    }


def unassigned_json(a: UnassignedActivity) -> dict:
    return {
        "id": a.id,
        "appName": a.app_name,
        "windowTitle": a.window_title,
        "url": a.url,
        "extraInfo": a.extra_info,
        "durationSeconds": a.duration_seconds,
    }


def rule_json(rule: ProjectRule, project_label: str = "") -> dict:
    return {
        "id": rule.id,
        "projectId": rule.project_id,
        "projectLabel": project_label,
        "ruleType": rule.rule_type.value,
        "pattern": rule.pattern,
        "isRegex": rule.is_regex,
        "priority": rule.priority,
    }


def suggested_rule_json(rule: SuggestedRule) -> dict:
    return {"ruleType": rule.rule_type.value, "pattern": rule.pattern, "isRegex": rule.is_regex}


def detected_brand_json(b: DetectedBrand) -> dict:
    return {
        "suggestedName": b.suggested_name,
        "rootToken": b.root_token,
        "totalActivities": b.total_activities,
        "apps": b.apps,
        "projects": [
            {
                "suggestedName": p.suggested_name,
                "fullToken": p.full_token,
                "activityCount": p.activity_count,
                "apps": p.apps,
                "suggestedRules": [suggested_rule_json(r) for r in p.suggested_rules],
            }
            for p in b.projects
        ],
    }


def accept_result_json(r: AcceptResult) -> dict:
    return {
        "brandId": r.brand_id,
        "brandsCreated": r.brands_created,
        "projectsCreated": r.projects_created,
        "rulesCreated": r.rules_created,
        "reclassified": r.reclassified,
        "projectIds": r.project_ids,
    }


# ---------------------------------------------------------------------------
# Request parsing helpers
# ---------------------------------------------------------------------------

def _body(request: ApiRequest) -> dict:
    if not isinstance(request.body, dict):
        raise BadRequest("Request body must be a JSON object")
    return request.body


def _require(data: dict, key: str, kind: type = str) -> Any:
    value = data.get(key)
    if value is None or (kind is str and not str(value).strip()):
        raise BadRequest(f"{key} is required")
    return _coerce(key, value, kind)


def _optional(data: dict, key: str, kind: type = str) -> Any:
    value = data.get(key)
    if value is None:
        return None
    return _coerce(key, value, kind)


def _coerce(key: str, value: Any, kind: type) -> Any:
    if kind is bool:
        if isinstance(value, bool):
            return value
        raise BadRequest(f"{key} must be a boolean")
    if kind is int:
        if isinstance(value, bool):
            raise BadRequest(f"{key} must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise BadRequest(f"{key} must be an integer") from None
    if not isinstance(value, str):
        raise BadRequest(f"{key} must be a string")
    return value


def _rule_type(value: Any) -> RuleType:
    try:
        return RuleType(value)
    except ValueError:
        valid = ", ".join(t.value for t in RuleType)
        raise BadRequest(f"Unknown ruleType {value!r}; expected one of {valid}") from None


def _date(request: ApiRequest, key: str = "date") -> date:
    value = request.query.get(key)
    if not value:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise BadRequest(f"{key} must be YYYY-MM-DD") from None


def _int_query(request: ApiRequest, key: str, default: int) -> int:
    value = request.query.get(key)
    if value is None or value == "":
        return default
    return _coerce(key, value, int)


# ---------------------------------------------------------------------------
# Route table
# ---------------------------------------------------------------------------

class PulseApi:
    """Route table mapping ``(method, path)`` to handler functions."""

    def __init__(
        self,
        store: ActivityStore,
        matcher: ProjectMatcher,
        suggestions: Optional[SuggestionService] = None,
        summary: Optional[SummaryGenerator] = None,
        tracker=None,
        config: Optional[dict] = None,
    ) -> None:
        self.store = store
        self.matcher = matcher
        self.suggestions = suggestions or SuggestionService(store, matcher)
        self.summary = summary or SummaryGenerator(store)
        self.tracker = tracker
        self.config = config or {}
        self.routes: dict[tuple[str, str], Callable[[ApiRequest], Any]] = {
            ("GET", "/api/projects"): self.list_projects,
            ("POST", "/api/brand"): self.create_brand,
            ("POST", "/api/brand/update"): self.update_brand,
            ("POST", "/api/brand/delete"): self.delete_brand,
            ("POST", "/api/project"): self.create_project,
            ("POST", "/api/project/update"): self.update_project,
            ("POST", "/api/project/delete"): self.delete_project,
            ("GET", "/api/rules"): self.list_rules,
            ("GET", "/api/rules/invalid"): self.list_invalid_rules,
            ("POST", "/api/rule"): self.create_rule,
            ("POST", "/api/rule/update"): self.update_rule,
            ("POST", "/api/rule/delete"): self.delete_rule,
            ("POST", "/api/rule/validate"): self.validate_rule,
            ("POST", "/api/classify"): self.classify,
            ("POST", "/api/auto-assign"): self.auto_assign,
            ("GET", "/api/report/day"): self.report_day,
            ("GET", "/api/report/week"): self.report_week,
            ("GET", "/api/report/month"): self.report_month,
            ("GET", "/api/report/range"): self.report_range,
            ("GET", "/api/report/app"): self.report_app,
            ("GET", "/api/report/brands"): self.report_brands,
            ("GET", "/api/report/timeline"): self.report_timeline,
            ("GET", "/api/report/unassigned"): self.report_unassigned,
            ("GET", "/api/report/recent-dates"): self.report_recent_dates,
            ("GET", "/api/status"): self.status,
            ("GET", "/api/suggestions"): self.list_suggestions,
            ("POST", "/api/suggestions/accept"): self.accept_suggestion,
            ("POST", "/api/suggestions/dismiss"): self.dismiss_suggestion,
        }

    def handle(self, request: ApiRequest) -> ApiResponse:
        method = request.method.upper()
        if method == "OPTIONS":
            return ApiResponse(200, {})

        path = request.path.rstrip("/") or "/"
        handler = self.routes.get((method, path))
        if handler is None:
            return ApiResponse(404, {"error": NotFound(f"No route for {method} {path}").to_dict()})

        try:
            return ApiResponse(200, handler(request))
        except PulseTrackError as exc:
            status = ERROR_STATUS.get(type(exc), 500)
            if status == 500:
                logger.error("%s %s failed: %s", method, path, exc)
            return ApiResponse(status, {"error": exc.to_dict()})
        except Exception:
            logger.exception("Unhandled error in %s %s", method, path)
            return ApiResponse(
                500, {"error": {"kind": "InternalError", "message": "Internal server error"}}
            )

    # ------------------------------------------------------------------
    # Taxonomy
    # ------------------------------------------------------------------

    def list_projects(self, request: ApiRequest) -> dict:
        projects = self.store.all_projects()
        brands = []
        for brand in self.store.all_brands():
            brands.append({
                "id": brand.id,
                "name": brand.name,
                "color": brand.color,
                "sortOrder": brand.sort_order,
                "projects": [
                    {
                        "id": p.id,
                        "brandId": p.brand_id,
                        "name": p.name,
                        "color": p.color,
                        "sortOrder": p.sort_order,
                    }
                    for p in projects
                    if p.brand_id == brand.id
                ],
            })
        return {"brands": brands}

    def create_brand(self, request: ApiRequest) -> dict:
        data = _body(request)
        name = _require(data, "name").strip()
        color = _optional(data, "color") or self.config.get("default_color", DEFAULT_COLOR)
        return {"id": self.store.insert_brand(name, color)}

    def update_brand(self, request: ApiRequest) -> dict:
        data = _body(request)
        self.store.update_brand(
            _require(data, "id", int), name=_optional(data, "name"), color=_optional(data, "color")
        )
        return {"ok": True}

    def delete_brand(self, request: ApiRequest) -> dict:
        self.store.delete_brand(_require(_body(request), "id", int))
        return {"ok": True}

    def create_project(self, request: ApiRequest) -> dict:
        data = _body(request)
        brand_id = _require(data, "brandId", int)
        name = _require(data, "name").strip()
        color = _optional(data, "color") or self.config.get("default_color", DEFAULT_COLOR)
        return {"id": self.store.insert_project(brand_id, name, color)}

    def update_project(self, request: ApiRequest) -> dict:
        data = _body(request)
        self.store.update_project(
            _require(data, "id", int),
            name=_optional(data, "name"),
            color=_optional(data, "color"),
            brand_id=_optional(data, "brandId", int),
        )
        return {"ok": True}

    def delete_project(self, request: ApiRequest) -> dict:
        self.store.delete_project(_require(_body(request), "id", int))
        return {"ok": True}

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _project_labels(self) -> dict[int, str]:
        return {p.id: f"{p.brand_name} > {p.name}" for p in self.store.all_projects()}

    def list_rules(self, request: ApiRequest) -> dict:
        labels = self._project_labels()
        return {
            "rules": [
                rule_json(rule, labels.get(rule.project_id, ""))
                for rule in self.store.load_all_project_rules()
            ]
        }

    def list_invalid_rules(self, request: ApiRequest) -> dict:
        labels = self._project_labels()
        return {
            "rules": [
                dict(rule_json(rule, labels.get(rule.project_id, "")), message=message)
                for rule, message in self.matcher.invalid_rules()
            ]
        }

    def create_rule(self, request: ApiRequest) -> dict:
        data = _body(request)
        project_id = _require(data, "projectId", int)
        rule_type = _rule_type(_require(data, "ruleType"))
        pattern = _require(data, "pattern")
        is_regex = _optional(data, "isRegex", bool) or False
        validate_rule_pattern(pattern, is_regex)
        rule_id = self.store.insert_rule(
            project_id, rule_type, pattern, is_regex, _optional(data, "priority", int) or 0
        )
        return {"id": rule_id}

    def update_rule(self, request: ApiRequest) -> dict:
        data = _body(request)
        rule_id = _require(data, "id", int)
        existing = self.store.get_rule(rule_id)
        if existing is None:
            raise NotFound(f"No rule found for id={rule_id}")
        rule_type = _optional(data, "ruleType")
        pattern = _optional(data, "pattern")
        is_regex = _optional(data, "isRegex", bool)
        validate_rule_pattern(
            pattern if pattern is not None else existing.pattern,
            is_regex if is_regex is not None else existing.is_regex,
        )
        self.store.update_rule(
            rule_id,
            rule_type=_rule_type(rule_type) if rule_type is not None else None,
            pattern=pattern,
            is_regex=is_regex,
            priority=_optional(data, "priority", int),
        )
        return {"ok": True}

    def delete_rule(self, request: ApiRequest) -> dict:
        self.store.delete_rule(_require(_body(request), "id", int))
        return {"ok": True}

    def validate_rule(self, request: ApiRequest) -> dict:
        data = _body(request)
        try:
            validate_rule_pattern(data.get("pattern") or "", bool(data.get("isRegex")))
        except InvalidPattern as exc:
            return {"valid": False, "message": exc.message}
        return {"valid": True, "message": None}

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, request: ApiRequest) -> dict:
        """Manually assign activities, optionally creating a rule as well."""
        data = _body(request)
        project_id = _require(data, "projectId", int)
        ids = data.get("activityIds")
        if not isinstance(ids, list) or not ids:
            raise BadRequest("activityIds must be a non-empty list")
        activity_ids = [_coerce("activityIds", i, int) for i in ids]

        rule = None
        if data.get("createRule"):
            rule = SuggestedRule(
                _rule_type(_require(data, "ruleType")),
                _require(data, "rulePattern"),
                _optional(data, "isRegex", bool) or False,
            )
            validate_rule_pattern(rule.pattern, rule.is_regex)

        updated = self.store.bulk_update_project_assignment(
            activity_ids, project_id, ProjectSource.MANUAL
        )
        rule_id = None
        if rule is not None:
            rule_id = self.store.insert_rule(project_id, rule.rule_type, rule.pattern, rule.is_regex)
        return {"updated": updated, "ruleId": rule_id}

    def auto_assign(self, request: ApiRequest) -> dict:
        data = request.body if isinstance(request.body, dict) else {}
        day = _optional(data, "date")
        if day is not None:
            try:
                date.fromisoformat(day)
            except ValueError:
                raise BadRequest("date must be YYYY-MM-DD") from None
        return {"assigned": self.matcher.auto_assign_unclassified(day)}

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def report_day(self, request: ApiRequest) -> dict:
        return day_json(self.store.query_day(_date(request)))

    def report_week(self, request: ApiRequest) -> dict:
        return range_json(self.summary.weekly_summary(_date(request, "today")))

    def report_month(self, request: ApiRequest) -> dict:
        today = date.today()
        year = _int_query(request, "year", today.year)
        month = _int_query(request, "month", today.month)
        if not 1 <= month <= 12:
            raise BadRequest("month must be between 1 and 12")
        return range_json(self.summary.monthly_summary(year, month))

    def report_range(self, request: ApiRequest) -> dict:
        if not request.query.get("start") or not request.query.get("end"):
            raise BadRequest("start and end are required")
        start, end = _date(request, "start"), _date(request, "end")
        if start > end:
            raise BadRequest("start must not be after end")
        return range_json(self.summary.range_summary(start, end))

    def report_app(self, request: ApiRequest) -> dict:
        name = request.query.get("name", "").strip()
        if not name:
            raise BadRequest("name is required")
        return app_report_json(self.store.query_app(name))

    def report_brands(self, request: ApiRequest) -> dict:
        day = _date(request)
        return {
            "date": day.isoformat(),
            "brands": [brand_summary_json(b) for b in self.store.query_day_by_project(day)],
        }

    def report_timeline(self, request: ApiRequest) -> dict:
        day = _date(request)
        return {
            "date": day.isoformat(),
            "entries": [timeline_json(e) for e in self.store.query_timeline(day)],
        }

    def report_unassigned(self, request: ApiRequest) -> dict:
        day = _date(request)
        min_seconds = _int_query(
            request, "minSeconds", self.config.get("unassigned_min_seconds", 10)
        )
        return {
            "date": day.isoformat(),
            "activities": [
                unassigned_json(a)
                for a in self.store.query_unassigned_activities(day, min_seconds)
            ],
        }

    def report_recent_dates(self, request: ApiRequest) -> dict:
        limit = _int_query(request, "limit", 14)
        return {
            "dates": [
                {"date": d.date, "totalSeconds": d.total_seconds}
                for d in self.store.query_recent_dates(limit)
            ]
        }

    def status(self, request: ApiRequest) -> dict:
        tracker = self.tracker
        return {
            "tracking": tracker is not None and not tracker.paused,
            "sessions": tracker.sessions if tracker is not None else [],
            "todayTotalSeconds": self.store.query_today_total_seconds(),
            "topApps": [breakdown_json(e) for e in self.store.query_today_top_apps()],
            "recentApps": [
                {"appName": a.app_name, "seconds": a.seconds, "lastSeen": a.last_seen.isoformat()}
                for a in self.store.query_recent_apps()
            ],
        }

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def list_suggestions(self, request: ApiRequest) -> dict:
        return {"brands": [detected_brand_json(b) for b in self.suggestions.list()]}

    def accept_suggestion(self, request: ApiRequest) -> dict:
        data = _body(request)
        color = _optional(data, "color") or self.config.get("default_color", DEFAULT_COLOR)
        if data.get("rootToken"):
            result = self.suggestions.accept_root(_require(data, "rootToken"), color)
        elif isinstance(data.get("brand"), dict):
            result = self.suggestions.accept(self._parse_brand(data["brand"]), color)
        else:
            raise BadRequest("rootToken or brand is required")
        return accept_result_json(result)

    def dismiss_suggestion(self, request: ApiRequest) -> dict:
        self.suggestions.dismiss(_require(_body(request), "rootToken"))
        return {"ok": True}

    @staticmethod
    def _parse_brand(data: dict) -> DetectedBrand:
        name = _require(data, "name").strip()
        projects = []
        for entry in data.get("projects") or []:
            if not isinstance(entry, dict):
                raise BadRequest("projects must be a list of objects")
            rules = []
            for raw in entry.get("rules") or []:
                if not isinstance(raw, dict):
                    raise BadRequest("rules must be a list of objects")
                rule = SuggestedRule(
                    _rule_type(_require(raw, "ruleType")),
                    _require(raw, "pattern"),
                    _optional(raw, "isRegex", bool) or False,
                )
                validate_rule_pattern(rule.pattern, rule.is_regex)
                rules.append(rule)
            project_name = _require(entry, "name").strip()
            projects.append(
                DetectedProject(
                    suggested_name=project_name,
                    full_token=project_name.lower(),
                    activity_count=0,
                    suggested_rules=rules,
                )
            )
        if not projects:
            raise BadRequest("brand.projects must not be empty")
        return DetectedBrand(suggested_name=name, root_token=name.lower(), projects=projects)
