"""Tests for accepting and dismissing detected suggestions."""

from datetime import datetime

import pytest

from pulsetrack.core.errors import NotFound
from pulsetrack.core.matcher import ProjectMatcher
from pulsetrack.core.models import (
    ActivityRecord,
    DetectedBrand,
    DetectedProject,
    ProjectSource,
    RuleType,
    SuggestedRule,
)
from pulsetrack.core.suggestions import SuggestionService
from pulsetrack.persistence.store import ActivityStore


@pytest.fixture
def store():
    s = ActivityStore(":memory:")
    s.init_db()
    yield s
    s.close()


@pytest.fixture
def service(store):
    return SuggestionService(store, ProjectMatcher(store))


def _add(store, title, url=None):
    return store.insert(
        ActivityRecord(
            id=0,
            timestamp=datetime(2025, 1, 15, 9),
            app_name="Safari",
            bundle_id="com.apple.Safari",
            window_title=title,
            url=url,
            duration_seconds=30,
        )
    )


def _suggestion(name="Acme", project="Website", rules=None):
    return DetectedBrand(
        suggested_name=name,
        root_token=name.lower(),
        projects=[
            DetectedProject(
                suggested_name=project,
                full_token=project.lower(),
                activity_count=2,
                suggested_rules=rules or [
                    SuggestedRule(RuleType.WINDOW_TITLE, "^acme", is_regex=True),
                    SuggestedRule(RuleType.URL_DOMAIN, "acme.com"),
                ],
            )
        ],
    )


class TestAccept:

    def test_creates_brand_project_and_rules(self, store, service):
        result = service.accept(_suggestion(), color="#123456")

        brand = store.get_brand(result.brand_id)
        assert brand.name == "Acme"
        assert brand.color == "#123456"
        assert result.brands_created == 1
        assert result.projects_created == 1
        assert result.rules_created == 2

        projects = store.all_projects(result.brand_id)
        assert [p.name for p in projects] == ["Website"]
        rules = store.load_all_project_rules()
        assert len(rules) == 2
        assert {r.project_id for r in rules} == {projects[0].id}

    def test_reclassifies_matching_history(self, store, service):
        by_title = _add(store, "Acme — Pricing")
        by_domain = _add(store, "Checkout", url="https://acme.com/cart")
        other = _add(store, "Globex — Home")

        result = service.accept(_suggestion())

        assert result.reclassified == 2
        project_id = result.project_ids[0]
        for record_id in (by_title, by_domain):
            stored = store.get_activity_by_id(record_id)
            assert stored.project_id == project_id
            assert stored.project_source == ProjectSource.AUTO_RULE
        assert store.get_activity_by_id(other).project_id is None

    def test_existing_brand_and_project_reused(self, store, service):
        brand = store.insert_brand("Acme")
        project = store.insert_project(brand, "Website")

        result = service.accept(_suggestion())

        assert result.brand_id == brand
        assert result.brands_created == 0
        assert result.projects_created == 0
        assert result.project_ids == [project]
        assert len(store.all_brands()) == 1
        assert len(store.load_all_project_rules()) == 2

    def test_matcher_sees_new_rules_immediately(self, store):
        matcher = ProjectMatcher(store, ttl_seconds=3600)
        assert matcher.rules == []
        result = SuggestionService(store, matcher).accept(_suggestion())
        assert [r.project_id for r in matcher.rules] == [result.project_ids[0]] * 2


class TestDetectedFlow:

    def test_list_accept_root_round_trip(self, store, service):
        for title in ("Acme — a", "Acme — b", "Acme — c"):
            _add(store, title)

        brands = service.list()
        assert [b.root_token for b in brands] == ["acme"]

        result = service.accept_root("ACME")
        assert result.reclassified == 3
        assert service.list() == []

    def test_dismiss_hides_root(self, store, service):
        for title in ("Acme — a", "Acme — b", "Globex — a", "Globex — b"):
            _add(store, title)

        service.dismiss("Acme")

        assert [b.root_token for b in service.list()] == ["globex"]

    def test_accept_unknown_root(self, service):
        with pytest.raises(NotFound):
            service.accept_root("nothing")

    def test_accept_dismissed_root(self, store, service):
        _add(store, "Acme — a")
        _add(store, "Acme — b")
        service.dismiss("acme")
        with pytest.raises(NotFound):
            service.accept_root("acme")
