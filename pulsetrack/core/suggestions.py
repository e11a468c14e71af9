"""Listing, accepting and dismissing detected brand suggestions."""

import logging
from typing import Optional

from pulsetrack.core.detector import PatternDetector
from pulsetrack.core.errors import NotFound
from pulsetrack.core.matcher import ProjectMatcher
from pulsetrack.core.models import DEFAULT_COLOR, AcceptResult, DetectedBrand
from pulsetrack.persistence.store import ActivityStore

logger = logging.getLogger(__name__)


class SuggestionService:
    """Turns detector output into persisted brands, projects and rules.

    Dismissed root tokens are remembered for the lifetime of the service.
    """

    def __init__(
        self,
        store: ActivityStore,
        matcher: ProjectMatcher,
        detector: Optional[PatternDetector] = None,
    ) -> None:
        self.store = store
        self.matcher = matcher
        self.detector = detector or PatternDetector(store)
        self._dismissed: set[str] = set()

    def list(self) -> list[DetectedBrand]:
        return [b for b in self.detector.detect() if b.root_token not in self._dismissed]

    def dismiss(self, root_token: str) -> None:
        self._dismissed.add(root_token.lower())

    def accept_root(self, root_token: str, color: str = DEFAULT_COLOR) -> AcceptResult:
        """Accept the current suggestion for *root_token* as detected."""
        for brand in self.list():
            if brand.root_token == root_token.lower():
                return self.accept(brand, color)
        raise NotFound(f"No suggestion for {root_token!r}")

    def accept(self, suggestion: DetectedBrand, color: str = DEFAULT_COLOR) -> AcceptResult:
        """Persist *suggestion* and classify matching history.

        An existing brand or project with the same name is reused rather
        than duplicated; its rules are added alongside the old ones.
        """
        brand = self.store.find_brand_by_name(suggestion.suggested_name)
        result = AcceptResult(brand_id=brand.id if brand else 0)
        if brand is None:
            result.brand_id = self.store.insert_brand(suggestion.suggested_name, color)
            result.brands_created = 1

        existing = {p.name: p.id for p in self.store.all_projects(result.brand_id)}
        for project in suggestion.projects:
            if project.suggested_name in existing:
                project_id = existing[project.suggested_name]
                for rule in project.suggested_rules:
                    self.store.insert_rule(project_id, rule.rule_type, rule.pattern, rule.is_regex)
            else:
                project_id, _ = self.store.create_project_with_rules(
                    result.brand_id, project.suggested_name, project.suggested_rules, color
                )
                existing[project.suggested_name] = project_id
                result.projects_created += 1
            result.rules_created += len(project.suggested_rules)
            result.project_ids.append(project_id)

        self.matcher.reload_rules()
        result.reclassified = self.matcher.auto_assign_unclassified()
        logger.info(
            "Accepted suggestion %r: %d projects, %d rules, %d activities classified",
            suggestion.suggested_name, result.projects_created,
            result.rules_created, result.reclassified,
        )
        return result
