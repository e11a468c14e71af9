"""Project rule matcher for PulseTrack.

Maps a heartbeat (or an unassigned historical record) to a project id
using the ordered rule set stored in the activity log.  Rules are
evaluated in ``priority DESC, id ASC`` order; the first matching rule
wins.  Returns ``None`` when no rule matches.
"""

import logging
import re
import sqlite3
import time
from functools import lru_cache
from typing import Callable, Optional, Union
from urllib.parse import urlsplit

from pulsetrack.core.errors import InvalidPattern
from pulsetrack.core.models import Heartbeat, ProjectRule, ProjectSource, RawActivity, RuleType
from pulsetrack.persistence.store import ActivityStore

logger = logging.getLogger(__name__)

Observation = Union[Heartbeat, RawActivity]


def url_host(url: Optional[str]) -> Optional[str]:
    """Return the lowercase host portion of *url*, or ``None``.

    Scheme-less values such as ``acme.com/pricing`` are parsed as hosts.
    """
    if not url:
        return None
    try:
        host = urlsplit(url).hostname
        if host is None and "://" not in url:
            host = urlsplit("//" + url).hostname
    except ValueError:
        return None
    return host


# Field each rule type is evaluated against.
_RULE_FIELDS: dict[RuleType, Callable[[Observation], Optional[str]]] = {
    RuleType.WINDOW_TITLE: lambda obs: obs.window_title,
    RuleType.URL_DOMAIN: lambda obs: url_host(obs.url),
    RuleType.URL_PATH: lambda obs: obs.url,
    RuleType.PAGE_TITLE: lambda obs: obs.window_title,
    RuleType.FIGMA_FILE: lambda obs: obs.window_title,
    RuleType.BUNDLE_ID: lambda obs: obs.bundle_id,
    RuleType.TERMINAL_FOLDER: lambda obs: obs.extra_info,
}


@lru_cache(maxsize=512)
def _compile(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        logger.warning("Ignoring invalid regex rule pattern %r: %s", pattern, exc)
        return None


def pattern_matches(pattern: str, value: Optional[str], is_regex: bool) -> bool:
    """Case-insensitive substring or regex search of *pattern* in *value*."""
    if not pattern or value is None:
        return False
    if is_regex:
        compiled = _compile(pattern)
        return compiled is not None and compiled.search(value) is not None
    return pattern.casefold() in value.casefold()


def rule_matches(rule: ProjectRule, observation: Observation) -> bool:
    return pattern_matches(rule.pattern, _RULE_FIELDS[rule.rule_type](observation), rule.is_regex)


def match_rules(rules: list[ProjectRule], observation: Observation) -> Optional[int]:
    """Return the project id of the first rule in *rules* that matches."""
    for rule in rules:
        if rule_matches(rule, observation):
            return rule.project_id
    return None


def validate_rule_pattern(pattern: str, is_regex: bool) -> None:
    """Raise :class:`InvalidPattern` if *pattern* can never be evaluated."""
    if not pattern or not pattern.strip():
        raise InvalidPattern("Rule pattern must not be empty")
    if is_regex:
        try:
            re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            raise InvalidPattern(f"Invalid regular expression {pattern!r}: {exc}") from exc


class RuleCache:
    """Ordered rule list with a time-to-live and an explicit invalidate hook."""

    def __init__(
        self,
        loader: Callable[[], list[ProjectRule]],
        ttl_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._rules: list[ProjectRule] = []
        self._loaded_at: Optional[float] = None

    @property
    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self.ttl_seconds

    def get(self) -> list[ProjectRule]:
        if self.is_stale:
            self.reload()
        return self._rules

    def reload(self) -> None:
        """Fetch rules from the store.

        A failed read keeps the previous rule set so ingestion continues.
        """
        try:
            self._rules = self._loader()
        except sqlite3.Error:
            logger.exception("Failed to reload project rules; keeping %d cached", len(self._rules))
        self._loaded_at = self._clock()

    def invalidate(self) -> None:
        self._loaded_at = None


class ProjectMatcher:
    """Assigns activities to projects using the store's rule set."""

    def __init__(
        self,
        store: ActivityStore,
        ttl_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.cache = RuleCache(store.load_all_project_rules, ttl_seconds, clock)
        store.add_taxonomy_listener(self.cache.invalidate)

    @property
    def rules(self) -> list[ProjectRule]:
        return self.cache.get()

    def reload_rules(self) -> None:
        self.cache.reload()

    def match(self, observation: Observation) -> Optional[int]:
        """Return the project id for *observation*, or ``None``."""
        return match_rules(self.rules, observation)

    def auto_assign_unclassified(self, day=None) -> int:
        """Retroactively classify unassigned records, optionally for one day.

        Returns the number of records newly assigned.  Already-assigned
        records are never touched, so repeated calls are idempotent.
        """
        self.reload_rules()
        rules = self.cache.get()
        if not rules:
            return 0

        by_project: dict[int, list[int]] = {}
        for activity in self.store.query_unassigned_raw(day):
            project_id = match_rules(rules, activity)
            if project_id is not None:
                by_project.setdefault(project_id, []).append(activity.id)

        assigned = 0
        for project_id in sorted(by_project):
            assigned += self.store.bulk_update_project_assignment(
                by_project[project_id], project_id, ProjectSource.AUTO_RULE
            )
        if assigned:
            logger.info("Auto-assigned %d activities", assigned)
        return assigned

    def invalid_rules(self) -> list[tuple[ProjectRule, str]]:
        """Return every stored rule that can never match, with the reason."""
        problems: list[tuple[ProjectRule, str]] = []
        for rule in self.store.load_all_project_rules():
            try:
                validate_rule_pattern(rule.pattern, rule.is_regex)
            except InvalidPattern as exc:
                problems.append((rule, exc.message))
        return problems
