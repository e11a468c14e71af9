"""Pattern detector: proposes brands, projects and rules from history.

Recurring tokens are mined from unassigned records using four signals:

- window-title prefix before `` — ``
- URL second-level domain (generic sites skipped)
- terminal working-directory folder name
- Figma file title first word

Tokens seen at least ``min_count`` times are grouped by their first word
into candidate brands.  Each token becomes a project with rules built
from the signals that produced it, minus anything an existing rule
already covers.

Detection is read-only and deterministic: every output list is produced
by an explicit sort.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Iterable, Optional

from pulsetrack.core.matcher import url_host
from pulsetrack.core.models import (
    DetectedBrand,
    DetectedProject,
    RawActivity,
    RuleType,
    SuggestedRule,
)
from pulsetrack.persistence.store import ActivityStore

logger = logging.getLogger(__name__)

TITLE_SEPARATOR = " — "
MIN_TOKEN_LENGTH = 3
DEFAULT_MIN_COUNT = 2

FIGMA_BUNDLE_ID = "com.figma.Desktop"

SKIP_TITLE_TOKENS = frozenset({"unknown", "home"})
SKIP_FIGMA_TITLES = frozenset({"", "Home", "Figma"})
SKIP_DOMAINS = frozenset({
    "google.com",
    "github.com",
    "stackoverflow.com",
    "apple.com",
    "youtube.com",
    "twitter.com",
    "x.com",
    "reddit.com",
    "localhost",
    "127.0.0.1",
    "chatgpt.com",
    "claude.ai",
})


class Signal(Enum):
    WINDOW_TITLE = "windowTitle"
    URL_DOMAIN = "urlDomain"
    TERMINAL_FOLDER = "terminalFolder"
    FIGMA_FILE = "figmaFile"


@dataclass
class TokenInfo:
    """Evidence accumulated for one normalized token."""
    count: int = 0
    apps: set[str] = field(default_factory=set)
    signals: set[Signal] = field(default_factory=set)
    domains: set[str] = field(default_factory=set)
    folders: set[str] = field(default_factory=set)
    figma_titles: set[str] = field(default_factory=set)


# ---------------------------------------------------------------------------
# Token extraction
# ---------------------------------------------------------------------------

def title_token(window_title: str) -> Optional[str]:
    if TITLE_SEPARATOR not in window_title:
        return None
    token = window_title.split(TITLE_SEPARATOR, 1)[0].strip().lower()
    if len(token) < MIN_TOKEN_LENGTH or token in SKIP_TITLE_TOKENS:
        return None
    return token


def domain_token(url: Optional[str]) -> Optional[tuple[str, str]]:
    """Return ``(token, domain)`` for *url*, or ``None`` for generic sites."""
    host = url_host(url)
    if not host:
        return None
    domain = host.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    if domain in SKIP_DOMAINS:
        return None
    parts = domain.split(".")
    token = parts[-2] if len(parts) >= 2 else domain
    if len(token) < MIN_TOKEN_LENGTH:
        return None
    return token, domain


def folder_token(extra_info: Optional[str]) -> Optional[str]:
    if not extra_info:
        return None
    name = PurePosixPath(extra_info).name or extra_info
    token = name.lower().replace("-", " ").replace("_", " ").strip()
    if len(token) < MIN_TOKEN_LENGTH or token == "~":
        return None
    return token


def figma_token(bundle_id: str, window_title: str) -> Optional[str]:
    if bundle_id != FIGMA_BUNDLE_ID:
        return None
    title = window_title.strip()
    if title in SKIP_FIGMA_TITLES:
        return None
    words = title.lower().split()
    if not words or len(words[0]) < MIN_TOKEN_LENGTH:
        return None
    return words[0]


def extract_tokens(activities: Iterable[RawActivity]) -> dict[str, TokenInfo]:
    tokens: dict[str, TokenInfo] = {}

    def add(token: str, activity: RawActivity, signal: Signal) -> TokenInfo:
        info = tokens.setdefault(token, TokenInfo())
        info.count += 1
        info.apps.add(activity.app_name)
        info.signals.add(signal)
        return info

    for activity in activities:
        token = title_token(activity.window_title)
        if token:
            add(token, activity, Signal.WINDOW_TITLE)

        found = domain_token(activity.url)
        if found:
            token, domain = found
            add(token, activity, Signal.URL_DOMAIN).domains.add(domain)

        token = folder_token(activity.extra_info)
        if token:
            add(token, activity, Signal.TERMINAL_FOLDER).folders.add(activity.extra_info)

        token = figma_token(activity.bundle_id, activity.window_title)
        if token:
            add(token, activity, Signal.FIGMA_FILE).figma_titles.add(activity.window_title.strip())

    return tokens


# ---------------------------------------------------------------------------
# Grouping and rule synthesis
# ---------------------------------------------------------------------------

def smart_capitalize(text: str) -> str:
    """Uppercase the first letter of each word, leaving the rest untouched."""
    return " ".join(word[:1].upper() + word[1:] for word in text.split())


def synthesize_rules(token: str, info: TokenInfo, existing_patterns: set[str]) -> list[SuggestedRule]:
    rules: list[SuggestedRule] = []

    def covered(pattern: str) -> bool:
        return pattern.lower() in existing_patterns

    if Signal.WINDOW_TITLE in info.signals:
        pattern = "^" + re.escape(token)
        if token not in existing_patterns and not covered(pattern):
            rules.append(SuggestedRule(RuleType.WINDOW_TITLE, pattern, is_regex=True))
    for domain in sorted(info.domains):
        if not covered(domain):
            rules.append(SuggestedRule(RuleType.URL_DOMAIN, domain))
    for folder in sorted(info.folders):
        if not covered(folder):
            rules.append(SuggestedRule(RuleType.TERMINAL_FOLDER, folder))
    for title in sorted(info.figma_titles):
        if not covered(title):
            rules.append(SuggestedRule(RuleType.FIGMA_FILE, title))
    return rules


def detect_patterns(
    activities: Iterable[RawActivity],
    existing_patterns: Iterable[str] = (),
    min_count: int = DEFAULT_MIN_COUNT,
) -> list[DetectedBrand]:
    """Cluster recurring tokens of *activities* into brand suggestions."""
    existing = {p.lower() for p in existing_patterns}
    tokens = {
        token: info
        for token, info in extract_tokens(activities).items()
        if info.count >= min_count
    }

    groups: dict[str, list[tuple[str, TokenInfo]]] = {}
    for token, info in tokens.items():
        root = token.split()[0]
        groups.setdefault(root, []).append((token, info))

    brands: list[DetectedBrand] = []
    for root, members in groups.items():
        projects: list[DetectedProject] = []
        for token, info in members:
            rules = synthesize_rules(token, info, existing)
            if not rules:
                continue
            remainder = token[len(root):].strip()
            projects.append(
                DetectedProject(
                    suggested_name=smart_capitalize(remainder or root),
                    full_token=token,
                    activity_count=info.count,
                    apps=sorted(info.apps),
                    suggested_rules=rules,
                )
            )
        if not projects:
            continue
        projects.sort(key=lambda p: (-p.activity_count, p.full_token))
        brands.append(
            DetectedBrand(
                suggested_name=smart_capitalize(root),
                root_token=root,
                projects=projects,
                total_activities=sum(p.activity_count for p in projects),
                apps=sorted({app for p in projects for app in p.apps}),
            )
        )

    brands.sort(key=lambda b: (-b.total_activities, b.root_token))
    return brands


class PatternDetector:
    """Runs detection over the store's current unassigned records."""

    def __init__(self, store: ActivityStore, min_count: int = DEFAULT_MIN_COUNT) -> None:
        self.store = store
        self.min_count = min_count

    def detect(self) -> list[DetectedBrand]:
        activities = self.store.query_unassigned_raw()
        patterns = [rule.pattern for rule in self.store.load_all_project_rules()]
        brands = detect_patterns(activities, patterns, self.min_count)
        logger.debug(
            "Detected %d brand suggestions from %d unassigned activities",
            len(brands), len(activities),
        )
        return brands
