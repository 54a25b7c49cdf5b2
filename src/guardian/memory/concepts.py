"""Concept derivation and rule-based classification of review text.

Concepts are namespaced keys used as nodes of the association graph:

- ``file:<path>`` for every reviewed file
- ``pattern:<topic>`` for recognised topics in review text
- ``status:failed`` for reviews that failed

Classification uses ordered (predicate, label) rules. Rules are evaluated
in list order and the first match wins, so more specific rules go first.
"""

import logging
import re
from typing import Callable, Iterable, Optional

from .models import Insight, InsightType, ReviewStatus, Severity

logger = logging.getLogger(__name__)

Predicate = Callable[[str], bool]
Rule = tuple[Predicate, str]

FILE_PREFIX = "file:"
PATTERN_PREFIX = "pattern:"
STATUS_PREFIX = "status:"

MAX_WHAT_LENGTH = 200
MAX_EXTRACTED_FILES = 5


def starts_with(*prefixes: str) -> Predicate:
    """Predicate matching a token that starts with any of the prefixes."""
    return lambda token: token.startswith(prefixes)


def contains(*fragments: str) -> Predicate:
    """Predicate matching text that contains any of the fragments."""
    return lambda text: any(fragment in text for fragment in fragments)


# =============================================================================
# Rule Tables
# =============================================================================

# Applied to single lowercase tokens.
TOPIC_RULES: list[Rule] = [
    (starts_with("inject", "xss", "csrf", "sanitiz", "vulnerab", "exploit", "insecure", "secur", "crypt"), "security"),
    (starts_with("auth", "login", "logout", "jwt", "token", "oauth", "password", "credential", "permission"), "authentication"),
    (starts_with("sql", "query", "queries", "database", "db", "migration", "schema", "orm", "transaction"), "database"),
    (starts_with("slow", "perf", "optim", "cache", "caching", "latenc", "bottleneck", "memory", "index"), "performance"),
    (starts_with("error", "exception", "null", "undefined", "crash", "bug", "panic", "fault"), "error-handling"),
    (starts_with("test", "mock", "assert", "fixture", "coverage"), "testing"),
    (starts_with("style", "format", "naming", "convention", "indent", "whitespace", "lint"), "style"),
    (starts_with("api", "endpoint", "route", "request", "response", "http"), "api"),
    (starts_with("async", "await", "thread", "lock", "race", "concurren", "deadlock"), "concurrency"),
]

# Applied to whole lowercase review text.
INSIGHT_TYPE_RULES: list[Rule] = [
    (contains("injection", "xss", "csrf", "sanitize", "vulnerab", "insecure", "exploit"), InsightType.SECURITY.value),
    (contains("bug", "fix", "error", "crash", "null", "undefined", "exception"), InsightType.BUGFIX.value),
    (contains("slow", "perf", "optim", "memory", "cache", "latency", "bottleneck"), InsightType.PERFORMANCE.value),
    (contains("style", "format", "naming", "convention", "indent", "whitespace"), InsightType.STYLE.value),
]

SEVERITY_RULES: list[Rule] = [
    (contains("critical", "severe", "urgent", "dangerous", "vulnerability"), Severity.CRITICAL.value),
    (contains("warning", "should", "consider", "recommend"), Severity.MEDIUM.value),
    (contains("minor", "trivial", "nit", "cosmetic"), Severity.LOW.value),
]

_TOKEN_RE = re.compile(r"[a-z0-9_]+")
_FILE_PATH_RE = re.compile(
    r"[a-zA-Z0-9_/-]+\.(?:ts|js|tsx|jsx|py|go|rs|sh|java|rb|php)(?::[0-9]+)?"
)


def classify(text: str, rules: list[Rule], default: Optional[str] = None) -> Optional[str]:
    """Return the label of the first rule whose predicate accepts `text`."""
    for predicate, label in rules:
        if predicate(text):
            return label
    return default


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens."""
    return _TOKEN_RE.findall((text or "").lower())


# =============================================================================
# Concept Derivation
# =============================================================================


def file_concept(path: str) -> str:
    return f"{FILE_PREFIX}{path.strip()}"


def topic_concepts(text: str) -> list[str]:
    """Map each token of `text` through TOPIC_RULES, keeping first-seen order."""
    concepts: list[str] = []
    for token in tokenize(text):
        label = classify(token, TOPIC_RULES)
        if label:
            concept = f"{PATTERN_PREFIX}{label}"
            if concept not in concepts:
                concepts.append(concept)
    return concepts


def derive_concepts(
    files: Iterable[str],
    concept_text: str = "",
    summary: str = "",
    status: Optional[str | ReviewStatus] = None,
) -> list[str]:
    """Derive the ordered, de-duplicated concept keys for one review.

    Args:
        files: Reviewed file paths
        concept_text: Free text describing what the change touches
        summary: Short review summary
        status: Review status; FAILED adds ``status:failed``

    Returns:
        Concept keys in first-seen order
    """
    concepts: list[str] = []

    def add(concept: str) -> None:
        if concept not in concepts:
            concepts.append(concept)

    for path in files:
        if path and path.strip():
            add(file_concept(path))
    for concept in topic_concepts(concept_text):
        add(concept)
    for concept in topic_concepts(summary):
        add(concept)

    if status is not None and str(getattr(status, "value", status)).upper() == ReviewStatus.FAILED.value:
        add(f"{STATUS_PREFIX}failed")

    return concepts


def concept_search_terms(concepts: Iterable[str]) -> list[str]:
    """Turn concept keys into full-text search terms.

    File concepts search for the path and its base name; other
    namespaces search for their bare value.
    """
    terms: list[str] = []
    for concept in concepts:
        _, _, value = concept.partition(":")
        value = value or concept
        if concept.startswith(FILE_PREFIX):
            terms.append(value)
            base = value.rsplit("/", 1)[-1]
            if base != value:
                terms.append(base)
        else:
            terms.append(value.replace("-", " "))
    return terms


# =============================================================================
# Insight Extraction
# =============================================================================


def extract_file_paths(text: str) -> list[str]:
    """Source file paths (optionally with :line) mentioned in text."""
    found: list[str] = []
    for match in _FILE_PATH_RE.findall(text or ""):
        if match not in found:
            found.append(match)
    return found[:MAX_EXTRACTED_FILES]


def extract_insight(result: str, review_id: int) -> Optional[Insight]:
    """Extract zero or one structured insight from an AI review result.

    The first three substantive lines after the STATUS line become the
    finding; type and severity come from the rule tables.
    """
    if not result or not result.strip():
        return None

    lower = result.lower()
    insight_type = classify(lower, INSIGHT_TYPE_RULES, default=InsightType.PATTERN.value)
    severity = classify(lower, SEVERITY_RULES, default=Severity.MEDIUM.value)

    lines = [
        line.strip()
        for line in result.splitlines()
        if line.strip() and not line.strip().startswith("STATUS:")
    ]
    what = re.sub(r"\s+", " ", " ".join(lines[:3])).strip()
    if not what:
        return None
    if len(what) > MAX_WHAT_LENGTH:
        what = what[:MAX_WHAT_LENGTH] + "..."

    file_paths = extract_file_paths(result)

    return Insight(
        review_id=review_id,
        type=insight_type,
        severity=severity,
        what=what,
        file_path=",".join(file_paths) or None,
    )
