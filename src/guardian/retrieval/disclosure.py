"""Progressive disclosure of past reviews under a token budget.

Each ranked review is rendered at one of three tiers depending on its
score:

| score            | tier    | content                                   |
|------------------|---------|-------------------------------------------|
| >= high          | full    | header, DETAILED marker, insight details  |
| >= med, < high   | detail  | header, insight types and severities      |
| < med            | compact | one line with insight types               |

Entries are added in ranked order while their estimated token cost fits
the budget. An entry too large for the remaining budget is shown as a
compact line instead, and every later entry stays compact; once not even
a compact line fits, the render ends. A record whose review is not
stored is rendered from its own fields with status UNKNOWN.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from guardian.core.errors import ConfigError
from guardian.memory.models import Insight, Review, ReviewStatus
from guardian.memory.store import ReviewStore

from .ranker import RankedReview

logger = logging.getLogger(__name__)

MAX_FULL_INSIGHTS = 5
MAX_RESULT_CHARS = 800


class DisclosureTier(str, Enum):
    """How much of a past review is shown."""

    FULL = "full"
    DETAIL = "detail"
    COMPACT = "compact"


# Approximate tokens per rendered entry
DEFAULT_TOKEN_COSTS = {
    DisclosureTier.FULL: 200,
    DisclosureTier.DETAIL: 80,
    DisclosureTier.COMPACT: 15,
}


def select_tier(score: float, high: float, med: float) -> DisclosureTier:
    """Pick the tier for a score. Monotonic in score for fixed thresholds."""
    if score >= high:
        return DisclosureTier.FULL
    if score >= med:
        return DisclosureTier.DETAIL
    return DisclosureTier.COMPACT


def parse_record(line: str) -> Optional[RankedReview]:
    """Parse a ``score|reviewId|project|files`` record. Returns None if malformed."""
    fields = line.strip().split("|")
    if len(fields) != 4:
        return None
    score_text, id_text, project, files_text = fields
    try:
        score = float(score_text)
        review_id = int(id_text)
    except ValueError:
        return None
    files = tuple(f for f in files_text.replace(",", " ").split() if f)
    return RankedReview(score=score, review_id=review_id, project=project, files=files)


def _percent(score: float) -> str:
    return f"{int(round(score * 100))}%"


def _review_from_record(candidate: RankedReview) -> Review:
    """Stand-in for a review known only from its ranked record."""
    return Review(
        id=candidate.review_id,
        project_name=candidate.project,
        files=list(candidate.files),
        status=ReviewStatus.UNKNOWN,
    )


@dataclass
class DisclosureEntry:
    """A rendered past review."""

    candidate: RankedReview
    tier: DisclosureTier
    text: str
    cost: int


class DisclosureBuilder:
    """Renders ranked reviews into prompt context."""

    def __init__(
        self,
        store: ReviewStore,
        high: float = 0.7,
        med: float = 0.5,
        max_tokens: int = 2000,
        token_costs: Optional[dict[DisclosureTier, int]] = None,
    ):
        """Initialize the builder.

        Args:
            store: Review store to load review details from
            high: Score threshold for the full tier
            med: Score threshold for the detail tier
            max_tokens: Token budget for the whole render
            token_costs: Per-tier token estimates (default: DEFAULT_TOKEN_COSTS)

        Raises:
            ConfigError: If high < med or the budget is not positive
        """
        if high < med:
            raise ConfigError(
                "disclosure high threshold must not be below medium",
                {"high": high, "med": med},
            )
        if max_tokens <= 0:
            raise ConfigError("max_tokens must be positive", {"max_tokens": max_tokens})
        self.store = store
        self.high = high
        self.med = med
        self.max_tokens = max_tokens
        self.token_costs = {**DEFAULT_TOKEN_COSTS, **(token_costs or {})}

    def tier_for(self, score: float) -> DisclosureTier:
        return select_tier(score, self.high, self.med)

    def build(self, candidates: Iterable[RankedReview]) -> str:
        """Render ranked reviews within the token budget."""
        return "\n\n".join(entry.text for entry in self.entries(candidates))

    def build_from_records(self, records: str) -> str:
        """Render newline-separated ``score|reviewId|project|files`` records.

        Malformed lines are skipped.
        """
        candidates = []
        for line in (records or "").splitlines():
            if not line.strip():
                continue
            candidate = parse_record(line)
            if candidate is None:
                logger.debug(f"Skipping malformed context record: {line!r}")
                continue
            candidates.append(candidate)
        return self.build(candidates)

    def entries(self, candidates: Iterable[RankedReview]) -> list[DisclosureEntry]:
        """Select and render entries greedily in ranked order."""
        entries: list[DisclosureEntry] = []
        used = 0
        downgraded = False
        for candidate in candidates:
            tier = self.tier_for(candidate.score)
            if downgraded or used + self.token_costs[tier] > self.max_tokens:
                # Fall back to compact lines, and keep later entries no richer
                downgraded = downgraded or tier != DisclosureTier.COMPACT
                tier = DisclosureTier.COMPACT
            cost = self.token_costs[tier]
            if used + cost > self.max_tokens:
                logger.debug(
                    f"Token budget {self.max_tokens} reached after {len(entries)} entries"
                )
                break

            review = self.store.get_review(candidate.review_id)
            if review is None:
                logger.debug(f"Review #{candidate.review_id} not stored, rendering its record")
                review = _review_from_record(candidate)
                insights = []
            else:
                insights = self.store.get_insights(review.id)
            entries.append(
                DisclosureEntry(
                    candidate=candidate,
                    tier=tier,
                    text=self._render(tier, candidate, review, insights),
                    cost=cost,
                )
            )
            used += cost
        return entries

    # =========================================================================
    # Rendering
    # =========================================================================

    def _render(
        self,
        tier: DisclosureTier,
        candidate: RankedReview,
        review: Review,
        insights: list[Insight],
    ) -> str:
        if tier == DisclosureTier.FULL:
            return self._render_full(candidate, review, insights)
        if tier == DisclosureTier.DETAIL:
            return self._render_detail(candidate, review, insights)
        return self._render_compact(candidate, review, insights)

    def _files(self, candidate: RankedReview, review: Review) -> str:
        return ", ".join(candidate.files or review.files) or "-"

    def _render_full(self, candidate: RankedReview, review: Review, insights: list[Insight]) -> str:
        lines = [
            f"### Review #{review.id} ({candidate.project or review.project_name}) - DETAILED",
            f"Relevance: {_percent(candidate.score)} | Status: {review.status.value}"
            f" | Files: {self._files(candidate, review)}",
        ]
        if insights:
            for insight in insights[:MAX_FULL_INSIGHTS]:
                lines.append(f"- [{insight.type.value}/{insight.severity.value}] {insight.what}")
                if insight.why:
                    lines.append(f"  Why: {insight.why}")
                if insight.learned:
                    lines.append(f"  Learned: {insight.learned}")
                if insight.file_path:
                    lines.append(f"  Location: {insight.file_path}")
        else:
            result = review.result.strip()
            if len(result) > MAX_RESULT_CHARS:
                result = result[:MAX_RESULT_CHARS] + "..."
            lines.append("Findings:")
            lines.append(result or review.status.value)
        return "\n".join(lines)

    def _render_detail(self, candidate: RankedReview, review: Review, insights: list[Insight]) -> str:
        lines = [
            f"### Review #{review.id} ({candidate.project or review.project_name})",
            f"Relevance: {_percent(candidate.score)} | Files: {self._files(candidate, review)}",
        ]
        if insights:
            for insight in insights:
                location = f" {insight.file_path}" if insight.file_path else ""
                lines.append(f"- {insight.type.value} [{insight.severity.value}]{location}")
        else:
            lines.append(f"Status: {review.status.value}")
        return "\n".join(lines)

    def _render_compact(self, candidate: RankedReview, review: Review, insights: list[Insight]) -> str:
        if insights:
            summary = ", ".join(dict.fromkeys(insight.type.value for insight in insights))
        else:
            summary = review.status.value
        return f"- Review #{review.id} ({_percent(candidate.score)}): {summary}"
