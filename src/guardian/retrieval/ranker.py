"""Ranking of past reviews against the concepts of the current review.

Three signals, each normalized to [0, 1], are combined by a pluggable
scoring strategy:

- lexical: FTS5 bm25 relevance of the review (or its insights) to the
  current concepts, relative to the best candidate
- graph: summed association weight between the current concepts and the
  candidate's concepts, relative to the strongest candidate
- recency: 0.5 ** (age_days / half_life_days)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol

from guardian.core.errors import ConfigError
from guardian.memory.associations import AssociativeMemory
from guardian.memory.concepts import concept_search_terms, derive_concepts
from guardian.memory.models import Insight, Review, utcnow
from guardian.memory.store import ReviewStore, build_match_query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedReview:
    """A past review scored for relevance to the current one."""

    score: float
    review_id: int
    project: str
    files: tuple[str, ...] = ()

    def to_record(self) -> str:
        """Serialize as a ``score|reviewId|project|files`` record."""
        return f"{self.score:.4f}|{self.review_id}|{self.project}|{' '.join(self.files)}"


@dataclass(frozen=True)
class RelevanceSignals:
    """Normalized inputs to a scoring strategy."""

    lexical: float
    graph: float
    recency: float


class ScoringStrategy(Protocol):
    """Combines relevance signals into a score in [0, 1]."""

    def score(self, signals: RelevanceSignals) -> float: ...


@dataclass(frozen=True)
class WeightedSumStrategy:
    """Weighted average of the three signals."""

    lexical: float = 0.5
    graph: float = 0.3
    recency: float = 0.2

    def __post_init__(self):
        weights = (self.lexical, self.graph, self.recency)
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            raise ConfigError(
                "ranking weights must be non-negative with a positive sum",
                {"lexical": self.lexical, "graph": self.graph, "recency": self.recency},
            )

    def score(self, signals: RelevanceSignals) -> float:
        total = self.lexical + self.graph + self.recency
        value = (
            self.lexical * signals.lexical
            + self.graph * signals.graph
            + self.recency * signals.recency
        ) / total
        return max(0.0, min(1.0, value))


def recency_factor(created_at: datetime, now: datetime, half_life_days: float) -> float:
    """Decays from 1 for a brand-new review, halving every half_life_days."""
    age_days = max((now - created_at).total_seconds() / 86400.0, 0.0)
    return 0.5 ** (age_days / half_life_days)


def _normalize(values: dict[int, float]) -> dict[int, float]:
    top = max(values.values(), default=0.0)
    if top <= 0:
        return {key: 0.0 for key in values}
    return {key: value / top for key, value in values.items()}


def review_concepts(review: Review, insights: list[Insight]) -> list[str]:
    """Concepts of a stored review, derived the same way as at learning time."""
    files = list(review.files)
    for insight in insights:
        if insight.file_path:
            files.extend(path.split(":", 1)[0] for path in insight.file_path.split(","))
    text = " ".join([review.result, *(insight.what for insight in insights)])
    return derive_concepts(files, text, status=review.status)


class RetrievalRanker:
    """Scores historical reviews for the current review's concepts."""

    def __init__(
        self,
        store: ReviewStore,
        memory: AssociativeMemory,
        strategy: Optional[ScoringStrategy] = None,
        half_life_days: float = 30.0,
        candidate_pool: int = 50,
    ):
        """Initialize the ranker.

        Args:
            store: Review store to search
            memory: Association graph for the graph signal
            strategy: Scoring strategy (default: WeightedSumStrategy())
            half_life_days: Recency half-life
            candidate_pool: Maximum full-text hits considered per search
        """
        if half_life_days <= 0:
            raise ConfigError("half_life_days must be positive", {"half_life_days": half_life_days})
        self.store = store
        self.memory = memory
        self.strategy = strategy or WeightedSumStrategy()
        self.half_life_days = half_life_days
        self.candidate_pool = candidate_pool

    def rank(
        self,
        concepts: Iterable[str],
        limit: int = 5,
        project: Optional[str] = None,
        exclude_review_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[RankedReview]:
        """Rank past reviews, best first.

        Args:
            concepts: Concepts of the current review
            limit: Maximum results
            project: Only consider reviews from this project
            exclude_review_id: Review to leave out (usually the current one)
            now: Reference time for recency

        Returns:
            Ranked reviews; ties go to the more recent review id.
            Empty when nothing matches.
        """
        concepts = list(dict.fromkeys(c for c in concepts if c))
        if not concepts or limit <= 0:
            return []

        candidates, lexical_raw = self._find_candidates(concepts, project)
        candidates.pop(exclude_review_id, None)
        lexical_raw.pop(exclude_review_id, None)
        if not candidates:
            return []

        insights = self.store.get_insights_for_reviews(candidates)
        neighbours = self._neighbour_weights(concepts)
        graph_raw = {
            review_id: sum(
                neighbours.get(concept, 0.0)
                for concept in review_concepts(review, insights[review_id])
            )
            for review_id, review in candidates.items()
        }

        lexical = _normalize(lexical_raw)
        graph = _normalize(graph_raw)
        now = now or utcnow()

        ranked = []
        for review_id, review in candidates.items():
            signals = RelevanceSignals(
                lexical=lexical.get(review_id, 0.0),
                graph=graph.get(review_id, 0.0),
                recency=recency_factor(review.created_at, now, self.half_life_days),
            )
            ranked.append(
                RankedReview(
                    score=self.strategy.score(signals),
                    review_id=review_id,
                    project=review.project_name,
                    files=tuple(review.files),
                )
            )

        ranked.sort(key=lambda r: (-r.score, -r.review_id))
        logger.debug(f"Ranked {len(ranked)} candidate reviews for {len(concepts)} concepts")
        return ranked[:limit]

    def _find_candidates(
        self, concepts: list[str], project: Optional[str]
    ) -> tuple[dict[int, Review], dict[int, float]]:
        """Full-text candidates from reviews and insights with raw lexical scores."""
        match = build_match_query(concept_search_terms(concepts))
        candidates: dict[int, Review] = {}
        lexical: dict[int, float] = {}
        if not match:
            return candidates, lexical

        # bm25 ranks are negative, lower is better
        for review, rank in self.store.search_reviews(match, self.candidate_pool, project):
            candidates[review.id] = review
            lexical[review.id] = max(lexical.get(review.id, 0.0), -rank)

        for insight, rank in self.store.search_insights(match, self.candidate_pool):
            review_id = insight.review_id
            if review_id not in candidates:
                review = self.store.get_review(review_id)
                if review is None or (project and review.project_name != project):
                    continue
                candidates[review_id] = review
            lexical[review_id] = max(lexical.get(review_id, 0.0), -rank)

        return candidates, lexical

    def _neighbour_weights(self, concepts: list[str]) -> dict[str, float]:
        """Summed association weight from the current concepts to every neighbour."""
        weights: dict[str, float] = {}
        for concept in concepts:
            for related in self.memory.query(concept):
                weights[related.concept] = weights.get(related.concept, 0.0) + related.weight
        return weights
