"""Tests for the retrieval ranker."""

from datetime import timedelta

import pytest

from guardian.core.errors import ConfigError
from guardian.memory import Insight
from guardian.retrieval import (
    RankedReview,
    RelevanceSignals,
    RetrievalRanker,
    WeightedSumStrategy,
    recency_factor,
)

from conftest import NOW


class SignalStrategy:
    """Scores by a single signal."""

    def __init__(self, name: str):
        self.name = name

    def score(self, signals: RelevanceSignals) -> float:
        return getattr(signals, self.name)


class ConstantStrategy:
    def score(self, signals: RelevanceSignals) -> float:
        return 0.5


@pytest.fixture
def ranker(store, memory):
    return RetrievalRanker(store, memory)


class TestRankedReview:
    """Tests for the ranked review record."""

    def test_to_record(self):
        ranked = RankedReview(score=0.8, review_id=1, project="p", files=("auth.ts", "db.ts"))
        assert ranked.to_record() == "0.8000|1|p|auth.ts db.ts"

    def test_to_record_without_files(self):
        assert RankedReview(score=0.12345, review_id=3, project="p").to_record() == "0.1235|3|p|"


class TestScoring:
    """Tests for signal mixing."""

    def test_weighted_sum_defaults(self):
        strategy = WeightedSumStrategy()
        assert strategy.score(RelevanceSignals(1.0, 1.0, 1.0)) == pytest.approx(1.0)
        assert strategy.score(RelevanceSignals(1.0, 0.0, 0.0)) == pytest.approx(0.5)

    def test_weights_are_normalized(self):
        strategy = WeightedSumStrategy(lexical=1.0, graph=1.0, recency=0.0)
        assert strategy.score(RelevanceSignals(1.0, 0.0, 1.0)) == pytest.approx(0.5)

    @pytest.mark.parametrize("weights", [(-1.0, 1.0, 1.0), (0.0, 0.0, 0.0)])
    def test_invalid_weights(self, weights):
        with pytest.raises(ConfigError):
            WeightedSumStrategy(*weights)

    def test_recency_factor(self):
        assert recency_factor(NOW, NOW, 30.0) == pytest.approx(1.0)
        assert recency_factor(NOW - timedelta(days=30), NOW, 30.0) == pytest.approx(0.5)
        assert recency_factor(NOW - timedelta(days=60), NOW, 30.0) == pytest.approx(0.25)

    def test_future_review_counts_as_new(self):
        assert recency_factor(NOW + timedelta(days=1), NOW, 30.0) == 1.0

    def test_invalid_half_life(self, store, memory):
        with pytest.raises(ConfigError):
            RetrievalRanker(store, memory, half_life_days=0)


class TestRank:
    """Tests for ranking past reviews."""

    def test_no_concepts(self, ranker):
        assert ranker.rank([]) == []

    def test_no_candidates(self, ranker, store, review_factory):
        store.save_review(review_factory(files=["utils.py"], result="Formatting nit"))
        assert ranker.rank(["file:src/auth.ts"]) == []

    def test_single_candidate(self, ranker, store, review_factory):
        hit = store.save_review(
            review_factory(files=["src/auth.ts"], result="SQL injection in login handler")
        )
        store.save_review(review_factory(files=["utils.py"], result="Formatting nit"))

        ranked = ranker.rank(["file:src/auth.ts"], now=NOW)

        assert len(ranked) == 1
        assert ranked[0].review_id == hit.id
        assert ranked[0].project == "test-proj"
        assert ranked[0].files == ("src/auth.ts",)
        # full lexical match, no graph signal, brand new
        assert ranked[0].score == pytest.approx(0.7)

    def test_graph_signal(self, store, memory, review_factory):
        with_security = store.save_review(
            review_factory(files=["src/auth.ts"], result="injection found")
        )
        without = store.save_review(review_factory(files=["src/auth.ts"], result="login flow ok"))
        memory.reinforce("file:src/auth.ts", "pattern:security", "review")

        ranker = RetrievalRanker(store, memory, SignalStrategy("graph"))
        ranked = ranker.rank(["file:src/auth.ts"], now=NOW)

        assert [(r.review_id, r.score) for r in ranked] == [
            (with_security.id, pytest.approx(1.0)),
            (without.id, pytest.approx(0.0)),
        ]

    def test_recency_signal(self, store, memory, review_factory):
        old = store.save_review(
            review_factory(files=["src/auth.ts"], result="old", created_at=NOW - timedelta(days=30))
        )
        new = store.save_review(review_factory(files=["src/auth.ts"], result="new"))

        ranker = RetrievalRanker(store, memory, SignalStrategy("recency"))
        ranked = ranker.rank(["file:src/auth.ts"], now=NOW)

        assert [r.review_id for r in ranked] == [new.id, old.id]
        assert ranked[1].score == pytest.approx(0.5)

    def test_ties_prefer_higher_review_id(self, store, memory, review_factory):
        first = store.save_review(review_factory(files=["src/auth.ts"], result="one"))
        second = store.save_review(review_factory(files=["src/auth.ts"], result="two"))

        ranker = RetrievalRanker(store, memory, ConstantStrategy())
        ranked = ranker.rank(["file:src/auth.ts"], now=NOW)

        assert [r.review_id for r in ranked] == [second.id, first.id]

    def test_limit(self, ranker, store, review_factory):
        for i in range(3):
            store.save_review(review_factory(files=["src/auth.ts"], result=f"review {i}"))

        assert len(ranker.rank(["file:src/auth.ts"], limit=2)) == 2
        assert ranker.rank(["file:src/auth.ts"], limit=0) == []

    def test_exclude_current_review(self, ranker, store, review_factory):
        current = store.save_review(review_factory(files=["src/auth.ts"], result="current"))

        assert ranker.rank(["file:src/auth.ts"], exclude_review_id=current.id) == []

    def test_project_filter(self, ranker, store, review_factory):
        store.save_review(review_factory(project="a", files=["src/auth.ts"], result="in a"))
        store.save_review(review_factory(project="b", files=["src/auth.ts"], result="in b"))

        ranked = ranker.rank(["file:src/auth.ts"], project="b")
        assert [r.project for r in ranked] == ["b"]

    def test_insight_only_match(self, ranker, store, review_factory):
        review = store.save_review(review_factory(files=["lib/x.py"], result="Looks fine"))
        store.save_insight(Insight(review_id=review.id, what="authentication bypass"))

        ranked = ranker.rank(["pattern:authentication"], now=NOW)

        assert [r.review_id for r in ranked] == [review.id]

    def test_insight_match_respects_project(self, ranker, store, review_factory):
        review = store.save_review(
            review_factory(project="a", files=["lib/x.py"], result="Looks fine")
        )
        store.save_insight(Insight(review_id=review.id, what="authentication bypass"))

        assert ranker.rank(["pattern:authentication"], project="b") == []

    def test_scores_within_unit_range(self, ranker, store, memory, review_factory):
        for i in range(4):
            store.save_review(
                review_factory(
                    files=["src/auth.ts"],
                    result=f"injection {i}",
                    created_at=NOW - timedelta(days=i * 10),
                )
            )
        memory.reinforce("file:src/auth.ts", "pattern:security", "review")

        ranked = ranker.rank(["file:src/auth.ts"], now=NOW)

        assert len(ranked) == 4
        assert all(0.0 <= r.score <= 1.0 for r in ranked)
        assert [r.score for r in ranked] == sorted((r.score for r in ranked), reverse=True)
