"""Tests for Guardian ReviewStore."""

from datetime import timedelta

import pytest

from guardian.core.errors import StoreError
from guardian.memory import (
    Association,
    AssociationContext,
    Insight,
    InsightType,
    LearningSession,
    ReviewStatus,
    ReviewStore,
    SessionConcept,
    Severity,
)
from guardian.memory.store import build_match_query, content_hash, split_search_text

from conftest import NOW


def seen(session_id: int, concept: str) -> SessionConcept:
    return SessionConcept(session_id=session_id, concept=concept, first_seen_at=NOW)


class TestReviewStoreInit:
    """Tests for store initialization."""

    def test_creates_in_memory(self):
        store = ReviewStore(":memory:")
        assert store is not None

    def test_creates_schema(self, store):
        with store.connection() as conn:
            tables = [
                "reviews",
                "reviews_fts",
                "review_insights",
                "insights_fts",
                "learning_sessions",
                "session_concepts",
                "associations",
            ]
            for table in tables:
                result = conn.execute(
                    "SELECT name FROM sqlite_master WHERE name = ?",
                    (table,),
                ).fetchone()
                assert result is not None, f"Table {table} should exist"

    def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "gga.db"
        store = ReviewStore(db_path)
        assert db_path.parent.exists()
        assert store.check() == "ok"

    def test_file_store_persists(self, tmp_path, review_factory):
        db_path = tmp_path / "gga.db"
        saved = ReviewStore(db_path).save_review(review_factory())
        reopened = ReviewStore(db_path)
        assert reopened.get_review(saved.id) is not None


class TestReviewOperations:
    """Tests for review persistence and search."""

    def test_save_and_get_review(self, store, review_factory):
        saved = store.save_review(
            review_factory(files=["src/auth.ts", "src/db.ts"], status=ReviewStatus.FAILED)
        )
        assert saved.id is not None

        retrieved = store.get_review(saved.id)
        assert retrieved.files == ["src/auth.ts", "src/db.ts"]
        assert retrieved.files_count == 2
        assert retrieved.status == ReviewStatus.FAILED
        assert retrieved.created_at == NOW
        assert retrieved.diff_hash == content_hash(saved.diff_content)

    def test_get_missing_review(self, store):
        assert store.get_review(999) is None

    def test_same_diff_updates_existing_row(self, store, review_factory):
        first = store.save_review(review_factory(diff="same diff", result="first"))
        second = store.save_review(review_factory(diff="same diff", result="second"))

        assert first.id == second.id
        assert store.stats().total_reviews == 1
        assert store.get_review(first.id).result == "second"

    def test_unknown_status_is_coerced(self, store, review_factory):
        saved = store.save_review(review_factory(status="weird"))
        assert store.get_review(saved.id).status == ReviewStatus.UNKNOWN

    def test_lowercase_status_is_accepted(self, store, review_factory):
        saved = store.save_review(review_factory(status="failed"))
        assert store.get_review(saved.id).status == ReviewStatus.FAILED

    def test_get_reviews_most_recent_first(self, store, review_factory):
        old = store.save_review(review_factory(result="old", created_at=NOW - timedelta(days=2)))
        new = store.save_review(review_factory(result="new", created_at=NOW))

        reviews = store.get_reviews(limit=10)
        assert [r.id for r in reviews] == [new.id, old.id]

    def test_get_reviews_filters(self, store, review_factory):
        store.save_review(review_factory(project="a", result="one"))
        store.save_review(
            review_factory(project="b", result="two", status=ReviewStatus.FAILED)
        )

        assert [r.project_name for r in store.get_reviews(project="a")] == ["a"]
        assert [r.project_name for r in store.get_reviews(status=ReviewStatus.FAILED)] == ["b"]

    def test_get_reviews_since(self, store, review_factory):
        store.save_review(review_factory(result="old", created_at=NOW - timedelta(days=10)))
        recent = store.save_review(review_factory(result="recent", created_at=NOW))

        since = store.get_reviews_since(NOW - timedelta(days=1))
        assert [r.id for r in since] == [recent.id]

    def test_search_reviews(self, store, review_factory):
        hit = store.save_review(review_factory(result="SQL injection in login handler"))
        store.save_review(review_factory(files=["utils.py"], result="Formatting nit"))

        results = store.search_reviews(build_match_query(["injection"]))
        assert [review.id for review, _ in results] == [hit.id]
        assert results[0][1] < 0

    def test_search_reviews_matches_file_paths(self, store, review_factory):
        hit = store.save_review(review_factory(files=["src/auth.ts"], result="ok"))

        results = store.search_reviews(build_match_query(["src/auth.ts"]))
        assert [review.id for review, _ in results] == [hit.id]

    def test_search_reviews_project_filter(self, store, review_factory):
        store.save_review(review_factory(project="a", result="injection here"))
        store.save_review(review_factory(project="b", result="injection there"))

        results = store.search_reviews(build_match_query(["injection"]), project="b")
        assert [review.project_name for review, _ in results] == ["b"]

    def test_search_reviews_no_match(self, store, review_factory):
        store.save_review(review_factory())
        assert store.search_reviews(build_match_query(["nothing"])) == []
        assert store.search_reviews("") == []

    def test_search_reflects_updated_result(self, store, review_factory):
        store.save_review(review_factory(diff="d", result="injection"))
        store.save_review(review_factory(diff="d", result="all clean"))

        assert store.search_reviews(build_match_query(["injection"])) == []


class TestInsightOperations:
    """Tests for insight persistence."""

    def test_insights_ordered_by_severity(self, store, review_factory):
        review = store.save_review(review_factory())
        store.save_insight(Insight(review_id=review.id, what="low one", severity="low"))
        store.save_insight(Insight(review_id=review.id, what="critical one", severity="critical"))
        store.save_insight(Insight(review_id=review.id, what="medium one"))
        store.save_insight(Insight(review_id=review.id, what="high one", severity="high"))

        insights = store.get_insights(review.id)
        assert [i.severity for i in insights] == [
            Severity.CRITICAL,
            Severity.HIGH,
            Severity.MEDIUM,
            Severity.LOW,
        ]

    def test_unknown_type_and_severity_fall_back(self, store, review_factory):
        review = store.save_review(review_factory())
        saved = store.save_insight(
            Insight(review_id=review.id, what="x", type="mystery", severity="huge")
        )
        assert saved.type == InsightType.PATTERN
        assert saved.severity == Severity.MEDIUM

    def test_insights_for_reviews_grouped(self, seeded_store):
        grouped = seeded_store.get_insights_for_reviews([1, 2])
        assert [i.what for i in grouped[1]] == ["SQL injection in query"]
        assert grouped[2] == []

    def test_insight_summaries(self, seeded_store):
        summaries = seeded_store.get_insight_summaries([1, 2])
        assert len(summaries) == 1
        assert summaries[0].type == InsightType.SECURITY
        assert seeded_store.get_insight_summaries([]) == []

    def test_search_insights(self, seeded_store):
        results = seeded_store.search_insights(build_match_query(["params"]))
        assert [insight.review_id for insight, _ in results] == [1]

    def test_count_insights(self, seeded_store):
        assert seeded_store.count_insights() == 1

    def test_delete_insights(self, seeded_store):
        assert seeded_store.delete_insights(1) == 1
        assert seeded_store.get_insights(1) == []
        assert seeded_store.search_insights(build_match_query(["params"])) == []
        assert seeded_store.delete_insights(2) == 0


class TestStatsAndMaintenance:
    """Tests for statistics, cleanup and integrity check."""

    def test_stats(self, seeded_store):
        stats = seeded_store.stats()
        assert stats.total_reviews == 2
        assert stats.passed == 1
        assert stats.failed == 1
        assert stats.errors == 0
        assert stats.projects == 2

    def test_stats_empty(self, store):
        stats = store.stats()
        assert stats.total_reviews == 0
        assert stats.passed == 0
        assert stats.avg_duration_ms is None

    def test_stats_by_project(self, seeded_store):
        projects = {p.project_name: p for p in seeded_store.stats_by_project()}
        assert projects["test-proj"].failed == 1
        assert projects["p"].passed == 1

    def test_cleanup_keeps_most_recent_per_project(self, store, review_factory):
        for days in range(3):
            store.save_review(
                review_factory(project="a", result=f"a{days}", created_at=NOW - timedelta(days=days))
            )
        store.save_review(review_factory(project="b", result="b0"))

        deleted = store.cleanup(keep=1)

        assert deleted == 2
        remaining = store.get_reviews(limit=10)
        assert sorted((r.project_name, r.result) for r in remaining) == [("a", "a0"), ("b", "b0")]

    def test_cleanup_removes_insights(self, seeded_store):
        seeded_store.cleanup(keep=0)
        assert seeded_store.count_insights() == 0

    def test_check(self, store):
        assert store.check() == "ok"


class TestLearningSessionOperations:
    """Tests for learning session rows."""

    def test_create_and_end_session(self, store):
        session = store.create_learning_session(LearningSession(session_ref="s1", project="p"))
        assert session.id is not None
        assert [s.id for s in store.get_active_learning_sessions()] == [session.id]

        assert store.end_learning_session(session.id, NOW) is True
        assert store.end_learning_session(session.id, NOW) is False
        assert store.get_active_learning_sessions() == []
        assert store.get_learning_session(session.id).ended_at == NOW

    def test_session_concepts_are_unique(self, store):
        session = store.create_learning_session(LearningSession(session_ref="s1"))
        assert store.add_session_concept(seen(session.id, "pattern:security")) is True
        assert store.add_session_concept(seen(session.id, "pattern:security")) is False
        assert store.add_session_concept(seen(session.id, "file:auth.ts")) is True

        assert store.get_session_concepts(session.id) == ["pattern:security", "file:auth.ts"]

    def test_learning_sessions_with_counts(self, store):
        first = store.create_learning_session(
            LearningSession(session_ref="s1", started_at=NOW - timedelta(hours=1))
        )
        second = store.create_learning_session(LearningSession(session_ref="s2", started_at=NOW))
        store.add_session_concept(seen(first.id, "a"))
        store.add_session_concept(seen(first.id, "b"))

        records = store.get_learning_sessions()
        assert [(r.session.session_ref, r.concept_count) for r in records] == [
            ("s2", 0),
            ("s1", 2),
        ]
        assert records[0].session.id == second.id


class TestAssociationOperations:
    """Tests for association rows."""

    def _association(self, a="a", b="b", context=AssociationContext.REVIEW, weight=0.5, **kwargs):
        return Association(concept_a=a, concept_b=b, context=context, weight=weight, **kwargs)

    def test_save_and_get(self, store):
        store.save_association(self._association())
        found = store.get_association("a", "b", AssociationContext.REVIEW)
        assert found.weight == 0.5
        assert store.get_association("a", "b", AssociationContext.SESSION) is None

    def test_contexts_are_independent_rows(self, store):
        store.save_association(self._association(context=AssociationContext.REVIEW))
        store.save_association(self._association(context=AssociationContext.SESSION, weight=0.2))

        assert store.count_associations() == 2
        assert store.count_associations(AssociationContext.SESSION) == 1

    def test_non_canonical_pair_rejected(self, store):
        with pytest.raises(StoreError):
            store.save_association(self._association(a="z", b="a"))

    def test_save_overwrites_weight(self, store):
        store.save_association(self._association(weight=0.1))
        store.save_association(self._association(weight=0.9, reinforcement_count=2))

        found = store.get_association("a", "b", AssociationContext.REVIEW)
        assert found.weight == 0.9
        assert found.reinforcement_count == 2
        assert store.count_associations() == 1

    def test_associations_for_either_side(self, store):
        store.save_association(self._association(a="a", b="m", weight=0.3))
        store.save_association(self._association(a="m", b="z", weight=0.6))
        store.save_association(self._association(a="x", b="y", weight=0.9))

        found = store.get_associations_for("m")
        assert [(f.concept_a, f.concept_b) for f in found] == [("m", "z"), ("a", "m")]
        assert len(store.get_associations_for("m", min_weight=0.5)) == 1

    def test_decay_only_idle(self, store):
        store.save_association(
            self._association(a="a", b="b", weight=0.8, updated_at=NOW - timedelta(days=60))
        )
        store.save_association(self._association(a="c", b="d", weight=0.8, updated_at=NOW))

        decayed = store.decay_associations(0.5, NOW - timedelta(days=30))

        assert decayed == 1
        assert store.get_association("a", "b", AssociationContext.REVIEW).weight == pytest.approx(0.4)
        assert store.get_association("c", "d", AssociationContext.REVIEW).weight == pytest.approx(0.8)

    def test_prune(self, store):
        store.save_association(self._association(a="a", b="b", weight=0.01))
        store.save_association(self._association(a="c", b="d", weight=0.5))

        assert store.prune_associations(0.05) == 1
        assert store.count_associations() == 1

    def test_association_stats(self, store):
        store.save_association(self._association(a="a", b="b", weight=0.2))
        store.save_association(self._association(a="c", b="d", weight=0.4))
        store.save_association(self._association(context=AssociationContext.SESSION, weight=0.3))

        stats = store.association_stats()
        assert stats["review"][0] == 2
        assert stats["review"][1] == pytest.approx(0.3)
        assert stats["session"] == (1, pytest.approx(0.3))


class TestSearchHelpers:
    """Tests for FTS query helpers."""

    def test_build_match_query_quotes_and_dedups(self):
        assert build_match_query(["auth.ts", "AUTH.ts", "sql"]) == '"auth.ts" OR "sql"'

    def test_build_match_query_escapes_quotes(self):
        assert build_match_query(['say "hi"']) == '"say ""hi"""'

    def test_build_match_query_operator(self):
        assert build_match_query(["a", "b"], "AND") == '"a" AND "b"'

    def test_build_match_query_empty(self):
        assert build_match_query(["", "  "]) == ""

    def test_split_search_text(self):
        assert split_search_text("sql injection in src/auth.ts!") == [
            "sql",
            "injection",
            "in",
            "src/auth.ts",
        ]
