"""ReviewMemory - High-level interface for Guardian review memory.

Wires the review store, associative memory, session tracker, ranker and
disclosure builder together for the review pipeline. Learning and
retrieval are best-effort: store failures are logged and turned into
neutral results so a review always completes.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from guardian.core.config import Settings, get_settings
from guardian.core.errors import StoreError
from guardian.retrieval.disclosure import DisclosureBuilder
from guardian.retrieval.ranker import RankedReview, RetrievalRanker, WeightedSumStrategy

from .associations import AssociativeMemory
from .concepts import derive_concepts, extract_insight
from .models import Insight, Review
from .sessions import SessionHandle, SessionSummary, SessionTracker
from .store import ReviewStore

logger = logging.getLogger(__name__)


class ReviewMemory:
    """High-level interface for Guardian review memory.

    Example:
        memory = ReviewMemory.from_settings()
        handle = memory.start_session("4f2e1d", "my-app", "4f2e1d")
        context = memory.build_context(["src/auth.ts"], "login token")
        memory.record_review(review, "login token", session=handle)
        memory.end_session(handle)
    """

    def __init__(self, db_path: str | Path = ":memory:", settings: Optional[Settings] = None):
        """Initialize review memory.

        Args:
            db_path: Path to SQLite database, or ":memory:" for in-memory.
            settings: Tunables (default: get_settings())

        Raises:
            ConfigError: If the tunables are inconsistent
        """
        settings = settings or get_settings()
        self._settings = settings
        self._store = ReviewStore(db_path)
        self._memory = AssociativeMemory(self._store, settings.learning_rate)
        self._sessions = SessionTracker(
            self._store,
            self._memory,
            enabled=settings.learning_enabled,
            session_boost=settings.session_boost,
            max_concepts=settings.max_session_concepts,
        )
        self._ranker = RetrievalRanker(
            self._store,
            self._memory,
            WeightedSumStrategy(
                lexical=settings.weight_lexical,
                graph=settings.weight_graph,
                recency=settings.weight_recency,
            ),
            half_life_days=settings.recency_half_life_days,
        )
        self._disclosure = DisclosureBuilder(
            self._store,
            high=settings.disclosure_high,
            med=settings.disclosure_med,
            max_tokens=settings.max_tokens,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ReviewMemory":
        """Open the database configured by GGA_DB_PATH."""
        settings = settings or get_settings()
        return cls(settings.db_path, settings)

    @property
    def store(self) -> ReviewStore:
        """Access the underlying review store."""
        return self._store

    @property
    def memory(self) -> AssociativeMemory:
        return self._memory

    @property
    def sessions(self) -> SessionTracker:
        return self._sessions

    @property
    def ranker(self) -> RetrievalRanker:
        return self._ranker

    @property
    def disclosure(self) -> DisclosureBuilder:
        return self._disclosure

    # =========================================================================
    # Session Operations
    # =========================================================================

    def start_session(
        self,
        session_ref: str,
        project: Optional[str] = None,
        commit: Optional[str] = None,
    ) -> Optional[SessionHandle]:
        """Start a learning session.

        Returns None when learning is disabled or the store failed.

        Raises:
            ConfigError: If session_ref is empty
        """
        try:
            return self._sessions.start_session(session_ref, project, commit)
        except StoreError as e:
            logger.warning(f"Could not start learning session {session_ref}: {e}")
            return None

    def end_session(self, handle: Optional[SessionHandle]) -> int:
        """End a learning session. Returns the number of pairs reinforced."""
        try:
            return self._sessions.end_session(handle)
        except StoreError as e:
            logger.warning(f"Could not end learning session: {e}")
            return 0

    def session_history(self, limit: int = 20) -> list[SessionSummary]:
        return self._sessions.session_stats(limit)

    # =========================================================================
    # Review Operations
    # =========================================================================

    def record_review(
        self,
        review: Review,
        concept_text: str = "",
        session: Optional[SessionHandle] = None,
    ) -> Optional[Review]:
        """Store a finished review and learn from it.

        The review is saved, an insight is extracted from its result, and
        the review's concepts are reinforced (and added to the session
        when one is active).

        Returns:
            The saved review, or None if it could not be stored.
        """
        try:
            saved = self._store.save_review(review)
        except StoreError as e:
            logger.warning(f"Could not save review for {review.project_name}: {e}")
            return None
        logger.info(f"Saved review #{saved.id} ({saved.status.value}) for {saved.project_name}")

        insight: Optional[Insight] = None
        try:
            # A repeated diff reuses its review row, so its insights are replaced
            self._store.delete_insights(saved.id)
            insight = extract_insight(saved.result, saved.id)
            if insight:
                self._store.save_insight(insight)
        except StoreError as e:
            logger.warning(f"Could not save insight for review #{saved.id}: {e}")

        try:
            self._sessions.learn_from_review(
                saved.files,
                concept_text,
                insight.what if insight else "",
                saved.status,
                session,
            )
        except StoreError as e:
            logger.warning(f"Could not learn from review #{saved.id}: {e}")

        return saved

    def rank(
        self,
        files: Iterable[str],
        concept_text: str = "",
        limit: int = 5,
        project: Optional[str] = None,
        exclude_review_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[RankedReview]:
        """Rank past reviews for the files and text of the current review."""
        concepts = derive_concepts(files, concept_text)
        try:
            return self._ranker.rank(
                concepts,
                limit=limit,
                project=project,
                exclude_review_id=exclude_review_id,
                now=now,
            )
        except StoreError as e:
            logger.warning(f"Could not rank past reviews: {e}")
            return []

    def build_context(
        self,
        files: Iterable[str],
        concept_text: str = "",
        limit: int = 5,
        project: Optional[str] = None,
        exclude_review_id: Optional[int] = None,
    ) -> str:
        """Render relevant past reviews as prompt context.

        Returns:
            Rendered context, or "" when nothing relevant was found.
        """
        ranked = self.rank(files, concept_text, limit, project, exclude_review_id)
        if not ranked:
            return ""
        try:
            return self._disclosure.build(ranked)
        except StoreError as e:
            logger.warning(f"Could not render review context: {e}")
            return ""
