"""Session cohesion tracking.

A learning session groups every concept seen during one review
invocation. When the session ends, all pairs of its concepts are
reinforced in the "session" context with an extra boost, on top of the
per-review "review" associations.

An active session is represented by the SessionHandle returned from
start_session(); holding no handle means the tracker is idle.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from guardian.core.errors import ConfigError

from .associations import AssociativeMemory
from .concepts import derive_concepts
from .models import (
    AssociationContext,
    LearningSession,
    ReviewStatus,
    SessionConcept,
    utcnow,
)
from .store import ReviewStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionHandle:
    """Reference to an active learning session."""

    session_id: int
    session_ref: str


@dataclass
class SessionSummary:
    """One row of session history."""

    session_ref: str
    project: Optional[str]
    started_at: datetime
    ended_at: Optional[datetime]
    concept_count: int


class SessionTracker:
    """Accumulates concepts per session and reinforces them on close.

    Example:
        tracker = SessionTracker(store, memory)
        handle = tracker.start_session("abc123", "my-app", "4f2e1d")
        tracker.learn_from_review(["auth.ts"], "login jwt", "Security issue", "FAILED", handle)
        tracker.end_session(handle)
    """

    def __init__(
        self,
        store: ReviewStore,
        memory: AssociativeMemory,
        enabled: bool = True,
        session_boost: float = 1.5,
        max_concepts: int = 50,
    ):
        """Initialize the tracker.

        Args:
            store: Review store holding session tables
            memory: Associative memory to reinforce
            enabled: When False every operation is a successful no-op
            session_boost: Boost applied to session-close reinforcement (>= 1)
            max_concepts: Cap on distinct concepts per session and per review
        """
        if session_boost < 1.0:
            raise ConfigError("session_boost must be >= 1", {"session_boost": session_boost})
        if max_concepts < 2:
            raise ConfigError("max_concepts must be >= 2", {"max_concepts": max_concepts})
        self.store = store
        self.memory = memory
        self.enabled = enabled
        self.session_boost = session_boost
        self.max_concepts = max_concepts

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_session(
        self,
        session_ref: str,
        project: Optional[str] = None,
        commit: Optional[str] = None,
    ) -> Optional[SessionHandle]:
        """Start a learning session.

        Returns:
            A handle for the new session, or None when learning is disabled.

        Raises:
            ConfigError: If session_ref is empty
        """
        if not session_ref or not session_ref.strip():
            raise ConfigError("session reference must not be empty")
        if not self.enabled:
            return None

        # A session left open by an earlier run is closed before starting a new one
        for stale in self.store.get_active_learning_sessions():
            logger.warning(
                f"Closing learning session {stale.session_ref} ({stale.id}) left active"
            )
            self.end_session(SessionHandle(session_id=stale.id, session_ref=stale.session_ref))

        session = self.store.create_learning_session(
            LearningSession(session_ref=session_ref, project=project, commit=commit)
        )
        logger.info(f"Started learning session {session_ref} ({session.id})")
        return SessionHandle(session_id=session.id, session_ref=session_ref)

    def add_concepts(self, handle: Optional[SessionHandle], concepts: Iterable[str]) -> int:
        """Record concepts for an active session.

        Ignored for a missing or ended session. Concepts already recorded
        are skipped; concepts beyond the session cap are dropped.

        Returns:
            Number of newly recorded concepts
        """
        if handle is None or not self.enabled:
            return 0
        session = self.store.get_learning_session(handle.session_id)
        if session is None or not session.is_active:
            return 0

        recorded = set(self.store.get_session_concepts(handle.session_id))
        added = 0
        dropped = 0
        now = utcnow()
        for concept in dict.fromkeys(concepts):
            if not concept or concept in recorded:
                continue
            if len(recorded) >= self.max_concepts:
                dropped += 1
                continue
            if self.store.add_session_concept(
                SessionConcept(session_id=handle.session_id, concept=concept, first_seen_at=now)
            ):
                recorded.add(concept)
                added += 1

        if dropped:
            logger.warning(
                f"Session {handle.session_ref} reached {self.max_concepts} concepts; "
                f"dropped {dropped}"
            )
        return added

    def end_session(self, handle: Optional[SessionHandle]) -> int:
        """End a session and reinforce every pair of its concepts.

        Each pair commits on its own, so an interrupted close can leave a
        subset of pairs reinforced.

        Returns:
            Number of session associations reinforced, C(n, 2) for n concepts
        """
        if handle is None:
            return 0
        session = self.store.get_learning_session(handle.session_id)
        if session is None or not session.is_active:
            return 0

        concepts = self.store.get_session_concepts(handle.session_id)[: self.max_concepts]
        pairs = self.memory.reinforce_all(
            concepts, AssociationContext.SESSION, boost=self.session_boost
        )
        self.store.end_learning_session(handle.session_id, utcnow())
        logger.info(
            f"Ended learning session {handle.session_ref}: "
            f"{len(concepts)} concepts, {pairs} associations"
        )
        return pairs

    # =========================================================================
    # Learning
    # =========================================================================

    def learn_from_review(
        self,
        files: Iterable[str],
        concept_text: str = "",
        summary: str = "",
        status: Optional[str | ReviewStatus] = None,
        session: Optional[SessionHandle] = None,
    ) -> list[str]:
        """Learn associations from one review.

        Every pair of derived concepts is reinforced in the "review"
        context. With an active session the same concepts are also
        recorded for session-close reinforcement.

        Returns:
            The derived concepts (empty when learning is disabled)
        """
        if not self.enabled:
            return []

        concepts = derive_concepts(files, concept_text, summary, status)
        if len(concepts) > self.max_concepts:
            logger.warning(
                f"Review produced {len(concepts)} concepts; keeping first {self.max_concepts}"
            )
            concepts = concepts[: self.max_concepts]

        pairs = self.memory.reinforce_all(concepts, AssociationContext.REVIEW)
        logger.debug(f"Review reinforced {pairs} associations from {len(concepts)} concepts")

        if session is not None:
            self.add_concepts(session, concepts)
        return concepts

    # =========================================================================
    # Reporting
    # =========================================================================

    def session_stats(self, limit: int = 20) -> list[SessionSummary]:
        """Session history, most recent first."""
        return [
            SessionSummary(
                session_ref=record.session.session_ref,
                project=record.session.project,
                started_at=record.session.started_at,
                ended_at=record.session.ended_at,
                concept_count=record.concept_count,
            )
            for record in self.store.get_learning_sessions(limit)
        ]
