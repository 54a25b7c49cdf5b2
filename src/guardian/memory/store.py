"""SQLite store for Guardian review memory.

Persists reviews, extracted insights, learning sessions and concept
associations. Reviews and insights are mirrored into FTS5 tables so
past reviews can be found by full-text search.
"""

import hashlib
import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from guardian.core.errors import StoreError

from .models import (
    SEVERITY_RANK,
    Association,
    AssociationContext,
    Insight,
    LearningSession,
    Review,
    ReviewStatus,
    SessionConcept,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Schema Definition
# =============================================================================

SCHEMA = """
-- Reviews table
CREATE TABLE IF NOT EXISTS reviews (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    project_path TEXT NOT NULL,
    project_name TEXT NOT NULL,
    git_branch TEXT,
    git_commit TEXT,
    files TEXT NOT NULL,
    files_count INTEGER NOT NULL,
    diff_content TEXT,
    diff_hash TEXT,
    result TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('PASSED', 'FAILED', 'ERROR', 'UNKNOWN')),
    provider TEXT NOT NULL,
    model TEXT,
    duration_ms INTEGER,
    UNIQUE(diff_hash)
);

-- Full-text index over reviews
CREATE VIRTUAL TABLE IF NOT EXISTS reviews_fts USING fts5(
    files, result, diff_content,
    content='reviews', content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS reviews_ai AFTER INSERT ON reviews BEGIN
    INSERT INTO reviews_fts(rowid, files, result, diff_content)
    VALUES (new.id, new.files, new.result, new.diff_content);
END;

CREATE TRIGGER IF NOT EXISTS reviews_ad AFTER DELETE ON reviews BEGIN
    INSERT INTO reviews_fts(reviews_fts, rowid, files, result, diff_content)
    VALUES ('delete', old.id, old.files, old.result, old.diff_content);
END;

CREATE TRIGGER IF NOT EXISTS reviews_au AFTER UPDATE ON reviews BEGIN
    INSERT INTO reviews_fts(reviews_fts, rowid, files, result, diff_content)
    VALUES ('delete', old.id, old.files, old.result, old.diff_content);
    INSERT INTO reviews_fts(rowid, files, result, diff_content)
    VALUES (new.id, new.files, new.result, new.diff_content);
END;

-- Insights extracted from reviews
CREATE TABLE IF NOT EXISTS review_insights (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    review_id INTEGER NOT NULL REFERENCES reviews(id) ON DELETE CASCADE,
    type TEXT NOT NULL CHECK(type IN (
        'bugfix', 'security', 'pattern', 'decision', 'style', 'performance'
    )),
    what TEXT NOT NULL,
    why TEXT,
    file_path TEXT,
    learned TEXT,
    severity TEXT DEFAULT 'medium' CHECK(severity IN ('low', 'medium', 'high', 'critical')),
    created_at TEXT NOT NULL
);

CREATE VIRTUAL TABLE IF NOT EXISTS insights_fts USING fts5(
    what, why, learned, file_path, type,
    content='review_insights', content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS insights_ai AFTER INSERT ON review_insights BEGIN
    INSERT INTO insights_fts(rowid, what, why, learned, file_path, type)
    VALUES (new.id, new.what, new.why, new.learned, new.file_path, new.type);
END;

CREATE TRIGGER IF NOT EXISTS insights_ad AFTER DELETE ON review_insights BEGIN
    INSERT INTO insights_fts(insights_fts, rowid, what, why, learned, file_path, type)
    VALUES ('delete', old.id, old.what, old.why, old.learned, old.file_path, old.type);
END;

-- Learning sessions (at most one with ended_at IS NULL)
CREATE TABLE IF NOT EXISTS learning_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_ref TEXT NOT NULL,
    project TEXT,
    git_commit TEXT,
    started_at TEXT NOT NULL,
    ended_at TEXT
);

CREATE TABLE IF NOT EXISTS session_concepts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES learning_sessions(id),
    concept TEXT NOT NULL,
    first_seen_at TEXT NOT NULL,
    UNIQUE(session_id, concept)
);

-- Concept associations, keyed by canonical pair and context
CREATE TABLE IF NOT EXISTS associations (
    concept_a TEXT NOT NULL,
    concept_b TEXT NOT NULL,
    context TEXT NOT NULL CHECK(context IN ('review', 'session')),
    weight REAL NOT NULL CHECK(weight >= 0.0 AND weight <= 1.0),
    reinforcement_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (concept_a, concept_b, context),
    CHECK(concept_a < concept_b)
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_reviews_project ON reviews(project_name);
CREATE INDEX IF NOT EXISTS idx_reviews_status ON reviews(status);
CREATE INDEX IF NOT EXISTS idx_reviews_created ON reviews(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_insights_type ON review_insights(type);
CREATE INDEX IF NOT EXISTS idx_insights_review ON review_insights(review_id);
CREATE INDEX IF NOT EXISTS idx_insights_severity ON review_insights(severity);
CREATE INDEX IF NOT EXISTS idx_sessions_active ON learning_sessions(ended_at);
CREATE INDEX IF NOT EXISTS idx_session_concepts_session ON session_concepts(session_id);
CREATE INDEX IF NOT EXISTS idx_associations_b ON associations(concept_b);
CREATE INDEX IF NOT EXISTS idx_associations_weight ON associations(weight DESC);
"""

SEVERITY_ORDER_SQL = (
    "CASE severity "
    + " ".join(
        f"WHEN '{severity.value}' THEN {rank}" for severity, rank in SEVERITY_RANK.items()
    )
    + f" ELSE {len(SEVERITY_RANK) + 1} END"
)


# =============================================================================
# Aggregates
# =============================================================================


@dataclass
class ReviewStats:
    """Totals across the whole review history."""

    total_reviews: int
    passed: int
    failed: int
    errors: int
    projects: int
    avg_duration_ms: Optional[float]


@dataclass
class ProjectStats:
    """Review totals for one project."""

    project_name: str
    review_count: int
    passed: int
    failed: int
    last_review: Optional[datetime]


@dataclass
class SessionRecord:
    """A learning session with the number of distinct concepts it recorded."""

    session: LearningSession
    concept_count: int


# =============================================================================
# Serialization Helpers
# =============================================================================


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as an ISO string in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a datetime string from SQLite."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def content_hash(text: str) -> str:
    """SHA-256 of a diff, used to avoid storing the same diff twice."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


_FTS_TERM_RE = re.compile(r"[\w./-]+", re.UNICODE)


def build_match_query(terms: Iterable[str], operator: str = "OR") -> str:
    """Build a safe FTS5 MATCH expression from free-form terms.

    Each term is quoted so FTS5 operators and punctuation inside it are
    treated as text. Returns "" when there is nothing to search for.
    """
    quoted = []
    seen = set()
    for term in terms:
        term = term.strip()
        if not term or term.lower() in seen:
            continue
        seen.add(term.lower())
        quoted.append('"' + term.replace('"', '""') + '"')
    return f" {operator} ".join(quoted)


def split_search_text(text: str) -> list[str]:
    """Split user search text into FTS terms."""
    return _FTS_TERM_RE.findall(text or "")


# =============================================================================
# ReviewStore Class
# =============================================================================


class ReviewStore:
    """SQLite-based storage for Guardian review memory."""

    def __init__(self, db_path: str | Path = ":memory:"):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self.db_path = str(db_path)
        self._is_memory = self.db_path == ":memory:"
        self._persistent_conn: Optional[sqlite3.Connection] = None

        # For in-memory DBs, create persistent connection immediately
        if self._is_memory:
            self._persistent_conn = self._connect()
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database: {e}", {"db_path": self.db_path}) from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        """Initialize database with schema."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def connection(self):
        """Get a database connection with proper cleanup.

        For in-memory databases, returns the persistent connection.
        For file-based databases, creates a new connection each time.
        Each use commits on its own; sqlite3 errors surface as StoreError.
        """
        conn = self._persistent_conn if self._is_memory else self._connect()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Database operation failed: {e}", {"db_path": self.db_path}) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            if not self._is_memory:
                conn.close()

    # =========================================================================
    # Review Operations
    # =========================================================================

    def save_review(self, review: Review) -> Review:
        """Save a review, updating the existing row when the diff was seen before."""
        diff_hash = review.diff_hash
        if diff_hash is None and review.diff_content:
            diff_hash = content_hash(review.diff_content)

        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reviews (
                    created_at, project_path, project_name, git_branch, git_commit,
                    files, files_count, diff_content, diff_hash,
                    result, status, provider, model, duration_ms
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(diff_hash) DO UPDATE SET
                    created_at = excluded.created_at,
                    files = excluded.files,
                    files_count = excluded.files_count,
                    result = excluded.result,
                    status = excluded.status,
                    provider = excluded.provider,
                    model = excluded.model,
                    duration_ms = excluded.duration_ms
                """,
                (
                    _to_iso(review.created_at),
                    review.project_path,
                    review.project_name,
                    review.git_branch,
                    review.git_commit,
                    json.dumps(review.files),
                    review.files_count,
                    review.diff_content,
                    diff_hash,
                    review.result,
                    review.status.value,
                    review.provider,
                    review.model,
                    review.duration_ms,
                ),
            )
            if diff_hash is None:
                review_id = cursor.lastrowid
            else:
                review_id = conn.execute(
                    "SELECT id FROM reviews WHERE diff_hash = ?", (diff_hash,)
                ).fetchone()["id"]

        return review.model_copy(update={"id": review_id, "diff_hash": diff_hash})

    def get_review(self, review_id: int) -> Optional[Review]:
        """Get a review by ID."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM reviews WHERE id = ?", (review_id,)
            ).fetchone()
            if row is None:
                return None
            return self._row_to_review(row)

    def get_reviews(
        self,
        limit: int = 50,
        status: Optional[ReviewStatus] = None,
        project: Optional[str] = None,
    ) -> list[Review]:
        """Get the most recent reviews, optionally filtered by status and project."""
        query = "SELECT * FROM reviews"
        clauses = []
        params: list = []
        if status:
            clauses.append("status = ?")
            params.append(ReviewStatus(status).value)
        if project:
            clauses.append("project_name = ?")
            params.append(project)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_review(row) for row in rows]

    def get_reviews_since(self, since: datetime) -> list[Review]:
        """Get reviews created at or after a point in time, oldest first."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM reviews WHERE created_at >= ? ORDER BY id ASC",
                (_to_iso(since),),
            ).fetchall()
            return [self._row_to_review(row) for row in rows]

    def search_reviews(
        self, match: str, limit: int = 20, project: Optional[str] = None
    ) -> list[tuple[Review, float]]:
        """Full-text search over review files, results and diffs.

        Args:
            match: An FTS5 MATCH expression, see build_match_query()
            limit: Maximum results
            project: Optional project filter

        Returns:
            (review, bm25 rank) pairs, best match first. Lower rank is better.
        """
        if not match:
            return []

        query = """
            SELECT r.*, reviews_fts.rank AS fts_rank
            FROM reviews_fts
            JOIN reviews r ON reviews_fts.rowid = r.id
            WHERE reviews_fts MATCH ?
        """
        params: list = [match]
        if project:
            query += " AND r.project_name = ?"
            params.append(project)
        query += " ORDER BY reviews_fts.rank LIMIT ?"
        params.append(limit)

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [(self._row_to_review(row), row["fts_rank"]) for row in rows]

    def _row_to_review(self, row: sqlite3.Row) -> Review:
        """Convert a database row to a Review model."""
        return Review(
            id=row["id"],
            created_at=_parse_datetime(row["created_at"]),
            project_path=row["project_path"],
            project_name=row["project_name"],
            git_branch=row["git_branch"],
            git_commit=row["git_commit"],
            files=json.loads(row["files"]) if row["files"] else [],
            diff_content=row["diff_content"],
            diff_hash=row["diff_hash"],
            result=row["result"],
            status=ReviewStatus(row["status"]),
            provider=row["provider"],
            model=row["model"],
            duration_ms=row["duration_ms"] or 0,
        )

    # =========================================================================
    # Insight Operations
    # =========================================================================

    def save_insight(self, insight: Insight) -> Insight:
        """Save an insight for an existing review."""
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO review_insights (
                    review_id, type, what, why, file_path, learned, severity, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    insight.review_id,
                    insight.type.value,
                    insight.what,
                    insight.why,
                    insight.file_path,
                    insight.learned,
                    insight.severity.value,
                    _to_iso(insight.created_at),
                ),
            )
            insight_id = cursor.lastrowid
        return insight.model_copy(update={"id": insight_id})

    def get_insights(self, review_id: int) -> list[Insight]:
        """Get insights for a review, most severe first."""
        with self.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM review_insights
                WHERE review_id = ?
                ORDER BY {SEVERITY_ORDER_SQL}, id ASC
                """,
                (review_id,),
            ).fetchall()
            return [self._row_to_insight(row) for row in rows]

    def get_insights_for_reviews(self, review_ids: Iterable[int]) -> dict[int, list[Insight]]:
        """Get insights grouped by review, most severe first within each review."""
        ids = list(dict.fromkeys(review_ids))
        grouped: dict[int, list[Insight]] = {review_id: [] for review_id in ids}
        if not ids:
            return grouped

        placeholders = ", ".join("?" for _ in ids)
        with self.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM review_insights
                WHERE review_id IN ({placeholders})
                ORDER BY {SEVERITY_ORDER_SQL}, id ASC
                """,
                ids,
            ).fetchall()
        for row in rows:
            grouped[row["review_id"]].append(self._row_to_insight(row))
        return grouped

    def get_insight_summaries(self, review_ids: Iterable[int], limit: int = 20) -> list[Insight]:
        """Compact insight listing across reviews: most severe, then newest review first."""
        ids = list(dict.fromkeys(review_ids))
        if not ids:
            return []

        placeholders = ", ".join("?" for _ in ids)
        with self.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM review_insights
                WHERE review_id IN ({placeholders})
                ORDER BY {SEVERITY_ORDER_SQL}, review_id DESC
                LIMIT ?
                """,
                [*ids, limit],
            ).fetchall()
            return [self._row_to_insight(row) for row in rows]

    def search_insights(self, match: str, limit: int = 20) -> list[tuple[Insight, float]]:
        """Full-text search over insights. Returns (insight, bm25 rank) pairs."""
        if not match:
            return []

        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT ri.*, insights_fts.rank AS fts_rank
                FROM insights_fts
                JOIN review_insights ri ON insights_fts.rowid = ri.id
                WHERE insights_fts MATCH ?
                ORDER BY insights_fts.rank
                LIMIT ?
                """,
                (match, limit),
            ).fetchall()
            return [(self._row_to_insight(row), row["fts_rank"]) for row in rows]

    def delete_insights(self, review_id: int) -> int:
        """Delete every insight of a review. Returns the number removed."""
        with self.connection() as conn:
            cursor = conn.execute("DELETE FROM review_insights WHERE review_id = ?", (review_id,))
            return cursor.rowcount

    def count_insights(self) -> int:
        with self.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM review_insights").fetchone()[0]

    def _row_to_insight(self, row: sqlite3.Row) -> Insight:
        """Convert a database row to an Insight model."""
        return Insight(
            id=row["id"],
            review_id=row["review_id"],
            type=row["type"],
            what=row["what"],
            why=row["why"],
            file_path=row["file_path"],
            learned=row["learned"],
            severity=row["severity"],
            created_at=_parse_datetime(row["created_at"]),
        )

    # =========================================================================
    # Statistics and Maintenance
    # =========================================================================

    def stats(self) -> ReviewStats:
        """Totals across all reviews."""
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_reviews,
                    SUM(CASE WHEN status = 'PASSED' THEN 1 ELSE 0 END) AS passed,
                    SUM(CASE WHEN status = 'FAILED' THEN 1 ELSE 0 END) AS failed,
                    SUM(CASE WHEN status = 'ERROR' THEN 1 ELSE 0 END) AS errors,
                    COUNT(DISTINCT project_name) AS projects,
                    AVG(duration_ms) AS avg_duration_ms
                FROM reviews
                """
            ).fetchone()
        return ReviewStats(
            total_reviews=row["total_reviews"],
            passed=row["passed"] or 0,
            failed=row["failed"] or 0,
            errors=row["errors"] or 0,
            projects=row["projects"],
            avg_duration_ms=row["avg_duration_ms"],
        )

    def stats_by_project(self) -> list[ProjectStats]:
        """Review totals per project, busiest first."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    project_name,
                    COUNT(*) AS review_count,
                    SUM(CASE WHEN status = 'PASSED' THEN 1 ELSE 0 END) AS passed,
                    SUM(CASE WHEN status = 'FAILED' THEN 1 ELSE 0 END) AS failed,
                    MAX(created_at) AS last_review
                FROM reviews
                GROUP BY project_name
                ORDER BY review_count DESC, project_name ASC
                """
            ).fetchall()
        return [
            ProjectStats(
                project_name=row["project_name"],
                review_count=row["review_count"],
                passed=row["passed"] or 0,
                failed=row["failed"] or 0,
                last_review=_parse_datetime(row["last_review"]),
            )
            for row in rows
        ]

    def cleanup(self, keep: int = 100) -> int:
        """Delete old reviews, keeping the most recent `keep` per project.

        Returns:
            Number of reviews deleted. Their insights go with them.
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                DELETE FROM reviews
                WHERE id NOT IN (
                    SELECT id FROM (
                        SELECT id, ROW_NUMBER() OVER (
                            PARTITION BY project_name
                            ORDER BY created_at DESC, id DESC
                        ) AS rn
                        FROM reviews
                    )
                    WHERE rn <= ?
                )
                """,
                (keep,),
            )
            deleted = cursor.rowcount
        logger.info(f"Cleanup removed {deleted} reviews (keeping {keep} per project)")
        return deleted

    def check(self) -> str:
        """Run SQLite's integrity check. Returns "ok" for a healthy database."""
        with self.connection() as conn:
            row = conn.execute("PRAGMA integrity_check").fetchone()
            return row[0]

    # =========================================================================
    # Learning Session Operations
    # =========================================================================

    def create_learning_session(self, session: LearningSession) -> LearningSession:
        """Create a new learning session."""
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO learning_sessions (
                    session_ref, project, git_commit, started_at, ended_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    session.session_ref,
                    session.project,
                    session.commit,
                    _to_iso(session.started_at),
                    _to_iso(session.ended_at),
                ),
            )
            session_id = cursor.lastrowid
        return session.model_copy(update={"id": session_id})

    def get_learning_session(self, session_id: int) -> Optional[LearningSession]:
        """Get a learning session by ID."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM learning_sessions WHERE id = ?", (session_id,)
            ).fetchone()
            if row is None:
                return None
            return self._row_to_learning_session(row)

    def get_active_learning_sessions(self) -> list[LearningSession]:
        """Get sessions that were started and never ended, oldest first."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM learning_sessions WHERE ended_at IS NULL ORDER BY id ASC"
            ).fetchall()
            return [self._row_to_learning_session(row) for row in rows]

    def end_learning_session(self, session_id: int, ended_at: datetime) -> bool:
        """Stamp ended_at on an active session. Returns False if it was not active."""
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE learning_sessions SET ended_at = ? WHERE id = ? AND ended_at IS NULL",
                (_to_iso(ended_at), session_id),
            )
            return cursor.rowcount > 0

    def get_learning_sessions(self, limit: int = 20) -> list[SessionRecord]:
        """Get recent sessions with distinct concept counts, newest first."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT ls.*, COUNT(sc.id) AS concept_count
                FROM learning_sessions ls
                LEFT JOIN session_concepts sc ON sc.session_id = ls.id
                GROUP BY ls.id
                ORDER BY ls.started_at DESC, ls.id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
            return [
                SessionRecord(
                    session=self._row_to_learning_session(row),
                    concept_count=row["concept_count"],
                )
                for row in rows
            ]

    def add_session_concept(self, session_concept: SessionConcept) -> bool:
        """Record a concept for a session. Returns False if it was already recorded."""
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO session_concepts (session_id, concept, first_seen_at)
                VALUES (?, ?, ?)
                """,
                (
                    session_concept.session_id,
                    session_concept.concept,
                    _to_iso(session_concept.first_seen_at),
                ),
            )
            return cursor.rowcount > 0

    def get_session_concepts(self, session_id: int) -> list[str]:
        """Get a session's distinct concepts in the order they were first seen."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT concept FROM session_concepts WHERE session_id = ? ORDER BY id ASC",
                (session_id,),
            ).fetchall()
            return [row["concept"] for row in rows]

    def _row_to_learning_session(self, row: sqlite3.Row) -> LearningSession:
        """Convert a database row to a LearningSession model."""
        return LearningSession(
            id=row["id"],
            session_ref=row["session_ref"],
            project=row["project"],
            commit=row["git_commit"],
            started_at=_parse_datetime(row["started_at"]),
            ended_at=_parse_datetime(row["ended_at"]),
        )

    # =========================================================================
    # Association Operations
    # =========================================================================

    def get_association(
        self, concept_a: str, concept_b: str, context: AssociationContext
    ) -> Optional[Association]:
        """Get an association by its canonical key."""
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM associations
                WHERE concept_a = ? AND concept_b = ? AND context = ?
                """,
                (concept_a, concept_b, AssociationContext(context).value),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_association(row)

    def save_association(self, association: Association) -> Association:
        """Insert an association or overwrite the weight of an existing one."""
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO associations (
                    concept_a, concept_b, context, weight,
                    reinforcement_count, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(concept_a, concept_b, context) DO UPDATE SET
                    weight = excluded.weight,
                    reinforcement_count = excluded.reinforcement_count,
                    updated_at = excluded.updated_at
                """,
                (
                    association.concept_a,
                    association.concept_b,
                    association.context.value,
                    association.weight,
                    association.reinforcement_count,
                    _to_iso(association.created_at),
                    _to_iso(association.updated_at),
                ),
            )
        return association

    def get_associations_for(self, concept: str, min_weight: float = 0.0) -> list[Association]:
        """Get every association touching a concept, strongest first."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM associations
                WHERE (concept_a = ? OR concept_b = ?) AND weight >= ?
                ORDER BY weight DESC, concept_a ASC, concept_b ASC, context ASC
                """,
                (concept, concept, min_weight),
            ).fetchall()
            return [self._row_to_association(row) for row in rows]

    def count_associations(self, context: Optional[AssociationContext] = None) -> int:
        """Count associations, optionally within one context."""
        with self.connection() as conn:
            if context:
                row = conn.execute(
                    "SELECT COUNT(*) FROM associations WHERE context = ?",
                    (AssociationContext(context).value,),
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM associations").fetchone()
            return row[0]

    def association_stats(self) -> dict[str, tuple[int, float]]:
        """Per-context (count, average weight)."""
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT context, COUNT(*) AS n, AVG(weight) AS avg_weight
                FROM associations
                GROUP BY context
                ORDER BY context
                """
            ).fetchall()
            return {row["context"]: (row["n"], row["avg_weight"]) for row in rows}

    def decay_associations(self, factor: float, idle_since: datetime) -> int:
        """Scale down the weight of associations not updated since `idle_since`."""
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE associations SET weight = weight * ? WHERE updated_at < ?",
                (factor, _to_iso(idle_since)),
            )
            return cursor.rowcount

    def prune_associations(self, min_weight: float) -> int:
        """Delete associations weaker than `min_weight`."""
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM associations WHERE weight < ?", (min_weight,)
            )
            return cursor.rowcount

    def _row_to_association(self, row: sqlite3.Row) -> Association:
        """Convert a database row to an Association model."""
        return Association(
            concept_a=row["concept_a"],
            concept_b=row["concept_b"],
            context=AssociationContext(row["context"]),
            weight=row["weight"],
            reinforcement_count=row["reinforcement_count"],
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )
