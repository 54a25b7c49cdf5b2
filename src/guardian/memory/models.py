"""Pydantic models for the Guardian review memory.

Rows owned by the review history store:
- Review: One AI code review of a diff
- Insight: A typed finding extracted from a review

Rows owned by associative learning:
- Association: Weighted link between two concepts, scoped by context
- LearningSession: One review invocation that groups concepts together
- SessionConcept: A concept recorded while a session was active

Concepts themselves are plain namespaced strings ("file:auth.ts",
"pattern:security") and have no table of their own.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class ReviewStatus(str, Enum):
    """Outcome reported by the AI reviewer."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


class InsightType(str, Enum):
    """Kind of finding."""

    BUGFIX = "bugfix"
    SECURITY = "security"
    PATTERN = "pattern"
    DECISION = "decision"
    STYLE = "style"
    PERFORMANCE = "performance"


class Severity(str, Enum):
    """How much a finding matters."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANK = {
    Severity.CRITICAL: 1,
    Severity.HIGH: 2,
    Severity.MEDIUM: 3,
    Severity.LOW: 4,
}


class AssociationContext(str, Enum):
    """Where a co-occurrence was observed."""

    REVIEW = "review"  # Concepts seen in the same review
    SESSION = "session"  # Concepts seen in the same session


# =============================================================================
# Review Models
# =============================================================================


class Review(BaseModel):
    """A stored AI code review."""

    id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    project_path: str = ""
    project_name: str
    git_branch: Optional[str] = None
    git_commit: Optional[str] = None
    files: list[str] = Field(default_factory=list)
    diff_content: Optional[str] = None
    diff_hash: Optional[str] = None
    result: str = ""
    status: ReviewStatus = ReviewStatus.UNKNOWN
    provider: str = "unknown"
    model: Optional[str] = None
    duration_ms: int = 0

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value):
        if isinstance(value, ReviewStatus):
            return value
        try:
            return ReviewStatus(str(value).upper())
        except ValueError:
            return ReviewStatus.UNKNOWN

    @property
    def files_count(self) -> int:
        return len(self.files)


class Insight(BaseModel):
    """A structured finding extracted from a review.

    Unknown types fall back to ``pattern`` and unknown severities to
    ``medium`` rather than failing validation.
    """

    id: Optional[int] = None
    review_id: int
    type: InsightType = InsightType.PATTERN
    what: str
    why: Optional[str] = None
    file_path: Optional[str] = None
    learned: Optional[str] = None
    severity: Severity = Severity.MEDIUM
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value):
        try:
            return InsightType(value)
        except ValueError:
            return InsightType.PATTERN

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value):
        try:
            return Severity(value)
        except ValueError:
            return Severity.MEDIUM


# =============================================================================
# Learning Models
# =============================================================================


class Association(BaseModel):
    """Weighted link between two concepts.

    Stored under the canonical key (concept_a, concept_b, context) where
    concept_a < concept_b.
    """

    concept_a: str
    concept_b: str
    context: AssociationContext
    weight: float = Field(ge=0.0, le=1.0)
    reinforcement_count: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def other(self, concept: str) -> str:
        """The concept on the opposite end of this association."""
        return self.concept_b if concept == self.concept_a else self.concept_a


class LearningSession(BaseModel):
    """A bounded window in which concepts are accumulated."""

    id: Optional[int] = None
    session_ref: str
    project: Optional[str] = None
    commit: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


class SessionConcept(BaseModel):
    """A concept first seen during a session."""

    session_id: int
    concept: str
    first_seen_at: datetime = Field(default_factory=utcnow)
