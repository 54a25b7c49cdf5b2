"""Review memory - models, store, concepts and associative learning."""

from .models import (
    # Enums
    AssociationContext,
    InsightType,
    ReviewStatus,
    Severity,
    # Models
    Association,
    Insight,
    LearningSession,
    Review,
    SessionConcept,
    # Utilities
    utcnow,
)
from .store import ProjectStats, ReviewStats, ReviewStore, SessionRecord
from .concepts import derive_concepts, extract_insight
from .associations import AssociativeMemory, RelatedConcept
from .sessions import SessionHandle, SessionSummary, SessionTracker

__all__ = [
    # Store and learning
    "ReviewStore",
    "ReviewStats",
    "ProjectStats",
    "SessionRecord",
    "AssociativeMemory",
    "RelatedConcept",
    "SessionTracker",
    "SessionHandle",
    "SessionSummary",
    # Enums
    "AssociationContext",
    "InsightType",
    "ReviewStatus",
    "Severity",
    # Models
    "Association",
    "Insight",
    "LearningSession",
    "Review",
    "SessionConcept",
    # Utilities
    "derive_concepts",
    "extract_insight",
    "utcnow",
]
