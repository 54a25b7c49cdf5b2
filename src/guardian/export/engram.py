"""One-way export of review insights to Engram observations.

Engram stores memories as categorized observations with a strength in
[0, 1]. Insights are mapped onto that model and written as JSON arrays,
one file per review. Nothing is read back from Engram.
"""

import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from guardian.core.config import Settings
from guardian.memory.models import utcnow
from guardian.memory.store import ReviewStore

logger = logging.getLogger(__name__)

ENGRAM_SOURCE = "guardian"

# Insight type -> Engram category
CATEGORY_MAP = {
    "security": "observation",
    "bugfix": "observation",
    "performance": "observation",
    "decision": "decision",
    "pattern": "pattern",
    "style": "insight",
}
DEFAULT_CATEGORY = "observation"

# Insight severity -> Engram strength
STRENGTH_MAP = {
    "critical": 1.0,
    "high": 0.8,
    "medium": 0.5,
    "low": 0.3,
}
DEFAULT_STRENGTH = 0.5


class EngramObservation(BaseModel):
    """An observation in Engram's import format."""

    category: str
    content: str
    strength: float = Field(ge=0.0, le=1.0)
    source: str = ENGRAM_SOURCE
    metadata: dict[str, str] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: utcnow().isoformat(timespec="seconds"))


def map_category(insight_type: str) -> str:
    return CATEGORY_MAP.get(insight_type, DEFAULT_CATEGORY)


def map_strength(severity: str) -> float:
    return STRENGTH_MAP.get(severity, DEFAULT_STRENGTH)


def format_insight(
    insight_type: str,
    what: str,
    file_path: Optional[str] = None,
    severity: str = "medium",
    project: Optional[str] = None,
) -> EngramObservation:
    """Convert one insight into an Engram observation.

    Raises:
        ValueError: If `what` is empty
    """
    if not what or not what.strip():
        raise ValueError("insight text must not be empty")

    metadata = {"gga_type": insight_type, "severity": severity}
    if file_path:
        metadata["file"] = file_path
    if project:
        metadata["project"] = project

    return EngramObservation(
        category=map_category(insight_type),
        content=what,
        strength=map_strength(severity),
        metadata=metadata,
    )


def observations_for_review(store: ReviewStore, review_id: int) -> list[EngramObservation]:
    """All insights of a review as Engram observations. Empty for unknown reviews."""
    review = store.get_review(review_id)
    if review is None:
        return []
    return [
        format_insight(
            insight.type.value,
            insight.what,
            insight.file_path,
            insight.severity.value,
            review.project_name,
        )
        for insight in store.get_insights(review_id)
        if insight.what.strip()
    ]


def export_review(store: ReviewStore, review_id: int, output_dir: Path) -> int:
    """Write a review's observations to ``guardian_review_<id>_<timestamp>.json``.

    Returns:
        Number of observations written. No file is written for zero.
    """
    observations = observations_for_review(store, review_id)
    if not observations:
        return 0

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"guardian_review_{review_id}_{utcnow():%Y%m%d%H%M%S}.json"
    path.write_text(
        json.dumps([o.model_dump() for o in observations], indent=2),
        encoding="utf-8",
    )
    logger.info(f"Exported {len(observations)} insights from review #{review_id} to {path}")
    return len(observations)


def export_recent(store: ReviewStore, days: int, output_dir: Path) -> int:
    """Export every review from the last `days` days. Returns the total count."""
    since = utcnow() - timedelta(days=days)
    total = sum(
        export_review(store, review.id, output_dir)
        for review in store.get_reviews_since(since)
    )
    logger.info(f"Exported {total} insights from the last {days} days")
    return total


def check(settings: Settings, store: Optional[ReviewStore] = None) -> tuple[bool, str]:
    """Whether the bridge can export, with a message for the user."""
    if not settings.engram_enabled:
        return False, "Engram bridge disabled (GGA_ENGRAM_ENABLED=false)"
    if store is None:
        return False, "No Guardian database found"
    count = store.count_insights()
    return True, f"Engram bridge ready: {count} insights available for export"
