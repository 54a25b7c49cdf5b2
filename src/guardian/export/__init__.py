"""Export of review insights to other memory systems."""

from .engram import (
    EngramObservation,
    check,
    export_recent,
    export_review,
    format_insight,
    observations_for_review,
)

__all__ = [
    "EngramObservation",
    "check",
    "export_recent",
    "export_review",
    "format_insight",
    "observations_for_review",
]
