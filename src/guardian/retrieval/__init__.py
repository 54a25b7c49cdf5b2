"""Retrieval - ranking past reviews and rendering them as context."""

from .ranker import (
    RankedReview,
    RelevanceSignals,
    RetrievalRanker,
    ScoringStrategy,
    WeightedSumStrategy,
    recency_factor,
)
from .disclosure import (
    DisclosureBuilder,
    DisclosureEntry,
    DisclosureTier,
    parse_record,
    select_tier,
)

__all__ = [
    "RankedReview",
    "RelevanceSignals",
    "RetrievalRanker",
    "ScoringStrategy",
    "WeightedSumStrategy",
    "recency_factor",
    "DisclosureBuilder",
    "DisclosureEntry",
    "DisclosureTier",
    "parse_record",
    "select_tier",
]
