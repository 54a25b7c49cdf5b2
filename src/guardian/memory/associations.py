"""Associative memory over concepts.

A weighted, undirected graph whose edges are reinforced every time two
concepts are observed together. Edges are partitioned by context: the
same pair may carry independent "review" and "session" associations.

Reinforcement is saturating:

    step = min(learning_rate * boost, MAX_STEP)
    new edge:      weight = step
    existing edge: weight = min(weight + step * (1 - weight), MAX_WEIGHT)

so repeated reinforcement approaches 1 without reaching it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from guardian.core.errors import ConfigError

from .models import Association, AssociationContext, utcnow
from .store import ReviewStore

logger = logging.getLogger(__name__)

# Weights stay strictly below 1 however large the rate or boost
MAX_STEP = 0.9
MAX_WEIGHT = 0.999


@dataclass(frozen=True)
class RelatedConcept:
    """One neighbour of a concept in the association graph."""

    concept: str
    context: AssociationContext
    weight: float


def canonical_pair(concept_a: str, concept_b: str) -> tuple[str, str]:
    """Order a pair so (a, b) and (b, a) share one storage key."""
    return (concept_a, concept_b) if concept_a < concept_b else (concept_b, concept_a)


class AssociativeMemory:
    """Durable weighted concept graph backed by the review store."""

    def __init__(self, store: ReviewStore, learning_rate: float = 0.1):
        """Initialize the memory.

        Args:
            store: Review store holding the associations table
            learning_rate: Reinforcement step in (0, 1]
        """
        if not 0.0 < learning_rate <= 1.0:
            raise ConfigError(
                "learning_rate must be in (0, 1]", {"learning_rate": learning_rate}
            )
        self.store = store
        self.learning_rate = learning_rate

    def step_for(self, boost: float) -> float:
        return min(self.learning_rate * boost, MAX_STEP)

    def reinforce(
        self,
        concept_a: str,
        concept_b: str,
        context: AssociationContext | str,
        boost: float = 1.0,
    ) -> Optional[Association]:
        """Strengthen the association between two concepts in one context.

        Returns:
            The updated association, or None when both concepts are the same.
        """
        if concept_a == concept_b:
            return None
        if boost <= 0:
            raise ConfigError("boost must be positive", {"boost": boost})

        context = AssociationContext(context)
        first, second = canonical_pair(concept_a, concept_b)
        step = self.step_for(boost)
        now = utcnow()

        existing = self.store.get_association(first, second, context)
        if existing is None:
            association = Association(
                concept_a=first,
                concept_b=second,
                context=context,
                weight=step,
                created_at=now,
                updated_at=now,
            )
        else:
            weight = min(existing.weight + step * (1.0 - existing.weight), MAX_WEIGHT)
            association = existing.model_copy(
                update={
                    "weight": weight,
                    "reinforcement_count": existing.reinforcement_count + 1,
                    "updated_at": now,
                }
            )

        self.store.save_association(association)
        logger.debug(
            f"Reinforced {first} <-> {second} [{context.value}] to {association.weight:.4f}"
        )
        return association

    def reinforce_all(
        self,
        concepts: Iterable[str],
        context: AssociationContext | str,
        boost: float = 1.0,
    ) -> int:
        """Reinforce every unordered pair among distinct concepts.

        Each pair commits on its own. Returns the number of pairs reinforced,
        C(n, 2) for n distinct concepts.
        """
        distinct = list(dict.fromkeys(concepts))
        count = 0
        for i, concept_a in enumerate(distinct):
            for concept_b in distinct[i + 1:]:
                if self.reinforce(concept_a, concept_b, context, boost) is not None:
                    count += 1
        return count

    def query(self, concept: str, min_weight: float = 0.0) -> list[RelatedConcept]:
        """Neighbours of a concept across all contexts, strongest first."""
        related = [
            RelatedConcept(
                concept=association.other(concept),
                context=association.context,
                weight=association.weight,
            )
            for association in self.store.get_associations_for(concept, min_weight)
        ]
        related.sort(key=lambda r: (-r.weight, r.concept, r.context.value))
        return related

    def strength(self, concept_a: str, concept_b: str) -> float:
        """Combined weight of a pair across every context."""
        if concept_a == concept_b:
            return 0.0
        first, second = canonical_pair(concept_a, concept_b)
        total = 0.0
        for context in AssociationContext:
            association = self.store.get_association(first, second, context)
            if association:
                total += association.weight
        return total

    # =========================================================================
    # Maintenance
    # =========================================================================

    def decay(self, factor: float, idle_days: float = 30.0, now: Optional[datetime] = None) -> int:
        """Weaken associations that have not been reinforced recently.

        Only runs when invoked; nothing decays in the background.

        Args:
            factor: Multiplier in (0, 1] applied to idle weights
            idle_days: Associations untouched for this long are decayed
            now: Reference time (defaults to the current time)

        Returns:
            Number of associations decayed
        """
        if not 0.0 < factor <= 1.0:
            raise ConfigError("decay factor must be in (0, 1]", {"factor": factor})
        if idle_days < 0:
            raise ConfigError("idle_days must not be negative", {"idle_days": idle_days})

        cutoff = (now or utcnow()) - timedelta(days=idle_days)
        decayed = self.store.decay_associations(factor, cutoff)
        logger.info(f"Decayed {decayed} associations idle since {cutoff:%Y-%m-%d} by {factor}")
        return decayed

    def prune(self, min_weight: float) -> int:
        """Delete associations weaker than `min_weight`. Returns the count removed."""
        if not 0.0 <= min_weight <= 1.0:
            raise ConfigError("min_weight must be in [0, 1]", {"min_weight": min_weight})
        pruned = self.store.prune_associations(min_weight)
        logger.info(f"Pruned {pruned} associations below {min_weight}")
        return pruned

    def stats(self) -> dict[str, tuple[int, float]]:
        """Per-context (count, average weight)."""
        return self.store.association_stats()
