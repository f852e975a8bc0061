# backend/batch_ordering.py

"""
Batch Ordering - deterministic consumption order of a product's batches

FEFO (first expired, first out) when expiry is tracked:
    expiry ascending, batches without expiry last,
    ties broken by created_at ascending (missing created_at first)
FIFO otherwise:
    created_at ascending (missing created_at first)

Python's sort is stable, so batches with identical keys keep their input
order. The input collection is never mutated.
"""

import math
from enum import Enum
from typing import Any, Iterable, List, Tuple

from pricing_models import Batch, coerce_flag


class ConsumptionPolicy(str, Enum):
    FIFO = "FIFO"
    FEFO = "FEFO"


def _created_key(batch: Batch) -> float:
    return batch.created_at.timestamp() if batch.created_at else 0.0


def _fefo_key(batch: Batch) -> Tuple[float, float]:
    expiry = batch.expiry.timestamp() if batch.expiry else math.inf
    return (expiry, _created_key(batch))


class BatchOrdering:
    """Produces the order in which batches are priced and consumed"""

    def policy_for(self, track_expiry: Any) -> ConsumptionPolicy:
        return ConsumptionPolicy.FEFO if coerce_flag(track_expiry) else ConsumptionPolicy.FIFO

    def order(self, batches: Iterable[Batch], track_expiry: Any) -> List[Batch]:
        if not batches:
            return []
        if self.policy_for(track_expiry) == ConsumptionPolicy.FEFO:
            return sorted(batches, key=_fefo_key)
        return sorted(batches, key=_created_key)

    def order_available(self, batches: Iterable[Batch], track_expiry: Any) -> List[Batch]:
        """Same as order(), restricted to batches that still hold stock"""
        return self.order([b for b in (batches or []) if b.quantity > 0], track_expiry)


def order_batches(batches: Iterable[Batch], track_expiry: Any = False) -> List[Batch]:
    return BatchOrdering().order(batches, track_expiry)
