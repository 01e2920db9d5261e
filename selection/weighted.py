"""
Weighted random selection over an injected numpy Generator.
"""

from typing import List, Optional, Sequence, TypeVar

import numpy as np

T = TypeVar("T")


def _probabilities(weights: Sequence[float]) -> Optional[np.ndarray]:
    """Normalised draw probabilities; non-positive weights get zero"""
    p = np.clip(np.asarray(weights, dtype=float), 0.0, None)
    total = p.sum()
    if total <= 0:
        return None
    return p / total


def weighted_sample(
    items: Sequence[T],
    weights: Sequence[float],
    count: int,
    rng: Optional[np.random.Generator] = None,
) -> List[T]:
    """count independent draws with replacement; empty when nothing is eligible"""
    if count <= 0 or not items or len(items) != len(weights):
        return []
    p = _probabilities(weights)
    if p is None:
        return []

    rng = rng if rng is not None else np.random.default_rng()
    # Draw indices so arbitrary objects never pass through an ndarray
    picks = rng.choice(len(items), size=count, p=p)
    return [items[i] for i in picks]


def weighted_choice(
    items: Sequence[T],
    weights: Sequence[float],
    rng: Optional[np.random.Generator] = None,
) -> Optional[T]:
    """
    Pick one item with probability proportional to its weight.

    Non-positive weights are never picked. Returns None when items and
    weights disagree in length or no weight is positive.
    """
    drawn = weighted_sample(items, weights, 1, rng)
    return drawn[0] if drawn else None
