"""
Order Resolver

Computes the display order of questions, groups and options for one session.

Modes:
    SEQUENTIAL    authored order, never cached
    RANDOM        unbiased Fisher-Yates shuffle (random.Random.shuffle)
    GROUP_RANDOM  shuffle within each group-key partition, shuffle the order
                  of the partitions, then append the shuffled ungrouped items
    WEIGHTED      weighted random order without replacement; with equal
                  weights this is a plain shuffle

STABILITY CONTRACT:
    For one (scope, entity id, mode) the first computed order is stored in
    the session's order cache. Later calls return the cached order restricted
    to the ids currently being displayed. Ids never seen before are appended
    after the cached ones, in authored order, and added to the cache; the
    whole set is never reshuffled.
"""

import logging
import random
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from surveyflow.model import OrderMode

logger = logging.getLogger(__name__)

WEIGHTED_SAMPLING = "weighted"
WEIGHTED_SHUFFLE = "shuffle"


@dataclass(frozen=True)
class OrderItem:
    """One orderable thing: its id plus the attributes some modes read."""

    id: str
    group_key: Optional[str] = None
    weight: Optional[float] = None


def cache_key(scope: str, entity_id: str, mode: OrderMode) -> str:
    return f"{scope}:{entity_id}:{mode.value}"


def coerce_mode(mode: Union[OrderMode, str, None]) -> OrderMode:
    """Map a stored mode to OrderMode, falling back to SEQUENTIAL."""
    if isinstance(mode, OrderMode):
        return mode
    try:
        return OrderMode(mode)
    except ValueError:
        logger.warning("Unknown order mode %r, using SEQUENTIAL", mode)
        return OrderMode.SEQUENTIAL


class OrderResolver:
    """
    Orders items for one session.

    Args:
        cache: the session's order cache, mutated in place
        rng: source of randomness (inject random.Random(seed) for tests)
        weighted_order: "weighted" for genuine weighted sampling,
            "shuffle" to treat WEIGHTED as RANDOM
    """

    def __init__(
        self,
        cache: Dict[str, List[str]],
        rng: Optional[random.Random] = None,
        weighted_order: str = WEIGHTED_SAMPLING,
    ):
        self.cache = cache
        self.rng = rng or random.Random()
        self.weighted_order = weighted_order

    def order(
        self,
        entity_id: str,
        mode: Union[OrderMode, str, None],
        items: Sequence[OrderItem],
        scope: str = "option",
    ) -> List[str]:
        """Return the ids of items in display order."""
        mode = coerce_mode(mode)
        ids = [item.id for item in items]
        if mode is OrderMode.SEQUENTIAL:
            return ids

        key = cache_key(scope, entity_id, mode)
        cached = self.cache.get(key)
        if cached is None:
            ordered = self._compute(mode, list(items))
            self.cache[key] = list(ordered)
            return ordered

        logger.debug("Order cache hit for %s", key)
        current = set(ids)
        known = set(cached)
        result = [item_id for item_id in cached if item_id in current]
        appended = [item_id for item_id in ids if item_id not in known]
        if appended:
            cached.extend(appended)
            result.extend(appended)
        return result

    def _compute(self, mode: OrderMode, items: List[OrderItem]) -> List[str]:
        if mode is OrderMode.RANDOM:
            return self._shuffled([item.id for item in items])
        if mode is OrderMode.GROUP_RANDOM:
            return self._group_random(items)
        if self.weighted_order == WEIGHTED_SHUFFLE:
            return self._shuffled([item.id for item in items])
        return self._weighted(items)

    def _shuffled(self, ids: List[str]) -> List[str]:
        shuffled = list(ids)
        self.rng.shuffle(shuffled)
        return shuffled

    def _group_random(self, items: List[OrderItem]) -> List[str]:
        partitions: Dict[str, List[str]] = {}
        ungrouped: List[str] = []
        for item in items:
            if item.group_key:
                partitions.setdefault(item.group_key, []).append(item.id)
            else:
                ungrouped.append(item.id)

        keys = self._shuffled(list(partitions))
        result: List[str] = []
        for key in keys:
            result.extend(self._shuffled(partitions[key]))
        result.extend(self._shuffled(ungrouped))
        return result

    def _weighted(self, items: List[OrderItem]) -> List[str]:
        # Efraimidis-Spirakis: key u ** (1 / w), larger keys first.
        keyed = []
        unweighted: List[str] = []
        for item in items:
            weight = 1.0 if item.weight is None else float(item.weight)
            if weight <= 0:
                unweighted.append(item.id)
                continue
            keyed.append((self.rng.random() ** (1.0 / weight), item.id))
        keyed.sort(key=lambda pair: pair[0], reverse=True)
        return [item_id for _, item_id in keyed] + self._shuffled(unweighted)
