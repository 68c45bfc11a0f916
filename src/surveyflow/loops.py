"""
Loop Planner

Computes the ordered list of items a loop battery repeats over, once per
session, and the plan/context objects the navigator and templates consume.

Sourcing:
    ANSWER   the selected option values of the battery's source question,
             labelled with the option label; unanswered means zero items
    DATASET  active dataset rows ordered by sort index; the label is
             attributes["label"] if present, else the row key

Post-processing, in this order:
    1. shuffle once if battery.randomize
    2. truncate to battery.max_items (None or below 1 means no cap)

Zero items yields None: the caller skips the whole battery.

IMPORTANT:
    A plan, including its shuffled order, is generated once and then
    persisted in the session. Nothing in this module decides when to
    regenerate; see surveyflow.navigation for the reset rule.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from surveyflow.model import LoopBattery, LoopSourceType, Survey

logger = logging.getLogger(__name__)


@dataclass
class LoopItem:
    """One iteration's subject."""

    key: str
    label: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LoopPlan:
    """
    Persisted, ordered items of one battery plus a zero-based cursor.

    Status is derived:
        cursor < len(items)   ITERATING(cursor)
        cursor >= len(items)  DONE (an empty plan is DONE from the start)
    """

    battery_id: str
    items: List[LoopItem] = field(default_factory=list)
    cursor: int = 0

    @property
    def keys(self) -> List[str]:
        return [item.key for item in self.items]

    @property
    def is_complete(self) -> bool:
        return self.cursor >= len(self.items)

    @property
    def current_item(self) -> Optional[LoopItem]:
        if self.is_complete:
            return None
        return self.items[self.cursor]

    def display_index(self) -> Optional[int]:
        """Index of the item to render: the cursor, or the last item once done."""
        if not self.items:
            return None
        return min(self.cursor, len(self.items) - 1)

    def advance(self) -> bool:
        """Move to the next item. Returns True while items remain."""
        if not self.is_complete:
            self.cursor += 1
        return not self.is_complete

    def rewind(self) -> bool:
        """Step back one item. Returns False at the first item."""
        index = self.display_index()
        if not index:
            return False
        self.cursor = index - 1
        return True

    @classmethod
    def skipped(cls, battery_id: str) -> "LoopPlan":
        """Marker for a battery that planned zero items."""
        return cls(battery_id=battery_id, items=[], cursor=0)


@dataclass(frozen=True)
class LoopContext:
    """Read-only view of the current iteration, used for rendering."""

    battery_id: str
    current_item: LoopItem
    current_index: int
    total_items: int

    @property
    def is_first(self) -> bool:
        return self.current_index == 0

    @property
    def is_last(self) -> bool:
        return self.current_index == self.total_items - 1

    @property
    def percent_complete(self) -> float:
        return (self.current_index + 1) / self.total_items * 100

    @classmethod
    def from_plan(cls, plan: Optional[LoopPlan]) -> Optional["LoopContext"]:
        if plan is None:
            return None
        index = plan.display_index()
        if index is None:
            return None
        return cls(
            battery_id=plan.battery_id,
            current_item=plan.items[index],
            current_index=index,
            total_items=len(plan.items),
        )


def _selected_values(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def source_items(battery: LoopBattery, survey: Survey, responses: Dict[str, Any]) -> List[LoopItem]:
    """Items in source order, before randomization and truncation."""
    if battery.source_type is LoopSourceType.DATASET:
        rows = sorted(
            (row for row in battery.dataset_items if row.is_active),
            key=lambda row: row.sort_index,
        )
        return [
            LoopItem(
                key=row.key,
                label=str(row.attributes.get("label") or row.key),
                attributes=dict(row.attributes),
            )
            for row in rows
        ]

    question = survey.get_question(battery.source_question_id) if battery.source_question_id else None
    if question is None:
        logger.warning("Loop battery %s has no resolvable source question", battery.id)
        return []
    if not question.is_multi_select:
        logger.warning(
            "Loop battery %s sources from non multi-select question %s",
            battery.id, question.id,
        )

    items: List[LoopItem] = []
    seen = set()
    for value in _selected_values(responses.get(question.id)):
        option = question.get_option_by_value(value)
        if option is None or option.value in seen:
            continue
        seen.add(option.value)
        items.append(LoopItem(
            key=str(option.value),
            label=option.label,
            attributes={"value": option.value, "label": option.label},
        ))
    return items


def plan_loop(
    battery: LoopBattery,
    survey: Survey,
    responses: Dict[str, Any],
    rng: Optional[random.Random] = None,
) -> Optional[LoopPlan]:
    """
    Build a fresh plan for a battery.

    Returns:
        LoopPlan with cursor 0, or None when there is nothing to loop over
    """
    items = source_items(battery, survey, responses)
    if not items:
        logger.info("Loop battery %s planned zero items", battery.id)
        return None

    if battery.randomize:
        (rng or random.Random()).shuffle(items)

    if battery.max_items is not None and battery.max_items > 0:
        items = items[:battery.max_items]

    logger.info("Loop battery %s planned %d items", battery.id, len(items))
    return LoopPlan(battery_id=battery.id, items=items, cursor=0)
