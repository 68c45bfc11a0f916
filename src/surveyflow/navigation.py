"""
Survey Navigator

Decides the next and previous page for a session, composing ordinary
sequential navigation with the loop battery state machine.

Loop state per (session, battery), derived from the stored LoopPlan:

    NOT_STARTED   no plan stored
    ITERATING(i)  plan.cursor == i < len(plan.items)
    DONE          plan.cursor >= len(plan.items); an empty plan means the
                  battery was skipped

Transitions:
    arrive at start page   plan once if NOT_STARTED; an empty plan routes to
                           the first page after the end page
    leave end page         ITERATING(i) -> ITERATING(i+1) back at the start
                           page, or DONE and on past the end page
    jump off end page      ITERATING(i) -> DONE
    back from start page   ITERATING(i>0) -> ITERATING(i-1) at the end page;
                           at the first item, leave the block backwards

Pages strictly inside a battery move by index like any other page. Page to
battery roles come from a LoopRoleTable built once per survey.

IMPORTANT:
    Operations mutate the SessionState they are given. Callers pass a working
    copy and persist it afterwards (see surveyflow.runtime).
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from surveyflow.evaluator import EvaluationContext
from surveyflow.loops import LoopContext, LoopItem, LoopPlan, plan_loop, source_items
from surveyflow.model import LoopBattery, Survey
from surveyflow.session import SessionState
from surveyflow.visibility import VisibilityResolver

logger = logging.getLogger(__name__)


class UnknownPageError(KeyError):
    """Raised when navigation is asked about a page the survey does not have."""
    pass


class LoopRole(Enum):
    START = "START"
    INTERIOR = "INTERIOR"
    END = "END"


@dataclass(frozen=True)
class PageLoopRole:
    battery: LoopBattery
    role: LoopRole


class LoopRoleTable:
    """
    Page id -> (battery, role) lookup.

    Batteries with a missing page, an inverted range, or pages already claimed
    by an earlier battery are left out and logged.
    """

    def __init__(self, survey: Survey):
        self._roles: Dict[str, PageLoopRole] = {}
        ordered = survey.pages_in_order()

        for battery in survey.loop_batteries:
            start = survey.get_page(battery.start_page_id)
            end = survey.get_page(battery.end_page_id)
            if start is None or end is None or start.index >= end.index:
                logger.warning("Ignoring loop battery %s with an invalid page range", battery.id)
                continue

            pages = [p for p in ordered if start.index <= p.index <= end.index]
            claimed = [p.id for p in pages if p.id in self._roles]
            if claimed:
                logger.warning(
                    "Ignoring loop battery %s: pages %s already belong to another battery",
                    battery.id, ", ".join(claimed),
                )
                continue

            for page in pages:
                if page.id == start.id:
                    role = LoopRole.START
                elif page.id == end.id:
                    role = LoopRole.END
                else:
                    role = LoopRole.INTERIOR
                self._roles[page.id] = PageLoopRole(battery, role)

    def role_of(self, page_id: Optional[str]) -> Optional[PageLoopRole]:
        if page_id is None:
            return None
        return self._roles.get(page_id)

    def is_boundary(self, page_id: str) -> bool:
        entry = self._roles.get(page_id)
        return entry is not None and entry.role is not LoopRole.INTERIOR


@dataclass(frozen=True)
class NavigationResult:
    """
    Where the respondent goes.

    page_id is None when there is nowhere to go: past the last page when
    moving forward (completed=True), before the first page when moving back.
    terminated and termination_reason are set when a termination expression
    ended the survey.
    """

    page_id: Optional[str]
    loop_context: Optional[LoopContext] = None
    completed: bool = False
    terminated: bool = False
    termination_reason: Optional[str] = None

    @property
    def is_loop_iteration(self) -> bool:
        return self.loop_context is not None


@dataclass(frozen=True)
class LoopProgress:
    """Read-only projection of a battery's progress."""

    battery_id: str
    current_iteration: int
    total_iterations: int
    percent_complete: float
    current_item: LoopItem
    is_first: bool
    is_last: bool
    is_complete: bool


class SurveyNavigator:
    """
    Navigation for one survey definition.

    Args:
        survey: the definition
        rng: randomness for loop plans
        skip_invisible_pages: skip pages whose visibility expression is False
        log_failures: log fail-open evaluation events at WARNING
    """

    def __init__(
        self,
        survey: Survey,
        rng: Optional[random.Random] = None,
        skip_invisible_pages: bool = True,
        log_failures: bool = True,
    ):
        self.survey = survey
        self.rng = rng or random.Random()
        self.skip_invisible_pages = skip_invisible_pages
        self.log_failures = log_failures
        self.pages = survey.pages_in_order()
        self._position = {page.id: i for i, page in enumerate(self.pages)}
        self.roles = LoopRoleTable(survey)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def first_page(self, state: SessionState) -> NavigationResult:
        if not self.pages:
            return NavigationResult(None, completed=True)
        first = self.pages[0].id
        if self._is_shown(first, state):
            return self.arrive(state, first)
        return self.arrive(state, self._next_in_order(first, state))

    def arrive(self, state: SessionState, page_id: Optional[str]) -> NavigationResult:
        """
        Land on a page moving forward, running loop entry at start pages.
        """
        while page_id is not None:
            entry = self.roles.role_of(page_id)
            if entry is None or entry.role is not LoopRole.START:
                return NavigationResult(page_id, self.loop_context_for(state, page_id))

            battery = entry.battery
            plan, was_done = self._enter(state, battery)
            # revisiting a finished battery shows its last item
            if plan.items and (was_done or not plan.is_complete):
                return NavigationResult(page_id, LoopContext.from_plan(plan))

            logger.info("Skipping loop battery %s: nothing to iterate", battery.id)
            page_id = self._next_in_order(battery.end_page_id, state)

        return NavigationResult(None, completed=True)

    def next_page(self, state: SessionState, current_page_id: str) -> NavigationResult:
        """Page after current_page_id, honouring loop iteration at end pages."""
        self._require(current_page_id)
        entry = self.roles.role_of(current_page_id)

        if entry is not None and entry.role is LoopRole.END:
            battery = entry.battery
            plan = state.loop_plan(battery.id)
            if plan is not None and not plan.is_complete:
                plan.advance()
                self._skip_stale(state, battery, plan)
                if not plan.is_complete:
                    logger.info(
                        "Loop battery %s advanced to item %d of %d",
                        battery.id, plan.cursor + 1, len(plan.items),
                    )
                    return NavigationResult(battery.start_page_id, LoopContext.from_plan(plan))
                logger.info("Loop battery %s complete", battery.id)

        return self.arrive(state, self._next_in_order(current_page_id, state))

    def previous_page(self, state: SessionState, current_page_id: str) -> NavigationResult:
        """Page before current_page_id, stepping back through loop iterations."""
        self._require(current_page_id)
        entry = self.roles.role_of(current_page_id)

        if entry is not None and entry.role is LoopRole.START:
            battery = entry.battery
            plan = state.loop_plan(battery.id)
            if plan is not None and plan.rewind():
                return NavigationResult(battery.end_page_id, LoopContext.from_plan(plan))

        return self._arrive_backward(state, self._previous_in_order(current_page_id, state))

    def loop_context_for(self, state: SessionState, page_id: str) -> Optional[LoopContext]:
        entry = self.roles.role_of(page_id)
        if entry is None:
            return None
        return LoopContext.from_plan(state.loop_plan(entry.battery.id))

    def continues_loop(self, state: SessionState, page_id: str) -> bool:
        """True when leaving page_id would start another iteration."""
        entry = self.roles.role_of(page_id)
        if entry is None or entry.role is not LoopRole.END:
            return False
        plan = state.loop_plan(entry.battery.id)
        return plan is not None and plan.cursor + 1 < len(plan.items)

    def close_iteration(self, state: SessionState, page_id: str) -> bool:
        """
        Mark the battery DONE when a jump leaves its end page on the last pass.

        Returns True if a plan was closed.
        """
        entry = self.roles.role_of(page_id)
        if entry is None or entry.role is not LoopRole.END:
            return False
        plan = state.loop_plan(entry.battery.id)
        if plan is None or plan.is_complete:
            return False
        plan.cursor = len(plan.items)
        logger.info("Loop battery %s complete: left by a jump", entry.battery.id)
        return True

    def reset_loops_for_question(self, state: SessionState, question_id: str) -> List[str]:
        """Discard plans of ANSWER batteries sourced from question_id."""
        reset = []
        for battery in self.survey.batteries_sourced_from(question_id):
            if state.render_state.loop_plans.pop(battery.id, None) is not None:
                logger.info("Loop battery %s reset: source answer changed", battery.id)
                reset.append(battery.id)
        return reset

    def loop_progress(self, state: SessionState, battery_id: str) -> Optional[LoopProgress]:
        context = LoopContext.from_plan(state.loop_plan(battery_id))
        if context is None:
            return None
        return LoopProgress(
            battery_id=battery_id,
            current_iteration=context.current_index + 1,
            total_iterations=context.total_items,
            percent_complete=context.percent_complete,
            current_item=context.current_item,
            is_first=context.is_first,
            is_last=context.is_last,
            is_complete=state.loop_plan(battery_id).is_complete,
        )

    # ------------------------------------------------------------------
    # Loop plumbing
    # ------------------------------------------------------------------

    def _enter(self, state: SessionState, battery: LoopBattery) -> Tuple[LoopPlan, bool]:
        """Plan on first entry. Returns the plan and whether it was already DONE."""
        plan = state.loop_plan(battery.id)
        if plan is None:
            plan = plan_loop(battery, self.survey, state.responses, self.rng)
            if plan is None:
                plan = LoopPlan.skipped(battery.id)
            state.render_state.loop_plans[battery.id] = plan
            return plan, False
        was_done = plan.is_complete
        self._skip_stale(state, battery, plan)
        return plan, was_done

    def _skip_stale(self, state: SessionState, battery: LoopBattery, plan: LoopPlan) -> None:
        """Step the cursor over items no longer present in the source data."""
        if plan.is_complete:
            return
        live = {item.key for item in source_items(battery, self.survey, state.responses)}
        while not plan.is_complete and plan.current_item.key not in live:
            logger.info(
                "Loop battery %s: item %s is stale, skipping",
                battery.id, plan.current_item.key,
            )
            plan.cursor += 1

    def _arrive_backward(self, state: SessionState, page_id: Optional[str]) -> NavigationResult:
        while page_id is not None:
            entry = self.roles.role_of(page_id)
            if entry is None:
                return NavigationResult(page_id)
            plan = state.loop_plan(entry.battery.id)
            if plan is not None and plan.items:
                return NavigationResult(page_id, LoopContext.from_plan(plan))
            page_id = self._previous_in_order(entry.battery.start_page_id, state)
        return NavigationResult(None)

    # ------------------------------------------------------------------
    # Sequential order
    # ------------------------------------------------------------------

    def _require(self, page_id: str) -> int:
        try:
            return self._position[page_id]
        except KeyError:
            raise UnknownPageError(f"Unknown page: {page_id}")

    def _is_shown(self, page_id: str, state: SessionState) -> bool:
        if not self.skip_invisible_pages or self.roles.is_boundary(page_id):
            return True
        page = self.pages[self._position[page_id]]
        return self._visibility(state).is_visible(page)

    def _visibility(self, state: SessionState) -> VisibilityResolver:
        context = EvaluationContext(state.responses, state.embedded_data, self.survey.questions)
        return VisibilityResolver(context, log_failures=self.log_failures)

    def _next_in_order(self, page_id: str, state: SessionState) -> Optional[str]:
        for page in self.pages[self._require(page_id) + 1:]:
            if self._is_shown(page.id, state):
                return page.id
        return None

    def _previous_in_order(self, page_id: str, state: SessionState) -> Optional[str]:
        for page in reversed(self.pages[:self._require(page_id)]):
            if self._is_shown(page.id, state):
                return page.id
        return None


def response_changed(old: Any, new: Any) -> bool:
    """Compare two responses, ignoring list order for multi-select answers."""
    if isinstance(old, (list, tuple)) and isinstance(new, (list, tuple)):
        return sorted(map(str, old)) != sorted(map(str, new))
    return old != new
