"""
Per-session state.

A SessionState is an explicit, versioned value. Every runtime operation
receives one, works on a copy, and hands the copy back to be persisted under
the session id with a compare-and-swap on `version`
(see surveyflow.store). Nothing is shared between sessions.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from surveyflow.loops import LoopPlan


@dataclass
class SessionRenderState:
    """
    Render-time memory of a session.

    Properties:
        loop_plans: battery id -> LoopPlan (absent means NOT_STARTED)
        order_cache: "<scope>:<entity id>:<mode>" -> ids in display order
    """

    loop_plans: Dict[str, LoopPlan] = field(default_factory=dict)
    order_cache: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class SessionState:
    """
    Everything one respondent's session carries.

    Properties:
        session_id / survey_id: identity
        responses: question id -> submitted value(s)
        embedded_data: respondent data readable by expressions and piping
        render_state: loop plans and order cache
        current_page_id: where the respondent is
        history: pages visited, in order
        completed: True once the survey ended (END jump, termination or past
            the last page)
        terminated / termination_reason: set when a question's termination
            expression ended the survey
        version: incremented on every successful save
    """

    session_id: str
    survey_id: str
    responses: Dict[str, Any] = field(default_factory=dict)
    embedded_data: Dict[str, Any] = field(default_factory=dict)
    render_state: SessionRenderState = field(default_factory=SessionRenderState)
    current_page_id: Optional[str] = None
    history: List[str] = field(default_factory=list)
    completed: bool = False
    terminated: bool = False
    termination_reason: Optional[str] = None
    version: int = 0

    def copy(self) -> "SessionState":
        return copy.deepcopy(self)

    def loop_plan(self, battery_id: str) -> Optional[LoopPlan]:
        return self.render_state.loop_plans.get(battery_id)

    def move_to(self, page_id: Optional[str]) -> None:
        self.current_page_id = page_id
        if page_id is not None:
            self.history.append(page_id)
