"""
Survey Runtime

The facade a transport layer talks to. One SurveyRuntime serves one survey
definition; sessions live in a SessionStore.

Every operation is one transaction:
    load state -> work on the loaded copy -> save with compare-and-swap

A lost race raises surveyflow.store.StaleSessionError to the caller, which
should reload and ask again rather than replay the step.

Leaving a page (get_next_page) decides in this order:
    1. loop continuation at a battery end page
    2. termination expressions and jump rules of the questions the
       respondent saw and answered on the page, in authored order
    3. page jump rules
    4. the next visible page
"""

import logging
import random
import uuid
from typing import Any, Dict, List, Optional

from surveyflow.config import RuntimeConfig
from surveyflow.evaluator import EvaluationContext
from surveyflow.jumps import JumpOutcome, JumpResolver
from surveyflow.model import Question, Survey
from surveyflow.navigation import (
    LoopProgress,
    NavigationResult,
    SurveyNavigator,
    response_changed,
)
from surveyflow.page_resolver import ResolvedPage, resolve_page
from surveyflow.session import SessionState
from surveyflow.store import InMemorySessionStore, SessionStore
from surveyflow.visibility import VisibilityResolver

logger = logging.getLogger(__name__)


class UnknownQuestionError(KeyError):
    """Raised when an answer is submitted for a question the survey does not have."""
    pass


class SurveyRuntime:
    """
    Runtime operations for one survey.

    Args:
        survey: the definition (validate it with surveyflow.analyzer first)
        store: session persistence; defaults to an in-memory store
        config: RuntimeConfig; defaults apply when omitted
    """

    def __init__(
        self,
        survey: Survey,
        store: Optional[SessionStore] = None,
        config: Optional[RuntimeConfig] = None,
    ):
        self.survey = survey
        self.store = store or InMemorySessionStore()
        self.config = config or RuntimeConfig()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(
        self,
        session_id: Optional[str] = None,
        embedded_data: Optional[Dict[str, Any]] = None,
    ) -> SessionState:
        """Create a session placed on the first visible page."""
        state = SessionState(
            session_id=session_id or uuid.uuid4().hex,
            survey_id=self.survey.id,
            embedded_data=dict(embedded_data or {}),
        )
        result = self._navigator(state).first_page(state)
        self._apply(state, result)
        logger.info("Session %s started on page %s", state.session_id, state.current_page_id)
        return self.store.create(state)

    def get_session(self, session_id: str) -> SessionState:
        return self.store.load(session_id)

    def current_position(self, session_id: str) -> NavigationResult:
        state = self.store.load(session_id)
        return self._position(state)

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    def resolve_page(self, session_id: str, page_id: Optional[str] = None) -> ResolvedPage:
        """
        Render a page (default: the current one) for the session.

        Saves only when rendering added to the order cache.
        """
        state = self.store.load(session_id)
        page_id = page_id or state.current_page_id
        if page_id is None:
            raise ValueError(f"Session {session_id} has no current page")

        before = {key: list(ids) for key, ids in state.render_state.order_cache.items()}
        navigator = self._navigator(state)
        page = resolve_page(
            self.survey,
            state,
            page_id,
            loop_context=navigator.loop_context_for(state, page_id),
            rng=self._rng(state),
            weighted_order=self.config.weighted_order,
            log_failures=self.config.log_evaluation_failures,
        )
        if state.render_state.order_cache != before:
            self.store.save(state)
        return page

    def on_answer_submitted(self, session_id: str, question_id: str, value: Any) -> Optional[JumpOutcome]:
        """
        Record an answer and report the jump it triggers, if any.

        A changed answer to the source question of an ANSWER battery resets
        that battery's plan. The question's termination expression is checked
        before its jump rules; termination or a jump to END completes the
        session.
        """
        if self.survey.get_question(question_id) is None:
            raise UnknownQuestionError(f"Unknown question: {question_id}")

        state = self.store.load(session_id)
        previous = state.responses.get(question_id)
        state.responses[question_id] = value
        if response_changed(previous, value):
            self._navigator(state).reset_loops_for_question(state, question_id)

        outcome = self._jumps(state).resolve_answer(question_id)
        if outcome is not None and outcome.terminates:
            self._terminate(state, outcome)
        elif outcome is not None and outcome.ends_survey:
            logger.info("Session %s completed by jump rule %s", session_id, outcome.rule_id)
            state.completed = True
        self.store.save(state)
        return outcome

    def get_next_page(self, session_id: str, from_page_id: Optional[str] = None) -> NavigationResult:
        """
        Leave the current page forwards.

        from_page_id names the page the respondent is leaving. When the
        session has already moved on, the current position is returned and
        nothing changes.
        """
        state = self.store.load(session_id)
        if self._is_duplicate(state, from_page_id):
            return self._position(state)
        if state.completed or state.current_page_id is None:
            return self._position(state)

        navigator = self._navigator(state)
        current = state.current_page_id

        if navigator.continues_loop(state, current):
            result = navigator.next_page(state, current)
        else:
            outcome = self._jump_on_leaving(state, current)
            if outcome is None:
                result = navigator.next_page(state, current)
            else:
                navigator.close_iteration(state, current)
                if outcome.terminates:
                    self._terminate(state, outcome)
                    result = self._position(state)
                elif outcome.ends_survey:
                    logger.info("Session %s completed by jump rule %s", session_id, outcome.rule_id)
                    result = NavigationResult(None, completed=True)
                else:
                    logger.info("Session %s jumped to page %s by rule %s", session_id, outcome.page_id, outcome.rule_id)
                    result = navigator.arrive(state, outcome.page_id)

        self._apply(state, result)
        self.store.save(state)
        return result

    def get_previous_page(self, session_id: str, from_page_id: Optional[str] = None) -> NavigationResult:
        """
        Leave the current page backwards.

        On the first page the respondent stays put: the returned result has
        page_id None and the session is unchanged.
        """
        state = self.store.load(session_id)
        if self._is_duplicate(state, from_page_id):
            return self._position(state)
        if state.completed or state.current_page_id is None:
            return self._position(state)

        result = self._navigator(state).previous_page(state, state.current_page_id)
        if result.page_id is None:
            return result
        state.move_to(result.page_id)
        self.store.save(state)
        return result

    def get_loop_progress(self, session_id: str, battery_id: str) -> Optional[LoopProgress]:
        """Progress of a battery; None before it was planned or when it was skipped."""
        state = self.store.load(session_id)
        return self._navigator(state).loop_progress(state, battery_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _rng(self, state: SessionState) -> random.Random:
        if self.config.random_seed is None:
            return random.Random()
        # reproducible per session and saved version
        return random.Random(f"{self.config.random_seed}:{state.session_id}:{state.version}")

    def _navigator(self, state: SessionState) -> SurveyNavigator:
        return SurveyNavigator(
            self.survey,
            rng=self._rng(state),
            skip_invisible_pages=self.config.skip_invisible_pages,
            log_failures=self.config.log_evaluation_failures,
        )

    def _jumps(self, state: SessionState) -> JumpResolver:
        context = EvaluationContext(state.responses, state.embedded_data, self.survey.questions)
        return JumpResolver(self.survey, context, log_failures=self.config.log_evaluation_failures)

    def _jump_on_leaving(self, state: SessionState, page_id: str) -> Optional[JumpOutcome]:
        resolver = self._jumps(state)
        for question in self._answered_questions(state, page_id):
            outcome = resolver.resolve_answer(question.id)
            if outcome is not None:
                return outcome
        return resolver.resolve_page(page_id)

    def _answered_questions(self, state: SessionState, page_id: str) -> List[Question]:
        """Questions on the page the respondent could see and answered, in authored order."""
        context = EvaluationContext(state.responses, state.embedded_data, self.survey.questions)
        visibility = VisibilityResolver(context, log_failures=self.config.log_evaluation_failures)
        answered = []
        for question in self.survey.questions_on_page(page_id):
            if question.id not in state.responses:
                continue
            group = self.survey.get_group(question.group_id) if question.group_id else None
            if group is not None and group.page_id == page_id and not visibility.is_visible(group):
                continue
            if visibility.is_visible(question):
                answered.append(question)
        return answered

    def _terminate(self, state: SessionState, outcome: JumpOutcome) -> None:
        logger.info(
            "Session %s terminated by %s: %s",
            state.session_id, outcome.rule_id, outcome.termination_reason,
        )
        state.completed = True
        state.terminated = True
        state.termination_reason = outcome.termination_reason

    def _is_duplicate(self, state: SessionState, from_page_id: Optional[str]) -> bool:
        if from_page_id is None or from_page_id == state.current_page_id:
            return False
        logger.warning(
            "Ignoring navigation from page %s: session %s is on page %s",
            from_page_id, state.session_id, state.current_page_id,
        )
        return True

    def _position(self, state: SessionState) -> NavigationResult:
        if state.completed or state.current_page_id is None:
            return NavigationResult(
                None,
                completed=True,
                terminated=state.terminated,
                termination_reason=state.termination_reason,
            )
        context = self._navigator(state).loop_context_for(state, state.current_page_id)
        return NavigationResult(state.current_page_id, context)

    def _apply(self, state: SessionState, result: NavigationResult) -> None:
        if result.completed:
            state.completed = True
            state.current_page_id = None
            logger.info("Session %s completed", state.session_id)
        else:
            state.move_to(result.page_id)
