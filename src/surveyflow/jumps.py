"""
Jump Resolver

Evaluates prioritized conditional skip rules.

Algorithm:
    1. sort rules ascending by priority (ties keep authored order)
    2. evaluate each condition in that order; no condition means True
    3. the first rule that holds wins

Question-level rules are checked when an answer changes; page-level rules are
checked when leaving a page, after question-level rules. A question's
termination expression is checked before its jump rules and ends the survey
with the expression description as the reason.

Failure policy:
    A condition that cannot be parsed or evaluated does not fire: a broken
    rule must never send a respondent somewhere unexpected. A rule whose
    destination no longer exists is skipped the same way. Both are logged.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from surveyflow.dsl_parser import ExpressionParseError
from surveyflow.evaluator import (
    EvaluationContext,
    ExpressionEvaluationError,
    ExpressionEvaluator,
    UnknownReferenceError,
)
from surveyflow.model import DestinationType, JumpDestination, JumpRule, PageJumpRule, Survey

logger = logging.getLogger(__name__)

DEFAULT_TERMINATION_REASON = "Survey terminated based on answer"

Rule = Union[JumpRule, PageJumpRule]


@dataclass(frozen=True)
class JumpOutcome:
    """
    A fired rule.

    Properties:
        rule_id: the rule that fired
        destination: as authored
        page_id: the page to show next; None when the survey ends
        termination_reason: set when a termination expression fired
    """

    rule_id: str
    destination: JumpDestination
    page_id: Optional[str]
    termination_reason: Optional[str] = None

    @property
    def ends_survey(self) -> bool:
        return self.destination.is_end

    @property
    def terminates(self) -> bool:
        return self.termination_reason is not None


def destination_page_id(survey: Survey, destination: JumpDestination) -> Optional[str]:
    """Page a destination lands on; None for END or a dangling target."""
    if destination.type is DestinationType.PAGE:
        page = survey.get_page(destination.target_id)
        return page.id if page else None
    if destination.type is DestinationType.QUESTION:
        question = survey.get_question(destination.target_id)
        if question is None or survey.get_page(question.page_id) is None:
            return None
        return question.page_id
    return None


class JumpResolver:
    """Resolves jump rules for one response context."""

    def __init__(self, survey: Survey, context: EvaluationContext, log_failures: bool = True):
        self.survey = survey
        self.evaluator = ExpressionEvaluator(context, log_failures=log_failures)
        self._failure_level = logging.WARNING if log_failures else logging.DEBUG

    def resolve(self, rules: Sequence[Rule]) -> Optional[JumpOutcome]:
        """Return the first firing rule by priority, or None for no jump."""
        for rule in sorted(rules, key=lambda r: r.priority):
            if not self._holds(rule):
                continue
            outcome = self._outcome(rule)
            if outcome is not None:
                return outcome
        return None

    def resolve_question(self, question_id: str) -> Optional[JumpOutcome]:
        return self.resolve(self.survey.jump_rules_for(question_id))

    def resolve_page(self, page_id: str) -> Optional[JumpOutcome]:
        return self.resolve(self.survey.page_jump_rules_for(page_id))

    def check_termination(self, question_id: str) -> Optional[JumpOutcome]:
        """Outcome ending the survey if the question's termination expression holds."""
        question = self.survey.get_question(question_id)
        if question is None or question.terminate_if is None:
            return None
        expression = question.terminate_if
        if not self._condition_holds(expression.dsl, f"Termination {expression.id}"):
            return None
        logger.info("Question %s terminated the survey (%s)", question_id, expression.id)
        return JumpOutcome(
            rule_id=expression.id,
            destination=JumpDestination.end(),
            page_id=None,
            termination_reason=expression.description or DEFAULT_TERMINATION_REASON,
        )

    def resolve_answer(self, question_id: str) -> Optional[JumpOutcome]:
        """Termination first, then the question's jump rules."""
        return self.check_termination(question_id) or self.resolve_question(question_id)

    def _holds(self, rule: Rule) -> bool:
        if rule.condition is None or not rule.condition.dsl.strip():
            return True
        return self._condition_holds(rule.condition.dsl, f"Jump rule {rule.id}")

    def _condition_holds(self, dsl: str, owner: str) -> bool:
        if not dsl.strip():
            return False
        try:
            return self.evaluator.evaluate_strict(dsl)
        except (ExpressionParseError, UnknownReferenceError, ExpressionEvaluationError, RecursionError) as exc:
            logger.log(
                self._failure_level,
                "%s condition %r did not fire: %s",
                owner, dsl, exc,
            )
            return False

    def _outcome(self, rule: Rule) -> Optional[JumpOutcome]:
        if rule.destination.is_end:
            return JumpOutcome(rule.id, rule.destination, None)
        page_id = destination_page_id(self.survey, rule.destination)
        if page_id is None:
            logger.log(
                self._failure_level,
                "Jump rule %s points at missing %s %s",
                rule.id, rule.destination.type.value.lower(), rule.destination.target_id,
            )
            return None
        return JumpOutcome(rule.id, rule.destination, page_id)
