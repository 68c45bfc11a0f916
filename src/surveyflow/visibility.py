"""
Visibility Resolver

Decides whether a page, question group, question, option group or option is
shown. The contract is identical for every entity: no visibility expression
means visible; otherwise the evaluator's (fail-open) result.

Nothing is cached here. Responses can change between calls, so every call
re-evaluates against the context it was built with.
"""

from typing import Optional, Union

from surveyflow.evaluator import EvaluationContext, ExpressionEvaluator
from surveyflow.model import Option, OptionGroup, Page, Question, QuestionGroup

Displayable = Union[Page, QuestionGroup, Question, OptionGroup, Option]


class VisibilityResolver:
    """Visibility decisions for one response context."""

    def __init__(self, context: EvaluationContext, log_failures: bool = True):
        self.evaluator = ExpressionEvaluator(context, log_failures=log_failures)

    def is_visible(self, entity: Displayable) -> bool:
        return self.evaluator.evaluate_logic(entity.visible_if)

    def is_option_visible(self, option: Option, question: Optional[Question] = None) -> bool:
        """
        An option is shown when it is visible itself and, if it belongs to an
        option group declared on the question, that group is visible too.
        """
        if not self.is_visible(option):
            return False
        if question is None or option.group_key is None:
            return True
        group = question.get_option_group(option.group_key)
        return group is None or self.is_visible(group)
