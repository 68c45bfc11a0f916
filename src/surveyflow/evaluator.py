"""
Expression Evaluator

Evaluates DSL predicates against one respondent's response context.

FAIL-OPEN POLICY:
    evaluate() returns True whenever an expression is empty, cannot be
    parsed, references a question that cannot be resolved, or fails while
    being evaluated. Authoring mistakes must never hide content or block a
    respondent. Failures are logged for survey authors.

    evaluate_strict() raises instead, for callers (jump resolution, the
    analyzer, tests) that need to tell a real False from a failure.

Reference resolution:
    A reference names a question variable. It resolves to the response stored
    under that question's id. If no question carries the variable name, the
    name is looked up directly in the responses, then in embedded data.
    Anything else is an UnknownReferenceError.
"""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Optional, Sequence

from surveyflow.dsl_parser import ExpressionParseError, parse_expression
from surveyflow.expressions import (
    AnswerReference,
    Comparison,
    ComparisonOperator,
    Emptiness,
    EmptinessOperator,
    Expression,
    Logical,
    LogicalOperator,
    Negation,
    Selection,
    SelectionOperator,
)
from surveyflow.model import LogicExpression, Question

logger = logging.getLogger(__name__)


class UnknownReferenceError(LookupError):
    """Raised when a reference matches no question, response or embedded value."""
    pass


class ExpressionEvaluationError(ValueError):
    """Raised when a parsed expression cannot be evaluated against the data."""
    pass


@dataclass
class EvaluationContext:
    """
    Everything an expression may read.

    Properties:
        responses: question id -> submitted value (scalar or list)
        embedded_data: extra respondent data (panel ids, URL parameters)
        questions: known questions, used to map variable names to ids
    """

    responses: Dict[str, Any] = field(default_factory=dict)
    embedded_data: Dict[str, Any] = field(default_factory=dict)
    questions: Sequence[Question] = field(default_factory=tuple)

    def resolve(self, variable: str) -> Any:
        for question in self.questions:
            if question.variable_name == variable:
                return self.responses.get(question.id)
        if variable in self.responses:
            return self.responses[variable]
        if variable in self.embedded_data:
            return self.embedded_data[variable]
        raise UnknownReferenceError(f"Unknown question reference: {variable}")


@lru_cache(maxsize=1024)
def _parse_cached(dsl: str) -> Expression:
    return parse_expression(dsl)


class ExpressionEvaluator:
    """
    Stateless evaluator bound to one EvaluationContext.

    Example:
        evaluator = ExpressionEvaluator(EvaluationContext(responses, {}, questions))
        evaluator.evaluate("anySelected('Q1', ['a', 'b'])")
    """

    def __init__(self, context: EvaluationContext, log_failures: bool = True):
        self.context = context
        self._failure_level = logging.WARNING if log_failures else logging.DEBUG

    def evaluate(self, dsl: Optional[str]) -> bool:
        """Evaluate DSL text, failing open to True."""
        if dsl is None or not dsl.strip():
            return True
        try:
            result = self.evaluate_strict(dsl)
        except (ExpressionParseError, UnknownReferenceError, ExpressionEvaluationError, RecursionError) as exc:
            logger.log(self._failure_level, "Expression %r failed open: %s", dsl, exc)
            return True
        logger.debug("Expression %r evaluated to %s", dsl, result)
        return result

    def evaluate_logic(self, expression: Optional[LogicExpression]) -> bool:
        """Evaluate an authored LogicExpression; None means no condition."""
        if expression is None:
            return True
        return self.evaluate(expression.dsl)

    def evaluate_strict(self, dsl: str) -> bool:
        """
        Evaluate DSL text without the fail-open default.

        Raises:
            ExpressionParseError: If the text is empty or malformed
            UnknownReferenceError: If a reference cannot be resolved
            ExpressionEvaluationError: If the data cannot be compared
        """
        return self.evaluate_ast(_parse_cached(dsl.strip() if dsl else ""))

    def evaluate_ast(self, expr: Expression) -> bool:
        if isinstance(expr, Logical):
            if expr.operator is LogicalOperator.AND:
                return all(self.evaluate_ast(operand) for operand in expr.operands)
            return any(self.evaluate_ast(operand) for operand in expr.operands)
        if isinstance(expr, Negation):
            return not self.evaluate_ast(expr.operand)
        if isinstance(expr, Comparison):
            return self._compare(expr)
        if isinstance(expr, Selection):
            return self._select(expr)
        if isinstance(expr, Emptiness):
            empty = _is_empty(self._answer(expr.reference))
            return empty if expr.operator is EmptinessOperator.IS_EMPTY else not empty
        raise ExpressionEvaluationError(f"Unsupported expression node: {type(expr).__name__}")

    def _answer(self, reference: AnswerReference) -> Any:
        return self.context.resolve(reference.variable)

    def _compare(self, expr: Comparison) -> bool:
        answer = _scalar(self._answer(expr.reference))
        expected = expr.value.value
        op = expr.operator

        if op is ComparisonOperator.EQUALS:
            return _values_equal(answer, expected)
        if op is ComparisonOperator.NOT_EQUALS:
            return not _values_equal(answer, expected)

        if _is_empty(answer):
            return False

        if op is ComparisonOperator.CONTAINS:
            return any(str(expected) in str(v) for v in _as_list(answer))
        if op is ComparisonOperator.STARTS_WITH:
            return any(str(v).startswith(str(expected)) for v in _as_list(answer))

        number = _to_number(answer)
        if op is ComparisonOperator.GREATER_THAN:
            return number > float(expected)
        return number < float(expected)

    def _select(self, expr: Selection) -> bool:
        selected = {_normalise(v) for v in _as_list(self._answer(expr.reference))}
        candidates = {_normalise(lit.value) for lit in expr.values}

        if expr.operator is SelectionOperator.ANY:
            return bool(selected & candidates)
        if expr.operator is SelectionOperator.ALL:
            return bool(selected) and candidates <= selected
        return not (selected & candidates)


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _scalar(value: Any) -> Any:
    """A single-element list stands for its only element."""
    if isinstance(value, (list, tuple)) and len(value) == 1:
        return value[0]
    return value


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float:
    if isinstance(value, (list, tuple)):
        raise ExpressionEvaluationError(f"Cannot compare a multi-value answer numerically: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ExpressionEvaluationError(f"Answer is not numeric: {value!r}")


def _normalise(value: Any) -> str:
    if _is_number(value) and float(value).is_integer():
        return str(int(value))
    return str(value)


def _values_equal(answer: Any, expected: Any) -> bool:
    if answer is None or isinstance(answer, (list, tuple)):
        return False
    if answer == expected:
        return True
    if _is_number(answer) or _is_number(expected):
        try:
            return float(answer) == float(expected)
        except (TypeError, ValueError):
            return False
    return str(answer) == str(expected)
