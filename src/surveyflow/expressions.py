"""
Predicate AST for the survey logic DSL

Every DSL string is parsed (see surveyflow.dsl_parser) into a small tree of
tagged variants before it is evaluated:

    Comparison   equals / notEquals / contains / startsWith /
                 greaterThan / lessThan
    Selection    anySelected / allSelected / noneSelected
    Emptiness    isEmpty / notEmpty
    Logical      flat conjunction or disjunction of sub-expressions
    Negation     a single !( ... ) wrapping a whole expression

ARCHITECTURAL RULE:
    No evaluation logic lives here (see surveyflow.evaluator).
    The tree is structure only, and every node is immutable.
"""

from abc import ABC
from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union


class Expression(ABC):
    """
    Base class for all AST nodes.

    It exists to give the node hierarchy a common type.
    """
    pass


@dataclass(frozen=True)
class AnswerReference(Expression):
    """
    Reference to a question's response by variable name.

    Written as answer('Q1') in comparison predicates and as a bare
    'Q1' in selection predicates.

    IMPORTANT:
        This object does NOT validate that the question exists.
        Resolution against the session happens at evaluation time.
    """

    variable: str


@dataclass(frozen=True)
class Literal(Expression):
    """
    A literal constant: a string or a number.

    Examples:
        - 'Yes'
        - 18
        - 2.5
    """

    value: Union[int, float, str]


class ComparisonOperator(Enum):
    """Predicates comparing one answer to one literal. Values are DSL names."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"


@dataclass(frozen=True)
class Comparison(Expression):
    """
    Compares an answer to a literal.

    Example:
        equals(answer('Q1'), 'Yes')

    Becomes:
        Comparison(
            operator=ComparisonOperator.EQUALS,
            reference=AnswerReference("Q1"),
            value=Literal("Yes"),
        )
    """

    operator: ComparisonOperator
    reference: AnswerReference
    value: Literal


class SelectionOperator(Enum):
    """Set predicates over a question's selected values."""

    ANY = "anySelected"
    ALL = "allSelected"
    NONE = "noneSelected"


@dataclass(frozen=True)
class Selection(Expression):
    """
    Tests a response's selected values against a set of candidates.

    Example:
        anySelected('Q1', ['apple', 'pear'])
    """

    operator: SelectionOperator
    reference: AnswerReference
    values: Tuple[Literal, ...]


class EmptinessOperator(Enum):
    """Predicates on whether a question has been answered."""

    IS_EMPTY = "isEmpty"
    NOT_EMPTY = "notEmpty"


@dataclass(frozen=True)
class Emptiness(Expression):
    """
    Example:
        notEmpty(answer('Q3'))
    """

    operator: EmptinessOperator
    reference: AnswerReference


class LogicalOperator(Enum):
    """Flat composition operators with their DSL separators."""

    AND = " && "
    OR = " || "


@dataclass(frozen=True)
class Logical(Expression):
    """
    A flat conjunction or disjunction.

    There is no precedence beyond the split order: a string is split on
    ' && ' first, and each part may then be split on ' || '.
    """

    operator: LogicalOperator
    operands: Tuple[Expression, ...]


@dataclass(frozen=True)
class Negation(Expression):
    """
    Negates a whole expression.

    Only recognised as a leading !( ... ) that wraps the entire string.
    """

    operand: Expression


Predicate = Union[Comparison, Selection, Emptiness]
