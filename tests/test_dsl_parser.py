"""
Tests for the DSL parser.

These tests verify:
    - Each predicate form parses to the right AST node
    - answer('X') and bare 'X' references are equivalent
    - Flat && / || composition and leading !( ... ) negation
    - Malformed text raises ExpressionParseError
"""

import pytest

from surveyflow.dsl_parser import ExpressionParseError, parse_expression, referenced_variables
from surveyflow.expressions import (
    AnswerReference,
    Comparison,
    ComparisonOperator,
    Emptiness,
    EmptinessOperator,
    Literal,
    Logical,
    LogicalOperator,
    Negation,
    Selection,
    SelectionOperator,
)


class TestPredicates:
    """Test single predicate forms."""

    def test_equals(self):
        """equals(answer('Q1'), 'Yes') is a Comparison."""
        expr = parse_expression("equals(answer('Q1'), 'Yes')")
        assert expr == Comparison(ComparisonOperator.EQUALS, AnswerReference("Q1"), Literal("Yes"))

    def test_not_equals_with_double_quotes(self):
        """Double-quoted strings are accepted."""
        expr = parse_expression('notEquals(answer("Q1"), "No")')
        assert expr.operator is ComparisonOperator.NOT_EQUALS
        assert expr.value == Literal("No")

    def test_integer_literal(self):
        """Integer tokens become int literals."""
        expr = parse_expression("equals(answer('AGE'), 42)")
        assert expr.value == Literal(42)
        assert isinstance(expr.value.value, int)

    def test_numeric_comparison_coerces_quoted_number(self):
        """greaterThan accepts a quoted number."""
        expr = parse_expression("greaterThan(answer('AGE'), '18')")
        assert expr.value == Literal(18.0)

    def test_numeric_comparison_rejects_text(self):
        """lessThan with a non-number is a parse error."""
        with pytest.raises(ExpressionParseError):
            parse_expression("lessThan(answer('AGE'), 'old')")

    @pytest.mark.parametrize("name,operator", [
        ("anySelected", SelectionOperator.ANY),
        ("allSelected", SelectionOperator.ALL),
        ("noneSelected", SelectionOperator.NONE),
    ])
    def test_selection(self, name, operator):
        """Selection predicates take a reference and a value list."""
        expr = parse_expression(f"{name}('Q1', ['a', 'b'])")
        assert isinstance(expr, Selection)
        assert expr.operator is operator
        assert expr.reference == AnswerReference("Q1")
        assert expr.values == (Literal("a"), Literal("b"))

    def test_selection_with_answer_reference(self):
        """answer('Q1') works as a selection reference too."""
        expr = parse_expression("anySelected(answer('Q1'), ['a'])")
        assert expr.reference == AnswerReference("Q1")

    def test_empty_value_list(self):
        """An empty value list parses."""
        expr = parse_expression("anySelected('Q1', [])")
        assert expr.values == ()

    @pytest.mark.parametrize("name,operator", [
        ("isEmpty", EmptinessOperator.IS_EMPTY),
        ("notEmpty", EmptinessOperator.NOT_EMPTY),
    ])
    def test_emptiness(self, name, operator):
        """Emptiness predicates take only a reference."""
        expr = parse_expression(f"{name}(answer('Q2'))")
        assert expr == Emptiness(operator, AnswerReference("Q2"))

    def test_escaped_quote_in_string(self):
        """Backslash escapes are unescaped in literals."""
        expr = parse_expression(r"contains(answer('Q1'), 'it\'s')")
        assert expr.value == Literal("it's")


class TestComposition:
    """Test flat && / || splitting and negation."""

    def test_and(self):
        """Parts joined by && become one AND node."""
        expr = parse_expression("isEmpty('A') && notEmpty('B') && isEmpty('C')")
        assert isinstance(expr, Logical)
        assert expr.operator is LogicalOperator.AND
        assert len(expr.operands) == 3

    def test_or(self):
        """Parts joined by || become one OR node."""
        expr = parse_expression("isEmpty('A') || isEmpty('B')")
        assert expr.operator is LogicalOperator.OR

    def test_and_splits_before_or(self):
        """'a || b && c' is (a || b) && c."""
        expr = parse_expression("isEmpty('A') || isEmpty('B') && isEmpty('C')")
        assert expr.operator is LogicalOperator.AND
        first, second = expr.operands
        assert isinstance(first, Logical)
        assert first.operator is LogicalOperator.OR
        assert isinstance(second, Emptiness)

    def test_separator_inside_quotes_is_not_split(self):
        """' && ' inside a string literal stays in the literal."""
        expr = parse_expression("equals(answer('Q1'), 'salt && pepper')")
        assert isinstance(expr, Comparison)
        assert expr.value == Literal("salt && pepper")

    def test_leading_negation(self):
        """!( ... ) wrapping the whole expression is a Negation."""
        expr = parse_expression("!(anySelected('Q1', ['a']))")
        assert isinstance(expr, Negation)
        assert isinstance(expr.operand, Selection)

    def test_negation_of_composite(self):
        """The negated body may itself be composite."""
        expr = parse_expression("!(isEmpty('A') && isEmpty('B'))")
        assert isinstance(expr, Negation)
        assert expr.operand.operator is LogicalOperator.AND

    def test_negations_joined_by_and(self):
        """'!(a) && !(b)' is an AND of two negations."""
        expr = parse_expression("!(isEmpty('A')) && !(isEmpty('B'))")
        assert isinstance(expr, Logical)
        assert all(isinstance(op, Negation) for op in expr.operands)

    def test_double_negation_collapses(self):
        expr = parse_expression("!(!(isEmpty('A')))")
        assert isinstance(expr, Emptiness)

    @pytest.mark.parametrize("depth, negated", [(1200, False), (1201, True)])
    def test_deeply_nested_negation(self, depth, negated):
        expr = parse_expression("!(" * depth + "isEmpty('A')" + ")" * depth)
        if negated:
            assert isinstance(expr, Negation)
            assert isinstance(expr.operand, Emptiness)
        else:
            assert isinstance(expr, Emptiness)


class TestMalformed:
    """Test parse failures."""

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "equals(answer('Q1'))",
        "unknownFn('Q1')",
        "equals(answer('Q1'), 'a'",
        "equals(answer(Q1), 'a')",
        "anySelected('Q1', ['a'",
        "isEmpty('Q1') extra",
        "isEmpty('Q1') && ",
        "equals(answer('Q1'), 'a') # note",
    ])
    def test_rejects(self, text):
        with pytest.raises(ExpressionParseError):
            parse_expression(text)

    def test_parse_error_is_value_error(self):
        """Callers may catch ValueError."""
        with pytest.raises(ValueError):
            parse_expression("nope")


class TestReferencedVariables:
    """Test variable collection."""

    def test_collects_from_composites(self):
        expr = parse_expression("!(equals(answer('A'), 1) && anySelected('B', ['x']) || isEmpty('C'))")
        assert referenced_variables(expr) == {"A", "B", "C"}

    def test_none(self):
        assert referenced_variables(None) == set()
