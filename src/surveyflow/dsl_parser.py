"""
DSL Parser (raw expression text → predicate AST).

Grammar, deliberately small:

    expression := '!(' expression ')'              whole-string negation
                | part (' && ' part)+               every part must hold
                | part (' || ' part)+               any part must hold
                | predicate
    predicate  := NAME '(' arguments ')'
    reference  := answer '(' STRING ')' | STRING
    literal    := STRING | NUMBER

Composition is flat: the string is split on ' && ' first and each piece may
then be split on ' || '. Parentheses only group the argument list of a
predicate and the single leading negation.

Syntax Notes:
    - Strings may use single or double quotes
    - Separators inside quoted strings are not split on
    - Function names are case-sensitive (anySelected, not anyselected)
"""

import re
from typing import List, Optional, Set, Tuple

from surveyflow.expressions import (
    AnswerReference,
    Comparison,
    ComparisonOperator,
    Emptiness,
    EmptinessOperator,
    Expression,
    Literal,
    Logical,
    LogicalOperator,
    Negation,
    Selection,
    SelectionOperator,
)


class ExpressionParseError(ValueError):
    """Raised when DSL text cannot be parsed into an expression."""
    pass


_TOKEN_RE = re.compile(
    r"""
    (?P<STRING>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<NUMBER>-?(?:\d+(?:\.\d*)?|\.\d+))
  | (?P<NAME>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<PUNCT>[()\[\],])
  | (?P<SPACE>\s+)
  | (?P<MISMATCH>.)
    """,
    re.VERBOSE,
)

_COMPARISONS = {op.value: op for op in ComparisonOperator}
_SELECTIONS = {op.value: op for op in SelectionOperator}
_EMPTINESS = {op.value: op for op in EmptinessOperator}
_NUMERIC_COMPARISONS = {ComparisonOperator.GREATER_THAN, ComparisonOperator.LESS_THAN}

Token = Tuple[str, str]


def parse_expression(dsl: str) -> Expression:
    """
    Parse DSL text into an Expression AST.

    Args:
        dsl: Expression text

    Returns:
        Expression AST

    Raises:
        ExpressionParseError: If the text is empty or not a recognised form
    """
    if dsl is None or not dsl.strip():
        raise ExpressionParseError("Empty expression")
    return _parse_composite(dsl.strip())


def _parse_composite(text: str) -> Expression:
    text = text.strip()
    if not text:
        raise ExpressionParseError("Empty operand in composite expression")

    depth = 0
    while _is_wrapped_negation(text):
        text = text[2:-1].strip()
        depth += 1
    if depth:
        inner = _parse_composite(text)
        return Negation(inner) if depth % 2 else inner

    for operator in (LogicalOperator.AND, LogicalOperator.OR):
        parts = _split_outside_quotes(text, operator.value)
        if len(parts) > 1:
            return Logical(operator, tuple(_parse_composite(part) for part in parts))

    return _parse_predicate(text)


def _is_wrapped_negation(text: str) -> bool:
    """True if text is '!(' ... ')' with the opening paren closing at the end."""
    if not (text.startswith("!(") and text.endswith(")")):
        return False
    return _matching_paren(text, 1) == len(text) - 1


def _matching_paren(text: str, open_pos: int) -> Optional[int]:
    depth = 0
    quote = None
    i = open_pos
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def _split_outside_quotes(text: str, separator: str) -> List[str]:
    parts = []
    quote = None
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif text.startswith(separator, i):
            parts.append(text[start:i])
            i += len(separator)
            start = i
            continue
        i += 1
    parts.append(text[start:])
    return parts


def _tokenize(text: str) -> List[Token]:
    """Tokenize a single predicate."""
    tokens: List[Token] = []
    for match in _TOKEN_RE.finditer(text):
        kind = match.lastgroup
        value = match.group()
        if kind == "SPACE":
            continue
        if kind == "MISMATCH":
            raise ExpressionParseError(f"Unexpected character {value!r} in '{text}'")
        tokens.append((kind, value))
    if not tokens:
        raise ExpressionParseError(f"No valid tokens in expression: {text}")
    return tokens


def _unquote(raw: str) -> str:
    return re.sub(r"\\(.)", r"\1", raw[1:-1])


def _expect(tokens: List[Token], pos: int, value: str) -> int:
    if pos >= len(tokens) or tokens[pos][1] != value:
        found = tokens[pos][1] if pos < len(tokens) else "end of expression"
        raise ExpressionParseError(f"Expected '{value}', got '{found}'")
    return pos + 1


def _parse_predicate(text: str) -> Expression:
    tokens = _tokenize(text)
    kind, name = tokens[0]
    if kind != "NAME":
        raise ExpressionParseError(f"Expected a predicate name, got '{name}'")

    pos = _expect(tokens, 1, "(")

    if name in _COMPARISONS:
        operator = _COMPARISONS[name]
        reference, pos = _parse_reference(tokens, pos)
        pos = _expect(tokens, pos, ",")
        value, pos = _parse_literal(tokens, pos)
        if operator in _NUMERIC_COMPARISONS:
            value = _as_numeric_literal(value, name)
        node: Expression = Comparison(operator, reference, value)
    elif name in _SELECTIONS:
        reference, pos = _parse_reference(tokens, pos)
        pos = _expect(tokens, pos, ",")
        values, pos = _parse_literal_list(tokens, pos)
        node = Selection(_SELECTIONS[name], reference, values)
    elif name in _EMPTINESS:
        reference, pos = _parse_reference(tokens, pos)
        node = Emptiness(_EMPTINESS[name], reference)
    else:
        raise ExpressionParseError(f"Unsupported predicate: {name}")

    pos = _expect(tokens, pos, ")")
    if pos != len(tokens):
        raise ExpressionParseError(
            f"Unexpected tokens after predicate: {[t[1] for t in tokens[pos:]]}"
        )
    return node


def _parse_reference(tokens: List[Token], pos: int) -> Tuple[AnswerReference, int]:
    """Parse answer('Q1') or a bare 'Q1'."""
    if pos >= len(tokens):
        raise ExpressionParseError("Unexpected end of expression")

    kind, value = tokens[pos]
    if kind == "STRING":
        return AnswerReference(_unquote(value)), pos + 1

    if kind == "NAME" and value == "answer":
        pos = _expect(tokens, pos + 1, "(")
        if pos >= len(tokens) or tokens[pos][0] != "STRING":
            raise ExpressionParseError("answer() expects a quoted variable name")
        reference = AnswerReference(_unquote(tokens[pos][1]))
        pos = _expect(tokens, pos + 1, ")")
        return reference, pos

    raise ExpressionParseError(f"Expected a question reference, got '{value}'")


def _parse_literal(tokens: List[Token], pos: int) -> Tuple[Literal, int]:
    if pos >= len(tokens):
        raise ExpressionParseError("Unexpected end of expression")

    kind, value = tokens[pos]
    if kind == "STRING":
        return Literal(_unquote(value)), pos + 1
    if kind == "NUMBER":
        number = float(value)
        return Literal(int(number) if number.is_integer() and "." not in value else number), pos + 1
    raise ExpressionParseError(f"Expected a literal, got '{value}'")


def _parse_literal_list(tokens: List[Token], pos: int) -> Tuple[Tuple[Literal, ...], int]:
    pos = _expect(tokens, pos, "[")
    values: List[Literal] = []

    if pos < len(tokens) and tokens[pos][1] == "]":
        return tuple(values), pos + 1

    while True:
        literal, pos = _parse_literal(tokens, pos)
        values.append(literal)
        if pos >= len(tokens):
            raise ExpressionParseError("Missing closing bracket in value list")
        if tokens[pos][1] == "]":
            return tuple(values), pos + 1
        pos = _expect(tokens, pos, ",")


def _as_numeric_literal(literal: Literal, name: str) -> Literal:
    if isinstance(literal.value, str):
        try:
            return Literal(float(literal.value))
        except ValueError:
            raise ExpressionParseError(f"{name} expects a number, got '{literal.value}'")
    return literal


def referenced_variables(expr: Optional[Expression]) -> Set[str]:
    """Collect every variable name an expression references."""
    if expr is None:
        return set()
    if isinstance(expr, (Comparison, Selection, Emptiness)):
        return {expr.reference.variable}
    if isinstance(expr, Logical):
        names: Set[str] = set()
        for operand in expr.operands:
            names |= referenced_variables(operand)
        return names
    if isinstance(expr, Negation):
        return referenced_variables(expr.operand)
    return set()


__all__ = [
    "ExpressionParseError",
    "parse_expression",
    "referenced_variables",
]
