"""
Template Resolver

Two independent substitution passes over display text:

Loop tokens (current iteration of a loop battery):
    {{loop.key}}, {{loop.label}}
    {{loop.index}}      1-based
    {{loop.total}}
    {{loop.isFirst}}, {{loop.isLast}}
    {{loop.progress}}   rounded percent
    {{loop.<name>}} and {{loop.attributes.<name>}} for item attributes

Answer piping (prior responses and embedded data):
    ${pipe:question:<variable>:<field>}   field: response | text | choices |
                                          numeric | value
    {{embeddedData.<key>}}

Each pass is a single left-to-right replacement: substituted text is never
scanned again. Tokens that cannot be resolved are left as written so authors
can spot them in previews.
"""

import re
from typing import Any, Dict, Mapping, Optional, Sequence

from surveyflow.loops import LoopContext
from surveyflow.model import Question

_LOOP_TOKEN_RE = re.compile(r"\{\{loop\.([^{}]+?)\}\}")
_PIPE_TOKEN_RE = re.compile(r"\$\{pipe:question:([^:{}]+):([^{}]+)\}")
_EMBEDDED_TOKEN_RE = re.compile(r"\{\{embeddedData\.([^{}]+?)\}\}")

_ATTRIBUTES_PREFIX = "attributes."


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def loop_token_values(context: LoopContext) -> Dict[str, str]:
    """Every {{loop.*}} name available for a context, mapped to its text."""
    item = context.current_item
    values = {name: str(value) for name, value in item.attributes.items()}
    values.update({
        "key": item.key,
        "label": item.label,
        "index": str(context.current_index + 1),
        "total": str(context.total_items),
        "isFirst": _bool_text(context.is_first),
        "isLast": _bool_text(context.is_last),
        "progress": str(round(context.percent_complete)),
    })
    return values


def resolve_loop_tokens(text: Optional[str], context: Optional[LoopContext]) -> str:
    if not text:
        return ""
    if context is None:
        return text
    values = loop_token_values(context)
    attributes = context.current_item.attributes

    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name.startswith(_ATTRIBUTES_PREFIX):
            attribute = name[len(_ATTRIBUTES_PREFIX):]
            return str(attributes[attribute]) if attribute in attributes else match.group(0)
        return values.get(name, match.group(0))

    return _LOOP_TOKEN_RE.sub(substitute, text)


def has_loop_tokens(text: Optional[str]) -> bool:
    return bool(text) and _LOOP_TOKEN_RE.search(text) is not None


def _display_values(question: Question, answer: Any) -> list:
    values = answer if isinstance(answer, (list, tuple)) else [answer]
    shown = []
    for value in values:
        option = question.get_option_by_value(value)
        shown.append(option.label if option else str(value))
    return shown


_PIPE_FIELDS = ("response", "text", "choices", "value", "numeric")


def _pipe_field(question: Question, answer: Any, field: str) -> Optional[str]:
    if field not in _PIPE_FIELDS:
        return None
    if answer is None or answer == "" or answer == []:
        return ""
    if field in ("response", "text", "choices"):
        if field == "choices" and not question.options:
            return None
        return ", ".join(_display_values(question, answer))
    if field == "value":
        if isinstance(answer, (list, tuple)):
            return ", ".join(str(v) for v in answer)
        return str(answer)
    if field == "numeric":
        try:
            number = float(answer)
        except (TypeError, ValueError):
            return ""
        return str(int(number)) if number.is_integer() else str(number)


def resolve_piping(
    text: Optional[str],
    responses: Mapping[str, Any],
    questions: Sequence[Question],
    embedded_data: Optional[Mapping[str, Any]] = None,
) -> str:
    if not text:
        return ""
    by_variable = {q.variable_name: q for q in questions}

    def substitute_answer(match: "re.Match[str]") -> str:
        variable, field = match.group(1), match.group(2)
        question = by_variable.get(variable)
        if question is None:
            return match.group(0)
        piped = _pipe_field(question, responses.get(question.id), field)
        return match.group(0) if piped is None else piped

    resolved = _PIPE_TOKEN_RE.sub(substitute_answer, text)
    if embedded_data is None:
        return resolved

    def substitute_embedded(match: "re.Match[str]") -> str:
        key = match.group(1)
        return str(embedded_data[key]) if key in embedded_data else match.group(0)

    return _EMBEDDED_TOKEN_RE.sub(substitute_embedded, resolved)


def resolve_text(
    text: Optional[str],
    loop_context: Optional[LoopContext],
    responses: Mapping[str, Any],
    questions: Sequence[Question],
    embedded_data: Optional[Mapping[str, Any]] = None,
) -> str:
    """Loop tokens first, then answer piping."""
    return resolve_piping(
        resolve_loop_tokens(text, loop_context), responses, questions, embedded_data,
    )
