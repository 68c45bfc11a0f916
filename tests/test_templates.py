"""
Tests for loop token substitution and answer piping.
"""

import pytest

from surveyflow.loops import LoopContext, LoopItem
from surveyflow.model import Option, Question, QuestionType
from surveyflow.templates import (
    has_loop_tokens,
    loop_token_values,
    resolve_loop_tokens,
    resolve_piping,
    resolve_text,
)


def context(index=0, total=3, **attributes) -> LoopContext:
    item = LoopItem(key="oxford", label="Oxford Street", attributes=dict(attributes))
    return LoopContext(battery_id="stores", current_item=item, current_index=index, total_items=total)


QUESTIONS = [
    Question(
        id="q_brands", page_id="p1", variable_name="BRANDS", type=QuestionType.MULTIPLE_CHOICE,
        options=[Option("o1", "nike", "Nike"), Option("o2", "puma", "Puma")],
    ),
    Question(id="q_age", page_id="p1", variable_name="AGE", type=QuestionType.NUMBER),
    Question(id="q_name", page_id="p1", variable_name="NAME", type=QuestionType.TEXT),
]


class TestLoopTokens:
    """{{loop.*}} substitution."""

    def test_builtin_tokens(self):
        text = "{{loop.label}} ({{loop.key}}) {{loop.index}}/{{loop.total}}"
        assert resolve_loop_tokens(text, context(index=1)) == "Oxford Street (oxford) 2/3"

    def test_first_last_progress(self):
        ctx = context(index=2, total=3)
        assert resolve_loop_tokens("{{loop.isFirst}} {{loop.isLast}} {{loop.progress}}", ctx) == "false true 100"
        assert resolve_loop_tokens("{{loop.progress}}", context(index=0, total=3)) == "33"

    def test_custom_attributes(self):
        ctx = context(city="London", rank=1)
        assert resolve_loop_tokens("{{loop.city}} #{{loop.rank}}", ctx) == "London #1"
        assert resolve_loop_tokens("{{loop.attributes.city}}", ctx) == "London"

    def test_builtins_win_over_attributes(self):
        ctx = context(label="Attribute label")
        assert resolve_loop_tokens("{{loop.label}}", ctx) == "Oxford Street"
        assert resolve_loop_tokens("{{loop.attributes.label}}", ctx) == "Attribute label"

    def test_unknown_token_left_intact(self):
        assert resolve_loop_tokens("{{loop.nope}} {{loop.attributes.nope}}", context()) == \
            "{{loop.nope}} {{loop.attributes.nope}}"

    def test_not_recursive(self):
        """Substituted text is not scanned again."""
        ctx = context(sneaky="{{loop.key}}")
        assert resolve_loop_tokens("{{loop.sneaky}}", ctx) == "{{loop.key}}"

    def test_without_context(self):
        assert resolve_loop_tokens("{{loop.label}}", None) == "{{loop.label}}"
        assert resolve_loop_tokens(None, context()) == ""

    def test_has_loop_tokens(self):
        assert has_loop_tokens("Rate {{loop.label}}")
        assert not has_loop_tokens("Rate us")
        assert not has_loop_tokens(None)

    def test_token_values(self):
        values = loop_token_values(context(index=0, total=1, city="Leeds"))
        assert values["isFirst"] == "true"
        assert values["isLast"] == "true"
        assert values["city"] == "Leeds"


class TestPiping:
    """${pipe:question:VAR:field} and {{embeddedData.key}}."""

    def test_choices_use_labels(self):
        text = "You picked ${pipe:question:BRANDS:choices}."
        assert resolve_piping(text, {"q_brands": ["puma", "nike"]}, QUESTIONS) == "You picked Puma, Nike."

    def test_value_field(self):
        assert resolve_piping("${pipe:question:BRANDS:value}", {"q_brands": ["puma"]}, QUESTIONS) == "puma"

    def test_text_response(self):
        assert resolve_piping("Hi ${pipe:question:NAME:response}", {"q_name": "Sam"}, QUESTIONS) == "Hi Sam"
        assert resolve_piping("Hi ${pipe:question:NAME:text}", {"q_name": "Sam"}, QUESTIONS) == "Hi Sam"

    @pytest.mark.parametrize("answer,expected", [(30, "30"), ("30", "30"), (29.5, "29.5"), ("old", "")])
    def test_numeric(self, answer, expected):
        assert resolve_piping("${pipe:question:AGE:numeric}", {"q_age": answer}, QUESTIONS) == expected

    def test_unanswered_is_blank(self):
        assert resolve_piping("[${pipe:question:NAME:response}]", {}, QUESTIONS) == "[]"

    def test_unknown_question_left_intact(self):
        text = "${pipe:question:NOPE:response}"
        assert resolve_piping(text, {}, QUESTIONS) == text

    def test_unknown_field_left_intact(self):
        text = "${pipe:question:NAME:colour}"
        assert resolve_piping(text, {"q_name": "Sam"}, QUESTIONS) == text

    def test_embedded_data(self):
        assert resolve_piping("Panel {{embeddedData.panel}}", {}, QUESTIONS, {"panel": "UK"}) == "Panel UK"
        assert resolve_piping("{{embeddedData.nope}}", {}, QUESTIONS, {}) == "{{embeddedData.nope}}"


class TestResolveText:
    """Both passes together."""

    def test_loop_then_piping(self):
        text = "{{loop.label}}: you said ${pipe:question:NAME:response}"
        assert resolve_text(text, context(), {"q_name": "Sam"}, QUESTIONS) == "Oxford Street: you said Sam"

    def test_no_context(self):
        assert resolve_text("{{loop.label}}", None, {}, QUESTIONS) == "{{loop.label}}"
