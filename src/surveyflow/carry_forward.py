"""
Carry-forward options.

A question may reuse the options of an earlier question, filtered by what the
respondent did there:

    SELECTED    options the respondent selected (default)
    UNSELECTED  options the respondent did not select
    ALL         every option of the source question

Carried options get the id "cf_<source option id>" and are appended after the
question's own options. A carried option whose value the question already
offers is dropped. Carried options keep their own visibility expression.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List

from surveyflow.model import CarryForwardFilter, Option, Question, Survey

logger = logging.getLogger(__name__)

CARRY_FORWARD_PREFIX = "cf_"


def _selected_values(answer: Any) -> List[str]:
    if answer is None or answer == "":
        return []
    values = answer if isinstance(answer, (list, tuple)) else [answer]
    return [str(value) for value in values]


def carried_options(question: Question, survey: Survey, responses: Dict[str, Any]) -> List[Option]:
    """Options carried into question from its carry-forward source."""
    if not question.carry_forward_question_id:
        return []
    source = survey.get_question(question.carry_forward_question_id)
    if source is None:
        logger.warning(
            "Question %s carries forward from missing question %s",
            question.id, question.carry_forward_question_id,
        )
        return []

    selected = set(_selected_values(responses.get(source.id)))
    mode = question.carry_forward_filter
    if mode is CarryForwardFilter.SELECTED:
        picked = [o for o in source.options if str(o.value) in selected]
    elif mode is CarryForwardFilter.UNSELECTED:
        picked = [o for o in source.options if str(o.value) not in selected]
    else:
        picked = list(source.options)

    own_values = {str(o.value) for o in question.options}
    offset = max((o.index for o in question.options), default=-1) + 1
    carried = []
    for option in sorted(picked, key=lambda o: o.index):
        if str(option.value) in own_values:
            continue
        carried.append(replace(
            option,
            id=f"{CARRY_FORWARD_PREFIX}{option.id}",
            index=offset + len(carried),
        ))
    return carried


def options_with_carry_forward(
    question: Question, survey: Survey, responses: Dict[str, Any]
) -> List[Option]:
    """The question's own options in authored order, then carried options."""
    own = sorted(question.options, key=lambda o: o.index)
    return own + carried_options(question, survey, responses)
