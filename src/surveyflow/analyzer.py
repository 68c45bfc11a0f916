"""
Survey Analyzer — definition-time diagnostics for survey authors.

This module inspects a Survey before it goes live:
    - DSL expressions that do not parse
    - References to question variables that do not exist
    - Jump rules pointing at missing pages or questions
    - Loop battery ranges (inverted, missing pages, overlapping)
    - Loop battery sources (ANSWER without a multi-select source,
      source inside its own battery, DATASET without active rows,
      duplicate dataset keys)

Errors are problems the runtime can only paper over by failing open.
Warnings are suspicious but legal (an unknown variable may be embedded data).

IMPORTANT: This module does NOT modify the survey.
It only produces read-only reports.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Set, Tuple

from surveyflow.dsl_parser import ExpressionParseError, parse_expression, referenced_variables
from surveyflow.jumps import destination_page_id
from surveyflow.model import LogicExpression, LoopBattery, LoopSourceType, Survey


class DefinitionError(ValueError):
    """Raised by validate_survey when a survey has definition errors."""

    def __init__(self, report: SurveyReport):
        self.report = report
        super().__init__(
            f"Survey {report.survey_id} has {len(report.errors)} definition error(s): "
            + "; ".join(report.errors)
        )


@dataclass
class SurveyReport:
    """Diagnostics and inventory for one survey."""

    survey_id: str
    total_pages: int = 0
    total_questions: int = 0
    total_expressions: int = 0
    total_jump_rules: int = 0
    total_loop_batteries: int = 0

    # Variable usage
    variable_usage: Dict[str, int] = field(default_factory=dict)
    undefined_variables: Set[str] = field(default_factory=set)

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        if msg not in self.errors:
            self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        """Add a warning to the report."""
        if msg not in self.warnings:
            self.warnings.append(msg)


def _expressions(survey: Survey) -> Iterator[Tuple[str, LogicExpression]]:
    """Every expression in the survey with a label saying who owns it."""
    for page in survey.pages:
        if page.visible_if:
            yield f"page {page.id}", page.visible_if
    for group in survey.groups:
        if group.visible_if:
            yield f"group {group.id}", group.visible_if
    for question in survey.questions:
        if question.visible_if:
            yield f"question {question.id}", question.visible_if
        for option_group in question.option_groups:
            if option_group.visible_if:
                yield f"option group {question.id}/{option_group.key}", option_group.visible_if
        for option in question.options:
            if option.visible_if:
                yield f"option {option.id}", option.visible_if
        if question.terminate_if:
            yield f"question {question.id} termination", question.terminate_if
    for rule in survey.jump_rules:
        if rule.condition:
            yield f"jump rule {rule.id}", rule.condition
    for rule in survey.page_jump_rules:
        if rule.condition:
            yield f"page jump rule {rule.id}", rule.condition


def _battery_pages(survey: Survey, battery: LoopBattery) -> List[str]:
    start = survey.get_page(battery.start_page_id)
    end = survey.get_page(battery.end_page_id)
    if start is None or end is None:
        return []
    return [p.id for p in survey.pages_in_order() if start.index <= p.index <= end.index]


def analyze_survey(survey: Survey) -> SurveyReport:
    """
    Perform definition-time analysis of a Survey.

    Returns a SurveyReport; nothing is raised for a broken survey.
    """
    report = SurveyReport(survey_id=survey.id)

    # Basic counts
    report.total_pages = len(survey.pages)
    report.total_questions = len(survey.questions)
    report.total_jump_rules = len(survey.jump_rules) + len(survey.page_jump_rules)
    report.total_loop_batteries = len(survey.loop_batteries)

    page_ids = {p.id for p in survey.pages}
    known_variables = {q.variable_name for q in survey.questions}

    # =========================================================================
    # 1. STRUCTURE
    # =========================================================================

    for index, count in Counter(p.index for p in survey.pages).items():
        if count > 1:
            report.add_error(f"Duplicate page index {index}")

    for question in survey.questions:
        if question.page_id not in page_ids:
            report.add_error(f"Question {question.id} belongs to missing page {question.page_id}")
        if question.group_id is not None and survey.get_group(question.group_id) is None:
            report.add_warning(f"Question {question.id} references missing group {question.group_id}")
        if question.carry_forward_question_id and survey.get_question(question.carry_forward_question_id) is None:
            report.add_error(
                f"Question {question.id} carries forward from missing question "
                f"{question.carry_forward_question_id}"
            )

    for variable, count in Counter(q.variable_name for q in survey.questions).items():
        if count > 1:
            report.add_error(f"Duplicate variable name {variable}")

    # =========================================================================
    # 2. EXPRESSIONS
    # =========================================================================

    usage: Dict[str, int] = defaultdict(int)
    for owner, expression in _expressions(survey):
        report.total_expressions += 1
        try:
            variables = referenced_variables(parse_expression(expression.dsl))
        except ExpressionParseError as exc:
            report.add_error(f"Malformed expression {expression.id} on {owner}: {exc}")
            continue
        except RecursionError:
            report.add_error(f"Malformed expression {expression.id} on {owner}: nested too deeply")
            continue
        for variable in variables:
            usage[variable] += 1
            if variable not in known_variables:
                report.undefined_variables.add(variable)

    report.variable_usage = dict(usage)
    if report.undefined_variables:
        report.add_warning(
            f"Undefined variable references: {', '.join(sorted(report.undefined_variables))}"
        )

    # =========================================================================
    # 3. JUMP RULES
    # =========================================================================

    interior: Dict[str, str] = {}
    for battery in survey.loop_batteries:
        for page_id in _battery_pages(survey, battery)[1:]:
            interior.setdefault(page_id, battery.id)

    for rule in survey.jump_rules:
        if survey.get_question(rule.source_question_id) is None:
            report.add_error(f"Jump rule {rule.id} is attached to missing question {rule.source_question_id}")
    for rule in survey.page_jump_rules:
        if rule.source_page_id not in page_ids:
            report.add_error(f"Page jump rule {rule.id} is attached to missing page {rule.source_page_id}")

    for rule in list(survey.jump_rules) + list(survey.page_jump_rules):
        if rule.destination.is_end:
            continue
        target = destination_page_id(survey, rule.destination)
        if target is None:
            report.add_error(
                f"Jump rule {rule.id} points at missing "
                f"{rule.destination.type.value.lower()} {rule.destination.target_id}"
            )
        elif target in interior:
            report.add_warning(
                f"Jump rule {rule.id} lands inside loop battery {interior[target]} "
                f"without passing its start page"
            )

    # =========================================================================
    # 4. LOOP BATTERIES
    # =========================================================================

    claimed: Dict[str, str] = {}
    for battery in survey.loop_batteries:
        start = survey.get_page(battery.start_page_id)
        end = survey.get_page(battery.end_page_id)
        if start is None or end is None:
            report.add_error(f"Loop battery {battery.id} references a missing page")
            continue
        if start.index >= end.index:
            report.add_error(
                f"Loop battery {battery.id} start page {start.id} must come before end page {end.id}"
            )
            continue

        pages = _battery_pages(survey, battery)
        for page_id in pages:
            if page_id in claimed:
                report.add_error(
                    f"Loop batteries {claimed[page_id]} and {battery.id} overlap on page {page_id}"
                )
                break
        else:
            for page_id in pages:
                claimed[page_id] = battery.id

        if battery.max_items is not None and battery.max_items < 1:
            report.add_warning(
                f"Loop battery {battery.id} has max_items {battery.max_items}; no cap is applied"
            )

        if battery.source_type is LoopSourceType.ANSWER:
            _check_answer_source(survey, battery, pages, report)
        else:
            _check_dataset_source(battery, report)

    return report


def _check_answer_source(survey: Survey, battery: LoopBattery, pages: List[str], report: SurveyReport) -> None:
    if not battery.source_question_id:
        report.add_error(f"Loop battery {battery.id} sources from answers but has no source question")
        return
    source = survey.get_question(battery.source_question_id)
    if source is None:
        report.add_error(
            f"Loop battery {battery.id} sources from missing question {battery.source_question_id}"
        )
        return
    if not source.is_multi_select:
        report.add_error(
            f"Loop battery {battery.id} source question {source.id} is not multi-select"
        )
    if source.page_id in pages:
        report.add_error(
            f"Loop battery {battery.id} source question {source.id} is inside the battery"
        )


def _check_dataset_source(battery: LoopBattery, report: SurveyReport) -> None:
    duplicates = [key for key, count in Counter(i.key for i in battery.dataset_items).items() if count > 1]
    if duplicates:
        report.add_error(
            f"Loop battery {battery.id} has duplicate dataset keys: {', '.join(sorted(duplicates))}"
        )
    if not any(item.is_active for item in battery.dataset_items):
        report.add_warning(f"Loop battery {battery.id} has no active dataset items and will be skipped")


def validate_survey(survey: Survey) -> SurveyReport:
    """Analyze and raise DefinitionError if the survey has errors."""
    report = analyze_survey(survey)
    if not report.is_valid:
        raise DefinitionError(report)
    return report
