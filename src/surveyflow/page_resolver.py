"""
Page Resolver

Turns a page of the survey definition into what one respondent sees right now:

    Visibility -> Order -> Template

    1. an invisible page resolves to an empty, invisible ResolvedPage
    2. hidden groups, questions and options are dropped
    3. groups, questions within each group, and options within each question
       are ordered through the session's OrderResolver
    4. titles, question texts and option labels get loop tokens and piping

Standalone questions (no group) form an implicit group with id
STANDALONE_GROUP_ID, placed after the authored groups before group ordering.
Options include carried-forward options (see surveyflow.carry_forward).

Question orders are cached per owner under "question:group/<id>:MODE" or
"question:page/<id>:MODE"; a group and a page never share a key.

IMPORTANT:
    Ordering writes into state.render_state.order_cache. The caller owns
    persisting the state so a re-render returns the same order.
"""

import random
from dataclasses import dataclass, field
from typing import List, Optional

from surveyflow.carry_forward import options_with_carry_forward
from surveyflow.evaluator import EvaluationContext
from surveyflow.loops import LoopContext
from surveyflow.model import Option, OrderMode, Page, Question, QuestionType, Survey
from surveyflow.navigation import UnknownPageError
from surveyflow.ordering import WEIGHTED_SAMPLING, OrderItem, OrderResolver
from surveyflow.session import SessionState
from surveyflow.templates import resolve_text
from surveyflow.visibility import VisibilityResolver

STANDALONE_GROUP_ID = "standalone"


@dataclass
class ResolvedOption:
    id: str
    value: str
    label: str
    group_key: Optional[str] = None


@dataclass
class ResolvedQuestion:
    id: str
    variable_name: str
    type: QuestionType
    text: str
    options: List[ResolvedOption] = field(default_factory=list)


@dataclass
class ResolvedGroup:
    """A displayed block of questions. implicit marks the standalone group."""

    id: str
    title: str = ""
    questions: List[ResolvedQuestion] = field(default_factory=list)
    implicit: bool = False


@dataclass
class ResolvedPage:
    """
    Final content of one page for one respondent.

    Properties:
        page_id: the page
        title: resolved title
        groups: visible groups in display order
        is_visible: False when the page's own visibility expression is False
        loop_context: the iteration the page was rendered for, if any
    """

    page_id: str
    title: str = ""
    groups: List[ResolvedGroup] = field(default_factory=list)
    is_visible: bool = True
    loop_context: Optional[LoopContext] = None

    @property
    def questions(self) -> List[ResolvedQuestion]:
        """All displayed questions, flattened in display order."""
        return [q for group in self.groups for q in group.questions]


class PageResolver:
    """Resolves pages of one survey for one session state."""

    def __init__(
        self,
        survey: Survey,
        state: SessionState,
        loop_context: Optional[LoopContext] = None,
        rng: Optional[random.Random] = None,
        weighted_order: str = WEIGHTED_SAMPLING,
        log_failures: bool = True,
    ):
        self.survey = survey
        self.state = state
        self.loop_context = loop_context
        context = EvaluationContext(state.responses, state.embedded_data, survey.questions)
        self.visibility = VisibilityResolver(context, log_failures=log_failures)
        self.orderer = OrderResolver(
            state.render_state.order_cache, rng=rng, weighted_order=weighted_order,
        )

    def resolve(self, page_id: str) -> ResolvedPage:
        page = self.survey.get_page(page_id)
        if page is None:
            raise UnknownPageError(f"Unknown page: {page_id}")

        if not self.visibility.is_visible(page):
            return ResolvedPage(
                page_id=page.id,
                title=self._text(page.title),
                is_visible=False,
                loop_context=self.loop_context,
            )

        groups = self._groups(page)
        ordered_ids = self.orderer.order(
            page.id, page.group_order_mode, [OrderItem(g.id) for g in groups], scope="group",
        )
        by_id = {g.id: g for g in groups}
        return ResolvedPage(
            page_id=page.id,
            title=self._text(page.title),
            groups=[by_id[group_id] for group_id in ordered_ids],
            loop_context=self.loop_context,
        )

    def _groups(self, page: Page) -> List[ResolvedGroup]:
        on_page = self.survey.questions_on_page(page.id)
        groups: List[ResolvedGroup] = []

        for group in self.survey.groups_on_page(page.id):
            if not self.visibility.is_visible(group):
                continue
            members = [q for q in on_page if q.group_id == group.id]
            groups.append(ResolvedGroup(
                id=group.id,
                title=self._text(group.title),
                questions=self._questions(f"group/{group.id}", group.question_order_mode, members),
            ))

        known_groups = {g.id for g in self.survey.groups_on_page(page.id)}
        standalone = [q for q in on_page if q.group_id is None or q.group_id not in known_groups]
        if standalone:
            groups.append(ResolvedGroup(
                id=STANDALONE_GROUP_ID,
                questions=self._questions(f"page/{page.id}", page.question_order_mode, standalone),
                implicit=True,
            ))
        return groups

    def _questions(
        self, owner_id: str, mode: OrderMode, questions: List[Question]
    ) -> List[ResolvedQuestion]:
        visible = [q for q in questions if self.visibility.is_visible(q)]
        ordered_ids = self.orderer.order(
            owner_id, mode, [OrderItem(q.id) for q in visible], scope="question",
        )
        by_id = {q.id: q for q in visible}
        return [self._question(by_id[question_id]) for question_id in ordered_ids]

    def _question(self, question: Question) -> ResolvedQuestion:
        options = [
            o for o in options_with_carry_forward(question, self.survey, self.state.responses)
            if self.visibility.is_option_visible(o, question)
        ]
        ordered_ids = self.orderer.order(
            question.id,
            question.option_order_mode,
            [OrderItem(o.id, o.group_key, o.weight) for o in options],
            scope="option",
        )
        by_id = {o.id: o for o in options}
        return ResolvedQuestion(
            id=question.id,
            variable_name=question.variable_name,
            type=question.type,
            text=self._text(question.text),
            options=[self._option(by_id[option_id]) for option_id in ordered_ids],
        )

    def _option(self, option: Option) -> ResolvedOption:
        return ResolvedOption(
            id=option.id,
            value=option.value,
            label=self._text(option.label),
            group_key=option.group_key,
        )

    def _text(self, text: Optional[str]) -> str:
        return resolve_text(
            text,
            self.loop_context,
            self.state.responses,
            self.survey.questions,
            self.state.embedded_data,
        )


def resolve_page(
    survey: Survey,
    state: SessionState,
    page_id: str,
    loop_context: Optional[LoopContext] = None,
    rng: Optional[random.Random] = None,
    weighted_order: str = WEIGHTED_SAMPLING,
    log_failures: bool = True,
) -> ResolvedPage:
    """Resolve one page; see PageResolver."""
    resolver = PageResolver(
        survey, state, loop_context, rng=rng,
        weighted_order=weighted_order, log_failures=log_failures,
    )
    return resolver.resolve(page_id)
