"""
Survey Definition Model

Defines the data structures a survey author produces and the runtime consumes:
    - Logic expressions (DSL text owned by the survey)
    - Pages, question groups, questions, options
    - Jump rules (question-level and page-level)
    - Loop batteries and their dataset rows
    - Survey (root container with lookup helpers)

ARCHITECTURAL RULE:
    These objects:
        - Know nothing about sessions, responses or rendering
        - Are plain data, mutated only while a survey is being authored
        - Are fully serializable (see surveyflow.serialization)
        - Represent structure, not behavior
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class QuestionType(Enum):
    """Question types the runtime distinguishes between."""

    SINGLE_CHOICE = "SINGLE_CHOICE"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    RATING = "RATING"
    DATE = "DATE"


# Question types whose response is a list of selected option values.
MULTI_SELECT_TYPES = frozenset({QuestionType.MULTIPLE_CHOICE})


class OrderMode(Enum):
    """
    Display order strategy for questions, groups or options.

    SEQUENTIAL keeps authored order. RANDOM is an unbiased shuffle.
    GROUP_RANDOM shuffles within partitions sharing a group key.
    WEIGHTED orders by weighted random sampling.
    """

    SEQUENTIAL = "SEQUENTIAL"
    RANDOM = "RANDOM"
    GROUP_RANDOM = "GROUP_RANDOM"
    WEIGHTED = "WEIGHTED"


class LoopSourceType(Enum):
    """Where a loop battery gets its items from."""

    ANSWER = "ANSWER"
    DATASET = "DATASET"


class DestinationType(Enum):
    """Kind of target a jump rule sends the respondent to."""

    QUESTION = "QUESTION"
    PAGE = "PAGE"
    END = "END"


class CarryForwardFilter(Enum):
    """Which of the source question's options are carried forward."""

    SELECTED = "SELECTED"
    UNSELECTED = "UNSELECTED"
    ALL = "ALL"


@dataclass(frozen=True)
class LogicExpression:
    """
    A named DSL expression owned by the survey definition.

    Immutable once referenced by a page, question, option, group or rule.

    Properties:
        id: Stable identifier
        dsl: Expression text, e.g. "anySelected('Q1', ['a', 'b'])"
        description: Optional author note
    """

    id: str
    dsl: str
    description: Optional[str] = None


@dataclass
class Page:
    """
    A survey page.

    Properties:
        id: Unique identifier
        index: Strict position in the survey (pages are ordered by index)
        title: Display title, may contain loop and piping tokens
        visible_if: Optional visibility expression
        question_order_mode: Order of standalone questions on the page
        group_order_mode: Order of question groups on the page
    """

    id: str
    index: int
    title: str = ""
    visible_if: Optional[LogicExpression] = None
    question_order_mode: OrderMode = OrderMode.SEQUENTIAL
    group_order_mode: OrderMode = OrderMode.SEQUENTIAL


@dataclass
class QuestionGroup:
    """
    A block of questions displayed together on one page.

    Properties:
        id: Unique identifier
        page_id: Owning page
        index: Authored position among the page's groups
        title: Display title
        visible_if: Optional visibility expression
        question_order_mode: Order of the questions inside the group
    """

    id: str
    page_id: str
    index: int = 0
    title: str = ""
    visible_if: Optional[LogicExpression] = None
    question_order_mode: OrderMode = OrderMode.SEQUENTIAL


@dataclass
class OptionGroup:
    """
    A named partition of a question's options.

    Options reference it through Option.group_key. GROUP_RANDOM ordering
    shuffles within partitions; a hidden group hides all of its options.
    """

    key: str
    label: str = ""
    visible_if: Optional[LogicExpression] = None


@dataclass
class Option:
    """
    One answer choice of a question.

    Properties:
        id: Unique identifier
        value: Stored response value
        label: Display label (may contain tokens)
        index: Authored position
        visible_if: Optional visibility expression
        group_key: Optional OptionGroup key
        weight: Optional weight used by WEIGHTED ordering
    """

    id: str
    value: str
    label: str
    index: int = 0
    visible_if: Optional[LogicExpression] = None
    group_key: Optional[str] = None
    weight: Optional[float] = None


@dataclass
class Question:
    """
    A survey question.

    Properties:
        id:
            Unique identifier; responses are keyed by this id
        page_id:
            Owning page
        variable_name:
            Author-facing name used in DSL references, e.g. "Q1"
        type:
            QuestionType
        text:
            Question text (may contain loop and piping tokens)
        index:
            Authored position within its page or group
        group_id:
            Optional QuestionGroup id; None means standalone on the page
        option_order_mode:
            Display order of the options
        visible_if:
            Optional visibility expression
        options / option_groups:
            Authored answer choices and their partitions
        carry_forward_question_id / carry_forward_filter:
            Optional source question whose options are reused here
        terminate_if:
            Optional expression that ends the survey once this question is
            answered; its description is recorded as the reason

    IMPORTANT:
        A question with a carry-forward source still owns its authored
        options; carried options are appended when resolved.
    """

    id: str
    page_id: str
    variable_name: str
    type: QuestionType = QuestionType.SINGLE_CHOICE
    text: str = ""
    index: int = 0
    group_id: Optional[str] = None
    option_order_mode: OrderMode = OrderMode.SEQUENTIAL
    visible_if: Optional[LogicExpression] = None
    options: List[Option] = field(default_factory=list)
    option_groups: List[OptionGroup] = field(default_factory=list)
    carry_forward_question_id: Optional[str] = None
    carry_forward_filter: CarryForwardFilter = CarryForwardFilter.SELECTED
    terminate_if: Optional[LogicExpression] = None

    @property
    def is_multi_select(self) -> bool:
        return self.type in MULTI_SELECT_TYPES

    def get_option_by_value(self, value: Any) -> Optional[Option]:
        for option in self.options:
            if option.value == value:
                return option
        return None

    def get_option_group(self, key: str) -> Optional[OptionGroup]:
        for group in self.option_groups:
            if group.key == key:
                return group
        return None


@dataclass(frozen=True)
class JumpDestination:
    """
    Where a jump rule sends the respondent.

    Exactly one of: a question id, a page id, or the end of the survey.
    """

    type: DestinationType
    target_id: Optional[str] = None

    @classmethod
    def to_question(cls, question_id: str) -> "JumpDestination":
        return cls(DestinationType.QUESTION, question_id)

    @classmethod
    def to_page(cls, page_id: str) -> "JumpDestination":
        return cls(DestinationType.PAGE, page_id)

    @classmethod
    def end(cls) -> "JumpDestination":
        return cls(DestinationType.END)

    @property
    def is_end(self) -> bool:
        return self.type is DestinationType.END


@dataclass
class JumpRule:
    """
    A prioritized conditional skip attached to a question.

    Properties:
        id: Unique identifier
        source_question_id: Question whose answer triggers evaluation
        destination: JumpDestination
        condition: Optional expression; None means unconditional
        priority: Lower numbers are evaluated first
    """

    id: str
    source_question_id: str
    destination: JumpDestination
    condition: Optional[LogicExpression] = None
    priority: int = 0


@dataclass
class PageJumpRule:
    """
    A prioritized conditional skip evaluated when leaving a page.

    Question-level rules take precedence over page-level rules.
    """

    id: str
    source_page_id: str
    destination: JumpDestination
    condition: Optional[LogicExpression] = None
    priority: int = 0


@dataclass
class LoopDatasetItem:
    """
    One row of a DATASET battery.

    Properties:
        key: Unique per battery; becomes the loop item key
        attributes: Free-form values exposed as {{loop.<name>}} tokens
        is_active: Inactive rows are never planned
        sort_index: Planning order
    """

    key: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    sort_index: int = 0


@dataclass
class LoopBattery:
    """
    A page range that repeats once per item of a computed list.

    Properties:
        id / name:
            Identifier and display name
        start_page_id / end_page_id:
            Inclusive page range; start index must be below end index
        source_type:
            ANSWER (items are the selections of source_question_id)
            or DATASET (items are the active dataset rows)
        source_question_id:
            Required for ANSWER; must be a multi-select question
        max_items:
            Optional cap applied after randomization; None or below 1 means no cap
        randomize:
            Shuffle items once when the plan is generated
        sample_without_replacement:
            Carried for compatibility; plans never repeat an item
        dataset_items:
            Rows for DATASET batteries

    INVARIANTS (checked by surveyflow.analyzer):
        - start page index < end page index
        - no two batteries of a survey overlap
    """

    id: str
    name: str
    start_page_id: str
    end_page_id: str
    source_type: LoopSourceType = LoopSourceType.DATASET
    source_question_id: Optional[str] = None
    max_items: Optional[int] = None
    randomize: bool = False
    sample_without_replacement: bool = True
    dataset_items: List[LoopDatasetItem] = field(default_factory=list)


@dataclass
class Survey:
    """
    Root container for a survey definition.

    Everything the runtime needs (pages, questions, rules, batteries) is
    derivable from this object alone.

    INVARIANTS:
        - Page indexes are unique
        - Question.page_id references an existing page
        - Loop batteries do not overlap
    """

    id: str
    name: str = ""
    pages: List[Page] = field(default_factory=list)
    groups: List[QuestionGroup] = field(default_factory=list)
    questions: List[Question] = field(default_factory=list)
    jump_rules: List[JumpRule] = field(default_factory=list)
    page_jump_rules: List[PageJumpRule] = field(default_factory=list)
    loop_batteries: List[LoopBattery] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)

    def get_page(self, page_id: str) -> Optional[Page]:
        for page in self.pages:
            if page.id == page_id:
                return page
        return None

    def get_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def get_question_by_variable(self, variable_name: str) -> Optional[Question]:
        for question in self.questions:
            if question.variable_name == variable_name:
                return question
        return None

    def get_group(self, group_id: str) -> Optional[QuestionGroup]:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None

    def get_loop_battery(self, battery_id: str) -> Optional[LoopBattery]:
        for battery in self.loop_batteries:
            if battery.id == battery_id:
                return battery
        return None

    def pages_in_order(self) -> List[Page]:
        """Pages sorted by index."""
        return sorted(self.pages, key=lambda p: p.index)

    def questions_on_page(self, page_id: str) -> List[Question]:
        """Questions owned by a page, in authored order."""
        return sorted(
            (q for q in self.questions if q.page_id == page_id),
            key=lambda q: q.index,
        )

    def groups_on_page(self, page_id: str) -> List[QuestionGroup]:
        return sorted(
            (g for g in self.groups if g.page_id == page_id),
            key=lambda g: g.index,
        )

    def jump_rules_for(self, question_id: str) -> List[JumpRule]:
        return [r for r in self.jump_rules if r.source_question_id == question_id]

    def page_jump_rules_for(self, page_id: str) -> List[PageJumpRule]:
        return [r for r in self.page_jump_rules if r.source_page_id == page_id]

    def batteries_sourced_from(self, question_id: str) -> List[LoopBattery]:
        """ANSWER batteries whose items come from the given question."""
        return [
            b for b in self.loop_batteries
            if b.source_type is LoopSourceType.ANSWER and b.source_question_id == question_id
        ]
