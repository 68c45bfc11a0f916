"""
End-to-end tests for SurveyRuntime on the example brand tracker survey.
"""

import logging

import pytest

from surveyflow.config import RuntimeConfig
from surveyflow.examples import build_example_brand_survey
from surveyflow.model import (
    JumpDestination,
    JumpRule,
    LogicExpression,
    LoopBattery,
    LoopDatasetItem,
    Page,
    PageJumpRule,
    Question,
    Survey,
)
from surveyflow.runtime import SurveyRuntime, UnknownQuestionError
from surveyflow.store import InMemorySessionStore, JsonFileSessionStore, StaleSessionError


def runtime(**config) -> SurveyRuntime:
    return SurveyRuntime(build_example_brand_survey(), config=RuntimeConfig(**config))


def walk(rt: SurveyRuntime, session_id: str):
    """Follow get_next_page to the end; return (page, loop item key) pairs."""
    path = []
    result = rt.current_position(session_id)
    while not result.completed:
        key = result.loop_context.current_item.key if result.loop_context else None
        path.append((result.page_id, key))
        result = rt.get_next_page(session_id, result.page_id)
    return path


class TestStartSession:
    """Session lifecycle."""

    def test_starts_on_first_page(self):
        rt = runtime()
        session = rt.start_session("r1")
        assert session.current_page_id == "p_screen"
        assert session.history == ["p_screen"]
        assert session.version == 0
        assert not session.completed

    def test_generated_session_id(self):
        rt = runtime()
        assert rt.start_session().session_id
        assert rt.start_session().session_id != rt.start_session().session_id

    def test_embedded_data(self):
        rt = runtime()
        session = rt.start_session("r1", embedded_data={"panel": "uk"})
        assert rt.get_session(session.session_id).embedded_data == {"panel": "uk"}


class TestFullWalk:
    """A complete respondent journey through both batteries."""

    def test_adult_path(self):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 30)
        rt.on_answer_submitted("r1", "q_aware", ["nike", "puma"])

        assert walk(rt, "r1") == [
            ("p_screen", None),
            ("p_brand_rate", "nike"),
            ("p_brand_buy", "nike"),
            ("p_brand_rate", "puma"),
            ("p_brand_buy", "puma"),
            ("p_store_visit", "oxford_st"),
            ("p_store_rate", "oxford_st"),
            ("p_store_visit", "rivoli"),
            ("p_store_rate", "rivoli"),
            ("p_thanks", None),
        ]
        session = rt.get_session("r1")
        assert session.completed
        assert session.current_page_id is None

    def test_no_brands_skips_brand_battery(self):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 30)
        rt.on_answer_submitted("r1", "q_aware", [])
        result = rt.get_next_page("r1", "p_screen")
        assert result.page_id == "p_store_visit"
        assert result.loop_context.current_item.label == "Oxford Street"

    def test_teen_page_shown_under_18(self):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 17)
        rt.on_answer_submitted("r1", "q_aware", [])
        pages = [page for page, _ in walk(rt, "r1")]
        assert pages[-2:] == ["p_teen", "p_thanks"]


class TestJumps:
    """Jump rules through the runtime."""

    def test_underage_ends_survey(self):
        rt = runtime()
        rt.start_session("r1")
        outcome = rt.on_answer_submitted("r1", "q_age", 15)
        assert outcome.rule_id == "j_underage"
        assert outcome.ends_survey
        assert rt.get_session("r1").completed
        assert rt.get_next_page("r1", "p_screen").completed

    def test_no_jump(self):
        rt = runtime()
        rt.start_session("r1")
        assert rt.on_answer_submitted("r1", "q_age", 40) is None

    def test_unknown_question(self):
        rt = runtime()
        rt.start_session("r1")
        with pytest.raises(UnknownQuestionError):
            rt.on_answer_submitted("r1", "q_nope", 1)


class TestRendering:
    """resolve_page through the runtime."""

    def test_loop_title(self):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_aware", ["adidas", "nike"])
        rt.on_answer_submitted("r1", "q_age", 22)
        rt.get_next_page("r1", "p_screen")
        page = rt.resolve_page("r1")
        assert page.title == "Adidas (1 of 2)"
        assert page.questions[0].text == "How would you rate Adidas?"

    def test_random_options_stable_and_saved_once(self):
        rt = runtime()
        rt.start_session("r1")
        first = rt.resolve_page("r1")
        version = rt.get_session("r1").version
        second = rt.resolve_page("r1")
        aware = lambda page: [o.id for o in page.questions[1].options]
        assert aware(first) == aware(second)
        assert sorted(aware(first)) == ["aware_adidas", "aware_nike", "aware_puma"]
        assert version == 1
        assert rt.get_session("r1").version == 1

    def test_seeded_sessions_reproducible(self):
        orders = []
        for _ in range(2):
            rt = runtime(random_seed=7)
            rt.start_session("same-id")
            orders.append([o.id for o in rt.resolve_page("same-id").questions[1].options])
        assert orders[0] == orders[1]

    def test_piping_on_last_page(self):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_aware", ["puma", "nike"])
        page = rt.resolve_page("r1", "p_thanks")
        assert page.questions[0].text == "You told us about Puma, Nike. Anything else to add?"


class TestLoopReset:
    """Changing the source answer discards the brand plan."""

    def _into_loop(self, rt):
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 30)
        rt.on_answer_submitted("r1", "q_aware", ["nike", "puma"])
        rt.get_next_page("r1", "p_screen")

    def test_changed_answer_resets(self):
        rt = runtime()
        self._into_loop(rt)
        assert rt.get_session("r1").loop_plan("brands") is not None
        rt.on_answer_submitted("r1", "q_aware", ["adidas"])
        assert rt.get_session("r1").loop_plan("brands") is None

    def test_reordered_answer_keeps_plan(self):
        rt = runtime()
        self._into_loop(rt)
        rt.on_answer_submitted("r1", "q_aware", ["puma", "nike"])
        assert rt.get_session("r1").loop_plan("brands").keys == ["nike", "puma"]

    def test_regenerated_on_next_entry(self):
        rt = runtime()
        self._into_loop(rt)
        rt.get_previous_page("r1", "p_brand_rate")
        rt.on_answer_submitted("r1", "q_aware", ["adidas"])
        result = rt.get_next_page("r1", "p_screen")
        assert result.loop_context.current_item.key == "adidas"


class TestBackward:
    """get_previous_page through the runtime."""

    def test_back_from_first_page_stays(self):
        rt = runtime()
        rt.start_session("r1")
        result = rt.get_previous_page("r1", "p_screen")
        assert result.page_id is None
        session = rt.get_session("r1")
        assert session.current_page_id == "p_screen"
        assert session.version == 0

    def test_back_through_iterations(self):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 30)
        rt.on_answer_submitted("r1", "q_aware", ["nike", "puma"])
        for page in ("p_screen", "p_brand_rate", "p_brand_buy"):
            rt.get_next_page("r1", page)
        # now on p_brand_rate for puma
        result = rt.get_previous_page("r1", "p_brand_rate")
        assert result.page_id == "p_brand_buy"
        assert result.loop_context.current_item.key == "nike"
        assert rt.get_session("r1").history[-1] == "p_brand_buy"


class TestDuplicateRequests:
    """Navigation carrying a stale from-page is ignored."""

    def test_duplicate_next_does_not_advance(self, caplog):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 30)
        rt.on_answer_submitted("r1", "q_aware", ["nike", "puma"])
        first = rt.get_next_page("r1", "p_screen")
        version = rt.get_session("r1").version
        with caplog.at_level(logging.WARNING, logger="surveyflow.runtime"):
            again = rt.get_next_page("r1", "p_screen")
        assert again.page_id == first.page_id == "p_brand_rate"
        assert again.loop_context.current_item.key == "nike"
        assert rt.get_session("r1").version == version
        assert any("p_screen" in r.getMessage() for r in caplog.records)

    def test_duplicate_exit_does_not_double_advance(self):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 30)
        rt.on_answer_submitted("r1", "q_aware", ["nike", "puma", "adidas"])
        rt.get_next_page("r1", "p_screen")
        rt.get_next_page("r1", "p_brand_rate")
        rt.get_next_page("r1", "p_brand_buy")
        rt.get_next_page("r1", "p_brand_buy")
        assert rt.get_session("r1").loop_plan("brands").cursor == 1


class RacingStore(InMemorySessionStore):
    """Lets another writer commit between a load and the following save."""

    def __init__(self):
        super().__init__()
        self.race = False

    def load(self, session_id):
        state = super().load(session_id)
        if self.race:
            self.race = False
            super().save(super().load(session_id))
        return state


class TestConcurrency:
    """Lost compare-and-swap races surface to the caller."""

    def test_stale_session_error(self):
        store = RacingStore()
        rt = SurveyRuntime(build_example_brand_survey(), store=store)
        rt.start_session("r1")
        store.race = True
        with pytest.raises(StaleSessionError):
            rt.get_next_page("r1", "p_screen")
        assert rt.get_session("r1").current_page_id == "p_screen"


class TestLoopProgress:
    """get_loop_progress is a pure read."""

    def test_progress(self):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 30)
        rt.on_answer_submitted("r1", "q_aware", ["nike", "puma"])
        rt.get_next_page("r1", "p_screen")
        version = rt.get_session("r1").version

        progress = rt.get_loop_progress("r1", "brands")
        assert progress.current_iteration == 1
        assert progress.total_iterations == 2
        assert progress.percent_complete == 50.0
        assert progress.current_item.label == "Nike"
        assert progress.is_first and not progress.is_last
        assert rt.get_session("r1").version == version

    def test_unplanned_battery(self):
        rt = runtime()
        rt.start_session("r1")
        assert rt.get_loop_progress("r1", "stores") is None


class TestFileStore:
    """The runtime works the same on the JSON file store."""

    def test_walk_on_files(self, tmp_path):
        rt = SurveyRuntime(build_example_brand_survey(), store=JsonFileSessionStore(tmp_path))
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 30)
        rt.on_answer_submitted("r1", "q_aware", ["puma"])
        pages = [page for page, _ in walk(rt, "r1")]
        assert pages == [
            "p_screen", "p_brand_rate", "p_brand_buy",
            "p_store_visit", "p_store_rate", "p_store_visit", "p_store_rate",
            "p_thanks",
        ]


def build_leaving_survey() -> Survey:
    """P0..P4 with a two-row battery over P1..P2 and a page jump off P2."""
    survey = Survey(id="leaving")
    survey.pages = [Page(id=f"P{i}", index=i) for i in range(5)]
    survey.questions = [
        Question(id="q1", page_id="P0", variable_name="Q1", index=0),
        Question(
            id="q2", page_id="P0", variable_name="Q2", index=1,
            visible_if=LogicExpression("e_q2", "equals(answer('Q1'), 'show')"),
        ),
        Question(id="q3", page_id="P0", variable_name="Q3", index=2),
        Question(id="q_rate", page_id="P2", variable_name="RATE"),
    ]
    survey.jump_rules = [
        JumpRule("j_q2", "q2", JumpDestination.end(), LogicExpression("e_j2", "equals(answer('Q1'), 'hide')")),
        JumpRule("j_q3", "q3", JumpDestination.end(), LogicExpression("e_j3", "equals(answer('Q1'), 'end')")),
    ]
    survey.page_jump_rules = [
        PageJumpRule("pj_out", "P2", JumpDestination.to_page("P4")),
    ]
    survey.loop_batteries = [
        LoopBattery(
            id="rows", name="Rows", start_page_id="P1", end_page_id="P2",
            dataset_items=[LoopDatasetItem("a", sort_index=0), LoopDatasetItem("b", sort_index=1)],
        ),
    ]
    return survey


class TestLeavingPage:
    """Only questions the respondent saw and answered drive jumps."""

    def test_hidden_answered_question_does_not_jump(self):
        rt = SurveyRuntime(build_leaving_survey())
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q1", "show")
        assert rt.on_answer_submitted("r1", "q2", "kept") is None
        rt.on_answer_submitted("r1", "q1", "hide")

        result = rt.get_next_page("r1", "P0")
        assert result.page_id == "P1"
        assert not rt.get_session("r1").completed

    def test_unanswered_question_does_not_jump(self):
        rt = SurveyRuntime(build_leaving_survey())
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q1", "end")
        assert rt.get_next_page("r1", "P0").page_id == "P1"

    def test_visible_answered_question_jumps(self):
        rt = SurveyRuntime(build_leaving_survey())
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q1", "stay")
        assert rt.on_answer_submitted("r1", "q3", "x") is None
        rt.on_answer_submitted("r1", "q1", "end")

        assert rt.get_next_page("r1", "P0").completed
        assert rt.get_session("r1").completed


class TestJumpOffLoop:
    """A jump off a battery's end page on the last pass completes the battery."""

    def test_plan_complete_after_jump(self):
        rt = SurveyRuntime(build_leaving_survey())
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q1", "hide")

        path = walk(rt, "r1")
        assert path == [
            ("P0", None),
            ("P1", "a"), ("P2", "a"),
            ("P1", "b"), ("P2", "b"),
            ("P4", None),
        ]
        assert rt.get_session("r1").loop_plan("rows").is_complete
        assert rt.get_loop_progress("r1", "rows").is_complete


def build_termination_survey() -> Survey:
    survey = Survey(id="screen")
    survey.pages = [Page(id="P0", index=0), Page(id="P1", index=1)]
    survey.questions = [
        Question(
            id="q_age", page_id="P0", variable_name="AGE",
            terminate_if=LogicExpression("t_age", "lessThan(answer('AGE'), 18)", "Under 18"),
        ),
        Question(
            id="q_consent", page_id="P0", variable_name="CONSENT", index=1,
            terminate_if=LogicExpression("t_consent", "equals(answer('OPTIN'), 'no')"),
        ),
        Question(id="q_optin", page_id="P0", variable_name="OPTIN", index=2),
    ]
    survey.jump_rules = [JumpRule("j_age", "q_age", JumpDestination.to_page("P1"))]
    return survey


class TestTermination:
    """Question termination through the runtime."""

    def test_terminated_on_answer(self):
        rt = SurveyRuntime(build_termination_survey())
        rt.start_session("r1")
        outcome = rt.on_answer_submitted("r1", "q_age", 15)
        assert outcome.terminates
        assert outcome.rule_id == "t_age"

        session = rt.get_session("r1")
        assert session.completed
        assert session.terminated
        assert session.termination_reason == "Under 18"

        result = rt.get_next_page("r1", "P0")
        assert result.completed
        assert result.terminated
        assert result.termination_reason == "Under 18"

    def test_not_terminated(self):
        rt = SurveyRuntime(build_termination_survey())
        rt.start_session("r1")
        outcome = rt.on_answer_submitted("r1", "q_age", 30)
        assert outcome.rule_id == "j_age"
        assert not outcome.terminates
        assert not rt.get_session("r1").terminated

    def test_terminated_on_leaving_page(self):
        rt = SurveyRuntime(build_termination_survey())
        rt.start_session("r1")
        assert rt.on_answer_submitted("r1", "q_consent", "yes") is None
        rt.on_answer_submitted("r1", "q_optin", "no")

        result = rt.get_next_page("r1", "P0")
        assert result.completed
        assert result.terminated
        assert result.termination_reason == "Survey terminated based on answer"

        session = rt.get_session("r1")
        assert session.terminated
        assert session.current_page_id is None

    def test_completed_session_is_not_terminated(self):
        rt = runtime()
        rt.start_session("r1")
        rt.on_answer_submitted("r1", "q_age", 15)
        session = rt.get_session("r1")
        assert session.completed
        assert not session.terminated
