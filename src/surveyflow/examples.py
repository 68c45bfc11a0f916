"""
Example brand tracker survey.

Seven pages exercising the runtime end to end:

    p_screen        AGE (jump to END under 16), AWARE (multi-select, RANDOM)
    p_brand_rate    start of ANSWER battery "brands" over AWARE
    p_brand_buy     end of "brands"
    p_store_visit   start of DATASET battery "stores" (max 2 of 3 active rows)
    p_store_rate    end of "stores"
    p_teen          only shown to respondents under 18
    p_thanks        piping of earlier answers
"""
from surveyflow.model import (
    JumpDestination,
    JumpRule,
    LogicExpression,
    LoopBattery,
    LoopDatasetItem,
    LoopSourceType,
    Option,
    OrderMode,
    Page,
    Question,
    QuestionType,
    Survey,
)


def _choices(prefix: str, pairs) -> list:
    return [
        Option(id=f"{prefix}_{value}", value=value, label=label, index=i)
        for i, (value, label) in enumerate(pairs)
    ]


def build_example_brand_survey(store_limit: int = 2) -> Survey:
    survey = Survey(id="brand_tracker", name="Brand Tracker")

    survey.pages = [
        Page(id="p_screen", index=0, title="About you"),
        Page(id="p_brand_rate", index=1, title="{{loop.label}} ({{loop.index}} of {{loop.total}})"),
        Page(id="p_brand_buy", index=2, title="Buying {{loop.label}}"),
        Page(id="p_store_visit", index=3, title="Stores: {{loop.label}}"),
        Page(id="p_store_rate", index=4, title="Rating {{loop.label}}"),
        Page(
            id="p_teen",
            index=5,
            title="A few more questions",
            visible_if=LogicExpression("e_teen", "lessThan(answer('AGE'), 18)"),
        ),
        Page(id="p_thanks", index=6, title="Thank you"),
    ]

    survey.questions = [
        Question(
            id="q_age", page_id="p_screen", variable_name="AGE",
            type=QuestionType.NUMBER, text="How old are you?", index=0,
        ),
        Question(
            id="q_aware", page_id="p_screen", variable_name="AWARE",
            type=QuestionType.MULTIPLE_CHOICE,
            text="Which of these brands have you heard of?", index=1,
            option_order_mode=OrderMode.RANDOM,
            options=_choices("aware", [("nike", "Nike"), ("adidas", "Adidas"), ("puma", "Puma")]),
        ),
        Question(
            id="q_rate", page_id="p_brand_rate", variable_name="RATE",
            type=QuestionType.RATING, text="How would you rate {{loop.label}}?",
        ),
        Question(
            id="q_buy", page_id="p_brand_buy", variable_name="BUY",
            text="Have you bought {{loop.label}} in the last year?",
            options=_choices("buy", [("yes", "Yes"), ("no", "No")]),
        ),
        Question(
            id="q_visit", page_id="p_store_visit", variable_name="VISIT",
            text="How often do you visit our {{loop.label}} store in {{loop.city}}?",
            options=_choices("visit", [("weekly", "Weekly"), ("monthly", "Monthly"), ("rarely", "Rarely")]),
        ),
        Question(
            id="q_store_nps", page_id="p_store_rate", variable_name="STORE_NPS",
            type=QuestionType.RATING,
            text="How likely are you to recommend {{loop.label}} ({{loop.progress}}% done)?",
        ),
        Question(
            id="q_parent", page_id="p_teen", variable_name="PARENT",
            text="Does a parent or guardian buy your sports clothing?",
            options=_choices("parent", [("yes", "Yes"), ("no", "No")]),
        ),
        Question(
            id="q_comments", page_id="p_thanks", variable_name="COMMENTS",
            type=QuestionType.TEXT,
            text="You told us about ${pipe:question:AWARE:choices}. Anything else to add?",
        ),
    ]

    survey.jump_rules = [
        JumpRule(
            id="j_underage",
            source_question_id="q_age",
            destination=JumpDestination.end(),
            condition=LogicExpression("e_underage", "lessThan(answer('AGE'), 16)"),
            priority=1,
        ),
    ]

    survey.loop_batteries = [
        LoopBattery(
            id="brands",
            name="Brand battery",
            start_page_id="p_brand_rate",
            end_page_id="p_brand_buy",
            source_type=LoopSourceType.ANSWER,
            source_question_id="q_aware",
        ),
        LoopBattery(
            id="stores",
            name="Store battery",
            start_page_id="p_store_visit",
            end_page_id="p_store_rate",
            source_type=LoopSourceType.DATASET,
            max_items=store_limit,
            dataset_items=[
                LoopDatasetItem("oxford_st", {"label": "Oxford Street", "city": "London"}, sort_index=0),
                LoopDatasetItem("rivoli", {"label": "Rue de Rivoli", "city": "Paris"}, sort_index=1),
                LoopDatasetItem("kudamm", {"label": "Kurfuerstendamm", "city": "Berlin"}, sort_index=2),
                LoopDatasetItem("corso", {"label": "Via del Corso", "city": "Rome"}, is_active=False, sort_index=3),
            ],
        ),
    ]

    survey.metadata = {"owner": "insights", "wave": "2024Q4"}
    return survey
