#!/usr/bin/env python3
"""
Respondent Walkthrough Demo: definition → validation → session → pages

Shows the full workflow:
1. Build the example brand tracker survey
2. Validate it
3. Start a session and answer the screener
4. Walk every page, rendering loop iterations
5. Round-trip the finished session through YAML
"""

import logging

from surveyflow.analyzer import validate_survey
from surveyflow.config import RuntimeConfig
from surveyflow.examples import build_example_brand_survey
from surveyflow.runtime import SurveyRuntime
from surveyflow.serialization import session_from_yaml, session_to_yaml


def main():
    logging.basicConfig(level=logging.INFO, format="   [%(name)s] %(message)s")

    print("=" * 80)
    print("RESPONDENT WALKTHROUGH DEMO")
    print("=" * 80)

    # =========================================================================
    # STEP 1: Build and validate
    # =========================================================================
    print("\n1. VALIDATING SURVEY...")
    survey = build_example_brand_survey()
    report = validate_survey(survey)
    print(f"   ✓ Survey: {survey.name}")
    print(f"   ✓ Pages: {report.total_pages}")
    print(f"   ✓ Expressions: {report.total_expressions}")
    print(f"   ✓ Loop batteries: {report.total_loop_batteries}")
    print(f"   ✓ Warnings: {len(report.warnings)}")

    # =========================================================================
    # STEP 2: Start a session
    # =========================================================================
    print("\n2. STARTING SESSION...")
    runtime = SurveyRuntime(survey, config=RuntimeConfig(random_seed=42))
    session = runtime.start_session("demo", embedded_data={"panel": "uk"})
    print(f"   ✓ Session {session.session_id} on page {session.current_page_id}")

    runtime.on_answer_submitted("demo", "q_age", 34)
    runtime.on_answer_submitted("demo", "q_aware", ["puma", "nike"])
    print("   ✓ Answered AGE=34, AWARE=[puma, nike]")

    # =========================================================================
    # STEP 3: Walk the survey
    # =========================================================================
    print("\n3. WALKING PAGES...")
    print("-" * 80)
    result = runtime.current_position("demo")
    while not result.completed:
        page = runtime.resolve_page("demo")
        print(f"\n   [{page.page_id}] {page.title}")
        for question in page.questions:
            print(f"      - {question.text}")
            for option in question.options:
                print(f"          ( ) {option.label}")
        if result.loop_context is not None:
            progress = runtime.get_loop_progress("demo", result.loop_context.battery_id)
            print(f"      loop {progress.current_iteration}/{progress.total_iterations}")
        result = runtime.get_next_page("demo", page.page_id)

    # =========================================================================
    # STEP 4: Persisted state
    # =========================================================================
    print("\n4. SESSION STATE (YAML):")
    print("-" * 80)
    finished = runtime.get_session("demo")
    text = session_to_yaml(finished)
    for line in text.splitlines():
        print(f"   {line}")
    assert session_from_yaml(text) == finished

    print("\n" + "=" * 80)
    print(f"✓ DEMO COMPLETE: {len(finished.history)} pages visited")
    print("=" * 80)


if __name__ == "__main__":
    main()
