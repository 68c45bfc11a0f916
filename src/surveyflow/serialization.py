"""
Serialization helpers for survey definitions and session state.

Provides lossless JSON/YAML round-trip via intermediate dict representation.
Enums are stored by value; DSL expressions are stored as text (the parser
rebuilds the AST on demand).
"""
from __future__ import annotations

import json
from typing import Any, Dict

import yaml

from surveyflow.loops import LoopItem, LoopPlan
from surveyflow.model import (
    CarryForwardFilter,
    DestinationType,
    JumpDestination,
    JumpRule,
    LogicExpression,
    LoopBattery,
    LoopDatasetItem,
    LoopSourceType,
    Option,
    OptionGroup,
    OrderMode,
    Page,
    PageJumpRule,
    Question,
    QuestionGroup,
    QuestionType,
    Survey,
)
from surveyflow.session import SessionRenderState, SessionState


def logic_to_dict(e: LogicExpression | None) -> Dict[str, Any] | None:
    if e is None:
        return None
    return {"id": e.id, "dsl": e.dsl, "description": e.description}


def logic_from_dict(d: Dict[str, Any] | None) -> LogicExpression | None:
    if d is None:
        return None
    return LogicExpression(id=d["id"], dsl=d.get("dsl", ""), description=d.get("description"))


def page_to_dict(p: Page) -> Dict[str, Any]:
    return {
        "id": p.id,
        "index": p.index,
        "title": p.title,
        "visible_if": logic_to_dict(p.visible_if),
        "question_order_mode": p.question_order_mode.value,
        "group_order_mode": p.group_order_mode.value,
    }


def page_from_dict(d: Dict[str, Any]) -> Page:
    return Page(
        id=d["id"],
        index=d["index"],
        title=d.get("title", ""),
        visible_if=logic_from_dict(d.get("visible_if")),
        question_order_mode=OrderMode(d.get("question_order_mode", "SEQUENTIAL")),
        group_order_mode=OrderMode(d.get("group_order_mode", "SEQUENTIAL")),
    )


def group_to_dict(g: QuestionGroup) -> Dict[str, Any]:
    return {
        "id": g.id,
        "page_id": g.page_id,
        "index": g.index,
        "title": g.title,
        "visible_if": logic_to_dict(g.visible_if),
        "question_order_mode": g.question_order_mode.value,
    }


def group_from_dict(d: Dict[str, Any]) -> QuestionGroup:
    return QuestionGroup(
        id=d["id"],
        page_id=d["page_id"],
        index=d.get("index", 0),
        title=d.get("title", ""),
        visible_if=logic_from_dict(d.get("visible_if")),
        question_order_mode=OrderMode(d.get("question_order_mode", "SEQUENTIAL")),
    )


def option_to_dict(o: Option) -> Dict[str, Any]:
    return {
        "id": o.id,
        "value": o.value,
        "label": o.label,
        "index": o.index,
        "visible_if": logic_to_dict(o.visible_if),
        "group_key": o.group_key,
        "weight": o.weight,
    }


def option_from_dict(d: Dict[str, Any]) -> Option:
    return Option(
        id=d["id"],
        value=d["value"],
        label=d.get("label", ""),
        index=d.get("index", 0),
        visible_if=logic_from_dict(d.get("visible_if")),
        group_key=d.get("group_key"),
        weight=d.get("weight"),
    )


def option_group_to_dict(g: OptionGroup) -> Dict[str, Any]:
    return {"key": g.key, "label": g.label, "visible_if": logic_to_dict(g.visible_if)}


def option_group_from_dict(d: Dict[str, Any]) -> OptionGroup:
    return OptionGroup(key=d["key"], label=d.get("label", ""), visible_if=logic_from_dict(d.get("visible_if")))


def question_to_dict(q: Question) -> Dict[str, Any]:
    return {
        "id": q.id,
        "page_id": q.page_id,
        "variable_name": q.variable_name,
        "type": q.type.value,
        "text": q.text,
        "index": q.index,
        "group_id": q.group_id,
        "option_order_mode": q.option_order_mode.value,
        "visible_if": logic_to_dict(q.visible_if),
        "options": [option_to_dict(o) for o in q.options],
        "option_groups": [option_group_to_dict(g) for g in q.option_groups],
        "carry_forward_question_id": q.carry_forward_question_id,
        "carry_forward_filter": q.carry_forward_filter.value,
        "terminate_if": logic_to_dict(q.terminate_if),
    }


def question_from_dict(d: Dict[str, Any]) -> Question:
    return Question(
        id=d["id"],
        page_id=d["page_id"],
        variable_name=d["variable_name"],
        type=QuestionType(d.get("type", "SINGLE_CHOICE")),
        text=d.get("text", ""),
        index=d.get("index", 0),
        group_id=d.get("group_id"),
        option_order_mode=OrderMode(d.get("option_order_mode", "SEQUENTIAL")),
        visible_if=logic_from_dict(d.get("visible_if")),
        options=[option_from_dict(o) for o in d.get("options", [])],
        option_groups=[option_group_from_dict(g) for g in d.get("option_groups", [])],
        carry_forward_question_id=d.get("carry_forward_question_id"),
        carry_forward_filter=CarryForwardFilter(d.get("carry_forward_filter", "SELECTED")),
        terminate_if=logic_from_dict(d.get("terminate_if")),
    )


def destination_to_dict(dest: JumpDestination) -> Dict[str, Any]:
    return {"type": dest.type.value, "target_id": dest.target_id}


def destination_from_dict(d: Dict[str, Any]) -> JumpDestination:
    return JumpDestination(type=DestinationType(d["type"]), target_id=d.get("target_id"))


def jump_rule_to_dict(r: JumpRule) -> Dict[str, Any]:
    return {
        "id": r.id,
        "source_question_id": r.source_question_id,
        "destination": destination_to_dict(r.destination),
        "condition": logic_to_dict(r.condition),
        "priority": r.priority,
    }


def jump_rule_from_dict(d: Dict[str, Any]) -> JumpRule:
    return JumpRule(
        id=d["id"],
        source_question_id=d["source_question_id"],
        destination=destination_from_dict(d["destination"]),
        condition=logic_from_dict(d.get("condition")),
        priority=d.get("priority", 0),
    )


def page_jump_rule_to_dict(r: PageJumpRule) -> Dict[str, Any]:
    return {
        "id": r.id,
        "source_page_id": r.source_page_id,
        "destination": destination_to_dict(r.destination),
        "condition": logic_to_dict(r.condition),
        "priority": r.priority,
    }


def page_jump_rule_from_dict(d: Dict[str, Any]) -> PageJumpRule:
    return PageJumpRule(
        id=d["id"],
        source_page_id=d["source_page_id"],
        destination=destination_from_dict(d["destination"]),
        condition=logic_from_dict(d.get("condition")),
        priority=d.get("priority", 0),
    )


def dataset_item_to_dict(i: LoopDatasetItem) -> Dict[str, Any]:
    return {
        "key": i.key,
        "attributes": dict(i.attributes),
        "is_active": i.is_active,
        "sort_index": i.sort_index,
    }


def dataset_item_from_dict(d: Dict[str, Any]) -> LoopDatasetItem:
    return LoopDatasetItem(
        key=d["key"],
        attributes=dict(d.get("attributes", {})),
        is_active=d.get("is_active", True),
        sort_index=d.get("sort_index", 0),
    )


def battery_to_dict(b: LoopBattery) -> Dict[str, Any]:
    return {
        "id": b.id,
        "name": b.name,
        "start_page_id": b.start_page_id,
        "end_page_id": b.end_page_id,
        "source_type": b.source_type.value,
        "source_question_id": b.source_question_id,
        "max_items": b.max_items,
        "randomize": b.randomize,
        "sample_without_replacement": b.sample_without_replacement,
        "dataset_items": [dataset_item_to_dict(i) for i in b.dataset_items],
    }


def battery_from_dict(d: Dict[str, Any]) -> LoopBattery:
    return LoopBattery(
        id=d["id"],
        name=d.get("name", ""),
        start_page_id=d["start_page_id"],
        end_page_id=d["end_page_id"],
        source_type=LoopSourceType(d.get("source_type", "DATASET")),
        source_question_id=d.get("source_question_id"),
        max_items=d.get("max_items"),
        randomize=d.get("randomize", False),
        sample_without_replacement=d.get("sample_without_replacement", True),
        dataset_items=[dataset_item_from_dict(i) for i in d.get("dataset_items", [])],
    )


def survey_to_dict(s: Survey) -> Dict[str, Any]:
    return {
        "id": s.id,
        "name": s.name,
        "pages": [page_to_dict(p) for p in s.pages],
        "groups": [group_to_dict(g) for g in s.groups],
        "questions": [question_to_dict(q) for q in s.questions],
        "jump_rules": [jump_rule_to_dict(r) for r in s.jump_rules],
        "page_jump_rules": [page_jump_rule_to_dict(r) for r in s.page_jump_rules],
        "loop_batteries": [battery_to_dict(b) for b in s.loop_batteries],
        "metadata": s.metadata,
    }


def survey_from_dict(d: Dict[str, Any]) -> Survey:
    s = Survey(id=d["id"], name=d.get("name", ""))
    s.pages = [page_from_dict(p) for p in d.get("pages", [])]
    s.groups = [group_from_dict(g) for g in d.get("groups", [])]
    s.questions = [question_from_dict(q) for q in d.get("questions", [])]
    s.jump_rules = [jump_rule_from_dict(r) for r in d.get("jump_rules", [])]
    s.page_jump_rules = [page_jump_rule_from_dict(r) for r in d.get("page_jump_rules", [])]
    s.loop_batteries = [battery_from_dict(b) for b in d.get("loop_batteries", [])]
    s.metadata = d.get("metadata", {})
    return s


def survey_to_json(s: Survey) -> str:
    return json.dumps(survey_to_dict(s), sort_keys=True)


def survey_from_json(s: str) -> Survey:
    d = json.loads(s)
    return survey_from_dict(d)


def survey_to_yaml(s: Survey) -> str:
    return yaml.safe_dump(survey_to_dict(s))


def survey_from_yaml(s: str) -> Survey:
    d = yaml.safe_load(s)
    return survey_from_dict(d)


# ----------------------------------------------------------------------
# Session state
# ----------------------------------------------------------------------

def loop_plan_to_dict(p: LoopPlan) -> Dict[str, Any]:
    return {
        "battery_id": p.battery_id,
        "items": [
            {"key": i.key, "label": i.label, "attributes": dict(i.attributes)}
            for i in p.items
        ],
        "cursor": p.cursor,
    }


def loop_plan_from_dict(d: Dict[str, Any]) -> LoopPlan:
    return LoopPlan(
        battery_id=d["battery_id"],
        items=[
            LoopItem(key=i["key"], label=i.get("label", i["key"]), attributes=dict(i.get("attributes", {})))
            for i in d.get("items", [])
        ],
        cursor=d.get("cursor", 0),
    )


def session_to_dict(s: SessionState) -> Dict[str, Any]:
    return {
        "session_id": s.session_id,
        "survey_id": s.survey_id,
        "responses": dict(s.responses),
        "embedded_data": dict(s.embedded_data),
        "render_state": {
            "loop_plans": {
                battery_id: loop_plan_to_dict(plan)
                for battery_id, plan in s.render_state.loop_plans.items()
            },
            "order_cache": {key: list(ids) for key, ids in s.render_state.order_cache.items()},
        },
        "current_page_id": s.current_page_id,
        "history": list(s.history),
        "completed": s.completed,
        "terminated": s.terminated,
        "termination_reason": s.termination_reason,
        "version": s.version,
    }


def session_from_dict(d: Dict[str, Any]) -> SessionState:
    render = d.get("render_state", {})
    return SessionState(
        session_id=d["session_id"],
        survey_id=d["survey_id"],
        responses=dict(d.get("responses", {})),
        embedded_data=dict(d.get("embedded_data", {})),
        render_state=SessionRenderState(
            loop_plans={
                battery_id: loop_plan_from_dict(plan)
                for battery_id, plan in render.get("loop_plans", {}).items()
            },
            order_cache={key: list(ids) for key, ids in render.get("order_cache", {}).items()},
        ),
        current_page_id=d.get("current_page_id"),
        history=list(d.get("history", [])),
        completed=d.get("completed", False),
        terminated=d.get("terminated", False),
        termination_reason=d.get("termination_reason"),
        version=d.get("version", 0),
    )


def session_to_json(s: SessionState) -> str:
    return json.dumps(session_to_dict(s), sort_keys=True)


def session_from_json(s: str) -> SessionState:
    return session_from_dict(json.loads(s))


def session_to_yaml(s: SessionState) -> str:
    return yaml.safe_dump(session_to_dict(s))


def session_from_yaml(s: str) -> SessionState:
    return session_from_dict(yaml.safe_load(s))
