import pytest

from stepflow.core.action_types import ActionType
from stepflow.core.errors import ValidationError
from stepflow.core.models import (
    Branch,
    ClickConfig,
    ConditionConfig,
    LoopConfig,
    NavigateConfig,
    OnError,
    ScriptDocument,
    Step,
    iter_steps,
)


DOCUMENT = {
    "id": "checkout",
    "name": "Checkout",
    "description": "Buy the first product",
    "category": "shop",
    "tags": ["smoke"],
    "variables": {"base": "https://shop.test"},
    "steps": [
        {
            "id": "s2",
            "type": "condition",
            "name": "Logged in?",
            "order": 1,
            "onError": "continue",
            "config": {
                "condition": "{{user}} !== \"\"",
                "thenSteps": [
                    {"id": "t1", "type": "click", "name": "Cart", "order": 0, "config": {"selector": "#cart"}},
                ],
                "elseSteps": [],
            },
        },
        {
            "id": "s1",
            "type": "navigate",
            "name": "Open",
            "order": 0,
            "timeout": 5000,
            "retries": 2,
            "config": {"url": "{{base}}/", "waitUntil": "networkidle"},
        },
    ],
}


def test_document_loads_typed_tree_sorted_by_order():
    document = ScriptDocument.from_dict(DOCUMENT)
    assert [s.id for s in document.steps] == ["s1", "s2"]
    first, second = document.steps
    assert isinstance(first.config, NavigateConfig)
    assert first.config.wait_until == "networkidle"
    assert first.timeout == 5000 and first.retries == 2
    assert isinstance(second.config, ConditionConfig)
    assert second.on_error is OnError.CONTINUE
    assert isinstance(second.config.then_steps[0].config, ClickConfig)
    assert document.variables == {"base": "https://shop.test"}


def test_document_round_trips_wire_keys():
    document = ScriptDocument.from_dict(DOCUMENT)
    payload = document.to_dict()
    condition = next(s for s in payload["steps"] if s["id"] == "s2")
    assert condition["onError"] == "continue"
    assert set(condition["config"]) == {"condition", "thenSteps", "elseSteps"}
    assert ScriptDocument.from_dict(payload) == document


def test_unknown_config_keys_survive_a_save():
    step = Step.from_dict(
        {"id": "a", "type": "click", "name": "c", "config": {"selector": "#x", "modifiers": ["Shift"]}}
    )
    assert step.config.extras == {"modifiers": ["Shift"]}
    assert step.to_dict()["config"]["modifiers"] == ["Shift"]


def test_legacy_loop_steps_key_is_read_as_body():
    step = Step.from_dict(
        {
            "id": "loop",
            "type": "loop",
            "name": "Loop",
            "config": {"type": "count", "count": 2, "steps": [{"id": "in", "type": "wait", "name": "w", "config": {"value": 10}}]},
        }
    )
    assert isinstance(step.config, LoopConfig)
    assert [s.id for s in step.config.body] == ["in"]
    assert "steps" not in step.to_dict()["config"]
    assert list(step.child_lists()) == [Branch.BODY]


def test_unknown_type_and_policy_are_rejected():
    with pytest.raises(ValidationError):
        Step.from_dict({"id": "a", "type": "hover", "name": "h", "config": {}})
    with pytest.raises(ValidationError) as excinfo:
        Step.from_dict({"id": "a", "type": "click", "name": "c", "onError": "ignore", "config": {}})
    assert excinfo.value.step_id == "a"


def test_config_must_match_the_step_type():
    with pytest.raises(ValidationError):
        Step(id="a", type="click", name="c", config=NavigateConfig(url="https://x.test"))


def test_iter_steps_walks_depth_first():
    document = ScriptDocument.from_dict(DOCUMENT)
    assert [s.id for s in iter_steps(document.steps)] == ["s1", "s2", "t1"]


def test_text_fields_skip_children_and_raw_code():
    loop = LoopConfig(kind="while", condition="{{i}} < 3")
    assert dict(loop.text_fields()) == {"kind": "while", "condition": "{{i}} < 3"}
    script = Step.from_dict({"id": "s", "type": "script", "name": "s", "config": {"code": "return '{{x}}'"}})
    assert list(script.config.text_fields()) == []


def test_step_accepts_enum_members_and_values():
    by_member = Step(id="a", type=ActionType.LOOP, name="l", config=LoopConfig())
    by_value = Step(id="a", type="loop", name="l", config=LoopConfig())
    assert by_member.type is ActionType.LOOP
    assert by_member == by_value
    assert Step.from_dict(by_member.to_dict()) == by_member


def test_order_and_enabled_are_parsed_strictly():
    base = {"id": "a", "type": "wait", "name": "w", "config": {"value": 10}}
    assert Step.from_dict(dict(base, order="2")).order == 2
    assert Step.from_dict(dict(base, enabled="false")).enabled is False
    assert Step.from_dict(dict(base, enabled=0)).enabled is False
    assert Step.from_dict(dict(base, enabled="yes")).enabled is True
    with pytest.raises(ValidationError) as excinfo:
        Step.from_dict(dict(base, order="first"))
    assert excinfo.value.step_id == "a"
    with pytest.raises(ValidationError):
        Step.from_dict(dict(base, enabled="maybe"))
