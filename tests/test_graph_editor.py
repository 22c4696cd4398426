import itertools
import random
import re

import pytest

from stepflow.core.errors import NotFound, OutOfRange, ValidationError
from stepflow.core.models import Branch, ClickConfig, OnError, Step, iter_steps
from stepflow.services.graph_editor import (
    add_step,
    collect_ids,
    delete_step,
    duplicate_step,
    ensure_valid,
    find_step,
    generate_step_id,
    reorder,
    resolve_list,
    toggle_enabled,
    update_step,
    validate_document,
    validate_tree,
)


def counter_ids(prefix="id"):
    numbers = itertools.count(1)
    return lambda: f"{prefix}{next(numbers)}"


def assert_contiguous(tree):
    assert [s.order for s in tree] == list(range(len(tree)))
    for step in tree:
        for children in step.child_lists().values():
            assert_contiguous(children)


def build_nested():
    ids = counter_ids()
    tree, cond = add_step([], [], "condition", new_id=ids)
    tree, _ = add_step(tree, [(cond, "thenSteps")], "click", new_id=ids)
    tree, loop = add_step(tree, [(cond, Branch.ELSE)], "loop", new_id=ids)
    tree, _ = add_step(tree, [(cond, "elseSteps"), (loop, "body")], "wait", new_id=ids)
    tree, _ = add_step(tree, [], "navigate", new_id=ids)
    return tree


def test_generated_ids_have_the_documented_shape():
    assert re.fullmatch(r"step_\d+_[a-z0-9]{9}", generate_step_id())


def test_add_step_uses_registry_defaults_and_default_name():
    tree, step_id = add_step([], [], "click", new_id=lambda: "a")
    step = tree[0]
    assert step.id == step_id == "a"
    assert step.name == "Click 1"
    assert step.order == 0
    assert step.enabled is True
    assert step.on_error is OnError.STOP
    assert isinstance(step.config, ClickConfig)
    assert step.config.to_dict() == {"selector": "", "button": "left", "clickCount": 1}

    tree, _ = add_step(tree, [], "click", new_id=lambda: "b")
    assert tree[1].name == "Click 2"


def test_add_into_nested_lists_keeps_orders_contiguous():
    tree = build_nested()
    assert [s.type.value for s in tree] == ["condition", "navigate"]
    cond = tree[0]
    assert [s.type.value for s in cond.config.then_steps] == ["click"]
    loop = cond.config.else_steps[0]
    assert [s.type.value for s in loop.config.body] == ["wait"]
    assert_contiguous(tree)
    assert validate_tree(tree) == [
        "steps[0] (id1): condition is required",
        "steps[0].thenSteps[0] (id2): selector is required",
        "steps[1] (id5): url is required",
    ]


def test_mutations_do_not_touch_the_input():
    tree = build_nested()
    before = [s.to_dict() for s in tree]
    add_step(tree, [], "wait", new_id=lambda: "new")
    delete_step(tree, "id2")
    duplicate_step(tree, "id1", new_id=counter_ids("dup"))
    toggle_enabled(tree, "id1")
    reorder(tree, [], 0, 1)
    update_step(tree, "id5", {"name": "Go"})
    assert [s.to_dict() for s in tree] == before


def test_id_collisions_are_regenerated():
    tree, _ = add_step([], [], "click", new_id=lambda: "same")
    tree, second = add_step(tree, [], "click", new_id=lambda: "same")
    assert second != "same"
    assert len(collect_ids(tree)) == 2


def test_bad_paths():
    tree = build_nested()
    with pytest.raises(NotFound):
        add_step(tree, [("nope", "body")], "click")
    with pytest.raises(ValidationError):
        add_step(tree, [("id1", "body")], "click")
    with pytest.raises(ValidationError):
        add_step(tree, [("id5", "thenSteps")], "click")
    with pytest.raises(ValueError):
        add_step(tree, [], "hover")


def test_update_merges_config_and_policies():
    tree = build_nested()
    tree = update_step(
        tree,
        "id2",
        {"config": {"selector": "#buy"}, "onError": "retry", "retries": 3, "timeout": 2000, "name": "Buy"},
    )
    step = find_step(tree, "id2")
    assert step.config.selector == "#buy"
    assert step.config.button == "left"
    assert step.on_error is OnError.RETRY
    assert (step.retries, step.timeout, step.name) == (3, 2000, "Buy")


def test_update_rejects_identity_and_child_edits():
    tree = build_nested()
    with pytest.raises(ValidationError):
        update_step(tree, "id2", {"id": "other"})
    with pytest.raises(ValidationError):
        update_step(tree, "id2", {"type": "wait"})
    with pytest.raises(ValidationError):
        update_step(tree, "id1", {"config": {"thenSteps": []}})
    with pytest.raises(ValidationError):
        update_step(tree, "id2", {"retries": -1})
    with pytest.raises(ValidationError):
        update_step(tree, "id2", {"onError": "ignore"})
    with pytest.raises(NotFound):
        update_step(tree, "missing", {"name": "x"})


def test_delete_removes_subtree_and_renumbers():
    tree = build_nested()
    tree = delete_step(tree, "id1")
    assert [s.id for s in tree] == ["id5"]
    assert tree[0].order == 0
    assert collect_ids(tree) == {"id5"}
    with pytest.raises(NotFound):
        delete_step(tree, "id1")


def test_duplicate_gives_every_descendant_a_fresh_id():
    tree = build_nested()
    before = collect_ids(tree)
    tree, clone_id = duplicate_step(tree, "id1", new_id=counter_ids("dup"))
    clone = tree[-1]
    assert clone.id == clone_id
    assert clone.name == "If/Else 1 (copy)"
    assert clone.order == len(tree) - 1
    clone_ids = {s.id for s in iter_steps([clone])}
    assert len(clone_ids) == 4
    assert not clone_ids & before
    assert len(collect_ids(tree)) == len(list(iter_steps(tree)))
    assert_contiguous(tree)


def test_toggle_flips_only_the_flag():
    tree = build_nested()
    tree = toggle_enabled(tree, "id3")
    loop = find_step(tree, "id3")
    assert loop.enabled is False
    assert find_step(tree, "id4").enabled is True
    assert toggle_enabled(tree, "id3")[0].config.else_steps[0].enabled is True


def test_reorder_is_a_list_move():
    tree = []
    for name in "abcd":
        tree, _ = add_step(tree, [], "wait", new_id=lambda n=name: n)
    moved = reorder(tree, [], 0, 2)
    assert [s.id for s in moved] == ["b", "c", "a", "d"]
    assert_contiguous(moved)
    assert [s.id for s in reorder(tree, [], 1, 1)] == ["a", "b", "c", "d"]
    with pytest.raises(OutOfRange):
        reorder(tree, [], 0, 4)
    with pytest.raises(OutOfRange):
        reorder(tree, [], -1, 0)


def test_validate_reports_loop_and_policy_problems():
    tree = [
        Step.from_dict(
            {
                "id": "w",
                "type": "loop",
                "name": "While",
                "order": 0,
                "timeout": 0,
                "config": {"type": "while", "maxIterations": 5000, "body": []},
            }
        ),
        Step.from_dict({"id": "w", "type": "click", "name": "Dup", "order": 2, "config": {"selector": "#a"}}),
    ]
    errors = validate_tree(tree)
    assert "steps: order values [0, 2] are not contiguous from 0" in errors
    assert "steps[0] (w): condition is required for a while loop" in errors
    assert "steps[0] (w): maxIterations must be between 1 and 1000" in errors
    assert "steps[0] (w): timeout must be a positive number of milliseconds" in errors
    assert "steps[1]: duplicate step id w" in errors
    with pytest.raises(ValidationError) as excinfo:
        ensure_valid(tree)
    assert excinfo.value.step_id == "w"


def test_validate_document_checks_raw_payloads():
    assert validate_document({"name": "", "tags": "x", "steps": []}) == ["name: is required", "tags: must be a list"]
    errors = validate_document({"name": "n", "steps": [{"id": "a", "type": "hover", "config": {}}]})
    assert errors == ["steps: Unknown step type 'hover'"]
    good = {"name": "n", "steps": [{"id": "a", "type": "navigate", "config": {"url": "https://a.test"}}]}
    assert validate_document(good) == []


def test_validate_document_reports_bad_step_fields():
    payload = {"name": "n", "steps": [{"id": "a", "type": "wait", "order": "first", "config": {"value": 1}}]}
    assert validate_document(payload) == ["steps: Step a order must be an integer, got 'first'"]


def list_paths(steps, prefix=()):
    yield list(prefix)
    for step in steps:
        for branch, children in step.child_lists().items():
            yield from list_paths(children, prefix + ((step.id, branch.value),))


def test_random_edit_sequences_keep_orders_and_ids_sound():
    rng = random.Random(20240611)
    # A small id pool forces the collision handling to do real work.
    def pooled_ids():
        return f"id{rng.randrange(25)}"

    tree = build_nested()
    for _ in range(300):
        steps = list(iter_steps(tree))
        operation = rng.choice(["add", "add", "delete", "duplicate", "reorder", "toggle"])
        if len(steps) > 40:
            operation = "delete"
        if operation == "add" or not steps:
            path = rng.choice(list(list_paths(tree)))
            tree, new = add_step(tree, path, rng.choice(["click", "condition", "loop", "wait"]), new_id=pooled_ids)
            assert find_step(tree, new).order == len(resolve_list(tree, path)) - 1
        elif operation == "delete":
            target = rng.choice(steps)
            removed = {s.id for s in iter_steps([target])}
            tree = delete_step(tree, target.id)
            assert not removed & collect_ids(tree)
        elif operation == "duplicate":
            tree, clone = duplicate_step(tree, rng.choice(steps).id, new_id=pooled_ids)
            assert clone in collect_ids(tree)
        elif operation == "reorder":
            path = rng.choice(list(list_paths(tree)))
            size = len(resolve_list(tree, path))
            if size:
                before = [s.id for s in resolve_list(tree, path)]
                i, j = rng.randrange(size), rng.randrange(size)
                tree = reorder(tree, path, i, j)
                expected = before[:i] + before[i + 1:]
                expected.insert(j, before[i])
                assert [s.id for s in resolve_list(tree, path)] == expected
        else:
            tree = toggle_enabled(tree, rng.choice(steps).id)
        assert_contiguous(tree)
        all_ids = [s.id for s in iter_steps(tree)]
        assert len(all_ids) == len(set(all_ids))
