"""
Authoring operations on a step tree.

Every operation takes a tree (the top-level sibling list) and returns a new
one; the input is never modified. Preconditions are checked before anything
changes, so a raised ``NotFound`` / ``OutOfRange`` / ``ValidationError``
leaves no partial edit behind.

A *path* locates a nested sibling list as a trail of ``(parent_step_id,
branch)`` pairs, e.g. ``[("step_1", "body"), ("step_7", "thenSteps")]``.
The empty path is the top-level list.
"""

from __future__ import annotations

import copy
import random
import string
import time
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from stepflow.core.action_types import ActionType, get_action_type
from stepflow.core.errors import NotFound, OutOfRange, ValidationError
from stepflow.core.models import (
    CONFIG_TYPES,
    Branch,
    LoopConfig,
    LoopKind,
    OnError,
    ScriptDocument,
    Step,
    iter_steps,
)

StepTree = List[Step]
StepPath = Sequence[Tuple[str, "Branch | str"]]
IdFactory = Callable[[], str]

MAX_LOOP_ITERATIONS = 1000

_UPDATABLE = {"name", "config", "enabled", "timeout", "retries", "on_error", "onError"}
_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_step_id() -> str:
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"step_{int(time.time() * 1000)}_{suffix}"


def _fresh_id(existing: Set[str], new_id: IdFactory) -> str:
    candidate = new_id()
    for _ in range(100):
        if candidate not in existing:
            existing.add(candidate)
            return candidate
        candidate = new_id()
    # A generator stuck on one value still has to yield unique ids.
    base = candidate
    n = 2
    while f"{base}_{n}" in existing:
        n += 1
    candidate = f"{base}_{n}"
    existing.add(candidate)
    return candidate


def collect_ids(tree: Iterable[Step]) -> Set[str]:
    return {step.id for step in iter_steps(list(tree))}


def find_step(tree: StepTree, step_id: str) -> Step:
    siblings, idx = _locate(tree, step_id)
    return siblings[idx]


def _locate(steps: List[Step], step_id: str) -> Tuple[List[Step], int]:
    for idx, step in enumerate(steps):
        if step.id == step_id:
            return steps, idx
        for children in step.child_lists().values():
            try:
                return _locate(children, step_id)
            except NotFound:
                continue
    raise NotFound(step_id)


def resolve_list(tree: StepTree, path: StepPath) -> List[Step]:
    current = tree
    for parent_id, branch in path or ():
        parent = next((s for s in current if s.id == parent_id), None)
        if parent is None:
            raise NotFound(parent_id)
        try:
            key = Branch(branch)
        except ValueError:
            raise ValidationError(f"Unknown branch {branch!r}", step_id=parent_id) from None
        lists = parent.child_lists()
        if key not in lists:
            raise ValidationError(f"Step {parent_id} ({parent.type.value}) has no {key.value} list", step_id=parent_id)
        current = lists[key]
    return current


def _renumber(steps: List[Step]) -> None:
    for idx, step in enumerate(steps):
        step.order = idx


def add_step(
    tree: StepTree,
    path: StepPath,
    action: ActionType | str,
    *,
    new_id: IdFactory = generate_step_id,
) -> Tuple[StepTree, str]:
    action = ActionType(action)
    result = copy.deepcopy(list(tree))
    siblings = resolve_list(result, path)
    spec = get_action_type(action)
    step = Step(
        id=_fresh_id(collect_ids(result), new_id),
        type=action,
        name=f"{spec.label} {len(siblings) + 1}",
        config=CONFIG_TYPES[action].from_dict(spec.default_config),
        order=len(siblings),
    )
    siblings.append(step)
    return result, step.id


def _patched_config(step: Step, patch: Any):
    cls = CONFIG_TYPES[step.type]
    current_children = step.config.child_lists()
    if isinstance(patch, Mapping):
        child_keys = set(cls.CHILD_LISTS) | set(cls.LEGACY_KEYS)
        touched = [key for key in patch if key in child_keys]
        if touched:
            raise ValidationError(
                f"Child lists ({', '.join(touched)}) are edited with add/delete/reorder, not update",
                step_id=step.id,
            )
        merged = step.config.to_dict()
        merged.update(patch)
        return cls.from_dict(merged)
    if not isinstance(patch, cls):
        raise ValidationError(
            f"Step {step.id} of type {step.type.value} needs {cls.__name__} config",
            step_id=step.id,
        )
    if patch.child_lists() != current_children:
        raise ValidationError("Child lists are edited with add/delete/reorder, not update", step_id=step.id)
    return copy.deepcopy(patch)


def update_step(tree: StepTree, step_id: str, changes: Mapping[str, Any]) -> StepTree:
    """Merge ``changes`` into a step. ``id``, ``type`` and ``order`` are not editable."""
    forbidden = sorted(set(changes) - _UPDATABLE)
    if forbidden:
        raise ValidationError(f"Cannot update {', '.join(forbidden)} of step {step_id}", step_id=step_id)

    result = copy.deepcopy(list(tree))
    step = find_step(result, step_id)
    updates: dict = {}
    if "name" in changes:
        updates["name"] = str(changes["name"] or "")
    if "enabled" in changes:
        updates["enabled"] = bool(changes["enabled"])
    if "timeout" in changes:
        timeout = changes["timeout"]
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0):
            raise ValidationError(f"timeout must be a positive number of milliseconds, got {timeout!r}", step_id=step_id)
        updates["timeout"] = timeout
    if "retries" in changes:
        retries = changes["retries"]
        if retries is not None and (isinstance(retries, bool) or not isinstance(retries, int) or retries < 0):
            raise ValidationError(f"retries must be a non-negative integer, got {retries!r}", step_id=step_id)
        updates["retries"] = retries
    raw_policy = changes.get("on_error", changes.get("onError"))
    if raw_policy is not None:
        try:
            updates["on_error"] = OnError(raw_policy)
        except ValueError:
            raise ValidationError(f"Unknown onError policy {raw_policy!r}", step_id=step_id) from None
    if "config" in changes:
        updates["config"] = _patched_config(step, changes["config"])

    for attr, value in updates.items():
        setattr(step, attr, value)
    return result


def delete_step(tree: StepTree, step_id: str) -> StepTree:
    result = copy.deepcopy(list(tree))
    siblings, idx = _locate(result, step_id)
    del siblings[idx]
    _renumber(siblings)
    return result


def duplicate_step(
    tree: StepTree,
    step_id: str,
    *,
    new_id: IdFactory = generate_step_id,
) -> Tuple[StepTree, str]:
    result = copy.deepcopy(list(tree))
    siblings, idx = _locate(result, step_id)
    clone = copy.deepcopy(siblings[idx])
    existing = collect_ids(result)
    for node in iter_steps([clone]):
        node.id = _fresh_id(existing, new_id)
    clone.name = f"{clone.name} (copy)"
    clone.order = len(siblings)
    siblings.append(clone)
    return result, clone.id


def toggle_enabled(tree: StepTree, step_id: str) -> StepTree:
    result = copy.deepcopy(list(tree))
    step = find_step(result, step_id)
    step.enabled = not step.enabled
    return result


def reorder(tree: StepTree, path: StepPath, from_index: int, to_index: int) -> StepTree:
    """Move one element within a sibling list (list-move, not swap)."""
    result = copy.deepcopy(list(tree))
    siblings = resolve_list(result, path)
    size = len(siblings)
    for index in (from_index, to_index):
        if not 0 <= index < size:
            raise OutOfRange(index, size)
    moved = siblings.pop(from_index)
    siblings.insert(to_index, moved)
    _renumber(siblings)
    return result


# Validation


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_step_config(step: Step) -> List[str]:
    """Registry-driven checks for a single step's own fields (children excluded)."""
    errors: List[str] = []
    spec = get_action_type(step.type)
    for key in spec.required_fields:
        if _is_blank(step.config.get(key)):
            errors.append(f"{key} is required")

    if isinstance(step.config, LoopConfig):
        cfg = step.config
        try:
            kind = LoopKind(cfg.kind)
        except ValueError:
            errors.append(f"unknown loop type {cfg.kind!r}")
        else:
            if kind is LoopKind.COUNT:
                if _is_blank(cfg.count):
                    errors.append("count is required for a count loop")
                elif isinstance(cfg.count, int) and not isinstance(cfg.count, bool) and cfg.count < 1:
                    errors.append("count must be at least 1")
            elif kind is LoopKind.WHILE and _is_blank(cfg.condition):
                errors.append("condition is required for a while loop")
            elif kind is LoopKind.FOR_EACH and _is_blank(cfg.selector):
                errors.append("selector is required for a forEach loop")
        if cfg.max_iterations is not None and not (
            isinstance(cfg.max_iterations, int) and 1 <= cfg.max_iterations <= MAX_LOOP_ITERATIONS
        ):
            errors.append(f"maxIterations must be between 1 and {MAX_LOOP_ITERATIONS}")

    if step.timeout is not None and (not isinstance(step.timeout, int) or step.timeout <= 0):
        errors.append("timeout must be a positive number of milliseconds")
    if step.retries is not None and (not isinstance(step.retries, int) or step.retries < 0):
        errors.append("retries must be a non-negative integer")
    return errors


Problem = Tuple[Optional[str], str]


def _validate_list(
    steps: List[Step], prefix: str, seen: Set[str], problems: List[Problem], skip_disabled: bool
) -> None:
    orders = sorted(step.order for step in steps)
    if orders != list(range(len(steps))):
        problems.append((None, f"{prefix}: order values {orders} are not contiguous from 0"))
    for idx, step in enumerate(steps):
        where = f"{prefix}[{idx}]"
        if step.id in seen:
            problems.append((step.id, f"{where}: duplicate step id {step.id}"))
        seen.add(step.id)
        if skip_disabled and not step.enabled:
            seen.update(collect_ids([step]))
            continue
        for message in validate_step_config(step):
            problems.append((step.id, f"{where} ({step.id}): {message}"))
        for branch, children in step.child_lists().items():
            _validate_list(children, f"{where}.{branch.value}", seen, problems, skip_disabled)


def tree_problems(tree: StepTree, *, skip_disabled: bool = False) -> List[Problem]:
    """Return ``(step_id, message)`` pairs; ``step_id`` is None for list-level issues."""
    problems: List[Problem] = []
    _validate_list(list(tree), "steps", set(), problems, skip_disabled)
    return problems


def validate_tree(tree: StepTree, *, skip_disabled: bool = False) -> List[str]:
    return [message for _, message in tree_problems(tree, skip_disabled=skip_disabled)]


def ensure_valid(tree: StepTree, *, skip_disabled: bool = False) -> None:
    problems = tree_problems(tree, skip_disabled=skip_disabled)
    if problems:
        first_step = next((step_id for step_id, _ in problems if step_id), None)
        raise ValidationError([message for _, message in problems], step_id=first_step)


def validate_document(payload: Mapping[str, Any]) -> List[str]:
    """Validate a raw stored document; returns ``path: message`` strings."""
    errors: List[str] = []
    if not str(payload.get("name") or "").strip():
        errors.append("name: is required")
    tags = payload.get("tags", [])
    if not isinstance(tags, list):
        errors.append("tags: must be a list")
    try:
        document = ScriptDocument.from_dict(payload)
    except ValidationError as exc:
        return errors + [f"steps: {msg}" for msg in exc.errors]
    return errors + validate_tree(document.steps)
