"""Run-scoped variable store and strict ``{{name}}`` templating."""

from __future__ import annotations

import json
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from .errors import UndefinedVariableError

_VAR_PATTERN = re.compile(r"{{\s*([\w.-]+)\s*}}")

_MISSING = object()


def render_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def placeholder_names(raw: str) -> List[str]:
    return [m.group(1) for m in _VAR_PATTERN.finditer(raw or "")]


class VariableEnvironment:
    """
    Name -> value mapping owned by a single run.

    Writes go to the run-wide store. ``scope()`` pushes temporary bindings
    (loop index, forEach item) that shadow the store while a loop body runs
    and are dropped afterwards.
    """

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self.store: Dict[str, Any] = dict(initial or {})
        self._frames: List[Dict[str, Any]] = []

    def __contains__(self, name: str) -> bool:
        return self._lookup(name) is not _MISSING

    def get(self, name: str, default: Any = None) -> Any:
        value = self._lookup(name)
        return default if value is _MISSING else value

    def set(self, name: str, value: Any) -> None:
        self.store[name] = value

    def all(self) -> Dict[str, Any]:
        return dict(self.store)

    @contextmanager
    def scope(self, bindings: Optional[Mapping[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        frame: Dict[str, Any] = dict(bindings or {})
        self._frames.append(frame)
        try:
            yield frame
        finally:
            self._frames.pop()

    def _lookup(self, name: str) -> Any:
        for frame in reversed(self._frames):
            if name in frame:
                return frame[name]
        if name in self.store:
            return self.store[name]
        if "." not in name:
            return _MISSING
        # {{inputs.url}}: walk nested mappings / sequences
        head, *rest = name.split(".")
        current = self._lookup(head)
        for part in rest:
            if current is _MISSING:
                return _MISSING
            current = _child(current, part)
        return current

    def resolve(self, raw: str) -> str:
        """Substitute every placeholder; unknown names raise UndefinedVariableError."""

        def repl(match: re.Match) -> str:
            name = match.group(1)
            value = self._lookup(name)
            if value is _MISSING:
                raise UndefinedVariableError(name)
            return render_value(value)

        return _VAR_PATTERN.sub(repl, str(raw))


def _child(container: Any, part: str) -> Any:
    if isinstance(container, Mapping):
        return container[part] if part in container else _MISSING
    if isinstance(container, Sequence) and not isinstance(container, (str, bytes)):
        try:
            return container[int(part)]
        except (ValueError, IndexError):
            return _MISSING
    return _MISSING
