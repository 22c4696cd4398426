"""
Typed step tree.

Each ActionType has its own config dataclass; ``condition`` and ``loop``
configs hold their child step lists as real ``Step`` objects so the tree can
be walked without peeking into untyped dicts. ``to_dict``/``from_dict`` use
the camelCase keys of the stored script document.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Mapping, Optional, Tuple, Type, Union

from .action_types import ActionType
from .errors import ValidationError


class OnError(str, Enum):
    STOP = "stop"
    CONTINUE = "continue"
    RETRY = "retry"


class Branch(str, Enum):
    THEN = "thenSteps"
    ELSE = "elseSteps"
    BODY = "body"


class LoopKind(str, Enum):
    COUNT = "count"
    WHILE = "while"
    FOR_EACH = "forEach"


def _key(wire: str, **kwargs):
    return field(metadata={"key": wire}, **kwargs)


@dataclass
class _StepConfig:
    """Shared (de)serialisation for every config variant."""

    # branch wire key -> attribute name
    CHILD_LISTS: ClassVar[Dict[str, str]] = {}
    # text fields that are passed through without template resolution
    RAW_FIELDS: ClassVar[Tuple[str, ...]] = ()
    LEGACY_KEYS: ClassVar[Dict[str, str]] = {}

    # keys we do not model are kept so a load/save cycle loses nothing
    extras: Dict[str, Any] = field(default_factory=dict, metadata={"key": None})

    @classmethod
    def _wire_fields(cls) -> Iterator[Tuple[str, str]]:
        for f in fields(cls):
            wire = f.metadata.get("key", f.name)
            if wire is None:
                continue
            yield f.name, wire

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Any]]) -> "_StepConfig":
        data = dict(payload or {})
        for legacy, wire in cls.LEGACY_KEYS.items():
            if legacy in data and wire not in data:
                data[wire] = data.pop(legacy)
        kwargs: Dict[str, Any] = {}
        child_attrs = set(cls.CHILD_LISTS.values())
        for attr, wire in cls._wire_fields():
            if wire not in data:
                continue
            raw = data.pop(wire)
            if attr in child_attrs:
                if raw is None:
                    raw = []
                if not isinstance(raw, list):
                    raise ValidationError(f"{wire} must be a list of steps")
                kwargs[attr] = sorted(
                    (Step.from_dict(item) for item in raw),
                    key=lambda s: s.order,
                )
            else:
                kwargs[attr] = raw
        kwargs["extras"] = data
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extras)
        child_attrs = set(self.CHILD_LISTS.values())
        for attr, wire in self._wire_fields():
            value = getattr(self, attr)
            if attr in child_attrs:
                out[wire] = [step.to_dict() for step in value]
            elif value is not None:
                out[wire] = value
        return out

    def child_lists(self) -> Dict[Branch, List["Step"]]:
        return {Branch(wire): getattr(self, attr) for wire, attr in self.CHILD_LISTS.items()}

    def text_fields(self) -> Iterator[Tuple[str, str]]:
        """Yield (attribute, value) for every templatable string field."""
        child_attrs = set(self.CHILD_LISTS.values())
        for attr, _ in self._wire_fields():
            if attr in child_attrs or attr in self.RAW_FIELDS:
                continue
            value = getattr(self, attr)
            if isinstance(value, str):
                yield attr, value

    def get(self, wire_key: str) -> Any:
        for attr, wire in self._wire_fields():
            if wire == wire_key:
                return getattr(self, attr)
        return self.extras.get(wire_key)


@dataclass
class NavigateConfig(_StepConfig):
    url: str = ""
    wait_until: str = _key("waitUntil", default="load")


@dataclass
class ClickConfig(_StepConfig):
    selector: str = ""
    button: str = "left"
    click_count: Union[int, str] = _key("clickCount", default=1)


@dataclass
class TypeConfig(_StepConfig):
    selector: str = ""
    text: str = ""
    delay: Union[int, str] = 50
    clear: bool = False


@dataclass
class WaitConfig(_StepConfig):
    kind: str = _key("type", default="time")
    value: Union[int, str] = 1000


@dataclass
class ScrollConfig(_StepConfig):
    target: str = "page"
    direction: str = "down"
    selector: Optional[str] = None
    amount: Union[int, str] = 500


@dataclass
class ScreenshotConfig(_StepConfig):
    full_page: bool = _key("fullPage", default=False)
    selector: Optional[str] = None
    format: str = _key("type", default="png")


@dataclass
class ExtractConfig(_StepConfig):
    selector: str = ""
    attribute: str = "textContent"
    variable: str = ""


@dataclass
class ConditionConfig(_StepConfig):
    CHILD_LISTS: ClassVar[Dict[str, str]] = {"thenSteps": "then_steps", "elseSteps": "else_steps"}

    condition: str = ""
    then_steps: List["Step"] = _key("thenSteps", default_factory=list)
    else_steps: List["Step"] = _key("elseSteps", default_factory=list)


@dataclass
class LoopConfig(_StepConfig):
    CHILD_LISTS: ClassVar[Dict[str, str]] = {"body": "body"}
    LEGACY_KEYS: ClassVar[Dict[str, str]] = {"steps": "body"}

    kind: str = _key("type", default=LoopKind.COUNT.value)
    count: Union[int, str, None] = None
    condition: Optional[str] = None
    selector: Optional[str] = None
    variable: Optional[str] = None
    max_iterations: Optional[int] = _key("maxIterations", default=None)
    body: List["Step"] = field(default_factory=list)


@dataclass
class ScriptConfig(_StepConfig):
    RAW_FIELDS: ClassVar[Tuple[str, ...]] = ("code",)

    code: str = ""


StepConfig = Union[
    NavigateConfig,
    ClickConfig,
    TypeConfig,
    WaitConfig,
    ScrollConfig,
    ScreenshotConfig,
    ExtractConfig,
    ConditionConfig,
    LoopConfig,
    ScriptConfig,
]

CONFIG_TYPES: Dict[ActionType, Type[_StepConfig]] = {
    ActionType.NAVIGATE: NavigateConfig,
    ActionType.CLICK: ClickConfig,
    ActionType.TYPE: TypeConfig,
    ActionType.WAIT: WaitConfig,
    ActionType.SCROLL: ScrollConfig,
    ActionType.SCREENSHOT: ScreenshotConfig,
    ActionType.EXTRACT: ExtractConfig,
    ActionType.CONDITION: ConditionConfig,
    ActionType.LOOP: LoopConfig,
    ActionType.SCRIPT: ScriptConfig,
}


def _parse_action_type(raw: Any) -> ActionType:
    if isinstance(raw, ActionType):
        return raw
    try:
        return ActionType(str(raw))
    except ValueError:
        raise ValidationError(f"Unknown step type {raw!r}") from None


_TRUE_WORDS = {"true", "1", "yes", "on"}
_FALSE_WORDS = {"false", "0", "no", "off"}


def _parse_order(raw: Any, step_id: str) -> int:
    if raw is None or raw == "":
        return 0
    if isinstance(raw, bool):
        raise ValidationError(f"Step {step_id} order must be an integer, got {raw!r}", step_id=step_id)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Step {step_id} order must be an integer, got {raw!r}", step_id=step_id) from None


def _parse_enabled(raw: Any, step_id: str) -> bool:
    if raw is None:
        return True
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int):
        return raw != 0
    if isinstance(raw, str):
        word = raw.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValidationError(f"Step {step_id} enabled must be true or false, got {raw!r}", step_id=step_id)


@dataclass
class Step:
    id: str
    type: ActionType
    name: str
    config: StepConfig
    order: int = 0
    enabled: bool = True
    timeout: Optional[int] = None
    retries: Optional[int] = None
    on_error: OnError = OnError.STOP

    def __post_init__(self) -> None:
        self.type = _parse_action_type(self.type)
        expected = CONFIG_TYPES[self.type]
        if not isinstance(self.config, expected):
            raise ValidationError(
                f"Step {self.id} of type {self.type.value} needs {expected.__name__}, got {type(self.config).__name__}",
                step_id=self.id,
            )
        self.on_error = OnError(self.on_error)

    def child_lists(self) -> Dict[Branch, List["Step"]]:
        return self.config.child_lists()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Step":
        if not isinstance(payload, Mapping):
            raise ValidationError("Step must be an object")
        step_id = str(payload.get("id") or "").strip()
        if not step_id:
            raise ValidationError("Step id is required")
        action = _parse_action_type(payload.get("type"))
        raw_config = payload.get("config") or {}
        if not isinstance(raw_config, Mapping):
            raise ValidationError(f"Step {step_id} config must be an object", step_id=step_id)
        on_error_raw = payload.get("onError") or OnError.STOP.value
        try:
            on_error = OnError(on_error_raw)
        except ValueError:
            raise ValidationError(f"Step {step_id} has unknown onError {on_error_raw!r}", step_id=step_id) from None
        return cls(
            id=step_id,
            type=action,
            name=str(payload.get("name") or ""),
            config=CONFIG_TYPES[action].from_dict(raw_config),
            order=_parse_order(payload.get("order"), step_id),
            enabled=_parse_enabled(payload.get("enabled", True), step_id),
            timeout=payload.get("timeout"),
            retries=payload.get("retries"),
            on_error=on_error,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "config": self.config.to_dict(),
            "order": self.order,
            "enabled": self.enabled,
            "onError": self.on_error.value,
        }
        if self.timeout is not None:
            out["timeout"] = self.timeout
        if self.retries is not None:
            out["retries"] = self.retries
        return out


@dataclass
class ScriptDocument:
    id: str
    name: str
    steps: List[Step] = field(default_factory=list)
    description: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ScriptDocument":
        raw_steps = payload.get("steps") or []
        if not isinstance(raw_steps, list):
            raise ValidationError("steps must be a list")
        variables = payload.get("variables") or {}
        return cls(
            id=str(payload.get("id") or payload.get("name") or ""),
            name=str(payload.get("name") or ""),
            steps=sorted((Step.from_dict(s) for s in raw_steps), key=lambda s: s.order),
            description=payload.get("description"),
            category=payload.get("category"),
            tags=[str(t) for t in payload.get("tags") or []],
            variables=dict(variables) if isinstance(variables, Mapping) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "steps": [s.to_dict() for s in self.steps],
            "tags": list(self.tags),
        }
        if self.description is not None:
            out["description"] = self.description
        if self.category is not None:
            out["category"] = self.category
        if self.variables:
            out["variables"] = dict(self.variables)
        return out


def iter_steps(steps: List[Step]) -> Iterator[Step]:
    """Depth-first walk over a sibling list and every nested list."""
    for step in steps:
        yield step
        for children in step.child_lists().values():
            yield from iter_steps(children)
