"""
Static catalog of step kinds: label, config schema and default config.

The catalog is closed and built once at import; there is no runtime
registration.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class ActionType(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE = "type"
    WAIT = "wait"
    SCROLL = "scroll"
    SCREENSHOT = "screenshot"
    EXTRACT = "extract"
    CONDITION = "condition"
    LOOP = "loop"
    SCRIPT = "script"


class FieldKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    TEXTAREA = "textarea"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class FieldOption:
    value: str
    label: str


@dataclass(frozen=True)
class FieldSpec:
    key: str
    label: str
    kind: FieldKind
    required: bool = False
    placeholder: Optional[str] = None
    options: Tuple[FieldOption, ...] = ()


@dataclass(frozen=True)
class ActionTypeSpec:
    type: ActionType
    label: str
    description: str
    config_schema: Tuple[FieldSpec, ...]
    _default_config: Mapping[str, Any] = field(repr=False, default_factory=dict)

    @property
    def default_config(self) -> Dict[str, Any]:
        # Fresh copy each call: defaults contain mutable child lists.
        return copy.deepcopy(dict(self._default_config))

    @property
    def required_fields(self) -> Tuple[str, ...]:
        return tuple(f.key for f in self.config_schema if f.required)

    def get_field(self, key: str) -> Optional[FieldSpec]:
        for spec in self.config_schema:
            if spec.key == key:
                return spec
        return None


def _options(*pairs: Tuple[str, str]) -> Tuple[FieldOption, ...]:
    return tuple(FieldOption(value=v, label=l) for v, l in pairs)


_TEXT = FieldKind.TEXT
_NUMBER = FieldKind.NUMBER
_SELECT = FieldKind.SELECT
_TEXTAREA = FieldKind.TEXTAREA
_BOOLEAN = FieldKind.BOOLEAN


ACTION_TYPES: Dict[ActionType, ActionTypeSpec] = {
    ActionType.NAVIGATE: ActionTypeSpec(
        type=ActionType.NAVIGATE,
        label="Navigate",
        description="Go to a URL",
        config_schema=(
            FieldSpec("url", "URL", _TEXT, required=True, placeholder="https://example.com"),
            FieldSpec(
                "waitUntil",
                "Wait Until",
                _SELECT,
                options=_options(("load", "Page Load"), ("domcontentloaded", "DOM Ready"), ("networkidle", "Network Idle")),
            ),
        ),
        _default_config={"url": "", "waitUntil": "load"},
    ),
    ActionType.CLICK: ActionTypeSpec(
        type=ActionType.CLICK,
        label="Click",
        description="Click an element",
        config_schema=(
            FieldSpec("selector", "Selector", _TEXT, required=True, placeholder="#button, .class, [data-id]"),
            FieldSpec(
                "button",
                "Button",
                _SELECT,
                options=_options(("left", "Left"), ("right", "Right"), ("middle", "Middle")),
            ),
            FieldSpec("clickCount", "Click Count", _NUMBER, placeholder="1"),
        ),
        _default_config={"selector": "", "button": "left", "clickCount": 1},
    ),
    ActionType.TYPE: ActionTypeSpec(
        type=ActionType.TYPE,
        label="Type",
        description="Type text into an input",
        config_schema=(
            FieldSpec("selector", "Selector", _TEXT, required=True, placeholder='input[name="email"]'),
            FieldSpec("text", "Text", _TEXTAREA, required=True, placeholder="Text to type..."),
            FieldSpec("delay", "Delay (ms)", _NUMBER, placeholder="50"),
            FieldSpec("clear", "Clear First", _BOOLEAN),
        ),
        _default_config={"selector": "", "text": "", "delay": 50, "clear": False},
    ),
    ActionType.WAIT: ActionTypeSpec(
        type=ActionType.WAIT,
        label="Wait",
        description="Wait for time or element",
        config_schema=(
            FieldSpec(
                "type",
                "Wait For",
                _SELECT,
                options=_options(("time", "Time (ms)"), ("selector", "Element"), ("navigation", "Navigation")),
            ),
            FieldSpec("value", "Value", _TEXT, required=True, placeholder="1000 or selector"),
        ),
        _default_config={"type": "time", "value": 1000},
    ),
    ActionType.SCROLL: ActionTypeSpec(
        type=ActionType.SCROLL,
        label="Scroll",
        description="Scroll the page",
        config_schema=(
            FieldSpec("target", "Target", _SELECT, options=_options(("page", "Page"), ("element", "Element"))),
            FieldSpec("direction", "Direction", _SELECT, options=_options(("down", "Down"), ("up", "Up"))),
            FieldSpec("selector", "Selector (if element)", _TEXT, placeholder=".scrollable"),
            FieldSpec("amount", "Amount (px)", _NUMBER, placeholder="500"),
        ),
        _default_config={"target": "page", "direction": "down", "amount": 500},
    ),
    ActionType.SCREENSHOT: ActionTypeSpec(
        type=ActionType.SCREENSHOT,
        label="Screenshot",
        description="Take a screenshot",
        config_schema=(
            FieldSpec("fullPage", "Full Page", _BOOLEAN),
            FieldSpec("selector", "Element Selector (optional)", _TEXT, placeholder=".container"),
            FieldSpec("type", "Format", _SELECT, options=_options(("png", "PNG"), ("jpeg", "JPEG"))),
        ),
        _default_config={"fullPage": False, "type": "png"},
    ),
    ActionType.EXTRACT: ActionTypeSpec(
        type=ActionType.EXTRACT,
        label="Extract",
        description="Extract data from page",
        config_schema=(
            FieldSpec("selector", "Selector", _TEXT, required=True, placeholder="h1.title"),
            FieldSpec(
                "attribute",
                "Attribute",
                _SELECT,
                options=_options(
                    ("textContent", "Text Content"),
                    ("innerHTML", "Inner HTML"),
                    ("href", "Link (href)"),
                    ("src", "Source (src)"),
                    ("value", "Value"),
                ),
            ),
            FieldSpec("variable", "Save to Variable", _TEXT, required=True, placeholder="pageTitle"),
        ),
        _default_config={"selector": "", "attribute": "textContent", "variable": ""},
    ),
    ActionType.CONDITION: ActionTypeSpec(
        type=ActionType.CONDITION,
        label="If/Else",
        description="Conditional logic",
        config_schema=(
            FieldSpec("condition", "Condition", _TEXT, required=True, placeholder='{{variable}} === "value"'),
        ),
        _default_config={"condition": "", "thenSteps": [], "elseSteps": []},
    ),
    ActionType.LOOP: ActionTypeSpec(
        type=ActionType.LOOP,
        label="Loop",
        description="Repeat actions",
        config_schema=(
            FieldSpec(
                "type",
                "Loop Type",
                _SELECT,
                options=_options(("count", "Fixed Count"), ("while", "While Condition"), ("forEach", "For Each Element")),
            ),
            FieldSpec("count", "Count (if fixed)", _NUMBER, placeholder="5"),
            FieldSpec("condition", "Condition (if while)", _TEXT, placeholder="{{index}} < 10"),
            FieldSpec("selector", "Selector (if for each)", _TEXT, placeholder="ul.results > li"),
            FieldSpec("variable", "Item Variable", _TEXT, placeholder="item"),
            FieldSpec("maxIterations", "Max Iterations", _NUMBER, placeholder="100"),
        ),
        _default_config={"type": "count", "count": 5, "body": []},
    ),
    ActionType.SCRIPT: ActionTypeSpec(
        type=ActionType.SCRIPT,
        label="Script",
        description="Run custom JavaScript",
        config_schema=(
            FieldSpec("code", "JavaScript Code", _TEXTAREA, required=True, placeholder="return document.title;"),
        ),
        _default_config={"code": ""},
    ),
}


def get_action_type(action: ActionType | str) -> ActionTypeSpec:
    return ACTION_TYPES[ActionType(action)]
