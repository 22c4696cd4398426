import dataclasses
from typing import Any, Dict, Optional

from stepflow.core.errors import TransportError, ValidationError
from stepflow.core.models import Step, StepConfig


class TemplateSteps:
    # Template helpers
    def _apply_template(self, raw: str) -> str:
        return self.variables.resolve(raw)

    def _resolve_config(self, config: StepConfig) -> StepConfig:
        """
        Return a copy of ``config`` with every templatable text field resolved.

        Child step lists and raw fields (script code) are carried over as-is;
        children are resolved when they themselves run.
        """
        updates: Dict[str, Any] = {}
        for attr, value in config.text_fields():
            updates[attr] = self._apply_template(value)
        if not updates:
            return config
        return dataclasses.replace(config, **updates)

    @staticmethod
    def _coerce_int(value: Any, label: str, step: Step) -> int:
        if isinstance(value, bool):
            raise ValidationError(f"{label} must be an integer, got {value!r}", step_id=step.id)
        if isinstance(value, int):
            return value
        try:
            as_float = float(str(value).strip())
        except (TypeError, ValueError):
            raise ValidationError(f"{label} must be an integer, got {value!r}", step_id=step.id) from None
        if not as_float.is_integer():
            raise ValidationError(f"{label} must be an integer, got {value!r}", step_id=step.id)
        return int(as_float)


def to_number(value: Any, label: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number, got {value!r}") from None


class LocatorSteps:
    def _build_locator(self, selector: Optional[str]):
        selector = (selector or "").strip()
        if not selector:
            raise TransportError("Selector is empty")
        if selector.lower().startswith("xpath="):
            return self.page.locator(selector)
        if selector.startswith("//") or selector.startswith("(//"):
            return self.page.locator(f"xpath={selector}")
        # default: treat as CSS or Playwright auto-detected selector string
        return self.page.locator(selector)

    async def _locate_element(self, selector: Optional[str], timeout_ms: int, state: str = "visible"):
        locator = self._build_locator(selector).first
        await locator.wait_for(state=state, timeout=timeout_ms)
        return locator
