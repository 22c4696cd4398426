import asyncio
from typing import Any, Callable, Dict, List, Tuple

import pytest

from stepflow.core.action_types import ActionType
from stepflow.core.errors import TransportError
from stepflow.core.models import StepConfig
from stepflow.core.transport import Transport


class FakeTransport(Transport):
    """Records every attempt and answers from per-type handlers."""

    def __init__(self) -> None:
        self.calls: List[Tuple[ActionType, StepConfig, int]] = []
        self.handlers: Dict[ActionType, Callable[[StepConfig], Any]] = {}
        self.closed = False

    def on(self, action: str, handler: Callable[[StepConfig], Any]) -> "FakeTransport":
        self.handlers[ActionType(action)] = handler
        return self

    def fail_first(self, action: str, times: int, result: Any = None) -> "FakeTransport":
        state = {"left": times}

        def handler(config: StepConfig) -> Any:
            if state["left"] > 0:
                state["left"] -= 1
                raise TransportError(f"{action} failed")
            return result

        return self.on(action, handler)

    def fail_always(self, action: str, message: str = "element not found") -> "FakeTransport":
        def handler(config: StepConfig) -> Any:
            raise TransportError(message)

        return self.on(action, handler)

    async def attempt(self, action: ActionType, config: StepConfig, timeout_ms: int) -> Any:
        self.calls.append((action, config, timeout_ms))
        handler = self.handlers.get(action)
        if handler is None:
            return None
        result = handler(config)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def close(self) -> None:
        self.closed = True

    @property
    def actions(self) -> List[str]:
        return [action.value for action, _, _ in self.calls]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Keep settings, scripts and profiles inside the test's temp dir."""
    home = tmp_path / "stepflow-home"
    monkeypatch.setenv("STEPFLOW_HOME", str(home))
    yield home
