"""The boundary between the interpreter and whatever drives the browser."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from .action_types import ActionType
from .models import StepConfig


class Transport(ABC):
    """
    Performs one attempt of one step.

    ``config`` arrives with placeholders already resolved. The return value
    matters for ``extract`` (the extracted value), ``screenshot`` (stored on
    the run report) and ``loop`` (the forEach matches, in page order).
    Failures are raised as ``TransportError``; an implementation must resolve
    within ``timeout_ms``.
    """

    @abstractmethod
    async def attempt(self, action: ActionType, config: StepConfig, timeout_ms: int) -> Any:
        raise NotImplementedError

    async def close(self) -> None:
        return None
