"""Error taxonomy shared by the editor and the interpreter."""

from __future__ import annotations

from typing import Iterable, List, Optional


class StepflowError(Exception):
    """Base class for every error raised by stepflow."""


class ValidationError(StepflowError):
    def __init__(self, errors: Iterable[str] | str, step_id: Optional[str] = None) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = [str(e) for e in errors]
        self.step_id = step_id
        super().__init__("; ".join(self.errors) or "validation failed")


class UndefinedVariableError(StepflowError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Variable {name} is not defined")


class TransportError(StepflowError):
    """A delegated browser action failed. Opaque beyond its message."""


class LoopGuardExceeded(StepflowError):
    def __init__(self, step_id: str, limit: int) -> None:
        self.step_id = step_id
        self.limit = limit
        super().__init__(f"While loop {step_id} exceeded {limit} iterations")


class NotFound(StepflowError):
    def __init__(self, step_id: str) -> None:
        self.step_id = step_id
        super().__init__(f"Step {step_id} not found")


class OutOfRange(StepflowError):
    def __init__(self, index: int, length: int) -> None:
        self.index = index
        self.length = length
        super().__init__(f"Index {index} is out of range for list of {length} steps")
