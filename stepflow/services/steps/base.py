from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from stepflow.core.models import OnError

EXHAUSTED_RETRY_FALLBACK = OnError.STOP


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionSettings:
    default_timeout_ms: int = 30000
    max_while_iterations: int = 100
    exhausted_retry_policy: OnError = EXHAUSTED_RETRY_FALLBACK

    def __post_init__(self) -> None:
        policy = OnError(self.exhausted_retry_policy)
        if policy is OnError.RETRY:
            raise ValueError("exhausted_retry_policy must be stop or continue")
        object.__setattr__(self, "exhausted_retry_policy", policy)
        if int(self.default_timeout_ms) <= 0:
            raise ValueError("default_timeout_ms must be positive")
        if int(self.max_while_iterations) <= 0:
            raise ValueError("max_while_iterations must be positive")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ExecutionSettings":
        defaults = cls()
        return cls(
            default_timeout_ms=int(data.get("default_timeout_ms") or defaults.default_timeout_ms),
            max_while_iterations=int(data.get("max_while_iterations") or defaults.max_while_iterations),
            exhausted_retry_policy=data.get("exhausted_retry_policy") or defaults.exhausted_retry_policy,
        )


@dataclass
class StepResult:
    status: str
    stop_reason: Optional[str] = None
    step_id: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def next(cls) -> "StepResult":
        return cls(status="next")

    @classmethod
    def stop(cls, error: BaseException, step_id: str) -> "StepResult":
        return cls(status="stop", stop_reason=str(error), step_id=step_id, error=error)

    @classmethod
    def abort(cls) -> "StepResult":
        return cls(status="abort", stop_reason="Aborted by user")


@dataclass
class StepOutcome:
    step_id: str
    type: str
    status: str  # ok | failed | skipped
    attempts: int = 0
    error: Optional[str] = None
    value: Any = None


@dataclass
class RunReport:
    run_id: str
    status: RunStatus = RunStatus.PENDING
    total_steps: int = 0
    completed_steps: int = 0
    attempts: int = 0
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    failed_step_id: Optional[str] = None
    outcomes: List[StepOutcome] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    screenshots: List[Any] = field(default_factory=list)
    logs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def progress(self) -> float:
        if not self.total_steps:
            return 1.0 if self.status is RunStatus.COMPLETED else 0.0
        return self.completed_steps / self.total_steps

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None:
            return None
        end = self.completed_at if self.completed_at is not None else time.time()
        return end - self.started_at

    def outcome_for(self, step_id: str) -> List[StepOutcome]:
        return [o for o in self.outcomes if o.step_id == step_id]
