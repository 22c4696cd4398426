import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from stepflow.core.action_types import ActionType
from stepflow.core.errors import StepflowError, TransportError, ValidationError
from stepflow.core.models import ExtractConfig, OnError, ScriptDocument, Step
from stepflow.core.transport import Transport
from stepflow.core.variables import VariableEnvironment
from stepflow.services.graph_editor import tree_problems, validate_step_config
from stepflow.services.run_control import RunControl, StepUpdate
from stepflow.services.steps.base import ExecutionSettings, RunReport, RunStatus, StepOutcome, StepResult
from stepflow.services.steps.flow import FlowSteps
from stepflow.services.steps.helpers import TemplateSteps
from stepflow.utils.run_logging import RunLogCollector

LOGGER = logging.getLogger(__name__)

Attempt = Tuple[bool, Any, Optional[StepflowError], int]
ScriptSource = Union[ScriptDocument, List[Step]]


class ScenarioExecutor(FlowSteps, TemplateSteps):
    """
    Executes a step tree through a Transport.

    Steps run strictly one after another; conditions pick exactly one branch,
    loops re-run their body, and every failed attempt goes through the step's
    retries and onError policy.
    """

    def __init__(
        self,
        steps: List[Step],
        transport: Transport,
        *,
        settings: Optional[ExecutionSettings] = None,
        variables: Optional[Mapping[str, Any]] = None,
        control: Optional[RunControl] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.steps = list(steps or [])
        self.transport = transport
        self.settings = settings or ExecutionSettings()
        self.variables = VariableEnvironment(variables)
        self.control = control or RunControl()
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.report = RunReport(run_id=self.run_id, total_steps=len(self.steps))
        # The adapter reads this dict on every call, so updating "step" retags later records.
        self._log_context: Dict[str, Optional[str]] = {"run": self.run_id, "step": None}
        self.logger = logging.LoggerAdapter(LOGGER, self._log_context)

    @property
    def status(self) -> RunStatus:
        return self.report.status

    async def run(self) -> RunReport:
        report = self.report
        collector = RunLogCollector(self.run_id, sink=report.logs.append)
        package_logger = logging.getLogger("stepflow")
        package_logger.addHandler(collector)
        report.status = RunStatus.RUNNING
        report.started_at = time.time()
        try:
            try:
                result = await self._run_validated()
            except asyncio.CancelledError:
                self._finish(StepResult.abort())
                raise
            except Exception as exc:
                self.logger.exception("Run %s crashed", self.run_id)
                result = StepResult.stop(exc, step_id=self.control.current_step_id)
            self._finish(result)
        finally:
            package_logger.removeHandler(collector)
        return report

    async def _run_validated(self) -> StepResult:
        problems = tree_problems(self.steps, skip_disabled=True)
        if problems:
            error = ValidationError([message for _, message in problems])
            first_step = next((step_id for step_id, _ in problems if step_id), None)
            self.logger.error("Script is invalid, nothing was run: %s", error)
            return StepResult.stop(error, step_id=first_step)
        self.logger.info("Run %s started with %s top-level steps", self.run_id, len(self.steps))
        return await self._execute_steps(self.steps, 0)

    def _finish(self, result: StepResult) -> None:
        report = self.report
        report.completed_at = time.time()
        report.variables = self.variables.all()
        if result.status == "abort":
            report.status = RunStatus.ABORTED
            report.error = result.stop_reason
            self.logger.warning("Run %s aborted", self.run_id)
        elif result.status == "stop":
            report.status = RunStatus.FAILED
            report.error = result.stop_reason
            report.error_type = type(result.error).__name__ if result.error else None
            report.failed_step_id = result.step_id
            self.logger.error("Run %s failed at step %s: %s", self.run_id, result.step_id, result.stop_reason)
        else:
            report.status = RunStatus.COMPLETED
            self.logger.info("Run %s completed in %.2fs", self.run_id, report.duration or 0.0)
        self.control.notify_finished(report.status.value, report.error)

    async def _checkpoint(self) -> bool:
        if self.control.stop_requested():
            return False
        if self.control.paused:
            self.logger.info("Run paused")
            loop = asyncio.get_running_loop()
            if not await loop.run_in_executor(None, self.control.wait_while_paused):
                return False
            self.logger.info("Run resumed")
        return True

    async def _execute_steps(self, steps: List[Step], depth: int) -> StepResult:
        for step in steps:
            if not await self._checkpoint():
                return StepResult.abort()
            if not step.enabled:
                self.logger.info("Skipping disabled step %s", step.name or step.id)
                self._record(step, "skipped")
                result = StepResult.next()
            else:
                self.control.before_step(
                    StepUpdate(
                        run_id=self.run_id,
                        step_id=step.id,
                        step_type=step.type.value,
                        name=step.name,
                        depth=depth,
                    )
                )
                result = await self._run_step(step, depth)
            if result.status != "next":
                return result
            if depth == 0:
                self.report.completed_steps += 1
        return StepResult.next()

    async def _run_step(self, step: Step, depth: int) -> StepResult:
        parent = self._log_context.get("step")
        self._log_context["step"] = step.id
        self.logger.info("Running step: %s (%s)", step.name or step.id, step.type.value)
        try:
            if step.type is ActionType.CONDITION:
                return await self._action_condition(step, depth)
            if step.type is ActionType.LOOP:
                return await self._action_loop(step, depth)
            return await self._action_dispatch(step)
        finally:
            self._log_context["step"] = parent

    async def _action_dispatch(self, step: Step) -> StepResult:
        async def attempt() -> Any:
            return await self._dispatch_to_transport(step, step.type)

        ok, value, error, attempts = await self._attempt_with_policy(step, attempt, record=False)
        if not ok:
            return self._handle_step_error(step, error, attempts)
        if step.type is ActionType.EXTRACT:
            cfg: ExtractConfig = step.config
            name = self._apply_template(cfg.variable).strip()
            self.variables.set(name, value)
            self.logger.debug("Extracted %r into %s", value, name)
        elif step.type is ActionType.SCREENSHOT and value is not None:
            self.report.screenshots.append(value)
        self._record(step, "ok", attempts=attempts, value=value)
        return StepResult.next()

    async def _dispatch_to_transport(self, step: Step, action: ActionType) -> Any:
        self._ensure_step_valid(step)
        config = self._resolve_config(step.config)
        timeout_ms = int(step.timeout or self.settings.default_timeout_ms)
        self.report.attempts += 1
        try:
            return await asyncio.wait_for(self.transport.attempt(action, config, timeout_ms), timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise TransportError(f"{action.value} timed out after {timeout_ms} ms") from None
        except StepflowError:
            raise
        except Exception as exc:
            raise TransportError(f"{action.value} failed: {exc}") from exc

    async def _attempt_with_policy(
        self,
        step: Step,
        fn: Callable[[], Awaitable[Any]],
        record: bool = True,
    ) -> Attempt:
        max_attempts = 1 + max(0, int(step.retries or 0))
        last_error: Optional[StepflowError] = None
        for attempt in range(1, max_attempts + 1):
            try:
                value = await fn()
            except StepflowError as exc:
                last_error = exc
                if attempt < max_attempts:
                    self.logger.warning(
                        "Step %s attempt %s/%s failed: %s; retrying",
                        step.name or step.id,
                        attempt,
                        max_attempts,
                        exc,
                    )
                continue
            if record:
                self._record(step, "ok", attempts=attempt, value=value)
            return True, value, None, attempt
        return False, None, last_error, max_attempts

    def _handle_step_error(self, step: Step, error: StepflowError, attempts: int) -> StepResult:
        self._record(step, "failed", attempts=attempts, error=str(error))
        policy = step.on_error
        if policy is OnError.RETRY:
            policy = self.settings.exhausted_retry_policy
        if policy is OnError.CONTINUE:
            self.logger.warning(
                "Step %s failed after %s attempt(s), continuing: %s", step.name or step.id, attempts, error
            )
            return StepResult.next()
        self.logger.error("Step %s failed after %s attempt(s): %s", step.name or step.id, attempts, error)
        return StepResult.stop(error, step.id)

    def _ensure_step_valid(self, step: Step) -> None:
        errors = validate_step_config(step)
        if errors:
            raise ValidationError(errors, step_id=step.id)

    def _record(
        self,
        step: Step,
        status: str,
        *,
        attempts: int = 0,
        value: Any = None,
        error: Optional[str] = None,
    ) -> None:
        self.report.outcomes.append(
            StepOutcome(
                step_id=step.id,
                type=step.type.value,
                status=status,
                attempts=attempts,
                error=error,
                value=value,
            )
        )


@dataclass
class RunHandle:
    run_id: str
    executor: ScenarioExecutor
    task: "asyncio.Task[RunReport]"

    @property
    def control(self) -> RunControl:
        return self.executor.control

    @property
    def status(self) -> RunStatus:
        return self.executor.status

    @property
    def report(self) -> RunReport:
        return self.executor.report

    async def wait(self) -> RunReport:
        return await self.task


def _build_executor(
    source: ScriptSource,
    transport: Transport,
    *,
    settings: Optional[ExecutionSettings] = None,
    variables: Optional[Mapping[str, Any]] = None,
    control: Optional[RunControl] = None,
    run_id: Optional[str] = None,
) -> ScenarioExecutor:
    if isinstance(source, ScriptDocument):
        steps = source.steps
        seeded: Dict[str, Any] = dict(source.variables or {})
    else:
        steps = list(source)
        seeded = {}
    seeded.update(variables or {})
    return ScenarioExecutor(
        steps,
        transport,
        settings=settings,
        variables=seeded,
        control=control,
        run_id=run_id,
    )


def start(source: ScriptSource, transport: Transport, **kwargs: Any) -> RunHandle:
    """
    Schedule a run on the running event loop and return its handle.

    Accepts ``settings``, ``variables``, ``control`` and ``run_id`` keywords.
    A script's own variables are seeded first; ``variables`` override them.
    """
    executor = _build_executor(source, transport, **kwargs)
    task = asyncio.get_running_loop().create_task(executor.run())
    return RunHandle(run_id=executor.run_id, executor=executor, task=task)


def abort(handle: RunHandle) -> None:
    handle.control.request_stop()


def status(handle: RunHandle) -> RunStatus:
    return handle.status


def run_script(source: ScriptSource, transport: Transport, **kwargs: Any) -> RunReport:
    """Run a script to completion from synchronous code."""

    async def runner() -> RunReport:
        executor = _build_executor(source, transport, **kwargs)
        try:
            return await executor.run()
        finally:
            await transport.close()

    return asyncio.run(runner())
