from typing import Any, List

from stepflow.core.action_types import ActionType
from stepflow.core.errors import LoopGuardExceeded, ValidationError
from stepflow.core.expressions import evaluate_condition
from stepflow.core.models import ConditionConfig, LoopConfig, LoopKind, Step

from .base import StepResult

DEFAULT_ITEM_VARIABLE = "item"
INDEX_VARIABLE = "index"


class FlowSteps:
    def _evaluate_expression(self, step: Step, raw: str) -> bool:
        self._ensure_step_valid(step)
        return evaluate_condition(raw or "", self._apply_template)

    async def _action_condition(self, step: Step, depth: int) -> StepResult:
        cfg: ConditionConfig = step.config

        async def evaluate() -> bool:
            return self._evaluate_expression(step, cfg.condition)

        ok, value, error, attempts = await self._attempt_with_policy(step, evaluate)
        if not ok:
            return self._handle_step_error(step, error, attempts)
        branch = "thenSteps" if value else "elseSteps"
        self.logger.info("Condition %s is %s -> %s", step.name or step.id, bool(value), branch)
        children = cfg.then_steps if value else cfg.else_steps
        return await self._execute_steps(children, depth + 1)

    async def _action_loop(self, step: Step, depth: int) -> StepResult:
        cfg: LoopConfig = step.config
        try:
            kind = LoopKind(cfg.kind)
        except ValueError:
            error = ValidationError(f"Unknown loop type {cfg.kind!r}", step_id=step.id)
            return self._handle_step_error(step, error, 0)
        if kind is LoopKind.COUNT:
            return await self._loop_count(step, cfg, depth)
        if kind is LoopKind.WHILE:
            return await self._loop_while(step, cfg, depth)
        return await self._loop_for_each(step, cfg, depth)

    async def _run_body(self, cfg: LoopConfig, depth: int, bindings: dict) -> StepResult:
        with self.variables.scope(bindings):
            return await self._execute_steps(cfg.body, depth + 1)

    async def _loop_count(self, step: Step, cfg: LoopConfig, depth: int) -> StepResult:
        async def resolve_count() -> int:
            self._ensure_step_valid(step)
            raw: Any = cfg.count
            if isinstance(raw, str):
                raw = self._apply_template(raw)
            count = self._coerce_int(raw, "count", step)
            if count < 0:
                raise ValidationError(f"count must not be negative, got {count}", step_id=step.id)
            return count

        ok, count, error, attempts = await self._attempt_with_policy(step, resolve_count)
        if not ok:
            return self._handle_step_error(step, error, attempts)
        for index in range(count):
            if self.control.stop_requested():
                return StepResult.abort()
            result = await self._run_body(cfg, depth, {INDEX_VARIABLE: index})
            if result.status != "next":
                return result
        return StepResult.next()

    async def _loop_while(self, step: Step, cfg: LoopConfig, depth: int) -> StepResult:
        cap = int(cfg.max_iterations or self.settings.max_while_iterations)
        index = 0
        total_attempts = 0
        while True:
            if self.control.stop_requested():
                return StepResult.abort()

            async def evaluate() -> bool:
                with self.variables.scope({INDEX_VARIABLE: index}):
                    return self._evaluate_expression(step, cfg.condition or "")

            ok, holds, error, attempts = await self._attempt_with_policy(step, evaluate, record=False)
            total_attempts += attempts
            if not ok:
                return self._handle_step_error(step, error, total_attempts)
            if not holds:
                break
            if index >= cap:
                # Guard trips are final: the body already ran cap times.
                return self._handle_step_error(step, LoopGuardExceeded(step.id, cap), total_attempts)
            result = await self._run_body(cfg, depth, {INDEX_VARIABLE: index})
            if result.status != "next":
                return result
            index += 1
        self._record(step, "ok", attempts=total_attempts, value=index)
        self.logger.info("While loop %s finished after %s iterations", step.name or step.id, index)
        return StepResult.next()

    async def _loop_for_each(self, step: Step, cfg: LoopConfig, depth: int) -> StepResult:
        async def enumerate_matches() -> List[Any]:
            matches = await self._dispatch_to_transport(step, ActionType.LOOP)
            if matches is None:
                return []
            if isinstance(matches, (list, tuple)):
                return list(matches)
            return [matches]

        ok, matches, error, attempts = await self._attempt_with_policy(step, enumerate_matches)
        if not ok:
            return self._handle_step_error(step, error, attempts)
        item_name = (cfg.variable or "").strip() or DEFAULT_ITEM_VARIABLE
        for index, item in enumerate(matches):
            if self.control.stop_requested():
                return StepResult.abort()
            result = await self._run_body(cfg, depth, {INDEX_VARIABLE: index, item_name: item})
            if result.status != "next":
                return result
        return StepResult.next()
