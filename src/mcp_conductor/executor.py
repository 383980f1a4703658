# executor.py
# Runs routing decisions against providers: one step, a sequential batch,
# or bounded-parallel windows.
#
# Guarantees:
#   - every attempt is recorded with the usage tracker
#   - retries are a bounded loop, never recursion
#   - a step's error is captured into its StepResult, never raised
#   - results land in the context in step order, one per step index

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable

from mcp_conductor import display
from mcp_conductor.connections import ConnectionManager
from mcp_conductor.content import to_text
from mcp_conductor.context import WorkflowContext
from mcp_conductor.errors import ExecutionTimeout, OracleError
from mcp_conductor.models import (
    ExecutionOptions,
    RecoveryOptions,
    RoutingDecision,
    StepMetadata,
    StepRecoveryAction,
    StepResult,
)
from mcp_conductor.recovery import FailureHandler
from mcp_conductor.tracker import UsageTracker

logger = logging.getLogger(__name__)

VariableExtractor = Callable[[str, Any], Awaitable[dict[str, Any]]]

_TEMPLATE = re.compile(r"\{\{(\w+)\}\}")


# ---------------------------------------------------------------------------
# Parameter templating
# ---------------------------------------------------------------------------


def _substitute(template: str, data: dict[str, Any]) -> str:
    def replace(match: re.Match) -> str:
        key = match.group(1)
        return to_text(data[key]) if key in data else match.group(0)

    return _TEMPLATE.sub(replace, template)


def enrich_parameters(parameters: dict[str, Any], data: dict[str, Any]) -> dict[str, Any]:
    """
    Replace {{name}} tokens in parameter values (nested included) with values
    from data. Unknown tokens are left verbatim.
    """

    def walk(value: Any) -> Any:
        if isinstance(value, str):
            return _substitute(value, data) if "{{" in value else value
        if isinstance(value, dict):
            return {k: walk(v) for k, v in value.items()}
        if isinstance(value, list):
            return [walk(v) for v in value]
        return value

    return {key: walk(value) for key, value in parameters.items()}


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class StepExecutor:
    def __init__(
        self,
        manager: ConnectionManager,
        tracker: UsageTracker,
        failure_handler: FailureHandler | None = None,
        extractor: VariableExtractor | None = None,
    ) -> None:
        self._manager = manager
        self._tracker = tracker
        self._failure_handler = failure_handler or FailureHandler()
        self._extractor = extractor

    # ------------------------------------------------------------------
    # Single step
    # ------------------------------------------------------------------

    async def _call_with_timeout(
        self, tool: str, parameters: dict[str, Any], timeout_ms: int, execution_id: str
    ) -> Any:
        deadline = asyncio.timeout(timeout_ms / 1000)
        try:
            async with deadline:
                return await self._manager.call_tool(tool, parameters, execution_id)
        except TimeoutError as exc:
            # A TimeoutError raised by the provider itself passes through as-is.
            if not deadline.expired():
                raise
            raise ExecutionTimeout(tool, timeout_ms) from exc

    async def execute_step(
        self,
        step: RoutingDecision,
        step_index: int,
        context: WorkflowContext,
        options: ExecutionOptions,
    ) -> StepResult:
        """
        Run one step with timeout and up to options.retry_attempts retries.

        Always returns a StepResult; retry_count is the number of retries used.
        """
        data = {"original_request": context.original_request}
        data.update(context.prior_step_outputs(step_index))
        parameters = enrich_parameters(step.parameters, data)

        total_attempts = options.retry_attempts + 1
        started = time.perf_counter()
        error = ""

        for attempt in range(total_attempts):
            execution_id = self._tracker.start_execution(
                step.selected_tool,
                parameters,
                metadata={
                    "confidence": step.confidence,
                    "reasoning": step.reasoning,
                    "step_index": step_index,
                    "attempt": attempt + 1,
                },
            )
            try:
                result = await self._call_with_timeout(
                    step.selected_tool, parameters, options.timeout_ms, execution_id
                )
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                self._tracker.end_execution(execution_id, False, error=error)
                logger.warning(
                    "Step %d (%s) attempt %d/%d failed: %s",
                    step_index,
                    step.selected_tool,
                    attempt + 1,
                    total_attempts,
                    error,
                )
                if attempt + 1 < total_attempts:
                    display.retry_scheduled(step.selected_tool, attempt + 1, total_attempts, error)
                    if options.retry_delay_ms:
                        await asyncio.sleep(options.retry_delay_ms / 1000)
                continue

            self._tracker.end_execution(execution_id, True, result)
            return StepResult(
                step_index=step_index,
                tool=step.selected_tool,
                success=True,
                result=result,
                execution_time_ms=_elapsed_ms(started),
                metadata=_metadata(step, parameters, attempt),
            )

        return StepResult(
            step_index=step_index,
            tool=step.selected_tool,
            success=False,
            error=error,
            execution_time_ms=_elapsed_ms(started),
            metadata=_metadata(step, parameters, total_attempts - 1),
        )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def execute_sequential(
        self,
        context: WorkflowContext,
        options: ExecutionOptions,
        start: int | None = None,
        recovery: RecoveryOptions | None = None,
    ) -> list[StepResult]:
        """
        Run context.steps[start:] strictly in order, appending each result.

        Stops at the first failure unless continue_on_failure is set or the
        per-step recovery strategy says to go on.
        """
        start = len(context.results) if start is None else start
        steps = context.steps
        executed: list[StepResult] = []

        for index in range(start, len(steps)):
            step = steps[index]
            display.step_start(index, len(steps), step.selected_tool)

            result = await self.execute_step(step, index, context, options)
            proceed = result.success or options.continue_on_failure
            if not result.success and recovery is not None:
                result, proceed = await self._resolve_failure(
                    step, result, context, options, recovery
                )

            context.append_result(result)
            executed.append(result)
            display.step_result(result)

            if result.success:
                await self._extract_variables(context, result)

            if not proceed:
                logger.warning("Stopping workflow at step %d (%s)", index, result.tool)
                break

            if index < len(steps) - 1 and options.inter_step_delay_ms:
                await asyncio.sleep(options.inter_step_delay_ms / 1000)

        return executed

    async def execute_parallel(
        self,
        context: WorkflowContext,
        options: ExecutionOptions,
        start: int | None = None,
    ) -> list[StepResult]:
        """
        Run context.steps[start:] in windows of options.concurrency.

        Each window is awaited as a settled set and written back in step
        order, whatever order its calls complete in.
        """
        start = len(context.results) if start is None else start
        steps = context.steps
        executed: list[StepResult] = []

        for window_start in range(start, len(steps), options.concurrency):
            window = steps[window_start : window_start + options.concurrency]
            display.window_start(window_start, len(window), len(steps))

            outcomes = await asyncio.gather(
                *(
                    self.execute_step(step, window_start + offset, context, options)
                    for offset, step in enumerate(window)
                ),
                return_exceptions=True,
            )

            for offset, outcome in enumerate(outcomes):
                if isinstance(outcome, BaseException):
                    step = window[offset]
                    outcome = StepResult(
                        step_index=window_start + offset,
                        tool=step.selected_tool,
                        success=False,
                        error=str(outcome) or type(outcome).__name__,
                        metadata=_metadata(step, step.parameters, 0),
                    )
                context.append_result(outcome)
                executed.append(outcome)
                display.step_result(outcome)

        return executed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve_failure(
        self,
        step: RoutingDecision,
        failed: StepResult,
        context: WorkflowContext,
        options: ExecutionOptions,
        recovery: RecoveryOptions,
    ) -> tuple[StepResult, bool]:
        """Settle a failed step before it is appended. Returns (result, proceed)."""
        decision = self._failure_handler.handle_step_failure(failed, step, recovery)

        if decision.action == StepRecoveryAction.RETRY:
            remaining = recovery.max_retries - failed.metadata.retry_count
            if recovery.retry_delay_ms:
                await asyncio.sleep(recovery.retry_delay_ms / 1000)
            retry_options = options.model_copy(update={"retry_attempts": max(remaining - 1, 0)})
            retried = await self.execute_step(step, failed.step_index, context, retry_options)
            retry_count = failed.metadata.retry_count + 1 + retried.metadata.retry_count
            result = retried.model_copy(
                update={"metadata": retried.metadata.model_copy(update={"retry_count": retry_count})}
            )
            return result, result.success or recovery.continue_on_failure

        if decision.action == StepRecoveryAction.FALLBACK and decision.fallback_step:
            display.fallback_started(step.selected_tool, decision.fallback_step.selected_tool)
            fallback = await self.execute_step(
                decision.fallback_step, failed.step_index, context, options
            )
            result = fallback.model_copy(
                update={
                    "metadata": fallback.metadata.model_copy(
                        update={"fallback_for": step.selected_tool}
                    )
                }
            )
            return result, result.success or recovery.continue_on_failure

        return failed, decision.should_continue

    async def _extract_variables(self, context: WorkflowContext, result: StepResult) -> None:
        if self._extractor is None:
            return
        try:
            extracted = await self._extractor(result.tool, result.result)
        except OracleError as exc:
            logger.warning("Variable extraction failed for %s: %s", result.tool, exc)
            return
        for key, value in extracted.items():
            context.set_variable(key, value)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _metadata(step: RoutingDecision, parameters: dict[str, Any], retry_count: int) -> StepMetadata:
    return StepMetadata(
        confidence=step.confidence,
        reasoning=step.reasoning,
        retry_count=retry_count,
        parameters=parameters,
    )
