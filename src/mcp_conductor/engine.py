# engine.py
# Workflow Engine
#
# The engine is the kernel of a run. Router, executor, failure handler and
# synthesizer are passive collaborators; this class owns the control flow
# and the one WorkflowContext of each run.
#
# Control flow:
#   route → validate → execute (sequential | windows)
#   → analyze failure → recover (bounded) → synthesize | summarize
#
# Callers always get a WorkflowResult. The only errors raised out of
# execute_workflow are bugs; routing failures and exhausted recovery are
# reported as unsuccessful results.
#
# All terminal output is delegated to display.py; no formatting here.

import logging
import time

from mcp_conductor import display
from mcp_conductor.connections import ConnectionManager
from mcp_conductor.context import WorkflowContext
from mcp_conductor.errors import RoutingError, WorkflowExhausted
from mcp_conductor.executor import StepExecutor
from mcp_conductor.models import (
    RecoveryPlan,
    WorkflowMetadata,
    WorkflowOptions,
    WorkflowResult,
    WorkflowStatus,
)
from mcp_conductor.recovery import FailureHandler
from mcp_conductor.router import ToolRouter
from mcp_conductor.synthesis import SummarySynthesizer, Synthesizer, failure_message
from mcp_conductor.tracker import UsageTracker

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """
    Plans, runs and recovers one request at a time per call. Several calls may
    run concurrently; they share providers and the tracker, never a context.

    Example:
        engine = WorkflowEngine(router, executor, manager, tracker)
        result = await engine.execute_workflow("list the files here")
    """

    def __init__(
        self,
        router: ToolRouter,
        executor: StepExecutor,
        manager: ConnectionManager,
        tracker: UsageTracker,
        failure_handler: FailureHandler | None = None,
        synthesizer: Synthesizer | None = None,
        uses_oracle: bool = False,
    ) -> None:
        self._router = router
        self._executor = executor
        self._manager = manager
        self._tracker = tracker
        self._failure_handler = failure_handler or FailureHandler()
        self._synthesizer = synthesizer or SummarySynthesizer()
        self._uses_oracle = uses_oracle

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def execute_workflow(
        self, request: str, options: WorkflowOptions | None = None
    ) -> WorkflowResult:
        """Full pipeline. Records a usage session whatever the outcome."""
        options = options or WorkflowOptions()
        session_id = self._tracker.start_session(request)
        status = WorkflowStatus.FAILED
        try:
            result = await self._run(request, options)
            status = WorkflowStatus.COMPLETED if result.success else WorkflowStatus.FAILED
            return result
        finally:
            self._tracker.end_session(session_id, status)

    async def _run(self, request: str, options: WorkflowOptions) -> WorkflowResult:
        started = time.perf_counter()
        display.request_received(request)

        # ── Step 1: Plan and validate ────────────────────────────────
        try:
            async with self._manager.catalog_guard() as connections:
                steps = await self._router.plan(request, connections)
        except RoutingError as exc:
            logger.error("Routing failed: %s", exc.message)
            display.halt(exc.message)
            return WorkflowResult(
                success=False,
                message=f"Could not plan this request: {exc.message}",
                error=exc.message,
                metadata=WorkflowMetadata(elapsed_ms=_elapsed_ms(started)),
            )

        display.plan_routed(steps)

        # ── Step 2: Execute ──────────────────────────────────────────
        context = WorkflowContext.create(request, steps)
        context.set_status(WorkflowStatus.RUNNING)
        display.execution_start(len(steps), options.parallel)
        await self._execute(context, options)

        # ── Step 3: Recover ──────────────────────────────────────────
        recovery_attempts = 0
        while not context.succeeded() and recovery_attempts < options.max_recovery_attempts:
            plan = self._failure_handler.handle_workflow_failure(context)
            if plan is None:
                break
            if plan.modified_steps is not None and plan.modified_steps == context.steps:
                logger.info("Recovery found no alternative tools; giving up")
                break
            recovery_attempts += 1
            display.recovery_applied(recovery_attempts, options.max_recovery_attempts, plan)
            start = self._apply_recovery(context, plan)
            await self._execute(context, options, start)

        success = context.succeeded()
        context.set_status(WorkflowStatus.COMPLETED if success else WorkflowStatus.FAILED)
        results = context.results
        display.execution_summary(results)

        # ── Step 4: Synthesize or summarize ──────────────────────────
        error = None
        if success:
            display.synthesis_start(self._uses_oracle)
            message = await self._synthesizer.synthesize(request, results)
        else:
            message = failure_message(self._failure_handler.failure_summary(context))
            if recovery_attempts and recovery_attempts >= options.max_recovery_attempts:
                error = WorkflowExhausted(
                    f"Recovery attempts exhausted after {recovery_attempts} attempt(s)",
                    {"recovery_attempts": recovery_attempts},
                ).message
            else:
                error = next((r.error for r in results if not r.success), None) or (
                    "Workflow did not complete all steps"
                )

        summary = context.summarize()
        tools_used = list(dict.fromkeys(r.tool for r in results if r.success))
        result = WorkflowResult(
            success=success,
            message=message,
            tools_used=tools_used,
            step_results=results,
            error=error,
            metadata=WorkflowMetadata(
                total_steps=summary.total_steps,
                successful_steps=summary.successful_steps,
                failed_steps=summary.failed_steps,
                elapsed_ms=_elapsed_ms(started),
                recovery_attempts=recovery_attempts,
                confidence=_overall_confidence(context),
            ),
        )
        display.final_result(result)
        logger.info(
            "Workflow %s: %d/%d steps succeeded, %d recovery attempt(s)",
            "completed" if success else "failed",
            summary.successful_steps,
            summary.total_steps,
            recovery_attempts,
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _execute(
        self, context: WorkflowContext, options: WorkflowOptions, start: int | None = None
    ) -> None:
        if options.parallel:
            await self._executor.execute_parallel(context, options, start)
        else:
            await self._executor.execute_sequential(
                context, options, start, recovery=options.failure_strategy
            )

    @staticmethod
    def _apply_recovery(context: WorkflowContext, plan: RecoveryPlan) -> int:
        """Mutate the context per the plan; return the index to resume from."""
        if plan.modified_steps is not None:
            context.replace_steps(plan.modified_steps)
            return 0
        restart = plan.restart_from_step or 0
        context.truncate_results(restart)
        return restart


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _overall_confidence(context: WorkflowContext) -> float:
    if not context.steps:
        return 0.0
    return sum(step.confidence for step in context.steps) / len(context.steps)
