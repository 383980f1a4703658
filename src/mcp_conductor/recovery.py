# recovery.py
# Failure classification and recovery planning.
#
# Two levels:
#   - per step:   a configured strategy (stop / continue / retry / skip /
#                 fallback) decides what happens right after a step fails
#   - per run:    once a whole plan ends unsuccessfully, the failures are
#                 classified and, if recoverable, turned into a RecoveryPlan

import logging
import re
from collections import Counter

from mcp_conductor.context import WorkflowContext
from mcp_conductor.errors import ToolNotFound
from mcp_conductor.models import (
    FailureAnalysis,
    FailureStrategy,
    FailureSummary,
    FailureType,
    RecoveryOptions,
    RecoveryPlan,
    RoutingDecision,
    StepFailureDecision,
    StepRecoveryAction,
    StepResult,
)
from mcp_conductor.naming import decode_tool_name, encode_tool_name

logger = logging.getLogger(__name__)

RETRYABLE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"timeout",
        r"timed out",
        r"connection",
        r"network",
        r"temporar",
        r"rate limit",
        r"too many requests",
        r"\b50[0234]\b",
    )
]

CONFIGURATION_PATTERN = re.compile(r"configuration|auth|permission|forbidden|credential", re.IGNORECASE)

# Full tool name -> stand-in tool.
FALLBACK_TOOLS: dict[str, str] = {
    "puppeteer_puppeteer_navigate": "playwright_browser_navigate",
    "playwright_browser_navigate": "puppeteer_puppeteer_navigate",
    "puppeteer_puppeteer_screenshot": "playwright_browser_take_screenshot",
    "playwright_browser_take_screenshot": "puppeteer_puppeteer_screenshot",
    "puppeteer_puppeteer_click": "playwright_browser_click",
    "playwright_browser_click": "puppeteer_puppeteer_click",
    "fetch_fetch": "duckduckgo-search_fetch-url",
    "duckduckgo-search_fetch-url": "fetch_fetch",
}

# Provider -> stand-in provider, tried with the same local tool name when a
# tool has no explicit entry above.
FALLBACK_PROVIDERS: dict[str, str] = {
    "puppeteer": "playwright",
    "playwright": "puppeteer",
}

FALLBACK_CONFIDENCE_FACTOR = 0.8


def is_retryable_error(error: str | None) -> bool:
    if not error:
        return False
    return any(pattern.search(error) for pattern in RETRYABLE_PATTERNS)


def find_fallback_tool(tool: str) -> str | None:
    if tool in FALLBACK_TOOLS:
        return FALLBACK_TOOLS[tool]
    try:
        key = decode_tool_name(tool)
    except ToolNotFound:
        return None
    provider = FALLBACK_PROVIDERS.get(key.provider_id)
    return encode_tool_name(provider, key.local_name) if provider else None


class FailureHandler:
    """
    Decides what to do about failures.

    available_tools, when given, limits fallbacks to tools that exist in the
    live catalog; a callable is used so the check sees the current catalog.
    """

    def __init__(self, available_tools=None) -> None:
        self._available_tools = available_tools

    # ------------------------------------------------------------------
    # Step level
    # ------------------------------------------------------------------

    def handle_step_failure(
        self,
        failed: StepResult,
        step: RoutingDecision,
        options: RecoveryOptions,
    ) -> StepFailureDecision:
        logger.warning(
            "Handling failure of %s with strategy %s: %s",
            failed.tool,
            options.strategy.value,
            failed.error,
        )
        strategy = options.strategy

        if strategy == FailureStrategy.STOP:
            return StepFailureDecision(should_continue=False)

        if strategy == FailureStrategy.CONTINUE:
            return StepFailureDecision(should_continue=True)

        if strategy == FailureStrategy.RETRY:
            if self.should_retry(failed, options):
                return StepFailureDecision(should_continue=True, action=StepRecoveryAction.RETRY)
            return StepFailureDecision(should_continue=options.continue_on_failure)

        if strategy == FailureStrategy.SKIP:
            logger.info("Skipping failed step %s", failed.tool)
            return StepFailureDecision(should_continue=True, action=StepRecoveryAction.SKIP)

        if strategy == FailureStrategy.FALLBACK:
            fallback_tool = options.fallback_tool or find_fallback_tool(step.selected_tool)
            if fallback_tool and self._is_available(fallback_tool):
                fallback = self._substitute(step, fallback_tool, options.fallback_parameters)
                return StepFailureDecision(
                    should_continue=True,
                    action=StepRecoveryAction.FALLBACK,
                    fallback_step=fallback,
                )
            return StepFailureDecision(should_continue=options.continue_on_failure)

        return StepFailureDecision(should_continue=False)

    def should_retry(self, failed: StepResult, options: RecoveryOptions) -> bool:
        return failed.metadata.retry_count < options.max_retries and is_retryable_error(failed.error)

    # ------------------------------------------------------------------
    # Workflow level
    # ------------------------------------------------------------------

    def analyze_failures(self, context: WorkflowContext) -> FailureAnalysis:
        results = context.results
        failed = [r for r in results if not r.success]
        failures_per_tool = Counter(r.tool for r in failed)
        affected = list(failures_per_tool)
        errors = [r.error or "Unknown error" for r in failed]
        planned_tools = {step.selected_tool for step in context.steps}
        succeeded_tools = {r.tool for r in results if r.success}

        # Systematic: one tool is behind every failure, failed at least twice,
        # and some other tool still worked.
        single_tool_repeated = len(failures_per_tool) == 1 and len(failed) >= 2
        if single_tool_repeated and succeeded_tools - set(affected):
            failure_type = FailureType.SYSTEMATIC
        elif any(is_retryable_error(error) for error in errors):
            failure_type = FailureType.TRANSIENT
        elif any(CONFIGURATION_PATTERN.search(error) for error in errors):
            failure_type = FailureType.CONFIGURATION
        else:
            failure_type = FailureType.UNKNOWN

        recoverable = failure_type == FailureType.TRANSIENT or (
            failure_type == FailureType.SYSTEMATIC and set(affected) < planned_tools
        )

        return FailureAnalysis(
            failure_type=failure_type,
            recoverable=recoverable,
            affected_tools=affected,
            common_errors=_common_errors(errors),
        )

    def generate_recovery_plan(
        self, context: WorkflowContext, analysis: FailureAnalysis
    ) -> RecoveryPlan | None:
        if analysis.failure_type == FailureType.TRANSIENT:
            first_failure = next(
                (i for i, r in enumerate(context.results) if not r.success),
                len(context.results),
            )
            return RecoveryPlan(restart_from_step=first_failure)

        if analysis.failure_type == FailureType.SYSTEMATIC:
            modified = [
                self.find_alternative(step) if step.selected_tool in analysis.affected_tools else step
                for step in context.steps
            ]
            return RecoveryPlan(modified_steps=modified)

        return None

    def handle_workflow_failure(self, context: WorkflowContext) -> RecoveryPlan | None:
        """Classify the failed run; return a plan only when it is recoverable."""
        analysis = self.analyze_failures(context)
        summary = context.summarize()
        logger.info(
            "Workflow failure analysis: %s (recoverable=%s, affected=%s, %d/%d steps done)",
            analysis.failure_type.value,
            analysis.recoverable,
            analysis.affected_tools,
            summary.completed_steps,
            summary.total_steps,
        )
        if not analysis.recoverable:
            return None
        return self.generate_recovery_plan(context, analysis)

    def find_alternative(self, step: RoutingDecision) -> RoutingDecision:
        fallback_tool = find_fallback_tool(step.selected_tool)
        if not fallback_tool or not self._is_available(fallback_tool):
            return step
        return self._substitute(step, fallback_tool, None)

    def failure_summary(self, context: WorkflowContext) -> FailureSummary:
        results = context.results
        failed = [r for r in results if not r.success]
        succeeded = [r for r in results if r.success]
        return FailureSummary(
            total_steps=len(context.steps),
            completed_steps=len(results),
            failed_steps=len(failed),
            successful_steps=len(succeeded),
            failure_reasons=[r.error or "Unknown error" for r in failed],
            partial_results=[r.result for r in succeeded],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_available(self, tool: str) -> bool:
        if self._available_tools is None:
            return True
        return tool in self._available_tools()

    @staticmethod
    def _substitute(
        step: RoutingDecision, fallback_tool: str, parameters: dict | None
    ) -> RoutingDecision:
        try:
            provider_id = decode_tool_name(fallback_tool).provider_id
        except ToolNotFound:
            provider_id = step.provider_id
        return step.model_copy(
            update={
                "selected_tool": fallback_tool,
                "provider_id": provider_id,
                "confidence": step.confidence * FALLBACK_CONFIDENCE_FACTOR,
                "reasoning": f"Fallback for {step.selected_tool}: {step.reasoning}",
                "parameters": dict(parameters) if parameters is not None else dict(step.parameters),
            }
        )


def _common_errors(errors: list[str]) -> list[str]:
    counts = Counter(error.strip().lower() for error in errors)
    return [error for error, count in counts.items() if count > 1]
