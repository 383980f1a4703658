# synthesis.py
# Turning step results into the final message.
#
# The success path may use the Oracle; the failure path never does.

import logging
from typing import Protocol

from mcp_conductor.content import to_text
from mcp_conductor.errors import OracleError
from mcp_conductor.models import FailureSummary, StepResult

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 500


class Synthesizer(Protocol):
    async def synthesize(self, request: str, results: list[StepResult]) -> str: ...


class SummarySynthesizer:
    """Deterministic synthesis: one block per step with a text preview."""

    async def synthesize(self, request: str, results: list[StepResult]) -> str:
        return summarize_results(request, results)


class OracleSynthesizer:
    """Oracle-written answer, with SummarySynthesizer output when the Oracle fails."""

    def __init__(self, oracle, fallback: Synthesizer | None = None) -> None:
        self._oracle = oracle
        self._fallback = fallback or SummarySynthesizer()

    async def synthesize(self, request: str, results: list[StepResult]) -> str:
        try:
            return await self._oracle.synthesize(request, results)
        except OracleError as exc:
            logger.warning("Oracle synthesis failed, using summary: %s", exc)
            return await self._fallback.synthesize(request, results)


def summarize_results(request: str, results: list[StepResult]) -> str:
    succeeded = sum(1 for r in results if r.success)
    lines = [f'Completed {succeeded}/{len(results)} steps for: "{request}"']
    for result in results:
        if result.success:
            preview = to_text(result.result)
            if len(preview) > _PREVIEW_CHARS:
                preview = preview[:_PREVIEW_CHARS] + "…"
            lines.append(f"\n[{result.step_index + 1}] {result.tool}\n{preview}")
        else:
            lines.append(f"\n[{result.step_index + 1}] {result.tool} failed: {result.error}")
    return "\n".join(lines)


def failure_message(summary: FailureSummary) -> str:
    reasons = ", ".join(summary.failure_reasons) or "unknown error"
    message = (
        f"Workflow partially completed with {summary.successful_steps}/{summary.total_steps} "
        f"successful steps.\n\nFailures: {reasons}"
    )
    if summary.partial_results:
        message += "\n\nPartial results available from successful steps."
    return message
