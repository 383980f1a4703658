# context.py
# Mutable record of one in-flight workflow run. Pure data lifecycle, no I/O.
#
# A context belongs to exactly one engine invocation. Results are an
# append-only log; the single exception is truncate_results(), used by
# recovery when a run restarts from a failed step.

import time
from typing import Any

from mcp_conductor.models import (
    ContextSummary,
    RoutingDecision,
    StepResult,
    WorkflowStatus,
)


def _now_ms() -> float:
    return time.time() * 1000


class WorkflowContext:
    def __init__(self, request: str, steps: list[RoutingDecision]) -> None:
        self.original_request = request
        self.steps: list[RoutingDecision] = list(steps)
        self._results: list[StepResult] = []
        self.variables: dict[str, Any] = {}
        self.start_time = _now_ms()
        self.status = WorkflowStatus.PENDING

    @classmethod
    def create(cls, request: str, steps: list[RoutingDecision]) -> "WorkflowContext":
        return cls(request, steps)

    @property
    def results(self) -> list[StepResult]:
        """Read-only copy; use append_result() to add."""
        return list(self._results)

    def set_status(self, status: WorkflowStatus) -> None:
        self.status = status

    def append_result(self, result: StepResult) -> None:
        self._results.append(result)

    def truncate_results(self, length: int) -> None:
        del self._results[max(length, 0):]

    def replace_steps(self, steps: list[RoutingDecision]) -> None:
        """Swap in a modified plan and start it from scratch."""
        self.steps = list(steps)
        self._results.clear()

    def set_variable(self, key: str, value: Any) -> None:
        self.variables[key] = value

    def get_variable(self, key: str, default: Any = None) -> Any:
        return self.variables.get(key, default)

    def is_complete(self) -> bool:
        return len(self._results) >= len(self.steps)

    def has_failed(self) -> bool:
        return self.status == WorkflowStatus.FAILED or any(not r.success for r in self._results)

    def succeeded(self) -> bool:
        return self.is_complete() and not self.has_failed()

    def summarize(self) -> ContextSummary:
        successful = sum(1 for r in self._results if r.success)
        return ContextSummary(
            total_steps=len(self.steps),
            completed_steps=len(self._results),
            successful_steps=successful,
            failed_steps=len(self._results) - successful,
            elapsed_ms=int(_now_ms() - self.start_time),
            status=self.status,
        )

    def prior_step_outputs(self, upto_index: int | None = None) -> dict[str, Any]:
        """
        Outputs of earlier successful steps, exposed as step_<i>_result and
        <tool>_result, merged under the variable map (variables win).
        """
        results = self._results if upto_index is None else self._results[:upto_index]
        outputs: dict[str, Any] = {}
        for result in results:
            if result.success and result.result is not None:
                outputs[f"step_{result.step_index}_result"] = result.result
                outputs[f"{result.tool}_result"] = result.result
        return {**outputs, **self.variables}
