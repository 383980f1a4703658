from mcp_conductor.context import WorkflowContext
from mcp_conductor.models import RoutingDecision, StepResult, WorkflowStatus


def _step(tool):
    return RoutingDecision(selected_tool=tool, provider_id=tool.split("_")[0], confidence=0.9)


def _result(index, tool, success=True, result=None):
    return StepResult(
        step_index=index,
        tool=tool,
        success=success,
        result=result,
        error=None if success else "failed",
    )


def test_create_starts_pending():
    context = WorkflowContext.create("req", [_step("a_x")])
    assert context.status == WorkflowStatus.PENDING
    assert context.results == []
    assert not context.is_complete()


def test_results_property_is_read_only_copy():
    context = WorkflowContext.create("req", [_step("a_x")])
    context.results.append(_result(0, "a_x"))
    assert context.results == []


def test_completion_and_failure_flags():
    context = WorkflowContext.create("req", [_step("a_x"), _step("b_y")])
    context.append_result(_result(0, "a_x"))
    assert not context.is_complete()
    context.append_result(_result(1, "b_y", success=False))
    assert context.is_complete()
    assert context.has_failed()
    assert not context.succeeded()


def test_failed_status_counts_as_failure():
    context = WorkflowContext.create("req", [])
    context.set_status(WorkflowStatus.FAILED)
    assert context.has_failed()


def test_summarize_counts():
    context = WorkflowContext.create("req", [_step("a_x"), _step("b_y"), _step("c_z")])
    context.append_result(_result(0, "a_x"))
    context.append_result(_result(1, "b_y", success=False))
    summary = context.summarize()
    assert (summary.total_steps, summary.completed_steps) == (3, 2)
    assert (summary.successful_steps, summary.failed_steps) == (1, 1)
    assert summary.elapsed_ms >= 0


def test_prior_step_outputs_aliases_and_variable_precedence():
    context = WorkflowContext.create("req", [_step("a_x"), _step("b_y"), _step("c_z")])
    context.append_result(_result(0, "a_x", result="first"))
    context.append_result(_result(1, "b_y", success=False))
    context.set_variable("a_x_result", "from variables")

    outputs = context.prior_step_outputs()

    assert outputs["step_0_result"] == "first"
    assert outputs["a_x_result"] == "from variables"
    assert "step_1_result" not in outputs


def test_prior_step_outputs_respects_upto_index():
    context = WorkflowContext.create("req", [_step("a_x"), _step("b_y")])
    context.append_result(_result(0, "a_x", result="first"))
    context.append_result(_result(1, "b_y", result="second"))
    assert "step_1_result" not in context.prior_step_outputs(1)


def test_truncate_and_replace_steps():
    context = WorkflowContext.create("req", [_step("a_x"), _step("b_y")])
    context.append_result(_result(0, "a_x"))
    context.append_result(_result(1, "b_y"))
    context.truncate_results(1)
    assert [r.tool for r in context.results] == ["a_x"]

    context.replace_steps([_step("c_z")])
    assert context.results == []
    assert [s.selected_tool for s in context.steps] == ["c_z"]
