import asyncio
from unittest.mock import AsyncMock

import pytest

from helpers import StubChannel, filesystem_channel, make_connector, provider
from mcp_conductor.conductor import Conductor
from mcp_conductor.config import Settings
from mcp_conductor.errors import ConfigurationError, OracleError, ToolExecutionError
from mcp_conductor.models import RoutingDecision, WorkflowOptions, WorkflowStatus

SETTINGS = Settings(api_key=None, inter_step_delay_ms=0)


def _step(tool, **parameters):
    return RoutingDecision(
        selected_tool=tool, provider_id=tool.split("_")[0], confidence=0.8, parameters=parameters
    )


def _conductor(channels, oracle=None, failing=(), require_providers=True, on_close=None):
    return Conductor(
        SETTINGS,
        providers=[provider(name) for name in channels],
        connector=make_connector(channels, failing, on_close),
        oracle=oracle,
        require_providers=require_providers,
    )


def _planning_oracle(steps):
    oracle = AsyncMock()
    oracle.plan.return_value = steps
    oracle.synthesize.return_value = "All done."
    oracle.extract_variables.return_value = {}
    return oracle


def _flaky(failures, message="connection reset"):
    calls = {"n": 0}

    def handler(arguments):
        calls["n"] += 1
        if calls["n"] <= failures:
            raise ToolExecutionError(message)
        return f"ok {calls['n']}"

    return handler


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


def test_list_files_routes_by_keyword_without_oracle():
    async def scenario():
        async with _conductor({"filesystem": filesystem_channel()}) as conductor:
            result = await conductor.process("list the files here")
            return conductor, result

    conductor, result = asyncio.run(scenario())

    assert result.success
    assert result.tools_used == ["filesystem_list_directory"]
    assert result.metadata.total_steps == 1
    assert result.metadata.recovery_attempts == 0
    assert "filesystem_list_directory" in result.message

    (session,) = conductor.tracker.get_usage_stats().recent_sessions
    assert session.status == WorkflowStatus.COMPLETED
    assert [e.tool for e in session.executions] == ["filesystem_list_directory"]


def test_zero_valid_steps_is_a_structured_failure():
    async def scenario():
        async with _conductor({"filesystem": filesystem_channel()}) as conductor:
            result = await conductor.process("bake a cake")
            return conductor, result

    conductor, result = asyncio.run(scenario())

    assert not result.success
    assert result.step_results == []
    assert "No valid tools" in result.error
    (session,) = conductor.tracker.get_usage_stats().recent_sessions
    assert session.status == WorkflowStatus.FAILED


def test_oracle_plan_runs_and_synthesizes():
    oracle = _planning_oracle([_step("p_a", x="1"), _step("p_b", y="{{step_0_result}}")])

    async def scenario():
        channel = StubChannel([("a", "A"), ("b", "B")], {"a": lambda args: "alpha"})
        async with _conductor({"p": channel}, oracle=oracle) as conductor:
            return channel, await conductor.process("do a then b")

    channel, result = asyncio.run(scenario())

    assert result.success
    assert result.message == "All done."
    assert result.tools_used == ["p_a", "p_b"]
    assert result.metadata.confidence == pytest.approx(0.8)
    assert channel.calls == [("a", {"x": "1"}), ("b", {"y": "alpha"})]
    assert oracle.extract_variables.await_count == 2


def test_synthesis_failure_falls_back_to_summary():
    oracle = _planning_oracle([_step("p_a")])
    oracle.synthesize.side_effect = OracleError("model down")

    async def scenario():
        async with _conductor({"p": StubChannel([("a", "A")])}, oracle=oracle) as conductor:
            return await conductor.process("run a")

    result = asyncio.run(scenario())

    assert result.success
    assert result.message.startswith('Completed 1/1 steps for: "run a"')


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


def test_transient_failure_resumes_from_failed_step():
    oracle = _planning_oracle([_step("p_a"), _step("p_b"), _step("p_c")])

    async def scenario():
        channel = StubChannel([("a", "A"), ("b", "B"), ("c", "C")], {"b": _flaky(1)})
        async with _conductor({"p": channel}, oracle=oracle) as conductor:
            return channel, await conductor.process("a, b, c")

    channel, result = asyncio.run(scenario())

    assert result.success
    assert result.metadata.recovery_attempts == 1
    assert [r.tool for r in result.step_results] == ["p_a", "p_b", "p_c"]
    assert [name for name, _ in channel.calls] == ["a", "b", "b", "c"]


def test_exhausted_recovery_reports_partial_results():
    oracle = _planning_oracle([_step("p_a"), _step("p_b")])

    async def scenario():
        channel = StubChannel([("a", "A"), ("b", "B")], {"b": _flaky(99, "503 from upstream")})
        async with _conductor({"p": channel}, oracle=oracle) as conductor:
            options = conductor.default_options().model_copy(update={"max_recovery_attempts": 2})
            return channel, await conductor.process("a then b", options)

    channel, result = asyncio.run(scenario())

    assert not result.success
    assert result.metadata.recovery_attempts == 2
    assert "Recovery attempts exhausted" in result.error
    assert result.message.startswith("Workflow partially completed with 1/2 successful steps.")
    assert [name for name, _ in channel.calls] == ["a", "b", "b", "b"]
    oracle.synthesize.assert_not_awaited()


def test_unrecoverable_failure_stops_without_recovery():
    oracle = _planning_oracle([_step("p_a")])

    def denied(arguments):
        raise ToolExecutionError("Permission denied")

    async def scenario():
        channel = StubChannel([("a", "A")], {"a": denied})
        async with _conductor({"p": channel}, oracle=oracle) as conductor:
            return channel, await conductor.process("a")

    channel, result = asyncio.run(scenario())

    assert not result.success
    assert result.metadata.recovery_attempts == 0
    assert result.error == "Permission denied"
    assert len(channel.calls) == 1


def _browser_plan():
    return [
        _step("puppeteer_puppeteer_navigate", url="https://a.example"),
        _step("puppeteer_puppeteer_navigate", url="https://b.example"),
        _step("filesystem_write_file", path="out.txt"),
    ]


def _crashing_puppeteer():
    def crash(arguments):
        raise ToolExecutionError("browser crashed")

    return StubChannel([("puppeteer_navigate", "Navigate")], {"puppeteer_navigate": crash})


def _continue_options(conductor):
    return conductor.default_options().model_copy(update={"continue_on_failure": True})


def test_systematic_failure_reruns_plan_with_live_fallback():
    oracle = _planning_oracle(_browser_plan())

    async def scenario():
        channels = {
            "puppeteer": _crashing_puppeteer(),
            "playwright": StubChannel([("browser_navigate", "Navigate")]),
            "filesystem": filesystem_channel(),
        }
        async with _conductor(channels, oracle=oracle) as conductor:
            result = await conductor.process("open both pages", _continue_options(conductor))
            return channels, result

    channels, result = asyncio.run(scenario())

    assert result.success
    assert result.metadata.recovery_attempts == 1
    assert result.tools_used == ["playwright_browser_navigate", "filesystem_write_file"]
    assert [r.tool for r in result.step_results] == [
        "playwright_browser_navigate",
        "playwright_browser_navigate",
        "filesystem_write_file",
    ]
    assert len(channels["puppeteer"].calls) == 2
    assert channels["playwright"].calls == [
        ("browser_navigate", {"url": "https://a.example"}),
        ("browser_navigate", {"url": "https://b.example"}),
    ]
    assert [name for name, _ in channels["filesystem"].calls] == ["write_file", "write_file"]
    # Substituted steps carry 0.8 x the planned 0.8 confidence.
    assert result.metadata.confidence == pytest.approx((0.64 + 0.64 + 0.8) / 3)


def test_systematic_failure_without_live_fallback_gives_up():
    oracle = _planning_oracle(_browser_plan())

    async def scenario():
        channels = {"puppeteer": _crashing_puppeteer(), "filesystem": filesystem_channel()}
        async with _conductor(channels, oracle=oracle) as conductor:
            return await conductor.process("open both pages", _continue_options(conductor))

    result = asyncio.run(scenario())

    assert not result.success
    assert result.metadata.recovery_attempts == 0
    assert result.error == "browser crashed"
    assert result.tools_used == ["filesystem_write_file"]
    assert result.message.startswith("Workflow partially completed with 1/3 successful steps.")
    oracle.synthesize.assert_not_awaited()


def test_request_during_shutdown_waits_and_sees_empty_catalog():
    async def scenario():
        closing = asyncio.Event()
        release = asyncio.Event()

        async def on_close(name):
            closing.set()
            await release.wait()

        conductor = _conductor({"filesystem": filesystem_channel()}, on_close=on_close)
        await conductor.start()

        shutdown = asyncio.create_task(conductor.close())
        await closing.wait()
        request = asyncio.create_task(conductor.process("list the files here"))
        await asyncio.sleep(0.01)
        assert not request.done()

        release.set()
        await shutdown
        return await request

    result = asyncio.run(scenario())
    assert not result.success
    assert "No tools available" in result.error


def test_parallel_workflow_keeps_step_order():
    oracle = _planning_oracle([_step("p_a"), _step("p_b"), _step("p_c")])

    async def slow(arguments):
        await asyncio.sleep(0.02)
        return "slow"

    async def scenario():
        channel = StubChannel([("a", "A"), ("b", "B"), ("c", "C")], {"a": slow})
        async with _conductor({"p": channel}, oracle=oracle) as conductor:
            return await conductor.process("all three", WorkflowOptions(parallel=True, concurrency=2))

    result = asyncio.run(scenario())

    assert result.success
    assert [r.tool for r in result.step_results] == ["p_a", "p_b", "p_c"]


# ---------------------------------------------------------------------------
# Conductor lifecycle
# ---------------------------------------------------------------------------


def test_start_without_any_provider_raises():
    async def scenario():
        await _conductor({"p": StubChannel([])}, failing={"p"}).start()

    with pytest.raises(ConfigurationError):
        asyncio.run(scenario())


def test_start_without_providers_allowed_when_not_required():
    async def scenario():
        conductor = _conductor({"p": StubChannel([])}, failing={"p"}, require_providers=False)
        connected = await conductor.start()
        result = await conductor.process("anything")
        await conductor.close()
        return connected, result

    connected, result = asyncio.run(scenario())
    assert connected == []
    assert not result.success
    assert "No tools available" in result.error


def test_status_report():
    async def scenario():
        async with _conductor({"filesystem": filesystem_channel()}) as conductor:
            return conductor.status()

    status = asyncio.run(scenario())
    assert status["initialized"] is True
    assert status["oracle_available"] is False
    assert status["connected_providers"] == 1
    assert "file_operations" in status["capabilities"]
