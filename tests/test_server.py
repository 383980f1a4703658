import asyncio

from helpers import filesystem_channel, make_connector, provider
from mcp_conductor.conductor import Conductor
from mcp_conductor.config import Settings
from mcp_conductor.server import ConductorTools, build_server


def _tools(channels):
    conductor = Conductor(
        Settings(api_key=None, inter_step_delay_ms=0),
        providers=[provider(name) for name in channels],
        connector=make_connector(channels),
        require_providers=False,
    )
    return ConductorTools(conductor)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_server_exposes_conductor_tools():
    server = build_server(_tools({}).conductor)
    listed = asyncio.run(server.list_tools())
    assert {tool.name for tool in listed} == {
        "ai_process",
        "get_info",
        "tool_usage_stats",
        "tool_usage_clear",
    }
    ai_process = next(tool for tool in listed if tool.name == "ai_process")
    assert "request" in ai_process.inputSchema["properties"]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def test_lifespan_connects_and_closes_providers():
    channel = filesystem_channel()
    tools = _tools({"filesystem": channel})

    async def scenario():
        async with tools.lifespan(None):
            return tools.get_info()

    info = asyncio.run(scenario())

    assert info["name"] == "mcp-conductor"
    assert info["status"]["connected_providers"] == 1
    assert info["providers"]["filesystem"]["tool_count"] == 3
    assert channel.closed


def test_ai_process_reports_result_and_usage():
    tools = _tools({"filesystem": filesystem_channel()})

    async def scenario():
        async with tools.lifespan(None):
            return await tools.ai_process("list the files here"), tools.tool_usage_stats()

    answer, stats = asyncio.run(scenario())

    assert answer["success"] is True
    assert answer["tools_used"] == ["filesystem_list_directory"]
    assert answer["error"] is None
    assert answer["metadata"]["total_steps"] == 1
    assert stats["total_executions"] == 1
    assert stats["recent_sessions"][0]["request"] == "list the files here"

    assert tools.tool_usage_clear()["ok"] is True
    assert tools.tool_usage_stats()["total_executions"] == 0
