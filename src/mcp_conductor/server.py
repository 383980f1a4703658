# server.py
# MCP server facade. Exposes the conductor itself as a tool provider over
# stdio, so any MCP client can hand it natural-language requests.
#
# Tools:
#   ai_process        : route, run and synthesize one request
#   get_info          : conductor status and per-provider details
#   tool_usage_stats  : aggregated usage tracker statistics
#   tool_usage_clear  : drop the usage history
#
# stdout carries the protocol, so the display narrative moves to stderr.
# Providers are connected and torn down inside the server lifespan, which
# keeps both in the same task.

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from mcp.server.fastmcp import FastMCP

from mcp_conductor import display
from mcp_conductor.conductor import Conductor
from mcp_conductor.config import Settings
from mcp_conductor.log import configure_logging

logger = logging.getLogger(__name__)

SERVER_NAME = "mcp-conductor"

INSTRUCTIONS = (
    "Coordinates a set of connected tool providers. Send a natural-language "
    "request to ai_process; it is planned into tool calls, executed with "
    "retries and recovery, and answered in one message."
)


class ConductorTools:
    """The tool handlers, bound to one Conductor."""

    def __init__(self, conductor: Conductor) -> None:
        self.conductor = conductor

    @asynccontextmanager
    async def lifespan(self, _server: FastMCP) -> AsyncIterator[None]:
        connected = await self.conductor.start()
        logger.info("Serving with %d connected providers", len(connected))
        try:
            yield
        finally:
            await self.conductor.close()

    async def ai_process(self, request: str) -> dict[str, Any]:
        """Process a request using AI orchestration with intelligent tool selection."""
        result = await self.conductor.process(request)
        return {
            "success": result.success,
            "message": result.message,
            "tools_used": result.tools_used,
            "error": result.error,
            "metadata": result.metadata.model_dump(mode="json"),
        }

    def get_info(self) -> dict[str, Any]:
        """Get information about the conductor and its connected providers."""
        return {
            "name": SERVER_NAME,
            "status": self.conductor.status(),
            "providers": self.conductor.manager.server_info(),
        }

    def tool_usage_stats(self) -> dict[str, Any]:
        """Get statistics about tool usage and performance."""
        return self.conductor.tracker.get_usage_stats().model_dump(mode="json")

    def tool_usage_clear(self) -> dict[str, Any]:
        """Clear tool usage tracking history."""
        self.conductor.tracker.clear_history()
        return {"ok": True, "message": "Tool usage history cleared"}


def build_server(conductor: Conductor) -> FastMCP:
    tools = ConductorTools(conductor)
    server = FastMCP(SERVER_NAME, instructions=INSTRUCTIONS, lifespan=tools.lifespan)
    for handler in (tools.ai_process, tools.get_info, tools.tool_usage_stats, tools.tool_usage_clear):
        server.add_tool(handler, name=handler.__name__, description=handler.__doc__)
    return server


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    display.use_stderr()
    # Serve even with no providers so clients can still ask get_info.
    conductor = Conductor(settings, require_providers=False)
    logger.info("Starting %s over stdio", SERVER_NAME)
    build_server(conductor).run()


if __name__ == "__main__":
    main()
