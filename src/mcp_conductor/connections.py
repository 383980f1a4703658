# connections.py
# Provider process lifecycle and the namespaced tool catalog.
#
# Each enabled provider is launched over stdio through the MCP client SDK,
# handshaken, and asked for its tools. A provider that fails any of that is
# logged and left out; partial connectivity is the normal steady state.
#
# The live catalog only changes inside initialize() and disconnect(), both of
# which hold the catalog lock exclusively. Routing reads the catalog under
# catalog_guard(), which shuts those two out for its duration. Provider calls
# take no lock: each channel serializes or pipelines its own traffic.
#
# stdio channels are opened inside anyio task groups, so initialize() and
# disconnect() must run in the same asyncio task.

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

import jsonschema
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from mcp_conductor.config import (
    DEFAULT_CONNECT_TIMEOUT_S,
    ProviderConfig,
    provider_environment,
    validate_provider_config,
)
from mcp_conductor.errors import (
    ProviderConnectionError,
    ToolArgumentsError,
    ToolExecutionError,
    ToolNotFound,
)
from mcp_conductor.models import ProviderTool, ToolDescriptor
from mcp_conductor.naming import decode_tool_name
from mcp_conductor.tracker import UsageTracker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class ProviderChannel(Protocol):
    """The only contract the conductor needs from a provider."""

    async def list_tools(self) -> list[ProviderTool]: ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any: ...


Connector = Callable[[ProviderConfig, AsyncExitStack], Awaitable[ProviderChannel]]


def _content_text(result: Any) -> str:
    parts = []
    for item in getattr(result, "content", None) or []:
        text = getattr(item, "text", None)
        parts.append(text if text is not None else str(item))
    return "\n".join(parts)


class StdioChannel:
    """ProviderChannel over an initialized MCP ClientSession."""

    def __init__(self, session: ClientSession, has_tools: bool = True) -> None:
        self._session = session
        self._has_tools = has_tools

    async def list_tools(self) -> list[ProviderTool]:
        if not self._has_tools:
            return []
        response = await self._session.list_tools()
        return [
            ProviderTool(
                name=tool.name,
                description=tool.description or "",
                parameter_schema=tool.inputSchema or {},
            )
            for tool in response.tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        result = await self._session.call_tool(name, arguments)
        if getattr(result, "isError", False):
            raise ToolExecutionError(
                _content_text(result) or f"Tool '{name}' returned an error",
                {"tool": name},
            )
        return result


async def connect_stdio(config: ProviderConfig, stack: AsyncExitStack) -> StdioChannel:
    """Launch the provider process and complete the capability handshake."""
    params = StdioServerParameters(
        command=config.command,
        args=list(config.args),
        env=provider_environment(config),
    )
    read, write = await stack.enter_async_context(stdio_client(params))
    session = await stack.enter_async_context(ClientSession(read, write))
    init = await session.initialize()
    has_tools = getattr(init.capabilities, "tools", None) is not None
    return StdioChannel(session, has_tools=has_tools)


# ---------------------------------------------------------------------------
# Connection registry
# ---------------------------------------------------------------------------


@dataclass
class ProviderConnection:
    provider_id: str
    config: ProviderConfig
    channel: ProviderChannel
    stack: AsyncExitStack
    tools: list[ProviderTool] = field(default_factory=list)
    connected: bool = False

    def find_tool(self, local_name: str) -> ProviderTool | None:
        return next((tool for tool in self.tools if tool.name == local_name), None)


class ConnectionManager:
    """
    Owns every provider connection and routes calls by full tool name.

    Example:
        manager = ConnectionManager(tracker)
        await manager.initialize(get_enabled_providers())
        result = await manager.call_tool("filesystem_list_directory", {"path": "."})
        await manager.disconnect()
    """

    def __init__(
        self,
        tracker: UsageTracker,
        connector: Connector = connect_stdio,
        connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S,
    ) -> None:
        self._tracker = tracker
        self._connector = connector
        self._connect_timeout_s = connect_timeout_s
        self._connections: dict[str, ProviderConnection] = {}
        self._catalog_lock = asyncio.Lock()
        self._catalog_idle = asyncio.Condition(self._catalog_lock)
        self._catalog_readers = 0

    # ------------------------------------------------------------------
    # Catalog guard
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def catalog_guard(self) -> AsyncIterator[dict[str, ProviderConnection]]:
        """
        Hold the catalog steady while a plan is built against it.

        Yields a snapshot of the registry. Any number of guards may be held
        at once; initialize() and disconnect() wait for all of them to exit,
        and new guards wait while either of those is running.
        """
        async with self._catalog_lock:
            self._catalog_readers += 1
        try:
            yield self.connections()
        finally:
            async with self._catalog_lock:
                self._catalog_readers -= 1
                self._catalog_idle.notify_all()

    @asynccontextmanager
    async def _catalog_write(self) -> AsyncIterator[None]:
        async with self._catalog_lock:
            await self._catalog_idle.wait_for(lambda: self._catalog_readers == 0)
            yield

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, configs: list[ProviderConfig]) -> list[str]:
        """
        Connect every enabled provider. Returns the ids that connected.

        One provider failing never aborts the rest.
        """
        async with self._catalog_write():
            for config in configs:
                if not config.enabled:
                    continue
                problems = validate_provider_config(config)
                if problems:
                    logger.warning("Skipping provider %s: %s", config.name, "; ".join(problems))
                    continue
                try:
                    connection = await self._connect(config)
                except ProviderConnectionError as exc:
                    logger.error("%s", exc.message)
                    continue
                self._connections[config.name] = connection
                logger.info(
                    "Connected to provider %s (%d tools)", config.name, len(connection.tools)
                )

            connected = self.connected_provider_ids()
        logger.info("Conductor ready with %d connected providers", len(connected))
        return connected

    async def _connect(self, config: ProviderConfig) -> ProviderConnection:
        if config.name in self._connections:
            raise ProviderConnectionError(config.name, RuntimeError("already connected"))

        stack = AsyncExitStack()
        try:
            async with asyncio.timeout(self._connect_timeout_s):
                channel = await self._connector(config, stack)
                tools = await channel.list_tools()
        except Exception as exc:
            await self._close_stack(config.name, stack)
            raise ProviderConnectionError(config.name, exc) from exc

        return ProviderConnection(
            provider_id=config.name,
            config=config,
            channel=channel,
            stack=stack,
            tools=tools,
            connected=True,
        )

    async def disconnect(self) -> None:
        """Close every channel and clear the registry. Idempotent."""
        async with self._catalog_write():
            for provider_id, connection in list(self._connections.items()):
                connection.connected = False
                await self._close_stack(provider_id, connection.stack)
            self._connections.clear()

    @staticmethod
    async def _close_stack(provider_id: str, stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception:
            logger.exception("Error closing provider %s", provider_id)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def connections(self) -> dict[str, ProviderConnection]:
        """Snapshot of the registry. Mutating it does not affect the manager."""
        return dict(self._connections)

    def connected_provider_ids(self) -> list[str]:
        return [pid for pid, conn in self._connections.items() if conn.connected]

    def get_all_tools(self) -> list[ToolDescriptor]:
        """Every connected provider's tools, namespaced by provider id."""
        tools: list[ToolDescriptor] = []
        for provider_id, connection in self._connections.items():
            if not connection.connected:
                continue
            for tool in connection.tools:
                tools.append(
                    ToolDescriptor(
                        provider_id=provider_id,
                        local_name=tool.name,
                        description=f"[{provider_id}] {tool.description}",
                        parameter_schema=tool.parameter_schema,
                    )
                )
        return tools

    def server_info(self) -> dict[str, dict[str, Any]]:
        return {
            provider_id: {
                "connected": connection.connected,
                "description": connection.config.description,
                "tool_count": len(connection.tools),
                "tools": [{"name": t.name, "description": t.description} for t in connection.tools],
            }
            for provider_id, connection in self._connections.items()
        }

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def resolve(self, full_name: str) -> tuple[ProviderConnection, ProviderTool]:
        """Map a full tool name to its live connection and tool, or raise ToolNotFound."""
        key = decode_tool_name(full_name)
        connection = self._connections.get(key.provider_id)
        if connection is None or not connection.connected:
            raise ToolNotFound(full_name, f"Provider '{key.provider_id}' is not connected")
        tool = connection.find_tool(key.local_name)
        if tool is None:
            raise ToolNotFound(
                full_name, f"Tool '{key.local_name}' not found on provider '{key.provider_id}'"
            )
        return connection, tool

    async def call_tool(
        self,
        full_name: str,
        args: dict[str, Any],
        tracking_id: str | None = None,
    ) -> Any:
        """
        Invoke a tool by full name.

        When tracking_id is given the caller owns that execution record;
        otherwise the call is recorded here. Provider errors are recorded
        and then re-raised.
        """
        owns_record = tracking_id is None
        if owns_record:
            tracking_id = self._tracker.start_execution(full_name, args)

        try:
            connection, tool = self.resolve(full_name)
            _check_arguments(full_name, tool, args)
            result = await connection.channel.call_tool(tool.name, args)
        except Exception as exc:
            if owns_record:
                self._tracker.end_execution(tracking_id, False, error=str(exc))
            raise

        if owns_record:
            self._tracker.end_execution(tracking_id, True, result)
        return result


def _check_arguments(full_name: str, tool: ProviderTool, args: dict[str, Any]) -> None:
    """Validate args against the tool's declared JSON schema before dispatch."""
    if not tool.parameter_schema:
        return
    try:
        jsonschema.validate(args, tool.parameter_schema)
    except jsonschema.ValidationError as exc:
        path = ".".join(str(p) for p in exc.absolute_path) or "<root>"
        raise ToolArgumentsError(
            f"Invalid arguments for {full_name} at {path}: {exc.message}",
            {"tool": full_name},
        ) from exc
    except jsonschema.SchemaError as exc:
        logger.warning("Tool %s declares an invalid schema, skipping validation: %s", full_name, exc.message)
