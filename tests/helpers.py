# helpers.py
# In-memory providers shared by the test modules. No processes, no network.

import inspect
from contextlib import AsyncExitStack

from mcp_conductor.config import ProviderConfig
from mcp_conductor.connections import ConnectionManager
from mcp_conductor.models import ProviderTool
from mcp_conductor.tracker import UsageTracker


class StubChannel:
    """In-memory provider. Unhandled tools echo their arguments back."""

    def __init__(self, tools, handlers=None):
        self.tools = [
            t if isinstance(t, ProviderTool) else ProviderTool(name=t[0], description=t[1])
            for t in tools
        ]
        self.handlers = handlers or {}
        self.calls = []
        self.closed = False

    async def list_tools(self):
        return list(self.tools)

    async def call_tool(self, name, arguments):
        self.calls.append((name, dict(arguments)))
        handler = self.handlers.get(name)
        if handler is None:
            return dict(arguments)
        result = handler(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


def make_connector(channels, failing=(), on_close=None):
    """
    Connector over prebuilt channels. on_close, when given, is awaited with
    the provider name as each channel is torn down.
    """

    async def connector(config, stack: AsyncExitStack):
        if config.name in failing:
            raise RuntimeError(f"{config.name} failed to start")
        channel = channels[config.name]

        async def close():
            if on_close is not None:
                await on_close(config.name)
            channel.closed = True

        stack.push_async_callback(close)
        return channel

    return connector


def provider(name, **kwargs):
    return ProviderConfig(name=name, command="stub", **kwargs)


async def connect(channels, failing=(), tracker=None, on_close=None):
    tracker = tracker or UsageTracker()
    manager = ConnectionManager(tracker, connector=make_connector(channels, failing, on_close))
    await manager.initialize([provider(name) for name in channels])
    return manager


def filesystem_channel(handlers=None):
    return StubChannel(
        [
            ProviderTool(
                name="list_directory",
                description="List directory contents",
                parameter_schema={"type": "object", "properties": {"path": {"type": "string"}}},
            ),
            ProviderTool(
                name="read_file",
                description="Read the complete contents of a file",
                parameter_schema={
                    "type": "object",
                    "properties": {"path": {"type": "string"}},
                    "required": ["path"],
                },
            ),
            ProviderTool(name="write_file", description="Create a new file or overwrite"),
        ],
        handlers,
    )
