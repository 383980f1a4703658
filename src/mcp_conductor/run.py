# run.py
# Entry point. Config and wiring only, no logic lives here.
#
# Requests come from the command line; with none given, the demo prompts
# below run in order. Set OPENROUTER_API_KEY to route and synthesize with
# the Oracle, otherwise keyword routing and summaries are used.

import asyncio
import sys

from mcp_conductor import display
from mcp_conductor.conductor import Conductor
from mcp_conductor.config import Settings
from mcp_conductor.errors import ConfigurationError
from mcp_conductor.log import configure_logging

PROMPTS = [
    # Single provider, single tool
    "list the files here",

    # Chained: read a file, then record what was found in the memory graph
    "Read the README.md file and remember its project name",

    # Version control
    "Show the git status of this repository",
]


async def _main(requests: list[str]) -> int:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    conductor = Conductor(settings)
    display.banner(settings.model, conductor.oracle is not None)

    try:
        await conductor.start()
    except ConfigurationError as exc:
        display.providers_connected({})
        display.halt(exc.message)
        return 1

    failures = 0
    try:
        display.providers_connected(conductor.manager.server_info())
        conductor.tracker.add_listener(display.tool_execution_finished)
        for request in requests:
            result = await conductor.process(request)
            failures += not result.success
        display.usage_stats(conductor.tracker.get_usage_stats())
    finally:
        await conductor.close()
    return 1 if failures else 0


def main() -> None:
    requests = sys.argv[1:] or PROMPTS
    sys.exit(asyncio.run(_main(requests)))


if __name__ == "__main__":
    main()
