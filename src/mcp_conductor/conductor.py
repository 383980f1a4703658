# conductor.py
# Bootstrap wiring: one tracker, one connection manager, an optional Oracle,
# and the router / executor / engine built on top of them.

import logging
from typing import Any

from mcp_conductor.config import ProviderConfig, Settings, get_enabled_providers
from mcp_conductor.connections import ConnectionManager, Connector, connect_stdio
from mcp_conductor.engine import WorkflowEngine
from mcp_conductor.errors import ConfigurationError
from mcp_conductor.executor import StepExecutor
from mcp_conductor.models import WorkflowOptions, WorkflowResult
from mcp_conductor.oracle import DecisionOracle, build_oracle
from mcp_conductor.recovery import FailureHandler
from mcp_conductor.router import KeywordPlanner, OraclePlanner, ToolRouter, build_catalog
from mcp_conductor.synthesis import OracleSynthesizer, SummarySynthesizer
from mcp_conductor.tracker import UsageTracker

logger = logging.getLogger(__name__)


class Conductor:
    """
    Example:
        async with Conductor(Settings.from_env()) as conductor:
            result = await conductor.process("list the files here")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        providers: list[ProviderConfig] | None = None,
        connector: Connector = connect_stdio,
        oracle: DecisionOracle | None = None,
        tracker: UsageTracker | None = None,
        require_providers: bool = True,
    ) -> None:
        self.settings = settings or Settings()
        self._providers = get_enabled_providers() if providers is None else providers
        self._require_providers = require_providers
        self.tracker = tracker or UsageTracker()
        self.manager = ConnectionManager(
            self.tracker,
            connector=connector,
            connect_timeout_s=self.settings.connect_timeout_s,
        )
        self.oracle = oracle if oracle is not None else build_oracle(self.settings)

        failure_handler = FailureHandler(
            available_tools=lambda: {t.full_name for t in self.manager.get_all_tools()}
        )
        if self.oracle is not None:
            router = ToolRouter(OraclePlanner(self.oracle), fallback=KeywordPlanner())
            synthesizer = OracleSynthesizer(self.oracle)
            extractor = self.oracle.extract_variables
        else:
            router = ToolRouter(KeywordPlanner())
            synthesizer = SummarySynthesizer()
            extractor = None

        self.executor = StepExecutor(self.manager, self.tracker, failure_handler, extractor)
        self.engine = WorkflowEngine(
            router,
            self.executor,
            self.manager,
            self.tracker,
            failure_handler=failure_handler,
            synthesizer=synthesizer,
            uses_oracle=self.oracle is not None,
        )
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> list[str]:
        """Connect providers. Raises ConfigurationError if none connect and some are required."""
        connected = await self.manager.initialize(self._providers)
        if not connected and self._require_providers:
            await self.manager.disconnect()
            raise ConfigurationError("providers", "no tool provider could be connected")
        self._initialized = True
        return connected

    async def close(self) -> None:
        await self.manager.disconnect()
        self._initialized = False

    async def __aenter__(self) -> "Conductor":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def default_options(self) -> WorkflowOptions:
        return WorkflowOptions(
            timeout_ms=self.settings.tool_timeout_ms,
            inter_step_delay_ms=self.settings.inter_step_delay_ms,
            concurrency=self.settings.concurrency,
            max_recovery_attempts=self.settings.max_recovery_attempts,
        )

    async def process(self, request: str, options: WorkflowOptions | None = None) -> WorkflowResult:
        return await self.engine.execute_workflow(request, options or self.default_options())

    def status(self) -> dict[str, Any]:
        capabilities = sorted({tag for tool in build_catalog(self.manager.connections()) for tag in tool.tags})
        return {
            "initialized": self._initialized,
            "oracle_available": self.oracle is not None,
            "connected_providers": len(self.manager.connected_provider_ids()),
            "capabilities": capabilities,
        }
