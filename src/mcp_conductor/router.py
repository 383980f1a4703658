# router.py
# Tool catalog and plan selection.
#
# The router never trusts a plan. Whatever the planner proposes, Oracle or
# keyword fallback, is checked against the live catalog before any step runs,
# and "no valid steps" is reported as a RoutingError for the engine to turn
# into a structured failure.

import logging
import re
from typing import Protocol

from mcp_conductor.connections import ProviderConnection
from mcp_conductor.errors import RoutingError, ToolNotFound
from mcp_conductor.models import RoutingDecision, ToolDescriptor
from mcp_conductor.naming import decode_tool_name

logger = logging.getLogger(__name__)

ORACLE_MAX_DECISIONS = 3
KEYWORD_MAX_DECISIONS = 1


# ---------------------------------------------------------------------------
# Capability tags
# ---------------------------------------------------------------------------

PROVIDER_TAGS: dict[str, list[str]] = {
    "filesystem": ["file_operations", "read_files", "write_files", "search_files"],
    "git": ["version_control", "repository_management", "commit_history"],
    "memory": ["knowledge_storage", "entity_management", "relationship_tracking"],
    "fetch": ["web_content", "http_requests", "data_retrieval"],
    "github": ["github_api", "repository_management", "issue_tracking", "pull_requests"],
    "playwright": ["browser_automation", "web_testing", "screenshot_capture", "form_interaction"],
    "puppeteer": ["browser_automation", "web_testing", "screenshot_capture", "form_interaction"],
    "sequential-thinking": ["complex_reasoning", "problem_solving", "step_by_step_analysis"],
    "duckduckgo-search": ["web_search", "search_results", "information_retrieval", "real_time_data"],
    "postgres": ["database_access", "sql_queries", "data_analysis", "schema_inspection"],
}

OPERATION_KEYWORDS = ("read", "write", "search", "list", "create", "delete")


def derive_tags(provider_id: str, local_name: str, description: str) -> list[str]:
    tags = list(PROVIDER_TAGS.get(provider_id, []))
    name = local_name.lower()
    desc = description.lower()
    for keyword in OPERATION_KEYWORDS:
        if keyword in name or keyword in desc:
            tags.append(f"{keyword}_operation")
    return list(dict.fromkeys(tags))


def build_catalog(connections: dict[str, ProviderConnection]) -> list[ToolDescriptor]:
    """Flatten every connected provider's tools into tagged descriptors."""
    catalog: list[ToolDescriptor] = []
    for provider_id, connection in connections.items():
        if not connection.connected:
            continue
        for tool in connection.tools:
            catalog.append(
                ToolDescriptor(
                    provider_id=provider_id,
                    local_name=tool.name,
                    description=tool.description,
                    parameter_schema=tool.parameter_schema,
                    tags=derive_tags(provider_id, tool.name, tool.description),
                )
            )
    return catalog


# ---------------------------------------------------------------------------
# Planners
# ---------------------------------------------------------------------------


class Planner(Protocol):
    async def plan(self, request: str, catalog: list[ToolDescriptor]) -> list[RoutingDecision]: ...


_WORD = re.compile(r"[a-z0-9]+")

STOPWORDS = frozenset(
    "a an and are as at be by can do for from here i in is it me my of on or "
    "please show that the there this to what with you your all".split()
)

NAME_WEIGHT = 3
TEXT_WEIGHT = 1


def _stem(word: str) -> str:
    return word[:-1] if len(word) > 3 and word.endswith("s") else word


def _tokens(text: str) -> set[str]:
    return {_stem(w) for w in _WORD.findall(text.lower()) if w not in STOPWORDS}


class KeywordPlanner:
    """
    Deterministic planner: scores each tool by word overlap with the request.

    A request word counts once per tool, at its best weight: a hit on the
    tool's own name outweighs a hit on its description, provider or tags.
    """

    def __init__(self, max_decisions: int = KEYWORD_MAX_DECISIONS) -> None:
        self.max_decisions = max_decisions

    async def plan(self, request: str, catalog: list[ToolDescriptor]) -> list[RoutingDecision]:
        return self.select(request, catalog)

    def select(self, request: str, catalog: list[ToolDescriptor]) -> list[RoutingDecision]:
        words = _tokens(request)
        scored: list[tuple[int, int, ToolDescriptor]] = []

        for position, tool in enumerate(catalog):
            name_words = _tokens(tool.local_name.replace("_", " ").replace("-", " "))
            text_words = _tokens(
                " ".join([tool.description, tool.provider_id.replace("-", " ")] + tool.tags).replace("_", " ")
            )
            score = 0
            for word in words:
                if word in name_words:
                    score += NAME_WEIGHT
                elif word in text_words:
                    score += TEXT_WEIGHT
            if score > 0:
                scored.append((score, position, tool))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            RoutingDecision(
                selected_tool=tool.full_name,
                provider_id=tool.provider_id,
                confidence=min(score / 10, 0.8),
                reasoning=f"Keyword match (score: {score}) - fallback selection",
            )
            for score, _, tool in scored[: self.max_decisions]
        ]


class OraclePlanner:
    """Planner backed by the Decision Oracle."""

    def __init__(self, oracle, max_decisions: int = ORACLE_MAX_DECISIONS) -> None:
        self._oracle = oracle
        self.max_decisions = max_decisions

    async def plan(self, request: str, catalog: list[ToolDescriptor]) -> list[RoutingDecision]:
        decisions = await self._oracle.plan(request, catalog)
        return decisions[: self.max_decisions]


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class ToolRouter:
    """
    Obtains a plan from the planner and filters it against the live catalog.

    Example:
        router = ToolRouter(OraclePlanner(oracle))
        async with manager.catalog_guard() as connections:
            steps = await router.plan("list the files here", connections)
    """

    def __init__(self, planner: Planner | None = None, fallback: Planner | None = None) -> None:
        self._fallback = fallback or KeywordPlanner()
        self._planner = planner or self._fallback

    async def route(self, request: str, catalog: list[ToolDescriptor]) -> list[RoutingDecision]:
        if not catalog:
            raise RoutingError("No tools available: no provider is connected")

        try:
            return await self._planner.plan(request, catalog)
        except Exception as exc:
            if self._planner is self._fallback:
                raise RoutingError(f"Planning failed: {exc}") from exc
            logger.warning("Planner failed, using keyword fallback: %s", exc)
            return await self._fallback.plan(request, catalog)

    def validate(
        self,
        decisions: list[RoutingDecision],
        connections: dict[str, ProviderConnection],
    ) -> list[RoutingDecision]:
        """Keep only decisions naming a tool that is live right now."""
        valid: list[RoutingDecision] = []
        for decision in decisions:
            reason = _rejection(decision, connections)
            if reason:
                logger.warning("Dropping routing decision %s: %s", decision.selected_tool, reason)
                continue
            valid.append(decision)
        return valid

    async def plan(
        self, request: str, connections: dict[str, ProviderConnection]
    ) -> list[RoutingDecision]:
        """build_catalog -> route -> validate. Raises RoutingError on zero valid steps."""
        catalog = build_catalog(connections)
        decisions = await self.route(request, catalog)
        valid = self.validate(decisions, connections)
        logger.info(
            "Routing kept %d of %d decisions for request %r", len(valid), len(decisions), request
        )
        if not valid:
            raise RoutingError(
                "No valid tools selected for this request",
                {"request": request, "proposed": [d.selected_tool for d in decisions]},
            )
        return valid


def _rejection(decision: RoutingDecision, connections: dict[str, ProviderConnection]) -> str | None:
    connection = connections.get(decision.provider_id)
    if connection is None or not connection.connected:
        return f"provider '{decision.provider_id}' is not connected"
    try:
        key = decode_tool_name(decision.selected_tool)
    except ToolNotFound as exc:
        return exc.message
    if key.provider_id != decision.provider_id:
        return f"tool belongs to '{key.provider_id}', not '{decision.provider_id}'"
    if connection.find_tool(key.local_name) is None:
        return f"tool '{key.local_name}' not offered by '{decision.provider_id}'"
    return None
