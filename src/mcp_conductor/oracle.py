# oracle.py
# Decision Oracle: the LLM behind planning, synthesis and variable extraction.
#
# Every call is best-effort. Transport errors, empty answers and unparseable
# JSON all surface as OracleError, and every caller has a deterministic
# fallback for that case.

import json
import logging
import re
from typing import Any

from openai import AsyncOpenAI

from mcp_conductor.config import Settings
from mcp_conductor.content import to_jsonable
from mcp_conductor.errors import OracleError, ToolNotFound
from mcp_conductor.models import RoutingDecision, StepResult, ToolDescriptor
from mcp_conductor.naming import decode_tool_name

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# System Prompts
# ---------------------------------------------------------------------------

PLAN_SYSTEM_PROMPT = """\
You are an expert tool selection system for a multi-server orchestration platform.

Your job is to analyze user requests and select the most appropriate tools from the available catalog.
Be precise, efficient, and consider the logical flow of operations.

Always respond with valid JSON in this format:
[
  {
    "selectedTool": "server_toolname",
    "serverName": "server",
    "confidence": 0.95,
    "reasoning": "This tool is perfect because...",
    "alternativeTools": ["other_tool1", "other_tool2"],
    "parameters": {"param1": "value1"}
  }
]

A parameter value may reference the output of an earlier step as {{step_<index>_result}} \
or {{<tool>_result}}, and the user request as {{original_request}}.\
"""

SYNTHESIS_SYSTEM_PROMPT = """\
You are an expert at synthesizing technical results into clear, user-friendly responses.
Make complex information accessible while maintaining accuracy. Be concise but comprehensive.\
"""

EXTRACT_SYSTEM_PROMPT = "Extract useful variables from tool results. Return only valid JSON."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_catalog(catalog: list[ToolDescriptor]) -> str:
    lines: list[str] = []
    for index, tool in enumerate(catalog, start=1):
        lines.append(f"{index}. {tool.full_name}")
        lines.append(f"   Server: {tool.provider_id}")
        lines.append(f"   Description: {tool.description}")
        lines.append(f"   Capabilities: {', '.join(tool.tags)}")
        lines.append(f"   Schema: {json.dumps(tool.parameter_schema)}")
    return "\n".join(lines)


def _format_results(results: list[StepResult]) -> str:
    lines: list[str] = []
    for index, result in enumerate(results, start=1):
        lines.append(f"{index}. Tool: {result.tool}")
        lines.append(f"   Success: {result.success}")
        if result.success:
            lines.append(f"   Result: {json.dumps(to_jsonable(result.result), indent=2)}")
        else:
            lines.append(f"   Error: {result.error}")
    return "\n".join(lines)


def parse_json_response(text: str) -> Any:
    """
    Parse a JSON answer, tolerating a surrounding markdown code fence.
    Raises OracleError when nothing parseable is found.
    """
    raw = text.strip()
    if raw.startswith("```"):
        raw = re.sub(r"^```(?:json)?\s*", "", raw)
        raw = re.sub(r"\s*```$", "", raw)
    try:
        return json.loads(raw, strict=False)
    except json.JSONDecodeError as exc:
        raise OracleError(f"Oracle returned malformed JSON: {exc}", {"payload": raw[:500]}) from exc


def _to_decision(item: Any) -> RoutingDecision:
    if not isinstance(item, dict):
        raise OracleError(f"Routing decision must be an object, got {type(item).__name__}")
    data = dict(item)
    if not any(k in data for k in ("provider_id", "providerId", "serverName")):
        tool = data.get("selectedTool") or data.get("selected_tool") or data.get("tool") or ""
        try:
            data["provider_id"] = decode_tool_name(tool).provider_id
        except ToolNotFound as exc:
            raise OracleError(exc.message) from exc
    try:
        return RoutingDecision.model_validate(data)
    except ValueError as exc:
        raise OracleError(f"Invalid routing decision: {exc}") from exc


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------


class DecisionOracle:
    """
    Async OpenRouter-backed Oracle.

    Example:
        oracle = DecisionOracle(AsyncOpenAI(base_url=..., api_key=...), model="...")
        decisions = await oracle.plan("list the files here", catalog)
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def _complete(self, system: str, prompt: str, temperature: float | None = None) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=self._temperature if temperature is None else temperature,
                max_tokens=self._max_tokens,
            )
        except Exception as exc:
            raise OracleError(f"Oracle request failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise OracleError("Oracle returned an empty response")
        return content.strip()

    async def plan(self, request: str, catalog: list[ToolDescriptor]) -> list[RoutingDecision]:
        prompt = (
            f'User Request: "{request}"\n\n'
            f"Available Tools:\n{_format_catalog(catalog)}\n\n"
            "Please analyze this request and select the most appropriate tools to accomplish "
            "the user's goal, in the order they should run. Consider:\n"
            "1. Tool capabilities vs. user needs\n"
            "2. Logical sequence of operations\n"
            "3. Data dependencies between tools\n"
            "4. Efficiency and directness\n\n"
            "Return your analysis as a JSON array of tool selections."
        )
        data = parse_json_response(await self._complete(PLAN_SYSTEM_PROMPT, prompt, temperature=0.3))
        items = data if isinstance(data, list) else [data]
        decisions = [_to_decision(item) for item in items]
        logger.debug("Oracle proposed %d decisions", len(decisions))
        return decisions

    async def synthesize(self, request: str, results: list[StepResult]) -> str:
        prompt = (
            f'Original user request: "{request}"\n\n'
            f"Tool execution results:\n{_format_results(results)}\n\n"
            "Please synthesize these results into a clear, helpful response for the user. "
            "Focus on:\n"
            "1. Directly answering their original question\n"
            "2. Highlighting key findings or insights\n"
            "3. Explaining any errors or limitations\n"
            "4. Suggesting next steps if appropriate"
        )
        return await self._complete(SYNTHESIS_SYSTEM_PROMPT, prompt)

    async def extract_variables(self, tool: str, result: Any) -> dict[str, Any]:
        prompt = (
            "Extract useful variables from this tool result that might be needed "
            "for subsequent steps:\n\n"
            f"Tool: {tool}\n"
            f"Result: {json.dumps(to_jsonable(result), indent=2)}\n\n"
            "Return a JSON object with key-value pairs of extracted variables.\n"
            "Focus on IDs, paths, URLs, names, and other values that might be referenced later.\n"
            "Use descriptive variable names."
        )
        data = parse_json_response(await self._complete(EXTRACT_SYSTEM_PROMPT, prompt, temperature=0.2))
        if not isinstance(data, dict):
            raise OracleError("Variable extraction must return a JSON object")
        return data


def build_oracle(settings: Settings) -> DecisionOracle | None:
    """The configured Oracle, or None when no API key is set."""
    if not settings.oracle_enabled:
        logger.info("No OPENROUTER_API_KEY set; running with deterministic fallbacks only")
        return None
    client = AsyncOpenAI(base_url=settings.base_url, api_key=settings.api_key)
    return DecisionOracle(
        client,
        model=settings.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
