# config.py
# Provider registry and runtime settings.
#
# Settings are read from the environment after load_dotenv(); nothing here
# talks to a provider. A provider whose required environment variables are
# missing is reported invalid and skipped at connect time, never fatal.

import os
from typing import Literal

from dotenv import load_dotenv
from mcp.client.stdio import get_default_environment
from pydantic import BaseModel, Field, field_validator

from mcp_conductor.naming import validate_provider_id

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

DEFAULT_MODEL = "anthropic/claude-3.5-sonnet"
DEFAULT_TOOL_TIMEOUT_MS = 30_000
DEFAULT_INTER_STEP_DELAY_MS = 100
DEFAULT_CONCURRENCY = 3
DEFAULT_MAX_RECOVERY_ATTEMPTS = 2
DEFAULT_CONNECT_TIMEOUT_S = 10.0
MAX_SESSION_HISTORY = 50


# ---------------------------------------------------------------------------
# Provider registry
# ---------------------------------------------------------------------------


class ProviderConfig(BaseModel):
    """How to launch one tool provider process."""

    name: str = Field(..., description="Provider id. Must not contain the tool-name separator.")
    description: str = ""
    enabled: bool = True
    runtime: Literal["npm", "uvx", "python", "node", "local"] = "npm"
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, Literal["required", "optional"]] = Field(default_factory=dict)
    category: Literal["official", "community"] = "official"

    @field_validator("name")
    @classmethod
    def _name_is_reversible(cls, value: str) -> str:
        return validate_provider_id(value)


def _registry() -> dict[str, ProviderConfig]:
    cwd = os.getcwd()
    configs = [
        ProviderConfig(
            name="filesystem",
            description="Secure file operations with configurable access controls",
            command="npx",
            args=["-y", "@modelcontextprotocol/server-filesystem", cwd],
        ),
        ProviderConfig(
            name="sequential-thinking",
            description="Dynamic and reflective problem-solving through thought sequences",
            command="npx",
            args=["-y", "@modelcontextprotocol/server-sequential-thinking"],
        ),
        ProviderConfig(
            name="git",
            description="Tools to read, search, and manipulate Git repositories",
            runtime="uvx",
            command="uvx",
            args=["mcp-server-git", "--repository", cwd],
        ),
        ProviderConfig(
            name="memory",
            description="Knowledge graph-based persistent memory with entities and relations",
            command="npx",
            args=["-y", "@modelcontextprotocol/server-memory"],
        ),
        ProviderConfig(
            name="fetch",
            description="Web content fetching and conversion for efficient LLM usage",
            enabled=False,
            runtime="uvx",
            command="uvx",
            args=["mcp-server-fetch"],
        ),
        ProviderConfig(
            name="github",
            description="GitHub integration for repository management, PRs, issues",
            enabled=False,
            command="npx",
            args=["-y", "@modelcontextprotocol/server-github"],
            env={"GITHUB_TOKEN": "required"},
        ),
        ProviderConfig(
            name="puppeteer",
            description="Browser automation and web scraping with Puppeteer",
            command="npx",
            args=["-y", "@modelcontextprotocol/server-puppeteer"],
        ),
        ProviderConfig(
            name="playwright",
            description="Browser automation with Playwright",
            enabled=False,
            command="npx",
            args=["-y", "@playwright/mcp"],
            category="community",
        ),
        ProviderConfig(
            name="duckduckgo-search",
            description="Privacy-focused web search using DuckDuckGo",
            command="npx",
            args=["-y", "@oevortex/ddg_search"],
            category="community",
        ),
        ProviderConfig(
            name="postgres",
            description="Read-only database access with schema inspection",
            enabled=False,
            command="npx",
            args=["-y", "@modelcontextprotocol/server-postgres"],
            env={"DATABASE_URL": "required"},
        ),
    ]
    return {config.name: config for config in configs}


PROVIDER_REGISTRY: dict[str, ProviderConfig] = _registry()


def get_enabled_providers(
    registry: dict[str, ProviderConfig] | None = None,
) -> list[ProviderConfig]:
    registry = PROVIDER_REGISTRY if registry is None else registry
    return [config for config in registry.values() if config.enabled]


def validate_provider_config(config: ProviderConfig) -> list[str]:
    """Return every problem that should keep this provider from launching."""
    errors: list[str] = []
    if not config.command.strip():
        errors.append("Command is required")
    for key, requirement in config.env.items():
        if requirement == "required" and not os.environ.get(key):
            errors.append(f"Environment variable {key} is required but not set")
    return errors


def provider_environment(config: ProviderConfig) -> dict[str, str]:
    """Safe default environment plus whichever declared variables are set."""
    env = get_default_environment()
    for key in config.env:
        value = os.environ.get(key)
        if value:
            env[key] = value
    return env


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class Settings(BaseModel):
    api_key: str | None = None
    base_url: str = OPENROUTER_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_tokens: int = 2000
    log_level: str = "INFO"
    tool_timeout_ms: int = DEFAULT_TOOL_TIMEOUT_MS
    inter_step_delay_ms: int = DEFAULT_INTER_STEP_DELAY_MS
    concurrency: int = DEFAULT_CONCURRENCY
    max_recovery_attempts: int = DEFAULT_MAX_RECOVERY_ATTEMPTS
    connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S

    @property
    def oracle_enabled(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        env = os.environ
        return cls(
            api_key=env.get("OPENROUTER_API_KEY") or None,
            model=env.get("OPENROUTER_DEFAULT_MODEL", DEFAULT_MODEL),
            temperature=float(env.get("OPENROUTER_TEMPERATURE", "0.7")),
            max_tokens=int(env.get("OPENROUTER_MAX_TOKENS", "2000")),
            log_level=env.get("CONDUCTOR_LOG_LEVEL", "INFO").upper(),
            tool_timeout_ms=int(env.get("CONDUCTOR_TOOL_TIMEOUT_MS", DEFAULT_TOOL_TIMEOUT_MS)),
            inter_step_delay_ms=int(
                env.get("CONDUCTOR_INTER_STEP_DELAY_MS", DEFAULT_INTER_STEP_DELAY_MS)
            ),
            concurrency=int(env.get("CONDUCTOR_CONCURRENCY", DEFAULT_CONCURRENCY)),
            max_recovery_attempts=int(
                env.get("CONDUCTOR_MAX_RECOVERY_ATTEMPTS", DEFAULT_MAX_RECOVERY_ATTEMPTS)
            ),
            connect_timeout_s=float(
                env.get("CONDUCTOR_CONNECT_TIMEOUT_S", DEFAULT_CONNECT_TIMEOUT_S)
            ),
        )
