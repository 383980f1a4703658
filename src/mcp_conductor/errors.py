# errors.py
# Exception taxonomy for the conductor.
#
# Step-level failures are captured into StepResult.error by the executor and
# never escape a workflow run. Only construction errors (no tools, no valid
# steps, bad configuration) are raised, and the engine converts those into
# the same structured failure result it returns everywhere else.

from typing import Any


class ConductorError(Exception):
    """Base error. Carries a stable code and a context dict for logging."""

    code = "CONDUCTOR_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ProviderConnectionError(ConductorError):
    """A provider process failed to start or to complete the handshake."""

    code = "CONNECTION_ERROR"

    def __init__(self, provider_id: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(
            f"Failed to connect to provider '{provider_id}'{detail}",
            {"provider_id": provider_id, "cause": str(cause) if cause else None},
        )
        self.provider_id = provider_id


class RoutingError(ConductorError):
    """No tools to route over, or planning produced zero valid decisions."""

    code = "ROUTING_ERROR"


class ToolNotFound(ConductorError):
    """Unknown or undecodable full tool name, or its provider is not connected."""

    code = "TOOL_NOT_FOUND"

    def __init__(self, tool: str, message: str | None = None) -> None:
        super().__init__(message or f"Tool '{tool}' not found", {"tool": tool})
        self.tool = tool


class ToolArgumentsError(ConductorError):
    """Arguments do not satisfy the tool's declared parameter schema."""

    code = "INVALID_PARAMETERS"


class ToolExecutionError(ConductorError):
    """The provider answered the call with an error result."""

    code = "TOOL_EXECUTION_ERROR"


class ExecutionTimeout(ConductorError):
    """A single step exceeded its timeout. Retryable."""

    code = "EXECUTION_TIMEOUT"

    def __init__(self, tool: str, timeout_ms: int) -> None:
        super().__init__(
            f"Tool execution timeout: {tool} (after {timeout_ms}ms)",
            {"tool": tool, "timeout_ms": timeout_ms},
        )


class OracleError(ConductorError):
    """Any failure talking to, or parsing the answer of, the Decision Oracle."""

    code = "ORACLE_ERROR"


class ConfigurationError(ConductorError, ValueError):
    """
    Invalid settings or provider registration. Also a ValueError, so model
    validators that raise it surface as pydantic ValidationErrors.
    """

    code = "CONFIGURATION_ERROR"

    def __init__(self, setting: str, reason: str) -> None:
        super().__init__(
            f"Configuration error: {setting} - {reason}",
            {"setting": setting, "reason": reason},
        )


class WorkflowExhausted(ConductorError):
    """Recovery attempts ran out. Reported as a structured failure, not raised."""

    code = "WORKFLOW_EXHAUSTED"
