# models.py
# Data contracts for the conductor.
# No business logic lives here, only schema and validation.

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from mcp_conductor.naming import ToolKey, encode_tool_name


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class ProviderTool(BaseModel):
    """A tool exactly as a provider lists it, before namespacing."""

    name: str
    description: str = ""
    parameter_schema: dict[str, Any] = Field(default_factory=dict)


class ToolDescriptor(BaseModel):
    """A namespaced tool in the global catalog."""

    provider_id: str
    local_name: str
    description: str = ""
    parameter_schema: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list, description="Derived capability tags.")

    @property
    def full_name(self) -> str:
        return encode_tool_name(self.provider_id, self.local_name)

    @property
    def key(self) -> ToolKey:
        return ToolKey(self.provider_id, self.local_name)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class RoutingDecision(BaseModel):
    """
    One proposed step. May be hallucinated by the Oracle, so it is not
    trusted until validated against the live catalog.
    """

    model_config = ConfigDict(populate_by_name=True)

    selected_tool: str = Field(
        ..., validation_alias=AliasChoices("selected_tool", "selectedTool", "tool")
    )
    provider_id: str = Field(
        ..., validation_alias=AliasChoices("provider_id", "providerId", "serverName")
    )
    confidence: float = 0.5
    reasoning: str = ""
    alternative_tools: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("alternative_tools", "alternativeTools"),
    )
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        return max(0.0, min(1.0, number))


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepMetadata(BaseModel):
    confidence: float = 0.0
    reasoning: str = ""
    retry_count: int = 0
    parameters: dict[str, Any] = Field(default_factory=dict)
    fallback_for: str | None = Field(
        default=None, description="Original tool when this step ran as a fallback."
    )


class StepResult(BaseModel):
    """Immutable log entry produced once per executed step."""

    model_config = ConfigDict(frozen=True)

    step_index: int
    tool: str
    success: bool
    result: Any = None
    error: str | None = None
    execution_time_ms: int = 0
    metadata: StepMetadata = Field(default_factory=StepMetadata)


class ExecutionOptions(BaseModel):
    """Knobs for the step executor."""

    timeout_ms: int = Field(default=30_000, gt=0)
    retry_attempts: int = Field(default=0, ge=0)
    retry_delay_ms: int = Field(default=0, ge=0)
    continue_on_failure: bool = False
    inter_step_delay_ms: int = Field(default=100, ge=0)
    concurrency: int = Field(default=3, ge=1)


class FailureStrategy(str, Enum):
    STOP = "stop"
    CONTINUE = "continue"
    RETRY = "retry"
    SKIP = "skip"
    FALLBACK = "fallback"


class RecoveryOptions(BaseModel):
    """Per-step failure strategy consulted when a sequential step fails."""

    strategy: FailureStrategy = FailureStrategy.STOP
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=0, ge=0)
    fallback_tool: str | None = None
    fallback_parameters: dict[str, Any] | None = None
    continue_on_failure: bool = False


class WorkflowOptions(ExecutionOptions):
    parallel: bool = False
    max_recovery_attempts: int = Field(default=2, ge=0)
    failure_strategy: RecoveryOptions | None = None


# ---------------------------------------------------------------------------
# Failure analysis
# ---------------------------------------------------------------------------


class FailureType(str, Enum):
    TRANSIENT = "transient"
    SYSTEMATIC = "systematic"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class StepRecoveryAction(str, Enum):
    RETRY = "retry"
    FALLBACK = "fallback"
    SKIP = "skip"


class StepFailureDecision(BaseModel):
    should_continue: bool
    action: StepRecoveryAction | None = None
    fallback_step: RoutingDecision | None = None


class FailureAnalysis(BaseModel):
    failure_type: FailureType
    recoverable: bool
    affected_tools: list[str] = Field(default_factory=list)
    common_errors: list[str] = Field(default_factory=list)


class RecoveryPlan(BaseModel):
    """
    How to re-run a failed workflow.

    restart_from_step truncates results to that length and resumes there;
    modified_steps replaces the plan and restarts from scratch.
    """

    restart_from_step: int | None = None
    modified_steps: list[RoutingDecision] | None = None


class FailureSummary(BaseModel):
    total_steps: int
    completed_steps: int
    failed_steps: int
    successful_steps: int
    failure_reasons: list[str] = Field(default_factory=list)
    partial_results: list[Any] = Field(default_factory=list)


class ContextSummary(BaseModel):
    total_steps: int
    completed_steps: int
    successful_steps: int
    failed_steps: int
    elapsed_ms: int
    status: WorkflowStatus


# ---------------------------------------------------------------------------
# Workflow result
# ---------------------------------------------------------------------------


class WorkflowMetadata(BaseModel):
    total_steps: int = 0
    successful_steps: int = 0
    failed_steps: int = 0
    elapsed_ms: int = 0
    recovery_attempts: int = 0
    confidence: float = 0.0


class WorkflowResult(BaseModel):
    """What every caller gets back, success or not."""

    success: bool
    message: str
    tools_used: list[str] = Field(default_factory=list)
    step_results: list[StepResult] = Field(default_factory=list)
    metadata: WorkflowMetadata = Field(default_factory=WorkflowMetadata)
    error: str | None = None


# ---------------------------------------------------------------------------
# Usage tracking
# ---------------------------------------------------------------------------


class ToolExecution(BaseModel):
    id: str
    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = None
    started_at: float
    ended_at: float | None = None
    duration_ms: int | None = None
    success: bool | None = None
    result_summary: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UsageSession(BaseModel):
    session_id: str
    request: str
    started_at: float
    ended_at: float | None = None
    duration_ms: int | None = None
    status: WorkflowStatus = WorkflowStatus.RUNNING
    executions: list[ToolExecution] = Field(default_factory=list)


class ToolUsage(BaseModel):
    tool: str
    count: int
    avg_duration_ms: float


class UsageStats(BaseModel):
    total_executions: int
    successful_executions: int
    failed_executions: int
    average_duration_ms: float
    most_used_tools: list[ToolUsage] = Field(default_factory=list)
    recent_sessions: list[UsageSession] = Field(default_factory=list)
