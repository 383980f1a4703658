# tracker.py
# Usage tracking for sessions (one per workflow run) and tool executions.
#
# One UsageTracker instance is created at bootstrap and injected wherever
# executions are recorded. Several sessions may be active at once when the
# host runs workflows concurrently; each execution attaches to the session
# passed explicitly, or to the session active in the current asyncio task.
# History is a ring buffer of the last MAX_SESSION_HISTORY completed sessions.

import logging
import threading
import time
import uuid
from collections import deque
from contextvars import ContextVar
from typing import Any, Callable

from mcp_conductor.config import MAX_SESSION_HISTORY
from mcp_conductor.models import (
    ToolExecution,
    ToolUsage,
    UsageSession,
    UsageStats,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)

ExecutionListener = Callable[[ToolExecution], None]

_active_session: ContextVar[str | None] = ContextVar("active_session", default=None)

MAX_UNSCOPED_EXECUTIONS = 1000


def summarize_result(result: Any) -> str:
    """Short, log-friendly description of a tool result."""
    if result is None:
        return "null"
    if isinstance(result, str):
        return result if len(result) <= 100 else result[:100] + "..."

    content = getattr(result, "content", None)
    if content is None and isinstance(result, dict):
        content = result.get("content")
    if isinstance(content, list):
        return f"{len(content)} content items"

    if isinstance(result, dict):
        keys = list(result)
        more = "..." if len(keys) > 3 else ""
        return f"Object with {len(keys)} keys: [{', '.join(map(str, keys[:3]))}{more}]"
    return str(result)


def _now_ms() -> float:
    return time.time() * 1000


class UsageTracker:
    """Thread-safe, in-memory log of sessions and tool executions."""

    def __init__(self, max_history: int = MAX_SESSION_HISTORY) -> None:
        self._lock = threading.Lock()
        self._active: dict[str, UsageSession] = {}
        self._history: deque[UsageSession] = deque(maxlen=max_history)
        self._unscoped: deque[ToolExecution] = deque(maxlen=MAX_UNSCOPED_EXECUTIONS)
        self._executions: dict[str, ToolExecution] = {}
        self._listeners: list[ExecutionListener] = []

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, request: str) -> str:
        session_id = f"session_{uuid.uuid4().hex[:12]}"
        session = UsageSession(session_id=session_id, request=request, started_at=_now_ms())
        with self._lock:
            self._active[session_id] = session
        _active_session.set(session_id)
        logger.info("Started session %s for request: %r", session_id, request)
        return session_id

    def end_session(
        self, session_id: str, status: WorkflowStatus = WorkflowStatus.COMPLETED
    ) -> UsageSession | None:
        with self._lock:
            session = self._active.pop(session_id, None)
            if session is None:
                logger.warning("Session %s is not active", session_id)
                return None
            session.ended_at = _now_ms()
            session.duration_ms = int(session.ended_at - session.started_at)
            session.status = status
            self._history.appendleft(session)
            for execution in session.executions:
                self._executions.pop(execution.id, None)

        if _active_session.get() == session_id:
            _active_session.set(None)

        succeeded = sum(1 for e in session.executions if e.success)
        logger.info(
            "Session %s ended: %s in %sms, %d tool executions (%d successful)",
            session_id,
            status.value,
            session.duration_ms,
            len(session.executions),
            succeeded,
        )
        return session

    def get_session(self, session_id: str) -> UsageSession | None:
        with self._lock:
            session = self._active.get(session_id)
            if session is None:
                session = next((s for s in self._history if s.session_id == session_id), None)
            return session.model_copy(deep=True) if session else None

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def start_execution(
        self,
        tool: str,
        parameters: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> str:
        execution_id = f"exec_{uuid.uuid4().hex[:12]}"
        session_id = session_id or _active_session.get()
        execution = ToolExecution(
            id=execution_id,
            tool=tool,
            parameters=dict(parameters or {}),
            started_at=_now_ms(),
            metadata=dict(metadata or {}),
        )

        with self._lock:
            session = self._active.get(session_id) if session_id else None
            if session is not None:
                execution.session_id = session.session_id
                session.executions.append(execution)
            else:
                self._unscoped.append(execution)
            self._executions[execution_id] = execution

        logger.debug("Tool execution %s started: %s %s", execution_id, tool, parameters or {})
        return execution_id

    def end_execution(
        self,
        execution_id: str,
        success: bool,
        result: Any = None,
        error: str | None = None,
    ) -> ToolExecution | None:
        with self._lock:
            execution = self._executions.pop(execution_id, None)
            if execution is None:
                logger.warning("Tool execution %s not found", execution_id)
                return None
            execution.ended_at = _now_ms()
            execution.duration_ms = int(execution.ended_at - execution.started_at)
            execution.success = success
            execution.error = error
            execution.result_summary = None if error else summarize_result(result)
            listeners = list(self._listeners)

        if success:
            logger.debug(
                "Tool execution %s (%s) succeeded in %sms: %s",
                execution_id,
                execution.tool,
                execution.duration_ms,
                execution.result_summary,
            )
        else:
            logger.debug(
                "Tool execution %s (%s) failed in %sms: %s",
                execution_id,
                execution.tool,
                execution.duration_ms,
                error,
            )

        for listener in listeners:
            try:
                listener(execution)
            except Exception:
                logger.exception("Usage listener failed")
        return execution

    # ------------------------------------------------------------------
    # Listeners / reporting
    # ------------------------------------------------------------------

    def add_listener(self, listener: ExecutionListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ExecutionListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def get_usage_stats(self) -> UsageStats:
        """Aggregate over completed sessions and unscoped executions. Read-only."""
        with self._lock:
            executions = [e for s in self._history for e in s.executions]
            executions.extend(self._unscoped)
            recent = [s.model_copy(deep=True) for s in list(self._history)[:10]]

        finished = [e for e in executions if e.duration_ms is not None]
        successful = sum(1 for e in finished if e.success)
        average = sum(e.duration_ms for e in finished) / len(finished) if finished else 0.0

        per_tool: dict[str, list[int]] = {}
        for execution in finished:
            per_tool.setdefault(execution.tool, []).append(execution.duration_ms)
        most_used = sorted(
            (
                ToolUsage(tool=tool, count=len(durations), avg_duration_ms=sum(durations) / len(durations))
                for tool, durations in per_tool.items()
            ),
            key=lambda usage: (-usage.count, usage.tool),
        )[:10]

        return UsageStats(
            total_executions=len(finished),
            successful_executions=successful,
            failed_executions=len(finished) - successful,
            average_duration_ms=average,
            most_used_tools=most_used,
            recent_sessions=recent,
        )

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
            self._unscoped.clear()
        logger.info("Usage history cleared")
