import asyncio
from unittest.mock import MagicMock

from mcp_conductor.models import WorkflowStatus
from mcp_conductor.tracker import UsageTracker, summarize_result


def test_executions_attach_to_active_session(tracker):
    session_id = tracker.start_session("do things")
    execution_id = tracker.start_execution("fs_read", {"path": "a"})
    tracker.end_execution(execution_id, True, "contents")
    tracker.end_session(session_id)

    session = tracker.get_session(session_id)
    assert session.status == WorkflowStatus.COMPLETED
    assert [e.tool for e in session.executions] == ["fs_read"]
    assert session.executions[0].session_id == session_id
    assert session.executions[0].result_summary == "contents"


def test_concurrent_sessions_keep_their_own_executions(tracker):
    async def run(request, tool):
        session_id = tracker.start_session(request)
        await asyncio.sleep(0)
        execution_id = tracker.start_execution(tool)
        await asyncio.sleep(0)
        tracker.end_execution(execution_id, True, {})
        tracker.end_session(session_id)
        return session_id

    async def scenario():
        return await asyncio.gather(run("first", "a_one"), run("second", "b_two"))

    first, second = asyncio.run(scenario())
    assert [e.tool for e in tracker.get_session(first).executions] == ["a_one"]
    assert [e.tool for e in tracker.get_session(second).executions] == ["b_two"]


def test_history_is_bounded():
    tracker = UsageTracker(max_history=3)
    ids = [tracker.start_session(f"r{i}") for i in range(5)]
    for session_id in ids:
        tracker.end_session(session_id)

    stats = tracker.get_usage_stats()
    assert [s.request for s in stats.recent_sessions] == ["r4", "r3", "r2"]
    assert tracker.get_session(ids[0]) is None


def test_usage_stats_are_idempotent(tracker):
    session_id = tracker.start_session("stats")
    for tool, ok in [("a_x", True), ("a_x", False), ("b_y", True)]:
        execution_id = tracker.start_execution(tool)
        tracker.end_execution(execution_id, ok, error=None if ok else "boom")
    tracker.end_session(session_id)

    first = tracker.get_usage_stats()
    second = tracker.get_usage_stats()

    assert first.total_executions == second.total_executions == 3
    assert first.successful_executions == second.successful_executions == 2
    assert first.failed_executions == 1
    assert first.most_used_tools[0].tool == "a_x"
    assert first.most_used_tools[0].count == 2


def test_listeners_fire_and_failures_are_contained(tracker):
    broken = MagicMock(side_effect=RuntimeError("listener bug"))
    listener = MagicMock()
    tracker.add_listener(broken)
    tracker.add_listener(listener)

    execution_id = tracker.start_execution("a_x")
    execution = tracker.end_execution(execution_id, True, {"k": 1})

    listener.assert_called_once_with(execution)
    tracker.remove_listener(listener)
    tracker.end_execution(tracker.start_execution("a_x"), True)
    listener.assert_called_once()


def test_end_unknown_execution_returns_none(tracker):
    assert tracker.end_execution("exec_missing", True) is None
    assert tracker.end_session("session_missing") is None


def test_clear_history(tracker):
    tracker.end_session(tracker.start_session("one"))
    tracker.end_execution(tracker.start_execution("a_x"), True)
    tracker.clear_history()
    stats = tracker.get_usage_stats()
    assert stats.total_executions == 0
    assert stats.recent_sessions == []


def test_summarize_result_shapes():
    content_result = MagicMock(content=[1, 2])
    assert summarize_result(content_result) == "2 content items"
    assert summarize_result({"a": 1, "b": 2, "c": 3, "d": 4}) == "Object with 4 keys: [a, b, c...]"
    assert summarize_result("x" * 150) == "x" * 100 + "..."
    assert summarize_result(None) == "null"
