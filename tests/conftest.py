import pytest

from mcp_conductor.models import ExecutionOptions
from mcp_conductor.tracker import UsageTracker


@pytest.fixture
def tracker():
    return UsageTracker()


@pytest.fixture
def fast_options():
    return ExecutionOptions(inter_step_delay_ms=0)
