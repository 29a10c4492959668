"""Shared fixtures for toolgate tests."""

from collections.abc import Callable
from typing import Any

import pytest

from toolgate.models.messages import ToolCallPart
from toolgate.models.profile import POWER_TOOL_GROUP_NAME, AgentProfile, default_profile, tool_id
from toolgate.models.task import Task
from toolgate.services.approval import ApprovalGate, StaticApprover
from toolgate.services.pipeline import ToolExecutionPipeline
from toolgate.tools.registry import ToolsRegistry


@pytest.fixture
def task(tmp_path) -> Task:
    """Task rooted in a temporary directory."""
    return Task(task_id="test-task", task_dir=tmp_path)


@pytest.fixture
def profile() -> AgentProfile:
    return default_profile()


@pytest.fixture
def approver() -> StaticApprover:
    """Approver that says yes to every question."""
    return StaticApprover(approved=True)


@pytest.fixture
def gate(profile, approver) -> ApprovalGate:
    return ApprovalGate(profile, approver)


@pytest.fixture
def pipeline(task, profile, gate) -> ToolExecutionPipeline:
    return ToolExecutionPipeline(task, ToolsRegistry(profile), gate)


@pytest.fixture
def make_call() -> Callable[..., ToolCallPart]:
    """Factory for power tool calls: make_call("bash", command="ls")."""

    def _make_call(name: str, call_id: str = "call-1", **tool_input: Any) -> ToolCallPart:
        return ToolCallPart(
            tool_call_id=call_id,
            tool_name=tool_id(POWER_TOOL_GROUP_NAME, name),
            input=tool_input,
        )

    return _make_call
