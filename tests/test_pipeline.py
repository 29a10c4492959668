"""Tests for the tool execution pipeline."""

import asyncio

import pytest
from pydantic import BaseModel

from toolgate.models.invocation import InvocationStatus
from toolgate.models.messages import Message, TextPart, ToolCallPart
from toolgate.models.profile import default_profile
from toolgate.services.approval import ApprovalGate, StaticApprover
from toolgate.services.cancellation import CANCELLED_MESSAGE
from toolgate.services.pipeline import ToolExecutionPipeline
from toolgate.tools.base import ToolDefinition
from toolgate.tools.registry import ToolsRegistry


class EmptyInput(BaseModel):
    pass


class NeverAnswers:
    """Collaborator that never responds."""

    async def request_approval(self, tool_id, question, subject=None):
        await asyncio.Event().wait()


async def wait_for_status(pipeline, status):
    for _ in range(200):
        if any(invocation.status == status for invocation in pipeline.active_invocations()):
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"No invocation reached {status}")


def tool_results(task):
    return [part for message in task.context.get_messages() if message.role == "tool" for part in message.parts()]


class TestToolExecutionPipeline:
    """Tests for executing tool calls."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, pipeline, task):
        """Test that unknown tools produce an error result."""
        updates = []
        task.subscribe(updates.append)

        result = await pipeline.execute(ToolCallPart(tool_call_id="c1", tool_name="power---teleport"))

        assert result.output.value == "Error: Unknown tool power---teleport"
        assert len(updates) == 1 and updates[0].finished

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_output(self, task, profile, gate):
        """Test that raised exceptions are reported, not propagated."""

        async def explode(args, ctx):
            raise RuntimeError("boom")

        registry = ToolsRegistry(profile)
        registry.register_tool(ToolDefinition("explode", "custom", "Always fails.", EmptyInput, explode))
        pipeline = ToolExecutionPipeline(task, registry, gate)

        result = await pipeline.execute(ToolCallPart(tool_call_id="c1", tool_name="custom---explode"))

        assert result.output.value == "Error: boom"
        assert pipeline.active_invocations() == []

    @pytest.mark.asyncio
    async def test_single_finished_update_last(self, pipeline, task, make_call, tmp_path):
        """Test the update sequence and the conversation result."""
        (tmp_path / "a.txt").write_text("content")
        updates = []
        task.subscribe(updates.append)

        await pipeline.execute(make_call("file_read", file_path="a.txt"))

        assert [u.finished for u in updates] == [False, True]
        assert updates[-1].output == "content"
        [part] = tool_results(task)
        assert part.tool_call_id == "call-1"
        assert part.tool_name == "power---file_read"
        assert part.output.value == "content"
        assert task.context.is_finished("call-1")

    @pytest.mark.asyncio
    async def test_execute_all_keeps_order(self, pipeline, tmp_path):
        """Test concurrent execution with results in call order."""
        (tmp_path / "a.txt").write_text("A")
        (tmp_path / "b.txt").write_text("B")
        message = Message(
            role="assistant",
            content=[
                TextPart(text="Reading both"),
                ToolCallPart(tool_call_id="c1", tool_name="power---file_read", input={"file_path": "b.txt"}),
                ToolCallPart(tool_call_id="c2", tool_name="power---file_read", input={"file_path": "a.txt"}),
            ],
        )

        results = await pipeline.execute_all(message)

        assert [(r.tool_call_id, r.output.value) for r in results] == [("c1", "B"), ("c2", "A")]
        assert await pipeline.execute_all(Message(role="assistant", content="no tools")) == []

    @pytest.mark.asyncio
    async def test_interrupt_during_approval(self, task, make_call):
        """Test that interrupting a pending approval yields the cancelled result."""
        profile = default_profile()
        pipeline = ToolExecutionPipeline(task, ToolsRegistry(profile), ApprovalGate(profile, NeverAnswers()))
        updates = []
        task.subscribe(updates.append)

        running = asyncio.create_task(pipeline.execute(make_call("bash", command="npm install")))
        await wait_for_status(pipeline, InvocationStatus.AWAITING_APPROVAL)
        task.interrupt()
        result = await running

        assert result.output.value == CANCELLED_MESSAGE
        assert updates[-1].finished
        assert sum(u.finished for u in updates) == 1
        assert pipeline.active_invocations() == []

    @pytest.mark.asyncio
    async def test_interrupt_running_command(self, pipeline, task, make_call):
        """Test that interrupting a running command stops it promptly."""
        running = asyncio.create_task(pipeline.execute(make_call("bash", command="sleep 5")))
        await wait_for_status(pipeline, InvocationStatus.RUNNING)
        task.interrupt()

        result = await asyncio.wait_for(running, timeout=4)

        assert result.output.value == CANCELLED_MESSAGE
        assert tool_results(task)[0].output.value == CANCELLED_MESSAGE

    @pytest.mark.asyncio
    async def test_asyncio_cancellation_still_finishes(self, task, make_call):
        """Test that cancelling the execute task writes the terminal update and re-raises."""
        profile = default_profile()
        pipeline = ToolExecutionPipeline(task, ToolsRegistry(profile), ApprovalGate(profile, NeverAnswers()))
        updates = []
        task.subscribe(updates.append)

        call = make_call("file_edit", file_path="a", search_term="x", replacement_text="y")
        running = asyncio.create_task(pipeline.execute(call))
        await wait_for_status(pipeline, InvocationStatus.AWAITING_APPROVAL)
        running.cancel()

        with pytest.raises(asyncio.CancelledError):
            await running
        assert updates[-1].finished
        assert updates[-1].output == CANCELLED_MESSAGE

    @pytest.mark.asyncio
    async def test_denied_status(self, task, make_call):
        """Test that denial ends the invocation as denied."""
        profile = default_profile()
        pipeline = ToolExecutionPipeline(task, ToolsRegistry(profile), ApprovalGate(profile, StaticApprover(False)))
        statuses = []
        original = pipeline._finish

        def record(call, group, name, output, prompt_context):
            statuses.extend(i.status for i in pipeline.active_invocations())
            return original(call, group, name, output, prompt_context)

        pipeline._finish = record

        await pipeline.execute(make_call("file_write", file_path="a", content="x"))

        assert statuses == [InvocationStatus.DENIED]
