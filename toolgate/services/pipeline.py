"""Tool execution pipeline: approval, execution and conversation updates for tool calls."""

import asyncio

from pydantic import ValidationError

from toolgate.errors import OperationCancelledError
from toolgate.models.invocation import InvocationStatus, ToolInvocation
from toolgate.models.messages import Message, PromptContext, ToolCallPart, ToolResultOutput, ToolResultPart
from toolgate.models.profile import split_tool_id
from toolgate.models.task import Task
from toolgate.services.approval import ApprovalGate
from toolgate.services.cancellation import CANCELLED_MESSAGE
from toolgate.tools.base import ToolContext, ToolOutput
from toolgate.tools.registry import ToolsRegistry
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)


class ToolExecutionPipeline:
    """Runs the tool calls of one task.

    Every call ends in exactly one finished tool message update, written after
    any streaming updates of that call. Tool failures are reported as tool
    output, never raised.
    """

    def __init__(self, task: Task, registry: ToolsRegistry, approval_gate: ApprovalGate):
        self.task = task
        self.registry = registry
        self.approval_gate = approval_gate
        self._active: dict[str, ToolInvocation] = {}

    def active_invocations(self) -> list[ToolInvocation]:
        """Invocations that have started and not yet reported their terminal update."""
        return list(self._active.values())

    async def execute_all(self, message: Message, prompt_context: PromptContext | None = None) -> list[ToolResultPart]:
        """Execute every tool call of an assistant message concurrently.

        Returns:
            Results in the order of the tool calls
        """
        calls = message.tool_calls()
        if not calls:
            return []
        logger.info(f"Task {self.task.task_id}: executing {len(calls)} tool calls")
        return list(await asyncio.gather(*(self.execute(call, prompt_context) for call in calls)))

    async def execute(self, call: ToolCallPart, prompt_context: PromptContext | None = None) -> ToolResultPart:
        """Execute one tool call to completion."""
        group, name = split_tool_id(call.tool_name)
        tool = self.registry.get_tool(call.tool_name)
        if tool is None:
            logger.error(f"Unknown tool requested: {call.tool_name}")
            return self._finish(call, group, name, f"Error: Unknown tool {call.tool_name}", prompt_context)

        invocation = ToolInvocation(tool_call_id=call.tool_call_id, tool_id=tool.id)
        self._active[call.tool_call_id] = invocation
        logger.debug(f"Executing tool: {tool.id} with input: {call.input}")

        try:
            args = tool.parse_input(call.input)
        except ValidationError as e:
            logger.warning(f"Invalid input for tool {tool.id}: {e}")
            invocation.transition(InvocationStatus.FAILED)
            return self._finish(call, group, name, f"Error: Invalid arguments for {tool.id}: {e}", prompt_context)

        self.task.add_tool_message(
            call.tool_call_id, group, name, call.input, prompt_context=prompt_context, finished=False
        )
        ctx = ToolContext(
            task=self.task,
            tool=tool,
            gate=self.approval_gate,
            invocation=invocation,
            args=call.input,
            prompt_context=prompt_context,
        )

        output: ToolOutput
        try:
            output = await tool.handler(args, ctx)
            status = ctx.outcome or InvocationStatus.SUCCEEDED
        except OperationCancelledError:
            logger.info(f"Tool {tool.id} ({call.tool_call_id}) cancelled")
            output = CANCELLED_MESSAGE
            status = InvocationStatus.CANCELLED
        except asyncio.CancelledError:
            invocation.transition(InvocationStatus.CANCELLED)
            self._finish(call, group, name, CANCELLED_MESSAGE, prompt_context)
            raise
        except Exception as e:
            logger.error(f"Tool {tool.id} failed: {e}", exc_info=True)
            output = f"Error: {e!s}"
            status = InvocationStatus.FAILED

        invocation.transition(status)
        logger.info(f"Tool {tool.id} ({call.tool_call_id}) finished with status {status}")
        return self._finish(call, group, name, output, prompt_context)

    def _finish(
        self,
        call: ToolCallPart,
        group: str,
        name: str,
        output: ToolOutput,
        prompt_context: PromptContext | None,
    ) -> ToolResultPart:
        self._active.pop(call.tool_call_id, None)
        self.task.add_tool_message(
            call.tool_call_id,
            group,
            name,
            call.input,
            output=output,
            prompt_context=prompt_context,
            finished=True,
        )
        return ToolResultPart(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            output=ToolResultOutput.from_value(output),
        )
