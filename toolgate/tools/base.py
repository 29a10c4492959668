"""Base types and definitions for tools."""

import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from toolgate.models.invocation import InvocationStatus, ToolInvocation
from toolgate.models.messages import PromptContext
from toolgate.models.profile import tool_id
from toolgate.services.approval import ApprovalGate, ApprovalResult
from toolgate.services.cancellation import CancellationToken

if TYPE_CHECKING:
    from toolgate.models.task import Task

ToolOutput = str | dict[str, Any] | list[Any]
ToolHandler = Callable[[BaseModel, "ToolContext"], Awaitable[ToolOutput]]


@dataclass
class ToolDefinition:
    """Definition of a tool available to the agent."""

    name: str
    group: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler

    @property
    def id(self) -> str:
        """Profile key of this tool (`<group>---<name>`)."""
        return tool_id(self.group, self.name)

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)


@dataclass
class ToolContext:
    """Everything a handler needs for one tool call."""

    task: "Task"
    tool: ToolDefinition
    gate: ApprovalGate
    invocation: ToolInvocation
    args: dict[str, Any]
    prompt_context: PromptContext | None = None
    outcome: InvocationStatus | None = field(default=None)

    @property
    def cancel_token(self) -> CancellationToken:
        return self.task.cancel_token

    def notify(self, output: Any, streaming: bool = False) -> None:
        """Report unfinished progress for this call."""
        self.task.add_tool_message(
            self.invocation.tool_call_id,
            self.tool.group,
            self.tool.name,
            self.args,
            output=output,
            prompt_context=self.prompt_context,
            finished=False,
            streaming=streaming,
        )

    async def request_approval(
        self,
        question: str,
        subject: str | None = None,
        command: str | None = None,
    ) -> ApprovalResult:
        """Run the approval gate for this call, cancellable through the task token."""
        self.invocation.transition(InvocationStatus.AWAITING_APPROVAL)
        result = await self.gate.handle_approval(
            self.tool.id,
            question,
            subject=subject,
            command=command,
            cancel_token=self.cancel_token,
        )
        if result.approved:
            self.invocation.transition(InvocationStatus.APPROVED)
            self.invocation.transition(InvocationStatus.RUNNING)
        return result

    def deny(self, text: str) -> str:
        """Finish the call as denied with a human-readable reason."""
        self.outcome = InvocationStatus.DENIED
        return text

    def fail(self, text: str) -> str:
        """Finish the call as failed with an error text."""
        self.outcome = InvocationStatus.FAILED
        return text

    def resolve(self, path: str) -> Path:
        """Resolve a tool path against the task directory."""
        return resolve_path(self.task.get_task_dir(), path)


def expand_tilde(file_path: str) -> str:
    """Expand a leading `~` to the user's home directory."""
    if file_path == "~" or file_path.startswith("~/"):
        return str(Path.home()) + file_path[1:]
    return file_path


def resolve_path(base_dir: Path, file_path: str) -> Path:
    """Absolute, normalized path of `file_path` relative to `base_dir`; symlinks are kept."""
    return Path(os.path.normpath(os.path.join(base_dir, expand_tilde(file_path))))
