"""Ephemeral state of running tool calls."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from toolgate.models.messages import PromptContext


class InvocationStatus(StrEnum):
    """Lifecycle of one tool call."""

    REQUESTED = "requested"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    DENIED = "denied"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        InvocationStatus.DENIED,
        InvocationStatus.SUCCEEDED,
        InvocationStatus.FAILED,
        InvocationStatus.TIMED_OUT,
        InvocationStatus.CANCELLED,
    }
)


class FileWriteMode(StrEnum):
    """How the file write tool treats an existing file."""

    CREATE_ONLY = "create_only"
    OVERWRITE = "overwrite"
    APPEND = "append"


@dataclass
class ToolInvocation:
    """A single execution of one tool call, discarded after its terminal update."""

    tool_call_id: str
    tool_id: str
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    timeout_ms: int | None = None
    accumulated_output: str = ""
    status: InvocationStatus = InvocationStatus.REQUESTED

    @property
    def finished(self) -> bool:
        """Whether the invocation reached a terminal status."""
        return self.status in TERMINAL_STATUSES

    def transition(self, status: InvocationStatus) -> None:
        """Move to a new status; terminal statuses are final."""
        if self.finished:
            raise ValueError(f"Invocation {self.tool_call_id} already finished with status {self.status}")
        self.status = status

    def append_output(self, chunk: str) -> None:
        """Grow the accumulated output; it never shrinks."""
        self.accumulated_output += chunk


@dataclass
class CommandProgress:
    """One update of a shell command's output stream."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    finished: bool = False
    timed_out: bool = False
    chunk: str = ""

    def as_output(self) -> dict[str, Any]:
        """Shape reported to the conversation."""
        return {"stdout": self.stdout, "stderr": self.stderr, "exitCode": self.exit_code}


@dataclass
class ToolMessageUpdate:
    """Payload of Task.add_tool_message, merged into the conversation by subscribers."""

    tool_call_id: str
    tool_group: str
    tool_name: str
    args: dict[str, Any]
    output: Any = None
    error: str | None = None
    prompt_context: PromptContext | None = None
    finished: bool = True
    streaming: bool = False
