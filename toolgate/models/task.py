"""Task: the working directory, conversation and cancellation scope of one agent run."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from toolgate.models.invocation import ToolMessageUpdate
from toolgate.models.messages import PromptContext
from toolgate.models.profile import tool_id
from toolgate.services.cancellation import CancellationToken
from toolgate.services.context_manager import ConversationContext
from toolgate.services.version_control import NullVersionControl, VersionControl
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)

ToolMessageListener = Callable[[ToolMessageUpdate], None]


@dataclass
class Task:
    """State shared by every tool call of one task."""

    task_id: str
    task_dir: Path
    project_dir: Path | None = None
    context: ConversationContext | None = None
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    version_control: VersionControl = field(default_factory=NullVersionControl)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    _listeners: list[ToolMessageListener] = field(default_factory=list, repr=False)
    _terminal_calls: set[str] = field(default_factory=set, repr=False)

    def __post_init__(self) -> None:
        self.task_dir = Path(self.task_dir)
        if self.project_dir is not None:
            self.project_dir = Path(self.project_dir)
        if self.context is None:
            self.context = ConversationContext(self.task_id)
        self.context.on_tool_calls_removed(self._forget_terminal_calls)

    def get_task_dir(self) -> Path:
        """Directory tool paths resolve against."""
        return self.task_dir

    def get_project_dir(self) -> Path:
        """Project root; the task directory when no separate project is set."""
        return self.project_dir or self.task_dir

    async def add_to_git(self, path: Path, prompt_context: PromptContext | None = None) -> None:
        """Register a written file with version control."""
        logger.debug(
            f"Task {self.task_id}: adding {path} to version control"
            + (f" for prompt {prompt_context.id}" if prompt_context else "")
        )
        await self.version_control.add(Path(path))

    def _forget_terminal_calls(self, tool_call_ids: set[str]) -> None:
        self._terminal_calls -= tool_call_ids

    def subscribe(self, listener: ToolMessageListener) -> Callable[[], None]:
        """Receive every tool message update. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add_tool_message(
        self,
        tool_call_id: str,
        tool_group: str,
        tool_name: str,
        args: dict[str, Any],
        output: Any = None,
        error: str | None = None,
        prompt_context: PromptContext | None = None,
        finished: bool = True,
        streaming: bool = False,
    ) -> ToolMessageUpdate | None:
        """Apply one tool update to the conversation and notify subscribers.

        Updates arriving after the terminal update of the same call are dropped.

        Returns:
            The applied update, or None when dropped
        """
        if tool_call_id in self._terminal_calls:
            logger.warning(f"Task {self.task_id}: dropping update for already finished tool call {tool_call_id}")
            return None

        update = ToolMessageUpdate(
            tool_call_id=tool_call_id,
            tool_group=tool_group,
            tool_name=tool_name,
            args=args,
            output=output,
            error=error,
            prompt_context=prompt_context,
            finished=finished,
            streaming=streaming,
        )

        recorded = output if output is not None else error
        if recorded is not None:
            self.context.upsert_tool_result(
                tool_call_id,
                tool_id(tool_group, tool_name) if tool_group else tool_name,
                recorded,
                finished=finished,
                prompt_context=prompt_context,
            )
        if finished:
            self._terminal_calls.add(tool_call_id)

        for listener in list(self._listeners):
            listener(update)
        return update

    def interrupt(self) -> None:
        """Cancel every pending suspension point of this task."""
        logger.info(f"Task {self.task_id}: interrupted")
        self.cancel_token.cancel()

    def reset_cancellation(self) -> None:
        """Install a fresh token so the task can run again after an interrupt."""
        self.cancel_token = CancellationToken()
