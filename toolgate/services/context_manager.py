"""Conversation context: the ordered message log of a task and its fork algorithm."""

import json
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from toolgate.errors import MessageNotFoundError
from toolgate.models.messages import (
    Message,
    MessageRole,
    PromptContext,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    ToolResultOutput,
    ToolResultPart,
    is_empty_content,
)
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)

CURRENT_CONTEXT_VERSION = 2

ToolCallsRemovedListener = Callable[[set[str]], None]


class ForkTargetKind(StrEnum):
    """How a fork target id was resolved."""

    BY_MESSAGE_ID = "message_id"
    BY_TOOL_CALL_ID = "tool_call_id"


@dataclass(frozen=True)
class ForkTarget:
    """Resolved fork point inside the log."""

    kind: ForkTargetKind
    index: int
    tool_call_id: str | None = None


def _tool_call_ids(messages: list[Message]) -> set[str]:
    return {part.tool_call_id for message in messages for part in message.tool_calls() + message.tool_results()}


class ConversationContext:
    """Owns the ordered message log for one task.

    The log is append-only during normal operation. Forking never mutates it:
    `get_messages_up_to` returns deep copies.
    """

    def __init__(self, task_id: str, messages: list[Message] | None = None):
        """Initialize the context.

        Args:
            task_id: Owning task identifier, used for logging
            messages: Initial log, taken over by this context
        """
        self.task_id = task_id
        self._messages: list[Message] = []
        self._unfinished_tool_calls: set[str] = set()
        self._removal_listeners: list[ToolCallsRemovedListener] = []
        for message in messages or []:
            self._append(message)

    def __len__(self) -> int:
        return len(self._messages)

    def _append(self, message: Message) -> None:
        if any(existing.id == message.id for existing in self._messages):
            raise ValueError(f"Message with id {message.id} already exists in task {self.task_id}")
        self._messages.append(message)

    def add_message(self, role_or_message: MessageRole | Message, content: str | None = None) -> Message | None:
        """Append a message, either prebuilt or from a role and plain text.

        Empty text and empty assistant messages are skipped.

        Returns:
            The appended message, or None when skipped
        """
        if isinstance(role_or_message, Message):
            message = role_or_message
            if message.role == "assistant" and is_empty_content(message.content):
                logger.debug(f"Task {self.task_id}: skipping empty assistant message")
                return None
        else:
            if not content:
                return None
            message = Message(role=role_or_message, content=content)

        self._append(message)
        logger.debug(f"Task {self.task_id}: added {message.role} message. Total messages: {len(self._messages)}")
        return message

    def get_messages(self) -> list[Message]:
        """Current log as a new list (messages are shared, not copied)."""
        return list(self._messages)

    def get_message(self, message_id: str) -> Message | None:
        """Look up a message by id."""
        return next((message for message in self._messages if message.id == message_id), None)

    def set_messages(self, messages: list[Message]) -> None:
        """Replace the whole log."""
        logger.debug(f"Task {self.task_id}: setting {len(messages)} context messages")
        self._forget_tool_calls(_tool_call_ids(self._messages) | self._unfinished_tool_calls)
        self._messages = []
        for message in messages:
            self._append(message)

    def clear_messages(self) -> None:
        """Drop every message."""
        logger.debug(f"Task {self.task_id}: clearing messages")
        self._forget_tool_calls(_tool_call_ids(self._messages) | self._unfinished_tool_calls)
        self._messages = []

    # Tool results

    def upsert_tool_result(
        self,
        tool_call_id: str,
        tool_name: str,
        output: Any,
        finished: bool = True,
        prompt_context: PromptContext | None = None,
    ) -> Message:
        """Write the latest output of a tool call into the log.

        The matching ToolResult part is replaced in place, so a batched tool
        message keeps its other results. Without a match a new `tool` message
        is appended.
        """
        part = ToolResultPart(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            output=output if isinstance(output, ToolResultOutput) else ToolResultOutput.from_value(output),
        )

        if finished:
            self._unfinished_tool_calls.discard(tool_call_id)
        else:
            self._unfinished_tool_calls.add(tool_call_id)

        located = self._find_tool_result(tool_call_id)
        if located is not None:
            index, part_index = located
            message = self._messages[index]
            content = list(message.parts())
            content[part_index] = part
            updated = message.model_copy(update={"content": content})
            self._messages[index] = updated
            return updated

        message = Message(role="tool", content=[part], prompt_context=prompt_context)
        self._append(message)
        return message

    def is_finished(self, tool_call_id: str) -> bool:
        """Whether the last recorded update for a tool call was terminal."""
        return tool_call_id not in self._unfinished_tool_calls

    def on_tool_calls_removed(self, listener: ToolCallsRemovedListener) -> None:
        """Call `listener` with the ids of tool calls whose messages leave the log."""
        self._removal_listeners.append(listener)

    def _forget_tool_calls(self, tool_call_ids: set[str]) -> None:
        if not tool_call_ids:
            return
        self._unfinished_tool_calls -= tool_call_ids
        for listener in list(self._removal_listeners):
            listener(tool_call_ids)

    def _find_tool_result(self, tool_call_id: str) -> tuple[int, int] | None:
        for index, message in enumerate(self._messages):
            if message.role != "tool":
                continue
            for part_index, part in enumerate(message.parts()):
                if isinstance(part, ToolResultPart) and part.tool_call_id == tool_call_id:
                    return index, part_index
        return None

    # Fork

    def locate(self, target_id: str) -> ForkTarget:
        """Resolve a fork target by message id first, then by tool result call id.

        Raises:
            MessageNotFoundError: If neither search matches
        """
        for index, message in enumerate(self._messages):
            if message.id == target_id:
                return ForkTarget(kind=ForkTargetKind.BY_MESSAGE_ID, index=index)

        located = self._find_tool_result(target_id)
        if located is not None:
            return ForkTarget(kind=ForkTargetKind.BY_TOOL_CALL_ID, index=located[0], tool_call_id=target_id)

        logger.error(f"Failed to get messages up to {target_id} in task {self.task_id}: not found")
        raise MessageNotFoundError(target_id)

    def get_messages_up_to(self, target_id: str) -> list[Message]:
        """Build an independent conversation prefix ending at `target_id`.

        `target_id` is either a message id or the tool call id of a tool
        result. The source log is never modified.

        Forking at an assistant message drops all of its tool calls. Forking
        at a tool result keeps the owning assistant message only up to and
        including the matching tool call. A tool result with no owning
        assistant message is returned as is.

        Raises:
            MessageNotFoundError: If the target matches nothing
        """
        target = self.locate(target_id)
        result = [message.model_copy(deep=True) for message in self._messages[: target.index + 1]]

        match target.kind:
            case ForkTargetKind.BY_MESSAGE_ID:
                boundary = result[target.index]
                if boundary.role == "assistant" and isinstance(boundary.content, list):
                    boundary.content = [
                        part for part in boundary.content if isinstance(part, (TextPart, ReasoningPart))
                    ]
            case ForkTargetKind.BY_TOOL_CALL_ID:
                owner = self._find_owning_assistant(target.tool_call_id, target.index)
                if owner is None:
                    logger.info(
                        f"Task {self.task_id}: no assistant message owns tool call {target.tool_call_id}, "
                        "forking without truncation"
                    )
                else:
                    owner_index, part_index = owner
                    owner_message = result[owner_index]
                    owner_message.content = owner_message.parts()[: part_index + 1]

        logger.debug(
            f"Task {self.task_id}: forked {len(result)} of {len(self._messages)} messages at {target_id} ({target.kind})"
        )
        return result

    def _find_owning_assistant(self, tool_call_id: str, before_index: int) -> tuple[int, int] | None:
        """Find the nearest assistant message before `before_index` issuing the tool call."""
        owners: list[tuple[int, int]] = []
        for index in range(before_index - 1, -1, -1):
            message = self._messages[index]
            if message.role != "assistant":
                continue
            for part_index, part in enumerate(message.parts()):
                if isinstance(part, ToolCallPart) and part.tool_call_id == tool_call_id:
                    owners.append((index, part_index))
                    break

        if len(owners) > 1:
            logger.warning(
                f"Task {self.task_id}: tool call id {tool_call_id} is issued by {len(owners)} assistant messages, "
                f"using the nearest one at index {owners[0][0]}"
            )
        return owners[0] if owners else None

    # Removal

    def remove_message_by_id(self, message_id: str) -> list[str]:
        """Remove a message, or a tool call/result pair when given a tool call id.

        An assistant message holding both narrative and tool calls only loses
        its text and reasoning parts.

        Returns:
            Ids of the removed messages, or the id of the trimmed assistant message

        Raises:
            MessageNotFoundError: If nothing matches
        """
        index = next((i for i, message in enumerate(self._messages) if message.id == message_id), None)
        if index is None:
            return self._remove_by_tool_call_id(message_id)

        message = self._messages[index]
        if message.role == "assistant" and isinstance(message.content, list):
            has_narrative = any(isinstance(part, (TextPart, ReasoningPart)) for part in message.content)
            has_tool_calls = any(isinstance(part, ToolCallPart) for part in message.content)
            if has_narrative and has_tool_calls:
                message.content = [part for part in message.content if isinstance(part, ToolCallPart)]
                logger.debug(f"Task {self.task_id}: removed narrative parts from assistant message {message_id}")
                return [message_id]

        return self._remove_at(index)

    def _remove_at(self, index: int) -> list[str]:
        message = self._messages.pop(index)
        removed = [message.id]
        logger.debug(f"Task {self.task_id}: removed {message.role} message {message.id}")

        for result in message.tool_results():
            removed_owner = self._remove_tool_call(result.tool_call_id)
            if removed_owner:
                removed.append(removed_owner)
        return removed

    def _remove_by_tool_call_id(self, tool_call_id: str) -> list[str]:
        located = self._find_tool_result(tool_call_id)
        if located is None:
            logger.error(f"Failed to remove by tool call id {tool_call_id} in task {self.task_id}")
            raise MessageNotFoundError(tool_call_id)

        removed: list[str] = []
        index, part_index = located
        message = self._messages[index]
        remaining = [part for i, part in enumerate(message.parts()) if i != part_index]
        if remaining:
            message.content = remaining
        else:
            self._messages.pop(index)
            removed.append(message.id)

        removed_owner = self._remove_tool_call(tool_call_id)
        if removed_owner:
            removed.append(removed_owner)
        return removed

    def _remove_tool_call(self, tool_call_id: str) -> str | None:
        """Drop a tool call part from its nearest owner; returns the owner id if it became empty and was removed."""
        self._forget_tool_calls({tool_call_id})
        for index in range(len(self._messages) - 1, -1, -1):
            message = self._messages[index]
            if message.role != "assistant" or not isinstance(message.content, list):
                continue
            if not any(isinstance(p, ToolCallPart) and p.tool_call_id == tool_call_id for p in message.content):
                continue
            message.content = [
                p for p in message.content if not (isinstance(p, ToolCallPart) and p.tool_call_id == tool_call_id)
            ]
            if not message.content:
                self._messages.pop(index)
                logger.debug(f"Task {self.task_id}: removed empty assistant message {message.id}")
                return message.id
            return None
        return None

    def remove_last_message(self) -> None:
        """Remove the last message, unwinding its tool call when it is a tool result."""
        if not self._messages:
            logger.warning(f"Attempted to remove last message from task {self.task_id}, but message list is empty.")
            return
        self._remove_at(len(self._messages) - 1)

    def remove_messages_up_to_last_user_message(self) -> list[Message]:
        """Remove the last user message and everything after it.

        Returns:
            The removed messages
        """
        last_user_index = next(
            (i for i in range(len(self._messages) - 1, -1, -1) if self._messages[i].role == "user"),
            None,
        )
        if last_user_index is None:
            logger.warning(f"No user message found to remove up to in task {self.task_id}.")
            return []

        removed = self._messages[last_user_index:]
        self._messages = self._messages[:last_user_index]
        self._forget_tool_calls(_tool_call_ids(removed))
        logger.debug(f"Task {self.task_id}: removed {len(removed)} messages up to last user message")
        return removed

    # Persistence

    def dump(self) -> dict[str, Any]:
        """Serialize the log to its persisted shape."""
        return {
            "version": CURRENT_CONTEXT_VERSION,
            "messages": [message.to_dict() for message in self._messages],
        }

    @classmethod
    def load_from(cls, task_id: str, data: dict[str, Any]) -> "ConversationContext":
        """Rebuild a context from `dump()` output."""
        version = data.get("version", CURRENT_CONTEXT_VERSION)
        if version != CURRENT_CONTEXT_VERSION:
            raise ValueError(f"Unsupported context version {version} for task {task_id}")
        messages = [Message.model_validate(raw) for raw in data.get("messages", [])]
        return cls(task_id, messages)

    def save(self, path: Path) -> None:
        """Write the log as JSON."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.dump(), indent=2), encoding="utf-8")
        logger.debug(f"Task {self.task_id}: saved {len(self._messages)} messages to {path}")

    @classmethod
    def load(cls, task_id: str, path: Path) -> "ConversationContext":
        """Read a log written by `save`. A missing file yields an empty context."""
        if not path.exists():
            return cls(task_id)
        return cls.load_from(task_id, json.loads(path.read_text(encoding="utf-8")))
