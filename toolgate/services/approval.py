"""Approval gate: tool policy decisions and the interactive approval collaborator."""

import asyncio
import re
from dataclasses import dataclass
from typing import Protocol

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

from toolgate.models.profile import AgentProfile, ToolApprovalState
from toolgate.services.cancellation import CancellationToken
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)

NO_REASON_GIVEN = "No reason given."


@dataclass(frozen=True)
class ApprovalDecision:
    """Outcome of the policy step, before any interactive prompt."""

    approved: bool
    bypassed_by_pattern: bool = False
    denied_by_pattern: bool = False
    requires_prompt: bool = False


@dataclass(frozen=True)
class ApprovalResult:
    """Final approval outcome for one tool call."""

    approved: bool
    reason: str | None = None
    bypassed_by_pattern: bool = False
    denied_by_pattern: bool = False


def matches_any(patterns: list[str], command: str) -> str | None:
    """Return the first pattern found anywhere in `command`, or None.

    Patterns that fail to compile are logged and matched as literal text.
    """
    for pattern in patterns:
        try:
            if re.search(pattern, command):
                return pattern
        except re.error as e:
            logger.warning(f"Invalid approval pattern {pattern!r}: {e}. Matching it literally")
            if re.search(re.escape(pattern), command):
                return pattern
    return None


def decide(tool_id: str, profile: AgentProfile, command: str | None = None) -> ApprovalDecision:
    """Pure policy decision for a tool call.

    For command tools (`command` given) the denied patterns are checked first,
    then the allowed patterns. Everything else falls through to the profile's
    approval state.
    """
    if command is not None:
        override = profile.pattern_override(tool_id)
        if override is not None:
            denied = matches_any(override.denied_patterns(), command)
            if denied is not None:
                logger.info(f"Tool {tool_id} denied by pattern {denied!r}")
                return ApprovalDecision(approved=False, denied_by_pattern=True)

            allowed = matches_any(override.allowed_patterns(), command)
            if allowed is not None:
                logger.info(f"Tool {tool_id} approved by pattern {allowed!r}")
                return ApprovalDecision(approved=True, bypassed_by_pattern=True)

    state = profile.approval_state(tool_id)
    match state:
        case ToolApprovalState.NEVER:
            return ApprovalDecision(approved=False)
        case ToolApprovalState.ALWAYS:
            return ApprovalDecision(approved=True)
        case _:
            if profile.auto_approve:
                return ApprovalDecision(approved=True)
            return ApprovalDecision(approved=False, requires_prompt=True)


class ApprovalCollaborator(Protocol):
    """Interface for whoever answers interactive approval questions.

    This allows pluggable front ends:
    - ConsoleApprover for terminal sessions
    - StaticApprover for headless runs and tests
    """

    async def request_approval(self, tool_id: str, question: str, subject: str | None = None) -> tuple[bool, str | None]:
        """Ask whether a tool call may run.

        Args:
            tool_id: Tool being approved
            question: Short question shown to the user
            subject: Optional details (command line, URL, ...)

        Returns:
            (approved, reason) where reason explains a denial
        """
        ...


class StaticApprover:
    """Answers every question the same way."""

    def __init__(self, approved: bool = True, reason: str | None = None):
        self.approved = approved
        self.reason = reason
        self.questions: list[tuple[str, str, str | None]] = []

    async def request_approval(self, tool_id: str, question: str, subject: str | None = None) -> tuple[bool, str | None]:
        self.questions.append((tool_id, question, subject))
        return self.approved, self.reason


class ConsoleApprover:
    """Asks on the terminal through rich prompts.

    Prompts block, so they run in a worker thread to keep the event loop free
    for other tool calls and for cancellation.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console()
        self._lock = asyncio.Lock()

    async def request_approval(self, tool_id: str, question: str, subject: str | None = None) -> tuple[bool, str | None]:
        # One question on screen at a time
        async with self._lock:
            return await asyncio.to_thread(self._ask, tool_id, question, subject)

    def _ask(self, tool_id: str, question: str, subject: str | None) -> tuple[bool, str | None]:
        if subject:
            self.console.print(Panel(subject, title=f"[bold yellow]{tool_id}[/bold yellow]", border_style="yellow"))
        if Confirm.ask(f"[bold]{question}[/bold]", console=self.console, default=False):
            return True, None
        reason = Prompt.ask("[dim]Reason (optional)[/dim]", console=self.console, default="")
        return False, reason or None


class ApprovalGate:
    """One profile/collaborator pair, constructed per task and passed to each tool call."""

    def __init__(self, profile: AgentProfile, collaborator: ApprovalCollaborator):
        self.profile = profile
        self.collaborator = collaborator

    def decide(self, tool_id: str, command: str | None = None) -> ApprovalDecision:
        """Policy decision against this gate's profile."""
        return decide(tool_id, self.profile, command)

    async def handle_approval(
        self,
        tool_id: str,
        question: str,
        subject: str | None = None,
        command: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ApprovalResult:
        """Decide and, for `ask` tools, wait for the collaborator.

        The wait has no timeout of its own; it ends when the collaborator
        answers or the cancellation token fires.

        Raises:
            OperationCancelledError: If the token fires while waiting
        """
        decision = self.decide(tool_id, command)
        if decision.denied_by_pattern:
            return ApprovalResult(approved=False, denied_by_pattern=True)
        if not decision.requires_prompt:
            logger.debug(f"Tool {tool_id} approval resolved without prompt: approved={decision.approved}")
            return ApprovalResult(
                approved=decision.approved,
                reason=None if decision.approved else NO_REASON_GIVEN,
                bypassed_by_pattern=decision.bypassed_by_pattern,
            )

        logger.info(f"Requesting approval for {tool_id}: {question}")
        request = self.collaborator.request_approval(tool_id, question, subject)
        if cancel_token is not None:
            approved, reason = await cancel_token.race(request)
        else:
            approved, reason = await request

        logger.info(f"Approval for {tool_id}: approved={approved}")
        if approved:
            return ApprovalResult(approved=True)
        return ApprovalResult(approved=False, reason=reason or NO_REASON_GIVEN)
