"""Shell command tool."""

import asyncio
import codecs
import json
import os
import signal
from collections.abc import AsyncIterator, Awaitable
from contextlib import aclosing
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, Field

from toolgate.config import ToolgateConfig
from toolgate.models.invocation import CommandProgress, InvocationStatus
from toolgate.models.profile import POWER_TOOL_BASH, POWER_TOOL_GROUP_NAME
from toolgate.services.cancellation import CancellationToken
from toolgate.tools.base import ToolContext, ToolDefinition, ToolOutput
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TIMEOUT_EXIT_CODE = 124
KILL_GRACE_SECONDS = 2.0
READ_CHUNK_SIZE = 4096
DRAIN_SECONDS = 0.1

BASH_DESCRIPTION = (
    "Executes a shell command. For safety, commands may be sandboxed or require user approval "
    "(approval handled by Agent)."
)


class BashInput(BaseModel):
    """Input schema for the bash tool."""

    command: str = Field(..., description="The shell command to execute (e.g., ls -la, npm install).")
    cwd: str | None = Field(
        None,
        description="The working directory for the command (relative to <WorkingDirectory>). Default: <WorkingDirectory>.",
    )
    timeout: int | None = Field(
        None,
        ge=0,
        description="Timeout for the command execution in milliseconds. Default: 120000 ms.",
    )


def exit_code_from_returncode(returncode: int) -> int:
    """Map a subprocess return code to the reported exit code.

    Negative codes mean the process died from a signal: SIGTERM reports as a
    timeout (124), any other signal as 1.
    """
    if returncode >= 0:
        return returncode
    if -returncode == signal.SIGTERM:
        return TIMEOUT_EXIT_CODE
    return 1


def timeout_message(timeout_ms: int) -> str:
    return f"Error: Command timed out after {timeout_ms}ms. Consider increasing the timeout parameter."


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError as e:
        logger.warning(f"Cannot signal process group {process.pid}: {e}")


async def terminate_process_group(process: asyncio.subprocess.Process, grace_seconds: float = KILL_GRACE_SECONDS) -> None:
    """SIGTERM the process group, then SIGKILL it if it is still alive after the grace period."""
    if process.returncode is not None:
        return
    logger.info(f"Terminating process group {process.pid}")
    _signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"Process group {process.pid} ignored SIGTERM, killing")
        _signal_group(process, signal.SIGKILL)
        await process.wait()


_pending_terminations: set[asyncio.Task] = set()


def _terminate_in_background(process: asyncio.subprocess.Process) -> None:
    """Start terminating the process group without waiting for it to die."""
    termination = asyncio.create_task(terminate_process_group(process))
    _pending_terminations.add(termination)
    termination.add_done_callback(_pending_terminations.discard)


async def wait_for_terminations() -> None:
    """Wait until every process group terminated in the background is gone."""
    if _pending_terminations:
        await asyncio.gather(*_pending_terminations)


async def _pump(stream: asyncio.StreamReader, name: str, queue: asyncio.Queue) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while chunk := await stream.read(READ_CHUNK_SIZE):
        text = decoder.decode(chunk)
        if text:
            await queue.put((name, text))
    tail = decoder.decode(b"", final=True)
    if tail:
        await queue.put((name, tail))
    await queue.put((name, None))


async def run_command(
    command: str,
    cwd: Path,
    timeout_ms: int,
    cancel_token: CancellationToken | None = None,
    env: dict[str, str] | None = None,
) -> AsyncIterator[CommandProgress]:
    """Run `command` through the shell and stream its output.

    Yields one unfinished CommandProgress per output chunk and exactly one
    finished CommandProgress last. The command ends when the shell exits;
    output still arriving is drained for DRAIN_SECONDS, and background
    children that keep the pipes open are left running. The process runs in
    its own session so the whole process group can be killed. On timeout the
    result is yielded at once while termination continues in the background.

    Raises:
        OperationCancelledError: If the token fires; the process group is
            killed before the error propagates
    """

    def guard(awaitable: Awaitable[T]) -> Awaitable[T]:
        return cancel_token.race(awaitable) if cancel_token is not None else awaitable

    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            env=env if env is not None else os.environ.copy(),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning(f"Failed to spawn command {command!r}: {e}")
        yield CommandProgress(stderr=str(e), exit_code=1, finished=True)
        return

    logger.debug(f"Spawned command {command!r} as pid {process.pid} in {cwd}")
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000
    queue: asyncio.Queue[tuple[str, str | None]] = asyncio.Queue()
    readers = [
        asyncio.create_task(_pump(process.stdout, "stdout", queue)),
        asyncio.create_task(_pump(process.stderr, "stderr", queue)),
    ]
    exited = asyncio.ensure_future(process.wait())
    stdout = ""
    stderr = ""
    open_streams = len(readers)
    timed_out = False

    def take(item: tuple[str, str | None]) -> CommandProgress | None:
        nonlocal stdout, stderr, open_streams
        name, text = item
        if text is None:
            open_streams -= 1
            return None
        if name == "stdout":
            stdout += text
        else:
            stderr += text
        return CommandProgress(stdout=stdout, stderr=stderr, chunk=text)

    try:
        # The shell exiting ends the command; a background child may keep the pipes open.
        while not exited.done():
            remaining = deadline - loop.time()
            if remaining <= 0:
                timed_out = True
                break
            getter = asyncio.ensure_future(queue.get())
            try:
                await guard(asyncio.wait({getter, exited}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED))
            finally:
                if not getter.done():
                    getter.cancel()
            if getter.done() and not getter.cancelled():
                progress = take(getter.result())
                if progress is not None:
                    yield progress

        if timed_out:
            logger.info(f"Command {command!r} timed out after {timeout_ms}ms")
            _terminate_in_background(process)
            yield CommandProgress(
                stdout=stdout,
                stderr=timeout_message(timeout_ms),
                exit_code=TIMEOUT_EXIT_CODE,
                finished=True,
                timed_out=True,
            )
            return

        drain_deadline = loop.time() + DRAIN_SECONDS
        while open_streams:
            try:
                item = await asyncio.wait_for(queue.get(), timeout=max(drain_deadline - loop.time(), 0))
            except asyncio.TimeoutError:
                logger.debug(f"Output of {command!r} still open after exit, leaving background processes running")
                break
            progress = take(item)
            if progress is not None:
                yield progress

        yield CommandProgress(
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code_from_returncode(exited.result()),
            finished=True,
        )
    finally:
        for reader in readers:
            reader.cancel()
        if not exited.done():
            exited.cancel()
        if not timed_out:
            await terminate_process_group(process)


def create_bash_tool(config: ToolgateConfig | None = None) -> ToolDefinition:
    config = config or ToolgateConfig()

    async def bash_handler(args: BashInput, ctx: ToolContext) -> ToolOutput:
        timeout = args.timeout if args.timeout is not None else config.bash_timeout_ms
        ctx.invocation.timeout_ms = timeout

        approval = await ctx.request_approval(
            "Approve executing bash command?",
            subject=f"Command: {args.command}\nWorking Directory: {args.cwd or '.'}\nTimeout: {timeout}ms",
            command=args.command,
        )
        if approval.denied_by_pattern:
            override = ctx.gate.profile.pattern_override(ctx.tool.id)
            denied_pattern = override.denied_pattern if override else ""
            return ctx.deny(
                "Bash command execution denied by settings. "
                f"Command matches denied pattern: `{denied_pattern}`. "
                "If the command is destructive, you must not try to workaround it, inform the user instead."
            )
        if not approval.approved:
            return ctx.deny(f"Bash command execution denied by user. Reason: {approval.reason}")

        cwd = ctx.resolve(args.cwd) if args.cwd else ctx.task.get_task_dir()
        final = CommandProgress(exit_code=1, finished=True)

        async with aclosing(run_command(args.command, cwd, timeout, ctx.cancel_token)) as progress_stream:
            async for progress in progress_stream:
                if progress.finished:
                    final = progress
                    continue
                ctx.invocation.append_output(progress.chunk)
                ctx.notify(
                    json.dumps({"stdout": progress.stdout, "stderr": progress.stderr, "exitCode": None}),
                    streaming=True,
                )

        if final.timed_out:
            ctx.outcome = InvocationStatus.TIMED_OUT
        return final.as_output()

    return ToolDefinition(
        name=POWER_TOOL_BASH,
        group=POWER_TOOL_GROUP_NAME,
        description=BASH_DESCRIPTION,
        input_schema_class=BashInput,
        handler=bash_handler,
    )
