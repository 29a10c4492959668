"""File edit, read and write tools."""

import asyncio
import re
from pathlib import Path

from pydantic import BaseModel, Field

from toolgate.config import ToolgateConfig
from toolgate.models.invocation import FileWriteMode
from toolgate.models.profile import (
    POWER_TOOL_FILE_EDIT,
    POWER_TOOL_FILE_READ,
    POWER_TOOL_FILE_WRITE,
    POWER_TOOL_GROUP_NAME,
)
from toolgate.tools.base import ToolContext, ToolDefinition, ToolOutput
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)

BINARY_SNIFF_BYTES = 8000

FILE_EDIT_DESCRIPTION = """Atomically finds and replaces a specific string or pattern within a specified file. \
This tool is useful for making targeted changes to file content. Before editing, make sure you read the file \
and you know the actual content. When editing multiple lines, include the entire line in the search term, \
not just the part you want to change. <example>
searchTerm: "
const myFunction = () => {
  let value = 10;
",
replaceText: "
const myFunction = () => {
  let newValue = 5;
  let value = 10;
"</example>"""

FILE_READ_DESCRIPTION = (
    "Reads and returns the content of a specified non-binary file. Useful for inspecting file contents when "
    "analyzing user's request or before modifying it. Can return content as raw text or with line numbers in "
    "format 'lineNumber|content'. Supports line offset and limit for reading specific portions of files."
)

FILE_WRITE_DESCRIPTION = (
    "Writes content to a specified file. Can create a new file, overwrite an existing file, "
    "or append to an existing file."
)

_DOUBLE_ESCAPED = re.compile(r"\\\\[nrt\"']")
_LEADING_BACKSLASHES = re.compile(r"^\\+")
_SINGLE_ESCAPED = re.compile(r"\\[nrt\"']")
_ESCAPES = {"\\n": "\n", "\\r": "\r", "\\t": "\t", '\\"': '"', "\\'": "'"}


def sanitize_escapes(value: str) -> str:
    """Collapse over-escaped sequences models tend to produce.

    Leading backslashes are removed and `\\n`, `\\r`, `\\t`, `\\"`, `\\'`
    become the characters they name. Input that already contains doubly
    escaped sequences is returned unchanged.
    """
    if _DOUBLE_ESCAPED.search(value):
        return value
    updated = _LEADING_BACKSLASHES.sub("", value)
    return _SINGLE_ESCAPED.sub(lambda match: _ESCAPES[match.group(0)], updated)


def _improve_info(search_term: str) -> str:
    if search_term.startswith("\\\n"):
        return "Do not start the search term with a \\ character. No escape characters are needed."
    if '\\"' in search_term:
        return 'Try not using the \\ in the string like \\" and others, but use only ".'
    return (
        "When you try again make sure to exactly match content, character for character, "
        "including all comments, docstrings, etc."
    )


def read_text(path: Path) -> str:
    """Read UTF-8 text without newline translation."""
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def write_text(path: Path, content: str, mode: str = "w") -> None:
    """Write UTF-8 text without newline translation; `mode` is an `open` mode."""
    with open(path, mode, encoding="utf-8", newline="") as f:
        f.write(content)


async def commit_write(ctx: ToolContext, path: Path, content: str, mode: str = "w") -> None:
    """Write `content` unless the task was cancelled first.

    A worker thread cannot be interrupted, so once the write has started it
    runs to completion and the result reports what reached the disk.
    """
    ctx.cancel_token.raise_if_cancelled()
    await asyncio.to_thread(write_text, path, content, mode)


def is_binary(data: bytes) -> bool:
    """Heuristic binary check: NUL bytes near the start or invalid UTF-8."""
    if b"\x00" in data[:BINARY_SNIFF_BYTES]:
        return True
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


class FileEditInput(BaseModel):
    """Input schema for the file edit tool."""

    file_path: str = Field(..., description="The path to the file to be edited (relative to the <WorkingDirectory>).")
    search_term: str = Field(
        ...,
        description=(
            "The string or regular expression to find in the file.\n"
            "*EXACTLY MATCH* the existing file content, character for character, including all comments, "
            "docstrings, etc.\n"
            "Include enough lines in each to uniquely match each set of lines that need to change.\n"
            'Do not use escape characters \\ in the string like \\n or \\" and others. '
            "Do not start the search term with a \\ character."
        ),
    )
    replacement_text: str = Field(
        ...,
        description=(
            "The string to replace the searchTerm with. "
            'Do not use escape characters \\ in the string like \\n or \\" and others'
        ),
    )
    is_regex: bool = Field(
        False,
        description=(
            "Whether the searchTerm should be treated as a regular expression. "
            "Use regex only when it is really needed. Default: false."
        ),
    )
    replace_all: bool = Field(
        False, description="Whether to replace all occurrences or just the first one. Default: false."
    )


class FileReadInput(BaseModel):
    """Input schema for the file read tool."""

    file_path: str = Field(
        ...,
        description=(
            "The path to the file to be read (relative to the <WorkingDirectory> or absolute if outside of the "
            "directory)."
        ),
    )
    with_lines: bool = Field(
        False,
        description=(
            'Whether to return the file content with line numbers in format "lineNumber|content". Default: false.'
        ),
    )
    line_offset: int = Field(0, ge=0, description="The starting line number (0-based) to begin reading from. Default: 0.")
    line_limit: int | None = Field(None, ge=1, description="The maximum number of lines to read. Default: 1000.")


class FileWriteInput(BaseModel):
    """Input schema for the file write tool."""

    file_path: str = Field(..., description="The path to the file to be written (relative to the <WorkingDirectory>).")
    content: str = Field(
        ...,
        description=(
            'The content to write to the file. Do not use escape characters \\ in the string like \\n or \\" '
            "and others."
        ),
    )
    mode: FileWriteMode = Field(
        FileWriteMode.CREATE_ONLY,
        description=(
            "Mode of writing: 'create_only' (creates if not exists, fails if exists), 'overwrite' (overwrites or "
            "creates), 'append' (appends or creates). Default: 'create_only'."
        ),
    )


def create_file_edit_tool() -> ToolDefinition:
    async def file_edit_handler(args: FileEditInput, ctx: ToolContext) -> ToolOutput:
        if args.search_term == args.replacement_text:
            return "Already updated - no changes were needed."

        approval = await ctx.request_approval(f"Approve editing file '{args.file_path}'?")
        if not approval.approved:
            return ctx.deny(f"File edit to '{args.file_path}' denied by user. Reason: {approval.reason}")

        path = ctx.resolve(args.file_path)
        try:
            content = await ctx.cancel_token.race(asyncio.to_thread(read_text, path))

            if args.is_regex:
                modified = re.sub(args.search_term, args.replacement_text, content, count=0 if args.replace_all else 1)
            else:
                search_term = sanitize_escapes(args.search_term)
                replacement = sanitize_escapes(args.replacement_text)
                modified = content.replace(search_term, replacement, -1 if args.replace_all else 1)

            if modified == content:
                return (
                    "Warning: Given 'searchTerm' was not found in the file. Content remains the same. "
                    f"{_improve_info(args.search_term)}"
                )

            await commit_write(ctx, path, modified)
            logger.debug(f"Edited {path}")
            return f"Successfully edited '{args.file_path}'."
        except FileNotFoundError:
            return ctx.fail(f"Error: File '{args.file_path}' not found.")
        except (OSError, UnicodeDecodeError, re.error) as e:
            return ctx.fail(f"Error editing file '{args.file_path}': {e}")

    return ToolDefinition(
        name=POWER_TOOL_FILE_EDIT,
        group=POWER_TOOL_GROUP_NAME,
        description=FILE_EDIT_DESCRIPTION,
        input_schema_class=FileEditInput,
        handler=file_edit_handler,
    )


def create_file_read_tool(config: ToolgateConfig | None = None) -> ToolDefinition:
    config = config or ToolgateConfig()

    async def file_read_handler(args: FileReadInput, ctx: ToolContext) -> ToolOutput:
        approval = await ctx.request_approval(f"Approve reading file '{args.file_path}'?")
        if not approval.approved:
            return ctx.deny(f"File read of '{args.file_path}' denied by user. Reason: {approval.reason}")

        path = ctx.resolve(args.file_path)
        line_limit = args.line_limit or config.read_line_limit
        try:
            data = await ctx.cancel_token.race(asyncio.to_thread(path.read_bytes))
        except FileNotFoundError:
            return ctx.fail(f"Error: File '{args.file_path}' not found.")
        except OSError as e:
            return ctx.fail(f"Error: Could not read file '{args.file_path}'. {e}")

        if is_binary(data):
            return ctx.fail("Error: Binary files cannot be read.")

        lines = data.decode("utf-8").split("\n")
        total_lines = len(lines)
        start = args.line_offset
        end = min(total_lines, start + line_limit)
        selected = lines[start:end]

        if args.with_lines:
            selected = [f"{start + index + 1}|{line}" for index, line in enumerate(selected)]

        if end < total_lines:
            selected.extend(["...", f"Total lines in the file: {total_lines}"])

        return "\n".join(selected)

    return ToolDefinition(
        name=POWER_TOOL_FILE_READ,
        group=POWER_TOOL_GROUP_NAME,
        description=FILE_READ_DESCRIPTION,
        input_schema_class=FileReadInput,
        handler=file_read_handler,
    )


def _write_question(mode: FileWriteMode, file_path: str) -> str:
    match mode:
        case FileWriteMode.OVERWRITE:
            return f"Approve overwriting file '{file_path}'?"
        case FileWriteMode.APPEND:
            return f"Approve appending to file '{file_path}'?"
        case _:
            return f"Approve creating file '{file_path}'?"


def create_file_write_tool() -> ToolDefinition:
    async def file_write_handler(args: FileWriteInput, ctx: ToolContext) -> ToolOutput:
        approval = await ctx.request_approval(_write_question(args.mode, args.file_path))
        if not approval.approved:
            return ctx.deny(f"File write to '{args.file_path}' denied by user. Reason: {approval.reason}")

        path = ctx.resolve(args.file_path)
        try:
            await ctx.cancel_token.race(asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True))

            match args.mode:
                case FileWriteMode.CREATE_ONLY:
                    try:
                        await commit_write(ctx, path, args.content, "x")
                    except FileExistsError:
                        return ctx.fail(f"Error: File '{args.file_path}' already exists (mode: create_only).")
                    await ctx.task.add_to_git(path, ctx.prompt_context)
                    return f"Successfully created '{args.file_path}'."
                case FileWriteMode.APPEND:
                    await commit_write(ctx, path, args.content, "a")
                    return f"Successfully appended to '{args.file_path}'."
                case _:
                    await commit_write(ctx, path, args.content, "w")
                    await ctx.task.add_to_git(path, ctx.prompt_context)
                    return f"Successfully written to '{args.file_path}' (overwritten)."
        except OSError as e:
            return ctx.fail(f"Error: Cannot write to file '{args.file_path}': {e}")

    return ToolDefinition(
        name=POWER_TOOL_FILE_WRITE,
        group=POWER_TOOL_GROUP_NAME,
        description=FILE_WRITE_DESCRIPTION,
        input_schema_class=FileWriteInput,
        handler=file_write_handler,
    )
