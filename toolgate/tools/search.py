"""Glob, grep and semantic codebase search tools."""

import asyncio
import fnmatch
import glob
import os
import re
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field

from toolgate.config import ToolgateConfig
from toolgate.errors import SearchBackendError
from toolgate.models.profile import (
    POWER_TOOL_GLOB,
    POWER_TOOL_GREP,
    POWER_TOOL_GROUP_NAME,
    POWER_TOOL_SEMANTIC_SEARCH,
)
from toolgate.services.cancellation import CancellationToken
from toolgate.tools.base import ToolContext, ToolDefinition, ToolOutput, expand_tilde
from toolgate.tools.bash import terminate_process_group
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)

GLOB_DESCRIPTION = (
    "Finds files and directories matching a specified glob pattern within the project. "
    "Useful for discovering files based on patterns."
)
GREP_DESCRIPTION = (
    "Searches for content matching a regular expression pattern within files specified by a glob pattern. "
    "Returns matching lines and their context."
)
SEMANTIC_SEARCH_DESCRIPTION = (
    "Search code in repository using semantic search. Use natural language queries with 2-5 descriptive words "
    "including key concepts and context. Can filter results with hints like ext:ts, dir:src, or lang:typescript. "
    "Use this tool first for any code-related questions to find relationships between files and identify files "
    "to change."
)

# "go:github.com/owner/repo", "js:package_name", ...
DEPENDENCY_PATH = re.compile(r"^[a-zA-Z]+:")


class GlobInput(BaseModel):
    """Input schema for the glob tool."""

    pattern: str = Field(..., description="The glob pattern to search for (e.g., src/**/*.ts, *.md).")
    cwd: str | None = Field(
        None,
        description=(
            "The current working directory from which to apply the glob pattern (relative to <WorkingDirectory>). "
            "Default: <WorkingDirectory>."
        ),
    )
    ignore: list[str] | None = Field(None, description="An array of glob patterns to ignore.")


class GrepInput(BaseModel):
    """Input schema for the grep tool."""

    file_pattern: str = Field(
        ..., description="A glob pattern specifying the files to search within (e.g., src/**/*.tsx, *.py)."
    )
    search_term: str = Field(..., description="The regular expression to search for within the files.")
    context_lines: int = Field(
        0,
        ge=0,
        description="The number of lines of context to show before and after each matching line. Default: 0.",
    )
    case_sensitive: bool = Field(False, description="Whether the search should be case sensitive. Default: false.")
    max_results: int | None = Field(None, ge=1, description="Maximum number of results to return. Default: 50.")


class SemanticSearchInput(BaseModel):
    """Input schema for the semantic search tool."""

    query: str = Field(..., description="Search query with Elasticsearch syntax. Use + for important terms.")
    path: str | None = Field(
        None,
        description=(
            'Absolute path to search in. For dependencies use "go:github.com/owner/repo", "js:package_name", '
            'or "rust:cargo_name" etc.'
        ),
    )
    allow_tests: bool = Field(False, description="Allow test files in search results")
    exact: bool = Field(False, description="Perform exact search without tokenization (case-insensitive)")
    max_results: int | None = Field(None, description="Maximum number of results to return")
    max_tokens: int | None = Field(None, description="Maximum number of tokens to return")
    language: str | None = Field(None, description="Limit search to files of a specific programming language")


def _glob_relative(pattern: str, root_dir: Path, ignore: list[str], files_only: bool) -> list[str]:
    matches = glob.glob(pattern, root_dir=root_dir, recursive=True)
    results = []
    for match in sorted(matches):
        relative = match.rstrip("/")
        if any(fnmatch.fnmatch(relative, ignored) for ignored in ignore):
            continue
        if files_only and not (root_dir / relative).is_file():
            continue
        results.append(relative)
    return results


def create_glob_tool() -> ToolDefinition:
    async def glob_handler(args: GlobInput, ctx: ToolContext) -> ToolOutput:
        approval = await ctx.request_approval(f"Approve glob search with pattern '{args.pattern}'?")
        if not approval.approved:
            return ctx.deny(f"Glob search with pattern '{args.pattern}' denied by user. Reason: {approval.reason}")

        task_dir = ctx.task.get_task_dir()
        cwd = ctx.resolve(args.cwd) if args.cwd else task_dir
        try:
            matches = await ctx.cancel_token.race(
                asyncio.to_thread(_glob_relative, expand_tilde(args.pattern), cwd, args.ignore or [], False)
            )
            absolute = [cwd / match for match in matches]
            kept = await ctx.cancel_token.race(ctx.task.version_control.filter_ignored(absolute))
            return [os.path.relpath(path, task_dir) for path in kept]
        except (OSError, ValueError) as e:
            return ctx.fail(f"Error executing glob pattern '{args.pattern}': {e}")

    return ToolDefinition(
        name=POWER_TOOL_GLOB,
        group=POWER_TOOL_GROUP_NAME,
        description=GLOB_DESCRIPTION,
        input_schema_class=GlobInput,
        handler=glob_handler,
    )


def _grep_file(
    path: Path,
    relative_path: str,
    regex: re.Pattern[str],
    context_lines: int,
    limit: int,
) -> list[dict[str, Any]]:
    with open(path, encoding="utf-8", errors="replace", newline="") as f:
        lines = f.read().split("\n")

    results: list[dict[str, Any]] = []
    for index, line in enumerate(lines):
        if len(results) >= limit:
            break
        if not regex.search(line):
            continue
        match: dict[str, Any] = {"filePath": relative_path, "lineNumber": index + 1, "lineContent": line}
        if context_lines > 0:
            start = max(0, index - context_lines)
            end = min(len(lines) - 1, index + context_lines)
            match["context"] = lines[start : end + 1]
        results.append(match)
    return results


def create_grep_tool(config: ToolgateConfig | None = None) -> ToolDefinition:
    config = config or ToolgateConfig()

    async def grep_handler(args: GrepInput, ctx: ToolContext) -> ToolOutput:
        approval = await ctx.request_approval(
            f"Approve grep search for '{args.search_term}' in files matching '{args.file_pattern}'?"
        )
        if not approval.approved:
            return ctx.deny(
                f"Grep search for '{args.search_term}' in files matching '{args.file_pattern}' denied by user. "
                f"Reason: {approval.reason}"
            )

        task_dir = ctx.task.get_task_dir()
        max_results = args.max_results or config.grep_max_results
        try:
            regex = re.compile(args.search_term, 0 if args.case_sensitive else re.IGNORECASE)
            matches = await ctx.cancel_token.race(
                asyncio.to_thread(_glob_relative, args.file_pattern, task_dir, [], True)
            )
            if not matches:
                return f"No files found matching pattern '{args.file_pattern}'."

            files = await ctx.cancel_token.race(
                ctx.task.version_control.filter_ignored([task_dir / match for match in matches])
            )
            if not files:
                return f"No files found matching pattern '{args.file_pattern}' (all files were ignored)."

            results: list[dict[str, Any]] = []
            for path in files:
                if len(results) >= max_results:
                    break
                results.extend(
                    await ctx.cancel_token.race(
                        asyncio.to_thread(
                            _grep_file,
                            path,
                            os.path.relpath(path, task_dir),
                            regex,
                            args.context_lines,
                            max_results - len(results),
                        )
                    )
                )
        except (OSError, re.error) as e:
            return ctx.fail(f"Error during grep: {e}")

        if not results:
            return f"No matches found for pattern '{args.search_term}' in files matching '{args.file_pattern}'."
        return results

    return ToolDefinition(
        name=POWER_TOOL_GREP,
        group=POWER_TOOL_GROUP_NAME,
        description=GREP_DESCRIPTION,
        input_schema_class=GrepInput,
        handler=grep_handler,
    )


class SearchBackend(Protocol):
    """Interface for semantic codebase search engines."""

    async def search(
        self,
        query: str,
        path: str,
        allow_tests: bool = False,
        exact: bool = False,
        max_results: int | None = None,
        max_tokens: int | None = None,
        language: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        """Run a search and return its textual results.

        Raises:
            SearchBackendError: If the search engine fails
            OperationCancelledError: If the token fires mid-search
        """
        ...


class ProbeSearchBackend:
    """Runs the `probe` code search binary as a subprocess."""

    def __init__(self, binary: str = "probe"):
        self.binary = binary

    def build_command(
        self,
        query: str,
        path: str,
        allow_tests: bool = False,
        exact: bool = False,
        max_results: int | None = None,
        max_tokens: int | None = None,
        language: str | None = None,
    ) -> list[str]:
        command = [self.binary, "search", query, path]
        if allow_tests:
            command.append("--allow-tests")
        if exact:
            command.append("--exact")
        if max_results is not None:
            command.extend(["--max-results", str(max_results)])
        if max_tokens is not None:
            command.extend(["--max-tokens", str(max_tokens)])
        if language:
            command.extend(["--language", language])
        return command

    async def search(
        self,
        query: str,
        path: str,
        allow_tests: bool = False,
        exact: bool = False,
        max_results: int | None = None,
        max_tokens: int | None = None,
        language: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        command = self.build_command(query, path, allow_tests, exact, max_results, max_tokens, language)
        logger.debug(f"Running semantic search: {command}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise SearchBackendError(f"Failed to start {self.binary}: {e}") from e

        try:
            communicate = process.communicate()
            stdout, stderr = await (cancel_token.race(communicate) if cancel_token else communicate)
        finally:
            await terminate_process_group(process)

        if process.returncode != 0:
            raise SearchBackendError(
                stderr.decode(errors="replace").strip() or f"{self.binary} exited with code {process.returncode}"
            )
        return stdout.decode(errors="replace")


def create_semantic_search_tool(
    backend: SearchBackend | None = None,
    config: ToolgateConfig | None = None,
) -> ToolDefinition:
    config = config or ToolgateConfig()
    backend = backend or ProbeSearchBackend(config.probe_binary)

    async def semantic_search_handler(args: SemanticSearchInput, ctx: ToolContext) -> ToolOutput:
        task_dir = ctx.task.get_task_dir()
        approval = await ctx.request_approval(
            "Approve running codebase search?",
            subject=(
                f"Query: {args.query}\nPath: {args.path or '.'}\nAllow Tests: {str(args.allow_tests).lower()}\n"
                f"Exact: {str(args.exact).lower()}\nLanguage: {args.language}"
            ),
        )
        if not approval.approved:
            return ctx.deny(f"Search execution denied by user. Reason: {approval.reason}")

        search_path = args.path or str(task_dir)
        if not DEPENDENCY_PATH.match(search_path) and not os.path.isabs(search_path):
            search_path = str(ctx.resolve(search_path))

        try:
            results = await backend.search(
                args.query,
                search_path,
                allow_tests=args.allow_tests,
                exact=args.exact,
                max_results=args.max_results,
                max_tokens=args.max_tokens or config.semantic_search_max_tokens,
                language=args.language,
                cancel_token=ctx.cancel_token,
            )
        except SearchBackendError as e:
            logger.error(f"Error executing search command: {e}")
            return ctx.fail(str(e))

        logger.debug(f"Search results: {len(results)} characters")
        return results

    return ToolDefinition(
        name=POWER_TOOL_SEMANTIC_SEARCH,
        group=POWER_TOOL_GROUP_NAME,
        description=SEMANTIC_SEARCH_DESCRIPTION,
        input_schema_class=SemanticSearchInput,
        handler=semantic_search_handler,
    )
