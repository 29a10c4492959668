"""Tests for the glob, grep and semantic search tools."""

from unittest.mock import AsyncMock

import pytest

from toolgate.errors import SearchBackendError
from toolgate.models.profile import ToolApprovalState, default_profile
from toolgate.services.approval import ApprovalGate, StaticApprover
from toolgate.services.pipeline import ToolExecutionPipeline
from toolgate.tools.registry import ToolsRegistry
from toolgate.tools.search import ProbeSearchBackend


class FakeSearchBackend:
    """Search backend recording its calls."""

    def __init__(self, results: str = "results", error: str | None = None):
        self.results = results
        self.error = error
        self.calls = []

    async def search(self, query, path, **kwargs):
        self.calls.append({"query": query, "path": path, **kwargs})
        if self.error:
            raise SearchBackendError(self.error)
        return self.results


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "a.py").write_text("import os\nprint('Hello')\nx = 1\n")
    (tmp_path / "src" / "b.py").write_text("def hello():\n    return 'hello'\n")
    (tmp_path / "src" / "c.txt").write_text("notes")
    (tmp_path / "node_modules" / "x.py").write_text("hello = 1")
    return tmp_path


class TestGlobTool:
    """Tests for the glob tool."""

    @pytest.mark.asyncio
    async def test_matches_relative_paths(self, pipeline, make_call, project):
        """Test recursive matching with ignore patterns."""
        result = await pipeline.execute(make_call("glob", pattern="**/*.py", ignore=["node_modules/*"]))

        assert result.output.value == ["a.py", "src/b.py"]

    @pytest.mark.asyncio
    async def test_cwd_results_relative_to_task_dir(self, pipeline, make_call, project):
        """Test that results stay relative to the task directory."""
        result = await pipeline.execute(make_call("glob", pattern="*.py", cwd="src"))

        assert result.output.value == ["src/b.py"]

    @pytest.mark.asyncio
    async def test_version_control_filter(self, pipeline, task, make_call, project):
        """Test that ignored paths are dropped."""
        task.version_control = AsyncMock()
        task.version_control.filter_ignored.side_effect = lambda paths: [p for p in paths if p.name != "a.py"]

        result = await pipeline.execute(make_call("glob", pattern="**/*.py"))

        assert result.output.value == ["node_modules/x.py", "src/b.py"]

    @pytest.mark.asyncio
    async def test_no_matches(self, pipeline, make_call, project):
        """Test an empty result."""
        result = await pipeline.execute(make_call("glob", pattern="*.rs"))

        assert result.output.value == []


class TestGrepTool:
    """Tests for the grep tool."""

    @pytest.mark.asyncio
    async def test_matches_with_context(self, pipeline, make_call, project):
        """Test case-insensitive matching with surrounding lines."""
        result = await pipeline.execute(
            make_call("grep", file_pattern="*.py", search_term="hello", context_lines=1)
        )

        assert result.output.value == [
            {
                "filePath": "a.py",
                "lineNumber": 2,
                "lineContent": "print('Hello')",
                "context": ["import os", "print('Hello')", "x = 1"],
            }
        ]

    @pytest.mark.asyncio
    async def test_case_sensitive(self, pipeline, make_call, project):
        """Test that case sensitivity can be requested."""
        result = await pipeline.execute(
            make_call("grep", file_pattern="**/*.py", search_term="Hello", case_sensitive=True)
        )

        assert [(m["filePath"], m["lineNumber"]) for m in result.output.value] == [("a.py", 2)]

    @pytest.mark.asyncio
    async def test_max_results(self, pipeline, make_call, tmp_path):
        """Test that results stop at the limit."""
        (tmp_path / "many.txt").write_text("\n".join("match" for _ in range(10)))

        result = await pipeline.execute(
            make_call("grep", file_pattern="*.txt", search_term="match", max_results=3)
        )

        assert [m["lineNumber"] for m in result.output.value] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_no_files(self, pipeline, make_call, project):
        """Test the message when the glob matches nothing."""
        result = await pipeline.execute(make_call("grep", file_pattern="*.rs", search_term="x"))

        assert result.output.value == "No files found matching pattern '*.rs'."

    @pytest.mark.asyncio
    async def test_all_files_ignored(self, pipeline, task, make_call, project):
        """Test the message when version control ignores every file."""
        task.version_control = AsyncMock()
        task.version_control.filter_ignored.return_value = []

        result = await pipeline.execute(make_call("grep", file_pattern="*.py", search_term="x"))

        assert result.output.value == "No files found matching pattern '*.py' (all files were ignored)."

    @pytest.mark.asyncio
    async def test_no_matches(self, pipeline, make_call, project):
        """Test the message when nothing matches."""
        result = await pipeline.execute(make_call("grep", file_pattern="*.py", search_term="zzz"))

        assert result.output.value == "No matches found for pattern 'zzz' in files matching '*.py'."

    @pytest.mark.asyncio
    async def test_invalid_regex(self, pipeline, make_call, project):
        """Test that a broken expression is reported as an error."""
        result = await pipeline.execute(make_call("grep", file_pattern="*.py", search_term="("))

        assert result.output.value.startswith("Error during grep:")


class TestSemanticSearchTool:
    """Tests for the semantic search tool."""

    def make_pipeline(self, task, backend, approver=None):
        profile = default_profile()
        registry = ToolsRegistry(profile, search_backend=backend)
        return ToolExecutionPipeline(task, registry, ApprovalGate(profile, approver or StaticApprover()))

    @pytest.mark.asyncio
    async def test_defaults_to_task_dir(self, task, make_call, tmp_path):
        """Test the default path and token limit."""
        backend = FakeSearchBackend("found it")
        pipeline = self.make_pipeline(task, backend)

        result = await pipeline.execute(make_call("semantic_search", query="auth flow"))

        assert result.output.value == "found it"
        call = backend.calls[0]
        assert call["query"] == "auth flow"
        assert call["path"] == str(tmp_path)
        assert call["max_tokens"] == 10_000
        assert call["cancel_token"] is task.cancel_token

    @pytest.mark.asyncio
    async def test_path_resolution(self, task, make_call, tmp_path):
        """Test that relative paths resolve and dependency paths pass through."""
        backend = FakeSearchBackend()
        pipeline = self.make_pipeline(task, backend)

        await pipeline.execute(make_call("semantic_search", "c1", query="q", path="src"))
        await pipeline.execute(make_call("semantic_search", "c2", query="q", path="go:github.com/owner/repo"))

        assert backend.calls[0]["path"] == str(tmp_path / "src")
        assert backend.calls[1]["path"] == "go:github.com/owner/repo"

    @pytest.mark.asyncio
    async def test_backend_error(self, task, make_call):
        """Test that backend failures become error output."""
        pipeline = self.make_pipeline(task, FakeSearchBackend(error="index missing"))

        result = await pipeline.execute(make_call("semantic_search", query="q"))

        assert result.output.value == "index missing"

    @pytest.mark.asyncio
    async def test_denied_subject(self, task, make_call):
        """Test the approval subject and denial message."""
        profile = default_profile()
        profile.tool_approvals["power---semantic_search"] = ToolApprovalState.ASK
        approver = StaticApprover(approved=False, reason="later")
        registry = ToolsRegistry(profile, search_backend=FakeSearchBackend())
        pipeline = ToolExecutionPipeline(task, registry, ApprovalGate(profile, approver))

        result = await pipeline.execute(
            make_call("semantic_search", query="q", allow_tests=True, language="python")
        )

        assert result.output.value == "Search execution denied by user. Reason: later"
        assert approver.questions[0][2] == "Query: q\nPath: .\nAllow Tests: true\nExact: false\nLanguage: python"


class TestProbeSearchBackend:
    """Tests for the subprocess search backend."""

    def test_build_command(self):
        """Test flag construction."""
        backend = ProbeSearchBackend("probe")

        assert backend.build_command("q", "/src") == ["probe", "search", "q", "/src"]
        assert backend.build_command(
            "q", "/src", allow_tests=True, exact=True, max_results=5, max_tokens=100, language="go"
        ) == [
            "probe",
            "search",
            "q",
            "/src",
            "--allow-tests",
            "--exact",
            "--max-results",
            "5",
            "--max-tokens",
            "100",
            "--language",
            "go",
        ]

    @pytest.mark.asyncio
    async def test_runs_binary(self, tmp_path):
        """Test running a search binary and returning its stdout."""
        script = tmp_path / "probe"
        script.write_text('#!/bin/sh\necho "$@"\n')
        script.chmod(0o755)

        output = await ProbeSearchBackend(str(script)).search("q", "/src", exact=True)

        assert output == "search q /src --exact\n"

    @pytest.mark.asyncio
    async def test_failure_raises(self, tmp_path):
        """Test that a failing binary raises with its stderr."""
        script = tmp_path / "probe"
        script.write_text("#!/bin/sh\necho 'no index' >&2\nexit 2\n")
        script.chmod(0o755)

        with pytest.raises(SearchBackendError, match="no index"):
            await ProbeSearchBackend(str(script)).search("q", "/src")

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        """Test that a missing binary raises."""
        with pytest.raises(SearchBackendError, match="Failed to start"):
            await ProbeSearchBackend(str(tmp_path / "missing")).search("q", "/src")
