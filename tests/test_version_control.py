"""Tests for the git integration."""

import shutil
import subprocess

import pytest

from toolgate.services.version_control import GitVersionControl, NullVersionControl

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@pytest.fixture
def repo(tmp_path):
    subprocess.run(["git", "init", "-q"], cwd=tmp_path, check=True)
    (tmp_path / ".gitignore").write_text("*.log\nbuild/\n")
    return tmp_path


@requires_git
class TestGitVersionControl:
    """Tests against a real repository."""

    @pytest.mark.asyncio
    async def test_filter_ignored(self, repo):
        """Test that ignored paths are dropped in order."""
        (repo / "build").mkdir()
        paths = [repo / "a.py", repo / "debug.log", repo / "build" / "out.js", repo / "b.py"]

        kept = await GitVersionControl(repo).filter_ignored(paths)

        assert kept == [repo / "a.py", repo / "b.py"]

    @pytest.mark.asyncio
    async def test_nothing_ignored(self, repo):
        """Test the no-match exit code."""
        paths = [repo / "a.py"]

        assert await GitVersionControl(repo).filter_ignored(paths) == paths
        assert await GitVersionControl(repo).filter_ignored([]) == []

    @pytest.mark.asyncio
    async def test_add(self, repo):
        """Test staging a written file."""
        (repo / "new.py").write_text("x = 1\n")

        await GitVersionControl(repo).add(repo / "new.py")

        staged = subprocess.run(["git", "ls-files"], cwd=repo, check=True, capture_output=True, text=True).stdout
        assert "new.py" in staged.splitlines()

    @pytest.mark.asyncio
    async def test_outside_repository(self, tmp_path):
        """Test that a directory without a repository filters nothing and add does not raise."""
        plain = tmp_path / "plain"
        plain.mkdir()
        paths = [plain / "a.log"]
        vc = GitVersionControl(plain, git_binary="git")

        await vc.add(plain / "a.log")

        assert await vc.filter_ignored(paths) == paths


class TestFailures:
    """Tests for failure handling without git."""

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        """Test that a missing git binary is logged, not raised."""
        vc = GitVersionControl(tmp_path, git_binary=str(tmp_path / "no-git"))

        await vc.add(tmp_path / "a.py")

        assert await vc.filter_ignored([tmp_path / "a.py"]) == [tmp_path / "a.py"]

    @pytest.mark.asyncio
    async def test_null_version_control(self, tmp_path):
        """Test the no-repository implementation."""
        vc = NullVersionControl()

        await vc.add(tmp_path / "a.py")

        assert await vc.filter_ignored([tmp_path / "a.py"]) == [tmp_path / "a.py"]
