"""Version-control integration for files touched by tools."""

import asyncio
from pathlib import Path
from typing import Protocol

from toolgate.utils.logging import get_logger

logger = get_logger(__name__)


class VersionControl(Protocol):
    """Interface for the project's version-control integration."""

    async def add(self, path: Path) -> None:
        """Register a written file. Failures are logged, never raised."""
        ...

    async def filter_ignored(self, paths: list[Path]) -> list[Path]:
        """Drop paths the repository ignores, keeping order."""
        ...


class NullVersionControl:
    """No repository: nothing is tracked and nothing is ignored."""

    async def add(self, path: Path) -> None:
        return None

    async def filter_ignored(self, paths: list[Path]) -> list[Path]:
        return list(paths)


class GitVersionControl:
    """Git-backed implementation running the `git` binary."""

    def __init__(self, repo_dir: Path, git_binary: str = "git"):
        self.repo_dir = Path(repo_dir)
        self.git_binary = git_binary

    async def _run(self, *args: str, stdin: bytes | None = None) -> tuple[int, bytes, bytes]:
        process = await asyncio.create_subprocess_exec(
            self.git_binary,
            *args,
            cwd=self.repo_dir,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate(stdin)
        return process.returncode or 0, stdout, stderr

    async def add(self, path: Path) -> None:
        try:
            code, _, stderr = await self._run("add", "--", str(path))
        except OSError as e:
            logger.warning(f"Failed to add {path} to git: {e}")
            return
        if code != 0:
            logger.warning(f"git add {path} exited with {code}: {stderr.decode(errors='replace').strip()}")
        else:
            logger.debug(f"Added {path} to git")

    async def filter_ignored(self, paths: list[Path]) -> list[Path]:
        if not paths:
            return []

        payload = "\n".join(str(path) for path in paths).encode() + b"\n"
        try:
            code, stdout, stderr = await self._run("check-ignore", "--stdin", stdin=payload)
        except OSError as e:
            logger.warning(f"Failed to check ignored files: {e}")
            return list(paths)

        # 0: some paths ignored, 1: none ignored, anything else: not a repository or other error
        if code not in (0, 1):
            logger.debug(f"git check-ignore exited with {code}: {stderr.decode(errors='replace').strip()}")
            return list(paths)

        ignored = {line.strip() for line in stdout.decode(errors="replace").splitlines() if line.strip()}
        return [path for path in paths if str(path) not in ignored]
