#!/usr/bin/env python3
"""Run a single power tool through the approval pipeline from the terminal."""

import asyncio
import json
import sys
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax

from toolgate.config import ToolgateConfig
from toolgate.models.invocation import ToolMessageUpdate
from toolgate.models.messages import ToolCallPart, ToolResultPart
from toolgate.models.profile import POWER_TOOL_GROUP_NAME, default_profile, tool_id
from toolgate.services.approval import ApprovalGate, ConsoleApprover
from toolgate.services.pipeline import ToolExecutionPipeline
from toolgate.services.task_manager import InMemoryTaskManager
from toolgate.services.version_control import GitVersionControl
from toolgate.tools.registry import ToolsRegistry
from toolgate.utils.logging import setup_logging


class ToolRunnerCLI:
    """Runs one tool call with console approval and live output."""

    def __init__(self, task_dir: Path):
        """Initialize the runner for a working directory."""
        self.console = Console()
        self.config = ToolgateConfig.from_env()
        self.task_manager = InMemoryTaskManager(version_control=GitVersionControl(task_dir))
        self.task = self.task_manager.create_task(task_dir)
        self.profile = default_profile()
        self.registry = ToolsRegistry(self.profile, self.config)
        self.pipeline = ToolExecutionPipeline(
            self.task,
            self.registry,
            ApprovalGate(self.profile, ConsoleApprover(self.console)),
        )
        self.task.subscribe(self._on_update)

    def _on_update(self, update: ToolMessageUpdate) -> None:
        """Print streaming output as it arrives."""
        if update.finished or not update.streaming:
            return
        progress = json.loads(update.output)
        self.console.print(f"[dim]{progress['stdout'][-200:]}{progress['stderr'][-200:]}[/dim]", end="\r")

    async def run(self, name: str, raw_args: str) -> ToolResultPart:
        """Execute the tool and render its result."""
        self.console.print(
            Panel.fit(
                f"[bold blue]toolgate[/bold blue] running [bold]{name}[/bold] in {self.task.get_task_dir()}\n"
                f"Tools: {', '.join(self.registry.get_tool_ids())}",
                border_style="blue",
            )
        )
        call = ToolCallPart(
            tool_call_id="cli",
            tool_name=name if "---" in name else tool_id(POWER_TOOL_GROUP_NAME, name),
            input=json.loads(raw_args),
        )
        result = await self.pipeline.execute(call)
        self._display_result(result)
        return result

    def _display_result(self, result: ToolResultPart) -> None:
        """Display tool output with nice formatting."""
        if result.output.type == "json":
            body = Syntax(json.dumps(result.output.value, indent=2), "json")
        else:
            body = Markdown(result.output.as_text())

        self.console.print(
            Panel(body, title=f"[bold green]{result.tool_name}[/bold green]", border_style="green", padding=(1, 2))
        )


def main():
    """Main entry point for the tool runner."""
    if len(sys.argv) < 3:
        Console().print("[yellow]Usage: run_tool.py <tool> '<json args>' [task_dir][/yellow]")
        sys.exit(2)

    setup_logging(ToolgateConfig.from_env())
    task_dir = Path(sys.argv[3]) if len(sys.argv) > 3 else Path.cwd()
    runner = ToolRunnerCLI(task_dir.resolve())
    try:
        asyncio.run(runner.run(sys.argv[1], sys.argv[2]))
    except KeyboardInterrupt:
        runner.console.print("\n[yellow]Interrupted[/yellow]")


if __name__ == "__main__":
    main()
