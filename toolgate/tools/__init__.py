"""Power tools: file, search, shell and web access for the agent."""

from toolgate.tools.base import ToolContext, ToolDefinition
from toolgate.tools.registry import ToolsRegistry

__all__ = ["ToolContext", "ToolDefinition", "ToolsRegistry"]
