"""Tools registry for the power tool set."""

from typing import Any

from toolgate.config import ToolgateConfig
from toolgate.models.profile import AgentProfile, ToolApprovalState
from toolgate.tools.base import ToolDefinition
from toolgate.tools.bash import create_bash_tool
from toolgate.tools.fetch import WebScraper, create_fetch_tool
from toolgate.tools.files import create_file_edit_tool, create_file_read_tool, create_file_write_tool
from toolgate.tools.search import SearchBackend, create_glob_tool, create_grep_tool, create_semantic_search_tool
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)


class ToolsRegistry:
    """Registry of the tools exposed to an agent under one profile.

    Tools whose approval state is `never` are never registered, so the agent
    cannot even see them.
    """

    def __init__(
        self,
        profile: AgentProfile,
        config: ToolgateConfig | None = None,
        search_backend: SearchBackend | None = None,
        scraper: WebScraper | None = None,
    ):
        """Initialize tools registry with the profile and tool dependencies."""
        self.profile = profile
        self.config = config or ToolgateConfig()
        self.search_backend = search_backend
        self.scraper = scraper
        self._tools: dict[str, ToolDefinition] = {}
        self._register_default_tools()

    def _register_default_tools(self) -> None:
        """Register the power tool set."""
        tools = [
            create_file_edit_tool(),
            create_file_read_tool(self.config),
            create_file_write_tool(),
            create_glob_tool(),
            create_grep_tool(self.config),
            create_semantic_search_tool(self.search_backend, self.config),
            create_bash_tool(self.config),
            create_fetch_tool(self.scraper, self.config),
        ]

        for tool in tools:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> bool:
        """Register a tool unless the profile disables it.

        Returns:
            True if the tool was registered
        """
        if self.profile.approval_state(tool.id) == ToolApprovalState.NEVER:
            logger.debug(f"Tool {tool.id} disabled by profile {self.profile.id}")
            return False
        self._tools[tool.id] = tool
        return True

    def get_tool(self, tool_id: str) -> ToolDefinition | None:
        """Get a registered tool by id."""
        return self._tools.get(tool_id)

    def get_tool_ids(self) -> list[str]:
        """Get list of all registered tool ids."""
        return list(self._tools.keys())

    def has_tool(self, tool_id: str) -> bool:
        """Check if a tool is registered."""
        return tool_id in self._tools

    def get_tool_schemas(self) -> dict[str, dict[str, Any]]:
        """Name, description and JSON input schema of every registered tool."""
        return {
            tool_id: {
                "name": tool_id,
                "description": tool.description,
                "input_schema": tool.get_json_schema(),
            }
            for tool_id, tool in self._tools.items()
        }
