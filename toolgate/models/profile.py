"""Agent profile: per-tool approval states and pattern overrides."""

from enum import StrEnum

from pydantic import BaseModel, Field

TOOL_GROUP_NAME_SEPARATOR = "---"

POWER_TOOL_GROUP_NAME = "power"
POWER_TOOL_FILE_EDIT = "file_edit"
POWER_TOOL_FILE_READ = "file_read"
POWER_TOOL_FILE_WRITE = "file_write"
POWER_TOOL_GLOB = "glob"
POWER_TOOL_GREP = "grep"
POWER_TOOL_SEMANTIC_SEARCH = "semantic_search"
POWER_TOOL_BASH = "bash"
POWER_TOOL_FETCH = "fetch"


def tool_id(group: str, name: str) -> str:
    """Build the profile key for a tool."""
    return f"{group}{TOOL_GROUP_NAME_SEPARATOR}{name}"


def split_tool_id(value: str) -> tuple[str, str]:
    """Split a tool id into (group, name); ids without a group get an empty group."""
    if TOOL_GROUP_NAME_SEPARATOR not in value:
        return "", value
    group, name = value.split(TOOL_GROUP_NAME_SEPARATOR, 1)
    return group, name


class ToolApprovalState(StrEnum):
    """Approval policy for a single tool."""

    ALWAYS = "always"
    ASK = "ask"
    NEVER = "never"


class PatternOverride(BaseModel):
    """Allow/deny regex lists for tools whose input is a command line."""

    allowed_pattern: str | None = None
    denied_pattern: str | None = None

    def allowed_patterns(self) -> list[str]:
        """Allowed regexes, empty entries dropped."""
        return _split_patterns(self.allowed_pattern)

    def denied_patterns(self) -> list[str]:
        """Denied regexes, empty entries dropped."""
        return _split_patterns(self.denied_pattern)


def _split_patterns(value: str | None) -> list[str]:
    if not value:
        return []
    return [pattern for pattern in value.split(";") if pattern]


class AgentProfile(BaseModel):
    """Tool policy for one agent profile."""

    id: str = "default"
    name: str = "Default"
    tool_approvals: dict[str, ToolApprovalState] = Field(default_factory=dict)
    tool_settings: dict[str, PatternOverride] = Field(default_factory=dict)
    # Task-level "auto approve" switch: Ask behaves like Always
    auto_approve: bool = False

    def approval_state(self, tool: str) -> ToolApprovalState:
        """Approval state for a tool id; unconfigured tools ask."""
        return self.tool_approvals.get(tool, ToolApprovalState.ASK)

    def pattern_override(self, tool: str) -> PatternOverride | None:
        """Pattern override for a tool id, if configured."""
        return self.tool_settings.get(tool)


def default_profile() -> AgentProfile:
    """Profile with the stock power tool policy."""
    return AgentProfile(
        tool_approvals={
            tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_FILE_EDIT): ToolApprovalState.ASK,
            tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_FILE_READ): ToolApprovalState.ALWAYS,
            tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_FILE_WRITE): ToolApprovalState.ASK,
            tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_GLOB): ToolApprovalState.ALWAYS,
            tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_GREP): ToolApprovalState.ALWAYS,
            tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_SEMANTIC_SEARCH): ToolApprovalState.ALWAYS,
            tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_BASH): ToolApprovalState.ASK,
            tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_FETCH): ToolApprovalState.ALWAYS,
        },
        tool_settings={
            tool_id(POWER_TOOL_GROUP_NAME, POWER_TOOL_BASH): PatternOverride(
                allowed_pattern="ls .*;cat .*;git status;git show;git log",
                denied_pattern="rm .*;del .*;chown .*;chgrp .*;chmod .*",
            ),
        },
    )
