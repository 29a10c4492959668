"""Runtime configuration for the tool pipeline."""

import os
from dataclasses import dataclass


@dataclass
class ToolgateConfig:
    """Defaults applied by the power tools when the agent omits a parameter."""

    bash_timeout_ms: int = 120_000
    fetch_timeout_ms: int = 60_000
    read_line_limit: int = 1000
    grep_max_results: int = 50
    probe_binary: str = "probe"
    semantic_search_max_tokens: int = 10_000
    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def from_env(cls) -> "ToolgateConfig":
        """Build a config from TOOLGATE_* environment variables."""
        defaults = cls()
        return cls(
            bash_timeout_ms=int(os.getenv("TOOLGATE_BASH_TIMEOUT_MS", defaults.bash_timeout_ms)),
            fetch_timeout_ms=int(os.getenv("TOOLGATE_FETCH_TIMEOUT_MS", defaults.fetch_timeout_ms)),
            read_line_limit=int(os.getenv("TOOLGATE_READ_LINE_LIMIT", defaults.read_line_limit)),
            grep_max_results=int(os.getenv("TOOLGATE_GREP_MAX_RESULTS", defaults.grep_max_results)),
            probe_binary=os.getenv("TOOLGATE_PROBE_BINARY", defaults.probe_binary),
            semantic_search_max_tokens=int(
                os.getenv("TOOLGATE_SEMANTIC_SEARCH_MAX_TOKENS", defaults.semantic_search_max_tokens)
            ),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            log_file=os.getenv("TOOLGATE_LOG_FILE", defaults.log_file),
        )
