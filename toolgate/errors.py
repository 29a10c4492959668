"""Exceptions shared across the conversation context and the tool pipeline."""


class MessageNotFoundError(LookupError):
    """Raised when a fork or removal target matches no message or tool call."""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Message with id {message_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class OperationCancelledError(Exception):
    """Raised at a suspension point when the task-scoped cancellation token fires."""


class SearchBackendError(RuntimeError):
    """Raised by a semantic search backend when the search itself fails."""


class FetchError(RuntimeError):
    """Raised by the web scraper for timeouts and non-success HTTP responses."""
