"""Conversation context and approval-gated tool execution for coding agents."""

__version__ = "0.1.0"
