"""Data models for messages, profiles, invocations and tasks."""
