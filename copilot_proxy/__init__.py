"""Streaming reverse proxy for the copilot chat service."""

__version__ = "1.0.0"
