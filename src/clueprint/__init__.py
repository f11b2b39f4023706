"""Clueprint: browser context for AI coding assistants over MCP."""

__version__ = "0.1.0"
