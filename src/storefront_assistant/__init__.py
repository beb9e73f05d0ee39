"""Storefront assistant: multi-provider chat orchestration with MCP tools."""

__version__ = "0.1.0"
