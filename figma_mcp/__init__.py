"""MCP server that downloads Figma assets into the caller's workspace."""

__version__ = "0.1.0"
