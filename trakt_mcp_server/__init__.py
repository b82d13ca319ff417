"""MCP server exposing Trakt.tv search, history and watch logging over stdio."""

__version__ = "0.1.0"
