"""
MCP tools for the library circulation service.

Tools are the operations with side effects: every circulation engine
operation is exposed as exactly one tool.
"""

from .circulation import build_circulation_tools

__all__ = ["build_circulation_tools"]
