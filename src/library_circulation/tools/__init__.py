"""Library Circulation MCP Tools.

Tools are the write side of the server: each one performs a single
repository write, so every call passes the same consistency rules as any
other caller of the repositories.
"""

from .circulation import circulation_tools

all_tools = circulation_tools

__all__ = [
    "all_tools",
    "circulation_tools",
]
