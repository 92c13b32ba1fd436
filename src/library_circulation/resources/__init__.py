"""Library Circulation MCP Resources.

Resources are the read side of the server. They expose the reporting views
and never write, so reading one cannot trigger a consistency rule.
"""

from .reports import report_resources

all_resources = report_resources

__all__ = [
    "all_resources",
    "report_resources",
]
