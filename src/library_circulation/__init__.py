"""
Library Circulation Package.

A library circulation system whose consistency rules (overdue marking,
availability bookkeeping, fine creation, status auditing) run as explicit
domain events inside each repository write.

Key Components:
- models: Pydantic models for data validation and serialization
- database: SQLAlchemy schema, repositories and the rule dispatcher
- config: Configuration management with pydantic-settings
- resources: MCP resources exposing the reporting views
- tools: MCP tools exposing the circulation write API
"""

__version__ = "0.1.0"

from . import database

__all__ = [
    "__version__",
    "database",
]
