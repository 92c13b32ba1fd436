"""Logfire observability for the Library Circulation service."""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager

import logfire
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ObservabilityConfig(BaseModel):
    """Configuration for Logfire observability."""

    token: str = Field(default_factory=lambda: os.getenv("LOGFIRE_TOKEN", ""))
    project_name: str = "library-circulation"
    environment: str = Field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))

    enabled: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_ENABLED", "true").lower() == "true"
    )
    console_output: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_CONSOLE", "false").lower() == "true"
    )
    send_to_logfire: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_SEND", "false").lower() == "true"
    )


_config: ObservabilityConfig | None = None


def initialize_observability(config: ObservabilityConfig | None = None) -> None:
    """Initialize Logfire with configuration."""
    global _config  # noqa: PLW0603
    _config = config or ObservabilityConfig()

    if not _config.enabled:
        logger.debug("Observability disabled via configuration")
        return

    logfire.configure(
        token=_config.token or None,
        service_name=_config.project_name,
        environment=_config.environment,
        send_to_logfire=_config.send_to_logfire,
        console=False if not _config.console_output else None,
    )


@contextmanager
def trace_repository_operation(
    repository: str, operation: str, table: str | None = None
) -> Generator[logfire.LogfireSpan, None, None]:
    """Context manager for tracing repository writes."""
    with logfire.span(
        "db.{db_repository}.{db_operation}",
        db_repository=repository,
        db_operation=operation,
        db_table=table or repository,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("db.error", str(e))
            raise


@contextmanager
def trace_rule(rule_name: str, entity: str, action: str) -> Generator[logfire.LogfireSpan, None, None]:
    """Context manager for tracing a single consistency rule."""
    with logfire.span(
        "rule.{rule_name}",
        rule_name=rule_name,
        rule_entity=entity,
        rule_action=action,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("rule.rejected", True)
            span.set_attribute("rule.error", str(e))
            raise


__all__ = [
    "ObservabilityConfig",
    "initialize_observability",
    "trace_repository_operation",
    "trace_rule",
]
