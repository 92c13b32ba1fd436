"""
Domain-event dispatch for row-level consistency rules.

A rule is a plain function registered against ``(phase, entity, action)``.
Repositories build a ``MutationEvent`` for the single row they are writing
and call ``dispatch`` twice inside the same transaction:

- ``Phase.BEFORE`` after the new values are applied to the ORM row but
  before anything is committed. Rules may correct the row or raise to
  reject the write.
- ``Phase.AFTER`` once the row is flushed. Rules perform side effects
  (inserting fines, bumping counters, appending audit rows).

Rules fire in registration order. There is no batching across rows.
"""

import enum
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from ..observability import trace_rule

logger = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    """When a rule runs relative to the write."""

    BEFORE = "before"
    AFTER = "after"


class Action(str, enum.Enum):
    """Kind of row mutation."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


def snapshot_row(db_obj: Any) -> dict[str, Any]:
    """Capture the column values of an ORM row as a plain dict (the OLD row)."""
    mapper = inspect(db_obj).mapper
    return {attr.key: getattr(db_obj, attr.key) for attr in mapper.column_attrs}


@dataclass
class MutationEvent:
    """A single row write as seen by the rules.

    ``target`` is the live ORM row carrying the NEW values; ``old`` holds the
    values the row had before the write (empty for inserts).
    """

    session: Session
    entity: type
    action: Action
    target: Any
    old: dict[str, Any] = field(default_factory=dict)
    today: date = field(default_factory=date.today)
    daily_rate: float = 1.0

    def old_value(self, name: str) -> Any:
        return self.old.get(name)

    def changed(self, name: str) -> bool:
        """True when the column's new value differs from its old value."""
        if self.action is not Action.UPDATE:
            return False
        return self.old.get(name) != getattr(self.target, name)


Rule = Callable[[MutationEvent], None]


class RuleRegistry:
    """Ordered registry of consistency rules keyed by phase, entity and action."""

    def __init__(self) -> None:
        self._rules: dict[tuple[Phase, type, Action], list[Rule]] = defaultdict(list)

    def register(self, phase: Phase, entity: type, *actions: Action) -> Callable[[Rule], Rule]:
        """Decorator registering a rule for one or more actions on an entity."""

        def decorator(func: Rule) -> Rule:
            for action in actions:
                self._rules[(phase, entity, action)].append(func)
            return func

        return decorator

    def rules_for(self, phase: Phase, entity: type, action: Action) -> list[Rule]:
        return list(self._rules.get((phase, entity, action), []))

    def dispatch(self, phase: Phase, event: MutationEvent) -> None:
        """Run every rule registered for the event, in order.

        An exception raised by a rule propagates unchanged; the caller owns
        the rollback.
        """
        entity_name = event.entity.__name__
        for rule in self.rules_for(phase, event.entity, event.action):
            logger.debug(
                "Dispatching %s rule %s for %s %s",
                phase.value,
                rule.__name__,
                event.action.value,
                entity_name,
            )
            with trace_rule(rule.__name__, entity_name, event.action.value):
                rule(event)


registry = RuleRegistry()
