"""Action dispatch contract.

Task actions are dispatched by dotted type identifier (`repo.folder.rename`, `audit.report`,
...) to handlers registered in an `ActionRegistry`. A handler is any callable
`handler(ctx, options) -> ActionResult`:

- `ctx` is the `ActionContext` for one repository: its mutable `RepositoryState` (handlers
  that move the repository update `ctx.repository.path`), the git/GitHub collaborators, the
  run's variables and the dry-run flag.
- `options` is the action's option mapping exactly as declared in the task definition.

Handlers report what they did through `ActionResult.status` (applied/skipped/failed) and
structured events. They may also raise; the runtime wraps any exception with task, action
and repository context and records it as a failure for that repository only.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .reporting import TASK_APPLY, TASK_PLAN, TASK_SKIP, Event, EventLevel


@dataclass
class RepositoryState:
    path: Path
    depth: int = 0
    initial_clean: bool | None = None
    has_nested_repositories: bool = False

    @property
    def label(self) -> str:
        return str(self.path)


class ActionStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ActionResult:
    status: ActionStatus
    message: str = ""
    events: tuple[Event, ...] = ()

    @staticmethod
    def applied(message: str = "", **details: str) -> "ActionResult":
        return ActionResult(
            status=ActionStatus.APPLIED,
            message=message,
            events=(Event(level=EventLevel.INFO, code=TASK_APPLY, message=message, details=dict(details)),),
        )

    @staticmethod
    def skipped(message: str, *, level: EventLevel = EventLevel.INFO, **details: str) -> "ActionResult":
        return ActionResult(
            status=ActionStatus.SKIPPED,
            message=message,
            events=(Event(level=level, code=TASK_SKIP, message=message, details=dict(details)),),
        )

    @staticmethod
    def planned(message: str, **details: str) -> "ActionResult":
        return ActionResult(
            status=ActionStatus.APPLIED,
            message=message,
            events=(Event(level=EventLevel.INFO, code=TASK_PLAN, message=message, details=dict(details)),),
        )

    @staticmethod
    def failed(message: str) -> "ActionResult":
        return ActionResult(status=ActionStatus.FAILED, message=message)


@dataclass
class ActionContext:
    repository: RepositoryState
    git: Any
    github: Any = None
    variables: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False


ActionHandler = Callable[[ActionContext, Mapping[str, Any]], ActionResult]


class ActionRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, action_type: str, handler: ActionHandler) -> None:
        key = action_type.strip().lower()
        if not key:
            raise ValueError("action type must be non-empty")
        self._handlers[key] = handler

    def types(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, action_type: str, ctx: ActionContext, options: Mapping[str, Any]) -> ActionResult:
        handler = self._handlers.get(action_type.strip().lower())
        if handler is None:
            return ActionResult.failed(f"unsupported action type {action_type!r}")
        return handler(ctx, options)
