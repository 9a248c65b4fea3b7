"""repoflow.tasks

Executable task model produced by the translator (`repoflow.translate`) and consumed by the
runtime (`repoflow.runtime`).

A `TaskDefinition` is a named unit of repository work made of:
- `actions`: typed actions dispatched by dotted identifier (`repo.folder.rename`, ...),
- `files`: files to distribute into the repository (optionally on a dedicated branch and
  committed with `commit.message`),
- `safeguards`: preconditions that turn into a skip when they do not hold,
- `ensure_clean` / `ensure_clean_variable`: clean-worktree gate, optionally overridden by a
  workflow variable ("true"/"false", "1"/"0", "yes"/"no").

`RuntimeOptions` controls how the runtime traverses repositories. The three capability flags
(`include_nested_repositories`, `process_repositories_by_descending_depth`,
`capture_initial_worktree_status`) are OR-accumulated across operations and never switched off
again once any operation asks for them; `merge()` is that monoid.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

DEFAULT_FILE_PERMISSIONS = 0o644
DEFAULT_PUSH_REMOTE = "origin"


class TaskFileMode(str, Enum):
    OVERWRITE = "overwrite"
    SKIP_IF_EXISTS = "skip-if-exists"
    LINE_EDIT = "line-edit"


@dataclass(frozen=True)
class TaskActionDefinition:
    type: str
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TaskFileDefinition:
    path: str
    content: str = ""
    mode: TaskFileMode = TaskFileMode.OVERWRITE
    permissions: int = DEFAULT_FILE_PERMISSIONS


@dataclass(frozen=True)
class TaskBranchDefinition:
    name: str = ""
    start_point: str = ""
    push_remote: str = DEFAULT_PUSH_REMOTE


@dataclass(frozen=True)
class TaskCommitDefinition:
    message: str = ""


@dataclass(frozen=True)
class TaskDefinition:
    name: str
    ensure_clean: bool = False
    ensure_clean_variable: str = ""
    actions: tuple[TaskActionDefinition, ...] = ()
    files: tuple[TaskFileDefinition, ...] = ()
    branch: TaskBranchDefinition = field(default_factory=TaskBranchDefinition)
    commit: TaskCommitDefinition = field(default_factory=TaskCommitDefinition)
    safeguards: dict[str, Any] = field(default_factory=dict)

    def resolve_ensure_clean(self, variables: dict[str, str]) -> bool:
        name = self.ensure_clean_variable.strip()
        if not name or name not in variables:
            return self.ensure_clean
        parsed = parse_bool(variables[name])
        return self.ensure_clean if parsed is None else parsed


@dataclass(frozen=True)
class RuntimeOptions:
    include_nested_repositories: bool = False
    process_repositories_by_descending_depth: bool = False
    capture_initial_worktree_status: bool = False
    assume_yes: bool = False
    workflow_parallelism: int = 1
    variables: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False
    # Fail-fast per repository unless set.
    continue_on_error: bool = False

    def merge(self, other: "RuntimeOptions") -> "RuntimeOptions":
        """OR the capability flags of `other` into a copy of `self`."""
        return replace(
            self,
            include_nested_repositories=self.include_nested_repositories or other.include_nested_repositories,
            process_repositories_by_descending_depth=(
                self.process_repositories_by_descending_depth or other.process_repositories_by_descending_depth
            ),
            capture_initial_worktree_status=(
                self.capture_initial_worktree_status or other.capture_initial_worktree_status
            ),
        )


def parse_bool(raw: object) -> bool | None:
    if isinstance(raw, bool):
        return raw
    normalized = str(raw).strip().lower()
    if normalized in {"true", "1", "yes"}:
        return True
    if normalized in {"false", "0", "no"}:
        return False
    return None
