"""Declared workflow operations and the dependency graph they form.

An `OperationNode` is one named step from a workflow configuration: an operation plus the
names of the steps it must run after. Nodes are built once per invocation (see
`repoflow.config.build_operations`) and treated as immutable afterwards; ordering happens in
`repoflow.dag` and translation into tasks in `repoflow.translate`.

The set of operation kinds is closed:

- `TaskBundleOperation`: pass-through list of declarative `TaskDefinition`s (`tasks apply`).
- `CanonicalRemoteOperation`: point `origin` at the canonical GitHub repository.
- `ProtocolConversionOperation`: rewrite remote URLs between git/ssh/https.
- `RenameOperation`: rename repository directories after their remote name.
- `BranchPromotionOperation`: promote a branch to be the default branch.
- `AuditReportOperation`: write a CSV audit of every repository.

Each kind has an intrinsic `name` (the command key it is configured with); a node without an
explicit name falls back to it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .tasks import TaskDefinition


class RemoteProtocol(str, Enum):
    GIT = "git"
    SSH = "ssh"
    HTTPS = "https"


@dataclass(frozen=True)
class TaskBundleOperation:
    tasks: tuple[TaskDefinition, ...] = ()

    @property
    def name(self) -> str:
        return "tasks apply"

    def definitions(self) -> list[TaskDefinition]:
        return list(self.tasks)


@dataclass(frozen=True)
class CanonicalRemoteOperation:
    owner_constraint: str = ""

    @property
    def name(self) -> str:
        return "remote update-to-canonical"


@dataclass(frozen=True)
class ProtocolConversionOperation:
    from_protocol: RemoteProtocol
    to_protocol: RemoteProtocol

    @property
    def name(self) -> str:
        return "remote update-protocol"


@dataclass(frozen=True)
class RenameOperation:
    require_clean_worktree: bool = False
    include_owner: bool = False
    # False when require_clean came from the CLI default rather than the step itself.
    require_clean_explicit: bool = False

    @property
    def name(self) -> str:
        return "folder rename"


@dataclass(frozen=True)
class BranchPromotionTarget:
    target_branch: str = ""
    source_branch: str = ""
    remote_name: str = ""
    push_to_remote: bool = True
    delete_source_branch: bool = False


@dataclass(frozen=True)
class BranchPromotionOperation:
    targets: tuple[BranchPromotionTarget, ...] = ()

    @property
    def name(self) -> str:
        return "default"


@dataclass(frozen=True)
class AuditReportOperation:
    output_path: str = ""

    @property
    def name(self) -> str:
        return "audit report"


Operation = (
    TaskBundleOperation
    | CanonicalRemoteOperation
    | ProtocolConversionOperation
    | RenameOperation
    | BranchPromotionOperation
    | AuditReportOperation
)


@dataclass
class OperationNode:
    name: str
    operation: Operation
    dependencies: list[str] = field(default_factory=list)

    def display_name(self) -> str:
        """Explicit node name, else the operation's intrinsic name (may be empty)."""
        name = (self.name or "").strip()
        if name:
            return name
        return str(getattr(self.operation, "name", "") or "").strip()
