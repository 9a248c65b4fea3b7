"""Error taxonomy for repoflow.

Configuration errors (everything deriving from `WorkflowConfigError`) are detected while
building, ordering, or translating operation nodes, i.e. before any repository is touched.
They are fatal: the CLI reports them and exits with status 2.

Execution-time errors are different in kind. A failing action on one repository is wrapped
in `ActionExecutionError`, recorded as an ERROR event for that repository, and never aborts
other repositories. `RepositoryDiscoveryError` is the only execution-time error that stops a
run, because without a repository list there is nothing to run against.
"""

from __future__ import annotations


class WorkflowConfigError(ValueError):
    """Base class for errors in the declared operation graph."""


class MissingNameError(WorkflowConfigError):
    def __init__(self, index: int) -> None:
        super().__init__(f"workflow operation #{index + 1} is missing a name")
        self.index = index


class DuplicateOperationError(WorkflowConfigError):
    def __init__(self, name: str) -> None:
        super().__init__(f"workflow operation {name!r} defined multiple times")
        self.name = name


class UnknownDependencyError(WorkflowConfigError):
    def __init__(self, name: str, dependency: str) -> None:
        super().__init__(f"workflow step {name!r} depends on unknown step {dependency!r}")
        self.name = name
        self.dependency = dependency


class CycleError(WorkflowConfigError):
    def __init__(self, names: list[str]) -> None:
        super().__init__(f"workflow operations contain cycle: {names}")
        self.names = list(names)


class UnsupportedOperationError(WorkflowConfigError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"unsupported workflow operation: {operation}")
        self.operation = operation


class MultipleBranchTargetsError(WorkflowConfigError):
    def __init__(self, count: int) -> None:
        super().__init__(f"default-branch step supports a single target; received {count}")
        self.count = count


class RepositoryDiscoveryError(RuntimeError):
    """Repository discovery failed; the run cannot proceed."""


class ActionExecutionError(RuntimeError):
    """An action handler failed for one repository."""

    def __init__(self, *, task: str, action: str, repository: str, cause: BaseException | str) -> None:
        detail = str(cause) or type(cause).__name__
        super().__init__(f"{task}: {action} failed for {repository}: {detail}")
        self.task = task
        self.action = action
        self.repository = repository
        self.cause = cause
