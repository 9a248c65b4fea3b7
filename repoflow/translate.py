"""Translate ordered operation nodes into executable task definitions.

`translate_operations(ordered)` walks nodes in the order produced by
`repoflow.dag.order_operations` and maps each operation kind to task definitions:

| operation                    | task(s)                                   | runtime flags          |
|------------------------------|-------------------------------------------|------------------------|
| TaskBundleOperation          | its definitions, verbatim                 | -                      |
| CanonicalRemoteOperation     | "Update canonical remote"                 | -                      |
| ProtocolConversionOperation  | "Convert remote protocol"                 | -                      |
| RenameOperation              | "Rename repository directories"           | nested + by depth      |
|                              |                                           | (+ capture if clean)   |
| BranchPromotionOperation     | "Promote default branch to <target>"      | -                      |
| AuditReportOperation         | "Generate audit report"                   | -                      |

Anything else raises `UnsupportedOperationError`.

Runtime flags are OR-accumulated (`RuntimeOptions.merge`), so they do not depend on node
order; order only affects the sequence of returned tasks.
"""

from __future__ import annotations

from collections.abc import Sequence

from .dag import order_operations
from .errors import MultipleBranchTargetsError, UnsupportedOperationError
from .operations import (
    AuditReportOperation,
    BranchPromotionOperation,
    CanonicalRemoteOperation,
    OperationNode,
    ProtocolConversionOperation,
    RenameOperation,
    TaskBundleOperation,
)
from .tasks import RuntimeOptions, TaskActionDefinition, TaskDefinition

TASK_NAME_CONVERT_PROTOCOL = "Convert remote protocol"
TASK_NAME_UPDATE_CANONICAL_REMOTE = "Update canonical remote"
TASK_NAME_RENAME_DIRECTORIES = "Rename repository directories"
TASK_NAME_PROMOTE_DEFAULT_BRANCH = "Promote default branch to {target}"
TASK_NAME_GENERATE_AUDIT_REPORT = "Generate audit report"

DEFAULT_PROMOTION_REMOTE = "origin"
DEFAULT_PROMOTION_TARGET = "master"

ACTION_REMOTE_UPDATE = "repo.remote.update"
ACTION_CONVERT_PROTOCOL = "repo.remote.convert-protocol"
ACTION_FOLDER_RENAME = "repo.folder.rename"
ACTION_BRANCH_DEFAULT = "branch.default"
ACTION_AUDIT_REPORT = "audit.report"
ACTION_FILES_REPLACE = "repo.files.replace"
ACTION_RELEASE_TAG = "repo.release.tag"


def _single_action_task(name: str, action_type: str, options: dict) -> TaskDefinition:
    return TaskDefinition(name=name, ensure_clean=False, actions=(TaskActionDefinition(type=action_type, options=options),))


def runtime_requirements(operation: object) -> RuntimeOptions:
    """Capability flags a single operation needs from the runtime."""
    if isinstance(operation, RenameOperation):
        return RuntimeOptions(
            include_nested_repositories=True,
            process_repositories_by_descending_depth=True,
            capture_initial_worktree_status=operation.require_clean_worktree,
        )
    return RuntimeOptions()


def derive_runtime_requirements(nodes: Sequence[OperationNode]) -> RuntimeOptions:
    runtime = RuntimeOptions()
    for node in nodes:
        runtime = runtime.merge(runtime_requirements(node.operation))
    return runtime


def _operation_tasks(operation: object) -> list[TaskDefinition]:
    if isinstance(operation, TaskBundleOperation):
        return operation.definitions()

    if isinstance(operation, CanonicalRemoteOperation):
        options: dict = {}
        owner = operation.owner_constraint.strip()
        if owner:
            options["owner"] = owner
        return [_single_action_task(TASK_NAME_UPDATE_CANONICAL_REMOTE, ACTION_REMOTE_UPDATE, options)]

    if isinstance(operation, ProtocolConversionOperation):
        options = {"from": operation.from_protocol.value, "to": operation.to_protocol.value}
        return [_single_action_task(TASK_NAME_CONVERT_PROTOCOL, ACTION_CONVERT_PROTOCOL, options)]

    if isinstance(operation, RenameOperation):
        options = {
            "require_clean": operation.require_clean_worktree,
            "include_owner": operation.include_owner,
        }
        return [_single_action_task(TASK_NAME_RENAME_DIRECTORIES, ACTION_FOLDER_RENAME, options)]

    if isinstance(operation, BranchPromotionOperation):
        if not operation.targets:
            return []
        if len(operation.targets) > 1:
            raise MultipleBranchTargetsError(len(operation.targets))
        target = operation.targets[0]
        target_branch = target.target_branch.strip() or DEFAULT_PROMOTION_TARGET
        options = {
            "target": target_branch,
            "remote": target.remote_name.strip() or DEFAULT_PROMOTION_REMOTE,
        }
        if target.source_branch.strip():
            options["source"] = target.source_branch.strip()
        if not target.push_to_remote:
            options["push"] = False
        if target.delete_source_branch:
            options["delete_source_branch"] = True
        name = TASK_NAME_PROMOTE_DEFAULT_BRANCH.format(target=target_branch)
        return [_single_action_task(name, ACTION_BRANCH_DEFAULT, options)]

    if isinstance(operation, AuditReportOperation):
        options = {}
        if operation.output_path.strip():
            options["output"] = operation.output_path.strip()
        return [_single_action_task(TASK_NAME_GENERATE_AUDIT_REPORT, ACTION_AUDIT_REPORT, options)]

    name = getattr(operation, "name", None) or type(operation).__name__
    raise UnsupportedOperationError(str(name))


def translate_operations(ordered: Sequence[OperationNode]) -> tuple[list[TaskDefinition], RuntimeOptions]:
    """Map already-ordered nodes to tasks plus the runtime flags they require."""
    tasks: list[TaskDefinition] = []
    runtime = RuntimeOptions()
    for node in ordered:
        tasks.extend(_operation_tasks(node.operation))
        runtime = runtime.merge(runtime_requirements(node.operation))
    return tasks, runtime


def build_workflow_tasks(nodes: Sequence[OperationNode]) -> tuple[list[TaskDefinition], RuntimeOptions]:
    """Order `nodes` by dependency and translate them."""
    return translate_operations(order_operations(nodes))
