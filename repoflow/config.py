"""Workflow configuration loading.

A workflow file is YAML (or JSON, which `yaml.safe_load` reads as well):

    workflow:
      - step:
          name: rename
          command: ["folder", "rename"]
          with:
            require_clean: true
      - step:
          name: audit
          after: [rename]
          command: ["audit", "report"]
          with:
            output: ./audit.csv

`build_operations()` turns the steps into `OperationNode`s:
- `command` (list or string) is normalised to a lowercase, space-joined key; legacy aliases map
  onto the current keys; unknown keys raise `UnsupportedOperationError`.
- a step without `after` runs after the previous step; `after: []` means no dependencies.
- an unnamed step is called `<command key>-<position>` (1-based).

Variables come from `--var key=value` and from YAML/JSON var files; names are trimmed and must
be identifiers so they can be used as `$name` placeholders.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .errors import DuplicateOperationError, UnknownDependencyError, UnsupportedOperationError, WorkflowConfigError
from .operations import (
    AuditReportOperation,
    BranchPromotionOperation,
    BranchPromotionTarget,
    CanonicalRemoteOperation,
    Operation,
    OperationNode,
    ProtocolConversionOperation,
    RemoteProtocol,
    RenameOperation,
    TaskBundleOperation,
)
from .tasks import (
    DEFAULT_FILE_PERMISSIONS,
    DEFAULT_PUSH_REMOTE,
    TaskActionDefinition,
    TaskBranchDefinition,
    TaskCommitDefinition,
    TaskDefinition,
    TaskFileDefinition,
    TaskFileMode,
    parse_bool,
)

COMMAND_AUDIT_REPORT = "audit report"
COMMAND_BRANCH_DEFAULT = "default"
COMMAND_FOLDER_RENAME = "folder rename"
COMMAND_REMOTE_CANONICAL = "remote update-to-canonical"
COMMAND_REMOTE_PROTOCOL = "remote update-protocol"
COMMAND_TASKS_APPLY = "tasks apply"

COMMAND_ALIASES = {
    "repo tasks apply": COMMAND_TASKS_APPLY,
    "repo folder rename": COMMAND_FOLDER_RENAME,
    "repo remote update-to-canonical": COMMAND_REMOTE_CANONICAL,
    "repo remote update-protocol": COMMAND_REMOTE_PROTOCOL,
    "branch default": COMMAND_BRANCH_DEFAULT,
    "branch-default": COMMAND_BRANCH_DEFAULT,
}

_VARIABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def command_key(command: Any) -> str:
    if isinstance(command, str):
        parts = command.split()
    elif isinstance(command, Sequence):
        parts = [p for item in command for p in str(item).split()]
    else:
        parts = []
    key = " ".join(p.strip().lower() for p in parts if p.strip())
    return COMMAND_ALIASES.get(key, key)


def load_configuration(path: str | Path) -> list[dict[str, Any]]:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise WorkflowConfigError(f"cannot read workflow file {p}: {exc}") from exc
    return parse_configuration(text, source=str(p))


def parse_configuration(text: str, *, source: str = "<workflow>") -> list[dict[str, Any]]:
    """Return the list of step mappings declared in a workflow document."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise WorkflowConfigError(f"invalid workflow file {source}: {exc}") from exc

    if not isinstance(data, Mapping):
        raise WorkflowConfigError(f"{source}: expected a mapping with a 'workflow' list")
    raw_steps = data.get("workflow")
    if not isinstance(raw_steps, list):
        raise WorkflowConfigError(f"{source}: 'workflow' must be a list of steps")

    steps: list[dict[str, Any]] = []
    for i, entry in enumerate(raw_steps):
        step = entry.get("step", entry) if isinstance(entry, Mapping) else None
        if not isinstance(step, Mapping):
            raise WorkflowConfigError(f"{source}: workflow entry #{i + 1} must be a mapping")
        steps.append(dict(step))
    return steps


def build_operations(steps: Sequence[Mapping[str, Any]]) -> list[OperationNode]:
    nodes: list[OperationNode] = []
    names: set[str] = set()
    previous = ""

    for i, step in enumerate(steps):
        key = command_key(step.get("command"))
        if not key:
            raise WorkflowConfigError(f"workflow step #{i + 1} is missing a command")
        operation = build_operation(key, step.get("with") or {})

        name = str(step.get("name") or "").strip() or f"{key}-{i + 1}"
        if name in names:
            raise DuplicateOperationError(name)

        after = step.get("after")
        if after is None:
            dependencies = [previous] if previous else []
        else:
            if isinstance(after, str):
                after = [after]
            dependencies = []
            for dep in after:
                dep = str(dep).strip()
                if dep and dep not in dependencies:
                    dependencies.append(dep)

        nodes.append(OperationNode(name=name, operation=operation, dependencies=dependencies))
        names.add(name)
        previous = name

    for node in nodes:
        for dep in node.dependencies:
            if dep not in names:
                raise UnknownDependencyError(node.name, dep)
    return nodes


def build_operation(key: str, options: Mapping[str, Any]) -> Operation:
    if not isinstance(options, Mapping):
        raise WorkflowConfigError(f"{key}: 'with' must be a mapping")

    if key == COMMAND_REMOTE_PROTOCOL:
        source = _protocol(options.get("from"), "from")
        target = _protocol(options.get("to"), "to")
        if source == target:
            raise WorkflowConfigError(f"{key} step requires distinct source and target protocols")
        return ProtocolConversionOperation(from_protocol=source, to_protocol=target)

    if key == COMMAND_REMOTE_CANONICAL:
        return CanonicalRemoteOperation(owner_constraint=str(options.get("owner") or "").strip())

    if key == COMMAND_FOLDER_RENAME:
        explicit = "require_clean" in options
        return RenameOperation(
            require_clean_worktree=bool(parse_bool(options.get("require_clean", False))),
            include_owner=bool(parse_bool(options.get("include_owner", False))),
            require_clean_explicit=explicit,
        )

    if key == COMMAND_BRANCH_DEFAULT:
        raw_targets = options.get("targets") or []
        if not isinstance(raw_targets, list) or not raw_targets:
            raise WorkflowConfigError("branch default step requires at least one target")
        return BranchPromotionOperation(targets=tuple(_promotion_target(t) for t in raw_targets))

    if key == COMMAND_AUDIT_REPORT:
        return AuditReportOperation(output_path=str(options.get("output") or "").strip())

    if key == COMMAND_TASKS_APPLY:
        raw_tasks = options.get("tasks") or []
        if not isinstance(raw_tasks, list) or not raw_tasks:
            raise WorkflowConfigError("tasks apply step requires at least one task")
        return TaskBundleOperation(tasks=tuple(_task(t, i) for i, t in enumerate(raw_tasks)))

    raise UnsupportedOperationError(key)


def _protocol(raw: Any, field: str) -> RemoteProtocol:
    value = str(raw or "").strip().lower()
    if not value:
        raise WorkflowConfigError(f"remote update-protocol step requires a valid '{field}' protocol")
    try:
        return RemoteProtocol(value)
    except ValueError:
        raise WorkflowConfigError(f"unsupported protocol value: {raw}") from None


def _promotion_target(raw: Any) -> BranchPromotionTarget:
    if not isinstance(raw, Mapping):
        raise WorkflowConfigError("branch default targets must be mappings")
    push = parse_bool(raw.get("push_to_remote", True))
    delete = parse_bool(raw.get("delete_source_branch", False))
    return BranchPromotionTarget(
        target_branch=str(raw.get("target_branch") or "").strip(),
        source_branch=str(raw.get("source_branch") or "").strip(),
        remote_name=str(raw.get("remote_name") or "").strip(),
        push_to_remote=True if push is None else push,
        delete_source_branch=bool(delete),
    )


def _permissions(raw: Any) -> int:
    if raw is None or raw == "":
        return DEFAULT_FILE_PERMISSIONS
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip(), 8)
    except ValueError:
        raise WorkflowConfigError(f"invalid file permissions: {raw}") from None


def _task(raw: Any, index: int) -> TaskDefinition:
    if not isinstance(raw, Mapping):
        raise WorkflowConfigError(f"task #{index + 1} must be a mapping")
    name = str(raw.get("name") or "").strip()
    if not name:
        raise WorkflowConfigError(f"task #{index + 1} is missing a name")

    files = []
    for entry in raw.get("files") or []:
        path = str(entry.get("path") or "").strip() if isinstance(entry, Mapping) else ""
        if not path:
            raise WorkflowConfigError(f"task {name!r}: every file needs a path")
        mode_raw = str(entry.get("mode") or TaskFileMode.OVERWRITE.value).strip().lower()
        try:
            mode = TaskFileMode(mode_raw)
        except ValueError:
            raise WorkflowConfigError(f"task {name!r}: unsupported file mode {mode_raw!r}") from None
        files.append(
            TaskFileDefinition(
                path=path,
                content=str(entry.get("content") or ""),
                mode=mode,
                permissions=_permissions(entry.get("permissions")),
            )
        )

    actions = []
    for entry in raw.get("actions") or []:
        action_type = str(entry.get("type") or "").strip() if isinstance(entry, Mapping) else ""
        if not action_type:
            raise WorkflowConfigError(f"task {name!r}: every action needs a type")
        options = entry.get("options") or {}
        if not isinstance(options, Mapping):
            raise WorkflowConfigError(f"task {name!r}: options of action {action_type!r} must be a mapping")
        actions.append(TaskActionDefinition(type=action_type, options=dict(options)))

    if not files and not actions:
        raise WorkflowConfigError(f"task {name!r} defines neither files nor actions")

    branch = raw.get("branch") or {}
    if isinstance(branch, str):
        branch = {"name": branch}
    if not isinstance(branch, Mapping):
        raise WorkflowConfigError(f"task {name!r}: branch must be a mapping or a branch name")
    safeguards = raw.get("safeguards") or {}
    if not isinstance(safeguards, Mapping):
        raise WorkflowConfigError(f"task {name!r}: safeguards must be a mapping")

    return TaskDefinition(
        name=name,
        ensure_clean=bool(parse_bool(raw.get("ensure_clean", False))),
        ensure_clean_variable=str(raw.get("ensure_clean_variable") or "").strip(),
        actions=tuple(actions),
        files=tuple(files),
        branch=TaskBranchDefinition(
            name=str(branch.get("name") or "").strip(),
            start_point=str(branch.get("start_point") or "").strip(),
            push_remote=str(branch.get("push_remote") or "").strip() or DEFAULT_PUSH_REMOTE,
        ),
        commit=TaskCommitDefinition(message=str(raw.get("commit_message") or "").strip()),
        safeguards=dict(safeguards),
    )


def apply_defaults(nodes: Iterable[OperationNode], *, require_clean: bool) -> list[OperationNode]:
    """Apply CLI-level defaults to rename steps that did not set require_clean themselves."""
    updated = []
    for node in nodes:
        op = node.operation
        if isinstance(op, RenameOperation) and not op.require_clean_explicit and require_clean:
            node = OperationNode(
                name=node.name,
                operation=replace(op, require_clean_worktree=True),
                dependencies=list(node.dependencies),
            )
        updated.append(node)
    return updated


def normalize_variable_name(raw: str) -> str:
    name = raw.strip()
    if not _VARIABLE_NAME.match(name):
        raise WorkflowConfigError(f"invalid variable name: {raw!r}")
    return name


def parse_variable_assignments(assignments: Iterable[str]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for raw in assignments:
        if "=" not in raw:
            raise WorkflowConfigError(f"variable assignment must look like key=value: {raw!r}")
        key, value = raw.split("=", 1)
        variables[normalize_variable_name(key)] = value.strip()
    return variables


def load_variables_from_files(paths: Iterable[str | Path]) -> dict[str, str]:
    """Merge variable files in order; later files win."""
    variables: dict[str, str] = {}
    for path in paths:
        p = Path(path)
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8"))
        except OSError as exc:
            raise WorkflowConfigError(f"cannot read variable file {p}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise WorkflowConfigError(f"invalid variable file {p}: {exc}") from exc
        if data is None:
            continue
        if not isinstance(data, Mapping):
            raise WorkflowConfigError(f"variable file {p} must contain a mapping")
        for key, value in data.items():
            variables[normalize_variable_name(str(key))] = "" if value is None else str(value)
    return variables
