from __future__ import annotations

from pathlib import Path

import pytest

from repoflow import config
from repoflow.errors import DuplicateOperationError, UnknownDependencyError, UnsupportedOperationError, WorkflowConfigError
from repoflow.operations import (
    AuditReportOperation,
    BranchPromotionOperation,
    ProtocolConversionOperation,
    RemoteProtocol,
    RenameOperation,
    TaskBundleOperation,
)
from repoflow.tasks import TaskFileMode

WORKFLOW = """
workflow:
  - step:
      name: protocols
      command: ["remote", "update-protocol"]
      with:
        from: https
        to: ssh
  - step:
      name: rename
      after: [protocols]
      command: ["folder", "rename"]
      with:
        require_clean: true
        include_owner: false
  - step:
      command: ["audit", "report"]
      with:
        output: ./audit.csv
"""


def test_load_configuration_builds_nodes(tmp_path: Path) -> None:
    path = tmp_path / "workflow.yaml"
    path.write_text(WORKFLOW, encoding="utf-8")

    nodes = config.build_operations(config.load_configuration(path))

    assert [n.name for n in nodes] == ["protocols", "rename", "audit report-3"]
    assert nodes[0].operation == ProtocolConversionOperation(RemoteProtocol.HTTPS, RemoteProtocol.SSH)
    assert nodes[1].operation == RenameOperation(require_clean_worktree=True, require_clean_explicit=True)
    assert nodes[1].dependencies == ["protocols"]
    assert nodes[2].operation == AuditReportOperation(output_path="./audit.csv")
    assert nodes[2].dependencies == ["rename"]


def test_json_workflow_is_accepted() -> None:
    steps = config.parse_configuration('{"workflow": [{"step": {"command": "audit report"}}]}')

    assert config.build_operations(steps)[0].name == "audit report-1"


@pytest.mark.parametrize(
    ("command", "key"),
    [
        (["repo", "folder", "rename"], "folder rename"),
        ("branch-default", "default"),
        (["branch", "default"], "default"),
        ("Repo Remote Update-To-Canonical", "remote update-to-canonical"),
        (["tasks", "apply"], "tasks apply"),
    ],
)
def test_command_key_normalises_aliases(command, key: str) -> None:
    assert config.command_key(command) == key


def test_explicit_empty_after_means_no_dependencies() -> None:
    nodes = config.build_operations(
        [
            {"name": "a", "command": "audit report"},
            {"name": "b", "command": "audit report", "after": []},
        ]
    )

    assert nodes[1].dependencies == []


def test_unknown_command_rejected() -> None:
    with pytest.raises(UnsupportedOperationError, match="repo explode"):
        config.build_operations([{"command": ["repo", "explode"]}])


def test_unknown_dependency_rejected() -> None:
    with pytest.raises(UnknownDependencyError):
        config.build_operations([{"name": "a", "command": "audit report", "after": ["ghost"]}])


def test_duplicate_step_names_rejected() -> None:
    with pytest.raises(DuplicateOperationError):
        config.build_operations(
            [{"name": "a", "command": "audit report"}, {"name": "a", "command": "audit report"}]
        )


@pytest.mark.parametrize(
    "options",
    [
        {"from": "https"},
        {"from": "https", "to": "ftp"},
        {"from": "ssh", "to": "ssh"},
    ],
)
def test_protocol_options_validated(options: dict) -> None:
    with pytest.raises(WorkflowConfigError):
        config.build_operation("remote update-protocol", options)


def test_branch_default_requires_targets() -> None:
    with pytest.raises(WorkflowConfigError, match="at least one target"):
        config.build_operation("default", {})


def test_branch_default_targets() -> None:
    op = config.build_operation(
        "default",
        {"targets": [{"target_branch": "main", "push_to_remote": False, "delete_source_branch": True}]},
    )

    assert isinstance(op, BranchPromotionOperation)
    assert op.targets[0].target_branch == "main"
    assert op.targets[0].push_to_remote is False
    assert op.targets[0].delete_source_branch is True


def test_task_bundle_parsing() -> None:
    op = config.build_operation(
        "tasks apply",
        {
            "tasks": [
                {
                    "name": "Add gitignore",
                    "ensure_clean": True,
                    "ensure_clean_variable": "strict",
                    "branch": {"name": "chore/gitignore", "start_point": "main"},
                    "commit_message": "Add .gitignore",
                    "files": [
                        {"path": ".gitignore", "content": ".venv/\n", "mode": "line-edit", "permissions": "0600"}
                    ],
                    "actions": [{"type": "audit.report", "options": {"output": "x.csv"}}],
                    "safeguards": {"require_clean": True},
                }
            ]
        },
    )

    assert isinstance(op, TaskBundleOperation)
    task = op.tasks[0]
    assert task.ensure_clean is True
    assert task.ensure_clean_variable == "strict"
    assert task.branch.name == "chore/gitignore"
    assert task.branch.push_remote == "origin"
    assert task.commit.message == "Add .gitignore"
    assert task.files[0].mode == TaskFileMode.LINE_EDIT
    assert task.files[0].permissions == 0o600
    assert task.actions[0].options == {"output": "x.csv"}
    assert task.safeguards == {"require_clean": True}


def test_task_without_work_rejected() -> None:
    with pytest.raises(WorkflowConfigError, match="neither files nor actions"):
        config.build_operation("tasks apply", {"tasks": [{"name": "empty"}]})


@pytest.mark.parametrize(
    "extra, message",
    [
        ({"branch": ["feature/x"]}, "branch must be a mapping"),
        ({"safeguards": "require_clean"}, "safeguards must be a mapping"),
        ({"actions": [{"type": "audit.report", "options": ["x.csv"]}]}, "must be a mapping"),
    ],
)
def test_task_shape_errors_are_config_errors(extra: dict, message: str) -> None:
    task = {"name": "t", "actions": [{"type": "audit.report"}], **extra}

    with pytest.raises(WorkflowConfigError, match=message):
        config.build_operation("tasks apply", {"tasks": [task]})


def test_branch_name_shorthand() -> None:
    op = config.build_operation(
        "tasks apply", {"tasks": [{"name": "t", "branch": "chore/x", "actions": [{"type": "audit.report"}]}]}
    )

    assert op.tasks[0].branch.name == "chore/x"


def test_apply_defaults_only_touches_implicit_rename() -> None:
    nodes = config.build_operations(
        [
            {"name": "implicit", "command": "folder rename"},
            {"name": "explicit", "command": "folder rename", "with": {"require_clean": False}},
        ]
    )

    updated = config.apply_defaults(nodes, require_clean=True)

    assert updated[0].operation.require_clean_worktree is True
    assert updated[1].operation.require_clean_worktree is False
    assert nodes[0].operation.require_clean_worktree is False


def test_invalid_yaml_reported_as_config_error() -> None:
    with pytest.raises(WorkflowConfigError):
        config.parse_configuration("workflow: [unclosed")


def test_workflow_must_be_a_list() -> None:
    with pytest.raises(WorkflowConfigError, match="must be a list"):
        config.parse_configuration("workflow: nope\n")


def test_parse_variable_assignments() -> None:
    assert config.parse_variable_assignments([" owner =Acme", "empty=", "eq=a=b"]) == {
        "owner": "Acme",
        "empty": "",
        "eq": "a=b",
    }
    with pytest.raises(WorkflowConfigError):
        config.parse_variable_assignments(["novalue"])
    with pytest.raises(WorkflowConfigError):
        config.parse_variable_assignments(["1bad=x"])


def test_load_variables_from_files_later_wins(tmp_path: Path) -> None:
    first = tmp_path / "a.yaml"
    second = tmp_path / "b.json"
    first.write_text("owner: acme\nstrict: true\n", encoding="utf-8")
    second.write_text('{"owner": "other"}', encoding="utf-8")

    assert config.load_variables_from_files([first, second]) == {"owner": "other", "strict": "True"}
