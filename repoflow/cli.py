"""repoflow.cli

Command-line entrypoint for repoflow, a multi-repository maintenance orchestrator.

Entry points
- `repoflow.cli:main`
- `python3 -m repoflow ...` (delegates to this module)

Usage
- `repoflow workflow.yaml --roots ~/src`
- `repoflow workflow.yaml --roots ~/src ~/work --yes --workflow-workers 4`
- `repoflow workflow.yaml --plan` (print the ordered stages and exit)

Flags
- `workflow`: YAML/JSON workflow file (see `repoflow.config`).
- `--roots <dir>...`: directories to scan for repositories (default: the control root).
- `--yes`: confirm every mutating task without prompting.
- `--require-clean`: rename steps that do not set `require_clean` skip dirty repositories.
- `--var key=value` (repeatable) and `--var-file <path>` (repeatable): workflow variables;
  `--var` wins over var files.
- `--workflow-workers <N>`: repositories processed concurrently (default 1).
- `--dry-run`: report what would change without touching any repository.
- `--continue-on-error`: keep running a repository's remaining tasks after one fails.
- `--plan`: print the dependency stages and exit without running anything.

Control root
`Path($REPOFLOW_CONTROL_ROOT)` when set, else the current working directory. Relative
workflow, var-file and root paths are resolved against it.

Exit status
- 0: every repository completed without errors.
- 1: at least one repository recorded an error.
- 2: invalid configuration (nothing was run) or a discovery failure.
- 130: interrupted (Ctrl-C); repositories that had not started were not processed.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from .config import (
    apply_defaults,
    build_operations,
    load_configuration,
    load_variables_from_files,
    parse_variable_assignments,
)
from .dag import operation_stages
from .errors import RepositoryDiscoveryError, WorkflowConfigError
from .git_ops import GitClient, GitHubClient
from .handlers import default_registry
from .orchestrator import WorkflowConfig, WorkflowOrchestrator
from .prompt import IOConfirmationPrompter


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="repoflow", description="Run a declared maintenance workflow across git repositories.")
    p.add_argument("workflow", help="Path to the workflow YAML/JSON file.")
    p.add_argument(
        "--roots",
        nargs="+",
        default=None,
        help="Directories to scan for repositories (default: the control root).",
    )
    p.add_argument("--yes", action="store_true", help="Confirm every mutating task without prompting.")
    p.add_argument(
        "--require-clean",
        action="store_true",
        help="Rename steps skip dirty repositories unless the step sets require_clean itself.",
    )
    p.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Workflow variable (repeatable).",
    )
    p.add_argument(
        "--var-file",
        action="append",
        default=[],
        metavar="PATH",
        help="YAML/JSON file with workflow variables (repeatable).",
    )
    p.add_argument(
        "--workflow-workers",
        type=int,
        default=1,
        help="Number of repositories processed concurrently (default 1).",
    )
    p.add_argument("--dry-run", action="store_true", help="Report planned changes without modifying repositories.")
    p.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Keep running a repository's remaining tasks after one of them fails.",
    )
    p.add_argument("--plan", action="store_true", help="Print the ordered workflow stages and exit.")
    return p


def _print_plan(nodes) -> None:
    for i, stage in enumerate(operation_stages(nodes), start=1):
        names = ", ".join(f"{n.display_name()} ({n.operation.name})" for n in stage)
        print(f"stage {i}: {names}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(list(sys.argv[1:] if argv is None else argv))

    control_root_env = os.environ.get("REPOFLOW_CONTROL_ROOT")
    control_root = (Path(control_root_env) if control_root_env else Path.cwd()).resolve()
    workflow_path = (control_root / args.workflow).resolve()
    roots = [(control_root / Path(r).expanduser()).resolve() for r in (args.roots or ["."])]

    try:
        nodes = build_operations(load_configuration(workflow_path))
        nodes = apply_defaults(nodes, require_clean=bool(args.require_clean))
        variables = load_variables_from_files((control_root / f).resolve() for f in args.var_file)
        variables.update(parse_variable_assignments(args.var))
        if args.plan:
            _print_plan(nodes)
            return 0

        prompter = None
        if not args.yes and sys.stdin.isatty():
            prompter = IOConfirmationPrompter(input=sys.stdin, output=sys.stderr)

        cfg = WorkflowConfig(
            control_root=control_root,
            roots=roots,
            git=GitClient(),
            github=GitHubClient(),
            registry=default_registry(),
            prompter=prompter,
            assume_yes=bool(args.yes),
            workflow_parallelism=max(1, int(args.workflow_workers)),
            variables=variables,
            dry_run=bool(args.dry_run),
            continue_on_error=bool(args.continue_on_error),
        )
        outcome = WorkflowOrchestrator(cfg).run(nodes)
    except (WorkflowConfigError, RepositoryDiscoveryError) as exc:
        print(f"[repoflow] error: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("[repoflow] interrupted: queued repositories were not processed", file=sys.stderr)
        return 130

    return 0 if outcome.ok else 1
