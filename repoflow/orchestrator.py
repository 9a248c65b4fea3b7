"""repoflow orchestrator: nodes -> order -> translate -> run.

`WorkflowOrchestrator.run(nodes)` is the single entry point behind the CLI:

1. Order the operation nodes (`repoflow.dag.order_operations`) and translate them into tasks
   (`repoflow.translate.translate_operations`). Configuration errors surface here, before any
   repository is touched.
2. Merge the runtime flags the operations require with the invocation's own options
   (`assume_yes`, parallelism, variables, dry run, continue-on-error). Operation flags are only
   ever OR-ed in, never cleared.
3. Hand the tasks to `TaskRunner` and print the summary line when more than one repository was
   processed.

Progress lines go to stderr prefixed with `[repoflow]`.
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

from .actions import ActionRegistry
from .dag import order_operations
from .operations import OperationNode
from .prompt import ConfirmationPrompter
from .reporting import EventSink, StderrEventSink, SummaryReporter, render_summary_line
from .runtime import ExecutionOutcome, TaskRunner
from .tasks import RuntimeOptions
from .translate import translate_operations


@dataclass(frozen=True)
class WorkflowConfig:
    control_root: Path
    roots: list[Path]
    git: Any
    registry: ActionRegistry
    github: Any = None
    prompter: ConfirmationPrompter | None = None
    sink: EventSink | None = None
    assume_yes: bool = False
    workflow_parallelism: int = 1
    variables: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False
    continue_on_error: bool = False

    def runtime_options(self) -> RuntimeOptions:
        return RuntimeOptions(
            assume_yes=self.assume_yes,
            workflow_parallelism=max(1, int(self.workflow_parallelism)),
            variables=dict(self.variables),
            dry_run=self.dry_run,
            continue_on_error=self.continue_on_error,
        )


class WorkflowOrchestrator:
    def __init__(self, cfg: WorkflowConfig, *, stdout: TextIO | None = None) -> None:
        self.cfg = cfg
        self.stdout = stdout

    def run(self, nodes: Sequence[OperationNode], *, cancel: threading.Event | None = None) -> ExecutionOutcome:
        ordered = order_operations(nodes)
        tasks, required = translate_operations(ordered)
        options = self.cfg.runtime_options().merge(required)

        print(
            f"[repoflow] workflow: steps={len(ordered)} tasks={len(tasks)} roots={len(self.cfg.roots)}",
            file=sys.stderr,
        )
        for node in ordered:
            print(f"[repoflow] step {node.display_name()} ({node.operation.name})", file=sys.stderr)
        if options.dry_run:
            print("[repoflow] dry run: no repository will be modified", file=sys.stderr)

        reporter = SummaryReporter(self.cfg.sink if self.cfg.sink is not None else StderrEventSink())
        runner = TaskRunner(
            git=self.cfg.git,
            registry=self.cfg.registry,
            reporter=reporter,
            prompter=self.cfg.prompter,
            github=self.cfg.github,
        )
        outcome = runner.run(self.cfg.roots, tasks, options, cancel=cancel)

        line = render_summary_line(outcome.summary)
        if line:
            print(line, file=self.stdout or sys.stdout)
        print(
            f"[repoflow] done: repositories={outcome.repository_count} failures={len(outcome.failures)}",
            file=sys.stderr,
        )
        return outcome

