"""Task execution runtime.

`TaskRunner.run(roots, tasks, options)` applies an ordered list of `TaskDefinition`s to every
repository discovered under `roots`.

Flow
1. Discover repositories (`discover(roots, include_nested=...)`), drop duplicates, compute each
   repository's depth and mark repositories that contain other discovered repositories.
2. When `process_repositories_by_descending_depth` is set, sort by depth (deepest first), then
   by path. Renaming an inner directory before its parent keeps the parent's path valid.
3. When `capture_initial_worktree_status` is set, record every repository's clean/dirty state
   once, before any task runs. Later clean checks use that snapshot so that a task which
   changes one repository cannot make its parent look dirty.
4. Process repositories on a thread pool bounded by `workflow_parallelism` (values below 1 mean
   1; never more workers than repositories). Tasks run sequentially within a repository.

Per task: safeguards, then the ensure-clean gate, then confirmation (mutating tasks only, not
in dry runs, skipped once `assume_yes` holds), then task files, then actions in order.
A failing task stops the remaining tasks of that repository unless `continue_on_error` is set;
other repositories keep going. Setting the `cancel` event stops repositories before their next
task and marks unstarted repositories as cancelled.

`run()` raises only when nothing can run: no roots (`ValueError`) or failed discovery
(`RepositoryDiscoveryError`). An interrupt in the caller (`KeyboardInterrupt`) sets `cancel`,
drops queued repositories and is re-raised. Everything else ends up in the returned
`ExecutionOutcome`.
"""

from __future__ import annotations

import subprocess
import threading
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .actions import ActionContext, ActionRegistry, ActionResult, ActionStatus, RepositoryState
from .errors import ActionExecutionError
from .handlers import apply_task_files, evaluate_safeguards
from .prompt import ConfirmationCascade, ConfirmationPrompter
from .reporting import (
    TASK_CANCEL,
    TASK_ERROR,
    TASK_SKIP,
    Event,
    EventLevel,
    SummaryData,
    SummaryReporter,
)
from .tasks import RuntimeOptions, TaskDefinition
from .translate import ACTION_AUDIT_REPORT

READ_ONLY_ACTIONS = frozenset({ACTION_AUDIT_REPORT})

TASK_APPLIED = "applied"
TASK_SKIPPED = "skipped"
TASK_FAILED = "failed"
TASK_CANCELLED = "cancelled"


@dataclass(frozen=True)
class TaskOutcome:
    name: str
    status: str
    message: str = ""


@dataclass(frozen=True)
class StageOutcome:
    index: int
    repository: str
    tasks: tuple[TaskOutcome, ...]
    duration: float

    @property
    def failed(self) -> bool:
        return any(t.status == TASK_FAILED for t in self.tasks)


@dataclass(frozen=True)
class ExecutionOutcome:
    repository_count: int
    duration: float
    stage_outcomes: tuple[StageOutcome, ...]
    summary: SummaryData
    failures: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures


def sanitize_parallelism(requested: int, repository_count: int) -> int:
    workers = requested if requested > 0 else 1
    if repository_count > 0:
        workers = min(workers, repository_count)
    return workers


def is_mutating(task: TaskDefinition) -> bool:
    if task.files:
        return True
    return any(action.type.strip().lower() not in READ_ONLY_ACTIONS for action in task.actions)


class TaskRunner:
    def __init__(
        self,
        *,
        git: Any,
        registry: ActionRegistry,
        reporter: SummaryReporter,
        prompter: ConfirmationPrompter | None = None,
        github: Any = None,
        clock=time.monotonic,
    ) -> None:
        self.git = git
        self.registry = registry
        self.reporter = reporter
        self.prompter = prompter
        self.github = github
        self._clock = clock

    def run(
        self,
        roots: Sequence[str | Path],
        tasks: Sequence[TaskDefinition],
        options: RuntimeOptions,
        cancel: threading.Event | None = None,
    ) -> ExecutionOutcome:
        roots = [r for r in roots if str(r).strip()]
        if not roots:
            raise ValueError("at least one repository root is required")

        started = self._clock()
        repositories = self._prepare(
            self.git.discover(roots, include_nested=options.include_nested_repositories), options
        )
        cancel = cancel or threading.Event()
        cascade = ConfirmationCascade(self.prompter, assume_yes=options.assume_yes)

        results: list[StageOutcome | None] = [None] * len(repositories)
        failures: list[list[str]] = [[] for _ in repositories]
        if repositories:
            workers = sanitize_parallelism(options.workflow_parallelism, len(repositories))
            pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="repoflow")
            try:
                futures = [
                    pool.submit(self._process, index, repo, tasks, options, cascade, cancel, failures[index])
                    for index, repo in enumerate(repositories)
                ]
                for index, future in enumerate(futures):
                    results[index] = future.result()
            except BaseException:
                # Ctrl-C: queued repositories never start, running ones stop before their next task
                cancel.set()
                pool.shutdown(wait=True, cancel_futures=True)
                raise
            pool.shutdown(wait=True)

        return ExecutionOutcome(
            repository_count=len(repositories),
            duration=max(0.0, self._clock() - started),
            stage_outcomes=tuple(r for r in results if r is not None),
            summary=self.reporter.summary(),
            failures=tuple(message for messages in failures for message in messages),
        )

    def _prepare(self, paths: Iterable[Path], options: RuntimeOptions) -> list[RepositoryState]:
        seen: set[Path] = set()
        repositories: list[RepositoryState] = []
        for raw in paths:
            path = Path(raw)
            if path in seen:
                continue
            seen.add(path)
            repositories.append(RepositoryState(path=path, depth=len(path.parts)))

        for repo in repositories:
            repo.has_nested_repositories = any(
                other.path != repo.path and repo.path in other.path.parents for other in repositories
            )

        if options.process_repositories_by_descending_depth:
            repositories.sort(key=lambda r: (-r.depth, str(r.path)))

        if options.capture_initial_worktree_status:
            for repo in repositories:
                try:
                    repo.initial_clean = self.git.is_clean(cwd=repo.path)
                except (subprocess.CalledProcessError, OSError, RuntimeError):
                    # unknown; the ensure-clean gate reads the status live
                    repo.initial_clean = None
        return repositories

    def _process(
        self,
        index: int,
        repo: RepositoryState,
        tasks: Sequence[TaskDefinition],
        options: RuntimeOptions,
        cascade: ConfirmationCascade,
        cancel: threading.Event,
        failures: list[str],
    ) -> StageOutcome:
        started = self._clock()
        label = repo.label
        recorded = False
        ctx = ActionContext(
            repository=repo,
            git=self.git,
            github=self.github,
            variables=dict(options.variables),
            dry_run=options.dry_run,
        )

        outcomes: list[TaskOutcome] = []
        stopped = False
        for task in tasks:
            if cancel.is_set():
                self.reporter.report(
                    Event(level=EventLevel.WARN, code=TASK_CANCEL, message="run cancelled", repository=label)
                )
                outcomes.append(TaskOutcome(task.name, TASK_CANCELLED))
                break
            if stopped:
                outcomes.append(TaskOutcome(task.name, TASK_SKIPPED, "previous task failed"))
                continue
            if not recorded:
                self.reporter.record_repository(label)
                recorded = True
            try:
                outcome = self._run_task(ctx, task, options, cascade)
            except ActionExecutionError as exc:
                failures.append(str(exc))
                self.reporter.report(
                    Event(level=EventLevel.ERROR, code=TASK_ERROR, message=str(exc), repository=label)
                )
                outcome = TaskOutcome(task.name, TASK_FAILED, str(exc))
                stopped = not options.continue_on_error
            outcomes.append(outcome)

        return StageOutcome(
            index=index,
            repository=label,
            tasks=tuple(outcomes),
            duration=max(0.0, self._clock() - started),
        )

    def _run_task(
        self,
        ctx: ActionContext,
        task: TaskDefinition,
        options: RuntimeOptions,
        cascade: ConfirmationCascade,
    ) -> TaskOutcome:
        repo = ctx.repository

        passed, reason = self._call(task, "safeguards", repo, lambda: evaluate_safeguards(ctx, task.safeguards))
        if not passed:
            return self._skip(task, repo, reason, level=EventLevel.WARN)

        if task.resolve_ensure_clean(options.variables):
            clean = repo.initial_clean
            if clean is None:
                clean = self._call(task, "ensure-clean", repo, lambda: self.git.is_clean(cwd=repo.path))
            if not clean:
                return self._skip(task, repo, "repository dirty", level=EventLevel.WARN)

        if is_mutating(task) and not options.dry_run and not cascade.assume_yes:
            prompt = f"Apply '{task.name}' to {repo.label}? [y/N/a] "
            answer = self._call(task, "confirm", repo, lambda: cascade.confirm(prompt))
            if not answer.confirmed:
                return self._skip(task, repo, "confirmation declined", level=EventLevel.INFO)

        if task.files:
            result = self._call(task, "files", repo, lambda: apply_task_files(ctx, task))
            self._emit(result, repo)
            if result.status == ActionStatus.FAILED:
                raise ActionExecutionError(task=task.name, action="files", repository=repo.label, cause=result.message)
            if result.status == ActionStatus.SKIPPED and not task.actions:
                return TaskOutcome(task.name, TASK_SKIPPED, result.message)

        status = TASK_APPLIED
        for action in task.actions:
            result = self._call(
                task, action.type, repo, lambda a=action: self.registry.dispatch(a.type, ctx, a.options)
            )
            self._emit(result, repo)
            if result.status == ActionStatus.FAILED:
                raise ActionExecutionError(task=task.name, action=action.type, repository=repo.label, cause=result.message)
            if result.status == ActionStatus.SKIPPED and len(task.actions) == 1:
                status = TASK_SKIPPED
        return TaskOutcome(task.name, status)

    @staticmethod
    def _call(task: TaskDefinition, action: str, repo: RepositoryState, fn):
        try:
            return fn()
        except ActionExecutionError:
            raise
        except Exception as exc:
            raise ActionExecutionError(task=task.name, action=action, repository=repo.label, cause=exc) from exc

    def _emit(self, result: ActionResult, repo: RepositoryState) -> None:
        for event in result.events:
            self.reporter.report(event.with_repository(repo.label))

    def _skip(self, task: TaskDefinition, repo: RepositoryState, reason: str, *, level: EventLevel) -> TaskOutcome:
        self.reporter.report(
            Event(level=level, code=TASK_SKIP, message=reason, repository=repo.label, details={"task": task.name})
        )
        return TaskOutcome(task.name, TASK_SKIPPED, reason)
