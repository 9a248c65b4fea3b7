"""Built-in action handlers, task-file distribution and safeguards.

Handlers (registered by `default_registry()` under their dispatch identifier):

- `repo.remote.update`: rewrite `origin` to the canonical `owner/name` reported by GitHub,
  keeping the current protocol. Option `owner` skips repositories whose canonical owner
  differs.
- `repo.remote.convert-protocol`: rewrite `origin` from protocol `from` to protocol `to`
  (`git`, `ssh`, `https`). Repositories on another protocol are skipped.
- `repo.folder.rename`: rename the repository directory to the remote repository name
  (`owner/name` with `include_owner`). With `require_clean`, dirty repositories are skipped;
  the check uses the initial worktree snapshot when the runtime captured one.
- `branch.default`: make `target` the default branch: create it from `source` when missing,
  push it and set it as the GitHub default (unless `push: false`), optionally delete
  `source` locally and on the remote.
- `repo.files.replace`: replace `find` with `replace` in files matching `pattern`/`patterns`
  (globs relative to the repository, `**` recurses, `.git` is never touched). `regex: true`
  treats `find` as a regular expression. Optional `safeguards` gate the action and an optional
  `command` runs in the repository after files were rewritten.
- `repo.release.tag`: create annotated tag `tag` (message defaults to `Release <tag>`) and push
  it to `remote` (default `origin`) unless `push: false`. Existing tags are skipped.
- `audit.report`: write one CSV row per repository to `output` (or stdout).

Every handler honours `ctx.dry_run` by reporting a TASK_PLAN event instead of mutating.

`apply_task_files()` implements the file part of declarative tasks: render file paths and
contents with `$variable` substitution, switch to the task branch, write the files according
to their mode, commit, push, and restore the original branch.
"""

from __future__ import annotations

import csv
import re
import subprocess
import sys
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from string import Template
from typing import Any, TextIO

from .actions import ActionContext, ActionRegistry, ActionResult
from .reporting import EventLevel
from .tasks import TaskDefinition, TaskFileMode, parse_bool
from .translate import (
    ACTION_AUDIT_REPORT,
    ACTION_BRANCH_DEFAULT,
    ACTION_CONVERT_PROTOCOL,
    ACTION_FILES_REPLACE,
    ACTION_FOLDER_RENAME,
    ACTION_RELEASE_TAG,
    ACTION_REMOTE_UPDATE,
)

ORIGIN = "origin"

_SCP_LIKE = re.compile(r"^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/]+):(?P<path>[^/].*)$")
_URL_LIKE = re.compile(r"^(?P<scheme>ssh|https?|git)://(?:(?P<user>[^@/]+)@)?(?P<host>[^/:]+)(?::\d+)?/(?P<path>.+)$")


@dataclass(frozen=True)
class RemoteURL:
    protocol: str
    host: str
    owner: str
    repo: str

    @property
    def owner_repo(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_remote_url(url: str) -> RemoteURL | None:
    url = url.strip()
    m = _URL_LIKE.match(url)
    if m:
        scheme = m.group("scheme")
        protocol = "https" if scheme.startswith("http") else scheme
        host, path = m.group("host"), m.group("path")
    else:
        m = _SCP_LIKE.match(url)
        if not m:
            return None
        protocol, host, path = "ssh", m.group("host"), m.group("path")

    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2:
        return None
    repo = parts[-1].removesuffix(".git")
    return RemoteURL(protocol=protocol, host=host, owner=parts[-2], repo=repo)


def format_remote_url(remote: RemoteURL, protocol: str) -> str:
    if protocol == "ssh":
        return f"git@{remote.host}:{remote.owner_repo}.git"
    if protocol == "git":
        return f"git://{remote.host}/{remote.owner_repo}.git"
    if protocol == "https":
        return f"https://{remote.host}/{remote.owner_repo}.git"
    raise ValueError(f"unsupported remote protocol: {protocol}")


def _origin(ctx: ActionContext) -> tuple[str | None, RemoteURL | None]:
    url = ctx.git.remote_url(ORIGIN, cwd=ctx.repository.path)
    if url is None:
        return None, None
    return url, parse_remote_url(url)


def update_canonical_remote(ctx: ActionContext, options: Mapping[str, Any]) -> ActionResult:
    url, remote = _origin(ctx)
    if remote is None:
        return ActionResult.skipped("origin remote missing or not recognised", level=EventLevel.WARN)
    if ctx.github is None:
        return ActionResult.failed("GitHub client not configured")

    canonical = ctx.github.canonical_name(remote.owner_repo, cwd=ctx.repository.path)
    if "/" not in canonical:
        return ActionResult.failed(f"unexpected canonical repository name {canonical!r}")
    owner, repo = canonical.split("/", 1)
    owner_constraint = str(options.get("owner") or "").strip()
    if owner_constraint and owner.lower() != owner_constraint.lower():
        return ActionResult.skipped("owner constraint not met", owner=owner, expected=owner_constraint)

    new_url = format_remote_url(RemoteURL(remote.protocol, remote.host, owner, repo), remote.protocol)
    if new_url == url or canonical == remote.owner_repo:
        return ActionResult.skipped("origin already canonical")
    if ctx.dry_run:
        return ActionResult.planned("would update origin", url=new_url)
    ctx.git.set_remote_url(ORIGIN, new_url, cwd=ctx.repository.path)
    return ActionResult.applied("origin updated", url=new_url)


def convert_remote_protocol(ctx: ActionContext, options: Mapping[str, Any]) -> ActionResult:
    source = str(options.get("from") or "").strip().lower()
    target = str(options.get("to") or "").strip().lower()
    if not source or not target:
        return ActionResult.failed("protocol conversion requires 'from' and 'to'")

    _, remote = _origin(ctx)
    if remote is None:
        return ActionResult.skipped("origin remote missing or not recognised", level=EventLevel.WARN)
    if remote.protocol != source:
        return ActionResult.skipped(f"origin uses {remote.protocol}, not {source}")

    new_url = format_remote_url(remote, target)
    if ctx.dry_run:
        return ActionResult.planned("would convert origin", url=new_url)
    ctx.git.set_remote_url(ORIGIN, new_url, cwd=ctx.repository.path)
    return ActionResult.applied("origin converted", url=new_url)


def rename_folder(ctx: ActionContext, options: Mapping[str, Any]) -> ActionResult:
    _, remote = _origin(ctx)
    if remote is None:
        return ActionResult.skipped("origin remote missing or not recognised", level=EventLevel.WARN)

    current = ctx.repository.path
    include_owner = bool(parse_bool(options.get("include_owner", False)))
    if include_owner:
        target = current.parent / remote.owner / remote.repo
        if current.parent.name == remote.owner:
            target = current.parent / remote.repo
    else:
        target = current.parent / remote.repo
    if target == current:
        return ActionResult.skipped("directory already named after remote")

    if parse_bool(options.get("require_clean", False)):
        clean = ctx.repository.initial_clean
        if clean is None:
            clean = ctx.git.is_clean(cwd=current)
        if not clean:
            return ActionResult.skipped("repository dirty", level=EventLevel.WARN)

    if target.exists():
        return ActionResult.skipped("target directory exists", level=EventLevel.WARN, target=str(target))
    if ctx.dry_run:
        return ActionResult.planned("would rename directory", target=str(target))

    target.parent.mkdir(parents=True, exist_ok=True)
    current.rename(target)
    ctx.repository.path = target
    return ActionResult.applied("directory renamed", target=str(target))


def promote_default_branch(ctx: ActionContext, options: Mapping[str, Any]) -> ActionResult:
    cwd = ctx.repository.path
    target = str(options.get("target") or "").strip()
    remote_name = str(options.get("remote") or ORIGIN).strip()
    push = parse_bool(options.get("push", True)) is not False
    delete_source = bool(parse_bool(options.get("delete_source_branch", False)))
    if not target:
        return ActionResult.failed("branch promotion requires a target branch")

    source = str(options.get("source") or "").strip() or ctx.git.current_branch(cwd=cwd)
    target_exists = ctx.git.branch_exists(target, cwd=cwd)
    if source == target and not target_exists:
        return ActionResult.failed(f"branch {target} does not exist")
    if ctx.dry_run:
        return ActionResult.planned("would promote default branch", source=source, target=target)

    if not target_exists:
        ctx.git.create_branch(target, start_point=source, cwd=cwd)

    if push:
        remote_url = ctx.git.remote_url(remote_name, cwd=cwd)
        if remote_url is None:
            return ActionResult.skipped(f"remote {remote_name} missing", level=EventLevel.WARN)
        ctx.git.push(remote_name, target, cwd=cwd)
        remote = parse_remote_url(remote_url)
        if ctx.github is not None and remote is not None:
            ctx.github.set_default_branch(remote.owner_repo, target, cwd=cwd)

    if delete_source and source != target:
        if ctx.git.current_branch(cwd=cwd) == source:
            ctx.git.checkout(target, cwd=cwd)
        ctx.git.delete_branch(source, cwd=cwd)
        if push:
            ctx.git.delete_remote_branch(remote_name, source, cwd=cwd)

    return ActionResult.applied("default branch promoted", source=source, target=target)


def _replacement_patterns(options: Mapping[str, Any]) -> list[str]:
    raw = options.get("patterns") or []
    if isinstance(raw, str):
        raw = [raw]
    collected = [options.get("pattern") or "", *raw]
    patterns: list[str] = []
    for entry in collected:
        pattern = str(entry).strip().removeprefix("./")
        if pattern and pattern not in patterns:
            patterns.append(pattern)
    return patterns


def _replacement_command(raw: Any) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        return raw.split()
    return [str(part).strip() for part in raw if str(part).strip()]


def replace_in_files(ctx: ActionContext, options: Mapping[str, Any]) -> ActionResult:
    cwd = ctx.repository.path
    find = render_template(str(options.get("find") or ""), ctx)
    if not find:
        return ActionResult.failed("replacement action requires non-empty 'find'")
    replace = render_template(str(options.get("replace") or ""), ctx)
    patterns = [render_template(p, ctx) for p in _replacement_patterns(options)]
    if not patterns:
        return ActionResult.failed("replacement action requires at least one 'pattern'")
    use_regex = bool(parse_bool(options.get("regex", False)))
    try:
        expression = re.compile(find if use_regex else re.escape(find))
    except re.error as exc:
        return ActionResult.failed(f"invalid replacement expression {find!r}: {exc}")
    # literal replacements must not expand backslash escapes
    replacement = replace if use_regex else (lambda _match: replace)

    passed, reason = evaluate_safeguards(ctx, options.get("safeguards") or {})
    if not passed:
        return ActionResult.skipped(reason, level=EventLevel.WARN)

    targets: set[Path] = set()
    for pattern in patterns:
        for path in cwd.glob(pattern):
            if path.is_file() and ".git" not in path.relative_to(cwd).parts:
                targets.add(path)

    plans: list[tuple[Path, str, int]] = []
    for path in sorted(targets):
        original = path.read_text(encoding="utf-8")
        updated, count = expression.subn(replacement, original)
        if count:
            plans.append((path, updated, count))
    if not plans:
        return ActionResult.skipped("no matches")

    files = ",".join(str(path.relative_to(cwd)) for path, _, _ in plans)
    replacements = str(sum(count for _, _, count in plans))
    if ctx.dry_run:
        return ActionResult.planned("would replace text", files=files, replacements=replacements)

    for path, updated, _ in plans:
        path.write_text(updated, encoding="utf-8")
    command = _replacement_command(options.get("command"))
    if command:
        subprocess.run(command, cwd=cwd, check=True, capture_output=True, text=True)
    return ActionResult.applied("text replaced", files=files, replacements=replacements)


def tag_release(ctx: ActionContext, options: Mapping[str, Any]) -> ActionResult:
    cwd = ctx.repository.path
    tag = render_template(str(options.get("tag") or ""), ctx).strip()
    if not tag:
        return ActionResult.failed("release action requires 'tag'")
    message = render_template(str(options.get("message") or ""), ctx).strip() or f"Release {tag}"
    remote = str(options.get("remote") or ORIGIN).strip()
    push = parse_bool(options.get("push", True)) is not False

    if ctx.git.tag_exists(tag, cwd=cwd):
        return ActionResult.skipped("tag exists", level=EventLevel.WARN, tag=tag)
    if push and ctx.git.remote_url(remote, cwd=cwd) is None:
        return ActionResult.skipped(f"remote {remote} missing", level=EventLevel.WARN, tag=tag)
    if ctx.dry_run:
        return ActionResult.planned("would tag release", tag=tag)

    ctx.git.create_tag(tag, message=message, cwd=cwd)
    if push:
        ctx.git.push_tag(remote, tag, cwd=cwd)
        return ActionResult.applied("release tagged", tag=tag, remote=remote)
    return ActionResult.applied("release tagged", tag=tag)


AUDIT_COLUMNS = ["folder_name", "path", "owner_repo", "remote_protocol", "local_branch", "clean", "name_matches"]


class AuditReportHandler:
    """Collect one CSV row per repository; the first row written to a destination in a run adds the header."""

    def __init__(self, *, stdout: TextIO | None = None) -> None:
        self.stdout = stdout
        self._lock = threading.Lock()
        self._started: set[str] = set()

    def __call__(self, ctx: ActionContext, options: Mapping[str, Any]) -> ActionResult:
        path = ctx.repository.path
        _, remote = _origin(ctx)
        try:
            branch = ctx.git.current_branch(cwd=path)
        except RuntimeError:
            branch = "HEAD"
        row = {
            "folder_name": path.name,
            "path": str(path),
            "owner_repo": remote.owner_repo if remote else "",
            "remote_protocol": remote.protocol if remote else "",
            "local_branch": branch,
            "clean": "yes" if ctx.git.is_clean(cwd=path) else "no",
            "name_matches": "yes" if remote and remote.repo == path.name else "no",
        }

        output = str(options.get("output") or "").strip()
        with self._lock:
            if output:
                destination = Path(output).expanduser()
                fresh = output not in self._started
                self._started.add(output)
                destination.parent.mkdir(parents=True, exist_ok=True)
                with destination.open("w" if fresh else "a", encoding="utf-8", newline="") as fh:
                    self._write(fh, row, header=fresh)
                return ActionResult.applied("audit row written", output=str(destination))

            fresh = "-" not in self._started
            self._started.add("-")
            self._write(self.stdout or sys.stdout, row, header=fresh)
        return ActionResult.applied("audit row written")

    @staticmethod
    def _write(stream: TextIO, row: dict[str, str], *, header: bool) -> None:
        writer = csv.DictWriter(stream, fieldnames=AUDIT_COLUMNS)
        if header:
            writer.writeheader()
        writer.writerow(row)


def default_registry(*, stdout: TextIO | None = None) -> ActionRegistry:
    registry = ActionRegistry()
    registry.register(ACTION_REMOTE_UPDATE, update_canonical_remote)
    registry.register(ACTION_CONVERT_PROTOCOL, convert_remote_protocol)
    registry.register(ACTION_FOLDER_RENAME, rename_folder)
    registry.register(ACTION_BRANCH_DEFAULT, promote_default_branch)
    registry.register(ACTION_FILES_REPLACE, replace_in_files)
    registry.register(ACTION_RELEASE_TAG, tag_release)
    registry.register(ACTION_AUDIT_REPORT, AuditReportHandler(stdout=stdout))
    return registry


def render_template(text: str, ctx: ActionContext) -> str:
    mapping = dict(ctx.variables)
    mapping.setdefault("repository_path", str(ctx.repository.path))
    mapping.setdefault("repository_name", ctx.repository.path.name)
    return Template(text).safe_substitute(mapping)


def evaluate_safeguards(ctx: ActionContext, safeguards: Mapping[str, Any]) -> tuple[bool, str]:
    """Return (passed, reason). Each configured safeguard must hold."""
    if not safeguards:
        return True, ""
    cwd = ctx.repository.path

    if parse_bool(safeguards.get("require_clean", False)):
        entries = ctx.git.worktree_status(cwd=cwd)
        if entries:
            shown = ", ".join(entries[:5])
            more = f" (+{len(entries) - 5} more)" if len(entries) > 5 else ""
            return False, f"repository not clean: {shown}{more}"

    if parse_bool(safeguards.get("require_changes", False)):
        if ctx.git.is_clean(cwd=cwd):
            return False, "requires changes"

    required_branch = str(safeguards.get("branch") or "").strip()
    branch_in = [str(b).strip() for b in (safeguards.get("branch_in") or []) if str(b).strip()]
    if required_branch or branch_in:
        current = ctx.git.current_branch(cwd=cwd)
        if required_branch and current != required_branch:
            return False, f"requires branch {required_branch}"
        if branch_in and not any(fnmatch(current, pattern) for pattern in branch_in):
            return False, f"requires branch in {branch_in}"

    for raw in safeguards.get("paths") or []:
        rel = render_template(str(raw), ctx)
        if not (cwd / rel).exists():
            return False, f"requires path {rel}"

    return True, ""


def _write_file(path: Path, content: str, mode: TaskFileMode, permissions: int) -> bool:
    """Write one task file; returns False when nothing changed."""
    if path.exists():
        existing = path.read_text(encoding="utf-8")
        if mode == TaskFileMode.SKIP_IF_EXISTS:
            return False
        if mode == TaskFileMode.LINE_EDIT:
            present = set(existing.splitlines())
            missing = [line for line in content.splitlines() if line not in present]
            if not missing:
                return False
            prefix = existing if existing.endswith("\n") or not existing else existing + "\n"
            content = prefix + "\n".join(missing) + "\n"
        elif existing == content:
            return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    path.chmod(permissions)
    return True


def apply_task_files(ctx: ActionContext, task: TaskDefinition) -> ActionResult:
    cwd = ctx.repository.path
    rendered = [
        (cwd / render_template(f.path, ctx), render_template(f.content, ctx), f.mode, f.permissions) for f in task.files
    ]
    branch = render_template(task.branch.name, ctx).strip()

    if ctx.dry_run:
        return ActionResult.planned(
            "would write files", files=",".join(str(p.relative_to(cwd)) for p, *_ in rendered), branch=branch
        )

    original = ctx.git.current_branch(cwd=cwd)
    if branch:
        if ctx.git.branch_exists(branch, cwd=cwd):
            return ActionResult.skipped("branch exists", level=EventLevel.WARN, branch=branch)
        start_point = render_template(task.branch.start_point, ctx).strip() or None
        if start_point and not ctx.git.branch_exists(start_point, cwd=cwd):
            start_point = None
        ctx.git.create_branch(branch, start_point=start_point, cwd=cwd, checkout=True)

    try:
        changed = [p for p, content, mode, perms in rendered if _write_file(p, content, mode, perms)]
        if not changed:
            return ActionResult.skipped("task has no changes")
        message = render_template(task.commit.message, ctx).strip() or task.name
        ctx.git.commit_all_if_needed(cwd=cwd, message=message)
        if branch and ctx.git.remote_url(task.branch.push_remote, cwd=cwd) is not None:
            ctx.git.push(task.branch.push_remote, branch, cwd=cwd)
    finally:
        if branch and branch != original:
            ctx.git.checkout(original, cwd=cwd)

    return ActionResult.applied("files written", files=str(len(changed)), branch=branch)
