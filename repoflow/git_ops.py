"""Git and GitHub collaborators for repoflow.

`GitClient` shells out to `git` via `subprocess`; every method maps closely to a single git
command so callers can reason about side effects. `GitHubClient` does the same for the `gh`
CLI and is only needed by the canonical-remote and default-branch handlers.

Repository discovery
- `discover(roots, include_nested=...)` walks each root (sorted, depth first) and returns
  every directory containing a `.git` entry (directory or worktree file). Roots that are
  repositories themselves are included.
- When `include_nested` is false the walk does not descend into a repository once found,
  so repositories nested inside another repository are not returned.
- A root that does not exist raises `RepositoryDiscoveryError`; discovery failures stop the
  run because there is nothing to run against.

Side effects and safety notes
- Read-only methods: `discover`, `worktree_status`, `is_clean`, `current_branch`,
  `branch_exists`, `remote_url`.
- Mutating methods: `set_remote_url`, `checkout`, `create_branch`, `commit_all_if_needed`,
  `push`, `delete_branch`, `delete_remote_branch`.
- Most invocations go through `_git(...)` which uses `check=True`, so failures surface as
  `subprocess.CalledProcessError`; the runtime wraps those per repository.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Iterable
from pathlib import Path

from .errors import RepositoryDiscoveryError


class GitClient:
    def discover(self, roots: Iterable[str | Path], *, include_nested: bool) -> list[Path]:
        found: list[Path] = []
        seen: set[Path] = set()
        for root in roots:
            base = Path(root).expanduser().resolve()
            if not base.is_dir():
                raise RepositoryDiscoveryError(f"repository root does not exist: {root}")
            for dirpath, dirnames, filenames in os.walk(base):
                dirnames.sort()
                is_repo = ".git" in dirnames or ".git" in filenames
                if ".git" in dirnames:
                    dirnames.remove(".git")
                if not is_repo:
                    continue
                current = Path(dirpath)
                if current not in seen:
                    seen.add(current)
                    found.append(current)
                if not include_nested:
                    dirnames[:] = []
        return found

    def worktree_status(self, *, cwd: Path) -> list[str]:
        out = self._git(["status", "--porcelain"], cwd=cwd)
        return [line.strip() for line in out.splitlines() if line.strip()]

    def is_clean(self, *, cwd: Path) -> bool:
        return not self.worktree_status(cwd=cwd)

    def current_branch(self, *, cwd: Path) -> str:
        out = self._git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd).strip()
        if out == "HEAD":
            raise RuntimeError(f"Detached HEAD in {cwd}")
        return out

    def branch_exists(self, branch: str, *, cwd: Path) -> bool:
        p = subprocess.run(
            ["git", "show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],
            cwd=cwd,
            check=False,
        )
        return p.returncode == 0

    def remote_url(self, remote: str, *, cwd: Path) -> str | None:
        p = subprocess.run(
            ["git", "remote", "get-url", remote],
            cwd=cwd,
            text=True,
            check=False,
            capture_output=True,
        )
        if p.returncode != 0:
            return None
        return p.stdout.strip() or None

    def set_remote_url(self, remote: str, url: str, *, cwd: Path) -> None:
        self._git(["remote", "set-url", remote, url], cwd=cwd)

    def checkout(self, branch: str, *, cwd: Path) -> None:
        self._git(["checkout", branch], cwd=cwd)

    def create_branch(self, branch: str, *, start_point: str | None, cwd: Path, checkout: bool = False) -> None:
        if checkout:
            args = ["checkout", "-b", branch]
        else:
            args = ["branch", branch]
        if start_point:
            args.append(start_point)
        self._git(args, cwd=cwd)

    def commit_all_if_needed(self, *, cwd: Path, message: str) -> bool:
        if self.is_clean(cwd=cwd):
            return False
        self._git(["add", "-A"], cwd=cwd)
        self._git(["commit", "-m", message], cwd=cwd)
        return True

    def push(self, remote: str, branch: str, *, cwd: Path) -> None:
        self._git(["push", "--set-upstream", remote, branch], cwd=cwd)

    def delete_branch(self, branch: str, *, cwd: Path) -> None:
        self._git(["branch", "-D", branch], cwd=cwd)

    def delete_remote_branch(self, remote: str, branch: str, *, cwd: Path) -> None:
        self._git(["push", remote, "--delete", branch], cwd=cwd)

    def tag_exists(self, tag: str, *, cwd: Path) -> bool:
        p = subprocess.run(
            ["git", "show-ref", "--verify", "--quiet", f"refs/tags/{tag}"],
            cwd=cwd,
            check=False,
        )
        return p.returncode == 0

    def create_tag(self, tag: str, *, message: str, cwd: Path) -> None:
        self._git(["tag", "-a", tag, "-m", message], cwd=cwd)

    def push_tag(self, remote: str, tag: str, *, cwd: Path) -> None:
        self._git(["push", remote, tag], cwd=cwd)

    def _git(self, args: list[str], *, cwd: Path) -> str:
        p = subprocess.run(
            ["git", *args],
            cwd=cwd,
            text=True,
            check=True,
            capture_output=True,
        )
        return p.stdout


class GitHubClient:
    def __init__(self, *, executable: str = "gh") -> None:
        self.executable = executable

    def canonical_name(self, owner_repo: str, *, cwd: Path) -> str:
        """Resolve renames/transfers: `gh` follows redirects to the current `owner/name`."""
        return self._gh(["repo", "view", owner_repo, "--json", "nameWithOwner", "-q", ".nameWithOwner"], cwd=cwd).strip()

    def set_default_branch(self, owner_repo: str, branch: str, *, cwd: Path) -> None:
        self._gh(["repo", "edit", owner_repo, "--default-branch", branch], cwd=cwd)

    def _gh(self, args: list[str], *, cwd: Path) -> str:
        p = subprocess.run(
            [self.executable, *args],
            cwd=cwd,
            text=True,
            check=True,
            capture_output=True,
        )
        return p.stdout
