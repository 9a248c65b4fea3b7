from __future__ import annotations

from pathlib import Path

import pytest


class FakeGit:
    """In-memory stand-in for `GitClient` that records mutating calls."""

    def __init__(self, repos: list[Path] | None = None) -> None:
        self.repos = list(repos or [])
        self.dirty: set[Path] = set()
        self.current: dict[Path, str] = {}
        self.branches: dict[Path, set[str]] = {}
        self.remotes: dict[tuple[Path, str], str] = {}
        self.tags: dict[Path, set[str]] = {}
        self.calls: list[tuple] = []

    def discover(self, roots, *, include_nested: bool) -> list[Path]:
        self.calls.append(("discover", tuple(str(r) for r in roots), include_nested))
        return list(self.repos)

    def worktree_status(self, *, cwd: Path) -> list[str]:
        return ["M changed.txt"] if cwd in self.dirty else []

    def is_clean(self, *, cwd: Path) -> bool:
        self.calls.append(("is_clean", cwd))
        return cwd not in self.dirty

    def current_branch(self, *, cwd: Path) -> str:
        return self.current.get(cwd, "main")

    def branch_exists(self, branch: str, *, cwd: Path) -> bool:
        return branch in self.branches.get(cwd, {"main"})

    def remote_url(self, remote: str, *, cwd: Path) -> str | None:
        return self.remotes.get((cwd, remote))

    def set_remote_url(self, remote: str, url: str, *, cwd: Path) -> None:
        self.calls.append(("set_remote_url", remote, url, cwd))
        self.remotes[(cwd, remote)] = url

    def checkout(self, branch: str, *, cwd: Path) -> None:
        self.calls.append(("checkout", branch, cwd))
        self.current[cwd] = branch

    def create_branch(self, branch: str, *, start_point: str | None, cwd: Path, checkout: bool = False) -> None:
        self.calls.append(("create_branch", branch, start_point, cwd, checkout))
        self.branches.setdefault(cwd, {"main"}).add(branch)
        if checkout:
            self.current[cwd] = branch

    def commit_all_if_needed(self, *, cwd: Path, message: str) -> bool:
        self.calls.append(("commit", message, cwd))
        return True

    def push(self, remote: str, branch: str, *, cwd: Path) -> None:
        self.calls.append(("push", remote, branch, cwd))

    def delete_branch(self, branch: str, *, cwd: Path) -> None:
        self.calls.append(("delete_branch", branch, cwd))

    def delete_remote_branch(self, remote: str, branch: str, *, cwd: Path) -> None:
        self.calls.append(("delete_remote_branch", remote, branch, cwd))

    def tag_exists(self, tag: str, *, cwd: Path) -> bool:
        return tag in self.tags.get(cwd, set())

    def create_tag(self, tag: str, *, message: str, cwd: Path) -> None:
        self.calls.append(("create_tag", tag, message, cwd))
        self.tags.setdefault(cwd, set()).add(tag)

    def push_tag(self, remote: str, tag: str, *, cwd: Path) -> None:
        self.calls.append(("push_tag", remote, tag, cwd))

    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] not in {"discover", "is_clean"}]


class FakeGitHub:
    def __init__(self, canonical: dict[str, str] | None = None) -> None:
        self.canonical = dict(canonical or {})
        self.calls: list[tuple] = []

    def canonical_name(self, owner_repo: str, *, cwd: Path) -> str:
        self.calls.append(("canonical_name", owner_repo))
        return self.canonical.get(owner_repo, owner_repo)

    def set_default_branch(self, owner_repo: str, branch: str, *, cwd: Path) -> None:
        self.calls.append(("set_default_branch", owner_repo, branch))


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()
