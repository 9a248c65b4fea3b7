"""Dependency ordering for workflow operation nodes.

This module resolves the user-declared `after:` edges between operation nodes into an
execution order. Nodes are identified by their display name (explicit name, else the
operation's intrinsic name); all graph bookkeeping is done on integer indices into the
caller's list, assigned once per call.

Ordering semantics
- `order_operations(nodes)` is Kahn's algorithm with a pinned tie-break: whenever several
  nodes are ready at once, the one appearing earliest in the *input* list is emitted next
  (not the one that became ready first). Identical input therefore always yields an
  identical order, and the order is user-visible as the task execution order.
- `operation_stages(nodes)` yields frontier batches instead: every node whose dependencies
  were all emitted in earlier batches, in input order. The CLI uses it to display a plan.

Validation (shared by both)
- a node without a resolvable name raises `MissingNameError`,
- two nodes with the same name raise `DuplicateOperationError`,
- a dependency naming no node raises `UnknownDependencyError` (carrying both names),
- any cycle, including a node depending on itself, raises `CycleError` and no partial
  ordering is returned.
Blank dependency names and repeated dependency names are ignored.
"""

from __future__ import annotations

import heapq
from collections.abc import Sequence
from dataclasses import dataclass

from .errors import CycleError, DuplicateOperationError, MissingNameError, UnknownDependencyError
from .operations import OperationNode


@dataclass(frozen=True)
class _Graph:
    names: list[str]
    dependents: list[list[int]]
    in_degree: list[int]


def _build_graph(nodes: Sequence[OperationNode]) -> _Graph:
    names: list[str] = []
    index_by_name: dict[str, int] = {}
    for idx, node in enumerate(nodes):
        name = node.display_name()
        if not name:
            raise MissingNameError(idx)
        if name in index_by_name:
            raise DuplicateOperationError(name)
        index_by_name[name] = idx
        names.append(name)

    dependents: list[list[int]] = [[] for _ in nodes]
    in_degree = [0] * len(nodes)
    for idx, node in enumerate(nodes):
        seen: set[str] = set()
        for raw in node.dependencies or []:
            dep = str(raw).strip()
            if not dep or dep in seen:
                continue
            seen.add(dep)
            dep_idx = index_by_name.get(dep)
            if dep_idx is None:
                raise UnknownDependencyError(names[idx], dep)
            dependents[dep_idx].append(idx)
            in_degree[idx] += 1

    return _Graph(names=names, dependents=dependents, in_degree=in_degree)


def order_operations(nodes: Sequence[OperationNode]) -> list[OperationNode]:
    """Return `nodes` in dependency order, ties broken by input position."""
    if not nodes:
        return []

    graph = _build_graph(nodes)
    in_degree = list(graph.in_degree)
    ready = [idx for idx, degree in enumerate(in_degree) if degree == 0]
    heapq.heapify(ready)

    ordered: list[int] = []
    while ready:
        idx = heapq.heappop(ready)
        ordered.append(idx)
        for dependent in graph.dependents[idx]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(ordered) != len(nodes):
        emitted = set(ordered)
        raise CycleError([graph.names[i] for i in range(len(nodes)) if i not in emitted])

    return [nodes[i] for i in ordered]


def operation_stages(nodes: Sequence[OperationNode]) -> list[list[OperationNode]]:
    """Group `nodes` into batches whose dependencies are satisfied by earlier batches."""
    if not nodes:
        return []

    graph = _build_graph(nodes)
    in_degree = list(graph.in_degree)
    frontier = [idx for idx, degree in enumerate(in_degree) if degree == 0]

    stages: list[list[OperationNode]] = []
    emitted: set[int] = set()
    while frontier:
        stages.append([nodes[i] for i in frontier])
        emitted.update(frontier)
        next_ready: set[int] = set()
        for idx in frontier:
            for dependent in graph.dependents[idx]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    next_ready.add(dependent)
        # Stable ordering: preserve caller order within a batch.
        frontier = sorted(next_ready)

    if len(emitted) != len(nodes):
        raise CycleError([graph.names[i] for i in range(len(nodes)) if i not in emitted])

    return stages
