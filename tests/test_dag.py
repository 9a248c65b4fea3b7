import pytest

from repoflow.dag import operation_stages, order_operations
from repoflow.errors import CycleError, DuplicateOperationError, MissingNameError, UnknownDependencyError
from repoflow.operations import AuditReportOperation, OperationNode, RenameOperation


def _node(name: str, after: list[str] | None = None) -> OperationNode:
    return OperationNode(name=name, operation=AuditReportOperation(), dependencies=after or [])


def _names(nodes: list[OperationNode]) -> list[str]:
    return [n.name for n in nodes]


def test_ties_resolve_by_input_position_not_readiness() -> None:
    nodes = [_node("C", ["A"]), _node("B"), _node("A")]

    assert _names(order_operations(nodes)) == ["B", "A", "C"]


def test_dependency_emitted_before_dependents_declared_earlier() -> None:
    nodes = [_node("C"), _node("B", ["A"]), _node("A")]

    assert _names(order_operations(nodes)) == ["C", "A", "B"]


def test_earliest_input_wins_when_several_become_ready_together() -> None:
    nodes = [_node("C", ["A"]), _node("B", ["A"]), _node("A")]

    assert _names(order_operations(nodes)) == ["A", "C", "B"]


def test_every_dependency_precedes_its_dependent() -> None:
    nodes = [
        _node("d", ["b", "c"]),
        _node("c", ["a"]),
        _node("b", ["a"]),
        _node("a"),
        _node("e"),
    ]

    order = _names(order_operations(nodes))

    pos = {name: i for i, name in enumerate(order)}
    for node in nodes:
        for dep in node.dependencies:
            assert pos[dep] < pos[node.name]
    assert sorted(order) == sorted(_names(nodes))


def test_order_is_deterministic() -> None:
    nodes = [_node(str(i), [str(i - 3)] if i >= 3 else []) for i in range(12)]

    first = _names(order_operations(nodes))
    for _ in range(5):
        assert _names(order_operations(nodes)) == first


def test_two_node_cycle_raises_without_partial_order() -> None:
    nodes = [_node("X", ["Y"]), _node("Y", ["X"])]

    with pytest.raises(CycleError) as excinfo:
        order_operations(nodes)

    assert sorted(excinfo.value.names) == ["X", "Y"]


def test_self_dependency_is_a_cycle() -> None:
    with pytest.raises(CycleError):
        order_operations([_node("solo", ["solo"])])


def test_cycle_error_lists_only_unresolved_nodes() -> None:
    nodes = [_node("root"), _node("x", ["root", "y"]), _node("y", ["x"])]

    with pytest.raises(CycleError) as excinfo:
        order_operations(nodes)

    assert sorted(excinfo.value.names) == ["x", "y"]


def test_unknown_dependency_names_both_sides() -> None:
    with pytest.raises(UnknownDependencyError) as excinfo:
        order_operations([_node("rename", ["missing"])])

    assert excinfo.value.name == "rename"
    assert excinfo.value.dependency == "missing"
    assert "rename" in str(excinfo.value)
    assert "missing" in str(excinfo.value)


def test_duplicate_names_rejected() -> None:
    with pytest.raises(DuplicateOperationError, match="dup"):
        order_operations([_node("dup"), _node("dup")])


def test_unnamed_node_falls_back_to_operation_name() -> None:
    node = OperationNode(name="", operation=RenameOperation(), dependencies=[])

    assert [n.display_name() for n in order_operations([node])] == ["folder rename"]


def test_missing_name_rejected() -> None:
    class Nameless:
        name = ""

    with pytest.raises(MissingNameError):
        order_operations([OperationNode(name=" ", operation=Nameless(), dependencies=[])])


def test_blank_and_repeated_dependencies_ignored() -> None:
    nodes = [_node("b", ["a", "", " a ", "a"]), _node("a")]

    assert _names(order_operations(nodes)) == ["a", "b"]


def test_empty_input() -> None:
    assert order_operations([]) == []
    assert operation_stages([]) == []


def test_stages_group_frontier_in_input_order() -> None:
    nodes = [_node("4", ["2", "3"]), _node("3"), _node("2", ["1"]), _node("1")]

    assert [_names(stage) for stage in operation_stages(nodes)] == [["3", "1"], ["2"], ["4"]]


def test_stages_reject_cycles() -> None:
    with pytest.raises(CycleError):
        operation_stages([_node("a", ["b"]), _node("b", ["a"])])
