"""Tests for dependency resolution, cycle detection and plan rendering."""

import pytest

from converge_runner.errors import DependencyCycleError, UnknownDependencyError
from converge_runner.graph import check_graph, find_cycle, plan_passes, render_plan
from converge_runner.tasks import CommandTask


def _tasks(spec: dict[str, list[str]]) -> dict[str, CommandTask]:
    return {name: CommandTask(command=["true"], depends_on=deps) for name, deps in spec.items()}


def test_no_cycle():
    graph = {"a": set(), "b": {"a"}, "c": {"a", "b"}}
    assert find_cycle(graph) is None


def test_cycle_reported_as_closed_path():
    graph = {"a": {"c"}, "b": {"a"}, "c": {"b"}, "d": set()}
    assert find_cycle(graph) == ["a", "c", "b", "a"]


def test_check_graph_resolves_names():
    graph = check_graph(_tasks({"a": [], "b": ["a"]}))
    assert graph == {"a": set(), "b": {"a"}}


def test_check_graph_unknown_dependency():
    with pytest.raises(UnknownDependencyError, match="unknown task 'ghost'"):
        check_graph(_tasks({"a": ["ghost"]}))


def test_check_graph_cycle():
    with pytest.raises(DependencyCycleError, match="Circular dependency detected: a -> b -> a"):
        check_graph(_tasks({"a": ["b"], "b": ["a"]}))


def test_plan_passes_groups_waves():
    graph = {
        "base": set(),
        "net": set(),
        "conf": {"base"},
        "svc": {"conf", "net"},
    }
    plan = plan_passes(graph)
    assert plan.passes == [["base", "net"], ["conf"], ["svc"]]
    assert plan.total_tasks == 4
    assert plan.max_parallelism == 2
    assert plan.longest_chain == 3


def test_plan_passes_empty():
    plan = plan_passes({})
    assert plan.passes == []
    assert plan.max_parallelism == 0


def test_plan_passes_rejects_cycle():
    with pytest.raises(DependencyCycleError):
        plan_passes({"a": {"a"}})


def test_render_plan_text():
    graph = {"a": set(), "b": {"a"}}
    text = render_plan(graph, plan_passes(graph))
    assert "Convergence Plan" in text
    assert "Pass 1:" in text
    assert "Pass 2:" in text
    assert "depends on: a" in text


def test_render_plan_tree_escapes_markup():
    graph = {"[root]": set(), "leaf": {"[root]"}}
    text = render_plan(graph, plan_passes(graph), as_tree=True)
    assert "Task Dependency Tree" in text
    assert "[root]" in text
    assert "leaf" in text
