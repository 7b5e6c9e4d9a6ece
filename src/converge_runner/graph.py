"""Dependency resolution, cycle detection and pass planning for task maps.

Structural checks run before any task does, so a bad graph fails the run
deterministically instead of looping until the no-progress budget runs out.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Mapping, Optional

from rich.console import Console
from rich.markup import escape
from rich.tree import Tree

from .errors import DependencyCycleError, UnknownDependencyError
from .task import Task


@dataclass
class ExecutionPlan:
    """Expected execution waves when every task succeeds on first attempt."""

    passes: list[list[str]]  # each inner list runs in the same pass
    total_tasks: int
    max_parallelism: int

    @property
    def longest_chain(self) -> int:
        return len(self.passes)


def resolve_dependencies(tasks: Mapping[str, Task]) -> dict[str, set[str]]:
    """Compute every task's dependency set.

    Raises:
        UnknownDependencyError: If a task refers to a name outside ``tasks``.
    """
    graph: dict[str, set[str]] = {}
    for name in sorted(tasks):
        deps = set(tasks[name].dependencies(tasks))
        for dep in sorted(deps):
            if dep not in tasks:
                raise UnknownDependencyError(name, dep)
        graph[name] = deps
    return graph


def find_cycle(graph: Mapping[str, set[str]]) -> Optional[list[str]]:
    """Return one dependency cycle as a closed path, or None.

    The search visits names in sorted order so the reported cycle is stable.
    """
    # 0 = unvisited, 1 = visiting, 2 = visited
    state: dict[str, int] = {name: 0 for name in graph}

    def dfs(node: str, path: list[str]) -> Optional[list[str]]:
        if state[node] == 1:
            cycle_start = path.index(node)
            return path[cycle_start:] + [node]
        if state[node] == 2:
            return None

        state[node] = 1
        path.append(node)
        for dep in sorted(graph.get(node, ())):
            if dep not in state:
                continue
            cycle = dfs(dep, path)
            if cycle:
                return cycle
        path.pop()
        state[node] = 2
        return None

    for name in sorted(graph):
        if state[name] == 0:
            cycle = dfs(name, [])
            if cycle:
                return cycle
    return None


def check_graph(tasks: Mapping[str, Task]) -> dict[str, set[str]]:
    """Resolve and validate the dependency graph of ``tasks``.

    Raises:
        UnknownDependencyError: For references outside the collection.
        DependencyCycleError: If the graph is not acyclic.
    """
    graph = resolve_dependencies(tasks)
    cycle = find_cycle(graph)
    if cycle:
        raise DependencyCycleError(cycle)
    return graph


def plan_passes(graph: Mapping[str, set[str]]) -> ExecutionPlan:
    """Group tasks into the passes the run loop would use on a clean run."""
    cycle = find_cycle(graph)
    if cycle:
        raise DependencyCycleError(cycle)

    in_degree: dict[str, int] = {name: len(deps) for name, deps in graph.items()}
    dependents: dict[str, list[str]] = defaultdict(list)
    for name, deps in graph.items():
        for dep in deps:
            dependents[dep].append(name)

    passes: list[list[str]] = []
    ready = sorted(name for name, count in in_degree.items() if count == 0)
    while ready:
        passes.append(ready)
        upcoming: list[str] = []
        for name in ready:
            for child in dependents.get(name, []):
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    upcoming.append(child)
        ready = sorted(upcoming)

    return ExecutionPlan(
        passes=passes,
        total_tasks=len(graph),
        max_parallelism=max((len(p) for p in passes), default=0),
    )


def render_plan(graph: Mapping[str, set[str]], plan: ExecutionPlan, *, as_tree: bool = False) -> str:
    """Render an execution plan as text for terminal output."""
    console = Console(record=True, width=100)

    if as_tree:
        tree = Tree("[bold]Task Dependency Tree[/bold]")
        dependents: dict[str, list[str]] = defaultdict(list)
        for name, deps in graph.items():
            for dep in deps:
                dependents[dep].append(name)

        def add_dependents(parent: Tree, name: str, visited: set[str]) -> None:
            if name in visited:
                return
            visited.add(name)
            for child in sorted(dependents.get(name, [])):
                branch = parent.add(f"[cyan]{escape(child)}[/cyan]")
                add_dependents(branch, child, visited)

        visited: set[str] = set()
        for root in sorted(n for n, deps in graph.items() if not deps):
            branch = tree.add(f"[green]{escape(root)}[/green]")
            add_dependents(branch, root, visited)
        console.print(tree)
        return console.export_text()

    console.print("[bold]Convergence Plan[/bold]")
    console.print(f"Total tasks: {plan.total_tasks}")
    console.print(f"Passes: {len(plan.passes)}")
    console.print(f"Max parallelism: {plan.max_parallelism}")
    console.print()
    for index, names in enumerate(plan.passes, 1):
        console.print(f"[bold cyan]Pass {index}:[/bold cyan] ({len(names)} task(s))")
        for name in names:
            deps = sorted(graph.get(name, ()))
            if deps:
                console.print(f"  • {escape(name)} [dim](depends on: {escape(', '.join(deps))})[/dim]")
            else:
                console.print(f"  • {escape(name)}")
        console.print()
    return console.export_text()
