"""
Static dependency graph of a plan.

Edges run from a dependency to the targets that reference it, either in
their command or in their dynamic-branching dimensions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional
import heapq
import logging

from targetflow.errors import CycleError, UnknownReferenceError
from targetflow.plan.ir import Plan, TargetName

logger = logging.getLogger("targetflow.graph")


@dataclass
class DependencyGraph:
    """Nodes are target names; ``dependencies[b]`` lists every ``a`` with an edge a -> b."""

    nodes: list[TargetName] = field(default_factory=list)
    dependencies: dict[TargetName, tuple[TargetName, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._position = {name: index for index, name in enumerate(self.nodes)}
        self._dependents: dict[TargetName, list[TargetName]] = {name: [] for name in self.nodes}
        for name in self.nodes:
            for dep in self.dependencies.get(name, ()):
                if dep in self._dependents and name not in self._dependents[dep]:
                    self._dependents[dep].append(name)

    def dependents(self, name: TargetName) -> tuple[TargetName, ...]:
        return tuple(self._dependents.get(name, ()))

    def edges(self) -> list[tuple[TargetName, TargetName]]:
        return [(dep, name) for name in self.nodes for dep in self.dependencies.get(name, ())]

    def topological_order(self) -> list[TargetName]:
        """Kahn's algorithm; ready targets are taken in declaration order."""
        in_degree = {name: len(self.dependencies.get(name, ())) for name in self.nodes}
        ready = [(self._position[name], name) for name, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        result: list[TargetName] = []

        while ready:
            _, current = heapq.heappop(ready)
            result.append(current)
            for dependent in self._dependents[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, (self._position[dependent], dependent))

        if len(result) != len(self.nodes):
            remaining = [name for name in self.nodes if name not in set(result)]
            cycle = find_cycle(remaining, self.dependencies) or remaining
            raise CycleError(cycle)
        return result

    def generations(self, subset: Optional[Iterable[TargetName]] = None) -> list[list[TargetName]]:
        """Group targets into waves: every target's dependencies lie in earlier waves."""
        order = self.topological_order()
        allowed = set(order) if subset is None else set(subset)
        level: dict[TargetName, int] = {}
        for name in order:
            if name not in allowed:
                continue
            deps = [dep for dep in self.dependencies.get(name, ()) if dep in allowed]
            level[name] = 1 + max((level[dep] for dep in deps), default=-1)
        waves: list[list[TargetName]] = []
        for name in order:
            if name not in level:
                continue
            while len(waves) <= level[name]:
                waves.append([])
            waves[level[name]].append(name)
        return waves

    def upstream(self, names: Iterable[TargetName]) -> set[TargetName]:
        """The given targets plus everything they transitively depend on."""
        seen: set[TargetName] = set()
        stack = list(names)
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            stack.extend(self.dependencies.get(name, ()))
        return seen

    def downstream(self, names: Iterable[TargetName]) -> set[TargetName]:
        """The given targets plus everything that transitively depends on them."""
        seen: set[TargetName] = set()
        stack = list(names)
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            stack.extend(self._dependents.get(name, ()))
        return seen


def find_cycle(
    nodes: Iterable[TargetName],
    dependencies: dict[TargetName, tuple[TargetName, ...]],
) -> Optional[list[TargetName]]:
    """Return one cycle as a closed path ``[a, b, ..., a]``, or None."""
    WHITE, GREY, BLACK = 0, 1, 2
    candidates = list(nodes)
    color = {name: WHITE for name in candidates}

    for root in candidates:
        if color[root] != WHITE:
            continue
        path: list[TargetName] = [root]
        color[root] = GREY
        iterators = [iter(dependencies.get(root, ()))]
        while iterators:
            dep = next(iterators[-1], None)
            if dep is None:
                color[path.pop()] = BLACK
                iterators.pop()
                continue
            if dep not in color:
                continue
            if color[dep] == GREY:
                start = path.index(dep)
                # path follows dependency edges, reverse it to read in execution order
                cycle = list(reversed(path[start:]))
                return cycle + [cycle[0]]
            if color[dep] == WHITE:
                color[dep] = GREY
                path.append(dep)
                iterators.append(iter(dependencies.get(dep, ())))
    return None


def build_graph(plan: Plan) -> DependencyGraph:
    """Build and validate the static dependency graph of a plan.

    Raises:
        UnknownReferenceError: a command or transform names a missing target
        CycleError: the graph is not acyclic
    """
    dependencies: dict[TargetName, tuple[TargetName, ...]] = {}
    for target in plan:
        deps = target.dependencies()
        for dep in deps:
            if dep not in plan:
                raise UnknownReferenceError(target.name, dep)
        dependencies[target.name] = deps

    graph = DependencyGraph(nodes=plan.names, dependencies=dependencies)
    graph.topological_order()
    logger.debug("Built dependency graph with %d targets and %d edges", len(graph.nodes), len(graph.edges()))
    return graph
