"""Dependency graph over components and tools.

Build order is derived from each component's ``depends_on`` edges, and tool
order from the edges that cross tool boundaries. Sorting is stable: among nodes that are
free to go, declaration order wins, so the bundled recipes still provision
git, unzip, ffmpeg in that order.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .config import ComponentSpec, Recipes, ToolSpec
from .errors import RecipeError


@dataclass(frozen=True)
class DependencyGraph:
    nodes: tuple[str, ...]
    edges: Mapping[str, tuple[str, ...]]

    @classmethod
    def build(cls, nodes: Iterable[str], edges: Mapping[str, Iterable[str]]) -> DependencyGraph:
        node_list = tuple(nodes)
        known = set(node_list)
        norm: dict[str, tuple[str, ...]] = {}
        for n in node_list:
            deps = tuple(edges.get(n, ()))
            for d in deps:
                if d not in known:
                    raise RecipeError(f"{n} depends on unknown {d}")
            norm[n] = deps
        graph = cls(nodes=node_list, edges=norm)
        graph.order()  # reject cycles early
        return graph

    def order(self) -> list[str]:
        out: list[str] = []
        done: set[str] = set()
        visiting: list[str] = []

        def visit(n: str) -> None:
            if n in done:
                return
            if n in visiting:
                cycle = visiting[visiting.index(n):] + [n]
                raise RecipeError(f"Dependency cycle: {' -> '.join(cycle)}")
            visiting.append(n)
            for d in self.edges.get(n, ()):
                visit(d)
            visiting.pop()
            done.add(n)
            out.append(n)

        for n in self.nodes:
            visit(n)
        return out

    def closure(self, name: str) -> list[str]:
        """Transitive dependencies of `name`, in build order, excluding itself."""
        wanted: set[str] = set()
        stack = list(self.edges.get(name, ()))
        while stack:
            d = stack.pop()
            if d not in wanted:
                wanted.add(d)
                stack.extend(self.edges.get(d, ()))
        return [n for n in self.order() if n in wanted]


@dataclass(frozen=True)
class ToolPlan:
    tool: ToolSpec
    components: tuple[ComponentSpec, ...]
    # component name -> names of its transitive dependencies
    dependencies: Mapping[str, tuple[str, ...]]


def component_graph(recipes: Recipes) -> DependencyGraph:
    comps = recipes.components()
    return DependencyGraph.build(comps, {n: c.depends_on for n, c in comps.items()})


def plan(recipes: Recipes) -> list[ToolPlan]:
    """Order tools and their components so every dependency is built first."""
    cgraph = component_graph(recipes)
    owner = recipes.owner()
    comps = recipes.components()

    tool_edges: dict[str, list[str]] = {t.name: [] for t in recipes.tools}
    for t in recipes.tools:
        for c in t.components:
            for d in c.depends_on:
                other = owner[d]
                if other == t.name:
                    continue
                if comps[d].build_only:
                    raise RecipeError(
                        f"{c.name} depends on build-only component {d} of another tool ({other})"
                    )
                if other not in tool_edges[t.name]:
                    tool_edges[t.name].append(other)
    tgraph = DependencyGraph.build([t.name for t in recipes.tools], tool_edges)

    order = cgraph.order()
    plans = []
    for tool_name in tgraph.order():
        tool = recipes.tool(tool_name)
        members = {c.name for c in tool.components}
        ordered = tuple(comps[n] for n in order if n in members)
        deps = {c.name: tuple(cgraph.closure(c.name)) for c in ordered}
        plans.append(ToolPlan(tool=tool, components=ordered, dependencies=deps))
    return plans
