"""Ordering of containers by their declared dependencies."""

from typing import Dict, Iterable, List, Sequence

from .exceptions import ConfigurationError, DependencyCycleError


class DependencyGraph:
    """Directed acyclic graph of container names.

    An edge ``a -> b`` means ``a`` depends on ``b`` and ``b`` must be
    backed up first.
    """

    def __init__(self, nodes: Sequence[str], edges: Dict[str, Sequence[str]]):
        """
        Initialize and validate the graph.

        Args:
            nodes: Container names in configuration order
            edges: Mapping of container name to the names it depends on

        Raises:
            ConfigurationError: If a name is duplicated or a dependency is unknown
            DependencyCycleError: If the dependencies contain a cycle
        """
        seen = set()
        for node in nodes:
            if node in seen:
                raise ConfigurationError(f"Container configured twice: {node}", container=node)
            seen.add(node)

        for node, dependencies in edges.items():
            if node not in seen:
                raise ConfigurationError(f"Unknown container in dependency graph: {node}")
            for dependency in dependencies:
                if dependency not in seen:
                    raise ConfigurationError(
                        f"Container {node} depends on unknown container {dependency}",
                        container=node,
                    )

        self.nodes = list(nodes)
        self.edges = {node: list(edges.get(node, [])) for node in self.nodes}
        self._order = self._topological_order()

    @classmethod
    def from_containers(cls, containers: Iterable) -> "DependencyGraph":
        """Build the graph from ContainerConfig-like objects."""
        containers = list(containers)
        return cls(
            nodes=[c.container for c in containers],
            edges={c.container: list(c.depends_on) for c in containers},
        )

    def dependencies_of(self, node: str) -> List[str]:
        return list(self.edges[node])

    def topological_order(self) -> List[str]:
        """Dependencies first; otherwise configuration order is kept."""
        return list(self._order)

    def _topological_order(self) -> List[str]:
        done = set()
        order: List[str] = []

        # Iterative DFS; the explicit path doubles as the cycle report
        for root in self.nodes:
            if root in done:
                continue
            path: List[str] = [root]
            iterators = [iter(self.edges[root])]
            while iterators:
                dependency = next(iterators[-1], None)
                if dependency is None:
                    iterators.pop()
                    node = path.pop()
                    done.add(node)
                    order.append(node)
                    continue
                if dependency in done:
                    continue
                if dependency in path:
                    cycle = path[path.index(dependency):] + [dependency]
                    raise DependencyCycleError(
                        f"Dependency cycle detected: {' -> '.join(cycle)}", cycle=cycle
                    )
                path.append(dependency)
                iterators.append(iter(self.edges[dependency]))

        return order
