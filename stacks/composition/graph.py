"""Dependency graph between the role stacks of one environment.

Edges are derived from import/export names only, never from live resource
handles, so the graph can be built and inspected without synthesizing a
single CDK construct.
"""
import heapq
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from stacks.composition.descriptor import Role, StackDescriptor
from stacks.composition.errors import CyclicDependency, DuplicateExport, RoleOrderViolation, UnsatisfiedImport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyEdge:
    """``dependency`` must be materialized before ``dependent``."""

    dependent: Role
    dependency: Role
    export_name: str


@dataclass
class DependencyGraph:
    environment: str
    descriptors: Dict[Role, StackDescriptor]
    edges: List[DependencyEdge]
    order: List[Role]
    # Imports with no producer in the graph but an already persisted export
    persisted_imports: Dict[Role, Set[str]] = field(default_factory=dict)

    def descriptor(self, role) -> StackDescriptor:
        return self.descriptors[Role.parse(role)]

    def ordered_descriptors(self) -> List[StackDescriptor]:
        return [self.descriptors[role] for role in self.order]

    def dependencies_of(self, role) -> List[Role]:
        role = Role.parse(role)
        found = []
        for edge in self.edges:
            if edge.dependent == role and edge.dependency not in found:
                found.append(edge.dependency)
        return sorted(found, key=lambda r: r.rank)

    def producer_of(self, export_name: str) -> Optional[Role]:
        for descriptor in self.descriptors.values():
            if export_name in descriptor.export_names:
                return descriptor.role
        return None


def build(descriptors: Iterable[StackDescriptor],
        export_exists: Optional[Callable[[str], bool]] = None) -> DependencyGraph:
    """Assemble ``descriptors`` of one environment into an ordered DAG.

    Args:
        descriptors: One descriptor per role, all for the same environment.
        export_exists: Tells whether an export name is already persisted. An
            import with no producer is accepted only when this returns True.

    Raises:
        UnsatisfiedImport: An import has no producer and no persisted export.
        DuplicateExport: Two descriptors declare the same export name.
        CyclicDependency: The import/export relation contains a cycle.
        RoleOrderViolation: A role imports from a role ranked after it.
    """
    descriptors = list(descriptors)
    if not descriptors:
        raise ValueError("Cannot build a dependency graph without descriptors")

    environments = {d.environment for d in descriptors}
    if len(environments) != 1:
        raise ValueError(f"Descriptors span several environments: {sorted(environments)}")
    environment = environments.pop()

    by_role: Dict[Role, StackDescriptor] = {}
    for descriptor in descriptors:
        if descriptor.role in by_role:
            raise ValueError(f"Role '{descriptor.role}' declared twice for environment '{environment}'")
        by_role[descriptor.role] = descriptor

    producers: Dict[str, Role] = {}
    for descriptor in descriptors:
        for name in descriptor.export_names:
            if name in producers:
                raise DuplicateExport(environment, name, [producers[name], descriptor.role])
            producers[name] = descriptor.role

    edges: List[DependencyEdge] = []
    persisted: Dict[Role, Set[str]] = {}
    for descriptor in descriptors:
        for name in descriptor.import_names:
            producer = producers.get(name)
            if producer is None:
                if export_exists is not None and export_exists(name):
                    persisted.setdefault(descriptor.role, set()).add(name)
                    continue
                raise UnsatisfiedImport(descriptor.role, environment, name)
            if producer == descriptor.role:
                raise CyclicDependency(environment, [descriptor.role, descriptor.role])
            edges.append(DependencyEdge(descriptor.role, producer, name))

    order = _topological_order(environment, list(by_role), edges)

    for edge in edges:
        if edge.dependency.rank > edge.dependent.rank:
            raise RoleOrderViolation(environment, edge.dependent, edge.dependency, edge.export_name)

    logger.debug("Dependency order for %s: %s", environment, [str(role) for role in order])
    return DependencyGraph(
        environment=environment,
        descriptors=by_role,
        edges=edges,
        order=order,
        persisted_imports=persisted,
    )


def _topological_order(environment: str, roles: List[Role], edges: List[DependencyEdge]) -> List[Role]:
    # Kahn's algorithm; ties are broken by role rank, never by declaration order
    indegree = {role: 0 for role in roles}
    dependents: Dict[Role, Set[Role]] = {role: set() for role in roles}
    for edge in edges:
        if edge.dependent not in dependents[edge.dependency]:
            dependents[edge.dependency].add(edge.dependent)
            indegree[edge.dependent] += 1

    ready = [(role.rank, role) for role, count in indegree.items() if count == 0]
    heapq.heapify(ready)
    order = []
    while ready:
        _, role = heapq.heappop(ready)
        order.append(role)
        for dependent in dependents[role]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, (dependent.rank, dependent))

    if len(order) != len(roles):
        remaining = {role for role in roles if role not in order}
        raise CyclicDependency(environment, _find_cycle(remaining, edges))
    return order


def _find_cycle(remaining: Set[Role], edges: List[DependencyEdge]) -> List[Role]:
    graph: Dict[Role, List[Role]] = {role: [] for role in remaining}
    for edge in edges:
        if edge.dependent in remaining and edge.dependency in remaining:
            graph[edge.dependent].append(edge.dependency)

    start = min(remaining, key=lambda r: r.rank)
    path = [start]
    seen = {start: 0}
    current = start
    # Every remaining node keeps at least one outgoing edge inside the set
    while True:
        current = sorted(graph[current], key=lambda r: r.rank)[0]
        if current in seen:
            return path[seen[current]:] + [current]
        seen[current] = len(path)
        path.append(current)
