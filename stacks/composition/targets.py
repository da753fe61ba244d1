"""Deploy-target selection over a dependency graph.

Deploying part of the graph keeps the edges to the roles left out: imports
produced by those roles are flagged as externally sourced and are read from
the exports a previous run persisted.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Union

from stacks.composition.descriptor import Role, StackDescriptor
from stacks.composition.errors import InvalidDeployTarget
from stacks.composition.graph import DependencyEdge, DependencyGraph

ALL = "all"


@dataclass(frozen=True)
class DeployTarget:
    """Requested roles; an empty set means every role."""

    roles: FrozenSet[Role] = frozenset()

    @property
    def is_all(self) -> bool:
        return not self.roles

    def includes(self, role) -> bool:
        return self.is_all or Role.parse(role) in self.roles

    def __str__(self) -> str:
        if self.is_all:
            return ALL
        return ",".join(role.short_name for role in sorted(self.roles, key=lambda r: r.rank))


def parse_deploy_target(value: Union[str, Iterable, DeployTarget, None]) -> DeployTarget:
    """Parse ``all``, a role name, a comma separated list or an iterable of roles."""
    if isinstance(value, DeployTarget):
        return value
    if value is None:
        return DeployTarget()
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",") if part.strip()]
    else:
        parts = list(value)

    roles = set()
    for part in parts:
        if isinstance(part, str) and part.lower() == ALL:
            return DeployTarget()
        try:
            roles.add(Role.parse(part))
        except ValueError as e:
            raise InvalidDeployTarget(value, str(e)) from None
    if len(roles) == len(Role):
        return DeployTarget()
    return DeployTarget(frozenset(roles))


@dataclass
class DeploymentPlan:
    environment: str
    target: DeployTarget
    descriptors: List[StackDescriptor]
    edges: List[DependencyEdge] = field(default_factory=list)
    external_edges: List[DependencyEdge] = field(default_factory=list)

    @property
    def roles(self) -> List[Role]:
        return [descriptor.role for descriptor in self.descriptors]

    def dependencies_of(self, role) -> List[Role]:
        role = Role.parse(role)
        found = []
        for edge in self.edges:
            if edge.dependent == role and edge.dependency not in found:
                found.append(edge.dependency)
        return sorted(found, key=lambda r: r.rank)

    def external_imports(self) -> Dict[Role, FrozenSet[str]]:
        return {d.role: d.external_imports for d in self.descriptors if d.external_imports}


def filter_graph(graph: DependencyGraph, requested) -> DeploymentPlan:
    """Select the descriptors to materialize for ``requested`` roles.

    Returned descriptors are copies in dependency order; the graph's own
    descriptors are left untouched.
    """
    target = parse_deploy_target(requested)
    for role in target.roles:
        if role not in graph.descriptors:
            raise ValueError(f"Role '{role}' has no descriptor in environment '{graph.environment}'")

    selected = [role for role in graph.order if target.includes(role)]
    edges, external_edges = [], []
    for edge in graph.edges:
        if edge.dependent not in selected:
            continue
        if edge.dependency in selected:
            edges.append(edge)
        else:
            external_edges.append(edge)

    descriptors = []
    for role in selected:
        original = graph.descriptors[role]
        external = {edge.export_name for edge in external_edges if edge.dependent == role}
        external |= graph.persisted_imports.get(role, set())
        descriptors.append(replace(original, external_imports=frozenset(external), export_values={}))

    return DeploymentPlan(
        environment=graph.environment,
        target=target,
        descriptors=descriptors,
        edges=edges,
        external_edges=external_edges,
    )
