"""Composition driver.

Runs one environment through ``IDLE -> CONFIG_RESOLVED -> SECRETS_RESOLVED ->
GRAPH_BUILT -> TARGET_FILTERED -> MATERIALIZING -> DONE``. Every check that
can fail without touching a stack (config fields, secrets, persisted exports
of the roles left out) runs before the first materialization. A failure moves
the driver to ``FAILED`` and is re-raised; stacks already materialized are
left as they are.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from stacks.composition.blueprints import DEFAULT_BLUEPRINTS, required_config_fields
from stacks.composition.descriptor import Role, StackBlueprint, StackDefinition, declare, materialize
from stacks.composition.emitters import DryRunEmitter
from stacks.composition.graph import DependencyGraph, build
from stacks.composition.references import CrossStackReferences, ExportStore
from stacks.composition.targets import DeploymentPlan, filter_graph, parse_deploy_target
from stacks.config.environment_config import DEFAULT_REGISTRY, EnvironmentRegistry
from stacks.config.secrets import SecretResolver

logger = logging.getLogger(__name__)

DEFAULT_APPLICATION_VERSION = "latest"


class DriverState(str, Enum):
    IDLE = "idle"
    CONFIG_RESOLVED = "config_resolved"
    SECRETS_RESOLVED = "secrets_resolved"
    GRAPH_BUILT = "graph_built"
    TARGET_FILTERED = "target_filtered"
    MATERIALIZING = "materializing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class CompositionResult:
    environment: str
    deploy_target: str
    order: List[Role]
    definitions: List[StackDefinition]
    exports: Dict[Role, Dict[str, str]] = field(default_factory=dict)

    @property
    def stack_names(self) -> List[str]:
        return [definition.stack_name for definition in self.definitions]


class _RecordingEmitter:
    # Keeps the definitions of this run whatever emitter is plugged in
    def __init__(self, emitter) -> None:
        self.emitter = emitter
        self.definitions: List[StackDefinition] = []

    def emit(self, definition: StackDefinition):
        exports = self.emitter.emit(definition)
        self.definitions.append(definition)
        return exports


class CompositionDriver:
    """Composes the role stacks of one environment per run.

    Args:
        references: Export namespace shared by the stacks of the run.
        emitter: Receives each materialized definition; a ``DryRunEmitter``
            when omitted.
        registry: Environment registry, the static dev/prod/dr set by default.
        secret_resolver: Secret source, the process environment by default.
        blueprints: Role blueprints to declare, all three roles by default.
    """

    def __init__(self, references: CrossStackReferences, emitter=None,
            registry: Optional[EnvironmentRegistry] = None,
            secret_resolver: Optional[SecretResolver] = None,
            blueprints: Sequence[StackBlueprint] = DEFAULT_BLUEPRINTS) -> None:
        self.references = references
        self.emitter = emitter if emitter is not None else DryRunEmitter()
        self.registry = registry or DEFAULT_REGISTRY
        self.secret_resolver = secret_resolver or SecretResolver()
        self.blueprints = tuple(blueprints)

        self.state = DriverState.IDLE
        self.history: List[DriverState] = [DriverState.IDLE]
        self.error: Optional[Exception] = None
        self.graph: Optional[DependencyGraph] = None
        self.plan: Optional[DeploymentPlan] = None

    def _transition(self, state: DriverState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("Composition state: %s", state.value)

    def run(self, environment: Optional[str] = None, deploy_target="all",
            cluster_version: Optional[str] = None,
            application_version: Optional[str] = DEFAULT_APPLICATION_VERSION) -> CompositionResult:
        """Compose ``environment`` for ``deploy_target`` and return what was materialized."""
        if self.state != DriverState.IDLE:
            raise RuntimeError(f"Driver already ran (state: {self.state.value}); create a new driver per run")
        try:
            return self._run(environment, deploy_target, cluster_version, application_version)
        except Exception as e:
            self.error = e
            self._transition(DriverState.FAILED)
            logger.error("Composition failed in state %s: %s", self.history[-2].value, e)
            raise

    def _run(self, environment, deploy_target, cluster_version, application_version) -> CompositionResult:
        environment = environment or self.registry.primary
        target = parse_deploy_target(deploy_target)

        config = self.registry.resolve(environment)
        selected = [bp for bp in self.blueprints if target.includes(bp.role)]
        self.registry.require_valid(config, required_config_fields(selected))
        self._transition(DriverState.CONFIG_RESOLVED)

        secrets = self.secret_resolver.resolve_secrets(environment)
        self._transition(DriverState.SECRETS_RESOLVED)

        versions = {
            Role.CLUSTER: cluster_version,
            Role.APPLICATION: application_version or DEFAULT_APPLICATION_VERSION,
        }
        descriptors = [
            declare(bp.role, config, secrets, version=versions.get(bp.role), blueprint=bp)
            for bp in self.blueprints
        ]
        self.graph = build(descriptors, export_exists=lambda name: self.references.is_persisted(environment, name))
        self._transition(DriverState.GRAPH_BUILT)

        self.plan = filter_graph(self.graph, target)
        self._transition(DriverState.TARGET_FILTERED)
        self._preflight(self.plan)

        self._transition(DriverState.MATERIALIZING)
        emitter = _RecordingEmitter(self.emitter)
        exports: Dict[Role, Dict[str, str]] = {}
        for descriptor in self.plan.descriptors:
            values = materialize(descriptor, self.references, emitter,
                depends_on=self.plan.dependencies_of(descriptor.role))
            for name, value in values.items():
                self.references.publish(descriptor.role, environment, name, value)
            exports[descriptor.role] = values
            self.history.append(DriverState.MATERIALIZING)

        self._transition(DriverState.DONE)
        logger.info("Composed %s for %s: %s", target, environment, ", ".join(str(r) for r in self.plan.roles))
        return CompositionResult(
            environment=environment,
            deploy_target=str(target),
            order=self.plan.roles,
            definitions=emitter.definitions,
            exports=exports,
        )

    def _preflight(self, plan: DeploymentPlan) -> None:
        # Missing upstream stacks are reported before missing secrets
        for descriptor in plan.descriptors:
            for name in descriptor.import_names:
                if name in descriptor.external_imports:
                    self.references.resolve(descriptor.role, plan.environment, name, external=True)
        for descriptor in plan.descriptors:
            descriptor.required_secrets()


def compose_environments(environments: Iterable[str], store: ExportStore,
        emitter_factory: Callable[[str], object] = lambda environment: DryRunEmitter(),
        deploy_target="all", max_workers: Optional[int] = None,
        **driver_kwargs) -> Dict[str, CompositionResult]:
    """Compose independent environments in parallel, one driver each.

    Environments share only ``store``, whose keys are partitioned by
    environment. Emitters are created up front in the calling thread. The
    first failure is re-raised once every run has finished.
    """
    environments = list(environments)
    emitters = {environment: emitter_factory(environment) for environment in environments}
    registry = driver_kwargs.pop("registry", None) or DEFAULT_REGISTRY
    persist_published = driver_kwargs.pop("persist_published", False)

    def compose(environment: str) -> CompositionResult:
        config = registry.resolve(environment)
        references = CrossStackReferences(config.project_name, store, persist_published=persist_published)
        driver = CompositionDriver(references, emitters[environment], registry=registry, **driver_kwargs)
        return driver.run(environment, deploy_target)

    results: Dict[str, CompositionResult] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {environment: executor.submit(compose, environment) for environment in environments}
    for environment, future in futures.items():
        results[environment] = future.result()
    return results
