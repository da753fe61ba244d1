"""Stack descriptors: what a role stack needs and what it publishes.

A descriptor is declared before any value exists. Its imports are only
resolved when it is materialized, which is also the point where its
resource declarations are handed to the emitter.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence, Tuple

from stacks.composition.errors import ExportMismatch, ExportNotFound, UnresolvedImport
from stacks.config.environment_config import EnvironmentConfig
from stacks.config.secrets import SecretBundle

logger = logging.getLogger(__name__)

STACK_NAME_PREFIX = "EcsJenkins"


class Role(str, Enum):
    INFRASTRUCTURE = "infrastructure"
    CLUSTER = "cluster"
    APPLICATION = "application"

    @property
    def rank(self) -> int:
        return _ROLE_ORDER.index(self)

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]

    @property
    def stack_title(self) -> str:
        return _STACK_TITLES[self]

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for role in cls:
            if text in (role.value, role.short_name):
                return role
        raise ValueError(f"Unknown role '{value}'. Expected one of: infra, cluster, app")

    def __str__(self) -> str:
        return self.value


_ROLE_ORDER = (Role.INFRASTRUCTURE, Role.CLUSTER, Role.APPLICATION)
_SHORT_NAMES = {Role.INFRASTRUCTURE: "infra", Role.CLUSTER: "cluster", Role.APPLICATION: "app"}
_STACK_TITLES = {Role.INFRASTRUCTURE: "Infra", Role.CLUSTER: "Cluster", Role.APPLICATION: "App"}
_DESCRIPTIONS = {Role.INFRASTRUCTURE: "Infrastructure", Role.CLUSTER: "Cluster", Role.APPLICATION: "Application"}


class ValueKind(str, Enum):
    STRING = "string"
    # Comma-joined on the wire
    LIST = "list"


@dataclass(frozen=True)
class ImportSpec:
    name: str
    kind: ValueKind = ValueKind.STRING


@dataclass(frozen=True)
class ExportSpec:
    name: str
    description: str = ""
    kind: ValueKind = ValueKind.STRING


@dataclass(frozen=True)
class NagSuppression:
    """A cdk-nag rule suppressed for a whole role stack."""

    id: str
    reason: str


@dataclass(frozen=True)
class StackBlueprint:
    """Static declaration of one role: its imports, exports and inputs."""

    role: Role
    imports: Tuple[ImportSpec, ...] = ()
    exports: Tuple[ExportSpec, ...] = ()
    secrets: Tuple[str, ...] = ()
    config_fields: Tuple[str, ...] = ()
    nag_suppressions: Tuple[NagSuppression, ...] = ()


@dataclass(frozen=True)
class StackDefinition:
    """A materialized descriptor, ready for the cloud orchestrator."""

    role: Role
    environment: str
    stack_name: str
    description: str
    config: EnvironmentConfig
    imports: Mapping[str, str]
    import_kinds: Mapping[str, ValueKind]
    external_imports: frozenset
    exports: Tuple[ExportSpec, ...]
    export_keys: Mapping[str, str]
    depends_on: Tuple[Role, ...]
    version: Optional[str]
    tags: Mapping[str, str]
    nag_suppressions: Tuple[NagSuppression, ...] = ()
    secrets: Mapping[str, str] = field(default_factory=dict, repr=False)


@dataclass
class StackDescriptor:
    blueprint: StackBlueprint
    config: EnvironmentConfig
    secrets: SecretBundle
    imports: Tuple[ImportSpec, ...]
    version: Optional[str] = None
    external_imports: frozenset = frozenset()
    export_values: Dict[str, str] = field(default_factory=dict)
    materialized: bool = False

    @property
    def role(self) -> Role:
        return self.blueprint.role

    @property
    def environment(self) -> str:
        return self.config.name

    @property
    def key(self) -> Tuple[Role, str]:
        return self.role, self.environment

    @property
    def import_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.imports)

    @property
    def export_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.blueprint.exports)

    @property
    def stack_name(self) -> str:
        return f"{STACK_NAME_PREFIX}{self.role.stack_title}{self.config.stack_suffix}Stack"

    @property
    def description(self) -> str:
        return f"ECS Jenkins {_DESCRIPTIONS[self.role]} - {self.config.stack_suffix} Environment"

    def required_secrets(self) -> Dict[str, str]:
        """Resolve every secret this role needs, raising ``MissingSecret`` on the first gap."""
        return self.secrets.require_all(self.blueprint.secrets, role=self.role)


def declare(role, environment_config: EnvironmentConfig, secret_bundle: SecretBundle,
        imports: Optional[Sequence[ImportSpec]] = None, version: Optional[str] = None,
        blueprint: Optional[StackBlueprint] = None) -> StackDescriptor:
    """Declare the descriptor of ``role`` for one environment.

    Args:
        role: Role or role name (``infra``/``cluster``/``app`` accepted).
        environment_config: Resolved environment settings.
        secret_bundle: Secrets of the same environment, resolved lazily.
        imports: Overrides the blueprint's imports when given.
        version: Opaque version tag attached to the emitted stack.
        blueprint: Overrides the registered blueprint of the role.
    """
    from stacks.composition.blueprints import blueprint_for

    role = Role.parse(role)
    if blueprint is None:
        blueprint = blueprint_for(role)
    if secret_bundle.environment != environment_config.name:
        raise ValueError(
            f"Secrets of '{secret_bundle.environment}' cannot be used for environment '{environment_config.name}'"
        )
    if imports is None:
        imports = blueprint.imports
    return StackDescriptor(
        blueprint=blueprint,
        config=environment_config,
        secrets=secret_bundle,
        imports=tuple(imports),
        version=version,
    )


def materialize(descriptor: StackDescriptor, references, emitter,
        depends_on: Sequence[Role] = ()) -> Dict[str, str]:
    """Resolve the inputs of ``descriptor``, emit its stack and return its exports.

    Args:
        descriptor: The descriptor to materialize.
        references: Cross-stack references of the current run.
        emitter: Receives the ``StackDefinition`` and returns the export values.
        depends_on: Roles materialized earlier in this run that this one depends on.

    Returns:
        Export name to value, exactly the names the blueprint declares.

    Raises:
        MissingSecret: A required secret is absent.
        UnresolvedImport: An in-run import has no published value.
        ExportNotFound: An externally sourced import is not persisted.
        ExportMismatch: The emitter returned other exports than declared.
    """
    role, environment = descriptor.role, descriptor.environment
    secrets = descriptor.required_secrets()

    values = {}
    for spec in descriptor.imports:
        if spec.name in descriptor.external_imports:
            values[spec.name] = references.resolve(role, environment, spec.name, external=True)
            continue
        try:
            values[spec.name] = references.resolve(role, environment, spec.name, external=False)
        except ExportNotFound:
            raise UnresolvedImport(role, environment, spec.name) from None

    definition = StackDefinition(
        role=role,
        environment=environment,
        stack_name=descriptor.stack_name,
        description=descriptor.description,
        config=descriptor.config,
        imports=values,
        import_kinds={spec.name: spec.kind for spec in descriptor.imports},
        external_imports=descriptor.external_imports,
        exports=descriptor.blueprint.exports,
        export_keys={name: references.key_for(environment, name) for name in descriptor.export_names},
        depends_on=tuple(depends_on),
        version=descriptor.version,
        tags={**descriptor.config.tags, "Component": _DESCRIPTIONS[role]},
        nag_suppressions=descriptor.blueprint.nag_suppressions,
        secrets=secrets,
    )
    logger.info("Materializing %s (%s)", definition.stack_name, role)
    exports = dict(emitter.emit(definition))

    declared = set(descriptor.export_names)
    if set(exports) != declared:
        raise ExportMismatch(role, environment, declared - set(exports), set(exports) - declared)

    descriptor.export_values = exports
    descriptor.materialized = True
    return dict(exports)
