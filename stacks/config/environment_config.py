"""Environment registry module.

Static per-environment settings for the ECS Jenkins platform:
- dev: primary environment, spot capacity, small instances (us-east-1)
- prod: on-demand capacity, multi-AZ database, Security Hub (us-east-1)
- dr: pilot-light copy of prod in the west coast region (us-west-2)
"""
import ipaddress
from dataclasses import dataclass, field, fields
from typing import Dict, Iterable, List, Optional, Tuple

from stacks.composition.errors import MissingConfigField, UnknownEnvironment

PRIMARY_ENVIRONMENT = "dev"


@dataclass(frozen=True)
class EnvironmentConfig:
    """Settings for one named environment. Never mutated after registration."""

    name: str
    project_name: str
    aws_region: str

    vpc_cidr: str
    public_subnet_cidrs: Tuple[str, ...]
    private_subnet_cidrs: Tuple[str, ...]
    database_subnet_cidrs: Tuple[str, ...]
    availability_zones: Tuple[str, ...]

    min_instance_count: int
    max_instance_count: int
    desired_instance_count: int
    use_spot_instances: bool

    container_port: int
    jenkins_role_name: str
    domain_name: str

    db_instance_class: str
    db_multi_az: bool
    db_backup_retention_days: int
    db_allocated_storage: int
    db_max_allocated_storage: int

    enable_detailed_monitoring: bool
    logs_retention_days: int

    blocked_ip_addresses: Tuple[str, ...] = ()
    max_request_size: int = 131072
    request_limit: int = 1000
    enable_security_hub: bool = False

    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def stack_suffix(self) -> str:
        return self.name.capitalize()


DEV_CONFIG = EnvironmentConfig(
    name="dev",
    project_name="ecs-jenkins",
    aws_region="us-east-1",
    vpc_cidr="10.0.0.0/16",
    public_subnet_cidrs=("10.0.1.0/24", "10.0.2.0/24"),
    private_subnet_cidrs=("10.0.3.0/24", "10.0.4.0/24"),
    database_subnet_cidrs=("10.0.5.0/24", "10.0.6.0/24"),
    availability_zones=("us-east-1a", "us-east-1b"),
    min_instance_count=1,
    max_instance_count=3,
    desired_instance_count=1,
    use_spot_instances=True,
    container_port=8080,
    jenkins_role_name="jenkins-role-dev",
    domain_name="dev.example.com",
    db_instance_class="db.t3.small",
    db_multi_az=False,
    db_backup_retention_days=7,
    db_allocated_storage=20,
    db_max_allocated_storage=100,
    enable_detailed_monitoring=False,
    logs_retention_days=30,
    request_limit=1000,
    enable_security_hub=False,
    tags={
        "Environment": "dev",
        "Project": "ecs-jenkins",
        "ManagedBy": "CDK",
    },
)

PROD_CONFIG = EnvironmentConfig(
    name="prod",
    project_name="ecs-jenkins",
    aws_region="us-east-1",
    vpc_cidr="10.1.0.0/16",
    public_subnet_cidrs=("10.1.1.0/24", "10.1.2.0/24"),
    private_subnet_cidrs=("10.1.3.0/24", "10.1.4.0/24"),
    database_subnet_cidrs=("10.1.5.0/24", "10.1.6.0/24"),
    availability_zones=("us-east-1a", "us-east-1b"),
    min_instance_count=2,
    max_instance_count=10,
    desired_instance_count=4,
    use_spot_instances=False,
    container_port=8080,
    jenkins_role_name="jenkins-role-prod",
    domain_name="example.com",
    db_instance_class="db.m5.large",
    db_multi_az=True,
    db_backup_retention_days=30,
    db_allocated_storage=50,
    db_max_allocated_storage=500,
    enable_detailed_monitoring=True,
    logs_retention_days=90,
    request_limit=5000,
    enable_security_hub=True,
    tags={
        "Environment": "prod",
        "Project": "ecs-jenkins",
        "ManagedBy": "CDK",
    },
)

# Pilot light: minimal running capacity, scales up to prod size on failover
DR_CONFIG = EnvironmentConfig(
    name="dr",
    project_name="ecs-jenkins",
    aws_region="us-west-2",
    vpc_cidr="10.2.0.0/16",
    public_subnet_cidrs=("10.2.1.0/24", "10.2.2.0/24"),
    private_subnet_cidrs=("10.2.3.0/24", "10.2.4.0/24"),
    database_subnet_cidrs=("10.2.5.0/24", "10.2.6.0/24"),
    availability_zones=("us-west-2a", "us-west-2b"),
    min_instance_count=1,
    max_instance_count=10,
    desired_instance_count=1,
    use_spot_instances=False,
    container_port=8080,
    jenkins_role_name="jenkins-role-dr",
    domain_name="dr-ecs-jenkins.example.com",
    db_instance_class="db.t3.small",
    db_multi_az=False,
    db_backup_retention_days=30,
    db_allocated_storage=50,
    db_max_allocated_storage=500,
    enable_detailed_monitoring=True,
    logs_retention_days=90,
    request_limit=5000,
    enable_security_hub=True,
    tags={
        "Environment": "dr",
        "Project": "ecs-jenkins",
        "ManagedBy": "CDK",
        "DisasterRecovery": "PilotLight",
    },
)

_CIDR_LIST_FIELDS = ("public_subnet_cidrs", "private_subnet_cidrs", "database_subnet_cidrs")


def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (str, tuple, list, dict)):
        return len(value) == 0
    return False


class EnvironmentRegistry:
    """Lookup of the statically registered environments."""

    def __init__(self, configs: Iterable[EnvironmentConfig] = (DEV_CONFIG, PROD_CONFIG, DR_CONFIG),
            primary: str = PRIMARY_ENVIRONMENT) -> None:
        self._configs: Dict[str, EnvironmentConfig] = {}
        for config in configs:
            if config.name in self._configs:
                raise ValueError(f"Environment '{config.name}' registered twice")
            self._configs[config.name] = config
        if primary not in self._configs:
            raise ValueError(f"Primary environment '{primary}' is not registered")
        self.primary = primary

    def names(self) -> List[str]:
        return list(self._configs)

    def resolve(self, name: str) -> EnvironmentConfig:
        try:
            return self._configs[name]
        except KeyError:
            raise UnknownEnvironment(name, self.names()) from None

    def validate(self, config: EnvironmentConfig, required: Optional[Iterable[str]] = None) -> List[str]:
        """Return one error string per problem found in ``config``.

        Args:
            config: The environment configuration to check.
            required: Field names that must be present and non-empty. Defaults
                to every field without a default value.

        Returns:
            Missing-field and malformed-value errors, empty when usable.
        """
        if required is None:
            required = [f.name for f in fields(config) if f.name not in _OPTIONAL_FIELDS]
        required = list(required)

        errors = []
        for name in required:
            if not hasattr(config, name):
                errors.append(f"{name}: unknown field")
            elif _is_empty(getattr(config, name)):
                errors.append(f"{name}: missing or empty")

        if "vpc_cidr" in required and not _is_empty(config.vpc_cidr):
            errors.extend(self._validate_network(config, [n for n in _CIDR_LIST_FIELDS if n in required]))

        counts = ("min_instance_count", "desired_instance_count", "max_instance_count")
        if all(name in required for name in counts):
            if not config.min_instance_count <= config.desired_instance_count <= config.max_instance_count:
                errors.append(
                    "desired_instance_count: must lie between min_instance_count "
                    f"({config.min_instance_count}) and max_instance_count ({config.max_instance_count})"
                )
        return errors

    def require_valid(self, config: EnvironmentConfig, required: Optional[Iterable[str]] = None) -> EnvironmentConfig:
        errors = self.validate(config, required)
        if errors:
            raise MissingConfigField(config.name, errors)
        return config

    @staticmethod
    def _validate_network(config: EnvironmentConfig, subnet_fields: List[str]) -> List[str]:
        try:
            vpc_network = ipaddress.ip_network(config.vpc_cidr)
        except ValueError:
            return [f"vpc_cidr: invalid CIDR block {config.vpc_cidr!r}"]

        errors = []
        for name in subnet_fields:
            for cidr in getattr(config, name):
                try:
                    subnet = ipaddress.ip_network(cidr)
                except ValueError:
                    errors.append(f"{name}: invalid CIDR block {cidr!r}")
                    continue
                if not subnet.subnet_of(vpc_network):
                    errors.append(f"{name}: {cidr} is outside {config.vpc_cidr}")
        return errors


_OPTIONAL_FIELDS = frozenset({
    "blocked_ip_addresses",
    "max_request_size",
    "request_limit",
    "enable_security_hub",
})

DEFAULT_REGISTRY = EnvironmentRegistry()
