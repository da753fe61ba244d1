"""Role blueprints of the ECS Jenkins platform.

Export names are the logical part of the cross-stack key; the published
key is ``{project}-{environment}-{name}``, e.g. ``ecs-jenkins-prod-vpc-id``.
"""
from typing import Dict, Iterable

from stacks.composition.descriptor import ExportSpec, ImportSpec, NagSuppression, Role, StackBlueprint, ValueKind
from stacks.config.secrets import DB_PASSWORD, DB_USERNAME, GRAFANA_ADMIN_PASSWORD

_BASE_FIELDS = ("project_name", "aws_region", "availability_zones", "tags")

INFRASTRUCTURE = StackBlueprint(
    role=Role.INFRASTRUCTURE,
    exports=(
        ExportSpec("vpc-id", "The ID of the VPC"),
        ExportSpec("public-subnets", "Public Subnet IDs", ValueKind.LIST),
        ExportSpec("private-subnets", "Private Subnet IDs", ValueKind.LIST),
        ExportSpec("alb-sg-id", "ALB Security Group ID"),
        ExportSpec("ecs-sg-id", "ECS Security Group ID"),
        ExportSpec("jenkins-sg-id", "Jenkins Security Group ID"),
        ExportSpec("ecs-execution-role-arn", "ECS Task Execution Role ARN"),
        ExportSpec("ecs-task-role-arn", "ECS Task Role ARN"),
        ExportSpec("db-endpoint", "Endpoint of the database"),
    ),
    secrets=(DB_USERNAME, DB_PASSWORD),
    config_fields=_BASE_FIELDS + (
        "vpc_cidr",
        "public_subnet_cidrs",
        "private_subnet_cidrs",
        "database_subnet_cidrs",
        "jenkins_role_name",
        "container_port",
        "db_instance_class",
        "db_multi_az",
        "db_backup_retention_days",
        "db_allocated_storage",
        "db_max_allocated_storage",
    ),
    nag_suppressions=(
        NagSuppression("AwsSolutions-IAM4", "Using managed policies for infrastructure"),
        NagSuppression("AwsSolutions-IAM5", "Using wildcards in infrastructure IAM policies"),
        NagSuppression("AwsSolutions-RDS3", "Using password authentication for database"),
    ),
)

CLUSTER = StackBlueprint(
    role=Role.CLUSTER,
    imports=(ImportSpec("vpc-id"),),
    exports=(
        ExportSpec("cluster-arn", "ECS Cluster ARN"),
        ExportSpec("cluster-name", "ECS Cluster name"),
        ExportSpec("log-group", "Cluster log group name"),
        ExportSpec("task-execution-role-arn", "Cluster task execution role ARN"),
    ),
    config_fields=_BASE_FIELDS + ("logs_retention_days", "use_spot_instances", "enable_detailed_monitoring"),
    nag_suppressions=(
        NagSuppression("AwsSolutions-IAM4", "Using managed policies for ECS cluster"),
        NagSuppression("AwsSolutions-IAM5", "Using wildcards in ECS IAM policies"),
    ),
)

APPLICATION = StackBlueprint(
    role=Role.APPLICATION,
    imports=(
        ImportSpec("vpc-id"),
        ImportSpec("public-subnets", ValueKind.LIST),
        ImportSpec("private-subnets", ValueKind.LIST),
        ImportSpec("alb-sg-id"),
        ImportSpec("ecs-sg-id"),
        ImportSpec("jenkins-sg-id"),
        ImportSpec("ecs-execution-role-arn"),
        ImportSpec("ecs-task-role-arn"),
        ImportSpec("db-endpoint"),
        ImportSpec("cluster-name"),
    ),
    exports=(
        ExportSpec("lb-dns", "The DNS name of the load balancer"),
        ExportSpec("jenkins-url", "URL for Jenkins"),
    ),
    secrets=(GRAFANA_ADMIN_PASSWORD,),
    config_fields=_BASE_FIELDS + (
        "container_port",
        "domain_name",
        "min_instance_count",
        "max_instance_count",
        "desired_instance_count",
        "logs_retention_days",
    ),
    nag_suppressions=(
        NagSuppression("AwsSolutions-IAM4", "Using managed policies for application services"),
        NagSuppression("AwsSolutions-IAM5", "Using wildcards in application IAM policies"),
        NagSuppression("AwsSolutions-EC23", "Load balancer accepts public HTTP traffic"),
    ),
)

DEFAULT_BLUEPRINTS = (INFRASTRUCTURE, CLUSTER, APPLICATION)

_BY_ROLE: Dict[Role, StackBlueprint] = {blueprint.role: blueprint for blueprint in DEFAULT_BLUEPRINTS}


def blueprint_for(role) -> StackBlueprint:
    return _BY_ROLE[Role.parse(role)]


def required_config_fields(blueprints: Iterable[StackBlueprint]):
    """Union of the config fields of ``blueprints``, in first-seen order."""
    seen = []
    for blueprint in blueprints:
        for name in blueprint.config_fields:
            if name not in seen:
                seen.append(name)
    return seen
