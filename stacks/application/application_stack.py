"""Application stack module.

Runs the Jenkins controller and its monitoring on the ECS cluster:
- Jenkins Fargate service behind an internet-facing application load balancer
- CPU based auto scaling between the environment's min/max instance counts
- Grafana Fargate service with its admin password kept in Secrets Manager
- Public hosted zone with an alias record pointing at the load balancer

Every network, IAM and cluster resource is imported through the exports of
the infrastructure and cluster stacks.
"""
from constructs import Construct
from aws_cdk import (
    SecretValue,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_route53 as route53,
    aws_route53_targets as route53_targets,
    aws_secretsmanager as secretsmanager,
)

from stacks.cluster.cluster_stacks import retention_for
from stacks.common.exports import RoleStack
from stacks.config.secrets import GRAFANA_ADMIN_PASSWORD

JENKINS_IMAGE = "jenkins/jenkins"
GRAFANA_IMAGE = "grafana/grafana"
GRAFANA_PORT = 3000


class ApplicationStack(RoleStack):
    """CDK Stack for the Jenkins application layer."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.import_resources()
        self.deploy_jenkins()
        self.deploy_grafana()
        self.add_dns_record()

        self.publish("lb-dns", "LoadBalancerDns", self.load_balancer.load_balancer_dns_name)
        self.publish("jenkins-url", "JenkinsUrl", f"http://{self.load_balancer.load_balancer_dns_name}")

    @property
    def image_tag(self) -> str:
        return self.definition.version or "latest"

    def import_resources(self):
        """Rebuild construct handles from the imported export values."""
        config = self.config
        self.vpc = ec2.Vpc.from_vpc_attributes(self, "ImportedVpc",
            vpc_id=self.import_value("vpc-id"),
            availability_zones=list(config.availability_zones),
            public_subnet_ids=self.import_list("public-subnets"),
            private_subnet_ids=self.import_list("private-subnets"),
        )

        self.alb_security_group = ec2.SecurityGroup.from_security_group_id(
            self, "ImportedAlbSecurityGroup", self.import_value("alb-sg-id"), mutable=False)
        self.ecs_security_group = ec2.SecurityGroup.from_security_group_id(
            self, "ImportedEcsSecurityGroup", self.import_value("ecs-sg-id"), mutable=False)
        self.jenkins_security_group = ec2.SecurityGroup.from_security_group_id(
            self, "ImportedJenkinsSecurityGroup", self.import_value("jenkins-sg-id"), mutable=False)

        self.execution_role = iam.Role.from_role_arn(
            self, "ImportedEcsTaskExecutionRole", self.import_value("ecs-execution-role-arn"), mutable=False)
        self.task_role = iam.Role.from_role_arn(
            self, "ImportedEcsTaskRole", self.import_value("ecs-task-role-arn"), mutable=False)

        self.cluster = ecs.Cluster.from_cluster_attributes(self, "ImportedCluster",
            cluster_name=self.import_value("cluster-name"),
            vpc=self.vpc,
        )

    def deploy_jenkins(self):
        """Create the Jenkins task, service, load balancer and scaling policy."""
        config = self.config

        task_definition = ecs.FargateTaskDefinition(self, "JenkinsTask",
            cpu=1024,
            memory_limit_mib=2048,
            execution_role=self.execution_role,
            task_role=self.task_role,
        )
        task_definition.add_container("jenkins",
            image=ecs.ContainerImage.from_registry(f"{JENKINS_IMAGE}:{self.image_tag}"),
            port_mappings=[ecs.PortMapping(container_port=config.container_port)],
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix="jenkins",
                log_retention=retention_for(config.logs_retention_days),
            ),
            environment={
                "DB_HOST": self.import_value("db-endpoint"),
                "ENVIRONMENT": config.name,
            },
        )

        self.service = ecs.FargateService(self, "JenkinsService",
            cluster=self.cluster,
            task_definition=task_definition,
            desired_count=config.desired_instance_count,
            security_groups=[self.ecs_security_group, self.jenkins_security_group],
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
        )

        self.load_balancer = elbv2.ApplicationLoadBalancer(self, "LoadBalancer",
            vpc=self.vpc,
            internet_facing=True,
            security_group=self.alb_security_group,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
        )
        listener = self.load_balancer.add_listener("HttpListener", port=80, open=False)
        listener.add_targets("JenkinsTargets",
            port=config.container_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            targets=[self.service],
            health_check=elbv2.HealthCheck(path="/login"),
        )

        scaling = self.service.auto_scale_task_count(
            min_capacity=config.min_instance_count,
            max_capacity=config.max_instance_count,
        )
        scaling.scale_on_cpu_utilization("CpuScaling", target_utilization_percent=70)

    def deploy_grafana(self):
        """Run Grafana with its admin password injected from Secrets Manager."""
        admin_secret = secretsmanager.Secret(self, "GrafanaAdminSecret",
            description=f"Grafana admin password for {self.config.name}",
            secret_string_value=SecretValue.unsafe_plain_text(self.definition.secrets[GRAFANA_ADMIN_PASSWORD]),
        )

        task_definition = ecs.FargateTaskDefinition(self, "GrafanaTask",
            cpu=512,
            memory_limit_mib=1024,
            execution_role=self.execution_role,
            task_role=self.task_role,
        )
        task_definition.add_container("grafana",
            image=ecs.ContainerImage.from_registry(GRAFANA_IMAGE),
            port_mappings=[ecs.PortMapping(container_port=GRAFANA_PORT)],
            logging=ecs.LogDrivers.aws_logs(stream_prefix="grafana"),
            secrets={
                "GF_SECURITY_ADMIN_PASSWORD": ecs.Secret.from_secrets_manager(admin_secret),
            },
        )

        self.grafana_service = ecs.FargateService(self, "GrafanaService",
            cluster=self.cluster,
            task_definition=task_definition,
            desired_count=1,
            security_groups=[self.ecs_security_group],
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
        )

    def add_dns_record(self):
        """Point the environment's domain at the load balancer."""
        config = self.config
        zone = route53.PublicHostedZone(self, "HostedZone", zone_name=config.domain_name)
        record_name = config.domain_name if config.name == "prod" else f"{config.name}.{config.domain_name}"
        route53.ARecord(self, "DomainRecord",
            zone=zone,
            record_name=record_name,
            target=route53.RecordTarget.from_alias(route53_targets.LoadBalancerTarget(self.load_balancer)),
        )
