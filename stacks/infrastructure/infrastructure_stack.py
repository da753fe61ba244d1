"""Infrastructure stack module.

Declares the environment-wide foundation consumed by the cluster and
application stacks:
- Multi-AZ VPC with public, private (egress) and isolated database subnets
- Security groups for the load balancer, ECS tasks, Jenkins and the database
- WAF web ACL (rate limit, request size, blocked IPs) and optional Security Hub
- ECS task execution / task roles and the Jenkins instance role
- PostgreSQL RDS instance using the environment's database credentials
"""
from constructs import Construct
from aws_cdk import (
    Duration,
    RemovalPolicy,
    SecretValue,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_rds as rds,
    aws_securityhub as securityhub,
    aws_wafv2 as wafv2,
    Tags
)

from stacks.common.exports import RoleStack
from stacks.config.secrets import DB_PASSWORD, DB_USERNAME

DB_PORT = 5432


class InfrastructureStack(RoleStack):
    """CDK Stack for network, security, IAM and database resources."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        config = self.config
        self.name_prefix = f"{config.project_name}-{config.name}"

        self.vpc = ec2.Vpc(self, "Vpc",
            ip_addresses=ec2.IpAddresses.cidr(config.vpc_cidr),
            max_azs=len(config.availability_zones),
            enable_dns_hostnames=True,
            enable_dns_support=True,
            vpc_name=f"{self.name_prefix}-vpc",
            nat_gateways=1,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name="public",
                    subnet_type=ec2.SubnetType.PUBLIC,
                    cidr_mask=24,
                    map_public_ip_on_launch=True
                ),
                ec2.SubnetConfiguration(
                    name="private",
                    subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS,
                    cidr_mask=24
                ),
                ec2.SubnetConfiguration(
                    name="database",
                    subnet_type=ec2.SubnetType.PRIVATE_ISOLATED,
                    cidr_mask=24
                ),
            ],
        )
        self.resource_tags()

        self.add_security_groups()
        self.add_web_acl()
        self.add_roles()
        self.add_database()

        self.publish("vpc-id", "VpcId", self.vpc.vpc_id)
        self.publish("public-subnets", "PublicSubnets",
            ",".join([subnet.subnet_id for subnet in self.vpc.public_subnets]))
        self.publish("private-subnets", "PrivateSubnets",
            ",".join([subnet.subnet_id for subnet in self.vpc.private_subnets]))
        self.publish("alb-sg-id", "AlbSecurityGroupId", self.alb_security_group.security_group_id)
        self.publish("ecs-sg-id", "EcsSecurityGroupId", self.ecs_security_group.security_group_id)
        self.publish("jenkins-sg-id", "JenkinsSecurityGroupId", self.jenkins_security_group.security_group_id)
        self.publish("ecs-execution-role-arn", "EcsTaskExecutionRoleArn", self.ecs_task_execution_role.role_arn)
        self.publish("ecs-task-role-arn", "EcsTaskRoleArn", self.ecs_task_role.role_arn)
        self.publish("db-endpoint", "DatabaseEndpoint", self.database.db_instance_endpoint_address)

    def resource_tags(self) -> None:
        """Tag subnets with meaningful names"""
        groups = (
            ("public", self.vpc.public_subnets),
            ("private", self.vpc.private_subnets),
            ("database", self.vpc.isolated_subnets),
        )
        for group, subnets in groups:
            for index, subnet in enumerate(subnets):
                az_letter = chr(ord('a') + index)
                Tags.of(subnet).add("Name", f"{self.name_prefix}-{group}-{az_letter}")

    def add_security_groups(self) -> None:
        """Create the security groups shared with the application stack"""
        vpc_peer = ec2.Peer.ipv4(self.vpc.vpc_cidr_block)
        container_port = self.config.container_port

        self.alb_security_group = ec2.SecurityGroup(self, "AlbSecurityGroup",
            vpc=self.vpc,
            description="Security group for application load balancer",
            allow_all_outbound=False,
        )
        self.alb_security_group.add_ingress_rule(ec2.Peer.any_ipv4(), ec2.Port.tcp(443), "HTTPS from internet")
        self.alb_security_group.add_ingress_rule(ec2.Peer.any_ipv4(), ec2.Port.tcp(80), "HTTP from internet")
        self.alb_security_group.add_egress_rule(vpc_peer, ec2.Port.tcp(container_port), "Traffic to ECS services")

        self.ecs_security_group = ec2.SecurityGroup(self, "EcsSecurityGroup",
            vpc=self.vpc,
            description="Security group for ECS Fargate tasks",
            allow_all_outbound=False,
        )
        self.ecs_security_group.add_ingress_rule(
            self.alb_security_group, ec2.Port.tcp(container_port), "Traffic from the load balancer")
        self.ecs_security_group.add_egress_rule(
            ec2.Peer.any_ipv4(), ec2.Port.tcp(443), "HTTPS to internet for external resources")

        self.jenkins_security_group = ec2.SecurityGroup(self, "JenkinsSecurityGroup",
            vpc=self.vpc,
            description="Security group for Jenkins server",
            allow_all_outbound=True,
        )
        self.jenkins_security_group.add_ingress_rule(
            self.alb_security_group, ec2.Port.tcp(container_port), "Jenkins web interface")
        self.jenkins_security_group.add_ingress_rule(vpc_peer, ec2.Port.tcp(50000), "Jenkins agents")

        self.db_security_group = ec2.SecurityGroup(self, "DbSecurityGroup",
            vpc=self.vpc,
            description="Security group for database instances",
            allow_all_outbound=False,
        )
        self.db_security_group.add_ingress_rule(self.ecs_security_group, ec2.Port.tcp(DB_PORT), "ECS tasks")
        self.db_security_group.add_ingress_rule(self.jenkins_security_group, ec2.Port.tcp(DB_PORT), "Jenkins")
        self.ecs_security_group.add_egress_rule(self.db_security_group, ec2.Port.tcp(DB_PORT), "Database access")

    def add_web_acl(self) -> None:
        """Create the regional WAF web ACL and, when enabled, Security Hub"""
        config = self.config
        rules = [
            wafv2.CfnWebACL.RuleProperty(
                name="rate-limit",
                priority=1,
                action=wafv2.CfnWebACL.RuleActionProperty(block={}),
                statement=wafv2.CfnWebACL.StatementProperty(
                    rate_based_statement=wafv2.CfnWebACL.RateBasedStatementProperty(
                        aggregate_key_type="IP",
                        limit=config.request_limit,
                    )
                ),
                visibility_config=self._visibility("RateLimit"),
            ),
            wafv2.CfnWebACL.RuleProperty(
                name="max-request-size",
                priority=2,
                action=wafv2.CfnWebACL.RuleActionProperty(block={}),
                statement=wafv2.CfnWebACL.StatementProperty(
                    size_constraint_statement=wafv2.CfnWebACL.SizeConstraintStatementProperty(
                        comparison_operator="GT",
                        field_to_match=wafv2.CfnWebACL.FieldToMatchProperty(body={}),
                        size=config.max_request_size,
                        text_transformations=[
                            wafv2.CfnWebACL.TextTransformationProperty(priority=0, type="NONE")
                        ],
                    )
                ),
                visibility_config=self._visibility("MaxRequestSize"),
            ),
        ]

        if config.blocked_ip_addresses:
            ip_set = wafv2.CfnIPSet(self, "BlockedIps",
                addresses=list(config.blocked_ip_addresses),
                ip_address_version="IPV4",
                scope="REGIONAL",
                name=f"{self.name_prefix}-blocked-ips",
            )
            rules.insert(0, wafv2.CfnWebACL.RuleProperty(
                name="block-known-bad-ips",
                priority=0,
                action=wafv2.CfnWebACL.RuleActionProperty(block={}),
                statement=wafv2.CfnWebACL.StatementProperty(
                    ip_set_reference_statement=wafv2.CfnWebACL.IPSetReferenceStatementProperty(
                        arn=ip_set.attr_arn
                    )
                ),
                visibility_config=self._visibility("BlockKnownBadIPs"),
            ))

        self.web_acl = wafv2.CfnWebACL(self, "WebAcl",
            name=f"{self.name_prefix}-web-acl",
            scope="REGIONAL",
            default_action=wafv2.CfnWebACL.DefaultActionProperty(allow={}),
            visibility_config=self._visibility("WebAcl"),
            rules=rules,
        )

        if config.enable_security_hub:
            securityhub.CfnHub(self, "SecurityHub")

    def add_roles(self) -> None:
        """Create ECS task roles and the Jenkins instance role"""
        self.ecs_task_execution_role = iam.Role(self, "EcsTaskExecutionRole",
            role_name=f"{self.name_prefix}-ecs-task-execution-role",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AmazonECSTaskExecutionRolePolicy")
            ]
        )

        self.ecs_task_role = iam.Role(self, "EcsTaskRole",
            role_name=f"{self.name_prefix}-ecs-task-role",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
        )
        self.ecs_task_role.add_to_policy(iam.PolicyStatement(
            actions=["ssm:GetParameter", "ssm:GetParameters", "kms:Decrypt"],
            resources=["*"],
        ))

        self.jenkins_role = iam.Role(self, "JenkinsRole",
            role_name=self.config.jenkins_role_name,
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonSSMManagedInstanceCore")
            ]
        )

    def add_database(self) -> None:
        """Create the PostgreSQL instance in the isolated subnets"""
        config = self.config
        secrets = self.definition.secrets
        instance_class = config.db_instance_class
        if instance_class.startswith("db."):
            instance_class = instance_class[len("db."):]

        self.database = rds.DatabaseInstance(self, "Database",
            engine=rds.DatabaseInstanceEngine.postgres(version=rds.PostgresEngineVersion.VER_15),
            instance_type=ec2.InstanceType(instance_class),
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_ISOLATED),
            security_groups=[self.db_security_group],
            credentials=rds.Credentials.from_password(
                secrets[DB_USERNAME],
                SecretValue.unsafe_plain_text(secrets[DB_PASSWORD]),
            ),
            database_name=f"{config.name}appdb",
            multi_az=config.db_multi_az,
            allocated_storage=config.db_allocated_storage,
            max_allocated_storage=config.db_max_allocated_storage,
            backup_retention=Duration.days(config.db_backup_retention_days),
            storage_encrypted=True,
            publicly_accessible=False,
            deletion_protection=config.name == "prod",
            removal_policy=RemovalPolicy.SNAPSHOT,
            cloudwatch_logs_exports=["postgresql", "upgrade"],
        )

    @staticmethod
    def _visibility(metric_name: str) -> wafv2.CfnWebACL.VisibilityConfigProperty:
        return wafv2.CfnWebACL.VisibilityConfigProperty(
            cloud_watch_metrics_enabled=True,
            metric_name=metric_name,
            sampled_requests_enabled=True,
        )
