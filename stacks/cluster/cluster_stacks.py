from constructs import Construct
from aws_cdk import (
    Duration,
    RemovalPolicy,
    aws_ecs as ecs,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_logs as logs,
    aws_cloudwatch as cloudwatch,
    Tags
)

from stacks.common.exports import RoleStack

# Closest CloudWatch Logs retention bucket for each configured day count
RETENTION_DAYS = {
    7: logs.RetentionDays.ONE_WEEK,
    14: logs.RetentionDays.TWO_WEEKS,
    30: logs.RetentionDays.ONE_MONTH,
    60: logs.RetentionDays.TWO_MONTHS,
    90: logs.RetentionDays.THREE_MONTHS,
    180: logs.RetentionDays.SIX_MONTHS,
    365: logs.RetentionDays.ONE_YEAR,
}


def retention_for(days: int) -> logs.RetentionDays:
    for limit in sorted(RETENTION_DAYS):
        if days <= limit:
            return RETENTION_DAYS[limit]
    return logs.RetentionDays.ONE_YEAR


class ClusterStack(RoleStack):

    def __init__(self, scope: Construct, id: str, **kwargs) -> None:
        super().__init__(scope, id, **kwargs)

        config = self.config
        self.cluster_name = f"{config.project_name}-{config.name}"

        # VPC comes from the infrastructure stack's export, never a construct reference
        vpc = ec2.Vpc.from_vpc_attributes(self, "ImportedVpc",
            vpc_id=self.import_value("vpc-id"),
            availability_zones=list(config.availability_zones),
        )

        self.cluster = ecs.Cluster(self, "Cluster",
            vpc=vpc,
            cluster_name=self.cluster_name,
            container_insights=config.enable_detailed_monitoring,
            enable_fargate_capacity_providers=True,
        )
        self.add_capacity_strategy()

        self.task_execution_role = iam.Role(self, "TaskExecutionRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AmazonECSTaskExecutionRolePolicy")
            ]
        )

        self.log_group = logs.LogGroup(self, "ClusterLogs",
            log_group_name=f"/ecs/{self.cluster_name}-cluster",
            retention=retention_for(config.logs_retention_days),
            removal_policy=RemovalPolicy.RETAIN if config.name == "prod" else RemovalPolicy.DESTROY,
        )

        self.add_cluster_monitoring()
        self.resource_tags()

        self.publish("cluster-arn", "ClusterArn", self.cluster.cluster_arn)
        self.publish("cluster-name", "ClusterName", self.cluster.cluster_name)
        self.publish("log-group", "LogGroupName", self.log_group.log_group_name)
        self.publish("task-execution-role-arn", "TaskExecutionRoleArn", self.task_execution_role.role_arn)

    def add_capacity_strategy(self):
        """Weight Fargate Spot against on-demand Fargate"""
        if self.config.use_spot_instances:
            strategy = [
                ecs.CapacityProviderStrategy(capacity_provider="FARGATE_SPOT", weight=4),
                ecs.CapacityProviderStrategy(capacity_provider="FARGATE", weight=1),
            ]
        else:
            strategy = [
                ecs.CapacityProviderStrategy(capacity_provider="FARGATE", weight=3),
                ecs.CapacityProviderStrategy(capacity_provider="FARGATE_SPOT", weight=1),
            ]
        self.cluster.add_default_capacity_provider_strategy(strategy)

    def add_cluster_monitoring(self):
        """Add the cluster dashboard and the CPU alarm"""
        def metric(name: str, minutes: int = 1) -> cloudwatch.Metric:
            return cloudwatch.Metric(
                namespace="AWS/ECS",
                metric_name=name,
                dimensions_map={"ClusterName": self.cluster_name},
                statistic="Average",
                period=Duration.minutes(minutes),
            )

        dashboard = cloudwatch.Dashboard(self, "ClusterDashboard",
            dashboard_name=f"{self.cluster_name}-dashboard",
        )
        dashboard.add_widgets(
            cloudwatch.GraphWidget(title="Cluster CPU Utilization", left=[metric("CPUUtilization")], width=12),
            cloudwatch.GraphWidget(title="Cluster Memory Utilization", left=[metric("MemoryUtilization")], width=12),
        )
        dashboard.add_widgets(
            cloudwatch.GraphWidget(title="Running Tasks", left=[metric("RunningTaskCount")], width=12),
            cloudwatch.GraphWidget(title="Service Count", left=[metric("ServiceCount")], width=12),
        )

        cloudwatch.Alarm(self, "ClusterCPUAlarm",
            metric=metric("CPUUtilization", minutes=5),
            threshold=85,
            evaluation_periods=3,
            datapoints_to_alarm=3,
            comparison_operator=cloudwatch.ComparisonOperator.GREATER_THAN_THRESHOLD,
            alarm_description="Cluster CPU utilization is too high",
        )

    def resource_tags(self):
        """Apply resource tags"""
        Tags.of(self.cluster).add("ClusterType", "ECS")
        if self.definition.version:
            Tags.of(self).add("ClusterVersion", self.definition.version)
