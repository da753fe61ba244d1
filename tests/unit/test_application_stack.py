"""Unit tests for ApplicationStack Jenkins, Grafana and DNS resources.

Tests the Jenkins Fargate service behind the load balancer, auto scaling
bounds, the Grafana admin secret, the environment DNS record, and that every
network and cluster resource is imported through named exports, both within
a full run and from persisted values in an application-only run.
"""
from aws_cdk.assertions import Capture, Match, Template

from stacks.composition.descriptor import Role
from stacks.composition.references import InMemoryExportStore

from conftest import synth_stacks

PERSISTED_DEV_EXPORTS = {
    "ecs-jenkins-dev-vpc-id": "vpc-0123456789abcdef0",
    "ecs-jenkins-dev-public-subnets": "subnet-0000000000000000a,subnet-0000000000000000b",
    "ecs-jenkins-dev-private-subnets": "subnet-0000000000000000c,subnet-0000000000000000d",
    "ecs-jenkins-dev-alb-sg-id": "sg-0000000000000000a",
    "ecs-jenkins-dev-ecs-sg-id": "sg-0000000000000000b",
    "ecs-jenkins-dev-jenkins-sg-id": "sg-0000000000000000c",
    "ecs-jenkins-dev-ecs-execution-role-arn": "arn:aws:iam::111111111111:role/ecs-jenkins-dev-ecs-task-execution-role",
    "ecs-jenkins-dev-ecs-task-role-arn": "arn:aws:iam::111111111111:role/ecs-jenkins-dev-ecs-task-role",
    "ecs-jenkins-dev-db-endpoint": "ecs-jenkins-dev.abcdefghijkl.us-east-1.rds.amazonaws.com",
    "ecs-jenkins-dev-cluster-name": "ecs-jenkins-dev",
}


def synth_application_stack(secret_resolver, environment="dev", deploy_target="all", store=None, **versions):
    """Synthesize the application stack and return it with its template.

    Returns:
        Tuple of (emitter, application_stack, template) for assertions.
    """
    emitter, _ = synth_stacks(secret_resolver, environment, deploy_target, store=store, **versions)
    application_stack = emitter.stacks[Role.APPLICATION]
    return emitter, application_stack, Template.from_stack(application_stack)


def test_load_balancer_and_listener(secret_resolver):
    """Test internet-facing load balancer with an HTTP listener and /login health check."""
    _, _, template = synth_application_stack(secret_resolver)
    template.has_resource_properties("AWS::ElasticLoadBalancingV2::LoadBalancer", {
        "Scheme": "internet-facing",
        "Type": "application",
    })
    template.has_resource_properties("AWS::ElasticLoadBalancingV2::Listener", {
        "Port": 80,
        "Protocol": "HTTP",
    })
    template.has_resource_properties("AWS::ElasticLoadBalancingV2::TargetGroup", {
        "Port": 8080,
        "HealthCheckPath": "/login",
    })


def test_services(secret_resolver):
    """Test Jenkins and Grafana run as Fargate services."""
    _, _, template = synth_application_stack(secret_resolver)
    template.resource_count_is("AWS::ECS::Service", 2)
    template.has_resource_properties("AWS::ECS::Service", {
        "LaunchType": "FARGATE",
        "DesiredCount": 1,
    })


def test_jenkins_image_uses_application_version(secret_resolver):
    """Test the application version selects the Jenkins image tag."""
    _, _, template = synth_application_stack(secret_resolver, application_version="2.440")
    template.has_resource_properties("AWS::ECS::TaskDefinition", {
        "ContainerDefinitions": Match.array_with([
            Match.object_like({"Image": "jenkins/jenkins:2.440"}),
        ]),
    })


def test_jenkins_image_defaults_to_latest(secret_resolver):
    """Test the Jenkins image tag defaults to latest."""
    _, _, template = synth_application_stack(secret_resolver)
    template.has_resource_properties("AWS::ECS::TaskDefinition", {
        "ContainerDefinitions": Match.array_with([
            Match.object_like({"Image": "jenkins/jenkins:latest"}),
        ]),
    })


def test_auto_scaling_bounds(secret_resolver):
    """Test the Jenkins service scales between the environment's instance counts."""
    _, _, template = synth_application_stack(secret_resolver)
    template.has_resource_properties("AWS::ApplicationAutoScaling::ScalableTarget", {
        "MinCapacity": 1,
        "MaxCapacity": 3,
    })


def test_grafana_admin_secret(secret_resolver):
    """Test the Grafana admin password is kept in Secrets Manager."""
    _, _, template = synth_application_stack(secret_resolver)
    template.has_resource_properties("AWS::SecretsManager::Secret", {
        "SecretString": "dev-admin",
    })


def test_dns_record(secret_resolver):
    """Test non-prod environments get an {env}.{domain} alias record."""
    _, _, template = synth_application_stack(secret_resolver)
    template.has_resource_properties("AWS::Route53::HostedZone", {
        "Name": "dev.example.com.",
    })
    capture_name = Capture()
    template.has_resource_properties("AWS::Route53::RecordSet", {
        "Type": "A",
        "Name": capture_name,
    })
    assert capture_name.as_string().rstrip(".") == "dev.dev.example.com"


def test_prod_dns_record_uses_apex(secret_resolver):
    """Test prod points the domain itself at the load balancer."""
    _, _, template = synth_application_stack(secret_resolver, "prod")
    capture_name = Capture()
    template.has_resource_properties("AWS::Route53::RecordSet", {
        "Type": "A",
        "Name": capture_name,
    })
    assert capture_name.as_string().rstrip(".") == "example.com"


def test_imports_are_named_exports(secret_resolver):
    """Test in-run imports resolve to Fn::ImportValue of the producer's export keys."""
    _, _, template = synth_application_stack(secret_resolver)
    template.has_resource_properties("AWS::ECS::Service", {
        "Cluster": {"Fn::ImportValue": "ecs-jenkins-dev-cluster-name"},
    })
    template.has_resource_properties("AWS::ElasticLoadBalancingV2::LoadBalancer", {
        "SecurityGroups": [{"Fn::ImportValue": "ecs-jenkins-dev-alb-sg-id"}],
    })


def test_outputs_exported_by_key(secret_resolver):
    """Test the load balancer DNS and Jenkins URL are exported."""
    _, _, template = synth_application_stack(secret_resolver)
    template.has_output("LoadBalancerDns", {
        "Export": {"Name": "ecs-jenkins-dev-lb-dns"},
    })
    template.has_output("JenkinsUrl", {
        "Export": {"Name": "ecs-jenkins-dev-jenkins-url"},
    })
    template.resource_count_is("AWS::SSM::Parameter", 2)


def test_depends_on_infrastructure_and_cluster(secret_resolver):
    """Test the application stack is deployed after both producer stacks."""
    _, application_stack, _ = synth_application_stack(secret_resolver)
    names = sorted(stack.stack_name for stack in application_stack.dependencies)
    assert names == ["EcsJenkinsClusterDevStack", "EcsJenkinsInfraDevStack"]


def test_application_only_uses_persisted_values(secret_resolver):
    """Test an application-only run builds from persisted literal values."""
    store = InMemoryExportStore(PERSISTED_DEV_EXPORTS)
    emitter, application_stack, template = synth_application_stack(secret_resolver, deploy_target="app",
        store=store)
    assert list(emitter.stacks) == [Role.APPLICATION]
    assert application_stack.dependencies == []
    template.has_resource_properties("AWS::ECS::Service", {
        "Cluster": "ecs-jenkins-dev",
        "NetworkConfiguration": {
            "AwsvpcConfiguration": Match.object_like({
                "Subnets": ["subnet-0000000000000000c", "subnet-0000000000000000d"],
            }),
        },
    })
    template.has_resource_properties("AWS::ElasticLoadBalancingV2::LoadBalancer", {
        "Subnets": ["subnet-0000000000000000a", "subnet-0000000000000000b"],
    })
