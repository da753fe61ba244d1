"""Unit tests for InfrastructureStack network, security, IAM and database resources.

Tests VPC creation with public, private and database subnets, the security
groups and WAF web ACL, the RDS instance, and that every export is published
both as a named CloudFormation export and as an SSM parameter.
"""
import pytest
from aws_cdk.assertions import Capture, Match, Template

from stacks.composition.descriptor import Role

from conftest import synth_stacks


@pytest.fixture
def template(secret_resolver):
    emitter, _ = synth_stacks(secret_resolver, "dev", "infra")
    return Template.from_stack(emitter.stacks[Role.INFRASTRUCTURE])


def test_vpc_cidr(template):
    """Test VPC is created with the environment CIDR block."""
    template.has_resource_properties("AWS::EC2::VPC", {
        "CidrBlock": "10.0.0.0/16",
        "EnableDnsHostnames": True,
        "EnableDnsSupport": True,
    })


def test_subnets_per_availability_zone(template):
    """Test one public, private and database subnet per availability zone."""
    template.resource_count_is("AWS::EC2::Subnet", 6)
    template.resource_count_is("AWS::EC2::NatGateway", 1)


def test_security_groups(template):
    """Test load balancer, ECS, Jenkins and database security groups exist."""
    template.resource_count_is("AWS::EC2::SecurityGroup", 4)
    template.has_resource_properties("AWS::EC2::SecurityGroupIngress", {
        "IpProtocol": "tcp",
        "FromPort": 5432,
        "ToPort": 5432,
    })


def test_web_acl_rules(template):
    """Test the web ACL carries rate-limit and request-size rules."""
    capture_rules = Capture()
    template.has_resource_properties("AWS::WAFv2::WebACL", {
        "Name": "ecs-jenkins-dev-web-acl",
        "Scope": "REGIONAL",
        "Rules": capture_rules,
    })
    rule_names = [rule["Name"] for rule in capture_rules.as_array()]
    assert rule_names == ["rate-limit", "max-request-size"]
    template.resource_count_is("AWS::WAFv2::IPSet", 0)
    template.resource_count_is("AWS::SecurityHub::Hub", 0)


def test_database_instance(template):
    """Test PostgreSQL instance uses the environment's sizing and credentials."""
    template.has_resource_properties("AWS::RDS::DBInstance", {
        "Engine": "postgres",
        "DBInstanceClass": "db.t3.small",
        "DBName": "devappdb",
        "MasterUsername": "jenkins",
        "MultiAZ": False,
        "StorageEncrypted": True,
        "DeletionProtection": False,
    })


def test_outputs_exported_by_key(template):
    """Test each export is a CloudFormation export named {project}-{env}-{name}."""
    template.has_output("VpcId", {
        "Export": {"Name": "ecs-jenkins-dev-vpc-id"},
    })
    template.has_output("DatabaseEndpoint", {
        "Export": {"Name": "ecs-jenkins-dev-db-endpoint"},
    })
    assert len(template.find_outputs("*")) == 9


def test_exports_persisted_as_parameters(template):
    """Test each export is also written to SSM Parameter Store."""
    template.has_resource_properties("AWS::SSM::Parameter", {
        "Name": "/cdk-exports/ecs-jenkins-dev-vpc-id",
        "Type": "String",
    })
    template.resource_count_is("AWS::SSM::Parameter", 9)


def test_stack_tags(secret_resolver):
    """Test stack name and component tag follow the environment."""
    emitter, result = synth_stacks(secret_resolver, "dev", "infra")
    assert result.stack_names == ["EcsJenkinsInfraDevStack"]
    template = Template.from_stack(emitter.stacks[Role.INFRASTRUCTURE])
    template.has_resource_properties("AWS::EC2::VPC", {
        "Tags": Match.array_with([{"Key": "Component", "Value": "Infrastructure"}]),
    })


def test_prod_database_protected(secret_resolver):
    """Test the prod database is multi-AZ with deletion protection."""
    emitter, _ = synth_stacks(secret_resolver, "prod", "infra")
    template = Template.from_stack(emitter.stacks[Role.INFRASTRUCTURE])
    template.has_resource_properties("AWS::RDS::DBInstance", {
        "MultiAZ": True,
        "DeletionProtection": True,
        "DBName": "prodappdb",
    })
