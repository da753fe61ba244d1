"""Unit tests for the environment registry.

Tests lookup of the registered dev/prod/dr environments, rejection of unknown
names, and field-presence, CIDR and scaling-bound validation.
"""
from dataclasses import MISSING, fields, replace

import pytest

from stacks.composition.blueprints import DEFAULT_BLUEPRINTS, required_config_fields
from stacks.composition.errors import MissingConfigField, UnknownEnvironment
from stacks.config.environment_config import DEFAULT_REGISTRY, DEV_CONFIG, EnvironmentConfig, EnvironmentRegistry


@pytest.mark.parametrize("name", ["dev", "prod", "dr"])
def test_registered_environments_are_complete(name):
    """Test every registered environment resolves with every required field set."""
    config = DEFAULT_REGISTRY.resolve(name)
    assert config.name == name
    assert DEFAULT_REGISTRY.validate(config) == []
    assert DEFAULT_REGISTRY.validate(config, required_config_fields(DEFAULT_BLUEPRINTS)) == []


def test_unknown_environment_rejected():
    """Test an unregistered name fails with UnknownEnvironment listing the known ones."""
    with pytest.raises(UnknownEnvironment) as exc_info:
        DEFAULT_REGISTRY.resolve("staging")
    assert exc_info.value.environment == "staging"
    assert exc_info.value.available == ["dev", "prod", "dr"]


def test_primary_environment_is_dev():
    """Test dev is the primary environment."""
    assert DEFAULT_REGISTRY.primary == "dev"


def test_dr_runs_in_west_region():
    """Test the DR environment is a pilot light in us-west-2."""
    config = DEFAULT_REGISTRY.resolve("dr")
    assert config.aws_region == "us-west-2"
    assert config.tags["DisasterRecovery"] == "PilotLight"
    assert config.desired_instance_count == 1


def test_missing_field_is_reported_not_defaulted():
    """Test an empty required field is a validation error."""
    broken = replace(DEV_CONFIG, domain_name="")
    errors = DEFAULT_REGISTRY.validate(broken, ["domain_name", "aws_region"])
    assert errors == ["domain_name: missing or empty"]


def test_require_valid_raises_missing_config_field():
    """Test require_valid raises MissingConfigField naming the environment and field."""
    broken = replace(DEV_CONFIG, aws_region="")
    with pytest.raises(MissingConfigField) as exc_info:
        DEFAULT_REGISTRY.require_valid(broken, ["aws_region"])
    assert exc_info.value.environment == "dev"
    assert exc_info.value.fields == ["aws_region"]


def test_optional_empty_collection_is_valid():
    """Test an empty blocked IP list does not make the config unusable."""
    assert DEV_CONFIG.blocked_ip_addresses == ()
    assert DEFAULT_REGISTRY.validate(DEV_CONFIG) == []


def test_invalid_cidr_formats():
    """Test malformed VPC and subnet CIDR blocks are reported."""
    invalid_cidrs = [
        "10.0.0.0/33",
        "256.0.0.0/16",
        "not-an-ip/16",
        "10.0.0.0/abc",
    ]
    for invalid_cidr in invalid_cidrs:
        errors = DEFAULT_REGISTRY.validate(replace(DEV_CONFIG, vpc_cidr=invalid_cidr), ["vpc_cidr"])
        assert errors, f"Expected error for invalid CIDR: {invalid_cidr}"


def test_subnet_outside_vpc_range():
    """Test subnets must fall inside the VPC CIDR."""
    broken = replace(DEV_CONFIG, private_subnet_cidrs=("10.0.3.0/24", "10.9.4.0/24"))
    errors = DEFAULT_REGISTRY.validate(broken, ["vpc_cidr", "private_subnet_cidrs"])
    assert errors == ["private_subnet_cidrs: 10.9.4.0/24 is outside 10.0.0.0/16"]


def test_inverted_scaling_bounds():
    """Test desired count must lie between min and max counts."""
    broken = replace(DEV_CONFIG, desired_instance_count=5)
    errors = DEFAULT_REGISTRY.validate(
        broken, ["min_instance_count", "desired_instance_count", "max_instance_count"])
    assert len(errors) == 1
    assert errors[0].startswith("desired_instance_count")


def test_duplicate_registration_rejected():
    """Test one name cannot be registered twice."""
    with pytest.raises(ValueError):
        EnvironmentRegistry([DEV_CONFIG, DEV_CONFIG])


def test_every_mandatory_field_is_read_by_a_role():
    """Test each field without a default is declared by at least one role stack."""
    mandatory = {
        f.name for f in fields(EnvironmentConfig)
        if f.default is MISSING and f.default_factory is MISSING
    }
    declared = set(required_config_fields(DEFAULT_BLUEPRINTS))
    assert mandatory - {"name"} <= declared
    assert not {"instance_type", "jenkins_instance_type", "key_name", "spot_price"} & {
        f.name for f in fields(EnvironmentConfig)}
