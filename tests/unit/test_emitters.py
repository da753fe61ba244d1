"""Unit tests for the stack emitters.

Tests the dry-run placeholders, the cdk-nag suppressions each role stack
carries in its template metadata, and composing several environments in
parallel onto real CDK apps.
"""
import aws_cdk as cdk
import pytest
from aws_cdk.assertions import Template

from stacks.composition.blueprints import DEFAULT_BLUEPRINTS
from stacks.composition.descriptor import Role
from stacks.composition.driver import compose_environments
from stacks.composition.emitters import CdkStackEmitter
from stacks.composition.references import InMemoryExportStore

from conftest import synth_stacks


def nag_rules(stack):
    """Return the cdk-nag rules suppressed at stack level."""
    metadata = Template.from_stack(stack).to_json().get("Metadata", {})
    return {rule["id"]: rule["reason"] for rule in metadata["cdk_nag"]["rules_to_suppress"]}


@pytest.mark.parametrize("blueprint", DEFAULT_BLUEPRINTS, ids=lambda bp: bp.role.short_name)
def test_role_stacks_carry_nag_suppressions(secret_resolver, blueprint):
    """Test each emitted stack carries exactly its role's suppressions."""
    emitter, _ = synth_stacks(secret_resolver, "dev", "all")
    expected = {suppression.id: suppression.reason for suppression in blueprint.nag_suppressions}
    assert nag_rules(emitter.stacks[blueprint.role]) == expected


def test_suppressions_reach_definitions(secret_resolver):
    """Test the application suppressions include the public load balancer rule."""
    _, result = synth_stacks(secret_resolver, "prod", "all")
    (app_definition,) = [d for d in result.definitions if d.role == Role.APPLICATION]
    assert "AwsSolutions-EC23" in {suppression.id for suppression in app_definition.nag_suppressions}


def test_compose_environments_onto_cdk_apps(secret_resolver):
    """Test parallel composition with CDK emitters builds every environment's stacks."""
    emitters = {}

    def emitter_factory(environment):
        emitters[environment] = CdkStackEmitter(cdk.App(), account="111111111111")
        return emitters[environment]

    results = compose_environments(["dev", "prod", "dr"], InMemoryExportStore(),
        emitter_factory=emitter_factory, max_workers=3, secret_resolver=secret_resolver)

    assert results["dr"].stack_names == ["EcsJenkinsInfraDrStack", "EcsJenkinsClusterDrStack", "EcsJenkinsAppDrStack"]
    for environment, emitter in emitters.items():
        assert list(emitter.stacks) == [Role.INFRASTRUCTURE, Role.CLUSTER, Role.APPLICATION]
        template = Template.from_stack(emitter.stacks[Role.APPLICATION])
        template.has_output("LoadBalancerDns", {
            "Export": {"Name": f"ecs-jenkins-{environment}-lb-dns"},
        })
