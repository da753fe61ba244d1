import pytest

from stacks.config.secrets import SecretResolver

ALL_SECRETS = {
    "DB_USERNAME": "jenkins",
    "DB_PASSWORD": "dev-password",
    "GRAFANA_ADMIN_PASSWORD": "dev-admin",
    "PROD_DB_USERNAME": "jenkins",
    "PROD_DB_PASSWORD": "prod-password",
    "PROD_GRAFANA_ADMIN_PASSWORD": "prod-admin",
    "DR_DB_USERNAME": "jenkins",
    "DR_DB_PASSWORD": "dr-password",
    "DR_GRAFANA_ADMIN_PASSWORD": "dr-admin",
}


@pytest.fixture
def secret_resolver():
    """Secret resolver with every environment's secrets set."""
    return SecretResolver(dict(ALL_SECRETS))


def synth_stacks(secret_resolver, environment="dev", deploy_target="all", store=None, **versions):
    """Compose ``environment`` onto a fresh CDK app.

    Returns:
        Tuple of (emitter, result); ``emitter.stacks`` maps roles to stacks.
    """
    import aws_cdk as cdk

    from stacks.composition.driver import CompositionDriver
    from stacks.composition.emitters import CdkStackEmitter
    from stacks.composition.references import CrossStackReferences, InMemoryExportStore

    app = cdk.App()
    emitter = CdkStackEmitter(app, account="111111111111")
    references = CrossStackReferences("ecs-jenkins", store or InMemoryExportStore())
    driver = CompositionDriver(references, emitter, secret_resolver=secret_resolver)
    result = driver.run(environment, deploy_target, **versions)
    return emitter, result
