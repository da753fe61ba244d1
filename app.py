#!/usr/bin/env python3
"""CDK application entrypoint.

Composes the ECS Jenkins stacks for one environment and deploy target:
1. InfrastructureStack: VPC, security groups, WAF, IAM roles, PostgreSQL.
2. ClusterStack: ECS cluster, capacity providers, log group, dashboard.
3. ApplicationStack: Jenkins and Grafana services, load balancer, DNS.

Context (cdk synth -c key=value):
  env             dev | prod | dr (default: dev)
  deploy-target   all | infra | cluster | app, or a comma list (default: all)
  cluster-version tag attached to the cluster stack
  version         Jenkins image tag (default: latest)
  account         target account (default: CDK_DEFAULT_ACCOUNT)

AwsSolutions cdk-nag checks run on every stack; each role stack carries its
own rule suppressions.
"""
import logging
import sys

import aws_cdk as cdk
from cdk_nag import AwsSolutionsChecks
from dotenv import load_dotenv

from stacks.composition.driver import CompositionDriver
from stacks.composition.emitters import CdkStackEmitter
from stacks.composition.errors import CompositionError
from stacks.composition.references import CrossStackReferences, SsmExportStore
from stacks.config.environment_config import DEFAULT_REGISTRY

load_dotenv()
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

app = cdk.App()

# Apply cdk-nag to the entire application
cdk.Aspects.of(app).add(AwsSolutionsChecks(verbose=True))

env_name = app.node.try_get_context("env") or DEFAULT_REGISTRY.primary
deploy_target = app.node.try_get_context("deploy-target") or "all"
cluster_version = app.node.try_get_context("cluster-version")
app_version = app.node.try_get_context("version") or "latest"
account = app.node.try_get_context("account")

try:
    config = DEFAULT_REGISTRY.resolve(env_name)

    print(f"Synthesizing stacks for environment: {env_name} (Region: {config.aws_region})")
    print(f"Deployment target: {deploy_target}")

    references = CrossStackReferences(
        config.project_name,
        SsmExportStore(region_name=config.aws_region),
    )
    driver = CompositionDriver(references, CdkStackEmitter(app, account=account))
    result = driver.run(env_name, deploy_target,
        cluster_version=cluster_version,
        application_version=app_version,
    )
except CompositionError as e:
    print(f"ERROR: {e}", file=sys.stderr)
    sys.exit(1)

print("==================================")
print(f"Environment: {env_name}")
print(f"Deploy Target: {result.deploy_target}")
print(f"Stacks: {', '.join(result.stack_names)}")
if cluster_version:
    print(f"Cluster Version: {cluster_version}")
if result.deploy_target == "all" or "app" in result.deploy_target.split(","):
    print(f"Application Version: {app_version}")
print("==================================")

app.synth()
