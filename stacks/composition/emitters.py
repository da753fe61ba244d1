"""Emitters hand materialized stack definitions to the cloud orchestrator."""
import logging
import os
import threading
from typing import Dict, List, Optional

import aws_cdk as cdk
from cdk_nag import NagPackSuppression, NagSuppressions

from stacks.application.application_stack import ApplicationStack
from stacks.cluster.cluster_stacks import ClusterStack
from stacks.composition.descriptor import Role, StackDefinition
from stacks.infrastructure.infrastructure_stack import InfrastructureStack

logger = logging.getLogger(__name__)

STACK_CLASSES = {
    Role.INFRASTRUCTURE: InfrastructureStack,
    Role.CLUSTER: ClusterStack,
    Role.APPLICATION: ApplicationStack,
}


class DryRunEmitter:
    """Records definitions and returns a placeholder for every export."""

    def __init__(self) -> None:
        self.definitions: List[StackDefinition] = []

    def emit(self, definition: StackDefinition) -> Dict[str, str]:
        self.definitions.append(definition)
        return {spec.name: f"<{definition.export_keys[spec.name]}>" for spec in definition.exports}


class CdkStackEmitter:
    """Synthesizes each definition as a CDK stack on ``app``.

    In-run consumers receive ``Fn::ImportValue`` tokens of the exports, which
    keeps every cross-stack reference a named CloudFormation export rather
    than a construct reference between stacks.

    The jsii kernel behind aws-cdk-lib serves one caller at a time, so every
    emitter in the process builds its stacks under the same lock.
    """

    jsii_lock = threading.RLock()

    def __init__(self, app: cdk.App, account: Optional[str] = None) -> None:
        self.app = app
        self.account = account or os.environ.get("CDK_DEFAULT_ACCOUNT")
        self.stacks: Dict[Role, cdk.Stack] = {}

    def emit(self, definition: StackDefinition) -> Dict[str, str]:
        with self.jsii_lock:
            stack_class = STACK_CLASSES[definition.role]
            stack = stack_class(self.app, definition.stack_name,
                definition=definition,
                env=cdk.Environment(account=self.account, region=definition.config.aws_region),
                description=definition.description,
            )

            for key, value in definition.tags.items():
                cdk.Tags.of(stack).add(key, value)

            if definition.nag_suppressions:
                NagSuppressions.add_stack_suppressions(stack, [
                    NagPackSuppression(id=suppression.id, reason=suppression.reason)
                    for suppression in definition.nag_suppressions
                ])

            for role in definition.depends_on:
                dependency = self.stacks.get(role)
                if dependency is not None:
                    stack.add_dependency(dependency)

            self.stacks[definition.role] = stack
            exports = {name: cdk.Fn.import_value(key) for name, key in stack.published_exports.items()}
        logger.info("Synthesized %s", definition.stack_name)
        return exports
