"""Base stack for the role stacks.

Wraps the definition handed over by the composition driver and publishes
each declared export twice: as a CloudFormation export named by its key and
as an SSM parameter that later partial runs resolve.
"""
from typing import Dict, List

from constructs import Construct
from aws_cdk import (
    Stack,
    Token,
    Fn,
    aws_ssm as ssm,
    CfnOutput,
)

from stacks.composition.descriptor import StackDefinition, ValueKind
from stacks.composition.references import export_parameter_name


class RoleStack(Stack):

    def __init__(self, scope: Construct, construct_id: str, *,
            definition: StackDefinition,
            **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.definition = definition
        self.config = definition.config
        self.published_exports: Dict[str, str] = {}

    def publish(self, export_name: str, logical_id: str, value: str) -> None:
        """Declare ``export_name`` as a stack output and an SSM parameter."""
        spec = next((s for s in self.definition.exports if s.name == export_name), None)
        if spec is None:
            raise ValueError(f"{self.definition.role} stack does not declare export '{export_name}'")

        key = self.definition.export_keys[export_name]
        CfnOutput(self, logical_id,
            value=value,
            description=spec.description or None,
            export_name=key,
        )
        ssm.StringParameter(self, f"{logical_id}Parameter",
            parameter_name=export_parameter_name(key),
            string_value=value,
        )
        self.published_exports[export_name] = key

    def import_value(self, import_name: str) -> str:
        return self.definition.imports[import_name]

    def import_list(self, import_name: str) -> List[str]:
        value = self.import_value(import_name)
        if self.definition.import_kinds.get(import_name) != ValueKind.LIST:
            raise ValueError(f"Import '{import_name}' is not a list")
        if Token.is_unresolved(value):
            return Fn.split(",", value, assumed_length=len(self.config.availability_zones))
        return [item for item in value.split(",") if item]
