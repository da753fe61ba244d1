"""Errors raised while composing stacks for an environment.

Configuration and graph errors are raised before any stack is materialized.
Materialization errors stop the run at the failing stack.
"""
from typing import Iterable, Optional, Sequence


class CompositionError(Exception):
    """Base class for every composition failure."""

    role = None
    environment = None


class UnknownEnvironment(CompositionError, ValueError):
    def __init__(self, environment: str, available: Iterable[str] = ()) -> None:
        self.environment = environment
        self.available = list(available)
        super().__init__(
            f"No configuration registered for environment '{environment}'. "
            f"Available environments: {', '.join(self.available)}"
        )


class MissingConfigField(CompositionError, ValueError):
    def __init__(self, environment: str, errors: Sequence[str], role=None) -> None:
        self.environment = environment
        self.errors = list(errors)
        self.role = role
        self.fields = [error.split(":", 1)[0] for error in self.errors]
        scope = f" for role '{role}'" if role is not None else ""
        super().__init__(
            f"Configuration for environment '{environment}'{scope} is not usable: "
            + "; ".join(self.errors)
        )


class MissingSecret(CompositionError):
    def __init__(self, environment: str, variable: str, role=None) -> None:
        self.environment = environment
        self.variable = variable
        self.role = role
        scope = f" (required by {role})" if role is not None else ""
        super().__init__(f"{variable} environment variable must be set for environment '{environment}'{scope}")


class UnsatisfiedImport(CompositionError):
    def __init__(self, role, environment: str, import_name: str) -> None:
        self.role = role
        self.environment = environment
        self.import_name = import_name
        super().__init__(
            f"Import '{import_name}' of {role} stack in '{environment}' has no producing stack "
            "and no persisted export"
        )


class CyclicDependency(CompositionError):
    def __init__(self, environment: str, cycle: Sequence) -> None:
        self.environment = environment
        self.cycle = list(cycle)
        path = " -> ".join(str(role) for role in self.cycle)
        super().__init__(f"Stacks in '{environment}' form a dependency cycle: {path}")


class RoleOrderViolation(CompositionError):
    def __init__(self, environment: str, dependent, dependency, import_name: str) -> None:
        self.environment = environment
        self.role = dependent
        self.dependency = dependency
        self.import_name = import_name
        super().__init__(
            f"{dependent} stack in '{environment}' imports '{import_name}' from {dependency}, "
            "which must be provisioned after it"
        )


class DuplicateExport(CompositionError):
    def __init__(self, environment: str, export_name: str, roles: Sequence) -> None:
        self.environment = environment
        self.export_name = export_name
        self.roles = list(roles)
        super().__init__(
            f"Export '{export_name}' in '{environment}' is declared by more than one stack: "
            + ", ".join(str(role) for role in self.roles)
        )


class ExportNotFound(CompositionError):
    def __init__(self, key: str, role=None, environment: Optional[str] = None) -> None:
        self.key = key
        self.role = role
        self.environment = environment
        scope = f" (imported by {role} stack)" if role is not None else ""
        super().__init__(f"Export '{key}' does not exist{scope}; deploy the stack that publishes it first")


class UnresolvedImport(CompositionError):
    def __init__(self, role, environment: str, import_name: str) -> None:
        self.role = role
        self.environment = environment
        self.import_name = import_name
        super().__init__(
            f"Import '{import_name}' of {role} stack in '{environment}' has no value; "
            "its producing stack has not been materialized"
        )


class ExportMismatch(CompositionError):
    def __init__(self, role, environment: str, missing: Iterable[str], unexpected: Iterable[str]) -> None:
        self.role = role
        self.environment = environment
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        super().__init__(
            f"{role} stack in '{environment}' produced exports that do not match its declaration "
            f"(missing: {self.missing}, undeclared: {self.unexpected})"
        )


class InvalidDeployTarget(CompositionError, ValueError):
    def __init__(self, value, reason: str) -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid deploy target '{value}': {reason}")
