"""Per-environment runtime secrets.

Secrets are read from the process environment (after ``.env`` loading in
``app.py``). The primary environment reads unprefixed variables, every other
environment reads ``{ENV}_``-prefixed ones, e.g. ``PROD_DB_PASSWORD``.
"""
import os
from typing import Dict, Iterable, Mapping, Optional

from stacks.composition.errors import MissingSecret
from stacks.config.environment_config import PRIMARY_ENVIRONMENT

DB_USERNAME = "DB_USERNAME"
DB_PASSWORD = "DB_PASSWORD"
GRAFANA_ADMIN_PASSWORD = "GRAFANA_ADMIN_PASSWORD"


def env_prefix(environment: str, primary: str = PRIMARY_ENVIRONMENT) -> str:
    if environment == primary:
        return ""
    return f"{environment.upper()}_"


class SecretBundle:
    """Lazily resolved secrets of one environment.

    Nothing is read until a value is requested, so an environment whose
    secrets are absent can still be composed for roles that do not need them.
    """

    def __init__(self, environment: str, prefix: str, source: Mapping[str, str]) -> None:
        self.environment = environment
        self.prefix = prefix
        self._source = source

    def variable_name(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def get(self, name: str) -> Optional[str]:
        value = self._source.get(self.variable_name(name))
        return value or None

    def require(self, name: str, role=None) -> str:
        value = self.get(name)
        if value is None:
            raise MissingSecret(self.environment, self.variable_name(name), role)
        return value

    def require_all(self, names: Iterable[str], role=None) -> Dict[str, str]:
        return {name: self.require(name, role) for name in names}

    def __repr__(self) -> str:
        return f"SecretBundle(environment={self.environment!r}, prefix={self.prefix!r})"


class SecretResolver:
    def __init__(self, source: Optional[Mapping[str, str]] = None, primary: str = PRIMARY_ENVIRONMENT) -> None:
        self._source = os.environ if source is None else source
        self.primary = primary

    def resolve_secrets(self, environment: str) -> SecretBundle:
        return SecretBundle(environment, env_prefix(environment, self.primary), self._source)
