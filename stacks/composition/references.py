"""Cross-stack references.

Exports published during a run are kept in memory for the stacks that
follow. Exports of stacks deployed by an earlier run are read from a
persisted store; the CDK role stacks write each export to SSM Parameter
Store under ``/cdk-exports/{key}`` so ``SsmExportStore`` can find it.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import boto3
from botocore.exceptions import ClientError

from stacks.composition.errors import ExportNotFound

logger = logging.getLogger(__name__)

EXPORT_PARAMETER_PREFIX = "/cdk-exports/"


def export_key(project_name: str, environment: str, export_name: str) -> str:
    return f"{project_name}-{environment}-{export_name}"


def export_parameter_name(key: str, prefix: str = EXPORT_PARAMETER_PREFIX) -> str:
    return f"{prefix}{key}"


class ExportStore(ABC):
    """Persisted exports. ``get`` returns None when the key does not exist."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        ...

    def exists(self, key: str) -> bool:
        return self.get(key) is not None


class InMemoryExportStore(ExportStore):
    def __init__(self, values: Optional[Dict[str, str]] = None) -> None:
        self._values = dict(values or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def items(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._values)


class SsmExportStore(ExportStore):
    """Exports kept as SSM String parameters."""

    def __init__(self, client=None, prefix: str = EXPORT_PARAMETER_PREFIX, region_name: Optional[str] = None) -> None:
        self._client = client or boto3.client("ssm", region_name=region_name)
        self.prefix = prefix

    def get(self, key: str) -> Optional[str]:
        name = export_parameter_name(key, self.prefix)
        try:
            response = self._client.get_parameter(Name=name)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ParameterNotFound":
                logger.debug("Parameter %s not found", name)
                return None
            raise
        return response["Parameter"]["Value"]

    def put(self, key: str, value: str) -> None:
        self._client.put_parameter(
            Name=export_parameter_name(key, self.prefix),
            Value=value,
            Type="String",
            Overwrite=True,
        )


@dataclass(frozen=True)
class PublishedExport:
    role: str
    key: str
    value: str


class CrossStackReferences:
    """Export namespace of one project.

    Args:
        project_name: First part of every export key.
        store: Persisted exports of earlier runs.
        persist_published: Also write published values to ``store``. Left off
            when the emitted stacks persist their own exports at deploy time.
    """

    def __init__(self, project_name: str, store: Optional[ExportStore] = None,
            persist_published: bool = False) -> None:
        self.project_name = project_name
        self.store = store if store is not None else InMemoryExportStore()
        self.persist_published = persist_published
        self._published: Dict[str, PublishedExport] = {}

    def key_for(self, environment: str, export_name: str) -> str:
        return export_key(self.project_name, environment, export_name)

    def publish(self, role, environment: str, export_name: str, value: str) -> str:
        key = self.key_for(environment, export_name)
        self._published[key] = PublishedExport(str(role), key, value)
        if self.persist_published:
            self.store.put(key, value)
        logger.debug("Published %s from %s", key, role)
        return key

    def resolve(self, role, environment: str, import_name: str, external: Optional[bool] = None) -> str:
        """Return the value of ``import_name`` for a consumer of ``role``.

        ``external=False`` only looks at exports published in this run,
        ``external=True`` only at the persisted store, ``None`` tries both in
        that order.
        """
        key = self.key_for(environment, import_name)
        if external is not True:
            published = self._published.get(key)
            if published is not None:
                return published.value
            if external is False:
                raise ExportNotFound(key, role, environment)

        value = self.store.get(key)
        if value is None:
            raise ExportNotFound(key, role, environment)
        return value

    def is_persisted(self, environment: str, export_name: str) -> bool:
        return self.store.exists(self.key_for(environment, export_name))

    def published(self, environment: Optional[str] = None) -> Dict[str, str]:
        prefix = f"{self.project_name}-{environment}-" if environment else ""
        return {key: entry.value for key, entry in self._published.items() if key.startswith(prefix)}
