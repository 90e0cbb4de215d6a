"""Backend-agnostic graph service interface."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from overseer.ingestion.errors import ConfigError, ValidationError

_LABEL_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_label(label: str) -> str:
    """Labels and relationship types are spliced into queries, so restrict them."""
    if not label or not _LABEL_RE.match(label):
        raise ValidationError(f"Invalid label or relationship type: {label!r}")
    return label


@dataclass(frozen=True)
class Node:
    id: str
    label: str
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Relationship:
    id: str
    type: str
    start_id: str
    end_id: str
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchOperation:
    """One parameterised write. ``type`` names the operation for diagnostics."""

    type: str
    query: str
    parameters: dict[str, Any] = field(default_factory=dict)


class GraphService(ABC):
    """Capability interface every graph backend implements."""

    PROVIDER_NAME: str = ""

    @abstractmethod
    def connect(self) -> None:
        """Open the connection pool. Safe to call more than once."""

    @abstractmethod
    def close(self) -> None:
        """Release every pooled connection."""

    @abstractmethod
    def health(self) -> dict[str, Any]:
        """Round-trip to the database; raises GraphError when unhealthy."""

    @abstractmethod
    def create_node(self, label: str, properties: dict[str, Any]) -> Node: ...

    @abstractmethod
    def get_node(self, node_id: str) -> Node:
        """Raises NotFoundError when no node has ``node_id``."""

    @abstractmethod
    def update_node(self, node_id: str, properties: dict[str, Any]) -> Node: ...

    @abstractmethod
    def delete_node(self, node_id: str) -> None:
        """Detach-delete; a missing node is not an error."""

    @abstractmethod
    def create_relationship(
        self,
        start_id: str,
        end_id: str,
        rel_type: str,
        properties: Optional[dict[str, Any]] = None,
    ) -> Relationship:
        """Raises NotFoundError when either endpoint is missing."""

    @abstractmethod
    def get_relationship(self, rel_id: str) -> Relationship: ...

    @abstractmethod
    def delete_relationship(self, rel_id: str) -> None: ...

    @abstractmethod
    def execute_query(
        self, query: str, params: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]: ...

    @abstractmethod
    def execute_read_query(
        self, query: str, params: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]:
        """Run ``query`` in a read-only transaction."""

    @abstractmethod
    def execute_write_query(
        self, query: str, params: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]: ...

    @abstractmethod
    def execute_batch(self, operations: list[BatchOperation]) -> None:
        """Run every operation in one transaction: all commit or none do."""

    @abstractmethod
    def clear_all(self) -> None:
        """Detach-delete every node and relationship."""


def create_graph_service(config) -> GraphService:
    """Instantiate the backend named by ``config.graph.provider``."""
    provider = config.graph.provider
    if provider == "agensgraph":
        from overseer.ingestion.graph.agensgraph import AgensGraphService

        return AgensGraphService(config.graph)
    if provider == "neptune":
        from overseer.ingestion.graph.neptune import NeptuneGraphService

        return NeptuneGraphService(config.neptune)
    raise ConfigError(f"Unknown graph provider: {provider!r}")
