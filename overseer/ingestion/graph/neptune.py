"""Amazon Neptune backend placeholder.

Selectable through GRAPH_PROVIDER=neptune so the wiring is exercised, but every
operation raises BackendNotImplementedError until a real adapter lands.
"""

from __future__ import annotations

from typing import Any, NoReturn, Optional

from overseer.ingestion.config import NeptuneConfig
from overseer.ingestion.errors import BackendNotImplementedError
from overseer.ingestion.graph.base import GraphService


class NeptuneGraphService(GraphService):
    PROVIDER_NAME = "neptune"

    def __init__(self, config: Optional[NeptuneConfig]) -> None:
        self._config = config

    def _unsupported(self, operation: str) -> NoReturn:
        raise BackendNotImplementedError(self.PROVIDER_NAME, operation)

    def connect(self) -> None:
        self._unsupported("connect")

    def close(self) -> None:
        # Nothing was opened.
        return None

    def health(self) -> dict[str, Any]:
        self._unsupported("health")

    def create_node(self, label, properties):
        self._unsupported("create_node")

    def get_node(self, node_id):
        self._unsupported("get_node")

    def update_node(self, node_id, properties):
        self._unsupported("update_node")

    def delete_node(self, node_id):
        self._unsupported("delete_node")

    def create_relationship(self, start_id, end_id, rel_type, properties=None):
        self._unsupported("create_relationship")

    def get_relationship(self, rel_id):
        self._unsupported("get_relationship")

    def delete_relationship(self, rel_id):
        self._unsupported("delete_relationship")

    def execute_query(self, query, params=None):
        self._unsupported("execute_query")

    def execute_read_query(self, query, params=None):
        self._unsupported("execute_read_query")

    def execute_write_query(self, query, params=None):
        self._unsupported("execute_write_query")

    def execute_batch(self, operations):
        self._unsupported("execute_batch")

    def clear_all(self):
        self._unsupported("clear_all")
