"""AgensGraph backend: Cypher over a psycopg2 ThreadedConnectionPool."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import Any, Generator, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool
from psycopg2 import sql

from overseer.ingestion.config import GraphConfig
from overseer.ingestion.errors import GraphError, NotFoundError
from overseer.ingestion.graph.base import (
    BatchOperation,
    GraphService,
    Node,
    Relationship,
    check_label,
)
from overseer.ingestion.graph.queries import CLEAR_ALL_QUERY

logger = logging.getLogger("overseer.graph")

_NODE_RETURN = "RETURN id(n) AS id, label(n) AS label, properties(n) AS properties"
_REL_RETURN = (
    "RETURN id(r) AS id, type(r) AS type, id(a) AS start_id, id(b) AS end_id, "
    "properties(r) AS properties"
)
# graphid text form: "<label id>.<local id>"
_GRAPHID_RE = re.compile(r"^\d+\.\d+$")


def classify_error(exc: Exception, operation: str) -> GraphError:
    """Map a psycopg2 error onto a GraphError kind by SQLSTATE."""
    pgcode = getattr(exc, "pgcode", None) or ""
    if pgcode == "57014":
        kind = "timeout"
    elif pgcode.startswith("08"):
        kind = "connection"
    elif pgcode == "42601":
        kind = "syntax"
    elif pgcode.startswith("23"):
        kind = "constraint"
    elif pgcode.startswith("28"):
        kind = "auth"
    elif pgcode == "42501":
        kind = "permission"
    elif isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)):
        kind = "connection"
    else:
        kind = "query"
    message = str(exc).strip() or exc.__class__.__name__
    return GraphError(
        f"{operation} failed: {message}",
        kind=kind,
        details={"operation": operation, "pgcode": pgcode or None},
    )


def adapt_params(params: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Maps and lists travel as jsonb; scalars are inlined by psycopg2."""
    out: dict[str, Any] = {}
    for key, value in (params or {}).items():
        if isinstance(value, (dict, list)):
            out[key] = psycopg2.extras.Json(value)
        else:
            out[key] = value
    return out


class AgensGraphService(GraphService):
    """GraphService over AgensGraph.

    Each call borrows a pooled connection, sets ``graph_path`` and a
    ``statement_timeout`` for its transaction, and returns it to the pool on
    every exit path.
    """

    PROVIDER_NAME = "agensgraph"

    def __init__(self, config: GraphConfig) -> None:
        self._config = config
        self._pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None

    def connect(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self._config.min_connections,
                maxconn=self._config.max_connections,
                dsn=self._config.url,
            )
        except psycopg2.Error as exc:
            raise classify_error(exc, "connect") from exc
        self._ensure_graph()
        logger.info(
            "Connected to AgensGraph graph %s", self._config.graph_name,
            extra={"operation": "connect"},
        )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    def _ensure_graph(self) -> None:
        with self._transaction(operation="create_graph", set_path=False) as cur:
            cur.execute(
                sql.SQL("CREATE GRAPH IF NOT EXISTS {}").format(
                    sql.Identifier(self._config.graph_name)
                )
            )

    @contextmanager
    def _transaction(
        self,
        operation: str,
        readonly: bool = False,
        set_path: bool = True,
    ) -> Generator:
        """Yield a cursor inside a commit/rollback transaction."""
        if self._pool is None:
            raise GraphError(
                "Graph service is not connected", kind="not_initialized"
            )
        pool = self._pool
        try:
            conn = pool.getconn()
        except psycopg2.Error as exc:
            raise classify_error(exc, operation) from exc
        try:
            try:
                with conn.cursor() as cur:
                    if readonly:
                        cur.execute("SET TRANSACTION READ ONLY")
                    if set_path:
                        cur.execute(
                            sql.SQL("SET graph_path = {}").format(
                                sql.Identifier(self._config.graph_name)
                            )
                        )
                    if self._config.query_timeout_s:
                        cur.execute(
                            "SET LOCAL statement_timeout = %s",
                            (int(self._config.query_timeout_s * 1000),),
                        )
                    yield cur
                conn.commit()
            except psycopg2.Error as exc:
                conn.rollback()
                raise classify_error(exc, operation) from exc
            except Exception:
                conn.rollback()
                raise
        finally:
            pool.putconn(conn)

    @staticmethod
    def _rows(cur) -> list[dict[str, Any]]:
        if cur.description is None:
            return []
        cols = [d[0] for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]

    def health(self) -> dict[str, Any]:
        with self._transaction(operation="health", readonly=True) as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        return {
            "status": "healthy",
            "provider": self.PROVIDER_NAME,
            "graph": self._config.graph_name,
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _run(
        self,
        query: str,
        params: Optional[dict[str, Any]],
        operation: str,
        readonly: bool = False,
    ) -> list[dict[str, Any]]:
        with self._transaction(operation=operation, readonly=readonly) as cur:
            cur.execute(query, adapt_params(params))
            return self._rows(cur)

    def execute_query(self, query, params=None):
        return self._run(query, params, "execute_query")

    def execute_read_query(self, query, params=None):
        return self._run(query, params, "execute_read_query", readonly=True)

    def execute_write_query(self, query, params=None):
        return self._run(query, params, "execute_write_query")

    def execute_batch(self, operations: list[BatchOperation]) -> None:
        if not operations:
            return
        current = ""
        try:
            with self._transaction(operation="execute_batch") as cur:
                for idx, op in enumerate(operations):
                    current = f"{op.type}[{idx}]"
                    cur.execute(op.query, adapt_params(op.parameters))
        except GraphError as exc:
            exc.details["batch_operation"] = current
            exc.details["batch_size"] = len(operations)
            logger.error(
                "Batch rolled back at %s: %s", current, exc.message,
                extra={"operation": "execute_batch", "records": len(operations)},
            )
            raise
        logger.debug(
            "Committed batch of %d operations", len(operations),
            extra={"operation": "execute_batch", "records": len(operations)},
        )

    def clear_all(self) -> None:
        self._run(CLEAR_ALL_QUERY, None, "clear_all")
        logger.warning("Cleared every node and relationship", extra={"operation": "clear_all"})

    # ------------------------------------------------------------------
    # Node / relationship CRUD
    # ------------------------------------------------------------------

    @staticmethod
    def _node(row: dict[str, Any]) -> Node:
        return Node(id=str(row["id"]), label=row["label"], properties=row["properties"] or {})

    @staticmethod
    def _relationship(row: dict[str, Any]) -> Relationship:
        return Relationship(
            id=str(row["id"]),
            type=row["type"],
            start_id=str(row["start_id"]),
            end_id=str(row["end_id"]),
            properties=row["properties"] or {},
        )

    def create_node(self, label, properties):
        query = f'CREATE (n:"{check_label(label)}") SET n += %(props)s::jsonb {_NODE_RETURN}'
        rows = self._run(query, {"props": dict(properties)}, "create_node")
        return self._node(rows[0])

    @staticmethod
    def _is_graphid(value: Any) -> bool:
        return isinstance(value, str) and bool(_GRAPHID_RE.match(value))

    def get_node(self, node_id):
        if not self._is_graphid(node_id):
            raise NotFoundError(f"Node {node_id} not found")
        query = f"MATCH (n) WHERE id(n) = %(id)s::graphid {_NODE_RETURN}"
        rows = self._run(query, {"id": node_id}, "get_node", readonly=True)
        if not rows:
            raise NotFoundError(f"Node {node_id} not found")
        return self._node(rows[0])

    def update_node(self, node_id, properties):
        if not self._is_graphid(node_id):
            raise NotFoundError(f"Node {node_id} not found")
        query = (
            "MATCH (n) WHERE id(n) = %(id)s::graphid "
            f"SET n += %(props)s::jsonb {_NODE_RETURN}"
        )
        rows = self._run(query, {"id": node_id, "props": dict(properties)}, "update_node")
        if not rows:
            raise NotFoundError(f"Node {node_id} not found")
        return self._node(rows[0])

    def delete_node(self, node_id):
        if not self._is_graphid(node_id):
            return
        self._run(
            "MATCH (n) WHERE id(n) = %(id)s::graphid DETACH DELETE n",
            {"id": node_id},
            "delete_node",
        )

    def create_relationship(self, start_id, end_id, rel_type, properties=None):
        if not (self._is_graphid(start_id) and self._is_graphid(end_id)):
            raise NotFoundError(
                f"Cannot create {rel_type}: node {start_id} or {end_id} not found"
            )
        query = (
            "MATCH (a), (b) WHERE id(a) = %(start)s::graphid AND id(b) = %(end)s::graphid "
            f'CREATE (a)-[r:"{check_label(rel_type)}"]->(b) '
            f"SET r += %(props)s::jsonb {_REL_RETURN}"
        )
        rows = self._run(
            query,
            {"start": start_id, "end": end_id, "props": dict(properties or {})},
            "create_relationship",
        )
        if not rows:
            raise NotFoundError(
                f"Cannot create {rel_type}: node {start_id} or {end_id} not found"
            )
        return self._relationship(rows[0])

    def get_relationship(self, rel_id):
        if not self._is_graphid(rel_id):
            raise NotFoundError(f"Relationship {rel_id} not found")
        query = f"MATCH (a)-[r]->(b) WHERE id(r) = %(id)s::graphid {_REL_RETURN}"
        rows = self._run(query, {"id": rel_id}, "get_relationship", readonly=True)
        if not rows:
            raise NotFoundError(f"Relationship {rel_id} not found")
        return self._relationship(rows[0])

    def delete_relationship(self, rel_id):
        if not self._is_graphid(rel_id):
            return
        self._run(
            "MATCH ()-[r]->() WHERE id(r) = %(id)s::graphid DELETE r",
            {"id": rel_id},
            "delete_relationship",
        )
