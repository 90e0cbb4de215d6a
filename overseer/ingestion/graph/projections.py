"""Read-side projections: visualisation graph, statistics, who-owns-what."""

from __future__ import annotations

import logging
from typing import Any

from overseer.ingestion.errors import NotFoundError
from overseer.ingestion.graph import queries
from overseer.ingestion.graph.base import GraphService

logger = logging.getLogger("overseer.graph")

X_SPACING = 200
# Vertical band per node type.
LAYOUT_Y = {
    "organization": 0,
    "repository": 200,
    "team": 400,
    "topic": 500,
    "user": 600,
}

EDGE_KINDS = {
    queries.OWNS: ("owns", "owns"),
    queries.HAS_TOPIC: ("has_topic", "has topic"),
    queries.HAS_CODEOWNER: ("codeowner", "code owner"),
    queries.HAS_TEAM_OWNER: ("team_owner", "team owner"),
}


def node_id(node_type: str, key: str) -> str:
    return f"{node_type}:{key}"


def _node_label(node_type: str, key: str, props: dict[str, Any]) -> str:
    if node_type == "organization":
        return props.get("name") or key
    if node_type == "repository":
        return props.get("name") or key
    if node_type == "team":
        return props.get("name") or props.get("slug") or key
    return key


def get_graph(service: GraphService, org: str, use_topics: bool = False) -> dict[str, list]:
    """Nodes and edges for one organisation, laid out in horizontal bands.

    Raises NotFoundError when the organisation has never been scanned.
    """
    nodes_q, nodes_p = queries.graph_nodes_query(org, use_topics)
    edges_q, edges_p = queries.graph_edges_query(org, use_topics)
    node_rows = service.execute_read_query(nodes_q, nodes_p)
    if not any(r["type"] == "organization" for r in node_rows):
        raise NotFoundError(f"Organization {org} not found", details={"organization": org})
    edge_rows = service.execute_read_query(edges_q, edges_p)

    nodes: list[dict[str, Any]] = []
    seen: set[str] = set()
    per_type: dict[str, int] = {}
    for row in node_rows:
        nid = node_id(row["type"], row["key"])
        if nid in seen:
            continue
        seen.add(nid)
        props = dict(row.get("props") or {})
        idx = per_type.get(row["type"], 0)
        per_type[row["type"]] = idx + 1
        nodes.append({
            "id": nid,
            "type": row["type"],
            "label": _node_label(row["type"], row["key"], props),
            "data": props,
            "position": {"x": idx * X_SPACING, "y": LAYOUT_Y.get(row["type"], 0)},
        })

    edges: list[dict[str, Any]] = []
    seen_edges: set[str] = set()
    for row in edge_rows:
        kind, label = EDGE_KINDS[row["type"]]
        source = node_id(row["source_type"], row["source_key"])
        target = node_id(row["target_type"], row["target_key"])
        eid = f"{kind}-{source}-{target}"
        if eid in seen_edges:
            continue
        seen_edges.add(eid)
        edges.append({
            "id": eid,
            "source": source,
            "target": target,
            "type": kind,
            "label": label,
        })

    logger.debug(
        "Built graph with %d nodes and %d edges", len(nodes), len(edges),
        extra={"organization": org, "operation": "get_graph"},
    )
    return {"nodes": nodes, "edges": edges}


def get_stats(service: GraphService, org: str) -> dict[str, Any]:
    query, params = queries.stats_query(org)
    rows = service.execute_read_query(query, params)
    if not rows:
        raise NotFoundError(f"Organization {org} not found", details={"organization": org})
    row = rows[0]
    total = int(row.get("total_repositories") or 0)
    covered = int(row.get("repos_with_codeowners") or 0)
    return {
        "organization": row.get("organization") or org,
        "total_repositories": total,
        "total_teams": int(row.get("total_teams") or 0),
        "total_topics": int(row.get("total_topics") or 0),
        "total_users": int(row.get("total_users") or 0),
        "total_codeowners": covered,
        "codeowner_coverage": queries.coverage_percent(covered, total),
        "last_scan_time": row.get("last_scan_time"),
    }


def repositories_owned_by(service: GraphService, owner: str) -> list[dict[str, Any]]:
    """Repositories (with matching pattern and line) an owner token owns."""
    query, params = queries.repositories_by_owner_query(owner)
    return service.execute_read_query(query, params)


def owners_of_repository(service: GraphService, full_name: str) -> list[dict[str, Any]]:
    query, params = queries.owners_of_repository_query(full_name)
    rows = service.execute_read_query(query, params)
    return sorted(rows, key=lambda r: (r.get("line") or 0, r["kind"], r["owner"]))
