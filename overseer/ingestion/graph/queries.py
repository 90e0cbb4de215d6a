"""Pure Cypher builders for AgensGraph.

Write builders return a BatchOperation; read builders return ``(query, params)``.
Nothing here touches the network or the database. Labels are quoted because
AgensGraph folds unquoted identifiers to lower case.

Parameters use psycopg2's ``%(name)s`` style. Maps are passed as jsonb and cast
explicitly (``%(props)s::jsonb``).
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

from overseer.ingestion.errors import ValidationError
from overseer.ingestion.graph.base import BatchOperation
from overseer.ingestion.models import Organization, Repository, Team, Topic, User

ORGANIZATION = "Organization"
REPOSITORY = "Repository"
TEAM = "Team"
TOPIC = "Topic"
USER = "User"
SCHEMA_MIGRATION = "SchemaMigration"

OWNS = "OWNS"
HAS_TOPIC = "HAS_TOPIC"
HAS_CODEOWNER = "HAS_CODEOWNER"
HAS_TEAM_OWNER = "HAS_TEAM_OWNER"

CLEAR_ALL_QUERY = "MATCH (n) DETACH DELETE n"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _props(**values: Any) -> dict[str, Any]:
    # Absent values are left out rather than written as null.
    return {k: v for k, v in values.items() if v is not None}


def _require(value: Optional[str], what: str) -> str:
    if not value or not str(value).strip():
        raise ValidationError(f"{what} must not be empty")
    return value


# ----------------------------------------------------------------------
# Writes
# ----------------------------------------------------------------------


def upsert_organization(org: Organization, scanned_at: Optional[str] = None) -> BatchOperation:
    _require(org.login, "organization login")
    query = (
        f'MERGE (o:"{ORGANIZATION}" {{login: %(login)s}}) '
        "SET o += %(props)s::jsonb"
    )
    return BatchOperation(
        type="upsert_organization",
        query=query,
        parameters={
            "login": org.login,
            "props": _props(
                name=org.name or org.login,
                description=org.description,
                email=org.email,
                url=org.url,
                github_id=org.github_id,
                created_at=org.created_at,
                updated_at=org.updated_at,
                last_scanned_at=scanned_at or _now(),
            ),
        },
    )


def upsert_repository(repo: Repository, scanned_at: Optional[str] = None) -> BatchOperation:
    _require(repo.full_name, "repository full_name")
    query = (
        f'MATCH (o:"{ORGANIZATION}" {{login: %(org)s}}) '
        f'MERGE (r:"{REPOSITORY}" {{full_name: %(full_name)s}}) '
        "SET r += %(props)s::jsonb "
        "WITH o, r "
        f'MERGE (o)-[:"{OWNS}"]->(r)'
    )
    return BatchOperation(
        type="upsert_repository",
        query=query,
        parameters={
            "org": repo.organization,
            "full_name": repo.full_name,
            "props": _props(
                name=repo.name,
                description=repo.description,
                private=repo.private,
                url=repo.url,
                github_id=repo.github_id,
                created_at=repo.created_at,
                updated_at=repo.updated_at,
                topics=list(repo.topics),
                organization=repo.organization,
                last_scanned_at=scanned_at or _now(),
            ),
        },
    )


def link_repository_topic(full_name: str, topic: str) -> BatchOperation:
    _require(topic, "topic name")
    query = (
        f'MATCH (r:"{REPOSITORY}" {{full_name: %(full_name)s}}) '
        f'MERGE (t:"{TOPIC}" {{name: %(topic)s}}) '
        "WITH r, t "
        f'MERGE (r)-[:"{HAS_TOPIC}"]->(t)'
    )
    return BatchOperation(
        type="link_repository_topic",
        query=query,
        parameters={"full_name": full_name, "topic": topic},
    )


def upsert_team(team: Team) -> BatchOperation:
    _require(team.slug, "team slug")
    query = (
        f'MATCH (o:"{ORGANIZATION}" {{login: %(org)s}}) '
        f'MERGE (t:"{TEAM}" {{full_slug: %(full_slug)s}}) '
        "SET t += %(props)s::jsonb "
        "WITH o, t "
        f'MERGE (o)-[:"{OWNS}"]->(t)'
    )
    return BatchOperation(
        type="upsert_team",
        query=query,
        parameters={
            "org": team.organization,
            "full_slug": team.full_slug,
            "props": _props(
                slug=team.slug,
                organization=team.organization,
                name=team.name or team.slug,
                description=team.description,
                url=team.url,
                github_id=team.github_id,
            ),
        },
    )


def upsert_topic(org_login: str, topic: Topic) -> BatchOperation:
    _require(topic.name, "topic name")
    query = (
        f'MATCH (o:"{ORGANIZATION}" {{login: %(org)s}}) '
        f'MERGE (t:"{TOPIC}" {{name: %(name)s}}) '
        "SET t += %(props)s::jsonb "
        "WITH o, t "
        f'MERGE (o)-[:"{HAS_TOPIC}"]->(t)'
    )
    return BatchOperation(
        type="upsert_topic",
        query=query,
        parameters={"org": org_login, "name": topic.name, "props": {"count": topic.count}},
    )


def upsert_code_owner(full_name: str, user: User, pattern: str, line: int) -> BatchOperation:
    """Merge the user and a HAS_CODEOWNER edge keyed on ``pattern``."""
    _require(pattern, "ownership pattern")
    _require(user.login, "user login")
    query = (
        f'MATCH (r:"{REPOSITORY}" {{full_name: %(full_name)s}}) '
        f'MERGE (u:"{USER}" {{login: %(login)s}}) '
        "SET u += %(props)s::jsonb "
        "WITH r, u "
        f'MERGE (r)-[e:"{HAS_CODEOWNER}" {{pattern: %(pattern)s}}]->(u) '
        "SET e.line = %(line)s"
    )
    return BatchOperation(
        type="upsert_code_owner",
        query=query,
        parameters={
            "full_name": full_name,
            "login": user.login,
            "props": _props(
                name=user.name, email=user.email, url=user.url, github_id=user.github_id
            ),
            "pattern": pattern,
            "line": line,
        },
    )


def upsert_team_owner(
    full_name: str, organization: str, slug: str, pattern: str, line: int
) -> BatchOperation:
    """Merge the team (by full slug) and a HAS_TEAM_OWNER edge keyed on ``pattern``."""
    _require(pattern, "ownership pattern")
    _require(slug, "team slug")
    query = (
        f'MATCH (r:"{REPOSITORY}" {{full_name: %(full_name)s}}) '
        f'MERGE (t:"{TEAM}" {{full_slug: %(full_slug)s}}) '
        "SET t += %(props)s::jsonb "
        "WITH r, t "
        f'MERGE (r)-[e:"{HAS_TEAM_OWNER}" {{pattern: %(pattern)s}}]->(t) '
        "SET e.line = %(line)s"
    )
    return BatchOperation(
        type="upsert_team_owner",
        query=query,
        parameters={
            "full_name": full_name,
            "full_slug": f"{organization}/{slug}",
            "props": {"slug": slug, "organization": organization},
            "pattern": pattern,
            "line": line,
        },
    )


# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------


def _node_branch(match: str, alias: str, node_type: str, key: str) -> str:
    return (
        f"{match} RETURN '{node_type}' AS type, {alias}.{key} AS key, "
        f"properties({alias}) AS props"
    )


def graph_nodes_query(org: str, use_topics: bool = False) -> tuple[str, dict[str, Any]]:
    """Every node reachable from the organisation, one row per node match.

    Rows may repeat; callers de-duplicate on ``(type, key)``.
    """
    _require(org, "organization login")
    o = f'(o:"{ORGANIZATION}" {{login: %(org)s}})'
    repos = f'{o}-[:"{OWNS}"]->(r:"{REPOSITORY}")'
    branches = [
        _node_branch(f"MATCH {o}", "o", "organization", "login"),
        _node_branch(f"MATCH {repos}", "r", "repository", "full_name"),
    ]
    if use_topics:
        branches.append(
            _node_branch(f'MATCH {o}-[:"{HAS_TOPIC}"]->(t:"{TOPIC}")', "t", "topic", "name")
        )
    else:
        branches.append(
            _node_branch(f'MATCH {o}-[:"{OWNS}"]->(t:"{TEAM}")', "t", "team", "full_slug")
        )
        branches.append(
            _node_branch(
                f'MATCH {repos}-[:"{HAS_TEAM_OWNER}"]->(t:"{TEAM}")', "t", "team", "full_slug"
            )
        )
    branches.append(
        _node_branch(f'MATCH {repos}-[:"{HAS_CODEOWNER}"]->(u:"{USER}")', "u", "user", "login")
    )
    return " UNION ALL ".join(branches), {"org": org}


def _edge_branch(
    match: str,
    rel_type: str,
    source: tuple[str, str, str],
    target: tuple[str, str, str],
) -> str:
    s_alias, s_type, s_key = source
    t_alias, t_type, t_key = target
    return (
        f"{match} RETURN '{rel_type}' AS type, "
        f"'{s_type}' AS source_type, {s_alias}.{s_key} AS source_key, "
        f"'{t_type}' AS target_type, {t_alias}.{t_key} AS target_key"
    )


def graph_edges_query(org: str, use_topics: bool = False) -> tuple[str, dict[str, Any]]:
    """Every relationship between the nodes ``graph_nodes_query`` returns."""
    _require(org, "organization login")
    o = f'(o:"{ORGANIZATION}" {{login: %(org)s}})'
    repos = f'{o}-[:"{OWNS}"]->(r:"{REPOSITORY}")'
    org_end = ("o", "organization", "login")
    repo_end = ("r", "repository", "full_name")
    branches = [_edge_branch(f"MATCH {repos}", OWNS, org_end, repo_end)]
    if use_topics:
        topic_end = ("t", "topic", "name")
        branches.append(
            _edge_branch(f'MATCH {o}-[:"{HAS_TOPIC}"]->(t:"{TOPIC}")', HAS_TOPIC, org_end, topic_end)
        )
        branches.append(
            _edge_branch(f'MATCH {repos}-[:"{HAS_TOPIC}"]->(t:"{TOPIC}")', HAS_TOPIC, repo_end, topic_end)
        )
    else:
        team_end = ("t", "team", "full_slug")
        branches.append(
            _edge_branch(f'MATCH {o}-[:"{OWNS}"]->(t:"{TEAM}")', OWNS, org_end, team_end)
        )
        branches.append(
            _edge_branch(
                f'MATCH {repos}-[:"{HAS_TEAM_OWNER}"]->(t:"{TEAM}")',
                HAS_TEAM_OWNER, repo_end, team_end,
            )
        )
    branches.append(
        _edge_branch(
            f'MATCH {repos}-[:"{HAS_CODEOWNER}"]->(u:"{USER}")',
            HAS_CODEOWNER, repo_end, ("u", "user", "login"),
        )
    )
    return " UNION ALL ".join(branches), {"org": org}


def stats_query(org: str) -> tuple[str, dict[str, Any]]:
    """Raw counts for an organisation; coverage is derived by ``coverage_percent``.

    Returns no rows when the organisation is unknown.
    """
    _require(org, "organization login")
    query = (
        f'MATCH (o:"{ORGANIZATION}" {{login: %(org)s}}) '
        f'OPTIONAL MATCH (o)-[:"{OWNS}"]->(r:"{REPOSITORY}") '
        "WITH o, count(DISTINCT r) AS total_repositories "
        f'OPTIONAL MATCH (o)-[:"{OWNS}"]->(t:"{TEAM}") '
        "WITH o, total_repositories, count(DISTINCT t) AS total_teams "
        f'OPTIONAL MATCH (o)-[:"{HAS_TOPIC}"]->(tp:"{TOPIC}") '
        "WITH o, total_repositories, total_teams, count(DISTINCT tp) AS total_topics "
        f'OPTIONAL MATCH (o)-[:"{OWNS}"]->(:"{REPOSITORY}")-[:"{HAS_CODEOWNER}"]->(u:"{USER}") '
        "WITH o, total_repositories, total_teams, total_topics, "
        "count(DISTINCT u) AS total_users "
        f'OPTIONAL MATCH (o)-[:"{OWNS}"]->(cr:"{REPOSITORY}")-[c]->() '
        f"WHERE type(c) IN ['{HAS_CODEOWNER}', '{HAS_TEAM_OWNER}'] "
        "RETURN o.login AS organization, o.last_scanned_at AS last_scan_time, "
        "total_repositories, total_teams, total_topics, total_users, "
        "count(DISTINCT cr) AS repos_with_codeowners"
    )
    return query, {"org": org}


def repositories_by_owner_query(owner: str) -> tuple[str, dict[str, Any]]:
    """Repositories a user (``alice``/``@alice``) or team (``@org/team``) owns."""
    _require(owner, "owner")
    token = owner.strip()
    if token.startswith("@") and "/" in token:
        query = (
            f'MATCH (r:"{REPOSITORY}")-[e:"{HAS_TEAM_OWNER}"]->(t:"{TEAM}" {{full_slug: %(key)s}}) '
            "RETURN r.full_name AS repository, e.pattern AS pattern, e.line AS line "
            "ORDER BY repository, line"
        )
        return query, {"key": token[1:]}
    query = (
        f'MATCH (r:"{REPOSITORY}")-[e:"{HAS_CODEOWNER}"]->(u:"{USER}" {{login: %(key)s}}) '
        "RETURN r.full_name AS repository, e.pattern AS pattern, e.line AS line "
        "ORDER BY repository, line"
    )
    return query, {"key": token.lstrip("@")}


def owners_of_repository_query(full_name: str) -> tuple[str, dict[str, Any]]:
    _require(full_name, "repository full_name")
    query = (
        f'MATCH (r:"{REPOSITORY}" {{full_name: %(full_name)s}})-[e:"{HAS_CODEOWNER}"]->(u:"{USER}") '
        "RETURN 'user' AS kind, u.login AS owner, e.pattern AS pattern, e.line AS line "
        "UNION ALL "
        f'MATCH (r:"{REPOSITORY}" {{full_name: %(full_name)s}})-[e:"{HAS_TEAM_OWNER}"]->(t:"{TEAM}") '
        "RETURN 'team' AS kind, t.full_slug AS owner, e.pattern AS pattern, e.line AS line"
    )
    return query, {"full_name": full_name}


def coverage_percent(covered: int, total: int) -> str:
    """``round(100 * covered / total)`` as ``"N%"``; ``"0%"`` when total is 0."""
    if total <= 0:
        return "0%"
    return f"{math.floor(100 * covered / total + 0.5)}%"
