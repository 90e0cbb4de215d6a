"""Shared fixtures: a fake HTTP session for GitHub and an in-memory graph."""

from __future__ import annotations

import base64
import copy
import json
import threading
from typing import Any, Callable, Optional

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from overseer.ingestion.config import GitHubConfig, ScanConfig
from overseer.ingestion.errors import GraphError
from overseer.ingestion.graph import migrations, queries
from overseer.ingestion.graph.base import BatchOperation, GraphService
from overseer.ingestion.providers.github_org import GitHubClient

API = "https://api.github.test"


# ----------------------------------------------------------------------
# HTTP
# ----------------------------------------------------------------------


def make_response(
    status: int = 200,
    payload: Any = None,
    headers: Optional[dict[str, str]] = None,
    text: Optional[str] = None,
) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    if text is not None:
        resp._content = text.encode("utf-8")
    elif payload is not None:
        resp._content = json.dumps(payload).encode("utf-8")
    else:
        resp._content = b""
    resp.headers = CaseInsensitiveDict(headers or {})
    resp.encoding = "utf-8"
    return resp


class FakeSession:
    """Routes GET requests by exact URL. Unknown URLs answer 404."""

    def __init__(self, routes: Optional[dict[str, Any]] = None) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, Optional[dict]]] = []
        self._lock = threading.Lock()

    def get(self, url, params=None, timeout=None):
        with self._lock:
            self.calls.append((url, dict(params) if params else None))
        route = self.routes.get(url)
        if route is None:
            return make_response(404, {"message": "Not Found"})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(url, params)
        return route

    def urls(self) -> list[str]:
        return [u for u, _ in self.calls]


def org_payload(login: str = "acme") -> dict:
    return {
        "login": login,
        "id": 1000,
        "name": login.title(),
        "description": f"{login} org",
        "email": None,
        "html_url": f"https://github.com/{login}",
        "created_at": "2020-01-01T00:00:00Z",
        "updated_at": "2024-01-01T00:00:00Z",
    }


def repo_payload(org: str, name: str, topics=(), idx: int = 1) -> dict:
    return {
        "id": idx,
        "name": name,
        "full_name": f"{org}/{name}",
        "private": False,
        "description": f"{name} repo",
        "html_url": f"https://github.com/{org}/{name}",
        "created_at": "2021-01-01T00:00:00Z",
        "updated_at": "2024-01-01T00:00:00Z",
        "topics": list(topics),
    }


def team_payload(slug: str, idx: int = 1) -> dict:
    return {
        "id": idx,
        "slug": slug,
        "name": slug.title(),
        "description": None,
        "html_url": f"https://github.com/orgs/acme/teams/{slug}",
    }


def contents_payload(text: str) -> dict:
    return {
        "type": "file",
        "encoding": "base64",
        "content": base64.encodebytes(text.encode("utf-8")).decode("ascii"),
    }


CODEOWNERS_TEXT = """\
# Ownership
*       @alice @acme/platform

/docs/  @alice
"""


def acme_routes() -> dict[str, Any]:
    """acme: repo ``api`` has .github/CODEOWNERS, repo ``web`` has none."""
    return {
        f"{API}/orgs/acme": make_response(200, org_payload("acme")),
        f"{API}/orgs/acme/repos": make_response(200, [
            repo_payload("acme", "api", topics=["go", "backend"], idx=1),
            repo_payload("acme", "web", topics=["go"], idx=2),
        ]),
        f"{API}/orgs/acme/teams": make_response(200, [team_payload("platform", 7)]),
        f"{API}/repos/acme/api/contents/.github/CODEOWNERS": make_response(
            200, contents_payload(CODEOWNERS_TEXT)
        ),
    }


@pytest.fixture
def github_config() -> GitHubConfig:
    return GitHubConfig(token="test-token", api_base_url=API, timeout_s=5.0)


@pytest.fixture
def scan_config() -> ScanConfig:
    return ScanConfig(max_repos=100, max_teams=100, ownership_workers=2, timeout_s=60.0)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession(acme_routes())


@pytest.fixture
def client(github_config, session) -> GitHubClient:
    return GitHubClient(github_config, session=session)


# ----------------------------------------------------------------------
# Graph
# ----------------------------------------------------------------------

_TYPE_OF_LABEL = {
    queries.ORGANIZATION: "organization",
    queries.REPOSITORY: "repository",
    queries.TEAM: "team",
    queries.TOPIC: "topic",
    queries.USER: "user",
}
_KEY_OF_LABEL = {
    queries.ORGANIZATION: "login",
    queries.REPOSITORY: "full_name",
    queries.TEAM: "full_slug",
    queries.TOPIC: "name",
    queries.USER: "login",
}


class FakeGraphService(GraphService):
    """In-memory stand-in that interprets builder operations by ``type``.

    Writes follow MERGE/MATCH semantics keyed on business keys; reads are
    answered by recognising the exact query text the builders produce.
    """

    PROVIDER_NAME = "fake"

    def __init__(self) -> None:
        self.nodes: dict[tuple[str, str], dict] = {}
        self.edges: dict[tuple, dict] = {}
        self.schema_version: Optional[int] = None
        self.ddl: list[str] = []
        self.batches: list[list[BatchOperation]] = []
        self.fail_when: Optional[Callable[[BatchOperation], bool]] = None
        self.connected = False

    # -- helpers -------------------------------------------------------

    def count_nodes(self, label: str) -> int:
        return sum(1 for (lbl, _) in self.nodes if lbl == label)

    def count_edges(self, rel_type: str) -> int:
        return sum(1 for key in self.edges if key[0] == rel_type)

    def _merge_node(self, label: str, key: str, props: Optional[dict] = None) -> tuple[str, str]:
        node = self.nodes.setdefault((label, key), {_KEY_OF_LABEL[label]: key})
        node.update(props or {})
        return (label, key)

    def _merge_edge(self, rel_type, src, dst, pattern=None, props=None) -> None:
        edge = self.edges.setdefault((rel_type, src, dst, pattern), {})
        if pattern is not None:
            edge["pattern"] = pattern
        edge.update(props or {})

    def _apply(self, op: BatchOperation) -> None:
        p = op.parameters
        org = (queries.ORGANIZATION, p.get("org"))
        repo = (queries.REPOSITORY, p.get("full_name"))
        if op.type == "upsert_organization":
            self._merge_node(queries.ORGANIZATION, p["login"], p["props"])
        elif op.type == "upsert_repository":
            if org in self.nodes:
                r = self._merge_node(queries.REPOSITORY, p["full_name"], p["props"])
                self._merge_edge(queries.OWNS, org, r)
        elif op.type == "link_repository_topic":
            if repo in self.nodes:
                t = self._merge_node(queries.TOPIC, p["topic"])
                self._merge_edge(queries.HAS_TOPIC, repo, t)
        elif op.type == "upsert_team":
            if org in self.nodes:
                t = self._merge_node(queries.TEAM, p["full_slug"], p["props"])
                self._merge_edge(queries.OWNS, org, t)
        elif op.type == "upsert_topic":
            if org in self.nodes:
                t = self._merge_node(queries.TOPIC, p["name"], p["props"])
                self._merge_edge(queries.HAS_TOPIC, org, t)
        elif op.type == "upsert_code_owner":
            if repo in self.nodes:
                u = self._merge_node(queries.USER, p["login"], p["props"])
                self._merge_edge(queries.HAS_CODEOWNER, repo, u, p["pattern"], {"line": p["line"]})
        elif op.type == "upsert_team_owner":
            if repo in self.nodes:
                t = self._merge_node(queries.TEAM, p["full_slug"], p["props"])
                self._merge_edge(queries.HAS_TEAM_OWNER, repo, t, p["pattern"], {"line": p["line"]})
        elif op.type == "migration_statement":
            self.ddl.append(op.query)
        elif op.type == "set_schema_version":
            self.schema_version = p["version"]
        else:
            raise AssertionError(f"unexpected operation {op.type}")

    # -- GraphService --------------------------------------------------

    def connect(self):
        self.connected = True

    def close(self):
        self.connected = False

    def health(self):
        return {"status": "healthy", "provider": self.PROVIDER_NAME}

    def execute_batch(self, operations):
        snapshot = copy.deepcopy((self.nodes, self.edges, self.schema_version, self.ddl))
        try:
            for op in operations:
                if self.fail_when and self.fail_when(op):
                    raise GraphError(f"injected failure on {op.type}", kind="constraint")
                self._apply(op)
        except GraphError:
            self.nodes, self.edges, self.schema_version, self.ddl = snapshot
            raise
        self.batches.append(list(operations))

    def execute_write_query(self, query, params=None):
        if query == migrations.ENSURE_TRACKING_LABEL:
            return []
        raise AssertionError(f"unexpected write query {query}")

    def execute_query(self, query, params=None):
        return self.execute_write_query(query, params)

    def execute_read_query(self, query, params=None):
        params = params or {}
        if query == migrations.READ_VERSION_QUERY:
            return [] if self.schema_version is None else [{"version": self.schema_version}]
        org = params.get("org")
        for use_topics in (False, True):
            if org and query == queries.graph_nodes_query(org, use_topics)[0]:
                return self._graph_nodes(org, use_topics)
            if org and query == queries.graph_edges_query(org, use_topics)[0]:
                return self._graph_edges(org, use_topics)
        if org and query == queries.stats_query(org)[0]:
            return self._stats(org)
        if query == queries.repositories_by_owner_query("@x/y")[0]:
            return self._owned_by(queries.HAS_TEAM_OWNER, (queries.TEAM, params["key"]))
        if query == queries.repositories_by_owner_query("x")[0]:
            return self._owned_by(queries.HAS_CODEOWNER, (queries.USER, params["key"]))
        if "full_name" in params and query == queries.owners_of_repository_query(params["full_name"])[0]:
            return self._owners_of((queries.REPOSITORY, params["full_name"]))
        raise AssertionError(f"unexpected read query {query}")

    def clear_all(self):
        self.nodes.clear()
        self.edges.clear()
        self.schema_version = None

    def create_node(self, label, properties):
        raise NotImplementedError

    def get_node(self, node_id):
        raise NotImplementedError

    def update_node(self, node_id, properties):
        raise NotImplementedError

    def delete_node(self, node_id):
        raise NotImplementedError

    def create_relationship(self, start_id, end_id, rel_type, properties=None):
        raise NotImplementedError

    def get_relationship(self, rel_id):
        raise NotImplementedError

    def delete_relationship(self, rel_id):
        raise NotImplementedError

    # -- read emulation ------------------------------------------------

    def _out(self, src, rel_type, label=None):
        return [
            key[2] for key in self.edges
            if key[0] == rel_type and key[1] == src and (label is None or key[2][0] == label)
        ]

    def _node_row(self, node):
        return {"type": _TYPE_OF_LABEL[node[0]], "key": node[1], "props": dict(self.nodes[node])}

    def _graph_nodes(self, org, use_topics):
        o = (queries.ORGANIZATION, org)
        if o not in self.nodes:
            return []
        repos = self._out(o, queries.OWNS, queries.REPOSITORY)
        rows = [self._node_row(o)] + [self._node_row(r) for r in repos]
        if use_topics:
            rows += [self._node_row(t) for t in self._out(o, queries.HAS_TOPIC)]
        else:
            rows += [self._node_row(t) for t in self._out(o, queries.OWNS, queries.TEAM)]
            rows += [self._node_row(t) for r in repos for t in self._out(r, queries.HAS_TEAM_OWNER)]
        rows += [self._node_row(u) for r in repos for u in self._out(r, queries.HAS_CODEOWNER)]
        return rows

    def _graph_edges(self, org, use_topics):
        o = (queries.ORGANIZATION, org)
        repos = self._out(o, queries.OWNS, queries.REPOSITORY)

        def row(rel, src, dst):
            return {
                "type": rel,
                "source_type": _TYPE_OF_LABEL[src[0]], "source_key": src[1],
                "target_type": _TYPE_OF_LABEL[dst[0]], "target_key": dst[1],
            }

        rows = [row(queries.OWNS, o, r) for r in repos]
        if use_topics:
            rows += [row(queries.HAS_TOPIC, o, t) for t in self._out(o, queries.HAS_TOPIC)]
            rows += [row(queries.HAS_TOPIC, r, t) for r in repos for t in self._out(r, queries.HAS_TOPIC)]
        else:
            rows += [row(queries.OWNS, o, t) for t in self._out(o, queries.OWNS, queries.TEAM)]
            rows += [
                row(queries.HAS_TEAM_OWNER, r, t)
                for r in repos for t in self._out(r, queries.HAS_TEAM_OWNER)
            ]
        rows += [
            row(queries.HAS_CODEOWNER, r, u)
            for r in repos for u in self._out(r, queries.HAS_CODEOWNER)
        ]
        return rows

    def _stats(self, org):
        o = (queries.ORGANIZATION, org)
        if o not in self.nodes:
            return []
        repos = self._out(o, queries.OWNS, queries.REPOSITORY)
        users = {u for r in repos for u in self._out(r, queries.HAS_CODEOWNER)}
        covered = [
            r for r in repos
            if self._out(r, queries.HAS_CODEOWNER) or self._out(r, queries.HAS_TEAM_OWNER)
        ]
        return [{
            "organization": org,
            "last_scan_time": self.nodes[o].get("last_scanned_at"),
            "total_repositories": len(repos),
            "total_teams": len(self._out(o, queries.OWNS, queries.TEAM)),
            "total_topics": len(self._out(o, queries.HAS_TOPIC)),
            "total_users": len(users),
            "repos_with_codeowners": len(covered),
        }]

    def _owned_by(self, rel_type, owner):
        rows = [
            {"repository": key[1][1], "pattern": edge["pattern"], "line": edge["line"]}
            for key, edge in self.edges.items()
            if key[0] == rel_type and key[2] == owner
        ]
        return sorted(rows, key=lambda r: (r["repository"], r["line"]))

    def _owners_of(self, repo):
        rows = []
        for key, edge in self.edges.items():
            if key[1] != repo:
                continue
            if key[0] == queries.HAS_CODEOWNER:
                rows.append({"kind": "user", "owner": key[2][1], "pattern": edge["pattern"], "line": edge["line"]})
            elif key[0] == queries.HAS_TEAM_OWNER:
                rows.append({"kind": "team", "owner": key[2][1], "pattern": edge["pattern"], "line": edge["line"]})
        return rows


@pytest.fixture
def graph() -> FakeGraphService:
    return FakeGraphService()
