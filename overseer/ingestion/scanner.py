"""Scan orchestration: fetch an organisation from GitHub and persist it as a graph."""

from __future__ import annotations

import logging
import time
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from overseer.ingestion.codeowners import unique_owners
from overseer.ingestion.config import ScanConfig
from overseer.ingestion.context import ScanContext
from overseer.ingestion.errors import (
    GraphError,
    IngestionError,
    ScanCancelledError,
    ValidationError,
)
from overseer.ingestion.graph import queries
from overseer.ingestion.graph.base import BatchOperation, GraphService
from overseer.ingestion.models import (
    Organization,
    OwnershipFile,
    Repository,
    Team,
    Topic,
    User,
)
from overseer.ingestion.providers.github_org import GitHubClient, derive_topics

logger = logging.getLogger("overseer.scan")


def _has_owners(of: OwnershipFile) -> bool:
    # Matches what get_stats counts: repositories with at least one ownership edge.
    return any(ref.is_valid for rule in of.rules for ref in rule.owner_refs())


@dataclass(frozen=True)
class ScanRequest:
    organization: str
    max_repos: Optional[int] = None
    max_teams: Optional[int] = None
    use_topics: Optional[bool] = None


@dataclass
class ScanSummary:
    total_repos: int = 0
    repos_with_codeowners: int = 0
    total_teams: int = 0
    total_topics: int = 0
    unique_owners: list[str] = field(default_factory=list)
    api_calls_used: int = 0
    processing_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScanResult:
    organization: Organization
    repositories: list[Repository]
    teams: list[Team]
    topics: list[Topic]
    ownership: dict[str, OwnershipFile]
    summary: ScanSummary
    # Non-fatal, per-repository problems
    notes: list[dict[str, Any]] = field(default_factory=list)

    def to_data(self) -> dict[str, Any]:
        return {
            "organization": asdict(self.organization),
            "repositories": [asdict(r) for r in self.repositories],
            "teams": [asdict(t) for t in self.teams],
            "topics": [asdict(t) for t in self.topics],
            "codeowners": {
                name: asdict(of) for name, of in sorted(self.ownership.items())
            },
        }


class ScanOrchestrator:
    """Runs one organisation scan end to end.

    Fetches are fatal except ownership lookups, which degrade to notes per
    repository. Writes go out one transaction per entity type, in dependency
    order, so a failure leaves earlier entity types stored.
    """

    def __init__(
        self,
        client: GitHubClient,
        service: GraphService,
        config: ScanConfig,
        web_url: str = "https://github.com",
    ) -> None:
        self._client = client
        self._service = service
        self._config = config
        self._web_url = web_url

    def scan(
        self,
        org: str,
        max_repos: int,
        max_teams: int,
        use_topics: bool = False,
        ctx: Optional[ScanContext] = None,
    ) -> ScanResult:
        if not org or not org.strip():
            raise ValidationError("organization must not be empty")
        if max_repos <= 0:
            raise ValidationError("max_repos must be positive", details={"max_repos": max_repos})
        if max_teams <= 0:
            raise ValidationError("max_teams must be positive", details={"max_teams": max_teams})

        ctx = ctx or ScanContext(timeout_s=self._config.timeout_s)
        started = time.monotonic()
        log_extra = {"organization": org}
        logger.info("Scan started", extra={**log_extra, "operation": "scan"})

        organization = self._client.fetch_organization(org, ctx)
        repositories = self._client.fetch_repositories(org, max_repos, ctx)
        if use_topics:
            teams: list[Team] = []
            topics = derive_topics(repositories)
        else:
            teams = self._client.fetch_teams(org, max_teams, ctx)
            topics = []

        notes: list[dict[str, Any]] = []
        ownership = self._fetch_ownership(repositories, ctx, notes)
        ctx.check()

        self._persist(organization, repositories, teams, topics, ownership, use_topics, notes)

        rules = [rule for of in ownership.values() for rule in of.rules]
        summary = ScanSummary(
            total_repos=len(repositories),
            repos_with_codeowners=sum(1 for of in ownership.values() if _has_owners(of)),
            total_teams=len(teams),
            total_topics=len(topics),
            unique_owners=sorted(unique_owners(rules)),
            api_calls_used=ctx.api_calls,
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(
            "Scan complete: %d repositories, %d with CODEOWNERS",
            summary.total_repos, summary.repos_with_codeowners,
            extra={
                **log_extra,
                "operation": "scan",
                "records": summary.total_repos,
                "api_calls": summary.api_calls_used,
                "duration_ms": summary.processing_time_ms,
            },
        )
        return ScanResult(
            organization=organization,
            repositories=repositories,
            teams=teams,
            topics=topics,
            ownership=ownership,
            summary=summary,
            notes=sorted(notes, key=lambda n: n.get("repository") or ""),
        )

    # ------------------------------------------------------------------
    # Ownership discovery
    # ------------------------------------------------------------------

    def _fetch_ownership(
        self,
        repositories: list[Repository],
        ctx: ScanContext,
        notes: list[dict[str, Any]],
    ) -> dict[str, OwnershipFile]:
        """Look up CODEOWNERS for every repository on a bounded worker pool."""
        results: dict[str, OwnershipFile] = {}
        if not repositories:
            return results

        cancelled: Optional[ScanCancelledError] = None
        with ThreadPoolExecutor(
            max_workers=self._config.ownership_workers,
            thread_name_prefix="codeowners",
        ) as pool:
            futures = {}
            for repo in repositories:
                if ctx.cancelled:
                    break
                futures[pool.submit(self._client.fetch_ownership, repo.full_name, ctx)] = repo

            for future in as_completed(futures):
                repo = futures[future]
                try:
                    results[repo.full_name] = future.result()
                except CancelledError:
                    continue
                except ScanCancelledError as exc:
                    cancelled = cancelled or exc
                    for pending in futures:
                        pending.cancel()
                except IngestionError as exc:
                    logger.warning(
                        "CODEOWNERS lookup failed: %s", exc.message,
                        extra={"repository": repo.full_name, "operation": "fetch_ownership"},
                    )
                    notes.append({
                        **exc.to_dict(),
                        "recoverable": True,
                        "repository": repo.full_name,
                    })

        if cancelled is not None:
            raise cancelled
        return results

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _write(self, entity: str, operations: list[BatchOperation], org: str) -> None:
        if not operations:
            return
        started = time.monotonic()
        try:
            self._service.execute_batch(operations)
        except GraphError as exc:
            logger.error(
                "Writing %s failed: %s", entity, exc.message,
                extra={"organization": org, "operation": f"write_{entity}"},
            )
            raise
        logger.debug(
            "Wrote %s", entity,
            extra={
                "organization": org,
                "operation": f"write_{entity}",
                "records": len(operations),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )

    def _ownership_operations(
        self,
        repositories: list[Repository],
        ownership: dict[str, OwnershipFile],
        notes: list[dict[str, Any]],
    ) -> list[BatchOperation]:
        ops: list[BatchOperation] = []
        for repo in repositories:
            of = ownership.get(repo.full_name)
            if of is None:
                continue
            for rule in of.rules:
                for ref in rule.owner_refs():
                    if not ref.is_valid:
                        notes.append({
                            "code": "INVALID_OWNER",
                            "message": f"Ignoring malformed owner {ref.token!r} on line {rule.line}",
                            "recoverable": True,
                            "retryable": False,
                            "repository": repo.full_name,
                        })
                    elif ref.is_team:
                        ops.append(queries.upsert_team_owner(
                            repo.full_name, ref.org, ref.name, rule.pattern, rule.line
                        ))
                    else:
                        user = User.synthesize(ref.name, self._web_url)
                        ops.append(queries.upsert_code_owner(
                            repo.full_name, user, rule.pattern, rule.line
                        ))
        return ops

    def _persist(
        self,
        organization: Organization,
        repositories: list[Repository],
        teams: list[Team],
        topics: list[Topic],
        ownership: dict[str, OwnershipFile],
        use_topics: bool,
        notes: list[dict[str, Any]],
    ) -> None:
        org = organization.login
        scanned_at = datetime.now(timezone.utc).isoformat()

        self._write("organization", [queries.upsert_organization(organization, scanned_at)], org)

        repo_ops: list[BatchOperation] = []
        for repo in repositories:
            repo_ops.append(queries.upsert_repository(repo, scanned_at))
            for topic in repo.topics:
                repo_ops.append(queries.link_repository_topic(repo.full_name, topic))
        self._write("repositories", repo_ops, org)

        if use_topics:
            self._write("topics", [queries.upsert_topic(org, t) for t in topics], org)
        else:
            self._write("teams", [queries.upsert_team(t) for t in teams], org)

        self._write("ownership", self._ownership_operations(repositories, ownership, notes), org)


def run_scan(
    request: ScanRequest,
    client: GitHubClient,
    service: GraphService,
    config: ScanConfig,
    web_url: str = "https://github.com",
    ctx: Optional[ScanContext] = None,
) -> dict[str, Any]:
    """Scan boundary: always returns a ScanResponse dict, never raises IngestionError."""
    max_repos = request.max_repos if request.max_repos is not None else config.max_repos
    max_teams = request.max_teams if request.max_teams is not None else config.max_teams
    use_topics = request.use_topics if request.use_topics is not None else config.use_topics

    orchestrator = ScanOrchestrator(client, service, config, web_url=web_url)
    try:
        result = orchestrator.scan(
            request.organization, max_repos, max_teams, use_topics=use_topics, ctx=ctx
        )
    except IngestionError as exc:
        logger.error(
            "Scan failed: %s", exc.message,
            extra={"organization": request.organization, "operation": "scan"},
        )
        return {
            "success": False,
            "organization": request.organization,
            "summary": None,
            "errors": [exc.to_dict()],
            "data": None,
        }
    return {
        "success": True,
        "organization": request.organization,
        "summary": result.summary.to_dict(),
        "errors": result.notes,
        "data": result.to_data(),
    }
