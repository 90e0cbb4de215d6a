"""GitHub organisation client: orgs, repos, teams, topics and CODEOWNERS."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional

import requests

from overseer.ingestion.codeowners import CODEOWNERS_PATHS, decode_content, parse
from overseer.ingestion.config import GitHubConfig
from overseer.ingestion.context import ScanContext
from overseer.ingestion.errors import (
    DecodeError,
    NotFoundError,
    RemoteAPIError,
    TransientError,
    ValidationError,
)
from overseer.ingestion.models import (
    Organization,
    OwnershipFile,
    Repository,
    Team,
    Topic,
)

logger = logging.getLogger("overseer.github")

MAX_PAGE_SIZE = 100
# Below this share of remaining quota every response is logged at INFO.
RATE_LIMIT_NOTICE_PCT = 25.0


@dataclass(frozen=True)
class RateLimitStatus:
    limit: int
    remaining: int
    reset: Optional[int] = None
    used: Optional[int] = None
    resource: Optional[str] = None

    @property
    def remaining_pct(self) -> float:
        if self.limit <= 0:
            return 100.0
        return 100.0 * self.remaining / self.limit

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Optional["RateLimitStatus"]:
        """Parse ``X-RateLimit-*`` headers; None when absent or malformed."""
        try:
            limit = int(headers["X-RateLimit-Limit"])
            remaining = int(headers["X-RateLimit-Remaining"])
        except (KeyError, TypeError, ValueError):
            return None

        def _opt_int(name: str) -> Optional[int]:
            try:
                return int(headers[name])
            except (KeyError, TypeError, ValueError):
                return None

        return cls(
            limit=limit,
            remaining=remaining,
            reset=_opt_int("X-RateLimit-Reset"),
            used=_opt_int("X-RateLimit-Used"),
            resource=headers.get("X-RateLimit-Resource"),
        )


def next_page_url(link_header: str) -> str:
    """Return the rel="next" target of a Link header, or ""."""
    for part in link_header.split(","):
        if 'rel="next"' in part:
            return part.split(";")[0].strip().strip("<>")
    return ""


def derive_topics(repositories: Iterable[Repository]) -> list[Topic]:
    """Aggregate topic usage across already-fetched repositories."""
    counts: Counter[str] = Counter()
    for repo in repositories:
        counts.update(set(repo.topics))
    return [
        Topic(name=name, count=count)
        for name, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    ]


def _decode_record(build: Callable[..., Any], item: Any, what: str, **kwargs: Any) -> Any:
    """Map one API object onto a record; malformed objects are DecodeErrors."""
    if not isinstance(item, dict):
        raise DecodeError(f"Expected an object in {what}, got {type(item).__name__}")
    try:
        return build(item, **kwargs)
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeError(
            f"Malformed item in {what}: {exc!r}",
            details={"resource": what},
        ) from exc


class GitHubClient:
    """Read-only REST client scoped to what an ownership scan needs.

    Every request is counted on the caller's ScanContext and bounded by its
    deadline. Rate-limit headers are observed and logged; nothing is throttled.
    """

    def __init__(
        self,
        config: GitHubConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base = config.api_base_url.rstrip("/")
        self._timeout = config.timeout_s
        self._low_water_pct = config.rate_limit_low_water_pct
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"token {config.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "overseer-codeowners-scanner/1.0",
        })

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _get(
        self,
        url: str,
        ctx: ScanContext,
        params: Optional[dict[str, str]] = None,
    ) -> requests.Response:
        ctx.check()
        ctx.record_call()
        try:
            resp = self._session.get(
                url, params=params, timeout=ctx.request_timeout(self._timeout)
            )
        except requests.Timeout as exc:
            raise TransientError(f"Timed out calling {url}", code="TIMEOUT") from exc
        except requests.ConnectionError as exc:
            raise TransientError(
                f"Connection failed calling {url}: {exc}", code="NETWORK_ERROR"
            ) from exc
        except requests.RequestException as exc:
            raise RemoteAPIError(f"Request to {url} failed: {exc}") from exc
        self._observe_rate_limit(resp)
        return resp

    def _observe_rate_limit(self, resp: requests.Response) -> None:
        status = RateLimitStatus.from_headers(resp.headers)
        if status is None:
            return
        pct = status.remaining_pct
        extra = {
            "rate_remaining": status.remaining,
            "rate_limit": status.limit,
            "rate_reset": status.reset,
        }
        if pct < self._low_water_pct:
            logger.warning(
                "GitHub rate limit nearly exhausted: %d/%d remaining (%s)",
                status.remaining, status.limit, status.resource or "core",
                extra=extra,
            )
        elif pct < RATE_LIMIT_NOTICE_PCT:
            logger.info(
                "GitHub rate limit below %d%%: %d/%d remaining",
                int(RATE_LIMIT_NOTICE_PCT), status.remaining, status.limit,
                extra=extra,
            )
        else:
            logger.debug(
                "GitHub rate limit %d/%d remaining",
                status.remaining, status.limit,
                extra=extra,
            )

    @staticmethod
    def _raise_for_status(resp: requests.Response, what: str) -> None:
        code = resp.status_code
        if 200 <= code < 300:
            return
        details = {"status": code, "resource": what}
        if code == 404:
            raise NotFoundError(f"{what} not found", details=details)
        if code == 429 or code >= 500:
            raise TransientError(
                f"GitHub returned {code} for {what}", details=details
            )
        if code == 403 and (
            resp.headers.get("X-RateLimit-Remaining") == "0"
            or "rate limit" in resp.text.lower()
        ):
            raise TransientError(
                f"GitHub rate limit exceeded fetching {what}",
                code="RATE_LIMITED",
                details=details,
            )
        if code == 401:
            raise RemoteAPIError(
                f"GitHub rejected the token fetching {what}",
                status=code,
                code="AUTHENTICATION_ERROR",
            )
        raise RemoteAPIError(f"GitHub returned {code} for {what}", status=code)

    @staticmethod
    def _json(resp: requests.Response, what: str) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise DecodeError(f"Malformed JSON in response for {what}") from exc

    def _get_paginated(
        self,
        url: str,
        max_count: int,
        ctx: ScanContext,
        what: str,
        params: Optional[dict[str, str]] = None,
    ) -> list[dict]:
        """Follow Link rel="next" until ``max_count`` items or the last page."""
        results: list[dict] = []
        page_params: Optional[dict[str, str]] = dict(params or {})
        page_params["per_page"] = str(min(MAX_PAGE_SIZE, max_count))

        while url and len(results) < max_count:
            resp = self._get(url, ctx, params=page_params)
            self._raise_for_status(resp, what)
            data = self._json(resp, what)
            if not isinstance(data, list):
                raise DecodeError(f"Expected a list for {what}, got {type(data).__name__}")
            results.extend(data)
            # The next link already carries the query string
            url = next_page_url(resp.headers.get("Link", ""))
            page_params = None
        return results[:max_count]

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def fetch_organization(self, login: str, ctx: ScanContext) -> Organization:
        what = f"organization {login}"
        resp = self._get(f"{self._base}/orgs/{login}", ctx)
        self._raise_for_status(resp, what)
        data = self._json(resp, what)
        if not isinstance(data, dict) or "login" not in data:
            raise DecodeError(f"Unexpected payload for {what}")
        return _decode_record(Organization.from_api, data, what)

    def fetch_repositories(
        self, login: str, max_repos: int, ctx: ScanContext
    ) -> list[Repository]:
        if max_repos <= 0:
            raise ValidationError("max_repos must be positive")
        what = f"repositories of {login}"
        items = self._get_paginated(
            f"{self._base}/orgs/{login}/repos",
            max_repos,
            ctx,
            what=what,
            params={"type": "all", "sort": "full_name"},
        )
        repos = [
            _decode_record(Repository.from_api, item, what, organization=login)
            for item in items
        ]
        logger.info(
            "Fetched %d repositories", len(repos),
            extra={"organization": login, "records": len(repos), "operation": "fetch_repositories"},
        )
        return repos

    def fetch_teams(self, login: str, max_teams: int, ctx: ScanContext) -> list[Team]:
        if max_teams <= 0:
            raise ValidationError("max_teams must be positive")
        items = self._get_paginated(
            f"{self._base}/orgs/{login}/teams",
            max_teams,
            ctx,
            what=f"teams of {login}",
        )
        teams = [
            _decode_record(Team.from_api, item, f"teams of {login}", organization=login)
            for item in items
        ]
        logger.info(
            "Fetched %d teams", len(teams),
            extra={"organization": login, "records": len(teams), "operation": "fetch_teams"},
        )
        return teams

    def fetch_ownership(self, full_name: str, ctx: ScanContext) -> OwnershipFile:
        """Try each CODEOWNERS location in turn; the first hit wins.

        A repository with no CODEOWNERS file yields ``found=False``.
        """
        for path in CODEOWNERS_PATHS:
            what = f"{full_name}:{path}"
            resp = self._get(f"{self._base}/repos/{full_name}/contents/{path}", ctx)
            if resp.status_code == 404:
                continue
            self._raise_for_status(resp, what)
            data = self._json(resp, what)
            content = data.get("content") if isinstance(data, dict) else None
            if not isinstance(content, str):
                raise DecodeError(f"No content field for {what}")
            rules = parse(decode_content(content))
            logger.debug(
                "Found CODEOWNERS at %s with %d rules", path, len(rules),
                extra={"repository": full_name},
            )
            return OwnershipFile(repository=full_name, found=True, path=path, rules=rules)
        return OwnershipFile(repository=full_name)
