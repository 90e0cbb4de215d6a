"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables and .env files (local dev)
  - AWS Secrets Manager (aws-secret://name#key)
  - GCP Secret Manager (gcp-secret://name)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from overseer.ingestion.errors import ConfigError
from overseer.ingestion.logging_config import LOG_FORMATS
from overseer.ingestion.secrets import resolve_graph_url, resolve_secret

GRAPH_PROVIDERS = ("agensgraph", "neptune")


@dataclass(frozen=True)
class GitHubConfig:
    token: str
    api_base_url: str = "https://api.github.com"
    web_url: str = "https://github.com"
    timeout_s: float = 30.0
    # Remaining-quota percentage below which every response logs a warning.
    rate_limit_low_water_pct: float = 10.0


@dataclass(frozen=True)
class GraphConfig:
    provider: str = "agensgraph"
    url: str = ""
    graph_name: str = "overseer"
    min_connections: int = 1
    max_connections: int = 10
    query_timeout_s: float = 30.0


@dataclass(frozen=True)
class NeptuneConfig:
    endpoint: str
    region: str = "us-east-1"


@dataclass(frozen=True)
class ScanConfig:
    max_repos: int = 100
    max_teams: int = 100
    ownership_workers: int = 4
    timeout_s: float = 600.0
    use_topics: bool = False


@dataclass(frozen=True)
class SchedulerConfig:
    organizations: list[str] = field(default_factory=list)
    interval_min: int = 60
    misfire_grace_time: int = 300
    max_retries: int = 3


@dataclass(frozen=True)
class IngestionConfig:
    github: GitHubConfig
    graph: GraphConfig
    scan: ScanConfig = field(default_factory=ScanConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    neptune: Optional[NeptuneConfig] = None
    log_level: str = "INFO"
    log_format: str = "json"


def _int_env(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _list_env(name: str) -> list[str]:
    raw = os.environ.get(name, "")
    return [s.strip() for s in raw.split(",") if s.strip()]


def load_config() -> IngestionConfig:
    """Load configuration from the environment.

    Raises ConfigError (a ValueError) when a required value is missing or
    a numeric value does not parse.
    """
    load_dotenv()

    token_raw = os.environ.get("GITHUB_TOKEN", "")
    if not token_raw:
        raise ConfigError("GITHUB_TOKEN environment variable is required")

    github = GitHubConfig(
        token=resolve_secret(token_raw),
        api_base_url=os.environ.get("GITHUB_API_BASE_URL", "https://api.github.com"),
        web_url=os.environ.get("GITHUB_WEB_URL", "https://github.com"),
        timeout_s=_float_env("GITHUB_TIMEOUT_S", 30.0),
        rate_limit_low_water_pct=_float_env("GITHUB_RATE_LIMIT_LOW_WATER_PCT", 10.0),
    )

    provider = os.environ.get("GRAPH_PROVIDER", "agensgraph").strip().lower()
    if provider not in GRAPH_PROVIDERS:
        raise ConfigError(
            f"GRAPH_PROVIDER must be one of {', '.join(GRAPH_PROVIDERS)}, got {provider!r}"
        )

    # Neptune (stub backend) -- endpoint only checked when selected
    neptune = None
    if provider == "neptune":
        endpoint = os.environ.get("NEPTUNE_ENDPOINT", "")
        if not endpoint:
            raise ConfigError("NEPTUNE_ENDPOINT is required when GRAPH_PROVIDER=neptune")
        neptune = NeptuneConfig(
            endpoint=endpoint,
            region=os.environ.get("NEPTUNE_REGION", "us-east-1"),
        )

    min_conn = _int_env("GRAPH_MIN_CONNECTIONS", 1)
    max_conn = _int_env("GRAPH_MAX_CONNECTIONS", 10)
    if max_conn < min_conn:
        raise ConfigError("GRAPH_MAX_CONNECTIONS must be >= GRAPH_MIN_CONNECTIONS")

    graph = GraphConfig(
        provider=provider,
        url=resolve_graph_url() if provider == "agensgraph" else "",
        graph_name=os.environ.get("AGENSGRAPH_GRAPH", "overseer"),
        min_connections=min_conn,
        max_connections=max_conn,
        query_timeout_s=_float_env("GRAPH_QUERY_TIMEOUT_S", 30.0),
    )

    scan = ScanConfig(
        max_repos=_int_env("SCAN_MAX_REPOS", 100),
        max_teams=_int_env("SCAN_MAX_TEAMS", 100),
        ownership_workers=_int_env("SCAN_OWNERSHIP_WORKERS", 4),
        timeout_s=_float_env("SCAN_TIMEOUT_S", 600.0),
        use_topics=_bool_env("SCAN_USE_TOPICS"),
    )

    scheduler = SchedulerConfig(
        organizations=_list_env("SCAN_ORGANIZATIONS"),
        interval_min=_int_env("SCAN_INTERVAL_MIN", 60),
        max_retries=_int_env("SCAN_MAX_RETRIES", 3, minimum=0),
    )

    log_format = os.environ.get("LOG_FORMAT", "json").strip().lower()
    if log_format not in LOG_FORMATS:
        raise ConfigError(
            f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}, got {log_format!r}"
        )

    return IngestionConfig(
        github=github,
        graph=graph,
        scan=scan,
        scheduler=scheduler,
        neptune=neptune,
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_format=log_format,
    )
