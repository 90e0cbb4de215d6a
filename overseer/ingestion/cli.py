"""CLI entry point: scan, graph, stats, ownership lookups, migrations, scheduler."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from contextlib import contextmanager
from typing import Any, Generator

from overseer.ingestion.config import IngestionConfig, load_config
from overseer.ingestion.errors import IngestionError
from overseer.ingestion.graph import projections
from overseer.ingestion.graph.base import GraphService, create_graph_service
from overseer.ingestion.graph.migrations import MigrationEngine
from overseer.ingestion.logging_config import configure_logging
from overseer.ingestion.providers.github_org import GitHubClient
from overseer.ingestion.scanner import ScanRequest, run_scan

logger = logging.getLogger("overseer.cli")


def _load() -> IngestionConfig:
    config = load_config()
    configure_logging(config.log_level, config.log_format)
    return config


@contextmanager
def _graph(config: IngestionConfig) -> Generator[GraphService, None, None]:
    service = create_graph_service(config)
    try:
        service.connect()
        yield service
    finally:
        service.close()


def _emit(payload: Any, output: str | None = None) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if output:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(text + "\n")
        logger.info("Wrote %s", output)
        return
    print(text)


def cmd_scan(args: argparse.Namespace) -> int:
    """Scan one organisation and persist it."""
    config = _load()
    request = ScanRequest(
        organization=args.organization,
        max_repos=args.max_repos,
        max_teams=args.max_teams,
        use_topics=True if args.use_topics else None,
    )
    with _graph(config) as service:
        response = run_scan(
            request,
            GitHubClient(config.github),
            service,
            config.scan,
            web_url=config.github.web_url,
        )
    _emit(response, args.output)
    return 0 if response["success"] else 1


def cmd_graph(args: argparse.Namespace) -> int:
    config = _load()
    with _graph(config) as service:
        _emit(projections.get_graph(service, args.organization, args.use_topics), args.output)
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    config = _load()
    with _graph(config) as service:
        _emit(projections.get_stats(service, args.organization))
    return 0


def cmd_owners(args: argparse.Namespace) -> int:
    """Who owns a repository."""
    config = _load()
    with _graph(config) as service:
        _emit(projections.owners_of_repository(service, args.repository))
    return 0


def cmd_owned_by(args: argparse.Namespace) -> int:
    """What a user or team owns."""
    config = _load()
    with _graph(config) as service:
        _emit(projections.repositories_owned_by(service, args.owner))
    return 0


def cmd_migrate(args: argparse.Namespace) -> int:
    config = _load()
    with _graph(config) as service:
        engine = MigrationEngine(service)
        if args.direction == "up":
            applied = engine.migrate_up()
            _emit({"applied": applied, "current_version": engine.current_version()})
        elif args.direction == "down":
            rolled_back = engine.migrate_down(args.target)
            _emit({"rolled_back": rolled_back, "current_version": engine.current_version()})
        else:
            _emit(engine.status())
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to clear the graph without --yes", file=sys.stderr)
        return 2
    config = _load()
    with _graph(config) as service:
        service.clear_all()
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    config = _load()
    with _graph(config) as service:
        _emit(service.health())
    return 0


def cmd_scheduler(args: argparse.Namespace) -> int:
    """Start the APScheduler-based rescan loop."""
    from overseer.ingestion.scheduler import start_scheduler

    start_scheduler(_load())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="overseer",
        description="Overseer GitHub ownership graph ingestion",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # scan
    scan_parser = subparsers.add_parser("scan", help="Scan an organization into the graph")
    scan_parser.add_argument("organization")
    scan_parser.add_argument("--max-repos", type=int, default=None)
    scan_parser.add_argument("--max-teams", type=int, default=None)
    scan_parser.add_argument(
        "--use-topics", action="store_true",
        help="Derive topics from repositories instead of fetching teams",
    )
    scan_parser.add_argument("--output", "-o", help="Write the scan result JSON to a file")
    scan_parser.set_defaults(func=cmd_scan)

    # graph
    graph_parser = subparsers.add_parser("graph", help="Print the visualization graph")
    graph_parser.add_argument("organization")
    graph_parser.add_argument("--use-topics", action="store_true")
    graph_parser.add_argument("--output", "-o")
    graph_parser.set_defaults(func=cmd_graph)

    # stats
    stats_parser = subparsers.add_parser("stats", help="Print organization statistics")
    stats_parser.add_argument("organization")
    stats_parser.set_defaults(func=cmd_stats)

    # ownership lookups
    owners_parser = subparsers.add_parser("owners", help="List owners of a repository")
    owners_parser.add_argument("repository", help="owner/name")
    owners_parser.set_defaults(func=cmd_owners)

    owned_parser = subparsers.add_parser("owned-by", help="List repositories an owner owns")
    owned_parser.add_argument("owner", help="@user or @org/team")
    owned_parser.set_defaults(func=cmd_owned_by)

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Manage schema migrations")
    migrate_parser.add_argument("direction", choices=["up", "down", "status"])
    migrate_parser.add_argument(
        "--target", "-t", type=int, default=0,
        help="Version to roll back to (down only, default: 0)",
    )
    migrate_parser.set_defaults(func=cmd_migrate)

    # clear
    clear_parser = subparsers.add_parser("clear", help="Delete every node and relationship")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm deletion")
    clear_parser.set_defaults(func=cmd_clear)

    # health
    health_parser = subparsers.add_parser("health", help="Check graph connectivity")
    health_parser.set_defaults(func=cmd_health)

    # scheduler
    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled rescans")
    sched_parser.set_defaults(func=cmd_scheduler)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        code = args.func(args)
    except IngestionError as exc:
        logger.error("%s failed: %s", args.command, exc.message)
        print(json.dumps({"success": False, "errors": [exc.to_dict()]}, indent=2), file=sys.stderr)
        code = 1
    sys.exit(code)
