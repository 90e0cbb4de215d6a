"""Versioned schema migrations for the ownership graph.

The applied version lives on a singleton ``SchemaMigration {id: 'system'}``
node. Only MigrationEngine reads or writes it. Each migration's statements
and its version bump run in one transaction, so a failed migration leaves the
recorded version at the last one that succeeded.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from overseer.ingestion.errors import GraphError, MigrationError
from overseer.ingestion.graph.base import BatchOperation, GraphService
from overseer.ingestion.graph.queries import (
    HAS_CODEOWNER,
    HAS_TEAM_OWNER,
    HAS_TOPIC,
    ORGANIZATION,
    OWNS,
    REPOSITORY,
    SCHEMA_MIGRATION,
    TEAM,
    TOPIC,
    USER,
)

logger = logging.getLogger("overseer.migrations")

ENSURE_TRACKING_LABEL = f'CREATE VLABEL IF NOT EXISTS "{SCHEMA_MIGRATION}"'
READ_VERSION_QUERY = (
    f"MATCH (m:\"{SCHEMA_MIGRATION}\" {{id: 'system'}}) "
    "RETURN m.current_version AS version"
)
WRITE_VERSION_QUERY = (
    f"MERGE (m:\"{SCHEMA_MIGRATION}\" {{id: 'system'}}) "
    "SET m.current_version = %(version)s, m.last_migration = %(name)s, "
    "m.updated_at = %(updated_at)s"
)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    description: str
    up: str
    down: str


MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        name="initial_schema",
        description="Create labels and unique business-key indexes",
        up=f"""
            // Vertex and edge labels
            CREATE VLABEL IF NOT EXISTS "{ORGANIZATION}";
            CREATE VLABEL IF NOT EXISTS "{REPOSITORY}";
            CREATE VLABEL IF NOT EXISTS "{TEAM}";
            CREATE VLABEL IF NOT EXISTS "{TOPIC}";
            CREATE VLABEL IF NOT EXISTS "{USER}";
            CREATE ELABEL IF NOT EXISTS "{OWNS}";
            CREATE ELABEL IF NOT EXISTS "{HAS_TOPIC}";
            CREATE ELABEL IF NOT EXISTS "{HAS_CODEOWNER}";
            CREATE ELABEL IF NOT EXISTS "{HAS_TEAM_OWNER}";

            // Business keys
            CREATE UNIQUE PROPERTY INDEX IF NOT EXISTS uq_organization_login ON "{ORGANIZATION}" (login);
            CREATE UNIQUE PROPERTY INDEX IF NOT EXISTS uq_repository_full_name ON "{REPOSITORY}" (full_name);
            CREATE UNIQUE PROPERTY INDEX IF NOT EXISTS uq_team_full_slug ON "{TEAM}" (full_slug);
            CREATE UNIQUE PROPERTY INDEX IF NOT EXISTS uq_topic_name ON "{TOPIC}" (name);
            CREATE UNIQUE PROPERTY INDEX IF NOT EXISTS uq_user_login ON "{USER}" (login);
        """,
        down="""
            // Labels stay; dropping them would drop the data
            DROP PROPERTY INDEX IF EXISTS uq_user_login;
            DROP PROPERTY INDEX IF EXISTS uq_topic_name;
            DROP PROPERTY INDEX IF EXISTS uq_team_full_slug;
            DROP PROPERTY INDEX IF EXISTS uq_repository_full_name;
            DROP PROPERTY INDEX IF EXISTS uq_organization_login;
        """,
    ),
    Migration(
        version=2,
        name="ownership_indexes",
        description="Index ownership edges and organisation scoping properties",
        up=f"""
            CREATE PROPERTY INDEX IF NOT EXISTS idx_repository_organization ON "{REPOSITORY}" (organization);
            CREATE PROPERTY INDEX IF NOT EXISTS idx_team_organization ON "{TEAM}" (organization);
            CREATE PROPERTY INDEX IF NOT EXISTS idx_has_codeowner_pattern ON "{HAS_CODEOWNER}" (pattern);
            CREATE PROPERTY INDEX IF NOT EXISTS idx_has_team_owner_pattern ON "{HAS_TEAM_OWNER}" (pattern);
        """,
        down="""
            DROP PROPERTY INDEX IF EXISTS idx_has_team_owner_pattern;
            DROP PROPERTY INDEX IF EXISTS idx_has_codeowner_pattern;
            DROP PROPERTY INDEX IF EXISTS idx_team_organization;
            DROP PROPERTY INDEX IF EXISTS idx_repository_organization;
        """,
    ),
    Migration(
        version=3,
        name="performance_indexes",
        description="Add indexes for staleness and name lookups",
        up=f"""
            CREATE PROPERTY INDEX IF NOT EXISTS idx_repository_last_scanned ON "{REPOSITORY}" (last_scanned_at);
            CREATE PROPERTY INDEX IF NOT EXISTS idx_organization_last_scanned ON "{ORGANIZATION}" (last_scanned_at);
            CREATE PROPERTY INDEX IF NOT EXISTS idx_repository_name ON "{REPOSITORY}" (name);
            CREATE PROPERTY INDEX IF NOT EXISTS idx_team_slug ON "{TEAM}" (slug);
        """,
        down="""
            DROP PROPERTY INDEX IF EXISTS idx_team_slug;
            DROP PROPERTY INDEX IF EXISTS idx_repository_name;
            DROP PROPERTY INDEX IF EXISTS idx_organization_last_scanned;
            DROP PROPERTY INDEX IF EXISTS idx_repository_last_scanned;
        """,
    ),
]


def validate_migrations(migrations: Sequence[Migration]) -> None:
    """Reject empty lists, duplicate or non-positive versions, missing scripts."""
    if not migrations:
        raise MigrationError("No migrations defined")
    seen: set[int] = set()
    for m in migrations:
        if m.version <= 0:
            raise MigrationError(f"Migration version must be positive, got {m.version}")
        if m.version in seen:
            raise MigrationError(f"Duplicate migration version {m.version}")
        seen.add(m.version)
        if not m.name or not m.name.strip():
            raise MigrationError(f"Migration {m.version} has no name")
        if not split_statements(m.up):
            raise MigrationError(f"Migration {m.version} has no up statements")
        if not split_statements(m.down):
            raise MigrationError(f"Migration {m.version} has no down statements")


def split_statements(script: str) -> list[str]:
    """Split on ``;``, dropping blank segments and ``//`` / ``--`` comment lines."""
    statements: list[str] = []
    for chunk in script.split(";"):
        lines = [
            ln for ln in chunk.splitlines()
            if ln.strip() and not ln.strip().startswith(("//", "--"))
        ]
        stmt = "\n".join(ln.strip() for ln in lines).strip()
        if stmt:
            statements.append(stmt)
    return statements


class MigrationEngine:
    def __init__(
        self,
        service: GraphService,
        migrations: Optional[Sequence[Migration]] = None,
    ) -> None:
        migrations = list(MIGRATIONS if migrations is None else migrations)
        validate_migrations(migrations)
        self._service = service
        self._migrations = sorted(migrations, key=lambda m: m.version)

    @property
    def latest_version(self) -> int:
        return self._migrations[-1].version

    def _ensure_tracking_label(self) -> None:
        self._service.execute_write_query(ENSURE_TRACKING_LABEL)

    def current_version(self) -> int:
        """Applied schema version; 0 when nothing has been applied."""
        self._ensure_tracking_label()
        rows = self._service.execute_read_query(READ_VERSION_QUERY)
        if not rows or rows[0].get("version") is None:
            return 0
        return int(rows[0]["version"])

    def _apply(self, migration: Migration, script: str, new_version: int, direction: str) -> None:
        ops = [
            BatchOperation(type="migration_statement", query=stmt)
            for stmt in split_statements(script)
        ]
        ops.append(
            BatchOperation(
                type="set_schema_version",
                query=WRITE_VERSION_QUERY,
                parameters={
                    "version": new_version,
                    "name": migration.name,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                },
            )
        )
        started = time.monotonic()
        try:
            self._service.execute_batch(ops)
        except GraphError as exc:
            raise MigrationError(
                f"Migration {migration.version} ({migration.name}) {direction} failed: {exc.message}",
                details={"version": migration.version, "direction": direction},
            ) from exc
        logger.info(
            "Migration %d (%s) %s applied", migration.version, migration.name, direction,
            extra={
                "operation": f"migrate_{direction}",
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )

    def migrate_up(self) -> list[int]:
        """Apply every pending migration in ascending order."""
        current = self.current_version()
        applied: list[int] = []
        for m in self._migrations:
            if m.version <= current:
                continue
            self._apply(m, m.up, m.version, "up")
            applied.append(m.version)
        if not applied:
            logger.info("Schema already at version %d", current)
        return applied

    def migrate_down(self, target: int) -> list[int]:
        """Roll back, newest first, until the schema is at ``target``."""
        current = self.current_version()
        if not 0 <= target < current:
            raise MigrationError(
                f"Rollback target must satisfy 0 <= target < {current}, got {target}"
            )
        rolled_back: list[int] = []
        for m in reversed(self._migrations):
            if m.version > current or m.version <= target:
                continue
            self._apply(m, m.down, m.version - 1, "down")
            rolled_back.append(m.version)
        return rolled_back

    def status(self) -> dict[str, Any]:
        current = self.current_version()
        return {
            "current_version": current,
            "latest_version": self.latest_version,
            "applied": [
                {"version": m.version, "name": m.name}
                for m in self._migrations if m.version <= current
            ],
            "pending": [
                {"version": m.version, "name": m.name, "description": m.description}
                for m in self._migrations if m.version > current
            ],
        }
