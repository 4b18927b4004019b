"""Apply and roll back migrations against a live database, recording each in the _migrations ledger."""

from __future__ import annotations

import datetime as dt
import enum
import logging
from typing import Any, Callable, Protocol

from generate_migration import MigrationDiff, generate_migration_diff
from migration_checksum import DEFAULT_ALGORITHM, calculate_checksum, parse_checksum, verify_checksum
from migration_errors import ChecksumMismatchError, MigrationError, MigrationStateError, NoChangesError
from schema_introspect import LEDGER_TABLE, parse_schema_dump
from schema_model import Migration, Schema


LEDGER_DDL = "\n".join(
    [
        f"DEFINE TABLE IF NOT EXISTS {LEDGER_TABLE} SCHEMAFULL;",
        f"DEFINE FIELD IF NOT EXISTS appliedAt ON TABLE {LEDGER_TABLE} TYPE datetime;",
        f"DEFINE FIELD IF NOT EXISTS up ON TABLE {LEDGER_TABLE} TYPE string;",
        f"DEFINE FIELD IF NOT EXISTS down ON TABLE {LEDGER_TABLE} TYPE string;",
        f"DEFINE FIELD IF NOT EXISTS message ON TABLE {LEDGER_TABLE} TYPE option<string>;",
        f"DEFINE FIELD IF NOT EXISTS checksum ON TABLE {LEDGER_TABLE} TYPE string;",
        f"DEFINE FIELD IF NOT EXISTS downChecksum ON TABLE {LEDGER_TABLE} TYPE string;",
    ]
)


class DatabaseClient(Protocol):
    def connect(self) -> None: ...

    def close(self) -> None: ...

    def execute_query(self, sql: str) -> list[Any]: ...

    def create(self, table: str, data: dict) -> dict: ...

    def select(self, table: str) -> list[dict]: ...

    def delete(self, record_id: str) -> None: ...

    def dump_schema(self) -> dict: ...


class MigrationState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CLEAN = "clean"
    DIRTY = "dirty"
    APPLYING = "applying"
    APPLIED = "applied"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class MigrationManager:
    """Orchestrates connect, introspect, diff, apply and record.

    The ledger is never cached: every status or rollback reads it from the
    database so that separate processes see the same history.
    """

    def __init__(
        self,
        client: DatabaseClient,
        logger: logging.Logger | None = None,
        clock: Callable[[], dt.datetime] = utc_now,
        checksum_algorithm: str = DEFAULT_ALGORITHM,
    ) -> None:
        self.client = client
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.checksum_algorithm = checksum_algorithm
        self.state = MigrationState.UNINITIALIZED

    def _require_initialized(self) -> None:
        if self.state == MigrationState.UNINITIALIZED:
            raise MigrationStateError("MigrationManager.initialize() must be called first")

    def _transition(self, state: MigrationState) -> None:
        self.logger.debug("Migration state %s -> %s", self.state.value, state.value)
        self.state = state

    def initialize(self) -> None:
        self.client.connect()
        self.client.execute_query(LEDGER_DDL)
        self._transition(MigrationState.INITIALIZED)

    def close(self) -> None:
        self.client.close()

    def get_current_schema(self) -> Schema:
        self._require_initialized()
        return parse_schema_dump(self.client.dump_schema())

    def generate_diff(self, desired: Schema) -> MigrationDiff:
        diff = generate_migration_diff(self.get_current_schema(), desired)
        self._transition(MigrationState.DIRTY if diff.changes else MigrationState.CLEAN)
        return diff

    def has_changes(self, desired: Schema) -> bool:
        return len(self.generate_diff(desired).changes) > 0

    def migrate(self, desired: Schema, message: str | None = None) -> Migration:
        diff = self.generate_diff(desired)
        if not diff.changes:
            raise NoChangesError()

        checksum = calculate_checksum(diff.up, self.checksum_algorithm)
        down_checksum = calculate_checksum(diff.down, self.checksum_algorithm)

        self._transition(MigrationState.APPLYING)
        self.logger.info("Applying migration with %d changes", len(diff.changes))
        try:
            self.client.execute_query(diff.up)
            applied_at = self.clock()
            record: dict[str, Any] = {
                "appliedAt": applied_at,
                "up": diff.up,
                "down": diff.down,
                "checksum": checksum,
                "downChecksum": down_checksum,
            }
            if message:
                record["message"] = message
            created = self.client.create(LEDGER_TABLE, record)
        except Exception:
            self._transition(MigrationState.FAILED)
            self.logger.error("Migration failed; no ledger entry was written")
            raise

        self._transition(MigrationState.APPLIED)
        migration = Migration(
            id=str(created.get("id", "")),
            applied_at=applied_at,
            up=diff.up,
            down=diff.down,
            checksum=checksum,
            down_checksum=down_checksum,
            message=message,
        )
        self.logger.info("Recorded migration %s", migration.id)
        return migration

    def status(self) -> list[Migration]:
        self._require_initialized()
        migrations = [Migration.from_row(row) for row in self.client.select(LEDGER_TABLE)]
        return sorted(migrations, key=lambda m: (m.applied_at, m.id))

    def rollback(self, migration_id: str | None = None) -> Migration:
        """Undo the most recent migration. A given id must name that migration."""
        migrations = self.status()
        if not migrations:
            raise MigrationError("No migrations to roll back")
        latest = migrations[-1]
        if migration_id is not None and migration_id != latest.id:
            known = {m.id for m in migrations}
            if migration_id not in known:
                raise MigrationError(f"Migration {migration_id} not found")
            raise MigrationError(f"Only the latest migration ({latest.id}) can be rolled back")

        for which, content, checksum in (
            ("up", latest.up, latest.checksum),
            ("down", latest.down, latest.down_checksum),
        ):
            try:
                valid = verify_checksum(content, checksum)
            except ValueError as e:
                raise MigrationError(f"Migration {latest.id} has an unreadable {which} checksum: {e}") from e
            if not valid:
                actual = calculate_checksum(content, parse_checksum(checksum).algorithm)
                raise ChecksumMismatchError(latest.id, which, checksum, actual)
        if not latest.down.strip():
            raise MigrationError(f"Migration {latest.id} has no down script")

        self._transition(MigrationState.ROLLING_BACK)
        self.logger.info("Rolling back migration %s", latest.id)
        try:
            self.client.execute_query(latest.down)
            self.client.delete(latest.id)
        except Exception:
            self._transition(MigrationState.FAILED)
            self.logger.error("Rollback of %s failed; ledger entry kept", latest.id)
            raise
        self._transition(MigrationState.ROLLED_BACK)
        return latest
