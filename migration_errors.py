"""Exception types raised by the schema migration tools."""

from __future__ import annotations


class MigrationError(Exception):
    """Base class for every failure the migration tools report."""


class DatabaseConnectionError(MigrationError):
    """The database could not be reached. Fatal, never retried."""


class QueryError(MigrationError):
    def __init__(self, statement: str, detail: str) -> None:
        super().__init__(f"Query failed: {detail}")
        self.statement = statement
        self.detail = detail


class NoChangesError(MigrationError):
    """migrate() was asked to apply an empty diff."""

    def __init__(self, message: str = "No schema changes detected") -> None:
        super().__init__(message)


class ChecksumMismatchError(MigrationError):
    def __init__(self, migration_id: str, which: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Checksum mismatch for {which} script of migration {migration_id}: "
            f"expected {expected}, got {actual}"
        )
        self.migration_id = migration_id
        self.which = which
        self.expected = expected
        self.actual = actual


class MigrationStateError(MigrationError):
    """An operation was called in a state that does not allow it."""


class SchemaValidationError(MigrationError, ValueError):
    pass


class EnvironmentNotFoundError(MigrationError):
    def __init__(self, name: str, available: list[str]) -> None:
        listed = ", ".join(available) if available else "none"
        super().__init__(f"Environment '{name}' not found in config (available: {listed})")
        self.name = name
        self.available = available


class ParseError(MigrationError, ValueError):
    """Definition text reported by the database matched no known form."""

    def __init__(self, entity: str, text: str, reason: str = "unrecognized definition") -> None:
        super().__init__(f"Cannot parse {entity}: {reason}: {text!r}")
        self.entity = entity
        self.text = text
        self.reason = reason
