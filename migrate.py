#!/usr/bin/env python3
"""Command-line entry point: apply, inspect and roll back schema migrations.

Usage:
    python migrate.py migrate [--dry-run] [--message TEXT]
    python migrate.py status
    python migrate.py rollback [--id MIGRATION_ID]
    python migrate.py diff [--output PATH]
    python migrate.py mermaid [--level minimal|detailed] [--output PATH]
    python migrate.py config [--show-secrets]
    python migrate.py validate

Connection settings come from --url/--namespace/..., then smig.yaml
(optionally one of its `environments`), then SMIG_* variables and .env.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from dump_schemas import SurrealClient
from generate_migration import summarize_changes
from load_schema import Config, load_config, load_desired_schema
from mermaid_diagram import LEVELS, generate_mermaid
from migration_errors import MigrationError, NoChangesError
from migration_manager import MigrationManager
from schema_introspect import LEDGER_TABLE


logger = logging.getLogger("migrate")

RULE = "-" * 50

SCHEMA_TEMPLATE = """\
# Desired schema. Preview with `smig diff`, apply with `smig migrate`.
tables:
  - name: user
    fields:
      email:
        type: string
        assert: string::is::email($value)
      name: string
      created_at:
        type: datetime
        default: time::now()
        readonly: true
    indexes:
      - name: email_idx
        columns: [email]
        unique: true
"""

CONFIG_TEMPLATE = """\
url: http://localhost:8000
namespace: test
database: test
username: root
password: root
schema: {schema}

environments:
  production:
    url: https://db.example.com
    database: prod
"""


def add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=None, help="Config file (default: smig.yaml when present)")
    parser.add_argument("--env", default=None, help="Environment name from the config file")
    parser.add_argument("--url", default=None, help="SurrealDB URL")
    parser.add_argument("--namespace", default=None, help="Namespace")
    parser.add_argument("--database", default=None, help="Database")
    parser.add_argument("--username", default=None, help="Username")
    parser.add_argument("--password", default=None, help="Password")
    parser.add_argument("--schema", default=None, help="Desired schema file (YAML)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SurrealDB schema migrations")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("migrate", help="Apply pending schema changes")
    add_connection_args(p)
    p.add_argument("--dry-run", action="store_true", help="Print the scripts without applying them")
    p.add_argument("--message", "-m", default=None, help="Message stored with the migration")

    p = sub.add_parser("status", help="List applied migrations and pending changes")
    add_connection_args(p)

    p = sub.add_parser("rollback", help="Roll back the latest migration")
    add_connection_args(p)
    p.add_argument("--id", dest="migration_id", default=None, help="Migration id (must be the latest)")

    p = sub.add_parser("diff", help="Print the up/down scripts for pending changes")
    add_connection_args(p)
    p.add_argument("--output", default=None, help="Write the up script to a file (down goes to <name>.down.surql)")

    p = sub.add_parser("mermaid", help="Render the desired schema as a Mermaid ER diagram")
    add_connection_args(p)
    p.add_argument("--level", choices=LEVELS, default="minimal", help="Diagram detail level")
    p.add_argument("--output", default=None, help="Write to a file instead of stdout")

    p = sub.add_parser("config", help="Show the resolved configuration")
    add_connection_args(p)
    p.add_argument("--show-secrets", action="store_true", help="Print the password unmasked")

    p = sub.add_parser("validate", help="Load and validate the desired schema without connecting")
    add_connection_args(p)

    p = sub.add_parser("test", help="Check the database connection and the migrations table")
    add_connection_args(p)

    p = sub.add_parser("init", help="Create a starter schema file and config file")
    p.add_argument("--schema", default="schema.yaml", help="Schema file to create")
    p.add_argument("--config", default="smig.yaml", help="Config file to create")
    p.add_argument("--no-config", action="store_true", help="Only create the schema file")
    p.add_argument("--force", action="store_true", help="Overwrite existing files")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")

    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> Config:
    overrides = {
        "url": args.url,
        "namespace": args.namespace,
        "database": args.database,
        "username": args.username,
        "password": args.password,
        "schema": args.schema,
    }
    return load_config(args.config, args.env, overrides)


def open_manager(config: Config) -> MigrationManager:
    manager = MigrationManager(SurrealClient.from_config(config), logger=logger)
    manager.initialize()
    return manager


def cmd_migrate(args: argparse.Namespace, config: Config) -> int:
    desired = load_desired_schema(Path(config.schema))
    manager = open_manager(config)
    try:
        if args.dry_run:
            diff = manager.generate_diff(desired)
            if not diff.changes:
                print("No changes detected - no migration needed.")
                return 0
            print(summarize_changes(diff.changes))
            print(f"\nWould apply (up):\n{RULE}\n{diff.up}")
            print(f"\nWould rollback (down):\n{RULE}\n{diff.down}")
            return 0
        try:
            migration = manager.migrate(desired, args.message)
        except NoChangesError:
            print("No changes detected - no migration needed.")
            return 0
    finally:
        manager.close()
    print(f"Applied migration {migration.id} at {migration.applied_at.isoformat()}")
    return 0


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    manager = open_manager(config)
    try:
        migrations = manager.status()
        print(f"Applied migrations: {len(migrations)}")
        for migration in migrations:
            message = f" - {migration.message}" if migration.message else ""
            print(f"  {migration.id} ({migration.applied_at.isoformat()}){message}")

        schema_path = Path(config.schema)
        if not schema_path.exists():
            print(f"\nSchema file not found, pending changes not checked: {schema_path}")
            return 0
        if manager.has_changes(load_desired_schema(schema_path)):
            print("\nPending changes detected. Run `migrate.py migrate` to apply them.")
        else:
            print("\nDatabase is up to date with the schema.")
    finally:
        manager.close()
    return 0


def cmd_rollback(args: argparse.Namespace, config: Config) -> int:
    manager = open_manager(config)
    try:
        migration = manager.rollback(args.migration_id)
    finally:
        manager.close()
    print(f"Rolled back migration {migration.id}")
    return 0


def cmd_diff(args: argparse.Namespace, config: Config) -> int:
    desired = load_desired_schema(Path(config.schema))
    manager = open_manager(config)
    try:
        diff = manager.generate_diff(desired)
    finally:
        manager.close()
    if not diff.changes:
        print("No changes detected - database schema is up to date.")
        return 0
    if args.output:
        out_up = Path(args.output)
        out_down = out_up.with_name(out_up.name.removesuffix(".surql").removesuffix(".up") + ".down.surql")
        out_up.write_text(diff.up + "\n", encoding="utf-8")
        out_down.write_text(diff.down + "\n", encoding="utf-8")
        print(f"Generated {out_up}")
        print(f"Generated {out_down}")
        return 0
    print(f"Up:\n{RULE}\n{diff.up}")
    print(f"\nDown:\n{RULE}\n{diff.down}")
    return 0


def cmd_mermaid(args: argparse.Namespace, config: Config) -> int:
    diagram = generate_mermaid(load_desired_schema(Path(config.schema)), args.level)
    if args.output:
        Path(args.output).write_text(diagram, encoding="utf-8")
        print(f"Diagram written to {args.output}")
    else:
        sys.stdout.write(diagram)
    return 0


def cmd_config(args: argparse.Namespace, config: Config) -> int:
    values = vars(config) if args.show_secrets else config.redacted()
    for key in ("schema", "url", "namespace", "database", "username", "password"):
        print(f"  {key + ':':<11}{values[key]}")
    return 0


def cmd_validate(args: argparse.Namespace, config: Config) -> int:
    schema = load_desired_schema(Path(config.schema))
    print(
        f"{config.schema}: {len(schema.tables)} tables, {len(schema.relations)} relations, "
        f"{len(schema.functions)} functions, {len(schema.scopes)} accesses"
    )
    return 0



def cmd_test(args: argparse.Namespace, config: Config) -> int:
    client = SurrealClient.from_config(config)
    client.connect()
    try:
        client.execute_query(f"SELECT * FROM {LEDGER_TABLE} LIMIT 1;")
    finally:
        client.close()
    print("Database connection successful")
    print(f"  {'url:':<11}{config.url}")
    print(f"  {'namespace:':<11}{config.namespace}")
    print(f"  {'database:':<11}{config.database}")
    return 0


def cmd_init(args: argparse.Namespace, config: Config) -> int:
    files = {Path(args.schema): SCHEMA_TEMPLATE}
    if not args.no_config:
        files[Path(args.config)] = CONFIG_TEMPLATE.format(schema=args.schema)
    existing = [str(path) for path in files if path.exists()]
    if existing and not args.force:
        raise MigrationError(f"Refusing to overwrite {', '.join(existing)} (use --force)")
    for path, content in files.items():
        path.write_text(content, encoding="utf-8")
        print(f"Created {path}")
    return 0

COMMANDS = {
    "migrate": cmd_migrate,
    "status": cmd_status,
    "rollback": cmd_rollback,
    "diff": cmd_diff,
    "mermaid": cmd_mermaid,
    "config": cmd_config,
    "validate": cmd_validate,
    "test": cmd_test,
    "init": cmd_init,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = Config() if args.command == "init" else resolve_config(args)
        return COMMANDS[args.command](args, config)
    except (MigrationError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
