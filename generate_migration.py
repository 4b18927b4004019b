#!/usr/bin/env python3
"""Generate up/down SurrealQL migration scripts from a dumped current schema and a declarative desired schema.

Usage:
    python generate_migration.py --current schemas/current.json --schema schema.yaml
    python generate_migration.py --check
"""

from __future__ import annotations

import argparse
import dataclasses
import difflib
import logging
import sys
from pathlib import Path
from typing import Any, Callable

from load_schema import load_desired_schema
from render_statements import (
    render_access,
    render_alter_field,
    render_alter_param,
    render_analyzer,
    render_event,
    render_field,
    render_function,
    render_index,
    render_param,
    render_remove,
    render_remove_event,
    render_remove_field,
    render_remove_index,
    render_remove_table,
    render_rename,
    render_sequence,
    render_table,
    render_table_full,
    render_user,
    table_body_fields,
)
from schema_compare import (
    CHANGE_RECREATE,
    REDACTED,
    compare_analyzers,
    compare_events,
    compare_fields,
    compare_functions,
    compare_indexes,
    compare_params,
    compare_scopes,
    compare_sequences,
    compare_tables,
    compare_users,
    detect_event_rename,
    detect_field_rename,
    detect_index_rename,
    detect_rename,
    detect_table_rename,
    relation_endpoints_changed,
)
from schema_introspect import load_schema_dump
from schema_model import Field, Schema, Table
from schema_normalize import normalize_comment


logger = logging.getLogger(__name__)

# A field modify touching at most this many properties renders one ALTER per property;
# above it the whole field is redefined with OVERWRITE.
ALTER_THRESHOLD = 3


@dataclasses.dataclass
class Change:
    kind: str
    entity: str
    operation: str
    description: str
    up: list[str]
    down: list[str]
    details: dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class MigrationDiff:
    up: str
    down: str
    changes: list[Change]


class DiffBuilder:
    def __init__(self) -> None:
        self.changes: list[Change] = []

    def add(
        self,
        kind: str,
        entity: str,
        operation: str,
        description: str,
        up: list[str],
        down: list[str],
        **details: Any,
    ) -> None:
        logger.debug("%s %s %s", operation, kind, entity)
        self.changes.append(Change(kind, entity, operation, description, up, down, details))

    def build(self) -> MigrationDiff:
        up_lines: list[str] = []
        for change in self.changes:
            up_lines.append(f"-- {change.description}")
            up_lines.extend(change.up)
        down_lines: list[str] = []
        for change in reversed(self.changes):
            down_lines.extend(change.down)
        return MigrationDiff(
            up="\n".join(up_lines).strip(),
            down="\n".join(down_lines).strip(),
            changes=list(self.changes),
        )


def by_name(items: list) -> list:
    return sorted(items, key=lambda item: item.name)


def rename_candidates(current: dict[str, Any], consumed: set[str], desired_names: set[str]) -> set[str]:
    """Current names still free to be claimed by a rename."""
    return set(current) - consumed - desired_names


# Fields.


def diff_field_modify(builder: DiffBuilder, table: str, name: str, current: Field, desired: Field) -> None:
    comparison = compare_fields(table, desired, current)
    if not comparison.has_changes:
        return
    props = list(comparison.changed_props)
    details = {p: {"old": c.old, "new": c.new} for p, c in comparison.changed_props.items()}
    if len(props) <= ALTER_THRESHOLD:
        up = [render_alter_field(table, name, desired, p) for p in props]
        down = [render_alter_field(table, name, current, p) for p in reversed(props)]
    else:
        up = [render_field(table, desired, overwrite=True, name=name)]
        down = [render_field(table, current, overwrite=True, name=name)]
    builder.add(
        "field",
        f"{table}.{name}",
        "modify",
        f"Modify field: {table}.{name} ({', '.join(props)})",
        up,
        down,
        changes=details,
    )


def diff_fields(builder: DiffBuilder, table: str, current: Table, desired: Table) -> None:
    current_map = {f.name: f for f in table_body_fields(current) if not f.is_wildcard_shadow()}
    desired_fields = [f for f in table_body_fields(desired) if not f.is_wildcard_shadow()]
    desired_names = {f.name for f in desired_fields}
    consumed: set[str] = set()

    for field in by_name(desired_fields):
        if field.name in current_map:
            consumed.add(field.name)
            diff_field_modify(builder, table, field.name, current_map[field.name], field)
            continue
        rename = detect_field_rename(table, field, rename_candidates(current_map, consumed, desired_names))
        if rename.is_renamed:
            old = rename.old_name
            consumed.add(old)
            builder.add(
                "field",
                f"{table}.{field.name}",
                "rename",
                f"Rename field: {table}.{old} -> {field.name}",
                [render_rename("field", old, field.name, table)],
                [render_rename("field", field.name, old, table)],
                old_name=old,
            )
            diff_field_modify(builder, table, field.name, current_map[old], field)
            continue
        builder.add(
            "field",
            f"{table}.{field.name}",
            "create",
            f"New field: {table}.{field.name}",
            [render_field(table, field)],
            [render_remove_field(table, field.name)],
        )

    for name in sorted(current_map):
        if name in consumed or name in desired_names:
            continue
        builder.add(
            "field",
            f"{table}.{name}",
            "remove",
            f"Remove field: {table}.{name}",
            [render_remove_field(table, name)],
            [render_field(table, current_map[name])],
        )


# Indexes.


def diff_indexes(builder: DiffBuilder, table: str, current: Table, desired: Table) -> None:
    current_map = current.index_map()
    desired_names = {i.name for i in desired.indexes}
    consumed: set[str] = set()

    for index in by_name(desired.indexes):
        name = index.name
        if name in current_map:
            old_index = current_map[name]
            consumed.add(name)
        else:
            rename = detect_index_rename(table, index, rename_candidates(current_map, consumed, desired_names))
            if not rename.is_renamed:
                builder.add(
                    "index",
                    f"{table}.{name}",
                    "create",
                    f"New index: {table}.{name}",
                    [render_index(table, index)],
                    [render_remove_index(table, name)],
                )
                continue
            old_index = current_map[rename.old_name]
            consumed.add(rename.old_name)
            builder.add(
                "index",
                f"{table}.{name}",
                "rename",
                f"Rename index: {table}.{rename.old_name} -> {name}",
                [render_rename("index", rename.old_name, name, table)],
                [render_rename("index", name, rename.old_name, table)],
                old_name=rename.old_name,
            )

        comparison = compare_indexes(index, old_index)
        if not comparison.has_changes:
            continue
        details = {p: {"old": c.old, "new": c.new} for p, c in comparison.changes.items()}
        if comparison.change_class == CHANGE_RECREATE:
            builder.add(
                "index",
                f"{table}.{name}",
                "recreate",
                f"Recreate index: {table}.{name}",
                [render_remove_index(table, name), render_index(table, index)],
                [render_remove_index(table, name), render_index(table, old_index, name=name)],
                changes=details,
            )
        else:
            builder.add(
                "index",
                f"{table}.{name}",
                "modify",
                f"Modify index: {table}.{name}",
                [render_index(table, index, overwrite=True)],
                [render_index(table, old_index, overwrite=True, name=name)],
                changes=details,
            )

    for name in sorted(current_map):
        if name in consumed or name in desired_names:
            continue
        builder.add(
            "index",
            f"{table}.{name}",
            "remove",
            f"Remove index: {table}.{name}",
            [render_remove_index(table, name)],
            [render_index(table, current_map[name])],
        )


# Events.


def diff_events(builder: DiffBuilder, table: str, current: Table, desired: Table) -> None:
    current_map = current.event_map()
    desired_names = {e.name for e in desired.events}
    consumed: set[str] = set()

    for event in by_name(desired.events):
        name = event.name
        if name in current_map:
            old_event = current_map[name]
            consumed.add(name)
        else:
            rename = detect_event_rename(table, event, rename_candidates(current_map, consumed, desired_names))
            if not rename.is_renamed:
                builder.add(
                    "event",
                    f"{table}.{name}",
                    "create",
                    f"New event: {table}.{name}",
                    [render_event(table, event)],
                    [render_remove_event(table, name)],
                )
                continue
            old_event = current_map[rename.old_name]
            consumed.add(rename.old_name)
            builder.add(
                "event",
                f"{table}.{name}",
                "rename",
                f"Rename event: {table}.{rename.old_name} -> {name}",
                [render_rename("event", rename.old_name, name, table)],
                [render_rename("event", name, rename.old_name, table)],
                old_name=rename.old_name,
            )

        if compare_events(event, old_event):
            builder.add(
                "event",
                f"{table}.{name}",
                "modify",
                f"Modify event: {table}.{name}",
                [render_event(table, event, overwrite=True)],
                [render_event(table, old_event, overwrite=True, name=name)],
            )

    for name in sorted(current_map):
        if name in consumed or name in desired_names:
            continue
        builder.add(
            "event",
            f"{table}.{name}",
            "remove",
            f"Remove event: {table}.{name}",
            [render_remove_event(table, name)],
            [render_event(table, current_map[name])],
        )


# Tables and relations.


def diff_table_contents(builder: DiffBuilder, current: Table, desired: Table) -> None:
    name = desired.name
    current_as_named = dataclasses.replace(current, name=name)

    if relation_endpoints_changed(desired, current):
        # Endpoints cannot be altered in place; the relation and its data are dropped and redefined.
        builder.add(
            "relation",
            name,
            "recreate",
            f"Recreate relation: {name} ({current.relation_from}->{current.relation_to} "
            f"becomes {desired.relation_from}->{desired.relation_to})",
            [render_remove_table(name), *render_table_full(desired)],
            [render_remove_table(name), *render_table_full(current_as_named)],
        )
        return

    table_changes = compare_tables(desired, current)
    if table_changes:
        builder.add(
            "relation" if desired.is_relation() else "table",
            name,
            "modify",
            f"Modify table: {name} ({', '.join(table_changes)})",
            [render_table(desired, overwrite=True)],
            [render_table(current_as_named, overwrite=True)],
            changes={p: {"old": c.old, "new": c.new} for p, c in table_changes.items()},
        )

    diff_fields(builder, name, current, desired)
    diff_indexes(builder, name, current, desired)
    diff_events(builder, name, current, desired)


def diff_tables(builder: DiffBuilder, kind: str, current: list[Table], desired: list[Table]) -> None:
    current_map = {t.name: t for t in current}
    desired_names = {t.name for t in desired}
    consumed: set[str] = set()

    for table in by_name(desired):
        if table.name in current_map:
            consumed.add(table.name)
            diff_table_contents(builder, current_map[table.name], table)
            continue
        rename = detect_table_rename(table, rename_candidates(current_map, consumed, desired_names))
        if rename.is_renamed:
            old = rename.old_name
            consumed.add(old)
            builder.add(
                kind,
                table.name,
                "rename",
                f"Rename {kind}: {old} -> {table.name}",
                [render_rename("table", old, table.name)],
                [render_rename("table", table.name, old)],
                old_name=old,
            )
            diff_table_contents(builder, current_map[old], table)
            continue
        builder.add(
            kind,
            table.name,
            "create",
            f"New {kind}: {table.name}",
            render_table_full(table),
            [render_remove_table(table.name)],
        )

    for name in sorted(current_map):
        if name in consumed or name in desired_names:
            continue
        builder.add(
            kind,
            name,
            "remove",
            f"Remove {kind}: {name}",
            [render_remove_table(name)],
            render_table_full(current_map[name]),
        )


# Database-level entities.


def diff_entities(
    builder: DiffBuilder,
    kind: str,
    current: list,
    desired: list,
    differs: Callable[[Any, Any], bool],
    render: Callable[..., str],
    render_modify: Callable[[Any, Any], tuple[list[str], list[str]]] | None = None,
) -> None:
    current_map = {item.name: item for item in current}
    desired_names = {item.name for item in desired}
    consumed: set[str] = set()

    def remove(item: Any) -> str:
        return render_remove(kind, item.name, getattr(item, "level", "database"))

    for item in by_name(desired):
        name = item.name
        if name in current_map:
            old = current_map[name]
            consumed.add(name)
        else:
            rename = detect_rename(kind, item, rename_candidates(current_map, consumed, desired_names))
            if not rename.is_renamed:
                builder.add(kind, name, "create", f"New {kind}: {name}", [render(item)], [remove(item)])
                continue
            old = current_map[rename.old_name]
            consumed.add(rename.old_name)
            level = getattr(old, "level", "database")
            builder.add(
                kind,
                name,
                "rename",
                f"Rename {kind}: {rename.old_name} -> {name}",
                [render_rename(kind, rename.old_name, name, level=level)],
                [render_rename(kind, name, rename.old_name, level=level)],
                old_name=rename.old_name,
            )

        if not differs(item, old):
            continue
        old_as_named = dataclasses.replace(old, name=name)
        if render_modify is not None:
            up, down = render_modify(old_as_named, item)
        else:
            up = [render(item, overwrite=True)]
            down = [render(old_as_named, overwrite=True)]
        builder.add(kind, name, "modify", f"Modify {kind}: {name}", up, down)

    for name in sorted(current_map):
        if name in consumed or name in desired_names:
            continue
        item = current_map[name]
        builder.add(kind, name, "remove", f"Remove {kind}: {name}", [remove(item)], [render(item)])


def param_modify(current: Any, desired: Any) -> tuple[list[str], list[str]]:
    if normalize_comment(current.comment) == normalize_comment(desired.comment):
        return [render_alter_param(desired.name, desired.value)], [render_alter_param(desired.name, current.value)]
    return [render_param(desired, overwrite=True)], [render_param(current, overwrite=True)]


def access_modify(current: Any, desired: Any) -> tuple[list[str], list[str]]:
    # Keys reported back redacted are restored from the desired definition.
    restored = dataclasses.replace(
        current,
        **{name: getattr(desired, name) for name in ("jwt_key", "jwt_issuer_key") if getattr(current, name) == REDACTED},
    )
    return [render_access(desired, overwrite=True)], [render_access(restored, overwrite=True)]


def generate_migration_diff(current: Schema, desired: Schema) -> MigrationDiff:
    """Compute the forward and reverse scripts that take `current` to `desired`.

    Entity kinds are processed in dependency order (analyzers and functions
    before the tables that use them, accesses after the tables their
    signup/signin queries touch). Within a kind, desired entities go by name,
    then removals by name. The down script replays each change's own
    reverse statements in the opposite change order.
    """
    builder = DiffBuilder()
    diff_entities(builder, "analyzer", current.analyzers, desired.analyzers, compare_analyzers, render_analyzer)
    diff_entities(builder, "function", current.functions, desired.functions, compare_functions, render_function)
    diff_entities(builder, "param", current.params, desired.params, compare_params, render_param, param_modify)
    diff_entities(builder, "sequence", current.sequences, desired.sequences, compare_sequences, render_sequence)
    diff_tables(builder, "table", current.tables, desired.tables)
    diff_tables(builder, "relation", current.relations, desired.relations)
    diff_entities(builder, "access", current.scopes, desired.scopes, compare_scopes, render_access, access_modify)
    diff_entities(builder, "user", current.users, desired.users, compare_users, render_user)
    return builder.build()


def has_schema_changes(current: Schema, desired: Schema) -> bool:
    return len(generate_migration_diff(current, desired).changes) > 0


def summarize_changes(changes: list[Change]) -> str:
    lines = [f"{c.operation:<8} {c.kind:<9} {c.entity}" for c in changes]
    return "\n".join(lines)


def generate_outputs(current_path: Path, schema_path: Path) -> tuple[str, str, MigrationDiff]:
    current = load_schema_dump(current_path)
    desired = load_desired_schema(schema_path)
    diff = generate_migration_diff(current, desired)
    up = diff.up + "\n" if diff.up else ""
    down = diff.down + "\n" if diff.down else ""
    return up, down, diff


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def check_equal(path: Path, generated: str) -> bool:
    if not path.exists():
        print(f"[check] missing file: {path}", file=sys.stderr)
        return False

    existing = path.read_text(encoding="utf-8")
    if existing == generated:
        return True

    print(f"[check] drift detected: {path}", file=sys.stderr)
    diff = difflib.unified_diff(
        existing.splitlines(),
        generated.splitlines(),
        fromfile=str(path),
        tofile=f"generated:{path}",
        lineterm="",
    )
    for idx, line in enumerate(diff):
        if idx > 200:
            print("... (diff truncated)", file=sys.stderr)
            break
        print(line, file=sys.stderr)
    return False


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate up/down migration scripts from a schema dump + desired schema")
    parser.add_argument("--current", default="schemas/current.json", help="Schema dump written by dump_schemas.py")
    parser.add_argument("--schema", default="schema.yaml", help="Desired schema (YAML)")
    parser.add_argument("--out-up", default="migration.up.surql", help="Output forward script")
    parser.add_argument("--out-down", default="migration.down.surql", help="Output rollback script")
    parser.add_argument("--check", action="store_true", help="Verify outputs are up-to-date without writing")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    out_up = Path(args.out_up)
    out_down = Path(args.out_down)

    up, down, diff = generate_outputs(Path(args.current), Path(args.schema))

    if args.check:
        up_ok = check_equal(out_up, up)
        down_ok = check_equal(out_down, down)
        return 0 if up_ok and down_ok else 1

    if not diff.changes:
        print("No schema changes detected")
        return 0
    write_text(out_up, up)
    write_text(out_down, down)
    print(summarize_changes(diff.changes))
    print(f"Generated {out_up}")
    print(f"Generated {out_down}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
