#!/usr/bin/env python3
"""Render a desired schema as a Mermaid erDiagram.

Usage:
    python mermaid_diagram.py --schema schema.yaml [--level minimal|detailed] [--output schema.mmd]
"""

from __future__ import annotations

import argparse
import re
import sys
from pathlib import Path

from load_schema import load_desired_schema
from migration_errors import MigrationError
from schema_model import DEFAULT_BOOLEAN, DEFAULT_JSON, DEFAULT_NUMBER, DefaultValue, Field, Schema, Table
from schema_normalize import normalize_type


LEVELS = ("minimal", "detailed")
RECORD_RE = re.compile(r"record<([^>]+)>")

DISPLAY_TYPES = {
    "float": "number",
    "decimal": "number",
    "uuid": "string",
    "duration": "string",
}


def simplify_type(field_type: str) -> str:
    text = normalize_type(field_type)
    m = re.fullmatch(r"option<(.+)>", text)
    if m:
        return simplify_type(m.group(1))
    if text.startswith(("array<", "set<")):
        return "array"
    if text.startswith("record"):
        return "record"
    return DISPLAY_TYPES.get(text, text.replace(" ", ""))


def record_targets(field_type: str) -> list[str]:
    m = RECORD_RE.search(field_type)
    if not m:
        return []
    return [t.strip() for t in m.group(1).split("|") if t.strip()]


def attribute_name(name: str) -> str:
    # Mermaid attribute names allow only word characters.
    return re.sub(r"\W", "_", name)


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def unique_columns(table: Table) -> set[str]:
    return {i.columns[0] for i in table.indexes if i.unique and len(i.columns) == 1}


def edge_cardinality(field: Field) -> str:
    field_type = normalize_type(field.full_type())
    if "array<" in field_type or "set<" in field_type:
        return "||--o{"
    if field_type.startswith("option<"):
        return "}o--o|"
    return "}o--||"


def relationship_lines(schema: Schema) -> list[str]:
    lines: list[str] = []
    seen: set[tuple[str, str, str]] = set()

    for relation in sorted(schema.relations, key=lambda r: r.name):
        key = (relation.relation_from or "", relation.name, relation.relation_to or "")
        if key in seen or not relation.relation_from or not relation.relation_to:
            continue
        seen.add(key)
        lines.append(f'    {relation.relation_from} }}o--o{{ {relation.relation_to} : "{relation.name}"')

    for table in schema.tables:
        for field in table.fields:
            for target in record_targets(field.full_type()):
                key = (table.name, field.name, target)
                if key in seen:
                    continue
                seen.add(key)
                lines.append(f'    {table.name} {edge_cardinality(field)} {target} : "{field.name}"')
    return lines


def constraint_summary(assertion: str | None) -> str:
    if not assertion:
        return ""
    parts: list[str] = []
    low = re.search(r"string::len\([^)]*\)\s*>=\s*(\d+)", assertion)
    high = re.search(r"string::len\([^)]*\)\s*<=\s*(\d+)", assertion)
    if low and high:
        parts.append(f"{low.group(1)}-{high.group(1)} chars")
    elif low:
        parts.append(f"min {low.group(1)} chars")
    low = re.search(r"\$value\s*>=\s*(\d+)", assertion)
    high = re.search(r"\$value\s*<=\s*(\d+)", assertion)
    if low and high:
        parts.append(f"{low.group(1)}-{high.group(1)}")
    elif low:
        parts.append(f">={low.group(1)}")
    if "string::is::email" in assertion or "string::is_email" in assertion:
        parts.append("email")
    return ", ".join(parts)


def default_summary(default: DefaultValue) -> str:
    if default.kind == DEFAULT_JSON:
        return "[]" if isinstance(default.value, list) else "{}"
    if default.kind == DEFAULT_BOOLEAN:
        return "true" if default.value else "false"
    if default.kind == DEFAULT_NUMBER:
        return str(default.value)
    return truncate(str(default.value), 20).replace('"', "'")


def field_keys(table: Table, field: Field) -> list[str]:
    keys: list[str] = []
    if field.name == "id":
        keys.append("PK")
    if record_targets(field.full_type()):
        keys.append("FK")
    if field.name in unique_columns(table):
        keys.append("UK")
    return keys


def field_notes(field: Field) -> list[str]:
    notes: list[str] = []
    if field.default is not None:
        notes.append(f"default: {default_summary(field.default)}")
    if field.value:
        notes.append("computed" if "<future>" in field.value else f"value: {truncate(field.value, 30)}")
    if field.readonly:
        notes.append("readonly")
    constraint = constraint_summary(field.assertion)
    if constraint:
        notes.append(constraint)
    if field.comment:
        notes.append(truncate(field.comment, 40))
    return [n.replace('"', "'") for n in notes]


def field_line(table: Table, field: Field, detailed: bool) -> str:
    line = f"        {simplify_type(field.full_type())} {attribute_name(field.name)}"
    keys = field_keys(table, field)
    if keys:
        line += " " + ", ".join(keys)
    if detailed:
        notes = field_notes(field)
        if notes:
            line += ' "' + "; ".join(notes) + '"'
    return line


def entity_lines(table: Table, detailed: bool) -> list[str]:
    lines = [f"    {table.name} {{"]
    lines.extend(field_line(table, field, detailed) for field in table.fields if not field.is_wildcard_shadow())
    lines.append("    }")
    return lines


def generate_mermaid(schema: Schema, level: str = "minimal") -> str:
    if level not in LEVELS:
        raise ValueError(f"Unknown diagram level: {level} (expected one of {', '.join(LEVELS)})")
    detailed = level == "detailed"
    lines = ["erDiagram"]
    lines.extend(relationship_lines(schema))
    for table in schema.tables:
        lines.append("")
        lines.extend(entity_lines(table, detailed))
    if detailed:
        for relation in schema.relations:
            if any(f.name not in ("in", "out") for f in relation.fields):
                lines.append("")
                lines.extend(entity_lines(relation, detailed))
    return "\n".join(lines) + "\n"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render a schema file as a Mermaid ER diagram")
    parser.add_argument("--schema", default="schema.yaml", help="Desired schema (YAML)")
    parser.add_argument("--level", choices=LEVELS, default="minimal", help="Diagram detail level")
    parser.add_argument("--output", default=None, help="Write to a file instead of stdout")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    try:
        diagram = generate_mermaid(load_desired_schema(Path(args.schema)), args.level)
    except MigrationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if args.output:
        Path(args.output).write_text(diagram, encoding="utf-8")
        print(f"Diagram written to {args.output}")
    else:
        sys.stdout.write(diagram)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
