"""Structured schema entities shared by the loader, the introspection parser and the diff generator."""

from __future__ import annotations

import dataclasses
import datetime as dt
import re
from typing import Any, Iterable

from migration_errors import SchemaValidationError


TABLE_KINDS = ("normal", "relation", "any")
INDEX_KINDS = ("btree", "hash", "search", "mtree", "hnsw")
ACCESS_TYPES = ("record", "jwt", "bearer")
EVENT_TRIGGERS = ("create", "update", "delete")
RELATION_FIELDS = ("in", "out")

DEFAULT_LITERAL = "literal"
DEFAULT_EXPRESSION = "expression"
DEFAULT_NUMBER = "number"
DEFAULT_BOOLEAN = "boolean"
DEFAULT_JSON = "json"

EXPRESSION_KEYWORDS = {"NONE", "NULL", "TRUE", "FALSE"}


def looks_like_expression(text: str) -> bool:
    """True when a bare string reads as SurrealQL rather than a literal to quote."""
    stripped = text.strip()
    if "::" in stripped or "(" in stripped:
        return True
    if stripped.upper() in EXPRESSION_KEYWORDS:
        return True
    if stripped[:1] in ("$", "'", '"', "{", "[", "<", "`"):
        return True
    return bool(re.match(r"^[a-z]?['\"]", stripped) and stripped.endswith(("'", '"')))


@dataclasses.dataclass(frozen=True)
class DefaultValue:
    kind: str
    value: Any

    @classmethod
    def from_python(cls, value: Any) -> DefaultValue | None:
        if value is None:
            return None
        if isinstance(value, DefaultValue):
            return value
        if isinstance(value, bool):
            return cls(DEFAULT_BOOLEAN, value)
        if isinstance(value, (int, float)):
            return cls(DEFAULT_NUMBER, value)
        if isinstance(value, (list, dict)):
            return cls(DEFAULT_JSON, value)
        text = str(value)
        if looks_like_expression(text):
            return cls(DEFAULT_EXPRESSION, text)
        return cls(DEFAULT_LITERAL, text)

    @classmethod
    def expression(cls, text: str) -> DefaultValue:
        return cls(DEFAULT_EXPRESSION, text)


@dataclasses.dataclass
class FieldReference:
    table: str
    on_delete: str | None = None


@dataclasses.dataclass
class Field:
    name: str
    type: str = "any"
    optional: bool = False
    readonly: bool = False
    flexible: bool = False
    default: DefaultValue | None = None
    default_always: bool = False
    value: str | None = None
    assertion: str | None = None
    permissions: str | None = None
    reference: FieldReference | None = None
    comment: str | None = None
    previous_names: list[str] = dataclasses.field(default_factory=list)

    def full_type(self) -> str:
        if self.optional and not self.type.strip().lower().startswith("option<"):
            return f"option<{self.type}>"
        return self.type

    def is_wildcard_shadow(self) -> bool:
        return self.name.endswith(".*") or self.name.endswith("[*]")


@dataclasses.dataclass
class Index:
    name: str
    columns: list[str]
    unique: bool = False
    kind: str = "btree"
    analyzer: str | None = None
    bm25: str | None = None
    highlights: bool = False
    doc_ids_cache: int | None = None
    doc_lengths_cache: int | None = None
    postings_cache: int | None = None
    terms_cache: int | None = None
    dimension: int | None = None
    dist: str | None = None
    capacity: int | None = None
    efc: int | None = None
    m: int | None = None
    m0: int | None = None
    lm: float | None = None
    vector_type: str | None = None
    comment: str | None = None
    previous_names: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Event:
    name: str
    then: str
    trigger_type: str | None = None
    when: str | None = None
    comment: str | None = None
    previous_names: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Changefeed:
    duration: str
    include_original: bool = False


@dataclasses.dataclass
class Table:
    name: str
    fields: list[Field] = dataclasses.field(default_factory=list)
    indexes: list[Index] = dataclasses.field(default_factory=list)
    events: list[Event] = dataclasses.field(default_factory=list)
    schema_mode: str = "full"
    kind: str = "normal"
    permissions: str | None = None
    drop: bool = False
    changefeed: Changefeed | None = None
    comment: str | None = None
    relation_from: str | None = None
    relation_to: str | None = None
    enforced: bool = False
    previous_names: list[str] = dataclasses.field(default_factory=list)

    def is_relation(self) -> bool:
        return self.kind == "relation"

    def field_map(self) -> dict[str, Field]:
        return {f.name: f for f in self.fields}

    def index_map(self) -> dict[str, Index]:
        return {i.name: i for i in self.indexes}

    def event_map(self) -> dict[str, Event]:
        return {e.name: e for e in self.events}

    def ensure_relation_fields(self) -> None:
        """Add the mandatory in/out record fields a relation derives from its endpoints."""
        if not self.is_relation():
            return
        existing = self.field_map()
        derived: list[Field] = []
        for name, target in (("in", self.relation_from), ("out", self.relation_to)):
            if name in existing or not target:
                continue
            derived.append(Field(name=name, type=f"record<{target}>"))
        self.fields = derived + self.fields


def make_relation(name: str, relation_from: str, relation_to: str, **kwargs: Any) -> Table:
    table = Table(name=name, kind="relation", relation_from=relation_from, relation_to=relation_to, **kwargs)
    table.ensure_relation_fields()
    return table


@dataclasses.dataclass
class FunctionParam:
    name: str
    type: str


@dataclasses.dataclass
class Function:
    name: str
    body: str
    params: list[FunctionParam] = dataclasses.field(default_factory=list)
    returns: str | None = None
    permissions: str | None = None
    comment: str | None = None
    previous_names: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Access:
    name: str
    access_type: str = "record"
    signup: str | None = None
    signin: str | None = None
    authenticate: str | None = None
    session: str | None = None
    token: str | None = None
    jwt_algorithm: str | None = None
    jwt_key: str | None = None
    jwt_url: str | None = None
    jwt_issuer_key: str | None = None
    bearer_key: str | None = None
    bearer_type: str | None = None
    comment: str | None = None
    previous_names: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Analyzer:
    name: str
    tokenizers: list[str] = dataclasses.field(default_factory=list)
    filters: list[str] = dataclasses.field(default_factory=list)
    function: str | None = None
    comment: str | None = None
    previous_names: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Param:
    name: str
    value: str
    comment: str | None = None
    previous_names: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Sequence:
    name: str
    start: int | None = None
    batch: int | None = None
    timeout: str | None = None
    comment: str | None = None
    previous_names: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class User:
    name: str
    level: str = "database"
    password: str | None = None
    passhash: str | None = None
    roles: list[str] = dataclasses.field(default_factory=lambda: ["VIEWER"])
    token_duration: str | None = None
    session_duration: str | None = None
    comment: str | None = None
    previous_names: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Schema:
    tables: list[Table] = dataclasses.field(default_factory=list)
    relations: list[Table] = dataclasses.field(default_factory=list)
    functions: list[Function] = dataclasses.field(default_factory=list)
    scopes: list[Access] = dataclasses.field(default_factory=list)
    analyzers: list[Analyzer] = dataclasses.field(default_factory=list)
    params: list[Param] = dataclasses.field(default_factory=list)
    sequences: list[Sequence] = dataclasses.field(default_factory=list)
    users: list[User] = dataclasses.field(default_factory=list)
    comments: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Migration:
    id: str
    applied_at: dt.datetime
    up: str
    down: str
    checksum: str
    down_checksum: str
    message: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> Migration:
        return cls(
            id=str(row.get("id", "")),
            applied_at=parse_datetime(row.get("appliedAt")),
            up=str(row.get("up") or ""),
            down=str(row.get("down") or ""),
            checksum=str(row.get("checksum") or ""),
            down_checksum=str(row.get("downChecksum") or ""),
            message=row.get("message") or None,
        )


def parse_datetime(value: Any) -> dt.datetime:
    if isinstance(value, dt.datetime):
        return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)
    if not value:
        return dt.datetime.min.replace(tzinfo=dt.timezone.utc)
    text = str(value).strip()
    if text.startswith("d'") or text.startswith('d"'):
        text = text[2:-1]
    text = text.replace("Z", "+00:00")
    # The database reports nanoseconds; datetime stops at microseconds.
    text = re.sub(r"(\.\d{6})\d+", r"\1", text)
    parsed = dt.datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt.timezone.utc)


def as_name_list(value: Any) -> list[str]:
    """Previous-name declarations come as a single name or a list of names."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return [str(v) for v in value if v]


def duplicate_names(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    dupes: set[str] = set()
    for name in names:
        if name in seen:
            dupes.add(name)
        seen.add(name)
    return sorted(dupes)


def validate_table(table: Table) -> list[str]:
    problems: list[str] = []
    if table.kind not in TABLE_KINDS:
        problems.append(f"table {table.name}: unknown kind {table.kind!r}")
    for label, names in (
        ("field", [f.name for f in table.fields]),
        ("index", [i.name for i in table.indexes]),
        ("event", [e.name for e in table.events]),
    ):
        for dupe in duplicate_names(names):
            problems.append(f"table {table.name}: duplicate {label} {dupe!r}")
    for index in table.indexes:
        if index.kind not in INDEX_KINDS:
            problems.append(f"index {table.name}.{index.name}: unknown kind {index.kind!r}")
        if not index.columns:
            problems.append(f"index {table.name}.{index.name}: no columns")
    for event in table.events:
        if event.trigger_type and event.trigger_type not in EVENT_TRIGGERS:
            problems.append(f"event {table.name}.{event.name}: unknown trigger {event.trigger_type!r}")

    if table.is_relation():
        fields = table.field_map()
        for name, target in (("in", table.relation_from), ("out", table.relation_to)):
            if not target:
                problems.append(f"relation {table.name}: missing endpoint for '{name}'")
                continue
            field = fields.get(name)
            if field is None:
                problems.append(f"relation {table.name}: missing '{name}' field")
            elif field.type.replace(" ", "") != f"record<{target}>":
                problems.append(f"relation {table.name}: '{name}' must be record<{target}>, got {field.type}")
    return problems


def validate_access(access: Access) -> list[str]:
    kind = access.access_type.lower()
    if kind not in ACCESS_TYPES:
        return [f"access {access.name}: unknown type {access.access_type!r}"]
    if kind == "jwt" and not ((access.jwt_algorithm and access.jwt_key) or access.jwt_url):
        return [f"access {access.name}: JWT access needs an algorithm and key, or a URL"]
    if kind == "bearer" and bool(access.bearer_key) != bool(access.bearer_type):
        return [f"access {access.name}: bearer key and key type go together"]
    return []


def validate_schema(schema: Schema) -> None:
    problems: list[str] = []
    table_names = [t.name for t in schema.tables] + [r.name for r in schema.relations]
    for dupe in duplicate_names(table_names):
        problems.append(f"duplicate table {dupe!r}")
    for table in [*schema.tables, *schema.relations]:
        problems.extend(validate_table(table))
    for label, items in (
        ("function", schema.functions),
        ("scope", schema.scopes),
        ("analyzer", schema.analyzers),
        ("param", schema.params),
        ("sequence", schema.sequences),
        ("user", schema.users),
    ):
        for dupe in duplicate_names(item.name for item in items):
            problems.append(f"duplicate {label} {dupe!r}")
    for access in schema.scopes:
        problems.extend(validate_access(access))
    if problems:
        raise SchemaValidationError("Invalid schema:\n  " + "\n  ".join(problems))
