"""Render SurrealQL DDL statements for schema entities."""

from __future__ import annotations

from schema_model import (
    Access,
    Analyzer,
    Event,
    Field,
    Function,
    Index,
    Param,
    Sequence,
    Table,
    User,
)
from schema_normalize import serialize_default_value


RENAMEABLE = {"table", "field", "index", "event", "function", "access", "analyzer", "param", "sequence", "user"}


def quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def wrap_block(body: str, opener: str = "{") -> str:
    body = body.strip().rstrip(";").strip()
    if body[:1] in ("{", "(") and body[-1:] in ("}", ")"):
        return body
    if opener == "(":
        return f"({body})"
    return "{ " + body + " }"


def overwrite_kw(overwrite: bool) -> str:
    return "OVERWRITE " if overwrite else ""


def comment_clause(comment: str | None) -> str:
    return f" COMMENT {quote(comment)}" if comment else ""


def is_full_permissions(permissions: str | None) -> bool:
    return permissions is None or " ".join(permissions.split()).upper() in ("", "FULL")


# Tables.


def render_table(table: Table, overwrite: bool = False) -> str:
    parts = [f"DEFINE TABLE {overwrite_kw(overwrite)}{table.name}"]
    if table.drop:
        parts.append("DROP")
    if table.is_relation():
        relation = "TYPE RELATION"
        if table.relation_from:
            relation += f" IN {table.relation_from}"
        if table.relation_to:
            relation += f" OUT {table.relation_to}"
        if table.enforced:
            relation += " ENFORCED"
        parts.append(relation)
    elif table.kind == "any":
        parts.append("TYPE ANY")
    else:
        parts.append("TYPE NORMAL")
    parts.append("SCHEMAFULL" if table.schema_mode == "full" else "SCHEMALESS")
    if table.changefeed:
        changefeed = f"CHANGEFEED {table.changefeed.duration}"
        if table.changefeed.include_original:
            changefeed += " INCLUDE ORIGINAL"
        parts.append(changefeed)
    if table.permissions and table.permissions.strip():
        parts.append(f"PERMISSIONS {table.permissions.strip()}")
    return " ".join(parts) + comment_clause(table.comment) + ";"


def table_body_fields(table: Table) -> list[Field]:
    """Fields rendered explicitly; a relation's in/out come from its TYPE RELATION clause."""
    if table.is_relation():
        return [f for f in table.fields if f.name not in ("in", "out")]
    return list(table.fields)


def render_table_full(table: Table) -> list[str]:
    statements = [render_table(table)]
    statements.extend(render_field(table.name, field) for field in table_body_fields(table))
    statements.extend(render_index(table.name, index) for index in table.indexes)
    statements.extend(render_event(table.name, event) for event in table.events)
    return statements


def render_remove_table(name: str) -> str:
    return f"REMOVE TABLE {name};"


# Fields.


def default_clause(field: Field) -> str:
    if field.default is None:
        return ""
    always = "ALWAYS " if field.default_always else ""
    return f" DEFAULT {always}{serialize_default_value(field.default)}"


def reference_clause(field: Field) -> str:
    if field.reference is None:
        return ""
    clause = " REFERENCE"
    if field.reference.on_delete:
        clause += f" ON DELETE {field.reference.on_delete}"
    return clause


def render_field(table: str, field: Field, overwrite: bool = False, name: str | None = None) -> str:
    text = f"DEFINE FIELD {overwrite_kw(overwrite)}{name or field.name} ON TABLE {table}"
    if field.flexible:
        text += " FLEXIBLE"
    text += f" TYPE {field.full_type()}"
    text += reference_clause(field)
    text += default_clause(field)
    if field.readonly:
        text += " READONLY"
    if field.value:
        text += f" VALUE {field.value}"
    if field.assertion:
        text += f" ASSERT {field.assertion}"
    if not is_full_permissions(field.permissions):
        text += f" PERMISSIONS {field.permissions.strip()}"
    return text + comment_clause(field.comment) + ";"


def field_property_clause(field: Field, prop: str) -> str:
    if prop == "type":
        return f"TYPE {field.full_type()}"
    if prop == "readonly":
        return "READONLY" if field.readonly else "DROP READONLY"
    if prop == "flexible":
        return "FLEXIBLE" if field.flexible else "DROP FLEXIBLE"
    if prop in ("default", "default_always"):
        return default_clause(field).strip() or "DROP DEFAULT"
    if prop == "value":
        return f"VALUE {field.value}" if field.value else "DROP VALUE"
    if prop == "assert":
        return f"ASSERT {field.assertion}" if field.assertion else "DROP ASSERT"
    if prop == "permissions":
        return "PERMISSIONS FULL" if is_full_permissions(field.permissions) else f"PERMISSIONS {field.permissions.strip()}"
    if prop == "reference":
        return reference_clause(field).strip() or "DROP REFERENCE"
    if prop == "comment":
        return f"COMMENT {quote(field.comment)}" if field.comment else "DROP COMMENT"
    raise ValueError(f"Unknown field property: {prop}")


def render_alter_field(table: str, name: str, field: Field, prop: str) -> str:
    """One property-level ALTER, taking the property's value from `field`."""
    return f"ALTER FIELD {name} ON TABLE {table} {field_property_clause(field, prop)};"


def render_remove_field(table: str, name: str) -> str:
    return f"REMOVE FIELD {name} ON TABLE {table};"


# Indexes.


def index_tail(index: Index) -> str:
    kind = (index.kind or "btree").lower()
    parts: list[str] = []
    if index.unique:
        parts.append("UNIQUE")
    if kind == "search":
        parts.append(f"FULLTEXT ANALYZER {index.analyzer or 'ascii'}")
        if index.bm25 is not None:
            parts.append(f"BM25({index.bm25})" if index.bm25 else "BM25")
        if index.highlights:
            parts.append("HIGHLIGHTS")
        for keyword, value in (
            ("DOC_IDS_CACHE", index.doc_ids_cache),
            ("DOC_LENGTHS_CACHE", index.doc_lengths_cache),
            ("POSTINGS_CACHE", index.postings_cache),
            ("TERMS_CACHE", index.terms_cache),
        ):
            if value is not None:
                parts.append(f"{keyword} {value}")
    elif kind in ("mtree", "hnsw"):
        parts.append(f"{kind.upper()} DIMENSION {index.dimension}")
        if index.dist:
            parts.append(f"DIST {index.dist.upper()}")
        if index.vector_type:
            parts.append(f"TYPE {index.vector_type.upper()}")
        tunables = (("CAPACITY", index.capacity),) if kind == "mtree" else (
            ("EFC", index.efc),
            ("M", index.m),
            ("M0", index.m0),
            ("LM", index.lm),
        )
        for keyword, value in tunables:
            if value is not None:
                parts.append(f"{keyword} {value}")
    return (" " + " ".join(parts)) if parts else ""


def render_index(table: str, index: Index, overwrite: bool = False, name: str | None = None) -> str:
    columns = ", ".join(index.columns)
    text = f"DEFINE INDEX {overwrite_kw(overwrite)}{name or index.name} ON TABLE {table} FIELDS {columns}"
    return text + index_tail(index) + comment_clause(index.comment) + ";"


def render_remove_index(table: str, name: str) -> str:
    return f"REMOVE INDEX {name} ON TABLE {table};"


# Events.


def event_condition(event: Event) -> str | None:
    parts: list[str] = []
    if event.trigger_type:
        parts.append(f'$event = "{event.trigger_type.upper()}"')
    if event.when:
        parts.append(f"({event.when.strip()})" if parts else event.when.strip())
    return " AND ".join(parts) or None


def render_event(table: str, event: Event, overwrite: bool = False, name: str | None = None) -> str:
    text = f"DEFINE EVENT {overwrite_kw(overwrite)}{name or event.name} ON TABLE {table}"
    condition = event_condition(event)
    if condition:
        text += f" WHEN {condition}"
    text += f" THEN {wrap_block(event.then)}"
    return text + comment_clause(event.comment) + ";"


def render_remove_event(table: str, name: str) -> str:
    return f"REMOVE EVENT {name} ON TABLE {table};"


# Database-level entities.


def render_function(func: Function, overwrite: bool = False) -> str:
    params = ", ".join(f"${p.name.lstrip('$')}: {p.type}" for p in func.params)
    text = f"DEFINE FUNCTION {overwrite_kw(overwrite)}fn::{func.name}({params})"
    if func.returns:
        text += f" -> {func.returns}"
    text += f" {wrap_block(func.body)}"
    if not is_full_permissions(func.permissions):
        text += f" PERMISSIONS {func.permissions.strip()}"
    return text + comment_clause(func.comment) + ";"


def access_type_clause(access: Access) -> str:
    kind = access.access_type.lower()
    text = f"TYPE {kind.upper()}"
    if kind == "jwt":
        if access.jwt_algorithm and access.jwt_key:
            text += f" ALGORITHM {access.jwt_algorithm.upper()} KEY {quote(access.jwt_key)}"
        elif access.jwt_url:
            text += f" URL {quote(access.jwt_url)}"
        if access.jwt_issuer_key:
            text += f" WITH ISSUER KEY {quote(access.jwt_issuer_key)}"
    elif kind == "bearer" and access.bearer_key and access.bearer_type:
        text += f" KEY {access.bearer_key} TYPE {access.bearer_type}"
    return text


def render_access(access: Access, overwrite: bool = False) -> str:
    text = f"DEFINE ACCESS {overwrite_kw(overwrite)}{access.name} ON DATABASE {access_type_clause(access)}"
    if access.signup:
        text += f" SIGNUP {wrap_block(access.signup, '(')}"
    if access.signin:
        text += f" SIGNIN {wrap_block(access.signin, '(')}"
    if access.authenticate:
        text += f" AUTHENTICATE {wrap_block(access.authenticate)}"
    durations = []
    if access.token:
        durations.append(f"FOR TOKEN {access.token}")
    if access.session:
        durations.append(f"FOR SESSION {access.session}")
    if durations:
        text += " DURATION " + ", ".join(durations)
    return text + comment_clause(access.comment) + ";"


def render_analyzer(analyzer: Analyzer, overwrite: bool = False) -> str:
    text = f"DEFINE ANALYZER {overwrite_kw(overwrite)}{analyzer.name}"
    if analyzer.function:
        text += f" FUNCTION fn::{analyzer.function.removeprefix('fn::')}"
    if analyzer.tokenizers:
        text += " TOKENIZERS " + ",".join(analyzer.tokenizers)
    if analyzer.filters:
        text += " FILTERS " + ",".join(analyzer.filters)
    return text + comment_clause(analyzer.comment) + ";"


def render_param(param: Param, overwrite: bool = False) -> str:
    return f"DEFINE PARAM {overwrite_kw(overwrite)}${param.name} VALUE {param.value}" + comment_clause(param.comment) + ";"


def render_alter_param(name: str, value: str) -> str:
    return f"ALTER PARAM ${name} VALUE {value};"


def render_sequence(seq: Sequence, overwrite: bool = False) -> str:
    text = f"DEFINE SEQUENCE {overwrite_kw(overwrite)}{seq.name}"
    if seq.batch is not None:
        text += f" BATCH {seq.batch}"
    if seq.start is not None:
        text += f" START {seq.start}"
    if seq.timeout:
        text += f" TIMEOUT {seq.timeout}"
    return text + comment_clause(seq.comment) + ";"


def render_user(user: User, overwrite: bool = False) -> str:
    text = f"DEFINE USER {overwrite_kw(overwrite)}{user.name} ON {user.level.upper()}"
    if user.password:
        text += f" PASSWORD {quote(user.password)}"
    elif user.passhash:
        text += f" PASSHASH {quote(user.passhash)}"
    text += " ROLES " + ", ".join(r.upper() for r in user.roles)
    durations = []
    if user.token_duration:
        durations.append(f"FOR TOKEN {user.token_duration}")
    if user.session_duration:
        durations.append(f"FOR SESSION {user.session_duration}")
    if durations:
        text += " DURATION " + ", ".join(durations)
    return text + comment_clause(user.comment) + ";"


def render_remove(kind: str, name: str, level: str = "database") -> str:
    if kind == "function":
        return f"REMOVE FUNCTION fn::{name};"
    if kind == "access":
        return f"REMOVE ACCESS {name} ON DATABASE;"
    if kind == "param":
        return f"REMOVE PARAM ${name};"
    if kind == "user":
        return f"REMOVE USER {name} ON {level.upper()};"
    if kind in ("analyzer", "sequence", "table"):
        return f"REMOVE {kind.upper()} {name};"
    raise ValueError(f"Unknown entity kind: {kind}")


def render_rename(kind: str, old: str, new: str, table: str | None = None, level: str = "database") -> str:
    if kind not in RENAMEABLE:
        raise ValueError(f"Unknown entity kind: {kind}")
    if kind in ("field", "index", "event"):
        return f"ALTER {kind.upper()} {old} ON TABLE {table} RENAME TO {new};"
    if kind == "function":
        return f"ALTER FUNCTION fn::{old} RENAME TO fn::{new};"
    if kind == "param":
        return f"ALTER PARAM ${old} RENAME TO ${new};"
    if kind == "access":
        return f"ALTER ACCESS {old} ON DATABASE RENAME TO {new};"
    if kind == "user":
        return f"ALTER USER {old} ON {level.upper()} RENAME TO {new};"
    return f"ALTER {kind.upper()} {old} RENAME TO {new};"
