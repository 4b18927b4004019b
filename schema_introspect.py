#!/usr/bin/env python3
"""Rebuild structured schema entities from the definition text the database reports.

INFO FOR DB / INFO FOR TABLE return one `DEFINE ...` statement per entity. Each
statement is split into tokens at whitespace outside quotes and brackets, the
tokens are grouped into clauses by their leading keyword, and one small
extractor per clause pulls out a value. Clause order in the input does not
matter and every clause is optional.

Usage:
    python schema_introspect.py dump.json
"""

from __future__ import annotations

import argparse
import dataclasses
import functools
import json
import re
import sys
from pathlib import Path
from typing import Iterable

from migration_errors import ParseError
from schema_model import (
    Access,
    Analyzer,
    Changefeed,
    DefaultValue,
    Event,
    Field,
    FieldReference,
    Function,
    FunctionParam,
    Index,
    Param,
    Schema,
    Sequence,
    Table,
    User,
)
from schema_normalize import normalize_type, unwrap_block


LEDGER_TABLE = "_migrations"

NAME = r"(`[^`]+`|⟨[^⟩]+⟩|[^\s;]+)"
DEFINE_PREFIX = r"^DEFINE\s+{kind}\s+(?:OVERWRITE\s+|IF\s+NOT\s+EXISTS\s+)?"

FIELD_HEADER_RE = re.compile(DEFINE_PREFIX.format(kind="FIELD") + NAME + r"\s+ON\s+(?:TABLE\s+)?" + NAME, re.I)
INDEX_HEADER_RE = re.compile(DEFINE_PREFIX.format(kind="INDEX") + NAME + r"\s+ON\s+(?:TABLE\s+)?" + NAME, re.I)
EVENT_HEADER_RE = re.compile(DEFINE_PREFIX.format(kind="EVENT") + NAME + r"\s+ON\s+(?:TABLE\s+)?" + NAME, re.I)
TABLE_HEADER_RE = re.compile(DEFINE_PREFIX.format(kind="TABLE") + NAME, re.I)
FUNCTION_HEADER_RE = re.compile(DEFINE_PREFIX.format(kind="FUNCTION"), re.I)
ACCESS_HEADER_RE = re.compile(
    DEFINE_PREFIX.format(kind="(ACCESS|SCOPE)") + NAME + r"(?:\s+ON\s+(ROOT|NAMESPACE|DATABASE))?", re.I
)
ANALYZER_HEADER_RE = re.compile(DEFINE_PREFIX.format(kind="ANALYZER") + NAME, re.I)
PARAM_HEADER_RE = re.compile(DEFINE_PREFIX.format(kind="PARAM") + r"\$(\w+)", re.I)
SEQUENCE_HEADER_RE = re.compile(DEFINE_PREFIX.format(kind="SEQUENCE") + NAME, re.I)
USER_HEADER_RE = re.compile(
    DEFINE_PREFIX.format(kind="USER") + NAME + r"\s+ON\s+(ROOT|NAMESPACE|DATABASE)", re.I
)

FIELD_KEYWORDS = (
    "FLEXIBLE",
    "TYPE",
    "DEFAULT",
    "VALUE",
    "ASSERT",
    "READONLY",
    "REFERENCE",
    "REFERENCES",
    "ON",
    "PERMISSIONS",
    "COMMENT",
)
INDEX_KEYWORDS = (
    "FIELDS",
    "COLUMNS",
    "UNIQUE",
    "SEARCH",
    "FULLTEXT",
    "BTREE",
    "HASH",
    "MTREE",
    "HNSW",
    "ANALYZER",
    "HIGHLIGHTS",
    "DIMENSION",
    "DIST",
    "TYPE",
    "CAPACITY",
    "EFC",
    "M",
    "M0",
    "LM",
    "DOC_IDS_CACHE",
    "DOC_LENGTHS_CACHE",
    "POSTINGS_CACHE",
    "TERMS_CACHE",
    "DOC_IDS_ORDER",
    "DOC_LENGTHS_ORDER",
    "POSTINGS_ORDER",
    "TERMS_ORDER",
    "MTREE_CACHE",
    "EXTEND_CANDIDATES",
    "KEEP_PRUNED_CONNECTIONS",
    "CONCURRENTLY",
    "COMMENT",
)
EVENT_KEYWORDS = ("WHEN", "THEN", "COMMENT")
TABLE_KEYWORDS = ("DROP", "TYPE", "SCHEMAFULL", "SCHEMALESS", "CHANGEFEED", "PERMISSIONS", "COMMENT", "ENFORCED", "AS")
FUNCTION_KEYWORDS = ("PERMISSIONS", "COMMENT")
ACCESS_KEYWORDS = ("TYPE", "SIGNUP", "SIGNIN", "AUTHENTICATE", "WITH", "DURATION", "SESSION", "COMMENT")
ACCESS_TYPE_STOPS = {"SIGNUP", "SIGNIN", "AUTHENTICATE", "DURATION", "SESSION", "COMMENT"}
ANALYZER_KEYWORDS = ("FUNCTION", "TOKENIZERS", "FILTERS", "COMMENT")
PARAM_KEYWORDS = ("VALUE", "PERMISSIONS", "COMMENT")
SEQUENCE_KEYWORDS = ("BATCH", "START", "TIMEOUT", "COMMENT")
USER_KEYWORDS = ("PASSWORD", "PASSHASH", "ROLES", "DURATION", "COMMENT")

VECTOR_DISTANCES = ("CHEBYSHEV", "COSINE", "EUCLIDEAN", "HAMMING", "JACCARD", "MANHATTAN", "MINKOWSKI", "PEARSON")
EVENT_TRIGGER_RE = re.compile(r"\$event\s*==?\s*['\"](CREATE|UPDATE|DELETE)['\"]", re.I)
RECORD_TARGET_RE = re.compile(r"record<\s*([\w|\s]+?)\s*>", re.I)


@dataclasses.dataclass
class Clause:
    keyword: str
    tokens: list[str]

    @property
    def text(self) -> str:
        return " ".join(self.tokens)


def tokenize_definition(text: str) -> list[str]:
    """Split on whitespace that sits outside quotes, parentheses, brackets and braces."""
    tokens: list[str] = []
    buf: list[str] = []
    depth = 0
    quote: str | None = None
    idx = 0
    while idx < len(text):
        ch = text[idx]
        if quote:
            buf.append(ch)
            if ch == "\\" and idx + 1 < len(text):
                buf.append(text[idx + 1])
                idx += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
            buf.append(ch)
        elif ch == "⟨":
            quote = "⟩"
            buf.append(ch)
        elif ch in "({[":
            depth += 1
            buf.append(ch)
        elif ch in ")}]":
            depth -= 1
            if depth < 0:
                raise ValueError(f"unbalanced '{ch}' at offset {idx}")
            buf.append(ch)
        elif ch.isspace() and depth == 0:
            if buf:
                tokens.append("".join(buf))
                buf = []
        else:
            buf.append(ch)
        idx += 1
    if quote:
        raise ValueError("unterminated quoted text")
    if depth:
        raise ValueError("unbalanced brackets")
    if buf:
        tokens.append("".join(buf))
    return tokens


def split_clauses(text: str, keywords: Iterable[str]) -> dict[str, Clause]:
    """Group tokens under the most recent clause keyword.

    Tokens before the first keyword land under the empty key. A repeated
    keyword keeps its last occurrence.
    """
    keyword_set = set(keywords)
    clauses: dict[str, Clause] = {}
    current = Clause(keyword="", tokens=[])
    for token in tokenize_definition(text.strip().rstrip(";")):
        if token in keyword_set:
            if current.keyword or current.tokens:
                clauses[current.keyword] = current
            current = Clause(keyword=token, tokens=[])
            continue
        current.tokens.append(token)
    if current.keyword or current.tokens:
        clauses[current.keyword] = current
    return clauses


def split_top_level(expr: str, sep: str = ",") -> list[str]:
    out: list[str] = []
    buf: list[str] = []
    depth = 0
    for ch in expr:
        if ch in "(<[{":
            depth += 1
        elif ch in ")>]}":
            depth = max(0, depth - 1)
        if ch == sep and depth == 0:
            token = "".join(buf).strip()
            if token:
                out.append(token)
            buf = []
            continue
        buf.append(ch)
    token = "".join(buf).strip()
    if token:
        out.append(token)
    return out


def strip_identifier(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and (raw[0], raw[-1]) in (("`", "`"), ("⟨", "⟩")):
        return raw[1:-1]
    return raw


def unquote(raw: str | None) -> str | None:
    if raw is None:
        return None
    text = raw.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        quote = text[0]
        return text[1:-1].replace(f"\\{quote}", quote).replace("\\\\", "\\")
    return text


def parse_int(raw: str | None) -> int | None:
    if raw is None:
        return None
    m = re.match(r"-?\d+", raw.strip())
    return int(m.group(0)) if m else None


def parse_float(raw: str | None) -> float | None:
    if raw is None:
        return None
    m = re.match(r"-?\d+(?:\.\d+)?", raw.strip())
    return float(m.group(0)) if m else None


def clause_text(clauses: dict[str, Clause], keyword: str) -> str | None:
    clause = clauses.get(keyword)
    if clause is None or not clause.tokens:
        return None
    return clause.text


def _strip_header(definition: str, header: re.Pattern) -> str:
    text = definition.strip()
    m = header.match(text)
    return text[m.end():] if m else text


# Fields.


@functools.lru_cache(maxsize=2048)
def field_clauses(definition: str) -> dict[str, Clause]:
    return split_clauses(_strip_header(definition, FIELD_HEADER_RE), FIELD_KEYWORDS)


def extract_field_type(definition: str) -> str | None:
    return clause_text(field_clauses(definition), "TYPE")


def is_field_optional(definition: str) -> bool:
    field_type = extract_field_type(definition)
    return bool(field_type) and normalize_type(field_type).startswith("option<")


def is_field_readonly(definition: str) -> bool:
    return "READONLY" in field_clauses(definition)


def is_field_flexible(definition: str) -> bool:
    return "FLEXIBLE" in field_clauses(definition)


def extract_field_default(definition: str) -> tuple[str | None, bool]:
    clause = field_clauses(definition).get("DEFAULT")
    if clause is None or not clause.tokens:
        return None, False
    tokens = clause.tokens
    always = tokens[0] == "ALWAYS"
    if always:
        tokens = tokens[1:]
    return (" ".join(tokens) or None), always


def extract_field_value(definition: str) -> str | None:
    return clause_text(field_clauses(definition), "VALUE")


def extract_field_assert(definition: str) -> str | None:
    return clause_text(field_clauses(definition), "ASSERT")


def extract_field_permissions(definition: str) -> str | None:
    return clause_text(field_clauses(definition), "PERMISSIONS")


def extract_field_comment(definition: str) -> str | None:
    return unquote(clause_text(field_clauses(definition), "COMMENT"))


def extract_field_reference(definition: str) -> FieldReference | None:
    clauses = field_clauses(definition)
    table = None
    if "REFERENCES" in clauses and clauses["REFERENCES"].tokens:
        table = strip_identifier(clauses["REFERENCES"].tokens[0])
    elif "REFERENCE" in clauses:
        m = RECORD_TARGET_RE.search(extract_field_type(definition) or "")
        table = m.group(1).strip() if m else None
    if table is None:
        return None

    on_delete = None
    on_clause = clauses.get("ON")
    if on_clause and on_clause.tokens and on_clause.tokens[0].upper() == "DELETE":
        on_delete = " ".join(on_clause.tokens[1:]) or None
    return FieldReference(table=table, on_delete=on_delete)


def parse_field_definition(definition: str, name: str | None = None, table: str | None = None) -> Field:
    entity = f"field {table or '?'}.{name or '?'}"
    m = FIELD_HEADER_RE.match(definition.strip())
    if not m:
        raise ParseError(entity, definition)
    try:
        clauses = field_clauses(definition)
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc
    if clauses.get(""):
        raise ParseError(entity, definition, f"unexpected text {clauses[''].text!r}")

    field_type = extract_field_type(definition) or "any"
    default, default_always = extract_field_default(definition)
    return Field(
        name=name or strip_identifier(m.group(1)),
        type=field_type,
        optional=is_field_optional(definition),
        readonly=is_field_readonly(definition),
        flexible=is_field_flexible(definition),
        default=DefaultValue.expression(default) if default is not None else None,
        default_always=default_always,
        value=extract_field_value(definition),
        assertion=extract_field_assert(definition),
        permissions=extract_field_permissions(definition),
        reference=extract_field_reference(definition),
        comment=extract_field_comment(definition),
    )


# Indexes.


@functools.lru_cache(maxsize=1024)
def index_clauses(definition: str) -> dict[str, Clause]:
    return split_clauses(_strip_header(definition, INDEX_HEADER_RE), INDEX_KEYWORDS)


def extract_index_columns(definition: str) -> list[str]:
    clauses = index_clauses(definition)
    text = clause_text(clauses, "FIELDS") or clause_text(clauses, "COLUMNS") or ""
    return [strip_identifier(c) for c in split_top_level(text)]


def extract_index_kind(definition: str) -> str:
    clauses = index_clauses(definition)
    if "SEARCH" in clauses or "FULLTEXT" in clauses:
        return "search"
    for keyword in ("MTREE", "HNSW", "HASH"):
        if keyword in clauses:
            return keyword.lower()
    return "btree"


def extract_index_analyzer(definition: str) -> tuple[str | None, str | None]:
    """Analyzer name and BM25 parameters ("" when BM25 is given without parameters)."""
    clause = index_clauses(definition).get("ANALYZER")
    if clause is None or not clause.tokens:
        return None, None
    bm25 = None
    for token in clause.tokens[1:]:
        if token.upper().startswith("BM25"):
            bm25 = token[4:].strip().strip("()").replace(" ", "")
    return strip_identifier(clause.tokens[0]), bm25


def extract_index_distance(definition: str) -> str | None:
    text = clause_text(index_clauses(definition), "DIST")
    if not text:
        return None
    dist = text.upper()
    if dist.split()[0] not in VECTOR_DISTANCES:
        return None
    return dist


def parse_index_definition(definition: str, name: str | None = None, table: str | None = None) -> Index:
    entity = f"index {table or '?'}.{name or '?'}"
    m = INDEX_HEADER_RE.match(definition.strip())
    if not m:
        raise ParseError(entity, definition)
    try:
        clauses = index_clauses(definition)
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc
    columns = extract_index_columns(definition)
    if not columns:
        raise ParseError(entity, definition, "no indexed columns")

    analyzer, bm25 = extract_index_analyzer(definition)
    return Index(
        name=name or strip_identifier(m.group(1)),
        columns=columns,
        unique="UNIQUE" in clauses,
        kind=extract_index_kind(definition),
        analyzer=analyzer,
        bm25=bm25,
        highlights="HIGHLIGHTS" in clauses,
        doc_ids_cache=parse_int(clause_text(clauses, "DOC_IDS_CACHE")),
        doc_lengths_cache=parse_int(clause_text(clauses, "DOC_LENGTHS_CACHE")),
        postings_cache=parse_int(clause_text(clauses, "POSTINGS_CACHE")),
        terms_cache=parse_int(clause_text(clauses, "TERMS_CACHE")),
        dimension=parse_int(clause_text(clauses, "DIMENSION")),
        dist=extract_index_distance(definition),
        capacity=parse_int(clause_text(clauses, "CAPACITY")),
        efc=parse_int(clause_text(clauses, "EFC")),
        m=parse_int(clause_text(clauses, "M")),
        m0=parse_int(clause_text(clauses, "M0")),
        lm=parse_float(clause_text(clauses, "LM")),
        vector_type=clause_text(clauses, "TYPE"),
        comment=unquote(clause_text(clauses, "COMMENT")),
    )


# Events.


def split_event_condition(when: str | None) -> tuple[str | None, str | None]:
    """Separate a leading `$event = "X"` conjunct from the rest of a WHEN guard."""
    if not when:
        return None, None
    text = unwrap_block(when)
    matches = list(EVENT_TRIGGER_RE.finditer(text))
    if len(matches) != 1:
        return None, text or None
    m = matches[0]
    before = text[: m.start()].strip()
    after = text[m.end():].strip()
    if before.strip("(") or (after and not re.match(r"^\)?\s*AND\s", after, re.I)):
        return None, text
    guard = re.sub(r"^\)?\s*AND\s+", "", after, flags=re.I) if after else ""
    return m.group(1).lower(), unwrap_block(guard) or None


def parse_event_definition(definition: str, name: str | None = None, table: str | None = None) -> Event:
    entity = f"event {table or '?'}.{name or '?'}"
    text = definition.strip()
    m = EVENT_HEADER_RE.match(text)
    if not m:
        raise ParseError(entity, definition)
    try:
        clauses = split_clauses(text[m.end():], EVENT_KEYWORDS)
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc
    then = clause_text(clauses, "THEN")
    if not then:
        raise ParseError(entity, definition, "missing THEN")
    trigger, guard = split_event_condition(clause_text(clauses, "WHEN"))
    return Event(
        name=name or strip_identifier(m.group(1)),
        trigger_type=trigger,
        when=guard,
        then=then,
        comment=unquote(clause_text(clauses, "COMMENT")),
    )


# Tables.


def parse_table_definition(definition: str, name: str | None = None) -> Table:
    entity = f"table {name or '?'}"
    text = definition.strip()
    m = TABLE_HEADER_RE.match(text)
    if not m:
        raise ParseError(entity, definition)
    try:
        clauses = split_clauses(text[m.end():], TABLE_KEYWORDS)
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc

    table = Table(name=name or strip_identifier(m.group(1)))
    table.drop = "DROP" in clauses
    table.schema_mode = "full" if "SCHEMAFULL" in clauses else "loose"
    table.permissions = clause_text(clauses, "PERMISSIONS")
    table.comment = unquote(clause_text(clauses, "COMMENT"))
    table.enforced = "ENFORCED" in clauses

    type_clause = clauses.get("TYPE")
    if type_clause and type_clause.tokens:
        table.kind = type_clause.tokens[0].lower()
        if table.kind == "relation":
            table.relation_from, table.relation_to = _relation_endpoints(type_clause.tokens[1:])

    changefeed = clauses.get("CHANGEFEED")
    if changefeed and changefeed.tokens:
        table.changefeed = Changefeed(
            duration=changefeed.tokens[0],
            include_original="ORIGINAL" in changefeed.tokens[1:],
        )
    return table


def _relation_endpoints(tokens: list[str]) -> tuple[str | None, str | None]:
    sides: dict[str, list[str]] = {}
    current = None
    for token in tokens:
        upper = token.upper()
        if upper in ("IN", "FROM"):
            current = "in"
            continue
        if upper in ("OUT", "TO"):
            current = "out"
            continue
        if current:
            sides.setdefault(current, []).append(token)
    endpoints = [" ".join(sides[side]) if side in sides else None for side in ("in", "out")]
    return endpoints[0], endpoints[1]


def _record_target(field: Field | None) -> str | None:
    if field is None:
        return None
    m = RECORD_TARGET_RE.search(field.type)
    return " | ".join(p.strip() for p in m.group(1).split("|")) if m else None


def parse_table_info(name: str, definition: str | None, info: dict) -> Table:
    """Assemble a table from its DEFINE TABLE text and its INFO FOR TABLE result."""
    table = parse_table_definition(definition, name) if definition else Table(name=name)

    for field_name, field_def in sorted((info.get("fields") or {}).items()):
        if field_name.endswith("[*]") or field_name.endswith(".*"):
            continue
        table.fields.append(parse_field_definition(field_def, field_name, name))
    for index_name, index_def in sorted((info.get("indexes") or {}).items()):
        table.indexes.append(parse_index_definition(index_def, index_name, name))
    for event_name, event_def in sorted((info.get("events") or {}).items()):
        table.events.append(parse_event_definition(event_def, event_name, name))

    fields = table.field_map()
    if table.kind == "relation" or ("in" in fields and "out" in fields):
        table.kind = "relation"
        table.relation_from = table.relation_from or _record_target(fields.get("in"))
        table.relation_to = table.relation_to or _record_target(fields.get("out"))
    return table


# Database-level entities.


def parse_function_definition(definition: str, name: str | None = None) -> Function:
    entity = f"function {name or '?'}"
    text = definition.strip().rstrip(";")
    m = FUNCTION_HEADER_RE.match(text)
    if not m:
        raise ParseError(entity, definition)
    try:
        tokens = tokenize_definition(text[m.end():])
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc
    if len(tokens) > 1 and "(" not in tokens[0] and tokens[1].startswith("("):
        tokens = [tokens[0] + tokens[1], *tokens[2:]]

    sig = re.match(r"^fn::([\w:]+)\((.*)\)$", tokens[0] if tokens else "", re.S)
    body_idx = next((i for i, tok in enumerate(tokens) if tok.startswith("{")), None)
    if not sig or body_idx is None:
        raise ParseError(entity, definition, "missing signature or body")

    params: list[FunctionParam] = []
    for raw in split_top_level(sig.group(2)):
        pname, _, ptype = raw.partition(":")
        params.append(FunctionParam(name=pname.strip().lstrip("$"), type=ptype.strip() or "any"))

    returns = None
    between = tokens[1:body_idx]
    if between and between[0] == "->":
        returns = " ".join(between[1:]) or None

    clauses = split_clauses(" ".join(tokens[body_idx + 1:]), FUNCTION_KEYWORDS)
    return Function(
        name=sig.group(1),
        params=params,
        returns=returns,
        body=unwrap_block(tokens[body_idx]),
        permissions=clause_text(clauses, "PERMISSIONS"),
        comment=unquote(clause_text(clauses, "COMMENT")),
    )


def _duration_for(text: str | None, what: str) -> str | None:
    if not text:
        return None
    m = re.search(rf"FOR\s+{what}\s+([^\s,]+)", text, re.I)
    if not m or m.group(1).upper() == "NONE":
        return None
    return m.group(1)


def access_type_tokens(text: str) -> list[str]:
    """Tokens of the TYPE clause: the access type followed by its JWT or bearer options."""
    tokens = tokenize_definition(text.strip().rstrip(";"))
    if "TYPE" not in tokens:
        return []
    out: list[str] = []
    for token in tokens[tokens.index("TYPE") + 1:]:
        if token in ACCESS_TYPE_STOPS:
            break
        out.append(token)
    return out


def _token_after(tokens: list[str], *keywords: str) -> str | None:
    width = len(keywords)
    for idx in range(len(tokens) - width):
        if [t.upper() for t in tokens[idx:idx + width]] == list(keywords):
            return tokens[idx + width]
    return None


def _jwt_verify_key(tokens: list[str]) -> str | None:
    for idx, token in enumerate(tokens[:-1]):
        if token.upper() == "KEY" and (idx == 0 or tokens[idx - 1].upper() != "ISSUER"):
            return tokens[idx + 1]
    return None


def parse_access_definition(definition: str, name: str | None = None) -> Access:
    entity = f"access {name or '?'}"
    text = definition.strip()
    m = ACCESS_HEADER_RE.match(text)
    if not m:
        raise ParseError(entity, definition)
    try:
        clauses = split_clauses(text[m.end():], ACCESS_KEYWORDS)
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc

    access = Access(name=name or strip_identifier(m.group(2)))
    type_tokens = access_type_tokens(text[m.end():])
    if type_tokens:
        access.access_type = type_tokens[0].lower()
    if access.access_type == "jwt":
        access.jwt_algorithm = _token_after(type_tokens, "ALGORITHM")
        access.jwt_key = unquote(_jwt_verify_key(type_tokens))
        access.jwt_url = unquote(_token_after(type_tokens, "URL"))
        access.jwt_issuer_key = unquote(_token_after(type_tokens, "ISSUER", "KEY"))
    elif access.access_type == "bearer":
        access.bearer_key = _token_after(type_tokens, "KEY")
        access.bearer_type = _token_after(type_tokens[1:], "TYPE")
    access.signup = clause_text(clauses, "SIGNUP")
    access.signin = clause_text(clauses, "SIGNIN")
    access.authenticate = clause_text(clauses, "AUTHENTICATE")
    access.comment = unquote(clause_text(clauses, "COMMENT"))
    duration = clause_text(clauses, "DURATION")
    access.session = _duration_for(duration, "SESSION") or clause_text(clauses, "SESSION")
    access.token = _duration_for(duration, "TOKEN")
    return access


def parse_analyzer_definition(definition: str, name: str | None = None) -> Analyzer:
    entity = f"analyzer {name or '?'}"
    text = definition.strip()
    m = ANALYZER_HEADER_RE.match(text)
    if not m:
        raise ParseError(entity, definition)
    try:
        clauses = split_clauses(text[m.end():], ANALYZER_KEYWORDS)
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc
    function = clause_text(clauses, "FUNCTION")
    return Analyzer(
        name=name or strip_identifier(m.group(1)),
        tokenizers=[t.lower() for t in split_top_level(clause_text(clauses, "TOKENIZERS") or "")],
        filters=[f.lower() for f in split_top_level(clause_text(clauses, "FILTERS") or "")],
        function=function.removeprefix("fn::") if function else None,
        comment=unquote(clause_text(clauses, "COMMENT")),
    )


def parse_param_definition(definition: str, name: str | None = None) -> Param:
    entity = f"param {name or '?'}"
    text = definition.strip()
    m = PARAM_HEADER_RE.match(text)
    if not m:
        raise ParseError(entity, definition)
    try:
        clauses = split_clauses(text[m.end():], PARAM_KEYWORDS)
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc
    value = clause_text(clauses, "VALUE")
    if value is None:
        raise ParseError(entity, definition, "missing VALUE")
    return Param(name=m.group(1), value=value, comment=unquote(clause_text(clauses, "COMMENT")))


def parse_sequence_definition(definition: str, name: str | None = None) -> Sequence:
    entity = f"sequence {name or '?'}"
    text = definition.strip()
    m = SEQUENCE_HEADER_RE.match(text)
    if not m:
        raise ParseError(entity, definition)
    try:
        clauses = split_clauses(text[m.end():], SEQUENCE_KEYWORDS)
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc
    timeout = clause_text(clauses, "TIMEOUT")
    return Sequence(
        name=name or strip_identifier(m.group(1)),
        start=parse_int(clause_text(clauses, "START")),
        batch=parse_int(clause_text(clauses, "BATCH")),
        timeout=None if timeout is None or timeout.upper() == "NONE" else timeout,
        comment=unquote(clause_text(clauses, "COMMENT")),
    )


def parse_user_definition(definition: str, name: str | None = None) -> User:
    entity = f"user {name or '?'}"
    text = definition.strip()
    m = USER_HEADER_RE.match(text)
    if not m:
        raise ParseError(entity, definition)
    try:
        clauses = split_clauses(text[m.end():], USER_KEYWORDS)
    except ValueError as exc:
        raise ParseError(entity, definition, str(exc)) from exc
    duration = clause_text(clauses, "DURATION")
    return User(
        name=name or strip_identifier(m.group(1)),
        level=m.group(2).lower(),
        password=unquote(clause_text(clauses, "PASSWORD")),
        passhash=unquote(clause_text(clauses, "PASSHASH")),
        roles=[r.upper() for r in split_top_level(clause_text(clauses, "ROLES") or "")] or ["VIEWER"],
        token_duration=_duration_for(duration, "TOKEN"),
        session_duration=_duration_for(duration, "SESSION"),
        comment=unquote(clause_text(clauses, "COMMENT")),
    )


def parse_schema_dump(dump: dict) -> Schema:
    """Build a Schema from {"db": INFO FOR DB, "tables": {name: INFO FOR TABLE}}."""
    db = dump.get("db") or {}
    table_infos = dump.get("tables") or {}
    schema = Schema()

    for name, definition in sorted((db.get("tables") or {}).items()):
        if name == LEDGER_TABLE:
            continue
        table = parse_table_info(name, definition, table_infos.get(name) or {})
        if table.is_relation():
            schema.relations.append(table)
        else:
            schema.tables.append(table)

    for _, definition in sorted((db.get("functions") or {}).items()):
        schema.functions.append(parse_function_definition(definition))
    accesses = {**(db.get("scopes") or {}), **(db.get("accesses") or {})}
    for name, definition in sorted(accesses.items()):
        schema.scopes.append(parse_access_definition(definition, name))
    for name, definition in sorted((db.get("analyzers") or {}).items()):
        schema.analyzers.append(parse_analyzer_definition(definition, name))
    for name, definition in sorted((db.get("params") or {}).items()):
        schema.params.append(parse_param_definition(definition, name.lstrip("$")))
    for name, definition in sorted((db.get("sequences") or {}).items()):
        schema.sequences.append(parse_sequence_definition(definition, name))
    for name, definition in sorted((db.get("users") or {}).items()):
        schema.users.append(parse_user_definition(definition, name))
    return schema


def load_schema_dump(path: Path) -> Schema:
    return parse_schema_dump(json.loads(path.read_text(encoding="utf-8")))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Parse a dumped database schema and print a summary")
    parser.add_argument("dump", help="JSON dump written by dump_schemas.py")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    try:
        schema = load_schema_dump(Path(args.dump))
    except ParseError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    for table in [*schema.tables, *schema.relations]:
        kind = "relation" if table.is_relation() else "table"
        print(f"{kind} {table.name}: {len(table.fields)} fields, {len(table.indexes)} indexes, {len(table.events)} events")
    print(
        f"{len(schema.functions)} functions, {len(schema.scopes)} accesses, {len(schema.analyzers)} analyzers, "
        f"{len(schema.params)} params, {len(schema.sequences)} sequences, {len(schema.users)} users"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
