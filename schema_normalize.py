"""Canonical forms used when comparing desired and introspected schema values.

The database reports definitions back in its own spelling: keywords upper-cased,
strings re-quoted, redundant parentheses removed, durations rewritten. Every
comparison goes through these helpers so that both sides agree on spelling
before they are compared.
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

from schema_model import (
    DEFAULT_BOOLEAN,
    DEFAULT_EXPRESSION,
    DEFAULT_JSON,
    DEFAULT_LITERAL,
    DEFAULT_NUMBER,
    DefaultValue,
)


PERMISSION_ACTIONS = ("SELECT", "CREATE", "UPDATE", "DELETE")
FIELD_DROPPED_ACTIONS = {"DELETE"}

NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?(?:e[+-]?\d+)?f?$", flags=re.I)
ACTION_LIST_RE = re.compile(
    r"^((?:SELECT|CREATE|UPDATE|DELETE)(?:\s*,\s*(?:SELECT|CREATE|UPDATE|DELETE))*)\s*,?\s*(.*)$"
)


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def parse_json_literal(text: str) -> Any | None:
    """Parse an array/object literal as reported by the database, or None."""
    for candidate in (text, re.sub(r"'((?:[^'\\]|\\.)*)'", r'"\1"', text)):
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    return None


def normalize_type(value: str | None) -> str:
    if value is None:
        return "any"
    text = collapse_whitespace(str(value)).lower()
    if not text:
        return "any"
    text = re.sub(r"<\s+", "<", text)
    text = re.sub(r"\s+>", ">", text)
    text = re.sub(r"\s*,\s*", ", ", text)
    text = re.sub(r"\s*\|\s*", " | ", text)
    if text.endswith("?"):
        text = f"option<{text[:-1].rstrip()}>"
    m = re.fullmatch(r"none \| (.+)", text) or re.fullmatch(r"(.+) \| none", text)
    if m:
        text = f"option<{m.group(1)}>"
    return text


def normalize_default(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, DefaultValue):
        if value.kind == DEFAULT_JSON:
            return canonical_json(value.value)
        if value.kind == DEFAULT_BOOLEAN:
            return "true" if value.value else "false"
        if value.kind == DEFAULT_NUMBER:
            return format_number(value.value)
        value = value.value
    elif isinstance(value, bool):
        return "true" if value else "false"
    elif isinstance(value, (int, float)):
        return format_number(value)
    elif isinstance(value, (list, dict)):
        return canonical_json(value)

    text = str(value).strip()
    text = re.sub(r"`([A-Za-z_][A-Za-z0-9_]*)`::", r"\1::", text)
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        quote = text[0]
        text = text[1:-1].replace(f"\\{quote}", quote)
    if NUMBER_RE.match(text):
        return format_number(float(text.rstrip("fF")) if "." in text or "e" in text.lower() else int(text.rstrip("fF")))
    if text[:1] in ("[", "{"):
        parsed = parse_json_literal(text)
        if parsed is not None:
            return canonical_json(parsed)
    return re.sub(r'"([^"\\]*)"', r"'\1'", text)


def normalize_comment(comment: Any) -> str | None:
    if comment is None or comment in ("null", "undefined"):
        return None
    return str(comment)


def to_surreal_quotes(value: str) -> str:
    def requote(m: re.Match) -> str:
        contents = re.sub(r'"([^"\\]*(?:\\.[^"\\]*)*)"', r"'\1'", m.group(1))
        return f"[{contents}]"

    return re.sub(r"\[([^\]]*)\]", requote, value)


def simplify_parentheses(text: str) -> str:
    """Drop the parentheses the database strips from simple comparisons and calls."""
    previous = None
    while previous != text:
        previous = text
        text = re.sub(
            r"\((\$[a-zA-Z_][a-zA-Z0-9_.]*\s*[!=<>]+\s*[A-Z0-9_]+)\)\s*(AND|OR)",
            r"\1 \2",
            text,
            flags=re.I,
        )
        text = re.sub(
            r"(AND|OR)\s+\((\$[a-zA-Z_][a-zA-Z0-9_.]*\s*[!=<>]+\s*[A-Z0-9_]+)\)$",
            r"\1 \2",
            text,
            flags=re.I,
        )
        text = re.sub(r"\((\$[a-zA-Z_][a-zA-Z0-9_.]*\s*[<>=!]+\s*\d+)\)", r"\1", text)
        text = re.sub(r"\(([a-zA-Z_:]+\([^()]+\)\s*[!=<>]+\s*\d+)\)", r"\1", text)
        text = re.sub(r"\(([a-zA-Z_:]+\([^()]+\))\)", r"\1", text)
    return text


def normalize_expression(value: Any) -> str:
    if value is None:
        return ""
    text = collapse_whitespace(str(value))
    text = re.sub(r"RETURN\s+\(\s*SELECT\s+", "RETURN SELECT ", text)
    text = re.sub(r"\)\s*;?\s*\}", " }", text)
    text = re.sub(r";\s*\}", " }", text)
    text = to_surreal_quotes(text)
    text = re.sub(r"\b(\d+)w\b", lambda m: f"{int(m.group(1)) * 7}d", text)
    text = simplify_parentheses(text)
    return text.rstrip(";").strip()


def unwrap_block(text: str | None) -> str:
    """Strip balanced outer braces or parentheses around a statement body."""
    if text is None:
        return ""
    body = text.strip().rstrip(";").strip()
    while len(body) >= 2 and (body[0], body[-1]) in (("{", "}"), ("(", ")")):
        inner = body[1:-1]
        if not brackets_balanced(inner):
            break
        body = inner.strip().rstrip(";").strip()
    return body


def brackets_balanced(text: str) -> bool:
    depth = 0
    quote = None
    for ch in text:
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch in "({[":
            depth += 1
        elif ch in ")}]":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def normalize_block(text: str | None) -> str:
    return normalize_expression(unwrap_block(text))


def permissions_from_mapping(perms: Mapping[str, Any]) -> str:
    clauses: list[str] = []
    for action, condition in perms.items():
        if condition is True or condition is None:
            condition = "FULL"
        elif condition is False:
            condition = "NONE"
        clauses.append(f"FOR {action} {str(condition).strip()}")
    return ", ".join(clauses)


def normalize_permissions(perm: Any, field_level: bool = False) -> str:
    if isinstance(perm, Mapping):
        perm = permissions_from_mapping(perm)
    if perm is None:
        return "FULL"
    text = collapse_whitespace(str(perm)).upper()
    if text in ("", "FULL", "NONE"):
        return "FULL"
    if not text.startswith("FOR "):
        return text

    by_condition: dict[str, set[str]] = {}
    for chunk in re.split(r"(?:^|,\s*|\s+)FOR\s+", text):
        chunk = chunk.strip().rstrip(",").strip()
        if not chunk:
            continue
        m = ACTION_LIST_RE.match(chunk)
        if not m:
            by_condition.setdefault(chunk, set())
            continue
        actions = {a.strip() for a in m.group(1).split(",")}
        if field_level:
            actions -= FIELD_DROPPED_ACTIONS
        if not actions:
            continue
        condition = m.group(2).strip() or "FULL"
        by_condition.setdefault(condition, set()).update(actions)

    clauses: list[tuple[int, str]] = []
    for condition, actions in by_condition.items():
        ordered = [a for a in PERMISSION_ACTIONS if a in actions]
        if not ordered:
            clauses.append((len(PERMISSION_ACTIONS), condition))
            continue
        clauses.append((PERMISSION_ACTIONS.index(ordered[0]), f"FOR {', '.join(ordered)} {condition}"))
    if not clauses:
        return "FULL"
    clauses.sort()
    return ", ".join(clause for _, clause in clauses)


def escape_string(text: str) -> str:
    return text.replace("\\", "\\\\").replace("'", "\\'")


def serialize_default_value(value: Any) -> str:
    if value is None:
        return "NONE"
    if not isinstance(value, DefaultValue):
        value = DefaultValue.from_python(value)
    if value.kind == DEFAULT_LITERAL:
        return f"'{escape_string(str(value.value))}'"
    if value.kind == DEFAULT_BOOLEAN:
        return "true" if value.value else "false"
    if value.kind == DEFAULT_NUMBER:
        return format_number(value.value)
    if value.kind == DEFAULT_JSON:
        return json.dumps(value.value, ensure_ascii=False)
    if value.kind == DEFAULT_EXPRESSION:
        return str(value.value)
    raise ValueError(f"Unknown default kind: {value.kind}")
